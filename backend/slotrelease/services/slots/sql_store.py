# backend/slotrelease/services/slots/sql_store.py
"""
Relational slot store and catalog (SQLAlchemy).

transition() is a single conditional UPDATE:

    UPDATE time_slots SET status = :to
    WHERE id = :id AND status = :from
      [AND NOT EXISTS (open slot in the same examination/day)]   -- to=available

and succeeds iff exactly one row changed. No application lock is taken;
the database serializes the two competing statements.
"""

import json
import logging
from contextlib import contextmanager
from datetime import date, datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, aliased, sessionmaker

from ...models.generated import (
    Appointments,
    DeviceWorkingHours,
    Devices,
    Examinations,
    TimeSlots,
)
from .domain import (
    Appointment,
    AppointmentDraft,
    AppointmentStatus,
    DatedHours,
    Device,
    DeviceException,
    Examination,
    GroupKey,
    RecurringHours,
    Slot,
    SlotDraft,
    SlotStatus,
)
from .exceptions import StoreUnavailable
from .store import Catalog, SlotStore, check_forward

logger = logging.getLogger(__name__)


class _SessionMixin:
    session_factory: sessionmaker

    @contextmanager
    def _session(self):
        db: Session = self.session_factory()
        try:
            yield db
            db.commit()
        except IntegrityError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Slot store statement failed: {e}")
            raise StoreUnavailable(str(e)) from e
        finally:
            db.close()


class SqlSlotStore(_SessionMixin, SlotStore):

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # ── Slots ────────────────────────────────────────────────────────────

    def insert(self, draft: SlotDraft) -> Slot:
        with self._session() as db:
            row = TimeSlots(
                device_id=draft.device_id,
                examination_id=draft.examination_id,
                slot_date=draft.start.date(),
                start_time=draft.start,
                end_time=draft.end,
                status=draft.status.value,
            )
            db.add(row)
            db.flush()
            return _to_slot(row)

    def get(self, slot_id: int) -> Slot | None:
        with self._session() as db:
            row = db.get(TimeSlots, slot_id)
            return _to_slot(row) if row else None

    def find_overlapping(self, device_id: int, start: datetime, end: datetime) -> list[Slot]:
        with self._session() as db:
            rows = (
                db.query(TimeSlots)
                .filter(
                    TimeSlots.device_id == device_id,
                    TimeSlots.start_time < end,
                    TimeSlots.end_time > start,
                )
                .order_by(TimeSlots.start_time, TimeSlots.id)
                .all()
            )
            return [_to_slot(r) for r in rows]

    def list_group(self, key: GroupKey, status: SlotStatus | None = None) -> list[Slot]:
        with self._session() as db:
            query = db.query(TimeSlots).filter(
                TimeSlots.examination_id == key.examination_id,
                TimeSlots.slot_date == key.day,
            )
            if status is not None:
                query = query.filter(TimeSlots.status == status.value)
            rows = query.order_by(TimeSlots.start_time, TimeSlots.id).all()
            return [_to_slot(r) for r in rows]

    def count_group(self, key: GroupKey, status: SlotStatus) -> int:
        with self._session() as db:
            return (
                db.query(func.count(TimeSlots.id))
                .filter(
                    TimeSlots.examination_id == key.examination_id,
                    TimeSlots.slot_date == key.day,
                    TimeSlots.status == status.value,
                )
                .scalar()
            )

    def list_by_status(
        self,
        status: SlotStatus,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Slot]:
        with self._session() as db:
            query = db.query(TimeSlots).filter(TimeSlots.status == status.value)
            query = _date_range(query, start_date, end_date)
            rows = query.order_by(
                TimeSlots.examination_id, TimeSlots.start_time, TimeSlots.id
            ).all()
            return [_to_slot(r) for r in rows]

    def stalled_groups(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[GroupKey]:
        with self._session() as db:
            blocked = _date_range(
                db.query(TimeSlots.examination_id, TimeSlots.slot_date)
                .filter(TimeSlots.status == SlotStatus.BLOCKED.value),
                start_date,
                end_date,
            ).distinct().all()
            open_ = _date_range(
                db.query(TimeSlots.examination_id, TimeSlots.slot_date)
                .filter(TimeSlots.status == SlotStatus.AVAILABLE.value),
                start_date,
                end_date,
            ).distinct().all()
            open_keys = {GroupKey(e, d) for e, d in open_}
            return sorted(
                key for key in (GroupKey(e, d) for e, d in blocked)
                if key not in open_keys
            )

    def transition(self, slot_id: int, from_status: SlotStatus, to_status: SlotStatus) -> bool:
        check_forward(from_status, to_status)
        with self._session() as db:
            conditions = [
                TimeSlots.id == slot_id,
                TimeSlots.status == from_status.value,
            ]
            if to_status == SlotStatus.AVAILABLE:
                target = db.get(TimeSlots, slot_id)
                if target is None:
                    return False
                other = aliased(TimeSlots)
                group_has_open = (
                    select(other.id)
                    .where(
                        other.examination_id == target.examination_id,
                        other.slot_date == target.slot_date,
                        other.status == SlotStatus.AVAILABLE.value,
                    )
                    .exists()
                )
                conditions.append(~group_has_open)

            result = db.execute(
                update(TimeSlots)
                .where(*conditions)
                .values(status=to_status.value)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    # ── Appointments ─────────────────────────────────────────────────────

    def add_appointment(self, draft: AppointmentDraft) -> Appointment:
        try:
            with self._session() as db:
                row = Appointments(
                    slot_id=draft.slot_id,
                    patient_data=json.dumps(draft.patient_data, ensure_ascii=False, default=str),
                    status=draft.status.value,
                    created_at=draft.created_at,
                    doctor_id=draft.doctor_id,
                    insurance_type=draft.insurance_type,
                    body_side=draft.body_side,
                )
                db.add(row)
                db.flush()
                return _to_appointment(row)
        except IntegrityError as e:
            raise ValueError(f"Slot {draft.slot_id} cannot take an appointment: {e.orig}") from e

    def get_appointment(self, appointment_id: int) -> Appointment | None:
        with self._session() as db:
            row = db.get(Appointments, appointment_id)
            return _to_appointment(row) if row else None

    def transition_appointment(
        self,
        appointment_id: int,
        from_status: AppointmentStatus,
        to_status: AppointmentStatus,
        at: datetime | None = None,
    ) -> bool:
        values = {"status": to_status.value}
        if to_status == AppointmentStatus.CANCELLED:
            values["cancelled_at"] = at or datetime.now()
        with self._session() as db:
            result = db.execute(
                update(Appointments)
                .where(
                    Appointments.id == appointment_id,
                    Appointments.status == from_status.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def list_appointments(self, status: AppointmentStatus | None = None) -> list[Appointment]:
        with self._session() as db:
            query = db.query(Appointments)
            if status is not None:
                query = query.filter(Appointments.status == status.value)
            return [_to_appointment(r) for r in query.order_by(Appointments.id).all()]


class SqlCatalog(_SessionMixin, Catalog):
    """Devices and examinations as maintained by the admin CRUD screens."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def list_devices(self, ids: list[int] | None = None) -> list[Device]:
        with self._session() as db:
            query = db.query(Devices).filter(Devices.is_active == 1)
            if ids:
                query = query.filter(Devices.id.in_(ids))
            return [_to_device(r) for r in query.order_by(Devices.id).all()]

    def get_device(self, device_id: int) -> Device | None:
        with self._session() as db:
            row = db.get(Devices, device_id)
            return _to_device(row) if row else None

    def list_examinations(self, ids: list[int] | None = None) -> list[Examination]:
        with self._session() as db:
            query = db.query(Examinations).filter(Examinations.is_active == 1)
            if ids:
                query = query.filter(Examinations.id.in_(ids))
            return [_to_examination(r) for r in query.order_by(Examinations.id).all()]

    def get_examination(self, examination_id: int) -> Examination | None:
        with self._session() as db:
            row = db.get(Examinations, examination_id)
            return _to_examination(row) if row else None


# ── Row mapping ──────────────────────────────────────────────────────────


def _date_range(query, start_date: date | None, end_date: date | None):
    if start_date is not None:
        query = query.filter(TimeSlots.slot_date >= start_date)
    if end_date is not None:
        query = query.filter(TimeSlots.slot_date <= end_date)
    return query


def _to_slot(row: TimeSlots) -> Slot:
    return Slot(
        id=row.id,
        device_id=row.device_id,
        examination_id=row.examination_id,
        start=row.start_time,
        end=row.end_time,
        status=SlotStatus(row.status),
    )


def _to_appointment(row: Appointments) -> Appointment:
    try:
        patient_data = json.loads(row.patient_data) if row.patient_data else {}
    except json.JSONDecodeError:
        logger.warning(f"Appointment {row.id}: patient_data is not valid JSON")
        patient_data = {}

    return Appointment(
        id=row.id,
        slot_id=row.slot_id,
        status=AppointmentStatus(row.status),
        created_at=row.created_at,
        patient_data=patient_data,
        doctor_id=row.doctor_id,
        insurance_type=row.insurance_type,
        body_side=row.body_side,
        cancelled_at=row.cancelled_at,
    )


def _to_device(row: Devices) -> Device:
    rules = []
    for wh in sorted(row.working_hours, key=lambda w: w.id):
        rules.append(_to_rule(wh))
    return Device(
        id=row.id,
        name=row.name,
        working_hours=tuple(rules),
        exceptions=tuple(
            DeviceException(on_date=ex.exception_date, reason=ex.reason or "")
            for ex in row.exceptions
        ),
    )


def _to_rule(wh: DeviceWorkingHours):
    if wh.on_date is not None:
        return DatedHours(on_date=wh.on_date, start=wh.start_time, end=wh.end_time)
    return RecurringHours(weekday=wh.day_of_week, start=wh.start_time, end=wh.end_time)


def _to_examination(row: Examinations) -> Examination:
    return Examination(
        id=row.id,
        name=row.name,
        duration_minutes=row.duration_minutes,
        device_ids=frozenset(d.id for d in row.devices),
        body_side_required=bool(row.body_side_required),
    )
