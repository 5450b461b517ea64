# backend/slotrelease/services/slots/store.py
"""
Slot store and catalog interfaces, plus in-memory implementations.

Every status change goes through transition(), a compare-and-swap:
it applies only if the slot still has the expected status and reports
whether it did. A transition to AVAILABLE also expects the slot's group
to have no available slot, checked in the same atomic step.

The in-memory variants are used by tests and by single-process embedding;
sql_store.py holds the relational ones.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date, datetime
from itertools import count

from .domain import (
    Appointment,
    AppointmentDraft,
    AppointmentStatus,
    Device,
    Examination,
    GroupKey,
    Slot,
    SlotDraft,
    SlotStatus,
    is_forward,
)


def check_forward(from_status: SlotStatus, to_status: SlotStatus) -> None:
    if not is_forward(from_status, to_status):
        raise ValueError(f"Illegal slot transition {from_status.value} -> {to_status.value}")


class SlotStore(ABC):
    """Durable collection of slots and the appointments consuming them."""

    # ── Slots ────────────────────────────────────────────────────────────

    @abstractmethod
    def insert(self, draft: SlotDraft) -> Slot:
        """Persist a new slot."""

    @abstractmethod
    def get(self, slot_id: int) -> Slot | None:
        ...

    @abstractmethod
    def find_overlapping(self, device_id: int, start: datetime, end: datetime) -> list[Slot]:
        """Slots of device_id whose [start, end) intersects [start, end)."""

    @abstractmethod
    def list_group(self, key: GroupKey, status: SlotStatus | None = None) -> list[Slot]:
        """Slots of a group ordered by (start, id)."""

    @abstractmethod
    def count_group(self, key: GroupKey, status: SlotStatus) -> int:
        ...

    @abstractmethod
    def list_by_status(
        self,
        status: SlotStatus,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Slot]:
        """Slots with status, optionally limited to [start_date, end_date], ordered."""

    @abstractmethod
    def stalled_groups(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[GroupKey]:
        """Groups with no available slot but at least one blocked slot."""

    @abstractmethod
    def transition(self, slot_id: int, from_status: SlotStatus, to_status: SlotStatus) -> bool:
        """
        Compare-and-swap the status of a slot.

        Returns:
            True if the slot had from_status and now has to_status,
            False if nothing changed.

        Raises:
            ValueError: to_status is not the next state after from_status.
        """

    # ── Appointments ─────────────────────────────────────────────────────

    @abstractmethod
    def add_appointment(self, draft: AppointmentDraft) -> Appointment:
        ...

    @abstractmethod
    def get_appointment(self, appointment_id: int) -> Appointment | None:
        ...

    @abstractmethod
    def transition_appointment(
        self,
        appointment_id: int,
        from_status: AppointmentStatus,
        to_status: AppointmentStatus,
        at: datetime | None = None,
    ) -> bool:
        """Compare-and-swap the status of an appointment."""

    @abstractmethod
    def list_appointments(self, status: AppointmentStatus | None = None) -> list[Appointment]:
        ...


class Catalog(ABC):
    """Read-only view of devices and examinations."""

    @abstractmethod
    def list_devices(self, ids: list[int] | None = None) -> list[Device]:
        ...

    @abstractmethod
    def get_device(self, device_id: int) -> Device | None:
        ...

    @abstractmethod
    def list_examinations(self, ids: list[int] | None = None) -> list[Examination]:
        ...

    @abstractmethod
    def get_examination(self, examination_id: int) -> Examination | None:
        ...


# ── In-memory ────────────────────────────────────────────────────────────


class InMemorySlotStore(SlotStore):
    """Dict-backed store; one lock makes every method atomic."""

    def __init__(self):
        self._lock = threading.Lock()
        self._slots: dict[int, Slot] = {}
        self._appointments: dict[int, Appointment] = {}
        self._slot_ids = count(1)
        self._appointment_ids = count(1)

    def insert(self, draft: SlotDraft) -> Slot:
        with self._lock:
            slot = Slot(
                id=next(self._slot_ids),
                device_id=draft.device_id,
                examination_id=draft.examination_id,
                start=draft.start,
                end=draft.end,
                status=draft.status,
            )
            self._slots[slot.id] = slot
            return slot

    def get(self, slot_id: int) -> Slot | None:
        with self._lock:
            return self._slots.get(slot_id)

    def find_overlapping(self, device_id: int, start: datetime, end: datetime) -> list[Slot]:
        with self._lock:
            found = [
                s for s in self._slots.values()
                if s.device_id == device_id and s.overlaps(start, end)
            ]
        return sorted(found, key=lambda s: s.sort_key)

    def list_group(self, key: GroupKey, status: SlotStatus | None = None) -> list[Slot]:
        with self._lock:
            found = [
                s for s in self._slots.values()
                if s.group_key == key and (status is None or s.status == status)
            ]
        return sorted(found, key=lambda s: s.sort_key)

    def count_group(self, key: GroupKey, status: SlotStatus) -> int:
        with self._lock:
            return self._count_group(key, status)

    def _count_group(self, key: GroupKey, status: SlotStatus) -> int:
        return sum(
            1 for s in self._slots.values()
            if s.group_key == key and s.status == status
        )

    def list_by_status(
        self,
        status: SlotStatus,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Slot]:
        with self._lock:
            found = [
                s for s in self._slots.values()
                if s.status == status and _in_range(s.start.date(), start_date, end_date)
            ]
        return sorted(found, key=lambda s: (s.examination_id, s.start, s.id))

    def stalled_groups(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[GroupKey]:
        blocked: set[GroupKey] = set()
        open_: set[GroupKey] = set()
        with self._lock:
            for s in self._slots.values():
                if not _in_range(s.start.date(), start_date, end_date):
                    continue
                if s.status == SlotStatus.BLOCKED:
                    blocked.add(s.group_key)
                elif s.status == SlotStatus.AVAILABLE:
                    open_.add(s.group_key)
        return sorted(blocked - open_)

    def transition(self, slot_id: int, from_status: SlotStatus, to_status: SlotStatus) -> bool:
        check_forward(from_status, to_status)
        with self._lock:
            slot = self._slots.get(slot_id)
            if slot is None or slot.status != from_status:
                return False
            if to_status == SlotStatus.AVAILABLE and self._count_group(slot.group_key, SlotStatus.AVAILABLE):
                return False
            self._slots[slot_id] = slot.with_status(to_status)
            return True

    def add_appointment(self, draft: AppointmentDraft) -> Appointment:
        with self._lock:
            if any(a.slot_id == draft.slot_id for a in self._appointments.values()):
                raise ValueError(f"Slot {draft.slot_id} already has an appointment")
            appointment = Appointment(
                id=next(self._appointment_ids),
                slot_id=draft.slot_id,
                status=draft.status,
                created_at=draft.created_at,
                patient_data=dict(draft.patient_data),
                doctor_id=draft.doctor_id,
                insurance_type=draft.insurance_type,
                body_side=draft.body_side,
            )
            self._appointments[appointment.id] = appointment
            return appointment

    def get_appointment(self, appointment_id: int) -> Appointment | None:
        with self._lock:
            return self._appointments.get(appointment_id)

    def transition_appointment(
        self,
        appointment_id: int,
        from_status: AppointmentStatus,
        to_status: AppointmentStatus,
        at: datetime | None = None,
    ) -> bool:
        with self._lock:
            appointment = self._appointments.get(appointment_id)
            if appointment is None or appointment.status != from_status:
                return False
            changes = {"status": to_status}
            if to_status == AppointmentStatus.CANCELLED:
                changes["cancelled_at"] = at or datetime.now()
            self._appointments[appointment_id] = replace(appointment, **changes)
            return True

    def list_appointments(self, status: AppointmentStatus | None = None) -> list[Appointment]:
        with self._lock:
            found = [
                a for a in self._appointments.values()
                if status is None or a.status == status
            ]
        return sorted(found, key=lambda a: a.id)


class InMemoryCatalog(Catalog):

    def __init__(self, devices: list[Device] = (), examinations: list[Examination] = ()):
        self._devices = {d.id: d for d in devices}
        self._examinations = {e.id: e for e in examinations}

    def list_devices(self, ids: list[int] | None = None) -> list[Device]:
        return [
            d for d_id, d in sorted(self._devices.items())
            if not ids or d_id in ids
        ]

    def get_device(self, device_id: int) -> Device | None:
        return self._devices.get(device_id)

    def list_examinations(self, ids: list[int] | None = None) -> list[Examination]:
        return [
            e for e_id, e in sorted(self._examinations.items())
            if not ids or e_id in ids
        ]

    def get_examination(self, examination_id: int) -> Examination | None:
        return self._examinations.get(examination_id)


def _in_range(day: date, start_date: date | None, end_date: date | None) -> bool:
    if start_date is not None and day < start_date:
        return False
    if end_date is not None and day > end_date:
        return False
    return True
