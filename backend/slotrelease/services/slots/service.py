# backend/slotrelease/services/slots/service.py
"""
Entry points used by the rest of the system.

    generate_slots      fill the store for a date window, open one slot per group
    get_available_slot  the open slot of (examination, date), pool first
    book / cancel       the only mutations besides generation

Everything else here (pool listing, rebuild, reconcile, status updates)
serves admin screens and maintenance jobs.
"""

import logging
from datetime import date
from typing import Any

from ...schemas.appointments import BookingRequest
from ...schemas.slots import GenerateSlotsRequest, GenerationReport, PoolEntry
from .booking import BookingCoordinator, emit_slot_released
from .calculator import generate_window
from .config import SchedulerConfig, get_scheduler_config
from .domain import Appointment, AppointmentStatus, GroupKey, Slot, SlotStatus
from .invalidator import get_affected_dates, invalidate_examination_pool
from .pool_cache import MISS, SlotPoolCache, entry_from_slot
from .release import ReleaseScheduler
from .store import Catalog, SlotStore

logger = logging.getLogger(__name__)


class SlotService:
    """Facade over generator, scheduler, pool cache and booking coordinator."""

    def __init__(
        self,
        store: SlotStore,
        catalog: Catalog,
        pool: SlotPoolCache,
        config: SchedulerConfig | None = None,
    ):
        self.store = store
        self.catalog = catalog
        self.pool = pool
        self.config = config or get_scheduler_config()
        self.scheduler = ReleaseScheduler(store, self.config)
        self.booking = BookingCoordinator(store, catalog, self.scheduler, pool)

    # ── Generation ───────────────────────────────────────────────────────

    def generate_slots(
        self,
        device_ids: list[int] | None = None,
        examination_ids: list[int] | None = None,
        start_date: date | None = None,
        number_of_days: int | None = None,
    ) -> GenerationReport:
        """
        Generate slots and open the earliest one of every new group.

        Safe to re-run: covered dates produce no new slots.
        """
        request = GenerateSlotsRequest(
            device_ids=device_ids,
            examination_ids=examination_ids,
            start_date=start_date,
            number_of_days=number_of_days,
        )
        start = request.start_date or date.today()
        days = request.number_of_days or self.config.generation_days
        if days > self.config.max_generation_days:
            raise ValueError(
                f"number_of_days must be <= {self.config.max_generation_days}, got {days}"
            )

        result = generate_window(
            self.store,
            self.catalog,
            start_date=start,
            number_of_days=days,
            device_ids=request.device_ids,
            examination_ids=request.examination_ids,
        )
        touched = result.pop("touched_groups")

        logger.info(f"Releasing earliest slots for {len(touched)} groups")
        opened = 0
        device_names = self._device_names()
        for key in sorted(touched):
            promoted = self.scheduler.promote_safely(key)
            current = promoted or self.scheduler.current_available(key)
            self.pool.refresh(key, current, device_names.get(current.device_id, "") if current else "")
            if promoted is not None:
                opened += 1
                emit_slot_released(promoted, self.pool)

        return GenerationReport(groups_opened=opened, **result)

    # ── Pool reads ───────────────────────────────────────────────────────

    def get_available_slot(self, examination_id: int, day: date) -> Slot | None:
        """
        The single open slot of (examination, day), or None.

        A pool miss is answered from the store and written back.
        """
        cached = self.pool.get(examination_id, day)
        if cached is None:
            return None
        if cached is not MISS:
            return Slot(
                id=cached.slot_id,
                device_id=cached.device_id,
                examination_id=cached.examination_id,
                start=cached.start_time,
                end=cached.end_time,
                status=SlotStatus.AVAILABLE,
            )

        key = GroupKey(examination_id, day)
        slot = self.scheduler.current_available(key)
        self.pool.refresh(key, slot, self._device_name(slot))
        return slot

    def list_pool(
        self,
        examination_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[PoolEntry]:
        """Dates with an open slot for an examination, ordered by date."""
        entries = self.pool.entries_for_examination(examination_id, start_date, end_date)
        if entries:
            return entries

        # Cold pool: answer from the store
        device_names = self._device_names()
        return [
            entry_from_slot(s, device_names.get(s.device_id, ""))
            for s in self.store.list_by_status(SlotStatus.AVAILABLE, start_date, end_date)
            if s.examination_id == examination_id
        ]

    def list_group_slots(self, examination_id: int, day: date) -> list[Slot]:
        """All slots of a group, ordered (admin view)."""
        return self.store.list_group(GroupKey(examination_id, day))

    # ── Booking ──────────────────────────────────────────────────────────

    def book(
        self,
        slot_id: int,
        patient_data: dict[str, Any] | None = None,
        doctor_id: str | None = None,
        insurance_type: str | None = None,
        body_side: str | None = None,
    ) -> Appointment:
        request = BookingRequest(
            slot_id=slot_id,
            patient_data=patient_data or {},
            doctor_id=doctor_id,
            insurance_type=insurance_type,
            body_side=body_side,
        )
        return self.booking.book(
            request.slot_id,
            request.patient_data,
            doctor_id=request.doctor_id,
            insurance_type=request.insurance_type,
            body_side=request.body_side,
        )

    def cancel(self, appointment_id: int) -> Appointment:
        return self.booking.cancel(appointment_id)

    def update_appointment_status(
        self,
        appointment_id: int,
        status: AppointmentStatus | str,
    ) -> Appointment:
        return self.booking.update_status(appointment_id, AppointmentStatus(status))

    def get_appointment(self, appointment_id: int) -> Appointment | None:
        return self.store.get_appointment(appointment_id)

    # ── Maintenance ──────────────────────────────────────────────────────

    def rebuild_pool(self) -> int:
        """Rewrite the whole pool from the store's available slots."""
        device_names = self._device_names()
        entries: dict[GroupKey, PoolEntry] = {}
        for slot in self.store.list_by_status(SlotStatus.AVAILABLE):
            key = slot.group_key
            if key in entries:
                # list_by_status is ordered, the first one is the earliest
                logger.error(f"More than one available slot in {key}, keeping the earliest")
                continue
            entries[key] = entry_from_slot(slot, device_names.get(slot.device_id, ""))
        return self.pool.rebuild(list(entries.values()))

    def reconcile(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Slot]:
        """Open a slot in every group left without one."""
        promoted = self.scheduler.reconcile(start_date, end_date)
        device_names = self._device_names() if promoted else {}
        for slot in promoted:
            self.pool.refresh(slot.group_key, slot, device_names.get(slot.device_id, ""))
            emit_slot_released(slot, self.pool)
        return promoted

    def invalidate_pool(
        self,
        examination_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> int:
        """Drop cached pool entries of an examination (all dates, or a range)."""
        dates = None
        if start_date is not None:
            dates = get_affected_dates(start_date, end_date or start_date)
        return invalidate_examination_pool(self.pool, examination_id, dates)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _device_names(self) -> dict[int, str]:
        return {d.id: d.name for d in self.catalog.list_devices()}

    def _device_name(self, slot: Slot | None) -> str:
        if slot is None:
            return ""
        device = self.catalog.get_device(slot.device_id)
        return device.name if device else ""


def build_service(config: SchedulerConfig | None = None) -> SlotService:
    """SlotService wired to the configured database and Redis."""
    from ...database import SessionLocal
    from ...redis_client import redis_client
    from .sql_store import SqlCatalog, SqlSlotStore

    config = config or get_scheduler_config()
    return SlotService(
        store=SqlSlotStore(SessionLocal),
        catalog=SqlCatalog(SessionLocal),
        pool=SlotPoolCache(redis_client, config),
        config=config,
    )
