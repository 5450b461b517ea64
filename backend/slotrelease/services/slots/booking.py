# backend/slotrelease/services/slots/booking.py
"""
Booking coordinator.

book():
1. Read slot; it must be AVAILABLE
2. CAS AVAILABLE → BOOKED (losing the race = SlotNoLongerAvailable)
3. Persist appointment (pending)
4. Promote the next blocked slot of the same examination/day
5. Point the pool entry at the promoted slot (or mark it empty)

The order of 2 → 3 → 4 is fixed. A crash in between can leave a group
without an open slot but never with two; ReleaseScheduler.reconcile()
picks such groups up.

A booking rejected with SlotNoLongerAvailable rewrites the pool entry of
the group from the store, so a stale entry is served at most once.

Cancellation leaves the slot BOOKED (slots never go backwards) and only
re-runs promotion for the group.
"""

import logging
from datetime import datetime
from typing import Any

from ..events import emit_event
from .domain import (
    APPOINTMENT_TRANSITIONS,
    Appointment,
    AppointmentDraft,
    AppointmentStatus,
    GroupKey,
    Slot,
    SlotStatus,
)
from .exceptions import (
    AppointmentNotFound,
    BookingValidationError,
    SlotNoLongerAvailable,
    SlotNotFound,
)
from .pool_cache import SlotPoolCache
from .release import ReleaseScheduler
from .store import Catalog, SlotStore

logger = logging.getLogger(__name__)


class BookingCoordinator:

    def __init__(
        self,
        store: SlotStore,
        catalog: Catalog,
        scheduler: ReleaseScheduler,
        pool: SlotPoolCache,
    ):
        self.store = store
        self.catalog = catalog
        self.scheduler = scheduler
        self.pool = pool

    def book(
        self,
        slot_id: int,
        patient_data: dict[str, Any],
        doctor_id: str | None = None,
        insurance_type: str | None = None,
        body_side: str | None = None,
    ) -> Appointment:
        """
        Book an available slot.

        Raises:
            SlotNotFound: No such slot.
            SlotNoLongerAvailable: Slot is not open (taken, or not released yet).
            BookingValidationError: The examination needs a body side.
            StoreUnavailable: Store failure; nothing is assumed committed.
        """
        # Step 1: Validate against the store, never the pool
        slot = self.store.get(slot_id)
        if slot is None:
            raise SlotNotFound(slot_id)
        if slot.status != SlotStatus.AVAILABLE:
            # Possibly picked from a stale pool entry
            self._refresh_pool(slot.group_key)
            raise SlotNoLongerAvailable(slot_id)

        examination = self.catalog.get_examination(slot.examination_id)
        if examination is not None and examination.body_side_required and not body_side:
            raise BookingValidationError(
                f"Examination {examination.name} requires a body side"
            )

        # Step 2: Take the slot
        if not self.store.transition(slot_id, SlotStatus.AVAILABLE, SlotStatus.BOOKED):
            logger.info(f"Slot {slot_id} lost to a concurrent booking")
            self._refresh_pool(slot.group_key)
            raise SlotNoLongerAvailable(slot_id)

        # Step 3: Persist the appointment
        appointment = self.store.add_appointment(AppointmentDraft(
            slot_id=slot_id,
            patient_data=patient_data,
            created_at=datetime.now(),
            doctor_id=doctor_id,
            insurance_type=insurance_type,
            body_side=body_side,
        ))
        logger.info(f"Appointment {appointment.id} booked slot {slot_id} ({slot.start:%Y-%m-%d %H:%M})")

        # Step 4-5: Release the next slot and refresh the pool
        promoted = self._release_next(slot.group_key)

        emit_event("appointment_booked", {
            "appointment_id": appointment.id,
            "slot_id": slot_id,
            "examination_id": slot.examination_id,
            "device_id": slot.device_id,
            "start_time": slot.start.isoformat(),
        }, redis=self.pool.redis)
        if promoted is not None:
            emit_slot_released(promoted, self.pool)

        return appointment

    def cancel(self, appointment_id: int) -> Appointment:
        """
        Cancel an appointment.

        The slot stays booked; the group only gets a promotion attempt,
        which opens a slot if the group was left without one.

        Raises:
            AppointmentNotFound: No such appointment.
            BookingValidationError: Appointment is already completed.
        """
        appointment = self._get_appointment(appointment_id)
        if appointment.status == AppointmentStatus.CANCELLED:
            return appointment

        self._change_status(appointment, AppointmentStatus.CANCELLED)
        cancelled = self._get_appointment(appointment_id)
        logger.info(f"Appointment {appointment_id} cancelled")

        slot = self.store.get(cancelled.slot_id)
        if slot is not None:
            promoted = self._release_next(slot.group_key)
            if promoted is not None:
                emit_slot_released(promoted, self.pool)

        emit_event("appointment_cancelled", {
            "appointment_id": appointment_id,
            "slot_id": cancelled.slot_id,
        }, redis=self.pool.redis)
        return cancelled

    def update_status(self, appointment_id: int, status: AppointmentStatus) -> Appointment:
        """
        Move an appointment along pending → confirmed → completed.

        Cancelling goes through cancel().
        """
        if status == AppointmentStatus.CANCELLED:
            return self.cancel(appointment_id)

        appointment = self._get_appointment(appointment_id)
        if appointment.status == status:
            return appointment

        self._change_status(appointment, status)
        emit_event("appointment_status", {
            "appointment_id": appointment_id,
            "status": status.value,
        }, redis=self.pool.redis)
        return self._get_appointment(appointment_id)

    # ── Helpers ──────────────────────────────────────────────────────────

    def _get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.store.get_appointment(appointment_id)
        if appointment is None:
            raise AppointmentNotFound(appointment_id)
        return appointment

    def _change_status(self, appointment: Appointment, status: AppointmentStatus) -> None:
        if status not in APPOINTMENT_TRANSITIONS[appointment.status]:
            raise BookingValidationError(
                f"Appointment {appointment.id} cannot go from "
                f"{appointment.status.value} to {status.value}"
            )
        if not self.store.transition_appointment(appointment.id, appointment.status, status):
            # Someone else changed it first
            current = self._get_appointment(appointment.id)
            if current.status == status:
                return
            raise BookingValidationError(
                f"Appointment {appointment.id} changed concurrently "
                f"(now {current.status.value})"
            )

    def _release_next(self, key: GroupKey) -> Slot | None:
        promoted = self.scheduler.promote_safely(key)
        if promoted is not None:
            self.pool.refresh(key, promoted, self._device_name(promoted))
        else:
            self._refresh_pool(key)
        return promoted

    def _refresh_pool(self, key: GroupKey) -> None:
        """Point the pool entry of a group at whatever the store has open."""
        current = self.scheduler.current_available(key)
        self.pool.refresh(key, current, self._device_name(current))

    def _device_name(self, slot: Slot | None) -> str:
        if slot is None:
            return ""
        device = self.catalog.get_device(slot.device_id)
        return device.name if device else ""


def emit_slot_released(slot: Slot, pool: SlotPoolCache) -> None:
    emit_event("slot_released", {
        "slot_id": slot.id,
        "examination_id": slot.examination_id,
        "date": slot.start.date().isoformat(),
        "start_time": slot.start.isoformat(),
    }, redis=pool.redis)
