# backend/slotrelease/services/slots/domain.py
"""
Domain types shared by the resolver, generator, stores and coordinator.

Stores hand out immutable snapshots; a status change is always a new
snapshot obtained through the store, never an in-place mutation.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, NamedTuple


class SlotStatus(str, Enum):
    BLOCKED = "blocked"
    AVAILABLE = "available"
    BOOKED = "booked"


# Forward-only: blocked -> available -> booked
SLOT_STATUS_ORDER = {
    SlotStatus.BLOCKED: 0,
    SlotStatus.AVAILABLE: 1,
    SlotStatus.BOOKED: 2,
}


def is_forward(from_status: SlotStatus, to_status: SlotStatus) -> bool:
    return SLOT_STATUS_ORDER[to_status] == SLOT_STATUS_ORDER[from_status] + 1


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


APPOINTMENT_TRANSITIONS = {
    AppointmentStatus.PENDING: {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED},
    AppointmentStatus.CONFIRMED: {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED},
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
}


class GroupKey(NamedTuple):
    """(examination, calendar day): the unit of the single-open-slot rule."""
    examination_id: int
    day: date

    def __str__(self) -> str:
        return f"examination={self.examination_id} date={self.day.isoformat()}"


# ── Devices & examinations ───────────────────────────────────────────────


@dataclass(frozen=True)
class RecurringHours:
    """Weekly rule. weekday follows date.weekday(): 0 = Monday."""
    weekday: int
    start: str
    end: str


@dataclass(frozen=True)
class DatedHours:
    """Working hours for one explicit date; wins over RecurringHours."""
    on_date: date
    start: str
    end: str


WorkingHoursRule = RecurringHours | DatedHours


@dataclass(frozen=True)
class DeviceException:
    """Device closed for the whole day."""
    on_date: date
    reason: str = ""


@dataclass(frozen=True)
class Device:
    id: int
    name: str
    working_hours: tuple[WorkingHoursRule, ...] = ()
    exceptions: tuple[DeviceException, ...] = ()


@dataclass(frozen=True)
class Examination:
    id: int
    name: str
    duration_minutes: int
    device_ids: frozenset[int] = frozenset()
    body_side_required: bool = False

    def __post_init__(self):
        if self.duration_minutes <= 0:
            raise ValueError(f"duration_minutes must be > 0, got {self.duration_minutes}")


@dataclass(frozen=True)
class OpenWindow:
    """Open interval of a device on a day, in minutes since midnight."""
    start_minute: int
    end_minute: int

    def at(self, day: date) -> tuple[datetime, datetime]:
        midnight = datetime.combine(day, datetime.min.time())
        return (
            midnight + timedelta(minutes=self.start_minute),
            midnight + timedelta(minutes=self.end_minute),
        )


# ── Slots & appointments ─────────────────────────────────────────────────


@dataclass(frozen=True)
class SlotDraft:
    """A slot that has not been persisted yet."""
    device_id: int
    examination_id: int
    start: datetime
    end: datetime
    status: SlotStatus = SlotStatus.BLOCKED


@dataclass(frozen=True)
class Slot:
    id: int
    device_id: int
    examination_id: int
    start: datetime
    end: datetime
    status: SlotStatus

    @property
    def group_key(self) -> GroupKey:
        return GroupKey(self.examination_id, self.start.date())

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.start, self.id)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and self.end > start

    def with_status(self, status: SlotStatus) -> Slot:
        return replace(self, status=status)


@dataclass(frozen=True)
class AppointmentDraft:
    slot_id: int
    patient_data: dict[str, Any]
    created_at: datetime
    doctor_id: str | None = None
    insurance_type: str | None = None
    body_side: str | None = None
    status: AppointmentStatus = AppointmentStatus.PENDING


@dataclass(frozen=True)
class Appointment:
    id: int
    slot_id: int
    status: AppointmentStatus
    created_at: datetime
    patient_data: dict[str, Any] = field(default_factory=dict)
    doctor_id: str | None = None
    insurance_type: str | None = None
    body_side: str | None = None
    cancelled_at: datetime | None = None
