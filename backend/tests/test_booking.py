import json
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from slotrelease.services.events import EVENTS_QUEUE
from slotrelease.services.slots.booking import BookingCoordinator
from slotrelease.services.slots.domain import AppointmentStatus, Examination, GroupKey, SlotStatus
from slotrelease.services.slots.exceptions import (
    AppointmentNotFound,
    BookingValidationError,
    SlotNoLongerAvailable,
    SlotNotFound,
)
from slotrelease.services.slots.pool_cache import entry_from_slot
from slotrelease.services.slots.release import ReleaseScheduler
from slotrelease.services.slots.service import SlotService
from slotrelease.services.slots.store import InMemoryCatalog

from .conftest import MONDAY

KEY = GroupKey(10, MONDAY)


@pytest.fixture
def generated(service):
    service.generate_slots(start_date=MONDAY, number_of_days=1)
    return service.list_group_slots(10, MONDAY)


def test_booking_releases_slots_in_order(service, generated):
    booked_times = []
    while True:
        slot = service.get_available_slot(10, MONDAY)
        if slot is None:
            break
        service.book(slot.id, {"name": "Jane"})
        booked_times.append(slot.start.strftime("%H:%M"))

    assert booked_times == ["08:00", "08:30", "09:00", "09:30"]
    assert all(s.status == SlotStatus.BOOKED for s in service.list_group_slots(10, MONDAY))
    assert service.pool.get(10, MONDAY) is None


def test_each_booking_opens_exactly_the_next_slot(service, store, generated):
    first = service.get_available_slot(10, MONDAY)

    appointment = service.book(first.id, {"name": "Jane"}, doctor_id="D-1", insurance_type="public")

    assert appointment.status == AppointmentStatus.PENDING
    assert appointment.doctor_id == "D-1"
    available = store.list_group(KEY, SlotStatus.AVAILABLE)
    assert [s.start.strftime("%H:%M") for s in available] == ["08:30"]
    assert service.get_available_slot(10, MONDAY).id == available[0].id


def test_blocked_slot_cannot_be_booked(service, generated):
    with pytest.raises(SlotNoLongerAvailable):
        service.book(generated[2].id)


def test_booked_slot_cannot_be_booked_twice(service, generated):
    service.book(generated[0].id)
    with pytest.raises(SlotNoLongerAvailable) as exc_info:
        service.book(generated[0].id)
    assert "pick again" in exc_info.value.user_message


def test_unknown_slot(service):
    with pytest.raises(SlotNotFound):
        service.book(12345)


def test_body_side_required(store, device, pool, config):
    exam = Examination(
        id=10, name="Knee MRI", duration_minutes=30,
        device_ids=frozenset({1}), body_side_required=True,
    )
    service = SlotService(store, InMemoryCatalog([device], [exam]), pool, config)
    service.generate_slots(start_date=MONDAY, number_of_days=1)
    slot = service.get_available_slot(10, MONDAY)

    with pytest.raises(BookingValidationError):
        service.book(slot.id)
    assert store.get(slot.id).status == SlotStatus.AVAILABLE

    appointment = service.book(slot.id, body_side="left")
    assert appointment.body_side == "left"


def test_concurrent_bookings_of_one_slot(store, catalog, config, generated):
    pool = MagicMock()
    coordinator = BookingCoordinator(store, catalog, ReleaseScheduler(store, config), pool)
    open_slot = store.list_group(KEY, SlotStatus.AVAILABLE)[0]

    def attempt(i):
        try:
            return coordinator.book(open_slot.id, {"name": f"patient-{i}"})
        except SlotNoLongerAvailable:
            return None

    with ThreadPoolExecutor(max_workers=10) as executor:
        results = list(executor.map(attempt, range(10)))

    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert len(store.list_appointments()) == 1
    available = store.list_group(KEY, SlotStatus.AVAILABLE)
    assert [s.start.strftime("%H:%M") for s in available] == ["08:30"]


def test_concurrent_bookings_across_the_group(store, catalog, config, generated):
    coordinator = BookingCoordinator(store, catalog, ReleaseScheduler(store, config), MagicMock())

    def grab(_):
        # Each client keeps picking the current open slot until the day is full
        booked = 0
        while True:
            available = store.list_group(KEY, SlotStatus.AVAILABLE)
            if not available:
                return booked
            try:
                coordinator.book(available[0].id, {})
                booked += 1
            except SlotNoLongerAvailable:
                continue

    with ThreadPoolExecutor(max_workers=4) as executor:
        totals = list(executor.map(grab, range(4)))

    assert sum(totals) == 4
    assert store.count_group(KEY, SlotStatus.BOOKED) == 4
    assert store.count_group(KEY, SlotStatus.AVAILABLE) == 0


def test_cancel_keeps_slot_booked(service, store, generated):
    appointment = service.book(generated[0].id, {"name": "Jane"})

    cancelled = service.cancel(appointment.id)

    assert cancelled.status == AppointmentStatus.CANCELLED
    assert cancelled.cancelled_at is not None
    assert store.get(generated[0].id).status == SlotStatus.BOOKED
    # Still exactly the one open slot
    assert [s.id for s in store.list_group(KEY, SlotStatus.AVAILABLE)] == [generated[1].id]
    # Cancelling again is a no-op
    assert service.cancel(appointment.id).cancelled_at == cancelled.cancelled_at


def test_cancel_reopens_a_stalled_group(service, store, generated):
    appointment = service.book(generated[0].id)
    # Simulate a lost promotion: book the open slot behind the coordinator's back
    store.transition(generated[1].id, SlotStatus.AVAILABLE, SlotStatus.BOOKED)
    assert store.stalled_groups() == [KEY]

    service.cancel(appointment.id)

    assert [s.id for s in store.list_group(KEY, SlotStatus.AVAILABLE)] == [generated[2].id]
    assert service.get_available_slot(10, MONDAY).id == generated[2].id


def test_cancel_unknown_appointment(service):
    with pytest.raises(AppointmentNotFound):
        service.cancel(42)


def test_status_updates(service, generated):
    appointment = service.book(generated[0].id)

    with pytest.raises(BookingValidationError):
        service.update_appointment_status(appointment.id, "completed")

    assert service.update_appointment_status(appointment.id, "confirmed").status == AppointmentStatus.CONFIRMED
    assert service.update_appointment_status(appointment.id, "completed").status == AppointmentStatus.COMPLETED

    with pytest.raises(BookingValidationError):
        service.cancel(appointment.id)


def test_booking_events(service, redis, generated):
    redis.delete(EVENTS_QUEUE)
    appointment = service.book(generated[0].id, {"name": "Jane"})

    events = [json.loads(raw) for raw in redis.lrange(EVENTS_QUEUE, 0, -1)]

    assert [e["type"] for e in events] == ["appointment_booked", "slot_released"]
    assert events[0]["appointment_id"] == appointment.id
    assert events[1]["slot_id"] == generated[1].id


def test_stale_pool_entry_is_repaired_by_the_rejected_booking(service, store, generated):
    first = service.get_available_slot(10, MONDAY)
    service.book(first.id)
    # A late refresh from another booker points the pool back at the booked slot
    service.pool.put(entry_from_slot(store.get(first.id), "MRT-1"))
    assert service.get_available_slot(10, MONDAY).id == first.id

    with pytest.raises(SlotNoLongerAvailable):
        service.book(first.id)

    assert service.get_available_slot(10, MONDAY).id == generated[1].id


def test_lost_booking_race_repairs_the_pool(service, store, generated, monkeypatch):
    open_slot = service.get_available_slot(10, MONDAY)
    # Pool points somewhere else while the store still has open_slot available
    service.pool.put_empty(10, MONDAY)
    monkeypatch.setattr(store, "transition", lambda *args: False)

    with pytest.raises(SlotNoLongerAvailable):
        service.book(open_slot.id)

    assert service.get_available_slot(10, MONDAY).id == open_slot.id
