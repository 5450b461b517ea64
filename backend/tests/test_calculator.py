from datetime import datetime

from slotrelease.services.slots.calculator import generate_day_slots, generate_window
from slotrelease.services.slots.domain import (
    Device,
    DeviceException,
    Examination,
    GroupKey,
    RecurringHours,
    SlotDraft,
    SlotStatus,
)
from slotrelease.services.slots.store import InMemoryCatalog

from .conftest import MONDAY, TUESDAY, weekday_hours


def test_window_is_cut_into_blocked_slots(store, device, examination):
    created = generate_day_slots(store, device, examination, MONDAY)

    assert [s.start.strftime("%H:%M") for s in created] == ["08:00", "08:30", "09:00", "09:30"]
    assert all(s.status == SlotStatus.BLOCKED for s in created)
    assert created[-1].end == datetime(2025, 5, 19, 10, 0)


def test_remainder_is_dropped(store):
    device = Device(id=1, name="MRT-1", working_hours=weekday_hours("08:00", "09:50"))
    exam = Examination(id=10, name="Knee MRI", duration_minutes=30, device_ids=frozenset({1}))

    assert len(generate_day_slots(store, device, exam, MONDAY)) == 3


def test_second_run_creates_nothing(store, device, examination):
    generate_day_slots(store, device, examination, MONDAY)
    assert generate_day_slots(store, device, examination, MONDAY) == []
    assert len(store.list_group(GroupKey(10, MONDAY))) == 4


def test_existing_slot_on_device_is_not_overlapped(store, device, examination):
    store.insert(SlotDraft(
        device_id=1,
        examination_id=99,
        start=datetime(2025, 5, 19, 8, 15),
        end=datetime(2025, 5, 19, 8, 45),
    ))

    created = generate_day_slots(store, device, examination, MONDAY)

    assert [s.start.strftime("%H:%M") for s in created] == ["09:00", "09:30"]


def test_two_examinations_share_one_device(store, device):
    knee = Examination(id=10, name="Knee MRI", duration_minutes=30, device_ids=frozenset({1}))
    head = Examination(id=11, name="Head MRI", duration_minutes=60, device_ids=frozenset({1}))
    catalog = InMemoryCatalog(devices=[device], examinations=[knee, head])

    result = generate_window(store, catalog, MONDAY, 1)

    # Knee fills the window first; nothing is left for the head exam
    assert result["slots_created"] == 4
    assert result["touched_groups"] == {GroupKey(10, MONDAY)}
    slots = store.list_by_status(SlotStatus.BLOCKED)
    for a in slots:
        for b in slots:
            assert a.id == b.id or not a.overlaps(b.start, b.end)


def test_exception_day_gets_no_slots(store, examination):
    device = Device(
        id=1,
        name="MRT-1",
        working_hours=weekday_hours(),
        exceptions=(DeviceException(on_date=TUESDAY, reason="Maintenance"),),
    )
    catalog = InMemoryCatalog(devices=[device], examinations=[examination])

    result = generate_window(store, catalog, MONDAY, 2)

    assert result["slots_created"] == 4
    assert result["skipped_device_days"] == 1
    assert result["touched_groups"] == {GroupKey(10, MONDAY)}
    assert store.list_group(GroupKey(10, TUESDAY)) == []


def test_configuration_error_is_reported_and_other_devices_continue(store):
    good = Device(id=1, name="MRT-1", working_hours=weekday_hours())
    bad = Device(id=2, name="MRT-2", working_hours=(RecurringHours(weekday=0, start="10:00", end="08:00"),))
    exam = Examination(id=10, name="Knee MRI", duration_minutes=30, device_ids=frozenset({1, 2}))
    catalog = InMemoryCatalog(devices=[good, bad], examinations=[exam])

    result = generate_window(store, catalog, MONDAY, 1)

    assert result["slots_created"] == 4
    assert len(result["errors"]) == 1
    assert result["errors"][0]["device_id"] == 2
    assert result["errors"][0]["date"] == MONDAY


def test_filters_and_unrelated_devices(store, examination):
    mrt = Device(id=1, name="MRT-1", working_hours=weekday_hours())
    xray = Device(id=2, name="X-Ray", working_hours=weekday_hours())
    catalog = InMemoryCatalog(devices=[mrt, xray], examinations=[examination])

    assert generate_window(store, catalog, MONDAY, 1, device_ids=[2])["slots_created"] == 0
    assert generate_window(store, catalog, MONDAY, 1, examination_ids=[999])["slots_created"] == 0

    result = generate_window(store, catalog, MONDAY, 1, device_ids=[1])
    assert result["slots_created"] == 4
    assert result["details"] == [{"device_id": 1, "examination_id": 10, "date": MONDAY, "slots": 4}]
