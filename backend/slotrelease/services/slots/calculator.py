# backend/slotrelease/services/slots/calculator.py
"""
Slot generation.

For every (device, examination, date) where the device may perform the
examination, the device's open window is cut into back-to-back slots of
the examination's duration:

  window 08:00–10:00, duration 30 → 08:00, 08:30, 09:00, 09:30

✓ Remainder shorter than one duration is dropped (no partial slots)
✓ Candidates intersecting any existing slot of the device are skipped
✓ New slots are always BLOCKED; release.py opens them one at a time

The overlap check guards against concurrent generation runs and manually
entered slots. Because of it a second run over the same dates inserts
nothing.
"""

import logging
from datetime import date, timedelta

from .availability import find_exception, resolve_open_window
from .domain import Device, Examination, GroupKey, Slot, SlotDraft, SlotStatus
from .exceptions import ConfigurationError
from .store import Catalog, SlotStore

logger = logging.getLogger(__name__)


def generate_day_slots(
    store: SlotStore,
    device: Device,
    examination: Examination,
    target_date: date,
) -> list[Slot]:
    """
    Generate and persist slots for one device/examination/date.

    Returns:
        Newly inserted slots (empty when closed or already covered).

    Raises:
        ConfigurationError: Device working hours are unusable for target_date.
    """
    window = resolve_open_window(device, target_date)
    if window is None:
        return []

    window_start, window_end = window.at(target_date)
    duration = timedelta(minutes=examination.duration_minutes)

    created: list[Slot] = []
    cursor = window_start
    while cursor + duration <= window_end:
        slot_end = cursor + duration

        if not store.find_overlapping(device.id, cursor, slot_end):
            created.append(store.insert(SlotDraft(
                device_id=device.id,
                examination_id=examination.id,
                start=cursor,
                end=slot_end,
                status=SlotStatus.BLOCKED,
            )))

        cursor = slot_end

    return created


def generate_window(
    store: SlotStore,
    catalog: Catalog,
    start_date: date,
    number_of_days: int,
    device_ids: list[int] | None = None,
    examination_ids: list[int] | None = None,
) -> dict:
    """
    Generate slots for every eligible device × examination × date.

    Errors are per device/day: a ConfigurationError skips that pair and is
    reported; store failures propagate and abort the run.

    Returns:
        Dict for GenerationReport (plus "touched_groups": set of GroupKey
        that received new slots).
    """
    devices = catalog.list_devices(device_ids)
    examinations = catalog.list_examinations(examination_ids)
    logger.info(
        f"Generating slots for {number_of_days} days from {start_date.isoformat()}: "
        f"{len(devices)} devices, {len(examinations)} examinations"
    )

    slots_created = 0
    skipped_device_days = 0
    errors: list[dict] = []
    details: list[dict] = []
    touched: set[GroupKey] = set()

    for device in devices:
        relevant = [ex for ex in examinations if device.id in ex.device_ids]
        if not relevant:
            logger.info(f"No relevant examinations for device {device.name}, skipping")
            continue

        for offset in range(number_of_days):
            target_date = start_date + timedelta(days=offset)

            try:
                window = resolve_open_window(device, target_date)
            except ConfigurationError as e:
                logger.warning(f"Skipping device {device.name} on {target_date.isoformat()}: {e}")
                skipped_device_days += 1
                errors.append({
                    "device_id": device.id,
                    "date": target_date,
                    "message": str(e),
                })
                continue

            if window is None:
                exception = find_exception(device, target_date)
                if exception is not None:
                    logger.info(
                        f"Skipping {target_date.isoformat()} for device {device.name} "
                        f"due to exception: {exception.reason}"
                    )
                else:
                    logger.info(f"No working hours for device {device.name} on {target_date.isoformat()}")
                skipped_device_days += 1
                continue

            for exam in relevant:
                created = generate_day_slots(store, device, exam, target_date)
                if not created:
                    continue

                slots_created += len(created)
                touched.add(GroupKey(exam.id, target_date))
                details.append({
                    "device_id": device.id,
                    "examination_id": exam.id,
                    "date": target_date,
                    "slots": len(created),
                })
                logger.info(
                    f"Created {len(created)} slots for {exam.name} on {device.name} "
                    f"({target_date.isoformat()})"
                )

    return {
        "start_date": start_date,
        "number_of_days": number_of_days,
        "slots_created": slots_created,
        "skipped_device_days": skipped_device_days,
        "errors": errors,
        "details": details,
        "touched_groups": touched,
    }
