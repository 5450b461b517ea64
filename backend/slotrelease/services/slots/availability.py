# backend/slotrelease/services/slots/availability.py
"""
Availability resolution: is a device open on a date, and when.

Resolution order for a device on target_date:
1. Exception dated target_date      → closed (whatever the rules say)
2. DatedHours rule for target_date  → its window
3. RecurringHours for the weekday   → its window
4. Nothing matched                  → closed

Bad rule data raises ConfigurationError. It only ever concerns one
device/date, so callers skip that pair and carry on.
"""

from datetime import date

from .config import time_str_to_minutes
from .domain import DatedHours, Device, OpenWindow, RecurringHours
from .exceptions import ConfigurationError


def resolve_open_window(device: Device, target_date: date) -> OpenWindow | None:
    """
    Get the open window of a device on target_date.

    Returns:
        OpenWindow, or None when the device is closed that day.

    Raises:
        ConfigurationError: Malformed/ambiguous working hours.
    """
    # Step 1: Exceptions close the day outright
    if find_exception(device, target_date) is not None:
        return None

    # Step 2: Explicit date rule, then weekday rule
    rule = _match_rule(device, target_date)
    if rule is None:
        return None

    start_min = time_str_to_minutes(rule.start)
    end_min = time_str_to_minutes(rule.end)
    if end_min <= start_min:
        raise ConfigurationError(
            f"Device {device.id}: working hours {rule.start}-{rule.end} "
            f"on {target_date.isoformat()} end before they start"
        )

    return OpenWindow(start_minute=start_min, end_minute=end_min)


def find_exception(device: Device, target_date: date):
    """Get the exception closing the device on target_date, if any."""
    for exc in device.exceptions:
        if exc.on_date == target_date:
            return exc
    return None


def _match_rule(device: Device, target_date: date):
    dated = [
        r for r in device.working_hours
        if isinstance(r, DatedHours) and r.on_date == target_date
    ]
    if dated:
        return _single(device, target_date, dated)

    weekday = target_date.weekday()  # 0 = Monday, 6 = Sunday
    recurring = [
        r for r in device.working_hours
        if isinstance(r, RecurringHours) and r.weekday == weekday
    ]
    if recurring:
        return _single(device, target_date, recurring)

    return None


def _single(device: Device, target_date: date, rules: list):
    if len(rules) > 1:
        raise ConfigurationError(
            f"Device {device.id}: {len(rules)} working-hours rules "
            f"match {target_date.isoformat()}"
        )
    return rules[0]
