# backend/slotrelease/services/slots/invalidator.py
"""
Cache invalidation for the slot pool.

Triggers:
✓ Examination devices or duration changed → invalidate all dates
✓ Device working hours / exceptions changed → invalidate affected dates

Does NOT trigger:
✗ Booking created/cancelled (the coordinator refreshes the entry itself)
✗ Promotion (refreshed by whoever promoted)
"""

from datetime import date, timedelta

from .pool_cache import SlotPoolCache


def invalidate_examination_pool(
    cache: SlotPoolCache,
    examination_id: int,
    dates: list[date] | None = None,
) -> int:
    """
    Invalidate cached pool entries for an examination.

    Args:
        cache: Slot pool cache
        examination_id: Examination ID
        dates: List of specific dates to invalidate,
               or None to invalidate all cached dates

    Returns:
        Number of deleted cache keys
    """
    return cache.delete(examination_id, dates)


def get_affected_dates(
    date_start: date,
    date_end: date,
) -> list[date]:
    """
    Get list of dates in range [date_start, date_end].

    Args:
        date_start: Start date (inclusive)
        date_end: End date (inclusive)

    Returns:
        List of dates
    """
    if date_start > date_end:
        date_start, date_end = date_end, date_start

    dates = []
    current = date_start
    while current <= date_end:
        dates.append(current)
        current += timedelta(days=1)

    return dates
