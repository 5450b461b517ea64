"""
Stalled group checker.

Periodically looks for (examination, day) groups that still have blocked
slots but nothing available, and opens the earliest one. Such groups are
left behind by a crash between booking and promotion, or by a promotion
that gave up after losing too many races.

Only today and later are checked; past days are never reopened.

Runs as an asyncio task (see cli.py `reconcile --loop`).
Uses the synchronous store and Redis (via asyncio.to_thread).
"""

import asyncio
import logging
from datetime import date

from ..config import settings
from .slots.service import SlotService, build_service

logger = logging.getLogger(__name__)


async def reconcile_checker_loop(
    service: SlotService | None = None,
    interval: int | None = None,
) -> None:
    """Run _run_sweep_once every `interval` seconds until cancelled."""
    service = service or build_service()
    interval = interval or settings.reconcile_interval_seconds
    logger.info(f"reconcile_checker_loop started (every {interval}s)")

    try:
        while True:
            try:
                await asyncio.to_thread(_run_sweep_once, service)
            except asyncio.CancelledError:
                logger.info("reconcile_checker_loop cancelled")
                raise
            except Exception:
                logger.exception("reconcile_checker_loop error")

            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        pass


def _run_sweep_once(service: SlotService, today: date | None = None) -> int:
    """Promote every stalled group from today on (synchronous)."""
    today = today or date.today()
    promoted = service.reconcile(start_date=today)
    if promoted:
        logger.info(
            f"Reconcile opened {len(promoted)} groups: "
            + ", ".join(f"{s.examination_id}/{s.start:%Y-%m-%d}" for s in promoted)
        )
    return len(promoted)
