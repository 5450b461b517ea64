# backend/slotrelease/services/slots/__init__.py
"""
Sequential slot release.

Level 1: Slot store (database, authoritative, CAS transitions)
Level 2: Slot pool (Redis, one open slot per examination/day)
"""

from .config import SchedulerConfig, get_scheduler_config
from .calculator import generate_day_slots, generate_window
from .availability import resolve_open_window
from .release import ReleaseScheduler
from .pool_cache import SlotPoolCache
from .invalidator import invalidate_examination_pool
from .booking import BookingCoordinator
from .service import SlotService, build_service

__all__ = [
    "SchedulerConfig",
    "get_scheduler_config",
    "generate_day_slots",
    "generate_window",
    "resolve_open_window",
    "ReleaseScheduler",
    "SlotPoolCache",
    "invalidate_examination_pool",
    "BookingCoordinator",
    "SlotService",
    "build_service",
]
