# backend/slotrelease/services/slots/config.py
"""
Scheduler configuration and wall-clock helpers.
"""

from dataclasses import dataclass
from functools import lru_cache

from .exceptions import ConfigurationError


MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class SchedulerConfig:
    """
    Configuration for slot generation and release.

    Attributes:
        generation_days: Default window for generate_slots (days)
        max_generation_days: Upper bound for a single generation run
        promotion_max_retries: Re-reads after a lost promotion race
        promotion_backoff_seconds: First backoff step between re-reads
        promotion_backoff_max_seconds: Backoff ceiling
        pool_ttl_seconds: How long a pool key outlives its day in Redis
        reconcile_interval_seconds: Period of the stalled-group sweep
    """
    generation_days: int = 14
    max_generation_days: int = 90
    promotion_max_retries: int = 3
    promotion_backoff_seconds: float = 0.05
    promotion_backoff_max_seconds: float = 1.0
    pool_ttl_seconds: int = 86400
    reconcile_interval_seconds: int = 60

    def __post_init__(self):
        """Validate configuration."""
        if self.generation_days < 1:
            raise ValueError(f"generation_days must be >= 1, got {self.generation_days}")
        if self.max_generation_days < self.generation_days:
            raise ValueError(
                f"max_generation_days ({self.max_generation_days}) "
                f"must be >= generation_days ({self.generation_days})"
            )
        if self.promotion_max_retries < 0:
            raise ValueError(f"promotion_max_retries must be >= 0, got {self.promotion_max_retries}")
        if self.promotion_backoff_seconds < 0 or self.promotion_backoff_max_seconds < 0:
            raise ValueError("promotion backoff must not be negative")

    @property
    def promotion_attempts(self) -> int:
        """First attempt plus retries."""
        return self.promotion_max_retries + 1


@lru_cache
def get_scheduler_config() -> SchedulerConfig:
    """
    Get scheduler configuration (singleton), built from app settings.
    """
    from ...config import settings

    return SchedulerConfig(
        generation_days=settings.generation_days,
        max_generation_days=settings.max_generation_days,
        promotion_max_retries=settings.promotion_max_retries,
        promotion_backoff_seconds=settings.promotion_backoff_seconds,
        promotion_backoff_max_seconds=settings.promotion_backoff_max_seconds,
        pool_ttl_seconds=settings.pool_ttl_seconds,
        reconcile_interval_seconds=settings.reconcile_interval_seconds,
    )


# ── Time helpers ─────────────────────────────────────────────────────────


def time_str_to_minutes(value: str) -> int:
    """
    Convert "HH:MM" (or "HH:MM:SS") to minutes since midnight.

    "24:00" is accepted so a window can run to the end of the day.
    Seconds must be zero: slots never start on sub-minute boundaries.

    Raises:
        ConfigurationError: On anything else.
    """
    if not isinstance(value, str):
        raise ConfigurationError(f"Time must be a string, got {value!r}")

    parts = value.strip().split(":")
    if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
        raise ConfigurationError(f"Malformed time {value!r}, expected HH:MM")

    hours, minutes = int(parts[0]), int(parts[1])
    seconds = int(parts[2]) if len(parts) == 3 else 0

    if minutes > 59 or seconds > 59:
        raise ConfigurationError(f"Time out of range: {value!r}")
    if seconds:
        raise ConfigurationError(f"Sub-minute time not supported: {value!r}")

    total = hours * 60 + minutes
    if total > MINUTES_PER_DAY:
        raise ConfigurationError(f"Time out of range: {value!r}")
    return total


def minutes_to_time_str(minutes: int) -> str:
    """Convert minutes since midnight to "HH:MM"."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"
