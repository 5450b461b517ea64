# backend/slotrelease/services/slots/pool_cache.py
"""
Redis projection of the open slot per (examination, date).

Key format: slots:pool:{examination_id}:{date}
Value:      PoolEntry as JSON, or "__empty__" when the group was looked at
            and has nothing open (exhausted / not generated).

Index:      slots:pool:exam:{examination_id}
            Sorted Set, member = "YYYY-MM-DD", score = date ordinal,
            one member per date that currently has an open slot.

The cache is best-effort: the slot store stays authoritative and booking
re-validates against it, so Redis errors are logged and read as a miss.
"""

import logging
from datetime import date, datetime, time

from pydantic import ValidationError
from redis import Redis, RedisError

from ...schemas.slots import PoolEntry
from .config import SchedulerConfig, get_scheduler_config
from .domain import GroupKey, Slot


logger = logging.getLogger(__name__)

EMPTY_SENTINEL = "__empty__"


class _Miss:
    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS = _Miss()


def entry_from_slot(slot: Slot, device_name: str = "") -> PoolEntry:
    return PoolEntry(
        examination_id=slot.examination_id,
        date=slot.start.date(),
        slot_id=slot.id,
        device_id=slot.device_id,
        device_name=device_name,
        start_time=slot.start,
        end_time=slot.end,
    )


def _decode(value):
    return value.decode() if isinstance(value, bytes) else value


class SlotPoolCache:
    """Redis wrapper for pool entries."""

    KEY_PREFIX = "slots:pool"

    def __init__(self, redis: Redis, config: SchedulerConfig | None = None):
        self.redis = redis
        self.config = config or get_scheduler_config()

    def _key(self, examination_id: int, dt: date) -> str:
        return f"{self.KEY_PREFIX}:{examination_id}:{dt.isoformat()}"

    def _index_key(self, examination_id: int) -> str:
        return f"{self.KEY_PREFIX}:exam:{examination_id}"

    def _expire_at(self, dt: date) -> int:
        # Live until the day is over, and never less than the TTL from now
        end_of_day = datetime.combine(dt, time.max).timestamp()
        return int(max(end_of_day, datetime.now().timestamp())) + self.config.pool_ttl_seconds

    # ── Write ────────────────────────────────────────────────────────────

    def put(self, entry: PoolEntry) -> None:
        """Store the open slot of a group."""
        try:
            pipe = self.redis.pipeline()
            self._queue_put(pipe, entry)
            pipe.execute()
        except RedisError as e:
            logger.error(f"Failed to cache pool entry for slot {entry.slot_id}: {e}")

    def put_empty(self, examination_id: int, dt: date) -> None:
        """Mark a group as looked up with nothing open."""
        try:
            pipe = self.redis.pipeline()
            self._queue_put_empty(pipe, examination_id, dt)
            pipe.execute()
        except RedisError as e:
            logger.error(f"Failed to cache empty pool entry for {examination_id}/{dt}: {e}")

    def refresh(self, key: GroupKey, slot: Slot | None, device_name: str = "") -> None:
        """Point the group at slot, or mark it empty."""
        if slot is None:
            self.put_empty(key.examination_id, key.day)
        else:
            self.put(entry_from_slot(slot, device_name))

    def rebuild(self, entries: list[PoolEntry]) -> int:
        """
        Replace the whole pool.

        Args:
            entries: One entry per group with an open slot.

        Returns:
            Number of entries written.
        """
        try:
            stale = list(self.redis.scan_iter(match=f"{self.KEY_PREFIX}:*"))
            pipe = self.redis.pipeline()
            if stale:
                pipe.delete(*stale)
            for entry in entries:
                self._queue_put(pipe, entry)
            pipe.execute()
        except RedisError as e:
            logger.error(f"Failed to rebuild slot pool: {e}")
            return 0

        logger.info(f"Rebuilt slot pool with {len(entries)} entries")
        return len(entries)

    def _queue_put(self, pipe, entry: PoolEntry) -> None:
        key = self._key(entry.examination_id, entry.date)
        pipe.set(key, entry.model_dump_json())
        pipe.expireat(key, self._expire_at(entry.date))
        pipe.zadd(
            self._index_key(entry.examination_id),
            {entry.date.isoformat(): entry.date.toordinal()},
        )

    def _queue_put_empty(self, pipe, examination_id: int, dt: date) -> None:
        key = self._key(examination_id, dt)
        pipe.set(key, EMPTY_SENTINEL)
        pipe.expireat(key, self._expire_at(dt))
        pipe.zrem(self._index_key(examination_id), dt.isoformat())

    # ── Read ─────────────────────────────────────────────────────────────

    def get(self, examination_id: int, dt: date):
        """
        Get the open slot of a group.

        Returns:
            PoolEntry, None when the group has nothing open, or MISS when
            the group is not cached (or Redis is unavailable).
        """
        try:
            raw = self.redis.get(self._key(examination_id, dt))
        except RedisError as e:
            logger.warning(f"Slot pool read failed, falling back to store: {e}")
            return MISS

        if raw is None:
            return MISS

        raw = _decode(raw)
        if raw == EMPTY_SENTINEL:
            return None

        try:
            return PoolEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Corrupt pool entry for {examination_id}/{dt}, treating as miss")
            return MISS

    def entries_for_examination(
        self,
        examination_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[PoolEntry]:
        """Open slots of an examination, ordered by date."""
        low = start_date.toordinal() if start_date else "-inf"
        high = end_date.toordinal() if end_date else "+inf"

        try:
            members = self.redis.zrangebyscore(self._index_key(examination_id), low, high)
            if not members:
                return []
            dates = [date.fromisoformat(_decode(m)) for m in members]
            raws = self.redis.mget([self._key(examination_id, dt) for dt in dates])
        except RedisError as e:
            logger.warning(f"Slot pool listing failed: {e}")
            return []

        entries = []
        for raw in raws:
            raw = _decode(raw)
            if raw is None or raw == EMPTY_SENTINEL:
                continue
            try:
                entries.append(PoolEntry.model_validate_json(raw))
            except ValidationError:
                logger.warning(f"Corrupt pool entry for examination {examination_id}, skipped")
        return entries

    # ── Delete ───────────────────────────────────────────────────────────

    def delete(
        self,
        examination_id: int,
        dates: list[date] | None = None,
    ) -> int:
        """
        Delete cached groups of an examination.

        Args:
            examination_id: Examination ID
            dates: Specific dates, or None to delete all for the examination.

        Returns:
            Number of deleted keys.
        """
        try:
            if dates:
                keys = [self._key(examination_id, dt) for dt in dates]
                self.redis.zrem(self._index_key(examination_id), *[dt.isoformat() for dt in dates])
            else:
                pattern = f"{self.KEY_PREFIX}:{examination_id}:*"
                keys = list(self.redis.scan_iter(match=pattern))
                keys.append(self._index_key(examination_id))

            if not keys:
                return 0

            return self.redis.delete(*keys)
        except RedisError as e:
            logger.error(f"Failed to delete pool entries for examination {examination_id}: {e}")
            return 0
