from datetime import date, datetime, timedelta
from unittest.mock import Mock

from redis import RedisError

from slotrelease.schemas.slots import PoolEntry
from slotrelease.services.slots.domain import GroupKey, Slot, SlotStatus
from slotrelease.services.slots.invalidator import get_affected_dates, invalidate_examination_pool
from slotrelease.services.slots.pool_cache import EMPTY_SENTINEL, MISS, SlotPoolCache

from .conftest import MONDAY, TUESDAY


def make_entry(day: date, slot_id: int = 1, examination_id: int = 10) -> PoolEntry:
    start = datetime.combine(day, datetime.min.time()) + timedelta(hours=8)
    return PoolEntry(
        examination_id=examination_id,
        date=day,
        slot_id=slot_id,
        device_id=1,
        device_name="MRT-1",
        start_time=start,
        end_time=start + timedelta(minutes=30),
    )


def test_put_and_get(pool):
    entry = make_entry(MONDAY)
    pool.put(entry)

    assert pool.get(10, MONDAY) == entry
    assert pool.redis.ttl(f"slots:pool:10:{MONDAY.isoformat()}") > 0


def test_uncached_group_is_a_miss(pool):
    assert pool.get(10, MONDAY) is MISS
    assert not MISS


def test_empty_group(pool):
    pool.put(make_entry(MONDAY))
    pool.put_empty(10, MONDAY)

    assert pool.get(10, MONDAY) is None
    assert pool.redis.get(f"slots:pool:10:{MONDAY.isoformat()}") == EMPTY_SENTINEL
    assert pool.entries_for_examination(10) == []


def test_refresh_from_slot(pool):
    slot = Slot(
        id=7, device_id=1, examination_id=10,
        start=datetime(2025, 5, 19, 9, 0), end=datetime(2025, 5, 19, 9, 30),
        status=SlotStatus.AVAILABLE,
    )
    pool.refresh(GroupKey(10, MONDAY), slot, "MRT-1")
    assert pool.get(10, MONDAY).slot_id == 7

    pool.refresh(GroupKey(10, MONDAY), None)
    assert pool.get(10, MONDAY) is None


def test_entries_for_examination_ordered_and_ranged(pool):
    friday = MONDAY + timedelta(days=4)
    for day in (friday, MONDAY, TUESDAY):
        pool.put(make_entry(day))
    pool.put(make_entry(MONDAY, examination_id=11))

    assert [e.date for e in pool.entries_for_examination(10)] == [MONDAY, TUESDAY, friday]
    assert [e.date for e in pool.entries_for_examination(10, TUESDAY, TUESDAY)] == [TUESDAY]
    assert [e.date for e in pool.entries_for_examination(11)] == [MONDAY]


def test_rebuild_replaces_everything(pool):
    pool.put(make_entry(MONDAY, slot_id=1))
    pool.put_empty(10, TUESDAY)

    assert pool.rebuild([make_entry(TUESDAY, slot_id=5)]) == 1

    assert pool.get(10, MONDAY) is MISS
    assert pool.get(10, TUESDAY).slot_id == 5
    assert [e.slot_id for e in pool.entries_for_examination(10)] == [5]


def test_invalidate_dates_and_whole_examination(pool):
    for day in (MONDAY, TUESDAY):
        pool.put(make_entry(day))

    assert invalidate_examination_pool(pool, 10, [MONDAY]) == 1
    assert pool.get(10, MONDAY) is MISS
    assert pool.get(10, TUESDAY) is not MISS

    assert invalidate_examination_pool(pool, 10) == 2  # entry + index
    assert pool.get(10, TUESDAY) is MISS


def test_affected_dates():
    assert get_affected_dates(TUESDAY, MONDAY) == [MONDAY, TUESDAY]
    assert len(get_affected_dates(MONDAY, MONDAY + timedelta(days=6))) == 7


def test_redis_errors_are_not_raised(config):
    redis = Mock()
    redis.get.side_effect = RedisError("down")
    redis.pipeline.side_effect = RedisError("down")
    redis.zrangebyscore.side_effect = RedisError("down")
    redis.scan_iter.side_effect = RedisError("down")
    cache = SlotPoolCache(redis, config)

    assert cache.get(10, MONDAY) is MISS
    cache.put(make_entry(MONDAY))
    cache.put_empty(10, MONDAY)
    assert cache.entries_for_examination(10) == []
    assert cache.rebuild([make_entry(MONDAY)]) == 0


def test_corrupt_entry_is_a_miss(pool):
    pool.redis.set(f"slots:pool:10:{MONDAY.isoformat()}", "{not json")
    assert pool.get(10, MONDAY) is MISS
