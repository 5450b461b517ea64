from datetime import date

import fakeredis
import pytest

from slotrelease.database import init_db, make_engine, make_session_factory
from slotrelease.models.generated import (
    DeviceExceptions,
    DeviceWorkingHours,
    Devices,
    Examinations,
)
from slotrelease.services.slots.config import SchedulerConfig
from slotrelease.services.slots.domain import Device, Examination, RecurringHours
from slotrelease.services.slots.pool_cache import SlotPoolCache
from slotrelease.services.slots.service import SlotService
from slotrelease.services.slots.store import InMemoryCatalog, InMemorySlotStore

MONDAY = date(2025, 5, 19)
TUESDAY = date(2025, 5, 20)


def weekday_hours(start="08:00", end="10:00"):
    """Mon-Fri rules with the same window."""
    return tuple(RecurringHours(weekday=d, start=start, end=end) for d in range(5))


@pytest.fixture
def config():
    return SchedulerConfig(promotion_backoff_seconds=0, promotion_backoff_max_seconds=0)


@pytest.fixture
def device():
    return Device(id=1, name="MRT-1", working_hours=weekday_hours())


@pytest.fixture
def examination():
    return Examination(id=10, name="Knee MRI", duration_minutes=30, device_ids=frozenset({1}))


@pytest.fixture
def store():
    return InMemorySlotStore()


@pytest.fixture
def catalog(device, examination):
    return InMemoryCatalog(devices=[device], examinations=[examination])


@pytest.fixture
def redis():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def pool(redis, config):
    return SlotPoolCache(redis, config)


@pytest.fixture
def service(store, catalog, pool, config):
    return SlotService(store, catalog, pool, config)


# ── SQL ──────────────────────────────────────────────────────────────────


@pytest.fixture
def engine():
    sqlite_engine = make_engine("sqlite://")
    init_db(sqlite_engine)
    yield sqlite_engine
    sqlite_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


def seed_catalog(session_factory):
    """MRT-1 open Mon-Fri 08:00-10:00, closed on TUESDAY; Knee MRI 30 min on it."""
    db = session_factory()
    try:
        mrt = Devices(id=1, name="MRT-1")
        db.add(mrt)
        for weekday in range(5):
            db.add(DeviceWorkingHours(device_id=1, day_of_week=weekday, start_time="08:00", end_time="10:00"))
        db.add(DeviceWorkingHours(device_id=1, on_date=date(2025, 5, 21), start_time="12:00", end_time="13:00"))
        db.add(DeviceExceptions(device_id=1, exception_date=TUESDAY, reason="Maintenance"))

        knee = Examinations(id=10, name="Knee MRI", duration_minutes=30, body_side_required=1)
        knee.devices.append(mrt)
        db.add(knee)
        db.commit()
    finally:
        db.close()
    return session_factory


@pytest.fixture
def seeded(session_factory):
    return seed_catalog(session_factory)


@pytest.fixture
def file_seeded(tmp_path):
    """Same catalog in a file database, so every thread gets its own connection."""
    file_engine = make_engine(f"sqlite:///{tmp_path / 'slots.db'}")
    init_db(file_engine)
    yield seed_catalog(make_session_factory(file_engine))
    file_engine.dispose()
