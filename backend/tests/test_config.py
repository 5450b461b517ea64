import pytest

from slotrelease.services.slots.config import SchedulerConfig, minutes_to_time_str, time_str_to_minutes
from slotrelease.services.slots.exceptions import ConfigurationError


@pytest.mark.parametrize("value, expected", [
    ("08:30", 510),
    ("08:30:00", 510),
    ("00:00", 0),
    ("24:00", 1440),
])
def test_time_str_to_minutes(value, expected):
    assert time_str_to_minutes(value) == expected


@pytest.mark.parametrize("value", ["24:01", "08:60", "08:30:15", "8", "ab:cd", "", None])
def test_time_str_to_minutes_rejects(value):
    with pytest.raises(ConfigurationError):
        time_str_to_minutes(value)


def test_minutes_to_time_str():
    assert minutes_to_time_str(510) == "08:30"
    assert minutes_to_time_str(0) == "00:00"


def test_defaults():
    config = SchedulerConfig()
    assert config.generation_days == 14
    assert config.promotion_attempts == 4


@pytest.mark.parametrize("kwargs", [
    {"generation_days": 0},
    {"generation_days": 30, "max_generation_days": 10},
    {"promotion_max_retries": -1},
    {"promotion_backoff_seconds": -0.1},
])
def test_invalid_config(kwargs):
    with pytest.raises(ValueError):
        SchedulerConfig(**kwargs)
