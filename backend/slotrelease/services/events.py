"""
backend/slotrelease/services/events.py

Event emitter: pushes scheduler events to a Redis queue for whatever
notifies patients/staff (not part of this package).

Queue: events:slots, one JSON object per event:
- slot_released          a blocked slot became available
- appointment_booked     an appointment was created
- appointment_cancelled  an appointment was cancelled
- appointment_status     any other appointment status change
"""

import json
import time
import logging

from redis import Redis

logger = logging.getLogger(__name__)

EVENTS_QUEUE = "events:slots"


def emit_event(event_type: str, payload: dict, redis: Redis | None = None) -> None:
    """
    Emit an event (best-effort: failures are logged, never raised).

    Pushed to Redis list `events:slots` for the consumer loop.
    """
    if redis is None:
        from ..redis_client import redis_client as redis

    event = {
        "type": event_type,
        **payload,
        "ts": int(time.time()),
    }
    try:
        redis.rpush(EVENTS_QUEUE, json.dumps(event, default=str))
        logger.info(f"Event emitted: {event_type} → {EVENTS_QUEUE}")
    except Exception as e:
        logger.error(f"Failed to emit event {event_type}: {e}")
