# backend/slotrelease/services/slots/release.py
"""
Sequential release: at most one AVAILABLE slot per (examination, day).

Group lifecycle:
  generated  all slots BLOCKED
  open       exactly one AVAILABLE, the rest BLOCKED/BOOKED
  exhausted  nothing BLOCKED, nothing AVAILABLE

promote_earliest() opens the earliest BLOCKED slot (start, then id) of a
group that has no AVAILABLE slot. It is safe to call speculatively after
any event: a group that is already open is left alone.
"""

import logging
from datetime import date

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import SchedulerConfig, get_scheduler_config
from .domain import GroupKey, Slot, SlotStatus
from .exceptions import PromotionConflict
from .store import SlotStore

logger = logging.getLogger(__name__)


class _LostRace(Exception):
    """CAS on the chosen slot failed; re-read the group."""


def _log_before_sleep(retry_state: RetryCallState) -> None:
    key = retry_state.args[0] if retry_state.args else None
    sleep_seconds = getattr(retry_state.next_action, "sleep", 0)
    logger.info(
        f"Promotion attempt {retry_state.attempt_number} for {key} lost a race, "
        f"retrying in {sleep_seconds:.3f}s"
    )


class ReleaseScheduler:
    """Promotes blocked slots, one group at a time."""

    def __init__(self, store: SlotStore, config: SchedulerConfig | None = None):
        self.store = store
        self.config = config or get_scheduler_config()

    def promote_earliest(self, key: GroupKey) -> Slot | None:
        """
        Open the earliest blocked slot of a group.

        Returns:
            The promoted slot, or None if the group is already open or has
            nothing left to open.

        Raises:
            PromotionConflict: Every attempt lost the race.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.config.promotion_attempts),
            wait=wait_exponential(
                multiplier=self.config.promotion_backoff_seconds,
                max=self.config.promotion_backoff_max_seconds,
            ),
            retry=retry_if_exception_type(_LostRace),
            before_sleep=_log_before_sleep,
            reraise=True,
        )
        try:
            return retrying(self._attempt, key)
        except _LostRace:
            raise PromotionConflict(key, self.config.promotion_attempts) from None

    def _attempt(self, key: GroupKey) -> Slot | None:
        # Blocked list first, then the open count: a promotion slipping in
        # between is seen by the count or makes our CAS fail.
        blocked = self.store.list_group(key, SlotStatus.BLOCKED)
        if not blocked:
            return None

        if self.store.count_group(key, SlotStatus.AVAILABLE) > 0:
            return None

        candidate = blocked[0]
        if not self.store.transition(candidate.id, SlotStatus.BLOCKED, SlotStatus.AVAILABLE):
            raise _LostRace()

        logger.info(f"Released slot {candidate.id} ({candidate.start:%H:%M}) for {key}")
        return candidate.with_status(SlotStatus.AVAILABLE)

    def promote_safely(self, key: GroupKey) -> Slot | None:
        """promote_earliest for trigger points: a conflict is logged, not raised."""
        try:
            return self.promote_earliest(key)
        except PromotionConflict as e:
            logger.warning(f"{e}; left for the next trigger")
            return None

    def current_available(self, key: GroupKey) -> Slot | None:
        """The open slot of a group, if any."""
        available = self.store.list_group(key, SlotStatus.AVAILABLE)
        if len(available) > 1:
            logger.error(f"{len(available)} available slots in {key}")
        return available[0] if available else None

    def reconcile(
        self,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[Slot]:
        """
        Promote every stalled group (nothing available, something blocked).

        Heals groups left without an open slot by a crash between booking
        and promotion, or by a lost promotion.
        """
        stalled = self.store.stalled_groups(start_date, end_date)
        if not stalled:
            return []

        logger.info(f"Reconciling {len(stalled)} stalled groups")
        promoted = []
        for key in stalled:
            slot = self.promote_safely(key)
            if slot is not None:
                promoted.append(slot)
        return promoted
