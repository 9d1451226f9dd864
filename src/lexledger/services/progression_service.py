"""Streak and daily-mastery progression driven by calendar-day transitions."""
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from lexledger.models.models import Account
from lexledger.services.clock_service import calendar_days_between, is_same_day
from lexledger.services.context import LedgerContext

logger = logging.getLogger(__name__)


class StreakTransition(Enum):
    FIRST_ACTIVITY = "first_activity"
    SAME_DAY = "same_day"
    CONSECUTIVE_DAY = "consecutive_day"
    GAP = "gap"
    CLOCK_ANOMALY = "clock_anomaly"


@dataclass
class ProgressionUpdate:
    """Counters after an activity or mastery event."""
    transition: StreakTransition
    current_streak: int
    longest_streak: int
    todays_mastered: int
    total_words_learned: int = 0


def advance_streak(state: Any, now: datetime, tz: tzinfo = UTC) -> StreakTransition:
    """Apply one activity at ``now`` to an object carrying the streak fields.

    Works on both ``Account`` rows and ``GuestStats``. Keeps
    ``current_streak <= longest_streak``.
    """
    last = state.last_activity_date
    current = state.current_streak or 0
    longest = state.longest_streak or 0

    if last is None:
        transition = StreakTransition.FIRST_ACTIVITY
        current = max(current, 1)
        state.last_activity_date = now
    else:
        diff = calendar_days_between(last, now, tz)
        if diff == 0:
            transition = StreakTransition.SAME_DAY
        elif diff == 1:
            transition = StreakTransition.CONSECUTIVE_DAY
            current += 1
            state.last_activity_date = now
        elif diff > 1:
            transition = StreakTransition.GAP
            longest = max(longest, 1, current)
            current = 1
            state.last_activity_date = now
        else:
            # Stored activity lies in the future relative to the trusted clock
            transition = StreakTransition.CLOCK_ANOMALY
            logger.warning(f"Last activity {last} is ahead of trusted time {now}, streak left unchanged")

    state.current_streak = current
    state.longest_streak = max(longest, current)
    return transition


def roll_mastered_day(state: Any, now: datetime, tz: tzinfo = UTC) -> None:
    """Zero the same-day mastered counter once its day is over."""
    tracked = state.todays_mastered_date
    if tracked is not None and calendar_days_between(tracked, now, tz) > 0:
        state.todays_mastered = 0
        state.todays_mastered_date = None


def bump_mastered(state: Any, now: datetime, tz: tzinfo = UTC) -> None:
    if is_same_day(state.todays_mastered_date, now, tz):
        state.todays_mastered = (state.todays_mastered or 0) + 1
    else:
        state.todays_mastered = 1
    state.todays_mastered_date = now


class ProgressionService:
    """Service for recording learner activity against the account record."""

    def __init__(self, ctx: LedgerContext):
        """Initialize the service with a ledger context."""
        self.ctx = ctx

    def _update(self, account: Account, transition: StreakTransition) -> ProgressionUpdate:
        return ProgressionUpdate(
            transition=transition,
            current_streak=account.current_streak,
            longest_streak=account.longest_streak,
            todays_mastered=account.todays_mastered,
            total_words_learned=account.total_words_learned,
        )

    def record_activity(self, account_id: int) -> ProgressionUpdate:
        """Count today as an active day for the streak."""
        now = self.ctx.clock.now()
        tz = self.ctx.day_tz

        def mutate(session: Session, account: Account) -> ProgressionUpdate:
            roll_mastered_day(account, now, tz)
            transition = advance_streak(account, now, tz)
            account.last_login_at = now
            return self._update(account, transition)

        update = self.ctx.store.run(Account, account_id, mutate)
        logger.info(
            f"Account {account_id}: activity ({update.transition.value}), "
            f"streak {update.current_streak}/{update.longest_streak}"
        )
        return update

    def record_mastery(self, account_id: int) -> ProgressionUpdate:
        """Count a newly mastered word; also records the activity."""
        now = self.ctx.clock.now()
        tz = self.ctx.day_tz

        def mutate(session: Session, account: Account) -> ProgressionUpdate:
            roll_mastered_day(account, now, tz)
            transition = advance_streak(account, now, tz)
            bump_mastered(account, now, tz)
            account.total_words_learned = (account.total_words_learned or 0) + 1
            return self._update(account, transition)

        update = self.ctx.store.run(Account, account_id, mutate)
        logger.info(f"Account {account_id}: word mastered, {update.todays_mastered} today")
        return update
