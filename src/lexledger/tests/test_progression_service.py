"""Tests for streak and daily mastery progression."""
from datetime import UTC, datetime, timedelta

import pytest

from lexledger.models.guest_models import GuestStats
from lexledger.models.models import Account
from lexledger.services.progression_service import (
    ProgressionService,
    StreakTransition,
    advance_streak,
    bump_mastered,
    roll_mastered_day,
)

NOW = datetime(2024, 3, 10, 9, 0, tzinfo=UTC)


@pytest.fixture
def progression_service(ctx) -> ProgressionService:
    """Create a progression service instance."""
    return ProgressionService(ctx)


def test_first_activity_starts_streak(progression_service, account) -> None:
    """Test the first-ever activity."""
    update = progression_service.record_activity(account.id)

    assert update.transition == StreakTransition.FIRST_ACTIVITY
    assert update.current_streak == 1
    assert update.longest_streak == 1


def test_consecutive_days_increase_streak(clock_source, progression_service, account) -> None:
    """Test that each consecutive day adds exactly one."""
    streaks = []
    longest = []
    for _ in range(5):
        update = progression_service.record_activity(account.id)
        streaks.append(update.current_streak)
        longest.append(update.longest_streak)
        clock_source.advance(days=1)

    assert streaks == [1, 2, 3, 4, 5]
    assert longest == sorted(longest)


def test_same_day_activity_keeps_streak(clock_source, progression_service, account) -> None:
    """Test that repeated activity on one day changes nothing."""
    progression_service.record_activity(account.id)
    clock_source.advance(hours=5)

    update = progression_service.record_activity(account.id)

    assert update.transition == StreakTransition.SAME_DAY
    assert update.current_streak == 1


def test_gap_resets_streak(clock_source, progression_service, account) -> None:
    """Test that a gap of three days resets the streak but keeps the record."""
    for _ in range(3):
        progression_service.record_activity(account.id)
        clock_source.advance(days=1)

    clock_source.advance(days=3)
    update = progression_service.record_activity(account.id)

    assert update.transition == StreakTransition.GAP
    assert update.current_streak == 1
    assert update.longest_streak == 3


def test_clock_anomaly_leaves_streak(ctx, clock_source, progression_service, account) -> None:
    """Test that activity dated in the future is not rewound."""
    clock_source.advance(days=2)
    progression_service.record_activity(account.id)
    last_activity = ctx.store.get(Account, account.id).last_activity_date

    clock_source.set(NOW)
    update = progression_service.record_activity(account.id)
    stored = ctx.store.get(Account, account.id)

    assert update.transition == StreakTransition.CLOCK_ANOMALY
    assert update.current_streak == 1
    assert stored.last_activity_date == last_activity
    assert stored.last_login_at == NOW


def test_mastered_counter(clock_source, progression_service, account) -> None:
    """Test the same-day mastered counter and the lifetime total."""
    progression_service.record_mastery(account.id)
    update = progression_service.record_mastery(account.id)
    assert update.todays_mastered == 2
    assert update.current_streak == 1

    clock_source.advance(days=1)
    update = progression_service.record_activity(account.id)
    assert update.todays_mastered == 0

    update = progression_service.record_mastery(account.id)
    assert update.todays_mastered == 1
    assert update.total_words_learned == 3
    assert update.current_streak == 2


def test_streak_rules_apply_to_guest_stats() -> None:
    """Test the pure transition functions on guest counters."""
    stats = GuestStats(current_streak=4, longest_streak=6, last_activity_date=NOW)

    assert advance_streak(stats, NOW + timedelta(days=1)) == StreakTransition.CONSECUTIVE_DAY
    assert (stats.current_streak, stats.longest_streak) == (5, 6)

    assert advance_streak(stats, NOW + timedelta(days=5)) == StreakTransition.GAP
    assert (stats.current_streak, stats.longest_streak) == (1, 6)
    assert stats.current_streak <= stats.longest_streak


def test_roll_and_bump_mastered() -> None:
    """Test the day-boundary reset of the mastered counter."""
    stats = GuestStats()
    bump_mastered(stats, NOW)
    bump_mastered(stats, NOW + timedelta(hours=1))
    assert (stats.todays_mastered, stats.todays_mastered_date) == (2, NOW + timedelta(hours=1))

    roll_mastered_day(stats, NOW + timedelta(hours=2))
    assert stats.todays_mastered == 2

    roll_mastered_day(stats, NOW + timedelta(days=1))
    assert stats.todays_mastered == 0
    assert stats.todays_mastered_date is None
