"""Pool rules shared by account and guest resources.

Both ``Account`` rows and ``GuestResources`` carry the same pool attribute
names, so the functions here work on either.
"""
from datetime import UTC, datetime, tzinfo
from typing import Any, List, Optional

from lexledger.config import Settings
from lexledger.errors import InsufficientResource
from lexledger.models.enums import ResourceKind
from lexledger.services.clock_service import as_utc, has_day_passed

# Attribute names per resource kind: (daily pool, bonus pool, last refresh)
POOL_FIELDS = {
    ResourceKind.ENERGY: ("daily_energy", "bonus_energy", "last_energy_refresh"),
    ResourceKind.REVEAL: ("daily_reveal_tokens", "bonus_reveal_tokens", "last_reveal_refresh"),
}


def premium_window_active(active_until: Optional[datetime], now: datetime) -> bool:
    """An entitlement window is live while ``now`` is before its end."""
    return active_until is not None and as_utc(active_until) > as_utc(now)


def daily_allotment(settings: Settings, kind: ResourceKind, premium: bool) -> int:
    resources = settings.resources
    if kind == ResourceKind.ENERGY:
        return resources.premium_daily_energy if premium else resources.daily_energy
    return resources.premium_daily_reveal_tokens if premium else resources.daily_reveal_tokens


def refill_pools(
    pools: Any,
    premium_active_until: Optional[datetime],
    now: datetime,
    settings: Settings,
    tz: tzinfo = UTC,
) -> List[ResourceKind]:
    """Refill daily pools last refreshed on an earlier calendar day.

    The allotment is the premium tier while the window is live. Once a window
    has lapsed, a daily pool still above the regular allotment is clamped
    down to it. Returns the kinds that were refilled.
    """
    premium = premium_window_active(premium_active_until, now)
    lapsed = premium_active_until is not None and not premium
    refilled = []

    for kind, (daily_field, _, refresh_field) in POOL_FIELDS.items():
        allotment = daily_allotment(settings, kind, premium)
        if has_day_passed(getattr(pools, refresh_field), now, tz):
            setattr(pools, daily_field, allotment)
            setattr(pools, refresh_field, now)
            refilled.append(kind)
        elif lapsed and getattr(pools, daily_field) > allotment:
            setattr(pools, daily_field, allotment)

    return refilled


def draw_down(pools: Any, kind: ResourceKind, amount: int) -> None:
    """Take ``amount`` from the daily pool, then the bonus pool. All or nothing."""
    daily_field, bonus_field, _ = POOL_FIELDS[kind]
    daily = getattr(pools, daily_field)
    bonus = getattr(pools, bonus_field)

    from_daily = min(daily, amount)
    from_bonus = amount - from_daily
    if from_bonus > bonus:
        raise InsufficientResource(kind.value, amount, daily + bonus)

    setattr(pools, daily_field, daily - from_daily)
    setattr(pools, bonus_field, bonus - from_bonus)


def add_to_bonus(pools: Any, kind: ResourceKind, amount: int) -> int:
    """Add ``amount`` to the bonus pool, floor-clamped at zero; returns the delta applied."""
    _, bonus_field, _ = POOL_FIELDS[kind]
    current = getattr(pools, bonus_field)
    updated = max(0, current + amount)
    setattr(pools, bonus_field, updated)
    return updated - current
