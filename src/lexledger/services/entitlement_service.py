"""Premium and trial entitlement windows.

Status is never stored: ``resolve_premium_status`` derives it from the
window end and the trusted clock on every call, so an account that ages past
its window needs no job to expire it. The same rules serve guests through
``GuestSession``.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Union

from sqlalchemy.orm import Session

from lexledger import monitoring
from lexledger.config import Settings
from lexledger.errors import AccountNotFound, AlreadyActive, TrialAlreadyUsed
from lexledger.models.enums import EntitlementState, PremiumSource, ResourceKind, TransactionReason
from lexledger.models.models import Account
from lexledger.services.allotments import POOL_FIELDS, daily_allotment, premium_window_active
from lexledger.services.clock_service import as_utc
from lexledger.services.context import LedgerContext
from lexledger.services.resource_service import ResourceService

logger = logging.getLogger(__name__)

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR


@dataclass
class PremiumStatus:
    state: EntitlementState
    is_premium: bool
    is_trial: bool
    trial_eligible: bool
    expires_at: Optional[datetime]
    remaining_days: int
    remaining_hours: int
    remaining_minutes: int
    remaining_label: str
    source: Optional[PremiumSource]


def _plural(value: int, unit: str) -> str:
    return f"{value} {unit}" if value == 1 else f"{value} {unit}s"


def build_remaining_label(expires_at: Optional[datetime], now: datetime) -> str:
    """Human readable time left, e.g. ``"2 days 3 hours 5 minutes"``; empty once expired."""
    if expires_at is None:
        return ""
    seconds = (as_utc(expires_at) - as_utc(now)).total_seconds()
    if seconds <= 0:
        return ""

    days = int(seconds // DAY)
    hours = int((seconds % DAY) // HOUR)
    minutes = int((seconds % HOUR) // MINUTE)

    if days > 0:
        return f"{_plural(days, 'day')} {_plural(hours, 'hour')} {_plural(minutes, 'minute')}"
    if hours > 0:
        return f"{_plural(hours, 'hour')} {_plural(minutes, 'minute')}"
    return _plural(max(minutes, 1), "minute")


def _source(value: Optional[str]) -> Optional[PremiumSource]:
    if not value:
        return None
    try:
        return PremiumSource(value)
    except ValueError:
        return None


def resolve_premium_status(
    active_until: Optional[datetime],
    source: Optional[str],
    trial_used: bool,
    now: datetime,
) -> PremiumStatus:
    """Pure derivation of the entitlement state at ``now``."""
    is_premium = premium_window_active(active_until, now)
    premium_source = _source(source)
    is_trial = is_premium and premium_source == PremiumSource.TRIAL

    if active_until is None:
        state = EntitlementState.NONE
    elif is_trial:
        state = EntitlementState.TRIAL_ACTIVE
    elif is_premium:
        state = EntitlementState.PAID_ACTIVE
    else:
        state = EntitlementState.EXPIRED

    seconds = max((as_utc(active_until) - as_utc(now)).total_seconds(), 0) if active_until else 0
    return PremiumStatus(
        state=state,
        is_premium=is_premium,
        is_trial=is_trial,
        trial_eligible=not trial_used and not is_premium,
        expires_at=as_utc(active_until),
        remaining_days=math.ceil(seconds / DAY),
        remaining_hours=math.ceil(seconds / HOUR),
        remaining_minutes=math.ceil(seconds / MINUTE),
        remaining_label=build_remaining_label(active_until, now),
        source=premium_source if is_premium else None,
    )


def status_of(state, now: datetime) -> PremiumStatus:
    """Status of any object carrying the four entitlement fields."""
    return resolve_premium_status(
        state.premium_active_until,
        state.premium_source,
        bool(state.premium_trial_used),
        now,
    )


def check_trial_allowed(state, now: datetime) -> None:
    """Raise unless a trial may start for ``state`` at ``now``."""
    if premium_window_active(state.premium_active_until, now):
        raise AlreadyActive(as_utc(state.premium_active_until))
    if state.premium_trial_used:
        raise TrialAlreadyUsed()


def plan_duration(settings: Settings, plan: Optional[str], duration_days: Optional[int]) -> int:
    """Days a premium activation adds, by plan id or explicit number of days."""
    if duration_days is None:
        if plan not in settings.entitlement.plan_days:
            raise ValueError(f"Unknown premium plan: {plan}")
        duration_days = settings.entitlement.plan_days[plan]
    if duration_days < 1:
        raise ValueError("Premium duration must be positive")
    return duration_days


def raise_allotments(pools, settings: Settings, now: datetime) -> Dict[ResourceKind, int]:
    """Lift both daily pools to at least the premium tier; returns the increase per kind."""
    deltas = {}
    for kind, (daily_field, _, refresh_field) in POOL_FIELDS.items():
        current = getattr(pools, daily_field) or 0
        lifted = max(current, daily_allotment(settings, kind, premium=True))
        setattr(pools, daily_field, lifted)
        setattr(pools, refresh_field, now)
        deltas[kind] = lifted - current
    return deltas


def open_window(state, now: datetime, days: int, source: PremiumSource) -> None:
    """Start or extend a window on ``state``; extensions run from the current end."""
    if premium_window_active(state.premium_active_until, now):
        start = as_utc(state.premium_active_until)
    else:
        start = now
        state.premium_started_at = now
    state.premium_active_until = start + timedelta(days=days)
    state.premium_source = source.value
    state.premium_trial_used = True


class EntitlementService:
    """Service for premium status and trial/paid activation on accounts."""

    def __init__(self, ctx: LedgerContext):
        """Initialize the service with a ledger context."""
        self.ctx = ctx
        self.resources = ResourceService(ctx)

    def _raise_allotments(self, session: Session, account: Account, now: datetime) -> None:
        for kind, delta in raise_allotments(account, self.ctx.settings, now).items():
            if delta:
                self.resources.log_transaction(session, account, kind, delta, TransactionReason.DAILY_REFRESH, now)

    def get_status(self, account_id: int) -> PremiumStatus:
        account = self.ctx.store.get(Account, account_id)
        if account is None:
            raise AccountNotFound(str(account_id))
        return status_of(account, self.ctx.clock.now())

    def start_trial(self, account_id: int) -> PremiumStatus:
        """Open the one-time trial window and lift both daily pools to the premium tier."""
        now = self.ctx.clock.now()
        days = self.ctx.settings.entitlement.trial_duration_days

        def mutate(session: Session, account: Account) -> PremiumStatus:
            check_trial_allowed(account, now)
            open_window(account, now, days, PremiumSource.TRIAL)
            self._raise_allotments(session, account, now)
            return status_of(account, now)

        status = self.ctx.store.run(Account, account_id, mutate)
        monitoring.premium_activations.labels(source=PremiumSource.TRIAL.value).inc()
        logger.info(f"Account {account_id}: trial started, active until {status.expires_at}")
        return status

    def activate_premium(
        self,
        account_id: int,
        plan: Optional[str] = None,
        duration_days: Optional[int] = None,
        source: Union[PremiumSource, str] = PremiumSource.SUBSCRIPTION,
    ) -> PremiumStatus:
        """Open or extend a paid window, by plan id or explicit number of days."""
        source = PremiumSource(source)
        duration_days = plan_duration(self.ctx.settings, plan, duration_days)

        now = self.ctx.clock.now()

        def mutate(session: Session, account: Account) -> PremiumStatus:
            open_window(account, now, duration_days, source)
            self._raise_allotments(session, account, now)
            return status_of(account, now)

        status = self.ctx.store.run(Account, account_id, mutate)
        monitoring.premium_activations.labels(source=source.value).inc()
        logger.info(f"Account {account_id}: premium ({source.value}) active until {status.expires_at}")
        return status
