"""Resource ledger: daily and bonus pools for energy and reveal tokens."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from lexledger import monitoring
from lexledger.errors import AccountNotFound, InsufficientResource, InvalidAmount
from lexledger.models.enums import ResourceKind, TransactionReason
from lexledger.models.models import Account, ResourceTransaction
from lexledger.services.account_service import AccountService, account_snapshot
from lexledger.services.allotments import (
    POOL_FIELDS,
    add_to_bonus,
    daily_allotment,
    draw_down,
    premium_window_active,
    refill_pools,
)
from lexledger.services.context import LedgerContext

logger = logging.getLogger(__name__)

Reason = Union[TransactionReason, str]


@dataclass
class ResourceBalance:
    """Pools of one resource kind after an operation."""
    kind: ResourceKind
    daily: int
    bonus: int

    @property
    def total(self) -> int:
        return self.daily + self.bonus


@dataclass
class GrantPayload:
    """Bonus deltas for both kinds, as sent by admin tools and reward signals."""
    energy_delta: int = 0
    reveal_delta: int = 0
    reason: Reason = TransactionReason.ADMIN_GRANT


def balance_of(pools: Any, kind: ResourceKind) -> ResourceBalance:
    daily_field, bonus_field, _ = POOL_FIELDS[kind]
    return ResourceBalance(
        kind=kind,
        daily=getattr(pools, daily_field),
        bonus=getattr(pools, bonus_field),
    )


class ResourceService:
    """Service for refilling, consuming and granting resources.

    Every public mutation is a single atomic transaction on the account row;
    audit rows are written in the same transaction.
    """

    def __init__(self, ctx: LedgerContext):
        """Initialize the service with a ledger context."""
        self.ctx = ctx
        self.account_service = AccountService(ctx)

    def log_transaction(
        self,
        session: Session,
        account: Account,
        kind: ResourceKind,
        delta: int,
        reason: Reason,
        now: datetime,
    ) -> ResourceTransaction:
        """Append an audit row to the caller's transaction."""
        entry = ResourceTransaction(
            account_id=account.id,
            resource_kind=ResourceKind(kind).value,
            delta=delta,
            reason=TransactionReason(reason).value,
            created_at=now,
        )
        session.add(entry)
        return entry

    def refill_in_place(self, session: Session, account: Account, now: datetime) -> List[ResourceKind]:
        """Refill the account's daily pools inside the caller's transaction."""
        premium = premium_window_active(account.premium_active_until, now)
        refilled = refill_pools(account, account.premium_active_until, now, self.ctx.settings, self.ctx.day_tz)
        for kind in refilled:
            allotment = daily_allotment(self.ctx.settings, kind, premium)
            self.log_transaction(session, account, kind, allotment, TransactionReason.DAILY_REFRESH, now)
            monitoring.daily_refills.labels(kind=kind.value).inc()
        return refilled

    def ensure_daily_refill(self, account_id: int) -> List[ResourceKind]:
        """Refill each kind at most once per calendar day; returns the kinds refilled."""
        now = self.ctx.clock.now()

        def mutate(session: Session, account: Account) -> List[ResourceKind]:
            return self.refill_in_place(session, account, now)

        refilled = self.ctx.store.run(Account, account_id, mutate)
        if refilled:
            logger.info(f"Account {account_id}: daily refill of {[kind.value for kind in refilled]}")
        return refilled

    def consume(self, account_id: int, kind: ResourceKind, amount: int = 1) -> ResourceBalance:
        """Spend ``amount`` units, daily pool first, then bonus pool. All or nothing."""
        kind = ResourceKind(kind)
        if amount < 0:
            raise InvalidAmount(f"Cannot consume a negative amount ({amount})")
        if amount == 0:
            return self.get_balance(account_id, kind)

        now = self.ctx.clock.now()

        def mutate(session: Session, account: Account) -> ResourceBalance:
            self.refill_in_place(session, account, now)
            draw_down(account, kind, amount)
            self.log_transaction(session, account, kind, -amount, TransactionReason.CONSUMPTION, now)
            return balance_of(account, kind)

        try:
            balance = self.ctx.store.run(Account, account_id, mutate)
        except InsufficientResource:
            monitoring.insufficient_resource.labels(kind=kind.value).inc()
            logger.info(f"Account {account_id}: not enough {kind.value} for {amount}")
            raise

        monitoring.resources_consumed.labels(kind=kind.value).inc(amount)
        logger.info(f"Account {account_id}: consumed {amount} {kind.value}, left {balance.daily}+{balance.bonus}")
        return balance

    def consume_energy(self, account_id: int, amount: int = 1) -> ResourceBalance:
        return self.consume(account_id, ResourceKind.ENERGY, amount)

    def consume_reveal_token(self, account_id: int) -> ResourceBalance:
        return self.consume(account_id, ResourceKind.REVEAL, 1)

    def apply_grant(
        self,
        session: Session,
        account: Account,
        kind: ResourceKind,
        amount: int,
        reason: Reason,
        now: datetime,
    ) -> int:
        """Add ``amount`` to the bonus pool inside the caller's transaction.

        The pool is floor-clamped at zero. Returns the delta actually applied;
        an audit row is written only when it is non-zero.
        """
        applied = add_to_bonus(account, kind, amount)
        if applied == 0:
            return 0

        self.log_transaction(session, account, kind, applied, reason, now)
        if applied > 0:
            monitoring.resources_granted.labels(kind=kind.value, reason=TransactionReason(reason).value).inc(applied)
        return applied

    def grant(self, account_id: int, kind: ResourceKind, amount: int, reason: Reason) -> Optional[ResourceBalance]:
        """Grant (or, with a negative amount, take back) bonus units of one kind."""
        kind = ResourceKind(kind)
        reason = TransactionReason(reason)
        if amount == 0:
            return None

        now = self.ctx.clock.now()

        def mutate(session: Session, account: Account) -> ResourceBalance:
            self.apply_grant(session, account, kind, amount, reason, now)
            return balance_of(account, kind)

        balance = self.ctx.store.run(Account, account_id, mutate)
        logger.info(f"Account {account_id}: granted {amount} {kind.value} ({reason.value})")
        return balance

    def grant_bonus(
        self,
        account_id: int,
        energy_delta: int = 0,
        reveal_delta: int = 0,
        reason: Reason = TransactionReason.ADMIN_GRANT,
    ) -> None:
        """Grant both kinds in one transaction."""
        reason = TransactionReason(reason)
        if energy_delta == 0 and reveal_delta == 0:
            return

        now = self.ctx.clock.now()

        def mutate(session: Session, account: Account) -> None:
            self.apply_grant(session, account, ResourceKind.ENERGY, energy_delta, reason, now)
            self.apply_grant(session, account, ResourceKind.REVEAL, reveal_delta, reason, now)

        self.ctx.store.run(Account, account_id, mutate)
        logger.info(
            f"Account {account_id}: bonus grant energy={energy_delta} reveal={reveal_delta} ({reason.value})"
        )

    def grant_by_identity(self, identity: str, payload: GrantPayload) -> Dict[str, Any]:
        """Resolve an account by identity and grant to it; returns the updated snapshot."""
        account_id = self.account_service.resolve_account_id(identity)
        self.grant_bonus(account_id, payload.energy_delta, payload.reveal_delta, payload.reason)
        return self.account_service.snapshot(account_id)

    def set_daily_resources(self, account_id: int, energy: int, reveals: int) -> Dict[str, Any]:
        """Administrative overwrite of both daily pools."""
        now = self.ctx.clock.now()
        energy = max(0, energy)
        reveals = max(0, reveals)

        def mutate(session: Session, account: Account) -> Dict[str, Any]:
            account.daily_energy = energy
            account.daily_reveal_tokens = reveals
            account.last_energy_refresh = now
            account.last_reveal_refresh = now
            self.log_transaction(session, account, ResourceKind.ENERGY, energy, TransactionReason.MANUAL_ADJUST, now)
            self.log_transaction(session, account, ResourceKind.REVEAL, reveals, TransactionReason.MANUAL_ADJUST, now)
            return account_snapshot(account)

        snapshot = self.ctx.store.run(Account, account_id, mutate)
        logger.info(f"Account {account_id}: daily pools set to energy={energy} reveal={reveals}")
        return snapshot

    def get_balance(self, account_id: int, kind: ResourceKind) -> ResourceBalance:
        account = self.account_service.get_account(account_id)
        if account is None:
            raise AccountNotFound(str(account_id))
        return balance_of(account, ResourceKind(kind))

    def list_transactions(
        self,
        account_id: int,
        kind: Optional[ResourceKind] = None,
    ) -> List[ResourceTransaction]:
        """Audit rows of an account, oldest first."""
        with self.ctx.store.session() as session:
            query = select(ResourceTransaction).where(ResourceTransaction.account_id == account_id)
            if kind is not None:
                query = query.where(ResourceTransaction.resource_kind == ResourceKind(kind).value)
            query = query.order_by(ResourceTransaction.created_at)
            return list(session.execute(query).scalars())
