"""Async entry point used by the UI layer.

Routes each learner action to the account services while signed in, or to
the guest session otherwise. Blocking store work runs in a worker thread;
a caller that stops waiting never cancels a transaction in flight.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from lexledger.errors import AccountLocked, TransactionTimeout
from lexledger.models.enums import ResourceKind, TransactionReason
from lexledger.services.context import LedgerContext
from lexledger.services.device_security_service import DeviceSecurityService
from lexledger.services.entitlement_service import EntitlementService, PremiumStatus
from lexledger.services.guest_service import GuestSession
from lexledger.services.progression_service import ProgressionService, StreakTransition
from lexledger.services.reconciler import GuestReconciler, ReconciliationResult
from lexledger.services.resource_service import ResourceBalance, ResourceService
from lexledger.services.word_service import WordService

logger = logging.getLogger(__name__)

CredentialCheck = Callable[[], Union[bool, Awaitable[bool]]]


@dataclass
class RewardEvent:
    """An ad view or purchase that finished on the device."""
    kind: ResourceKind
    amount: int
    purchase: bool = False

    @property
    def reason(self) -> TransactionReason:
        return TransactionReason.PURCHASE if self.purchase else TransactionReason.AD_GRANTED


class SessionService:
    """Facade over the ledger services for the current learner."""

    def __init__(self, ctx: LedgerContext, guest: GuestSession, timeout: Optional[float] = None):
        """Initialize the facade; the learner starts as a guest."""
        self.ctx = ctx
        self.guest = guest
        self.timeout = timeout if timeout is not None else ctx.settings.transactions.timeout_seconds
        self.account_id: Optional[int] = None

        self.resources = ResourceService(ctx)
        self.progression = ProgressionService(ctx)
        self.entitlements = EntitlementService(ctx)
        self.words = WordService(ctx)
        self.device_security = DeviceSecurityService(ctx)
        self.reconciler = GuestReconciler(ctx)

    @property
    def is_guest(self) -> bool:
        return self.account_id is None

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run blocking ``func`` in a thread, bounded by the timeout and shielded from cancellation."""
        task = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"{getattr(func, '__name__', func)} still running after {self.timeout}s")
            raise TransactionTimeout("The operation did not finish in time, please try again") from e

    async def on_auth_state_changed(self, account_id: Optional[int]) -> Optional[ReconciliationResult]:
        """Follow the identity provider; a guest signing in is merged into the account.

        A failed merge keeps the guest state and is retried on the next sign-in.
        """
        previous = self.account_id
        self.account_id = account_id

        if account_id is None:
            if previous is not None:
                logger.info(f"Account {previous} signed out")
            return None
        if previous == account_id:
            return None

        logger.info(f"Account {account_id} signed in")
        try:
            return await self._run(self.reconciler.reconcile_guest_into_account, account_id, self.guest)
        except Exception as e:
            logger.error(f"Account {account_id}: guest merge deferred to next sign-in: {e}")
            return None

    async def handle_reward(self, event: RewardEvent) -> Optional[ResourceBalance]:
        """Credit a finished ad view or purchase to the bonus pool."""
        if self.is_guest:
            if event.kind == ResourceKind.ENERGY:
                self.guest.add_bonus(energy_delta=event.amount)
            else:
                self.guest.add_bonus(reveal_delta=event.amount)
            return self.guest.balance(event.kind)
        return await self._run(self.resources.grant, self.account_id, event.kind, event.amount, event.reason)

    async def refresh_daily_resources(self) -> list:
        if self.is_guest:
            return self.guest.ensure_resources()
        return await self._run(self.resources.ensure_daily_refill, self.account_id)

    async def spend_energy(self, amount: int = 1) -> ResourceBalance:
        if self.is_guest:
            return self.guest.consume(ResourceKind.ENERGY, amount)
        return await self._run(self.resources.consume_energy, self.account_id, amount)

    async def spend_reveal_token(self) -> ResourceBalance:
        if self.is_guest:
            return self.guest.consume(ResourceKind.REVEAL, 1)
        return await self._run(self.resources.consume_reveal_token, self.account_id)

    async def record_activity(self) -> StreakTransition:
        """Count today as an active day without answering a word."""
        if self.is_guest:
            return self.guest.record_activity()
        update = await self._run(self.progression.record_activity, self.account_id)
        return update.transition

    async def record_answer(self, word_id: str, is_correct: bool) -> bool:
        """Record an answer and its progression effect; returns whether the word was newly mastered."""
        if self.is_guest:
            _, newly_mastered = self.guest.record_answer(word_id, is_correct)
            if newly_mastered:
                self.guest.record_mastery()
            else:
                self.guest.record_activity()
            return newly_mastered

        _, newly_mastered = await self._run(self.words.record_answer, self.account_id, word_id, is_correct)
        return newly_mastered

    async def start_trial(self) -> PremiumStatus:
        if self.is_guest:
            return self.guest.start_trial()
        return await self._run(self.entitlements.start_trial, self.account_id)

    async def premium_status(self) -> PremiumStatus:
        if self.is_guest:
            return self.guest.premium_status()
        return await self._run(self.entitlements.get_status, self.account_id)

    async def login_attempt(self, device_id: str, credential_check: CredentialCheck) -> bool:
        """Check the device lock, run the credential check and update the counter.

        Raises ``AccountLocked`` while the device is locked or when this failure
        starts a lock.
        """
        await self._run(self.device_security.assert_not_locked, device_id)

        outcome = credential_check()
        if asyncio.iscoroutine(outcome) or isinstance(outcome, asyncio.Future):
            outcome = await outcome

        if outcome:
            await self._run(self.device_security.reset_failed_logins, device_id)
            return True

        try:
            await self._run(self.device_security.record_failed_login, device_id)
        except AccountLocked:
            logger.warning(f"Device {device_id}: locked after repeated failed logins")
            raise
        return False
