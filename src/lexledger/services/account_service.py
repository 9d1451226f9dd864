"""Account service for creating and looking up durable learner records."""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from lexledger.errors import AccountNotFound
from lexledger.models.models import Account
from lexledger.services.context import LedgerContext
from lexledger.services.device_security_service import DeviceSecurityService

logger = logging.getLogger(__name__)


def account_snapshot(account: Account) -> Dict[str, Any]:
    """Resource, progression and entitlement fields of an account."""
    return {
        "id": account.id,
        "identity": account.identity,
        "daily_energy": account.daily_energy,
        "bonus_energy": account.bonus_energy,
        "last_energy_refresh": account.last_energy_refresh,
        "daily_reveal_tokens": account.daily_reveal_tokens,
        "bonus_reveal_tokens": account.bonus_reveal_tokens,
        "last_reveal_refresh": account.last_reveal_refresh,
        "current_streak": account.current_streak,
        "longest_streak": account.longest_streak,
        "last_activity_date": account.last_activity_date,
        "todays_mastered": account.todays_mastered,
        "todays_mastered_date": account.todays_mastered_date,
        "total_words_learned": account.total_words_learned,
        "premium_active_until": account.premium_active_until,
        "premium_started_at": account.premium_started_at,
        "premium_source": account.premium_source,
        "premium_trial_used": account.premium_trial_used,
    }


class AccountService:
    """Service for registering and resolving accounts."""

    def __init__(self, ctx: LedgerContext):
        """Initialize the service with a ledger context."""
        self.ctx = ctx
        self.device_security = DeviceSecurityService(ctx)

    def create_account(
        self,
        identity: str,
        display_name: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> Account:
        """Register a new account with the default daily allotments."""
        identity = identity.strip()
        if not identity:
            raise ValueError("Identity is required")

        now = self.ctx.clock.now()
        resources = self.ctx.settings.resources

        def register(session: Session) -> Account:
            if session.execute(select(Account.id).where(Account.identity == identity)).first():
                raise ValueError(f"Identity {identity} is already registered")
            account = Account(
                identity=identity,
                display_name=display_name,
                device_id=device_id,
                daily_energy=resources.daily_energy,
                bonus_energy=0,
                last_energy_refresh=now,
                daily_reveal_tokens=resources.daily_reveal_tokens,
                bonus_reveal_tokens=0,
                last_reveal_refresh=now,
                current_streak=0,
                longest_streak=0,
                todays_mastered=0,
                total_words_learned=0,
                premium_trial_used=False,
            )
            session.add(account)
            return account

        if device_id:
            account = self.device_security.register_on_device(device_id, register)
        else:
            with self.ctx.store.session() as session:
                account = register(session)
                session.commit()

        logger.info(f"Account {account.id} created for {identity}")
        return account

    def get_account(self, account_id: int) -> Optional[Account]:
        """Get account by ID."""
        return self.ctx.store.get(Account, account_id)

    def get_account_by_identity(self, identity: str) -> Optional[Account]:
        """Find an account by identity, trying the trimmed value then its lower-cased form."""
        trimmed = identity.strip()
        if not trimmed:
            raise ValueError("Identity is required")

        candidates = list(dict.fromkeys([trimmed, trimmed.lower()]))
        with self.ctx.store.session() as session:
            for candidate in candidates:
                account = session.execute(
                    select(Account).where(Account.identity == candidate)
                ).scalar_one_or_none()
                if account:
                    return account
        return None

    def resolve_account_id(self, identity: str) -> int:
        account = self.get_account_by_identity(identity)
        if account is None:
            raise AccountNotFound(identity)
        return account.id

    def snapshot(self, account_id: int) -> Dict[str, Any]:
        account = self.get_account(account_id)
        if account is None:
            raise AccountNotFound(str(account_id))
        return account_snapshot(account)
