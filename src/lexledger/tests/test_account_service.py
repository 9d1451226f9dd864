"""Tests for account service."""
import pytest
from faker import Faker
from sqlalchemy import func, select

from lexledger.errors import AccountNotFound, RegistrationQuotaExceeded
from lexledger.models.models import Account, DeviceSecurityState
from lexledger.services.account_service import AccountService

fake = Faker()


def test_create_account(account_service: AccountService, clock_source) -> None:
    """Test account creation with default allotments."""
    identity = fake.unique.email()
    account = account_service.create_account(f"  {identity} ", display_name=fake.name())

    assert account.id is not None
    assert account.identity == identity
    assert account.daily_energy == 20
    assert account.daily_reveal_tokens == 5
    assert account.bonus_energy == 0
    assert account.last_energy_refresh == clock_source.fetch()
    assert account.current_streak == 0
    assert not account.premium_trial_used


def test_create_account_requires_identity(account_service: AccountService) -> None:
    """Test that a blank identity is refused."""
    with pytest.raises(ValueError):
        account_service.create_account("   ")


def test_get_account_by_identity(account_service: AccountService, account) -> None:
    """Test lookup by trimmed and lower-cased identity."""
    assert account_service.get_account_by_identity(account.identity).id == account.id
    assert account_service.get_account_by_identity(f" {account.identity} ").id == account.id
    assert account_service.get_account_by_identity(account.identity.upper()).id == account.id
    assert account_service.get_account_by_identity(fake.unique.email()) is None


def test_resolve_account_id(account_service: AccountService, account) -> None:
    """Test identity resolution errors."""
    assert account_service.resolve_account_id(account.identity) == account.id

    with pytest.raises(AccountNotFound):
        account_service.resolve_account_id(fake.unique.email())


def test_snapshot(account_service: AccountService, account) -> None:
    """Test the account snapshot."""
    snapshot = account_service.snapshot(account.id)

    assert snapshot["identity"] == account.identity
    assert snapshot["daily_energy"] == 20
    assert snapshot["premium_active_until"] is None

    with pytest.raises(AccountNotFound):
        account_service.snapshot(account.id + 1000)


def test_duplicate_identity_is_refused(account_service: AccountService, account) -> None:
    """Test that an identity cannot be registered twice, and the device is not charged."""
    device_id = fake.uuid4()

    with pytest.raises(ValueError):
        account_service.create_account(account.identity, device_id=device_id)

    assert account_service.ctx.store.get(DeviceSecurityState, device_id) is None


def test_racing_registration_commits_no_extra_account(ctx, account_service, interleaved) -> None:
    """Test that a registration losing the last quota slot to another one leaves no account behind."""
    device_id = fake.uuid4()
    for _ in range(2):
        account_service.create_account(fake.unique.email(), device_id=device_id)
    winners = []

    def competitor():
        winners.append(account_service.create_account(fake.unique.email(), device_id=device_id))

    racing_ctx, store = interleaved(competitor)
    identity = fake.unique.email()

    with pytest.raises(RegistrationQuotaExceeded):
        AccountService(racing_ctx).create_account(identity, device_id=device_id)

    assert len(winners) == 1
    assert store.interleaved == 1
    assert account_service.get_account_by_identity(identity) is None
    with ctx.store.session() as session:
        registered = session.scalar(
            select(func.count()).select_from(Account).where(Account.device_id == device_id)
        )
    assert registered == 3
    assert ctx.store.get(DeviceSecurityState, device_id).registration_count == 3
