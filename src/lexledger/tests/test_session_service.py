"""Tests for the async session facade."""
import asyncio
import threading
import time

import pytest
from faker import Faker

from lexledger.errors import AccountLocked, InsufficientResource, TransactionTimeout
from lexledger.models.enums import EntitlementState, ResourceKind, TransactionReason
from lexledger.services.guest_service import GuestSession, MemoryStorage
from lexledger.services.progression_service import StreakTransition
from lexledger.services.resource_service import ResourceService
from lexledger.services.session_service import RewardEvent, SessionService

fake = Faker()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def session_service(ctx, storage) -> SessionService:
    """Create a session facade starting as a guest."""
    return SessionService(ctx, GuestSession(ctx, storage))


@pytest.mark.asyncio
async def test_guest_actions_stay_local(session_service, storage) -> None:
    """Test that guest actions only touch device storage."""
    assert session_service.is_guest

    balance = await session_service.spend_energy(3)
    await session_service.handle_reward(RewardEvent(kind=ResourceKind.REVEAL, amount=2))

    assert balance.daily == 17
    assert session_service.guest.balance(ResourceKind.REVEAL).bonus == 2
    assert storage.data


@pytest.mark.asyncio
async def test_sign_in_merges_guest_once(ctx, session_service, storage, account) -> None:
    """Test that signing in reconciles the guest state."""
    await session_service.record_answer("apple", True)
    await session_service.handle_reward(RewardEvent(kind=ResourceKind.ENERGY, amount=4))

    result = await session_service.on_auth_state_changed(account.id)

    assert result is not None
    assert result.bonus_granted
    assert storage.data == {}
    assert not session_service.is_guest
    assert ResourceService(ctx).get_balance(account.id, ResourceKind.ENERGY).bonus == 4

    assert await session_service.on_auth_state_changed(account.id) is None


@pytest.mark.asyncio
async def test_failed_merge_is_deferred(session_service, storage, account) -> None:
    """Test that a failed merge keeps the guest state."""
    await session_service.record_answer("apple", True)

    result = await session_service.on_auth_state_changed(account.id + 1000)

    assert result is None
    assert storage.data


@pytest.mark.asyncio
async def test_account_actions(ctx, session_service, account) -> None:
    """Test that signed-in actions go to the durable account."""
    await session_service.on_auth_state_changed(account.id)

    balance = await session_service.spend_energy(5)
    assert balance.daily == 15

    balance = await session_service.handle_reward(RewardEvent(kind=ResourceKind.ENERGY, amount=3, purchase=True))
    assert balance.bonus == 3

    for _ in range(5):
        await session_service.spend_reveal_token()
    with pytest.raises(InsufficientResource):
        await session_service.spend_reveal_token()

    assert await session_service.refresh_daily_resources() == []

    reasons = {entry.reason for entry in ResourceService(ctx).list_transactions(account.id)}
    assert reasons == {TransactionReason.CONSUMPTION.value, TransactionReason.PURCHASE.value}


@pytest.mark.asyncio
async def test_record_answer_updates_progression(ctx, session_service, account) -> None:
    """Test that a newly mastered word bumps the daily counter."""
    await session_service.on_auth_state_changed(account.id)

    assert not await session_service.record_answer("apple", False)
    assert await session_service.record_answer("apple", True)
    assert not await session_service.record_answer("apple", True)

    snapshot = session_service.resources.account_service.snapshot(account.id)
    assert snapshot["todays_mastered"] == 1
    assert snapshot["current_streak"] == 1
    assert snapshot["total_words_learned"] == 1


@pytest.mark.asyncio
async def test_record_activity_routing(clock_source, session_service, account) -> None:
    """Test that activity goes to the guest or to the account streak."""
    assert await session_service.record_activity() == StreakTransition.FIRST_ACTIVITY

    await session_service.on_auth_state_changed(account.id)
    clock_source.advance(days=1)

    assert await session_service.record_activity() == StreakTransition.CONSECUTIVE_DAY
    snapshot = session_service.resources.account_service.snapshot(account.id)
    assert snapshot["current_streak"] == 2


@pytest.mark.asyncio
async def test_trial_and_status(session_service, account) -> None:
    """Test entitlement routing."""
    await session_service.on_auth_state_changed(account.id)

    status = await session_service.start_trial()
    assert status.state == EntitlementState.TRIAL_ACTIVE
    assert (await session_service.premium_status()).is_premium

    await session_service.on_auth_state_changed(None)
    assert session_service.is_guest
    assert (await session_service.premium_status()).trial_eligible


@pytest.mark.asyncio
async def test_login_attempts_lock_device(clock_source, session_service) -> None:
    """Test the login flow around the device lock."""
    device_id = fake.uuid4()

    for _ in range(4):
        assert not await session_service.login_attempt(device_id, lambda: False)
    with pytest.raises(AccountLocked):
        await session_service.login_attempt(device_id, lambda: False)

    checked = []
    with pytest.raises(AccountLocked):
        await session_service.login_attempt(device_id, lambda: checked.append(True) or True)
    assert checked == []

    clock_source.advance(minutes=61)

    async def valid_credentials():
        return True

    assert await session_service.login_attempt(device_id, valid_credentials)


@pytest.mark.asyncio
async def test_slow_operation_times_out_but_completes(session_service) -> None:
    """Test that a timeout is retryable and does not cancel the work."""
    session_service.timeout = 0.05
    finished = threading.Event()

    def slow_write():
        time.sleep(0.2)
        finished.set()

    with pytest.raises(TransactionTimeout) as exc_info:
        await session_service._run(slow_write)

    assert exc_info.value.retryable
    await asyncio.sleep(0.3)
    assert finished.is_set()
