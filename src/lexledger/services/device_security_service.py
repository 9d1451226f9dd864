"""Per-device failed-login throttle and registration quota."""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, TypeVar

from sqlalchemy.orm import Session

from lexledger import monitoring
from lexledger.errors import AccountLocked, RegistrationQuotaExceeded
from lexledger.models.models import DeviceSecurityState
from lexledger.services.clock_service import ClockReading, as_utc, minutes_until
from lexledger.services.context import LedgerContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _lock_active(lock_until: Optional[datetime], reading: ClockReading) -> bool:
    """Whether a recorded lock still holds at ``reading``.

    Untrusted (degraded) time never ends a lock.
    """
    if lock_until is None:
        return False
    if reading.degraded:
        return True
    return as_utc(lock_until) > reading.now


def _locked_error(lock_until: datetime, reading: ClockReading) -> AccountLocked:
    remaining = max(minutes_until(lock_until, reading.now), 1)
    return AccountLocked(remaining, as_utc(lock_until))


class DeviceSecurityService:
    """Service for the device lockout counter.

    Expiry is lazy: once ``lock_until`` has passed on the trusted clock the
    device is unlocked without any write.
    """

    def __init__(self, ctx: LedgerContext):
        """Initialize the service with a ledger context."""
        self.ctx = ctx

    @property
    def max_attempts(self) -> int:
        return self.ctx.settings.security.max_failed_login_attempts

    @property
    def lock_duration(self) -> timedelta:
        return timedelta(minutes=self.ctx.settings.security.lock_duration_minutes)

    def _new_state(self, device_id: str):
        return lambda: DeviceSecurityState(
            device_id=device_id,
            registration_count=0,
            failed_login_attempts=0,
        )

    def ensure_device_state(self, device_id: str) -> DeviceSecurityState:
        """Get the device record, creating the default one on first sight."""
        state = self.ctx.store.get(DeviceSecurityState, device_id)
        if state is not None:
            return state
        return self.ctx.store.run(
            DeviceSecurityState,
            device_id,
            lambda session, record: record,
            create=self._new_state(device_id),
        )

    def assert_not_locked(self, device_id: str) -> None:
        """Raise ``AccountLocked`` while the device's lock window is live."""
        state = self.ctx.store.get(DeviceSecurityState, device_id)
        if state is None or state.lock_until is None:
            return

        reading = self.ctx.clock.reading()
        if _lock_active(state.lock_until, reading):
            if reading.degraded:
                logger.warning(f"Device {device_id}: clock degraded, keeping lock until {state.lock_until}")
            raise _locked_error(state.lock_until, reading)

    def record_failed_login(self, device_id: str) -> int:
        """Count a failed login; returns the attempts so far.

        Reaching the threshold resets the counter, starts the lock and raises
        ``AccountLocked``. While locked, fails fast without counting.
        """
        reading = self.ctx.clock.reading()
        now = reading.now

        def mutate(session: Session, state: DeviceSecurityState):
            if _lock_active(state.lock_until, reading):
                raise _locked_error(state.lock_until, reading)

            attempts = (state.failed_login_attempts or 0) + 1
            state.last_failed_at = now
            if attempts >= self.max_attempts:
                state.failed_login_attempts = 0
                state.lock_until = now + self.lock_duration
                return 0, state.lock_until

            state.failed_login_attempts = attempts
            return attempts, None

        attempts, lock_until = self.ctx.store.run(
            DeviceSecurityState,
            device_id,
            mutate,
            create=self._new_state(device_id),
        )
        monitoring.failed_logins.inc()

        if lock_until is not None:
            monitoring.device_locks.inc()
            logger.warning(f"Device {device_id}: locked until {lock_until}")
            raise _locked_error(lock_until, reading)

        logger.info(f"Device {device_id}: failed login {attempts}/{self.max_attempts}")
        return attempts

    def reset_failed_logins(self, device_id: str) -> None:
        """Clear the counter and any lock after a successful login."""

        def mutate(session: Session, state: DeviceSecurityState) -> None:
            state.failed_login_attempts = 0
            state.lock_until = None

        self.ctx.store.run(DeviceSecurityState, device_id, mutate, create=self._new_state(device_id))

    def assert_registration_quota(self, device_id: str) -> None:
        state = self.ensure_device_state(device_id)
        limit = self.ctx.settings.security.max_registrations_per_device
        if state.registration_count >= limit:
            raise RegistrationQuotaExceeded(device_id, limit)

    def _charge_registration(self, state: DeviceSecurityState) -> None:
        limit = self.ctx.settings.security.max_registrations_per_device
        if state.registration_count >= limit:
            raise RegistrationQuotaExceeded(state.device_id, limit)
        state.registration_count += 1

    def increment_registration_count(self, device_id: str) -> int:
        def mutate(session: Session, state: DeviceSecurityState) -> int:
            self._charge_registration(state)
            return state.registration_count

        return self.ctx.store.run(DeviceSecurityState, device_id, mutate, create=self._new_state(device_id))

    def register_on_device(self, device_id: str, register: Callable[[Session], T]) -> T:
        """Charge one registration to the device and run ``register`` in the same transaction.

        Nothing ``register`` adds to the session is committed when the quota
        is already used up, including after a retry caused by a concurrent
        registration on the same device.
        """

        def mutate(session: Session, state: DeviceSecurityState) -> T:
            self._charge_registration(state)
            return register(session)

        return self.ctx.store.run(DeviceSecurityState, device_id, mutate, create=self._new_state(device_id))
