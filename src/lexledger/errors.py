"""Typed errors raised by the ledger services."""
from datetime import datetime
from typing import Optional


class LedgerError(Exception):
    """Base class for every error the ledger surfaces to the UI layer."""

    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InsufficientResource(LedgerError):
    """Daily and bonus pools together cannot cover the requested amount."""

    def __init__(self, kind: str, requested: int, available: int):
        super().__init__(f"No {kind} allowance left (requested {requested}, available {available})")
        self.kind = kind
        self.requested = requested
        self.available = available


class InvalidAmount(LedgerError, ValueError):
    """Consume was called with a negative amount."""


class AccountNotFound(LedgerError):
    def __init__(self, identity: str):
        super().__init__(f"No account matches {identity!r}")
        self.identity = identity


class AlreadyActive(LedgerError):
    def __init__(self, expires_at: Optional[datetime]):
        super().__init__("Premium membership is already active")
        self.expires_at = expires_at


class TrialAlreadyUsed(LedgerError):
    def __init__(self):
        super().__init__("The free trial has already been used")


class AccountLocked(LedgerError):
    """Too many failed logins on this device.

    ``remaining_minutes`` is always at least 1 while the lock is live so the
    UI never tells the user to wait "0 minutes".
    """

    def __init__(self, remaining_minutes: int, lock_until: Optional[datetime] = None):
        super().__init__(
            f"Too many failed login attempts. Please try again in {remaining_minutes} minutes."
        )
        self.remaining_minutes = remaining_minutes
        self.lock_until = lock_until


class RegistrationQuotaExceeded(LedgerError):
    def __init__(self, device_id: str, limit: int):
        super().__init__(f"Maximum number of registrations ({limit}) reached for this device")
        self.device_id = device_id
        self.limit = limit


class TransactionConflict(LedgerError):
    """Concurrent writes kept invalidating the read; caller should try again."""

    retryable = True

    def __init__(self, attempts: int):
        super().__init__(f"Transaction conflicted {attempts} times, please try again")
        self.attempts = attempts


class TransactionTimeout(LedgerError):
    """The store did not answer in time. The outcome is unknown."""

    retryable = True


class ClockUnavailable(LedgerError):
    """Only local, untrusted time is available."""

    retryable = True
