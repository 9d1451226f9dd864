"""Enumerations shared by the durable and device-local models."""
from enum import Enum


class ResourceKind(str, Enum):
    """Consumable allowances tracked by the ledger."""
    ENERGY = "energy"
    REVEAL = "reveal"  # "reveal answer" tokens


class TransactionReason(str, Enum):
    """Why a resource balance changed."""
    DAILY_REFRESH = "dailyRefresh"
    CONSUMPTION = "consumption"
    AD_GRANTED = "adGranted"
    ADMIN_GRANT = "adminGrant"
    MANUAL_ADJUST = "manualAdjust"
    PURCHASE = "purchase"
    GUEST_MERGE = "guestMerge"


class WordStatus(str, Enum):
    """Learning status of a word, ordered by priority."""
    UNKNOWN = "unknown"
    IN_PROGRESS = "inProgress"
    MASTERED = "mastered"

    @property
    def priority(self) -> int:
        return _STATUS_PRIORITY[self]

    @classmethod
    def highest(cls, *statuses: "WordStatus") -> "WordStatus":
        return max(statuses, key=lambda status: status.priority)


_STATUS_PRIORITY = {
    WordStatus.UNKNOWN: 0,
    WordStatus.IN_PROGRESS: 1,
    WordStatus.MASTERED: 2,
}


class PremiumSource(str, Enum):
    """Where a premium window came from."""
    TRIAL = "trial"
    SUBSCRIPTION = "subscription"
    PURCHASE = "purchase"
    ADMIN = "admin"


class EntitlementState(str, Enum):
    """Derived entitlement state; never stored."""
    NONE = "none"
    TRIAL_ACTIVE = "trial_active"
    PAID_ACTIVE = "paid_active"
    EXPIRED = "expired"
