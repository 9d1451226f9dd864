"""Database models for the ledger."""
import secrets

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import relationship

from lexledger.models.base import Base, TimestampMixin, UTCDateTime


def _transaction_id() -> str:
    return secrets.token_urlsafe(9)  # 12 characters


class Account(Base, TimestampMixin):
    """Durable record of a registered learner."""

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    identity = Column(String, unique=True, nullable=False)  # e.g. e-mail address
    display_name = Column(String, nullable=True)
    device_id = Column(String, nullable=True)

    # Resources
    daily_energy = Column(Integer, nullable=False, default=0)
    bonus_energy = Column(Integer, nullable=False, default=0)
    last_energy_refresh = Column(UTCDateTime, nullable=True)
    daily_reveal_tokens = Column(Integer, nullable=False, default=0)
    bonus_reveal_tokens = Column(Integer, nullable=False, default=0)
    last_reveal_refresh = Column(UTCDateTime, nullable=True)

    # Progression
    current_streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    last_activity_date = Column(UTCDateTime, nullable=True)
    todays_mastered = Column(Integer, nullable=False, default=0)
    todays_mastered_date = Column(UTCDateTime, nullable=True)
    total_words_learned = Column(Integer, nullable=False, default=0)
    last_login_at = Column(UTCDateTime, nullable=True)

    # Entitlement
    premium_active_until = Column(UTCDateTime, nullable=True)
    premium_started_at = Column(UTCDateTime, nullable=True)
    premium_source = Column(String, nullable=True)
    premium_trial_used = Column(Boolean, nullable=False, default=False)

    # Optimistic concurrency
    version_id = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("daily_energy >= 0", name="ck_daily_energy"),
        CheckConstraint("bonus_energy >= 0", name="ck_bonus_energy"),
        CheckConstraint("daily_reveal_tokens >= 0", name="ck_daily_reveal"),
        CheckConstraint("bonus_reveal_tokens >= 0", name="ck_bonus_reveal"),
    )
    __mapper_args__ = {"version_id_col": version_id}

    # Relationships
    transactions = relationship("ResourceTransaction", back_populates="account")
    word_progress = relationship("WordProgress", back_populates="account")

    def __repr__(self) -> str:
        return f"<Account {self.id} {self.identity}>"


class ResourceTransaction(Base):
    """Append-only audit row for a resource balance change."""

    __tablename__ = "resource_transactions"

    id = Column(String(12), primary_key=True, default=_transaction_id)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    resource_kind = Column(String, nullable=False)
    delta = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)
    created_at = Column(UTCDateTime, nullable=False)

    # Relationships
    account = relationship("Account", back_populates="transactions")


@event.listens_for(ResourceTransaction, "before_update")
def _reject_transaction_update(mapper, connection, target) -> None:
    raise ValueError(f"Resource transaction {target.id} is immutable")


class DeviceSecurityState(Base, TimestampMixin):
    """Failed-login counter and lockout window for one device."""

    __tablename__ = "device_security_states"

    device_id = Column(String, primary_key=True)
    registration_count = Column(Integer, nullable=False, default=0)
    failed_login_attempts = Column(Integer, nullable=False, default=0)
    last_failed_at = Column(UTCDateTime, nullable=True)
    lock_until = Column(UTCDateTime, nullable=True)

    version_id = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}


class WordProgress(Base, TimestampMixin):
    """Per-word learning progress of an account."""

    __tablename__ = "word_progress"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    word_id = Column(String, nullable=False)
    status = Column(String, nullable=False, default="unknown")
    attempts = Column(Integer, nullable=False, default=0)
    is_favorite = Column(Boolean, nullable=False, default=False)
    used_hint = Column(Boolean, nullable=False, default=False)
    last_answer_at = Column(UTCDateTime, nullable=True)
    user_example_sentence = Column(String, nullable=True)

    __table_args__ = (UniqueConstraint("account_id", "word_id", name="uq_word_progress"),)

    # Relationships
    account = relationship("Account", back_populates="word_progress")


class GuestMerge(Base):
    """Marks a guest snapshot as merged into an account."""

    __tablename__ = "guest_merges"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    guest_id = Column(String, nullable=False)
    merged_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (UniqueConstraint("account_id", "guest_id", name="uq_guest_merge"),)
