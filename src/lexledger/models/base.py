"""Base model configuration."""
from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import Column, DateTime, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from lexledger.config import settings


class UTCDateTime(TypeDecorator):
    """DateTime column that always hands back timezone-aware UTC values.

    SQLite drops tzinfo on the way in, so values are normalised to UTC before
    binding and re-tagged as UTC when loaded.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def make_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine with the bounded lock timeout the store relies on."""
    if url.startswith("sqlite"):
        connect_args = {
            "timeout": settings.database.timeout_seconds,
            "check_same_thread": False,
        }
        if url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(url, echo=echo, connect_args=connect_args, poolclass=StaticPool)
        return create_engine(url, echo=echo, connect_args=connect_args)
    return create_engine(
        url,
        echo=echo,
        pool_pre_ping=True,
        pool_timeout=settings.database.timeout_seconds,
    )


# Create SQLAlchemy engine
engine = make_engine(settings.database.url, echo=settings.database.echo)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

# Create declarative base class
Base = declarative_base()


class TimestampMixin:
    """Mixin to add timestamp columns to models."""
    created_at = Column(UTCDateTime, default=lambda: datetime.now(UTC))
    updated_at = Column(
        UTCDateTime,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


def make_session_factory(bind: Engine) -> sessionmaker:
    """Build a session factory configured like ``SessionLocal`` for another engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=bind, expire_on_commit=False)


def init_db(bind: Optional[Engine] = None) -> None:
    """Initialize database."""
    # Register every model on the metadata before creating tables
    from lexledger.models import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)  # Create tables if they don't exist
