"""Atomic read-modify-write over a single durable record."""
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from lexledger import monitoring
from lexledger.errors import AccountNotFound, TransactionConflict, TransactionTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")
Mutator = Callable[[Session, Any], T]


class AccountStore(ABC):
    """Storage boundary: every mutation is one atomic transaction on one record."""

    @abstractmethod
    def run(
        self,
        model: Type,
        key: Any,
        mutator: Mutator,
        create: Optional[Callable[[], Any]] = None,
    ) -> Any:
        """Load ``model[key]``, apply ``mutator(session, record)`` and commit atomically.

        The mutator may be called more than once: on a conflicting concurrent
        write the whole read-modify-write is repeated from a fresh read.
        """

    @abstractmethod
    def get(self, model: Type, key: Any) -> Optional[Any]:
        """Read-only fetch of a single record."""

    @abstractmethod
    def session(self) -> Session:
        """A session for read-only queries."""


class SqlAccountStore(AccountStore):
    """SQLAlchemy implementation using version-column optimistic concurrency."""

    def __init__(self, session_factory: sessionmaker, max_retries: int = 5):
        self.session_factory = session_factory
        self.max_retries = max_retries

    def session(self) -> Session:
        return self.session_factory()

    def get(self, model: Type, key: Any) -> Optional[Any]:
        with self.session_factory() as session:
            return session.get(model, key)

    def run(
        self,
        model: Type,
        key: Any,
        mutator: Mutator,
        create: Optional[Callable[[], Any]] = None,
    ) -> Any:
        attempts = 0
        while True:
            attempts += 1
            session = self.session_factory()
            try:
                with monitoring.transaction_duration.labels(model=model.__name__).time():
                    record = session.get(model, key)
                    if record is None:
                        if create is None:
                            raise AccountNotFound(f"{model.__name__}:{key}")
                        record = create()
                        session.add(record)
                    result = mutator(session, record)
                    session.commit()
                return result
            except (StaleDataError, IntegrityError) as e:
                session.rollback()
                monitoring.transaction_conflicts.labels(model=model.__name__).inc()
                if attempts >= self.max_retries:
                    monitoring.transaction_failures.labels(error_type="conflict").inc()
                    logger.error(f"{model.__name__} {key}: giving up after {attempts} conflicting attempts")
                    raise TransactionConflict(attempts) from e
                logger.warning(f"{model.__name__} {key}: concurrent write detected, retrying ({attempts})")
            except OperationalError as e:
                session.rollback()
                monitoring.transaction_failures.labels(error_type="timeout").inc()
                logger.error(f"{model.__name__} {key}: store unavailable: {e}")
                raise TransactionTimeout("The store did not respond in time, please try again") from e
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()
