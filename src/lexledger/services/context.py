"""Explicit context object shared by the ledger services."""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from lexledger.config import Settings, settings as default_settings
from lexledger.models.base import SessionLocal, make_session_factory
from lexledger.services.clock_service import ClockOracle, ClockSource, DatabaseClockSource
from lexledger.services.store import AccountStore, SqlAccountStore
from lexledger.services.word_progress_store import SqlWordProgressStore, WordProgressStore


@dataclass
class LedgerContext:
    """Everything an operation needs besides its arguments.

    Passed into every service instead of module-level state, so two contexts
    (e.g. two databases in tests) never share a clock offset or a store.
    """
    store: AccountStore
    clock: ClockOracle
    word_store: WordProgressStore
    settings: Settings

    @property
    def day_tz(self):
        return self.settings.clock.tzinfo

    @classmethod
    def create(
        cls,
        engine: Optional[Engine] = None,
        clock_source: Optional[ClockSource] = None,
        settings: Optional[Settings] = None,
        word_store: Optional[WordProgressStore] = None,
    ) -> "LedgerContext":
        settings = settings or default_settings
        session_factory: sessionmaker = make_session_factory(engine) if engine is not None else SessionLocal
        store = SqlAccountStore(session_factory, max_retries=settings.transactions.max_retries)
        clock = ClockOracle(
            clock_source or DatabaseClockSource(session_factory),
            timeout_seconds=settings.clock.timeout_seconds,
        )
        return cls(
            store=store,
            clock=clock,
            word_store=word_store or SqlWordProgressStore(),
            settings=settings,
        )
