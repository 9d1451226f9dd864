"""Application wiring: database, logging, metrics and per-device sessions."""
import logging
from typing import Optional

from sqlalchemy.engine import Engine

from lexledger import monitoring
from lexledger.config import Settings, ensure_directories, settings as default_settings
from lexledger.logging_config import setup_logging
from lexledger.models.base import engine as default_engine, init_db
from lexledger.services.clock_service import ClockSource
from lexledger.services.context import LedgerContext
from lexledger.services.guest_service import GuestSession, JsonFileStorage, LocalStorage
from lexledger.services.session_service import SessionService


class LexLedger:
    """Main application class."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        engine: Optional[Engine] = None,
        clock_source: Optional[ClockSource] = None,
    ):
        """Initialize the application."""
        self.settings = settings or default_settings
        self.engine = engine
        self.clock_source = clock_source
        self.ctx: Optional[LedgerContext] = None
        self.running = False
        self.logger = logging.getLogger(__name__)

    def start(self, configure_logging: bool = True) -> LedgerContext:
        """Start the application."""
        if self.running:
            return self.ctx

        if configure_logging:
            setup_logging(config=self.settings.logging)
        ensure_directories()

        try:
            init_db(self.engine or default_engine)
            self.logger.info("Database initialized")

            self.ctx = LedgerContext.create(
                engine=self.engine,
                clock_source=self.clock_source,
                settings=self.settings,
            )

            if self.settings.monitoring.enabled:
                monitoring.start_monitoring(self.settings.monitoring.port)
                self.logger.info(f"Metrics exported on port {self.settings.monitoring.port}")

            self.running = True
            self.logger.info("Ledger started")
            return self.ctx

        except Exception as e:
            self.logger.error("Failed to start ledger: %s", str(e))
            self.stop()
            raise

    def stop(self) -> None:
        """Stop the application."""
        if self.ctx is not None:
            self.ctx.clock.close()
            self.ctx = None
        if self.running:
            self.running = False
            self.logger.info("Ledger stopped")

    def open_session(self, storage: Optional[LocalStorage] = None) -> SessionService:
        """A session facade for one device, starting as a guest."""
        if not self.running:
            raise RuntimeError("Ledger is not started")
        storage = storage or JsonFileStorage(self.settings.guest.storage_dir)
        return SessionService(self.ctx, GuestSession(self.ctx, storage))
