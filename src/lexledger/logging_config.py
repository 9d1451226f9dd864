"""Logging setup for processes embedding the ledger."""
import logging
import logging.handlers
from pathlib import Path
from typing import List, Optional

from lexledger.config import LoggingSettings, settings

# Libraries whose chatter stays out of ledger logs
QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "sqlalchemy.orm")


class LedgerHandlerMixin:
    """Marks handlers installed by ``setup_logging`` so a second call replaces only them."""


class LedgerStreamHandler(LedgerHandlerMixin, logging.StreamHandler):
    pass


class LedgerFileHandler(LedgerHandlerMixin, logging.handlers.RotatingFileHandler):
    pass


def _ledger_handlers(config: LoggingSettings) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [LedgerStreamHandler()]
    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            LedgerFileHandler(
                config.file,
                maxBytes=config.max_bytes,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
        )
    return handlers


def setup_logging(level: Optional[str] = None, config: Optional[LoggingSettings] = None) -> None:
    """Install the ledger's console and optional rotating file handlers on the root logger.

    Handlers added by the host application are left in place.
    """
    config = config or settings.logging
    root_logger = logging.getLogger()
    root_logger.setLevel(level or config.level)

    for handler in root_logger.handlers[:]:
        if isinstance(handler, LedgerHandlerMixin):
            root_logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(config.format)
    for handler in _ledger_handlers(config):
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Ledger logging at {logging.getLevelName(root_logger.level)}")
