"""Tests for logging configuration."""
import logging

import pytest

from lexledger.config import LoggingSettings
from lexledger.logging_config import LedgerFileHandler, LedgerHandlerMixin, setup_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        if isinstance(handler, LedgerHandlerMixin):
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def ledger_handlers(root: logging.Logger):
    return [handler for handler in root.handlers if isinstance(handler, LedgerHandlerMixin)]


def test_setup_logging_replaces_only_its_own_handlers(root_logger) -> None:
    """Test that repeated setup keeps one ledger handler and leaves host handlers alone."""
    host_handler = logging.NullHandler()
    root_logger.addHandler(host_handler)

    setup_logging("DEBUG")
    setup_logging("WARNING")

    assert root_logger.level == logging.WARNING
    assert len(ledger_handlers(root_logger)) == 1
    assert host_handler in root_logger.handlers
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


def test_setup_logging_with_file(root_logger, tmp_path) -> None:
    """Test the rotating file handler and its limits."""
    log_file = tmp_path / "logs" / "ledger.log"
    config = LoggingSettings(level="INFO", file=str(log_file), max_bytes=1024, backup_count=2)

    setup_logging(config=config)
    logging.getLogger("lexledger.tests").info("written")

    file_handlers = [handler for handler in root_logger.handlers if isinstance(handler, LedgerFileHandler)]
    assert len(file_handlers) == 1
    assert file_handlers[0].maxBytes == 1024
    assert file_handlers[0].backupCount == 2
    file_handlers[0].flush()
    assert "written" in log_file.read_text(encoding="utf-8")
