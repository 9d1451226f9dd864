"""Test configuration."""
import os
import tempfile
from datetime import UTC, datetime
from dataclasses import replace
from pathlib import Path
from typing import Generator

import pytest
from dotenv import load_dotenv
from faker import Faker

# Set test environment before any imports
os.environ["ENV"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("DATA_DIR", str(Path(tempfile.gettempdir()) / "lexledger-test"))

# Load test environment variables
test_env_path = Path(__file__).parent.parent.parent.parent / ".env.test"
load_dotenv(test_env_path)

# Import after environment setup
from lexledger.config import Settings, ensure_directories
from lexledger.models.base import init_db, make_engine
from lexledger.models.models import Account
from lexledger.services.account_service import AccountService
from lexledger.services.clock_service import FixedClockSource
from lexledger.services.context import LedgerContext
from lexledger.services.store import SqlAccountStore

fake = Faker()

START = datetime(2024, 3, 10, 9, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Set up test environment before each test."""
    ensure_directories()
    yield


@pytest.fixture
def engine(tmp_path):
    """A fresh file-backed database per test."""
    engine = make_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def clock_source() -> FixedClockSource:
    return FixedClockSource(START)


@pytest.fixture
def ctx(engine, clock_source) -> Generator[LedgerContext, None, None]:
    """Ledger context bound to the test database and a settable clock."""
    ctx = LedgerContext.create(engine=engine, clock_source=clock_source, settings=Settings())
    yield ctx
    ctx.clock.close()


class InterleavingStore(SqlAccountStore):
    """Runs ``competitor`` after the mutator and before the commit.

    Simulates another device writing the same record between our read and
    our write.
    """

    def __init__(self, session_factory, competitor, max_retries: int = 5, every_attempt: bool = False):
        super().__init__(session_factory, max_retries=max_retries)
        self.competitor = competitor
        self.every_attempt = every_attempt
        self.interleaved = 0

    def run(self, model, key, mutator, create=None):
        def interleaved(session, record):
            result = mutator(session, record)
            if self.every_attempt or not self.interleaved:
                self.interleaved += 1
                self.competitor()
            return result

        return super().run(model, key, interleaved, create)


@pytest.fixture
def interleaved(ctx):
    """Build a context whose store lets ``competitor`` write before each commit."""

    def build(competitor, **kwargs):
        store = InterleavingStore(ctx.store.session_factory, competitor, **kwargs)
        return replace(ctx, store=store), store

    return build


@pytest.fixture
def account_service(ctx: LedgerContext) -> AccountService:
    return AccountService(ctx)


@pytest.fixture
def account(account_service: AccountService) -> Account:
    """A freshly registered account with the default allotments."""
    return account_service.create_account(fake.unique.email(), display_name=fake.name())
