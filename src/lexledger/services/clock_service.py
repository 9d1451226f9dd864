"""Trusted clock used for every day-boundary and lock-window decision."""
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta, tzinfo
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from lexledger import monitoring
from lexledger.errors import ClockUnavailable

logger = logging.getLogger(__name__)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def local_day(value: datetime, tz: tzinfo = UTC) -> date:
    """Calendar day of ``value`` in the ledger's day time zone."""
    return as_utc(value).astimezone(tz).date()


def calendar_days_between(earlier: datetime, later: datetime, tz: tzinfo = UTC) -> int:
    """Number of calendar-day boundaries from ``earlier`` to ``later`` (negative if reversed)."""
    return (local_day(later, tz) - local_day(earlier, tz)).days


def has_day_passed(last: Optional[datetime], now: datetime, tz: tzinfo = UTC) -> bool:
    """True when ``now`` falls on a later calendar day than ``last``, or there is no ``last``."""
    if last is None:
        return True
    return calendar_days_between(last, now, tz) > 0


def is_same_day(value: Optional[datetime], now: datetime, tz: tzinfo = UTC) -> bool:
    if value is None:
        return False
    return calendar_days_between(value, now, tz) == 0


def minutes_until(target: Optional[datetime], now: datetime) -> int:
    """Whole minutes from ``now`` until ``target``, rounded up; 0 if passed or missing."""
    if target is None:
        return 0
    seconds = (as_utc(target) - as_utc(now)).total_seconds()
    if seconds <= 0:
        return 0
    return int(-(-seconds // 60))


class ClockSource(ABC):
    """A time source the client cannot forge."""

    @abstractmethod
    def fetch(self) -> datetime:
        """Return the source's current time. May raise on failure."""


class DatabaseClockSource(ClockSource):
    """Reads the current time from the shared store's server clock."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def fetch(self) -> datetime:
        with self.session_factory() as session:
            value = session.execute(select(func.now())).scalar_one()
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        return as_utc(value)


class FixedClockSource(ClockSource):
    """Settable clock for tests and simulations."""

    def __init__(self, now: datetime):
        self._now = as_utc(now)
        self.available = True

    def fetch(self) -> datetime:
        if not self.available:
            raise ConnectionError("Clock source unavailable")
        return self._now

    def set(self, now: datetime) -> None:
        self._now = as_utc(now)

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now


@dataclass(frozen=True)
class ClockReading:
    """A point in time and whether it came from the trusted source."""
    now: datetime
    degraded: bool = False


class ClockOracle:
    """Single source of trustworthy "now".

    When the source cannot be reached within ``timeout_seconds`` the oracle
    falls back to the local clock corrected by the last known offset and
    flags the reading as degraded. Fetches run on a small worker pool, so
    one fetch that hangs does not hold back the readings after it. Callers
    making security decisions use ``trusted_now`` which refuses degraded
    readings.
    """

    def __init__(
        self,
        source: ClockSource,
        timeout_seconds: float = 3.0,
        local_clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        workers: int = 4,
    ):
        self.source = source
        self.timeout_seconds = timeout_seconds
        self.local_clock = local_clock
        self.last_offset = timedelta(0)
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="clock-oracle")

    def _fetch_with_timeout(self) -> datetime:
        future = self._executor.submit(self.source.fetch)
        return future.result(timeout=self.timeout_seconds)

    def reading(self) -> ClockReading:
        local_now = as_utc(self.local_clock())
        try:
            server_now = as_utc(self._fetch_with_timeout())
        except FutureTimeoutError:
            logger.warning("Clock source timed out after %.1fs, using local time", self.timeout_seconds)
        except Exception as e:
            logger.warning(f"Clock source unavailable, using local time: {e}")
        else:
            with self._lock:
                self.last_offset = server_now - local_now
            return ClockReading(now=server_now)

        monitoring.clock_degraded.inc()
        with self._lock:
            offset = self.last_offset
        return ClockReading(now=local_now + offset, degraded=True)

    def now(self) -> datetime:
        """Current time; degraded readings are allowed."""
        return self.reading().now

    def trusted_now(self) -> datetime:
        """Current time from the trusted source only."""
        reading = self.reading()
        if reading.degraded:
            raise ClockUnavailable("Trusted time is unavailable, local time cannot be used here")
        return reading.now

    def close(self) -> None:
        self._executor.shutdown(wait=False)
