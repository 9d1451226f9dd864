"""Device-local ledger for learners who have not signed in yet.

The guest state has a single writer (this device) and needs no locking.
Persisting it is best effort: a failed write is logged and the in-memory
state stays authoritative for the rest of the session.
"""
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from lexledger.errors import InvalidAmount
from lexledger.models.enums import PremiumSource, ResourceKind, WordStatus
from lexledger.models.guest_models import GuestLocalState, GuestWordProgress
from lexledger.services.allotments import add_to_bonus, draw_down, refill_pools
from lexledger.services.context import LedgerContext
from lexledger.services.entitlement_service import (
    PremiumStatus,
    check_trial_allowed,
    open_window,
    plan_duration,
    raise_allotments,
    status_of,
)
from lexledger.services.progression_service import (
    StreakTransition,
    advance_streak,
    bump_mastered,
    roll_mastered_day,
)
from lexledger.services.resource_service import ResourceBalance, balance_of

logger = logging.getLogger(__name__)


class LocalStorage(ABC):
    """Scoped key/value storage on the device."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored blob, or None."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete ``key``; missing keys are ignored."""


class JsonFileStorage(LocalStorage):
    """One JSON file per key inside ``directory``."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(path)

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class MemoryStorage(LocalStorage):
    """In-process storage, used in tests and by short-lived guest sessions."""

    def __init__(self):
        self.data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class GuestSession:
    """Resources, streaks, premium and word progress of an unauthenticated learner.

    Applies the same rules as the account services to a ``GuestLocalState``
    and writes it back to ``storage`` after every change.
    """

    def __init__(self, ctx: LedgerContext, storage: LocalStorage, key: Optional[str] = None):
        """Initialize the session with a ledger context and device storage."""
        self.ctx = ctx
        self.storage = storage
        self.key = key or ctx.settings.guest.storage_key
        self._state: Optional[GuestLocalState] = None

    @property
    def state(self) -> GuestLocalState:
        """The current guest state, loaded or created on first access."""
        if self._state is None:
            self._state = self.load()
        return self._state

    def exists(self) -> bool:
        return self._state is not None or self.storage.get(self.key) is not None

    def load(self) -> GuestLocalState:
        """Read the stored state; a missing or unreadable blob yields a fresh one."""
        raw = self.storage.get(self.key)
        if raw is None:
            return GuestLocalState()
        try:
            return GuestLocalState.from_dict(json.loads(raw))
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Discarding unreadable guest state under {self.key}: {e}")
            return GuestLocalState()

    def save(self) -> bool:
        """Persist the state; returns False if the write failed."""
        try:
            self.storage.set(self.key, json.dumps(self.state.to_dict()))
            return True
        except Exception as e:
            logger.error(f"Failed to persist guest state {self.state.guest_id}: {e}")
            return False

    def clear(self) -> None:
        """Forget the guest state, on device and in memory."""
        self.storage.remove(self.key)
        self._state = None

    # Resources

    def _refill(self, now: datetime) -> List[ResourceKind]:
        return refill_pools(
            self.state.resources,
            self.state.premium.premium_active_until,
            now,
            self.ctx.settings,
            self.ctx.day_tz,
        )

    def ensure_resources(self) -> List[ResourceKind]:
        refilled = self._refill(self.ctx.clock.now())
        if refilled:
            self.save()
        return refilled

    def balance(self, kind: ResourceKind) -> ResourceBalance:
        return balance_of(self.state.resources, ResourceKind(kind))

    def consume(self, kind: ResourceKind, amount: int = 1) -> ResourceBalance:
        """Spend from the guest pools with the account rules: daily first, all or nothing."""
        kind = ResourceKind(kind)
        if amount < 0:
            raise InvalidAmount(f"Cannot consume a negative amount ({amount})")

        refilled = self._refill(self.ctx.clock.now())
        if amount > 0:
            draw_down(self.state.resources, kind, amount)
        if amount > 0 or refilled:
            self.save()
        return self.balance(kind)

    def add_bonus(self, energy_delta: int = 0, reveal_delta: int = 0) -> Tuple[int, int]:
        """Adjust both bonus pools; returns the deltas actually applied."""
        applied = (
            add_to_bonus(self.state.resources, ResourceKind.ENERGY, energy_delta),
            add_to_bonus(self.state.resources, ResourceKind.REVEAL, reveal_delta),
        )
        if any(applied):
            self.save()
        return applied

    # Progression

    def record_activity(self) -> StreakTransition:
        now = self.ctx.clock.now()
        roll_mastered_day(self.state.stats, now, self.ctx.day_tz)
        transition = advance_streak(self.state.stats, now, self.ctx.day_tz)
        self.save()
        return transition

    def record_mastery(self) -> StreakTransition:
        now = self.ctx.clock.now()
        tz = self.ctx.day_tz
        stats = self.state.stats
        roll_mastered_day(stats, now, tz)
        transition = advance_streak(stats, now, tz)
        bump_mastered(stats, now, tz)
        self.save()
        return transition

    # Entitlement

    def premium_status(self) -> PremiumStatus:
        return status_of(self.state.premium, self.ctx.clock.now())

    def start_trial(self) -> PremiumStatus:
        now = self.ctx.clock.now()
        premium = self.state.premium
        check_trial_allowed(premium, now)
        open_window(premium, now, self.ctx.settings.entitlement.trial_duration_days, PremiumSource.TRIAL)
        raise_allotments(self.state.resources, self.ctx.settings, now)
        self.save()
        logger.info(f"Guest {self.state.guest_id}: trial started, active until {premium.premium_active_until}")
        return status_of(premium, now)

    def activate_premium(
        self,
        plan: Optional[str] = None,
        duration_days: Optional[int] = None,
        source: Union[PremiumSource, str] = PremiumSource.PURCHASE,
    ) -> PremiumStatus:
        source = PremiumSource(source)
        duration_days = plan_duration(self.ctx.settings, plan, duration_days)
        now = self.ctx.clock.now()
        open_window(self.state.premium, now, duration_days, source)
        raise_allotments(self.state.resources, self.ctx.settings, now)
        self.save()
        return status_of(self.state.premium, now)

    # Words

    def _update_word(
        self,
        word_id: str,
        change: Callable[[GuestWordProgress], None],
    ) -> Tuple[GuestWordProgress, GuestWordProgress]:
        before = self.state.words.get(word_id) or GuestWordProgress(word_id=word_id)
        after = replace(before)
        change(after)
        after.updated_at = self.ctx.clock.now()
        self.state.words[word_id] = after
        self.save()
        return before, after

    def record_answer(self, word_id: str, is_correct: bool) -> Tuple[GuestWordProgress, bool]:
        """Record an answer; returns the record and whether the word became mastered just now."""
        now = self.ctx.clock.now()

        def change(word: GuestWordProgress) -> None:
            word.attempts += 1
            word.status = WordStatus.MASTERED if is_correct else WordStatus.IN_PROGRESS
            word.last_answer_at = now

        before, after = self._update_word(word_id, change)
        return after, after.status == WordStatus.MASTERED and before.status != WordStatus.MASTERED

    def toggle_favorite(self, word_id: str, is_favorite: bool) -> GuestWordProgress:
        def change(word: GuestWordProgress) -> None:
            word.is_favorite = is_favorite

        return self._update_word(word_id, change)[1]

    def record_hint_usage(self, word_id: str) -> GuestWordProgress:
        def change(word: GuestWordProgress) -> None:
            word.used_hint = True

        return self._update_word(word_id, change)[1]

    def update_example_sentence(self, word_id: str, sentence: str) -> GuestWordProgress:
        def change(word: GuestWordProgress) -> None:
            word.user_example_sentence = sentence.strip() or None

        return self._update_word(word_id, change)[1]
