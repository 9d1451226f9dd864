"""Serializable models for the device-local guest state."""
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, Optional

from lexledger.models.enums import WordStatus


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


@dataclass
class GuestResources:
    """Resource pools of a guest; mirrors the account resource fields."""
    daily_energy: int = 0
    bonus_energy: int = 0
    last_energy_refresh: Optional[datetime] = None
    daily_reveal_tokens: int = 0
    bonus_reveal_tokens: int = 0
    last_reveal_refresh: Optional[datetime] = None


@dataclass
class GuestStats:
    """Progression counters of a guest."""
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: Optional[datetime] = None
    todays_mastered: int = 0
    todays_mastered_date: Optional[datetime] = None


@dataclass
class GuestPremiumState:
    premium_active_until: Optional[datetime] = None
    premium_started_at: Optional[datetime] = None
    premium_source: Optional[str] = None
    premium_trial_used: bool = False


@dataclass
class GuestWordProgress:
    """Per-word progress recorded while unauthenticated."""
    word_id: str
    status: WordStatus = WordStatus.UNKNOWN
    attempts: int = 0
    is_favorite: bool = False
    used_hint: bool = False
    last_answer_at: Optional[datetime] = None
    user_example_sentence: Optional[str] = None
    updated_at: Optional[datetime] = None


_DATETIME_FIELDS = {
    "last_energy_refresh",
    "last_reveal_refresh",
    "last_activity_date",
    "todays_mastered_date",
    "premium_active_until",
    "premium_started_at",
    "last_answer_at",
    "updated_at",
}


def _dump(obj: Any) -> Dict[str, Any]:
    data = asdict(obj)
    for key, value in data.items():
        if key in _DATETIME_FIELDS:
            data[key] = _to_iso(value)
        elif isinstance(value, WordStatus):
            data[key] = value.value
    return data


def _load(cls, raw: Optional[Dict[str, Any]]):
    """Build ``cls`` from stored data, ignoring unknown keys and keeping defaults for missing ones."""
    raw = raw or {}
    known = {f.name for f in fields(cls)}
    kwargs = {}
    for key, value in raw.items():
        if key not in known:
            continue
        if key in _DATETIME_FIELDS:
            value = _from_iso(value)
        kwargs[key] = value
    return cls(**kwargs)


@dataclass
class GuestLocalState:
    """Everything a guest accumulates on the device before signing in."""
    guest_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    resources: GuestResources = field(default_factory=GuestResources)
    stats: GuestStats = field(default_factory=GuestStats)
    premium: GuestPremiumState = field(default_factory=GuestPremiumState)
    words: Dict[str, GuestWordProgress] = field(default_factory=dict)

    def is_empty(self) -> bool:
        """True when nothing worth merging has been recorded."""
        return (
            not self.words
            and self.resources.bonus_energy == 0
            and self.resources.bonus_reveal_tokens == 0
            and self.stats.current_streak == 0
            and self.stats.longest_streak == 0
            and self.stats.last_activity_date is None
            and self.stats.todays_mastered == 0
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "guest_id": self.guest_id,
            "resources": _dump(self.resources),
            "stats": _dump(self.stats),
            "premium": _dump(self.premium),
            "words": {word_id: _dump(word) for word_id, word in self.words.items()},
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "GuestLocalState":
        words = {}
        for word_id, word_raw in (raw.get("words") or {}).items():
            word = _load(GuestWordProgress, {**word_raw, "word_id": word_id})
            try:
                word.status = WordStatus(word.status)
            except ValueError:
                word.status = WordStatus.UNKNOWN
            words[word_id] = word

        state = cls(
            resources=_load(GuestResources, raw.get("resources")),
            stats=_load(GuestStats, raw.get("stats")),
            premium=_load(GuestPremiumState, raw.get("premium")),
            words=words,
        )
        if raw.get("guest_id"):
            state.guest_id = raw["guest_id"]
        return state
