"""Per-word progress storage used by the progression tracker and reconciler."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from lexledger.models.enums import WordStatus
from lexledger.models.models import WordProgress


@dataclass
class WordProgressRecord:
    """Storage-agnostic view of one word's progress."""
    word_id: str
    status: WordStatus = WordStatus.UNKNOWN
    attempts: int = 0
    is_favorite: bool = False
    used_hint: bool = False
    last_answer_at: Optional[datetime] = None
    user_example_sentence: Optional[str] = None
    updated_at: Optional[datetime] = None


class WordProgressStore(ABC):
    """Word progress collaborator.

    Methods take the caller's session so writes join the caller's
    transaction.
    """

    @abstractmethod
    def get_progress(self, session: Session, account_id: int) -> Iterator[WordProgressRecord]:
        """Yield every stored record of the account."""

    @abstractmethod
    def get_word(self, session: Session, account_id: int, word_id: str) -> Optional[WordProgressRecord]:
        """Return one record, or None."""

    @abstractmethod
    def set_progress(self, session: Session, account_id: int, record: WordProgressRecord) -> None:
        """Create or replace the record for ``record.word_id``."""


def _to_record(row: WordProgress) -> WordProgressRecord:
    try:
        status = WordStatus(row.status)
    except ValueError:
        status = WordStatus.UNKNOWN
    return WordProgressRecord(
        word_id=row.word_id,
        status=status,
        attempts=row.attempts or 0,
        is_favorite=bool(row.is_favorite),
        used_hint=bool(row.used_hint),
        last_answer_at=row.last_answer_at,
        user_example_sentence=row.user_example_sentence,
        updated_at=row.updated_at,
    )


class SqlWordProgressStore(WordProgressStore):
    """Stores word progress in the ``word_progress`` table."""

    def _row(self, session: Session, account_id: int, word_id: str) -> Optional[WordProgress]:
        return session.execute(
            select(WordProgress).where(
                WordProgress.account_id == account_id,
                WordProgress.word_id == word_id,
            )
        ).scalar_one_or_none()

    def get_progress(self, session: Session, account_id: int) -> Iterator[WordProgressRecord]:
        rows = session.execute(
            select(WordProgress).where(WordProgress.account_id == account_id).order_by(WordProgress.word_id)
        ).scalars()
        for row in rows:
            yield _to_record(row)

    def get_word(self, session: Session, account_id: int, word_id: str) -> Optional[WordProgressRecord]:
        row = self._row(session, account_id, word_id)
        return _to_record(row) if row else None

    def set_progress(self, session: Session, account_id: int, record: WordProgressRecord) -> None:
        row = self._row(session, account_id, record.word_id)
        if row is None:
            row = WordProgress(account_id=account_id, word_id=record.word_id)
            session.add(row)
        row.status = record.status.value
        row.attempts = record.attempts
        row.is_favorite = record.is_favorite
        row.used_hint = record.used_hint
        row.last_answer_at = record.last_answer_at
        row.user_example_sentence = record.user_example_sentence
        if record.updated_at is not None:
            row.updated_at = record.updated_at
