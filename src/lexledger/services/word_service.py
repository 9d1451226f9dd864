"""Service for recording per-word progress of signed-in learners."""
import logging
from dataclasses import replace
from typing import Callable, List, Tuple

from sqlalchemy.orm import Session

from lexledger.models.enums import WordStatus
from lexledger.models.models import Account
from lexledger.services.context import LedgerContext
from lexledger.services.progression_service import advance_streak, bump_mastered, roll_mastered_day
from lexledger.services.word_progress_store import WordProgressRecord

logger = logging.getLogger(__name__)


class WordService:
    """Service for managing a learner's word progress."""

    def __init__(self, ctx: LedgerContext):
        """Initialize the service with a ledger context."""
        self.ctx = ctx

    def _update(
        self,
        account_id: int,
        word_id: str,
        change: Callable[[WordProgressRecord], None],
    ) -> Tuple[WordProgressRecord, WordProgressRecord]:
        """Apply ``change`` to the stored record (or a fresh one); returns (before, after)."""
        now = self.ctx.clock.now()
        with self.ctx.store.session() as session:
            before, after = self._change_word(session, account_id, word_id, change, now)
            session.commit()
        return before, after

    def _change_word(self, session: Session, account_id: int, word_id: str, change, now):
        existing = self.ctx.word_store.get_word(session, account_id, word_id)
        before = existing or WordProgressRecord(word_id=word_id)
        after = replace(before)
        change(after)
        after.updated_at = now
        self.ctx.word_store.set_progress(session, account_id, after)
        return before, after

    def get_progress(self, account_id: int) -> List[WordProgressRecord]:
        with self.ctx.store.session() as session:
            return list(self.ctx.word_store.get_progress(session, account_id))

    def record_answer(self, account_id: int, word_id: str, is_correct: bool) -> Tuple[WordProgressRecord, bool]:
        """Record an answer together with its streak and mastery effect.

        The word and the account counters are written in one account
        transaction, so two devices answering the same word count its mastery
        once. Returns the record and whether the word became mastered just now.
        """
        now = self.ctx.clock.now()
        tz = self.ctx.day_tz

        def change(record: WordProgressRecord) -> None:
            record.attempts += 1
            record.status = WordStatus.MASTERED if is_correct else WordStatus.IN_PROGRESS
            record.last_answer_at = now

        def mutate(session: Session, account: Account) -> Tuple[WordProgressRecord, bool]:
            before, after = self._change_word(session, account_id, word_id, change, now)
            newly_mastered = after.status == WordStatus.MASTERED and before.status != WordStatus.MASTERED

            roll_mastered_day(account, now, tz)
            advance_streak(account, now, tz)
            account.last_login_at = now
            if newly_mastered:
                bump_mastered(account, now, tz)
                account.total_words_learned = (account.total_words_learned or 0) + 1
            return after, newly_mastered

        record, newly_mastered = self.ctx.store.run(Account, account_id, mutate)
        logger.info(
            f"Account {account_id}: answer on {word_id} ({'correct' if is_correct else 'wrong'})"
            f"{', newly mastered' if newly_mastered else ''}"
        )
        return record, newly_mastered

    def mark_as_known(self, account_id: int, word_id: str) -> Tuple[WordProgressRecord, bool]:
        return self.record_answer(account_id, word_id, True)

    def toggle_favorite(self, account_id: int, word_id: str, is_favorite: bool) -> WordProgressRecord:
        def change(record: WordProgressRecord) -> None:
            record.is_favorite = is_favorite

        return self._update(account_id, word_id, change)[1]

    def record_hint_usage(self, account_id: int, word_id: str) -> WordProgressRecord:
        def change(record: WordProgressRecord) -> None:
            record.used_hint = True

        return self._update(account_id, word_id, change)[1]

    def update_example_sentence(self, account_id: int, word_id: str, sentence: str) -> WordProgressRecord:
        """Store the learner's own example sentence; blank input clears it."""

        def change(record: WordProgressRecord) -> None:
            record.user_example_sentence = sentence.strip() or None

        return self._update(account_id, word_id, change)[1]
