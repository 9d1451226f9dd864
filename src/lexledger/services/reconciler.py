"""One-time merge of a guest's device-local state into a signed-in account."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from lexledger import monitoring
from lexledger.models.enums import ResourceKind, TransactionReason, WordStatus
from lexledger.models.models import Account, GuestMerge
from lexledger.services.clock_service import as_utc, is_same_day
from lexledger.services.context import LedgerContext
from lexledger.services.guest_service import GuestSession
from lexledger.services.progression_service import roll_mastered_day
from lexledger.services.resource_service import ResourceService
from lexledger.services.word_progress_store import WordProgressRecord

logger = logging.getLogger(__name__)


def _later(first: Optional[datetime], second: Optional[datetime]) -> Optional[datetime]:
    if first is None:
        return as_utc(second)
    if second is None:
        return as_utc(first)
    return max(as_utc(first), as_utc(second))


def merge_word_progress(guest: Optional[Any], account: Optional[Any]) -> WordProgressRecord:
    """Combine the guest and account records of one word.

    Uses only max/OR/priority operators, so merging the same inputs again
    gives the same record.
    """
    sides = [side for side in (guest, account) if side is not None]
    if not sides:
        raise ValueError("At least one word record is required")

    status = WordStatus.highest(*(WordStatus(side.status) for side in sides))

    # Most recently written non-empty sentence wins
    sentence = None
    sentence_at = None
    for side in sides:
        if not side.user_example_sentence:
            continue
        written_at = as_utc(side.updated_at)
        if sentence is None or (written_at is not None and (sentence_at is None or written_at > sentence_at)):
            sentence = side.user_example_sentence
            sentence_at = written_at

    last_answer_at = None
    updated_at = None
    for side in sides:
        last_answer_at = _later(last_answer_at, side.last_answer_at)
        updated_at = _later(updated_at, side.updated_at)

    return WordProgressRecord(
        word_id=sides[0].word_id,
        status=status,
        attempts=max(side.attempts or 0 for side in sides),
        is_favorite=any(side.is_favorite for side in sides),
        used_hint=any(side.used_hint for side in sides),
        last_answer_at=last_answer_at,
        user_example_sentence=sentence,
        updated_at=updated_at,
    )


@dataclass
class ReconciliationResult:
    account_id: int
    guest_id: Optional[str] = None
    words_merged: int = 0
    energy_granted: int = 0
    reveal_granted: int = 0
    bonus_granted: bool = False
    skipped: bool = False


class GuestReconciler:
    """Merges ``GuestSession`` state into an account in one transaction."""

    def __init__(self, ctx: LedgerContext):
        """Initialize the reconciler with a ledger context."""
        self.ctx = ctx
        self.resource_service = ResourceService(ctx)

    def reconcile_guest_into_account(self, account_id: int, guest_session: GuestSession) -> ReconciliationResult:
        """Merge the guest's words, progression and bonus pools into the account.

        Guest daily pools are discarded. The guest state is cleared only once
        the transaction has committed; on failure it is kept so the merge can
        be retried on the next sign-in.
        """
        if not guest_session.exists() or guest_session.state.is_empty():
            guest_session.clear()
            monitoring.reconciliations.labels(outcome="skipped").inc()
            logger.info(f"Account {account_id}: no guest state to merge")
            return ReconciliationResult(account_id=account_id, skipped=True)

        guest = guest_session.state
        now = self.ctx.clock.now()
        tz = self.ctx.day_tz

        def mutate(session: Session, account: Account) -> ReconciliationResult:
            result = ReconciliationResult(account_id=account_id, guest_id=guest.guest_id)
            word_store = self.ctx.word_store

            stored = {record.word_id: record for record in word_store.get_progress(session, account_id)}
            merged = {}
            for word_id in sorted(set(guest.words) | set(stored)):
                record = merge_word_progress(guest.words.get(word_id), stored.get(word_id))
                merged[word_id] = record
                if record != stored.get(word_id):
                    word_store.set_progress(session, account_id, record)
                    result.words_merged += 1

            mastered = [record for record in merged.values() if record.status == WordStatus.MASTERED]
            mastered_today = sum(1 for record in mastered if is_same_day(record.last_answer_at, now, tz))

            stats = guest.stats
            account.current_streak = max(account.current_streak or 0, stats.current_streak or 0)
            account.longest_streak = max(
                account.longest_streak or 0,
                stats.longest_streak or 0,
                account.current_streak,
            )
            account.last_activity_date = _later(account.last_activity_date, stats.last_activity_date)

            roll_mastered_day(account, now, tz)
            guest_today = stats.todays_mastered if is_same_day(stats.todays_mastered_date, now, tz) else 0
            todays_mastered = max(guest_today or 0, mastered_today)
            if todays_mastered > 0:
                account.todays_mastered = todays_mastered
                account.todays_mastered_date = now
            else:
                account.todays_mastered = 0
                account.todays_mastered_date = None

            account.total_words_learned = max(account.total_words_learned or 0, len(mastered))

            marker = session.execute(
                select(GuestMerge).where(
                    GuestMerge.account_id == account_id,
                    GuestMerge.guest_id == guest.guest_id,
                )
            ).scalar_one_or_none()
            if marker is None:
                reason = TransactionReason.GUEST_MERGE
                result.energy_granted = self.resource_service.apply_grant(
                    session, account, ResourceKind.ENERGY, guest.resources.bonus_energy, reason, now
                )
                result.reveal_granted = self.resource_service.apply_grant(
                    session, account, ResourceKind.REVEAL, guest.resources.bonus_reveal_tokens, reason, now
                )
                session.add(GuestMerge(account_id=account_id, guest_id=guest.guest_id, merged_at=now))
                result.bonus_granted = True
            return result

        try:
            result = self.ctx.store.run(Account, account_id, mutate)
        except Exception as e:
            monitoring.reconciliations.labels(outcome="failed").inc()
            logger.error(f"Account {account_id}: guest merge failed, keeping guest state: {e}")
            raise

        guest_session.clear()
        monitoring.reconciliations.labels(outcome="merged").inc()
        logger.info(
            f"Account {account_id}: merged guest {result.guest_id} "
            f"({result.words_merged} words, energy +{result.energy_granted}, reveal +{result.reveal_granted})"
        )
        return result
