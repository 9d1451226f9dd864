"""Tests for word progress of signed-in learners."""
import pytest
from faker import Faker

from lexledger.models.enums import WordStatus
from lexledger.services.account_service import AccountService
from lexledger.services.word_service import WordService

fake = Faker()


@pytest.fixture
def word_service(ctx) -> WordService:
    """Create a word service instance."""
    return WordService(ctx)


@pytest.fixture
def word_id() -> str:
    return fake.word()


def test_record_answer(word_service, account, word_id) -> None:
    """Test answer recording and the newly-mastered flag."""
    record, newly_mastered = word_service.record_answer(account.id, word_id, False)
    assert record.status == WordStatus.IN_PROGRESS
    assert record.attempts == 1
    assert not newly_mastered

    record, newly_mastered = word_service.record_answer(account.id, word_id, True)
    assert record.status == WordStatus.MASTERED
    assert record.attempts == 2
    assert newly_mastered

    _, newly_mastered = word_service.mark_as_known(account.id, word_id)
    assert not newly_mastered


def test_word_flags(word_service, account, word_id) -> None:
    """Test favorite and hint flags."""
    word_service.toggle_favorite(account.id, word_id, True)
    record = word_service.record_hint_usage(account.id, word_id)

    assert record.is_favorite
    assert record.used_hint
    assert record.status == WordStatus.UNKNOWN

    record = word_service.toggle_favorite(account.id, word_id, False)
    assert not record.is_favorite
    assert record.used_hint


def test_update_example_sentence(word_service, account, word_id) -> None:
    """Test storing and clearing the learner's own sentence."""
    sentence = fake.sentence()
    record = word_service.update_example_sentence(account.id, word_id, f" {sentence} ")
    assert record.user_example_sentence == sentence

    record = word_service.update_example_sentence(account.id, word_id, "   ")
    assert record.user_example_sentence is None


def test_get_progress(word_service, account) -> None:
    """Test listing an account's words."""
    word_service.record_answer(account.id, "apple", True)
    word_service.record_answer(account.id, "banana", False)

    progress = word_service.get_progress(account.id)

    assert [record.word_id for record in progress] == ["apple", "banana"]
    assert word_service.get_progress(account.id + 1) == []


def test_answer_updates_progression(ctx, clock_source, word_service, account, word_id) -> None:
    """Test that answers drive the streak and the mastery counters."""
    word_service.record_answer(account.id, word_id, False)
    clock_source.advance(days=1)
    word_service.record_answer(account.id, word_id, True)
    word_service.record_answer(account.id, word_id, True)

    snapshot = AccountService(ctx).snapshot(account.id)
    assert snapshot["current_streak"] == 2
    assert snapshot["todays_mastered"] == 1
    assert snapshot["total_words_learned"] == 1


def test_racing_correct_answers_master_once(ctx, word_service, account, interleaved) -> None:
    """Test that two devices mastering the same word count it once."""
    outcomes = []

    def competitor():
        outcomes.append(word_service.record_answer(account.id, "w1", True))

    racing_ctx, store = interleaved(competitor)
    record, newly_mastered = WordService(racing_ctx).record_answer(account.id, "w1", True)

    assert store.interleaved == 1
    assert outcomes[0][1]
    assert not newly_mastered
    assert record.status == WordStatus.MASTERED
    assert record.attempts == 2
    snapshot = AccountService(ctx).snapshot(account.id)
    assert snapshot["todays_mastered"] == 1
    assert snapshot["total_words_learned"] == 1
    assert len(word_service.get_progress(account.id)) == 1
