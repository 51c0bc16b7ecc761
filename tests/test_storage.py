"""
Tests for the repository implementations.

The SQL repository runs against in-memory SQLite.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from answer_engine.models import AttemptStatus, AttemptTotals, QuestionType, ScoreSource
from answer_engine.storage import (
    AnswerNotFound,
    AttemptNotFound,
    InMemoryRepository,
    QuestionNotFound,
    SqlRepository,
)
from answer_engine.storage.repository import AttemptLocks
from tests.conftest import NOW


class TestSqlRepository:
    """Tests for SqlRepository."""

    def test_question_round_trip(self, sql_repository: SqlRepository) -> None:
        question = sql_repository.get_question(1)

        assert question.type == QuestionType.MULTIPLE_CHOICE
        assert question.points == Decimal("10")
        assert question.correct_answer == "B"
        assert question.skill == "reading"

    def test_answer_round_trip(self, sql_repository: SqlRepository) -> None:
        answer = sql_repository.get_answer(1)

        assert answer.score == Decimal("8")
        assert answer.source == ScoreSource.AUTO
        assert answer.needs_manual_review is False

        flagged = sql_repository.get_answer(2)
        assert flagged.score is None
        assert flagged.review_reason == "subjective type"

    def test_attempt_round_trip(self, sql_repository: SqlRepository) -> None:
        attempt = sql_repository.get_attempt(100)

        assert attempt.status == AttemptStatus.SUBMITTED
        assert attempt.exam_id == 1
        assert attempt.submitted_at is not None

    def test_timestamps_come_back_in_utc(self, sql_repository: SqlRepository) -> None:
        attempt = sql_repository.get_attempt(100)

        assert attempt.submitted_at.tzinfo is not None
        assert attempt.submitted_at == NOW - timedelta(days=3)
        assert attempt.created_at.utcoffset() == timedelta(0)

    def test_save_answer_with_offset_timestamp(self, sql_repository: SqlRepository) -> None:
        reviewed_at = datetime(2024, 5, 21, 11, 30, tzinfo=timezone(timedelta(hours=2)))
        answer = sql_repository.get_answer(2).apply_review(
            score=Decimal("1"),
            is_correct=True,
            source=ScoreSource.HUMAN,
            reviewer_id=1,
            reviewed_at=reviewed_at,
            feedback=None,
        )
        sql_repository.save_answer(answer)

        stored = sql_repository.get_answer(2)
        assert stored.reviewed_at == datetime(2024, 5, 21, 9, 30, tzinfo=timezone.utc)
        assert [a.id for a in sql_repository.list_reviewed_answers(datetime(2024, 5, 21, 9, 0))] == [2]

    def test_answers_for_attempt(self, sql_repository: SqlRepository) -> None:
        assert [a.id for a in sql_repository.get_answers_for_attempt(100)] == [1, 2, 3]
        assert sql_repository.get_answers_for_attempt(999) == []

    def test_list_flagged(self, sql_repository: SqlRepository) -> None:
        assert [a.id for a in sql_repository.list_flagged_answers()] == [2, 4]

    def test_not_found(self, sql_repository: SqlRepository) -> None:
        with pytest.raises(AnswerNotFound):
            sql_repository.get_answer(999)
        with pytest.raises(AttemptNotFound):
            sql_repository.get_attempt(999)
        with pytest.raises(QuestionNotFound):
            sql_repository.get_question(999)

    def test_save_answer(self, sql_repository: SqlRepository) -> None:
        reviewed_at = datetime(2024, 5, 21, 9, 30, tzinfo=timezone.utc)
        answer = sql_repository.get_answer(2).apply_review(
            score=Decimal("3.5"),
            is_correct=True,
            source=ScoreSource.HUMAN,
            reviewer_id=42,
            reviewed_at=reviewed_at,
            feedback="Good",
        )
        sql_repository.save_answer(answer)
        stored = sql_repository.get_answer(2)

        assert stored.score == Decimal("3.5")
        assert stored.source == ScoreSource.HUMAN
        assert stored.reviewed_by == 42
        assert stored.needs_manual_review is False
        assert [a.id for a in sql_repository.list_reviewed_answers(reviewed_at)] == [2]
        assert sql_repository.list_reviewed_answers(datetime(2024, 6, 1, tzinfo=timezone.utc)) == []

    def test_save_attempt_totals(self, sql_repository: SqlRepository) -> None:
        totals = AttemptTotals(
            total_score=Decimal("13"), max_score=Decimal("20"), percentage=65.0, passed=True
        )
        attempt = sql_repository.save_attempt_totals(100, totals)

        assert attempt.total_score == Decimal("13")
        assert sql_repository.get_attempt(100).percentage == 65.0
        assert sql_repository.get_attempt(100).passed is True

    def test_locked_commits(self, sql_repository: SqlRepository) -> None:
        with sql_repository.locked(100) as unit:
            unit.save_answer(unit.get_answer(1).flagged("recheck"))

        assert sql_repository.get_answer(1).needs_manual_review is True

    def test_locked_rolls_back_on_error(self, sql_repository: SqlRepository) -> None:
        with pytest.raises(RuntimeError):
            with sql_repository.locked(100) as unit:
                unit.save_answer(unit.get_answer(1).flagged("recheck"))
                raise RuntimeError("abort")

        answer = sql_repository.get_answer(1)
        assert answer.needs_manual_review is False
        assert answer.score == Decimal("8")

    def test_locked_unknown_attempt(self, sql_repository: SqlRepository) -> None:
        with pytest.raises(AttemptNotFound):
            with sql_repository.locked(999):
                pass


class TestInMemoryRepository:
    """Tests for InMemoryRepository."""

    def test_locked_rolls_back_on_error(self, repository: InMemoryRepository) -> None:
        with pytest.raises(RuntimeError):
            with repository.locked(100) as unit:
                unit.save_answer(unit.get_answer(1).flagged("recheck"))
                unit.save_attempt(unit.get_attempt(100).model_copy(update={"status": AttemptStatus.GRADED}))
                raise RuntimeError("abort")

        assert repository.get_answer(1).needs_manual_review is False
        assert repository.get_attempt(100).status == AttemptStatus.SUBMITTED

    def test_locked_is_reentrant(self, repository: InMemoryRepository) -> None:
        with repository.locked(100):
            with repository.locked(100) as unit:
                assert unit.get_attempt(100).id == 100

    def test_save_unknown_answer(self, repository: InMemoryRepository) -> None:
        answer = repository.get_answer(1).model_copy(update={"id": 999})
        with pytest.raises(AnswerNotFound):
            repository.save_answer(answer)

    def test_locked_unknown_attempt(self, repository: InMemoryRepository) -> None:
        with pytest.raises(AttemptNotFound):
            with repository.locked(999):
                pass


class TestAttemptLocks:
    """Tests for the per-attempt lock table."""

    def test_same_attempt_shares_a_lock(self) -> None:
        locks = AttemptLocks()

        assert locks.get(100) is locks.get(100)
        assert locks.get(100) is not locks.get(200)

    def test_lock_is_reentrant(self) -> None:
        lock = AttemptLocks().get(100)
        with lock:
            with lock:
                pass

    def test_concurrent_sql_writes(self, sql_repository: SqlRepository) -> None:
        def bump(_: int) -> None:
            with sql_repository.locked(100) as unit:
                answer = unit.get_answer(3)
                unit.save_answer(answer.model_copy(update={"score": answer.score - Decimal("1")}))

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(bump, range(4)))

        assert sql_repository.get_answer(3).score == Decimal("1")
