"""In-memory repository used by tests and embedded callers."""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from answer_engine.models import Answer, Attempt, AttemptTotals, Question, as_utc
from answer_engine.storage.repository import (
    AnswerNotFound,
    AttemptLocks,
    AttemptNotFound,
    QuestionNotFound,
)


class InMemoryRepository:
    """
    Dictionary backed repository.

    Records are immutable pydantic models, so storing and returning
    them needs no copying. `locked` serializes work per attempt with
    one reentrant lock per attempt id; a failed block restores the
    answers and attempt it started from.
    """

    def __init__(
        self,
        questions: list[Question] | None = None,
        attempts: list[Attempt] | None = None,
        answers: list[Answer] | None = None,
    ):
        self._questions: dict[int, Question] = {q.id: q for q in questions or []}
        self._attempts: dict[int, Attempt] = {a.id: a for a in attempts or []}
        self._answers: dict[int, Answer] = {a.id: a for a in answers or []}
        self._locks = AttemptLocks()

    # --------------------------------------------------------------------------
    # Seeding
    # --------------------------------------------------------------------------

    def add_question(self, question: Question) -> Question:
        self._questions[question.id] = question
        return question

    def add_attempt(self, attempt: Attempt) -> Attempt:
        self._attempts[attempt.id] = attempt
        return attempt

    def add_answer(self, answer: Answer) -> Answer:
        self._answers[answer.id] = answer
        return answer

    # --------------------------------------------------------------------------
    # Repository protocol
    # --------------------------------------------------------------------------

    def get_question(self, question_id: int) -> Question:
        try:
            return self._questions[question_id]
        except KeyError:
            raise QuestionNotFound(question_id) from None

    def get_answer(self, answer_id: int) -> Answer:
        try:
            return self._answers[answer_id]
        except KeyError:
            raise AnswerNotFound(answer_id) from None

    def save_answer(self, answer: Answer) -> Answer:
        if answer.id not in self._answers:
            raise AnswerNotFound(answer.id)
        self._answers[answer.id] = answer
        return answer

    def get_answers_for_attempt(self, attempt_id: int) -> list[Answer]:
        return sorted(
            (a for a in self._answers.values() if a.attempt_id == attempt_id),
            key=lambda a: a.id,
        )

    def get_attempt(self, attempt_id: int) -> Attempt:
        try:
            return self._attempts[attempt_id]
        except KeyError:
            raise AttemptNotFound(attempt_id) from None

    def save_attempt(self, attempt: Attempt) -> Attempt:
        self._attempts[attempt.id] = attempt
        return attempt

    def save_attempt_totals(self, attempt_id: int, totals: AttemptTotals) -> Attempt:
        attempt = self.get_attempt(attempt_id).model_copy(
            update={
                "total_score": totals.total_score,
                "max_score": totals.max_score,
                "percentage": totals.percentage,
                "passed": totals.passed,
            }
        )
        self._attempts[attempt_id] = attempt
        return attempt

    def list_flagged_answers(self) -> list[Answer]:
        return sorted(
            (a for a in self._answers.values() if a.needs_manual_review), key=lambda a: a.id
        )

    def list_reviewed_answers(self, since: datetime) -> list[Answer]:
        since = as_utc(since)
        return sorted(
            (a for a in self._answers.values() if a.reviewed_at is not None and a.reviewed_at >= since),
            key=lambda a: a.id,
        )

    @contextmanager
    def locked(self, attempt_id: int) -> Iterator["InMemoryRepository"]:
        self.get_attempt(attempt_id)
        with self._locks.get(attempt_id):
            attempt = self._attempts[attempt_id]
            snapshot = {a.id: a for a in self.get_answers_for_attempt(attempt_id)}
            try:
                yield self
            except BaseException:
                self._answers.update(snapshot)
                self._attempts[attempt_id] = attempt
                raise
