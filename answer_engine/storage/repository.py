"""
Persistence boundary of the engine.

The engine only needs a handful of reads and writes plus one
guarantee: a per-attempt atomic read-modify-write, exposed as the
`locked` context manager.
"""

import threading
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Protocol

from answer_engine.models import Answer, Attempt, AttemptTotals, Question


class AnswerNotFound(LookupError):
    """Raised when an answer id does not exist."""

    def __init__(self, answer_id: int):
        self.answer_id = answer_id
        super().__init__(f"Answer not found: {answer_id}")


class AttemptNotFound(LookupError):
    """Raised when an attempt id does not exist."""

    def __init__(self, attempt_id: int):
        self.attempt_id = attempt_id
        super().__init__(f"Attempt not found: {attempt_id}")


class QuestionNotFound(LookupError):
    """Raised when a question id does not exist."""

    def __init__(self, question_id: int):
        self.question_id = question_id
        super().__init__(f"Question not found: {question_id}")


class Repository(Protocol):
    """Reads and writes of questions, answers and attempts."""

    def get_question(self, question_id: int) -> Question: ...

    def get_answer(self, answer_id: int) -> Answer: ...

    def save_answer(self, answer: Answer) -> Answer: ...

    def get_answers_for_attempt(self, attempt_id: int) -> list[Answer]: ...

    def get_attempt(self, attempt_id: int) -> Attempt: ...

    def save_attempt(self, attempt: Attempt) -> Attempt: ...

    def save_attempt_totals(self, attempt_id: int, totals: AttemptTotals) -> Attempt: ...

    def list_flagged_answers(self) -> list[Answer]: ...

    def list_reviewed_answers(self, since: datetime) -> list[Answer]: ...

    def locked(self, attempt_id: int) -> AbstractContextManager["Repository"]:
        """
        Hold the attempt exclusively for a read-modify-write.

        Yields a repository whose reads and writes belong to the same
        atomic unit; the unit is committed when the block exits
        normally and discarded when it raises.

        Raises:
            AttemptNotFound: If the attempt does not exist.
        """
        ...


class AttemptLocks:
    """Process-local reentrant lock per attempt id, created on first use."""

    def __init__(self) -> None:
        self._locks: dict[int, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, attempt_id: int) -> AbstractContextManager:
        with self._guard:
            lock = self._locks.get(attempt_id)
            if lock is None:
                lock = self._locks[attempt_id] = threading.RLock()
            return lock
