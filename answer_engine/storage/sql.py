"""SQLModel tables and the SQL-backed repository."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine, select

from answer_engine.models import (
    Answer,
    Attempt,
    AttemptStatus,
    AttemptTotals,
    Question,
    ScoreSource,
    as_utc,
    utc_now,
)
from answer_engine.storage.repository import (
    AnswerNotFound,
    AttemptLocks,
    AttemptNotFound,
    QuestionNotFound,
)

LOG = logging.getLogger(__name__)


class QuestionRow(SQLModel, table=True):
    __tablename__ = "questions"

    id: Optional[int] = Field(default=None, primary_key=True)
    type: str
    points: Decimal = Field(default=Decimal("1"), max_digits=6, decimal_places=2)
    correct_answer: Optional[str] = None
    skill: Optional[str] = Field(default=None, index=True)
    level: Optional[str] = None
    text: str = ""
    explanation: Optional[str] = None


class AttemptRow(SQLModel, table=True):
    __tablename__ = "exam_attempts"

    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(index=True)
    exam_id: Optional[int] = Field(default=None, index=True)
    status: str = Field(default=AttemptStatus.IN_PROGRESS.value)
    total_score: Decimal = Field(default=Decimal("0"), max_digits=8, decimal_places=2)
    max_score: Decimal = Field(default=Decimal("0"), max_digits=8, decimal_places=2)
    percentage: float = 0.0
    passed: bool = False
    submitted_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


class AnswerRow(SQLModel, table=True):
    __tablename__ = "attempt_answers"

    id: Optional[int] = Field(default=None, primary_key=True)
    question_id: int = Field(foreign_key="questions.id")
    attempt_id: int = Field(foreign_key="exam_attempts.id", index=True)
    submitted_text: Optional[str] = None
    score: Optional[Decimal] = Field(default=None, max_digits=6, decimal_places=2)
    is_correct: Optional[bool] = None
    needs_manual_review: bool = Field(default=False, index=True)
    review_reason: Optional[str] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    source: str = Field(default=ScoreSource.NONE.value)
    feedback: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; SQLite connections may be shared across threads."""
    if database_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)
    return create_engine(database_url, echo=echo)


def create_db_and_tables(engine: Engine) -> None:
    """Create database tables based on SQLModel metadata."""
    SQLModel.metadata.create_all(engine)


class SqlRepository:
    """
    Repository over a relational database.

    Every call runs in its own session unless the repository is bound
    to the session of a `locked` block. `locked` selects the attempt
    row FOR UPDATE inside one transaction; SQLite ignores FOR UPDATE,
    so a process-local lock per attempt serializes writers as well.
    """

    def __init__(
        self,
        engine: Engine,
        session: Session | None = None,
        locks: AttemptLocks | None = None,
    ):
        self._engine = engine
        self._bound = session
        self._locks = locks or AttemptLocks()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self._bound is not None:
            yield self._bound
            return
        with Session(self._engine) as session:
            yield session
            session.commit()

    # --------------------------------------------------------------------------
    # Seeding
    # --------------------------------------------------------------------------

    def add_question(self, question: Question) -> Question:
        with self._session() as session:
            session.add(QuestionRow(**_question_values(question)))
            session.flush()
        return question

    def add_attempt(self, attempt: Attempt) -> Attempt:
        with self._session() as session:
            session.add(AttemptRow(**_attempt_values(attempt)))
            session.flush()
        return attempt

    def add_answer(self, answer: Answer) -> Answer:
        with self._session() as session:
            session.add(AnswerRow(**_answer_values(answer)))
            session.flush()
        return answer

    # --------------------------------------------------------------------------
    # Repository protocol
    # --------------------------------------------------------------------------

    def get_question(self, question_id: int) -> Question:
        with self._session() as session:
            row = session.get(QuestionRow, question_id)
            if row is None:
                raise QuestionNotFound(question_id)
            return Question.model_validate(row.model_dump())

    def get_answer(self, answer_id: int) -> Answer:
        with self._session() as session:
            row = session.get(AnswerRow, answer_id)
            if row is None:
                raise AnswerNotFound(answer_id)
            return Answer.model_validate(row.model_dump())

    def save_answer(self, answer: Answer) -> Answer:
        with self._session() as session:
            row = session.get(AnswerRow, answer.id)
            if row is None:
                raise AnswerNotFound(answer.id)
            for key, value in _answer_values(answer).items():
                setattr(row, key, value)
            session.add(row)
            session.flush()
        return answer

    def get_answers_for_attempt(self, attempt_id: int) -> list[Answer]:
        with self._session() as session:
            rows = session.exec(
                select(AnswerRow).where(AnswerRow.attempt_id == attempt_id).order_by(AnswerRow.id)
            ).all()
            return [Answer.model_validate(r.model_dump()) for r in rows]

    def get_attempt(self, attempt_id: int) -> Attempt:
        with self._session() as session:
            row = session.get(AttemptRow, attempt_id)
            if row is None:
                raise AttemptNotFound(attempt_id)
            return Attempt.model_validate(row.model_dump())

    def save_attempt(self, attempt: Attempt) -> Attempt:
        with self._session() as session:
            row = session.get(AttemptRow, attempt.id)
            if row is None:
                raise AttemptNotFound(attempt.id)
            for key, value in _attempt_values(attempt).items():
                setattr(row, key, value)
            session.add(row)
            session.flush()
        return attempt

    def save_attempt_totals(self, attempt_id: int, totals: AttemptTotals) -> Attempt:
        with self._session() as session:
            row = session.get(AttemptRow, attempt_id)
            if row is None:
                raise AttemptNotFound(attempt_id)
            row.total_score = totals.total_score
            row.max_score = totals.max_score
            row.percentage = totals.percentage
            row.passed = totals.passed
            session.add(row)
            session.flush()
            return Attempt.model_validate(row.model_dump())

    def list_flagged_answers(self) -> list[Answer]:
        with self._session() as session:
            rows = session.exec(
                select(AnswerRow)
                .where(AnswerRow.needs_manual_review == True)  # noqa: E712
                .order_by(AnswerRow.id)
            ).all()
            return [Answer.model_validate(r.model_dump()) for r in rows]

    def list_reviewed_answers(self, since: datetime) -> list[Answer]:
        since = as_utc(since)
        with self._session() as session:
            rows = session.exec(
                select(AnswerRow).where(AnswerRow.reviewed_at >= since).order_by(AnswerRow.id)
            ).all()
            return [Answer.model_validate(r.model_dump()) for r in rows]

    @contextmanager
    def locked(self, attempt_id: int) -> Iterator["SqlRepository"]:
        with self._locks.get(attempt_id), Session(self._engine) as session:
            row = session.exec(
                select(AttemptRow).where(AttemptRow.id == attempt_id).with_for_update()
            ).first()
            if row is None:
                raise AttemptNotFound(attempt_id)
            try:
                yield SqlRepository(self._engine, session, self._locks)
                session.commit()
            except BaseException:
                LOG.debug("Rolling back attempt %s", attempt_id)
                session.rollback()
                raise


def _question_values(question: Question) -> dict:
    values = question.model_dump()
    values["type"] = question.type.value
    return values


def _attempt_values(attempt: Attempt) -> dict:
    values = _utc_values(attempt.model_dump())
    values["status"] = attempt.status.value
    return values


def _answer_values(answer: Answer) -> dict:
    values = _utc_values(answer.model_dump())
    values["source"] = answer.source.value
    return values


def _utc_values(values: dict) -> dict:
    # SQLite drops the offset on write
    return {k: as_utc(v) if isinstance(v, datetime) else v for k, v in values.items()}
