"""
Pytest configuration and fixtures.

Provides common test fixtures for all test modules.
"""

import json
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Generator

import pytest

from answer_engine.config import Settings
from answer_engine.grading.ai_client import AIProviderError
from answer_engine.models import (
    AIScore,
    Answer,
    Attempt,
    AttemptStatus,
    Question,
    QuestionType,
)
from answer_engine.service import AnswerEngine
from answer_engine.storage import InMemoryRepository, SqlRepository, create_db_and_tables, create_db_engine

NOW = datetime(2024, 5, 20, 12, 0, 0, tzinfo=timezone.utc)


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings without an AI provider."""
    return Settings(
        _env_file=None,
        ai_api_key=None,
        ai_timeout_seconds=0.2,
        ai_confidence_threshold=0.7,
        fuzzy_match_threshold=0.8,
        high_weight_skills=("writing", "speaking"),
        pass_percentage=60.0,
        database_url="sqlite://",
    )


@pytest.fixture
def ai_settings() -> Settings:
    """Settings with an AI provider configured."""
    return Settings(
        _env_file=None,
        ai_api_key="test-api-key-for-testing",
        ai_base_url="https://test.api.local/",
        ai_model="test-model",
        ai_timeout_seconds=0.2,
        ai_confidence_threshold=0.7,
        database_url="sqlite://",
    )


# ==============================================================================
# Question Fixtures
# ==============================================================================


@pytest.fixture
def mc_question() -> Question:
    return Question(
        id=1,
        type=QuestionType.MULTIPLE_CHOICE,
        correct_answer="B",
        points=Decimal("10"),
        skill="reading",
    )


@pytest.fixture
def short_question() -> Question:
    return Question(
        id=2,
        type=QuestionType.SHORT_ANSWER,
        correct_answer="Paris",
        points=Decimal("10"),
        skill="reading",
        text="What is the capital of France?",
    )


@pytest.fixture
def essay_question() -> Question:
    return Question(
        id=3,
        type=QuestionType.ESSAY,
        points=Decimal("5"),
        skill="writing",
        level="B2",
        text="Describe your favourite holiday.",
    )


# ==============================================================================
# Repository Fixtures
# ==============================================================================


def _seed_attempts() -> tuple[list[Attempt], list[Answer]]:
    """
    Two submitted attempts and one in progress.

    Attempt 100 (3 days old): 8/10 multiple choice, an essay (5 points)
    awaiting review and 5/5 fill-in. Attempt 200 (1 day old): one
    flagged essay. Attempt 300: ungraded answers, still in progress.
    """
    attempts = [
        Attempt(
            id=100,
            student_id=7,
            exam_id=1,
            status=AttemptStatus.SUBMITTED,
            submitted_at=NOW - timedelta(days=3),
        ),
        Attempt(
            id=200,
            student_id=8,
            exam_id=2,
            status=AttemptStatus.SUBMITTED,
            submitted_at=NOW - timedelta(days=1),
        ),
        Attempt(id=300, student_id=9, exam_id=1),
    ]
    answers = [
        Answer(id=1, question_id=1, attempt_id=100, submitted_text="B", score=Decimal("8"), source="auto"),
        Answer(
            id=2,
            question_id=3,
            attempt_id=100,
            submitted_text="My holiday was long and sunny.",
            needs_manual_review=True,
            review_reason="subjective type",
        ),
        Answer(id=3, question_id=4, attempt_id=100, submitted_text="kitchen", score=Decimal("5"), source="auto"),
        Answer(
            id=4,
            question_id=3,
            attempt_id=200,
            submitted_text="I went to the sea.",
            needs_manual_review=True,
            review_reason="subjective type",
        ),
        Answer(id=5, question_id=1, attempt_id=300, submitted_text=" b "),
        Answer(id=6, question_id=2, attempt_id=300, submitted_text="pariss"),
        Answer(id=7, question_id=3, attempt_id=300, submitted_text="An essay."),
    ]
    return attempts, answers


@pytest.fixture
def questions(mc_question: Question, short_question: Question, essay_question: Question) -> list[Question]:
    return [
        mc_question,
        short_question,
        essay_question,
        Question(
            id=4,
            type=QuestionType.FILL_BLANKS,
            correct_answer="kitchen",
            points=Decimal("5"),
            skill="listening",
        ),
    ]


@pytest.fixture
def repository(questions: list[Question]) -> InMemoryRepository:
    """In-memory repository seeded with three attempts."""
    attempts, answers = _seed_attempts()
    return InMemoryRepository(questions=questions, attempts=attempts, answers=answers)


@pytest.fixture
def sql_repository(questions: list[Question]) -> Generator[SqlRepository, None, None]:
    """SQLite in-memory repository seeded like the in-memory one."""
    engine = create_db_engine("sqlite://")
    create_db_and_tables(engine)
    repo = SqlRepository(engine)
    attempts, answers = _seed_attempts()
    for question in questions:
        repo.add_question(question)
    for attempt in attempts:
        repo.add_attempt(attempt)
    for answer in answers:
        repo.add_answer(answer)
    yield repo
    engine.dispose()


@pytest.fixture
def engine(repository: InMemoryRepository, test_settings: Settings) -> Generator[AnswerEngine, None, None]:
    answer_engine = AnswerEngine(repository, test_settings)
    yield answer_engine
    answer_engine.close()


# ==============================================================================
# AI Scorer Fixtures
# ==============================================================================


class FakeScorer:
    """AI scorer returning a fixed result and recording calls."""

    def __init__(self, result: AIScore | None = None, delay: float = 0.0, error: Exception | None = None):
        self.result = result or AIScore(score=Decimal("4"), confidence=0.9, feedback="Well organised.")
        self.delay = delay
        self.error = error
        self.calls: list[tuple[int, str]] = []

    def score(self, question: Question, submitted_text: str) -> AIScore:
        self.calls.append((question.id, submitted_text))
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def confident_scorer() -> FakeScorer:
    return FakeScorer(AIScore(score=Decimal("4"), confidence=0.9, feedback="Well organised."))


@pytest.fixture
def unsure_scorer() -> FakeScorer:
    return FakeScorer(AIScore(score=Decimal("3"), confidence=0.4, feedback="Hard to judge."))


@pytest.fixture
def slow_scorer() -> FakeScorer:
    return FakeScorer(delay=1.0)


@pytest.fixture
def failing_scorer() -> FakeScorer:
    return FakeScorer(error=AIProviderError("provider exploded"))


@pytest.fixture
def sample_ai_response() -> str:
    """Sample AI scoring response in JSON format."""
    return json.dumps({"score": 4, "confidence": 0.85, "feedback": "Clear structure, minor errors."})
