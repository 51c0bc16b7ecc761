"""
Pydantic models for the answer evaluation engine.

These models define the schemas for:
- Questions and the submitted answers graded against them
- Attempts and their derived totals
- Grade outcomes, AI scores and review/reconciliation results

Score-bearing fields are Decimal to keep totals exact.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)


def _to_decimal(v: Any) -> Any:
    """Convert numbers to Decimal via str; anything else is left for pydantic to reject."""
    if v is None or isinstance(v, (Decimal, bool)):
        return v
    try:
        return Decimal(str(v))
    except InvalidOperation:
        return v


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive values are taken to be UTC already; databases without
    time zone support hand them back that way.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_utc(v: Any) -> Any:
    return as_utc(v) if isinstance(v, datetime) else v


# ==============================================================================
# Enumerations
# ==============================================================================


class QuestionType(str, Enum):
    """Question type tag; decides the grading strategy."""

    # exact choice
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    LISTENING_MULTIPLE_CHOICE = "listening_multiple_choice"
    READING_MULTIPLE_CHOICE = "reading_multiple_choice"
    READING_TRUE_FALSE = "reading_true_false"
    LISTENING_MATCHING = "listening_matching"
    READING_MATCHING = "reading_matching"

    # short free text
    FILL_BLANKS = "fill_blanks"
    SHORT_ANSWER = "short_answer"
    WORD_FORMATION = "word_formation"
    SENTENCE_TRANSFORMATION = "sentence_transformation"
    LISTENING_NOTE_COMPLETION = "listening_note_completion"
    LISTENING_FORM_FILLING = "listening_form_filling"
    READING_GAPPED_TEXT = "reading_gapped_text"

    # open ended / productive
    ESSAY = "essay"
    AUDIO_RESPONSE = "audio_response"
    IMAGE_DESCRIPTION = "image_description"
    SHORT_MESSAGE = "short_message"
    INFORMAL_EMAIL = "informal_email"
    FORMAL_EMAIL = "formal_email"
    ESSAY_OPINION = "essay_opinion"
    PERSONAL_INFORMATION = "personal_information"
    DESCRIBING_PHOTO = "describing_photo"
    COMPARING_SITUATIONS = "comparing_situations"
    DISCUSSION_TOPIC = "discussion_topic"


class GradingStrategy(str, Enum):
    """How an answer to a given question type is graded."""

    AUTO_EXACT = "auto_exact"
    AUTO_FUZZY = "auto_fuzzy"
    DEFER_AI = "defer_ai"
    DEFER_HUMAN = "defer_human"

    @property
    def is_deferred(self) -> bool:
        return self in (GradingStrategy.DEFER_AI, GradingStrategy.DEFER_HUMAN)


class ScoreSource(str, Enum):
    """Who produced the answer's current score."""

    NONE = "none"
    AUTO = "auto"
    AI = "ai"
    HUMAN = "human"


class AttemptStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    GRADED = "graded"


# ==============================================================================
# Grading Value Objects
# ==============================================================================


class GradeOutcome(BaseModel):
    """
    Result of one evaluation pass over an answer.

    Never persisted on its own; always folded into an Answer through
    Answer.apply_outcome. A source of None leaves the answer's
    previous source untouched (deferred grading).
    """

    model_config = ConfigDict(frozen=True)

    score: Decimal | None = Field(default=None, ge=0)
    is_correct: bool | None = None
    needs_manual_review: bool = False
    reason: str | None = None
    source: ScoreSource | None = None
    feedback: str | None = None

    @field_validator("score", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Any:
        return _to_decimal(v)

    @model_validator(mode="after")
    def validate_settled(self) -> "GradeOutcome":
        """An outcome that needs no review must carry a score."""
        if not self.needs_manual_review and self.score is None:
            raise ValueError("An outcome without a score must be flagged for review")
        return self


class AIScore(BaseModel):
    """Candidate grade returned by the AI scoring provider."""

    model_config = ConfigDict(frozen=True)

    score: Decimal = Field(..., ge=0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    feedback: str = ""

    @field_validator("score", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Any:
        return _to_decimal(v)


# ==============================================================================
# Persisted Records
# ==============================================================================


class Question(BaseModel):
    """
    A gradable question. Immutable during grading.

    correct_answer is free text; for choice questions it holds the
    option value the student is expected to submit.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    type: QuestionType
    points: Decimal = Field(default=Decimal("1"), gt=0)
    correct_answer: str | None = None
    skill: str | None = None
    level: str | None = None
    text: str = ""
    explanation: str | None = None

    @field_validator("points", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Any:
        return _to_decimal(v)


class Answer(BaseModel):
    """
    A submitted answer to one question within an attempt.

    Grading state changes only through apply_outcome and apply_review,
    which return a new Answer and keep the review invariants intact.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    question_id: int
    attempt_id: int
    submitted_text: str | None = None
    score: Decimal | None = Field(default=None, ge=0)
    is_correct: bool | None = None
    needs_manual_review: bool = False
    review_reason: str | None = None
    reviewed_by: int | None = None
    reviewed_at: datetime | None = None
    source: ScoreSource = ScoreSource.NONE
    feedback: str | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("score", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Any:
        return _to_decimal(v)

    @field_validator("reviewed_at", "created_at")
    @classmethod
    def convert_to_utc(cls, v: Any) -> Any:
        return _to_utc(v)

    def apply_outcome(self, outcome: GradeOutcome) -> "Answer":
        """Fold an evaluation outcome into this answer."""
        if outcome.source is None:
            # Deferred: keep whatever score/source the answer already had.
            return self.model_copy(
                update={
                    "needs_manual_review": outcome.needs_manual_review,
                    "review_reason": outcome.reason,
                    "feedback": outcome.feedback or self.feedback,
                }
            )
        return self.model_copy(
            update={
                "score": outcome.score,
                "is_correct": outcome.is_correct,
                "needs_manual_review": outcome.needs_manual_review,
                "review_reason": outcome.reason if outcome.needs_manual_review else None,
                "source": outcome.source,
                "feedback": outcome.feedback,
            }
        )

    def apply_review(
        self,
        score: Decimal,
        is_correct: bool,
        source: ScoreSource,
        reviewer_id: int | None,
        reviewed_at: datetime,
        feedback: str | None,
        needs_manual_review: bool = False,
        review_reason: str | None = None,
    ) -> "Answer":
        """Record a human or AI grade on this answer."""
        return self.model_copy(
            update={
                "score": score,
                "is_correct": is_correct,
                "needs_manual_review": needs_manual_review,
                "review_reason": review_reason,
                "reviewed_by": reviewer_id,
                "reviewed_at": as_utc(reviewed_at),
                "source": source,
                "feedback": feedback,
            }
        )

    def flagged(self, reason: str) -> "Answer":
        """Return this answer flagged for manual review; the score is kept."""
        return self.model_copy(update={"needs_manual_review": True, "review_reason": reason})


class Attempt(BaseModel):
    """A student's attempt; totals are written only by the aggregator."""

    model_config = ConfigDict(frozen=True)

    id: int
    student_id: int
    exam_id: int | None = None
    status: AttemptStatus = AttemptStatus.IN_PROGRESS
    total_score: Decimal = Decimal("0")
    max_score: Decimal = Decimal("0")
    percentage: float = 0.0
    passed: bool = False
    submitted_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator("total_score", "max_score", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Any:
        return _to_decimal(v)

    @field_validator("submitted_at", "created_at")
    @classmethod
    def convert_to_utc(cls, v: Any) -> Any:
        return _to_utc(v)


class AttemptTotals(BaseModel):
    """Derived totals of an attempt."""

    model_config = ConfigDict(frozen=True)

    total_score: Decimal
    max_score: Decimal
    percentage: float = 0.0
    passed: bool = False
    graded_count: int = 0
    pending_count: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def fully_graded(self) -> bool:
        """Every answer carries a score and none awaits review."""
        return self.pending_count == 0


# ==============================================================================
# Review Queue Models
# ==============================================================================


class FlaggedAnswer(BaseModel):
    """An answer awaiting manual review, with the context used for ranking."""

    model_config = ConfigDict(frozen=True)

    answer_id: int
    question_id: int
    skill: str | None = None
    reason: str | None = None


class PendingAttempt(BaseModel):
    """An attempt together with its flagged answers."""

    model_config = ConfigDict(frozen=True)

    attempt_id: int
    student_id: int
    exam_id: int | None = None
    submitted_at: datetime
    flagged_answers: tuple[FlaggedAnswer, ...] = ()

    @field_validator("submitted_at")
    @classmethod
    def convert_to_utc(cls, v: Any) -> Any:
        return _to_utc(v)


class RankedReviewItem(BaseModel):
    """One attempt in the review queue with its priority."""

    model_config = ConfigDict(frozen=True)

    attempt_id: int
    student_id: int
    exam_id: int | None = None
    submitted_at: datetime
    priority: int
    days_pending: int
    flagged_answer_count: int
    has_high_weight_skill: bool
    flagged_answers: tuple[FlaggedAnswer, ...] = ()


class ReviewFilter(BaseModel):
    """Query options for the pending review listing."""

    skill: str | None = None
    exam_id: int | None = None
    min_priority: int | None = None
    limit: int = Field(default=20, ge=1, le=500)
    offset: int = Field(default=0, ge=0)


class SkillReviewStats(BaseModel):
    skill: str | None
    review_count: int
    average_score: Decimal | None = None


class ReviewStats(BaseModel):
    """Aggregate review workload figures."""

    pending_reviews: int
    completed_since: int
    since: datetime
    by_skill: tuple[SkillReviewStats, ...] = ()


class ReviewDetails(BaseModel):
    """Everything a reviewer needs to grade one attempt."""

    attempt: Attempt
    answers_by_skill: dict[str, list[Answer]]
    flagged_answers: list[Answer]
    total_answers: int
    flagged_count: int
    scored_count: int


# ==============================================================================
# Reconciliation Models
# ==============================================================================


class ReviewItem(BaseModel):
    """One entry of a batch review request."""

    answer_id: int
    score: Decimal
    feedback: str | None = None
    is_correct: bool | None = None

    @field_validator("score", mode="before")
    @classmethod
    def convert_to_decimal(cls, v: Any) -> Any:
        return _to_decimal(v)


class ReconciliationResult(BaseModel):
    """Outcome of applying one review to an answer."""

    model_config = ConfigDict(frozen=True)

    answer: Answer
    totals: AttemptTotals


class ReviewItemResult(BaseModel):
    """Per-item result of a batch review."""

    model_config = ConfigDict(frozen=True)

    answer_id: int
    success: bool
    new_score: Decimal | None = None
    error: str | None = None
    error_type: str | None = None


class BatchResult(BaseModel):
    """Per-item results of a batch review plus the recomputed attempts."""

    model_config = ConfigDict(frozen=True)

    results: tuple[ReviewItemResult, ...]
    totals: dict[int, AttemptTotals] = Field(default_factory=dict)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> int:
        return len(self.results)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def successful(self) -> int:
        return sum(1 for r in self.results if r.success)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failed(self) -> int:
        return self.total - self.successful
