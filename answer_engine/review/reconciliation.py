"""
Reconciliation service.

Folds human and AI grades into answers and propagates them to the
owning attempt's totals. Every write happens inside the repository's
per-attempt lock, and the aggregator runs once per touched attempt
after all of that attempt's answers are written.
"""

import logging
from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from answer_engine.config import Settings, get_settings
from answer_engine.grading.ai_client import AIProviderError
from answer_engine.grading.classifier import UnsupportedQuestionType
from answer_engine.grading.engine import GradingEngine, ai_skipped_outcome, fold_ai_score
from answer_engine.grading.matcher import deferred_outcome
from answer_engine.models import (
    AIScore,
    Answer,
    AttemptStatus,
    AttemptTotals,
    BatchResult,
    GradeOutcome,
    Question,
    ReconciliationResult,
    ReviewItem,
    ReviewItemResult,
    ScoreSource,
    as_utc,
    utc_now,
)
from answer_engine.review.aggregator import AttemptAggregator
from answer_engine.storage.repository import (
    AnswerNotFound,
    AttemptNotFound,
    QuestionNotFound,
    Repository,
)

LOG = logging.getLogger(__name__)

DEFAULT_FLAG_REASON = "Manual flag by teacher"


class ScoreOutOfRange(ValueError):
    """Raised when a review score falls outside 0..question points."""

    def __init__(self, answer_id: int, score: Any, points: Decimal):
        self.answer_id = answer_id
        self.score = score
        self.points = points
        super().__init__(f"Score must be between 0 and {points} (got {score}) for answer {answer_id}")


class AttemptAlreadySubmitted(ValueError):
    """Raised when grading an attempt that is no longer in progress."""

    def __init__(self, attempt_id: int, status: AttemptStatus):
        self.attempt_id = attempt_id
        self.status = status
        super().__init__(f"Attempt {attempt_id} is already {status.value}")


def check_score(answer: Answer, question: Question, score: Any) -> Decimal:
    """
    Validate a review score against the question's points.

    Raises:
        ScoreOutOfRange: If the score is not a number within 0..points.
    """
    try:
        value = score if isinstance(score, Decimal) else Decimal(str(score))
    except (InvalidOperation, ValueError) as e:
        raise ScoreOutOfRange(answer.id, score, question.points) from e
    if not value.is_finite() or value < 0 or value > question.points:
        raise ScoreOutOfRange(answer.id, score, question.points)
    return value


class ReconciliationService:
    """
    Applies reviews, flags and AI scores to persisted answers.

    Network calls to the AI collaborator happen outside the attempt
    lock; only the resulting write is serialized.
    """

    def __init__(
        self,
        repository: Repository,
        grading_engine: GradingEngine | None = None,
        aggregator: AttemptAggregator | None = None,
        settings: Settings | None = None,
    ):
        self._settings = settings or get_settings()
        self._repository = repository
        self._engine = grading_engine or GradingEngine(self._settings)
        self._aggregator = aggregator or AttemptAggregator(self._settings.pass_percentage)

    # --------------------------------------------------------------------------
    # Reviews
    # --------------------------------------------------------------------------

    def submit_review(
        self,
        answer_id: int,
        score: Any,
        feedback: str | None = None,
        is_correct: bool | None = None,
        reviewer_id: int | None = None,
        source: ScoreSource = ScoreSource.HUMAN,
    ) -> ReconciliationResult:
        """
        Record a grade for one answer and recompute its attempt.

        Args:
            answer_id: The answer being graded.
            score: Awarded points, 0..question points.
            feedback: Feedback for the student.
            is_correct: Explicit correctness; defaults to score > 0.
            reviewer_id: The reviewing teacher; required for human reviews.
            source: HUMAN for teachers, AI for provider results.

        Raises:
            AnswerNotFound: If the answer does not exist.
            ScoreOutOfRange: If the score is outside 0..points.
        """
        self._check_source(source, reviewer_id)
        attempt_id = self._repository.get_answer(answer_id).attempt_id

        with self._repository.locked(attempt_id) as unit:
            reviewed = self._apply_review(
                unit, answer_id, score, feedback, is_correct, reviewer_id, source
            )
            totals = self._aggregator.recompute(unit, attempt_id)

        LOG.info("Answer %s reviewed (%s): score=%s", answer_id, source.value, reviewed.score)
        return ReconciliationResult(answer=reviewed, totals=totals)

    def batch_submit_review(
        self,
        items: Sequence[ReviewItem],
        reviewer_id: int | None = None,
        source: ScoreSource = ScoreSource.HUMAN,
    ) -> BatchResult:
        """
        Apply many reviews, each independently.

        Failing items are reported and skipped. Items are grouped by
        attempt; each attempt is written under its lock and recomputed
        once, after all of its items.

        Raises:
            ValueError: If items is empty or a human batch has no reviewer.
        """
        if not items:
            raise ValueError("Reviews array is required")
        self._check_source(source, reviewer_id)

        results: dict[int, ReviewItemResult] = {}
        by_attempt: dict[int, list[tuple[int, ReviewItem]]] = defaultdict(list)

        for index, item in enumerate(items):
            try:
                answer = self._repository.get_answer(item.answer_id)
            except AnswerNotFound as e:
                results[index] = _failure(item, e)
                continue
            by_attempt[answer.attempt_id].append((index, item))

        totals: dict[int, AttemptTotals] = {}
        for attempt_id, entries in by_attempt.items():
            try:
                with self._repository.locked(attempt_id) as unit:
                    applied = False
                    for index, item in entries:
                        try:
                            reviewed = self._apply_review(
                                unit,
                                item.answer_id,
                                item.score,
                                item.feedback or "",
                                item.is_correct,
                                reviewer_id,
                                source,
                            )
                        except (AnswerNotFound, QuestionNotFound, ScoreOutOfRange) as e:
                            results[index] = _failure(item, e)
                            continue
                        results[index] = ReviewItemResult(
                            answer_id=item.answer_id, success=True, new_score=reviewed.score
                        )
                        applied = True
                    if applied:
                        totals[attempt_id] = self._aggregator.recompute(unit, attempt_id)
            except AttemptNotFound as e:
                for index, item in entries:
                    results[index] = _failure(item, e)

        result = BatchResult(
            results=tuple(results[i] for i in range(len(items))),
            totals=totals,
        )
        LOG.info(
            "Batch review completed: %s/%s successful", result.successful, result.total
        )
        return result

    def flag(self, answer_id: int, reason: str | None = None) -> Answer:
        """
        Put an answer back in the review queue.

        Idempotent and never clears an existing score. Totals are not
        recomputed since no score changes; a graded attempt drops back
        to submitted.

        Raises:
            AnswerNotFound: If the answer does not exist.
        """
        attempt_id = self._repository.get_answer(answer_id).attempt_id
        with self._repository.locked(attempt_id) as unit:
            flagged = unit.get_answer(answer_id).flagged(reason or DEFAULT_FLAG_REASON)
            unit.save_answer(flagged)
            attempt = unit.get_attempt(attempt_id)
            if attempt.status == AttemptStatus.GRADED:
                unit.save_attempt(attempt.model_copy(update={"status": AttemptStatus.SUBMITTED}))
        LOG.info("Answer %s flagged for review: %s", answer_id, flagged.review_reason)
        return flagged

    # --------------------------------------------------------------------------
    # AI scores
    # --------------------------------------------------------------------------

    def apply_ai_score(self, answer_id: int, ai_score: AIScore) -> ReconciliationResult:
        """
        Fold an AI candidate score into an answer.

        A score below the confidence threshold is recorded but the
        answer stays flagged for a human.

        Raises:
            AnswerNotFound: If the answer does not exist.
            ScoreOutOfRange: If the AI score exceeds the question's points.
        """
        attempt_id = self._repository.get_answer(answer_id).attempt_id
        with self._repository.locked(attempt_id) as unit:
            answer = unit.get_answer(answer_id)
            question = unit.get_question(answer.question_id)
            check_score(answer, question, ai_score.score)
            outcome = fold_ai_score(question, ai_score, self._settings.ai_confidence_threshold)
            reviewed = answer.apply_review(
                score=ai_score.score,
                is_correct=bool(outcome.is_correct),
                source=ScoreSource.AI,
                reviewer_id=None,
                reviewed_at=utc_now(),
                feedback=outcome.feedback,
                needs_manual_review=outcome.needs_manual_review,
                review_reason=outcome.reason,
            )
            unit.save_answer(reviewed)
            totals = self._aggregator.recompute(unit, attempt_id)
        return ReconciliationResult(answer=reviewed, totals=totals)

    def score_with_ai(self, answer_id: int) -> Answer:
        """
        Ask the AI collaborator to score a stored answer.

        On timeout or provider failure the answer is flagged with the
        reason and keeps its previous score and source.

        Raises:
            AnswerNotFound: If the answer does not exist.
        """
        answer = self._repository.get_answer(answer_id)
        question = self._repository.get_question(answer.question_id)
        try:
            ai_score = self._engine.score_with_deadline(question, answer.submitted_text or "")
            return self.apply_ai_score(answer_id, ai_score).answer
        except AIProviderError as e:
            return self._flag_ai_failure(answer_id, e)
        except ScoreOutOfRange as e:
            return self._flag_ai_failure(answer_id, AIProviderError(str(e), cause=e))

    def _flag_ai_failure(self, answer_id: int, error: AIProviderError) -> Answer:
        LOG.warning("AI scoring of answer %s failed, flagging: %s", answer_id, error)
        return self.flag(answer_id, ai_skipped_outcome(error).reason)

    # --------------------------------------------------------------------------
    # Submission grading
    # --------------------------------------------------------------------------

    def grade_answer(self, answer_id: int) -> ReconciliationResult:
        """
        Evaluate one stored answer and recompute its attempt.

        Raises:
            AnswerNotFound: If the answer does not exist.
        """
        answer = self._repository.get_answer(answer_id)
        outcome = self._evaluate(self._repository.get_question(answer.question_id), answer)
        with self._repository.locked(answer.attempt_id) as unit:
            graded = unit.get_answer(answer_id).apply_outcome(outcome)
            unit.save_answer(graded)
            totals = self._aggregator.recompute(unit, answer.attempt_id)
        return ReconciliationResult(answer=graded, totals=totals)

    def grade_attempt(self, attempt_id: int, submitted_at: datetime | None = None) -> AttemptTotals:
        """
        Submit an attempt: grade every answer and compute its totals.

        Evaluation (including any AI pre-pass) runs before the attempt
        lock is taken; the outcomes are then written in one unit.

        Raises:
            AttemptNotFound: If the attempt does not exist.
            AttemptAlreadySubmitted: If the attempt is not in progress.
        """
        attempt = self._repository.get_attempt(attempt_id)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise AttemptAlreadySubmitted(attempt_id, attempt.status)

        outcomes: dict[int, GradeOutcome] = {}
        for answer in self._repository.get_answers_for_attempt(attempt_id):
            question = self._repository.get_question(answer.question_id)
            outcomes[answer.id] = self._evaluate(question, answer)

        with self._repository.locked(attempt_id) as unit:
            attempt = unit.get_attempt(attempt_id)
            if attempt.status != AttemptStatus.IN_PROGRESS:
                raise AttemptAlreadySubmitted(attempt_id, attempt.status)
            for answer_id, outcome in outcomes.items():
                unit.save_answer(unit.get_answer(answer_id).apply_outcome(outcome))
            unit.save_attempt(
                attempt.model_copy(
                    update={
                        "status": AttemptStatus.SUBMITTED,
                        "submitted_at": as_utc(submitted_at) if submitted_at else utc_now(),
                    }
                )
            )
            totals = self._aggregator.recompute(unit, attempt_id)

        LOG.info(
            "Attempt %s submitted: %s/%s, %s answer(s) awaiting review",
            attempt_id,
            totals.total_score,
            totals.max_score,
            totals.pending_count,
        )
        return totals

    # --------------------------------------------------------------------------
    # Helpers
    # --------------------------------------------------------------------------

    def _evaluate(self, question: Question, answer: Answer) -> GradeOutcome:
        try:
            return self._engine.evaluate_submission(question, answer.submitted_text)
        except UnsupportedQuestionType as e:
            LOG.error("Answer %s left for review: %s", answer.id, e)
            return deferred_outcome(str(e))

    def _apply_review(
        self,
        unit: Repository,
        answer_id: int,
        score: Any,
        feedback: str | None,
        is_correct: bool | None,
        reviewer_id: int | None,
        source: ScoreSource,
    ) -> Answer:
        answer = unit.get_answer(answer_id)
        question = unit.get_question(answer.question_id)
        value = check_score(answer, question, score)
        reviewed = answer.apply_review(
            score=value,
            is_correct=is_correct if is_correct is not None else value > 0,
            source=source,
            reviewer_id=reviewer_id if source == ScoreSource.HUMAN else None,
            reviewed_at=utc_now(),
            feedback=feedback,
        )
        unit.save_answer(reviewed)
        return reviewed

    @staticmethod
    def _check_source(source: ScoreSource, reviewer_id: int | None) -> None:
        if source not in (ScoreSource.HUMAN, ScoreSource.AI):
            raise ValueError(f"Reviews come from a human or the AI, not {source.value}")
        if source == ScoreSource.HUMAN and reviewer_id is None:
            raise ValueError("A human review needs a reviewer id")


def _failure(item: ReviewItem, error: Exception) -> ReviewItemResult:
    LOG.info("Review of answer %s failed: %s", item.answer_id, error)
    return ReviewItemResult(
        answer_id=item.answer_id,
        success=False,
        error=str(error),
        error_type=type(error).__name__,
    )
