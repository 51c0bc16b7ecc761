"""
Grading engine - evaluates a submission on arrival.

Classifies the question, grades objective types with the matcher and,
when an AI scorer is configured, runs a deadline-bound AI pre-pass on
open-ended types. AI failures fall back to human review.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout

from answer_engine.config import Settings, get_settings
from answer_engine.grading import matcher
from answer_engine.grading.ai_client import AIProviderError, AIProviderTimeout, AIScorer
from answer_engine.grading.classifier import classify
from answer_engine.models import AIScore, GradeOutcome, GradingStrategy, Question, ScoreSource

LOG = logging.getLogger(__name__)

EMPTY_SUBMISSION_REASON = "subjective type, empty submission"


def fold_ai_score(question: Question, ai_score: AIScore, confidence_threshold: float) -> GradeOutcome:
    """
    Turn an AI candidate score into a grade outcome.

    A confident score settles the answer; a low-confidence one keeps
    the score but leaves the answer in the review queue.

    Raises:
        AIProviderError: If the score exceeds the question's points.
    """
    if ai_score.score > question.points:
        raise AIProviderError(
            f"AI score {ai_score.score} exceeds question points {question.points}"
        )
    low_confidence = ai_score.confidence < confidence_threshold
    reason = None
    if low_confidence:
        reason = (
            f"AI confidence {ai_score.confidence:.2f} below threshold {confidence_threshold:.2f}"
        )
    return GradeOutcome(
        score=ai_score.score,
        is_correct=ai_score.score > 0,
        needs_manual_review=low_confidence,
        reason=reason,
        source=ScoreSource.AI,
        feedback=ai_score.feedback or None,
    )


def ai_skipped_outcome(error: AIProviderError) -> GradeOutcome:
    """Deferred outcome recording why the AI pre-pass was skipped."""
    kind = "timeout" if isinstance(error, AIProviderTimeout) else "provider error"
    return matcher.deferred_outcome(f"{matcher.DEFERRED_REASON}, AI grading skipped ({kind})")


class GradingEngine:
    """
    Evaluates submissions synchronously.

    Holds no per-answer state, so one engine can serve concurrent
    evaluations. The AI pre-pass runs on a small worker pool so the
    deadline holds whatever the scorer implementation does.
    """

    def __init__(self, settings: Settings | None = None, ai_scorer: AIScorer | None = None):
        """
        Initialize the grading engine.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
            ai_scorer: Optional AI collaborator; without one, open-ended
                answers go straight to human review.
        """
        self._settings = settings or get_settings()
        self._ai_scorer = ai_scorer
        self._executor: ThreadPoolExecutor | None = None
        if ai_scorer is not None:
            self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="ai-score")

    @property
    def ai_enabled(self) -> bool:
        return self._ai_scorer is not None

    def classify(self, question: Question) -> GradingStrategy:
        return classify(question, ai_prepass=self.ai_enabled)

    def evaluate_submission(self, question: Question, submitted_text: str | None) -> GradeOutcome:
        """
        Grade a submission.

        Args:
            question: The question answered.
            submitted_text: Raw student input.

        Returns:
            The GradeOutcome to fold into the answer.

        Raises:
            UnsupportedQuestionType: If the question type is not registered.
        """
        strategy = self.classify(question)
        if strategy != GradingStrategy.DEFER_AI:
            return matcher.evaluate(
                question,
                submitted_text,
                strategy=strategy,
                threshold=self._settings.fuzzy_match_threshold,
            )

        if not matcher.normalize(submitted_text):
            return matcher.deferred_outcome(EMPTY_SUBMISSION_REASON)

        try:
            ai_score = self.score_with_deadline(question, submitted_text or "")
            return fold_ai_score(question, ai_score, self._settings.ai_confidence_threshold)
        except AIProviderError as e:
            LOG.warning("AI pre-pass failed for question %s, deferring to human: %s", question.id, e)
            return ai_skipped_outcome(e)

    def score_with_deadline(self, question: Question, submitted_text: str) -> AIScore:
        """
        Call the AI scorer, giving up after the configured deadline.

        Raises:
            AIProviderTimeout: If the deadline passes.
            AIProviderError: If no scorer is configured or the call fails.
        """
        if self._ai_scorer is None or self._executor is None:
            raise AIProviderError("No AI scorer configured")

        timeout = self._settings.ai_timeout_seconds
        future = self._executor.submit(self._ai_scorer.score, question, submitted_text)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeout as e:
            future.cancel()
            raise AIProviderTimeout(f"AI scoring exceeded {timeout}s deadline", cause=e) from e
        except AIProviderError:
            raise
        except Exception as e:
            raise AIProviderError(f"AI scorer failed: {e}", cause=e) from e

    def close(self) -> None:
        """Release the AI worker pool."""
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def health_check(self) -> bool:
        """
        Check if the AI collaborator is operational.

        Returns:
            True if no AI scorer is configured or it reports healthy.
        """
        check = getattr(self._ai_scorer, "health_check", None)
        if check is None:
            return True
        return bool(check())
