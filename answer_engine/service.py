"""
Caller-facing API of the engine.

Wires settings, the grading engine, the review queue, the aggregator
and the reconciliation service around one repository.
"""

import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from answer_engine.config import Settings, get_settings
from answer_engine.grading.ai_client import AIClient, AIScorer
from answer_engine.grading.engine import GradingEngine
from answer_engine.models import (
    AIScore,
    Answer,
    AttemptTotals,
    BatchResult,
    GradeOutcome,
    Question,
    RankedReviewItem,
    ReconciliationResult,
    ReviewDetails,
    ReviewFilter,
    ReviewItem,
    ReviewStats,
    ScoreSource,
)
from answer_engine.review.aggregator import AttemptAggregator
from answer_engine.review.queue import ReviewQueue
from answer_engine.review.reconciliation import ReconciliationService
from answer_engine.storage.repository import Repository

LOG = logging.getLogger(__name__)


class AnswerEngine:
    """
    Facade over evaluation, review queue and reconciliation.

    The AI scorer defaults to an AIClient when the settings enable the
    AI pre-pass; pass one explicitly to use another provider.
    """

    def __init__(
        self,
        repository: Repository,
        settings: Settings | None = None,
        ai_scorer: AIScorer | None = None,
    ):
        self._settings = settings or get_settings()
        self._repository = repository
        if ai_scorer is None and self._settings.ai_enabled:
            ai_scorer = AIClient(self._settings)
        self.grading = GradingEngine(self._settings, ai_scorer)
        self.queue = ReviewQueue(self._settings.high_weight_skills)
        self.aggregator = AttemptAggregator(self._settings.pass_percentage)
        self.reconciliation = ReconciliationService(
            repository, self.grading, self.aggregator, self._settings
        )
        LOG.debug("Answer engine ready (AI pre-pass: %s)", self.grading.ai_enabled)

    @property
    def repository(self) -> Repository:
        return self._repository

    def evaluate_submission(self, question: Question, text: str | None) -> GradeOutcome:
        return self.grading.evaluate_submission(question, text)

    def grade_answer(self, answer_id: int) -> ReconciliationResult:
        return self.reconciliation.grade_answer(answer_id)

    def grade_attempt(self, attempt_id: int, submitted_at: datetime | None = None) -> AttemptTotals:
        return self.reconciliation.grade_attempt(attempt_id, submitted_at)

    def list_pending_reviews(
        self, review_filter: ReviewFilter | None = None, now: datetime | None = None
    ) -> list[RankedReviewItem]:
        return self.queue.list_pending(self._repository, review_filter, now)

    def review_details(self, attempt_id: int) -> ReviewDetails:
        return self.queue.details(self._repository, attempt_id)

    def review_stats(self, since: datetime) -> ReviewStats:
        return self.queue.stats(self._repository, since)

    def submit_review(
        self,
        answer_id: int,
        score: Any,
        feedback: str | None = None,
        is_correct: bool | None = None,
        reviewer_id: int | None = None,
        source: ScoreSource = ScoreSource.HUMAN,
    ) -> ReconciliationResult:
        return self.reconciliation.submit_review(
            answer_id, score, feedback, is_correct, reviewer_id, source
        )

    def batch_submit_review(
        self,
        items: Sequence[ReviewItem],
        reviewer_id: int | None = None,
        source: ScoreSource = ScoreSource.HUMAN,
    ) -> BatchResult:
        return self.reconciliation.batch_submit_review(items, reviewer_id, source)

    def flag(self, answer_id: int, reason: str | None = None) -> Answer:
        return self.reconciliation.flag(answer_id, reason)

    def apply_ai_score(self, answer_id: int, ai_score: AIScore) -> ReconciliationResult:
        return self.reconciliation.apply_ai_score(answer_id, ai_score)

    def score_with_ai(self, answer_id: int) -> Answer:
        return self.reconciliation.score_with_ai(answer_id)

    def get_attempt_totals(self, attempt_id: int) -> AttemptTotals:
        """
        Current totals of an attempt, derived from its answers.

        Raises:
            AttemptNotFound: If the attempt does not exist.
        """
        self._repository.get_attempt(attempt_id)
        return self.aggregator.totals(self._repository, attempt_id)

    def close(self) -> None:
        self.grading.close()
