"""
Attempt aggregator.

Attempt totals are always re-derived from the full current answer set,
never patched incrementally.
"""

import logging
from collections.abc import Iterable, Mapping
from decimal import Decimal

from answer_engine.models import Answer, AttemptStatus, AttemptTotals, Question
from answer_engine.storage.repository import QuestionNotFound, Repository

LOG = logging.getLogger(__name__)

DEFAULT_PASS_PERCENTAGE = 60.0


def compute_totals(
    answers: Iterable[Answer],
    questions: Mapping[int, Question],
    pass_percentage: float = DEFAULT_PASS_PERCENTAGE,
) -> AttemptTotals:
    """
    Compute totals for a set of answers.

    total_score sums the scores that exist; max_score sums the points
    of every answer present, graded or not.

    Args:
        answers: All answers of one attempt.
        questions: Questions by id, covering every answer.
        pass_percentage: Minimum percentage counted as a pass.

    Raises:
        KeyError: If an answer's question is missing from questions.
    """
    total = Decimal("0")
    maximum = Decimal("0")
    graded = 0
    pending = 0
    for answer in answers:
        maximum += questions[answer.question_id].points
        if answer.score is not None:
            total += answer.score
            graded += 1
        if answer.score is None or answer.needs_manual_review:
            pending += 1

    percentage = float(total / maximum * 100) if maximum > 0 else 0.0
    return AttemptTotals(
        total_score=total,
        max_score=maximum,
        percentage=round(percentage, 2),
        passed=maximum > 0 and percentage >= pass_percentage,
        graded_count=graded,
        pending_count=pending,
    )


class AttemptAggregator:
    """Recomputes and persists attempt totals."""

    def __init__(self, pass_percentage: float = DEFAULT_PASS_PERCENTAGE):
        self._pass_percentage = pass_percentage

    def totals(self, repository: Repository, attempt_id: int) -> AttemptTotals:
        """
        Compute totals from the persisted answers without writing them.

        Answers whose question no longer exists are left out.
        """
        answers = repository.get_answers_for_attempt(attempt_id)
        questions: dict[int, Question] = {}
        for qid in sorted({a.question_id for a in answers}):
            try:
                questions[qid] = repository.get_question(qid)
            except QuestionNotFound:
                LOG.warning("Attempt %s has answers for missing question %s", attempt_id, qid)
        counted = [a for a in answers if a.question_id in questions]
        return compute_totals(counted, questions, self._pass_percentage)

    def recompute(self, repository: Repository, attempt_id: int) -> AttemptTotals:
        """
        Re-derive and persist an attempt's totals.

        Call inside repository.locked(attempt_id) so the answer set read
        here is the one being committed. An attempt that has left the
        in-progress state moves between submitted and graded with its
        answers.

        Raises:
            AttemptNotFound: If the attempt does not exist.
        """
        attempt = repository.get_attempt(attempt_id)
        totals = self.totals(repository, attempt_id)
        repository.save_attempt_totals(attempt_id, totals)

        if attempt.status != AttemptStatus.IN_PROGRESS:
            status = AttemptStatus.GRADED if totals.fully_graded else AttemptStatus.SUBMITTED
            if status != attempt.status:
                repository.save_attempt(
                    repository.get_attempt(attempt_id).model_copy(update={"status": status})
                )

        LOG.debug(
            "Attempt %s totals: %s/%s (%s pending)",
            attempt_id,
            totals.total_score,
            totals.max_score,
            totals.pending_count,
        )
        return totals
