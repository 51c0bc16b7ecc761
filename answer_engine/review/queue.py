"""
Review queue.

Ranks attempts holding answers flagged for manual review. Priority is
`age_days * 10 + flagged_count * 5 + 50` when any flagged answer
belongs to a high-weight skill; ties go to the earliest submission.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime
from decimal import Decimal

from answer_engine.models import (
    Answer,
    FlaggedAnswer,
    PendingAttempt,
    RankedReviewItem,
    ReviewDetails,
    ReviewFilter,
    ReviewStats,
    SkillReviewStats,
    as_utc,
    utc_now,
)
from answer_engine.storage.repository import Repository

LOG = logging.getLogger(__name__)

AGE_WEIGHT = 10
FLAG_WEIGHT = 5
HIGH_WEIGHT_SKILL_BONUS = 50

SECONDS_PER_DAY = 24 * 60 * 60


class ReviewQueue:
    """Read-only ranked view over flagged answers."""

    def __init__(self, high_weight_skills: Iterable[str] = ()):
        self._high_weight_skills = frozenset(s.lower() for s in high_weight_skills)

    def is_high_weight(self, skill: str | None) -> bool:
        return skill is not None and skill.lower() in self._high_weight_skills

    def priority(self, attempt: PendingAttempt, now: datetime) -> RankedReviewItem:
        """Score one pending attempt."""
        age_seconds = max(0.0, (as_utc(now) - attempt.submitted_at).total_seconds())
        days = int(age_seconds // SECONDS_PER_DAY)
        count = len(attempt.flagged_answers)
        high = any(self.is_high_weight(f.skill) for f in attempt.flagged_answers)
        score = days * AGE_WEIGHT + count * FLAG_WEIGHT + (HIGH_WEIGHT_SKILL_BONUS if high else 0)
        return RankedReviewItem(
            attempt_id=attempt.attempt_id,
            student_id=attempt.student_id,
            exam_id=attempt.exam_id,
            submitted_at=attempt.submitted_at,
            priority=score,
            days_pending=days,
            flagged_answer_count=count,
            has_high_weight_skill=high,
            flagged_answers=attempt.flagged_answers,
        )

    def rank(
        self, attempts: Iterable[PendingAttempt], now: datetime | None = None
    ) -> list[RankedReviewItem]:
        """
        Order pending attempts by descending priority.

        Ties are broken by earliest submission, then attempt id, so the
        same input always yields the same order.
        """
        now = as_utc(now) if now is not None else utc_now()
        items = [self.priority(a, now) for a in attempts]
        return sorted(items, key=lambda i: (-i.priority, i.submitted_at, i.attempt_id))

    # --------------------------------------------------------------------------
    # Repository backed queries
    # --------------------------------------------------------------------------

    def pending_attempts(
        self, repository: Repository, review_filter: ReviewFilter | None = None
    ) -> list[PendingAttempt]:
        """Group persisted flagged answers by attempt."""
        review_filter = review_filter or ReviewFilter()
        skill = review_filter.skill.lower() if review_filter.skill else None

        grouped: dict[int, list[FlaggedAnswer]] = defaultdict(list)
        for answer in repository.list_flagged_answers():
            question = repository.get_question(answer.question_id)
            if skill is not None and (question.skill or "").lower() != skill:
                continue
            grouped[answer.attempt_id].append(
                FlaggedAnswer(
                    answer_id=answer.id,
                    question_id=answer.question_id,
                    skill=question.skill,
                    reason=answer.review_reason,
                )
            )

        pending: list[PendingAttempt] = []
        for attempt_id, flagged in grouped.items():
            attempt = repository.get_attempt(attempt_id)
            if review_filter.exam_id is not None and attempt.exam_id != review_filter.exam_id:
                continue
            pending.append(
                PendingAttempt(
                    attempt_id=attempt.id,
                    student_id=attempt.student_id,
                    exam_id=attempt.exam_id,
                    submitted_at=attempt.submitted_at or attempt.created_at,
                    flagged_answers=tuple(flagged),
                )
            )
        return pending

    def list_pending(
        self,
        repository: Repository,
        review_filter: ReviewFilter | None = None,
        now: datetime | None = None,
    ) -> list[RankedReviewItem]:
        """Ranked, filtered and paginated pending reviews."""
        review_filter = review_filter or ReviewFilter()
        ranked = self.rank(self.pending_attempts(repository, review_filter), now)
        if review_filter.min_priority is not None:
            ranked = [r for r in ranked if r.priority >= review_filter.min_priority]
        start = review_filter.offset
        return ranked[start : start + review_filter.limit]

    def details(self, repository: Repository, attempt_id: int) -> ReviewDetails:
        """
        Collect one attempt's answers for a reviewer.

        Raises:
            AttemptNotFound: If the attempt does not exist.
        """
        attempt = repository.get_attempt(attempt_id)
        answers = repository.get_answers_for_attempt(attempt_id)

        by_skill: dict[str, list[Answer]] = defaultdict(list)
        for answer in answers:
            skill = repository.get_question(answer.question_id).skill or "unassigned"
            by_skill[skill].append(answer)

        flagged = [a for a in answers if a.needs_manual_review]
        return ReviewDetails(
            attempt=attempt,
            answers_by_skill=dict(by_skill),
            flagged_answers=flagged,
            total_answers=len(answers),
            flagged_count=len(flagged),
            scored_count=sum(1 for a in answers if a.score is not None),
        )

    def stats(self, repository: Repository, since: datetime) -> ReviewStats:
        """Pending workload and reviews completed since a point in time."""
        since = as_utc(since)
        reviewed = repository.list_reviewed_answers(since)

        scores: dict[str | None, list[Decimal]] = defaultdict(list)
        counts: dict[str | None, int] = defaultdict(int)
        for answer in reviewed:
            skill = repository.get_question(answer.question_id).skill
            counts[skill] += 1
            if answer.score is not None:
                scores[skill].append(answer.score)

        by_skill = tuple(
            SkillReviewStats(
                skill=skill,
                review_count=counts[skill],
                average_score=(sum(scores[skill]) / len(scores[skill])) if scores[skill] else None,
            )
            for skill in sorted(counts, key=lambda s: (s is None, s or ""))
        )
        return ReviewStats(
            pending_reviews=len(repository.list_flagged_answers()),
            completed_since=len(reviewed),
            since=since,
            by_skill=by_skill,
        )
