"""
Review Module.

Review queue ranking, reconciliation of human/AI grades and attempt
aggregation.
"""

from answer_engine.review.aggregator import AttemptAggregator, compute_totals
from answer_engine.review.queue import ReviewQueue
from answer_engine.review.reconciliation import (
    AttemptAlreadySubmitted,
    ReconciliationService,
    ScoreOutOfRange,
)

__all__ = [
    "AttemptAggregator",
    "AttemptAlreadySubmitted",
    "ReconciliationService",
    "ReviewQueue",
    "ScoreOutOfRange",
    "compute_totals",
]
