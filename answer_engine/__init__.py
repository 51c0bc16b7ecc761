"""
Answer Engine - answer evaluation and review reconciliation.

This package grades submitted answers (exact and approximate matching,
with an optional AI pre-pass for open-ended questions), ranks answers
awaiting human review and reconciles human/AI grades into attempt totals.
"""

__version__ = "1.0.0"
__author__ = "Answer Engine Team"
