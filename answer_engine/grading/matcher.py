"""
Answer matcher for objectively gradable questions.

Exact comparison for choice questions and edit-distance based
approximate comparison for short free-text answers. Everything here
is a pure function: no I/O and no shared state.
"""

from decimal import Decimal

from answer_engine.grading.classifier import classify
from answer_engine.models import GradeOutcome, GradingStrategy, Question, ScoreSource

DEFAULT_FUZZY_THRESHOLD = 0.8

DEFERRED_REASON = "subjective type"
NO_KEY_REASON = "no answer key"


def normalize(text: str | None) -> str:
    """Lower-case and strip surrounding whitespace."""
    if text is None:
        return ""
    return text.strip().lower()


def levenshtein(a: str, b: str) -> int:
    """
    Minimum number of single character insertions, deletions and
    substitutions turning a into b.

    Operates on code points; Python strings already index by code point.
    """
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # Two rolling rows of the DP table.
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, cb in enumerate(b, start=1):
            if ca == cb:
                current[j] = previous[j - 1]
            else:
                current[j] = 1 + min(
                    previous[j - 1],  # substitute
                    current[j - 1],  # insert
                    previous[j],  # delete
                )
        previous = current
    return previous[len(b)]


def similarity(a: str, b: str) -> float:
    """
    Normalized similarity (maxLen - distance) / maxLen in [0, 1].

    Two empty strings are identical and score 1.0; callers grading
    answers must reject empty submissions before relying on this.
    """
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    value = (max_len - levenshtein(a, b)) / max_len
    return min(1.0, max(0.0, value))


def is_exact_match(correct_answer: str | None, submitted_text: str | None) -> bool:
    submitted = normalize(submitted_text)
    if not submitted:
        return False
    return submitted == normalize(correct_answer)


def is_fuzzy_match(
    correct_answer: str | None,
    submitted_text: str | None,
    threshold: float = DEFAULT_FUZZY_THRESHOLD,
) -> bool:
    """
    Accept exact, containment or close-enough answers.

    Checked in order: empty submission (always wrong), exact equality,
    substring either way, similarity strictly above threshold.
    """
    submitted = normalize(submitted_text)
    correct = normalize(correct_answer)
    if not submitted:
        return False
    if submitted == correct:
        return True
    if correct and (correct in submitted or submitted in correct):
        return True
    return similarity(submitted, correct) > threshold


def deferred_outcome(reason: str = DEFERRED_REASON) -> GradeOutcome:
    """Outcome for answers left to the AI or a human reviewer."""
    return GradeOutcome(score=None, is_correct=None, needs_manual_review=True, reason=reason)


def _auto_outcome(question: Question, correct: bool) -> GradeOutcome:
    return GradeOutcome(
        score=question.points if correct else Decimal("0"),
        is_correct=correct,
        needs_manual_review=False,
        source=ScoreSource.AUTO,
    )


def evaluate(
    question: Question,
    submitted_text: str | None,
    strategy: GradingStrategy | None = None,
    threshold: float = DEFAULT_FUZZY_THRESHOLD,
) -> GradeOutcome:
    """
    Grade a submission against a question.

    Args:
        question: The question being answered.
        submitted_text: Raw student input.
        strategy: Pre-computed strategy; classified from the type if omitted.
        threshold: Similarity threshold for short free-text answers.

    Returns:
        GradeOutcome with full points or zero for auto types, or a
        deferred outcome for open-ended types.

    Raises:
        UnsupportedQuestionType: If the question type is not registered.
    """
    strategy = strategy or classify(question)

    if strategy.is_deferred:
        return deferred_outcome()

    if question.correct_answer is None:
        return deferred_outcome(NO_KEY_REASON)

    if strategy == GradingStrategy.AUTO_EXACT:
        return _auto_outcome(question, is_exact_match(question.correct_answer, submitted_text))

    return _auto_outcome(
        question, is_fuzzy_match(question.correct_answer, submitted_text, threshold)
    )
