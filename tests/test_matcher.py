"""
Unit tests for the answer matcher and scoring classifier.

Covers edit distance, similarity and the exact/fuzzy/deferred grading
policies.
"""

from decimal import Decimal

import pytest

from answer_engine.grading import UnsupportedQuestionType, classify, classify_type, evaluate
from answer_engine.grading.matcher import is_fuzzy_match, levenshtein, similarity
from answer_engine.models import GradingStrategy, Question, QuestionType, ScoreSource


class TestLevenshtein:
    """Tests for the edit distance."""

    def test_classic_example(self) -> None:
        """kitten -> sitting takes three edits."""
        assert levenshtein("kitten", "sitting") == 3

    def test_identical_strings(self) -> None:
        assert levenshtein("paris", "paris") == 0
        assert levenshtein("", "") == 0

    def test_zero_only_for_identical(self) -> None:
        assert levenshtein("paris", "Paris") == 1
        assert levenshtein("a", "") == 1

    def test_empty_side(self) -> None:
        assert levenshtein("", "abc") == 3
        assert levenshtein("abc", "") == 3

    def test_symmetric(self) -> None:
        assert levenshtein("flaw", "lawn") == levenshtein("lawn", "flaw") == 2

    @pytest.mark.parametrize(
        "a,b,c",
        [
            ("kitten", "sitting", "sittin"),
            ("paris", "pariss", "london"),
            ("", "abc", "abd"),
            ("book", "back", "rock"),
        ],
    )
    def test_triangle_inequality(self, a: str, b: str, c: str) -> None:
        assert levenshtein(a, c) <= levenshtein(a, b) + levenshtein(b, c)

    def test_unicode_code_points(self) -> None:
        """Multi-byte characters count as one edit each."""
        assert levenshtein("café", "cafe") == 1
        assert levenshtein("日本語", "日本") == 1
        assert levenshtein("naïve", "naive") == 1


class TestSimilarity:
    """Tests for normalized similarity."""

    def test_pariss_vs_paris(self) -> None:
        assert similarity("pariss", "paris") == pytest.approx(5 / 6)

    def test_symmetric(self) -> None:
        assert similarity("london", "paris") == similarity("paris", "london")

    def test_bounds(self) -> None:
        assert similarity("abc", "xyz") == 0.0
        assert similarity("abc", "abc") == 1.0

    def test_both_empty_is_identical(self) -> None:
        assert similarity("", "") == 1.0

    def test_unicode(self) -> None:
        assert similarity("größe", "grösse") == pytest.approx(4 / 6)


class TestClassifier:
    """Tests for question type classification."""

    @pytest.mark.parametrize(
        "qtype,expected",
        [
            (QuestionType.MULTIPLE_CHOICE, GradingStrategy.AUTO_EXACT),
            (QuestionType.TRUE_FALSE, GradingStrategy.AUTO_EXACT),
            (QuestionType.READING_TRUE_FALSE, GradingStrategy.AUTO_EXACT),
            (QuestionType.FILL_BLANKS, GradingStrategy.AUTO_FUZZY),
            (QuestionType.SHORT_ANSWER, GradingStrategy.AUTO_FUZZY),
            (QuestionType.ESSAY, GradingStrategy.DEFER_HUMAN),
            (QuestionType.AUDIO_RESPONSE, GradingStrategy.DEFER_HUMAN),
            (QuestionType.IMAGE_DESCRIPTION, GradingStrategy.DEFER_HUMAN),
        ],
    )
    def test_strategy_by_type(self, qtype: QuestionType, expected: GradingStrategy) -> None:
        assert classify_type(qtype) == expected

    def test_ai_prepass_for_open_ended(self, essay_question: Question) -> None:
        assert classify(essay_question, ai_prepass=True) == GradingStrategy.DEFER_AI

    def test_ai_prepass_leaves_auto_types(self, mc_question: Question) -> None:
        assert classify(mc_question, ai_prepass=True) == GradingStrategy.AUTO_EXACT

    def test_string_type(self) -> None:
        assert classify_type("short_answer") == GradingStrategy.AUTO_FUZZY

    def test_unknown_type(self) -> None:
        with pytest.raises(UnsupportedQuestionType, match="crossword"):
            classify_type("crossword")


class TestExactMatching:
    """Tests for AUTO_EXACT grading."""

    @pytest.mark.parametrize("submitted", ["B", "b", "  b  ", "\tB\n"])
    def test_case_and_whitespace_insensitive(self, mc_question: Question, submitted: str) -> None:
        outcome = evaluate(mc_question, submitted)

        assert outcome.is_correct is True
        assert outcome.score == Decimal("10")
        assert outcome.needs_manual_review is False
        assert outcome.source == ScoreSource.AUTO

    def test_wrong_choice(self, mc_question: Question) -> None:
        outcome = evaluate(mc_question, "C")

        assert outcome.is_correct is False
        assert outcome.score == Decimal("0")
        assert outcome.needs_manual_review is False

    def test_empty_submission(self, mc_question: Question) -> None:
        assert evaluate(mc_question, "").is_correct is False
        assert evaluate(mc_question, None).is_correct is False

    def test_no_partial_credit_for_near_miss(self) -> None:
        question = Question(id=9, type=QuestionType.TRUE_FALSE, correct_answer="true")
        assert evaluate(question, "tru").is_correct is False


class TestFuzzyMatching:
    """Tests for AUTO_FUZZY grading."""

    def test_close_misspelling_accepted(self, short_question: Question) -> None:
        outcome = evaluate(short_question, "pariss")

        assert outcome.is_correct is True
        assert outcome.score == Decimal("10")

    def test_different_word_rejected(self, short_question: Question) -> None:
        outcome = evaluate(short_question, "london")

        assert outcome.is_correct is False
        assert outcome.score == Decimal("0")
        assert outcome.needs_manual_review is False

    def test_case_and_whitespace(self, short_question: Question) -> None:
        assert evaluate(short_question, "  PARIS ").is_correct is True

    def test_containment_either_way(self, short_question: Question) -> None:
        assert evaluate(short_question, "paris, france").is_correct is True
        assert evaluate(short_question, "par").is_correct is True

    def test_identical_text_is_correct(self) -> None:
        for text in ["a", "photosynthesis", "über", "два слова"]:
            question = Question(id=9, type=QuestionType.FILL_BLANKS, correct_answer=text)
            assert evaluate(question, text).is_correct is True

    def test_both_empty_is_incorrect(self) -> None:
        question = Question(id=9, type=QuestionType.FILL_BLANKS, correct_answer="")
        outcome = evaluate(question, "")

        assert outcome.is_correct is False
        assert outcome.score == Decimal("0")

    def test_empty_submission_is_incorrect(self, short_question: Question) -> None:
        assert evaluate(short_question, "   ").is_correct is False

    def test_threshold_is_strict(self) -> None:
        """Similarity of exactly the threshold is not enough."""
        # "abcde" vs "abcxy": distance 2, similarity 0.6
        assert is_fuzzy_match("abcde", "abcxy", threshold=0.6) is False
        assert is_fuzzy_match("abcde", "abcxy", threshold=0.59) is True

    def test_configurable_threshold(self, short_question: Question) -> None:
        """pariz is exactly 0.8 similar: rejected by default, accepted at 0.75."""
        assert evaluate(short_question, "pariz").is_correct is False
        assert evaluate(short_question, "pariz", threshold=0.75).is_correct is True

    def test_missing_answer_key_defers(self) -> None:
        question = Question(id=9, type=QuestionType.SHORT_ANSWER, correct_answer=None)
        outcome = evaluate(question, "anything")

        assert outcome.needs_manual_review is True
        assert outcome.score is None
        assert outcome.reason == "no answer key"


class TestDeferredGrading:
    """Tests for open-ended types."""

    def test_essay_is_deferred(self, essay_question: Question) -> None:
        outcome = evaluate(essay_question, "A long essay about holidays.")

        assert outcome.score is None
        assert outcome.is_correct is None
        assert outcome.needs_manual_review is True
        assert outcome.reason == "subjective type"
        assert outcome.source is None

    def test_explicit_strategy(self, essay_question: Question) -> None:
        outcome = evaluate(essay_question, "text", strategy=GradingStrategy.DEFER_AI)
        assert outcome.needs_manual_review is True
