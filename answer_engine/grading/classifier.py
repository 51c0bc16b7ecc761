"""
Scoring classifier.

Maps a question type to the strategy used to grade it. The table is
the single place where question types are registered.
"""

from answer_engine.models import GradingStrategy, Question, QuestionType


class UnsupportedQuestionType(Exception):
    """Raised when a question type has no registered grading strategy."""

    def __init__(self, question_type: object):
        self.question_type = question_type
        super().__init__(f"Unsupported question type: {question_type!r}")


EXACT_TYPES = frozenset(
    [
        QuestionType.MULTIPLE_CHOICE,
        QuestionType.TRUE_FALSE,
        QuestionType.LISTENING_MULTIPLE_CHOICE,
        QuestionType.READING_MULTIPLE_CHOICE,
        QuestionType.READING_TRUE_FALSE,
        QuestionType.LISTENING_MATCHING,
        QuestionType.READING_MATCHING,
    ]
)

FUZZY_TYPES = frozenset(
    [
        QuestionType.FILL_BLANKS,
        QuestionType.SHORT_ANSWER,
        QuestionType.WORD_FORMATION,
        QuestionType.SENTENCE_TRANSFORMATION,
        QuestionType.LISTENING_NOTE_COMPLETION,
        QuestionType.LISTENING_FORM_FILLING,
        QuestionType.READING_GAPPED_TEXT,
    ]
)

OPEN_ENDED_TYPES = frozenset(
    [
        QuestionType.ESSAY,
        QuestionType.AUDIO_RESPONSE,
        QuestionType.IMAGE_DESCRIPTION,
        QuestionType.SHORT_MESSAGE,
        QuestionType.INFORMAL_EMAIL,
        QuestionType.FORMAL_EMAIL,
        QuestionType.ESSAY_OPINION,
        QuestionType.PERSONAL_INFORMATION,
        QuestionType.DESCRIBING_PHOTO,
        QuestionType.COMPARING_SITUATIONS,
        QuestionType.DISCUSSION_TOPIC,
    ]
)


def _coerce_type(question_type: QuestionType | str) -> QuestionType:
    if isinstance(question_type, QuestionType):
        return question_type
    try:
        return QuestionType(question_type)
    except ValueError as e:
        raise UnsupportedQuestionType(question_type) from e


def classify_type(question_type: QuestionType | str, ai_prepass: bool = False) -> GradingStrategy:
    """
    Select the grading strategy for a question type.

    Args:
        question_type: The type tag (enum member or its string value).
        ai_prepass: Whether open-ended types get an AI pre-pass before
            falling back to a human reviewer.

    Raises:
        UnsupportedQuestionType: If the type is not registered.
    """
    qtype = _coerce_type(question_type)
    if qtype in EXACT_TYPES:
        return GradingStrategy.AUTO_EXACT
    if qtype in FUZZY_TYPES:
        return GradingStrategy.AUTO_FUZZY
    if qtype in OPEN_ENDED_TYPES:
        return GradingStrategy.DEFER_AI if ai_prepass else GradingStrategy.DEFER_HUMAN
    raise UnsupportedQuestionType(qtype)


def classify(question: Question, ai_prepass: bool = False) -> GradingStrategy:
    """Select the grading strategy for a question."""
    return classify_type(question.type, ai_prepass)
