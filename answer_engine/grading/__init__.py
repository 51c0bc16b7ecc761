"""
Grading Module.

Classification, objective matching and the AI pre-pass for
submitted answers.
"""

from answer_engine.grading.ai_client import AIClient, AIProviderError, AIProviderTimeout, AIScorer
from answer_engine.grading.classifier import UnsupportedQuestionType, classify, classify_type
from answer_engine.grading.engine import GradingEngine
from answer_engine.grading.matcher import evaluate, levenshtein, similarity
from answer_engine.grading.prompt_builder import PromptBuilder
from answer_engine.grading.scorer import ResponseParser, ScoringError

__all__ = [
    "AIClient",
    "AIProviderError",
    "AIProviderTimeout",
    "AIScorer",
    "GradingEngine",
    "PromptBuilder",
    "ResponseParser",
    "ScoringError",
    "UnsupportedQuestionType",
    "classify",
    "classify_type",
    "evaluate",
    "levenshtein",
    "similarity",
]
