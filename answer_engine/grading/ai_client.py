"""
AI scoring client for an OpenAI-compatible provider.

Provides a wrapper around the OpenAI SDK that scores a single
open-ended answer. The client never retries: a timeout or provider
failure is reported to the caller, who decides what happens next.
"""

import logging
from typing import Protocol

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI

from answer_engine.config import Settings, get_settings
from answer_engine.grading.prompt_builder import PromptBuilder
from answer_engine.grading.scorer import ResponseParser, ScoringError
from answer_engine.models import AIScore, Question

LOG = logging.getLogger(__name__)


class AIProviderError(Exception):
    """Raised when the AI scoring provider fails or returns garbage."""

    def __init__(self, message: str, cause: Exception | None = None):
        self.cause = cause
        super().__init__(message)


class AIProviderTimeout(AIProviderError):
    """Raised when the AI scoring provider misses its deadline."""


class AIScorer(Protocol):
    """Anything that can produce a candidate score for an answer."""

    def score(self, question: Question, submitted_text: str) -> AIScore: ...


class AIClient:
    """
    Client for scoring answers with an OpenAI-compatible chat model.

    Uses the OpenAI SDK with a configurable base URL, the configured
    deadline as request timeout and SDK retries disabled.
    """

    def __init__(self, settings: Settings | None = None):
        """
        Initialize the AI client.

        Args:
            settings: Configuration settings. Uses global settings if not provided.

        Raises:
            AIProviderError: If no API key is configured.
        """
        self._settings = settings or get_settings()
        if not self._settings.ai_api_key:
            raise AIProviderError("No AI provider API key configured")
        self._client = OpenAI(
            api_key=self._settings.ai_api_key,
            base_url=self._settings.ai_base_url,
            timeout=self._settings.ai_timeout_seconds,
            max_retries=0,
        )
        self._parser = ResponseParser()

    def score(self, question: Question, submitted_text: str) -> AIScore:
        """
        Score one answer.

        Args:
            question: The question being answered.
            submitted_text: The student's answer.

        Returns:
            The provider's candidate AIScore.

        Raises:
            AIProviderTimeout: If the request exceeded the deadline.
            AIProviderError: If the request failed or the response was unusable.
        """
        raw = self._generate(
            system_prompt=PromptBuilder.get_system_prompt(),
            user_prompt=PromptBuilder.build_scoring_prompt(question, submitted_text),
        )
        try:
            return self._parser.parse(raw, question)
        except ScoringError as e:
            raise AIProviderError(f"Unusable AI response: {e}", cause=e) from e

    def _generate(self, system_prompt: str, user_prompt: str, max_tokens: int = 1024) -> str:
        messages: list[dict[str, str]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        try:
            response = self._client.chat.completions.create(
                model=self._settings.ai_model,
                messages=messages,  # type: ignore[arg-type]
                temperature=self._settings.ai_temperature,
                max_tokens=max_tokens,
            )
        except APITimeoutError as e:
            raise AIProviderTimeout(
                f"AI provider timed out after {self._settings.ai_timeout_seconds}s", cause=e
            ) from e
        except APIConnectionError as e:
            raise AIProviderError(f"Connection failed: {e}", cause=e) from e
        except APIStatusError as e:
            raise AIProviderError(f"API error ({e.status_code}): {e.message}", cause=e) from e

        if response.choices and response.choices[0].message.content:
            return response.choices[0].message.content

        raise AIProviderError("Empty response from AI provider")

    def health_check(self) -> bool:
        """
        Check if the API is reachable.

        Returns:
            True if API is healthy, False otherwise.
        """
        try:
            response = self._client.chat.completions.create(
                model=self._settings.ai_model,
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=5,
            )
            return bool(response.choices)
        except Exception as e:
            LOG.warning("AI provider health check failed: %s", e)
            return False
