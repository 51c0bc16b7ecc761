"""
Response parser for AI scoring output.

Parses the JSON response from the provider and validates it against
the question: the score must lie within the question's points and the
confidence within [0, 1].
"""

import json
import re
from decimal import Decimal, InvalidOperation
from typing import Any

from answer_engine.models import AIScore, Question

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


class ScoringError(Exception):
    """Raised when score parsing or validation fails."""

    def __init__(self, message: str, raw_response: str | None = None):
        self.raw_response = raw_response
        super().__init__(message)


class ResponseParser:
    """
    Parses and validates AI scoring responses.

    Ensures:
    1. Response holds a JSON object
    2. score and confidence are present and numeric
    3. Values are within valid ranges
    """

    def parse(self, response: str, question: Question) -> AIScore:
        """
        Parse a provider response into an AIScore.

        Args:
            response: Raw provider response (expected JSON).
            question: The question that was scored.

        Returns:
            Validated AIScore.

        Raises:
            ScoringError: If parsing or validation fails.
        """
        data = self._find_object(response)
        return self._validate_and_convert(data, question, response)

    def _find_object(self, response: str) -> dict[str, Any]:
        """
        Return the first JSON object in the response.

        Fenced code blocks are searched before the text around them. A
        brace that does not open a decodable object is skipped.
        """
        candidates = [m.group(1) for m in _FENCED_BLOCK.finditer(response)]
        candidates.append(response)
        decoder = json.JSONDecoder()
        for text in candidates:
            start = text.find("{")
            while start != -1:
                try:
                    data, _ = decoder.raw_decode(text, start)
                except json.JSONDecodeError:
                    data = None
                if isinstance(data, dict):
                    return data
                start = text.find("{", start + 1)

        raise ScoringError("No JSON object found in response", raw_response=response)

    def _validate_and_convert(
        self, data: dict[str, Any], question: Question, raw_response: str
    ) -> AIScore:
        for field in ("score", "confidence"):
            if field not in data:
                raise ScoringError(f"Missing required field: {field}", raw_response=raw_response)

        score = self._parse_decimal(data["score"], "score", raw_response)
        if score < 0:
            raise ScoringError(f"Negative score: {score}", raw_response=raw_response)
        if score > question.points:
            raise ScoringError(
                f"Score ({score}) exceeds question points ({question.points})",
                raw_response=raw_response,
            )

        confidence = float(self._parse_decimal(data["confidence"], "confidence", raw_response))
        if not 0.0 <= confidence <= 1.0:
            raise ScoringError(
                f"Confidence out of range: {confidence}", raw_response=raw_response
            )

        feedback = data.get("feedback") or ""
        if not isinstance(feedback, str):
            feedback = json.dumps(feedback)

        return AIScore(score=score, confidence=confidence, feedback=feedback)

    def _parse_decimal(self, value: Any, field_name: str, raw_response: str) -> Decimal:
        """
        Parse a value as Decimal.

        Raises:
            ScoringError: If parsing fails.
        """
        if isinstance(value, bool):
            raise ScoringError(
                f"Invalid numeric value for {field_name}: {value}", raw_response=raw_response
            )
        try:
            if isinstance(value, Decimal):
                result = value
            else:
                result = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise ScoringError(
                f"Invalid numeric value for {field_name}: {value}", raw_response=raw_response
            ) from e
        if not result.is_finite():
            raise ScoringError(
                f"Invalid numeric value for {field_name}: {value}", raw_response=raw_response
            )
        return result
