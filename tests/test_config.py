"""
Unit tests for settings loaded from the environment.
"""

import pytest
from pydantic import ValidationError

from answer_engine.config import Settings


class TestSettingsFromEnvironment:
    """Tests for Settings reading environment variables."""

    def test_comma_separated_skills(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HIGH_WEIGHT_SKILLS", "Writing, Speaking")
        settings = Settings(_env_file=None)

        assert settings.high_weight_skills == ("writing", "speaking")

    def test_single_skill(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HIGH_WEIGHT_SKILLS", "writing")
        assert Settings(_env_file=None).high_weight_skills == ("writing",)

    def test_json_array_skills(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HIGH_WEIGHT_SKILLS", '["Listening", "Writing"]')
        assert Settings(_env_file=None).high_weight_skills == ("listening", "writing")

    def test_default_skills(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("HIGH_WEIGHT_SKILLS", raising=False)
        assert Settings(_env_file=None).high_weight_skills == ("writing", "speaking")

    def test_fuzzy_match_threshold_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FUZZY_MATCH_THRESHOLD", "0.9")
        assert Settings(_env_file=None).fuzzy_match_threshold == 0.9

    def test_invalid_pass_percentage(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PASS_PERCENTAGE", "150")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)
