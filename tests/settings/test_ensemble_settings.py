"""Tests for ensemble settings module."""

import pytest
from pydantic import ValidationError

from src.settings.ensemble import EnsembleSettings


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove ensemble environment variables for isolated testing."""
    env_vars = [
        "ENSEMBLE_MODELS",
        "ENSEMBLE_BASE_URL",
        "ENSEMBLE_API_KEY",
        "ENSEMBLE_TIMEOUT_SECONDS",
        "ENSEMBLE_MAX_RETRIES",
        "ENSEMBLE_BAND_WIDTH",
        "ENSEMBLE_TEMPERATURE",
        "ENSEMBLE_MAX_TEXT_CHARS",
    ]
    for var in env_vars:
        monkeypatch.delenv(var, raising=False)


@pytest.mark.usefixtures("clean_env")
class TestEnsembleSettings:
    """Tests for EnsembleSettings class."""

    @staticmethod
    def test_default_values() -> None:
        """Defaults name three models and a local endpoint without key."""
        ensemble = EnsembleSettings(_env_file=None)
        assert len(ensemble.model_names) == 3
        assert ensemble.band_width == 6
        assert ensemble.max_retries == 3
        assert ensemble.api_key == ""
        assert ensemble.is_configured is True

    @staticmethod
    def test_model_names_parsed_and_capped(monkeypatch: pytest.MonkeyPatch) -> None:
        """Model list is stripped, blank entries dropped, capped at three."""
        monkeypatch.setenv("ENSEMBLE_MODELS", " a , b,,c, d ")
        assert EnsembleSettings(_env_file=None).model_names == ["a", "b", "c"]

    @staticmethod
    def test_is_configured_with_key(monkeypatch: pytest.MonkeyPatch) -> None:
        """A key does not change whether the endpoint is usable."""
        monkeypatch.setenv("ENSEMBLE_API_KEY", "sk-test")
        assert EnsembleSettings(_env_file=None).is_configured is True

    @staticmethod
    @pytest.mark.parametrize(
        ("var", "value"),
        [("ENSEMBLE_BASE_URL", ""), ("ENSEMBLE_BASE_URL", "  "), ("ENSEMBLE_MODELS", " , ")],
    )
    def test_not_configured_without_endpoint_or_models(
        var: str, value: str, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Blank endpoint or model list leaves the ensemble unconfigured."""
        monkeypatch.setenv(var, value)
        assert EnsembleSettings(_env_file=None).is_configured is False

    @staticmethod
    @pytest.mark.parametrize(
        ("var", "value"),
        [
            ("ENSEMBLE_TEMPERATURE", "2.5"),
            ("ENSEMBLE_BAND_WIDTH", "0"),
            ("ENSEMBLE_BAND_WIDTH", "16"),
            ("ENSEMBLE_MAX_RETRIES", "0"),
        ],
    )
    def test_invalid_values_rejected(
        var: str, value: str, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Out-of-range values raise ValidationError."""
        monkeypatch.setenv(var, value)
        with pytest.raises(ValidationError):
            EnsembleSettings(_env_file=None)
