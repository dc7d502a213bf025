"""Ensemble sentiment scorer configuration settings.

Classifier models are reached through an OpenAI-compatible
chat-completions endpoint.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# ENSEMBLE SETTINGS
# =============================================================================


class EnsembleSettings(BaseSettings):
    """Multi-model sentiment ensemble configuration.

    Attributes:
        models: Comma-separated model identifiers (at most three are used).
        base_url: Chat-completions API base URL.
        api_key: API key sent as bearer token.
        timeout_seconds: Per-call timeout.
        max_retries: Attempts per model call before it counts as failed.
        band_width: Half-width of each sentiment bucket's score band.
        temperature: Sampling temperature.
        max_text_chars: Review text truncation length for prompts.
    """

    models: str = Field(
        default="gpt-4o-mini,claude-3-5-haiku,gemini-1.5-flash",
        alias="ENSEMBLE_MODELS",
    )
    base_url: str = Field(default="http://localhost:4000/v1", alias="ENSEMBLE_BASE_URL")
    api_key: str = Field(default="", alias="ENSEMBLE_API_KEY")
    timeout_seconds: float = Field(default=30.0, alias="ENSEMBLE_TIMEOUT_SECONDS")
    max_retries: int = Field(default=3, alias="ENSEMBLE_MAX_RETRIES")
    band_width: int = Field(default=6, alias="ENSEMBLE_BAND_WIDTH")
    temperature: float = Field(default=0.0, alias="ENSEMBLE_TEMPERATURE")
    max_text_chars: int = Field(default=6000, alias="ENSEMBLE_MAX_TEXT_CHARS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        """Validate temperature is in valid range."""
        if not 0.0 <= v <= 2.0:
            raise ValueError("ENSEMBLE_TEMPERATURE must be between 0.0 and 2.0")
        return v

    @field_validator("band_width")
    @classmethod
    def validate_band_width(cls, v: int) -> int:
        """Validate band width keeps bands non-degenerate."""
        if not 1 <= v <= 15:
            raise ValueError("ENSEMBLE_BAND_WIDTH must be between 1 and 15")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Validate retry count is positive."""
        if v <= 0:
            raise ValueError("ENSEMBLE_MAX_RETRIES must be > 0")
        return v

    @property
    def model_names(self) -> list[str]:
        """Configured model identifiers, capped at three."""
        names = [m.strip() for m in self.models.split(",") if m.strip()]
        return names[:3]

    @property
    def is_configured(self) -> bool:
        """Check if an endpoint and at least one model are set.

        The API key is optional since a local proxy needs none.
        """
        return bool(self.base_url.strip() and self.model_names)
