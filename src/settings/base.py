"""Base configuration settings.

Contains foundational settings for paths, logging, and the pipeline.
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# PROJECT ROOT DETECTION
# =============================================================================

_PROJECT_ROOT = Path(__file__).parent.parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


def get_project_root() -> Path:
    """Get project root directory."""
    return _PROJECT_ROOT


def get_env_file() -> Path:
    """Get .env file path."""
    return _ENV_FILE


# =============================================================================
# PATH SETTINGS
# =============================================================================


class PathsSettings(BaseSettings):
    """Data and logs paths configuration.

    Attributes:
        data_root: Override for the data directory (absolute or relative
            to the project root).
        logs_root: Log files directory (absolute or relative to the
            project root).
    """

    data_root: str | None = Field(default=None, alias="DATA_DIR")
    logs_root: str = Field(default="logs", alias="LOG_DIR")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def project_root(self) -> Path:
        """Project root directory."""
        return _PROJECT_ROOT

    @property
    def data_dir(self) -> Path:
        """Root data directory."""
        if self.data_root:
            path = Path(self.data_root)
            return path if path.is_absolute() else _PROJECT_ROOT / path
        return _PROJECT_ROOT / "data"

    @property
    def raw_dir(self) -> Path:
        """Raw evidence records and production lists from collaborators."""
        return self.data_dir / "raw"

    @property
    def shards_dir(self) -> Path:
        """Canonical per-production review shards."""
        return self.data_dir / "shards"

    @property
    def sources_dir(self) -> Path:
        """Aggregator snapshots, one document per (source, production)."""
        return self.data_dir / "sources"

    @property
    def processed_dir(self) -> Path:
        """Site-wide aggregate output."""
        return self.data_dir / "processed"

    @property
    def reports_dir(self) -> Path:
        """Reconciliation and run reports."""
        return self.data_dir / "reports"

    @property
    def logs_dir(self) -> Path:
        """Application logs."""
        path = Path(self.logs_root)
        return path if path.is_absolute() else _PROJECT_ROOT / path

    def ensure_directories(self) -> None:
        """Create all required directories if they don't exist."""
        directories = [
            self.data_dir,
            self.raw_dir,
            self.shards_dir,
            self.sources_dir,
            self.processed_dir,
            self.reports_dir,
            self.logs_dir,
        ]
        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)


# =============================================================================
# LOGGING SETTINGS
# =============================================================================


class LoggingSettings(BaseSettings):
    """Logging configuration.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """

    level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid LOG_LEVEL. Valid: {valid_levels}")
        return v_upper


# =============================================================================
# PIPELINE SETTINGS
# =============================================================================


class PipelineSettings(BaseSettings):
    """Reconciliation and scoring pipeline configuration.

    Attributes:
        max_workers: Productions processed concurrently.
        shard_write_retries: Attempts for an atomic shard write.
        coverage_gap_ratio: Source/canonical count ratio below which an
            older production's source is a coverage gap.
        coverage_gap_min_age_days: Minimum production age for the
            coverage-gap heuristic.
        outlet_registry_path: Optional JSON file replacing the built-in
            outlet registry.
        merge_decisions_path: Optional JSON file of manual identity merges.
    """

    max_workers: int = Field(default=4, alias="PIPELINE_MAX_WORKERS")
    shard_write_retries: int = Field(default=3, alias="SHARD_WRITE_RETRIES")
    coverage_gap_ratio: float = Field(default=0.5, alias="COVERAGE_GAP_RATIO")
    coverage_gap_min_age_days: int = Field(default=365, alias="COVERAGE_GAP_MIN_AGE_DAYS")
    outlet_registry_path: str | None = Field(default=None, alias="OUTLET_REGISTRY_PATH")
    merge_decisions_path: str | None = Field(default=None, alias="MERGE_DECISIONS_PATH")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("max_workers", "shard_write_retries")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate worker and retry counts are positive."""
        if v <= 0:
            raise ValueError("PIPELINE_MAX_WORKERS and SHARD_WRITE_RETRIES must be > 0")
        return v

    @field_validator("coverage_gap_ratio")
    @classmethod
    def validate_ratio(cls, v: float) -> float:
        """Validate coverage ratio is a fraction."""
        if not 0.0 < v <= 1.0:
            raise ValueError("COVERAGE_GAP_RATIO must be in (0, 1]")
        return v
