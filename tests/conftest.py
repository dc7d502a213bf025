"""Shared pytest fixtures for StageScore tests."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from src.etl.aggregation.schemas import EnsembleVote
from src.etl.ensemble.classifiers import ClassifierError, ReviewContext
from src.etl.utils import ShardStore
from src.settings import settings


@pytest.fixture(autouse=True, scope="function")
def mock_env_for_tests(monkeypatch: pytest.MonkeyPatch) -> None:
    """Mock env variables for reproducible tests."""
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    monkeypatch.delenv("ENSEMBLE_API_KEY", raising=False)
    monkeypatch.delenv("DATA_DIR", raising=False)
    monkeypatch.delenv("LOG_DIR", raising=False)


@pytest.fixture
def tmp_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Temporary data directory wired into settings."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    monkeypatch.setattr(settings.paths, "data_root", str(data_dir))
    monkeypatch.setattr(settings.paths, "logs_root", str(data_dir / "logs"))
    settings.paths.ensure_directories()
    return data_dir


@pytest.fixture
def store(tmp_path: Path) -> ShardStore:
    """Shard store on a temporary directory."""
    return ShardStore(
        shards_dir=tmp_path / "shards",
        sources_dir=tmp_path / "sources",
        write_retries=2,
    )


# =============================================================================
# SAMPLE INPUTS
# =============================================================================


@pytest.fixture
def sample_production() -> dict[str, Any]:
    """Production reference data."""
    return {
        "id": "hamilton",
        "title": "Hamilton",
        "venue": "Richard Rodgers Theatre",
        "openingDate": "2015-08-06",
        "status": "opened",
    }


@pytest.fixture
def sample_records() -> list[dict[str, Any]]:
    """Raw evidence records covering every rating format."""
    return [
        {
            "productionId": "hamilton",
            "outletNameRaw": "The New York Times",
            "criticNameRaw": "Ben Brantley",
            "ratingRaw": "Rave",
            "ratingFormat": "sentiment",
            "designation": "Critics_Pick",
            "sourceType": "direct",
            "url": "https://www.nytimes.com/hamilton",
        },
        {
            "productionId": "hamilton",
            "outletNameRaw": "Time Out New York",
            "criticNameRaw": "Adam Feldman",
            "ratingRaw": "5/5",
            "ratingFormat": "stars",
            "sourceType": "dtli",
        },
        {
            "productionId": "hamilton",
            "outletNameRaw": "Entertainment Weekly",
            "criticNameRaw": "Melissa Rose Bernardo",
            "ratingRaw": "A",
            "ratingFormat": "letter",
            "sourceType": "bww",
        },
        {
            "productionId": "hamilton",
            "outletNameRaw": "Variety",
            "criticNameRaw": "Marilyn Stasio",
            "ratingRaw": "Positive",
            "sourceType": "direct",
        },
        {
            "productionId": "hamilton",
            "outletNameRaw": "New York Post",
            "criticNameRaw": "Elisabeth Vincentelli",
            "excerpt": "A show that is, at its best, thrilling and exhilarating.",
            "sourceType": "dtli",
        },
    ]


@pytest.fixture
def sample_snapshot() -> dict[str, Any]:
    """Aggregator snapshot for the sample production."""
    return {
        "sourceType": "dtli",
        "productionId": "hamilton",
        "fetchedAt": "2015-08-20T12:00:00Z",
        "entries": [
            {"outlet": "New York Times", "critic": "Ben Brantley", "polarity": "Up"},
            {"outlet": "Time Out New York", "critic": "Adam Feldman", "polarity": "up"},
            {"outlet": "Variety", "critic": "Marilyn Stasio", "polarity": "Down"},
            {"outlet": "Newsday", "critic": "Linda Winer", "polarity": "Up"},
        ],
    }


# =============================================================================
# FAKE ENSEMBLE MODELS
# =============================================================================


class FakeModel:
    """Deterministic classifier returning a fixed vote.

    Raises ClassifierError for the first `failures` calls.
    """

    def __init__(
        self,
        name: str,
        bucket: str | None,
        score: float = 0.0,
        failures: int = 0,
    ) -> None:
        self.name = name
        self.bucket = bucket
        self.score = score
        self.failures = failures
        self.calls = 0
        self.closed = False

    async def classify(self, text: str, context: ReviewContext) -> EnsembleVote | None:
        self.calls += 1
        if self.calls <= self.failures:
            raise ClassifierError(f"{self.name} unavailable")
        if self.bucket is None:
            return None
        return EnsembleVote(model=self.name, bucket=self.bucket, score=self.score)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def make_fake_model() -> Callable[..., FakeModel]:
    """Factory for deterministic fake classifier models."""
    return FakeModel
