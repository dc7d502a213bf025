"""Loading of collaborator inputs.

Inputs are JSON documents under the raw data directory:

    raw/productions.json     list of productions (or {"productions": [...]})
    raw/reviews/*.json       raw evidence records (list or {"records": [...]})
    raw/snapshots/*.json     aggregator snapshots (one object or a list)

Invalid entries are reported as InvalidRecord errors and skipped; one
bad record never prevents the rest of a file from loading.
"""

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from src.etl.aggregation.schemas import Production, RawReviewRecord, ReviewSource
from src.etl.errors import ErrorRecord, InvalidRecord
from src.etl.utils import read_json, setup_logger

logger = setup_logger("etl.pipeline.ingest")

ModelT = TypeVar("ModelT", bound=BaseModel)

PRODUCTIONS_FILENAME = "productions.json"
REVIEWS_DIRNAME = "reviews"
SNAPSHOTS_DIRNAME = "snapshots"


# =============================================================================
# INPUT BATCH
# =============================================================================


@dataclass
class InputBatch:
    """Validated inputs for one pipeline run.

    Attributes:
        productions: Tracked productions.
        records: Raw evidence records.
        sources: Aggregator snapshots.
        errors: Validation errors met while loading.
    """

    productions: list[Production] = field(default_factory=list)
    records: list[RawReviewRecord] = field(default_factory=list)
    sources: list[ReviewSource] = field(default_factory=list)
    errors: list[ErrorRecord] = field(default_factory=list)

    def records_for(self, production_id: str) -> list[RawReviewRecord]:
        """Raw records of one production."""
        return [r for r in self.records if r.production_id == production_id]

    def sources_for(self, production_id: str) -> list[ReviewSource]:
        """Snapshots of one production."""
        return [s for s in self.sources if s.production_id == production_id]

    def production(self, production_id: str) -> Production | None:
        """Find a production by id."""
        return next((p for p in self.productions if p.id == production_id), None)

    def log_summary(self) -> None:
        """Log loaded input counts."""
        logger.info(
            f"Inputs: {len(self.productions)} productions, {len(self.records)} records, "
            f"{len(self.sources)} snapshots, {len(self.errors)} invalid"
        )


# =============================================================================
# VALIDATION
# =============================================================================


def _validate_items(
    model: type[ModelT],
    items: Iterable[Any],
    origin: str,
    errors: list[ErrorRecord],
) -> list[ModelT]:
    """Validate raw dicts into models, collecting errors.

    Args:
        model: Pydantic model class.
        items: Raw items.
        origin: Description of where the items came from.
        errors: List receiving InvalidRecord errors.

    Returns:
        Valid model instances.
    """
    valid: list[ModelT] = []
    for index, item in enumerate(items):
        try:
            valid.append(model.model_validate(item))
        except ValidationError as e:
            production_id = None
            if isinstance(item, dict):
                production_id = item.get("production_id") or item.get("productionId")
            error = InvalidRecord(
                f"{origin}[{index}]: invalid {model.__name__} ({e.error_count()} errors)",
                production_id,
            )
            logger.warning(error.message)
            errors.append(ErrorRecord.from_exception(error))
    return valid


def _unwrap(data: Any, *keys: str) -> list[Any]:
    """Accept a bare list, a single object or an object wrapping a list."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in keys:
            if isinstance(data.get(key), list):
                return data[key]
        return [data]
    return []


def build_batch(
    productions: Iterable[dict[str, Any]],
    records: Iterable[dict[str, Any]] = (),
    sources: Iterable[dict[str, Any]] = (),
) -> InputBatch:
    """Validate in-memory inputs (Python dicts) into a batch.

    Args:
        productions: Production dicts.
        records: Raw evidence record dicts.
        sources: Aggregator snapshot dicts.

    Returns:
        InputBatch with validation errors collected.
    """
    batch = InputBatch()
    batch.productions = _validate_items(Production, productions, "productions", batch.errors)
    batch.records = _validate_items(RawReviewRecord, records, "records", batch.errors)
    batch.sources = _validate_items(ReviewSource, sources, "snapshots", batch.errors)
    return batch


# =============================================================================
# FILE LOADER
# =============================================================================


class RawInputLoader:
    """Loads collaborator input files from the raw data directory.

    Attributes:
        raw_dir: Root of the raw inputs.
    """

    def __init__(self, raw_dir: Path) -> None:
        """Initialize loader.

        Args:
            raw_dir: Raw data directory.
        """
        self.raw_dir = raw_dir

    def load(self) -> InputBatch:
        """Load and validate every input file.

        Returns:
            InputBatch; unreadable files are reported as errors.
        """
        batch = InputBatch()

        productions_path = self.raw_dir / PRODUCTIONS_FILENAME
        if productions_path.exists():
            items = self._read_items(productions_path, batch.errors, "productions")
            batch.productions = _validate_items(
                Production, items, productions_path.name, batch.errors
            )
        else:
            logger.warning(f"No {PRODUCTIONS_FILENAME} in {self.raw_dir}")

        for path in self._json_files(REVIEWS_DIRNAME):
            items = self._read_items(path, batch.errors, "records", "reviews")
            batch.records.extend(_validate_items(RawReviewRecord, items, path.name, batch.errors))

        for path in self._json_files(SNAPSHOTS_DIRNAME):
            items = self._read_items(path, batch.errors, "snapshots", "sources")
            batch.sources.extend(_validate_items(ReviewSource, items, path.name, batch.errors))

        batch.log_summary()
        return batch

    def _json_files(self, dirname: str) -> list[Path]:
        """JSON files of an input subdirectory, sorted by name."""
        directory = self.raw_dir / dirname
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.glob("*.json") if not p.name.startswith("."))

    @staticmethod
    def _read_items(path: Path, errors: list[ErrorRecord], *keys: str) -> list[Any]:
        """Read a JSON file into a list of raw items."""
        try:
            return _unwrap(read_json(path), *keys)
        except (OSError, json.JSONDecodeError) as e:
            error = InvalidRecord(f"Cannot read {path.name}: {e}")
            logger.error(error.message)
            errors.append(ErrorRecord.from_exception(error))
            return []
