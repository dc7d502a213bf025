"""JSON document store for review shards and aggregator snapshots.

Each production has one canonical shard document and one snapshot
document per aggregator. Documents are replaced whole and atomically
(temp file + os.replace) so readers never see a partial write.
"""

import json
import os
import tempfile
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from src.etl.aggregation.schemas import ReviewShard, ReviewSource
from src.etl.errors import ShardWriteError
from src.etl.utils.logger import setup_logger

SHARD_SUFFIX = ".json"
"""Shard document file extension."""

SOURCE_SEPARATOR = "__"
"""Separator between source type and production id in snapshot names."""


# =============================================================================
# ATOMIC JSON I/O
# =============================================================================


def dump_json(data: Any) -> str:
    """Serialize data the same way for every document.

    Keys are sorted so identical data always serializes identically.
    """
    return json.dumps(data, indent=2, ensure_ascii=False, sort_keys=True, default=str) + "\n"


def write_json_atomic(path: Path, data: Any) -> Path:
    """Write a JSON document atomically.

    The document is written to a temp file in the target directory and
    moved into place with os.replace; the previous document stays
    intact if anything fails.

    Args:
        path: Target file path.
        data: JSON-serializable data.

    Returns:
        Target path.

    Raises:
        OSError: If the write or rename fails.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(dump_json(data))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return path


def read_json(path: Path) -> Any:
    """Read a JSON document."""
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _safe_name(name: str) -> str:
    """Make an identifier safe for use in a filename."""
    return name.replace("/", "_").replace("\\", "_")


# =============================================================================
# SHARD STORE
# =============================================================================


class ShardStore:
    """Keyed store of per-production shard and snapshot documents.

    Attributes:
        shards_dir: Directory of canonical shards.
        sources_dir: Directory of aggregator snapshots.
        write_retries: Attempts per atomic write.
    """

    def __init__(
        self,
        shards_dir: Path | None = None,
        sources_dir: Path | None = None,
        write_retries: int = 3,
    ) -> None:
        """Initialize store directories.

        Args:
            shards_dir: Shard directory (default data/shards).
            sources_dir: Snapshot directory (default data/sources).
            write_retries: Attempts per atomic write before failing.
        """
        self.shards_dir = shards_dir or Path("data/shards")
        self.sources_dir = sources_dir or Path("data/sources")
        self.write_retries = write_retries
        self.shards_dir.mkdir(parents=True, exist_ok=True)
        self.sources_dir.mkdir(parents=True, exist_ok=True)
        self._logger = setup_logger("etl.shard_store")

    # =========================================================================
    # Shards
    # =========================================================================

    def shard_path(self, production_id: str) -> Path:
        """Path of a production's shard document."""
        return self.shards_dir / f"{_safe_name(production_id)}{SHARD_SUFFIX}"

    def save_shard(self, shard: ReviewShard) -> Path:
        """Replace a production's shard atomically.

        Reviews are sorted by identity key and the update time stamped
        before writing.

        Args:
            shard: Shard to persist.

        Returns:
            Path to the written shard.

        Raises:
            ShardWriteError: If every write attempt failed.
        """
        shard.sort_reviews()
        shard.updated_at = datetime.now(UTC)
        path = self.shard_path(shard.production_id)
        self._write_with_retry(path, shard.model_dump(mode="json"), shard.production_id)
        self._logger.debug(f"Shard saved: {path.name} ({len(shard.reviews)} reviews)")
        return path

    def load_shard(self, production_id: str) -> ReviewShard | None:
        """Load a production's shard.

        Args:
            production_id: Production identifier.

        Returns:
            Validated shard, or None if it does not exist.

        Raises:
            ValueError: If the document is not a consistent shard.
        """
        path = self.shard_path(production_id)
        if not path.exists():
            return None
        return self.read_shard(path)

    @staticmethod
    def read_shard(path: Path) -> ReviewShard:
        """Read and validate a shard document.

        Args:
            path: Shard file path.

        Returns:
            Validated shard.

        Raises:
            ValueError: If the file is not valid JSON or not a
                consistent shard.
        """
        try:
            return ReviewShard.model_validate(read_json(path))
        except json.JSONDecodeError as e:
            raise ValueError(f"Shard {path.name} is not valid JSON: {e}") from e
        except ValidationError as e:
            raise ValueError(f"Shard {path.name} is inconsistent: {e}") from e

    def shard_paths(self) -> list[Path]:
        """All shard paths sorted by name."""
        paths = self.shards_dir.glob(f"*{SHARD_SUFFIX}")
        return sorted(p for p in paths if not p.name.startswith("."))

    def iter_shards(self) -> Iterator[ReviewShard]:
        """Iterate over every shard in name order."""
        for path in self.shard_paths():
            yield self.read_shard(path)

    def production_ids(self) -> list[str]:
        """Production ids with a stored shard."""
        return [p.stem for p in self.shard_paths()]

    # =========================================================================
    # Aggregator Snapshots
    # =========================================================================

    def source_path(self, source_type: str, production_id: str) -> Path:
        """Path of one aggregator's snapshot for one production."""
        name = f"{_safe_name(source_type)}{SOURCE_SEPARATOR}{_safe_name(production_id)}"
        return self.sources_dir / f"{name}.json"

    def save_source(self, source: ReviewSource) -> Path:
        """Replace one aggregator snapshot atomically.

        Args:
            source: Snapshot to persist.

        Returns:
            Path to the written snapshot.
        """
        path = self.source_path(source.source_type, source.production_id)
        self._write_with_retry(path, source.model_dump(mode="json"), source.production_id)
        return path

    def load_sources(self, production_id: str) -> list[ReviewSource]:
        """Load every snapshot stored for a production.

        Args:
            production_id: Production identifier.

        Returns:
            Snapshots sorted by source type.
        """
        pattern = f"*{SOURCE_SEPARATOR}{_safe_name(production_id)}.json"
        sources: list[ReviewSource] = []
        for path in sorted(self.sources_dir.glob(pattern)):
            try:
                sources.append(ReviewSource.model_validate(read_json(path)))
            except (json.JSONDecodeError, ValidationError) as e:
                self._logger.warning(f"Skipping invalid snapshot {path.name}: {e}")
        return sorted(sources, key=lambda s: s.source_type)

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _write_with_retry(self, path: Path, data: dict[str, Any], production_id: str) -> None:
        """Write atomically, retrying transient OS errors.

        Raises:
            ShardWriteError: When all attempts fail.
        """
        retrying = Retrying(
            retry=retry_if_exception_type(OSError),
            stop=stop_after_attempt(self.write_retries),
            wait=wait_random_exponential(multiplier=0.1, max=2),
        )
        try:
            for attempt in retrying:
                with attempt:
                    write_json_atomic(path, data)
        except RetryError as e:
            cause = e.last_attempt.exception()
            raise ShardWriteError(
                f"Could not write {path.name} after {self.write_retries} attempts: {cause}",
                production_id,
            ) from cause
