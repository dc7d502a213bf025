"""Site-wide aggregate rebuild.

Single writer of the aggregate: reads every canonical shard under an
exclusive lock, recomputes tier aggregates and writes the aggregate
document atomically. Output is deterministic, so rebuilding unchanged
shards produces a byte-identical file.
"""

import hashlib
import logging
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from types import TracebackType
from typing import Any

from src.etl.aggregation.schemas import ComputedProduction, ReviewShard
from src.etl.aggregation.tier_aggregator import TierAggregator
from src.etl.errors import RebuildConflict, RebuildError
from src.etl.utils.shard_store import ShardStore, write_json_atomic

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_OUTPUT_FILENAME = "aggregate.json"
"""Default aggregate filename in data/processed."""

LOCK_FILENAME = ".rebuild.lock"
"""Advisory lock file created next to the aggregate."""

SCHEMA_VERSION = 1
"""Aggregate document schema version."""


# =============================================================================
# REBUILD LOCK
# =============================================================================


class RebuildLock:
    """Exclusive advisory lock backed by an O_EXCL lock file.

    Usage:
        with RebuildLock(path):
            ...
    """

    def __init__(self, path: Path) -> None:
        """Initialize lock.

        Args:
            path: Lock file path.
        """
        self.path = path
        self._held = False

    def acquire(self) -> None:
        """Create the lock file.

        A lock left behind by a process that no longer exists is taken over.

        Raises:
            RebuildConflict: If another rebuild holds the lock.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = self._create()
        except FileExistsError as e:
            if not self._is_stale():
                raise RebuildConflict(f"Rebuild already in progress (lock {self.path})") from e
            self.path.unlink(missing_ok=True)
            try:
                fd = self._create()
            except FileExistsError as retry_error:
                raise RebuildConflict(
                    f"Rebuild already in progress (lock {self.path})"
                ) from retry_error
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(f"{os.getpid()} {datetime.now(UTC).isoformat()}\n")
        self._held = True

    def _create(self) -> int:
        return os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)

    def _is_stale(self) -> bool:
        """Check whether the lock owner's process no longer exists.

        A lock without a readable pid is treated as held.
        """
        try:
            owner = self.path.read_text(encoding="utf-8").split()[0]
            pid = int(owner)
        except (OSError, IndexError, ValueError):
            return False
        if pid <= 0:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            logger.warning("Removing stale rebuild lock %s (pid %d gone)", self.path, pid)
            return True
        except PermissionError:
            pass
        return False

    def release(self) -> None:
        """Remove the lock file if this instance holds it."""
        if self._held:
            self.path.unlink(missing_ok=True)
            self._held = False

    @property
    def is_locked(self) -> bool:
        """Check if any process holds the lock."""
        return self.path.exists()

    def __enter__(self) -> "RebuildLock":
        self.acquire()
        return self

    def __exit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        self.release()


# =============================================================================
# REBUILD STATISTICS
# =============================================================================


@dataclass
class RebuildStats:
    """Statistics for one rebuild.

    Attributes:
        shards: Shards read.
        reviews: Canonical reviews across shards.
        scored: Productions with a published composite.
        pending: Productions still pending.
    """

    shards: int = 0
    reviews: int = 0
    scored: int = 0
    pending: int = 0

    def log_summary(self) -> None:
        """Log rebuild statistics."""
        logger.info(
            "Rebuild: %d shards, %d reviews, %d scored, %d pending",
            self.shards,
            self.reviews,
            self.scored,
            self.pending,
        )


# =============================================================================
# REBUILD COORDINATOR
# =============================================================================


class RebuildCoordinator:
    """Merges all shards into the site-wide aggregate.

    Attributes:
        store: Shard store to read from.
        output_path: Aggregate document path.
        stats: Last rebuild statistics.
    """

    def __init__(
        self,
        store: ShardStore,
        output_path: Path | None = None,
        aggregator: TierAggregator | None = None,
    ) -> None:
        """Initialize coordinator.

        Args:
            store: Shard store.
            output_path: Aggregate path (default data/processed/aggregate.json).
            aggregator: Tier aggregator (new instance if None).
        """
        self.store = store
        self.output_path = output_path or Path("data/processed") / DEFAULT_OUTPUT_FILENAME
        self.lock = RebuildLock(self.output_path.parent / LOCK_FILENAME)
        self._aggregator = aggregator or TierAggregator()
        self.stats = RebuildStats()

    # =========================================================================
    # Public API
    # =========================================================================

    def rebuild(self) -> Path:
        """Rebuild the aggregate from every shard.

        Returns:
            Path to the aggregate document.

        Raises:
            RebuildConflict: If another rebuild is in progress.
            RebuildError: If a shard is inconsistent or the write fails;
                the previous aggregate is left untouched.
        """
        with self.lock:
            self.stats = RebuildStats()
            self._aggregator.reset()
            logger.info("Starting rebuild from %s", self.store.shards_dir)

            shards, digest = self._read_shards()
            productions = [self._compute(shard) for shard in shards]
            data = self._build_export_data(productions, digest)

            try:
                write_json_atomic(self.output_path, data)
            except OSError as e:
                raise RebuildError(f"Could not write aggregate {self.output_path}: {e}") from e

            self.stats.log_summary()
            logger.info("Exported %d productions to %s", len(productions), self.output_path)
            return self.output_path

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _read_shards(self) -> tuple[list[ReviewShard], str]:
        """Read and validate every shard.

        Returns:
            (shards sorted by production id, SHA-256 of the shard bytes).

        Raises:
            RebuildError: On any unreadable or inconsistent shard.
        """
        digest = hashlib.sha256()
        shards: dict[str, ReviewShard] = {}

        for path in self.store.shard_paths():
            try:
                raw = path.read_bytes()
                shard = self.store.read_shard(path)
            except (OSError, ValueError) as e:
                raise RebuildError(f"Cannot read shard {path.name}: {e}") from e

            if path.name != self.store.shard_path(shard.production_id).name:
                raise RebuildError(
                    f"Shard {path.name} holds production {shard.production_id}",
                    shard.production_id,
                )
            if shard.production_id in shards:
                raise RebuildError(
                    f"Duplicate shard for {shard.production_id}",
                    shard.production_id,
                )

            digest.update(path.name.encode("utf-8"))
            digest.update(raw)
            shards[shard.production_id] = shard

        return [shards[pid] for pid in sorted(shards)], digest.hexdigest()

    def _compute(self, shard: ReviewShard) -> ComputedProduction:
        """Compute one production's aggregate record."""
        computed = self._aggregator.compute(shard.production, shard.reviews)
        self.stats.shards += 1
        self.stats.reviews += len(shard.reviews)
        if computed.composite_score is None:
            self.stats.pending += 1
        else:
            self.stats.scored += 1
        return computed

    @staticmethod
    def _build_export_data(productions: list[ComputedProduction], digest: str) -> dict[str, Any]:
        """Build the aggregate document.

        Args:
            productions: Computed productions sorted by id.
            digest: Input shard digest.

        Returns:
            Aggregate document without wall-clock timestamps.
        """
        by_bucket: dict[str, int] = {}
        for production in productions:
            by_bucket[production.score_bucket] = by_bucket.get(production.score_bucket, 0) + 1

        return {
            "schema_version": SCHEMA_VERSION,
            "generated_from": digest,
            "count": len(productions),
            "by_bucket": by_bucket,
            "productions": [p.model_dump(mode="json") for p in productions],
        }
