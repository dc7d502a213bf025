"""Error taxonomy for the reconciliation and scoring pipeline.

Per-review and per-production errors are isolated by the orchestrator
and collected into the run report. Rebuild-level errors abort the
rebuild and leave the previous aggregate untouched.
"""

from dataclasses import dataclass, field
from typing import Any


class StageScoreError(Exception):
    """Base exception for all pipeline errors.

    Attributes:
        code: Stable error code used in structured reports.
        production_id: Production the error relates to, if any.
    """

    code = "StageScoreError"

    def __init__(self, message: str, production_id: str | None = None) -> None:
        """Initialize error with message and optional production.

        Args:
            message: Human-readable description.
            production_id: Related production identifier.
        """
        super().__init__(message)
        self.message = message
        self.production_id = production_id


class UnrecognizedFormat(StageScoreError):
    """Raised when a rating string does not match its declared format."""

    code = "UnrecognizedFormat"


class UnknownOutlet(StageScoreError):
    """Raised when an outlet name cannot be resolved to a known Outlet."""

    code = "UnknownOutlet"


class CandidateDuplicate(StageScoreError):
    """Raised when a near-duplicate review identity is detected."""

    code = "CandidateDuplicate"


class PolarityMismatch(StageScoreError):
    """Raised when aggregator polarity disagrees with derived polarity."""

    code = "PolarityMismatch"


class EnsembleUnavailable(StageScoreError):
    """Raised when no classifier model produced a usable vote."""

    code = "EnsembleUnavailable"


class UnknownProduction(StageScoreError):
    """Raised when a record refers to a production that is not tracked."""

    code = "UnknownProduction"


class InvalidRecord(StageScoreError):
    """Raised when an input document fails validation."""

    code = "InvalidRecord"


class RebuildConflict(StageScoreError):
    """Raised when a rebuild is attempted while another one holds the lock."""

    code = "RebuildConflict"


class RebuildError(StageScoreError):
    """Raised when a rebuild cannot complete (e.g. inconsistent shard)."""

    code = "RebuildError"


class ShardWriteError(StageScoreError):
    """Raised when a shard cannot be written after all retries."""

    code = "ShardWriteError"


# =============================================================================
# STRUCTURED ERROR RECORDS
# =============================================================================


@dataclass
class ErrorRecord:
    """Structured error entry for run reports.

    Attributes:
        code: Error code (exception class code).
        message: Human-readable description.
        production_id: Related production.
        identity: Related review identity, if any.
    """

    code: str
    message: str
    production_id: str | None = None
    identity: str | None = None

    @classmethod
    def from_exception(
        cls,
        error: StageScoreError,
        identity: str | None = None,
    ) -> "ErrorRecord":
        """Build a record from a pipeline exception.

        Args:
            error: Raised pipeline error.
            identity: Review identity key, if applicable.

        Returns:
            ErrorRecord mirroring the exception.
        """
        return cls(
            code=error.code,
            message=error.message,
            production_id=error.production_id,
            identity=identity,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert record to dictionary for JSON export."""
        return {
            "code": self.code,
            "message": self.message,
            "production_id": self.production_id,
            "identity": self.identity,
        }


@dataclass
class ErrorReport:
    """Collects error records for one pipeline run."""

    records: list[ErrorRecord] = field(default_factory=list)

    def add(self, record: ErrorRecord) -> None:
        """Append an error record."""
        self.records.append(record)

    def extend(self, records: list[ErrorRecord]) -> None:
        """Append several error records."""
        self.records.extend(records)

    def count_by_code(self) -> dict[str, int]:
        """Count records per error code."""
        counts: dict[str, int] = {}
        for record in self.records:
            counts[record.code] = counts.get(record.code, 0) + 1
        return dict(sorted(counts.items()))

    def to_dict(self) -> dict[str, Any]:
        """Convert report to dictionary for JSON export."""
        return {
            "total": len(self.records),
            "by_code": self.count_by_code(),
            "errors": [r.to_dict() for r in self.records],
        }
