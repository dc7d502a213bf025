"""Reconciliation of canonical reviews against aggregator snapshots.

Compares one production's canonical review set with each aggregator's
independent evidence: which reviews each side is missing, where the
aggregator's thumb disagrees with the canonical score, and whether a
sparse source is an expected coverage gap. Never mutates the shard.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from src.etl.aggregation.schemas import (
    CanonicalReview,
    Production,
    ReviewShard,
    ReviewSource,
    Thumb,
)
from src.etl.errors import UnknownOutlet
from src.etl.identity.resolver import IdentityResolver
from src.etl.normalization.ratings import derive_polarity

logger = logging.getLogger(__name__)

OutletCritic = tuple[str, str]
Severity = Literal["source_error", "canonical_suspect", "unconfirmed"]
Coverage = Literal["complete", "gaps_found", "coverage_gap"]


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_COVERAGE_GAP_RATIO = 0.5
"""Source/canonical count ratio below which a source is sparse."""

DEFAULT_COVERAGE_GAP_MIN_AGE_DAYS = 365
"""Production age (at fetch time) from which sparse sources are expected."""


def _fmt_key(key: OutletCritic) -> str:
    """Display form of an (outlet, critic) key."""
    return f"{key[0]}/{key[1]}"


# =============================================================================
# RESULT TYPES
# =============================================================================


@dataclass(frozen=True)
class PolarityMismatchRecord:
    """Disagreement between a source's thumb and the canonical polarity.

    Attributes:
        key: (outlet_id, critic_slug).
        source_type: Aggregator reporting the thumb.
        source_polarity: Thumb as reported.
        canonical_polarity: Polarity derived from the canonical score.
        canonical_score: Canonical score.
        severity: 'source_error', 'canonical_suspect' or 'unconfirmed'.
    """

    key: OutletCritic
    source_type: str
    source_polarity: Thumb
    canonical_polarity: Thumb
    canonical_score: int
    severity: Severity

    def to_dict(self) -> dict[str, Any]:
        """Convert mismatch to dictionary for JSON export."""
        return {
            "outlet_id": self.key[0],
            "critic_slug": self.key[1],
            "source_type": self.source_type,
            "source_polarity": self.source_polarity,
            "canonical_polarity": self.canonical_polarity,
            "canonical_score": self.canonical_score,
            "severity": self.severity,
        }


@dataclass
class SourceReconciliation:
    """Comparison of the canonical set with one aggregator snapshot.

    Attributes:
        source_type: Aggregator identifier.
        source_count: Distinct reviews the source reports.
        canonical_count: Canonical reviews for the production.
        missing_from_source: Canonical keys the source lacks.
        not_yet_added: Source keys canonical lacks.
        polarity_mismatches: Thumb disagreements.
        unresolved_entries: Source entries whose outlet is unknown.
        coverage: 'complete', 'gaps_found' or 'coverage_gap'.
    """

    source_type: str
    source_count: int = 0
    canonical_count: int = 0
    missing_from_source: list[OutletCritic] = field(default_factory=list)
    not_yet_added: list[OutletCritic] = field(default_factory=list)
    polarity_mismatches: list[PolarityMismatchRecord] = field(default_factory=list)
    unresolved_entries: list[str] = field(default_factory=list)
    coverage: Coverage = "complete"

    def to_dict(self) -> dict[str, Any]:
        """Convert source comparison to dictionary for JSON export."""
        return {
            "source_type": self.source_type,
            "source_count": self.source_count,
            "canonical_count": self.canonical_count,
            "coverage": self.coverage,
            "missing_from_source": [_fmt_key(k) for k in self.missing_from_source],
            "not_yet_added": [_fmt_key(k) for k in self.not_yet_added],
            "polarity_mismatches": [m.to_dict() for m in self.polarity_mismatches],
            "unresolved_entries": list(self.unresolved_entries),
        }


@dataclass
class ReconciliationResult:
    """Reconciliation outcome for one production in one run.

    Attributes:
        production_id: Production reconciled.
        canonical_count: Canonical reviews compared.
        sources: Per-source comparisons, sorted by source type.
    """

    production_id: str
    canonical_count: int = 0
    sources: list[SourceReconciliation] = field(default_factory=list)

    @property
    def polarity_mismatches(self) -> list[PolarityMismatchRecord]:
        """All polarity mismatches across sources."""
        return [m for s in self.sources for m in s.polarity_mismatches]

    @property
    def has_discrepancies(self) -> bool:
        """Check if any actionable discrepancy was found."""
        return any(
            s.not_yet_added or s.polarity_mismatches or s.coverage == "gaps_found"
            for s in self.sources
        )

    def source(self, source_type: str) -> SourceReconciliation | None:
        """Get the comparison for one source."""
        for entry in self.sources:
            if entry.source_type == source_type:
                return entry
        return None

    def discrepancies(self) -> list[str]:
        """Build the human-readable discrepancy list.

        Returns:
            One line per discrepancy, grouped by source.
        """
        lines: list[str] = []
        for entry in self.sources:
            prefix = f"[{self.production_id}] {entry.source_type}:"
            if entry.coverage == "coverage_gap":
                lines.append(
                    f"{prefix} coverage gap ({entry.source_count} of "
                    f"{entry.canonical_count} canonical reviews), not an error"
                )
            elif entry.missing_from_source:
                lines.append(
                    f"{prefix} missing {len(entry.missing_from_source)} canonical reviews: "
                    + ", ".join(_fmt_key(k) for k in entry.missing_from_source)
                )
            if entry.not_yet_added:
                lines.append(
                    f"{prefix} {len(entry.not_yet_added)} reviews not yet added: "
                    + ", ".join(_fmt_key(k) for k in entry.not_yet_added)
                )
            for m in entry.polarity_mismatches:
                lines.append(
                    f"{prefix} polarity mismatch {_fmt_key(m.key)}: source says "
                    f"{m.source_polarity}, canonical {m.canonical_polarity} "
                    f"(score {m.canonical_score}) [{m.severity}]"
                )
            if entry.unresolved_entries:
                lines.append(
                    f"{prefix} {len(entry.unresolved_entries)} entries with unknown outlet: "
                    + ", ".join(entry.unresolved_entries)
                )
        return lines

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary for JSON export."""
        return {
            "production_id": self.production_id,
            "canonical_count": self.canonical_count,
            "sources": [s.to_dict() for s in self.sources],
            "discrepancies": self.discrepancies(),
        }


# =============================================================================
# RECONCILIATION ENGINE
# =============================================================================


class ReconciliationEngine:
    """Cross-checks canonical reviews against aggregator evidence.

    Attributes:
        resolver: Identity resolver applied to source entries.
        coverage_gap_ratio: Sparse-source threshold.
        coverage_gap_min_age_days: Minimum production age for the
            sparse-source heuristic.
    """

    def __init__(
        self,
        resolver: IdentityResolver | None = None,
        coverage_gap_ratio: float = DEFAULT_COVERAGE_GAP_RATIO,
        coverage_gap_min_age_days: int = DEFAULT_COVERAGE_GAP_MIN_AGE_DAYS,
    ) -> None:
        """Initialize engine.

        Args:
            resolver: Identity resolver (default registry if None).
            coverage_gap_ratio: Sparse-source ratio.
            coverage_gap_min_age_days: Sparse-source minimum age.
        """
        self.resolver = resolver or IdentityResolver()
        self.coverage_gap_ratio = coverage_gap_ratio
        self.coverage_gap_min_age_days = coverage_gap_min_age_days

    # =========================================================================
    # Public API
    # =========================================================================

    def reconcile(self, shard: ReviewShard, sources: list[ReviewSource]) -> ReconciliationResult:
        """Reconcile one production against every snapshot.

        Args:
            shard: Canonical review shard.
            sources: Aggregator snapshots for the production.

        Returns:
            ReconciliationResult (the shard is left untouched).
        """
        production = shard.production
        canonical = {r.key.outlet_critic: r for r in shard.reviews}
        canonical_keys = set(canonical)

        reported: dict[str, dict[OutletCritic, Thumb | None]] = {}
        comparisons: list[SourceReconciliation] = []

        for source in sorted(sources, key=lambda s: s.source_type):
            if source.production_id != production.id:
                logger.warning(
                    "Skipping %s snapshot for %s while reconciling %s",
                    source.source_type,
                    source.production_id,
                    production.id,
                )
                continue

            keys, unresolved = self._resolve_entries(production.id, source)
            reported[source.source_type] = keys
            source_keys = set(keys)

            comparison = SourceReconciliation(
                source_type=source.source_type,
                source_count=len(source_keys),
                canonical_count=len(canonical_keys),
                missing_from_source=sorted(canonical_keys - source_keys),
                not_yet_added=sorted(source_keys - canonical_keys),
                unresolved_entries=unresolved,
            )
            comparison.coverage = self._classify_coverage(production, source, comparison)
            comparisons.append(comparison)

        self._attach_polarity_mismatches(comparisons, canonical, reported)

        result = ReconciliationResult(
            production_id=production.id,
            canonical_count=len(canonical_keys),
            sources=comparisons,
        )
        for line in result.discrepancies():
            logger.info(line)
        return result

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _resolve_entries(
        self,
        production_id: str,
        source: ReviewSource,
    ) -> tuple[dict[OutletCritic, Thumb | None], list[str]]:
        """Resolve a snapshot's entries to (outlet, critic) keys.

        Args:
            production_id: Production identifier.
            source: Aggregator snapshot.

        Returns:
            (key -> reported polarity, unresolved entry labels).
        """
        keys: dict[OutletCritic, Thumb | None] = {}
        unresolved: list[str] = []
        for entry in source.entries:
            result = self.resolver.resolve(production_id, entry.outlet, entry.critic)
            if isinstance(result, UnknownOutlet):
                unresolved.append(f"{entry.outlet} / {entry.critic or '?'}")
                continue
            key = result.key.outlet_critic
            if keys.get(key) is None:
                keys[key] = entry.polarity
        return keys, sorted(set(unresolved))

    def _classify_coverage(
        self,
        production: Production,
        source: ReviewSource,
        comparison: SourceReconciliation,
    ) -> Coverage:
        """Classify a source's coverage of the canonical set."""
        if not comparison.missing_from_source and not comparison.not_yet_added:
            return "complete"
        if self._is_sparse_older_source(production, source, comparison):
            return "coverage_gap"
        return "gaps_found"

    def _is_sparse_older_source(
        self,
        production: Production,
        source: ReviewSource,
        comparison: SourceReconciliation,
    ) -> bool:
        """Check the sparse-source heuristic.

        A source is an expected coverage gap when it reports fewer than
        coverage_gap_ratio of the canonical reviews for a production
        that opened at least coverage_gap_min_age_days before the
        snapshot was fetched.
        """
        if production.opening_date is None or comparison.canonical_count == 0:
            return False
        age_days = (source.fetched_at.date() - production.opening_date).days
        if age_days < self.coverage_gap_min_age_days:
            return False
        return comparison.source_count < self.coverage_gap_ratio * comparison.canonical_count

    @staticmethod
    def _attach_polarity_mismatches(
        comparisons: list[SourceReconciliation],
        canonical: dict[OutletCritic, CanonicalReview],
        reported: dict[str, dict[OutletCritic, Thumb | None]],
    ) -> None:
        """Compare reported thumbs against canonical polarity.

        Severity per disagreeing source:
        - canonical_suspect: at least two sources, a majority of those
          reporting the key, disagree with canonical;
        - source_error: every other source reporting the key agrees
          with canonical;
        - unconfirmed: anything else (e.g. a lone source).
        """
        by_source = {c.source_type: c for c in comparisons}

        for key in sorted(canonical):
            review = canonical[key]
            if not review.is_rated:
                continue
            derived = derive_polarity(review.score)

            thumbs = {
                source_type: keys[key]
                for source_type, keys in reported.items()
                if keys.get(key) is not None
            }
            disagreeing = sorted(s for s, thumb in thumbs.items() if thumb != derived)
            if not disagreeing:
                continue

            majority_disagrees = len(disagreeing) >= 2 and len(disagreeing) * 2 > len(thumbs)
            for source_type in disagreeing:
                others = [t for s, t in thumbs.items() if s != source_type]
                if majority_disagrees:
                    severity: Severity = "canonical_suspect"
                elif others and all(t == derived for t in others):
                    severity = "source_error"
                else:
                    severity = "unconfirmed"

                by_source[source_type].polarity_mismatches.append(
                    PolarityMismatchRecord(
                        key=key,
                        source_type=source_type,
                        source_polarity=thumbs[source_type],
                        canonical_polarity=derived,
                        canonical_score=review.score,
                        severity=severity,
                    )
                )
