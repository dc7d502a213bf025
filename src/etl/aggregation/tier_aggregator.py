"""Tier-weighted composite score calculator for productions.

Computes simple and tier-weighted averages over scored reviews,
classifies confidence from review volume and tier-1 coverage, and
maps the composite onto a display bucket.
"""

import logging
from dataclasses import dataclass

from src.etl.aggregation.schemas import (
    CanonicalReview,
    ComputedProduction,
    ConfidenceLevel,
    Production,
)
from src.etl.normalization.ratings import round_half_up

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS - THRESHOLDS
# =============================================================================

MIN_REVIEWS_FOR_SCORE = 5
"""Scored reviews required before a composite is published."""

HIGH_CONFIDENCE_REVIEWS = 15
"""Scored reviews required for high confidence."""

HIGH_CONFIDENCE_TIER1 = 3
"""Tier-1 reviews required for high confidence."""

MEDIUM_CONFIDENCE_REVIEWS = 6
"""Scored reviews required for medium confidence."""

MEDIUM_CONFIDENCE_MAX_REVIEWS = 14
"""Largest review count that can still be medium confidence."""

MEDIUM_CONFIDENCE_TIER1 = 1
"""Tier-1 reviews required for medium confidence."""

PENDING_BUCKET = "pending"
"""Display bucket for productions without a published score."""

SCORE_BUCKETS: tuple[tuple[int, str], ...] = (
    (85, "must-see"),
    (75, "great"),
    (65, "good"),
    (55, "tepid"),
    (0, "skip"),
)
"""Minimum composite per display bucket, highest first."""

CRITIC_LABELS: tuple[tuple[int, str], ...] = (
    (85, "Rave"),
    (70, "Positive"),
    (50, "Mixed"),
    (0, "Negative"),
)
"""Minimum composite per critic consensus label, highest first."""


# =============================================================================
# AGGREGATE RESULT
# =============================================================================


@dataclass(frozen=True)
class TierAggregate:
    """Aggregate score for one production.

    Attributes:
        simple_average: Mean of scored reviews (None without reviews).
        weighted_average: Tier-weighted mean (None without reviews).
        review_count: Scored reviews.
        tier1_count: Scored tier-1 reviews.
        unrated_count: Reviews excluded for lack of a score.
        confidence: Confidence classification.
        score_bucket: Display bucket or 'pending'.
        composite_score: Rounded weighted average, None while pending.
        critic_label: Consensus label, None while pending.
    """

    simple_average: float | None
    weighted_average: float | None
    review_count: int
    tier1_count: int
    unrated_count: int
    confidence: ConfidenceLevel
    score_bucket: str
    composite_score: int | None
    critic_label: str | None

    @property
    def is_pending(self) -> bool:
        """Check if the composite is withheld."""
        return self.composite_score is None


@dataclass
class TierStats:
    """Statistics for tier aggregation.

    Attributes:
        productions: Productions aggregated.
        pending: Productions without a published score.
        high: Productions with high confidence.
        medium: Productions with medium confidence.
        low: Productions with low confidence.
    """

    productions: int = 0
    pending: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0

    def log_summary(self) -> None:
        """Log aggregation statistics."""
        logger.info(
            "Tier aggregation: %d productions, %d pending (high=%d, medium=%d, low=%d)",
            self.productions,
            self.pending,
            self.high,
            self.medium,
            self.low,
        )


# =============================================================================
# CLASSIFICATION HELPERS
# =============================================================================


def classify_confidence(
    review_count: int,
    tier1_count: int,
    in_previews: bool = False,
) -> ConfidenceLevel:
    """Classify composite confidence.

    Args:
        review_count: Scored reviews.
        tier1_count: Scored tier-1 reviews.
        in_previews: Whether the production is still in previews.

    Returns:
        'high', 'medium' or 'low'.
    """
    if in_previews:
        return "low"
    if review_count >= HIGH_CONFIDENCE_REVIEWS and tier1_count >= HIGH_CONFIDENCE_TIER1:
        return "high"
    medium_range = MEDIUM_CONFIDENCE_REVIEWS <= review_count <= MEDIUM_CONFIDENCE_MAX_REVIEWS
    if medium_range and tier1_count >= MEDIUM_CONFIDENCE_TIER1:
        return "medium"
    return "low"


def score_bucket(composite: float) -> str:
    """Map a composite score onto its display bucket."""
    for minimum, bucket in SCORE_BUCKETS:
        if composite >= minimum:
            return bucket
    return SCORE_BUCKETS[-1][1]


def critic_label(composite: float) -> str:
    """Map a composite score onto its critic consensus label."""
    for minimum, label in CRITIC_LABELS:
        if composite >= minimum:
            return label
    return CRITIC_LABELS[-1][1]


# =============================================================================
# TIER AGGREGATOR
# =============================================================================


class TierAggregator:
    """Computes tier-weighted composite scores for productions.

    Only reviews with a score contribute; each contributes its frozen
    outlet weight.

    Attributes:
        stats: Aggregation statistics.
    """

    def __init__(self) -> None:
        """Initialize aggregator with empty statistics."""
        self.stats = TierStats()

    # =========================================================================
    # Public API
    # =========================================================================

    def aggregate(self, production: Production, reviews: list[CanonicalReview]) -> TierAggregate:
        """Aggregate one production's reviews.

        Args:
            production: Production being scored.
            reviews: Canonical reviews (scored and unrated).

        Returns:
            TierAggregate for the production.
        """
        scored = [r for r in reviews if r.is_rated]
        unrated_count = len(reviews) - len(scored)
        review_count = len(scored)
        tier1_count = sum(1 for r in scored if r.tier == 1)

        simple_average = self._simple_average(scored)
        weighted_average = self._weighted_average(scored)
        confidence = classify_confidence(review_count, tier1_count, production.in_previews)

        pending = (
            weighted_average is None
            or review_count < MIN_REVIEWS_FOR_SCORE
            or production.in_previews
        )
        if pending:
            composite, bucket, label = None, PENDING_BUCKET, None
        else:
            composite = round_half_up(weighted_average)
            bucket = score_bucket(composite)
            label = critic_label(composite)

        result = TierAggregate(
            simple_average=simple_average,
            weighted_average=weighted_average,
            review_count=review_count,
            tier1_count=tier1_count,
            unrated_count=unrated_count,
            confidence=confidence,
            score_bucket=bucket,
            composite_score=composite,
            critic_label=label,
        )
        self._update_stats(result)
        return result

    def compute(self, production: Production, reviews: list[CanonicalReview]) -> ComputedProduction:
        """Aggregate a production into its output record.

        Args:
            production: Production being scored.
            reviews: Canonical reviews.

        Returns:
            ComputedProduction for the site-wide aggregate.
        """
        result = self.aggregate(production, reviews)
        return ComputedProduction(
            production_id=production.id,
            title=production.title,
            status=production.status,
            composite_score=result.composite_score,
            simple_average=result.simple_average,
            weighted_average=result.weighted_average,
            review_count=result.review_count,
            tier1_count=result.tier1_count,
            unrated_count=result.unrated_count,
            confidence=result.confidence,
            score_bucket=result.score_bucket,
            critic_label=result.critic_label,
        )

    def reset(self) -> None:
        """Reset statistics for a new run."""
        self.stats = TierStats()

    # =========================================================================
    # Internal Methods
    # =========================================================================

    @staticmethod
    def _simple_average(scored: list[CanonicalReview]) -> float | None:
        """Mean score rounded to 2 decimals."""
        if not scored:
            return None
        return round(sum(r.score for r in scored) / len(scored), 2)

    @staticmethod
    def _weighted_average(scored: list[CanonicalReview]) -> float | None:
        """Tier-weighted mean rounded to 2 decimals.

        Args:
            scored: Reviews with a score.

        Returns:
            Sum(score * weight) / Sum(weight), or None without reviews.
        """
        total_weight = sum(r.weight for r in scored)
        if total_weight <= 0:
            return None
        weighted_sum = sum(r.score * r.weight for r in scored)
        return round(weighted_sum / total_weight, 2)

    def _update_stats(self, result: TierAggregate) -> None:
        """Update statistics after aggregating a production."""
        self.stats.productions += 1
        if result.is_pending:
            self.stats.pending += 1
        if result.confidence == "high":
            self.stats.high += 1
        elif result.confidence == "medium":
            self.stats.medium += 1
        else:
            self.stats.low += 1
