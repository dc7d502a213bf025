"""Reconciliation, tier aggregation and aggregate rebuild.

This package holds the canonical data model and the per-production
scoring steps that run after normalization and identity resolution.

Example:
    >>> from src.etl.aggregation import TierAggregator
    >>> aggregator = TierAggregator()
    >>> result = aggregator.aggregate(shard.production, shard.reviews)
    >>> result.confidence
    'medium'
"""

from src.etl.aggregation.reconciliation import (
    PolarityMismatchRecord,
    ReconciliationEngine,
    ReconciliationResult,
    SourceReconciliation,
)
from src.etl.aggregation.schemas import (
    CanonicalReview,
    ComputedProduction,
    DuplicateCandidate,
    EnsembleVote,
    LLMScore,
    Outlet,
    ParkedRecord,
    Production,
    RawReviewRecord,
    ReviewKey,
    ReviewShard,
    ReviewSource,
    SourceEntry,
)
from src.etl.aggregation.tier_aggregator import TierAggregate, TierAggregator, TierStats

__all__ = [
    # Components
    "ReconciliationEngine",
    "ReconciliationResult",
    "SourceReconciliation",
    "PolarityMismatchRecord",
    "TierAggregator",
    "TierAggregate",
    "TierStats",
    # Schemas
    "CanonicalReview",
    "ComputedProduction",
    "DuplicateCandidate",
    "EnsembleVote",
    "LLMScore",
    "Outlet",
    "ParkedRecord",
    "Production",
    "RawReviewRecord",
    "ReviewKey",
    "ReviewShard",
    "ReviewSource",
    "SourceEntry",
]
