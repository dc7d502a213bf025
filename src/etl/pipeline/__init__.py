"""StageScore pipeline package.

Runs collaborator inputs through the per-production pipeline:
    1. Identity resolution and rating normalization (canonicalize)
    2. Ensemble scoring of reviews without a usable rating
    3. Reconciliation against aggregator snapshots
    4. Tier aggregation, published by the aggregate rebuild

Public API:
    - PipelineOrchestrator: Per-production processing and reports
    - ShardBuilder: Raw records to canonical shard
    - RawInputLoader / build_batch: Input loading
    - main: CLI entry point
"""

from src.etl.pipeline.canonicalize import BuildResult, CanonicalizationStats, ShardBuilder
from src.etl.pipeline.cli import main
from src.etl.pipeline.ingest import InputBatch, RawInputLoader, build_batch
from src.etl.pipeline.orchestrator import (
    CancelToken,
    PipelineOrchestrator,
    ProductionOutcome,
    RunReport,
    build_orchestrator,
    build_rebuild_coordinator,
)

__all__ = [
    "BuildResult",
    "CanonicalizationStats",
    "ShardBuilder",
    "InputBatch",
    "RawInputLoader",
    "build_batch",
    "CancelToken",
    "PipelineOrchestrator",
    "ProductionOutcome",
    "RunReport",
    "build_orchestrator",
    "build_rebuild_coordinator",
    "main",
]
