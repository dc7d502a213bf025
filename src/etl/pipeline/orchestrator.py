"""Pipeline orchestration - per-production processing, reports, rebuild.

For each production, in order:
    1. store the aggregator snapshots it came with
    2. canonicalize raw records into the shard (normalize, resolve, dedupe)
    3. score reviews without a usable rating with the ensemble
    4. write the shard atomically
    5. reconcile the shard against every stored snapshot
    6. aggregate the tier-weighted composite (logged, published by rebuild)

Productions run concurrently under a semaphore. Errors are isolated per
production and collected into the run report; a run can be cancelled
between productions.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from src.etl.aggregation import (
    ReconciliationEngine,
    ReconciliationResult,
    ReviewShard,
    TierAggregate,
    TierAggregator,
)
from src.etl.aggregation.rebuild import DEFAULT_OUTPUT_FILENAME, RebuildCoordinator
from src.etl.aggregation.schemas import Production, RawReviewRecord, ReviewSource
from src.etl.ensemble import EnsembleScorer
from src.etl.errors import (
    ErrorRecord,
    ErrorReport,
    PolarityMismatch,
    StageScoreError,
    UnknownProduction,
)
from src.etl.identity import IdentityResolver, MergeDecisions
from src.etl.normalization import OutletRegistry
from src.etl.pipeline.canonicalize import ShardBuilder
from src.etl.pipeline.ingest import InputBatch
from src.etl.utils import ShardStore, setup_logger, write_json_atomic
from src.settings import Settings

logger = setup_logger("etl.pipeline.orchestrator")

RUN_REPORT_FILENAME = "run_report.json"
RECONCILIATION_PREFIX = "reconciliation_"


# =============================================================================
# CANCELLATION
# =============================================================================


class CancelToken:
    """Cooperative cancellation flag checked between productions."""

    def __init__(self) -> None:
        """Initialize an uncancelled token."""
        self._cancelled = False

    def cancel(self) -> None:
        """Request cancellation; in-flight productions still finish."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        """Check if cancellation was requested."""
        return self._cancelled


# =============================================================================
# RUN RESULTS
# =============================================================================


@dataclass
class ProductionOutcome:
    """Result of processing one production.

    Attributes:
        production_id: Production processed.
        reviews: Canonical reviews after processing.
        aggregate: Tier aggregate, None when processing failed.
        reconciliation: Reconciliation result, None when processing failed.
        failed: Whether a production-level error stopped processing.
    """

    production_id: str
    reviews: int = 0
    aggregate: TierAggregate | None = None
    reconciliation: ReconciliationResult | None = None
    failed: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert outcome to dictionary for JSON export."""
        aggregate = self.aggregate
        return {
            "production_id": self.production_id,
            "reviews": self.reviews,
            "failed": self.failed,
            "composite_score": aggregate.composite_score if aggregate else None,
            "confidence": aggregate.confidence if aggregate else None,
            "score_bucket": aggregate.score_bucket if aggregate else None,
            "discrepancies": (
                len(self.reconciliation.discrepancies()) if self.reconciliation else 0
            ),
        }


@dataclass
class RunReport:
    """Structured report of one pipeline run.

    Attributes:
        started_at: Run start time.
        finished_at: Run end time.
        outcomes: Per-production outcomes sorted by id.
        skipped: Productions not started because the run was cancelled.
        cancelled: Whether the run was cancelled.
        errors: Every error recorded during the run.
    """

    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    outcomes: list[ProductionOutcome] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    cancelled: bool = False
    errors: ErrorReport = field(default_factory=ErrorReport)

    @property
    def processed(self) -> int:
        """Productions processed without a production-level failure."""
        return sum(1 for o in self.outcomes if not o.failed)

    @property
    def failed(self) -> int:
        """Productions whose processing failed."""
        return sum(1 for o in self.outcomes if o.failed)

    @property
    def duration_seconds(self) -> float:
        """Run duration in seconds."""
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert report to dictionary for JSON export."""
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 2),
            "processed": self.processed,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "skipped": self.skipped,
            "productions": [o.to_dict() for o in self.outcomes],
            "errors": self.errors.to_dict(),
        }

    def log_summary(self) -> None:
        """Log run summary."""
        logger.info("=" * 60)
        logger.info(f"Run finished in {self.duration_seconds:.1f}s")
        logger.info(f"Processed: {self.processed} | Failed: {self.failed}")
        if self.cancelled:
            logger.warning(f"Cancelled, {len(self.skipped)} productions skipped")
        for code, count in self.errors.count_by_code().items():
            logger.info(f"  {code}: {count}")
        logger.info("=" * 60)


# =============================================================================
# ORCHESTRATOR
# =============================================================================


class PipelineOrchestrator:
    """Runs the reconciliation and scoring pipeline over productions.

    Attributes:
        store: Shard and snapshot store.
        builder: Shard canonicalizer.
        scorer: Ensemble scorer, None to skip ensemble scoring.
        engine: Reconciliation engine.
        aggregator: Tier aggregator.
        reports_dir: Directory of reconciliation and run reports.
        max_workers: Productions processed concurrently.
        cancel_token: Cancellation flag.
        rescore: Whether ensemble-scored reviews are scored again.
    """

    def __init__(
        self,
        store: ShardStore,
        builder: ShardBuilder | None = None,
        scorer: EnsembleScorer | None = None,
        engine: ReconciliationEngine | None = None,
        aggregator: TierAggregator | None = None,
        reports_dir: Path | None = None,
        max_workers: int = 4,
        cancel_token: CancelToken | None = None,
        rescore: bool = False,
    ) -> None:
        """Initialize orchestrator.

        Args:
            store: Shard store.
            builder: Shard builder (default components if None).
            scorer: Ensemble scorer; ensemble scoring is skipped if None.
            engine: Reconciliation engine (sharing the builder's resolver
                if None).
            aggregator: Tier aggregator.
            reports_dir: Report directory (default data/reports).
            max_workers: Concurrency limit.
            cancel_token: Cancellation flag.
            rescore: Also rescore reviews already scored by the ensemble.
        """
        self.store = store
        self.builder = builder or ShardBuilder()
        self.scorer = scorer
        self.engine = engine or ReconciliationEngine(self.builder.resolver)
        self.aggregator = aggregator or TierAggregator()
        self.reports_dir = reports_dir or Path("data/reports")
        self.max_workers = max_workers
        self.cancel_token = cancel_token or CancelToken()
        self.rescore = rescore

    # =========================================================================
    # Public API
    # =========================================================================

    async def run(self, batch: InputBatch, only: list[str] | None = None) -> RunReport:
        """Process every production of an input batch.

        Args:
            batch: Validated inputs.
            only: Restrict processing to these production ids.

        Returns:
            RunReport, also written to the reports directory.
        """
        report = RunReport()
        report.errors.extend(batch.errors)
        self._reset_stats()

        productions = sorted(batch.productions, key=lambda p: p.id)
        if only:
            wanted = set(only)
            productions = [p for p in productions if p.id in wanted]
        report.errors.extend(self._orphan_errors(batch))

        logger.info(f"Processing {len(productions)} productions (max_workers={self.max_workers})")
        semaphore = asyncio.Semaphore(self.max_workers)

        async def _bounded(production: Production) -> ProductionOutcome | None:
            async with semaphore:
                if self.cancel_token.cancelled:
                    report.skipped.append(production.id)
                    return None
                return await self.process_production(
                    production,
                    batch.records_for(production.id),
                    batch.sources_for(production.id),
                    report.errors,
                )

        results = await asyncio.gather(*(_bounded(p) for p in productions))
        report.outcomes = sorted(
            (o for o in results if o is not None), key=lambda o: o.production_id
        )
        report.skipped.sort()
        report.cancelled = self.cancel_token.cancelled
        report.finished_at = datetime.now(UTC)

        self._log_stats()
        report.log_summary()
        self.write_run_report(report)
        return report

    async def process_production(
        self,
        production: Production,
        records: list[RawReviewRecord],
        sources: list[ReviewSource],
        errors: ErrorReport,
    ) -> ProductionOutcome:
        """Process one production end to end.

        Production-level failures are recorded, never raised; the stored
        shard is left untouched when its write fails.

        Args:
            production: Production to process.
            records: Its raw evidence records.
            sources: Its aggregator snapshots.
            errors: Run error report receiving every error.

        Returns:
            ProductionOutcome.
        """
        outcome = ProductionOutcome(production_id=production.id)
        try:
            for source in sources:
                self.store.save_source(source)

            result = self.builder.build(production, records, self.store.load_shard(production.id))
            errors.extend(result.errors)
            shard = result.shard

            if self.scorer is not None:
                errors.extend(await self.scorer.score_shard(shard, rescore=self.rescore))

            self.store.save_shard(shard)
            outcome.reviews = len(shard.reviews)

            outcome.reconciliation = self.reconcile_shard(shard)
            errors.extend(self._mismatch_errors(outcome.reconciliation))
            outcome.aggregate = self.aggregator.aggregate(production, shard.reviews)

            logger.info(
                f"✅ {production.id}: {outcome.reviews} reviews, "
                f"score={outcome.aggregate.composite_score} ({outcome.aggregate.confidence})"
            )
        except StageScoreError as e:
            outcome.failed = True
            e.production_id = e.production_id or production.id
            errors.add(ErrorRecord.from_exception(e))
            logger.error(f"❌ {production.id}: {e.code}: {e.message}")
        except (OSError, ValueError) as e:
            outcome.failed = True
            errors.add(
                ErrorRecord(code=type(e).__name__, message=str(e), production_id=production.id)
            )
            logger.error(f"❌ {production.id}: {e}")
        return outcome

    def reconcile(self, production_id: str) -> ReconciliationResult:
        """Reconcile a stored shard against its stored snapshots.

        Args:
            production_id: Production to reconcile.

        Returns:
            ReconciliationResult (also written as a report).

        Raises:
            UnknownProduction: If no shard is stored for the production.
        """
        shard = self.store.load_shard(production_id)
        if shard is None:
            raise UnknownProduction(f"No shard stored for '{production_id}'", production_id)
        return self.reconcile_shard(shard)

    def reconcile_shard(self, shard: ReviewShard) -> ReconciliationResult:
        """Reconcile a shard and write its report."""
        result = self.engine.reconcile(shard, self.store.load_sources(shard.production_id))
        path = self.reports_dir / f"{RECONCILIATION_PREFIX}{shard.production_id}.json"
        write_json_atomic(path, result.to_dict())
        return result

    def write_run_report(self, report: RunReport) -> Path:
        """Write the run report document."""
        path = self.reports_dir / RUN_REPORT_FILENAME
        write_json_atomic(path, report.to_dict())
        logger.info(f"Run report: {path}")
        return path

    # =========================================================================
    # Internal Methods
    # =========================================================================

    @staticmethod
    def _orphan_errors(batch: InputBatch) -> list[ErrorRecord]:
        """Report records and snapshots of untracked productions."""
        known = {p.id for p in batch.productions}
        orphans = sorted(
            {r.production_id for r in batch.records} | {s.production_id for s in batch.sources}
        )
        errors: list[ErrorRecord] = []
        for production_id in orphans:
            if production_id in known:
                continue
            error = UnknownProduction(
                f"Inputs refer to untracked production '{production_id}'", production_id
            )
            logger.warning(error.message)
            errors.append(ErrorRecord.from_exception(error))
        return errors

    @staticmethod
    def _mismatch_errors(result: ReconciliationResult) -> list[ErrorRecord]:
        """Turn polarity mismatches into error records."""
        return [
            ErrorRecord(
                code=PolarityMismatch.code,
                message=(
                    f"{m.source_type} says {m.source_polarity}, canonical "
                    f"{m.canonical_polarity} [{m.severity}]"
                ),
                production_id=result.production_id,
                identity=f"{result.production_id}|{m.key[0]}|{m.key[1]}",
            )
            for m in result.polarity_mismatches
        ]

    def _reset_stats(self) -> None:
        """Reset component statistics for a new run."""
        self.builder.reset()
        self.aggregator.reset()
        if self.scorer is not None:
            self.scorer.reset()

    def _log_stats(self) -> None:
        """Log component statistics."""
        self.builder.stats.log_summary()
        self.builder.normalizer.stats.log_summary()
        if self.scorer is not None:
            self.scorer.stats.log_summary()
        self.aggregator.stats.log_summary()


# =============================================================================
# FACTORIES
# =============================================================================


def build_resolver(config: Settings) -> IdentityResolver:
    """Build the identity resolver from configured registry and merges."""
    registry = OutletRegistry.load(config.pipeline.outlet_registry_path)
    merges = MergeDecisions.load(config.pipeline.merge_decisions_path)
    return IdentityResolver(registry, merges)


def build_store(config: Settings) -> ShardStore:
    """Build the shard store on the configured data directory."""
    return ShardStore(
        shards_dir=config.paths.shards_dir,
        sources_dir=config.paths.sources_dir,
        write_retries=config.pipeline.shard_write_retries,
    )


def build_orchestrator(
    config: Settings,
    scorer: EnsembleScorer | None = None,
    cancel_token: CancelToken | None = None,
    rescore: bool = False,
) -> PipelineOrchestrator:
    """Build an orchestrator wired from settings.

    Args:
        config: Application settings.
        scorer: Ensemble scorer, None to skip ensemble scoring.
        cancel_token: Cancellation flag.
        rescore: Rescore ensemble-scored reviews.

    Returns:
        Configured PipelineOrchestrator.
    """
    resolver = build_resolver(config)
    engine = ReconciliationEngine(
        resolver,
        coverage_gap_ratio=config.pipeline.coverage_gap_ratio,
        coverage_gap_min_age_days=config.pipeline.coverage_gap_min_age_days,
    )
    return PipelineOrchestrator(
        store=build_store(config),
        builder=ShardBuilder(resolver=resolver),
        scorer=scorer,
        engine=engine,
        reports_dir=config.paths.reports_dir,
        max_workers=config.pipeline.max_workers,
        cancel_token=cancel_token,
        rescore=rescore,
    )


def build_rebuild_coordinator(config: Settings) -> RebuildCoordinator:
    """Build the rebuild coordinator from settings."""
    return RebuildCoordinator(
        build_store(config),
        output_path=config.paths.processed_dir / DEFAULT_OUTPUT_FILENAME,
    )
