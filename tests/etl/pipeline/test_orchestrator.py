"""Tests for pipeline orchestration."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from pytest import approx

from src.etl.aggregation.schemas import ReviewShard
from src.etl.ensemble import EnsembleScorer
from src.etl.errors import ShardWriteError, UnknownProduction
from src.etl.pipeline.ingest import InputBatch, build_batch
from src.etl.pipeline.orchestrator import (
    CancelToken,
    PipelineOrchestrator,
    build_orchestrator,
)
from src.etl.utils import ShardStore, read_json
from src.settings import settings


@pytest.fixture
def reports_dir(tmp_path: Path) -> Path:
    return tmp_path / "reports"


@pytest.fixture
def orchestrator(store: ShardStore, reports_dir: Path) -> PipelineOrchestrator:
    return PipelineOrchestrator(store, reports_dir=reports_dir, max_workers=2)


@pytest.fixture
def batch(
    sample_production: dict[str, Any],
    sample_records: list[dict[str, Any]],
    sample_snapshot: dict[str, Any],
) -> InputBatch:
    return build_batch([sample_production], sample_records, [sample_snapshot])


# -------------------------------------------------------------------------
# Full runs
# -------------------------------------------------------------------------


class TestRun:
    """Tests for PipelineOrchestrator.run."""

    @staticmethod
    @pytest.mark.asyncio
    async def test_run_without_ensemble(
        orchestrator: PipelineOrchestrator,
        batch: InputBatch,
        store: ShardStore,
        reports_dir: Path,
    ) -> None:
        report = await orchestrator.run(batch)

        assert report.processed == 1
        assert report.failed == 0
        [outcome] = report.outcomes
        assert outcome.reviews == 5
        # Four scored reviews is below the publishing threshold
        assert outcome.aggregate.is_pending
        assert outcome.aggregate.unrated_count == 1

        assert store.load_shard("hamilton") is not None
        assert [s.source_type for s in store.load_sources("hamilton")] == ["dtli"]
        assert (reports_dir / "run_report.json").exists()
        assert (reports_dir / "reconciliation_hamilton.json").exists()

    @staticmethod
    @pytest.mark.asyncio
    async def test_polarity_mismatch_reported(
        orchestrator: PipelineOrchestrator, batch: InputBatch
    ) -> None:
        report = await orchestrator.run(batch)

        mismatches = [r for r in report.errors.records if r.code == "PolarityMismatch"]
        assert len(mismatches) == 1
        assert mismatches[0].identity == "hamilton|VARIETY|marilyn-stasio"
        assert "unconfirmed" in mismatches[0].message

    @staticmethod
    @pytest.mark.asyncio
    async def test_run_with_ensemble_publishes_composite(
        store: ShardStore,
        reports_dir: Path,
        batch: InputBatch,
        make_fake_model: Callable[..., Any],
    ) -> None:
        scorer = EnsembleScorer(
            [
                make_fake_model("a", "Positive", 80),
                make_fake_model("b", "Positive", 84),
                make_fake_model("c", "Negative", 40),
            ],
            retry_wait_max=0.01,
        )
        orchestrator = PipelineOrchestrator(store, scorer=scorer, reports_dir=reports_dir)

        report = await orchestrator.run(batch)

        aggregate = report.outcomes[0].aggregate
        nyp = next(r for r in store.load_shard("hamilton").reviews if r.outlet_id == "NYP")
        assert nyp.score == 82
        assert nyp.score_source == "ensemble"
        assert aggregate.review_count == 5
        assert aggregate.weighted_average == approx(90.52)
        assert aggregate.composite_score == 91
        assert aggregate.score_bucket == "must-see"
        assert aggregate.confidence == "low"

        data = read_json(reports_dir / "run_report.json")
        assert data["processed"] == 1
        assert data["productions"][0]["composite_score"] == 91

    @staticmethod
    @pytest.mark.asyncio
    async def test_second_run_keeps_reviews(
        orchestrator: PipelineOrchestrator, batch: InputBatch, store: ShardStore
    ) -> None:
        await orchestrator.run(batch)
        first = store.load_shard("hamilton")

        await orchestrator.run(batch)
        second = store.load_shard("hamilton")

        assert second.reviews == first.reviews
        assert second.parked == first.parked

    @staticmethod
    @pytest.mark.asyncio
    async def test_orphan_records_reported(
        orchestrator: PipelineOrchestrator,
        sample_production: dict[str, Any],
        sample_records: list[dict[str, Any]],
    ) -> None:
        orphan = dict(sample_records[0], productionId="wicked")
        batch = build_batch([sample_production], [*sample_records, orphan])

        report = await orchestrator.run(batch)

        unknown = [r for r in report.errors.records if r.code == "UnknownProduction"]
        assert [r.production_id for r in unknown] == ["wicked"]
        assert report.processed == 1

    @staticmethod
    @pytest.mark.asyncio
    async def test_only_filters_productions(
        orchestrator: PipelineOrchestrator,
        sample_production: dict[str, Any],
        sample_records: list[dict[str, Any]],
    ) -> None:
        other = {"id": "wicked", "title": "Wicked"}
        batch = build_batch([sample_production, other], sample_records)

        report = await orchestrator.run(batch, only=["wicked"])

        assert [o.production_id for o in report.outcomes] == ["wicked"]

    @staticmethod
    @pytest.mark.asyncio
    async def test_cancelled_run_skips_productions(
        store: ShardStore, reports_dir: Path, batch: InputBatch
    ) -> None:
        token = CancelToken()
        token.cancel()
        orchestrator = PipelineOrchestrator(store, reports_dir=reports_dir, cancel_token=token)

        report = await orchestrator.run(batch)

        assert report.cancelled
        assert report.outcomes == []
        assert report.skipped == ["hamilton"]
        assert store.load_shard("hamilton") is None
        assert read_json(reports_dir / "run_report.json")["cancelled"] is True


# -------------------------------------------------------------------------
# Failure isolation
# -------------------------------------------------------------------------


class TestFailureIsolation:
    """Tests that one production's failure does not affect others."""

    @staticmethod
    @pytest.mark.asyncio
    async def test_shard_write_failure_isolated(
        orchestrator: PipelineOrchestrator,
        store: ShardStore,
        sample_production: dict[str, Any],
        sample_records: list[dict[str, Any]],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        original_save = store.save_shard

        def _failing_save(shard: ReviewShard) -> Path:
            if shard.production_id == "hamilton":
                raise ShardWriteError("disk full", shard.production_id)
            return original_save(shard)

        monkeypatch.setattr(store, "save_shard", _failing_save)
        wicked = {"id": "wicked", "title": "Wicked"}
        batch = build_batch([sample_production, wicked], sample_records)

        report = await orchestrator.run(batch)

        outcomes = {o.production_id: o for o in report.outcomes}
        assert outcomes["hamilton"].failed
        assert outcomes["hamilton"].aggregate is None
        assert not outcomes["wicked"].failed
        assert report.processed == 1
        assert report.failed == 1
        assert report.errors.count_by_code()["ShardWriteError"] == 1
        assert store.load_shard("hamilton") is None
        assert store.load_shard("wicked") is not None

    @staticmethod
    @pytest.mark.asyncio
    async def test_modified_failing_grade_kept_unrated(
        orchestrator: PipelineOrchestrator, store: ShardStore, reports_dir: Path
    ) -> None:
        productions = [{"id": "a", "title": "A"}, {"id": "b", "title": "B"}]
        records = [
            {
                "productionId": "a",
                "outletNameRaw": "Entertainment Weekly",
                "criticNameRaw": "X",
                "ratingRaw": "F+",
                "ratingFormat": "letter",
            },
            {
                "productionId": "b",
                "outletNameRaw": "Variety",
                "criticNameRaw": "Y",
                "ratingRaw": "B+",
                "ratingFormat": "letter",
            },
        ]
        batch = build_batch(productions, records)

        report = await orchestrator.run(batch)

        assert report.processed == 2
        assert report.failed == 0
        assert report.errors.count_by_code()["UnrecognizedFormat"] == 1
        [review] = store.load_shard("a").reviews
        assert review.score_source == "unrated"
        assert review.rating_raw == "F+"
        assert "UnrecognizedFormat" in review.flags
        assert store.load_shard("b").reviews[0].score == 85
        assert (reports_dir / "run_report.json").exists()


# -------------------------------------------------------------------------
# Reconciliation and factories
# -------------------------------------------------------------------------


class TestReconcile:
    """Tests for reconciling stored shards."""

    @staticmethod
    def test_unknown_production(orchestrator: PipelineOrchestrator) -> None:
        with pytest.raises(UnknownProduction):
            orchestrator.reconcile("wicked")

    @staticmethod
    @pytest.mark.asyncio
    async def test_reconcile_stored_shard(
        orchestrator: PipelineOrchestrator, batch: InputBatch, reports_dir: Path
    ) -> None:
        await orchestrator.run(batch)
        (reports_dir / "reconciliation_hamilton.json").unlink()

        result = orchestrator.reconcile("hamilton")

        entry = result.source("dtli")
        assert entry.coverage == "gaps_found"
        assert entry.unresolved_entries == ["Newsday / Linda Winer"]
        assert sorted(entry.missing_from_source) == [
            ("EW", "melissa-rose-bernardo"),
            ("NYP", "elisabeth-vincentelli"),
        ]
        assert (reports_dir / "reconciliation_hamilton.json").exists()


class TestFactories:
    """Tests for settings-driven construction."""

    @staticmethod
    def test_build_orchestrator_uses_settings(tmp_data_dir: Path) -> None:
        orchestrator = build_orchestrator(settings)

        assert orchestrator.reports_dir == tmp_data_dir / "reports"
        assert orchestrator.store.shards_dir == tmp_data_dir / "shards"
        assert orchestrator.max_workers == settings.pipeline.max_workers
        assert orchestrator.scorer is None
        assert orchestrator.engine.resolver is orchestrator.builder.resolver
