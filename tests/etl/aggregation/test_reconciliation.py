"""Unit tests for the reconciliation engine."""

from datetime import UTC, date, datetime

from src.etl.aggregation.reconciliation import ReconciliationEngine
from src.etl.aggregation.schemas import (
    CanonicalReview,
    Production,
    ReviewShard,
    ReviewSource,
    SourceEntry,
)


def _make_review(outlet: str, slug: str, score: int | None = 90) -> CanonicalReview:
    return CanonicalReview(
        production_id="hamilton",
        outlet_id=outlet,
        critic_slug=slug,
        score=score,
        score_source="explicit" if score is not None else "unrated",
    )


def _make_shard(*reviews: CanonicalReview, opening_date: date | None = None) -> ReviewShard:
    production = Production(id="hamilton", title="Hamilton", opening_date=opening_date)
    return ReviewShard(production=production, reviews=list(reviews))


def _make_source(
    source_type: str,
    *entries: tuple[str, str, str | None],
    fetched_at: datetime = datetime(2015, 9, 1, tzinfo=UTC),
    production_id: str = "hamilton",
) -> ReviewSource:
    return ReviewSource(
        source_type=source_type,
        production_id=production_id,
        fetched_at=fetched_at,
        entries=[SourceEntry(outlet=o, critic=c, polarity=p) for o, c, p in entries],
    )


# -------------------------------------------------------------------------
# Set comparison
# -------------------------------------------------------------------------


class TestSetComparison:
    @staticmethod
    def test_complete_coverage() -> None:
        shard = _make_shard(_make_review("NYT", "ben-brantley"), _make_review("VULT", "sara-h"))
        source = _make_source("dtli", ("NYT", "Ben Brantley", "Up"), ("Vulture", "Sara H", "Up"))

        result = ReconciliationEngine().reconcile(shard, [source])

        entry = result.source("dtli")
        assert entry.coverage == "complete"
        assert entry.missing_from_source == []
        assert entry.not_yet_added == []
        assert not result.has_discrepancies
        assert result.discrepancies() == []

    @staticmethod
    def test_missing_and_not_yet_added() -> None:
        shard = _make_shard(_make_review("NYT", "ben-brantley"), _make_review("VULT", "sara-h"))
        source = _make_source("dtli", ("NYT", "Ben Brantley", "Up"), ("NYP", "Johnny O", None))

        result = ReconciliationEngine().reconcile(shard, [source])

        entry = result.source("dtli")
        assert entry.missing_from_source == [("VULT", "sara-h")]
        assert entry.not_yet_added == [("NYP", "johnny-o")]
        assert entry.coverage == "gaps_found"
        assert result.has_discrepancies
        assert any("not yet added" in line for line in result.discrepancies())

    @staticmethod
    def test_shard_is_not_mutated() -> None:
        shard = _make_shard(_make_review("NYT", "ben-brantley"))
        before = shard.model_dump()
        source = _make_source("dtli", ("NYP", "Johnny O", "Down"))
        ReconciliationEngine().reconcile(shard, [source])
        assert shard.model_dump() == before

    @staticmethod
    def test_unknown_outlet_entries_reported() -> None:
        shard = _make_shard(_make_review("NYT", "ben-brantley"))
        source = _make_source(
            "dtli", ("NYT", "Ben Brantley", "Up"), ("Newsday", "Linda Winer", "Up")
        )

        entry = ReconciliationEngine().reconcile(shard, [source]).source("dtli")

        assert entry.unresolved_entries == ["Newsday / Linda Winer"]
        assert entry.source_count == 1

    @staticmethod
    def test_other_production_snapshot_skipped() -> None:
        shard = _make_shard(_make_review("NYT", "ben-brantley"))
        source = _make_source("dtli", ("NYT", "Ben Brantley", "Up"), production_id="hadestown")
        result = ReconciliationEngine().reconcile(shard, [source])
        assert result.sources == []

    @staticmethod
    def test_sources_sorted_by_type() -> None:
        shard = _make_shard(_make_review("NYT", "ben-brantley"))
        sources = [
            _make_source("show-score", ("NYT", "Ben Brantley", "Up")),
            _make_source("bww", ("NYT", "Ben Brantley", "Up")),
        ]
        result = ReconciliationEngine().reconcile(shard, sources)
        assert [s.source_type for s in result.sources] == ["bww", "show-score"]


# -------------------------------------------------------------------------
# Coverage gaps
# -------------------------------------------------------------------------


class TestCoverageGap:
    @staticmethod
    def _shard_with_ten_reviews() -> ReviewShard:
        reviews = [_make_review("NYT", f"critic-{i}") for i in range(10)]
        return _make_shard(*reviews, opening_date=date(2015, 8, 6))

    @staticmethod
    def test_sparse_source_for_older_production_is_gap() -> None:
        shard = TestCoverageGap._shard_with_ten_reviews()
        source = _make_source(
            "show-score",
            *[("NYT", f"critic-{i}", "Up") for i in range(3)],
            fetched_at=datetime(2017, 1, 1, tzinfo=UTC),
        )

        entry = ReconciliationEngine().reconcile(shard, [source]).source("show-score")

        assert entry.coverage == "coverage_gap"
        assert len(entry.missing_from_source) == 7

    @staticmethod
    def test_sparse_source_for_recent_production_is_not_gap() -> None:
        shard = TestCoverageGap._shard_with_ten_reviews()
        source = _make_source(
            "show-score",
            *[("NYT", f"critic-{i}", "Up") for i in range(3)],
            fetched_at=datetime(2015, 9, 1, tzinfo=UTC),
        )
        entry = ReconciliationEngine().reconcile(shard, [source]).source("show-score")
        assert entry.coverage == "gaps_found"

    @staticmethod
    def test_thresholds_configurable() -> None:
        shard = TestCoverageGap._shard_with_ten_reviews()
        source = _make_source(
            "show-score",
            *[("NYT", f"critic-{i}", "Up") for i in range(3)],
            fetched_at=datetime(2015, 9, 1, tzinfo=UTC),
        )
        engine = ReconciliationEngine(coverage_gap_ratio=0.5, coverage_gap_min_age_days=7)
        assert engine.reconcile(shard, [source]).source("show-score").coverage == "coverage_gap"


# -------------------------------------------------------------------------
# Polarity mismatches
# -------------------------------------------------------------------------


class TestPolarityMismatch:
    @staticmethod
    def test_lone_source_disagreeing_is_unconfirmed() -> None:
        shard = _make_shard(_make_review("NYT", "ben-brantley", score=90))
        source = _make_source("dtli", ("NYT", "Ben Brantley", "Down"))

        result = ReconciliationEngine().reconcile(shard, [source])

        [mismatch] = result.polarity_mismatches
        assert mismatch.source_polarity == "Down"
        assert mismatch.canonical_polarity == "Up"
        assert mismatch.canonical_score == 90
        assert mismatch.severity == "unconfirmed"

    @staticmethod
    def test_source_outvoted_is_source_error() -> None:
        shard = _make_shard(_make_review("NYT", "ben-brantley", score=90))
        sources = [
            _make_source("dtli", ("NYT", "Ben Brantley", "Down")),
            _make_source("bww", ("NYT", "Ben Brantley", "Up")),
        ]

        result = ReconciliationEngine().reconcile(shard, sources)

        [mismatch] = result.polarity_mismatches
        assert mismatch.source_type == "dtli"
        assert mismatch.severity == "source_error"

    @staticmethod
    def test_majority_disagreeing_is_canonical_suspect() -> None:
        shard = _make_shard(_make_review("NYT", "ben-brantley", score=90))
        sources = [
            _make_source("dtli", ("NYT", "Ben Brantley", "Down")),
            _make_source("bww", ("NYT", "Ben Brantley", "Down")),
            _make_source("show-score", ("NYT", "Ben Brantley", "Up")),
        ]

        result = ReconciliationEngine().reconcile(shard, sources)

        assert [m.source_type for m in result.polarity_mismatches] == ["bww", "dtli"]
        assert {m.severity for m in result.polarity_mismatches} == {"canonical_suspect"}

    @staticmethod
    def test_flat_boundary_uses_derived_polarity() -> None:
        shard = _make_shard(_make_review("NYT", "ben-brantley", score=64))
        source = _make_source("dtli", ("NYT", "Ben Brantley", "Flat"))
        assert ReconciliationEngine().reconcile(shard, [source]).polarity_mismatches == []

    @staticmethod
    def test_unrated_reviews_skipped() -> None:
        shard = _make_shard(_make_review("NYT", "ben-brantley", score=None))
        source = _make_source("dtli", ("NYT", "Ben Brantley", "Down"))
        assert ReconciliationEngine().reconcile(shard, [source]).polarity_mismatches == []

    @staticmethod
    def test_to_dict_lists_discrepancies() -> None:
        shard = _make_shard(_make_review("NYT", "ben-brantley", score=90))
        source = _make_source("dtli", ("NYT", "Ben Brantley", "Down"))
        data = ReconciliationEngine().reconcile(shard, [source]).to_dict()
        assert data["production_id"] == "hamilton"
        assert data["sources"][0]["polarity_mismatches"][0]["severity"] == "unconfirmed"
        assert any("polarity mismatch NYT/ben-brantley" in line for line in data["discrepancies"])
