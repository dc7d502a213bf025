"""Unit tests for the ensemble scorer."""

import asyncio

import pytest

from src.etl.aggregation.schemas import CanonicalReview, Production, ReviewShard
from src.etl.ensemble.classifiers import ReviewContext
from src.etl.ensemble.scorer import EnsembleScorer
from src.etl.errors import EnsembleUnavailable

PRODUCTION = Production(id="hamilton", title="Hamilton")
CONTEXT = ReviewContext(production_title="Hamilton")


def _make_review(**overrides) -> CanonicalReview:
    base = {
        "production_id": "hamilton",
        "outlet_id": "NYP",
        "critic_slug": "elisabeth-vincentelli",
        "excerpt": "Thrilling and exhilarating.",
    }
    base.update(overrides)
    return CanonicalReview(**base)


@pytest.fixture
def three_models(make_fake_model) -> list:
    return [
        make_fake_model("a", "Positive", 80),
        make_fake_model("b", "Positive", 84),
        make_fake_model("c", "Negative", 40),
    ]


def _scorer(models: list, **kwargs) -> EnsembleScorer:
    kwargs.setdefault("retry_wait_max", 0.01)
    return EnsembleScorer(models, **kwargs)


class SlowModel:
    """Model that never answers within the timeout."""

    name = "slow"

    async def classify(self, text: str, context: ReviewContext) -> None:
        await asyncio.sleep(1)


# -------------------------------------------------------------------------
# score_text
# -------------------------------------------------------------------------


class TestScoreText:
    @staticmethod
    @pytest.mark.asyncio
    async def test_majority_consensus(three_models: list) -> None:
        result = await _scorer(three_models).score_text("text", CONTEXT)
        assert result.score == 82
        assert result.consensus == "majority"
        assert all(m.calls == 1 for m in three_models)

    @staticmethod
    @pytest.mark.asyncio
    async def test_transient_failure_retried(make_fake_model) -> None:
        flaky = make_fake_model("b", "Positive", 84, failures=1)
        scorer = _scorer([make_fake_model("a", "Positive", 80), flaky], max_attempts=3)

        result = await scorer.score_text("text", CONTEXT)

        assert flaky.calls == 2
        assert result.model_count == 2
        assert scorer.stats.model_failures == 0

    @staticmethod
    @pytest.mark.asyncio
    async def test_exhausted_model_counts_as_missing(make_fake_model) -> None:
        broken = make_fake_model("c", "Pan", 30, failures=10)
        scorer = _scorer(
            [make_fake_model("a", "Rave", 90), make_fake_model("b", "Rave", 92), broken],
            max_attempts=2,
        )

        result = await scorer.score_text("text", CONTEXT)

        assert broken.calls == 2
        assert result.model_count == 2
        assert result.score == 91
        assert scorer.stats.model_failures == 1

    @staticmethod
    @pytest.mark.asyncio
    async def test_timeout_counts_as_missing(make_fake_model) -> None:
        scorer = _scorer(
            [make_fake_model("a", "Mixed", 66), SlowModel()],
            timeout_seconds=0.01,
            max_attempts=1,
        )
        result = await scorer.score_text("text", CONTEXT)
        assert result.consensus == "single_model"
        assert scorer.stats.model_failures == 1

    @staticmethod
    @pytest.mark.asyncio
    async def test_no_votes_unavailable(make_fake_model) -> None:
        scorer = _scorer([make_fake_model("a", None), make_fake_model("b", None)])
        with pytest.raises(EnsembleUnavailable):
            await scorer.score_text("text", CONTEXT)

    @staticmethod
    def test_extra_models_ignored(make_fake_model) -> None:
        models = [make_fake_model(name, "Rave", 90) for name in "abcd"]
        assert [m.name for m in _scorer(models).models] == ["a", "b", "c"]


# -------------------------------------------------------------------------
# score_review / score_shard
# -------------------------------------------------------------------------


class TestScoreReview:
    @staticmethod
    @pytest.mark.asyncio
    async def test_applies_score_and_bonus(three_models: list) -> None:
        review = _make_review(designation="Critics_Pick", designation_bonus=3)

        await _scorer(three_models).score_review(review, PRODUCTION)

        assert review.base_score == 82
        assert review.score == 85
        assert review.bucket == "Positive"
        assert review.polarity == "Up"
        assert review.score_source == "ensemble"
        assert review.llm_score.consensus == "majority"

    @staticmethod
    @pytest.mark.asyncio
    async def test_no_text_flags_review(three_models: list) -> None:
        review = _make_review(excerpt=None)
        scorer = _scorer(three_models)

        with pytest.raises(EnsembleUnavailable):
            await scorer.score_review(review, PRODUCTION)

        assert review.flags == ["EnsembleUnavailable"]
        assert review.score is None
        assert scorer.stats.unavailable == 1
        assert all(m.calls == 0 for m in three_models)

    @staticmethod
    @pytest.mark.asyncio
    async def test_rescore_clears_unavailable_flag(three_models: list) -> None:
        review = _make_review(flags=["EnsembleUnavailable"])
        await _scorer(three_models).score_review(review, PRODUCTION)
        assert review.flags == []


class TestScoreShard:
    @staticmethod
    def _shard() -> ReviewShard:
        return ReviewShard(
            production=PRODUCTION,
            reviews=[
                _make_review(outlet_id="NYT", critic_slug="a", score=90, score_source="explicit"),
                _make_review(outlet_id="NYP", critic_slug="b"),
                _make_review(outlet_id="AMNY", critic_slug="c", excerpt=None),
            ],
        )

    @staticmethod
    @pytest.mark.asyncio
    async def test_scores_only_unrated(three_models: list) -> None:
        shard = TestScoreShard._shard()
        scorer = _scorer(three_models)

        errors = await scorer.score_shard(shard)

        explicit, scored, textless = shard.reviews
        assert explicit.score == 90
        assert explicit.score_source == "explicit"
        assert scored.score == 82
        assert textless.score is None
        assert [e.code for e in errors] == ["EnsembleUnavailable"]
        assert errors[0].identity == "hamilton|AMNY|c"
        assert scorer.stats.attempted == 2
        assert scorer.stats.scored == 1

    @staticmethod
    @pytest.mark.asyncio
    async def test_rescore_ensemble_reviews(three_models: list) -> None:
        shard = TestScoreShard._shard()
        scorer = _scorer(three_models)
        await scorer.score_shard(shard)

        await scorer.score_shard(shard)
        assert three_models[0].calls == 1

        await scorer.score_shard(shard, rescore=True)
        assert three_models[0].calls == 2

    @staticmethod
    def test_needs_scoring() -> None:
        assert EnsembleScorer.needs_scoring(_make_review())
        assert not EnsembleScorer.needs_scoring(_make_review(score_source="ensemble"))
        assert EnsembleScorer.needs_scoring(_make_review(score_source="ensemble"), rescore=True)
        assert not EnsembleScorer.needs_scoring(
            _make_review(score_source="explicit"), rescore=True
        )
