"""Unit tests for ensemble consensus voting."""

from itertools import permutations

import pytest
from pytest import approx

from src.etl.aggregation.schemas import EnsembleVote
from src.etl.ensemble.consensus import (
    CONFIDENCE_MAJORITY,
    CONFIDENCE_NO_CONSENSUS,
    CONFIDENCE_SINGLE,
    CONFIDENCE_TWO_AGREE,
    CONFIDENCE_TWO_DISAGREE,
    CONFIDENCE_UNANIMOUS,
    resolve_consensus,
)
from src.etl.errors import EnsembleUnavailable


def _vote(model: str, bucket: str, score: float) -> EnsembleVote:
    return EnsembleVote(model=model, bucket=bucket, score=score)


# -------------------------------------------------------------------------
# Three models
# -------------------------------------------------------------------------


class TestThreeModels:
    """Tests for full three-model ensembles."""

    @staticmethod
    def test_unanimous() -> None:
        result = resolve_consensus(
            [_vote("a", "Rave", 88), _vote("b", "Rave", 90), _vote("c", "Rave", 92)]
        )
        assert result.score == 90
        assert result.bucket == "Rave"
        assert result.consensus == "unanimous"
        assert result.confidence == approx(CONFIDENCE_UNANIMOUS)
        assert not result.needs_review

    @staticmethod
    def test_majority_excludes_dissent() -> None:
        dissent = _vote("c", "Negative", 40)
        result = resolve_consensus(
            [_vote("a", "Positive", 80), _vote("b", "Positive", 84), dissent]
        )

        assert result.score == 82
        assert result.bucket == "Positive"
        assert result.consensus == "majority"
        assert result.confidence == approx(CONFIDENCE_MAJORITY)
        assert result.dissent == [dissent]
        assert len(result.votes) == 3
        # Negative is two buckets away from Positive
        assert result.needs_review
        assert "c" in result.review_reason

    @staticmethod
    def test_majority_adjacent_dissent_not_flagged() -> None:
        result = resolve_consensus(
            [_vote("a", "Positive", 80), _vote("b", "Positive", 84), _vote("c", "Rave", 88)]
        )
        assert result.consensus == "majority"
        assert not result.needs_review

    @staticmethod
    def test_no_consensus_uses_median() -> None:
        result = resolve_consensus(
            [_vote("a", "Rave", 90), _vote("b", "Positive", 80), _vote("c", "Pan", 30)]
        )
        assert result.score == 80
        assert result.bucket == "Positive"
        assert result.consensus == "no_consensus"
        assert result.confidence == approx(CONFIDENCE_NO_CONSENSUS)
        assert result.needs_review

    @staticmethod
    def test_vote_order_does_not_matter() -> None:
        votes = [_vote("a", "Positive", 80), _vote("b", "Positive", 83), _vote("c", "Mixed", 60)]
        results = {resolve_consensus(list(p)).model_dump_json() for p in permutations(votes)}
        assert len(results) == 1


# -------------------------------------------------------------------------
# Degraded ensembles
# -------------------------------------------------------------------------


class TestDegraded:
    """Tests for ensembles where models failed to respond."""

    @staticmethod
    def test_two_agree_lower_confidence() -> None:
        result = resolve_consensus([_vote("a", "Positive", 80), _vote("b", "Positive", 84)])

        assert result.score == 82
        assert result.model_count == 2
        assert result.confidence == approx(CONFIDENCE_TWO_AGREE)
        assert result.confidence < CONFIDENCE_UNANIMOUS
        assert not result.needs_review

    @staticmethod
    def test_two_agree_large_delta_flagged() -> None:
        result = resolve_consensus([_vote("a", "Mixed", 59), _vote("b", "Mixed", 75)])
        assert result.score == 67
        assert result.needs_review

    @staticmethod
    def test_two_adjacent_disagree() -> None:
        result = resolve_consensus([_vote("a", "Rave", 88), _vote("b", "Positive", 80)])

        assert result.score == 84
        assert result.bucket == "Positive"
        assert result.consensus == "no_consensus"
        assert result.confidence == approx(CONFIDENCE_TWO_DISAGREE)
        assert not result.needs_review

    @staticmethod
    def test_two_distant_disagree_flagged() -> None:
        result = resolve_consensus([_vote("a", "Rave", 90), _vote("b", "Mixed", 65)])
        assert result.score == 78
        assert result.bucket == "Positive"
        assert result.needs_review

    @staticmethod
    def test_single_model_passthrough() -> None:
        result = resolve_consensus([_vote("a", "Mixed", 63.5)])

        assert result.score == 64
        assert result.bucket == "Mixed"
        assert result.consensus == "single_model"
        assert result.confidence == approx(CONFIDENCE_SINGLE)
        assert result.needs_review

    @staticmethod
    def test_no_votes() -> None:
        with pytest.raises(EnsembleUnavailable):
            resolve_consensus([], production_id="hamilton")
