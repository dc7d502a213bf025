"""Consensus voting over classifier model votes.

Turns zero to three bucket-first votes into one LLMScore:
- 3 models: unanimous mean, majority mean (dissent excluded), or
  median when all three disagree;
- 2 models: mean when they agree, median otherwise;
- 1 model: passthrough flagged for review;
- 0 models: EnsembleUnavailable.
"""

import logging
from statistics import mean, median

from src.etl.aggregation.schemas import EnsembleVote, LLMScore
from src.etl.ensemble.buckets import bucket_distance, nearest_bucket
from src.etl.errors import EnsembleUnavailable
from src.etl.normalization.ratings import clamp_score

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS - CONFIDENCE
# =============================================================================

CONFIDENCE_UNANIMOUS = 0.9
"""Three models agree on the bucket."""

CONFIDENCE_TWO_AGREE = 0.75
"""Only two models responded and they agree."""

CONFIDENCE_MAJORITY = 0.7
"""Two of three models agree."""

CONFIDENCE_SINGLE = 0.5
"""Only one model responded."""

CONFIDENCE_NO_CONSENSUS = 0.4
"""Three models, three different buckets."""

CONFIDENCE_TWO_DISAGREE = 0.35
"""Two models responded and disagree."""

HIGH_DISAGREEMENT_DELTA = 15
"""Score delta between two agreeing models that still warrants review."""


# =============================================================================
# CONSENSUS
# =============================================================================


def resolve_consensus(votes: list[EnsembleVote], production_id: str | None = None) -> LLMScore:
    """Resolve model votes into a final ensemble score.

    Args:
        votes: Votes from the models that responded (at most three).
        production_id: Production for error reporting.

    Returns:
        LLMScore with final score, bucket and confidence.

    Raises:
        EnsembleUnavailable: If no model responded.
    """
    if not votes:
        raise EnsembleUnavailable("No classifier model produced a vote", production_id)

    votes = sorted(votes, key=lambda v: v.model)
    if len(votes) == 1:
        return _single_model(votes[0])
    if len(votes) == 2:
        return _two_models(votes)
    return _three_models(votes)


def _single_model(vote: EnsembleVote) -> LLMScore:
    """Pass a lone vote through, flagged for review."""
    return LLMScore(
        score=clamp_score(vote.score),
        bucket=vote.bucket,
        confidence=CONFIDENCE_SINGLE,
        model_count=1,
        consensus="single_model",
        votes=[vote],
        needs_review=True,
        review_reason=f"Only {vote.model} responded",
    )


def _two_models(votes: list[EnsembleVote]) -> LLMScore:
    """Resolve two votes (one model failed)."""
    first, second = votes
    if first.bucket == second.bucket:
        delta = abs(first.score - second.score)
        needs_review = delta > HIGH_DISAGREEMENT_DELTA
        return LLMScore(
            score=clamp_score(mean(v.score for v in votes)),
            bucket=first.bucket,
            confidence=CONFIDENCE_TWO_AGREE,
            model_count=2,
            consensus="unanimous",
            votes=votes,
            needs_review=needs_review,
            review_reason=(
                f"Score delta {delta:g} between agreeing models" if needs_review else None
            ),
        )

    final = clamp_score(median(v.score for v in votes))
    needs_review = bucket_distance(first.bucket, second.bucket) > 1
    return LLMScore(
        score=final,
        bucket=nearest_bucket(final),
        confidence=CONFIDENCE_TWO_DISAGREE,
        model_count=2,
        consensus="no_consensus",
        votes=votes,
        needs_review=needs_review,
        review_reason=(
            f"{first.model}={first.bucket} vs {second.model}={second.bucket}"
            if needs_review
            else None
        ),
    )


def _three_models(votes: list[EnsembleVote]) -> LLMScore:
    """Resolve three votes by unanimity, majority or median."""
    counts: dict[str, int] = {}
    for vote in votes:
        counts[vote.bucket] = counts.get(vote.bucket, 0) + 1
    top_bucket, top_count = max(counts.items(), key=lambda item: item[1])

    if top_count == len(votes):
        return LLMScore(
            score=clamp_score(mean(v.score for v in votes)),
            bucket=top_bucket,
            confidence=CONFIDENCE_UNANIMOUS,
            model_count=len(votes),
            consensus="unanimous",
            votes=votes,
        )

    if top_count * 2 > len(votes):
        agreeing = [v for v in votes if v.bucket == top_bucket]
        dissent = [v for v in votes if v.bucket != top_bucket]
        severe = [v for v in dissent if bucket_distance(v.bucket, top_bucket) > 1]
        if dissent:
            logger.debug(
                "Majority %s, dissent: %s",
                top_bucket,
                ", ".join(f"{v.model}={v.bucket}" for v in dissent),
            )
        return LLMScore(
            score=clamp_score(mean(v.score for v in agreeing)),
            bucket=top_bucket,
            confidence=CONFIDENCE_MAJORITY,
            model_count=len(votes),
            consensus="majority",
            votes=votes,
            dissent=dissent,
            needs_review=bool(severe),
            review_reason=(
                f"Outlier {severe[0].model} chose {severe[0].bucket}, "
                f"2+ buckets from {top_bucket}"
                if severe
                else None
            ),
        )

    final = clamp_score(median(v.score for v in votes))
    return LLMScore(
        score=final,
        bucket=nearest_bucket(final),
        confidence=CONFIDENCE_NO_CONSENSUS,
        model_count=len(votes),
        consensus="no_consensus",
        votes=votes,
        needs_review=True,
        review_reason=f"{len(votes)}-way bucket disagreement",
    )
