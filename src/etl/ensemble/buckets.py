"""Sentiment buckets, anchors and score bands for bucket-first scoring."""

import logging
from dataclasses import dataclass

from src.etl.aggregation.schemas import SENTIMENT_BUCKETS, SentimentBucket

logger = logging.getLogger(__name__)


BUCKET_ANCHORS: dict[str, int] = {
    "Rave": 90,
    "Positive": 82,
    "Mixed": 65,
    "Negative": 48,
    "Pan": 30,
}
"""Anchor score of each sentiment bucket."""

DEFAULT_BAND_WIDTH = 6
"""Half-width of the score band around each anchor."""


@dataclass(frozen=True)
class BucketBand:
    """Inclusive score band of one sentiment bucket.

    Attributes:
        bucket: Sentiment bucket.
        anchor: Anchor score.
        low: Lowest score in band.
        high: Highest score in band.
    """

    bucket: SentimentBucket
    anchor: int
    low: int
    high: int

    def contains(self, score: float) -> bool:
        """Check if a score lies within the band."""
        return self.low <= score <= self.high

    def clamp(self, score: float) -> float:
        """Clamp a score into the band."""
        return max(float(self.low), min(float(self.high), score))


def build_bands(width: int = DEFAULT_BAND_WIDTH) -> dict[str, BucketBand]:
    """Build symmetric bands around every anchor.

    Args:
        width: Band half-width.

    Returns:
        Bands keyed by bucket.
    """
    return {
        bucket: BucketBand(bucket=bucket, anchor=anchor, low=anchor - width, high=anchor + width)
        for bucket, anchor in BUCKET_ANCHORS.items()
    }


def clamp_to_bucket(score: float, bucket: str, width: int = DEFAULT_BAND_WIDTH) -> float:
    """Clamp a vote's score into its bucket's band, logging corrections.

    Args:
        score: Model-proposed score.
        bucket: Bucket the model committed to.
        width: Band half-width.

    Returns:
        Score inside the band.
    """
    band = build_bands(width)[bucket]
    if band.contains(score):
        return score
    clamped = band.clamp(score)
    logger.info(
        "Score %.1f outside %s band [%d, %d], clamped to %.1f",
        score,
        bucket,
        band.low,
        band.high,
        clamped,
    )
    return clamped


def bucket_distance(first: str, second: str) -> int:
    """Number of bucket steps between two buckets (0 = same)."""
    return abs(SENTIMENT_BUCKETS.index(first) - SENTIMENT_BUCKETS.index(second))


def nearest_bucket(score: float) -> SentimentBucket:
    """Bucket whose anchor is nearest to a score.

    Ties go to the more favorable bucket.
    """
    return min(
        SENTIMENT_BUCKETS,
        key=lambda b: (abs(BUCKET_ANCHORS[b] - score), SENTIMENT_BUCKETS.index(b)),
    )
