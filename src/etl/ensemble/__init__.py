"""Multi-model ensemble sentiment scoring.

Reviews without a usable explicit rating are classified by up to three
models (bucket first, then a score inside the bucket's band) and the
votes are resolved into one consensus score.
"""

from src.etl.ensemble.buckets import BUCKET_ANCHORS, BucketBand, build_bands, nearest_bucket
from src.etl.ensemble.classifiers import (
    ChatCompletionClassifier,
    ClassifierError,
    ReviewContext,
    SentimentModel,
    build_models,
    parse_vote,
)
from src.etl.ensemble.consensus import resolve_consensus
from src.etl.ensemble.scorer import EnsembleScorer, EnsembleStats

__all__ = [
    "BUCKET_ANCHORS",
    "BucketBand",
    "build_bands",
    "nearest_bucket",
    "ChatCompletionClassifier",
    "ClassifierError",
    "ReviewContext",
    "SentimentModel",
    "build_models",
    "parse_vote",
    "resolve_consensus",
    "EnsembleScorer",
    "EnsembleStats",
]
