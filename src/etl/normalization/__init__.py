"""Rating normalization and outlet reference data."""

from src.etl.normalization.outlets import DEFAULT_OUTLETS, OutletRegistry, outlet_lookup_key
from src.etl.normalization.ratings import (
    NormalizationStats,
    NormalizedRating,
    RatingNormalizer,
    derive_bucket,
    derive_polarity,
)

__all__ = [
    "DEFAULT_OUTLETS",
    "OutletRegistry",
    "outlet_lookup_key",
    "NormalizationStats",
    "NormalizedRating",
    "RatingNormalizer",
    "derive_bucket",
    "derive_polarity",
]
