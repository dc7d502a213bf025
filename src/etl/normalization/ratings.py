"""Rating normalization onto a common 0-100 scale.

Converts star ratings, letter grades, percentages and sentiment
labels into a normalized score with derived polarity and bucket.
Unparseable ratings raise UnrecognizedFormat instead of guessing.
"""

import logging
import math
import re
from dataclasses import dataclass, field

from src.etl.aggregation.schemas import RatingFormat, SentimentBucket, Thumb
from src.etl.errors import UnrecognizedFormat

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS - SCALES AND MAPPINGS
# =============================================================================

DEFAULT_STAR_SCALE = 5.0
"""Star scale assumed when neither the rating nor the outlet declares one."""

MIN_SCORE = 0
"""Minimum normalized score."""

MAX_SCORE = 100
"""Maximum normalized score."""

LETTER_GRADES: dict[str, int] = {
    "A+": 100,
    "A": 95,
    "A-": 90,
    "B+": 85,
    "B": 80,
    "B-": 75,
    "C+": 70,
    "C": 65,
    "C-": 60,
    "D+": 55,
    "D": 50,
    "D-": 45,
    "F": 30,
}
"""Letter grade to normalized score."""

SENTIMENT_SCORES: dict[str, int] = {
    "rave": 90,
    "positive": 82,
    "mixed-positive": 72,
    "mixed": 65,
    "mixed-neutral": 65,
    "neutral": 65,
    "mixed-negative": 58,
    "negative": 48,
    "pan": 30,
    # Aggregator thumbs
    "up": 80,
    "thumbs-up": 80,
    "flat": 60,
    "thumbs-flat": 60,
    "meh": 60,
    "down": 35,
    "thumbs-down": 35,
}
"""Sentiment label (separator-normalized) to normalized score."""

DESIGNATION_BONUSES: dict[str, int] = {
    "critics_pick": 3,
    "critics_choice": 2,
    "recommended": 2,
}
"""Designation (normalized) to additive score bonus."""

POLARITY_UP_MIN = 65
"""Lowest score read as thumbs up."""

POLARITY_FLAT_MIN = 50
"""Lowest score read as flat; anything below is thumbs down."""

BUCKET_THRESHOLDS: tuple[tuple[int, SentimentBucket], ...] = (
    (85, "Rave"),
    (70, "Positive"),
    (55, "Mixed"),
    (35, "Negative"),
    (0, "Pan"),
)
"""Minimum score per sentiment bucket, highest first."""

_NUMBER = r"(\d+(?:\.\d+)?)"
_STARS_WITH_SCALE = re.compile(
    rf"^{_NUMBER}\s*(?:stars?\s*)?(?:/|out\s+of|of)\s*{_NUMBER}(?:\s*stars?)?$"
)
_STARS_PLAIN = re.compile(rf"^{_NUMBER}\s*(?:stars?)?$")
_PERCENT = re.compile(rf"^{_NUMBER}\s*(?:%|/\s*100|percent)?$")
_LETTER = re.compile(r"^(?:grade\s*:?\s*)?([A-DF][+-]?)$", re.IGNORECASE)
_SEPARATORS = re.compile(r"[\s_\-]+")
_STAR_FULL = "★"
_STAR_EMPTY = "☆"
_STAR_HALF = "½"


# =============================================================================
# HELPERS
# =============================================================================


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 rounding up."""
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    """Round and clamp a score to [0, 100]."""
    return max(MIN_SCORE, min(MAX_SCORE, round_half_up(value)))


def derive_polarity(score: float) -> Thumb:
    """Derive thumb polarity from a normalized score.

    Args:
        score: Normalized 0-100 score.

    Returns:
        'Up' (>= 65), 'Flat' (50-64) or 'Down' (< 50).
    """
    if score >= POLARITY_UP_MIN:
        return "Up"
    if score >= POLARITY_FLAT_MIN:
        return "Flat"
    return "Down"


def derive_bucket(score: float) -> SentimentBucket:
    """Derive the sentiment bucket for a normalized score."""
    for minimum, bucket in BUCKET_THRESHOLDS:
        if score >= minimum:
            return bucket
    return "Pan"


def _sentiment_key(label: str) -> str:
    """Lowercase a label and collapse separators to '-'."""
    return _SEPARATORS.sub("-", label.strip().lower()).strip("-")


def _designation_key(designation: str) -> str:
    """Normalize a designation ('Critics' Pick' -> 'critics_pick')."""
    text = designation.strip().lower().replace("'", "").replace("’", "")
    return _SEPARATORS.sub("_", text).strip("_")


def _normalize_minus(text: str) -> str:
    """Replace typographic minus and dash variants with '-'."""
    return text.replace("−", "-").replace("–", "-").replace("—", "-")


# =============================================================================
# NORMALIZED RATING
# =============================================================================


@dataclass(frozen=True)
class NormalizedRating:
    """Result of normalizing one raw rating.

    Attributes:
        score: Final 0-100 score including designation bonus.
        polarity: Derived thumb polarity.
        bucket: Derived sentiment bucket.
        base_score: Score before designation bonus.
        bonus: Designation bonus actually applied.
        rating_format: Format used for parsing.
    """

    score: int
    polarity: Thumb
    bucket: SentimentBucket
    base_score: int
    bonus: int = 0
    rating_format: RatingFormat = "sentiment"


@dataclass
class NormalizationStats:
    """Statistics for rating normalization.

    Attributes:
        total: Ratings submitted.
        by_format: Successful normalizations per format.
        unrecognized: Ratings that failed to parse.
        with_bonus: Ratings that received a designation bonus.
    """

    total: int = 0
    by_format: dict[str, int] = field(default_factory=dict)
    unrecognized: int = 0
    with_bonus: int = 0

    def log_summary(self) -> None:
        """Log normalization statistics summary."""
        logger.info(
            "Normalization: %d ratings, %d unrecognized, %d with bonus (%s)",
            self.total,
            self.unrecognized,
            self.with_bonus,
            ", ".join(f"{k}={v}" for k, v in sorted(self.by_format.items())),
        )


# =============================================================================
# RATING NORMALIZER
# =============================================================================


class RatingNormalizer:
    """Normalizes heterogeneous ratings onto a 0-100 scale.

    Attributes:
        stats: Normalization statistics.
    """

    def __init__(self) -> None:
        """Initialize normalizer with empty statistics."""
        self.stats = NormalizationStats()

    # =========================================================================
    # Public API
    # =========================================================================

    def normalize(
        self,
        raw: str | float | None,
        rating_format: RatingFormat | None = None,
        max_scale: float | None = None,
        designation: str | None = None,
    ) -> NormalizedRating:
        """Normalize a raw rating.

        Args:
            raw: Raw rating ('4/5', 'B+', '85%', 'Rave', 3.5 ...).
            rating_format: Declared format; inferred when None.
            max_scale: Declared star scale (embedded scales win).
            designation: Optional designation such as 'Critics_Pick'.

        Returns:
            NormalizedRating with bonus applied.

        Raises:
            UnrecognizedFormat: If the rating cannot be parsed.
        """
        self.stats.total += 1
        try:
            fmt = rating_format or self.infer_format(raw)
            base = self._parse(raw, fmt, max_scale)
        except UnrecognizedFormat:
            self.stats.unrecognized += 1
            raise

        bonus = self.designation_bonus(designation)
        score = clamp_score(base + bonus)

        self.stats.by_format[fmt] = self.stats.by_format.get(fmt, 0) + 1
        if bonus:
            self.stats.with_bonus += 1

        return NormalizedRating(
            score=score,
            polarity=derive_polarity(score),
            bucket=derive_bucket(score),
            base_score=base,
            bonus=score - base,
            rating_format=fmt,
        )

    @staticmethod
    def designation_bonus(designation: str | None) -> int:
        """Get additive bonus for a designation.

        Args:
            designation: Designation name, any case or separator style.

        Returns:
            Bonus points (0 for none or unknown).
        """
        if not designation:
            return 0
        bonus = DESIGNATION_BONUSES.get(_designation_key(designation))
        if bonus is None:
            logger.warning("Unknown designation '%s' (no bonus applied)", designation)
            return 0
        return bonus

    def reset(self) -> None:
        """Reset statistics for a new run."""
        self.stats = NormalizationStats()

    @staticmethod
    def infer_format(raw: str | float | None) -> RatingFormat:
        """Guess the format of an undeclared rating.

        Args:
            raw: Raw rating.

        Returns:
            Inferred rating format.

        Raises:
            UnrecognizedFormat: If no format matches.
        """
        if raw is None:
            raise UnrecognizedFormat("Missing rating")
        if isinstance(raw, int | float):
            return "percentage" if raw > DEFAULT_STAR_SCALE else "stars"

        text = _normalize_minus(raw.strip())
        lowered = text.lower()
        if _STAR_FULL in text or _STAR_EMPTY in text or "star" in lowered:
            return "stars"
        if _LETTER.match(text):
            return "letter"
        if lowered.endswith("%") or "percent" in lowered or lowered.endswith("/100"):
            return "percentage"
        if _sentiment_key(text) in SENTIMENT_SCORES:
            return "sentiment"
        if _STARS_WITH_SCALE.match(lowered):
            return "stars"
        if match := _STARS_PLAIN.match(lowered):
            return "stars" if float(match.group(1)) <= DEFAULT_STAR_SCALE else "percentage"
        raise UnrecognizedFormat(f"Cannot infer rating format of '{raw}'")

    # =========================================================================
    # Format Parsers
    # =========================================================================

    def _parse(
        self,
        raw: str | float | None,
        rating_format: RatingFormat,
        max_scale: float | None,
    ) -> int:
        """Dispatch to the parser for the declared format."""
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            raise UnrecognizedFormat("Missing rating")

        if rating_format == "stars":
            return self._parse_stars(raw, max_scale)
        if rating_format == "letter":
            return self._parse_letter(raw)
        if rating_format == "percentage":
            return self._parse_percentage(raw)
        if rating_format == "sentiment":
            return self._parse_sentiment(raw)
        raise UnrecognizedFormat(f"Unsupported rating format '{rating_format}'")

    @staticmethod
    def _parse_stars(raw: str | float, max_scale: float | None) -> int:
        """Parse a star rating.

        Args:
            raw: '4', '3.5/5', '4 out of 5', '3 stars', '★★★☆☆' or a number.
            max_scale: Declared scale; an embedded scale overrides it.

        Returns:
            Base score.

        Raises:
            UnrecognizedFormat: If unparseable or outside [0, scale].
        """
        scale = max_scale or DEFAULT_STAR_SCALE

        if isinstance(raw, int | float):
            stars = float(raw)
        else:
            text = raw.strip().lower()
            if _STAR_FULL in text or _STAR_EMPTY in text:
                stars = text.count(_STAR_FULL) + 0.5 * text.count(_STAR_HALF)
                if _STAR_EMPTY in text:
                    scale = (
                        text.count(_STAR_FULL) + text.count(_STAR_EMPTY) + text.count(_STAR_HALF)
                    )
            elif match := _STARS_WITH_SCALE.match(text):
                stars = float(match.group(1))
                scale = float(match.group(2))
            elif match := _STARS_PLAIN.match(text):
                stars = float(match.group(1))
            else:
                raise UnrecognizedFormat(f"Unrecognized star rating '{raw}'")

        if scale <= 0 or not 0 <= stars <= scale:
            raise UnrecognizedFormat(f"Star rating '{raw}' outside scale 0-{scale:g}")
        return clamp_score(stars / scale * 100)

    @staticmethod
    def _parse_letter(raw: str | float) -> int:
        """Parse a letter grade (A+ ... F)."""
        text = _normalize_minus(str(raw).strip()).replace(" ", "")
        match = _LETTER.match(text)
        if not match:
            raise UnrecognizedFormat(f"Unrecognized letter grade '{raw}'")
        score = LETTER_GRADES.get(match.group(1).upper())
        if score is None:
            raise UnrecognizedFormat(f"Unrecognized letter grade '{raw}'")
        return score

    @staticmethod
    def _parse_percentage(raw: str | float) -> int:
        """Parse a percentage, clamping to [0, 100]."""
        if isinstance(raw, int | float):
            return clamp_score(raw)
        match = _PERCENT.match(raw.strip().lower())
        if not match:
            raise UnrecognizedFormat(f"Unrecognized percentage '{raw}'")
        return clamp_score(float(match.group(1)))

    @staticmethod
    def _parse_sentiment(raw: str | float) -> int:
        """Parse a sentiment label (separator and case tolerant)."""
        score = SENTIMENT_SCORES.get(_sentiment_key(str(raw)))
        if score is None:
            raise UnrecognizedFormat(f"Unrecognized sentiment label '{raw}'")
        return score
