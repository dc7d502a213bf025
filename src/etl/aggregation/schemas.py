"""Pydantic schemas for review reconciliation and scoring.

Defines reference data (productions, outlets), collaborator inputs
(raw evidence records, aggregator snapshots), the canonical review
shard, ensemble votes, and the computed per-production output.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Literal, Self

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

# =============================================================================
# CONSTANTS
# =============================================================================

Thumb = Literal["Up", "Flat", "Down"]
"""Three-valued review polarity."""

RatingFormat = Literal["stars", "letter", "percentage", "sentiment"]
"""Declared format of a raw rating."""

ProductionStatus = Literal["previews", "opened", "closing", "closed"]
"""Production lifecycle status."""

ConfidenceLevel = Literal["high", "medium", "low"]
"""Composite score confidence classification."""

SentimentBucket = Literal["Rave", "Positive", "Mixed", "Negative", "Pan"]
"""Coarse sentiment category used by bucket-first scoring."""

ScoreSource = Literal["explicit", "ensemble", "unrated"]
"""Where a canonical review's score came from."""

ConsensusKind = Literal["unanimous", "majority", "no_consensus", "single_model"]
"""How the ensemble reached its final score."""

TIER_WEIGHTS: dict[int, float] = {1: 1.0, 2: 0.85, 3: 0.70}
"""Outlet tier to aggregation weight."""

SENTIMENT_BUCKETS: tuple[str, ...] = ("Rave", "Positive", "Mixed", "Negative", "Pan")
"""Sentiment buckets ordered from most to least favorable."""

_THUMB_ALIASES: dict[str, str] = {
    "up": "Up",
    "thumbs up": "Up",
    "thumbs-up": "Up",
    "positive": "Up",
    "flat": "Flat",
    "meh": "Flat",
    "mixed": "Flat",
    "sideways": "Flat",
    "down": "Down",
    "thumbs down": "Down",
    "thumbs-down": "Down",
    "negative": "Down",
}


def _coerce_thumb(value: object) -> object:
    """Map loose polarity labels onto Up/Flat/Down."""
    if isinstance(value, str):
        mapped = _THUMB_ALIASES.get(value.strip().lower())
        if mapped:
            return mapped
        if not value.strip():
            return None
    return value


# =============================================================================
# IDENTITY KEY
# =============================================================================


@dataclass(frozen=True, order=True)
class ReviewKey:
    """Canonical review identity: (production, outlet, critic slug).

    Attributes:
        production_id: Production identifier.
        outlet_id: Canonical outlet identifier.
        critic_slug: Normalized critic identifier.
    """

    production_id: str
    outlet_id: str
    critic_slug: str

    @property
    def outlet_critic(self) -> tuple[str, str]:
        """(outlet, critic) pair used for source comparison."""
        return self.outlet_id, self.critic_slug

    def as_string(self) -> str:
        """Stable string form used in reports and shard documents."""
        return f"{self.production_id}|{self.outlet_id}|{self.critic_slug}"


# =============================================================================
# REFERENCE DATA
# =============================================================================


class Production(BaseModel):
    """A tracked theatrical production.

    Attributes:
        id: Stable production identifier.
        title: Display title.
        venue: Theatre name.
        opening_date: Official opening night.
        closing_date: Closing date if announced.
        status: Lifecycle status.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, populate_by_name=True)

    id: str = Field(min_length=1, max_length=200)
    title: str = Field(min_length=1, max_length=500)
    venue: str = Field(default="", max_length=200)
    opening_date: date | None = Field(
        default=None,
        validation_alias=AliasChoices("opening_date", "openingDate"),
    )
    closing_date: date | None = Field(
        default=None,
        validation_alias=AliasChoices("closing_date", "closingDate"),
    )
    status: ProductionStatus = "opened"

    @field_validator("status", mode="before")
    @classmethod
    def lower_status(cls, v: object) -> object:
        """Accept status in any case."""
        return v.strip().lower() if isinstance(v, str) else v

    @property
    def in_previews(self) -> bool:
        """Check if production has not opened yet."""
        return self.status == "previews"


class Outlet(BaseModel):
    """A publication producing critic reviews.

    Attributes:
        id: Canonical outlet identifier.
        name: Display name.
        tier: Influence tier (1 highest).
        rating_format: Rating vocabulary the outlet uses.
        max_scale: Top of the star scale for star-rated outlets.
        aliases: Alternative names used by aggregators.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, frozen=True)

    id: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=200)
    tier: int = Field(default=3, ge=1, le=3)
    rating_format: RatingFormat = "sentiment"
    max_scale: float | None = Field(default=None, gt=0)
    aliases: tuple[str, ...] = ()

    @property
    def weight(self) -> float:
        """Aggregation weight derived from tier."""
        return TIER_WEIGHTS[self.tier]


# =============================================================================
# COLLABORATOR INPUTS
# =============================================================================


class RawReviewRecord(BaseModel):
    """Raw evidence record extracted by an acquisition collaborator.

    Attributes:
        production_id: Production the review covers.
        outlet_name_raw: Outlet name as found in the source.
        critic_name_raw: Critic byline as found in the source.
        rating_raw: Original rating string, if any.
        rating_format: Declared rating format, if known.
        url: Review URL.
        publish_date: Publication date.
        source_type: Where the record was captured (e.g. 'dtli', 'bww').
        designation: Optional designation (e.g. 'Critics_Pick').
        excerpt: Pull quote or excerpt.
        full_text: Full review text when available.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, populate_by_name=True)

    production_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("production_id", "productionId"),
    )
    outlet_name_raw: str = Field(
        min_length=1,
        validation_alias=AliasChoices("outlet_name_raw", "outletNameRaw"),
    )
    critic_name_raw: str = Field(
        default="",
        validation_alias=AliasChoices("critic_name_raw", "criticNameRaw"),
    )
    rating_raw: str | None = Field(
        default=None,
        validation_alias=AliasChoices("rating_raw", "ratingRaw"),
    )
    rating_format: RatingFormat | None = Field(
        default=None,
        validation_alias=AliasChoices("rating_format", "ratingFormat"),
    )
    url: str | None = None
    publish_date: date | None = Field(
        default=None,
        validation_alias=AliasChoices("publish_date", "publishDate"),
    )
    source_type: str = Field(
        default="direct",
        validation_alias=AliasChoices("source_type", "sourceType"),
    )
    designation: str | None = None
    excerpt: str | None = None
    full_text: str | None = Field(
        default=None,
        validation_alias=AliasChoices("full_text", "fullText"),
    )

    @field_validator("rating_raw", mode="before")
    @classmethod
    def stringify_rating(cls, v: object) -> object:
        """Accept numeric ratings and blank strings."""
        if isinstance(v, bool):
            return str(v)
        if isinstance(v, int | float):
            return str(v)
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("rating_format", mode="before")
    @classmethod
    def lower_format(cls, v: object) -> object:
        """Accept declared format in any case."""
        if isinstance(v, str):
            return v.strip().lower() or None
        return v


class SourceEntry(BaseModel):
    """One review as reported by an aggregator snapshot."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    outlet: str = Field(min_length=1)
    critic: str = ""
    polarity: Thumb | None = None
    excerpt: str | None = None
    score: float | None = Field(default=None, ge=0.0, le=100.0)

    @field_validator("polarity", mode="before")
    @classmethod
    def normalize_polarity(cls, v: object) -> object:
        """Map loose thumb labels onto Up/Flat/Down."""
        return _coerce_thumb(v)


class ReviewSource(BaseModel):
    """An aggregator's independent snapshot of a production's coverage.

    Attributes:
        source_type: Aggregator identifier.
        production_id: Production covered.
        fetched_at: Capture timestamp.
        entries: Reported reviews.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, populate_by_name=True)

    source_type: str = Field(
        min_length=1,
        validation_alias=AliasChoices("source_type", "sourceType"),
    )
    production_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("production_id", "productionId"),
    )
    fetched_at: datetime = Field(validation_alias=AliasChoices("fetched_at", "fetchedAt"))
    entries: list[SourceEntry] = Field(default_factory=list)


# =============================================================================
# ENSEMBLE RESULTS
# =============================================================================


class EnsembleVote(BaseModel):
    """One classifier model's vote for one review.

    Attributes:
        model: Model identifier.
        bucket: Committed sentiment bucket.
        score: Score within the bucket's band.
        confidence: Model's self-reported confidence weight (0-1).
    """

    model_config = ConfigDict(extra="ignore")

    model: str = Field(min_length=1)
    bucket: SentimentBucket
    score: float = Field(ge=0.0, le=100.0)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class LLMScore(BaseModel):
    """Resolved ensemble consensus for one review.

    Attributes:
        score: Final 0-100 score.
        bucket: Final sentiment bucket.
        confidence: Consensus confidence (0-1).
        model_count: Number of models that returned a vote.
        consensus: How the final score was reached.
        votes: All votes that contributed or were considered.
        dissent: Minority votes excluded from the score.
        needs_review: Whether a human should double-check the result.
        review_reason: Why the result needs review.
    """

    model_config = ConfigDict(extra="ignore")

    score: int = Field(ge=0, le=100)
    bucket: SentimentBucket
    confidence: float = Field(ge=0.0, le=1.0)
    model_count: int = Field(ge=1, le=3)
    consensus: ConsensusKind
    votes: list[EnsembleVote] = Field(default_factory=list)
    dissent: list[EnsembleVote] = Field(default_factory=list)
    needs_review: bool = False
    review_reason: str | None = None


# =============================================================================
# CANONICAL SHARD
# =============================================================================


class CanonicalReview(BaseModel):
    """The authoritative record for one critic's review of one production.

    Tier and weight are frozen from the Outlet at normalization time.
    """

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    # Identity
    production_id: str = Field(min_length=1)
    outlet_id: str = Field(min_length=1)
    critic_slug: str = ""
    outlet_name: str = ""
    critic_name: str = ""

    # Rating
    rating_raw: str | None = None
    rating_format: RatingFormat | None = None
    base_score: int | None = Field(default=None, ge=0, le=100)
    designation: str | None = None
    designation_bonus: int = Field(default=0, ge=0)
    score: int | None = Field(default=None, ge=0, le=100)
    polarity: Thumb | None = None
    bucket: SentimentBucket | None = None
    score_source: ScoreSource = "unrated"
    llm_score: LLMScore | None = None

    # Outlet weighting snapshot
    tier: int = Field(default=3, ge=1, le=3)
    weight: float = Field(default=TIER_WEIGHTS[3], gt=0.0, le=1.0)

    # Provenance
    provenance: list[str] = Field(default_factory=list)
    flags: list[str] = Field(default_factory=list)
    url: str | None = None
    publish_date: date | None = None
    excerpt: str | None = None
    full_text: str | None = None
    updated_at: datetime | None = None

    @property
    def key(self) -> ReviewKey:
        """Canonical identity key."""
        return ReviewKey(self.production_id, self.outlet_id, self.critic_slug)

    @property
    def is_rated(self) -> bool:
        """Check if review has a usable score."""
        return self.score is not None

    @property
    def text(self) -> str | None:
        """Best available review text for sentiment scoring."""
        return self.full_text or self.excerpt

    def add_flag(self, code: str) -> None:
        """Add an error/attention flag once."""
        if code not in self.flags:
            self.flags = sorted([*self.flags, code])

    def remove_flag(self, code: str) -> None:
        """Remove a flag if present."""
        if code in self.flags:
            self.flags = [f for f in self.flags if f != code]


class ParkedRecord(BaseModel):
    """Raw record that could not be canonicalized (kept, not dropped)."""

    model_config = ConfigDict(extra="ignore")

    code: str
    reason: str
    record: dict


class DuplicateCandidate(BaseModel):
    """Near-duplicate identities queued for a manual merge decision.

    Attributes:
        kind: 'near_name' (typo within one outlet) or 'cross_outlet'
            (same critic under two mastheads).
        production_id: Production concerned.
        keys: Identity strings involved.
        critic_names: Raw critic names as seen.
        distance: Edit distance between critic slugs.
    """

    model_config = ConfigDict(extra="ignore")

    kind: Literal["near_name", "cross_outlet"]
    production_id: str
    keys: list[str]
    critic_names: list[str] = Field(default_factory=list)
    distance: int = Field(default=0, ge=0)


class ReviewShard(BaseModel):
    """Canonical per-production review document (source of truth)."""

    model_config = ConfigDict(extra="ignore")

    production: Production
    reviews: list[CanonicalReview] = Field(default_factory=list)
    parked: list[ParkedRecord] = Field(default_factory=list)
    candidate_duplicates: list[DuplicateCandidate] = Field(default_factory=list)
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def check_consistency(self) -> Self:
        """Ensure reviews belong to the production and keys are unique."""
        seen: set[ReviewKey] = set()
        for review in self.reviews:
            if review.production_id != self.production.id:
                raise ValueError(
                    f"Review {review.key.as_string()} does not belong to {self.production.id}"
                )
            if review.key in seen:
                raise ValueError(f"Duplicate review identity {review.key.as_string()}")
            seen.add(review.key)
        return self

    @property
    def production_id(self) -> str:
        """Production identifier."""
        return self.production.id

    def sort_reviews(self) -> None:
        """Order reviews by identity key for stable documents."""
        self.reviews = sorted(self.reviews, key=lambda r: r.key)

    def find(self, key: ReviewKey) -> CanonicalReview | None:
        """Find a review by identity key."""
        for review in self.reviews:
            if review.key == key:
                return review
        return None


# =============================================================================
# OUTPUT VIEW
# =============================================================================


class ComputedProduction(BaseModel):
    """Site-wide aggregate record for one production.

    Attributes:
        production_id: Production identifier.
        title: Display title.
        status: Lifecycle status.
        composite_score: Public score; None while pending.
        simple_average: Mean of normalized scores.
        weighted_average: Tier-weighted mean.
        review_count: Scored reviews.
        tier1_count: Scored tier-1 reviews.
        unrated_count: Reviews still waiting for a score.
        confidence: Confidence classification.
        score_bucket: Display bucket (must-see ... skip, or pending).
        critic_label: Rave / Positive / Mixed / Negative label.
    """

    model_config = ConfigDict(extra="ignore")

    production_id: str
    title: str
    status: ProductionStatus
    composite_score: int | None = None
    simple_average: float | None = None
    weighted_average: float | None = None
    review_count: int = 0
    tier1_count: int = 0
    unrated_count: int = 0
    confidence: ConfidenceLevel = "low"
    score_bucket: str = "pending"
    critic_label: str | None = None
