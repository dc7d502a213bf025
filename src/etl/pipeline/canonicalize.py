"""Canonicalization of raw evidence records into review shards.

Resolves each record's identity, normalizes its rating and merges it
into the production's shard. Records for the same identity corroborate
one canonical review (provenance is the union of their sources).
Unknown outlets are parked in the shard instead of dropped, and
near-duplicate identities are held back as candidates for a manual
merge decision.

Running the builder twice over the same records yields the same shard.
"""

import logging
from dataclasses import dataclass, field

from src.etl.aggregation.schemas import (
    CanonicalReview,
    DuplicateCandidate,
    ParkedRecord,
    Production,
    RawReviewRecord,
    ReviewKey,
    ReviewShard,
)
from src.etl.errors import CandidateDuplicate, ErrorRecord, UnknownOutlet, UnrecognizedFormat
from src.etl.identity import DuplicateDetector, IdentityResolver, Resolved
from src.etl.normalization import RatingNormalizer

logger = logging.getLogger(__name__)

DIRECT_SOURCE = "direct"
"""Source type of records captured from the outlet itself."""


# =============================================================================
# STATISTICS
# =============================================================================


@dataclass
class CanonicalizationStats:
    """Statistics for shard canonicalization.

    Attributes:
        records: Raw records processed.
        created: Canonical reviews created.
        updated: Existing reviews corroborated or refreshed.
        parked: Records parked for an unknown outlet.
        unrecognized: Reviews whose every rating failed to parse.
        held_back: Near-duplicate records held back.
    """

    records: int = 0
    created: int = 0
    updated: int = 0
    parked: int = 0
    unrecognized: int = 0
    held_back: int = 0

    def log_summary(self) -> None:
        """Log canonicalization statistics."""
        logger.info(
            "Canonicalization: %d records, %d created, %d updated, %d parked, "
            "%d unrecognized, %d held back",
            self.records,
            self.created,
            self.updated,
            self.parked,
            self.unrecognized,
            self.held_back,
        )


@dataclass
class BuildResult:
    """Outcome of canonicalizing one production's records.

    Attributes:
        shard: Updated shard (not yet persisted).
        errors: Per-review errors to report.
    """

    shard: ReviewShard
    errors: list[ErrorRecord] = field(default_factory=list)


def _record_order(record: RawReviewRecord) -> tuple:
    """Deterministic processing order; direct captures first."""
    return (
        record.source_type != DIRECT_SOURCE,
        record.source_type,
        record.outlet_name_raw.lower(),
        record.critic_name_raw.lower(),
        record.rating_raw or "",
        record.url or "",
    )


# =============================================================================
# SHARD BUILDER
# =============================================================================


class ShardBuilder:
    """Merges raw evidence records into a production's canonical shard.

    Attributes:
        resolver: Identity resolver.
        normalizer: Rating normalizer.
        detector: Duplicate detector.
        stats: Canonicalization statistics.
    """

    def __init__(
        self,
        resolver: IdentityResolver | None = None,
        normalizer: RatingNormalizer | None = None,
        detector: DuplicateDetector | None = None,
    ) -> None:
        """Initialize builder components (defaults if None)."""
        self.resolver = resolver or IdentityResolver()
        self.normalizer = normalizer or RatingNormalizer()
        self.detector = detector or DuplicateDetector()
        self.stats = CanonicalizationStats()

    # =========================================================================
    # Public API
    # =========================================================================

    def build(
        self,
        production: Production,
        records: list[RawReviewRecord],
        existing: ReviewShard | None = None,
    ) -> BuildResult:
        """Merge raw records into a production's shard.

        Args:
            production: Production reference data (replaces the stored copy).
            records: Raw records for this production.
            existing: Previously stored shard, if any.

        Returns:
            BuildResult with the updated shard and per-review errors.
        """
        shard = self._start_shard(production, existing)
        errors: list[ErrorRecord] = []
        resolved: list[tuple[Resolved, RawReviewRecord]] = []

        for record in sorted(records, key=_record_order):
            self.stats.records += 1
            result = self.resolver.resolve(
                production.id, record.outlet_name_raw, record.critic_name_raw
            )
            if isinstance(result, UnknownOutlet):
                self._park(shard, result, record)
                errors.append(ErrorRecord.from_exception(result))
                continue
            resolved.append((result, record))

        names = {review.key: review.critic_name for review in shard.reviews}
        for item, _ in resolved:
            names.setdefault(item.key, item.critic_name)

        scan = self.detector.scan(
            [item.key for item, _ in resolved],
            existing=[review.key for review in shard.reviews],
            names=names,
        )
        self.stats.held_back += len(scan.held_back)

        grouped: dict[ReviewKey, list[tuple[Resolved, RawReviewRecord]]] = {}
        for item, record in resolved:
            if item.key in scan.held_back:
                continue
            grouped.setdefault(item.key, []).append((item, record))

        for key, items in grouped.items():
            review = shard.find(key)
            if review is None:
                review = self._new_review(items[0][0])
                shard.reviews.append(review)
                self.stats.created += 1
            else:
                self.stats.updated += 1
            errors.extend(self._merge(review, items))

        errors.extend(self._record_candidates(shard, scan.candidates))
        shard.sort_reviews()
        return BuildResult(shard=shard, errors=errors)

    def reset(self) -> None:
        """Reset statistics for a new run."""
        self.stats = CanonicalizationStats()
        self.normalizer.reset()

    # =========================================================================
    # Internal Methods
    # =========================================================================

    @staticmethod
    def _start_shard(production: Production, existing: ReviewShard | None) -> ReviewShard:
        """Copy the stored shard, or start an empty one."""
        if existing is None:
            return ReviewShard(production=production)
        shard = existing.model_copy(deep=True)
        shard.production = production
        return shard

    def _park(self, shard: ReviewShard, error: UnknownOutlet, record: RawReviewRecord) -> None:
        """Keep an unresolvable record in the shard's parked list once."""
        data = record.model_dump(mode="json")
        if any(p.code == error.code and p.record == data for p in shard.parked):
            return
        shard.parked.append(ParkedRecord(code=error.code, reason=error.message, record=data))
        self.stats.parked += 1
        logger.warning("%s: parked record (%s)", shard.production_id, error.message)

    @staticmethod
    def _record_candidates(
        shard: ReviewShard,
        candidates: list[DuplicateCandidate],
    ) -> list[ErrorRecord]:
        """Store candidates on the shard and flag cross-outlet reviews."""
        by_key = {review.key.as_string(): review for review in shard.reviews}
        errors: list[ErrorRecord] = []
        for candidate in candidates:
            known = any(
                c.kind == candidate.kind and c.keys == candidate.keys
                for c in shard.candidate_duplicates
            )
            if not known:
                shard.candidate_duplicates.append(candidate)
            if candidate.kind == "cross_outlet":
                for key in candidate.keys:
                    if key in by_key:
                        by_key[key].add_flag(CandidateDuplicate.code)
            errors.append(
                ErrorRecord(
                    code=CandidateDuplicate.code,
                    message=f"{candidate.kind} candidate: {' ~ '.join(candidate.keys)}",
                    production_id=candidate.production_id,
                    identity=candidate.keys[-1],
                )
            )
        return errors

    @staticmethod
    def _new_review(resolved: Resolved) -> CanonicalReview:
        """Create an empty canonical review for a resolved identity."""
        return CanonicalReview(
            production_id=resolved.key.production_id,
            outlet_id=resolved.key.outlet_id,
            critic_slug=resolved.key.critic_slug,
            outlet_name=resolved.outlet.name,
            critic_name=resolved.critic_name,
        )

    def _merge(
        self,
        review: CanonicalReview,
        items: list[tuple[Resolved, RawReviewRecord]],
    ) -> list[ErrorRecord]:
        """Merge corroborating records into one review.

        Returns:
            Error records (an unparseable rating).
        """
        outlet = items[0][0].outlet
        records = [record for _, record in items]

        review.provenance = sorted({*review.provenance, *(r.source_type for r in records)})
        review.outlet_name = outlet.name
        review.tier = outlet.tier
        review.weight = outlet.weight
        if not review.critic_name:
            review.critic_name = next((i.critic_name for i, _ in items if i.critic_name), "")
        if review.url is None:
            review.url = next((r.url for r in records if r.url), None)
        if review.publish_date is None:
            review.publish_date = next((r.publish_date for r in records if r.publish_date), None)
        if review.excerpt is None:
            review.excerpt = next((r.excerpt for r in records if r.excerpt), None)
        texts = [t for t in (review.full_text, *(r.full_text for r in records)) if t]
        review.full_text = max(texts, key=len) if texts else None
        if review.designation is None:
            review.designation = next((r.designation for r in records if r.designation), None)
        review.designation_bonus = self.normalizer.designation_bonus(review.designation)

        rated = [r for r in records if r.rating_raw]
        if not rated:
            return []

        last_error: UnrecognizedFormat | None = None
        for record in rated:
            fmt = record.rating_format
            if fmt is None and outlet.rating_format != "sentiment":
                fmt = outlet.rating_format
            try:
                rating = self.normalizer.normalize(
                    record.rating_raw,
                    rating_format=fmt,
                    max_scale=outlet.max_scale,
                    designation=review.designation,
                )
            except UnrecognizedFormat as e:
                last_error = e
                continue

            review.rating_raw = record.rating_raw
            review.rating_format = rating.rating_format
            review.base_score = rating.base_score
            review.designation_bonus = rating.bonus
            review.score = rating.score
            review.polarity = rating.polarity
            review.bucket = rating.bucket
            review.score_source = "explicit"
            review.remove_flag(UnrecognizedFormat.code)
            return []

        self.stats.unrecognized += 1
        if review.score_source == "unrated":
            review.rating_raw = rated[0].rating_raw
        review.add_flag(UnrecognizedFormat.code)
        logger.warning("%s: %s", review.key.as_string(), last_error.message)
        return [
            ErrorRecord(
                code=UnrecognizedFormat.code,
                message=last_error.message,
                production_id=review.production_id,
                identity=review.key.as_string(),
            )
        ]
