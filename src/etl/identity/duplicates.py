"""Candidate duplicate detection for review identities.

Near-duplicates are flagged, never merged: a typo'd byline at the same
outlet is recorded as a candidate of the identity already seen, and a
critic appearing under two outlets keeps both reviews but is surfaced
for manual confirmation.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from rapidfuzz.distance import Levenshtein

from src.etl.aggregation.schemas import DuplicateCandidate, ReviewKey
from src.etl.identity.resolver import UNKNOWN_CRITIC_SLUG

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

MAX_NAME_DISTANCE = 2
"""Maximum Levenshtein distance between near-duplicate critic slugs."""

MIN_SLUG_LENGTH = 5
"""Both slugs must be longer than this for fuzzy matching."""


# =============================================================================
# SCAN RESULT
# =============================================================================


@dataclass
class DuplicateScan:
    """Result of scanning one production's identity keys.

    Attributes:
        accepted: Keys to keep as canonical reviews (input order).
        candidates: Candidate duplicates awaiting a manual decision.
        held_back: Near-name keys not added, mapped to the key they shadow.
    """

    accepted: list[ReviewKey] = field(default_factory=list)
    candidates: list[DuplicateCandidate] = field(default_factory=list)
    held_back: dict[ReviewKey, ReviewKey] = field(default_factory=dict)

    def log_summary(self) -> None:
        """Log scan statistics."""
        logger.info(
            "Duplicate scan: %d accepted, %d held back, %d candidates",
            len(self.accepted),
            len(self.held_back),
            len(self.candidates),
        )


# =============================================================================
# DUPLICATE DETECTOR
# =============================================================================


class DuplicateDetector:
    """Flags near-name and cross-outlet duplicate review identities.

    Attributes:
        max_distance: Maximum slug edit distance for near-name matches.
        min_length: Slugs must both be longer than this.
    """

    def __init__(
        self,
        max_distance: int = MAX_NAME_DISTANCE,
        min_length: int = MIN_SLUG_LENGTH,
    ) -> None:
        """Initialize detector thresholds."""
        self.max_distance = max_distance
        self.min_length = min_length

    # =========================================================================
    # Public API
    # =========================================================================

    def scan(
        self,
        keys: Iterable[ReviewKey],
        existing: Iterable[ReviewKey] = (),
        names: dict[ReviewKey, str] | None = None,
    ) -> DuplicateScan:
        """Scan incoming keys of one production against known keys.

        Exact repeats of a known key are accepted (they corroborate the
        same review). A near-name of a known key at the same outlet is
        held back and recorded as a candidate of that key. Cross-outlet
        matches are recorded for every accepted key.

        Args:
            keys: Incoming identity keys in arrival order.
            existing: Keys already canonical in the shard.
            names: Optional display names for candidate reports.

        Returns:
            DuplicateScan with accepted keys and candidates.
        """
        names = names or {}
        result = DuplicateScan()
        seen: list[ReviewKey] = list(dict.fromkeys(existing))
        seen_set = set(seen)

        for key in keys:
            if key in seen_set:
                if key not in result.accepted:
                    result.accepted.append(key)
                continue

            match = self.find_near_name(key, seen)
            if match is not None:
                shadowed, distance = match
                result.held_back[key] = shadowed
                result.candidates.append(
                    self._candidate("near_name", [shadowed, key], names, distance)
                )
                logger.info(
                    "Near-duplicate critic %s held back (matches %s, distance=%d)",
                    key.as_string(),
                    shadowed.as_string(),
                    distance,
                )
                continue

            seen.append(key)
            seen_set.add(key)
            result.accepted.append(key)

        for first, second in self.find_cross_outlet(seen):
            result.candidates.append(self._candidate("cross_outlet", [first, second], names))

        return result

    def find_near_name(
        self,
        key: ReviewKey,
        known: Iterable[ReviewKey],
    ) -> tuple[ReviewKey, int] | None:
        """Find a known key at the same outlet with a near-identical slug.

        Args:
            key: Incoming identity key.
            known: Keys already accepted.

        Returns:
            (matching key, distance) for the closest match, or None.
        """
        best: tuple[ReviewKey, int] | None = None
        for other in known:
            if not self._same_outlet(key, other) or other.critic_slug == key.critic_slug:
                continue
            distance = self.slug_distance(key.critic_slug, other.critic_slug)
            if distance is None:
                continue
            if best is None or distance < best[1]:
                best = (other, distance)
        return best

    def find_cross_outlet(self, keys: Iterable[ReviewKey]) -> list[tuple[ReviewKey, ReviewKey]]:
        """Find the same critic slug under different outlets.

        Args:
            keys: Keys of one production.

        Returns:
            Sorted pairs of keys sharing a slug across outlets.
        """
        by_slug: dict[tuple[str, str], list[ReviewKey]] = {}
        for key in sorted(set(keys)):
            if key.critic_slug == UNKNOWN_CRITIC_SLUG:
                continue
            by_slug.setdefault((key.production_id, key.critic_slug), []).append(key)

        pairs: list[tuple[ReviewKey, ReviewKey]] = []
        for group in by_slug.values():
            for i, first in enumerate(group):
                for second in group[i + 1 :]:
                    if first.outlet_id != second.outlet_id:
                        pairs.append((first, second))
        return pairs

    def slug_distance(self, slug_a: str, slug_b: str) -> int | None:
        """Edit distance between slugs if within the near-name threshold.

        Args:
            slug_a: First critic slug.
            slug_b: Second critic slug.

        Returns:
            Distance when both slugs are long enough and within
            max_distance, otherwise None.
        """
        if len(slug_a) <= self.min_length or len(slug_b) <= self.min_length:
            return None
        distance = Levenshtein.distance(slug_a, slug_b, score_cutoff=self.max_distance)
        return distance if distance <= self.max_distance else None

    # =========================================================================
    # Internal Methods
    # =========================================================================

    @staticmethod
    def _same_outlet(a: ReviewKey, b: ReviewKey) -> bool:
        """Check if keys share production and outlet."""
        return a.production_id == b.production_id and a.outlet_id == b.outlet_id

    @staticmethod
    def _candidate(
        kind: str,
        keys: list[ReviewKey],
        names: dict[ReviewKey, str],
        distance: int = 0,
    ) -> DuplicateCandidate:
        """Build a candidate duplicate record."""
        return DuplicateCandidate(
            kind=kind,
            production_id=keys[0].production_id,
            keys=[k.as_string() for k in keys],
            critic_names=[names.get(k, k.critic_slug) for k in keys],
            distance=distance,
        )
