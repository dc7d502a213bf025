"""Review identity resolution.

Resolves raw outlet and critic names to a canonical
(production, outlet, critic slug) identity key. Outlets are looked up
in the registry; critic names are slugified. Manual merge decisions
are the only way two distinct slugs collapse into one identity.
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from unidecode import unidecode

from src.etl.aggregation.schemas import Outlet, ReviewKey
from src.etl.errors import UnknownOutlet
from src.etl.normalization.outlets import OutletRegistry

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

UNKNOWN_CRITIC_SLUG = "unknown"
"""Slug used when a review carries no byline."""

WILDCARD = "*"
"""Merge decision production id matching every production."""

_BYLINE_PREFIX = re.compile(r"^by\s+", re.IGNORECASE)


# =============================================================================
# SLUGS
# =============================================================================


def critic_slug(name: str | None) -> str:
    """Build a critic slug from a byline.

    Transliterates to ASCII, lowercases, drops punctuation and joins
    words with '-'. Slugifying a slug returns it unchanged.

    Args:
        name: Raw critic name (e.g. 'Jesse Green', 'By Adam Feldman').

    Returns:
        Critic slug, or 'unknown' for blank names.
    """
    if not name or not name.strip():
        return UNKNOWN_CRITIC_SLUG

    text = _BYLINE_PREFIX.sub("", name.strip())
    slug = unidecode(text).lower()
    # Apostrophes join (O'Hara -> ohara), other punctuation separates
    slug = re.sub(r"['`]", "", slug)
    slug = re.sub(r"[^a-z0-9]+", "-", slug)
    return slug.strip("-") or UNKNOWN_CRITIC_SLUG


# =============================================================================
# MERGE DECISIONS
# =============================================================================


class MergeDecisions:
    """Manual identity merge decisions.

    Maps (production, outlet, variant slug) to a canonical slug. A
    production id of '*' applies to every production.

    File format (JSON list)::

        [{"production_id": "hamlet-2024", "outlet_id": "NYT",
          "variant_slug": "jesse-gren", "canonical_slug": "jesse-green"}]
    """

    def __init__(self, decisions: dict[tuple[str, str, str], str] | None = None) -> None:
        """Initialize with a decision mapping.

        Args:
            decisions: (production_id, outlet_id, variant_slug) -> canonical slug.

        Raises:
            ValueError: If a canonical slug is itself a variant (chain).
        """
        self._decisions = dict(decisions or {})
        self._check_no_chains()

    @classmethod
    def from_file(cls, path: Path) -> "MergeDecisions":
        """Load decisions from a JSON file.

        Args:
            path: JSON decision file.

        Returns:
            Loaded decisions (empty if the file does not exist).
        """
        if not path.exists():
            logger.warning("Merge decisions file not found: %s", path)
            return cls()

        with open(path, encoding="utf-8") as f:
            entries = json.load(f)

        decisions: dict[tuple[str, str, str], str] = {}
        for entry in entries:
            key = (
                entry.get("production_id", WILDCARD),
                entry["outlet_id"],
                critic_slug(entry["variant_slug"]),
            )
            decisions[key] = critic_slug(entry["canonical_slug"])

        logger.info("Loaded %d merge decisions from %s", len(decisions), path)
        return cls(decisions)

    @classmethod
    def load(cls, path: str | Path | None = None) -> "MergeDecisions":
        """Load decisions from file when a path is configured."""
        return cls.from_file(Path(path)) if path else cls()

    def apply(self, production_id: str, outlet_id: str, slug: str) -> str:
        """Map a slug to its canonical form.

        Args:
            production_id: Production identifier.
            outlet_id: Canonical outlet id.
            slug: Critic slug.

        Returns:
            Canonical slug (the input when no decision applies).
        """
        specific = self._decisions.get((production_id, outlet_id, slug))
        if specific:
            return specific
        return self._decisions.get((WILDCARD, outlet_id, slug), slug)

    def __len__(self) -> int:
        return len(self._decisions)

    def _check_no_chains(self) -> None:
        """Reject decisions whose target is another decision's variant."""
        variants = {(outlet, slug) for (_, outlet, slug) in self._decisions}
        for (_, outlet, variant), canonical in self._decisions.items():
            if (outlet, canonical) in variants:
                raise ValueError(
                    f"Merge decision chain: {outlet}/{variant} -> {canonical} is also a variant"
                )


# =============================================================================
# RESOLUTION RESULT
# =============================================================================


@dataclass(frozen=True)
class Resolved:
    """Successfully resolved review identity.

    Attributes:
        key: Canonical identity key.
        outlet: Resolved outlet record.
        critic_name: Display critic name.
    """

    key: ReviewKey
    outlet: Outlet
    critic_name: str


# =============================================================================
# IDENTITY RESOLVER
# =============================================================================


class IdentityResolver:
    """Resolves raw (outlet, critic) pairs to canonical identity keys.

    Deterministic and idempotent: resolving a key's own
    (outlet_id, critic_slug) yields the same key.

    Attributes:
        registry: Outlet registry used for lookup.
        merges: Manual merge decisions.
    """

    def __init__(
        self,
        registry: OutletRegistry | None = None,
        merges: MergeDecisions | None = None,
    ) -> None:
        """Initialize resolver.

        Args:
            registry: Outlet registry (built-in default if None).
            merges: Manual merge decisions (none if None).
        """
        self.registry = registry or OutletRegistry.default()
        self.merges = merges or MergeDecisions()

    def resolve(
        self,
        production_id: str,
        outlet_raw: str,
        critic_raw: str | None,
    ) -> Resolved | UnknownOutlet:
        """Resolve a raw review identity.

        Args:
            production_id: Production identifier.
            outlet_raw: Outlet name as found in the source.
            critic_raw: Critic byline as found in the source.

        Returns:
            Resolved identity, or an UnknownOutlet error (returned, not
            raised) when the outlet is not in the registry.
        """
        outlet = self.registry.lookup(outlet_raw)
        if outlet is None:
            return UnknownOutlet(f"Unknown outlet '{outlet_raw}'", production_id)

        slug = self.merges.apply(production_id, outlet.id, critic_slug(critic_raw))
        name = (critic_raw or "").strip()
        return Resolved(
            key=ReviewKey(production_id, outlet.id, slug),
            outlet=outlet,
            critic_name=_BYLINE_PREFIX.sub("", name),
        )

    def resolve_or_raise(
        self,
        production_id: str,
        outlet_raw: str,
        critic_raw: str | None,
    ) -> Resolved:
        """Resolve an identity, raising UnknownOutlet on failure."""
        result = self.resolve(production_id, outlet_raw, critic_raw)
        if isinstance(result, UnknownOutlet):
            raise result
        return result
