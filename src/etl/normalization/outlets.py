"""Outlet registry: reference data for review outlets.

Maps outlet names, ids and aggregator aliases to canonical Outlet
records carrying tier, weight and rating format.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError
from unidecode import unidecode

from src.etl.aggregation.schemas import Outlet

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_LEADING_ARTICLE = re.compile(r"^the\s+")

DEFAULT_OUTLETS: tuple[dict[str, Any], ...] = (
    # Tier 1: major national publications and top culture sites
    {"id": "NYT", "name": "The New York Times", "tier": 1,
     "aliases": ("nytimes", "new-york-times", "ny times")},
    {"id": "NEWYORKER", "name": "The New Yorker", "tier": 1},
    {"id": "WASHPOST", "name": "The Washington Post", "tier": 1,
     "aliases": ("washpost", "washington-post")},
    {"id": "LATIMES", "name": "Los Angeles Times", "tier": 1,
     "aliases": ("la times", "los-angeles-times")},
    {"id": "WSJ", "name": "The Wall Street Journal", "tier": 1,
     "aliases": ("wall-street-journal",)},
    {"id": "AP", "name": "Associated Press", "tier": 1,
     "aliases": ("associated-press",)},
    {"id": "VARIETY", "name": "Variety", "tier": 1},
    {"id": "THR", "name": "The Hollywood Reporter", "tier": 1,
     "aliases": ("hollywood-reporter",)},
    {"id": "VULT", "name": "Vulture", "tier": 1,
     "aliases": ("vulture", "new york magazine")},
    {"id": "GUARDIAN", "name": "The Guardian", "tier": 1,
     "rating_format": "stars", "max_scale": 5},
    {"id": "TIMEOUTNY", "name": "Time Out New York", "tier": 1,
     "rating_format": "stars", "max_scale": 5,
     "aliases": ("timeout", "time out", "time-out-new-york")},
    {"id": "BWAYNEWS", "name": "Broadway News", "tier": 1,
     "aliases": ("broadwaynews",)},
    # Tier 2: regional papers, trades, theatre-specific outlets
    {"id": "CHTRIB", "name": "Chicago Tribune", "tier": 2,
     "aliases": ("chicagotribune",)},
    {"id": "USATODAY", "name": "USA Today", "tier": 2},
    {"id": "NYDN", "name": "New York Daily News", "tier": 2,
     "aliases": ("nydailynews", "daily news")},
    {"id": "NYP", "name": "New York Post", "tier": 2,
     "aliases": ("nypost", "ny-post")},
    {"id": "WRAP", "name": "The Wrap", "tier": 2, "aliases": ("thewrap",)},
    {"id": "EW", "name": "Entertainment Weekly", "tier": 2,
     "rating_format": "letter"},
    {"id": "INDIEWIRE", "name": "IndieWire", "tier": 2},
    {"id": "DEADLINE", "name": "Deadline", "tier": 2},
    {"id": "SLANT", "name": "Slant Magazine", "tier": 2,
     "rating_format": "stars", "max_scale": 4, "aliases": ("slant",)},
    {"id": "TDB", "name": "The Daily Beast", "tier": 2,
     "aliases": ("dailybeast",)},
    {"id": "OBSERVER", "name": "Observer", "tier": 2},
    {"id": "NYTHTR", "name": "New York Theater", "tier": 2,
     "aliases": ("nyt-theater", "newyorktheater.me")},
    {"id": "NYTG", "name": "New York Theatre Guide", "tier": 2},
    {"id": "NYSR", "name": "New York Stage Review", "tier": 2},
    {"id": "TMAN", "name": "TheaterMania", "tier": 2,
     "aliases": ("theater mania",)},
    {"id": "THLY", "name": "Theatrely", "tier": 2},
    # Tier 3: smaller outlets, blogs, niche sites
    {"id": "AMNY", "name": "amNewYork", "tier": 3,
     "aliases": ("am new york",)},
    {"id": "CITI", "name": "Cititour", "tier": 3},
    {"id": "CSCE", "name": "Culture Sauce", "tier": 3,
     "rating_format": "stars", "max_scale": 5},
    {"id": "FRONTMEZZ", "name": "Front Mezz Junkies", "tier": 3},
    {"id": "THERECS", "name": "The Recs", "tier": 3},
    {"id": "OMC", "name": "One Minute Critic", "tier": 3,
     "rating_format": "stars", "max_scale": 5},
    {"id": "BWW", "name": "BroadwayWorld", "tier": 3,
     "aliases": ("broadway world",)},
)
"""Built-in outlet registry (tier, format and aggregator aliases)."""


# =============================================================================
# LOOKUP KEY
# =============================================================================


def outlet_lookup_key(name: str) -> str:
    """Normalize an outlet name for lookup.

    Case, diacritics, punctuation, spacing and a leading 'The' are
    ignored, so 'The New York Times', 'new-york-times' and
    'NewYorkTimes' share a key.

    Args:
        name: Raw outlet name, id or alias.

    Returns:
        Lookup key (may be empty).
    """
    text = unidecode(name).lower().strip()
    text = _LEADING_ARTICLE.sub("", text)
    return _NON_ALNUM.sub("", text)


# =============================================================================
# OUTLET REGISTRY
# =============================================================================


class OutletRegistry:
    """Registry of known outlets with alias lookup.

    Attributes:
        outlets: Outlets by canonical id.
    """

    def __init__(self, outlets: list[Outlet]) -> None:
        """Initialize registry and build the alias index.

        Args:
            outlets: Outlet records.

        Raises:
            ValueError: If two outlets claim the same id or alias.
        """
        self.outlets: dict[str, Outlet] = {}
        self._index: dict[str, str] = {}
        for outlet in outlets:
            self._register(outlet)

    @classmethod
    def default(cls) -> "OutletRegistry":
        """Build the built-in registry."""
        return cls([Outlet.model_validate(entry) for entry in DEFAULT_OUTLETS])

    @classmethod
    def from_file(cls, path: Path) -> "OutletRegistry":
        """Load a registry from a JSON file.

        The file holds either a list of outlet objects or an object
        with an 'outlets' list.

        Args:
            path: JSON registry path.

        Returns:
            Loaded registry.

        Raises:
            ValueError: If the file is not a valid registry.
        """
        with open(path, encoding="utf-8") as f:
            data = json.load(f)

        entries = data.get("outlets", []) if isinstance(data, dict) else data
        try:
            outlets = [Outlet.model_validate(entry) for entry in entries]
        except ValidationError as e:
            raise ValueError(f"Invalid outlet registry {path}: {e}") from e

        logger.info("Loaded %d outlets from %s", len(outlets), path)
        return cls(outlets)

    @classmethod
    def load(cls, path: str | Path | None = None) -> "OutletRegistry":
        """Load the override file when given, else the built-in registry."""
        if path:
            return cls.from_file(Path(path))
        return cls.default()

    # =========================================================================
    # Public API
    # =========================================================================

    def lookup(self, name: str) -> Outlet | None:
        """Find an outlet by id, name or alias.

        Args:
            name: Raw outlet name.

        Returns:
            Matching Outlet or None.
        """
        key = outlet_lookup_key(name)
        if not key:
            return None
        outlet_id = self._index.get(key)
        return self.outlets[outlet_id] if outlet_id else None

    def get(self, outlet_id: str) -> Outlet | None:
        """Get an outlet by canonical id."""
        return self.outlets.get(outlet_id)

    def __len__(self) -> int:
        return len(self.outlets)

    def __contains__(self, outlet_id: object) -> bool:
        return outlet_id in self.outlets

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _register(self, outlet: Outlet) -> None:
        """Add outlet and its lookup keys to the index."""
        if outlet.id in self.outlets:
            raise ValueError(f"Duplicate outlet id: {outlet.id}")
        self.outlets[outlet.id] = outlet

        for name in (outlet.id, outlet.name, *outlet.aliases):
            key = outlet_lookup_key(name)
            if not key:
                continue
            existing = self._index.get(key)
            if existing and existing != outlet.id:
                raise ValueError(f"Alias '{name}' maps to both {existing} and {outlet.id}")
            self._index[key] = outlet.id
