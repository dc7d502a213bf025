"""Review identity resolution and candidate duplicate detection."""

from src.etl.identity.duplicates import DuplicateDetector, DuplicateScan
from src.etl.identity.resolver import IdentityResolver, MergeDecisions, Resolved, critic_slug

__all__ = [
    "DuplicateDetector",
    "DuplicateScan",
    "IdentityResolver",
    "MergeDecisions",
    "Resolved",
    "critic_slug",
]
