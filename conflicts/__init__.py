"""
conflicts - Conflict detection and resolution after a failed upgrade.

- parser: error text -> conflicting package names
- strategies: the per-package resolution cascade
- resolver: runs the cascade and the single follow-up upgrade
"""

from .parser import extract_packages, has_file_conflict, required_libraries
from .resolver import ConflictOutcome, ConflictRecord, ConflictResolver, ResolutionReport
from .strategies import (
    ESSENTIAL_PACKAGES,
    Resolution,
    StrategyContext,
    cached_builds,
    default_strategies,
    is_essential,
)

__all__ = [
    "ESSENTIAL_PACKAGES",
    "ConflictOutcome",
    "ConflictRecord",
    "ConflictResolver",
    "Resolution",
    "ResolutionReport",
    "StrategyContext",
    "cached_builds",
    "default_strategies",
    "extract_packages",
    "has_file_conflict",
    "is_essential",
    "required_libraries",
]
