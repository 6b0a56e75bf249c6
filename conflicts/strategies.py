"""
strategies.py - Per-package conflict resolution strategies.

Run in order by the resolver, stopping at the first one that resolves
the package:

1. EssentialGuard       refuse anything for system-critical packages
2. AurRebuild           rebuild a foreign (AUR) package with the helper
3. CompatibleVersion    archive lookup (no archive integration: n/a)
4. CacheDowngrade       install the second-newest cached build
5. ForcedRemoval        remove the package, last resort, ledgered
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from backup import BackupStore
from config import SessionConfig
from decisions import Decider
from probe import Capabilities
from session_log import SessionLog
from shared import PACMAN_CACHE, CommandRunner, version_key

# Removing any of these renders the host unbootable or unmanageable.
# No configuration flag or operator answer bypasses this list.
ESSENTIAL_PACKAGES: frozenset[str] = frozenset({
    "base",
    "base-devel",
    "linux",
    "systemd",
    "pacman",
    "bash",
    "glibc",
    "gcc-libs",
})


def is_essential(package: str) -> bool:
    return package in ESSENTIAL_PACKAGES


class Resolution(Enum):
    NOT_APPLICABLE = "not-applicable"
    DECLINED = "declined"
    FAILED = "failed"
    RESOLVED = "resolved"
    REMOVED = "removed"
    FATAL = "fatal"

    @property
    def final(self) -> bool:
        """Whether the cascade stops after this result."""
        return self in (Resolution.RESOLVED, Resolution.REMOVED, Resolution.FATAL)


@dataclass
class StrategyContext:
    """Everything a strategy may read or call."""

    config: SessionConfig
    caps: Capabilities
    log: SessionLog
    decider: Decider
    runner: CommandRunner
    store: BackupStore
    cache_dir: Path = PACMAN_CACHE


class Strategy(Protocol):
    name: str

    def apply(self, package: str, ctx: StrategyContext) -> Resolution: ...


class EssentialGuard:
    name = "essential-guard"

    def apply(self, package: str, ctx: StrategyContext) -> Resolution:
        if not is_essential(package):
            return Resolution.NOT_APPLICABLE
        ctx.log.error(f"CRITICAL: Cannot remove essential package '{package}'")
        ctx.log.error("This would break your system. Manual intervention required.")
        return Resolution.FATAL


class AurRebuild:
    name = "aur-rebuild"

    def apply(self, package: str, ctx: StrategyContext) -> Resolution:
        helper = ctx.caps.aur_helper
        if helper is None or not ctx.config.update_aur:
            return Resolution.NOT_APPLICABLE
        # pacman -Qm lists packages not found in any sync database
        if not ctx.runner.query(["pacman", "-Qm", package], timeout=10).ok:
            return Resolution.NOT_APPLICABLE
        if not ctx.decider.decide(f"Rebuild AUR package '{package}'?", True):
            return Resolution.DECLINED

        ctx.log.info("Attempting to rebuild from AUR...")
        result = ctx.runner.run([helper, "-S", "--rebuild", "--noconfirm", package])
        if not result.ok:
            ctx.log.warn(f"Rebuild of {package} failed")
            return Resolution.FAILED
        ctx.log.success(f"Successfully rebuilt {package}")
        return Resolution.RESOLVED


class CompatibleVersion:
    """Look up an older compatible build upstream.

    There is no archive integration yet, so this always reports that it
    does not apply and the cascade moves on to the local cache.
    """

    name = "compatible-version"

    def apply(self, package: str, ctx: StrategyContext) -> Resolution:
        ctx.log.info("Checking for compatible versions in repositories...")
        return Resolution.NOT_APPLICABLE


def _cached_parts(path: Path) -> tuple[str, str]:
    """Package name and ``[epoch:]pkgver-pkgrel`` of a cached file."""
    # <name>-<pkgver>-<pkgrel>-<arch>.pkg.tar.<ext>
    stem = path.name.split(".pkg.tar", 1)[0]
    parts = stem.rsplit("-", 3)
    if len(parts) != 4:
        return "", ""
    return parts[0], f"{parts[1]}-{parts[2]}"


def cached_builds(package: str, cache_dir: Path) -> list[Path]:
    """Cached package files for exactly ``package``, oldest version first."""
    try:
        candidates = list(cache_dir.glob(f"{package}-*.pkg.tar.*"))
    except OSError:
        return []
    builds = [
        path for path in candidates
        if not path.name.endswith(".sig") and _cached_parts(path)[0] == package
    ]
    return sorted(builds, key=lambda path: version_key(_cached_parts(path)[1]))


class CacheDowngrade:
    name = "cache-downgrade"

    def apply(self, package: str, ctx: StrategyContext) -> Resolution:
        ctx.log.info(f"Searching package cache for: {package}")
        builds = cached_builds(package, ctx.cache_dir)
        if not builds:
            ctx.log.warn("No cached versions found")
            return Resolution.NOT_APPLICABLE

        ctx.log.info(f"Found {len(builds)} cached version(s)")
        if len(builds) < 2:
            return Resolution.NOT_APPLICABLE

        previous = builds[-2]
        if not ctx.decider.decide(f"Downgrade {package} to previous cached version ({previous.name})?", True):
            return Resolution.DECLINED

        result = ctx.runner.run(["sudo", "pacman", "-U", "--noconfirm", str(previous)])
        if not result.ok:
            ctx.log.warn(f"Downgrade of {package} failed")
            return Resolution.FAILED
        ctx.log.success(f"Downgraded {package} to {previous.name}")
        return Resolution.RESOLVED


class ForcedRemoval:
    name = "forced-removal"

    def reverse_dependencies(self, package: str, ctx: StrategyContext) -> list[str]:
        result = ctx.runner.query(["pactree", "-r", "-u", package], timeout=30)
        if not result.ok:
            return []
        # First line is the package itself
        return [line.strip() for line in result.lines[1:]]

    def apply(self, package: str, ctx: StrategyContext) -> Resolution:
        ctx.log.warn(f"Could not automatically resolve conflict for {package}")
        if not ctx.config.auto_remove_conflicts and not ctx.decider.decide(
            f"Remove '{package}' to resolve conflict? (LAST RESORT)", False
        ):
            ctx.log.info(f"Skipping removal of {package}")
            return Resolution.DECLINED

        dependents = self.reverse_dependencies(package, ctx)
        if dependents:
            limit = ctx.config.max_blast_radius
            if limit is not None and len(dependents) > limit:
                ctx.log.warn(
                    f"{len(dependents)} packages depend on {package} (limit {limit}); not removing"
                )
                return Resolution.DECLINED
            ctx.log.items(f"Packages that depend on {package}:", dependents)
            if not ctx.decider.decide("These packages will also be affected. Continue?", False):
                ctx.log.info(f"Skipping removal of {package}")
                return Resolution.DECLINED

        ctx.log.warn(f"Removing package: {package}")
        result = ctx.runner.run(["sudo", "pacman", "-Rdd", "--noconfirm", package])
        if not result.ok:
            ctx.log.error(f"Removal of {package} failed")
            return Resolution.FAILED
        if not result.dry_run:
            ctx.store.record_removed(package)
            ctx.log.info("Package logged for potential reinstallation")
        return Resolution.REMOVED


def default_strategies() -> list[Strategy]:
    return [EssentialGuard(), AurRebuild(), CompatibleVersion(), CacheDowngrade(), ForcedRemoval()]
