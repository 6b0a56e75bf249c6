"""
probe.py - Environment probe.

Detects which package managers and snapshot tools are installed and
computes the immutable Capabilities value every other component reads.
"""

from __future__ import annotations

import shutil
from collections.abc import Callable
from dataclasses import dataclass

from errors import NoPackageManagerError
from session_log import SessionLog
from shared import run_command

# Probe order is also display order
PACKAGE_MANAGERS: tuple[str, ...] = ("pacman", "pamac", "yay", "paru", "flatpak", "snap", "npm", "pip")

# First found wins
SNAPSHOT_TOOLS: tuple[str, ...] = ("timeshift", "snapper")

AUR_HELPERS: tuple[str, ...] = ("yay", "paru")


@dataclass(frozen=True)
class Capabilities:
    """Detected tools. Built once by the probe, read-only afterwards."""

    managers: frozenset[str]
    snapshot_tools: frozenset[str] = frozenset()
    snapshot_tool: str | None = None
    root_fs: str | None = None

    def has(self, name: str) -> bool:
        return name in self.managers

    @property
    def aur_helper(self) -> str | None:
        """First AUR-capable helper present, in priority order."""
        for helper in AUR_HELPERS:
            if helper in self.managers:
                return helper
        return None

    @property
    def ordered_managers(self) -> list[str]:
        return [name for name in PACKAGE_MANAGERS if name in self.managers]


def _root_filesystem() -> str | None:
    result = run_command(["findmnt", "-n", "-o", "FSTYPE", "/"], timeout=5)
    if not result.ok:
        return None
    return result.stdout.strip() or None


def detect_capabilities(
    which: Callable[[str], str | None] = shutil.which,
    root_fs: Callable[[], str | None] = _root_filesystem,
) -> Capabilities:
    """Detect installed tools.

    Raises:
        NoPackageManagerError: If no package manager at all is present.
    """
    managers = frozenset(name for name in PACKAGE_MANAGERS if which(name))
    if not managers:
        raise NoPackageManagerError()

    tools = frozenset(name for name in SNAPSHOT_TOOLS if which(name))
    active = next((name for name in SNAPSHOT_TOOLS if name in tools), None)

    return Capabilities(
        managers=managers,
        snapshot_tools=tools,
        snapshot_tool=active,
        root_fs=root_fs() if active else None,
    )


def report_capabilities(caps: Capabilities, log: SessionLog) -> None:
    """Log what the probe found."""
    for name in caps.ordered_managers:
        log.success(f"Found: {name}")

    if caps.snapshot_tool is None:
        log.warn("No snapshot tool detected (timeshift/snapper)")
        return

    log.success(f"Snapshot tool: {caps.snapshot_tool}")
    if caps.root_fs == "btrfs":
        log.success("BTRFS filesystem detected - snapshots available")
    elif caps.root_fs:
        log.warn(f"Root filesystem is {caps.root_fs} (not BTRFS)")
        if caps.snapshot_tool == "snapper":
            log.warn("Snapper works best with BTRFS")
