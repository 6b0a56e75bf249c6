"""
maintenance.py - pacman housekeeping done before the upgrade.

- ParallelDownloads tuning in pacman.conf
- Keyring health check, reinitialisation and refresh
"""

from __future__ import annotations

import re
import shutil
from collections.abc import Callable
from pathlib import Path

from backup import BackupStore
from config import SessionConfig
from decisions import Decider
from probe import Capabilities
from session_log import SessionLog
from shared import PACMAN_CONF, CommandRunner, which

PARALLEL_DOWNLOADS = 5

_COMMENTED = re.compile(r"^#\s*ParallelDownloads\b", re.M)
_ENABLED = re.compile(r"^ParallelDownloads\s*=\s*(\d+)", re.M)


def parallel_downloads_state(text: str) -> tuple[str, int | None]:
    """Classify pacman.conf: ("enabled", n), ("commented", None) or ("missing", None)."""
    match = _ENABLED.search(text)
    if match:
        return "enabled", int(match.group(1))
    if _COMMENTED.search(text):
        return "commented", None
    return "missing", None


def enable_parallel_downloads(
    config: SessionConfig,
    caps: Capabilities,
    log: SessionLog,
    decider: Decider,
    runner: CommandRunner,
    store: BackupStore,
    pacman_conf: Path = PACMAN_CONF,
) -> bool:
    """Make sure pacman downloads in parallel. Returns True if the file was changed."""
    if not config.parallel_downloads or not caps.has("pacman"):
        return False

    log.step("Checking pacman parallel downloads...")
    try:
        text = pacman_conf.read_text()
    except OSError as e:
        log.warn(f"Cannot read {pacman_conf}: {e}")
        return False

    state, current = parallel_downloads_state(text)
    if state == "enabled":
        log.success(f"ParallelDownloads already enabled: {current} connections")
        return False

    if state == "commented":
        log.info("ParallelDownloads is commented in pacman.conf")
        if not decider.decide(f"Enable parallel downloads? ({PARALLEL_DOWNLOADS} simultaneous)", True):
            return False
        log.info("Enabling ParallelDownloads in pacman.conf...")
        expression = f"s/^#\\s*ParallelDownloads\\s*=.*/ParallelDownloads = {PARALLEL_DOWNLOADS}/"
    else:
        log.info("Adding ParallelDownloads to pacman.conf...")
        if not decider.decide(f"Add ParallelDownloads = {PARALLEL_DOWNLOADS} to pacman.conf?", True):
            return False
        expression = f"/^\\[options\\]/a ParallelDownloads = {PARALLEL_DOWNLOADS}"

    result = runner.run(["sudo", "sed", "-i", expression, str(pacman_conf)])
    if not result.ok:
        log.warn("Could not update pacman.conf")
        return False
    if not result.dry_run:
        try:
            shutil.copy2(pacman_conf, store.unique_path("pacman.conf.modified", ""))
        except OSError as e:
            log.debug(f"Could not copy modified pacman.conf: {e}")
    log.success(f"ParallelDownloads enabled ({PARALLEL_DOWNLOADS} connections)")
    return True


def refresh_keyrings(
    caps: Capabilities,
    log: SessionLog,
    decider: Decider,
    runner: CommandRunner,
    has_tool: Callable[[str], bool] = which,
) -> None:
    """Repair a corrupted keyring and optionally refresh keys."""
    if not caps.has("pacman"):
        return

    log.step("Refreshing package keyrings...")
    keyrings = ["archlinux", "manjaro"] if has_tool("pacman-mirrors") else ["archlinux"]

    if not runner.query(["sudo", "pacman-key", "--list-keys"], timeout=60).ok:
        log.error("Keyring appears corrupted!")
        if decider.decide("Reinitialize keyring? (May take several minutes)", True):
            for cmd in (
                ["sudo", "rm", "-rf", "/etc/pacman.d/gnupg"],
                ["sudo", "pacman-key", "--init"],
                ["sudo", "pacman-key", "--populate", *keyrings],
            ):
                if not runner.run(cmd).ok:
                    log.warn("Keyring reinitialisation failed")
                    break

    if not decider.decide("Refresh Arch/Manjaro keyrings?", False):
        return
    for cmd in (
        ["sudo", "pacman", "-Sy", *(f"{name}-keyring" for name in keyrings), "--noconfirm", "--needed"],
        ["sudo", "pacman-key", "--populate", *keyrings],
        ["sudo", "pacman-key", "--refresh-keys"],
    ):
        if not runner.run(cmd).ok:
            log.warn(f"Keyring step failed: {' '.join(cmd[1:3])}")
