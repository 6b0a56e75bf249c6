"""
secondary.py - Updates for managers outside the system package database.

Flatpak and Snap follow their config flags; npm and pip are only touched
when the operator asks for it.
"""

from __future__ import annotations

from config import SessionConfig
from decisions import Decider
from probe import Capabilities
from session_log import SessionLog
from shared import CommandRunner


def update_other_managers(
    config: SessionConfig,
    caps: Capabilities,
    log: SessionLog,
    decider: Decider,
    runner: CommandRunner,
) -> dict[str, bool]:
    """Update secondary managers. Returns manager -> success for those run."""
    results: dict[str, bool] = {}

    if caps.has("flatpak") and config.update_flatpak:
        log.step("Updating Flatpak applications...")
        results["flatpak"] = runner.stream(["flatpak", "update", "-y"]).ok

    if caps.has("snap") and config.update_snap:
        log.step("Updating Snap applications...")
        results["snap"] = runner.stream(["sudo", "snap", "refresh"]).ok

    if caps.has("npm") and decider.decide("Update global NPM packages?", False):
        log.step("Updating NPM packages...")
        results["npm"] = runner.run(["npm", "update", "-g"]).ok

    if caps.has("pip") and decider.decide("Show outdated pip packages?", False):
        log.step("Checking pip packages...")
        listing = runner.query(["pip", "list", "--outdated"], timeout=120)
        log.output(listing.stdout or listing.stderr)
        results["pip"] = listing.ok

    for name, ok in results.items():
        if not ok:
            log.warn(f"{name} update failed")
    return results
