"""
verifier.py - Post-upgrade verification and cleanup.

Runs after the upgrade path whatever its outcome. Every step is
best-effort: a failing step logs a warning and the next one runs.
"""

from __future__ import annotations

import os
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from backup import BackupStore
from config import SessionConfig
from decisions import Decider
from probe import Capabilities
from session_log import SessionLog
from shared import CommandRunner, which

_JOURNAL_SIZE = re.compile(r"(\d+(?:\.\d+)?[KMGT])")


@dataclass
class VerificationReport:
    failed_services: list[str] = field(default_factory=list)
    orphans: list[str] = field(default_factory=list)
    orphan_ledger: Path | None = None
    pacnew: list[str] = field(default_factory=list)
    pacsave: list[str] = field(default_factory=list)
    database_ok: bool | None = None
    journal_size: str | None = None
    rebuild_needed: list[str] = field(default_factory=list)
    step_errors: list[str] = field(default_factory=list)


def find_config_leftovers(root: Path) -> tuple[list[str], list[str]]:
    """Return (.pacnew files, .pacsave files) below root, unreadable dirs skipped."""
    pacnew: list[str] = []
    pacsave: list[str] = []
    for dirpath, _dirnames, filenames in os.walk(root, onerror=lambda _e: None):
        for name in filenames:
            if name.endswith(".pacnew"):
                pacnew.append(os.path.join(dirpath, name))
            elif name.endswith(".pacsave"):
                pacsave.append(os.path.join(dirpath, name))
    return sorted(pacnew), sorted(pacsave)


class PostUpgradeVerifier:
    def __init__(
        self,
        config: SessionConfig,
        caps: Capabilities,
        log: SessionLog,
        decider: Decider,
        runner: CommandRunner,
        store: BackupStore,
        etc_dir: Path = Path("/etc"),
        has_tool: Callable[[str], bool] = which,
    ):
        self.config = config
        self.caps = caps
        self.log = log
        self.decider = decider
        self.runner = runner
        self.store = store
        self.etc_dir = etc_dir
        self.has_tool = has_tool

    def run(self) -> VerificationReport:
        report = VerificationReport()
        self.log.step("System cleanup...")

        steps: list[tuple[str, Callable[[VerificationReport], None]]] = [
            ("failed services", self.check_failed_services),
        ]
        if self.caps.has("pacman"):
            steps += [
                ("package cache", self.trim_cache),
                ("orphans", self.remove_orphans),
                ("config merges", self.check_config_leftovers),
                ("database", self.check_database),
            ]
        steps += [
            ("journal", self.trim_journal),
            ("rebuilds", self.check_rebuilds),
        ]

        for name, step in steps:
            try:
                step(report)
            except OSError as e:
                self.log.warn(f"Cleanup step '{name}' failed: {e}")
                report.step_errors.append(name)
        return report

    def check_failed_services(self, report: VerificationReport) -> None:
        self.log.info("Checking for failed systemd services...")
        result = self.runner.query(["systemctl", "--failed", "--no-legend", "--no-pager"], timeout=15)
        rows = (line.replace("●", " ").split() for line in result.lines)
        report.failed_services = [fields[0] for fields in rows if fields]
        if report.failed_services:
            self.log.warn(f"Found {len(report.failed_services)} failed service(s):")
            self.log.output(result.stdout)
        elif result.ok:
            self.log.success("No failed services")

    def trim_cache(self, report: VerificationReport) -> None:
        if not self.config.clean_cache and not self.decider.decide("Clean package cache?", True):
            return
        if self.has_tool("paccache"):
            self.log.info("Keeping last 3 versions of installed packages...")
            kept = self.runner.run(["sudo", "paccache", "-rk3"])
            self.log.info("Removing all cached versions of uninstalled packages...")
            removed = self.runner.run(["sudo", "paccache", "-ruk0"])
            ok = kept.ok and removed.ok
        else:
            ok = self.runner.run(["sudo", "pacman", "-Sc", "--noconfirm"]).ok
        if not ok:
            self.log.warn("Package cache cleanup reported errors")

    def remove_orphans(self, report: VerificationReport) -> None:
        if not self.decider.decide("Remove orphaned packages?", True):
            return
        # pacman -Qtdq exits 1 when there are no orphans
        orphans = self.runner.query(["pacman", "-Qtdq"], timeout=30).lines
        if not orphans:
            self.log.success("No orphaned packages found")
            return

        report.orphans = orphans
        self.log.items("Found orphaned packages:", orphans)
        if not self.config.dry_run:
            report.orphan_ledger = self.store.write_orphans(orphans)
            self.log.info(f"Orphan list saved to: {report.orphan_ledger}")
        if not self.runner.run(["sudo", "pacman", "-Rns", "--noconfirm", *orphans]).ok:
            self.log.warn("Orphan removal failed")

    def check_config_leftovers(self, report: VerificationReport) -> None:
        self.log.info("Checking for .pacnew and .pacsave files...")
        report.pacnew, report.pacsave = find_config_leftovers(self.etc_dir)

        if report.pacnew:
            self.log.warn("Found .pacnew files that need attention:")
            self.log.items(f"{len(report.pacnew)} pending merge(s):", report.pacnew)
            if not self.has_tool("pacdiff"):
                self.log.info("Install 'pacman-contrib' for pacdiff tool to easily merge configs")
            elif self.decider.decide("Run pacdiff to merge .pacnew files?", False):
                self.log.info("Running pacdiff (interactive)...")
                self.runner.attach(["sudo", "DIFFPROG=vimdiff", "pacdiff"])

        if report.pacsave:
            self.log.items("Found .pacsave files (old configs from removed packages):", report.pacsave)

    def check_database(self, report: VerificationReport) -> None:
        self.log.info("Verifying package database...")
        result = self.runner.query(["pacman", "-Dk"], timeout=120)
        report.database_ok = result.ok
        if result.ok:
            self.log.success("Package database is consistent")
        else:
            self.log.warn("Database check found issues")
            self.log.output(result.stdout or result.stderr)

    def trim_journal(self, report: VerificationReport) -> None:
        if not self.has_tool("journalctl"):
            return
        result = self.runner.query(["journalctl", "--disk-usage"], timeout=15)
        match = _JOURNAL_SIZE.search(result.stdout or result.stderr)
        if not match:
            return
        report.journal_size = match.group(1)
        self.log.info(f"Journal size: {report.journal_size}")
        if self.decider.decide("Limit journal to last 7 days?", False):
            self.runner.run(["sudo", "journalctl", "--vacuum-time=7d"])

    def check_rebuilds(self, report: VerificationReport) -> None:
        if not self.has_tool("checkrebuild"):
            return
        self.log.info("Checking for packages that need a rebuild...")
        result = self.runner.query(["checkrebuild"], timeout=300)
        report.rebuild_needed = result.lines
        if report.rebuild_needed:
            self.log.items("Packages linked against outdated libraries:", report.rebuild_needed)
        else:
            self.log.success("No rebuilds needed")
