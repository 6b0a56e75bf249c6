"""
snapshot.py - Recovery points taken before the system is mutated.

The coordinator writes package lists, archives the pacman database,
copies pacman configuration, delegates to the active filesystem snapshot
tool, and generates a restore script that replays the explicit package
list without any snapshot tool.

Two tool families are supported:
- timeshift: one snapshot, identified by its description
- snapper: paired pre/post snapshots; the post call must reference the
  pre snapshot number recorded earlier in the same run
"""

from __future__ import annotations

import shutil
import stat
import tarfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Protocol

from backup import BackupStore
from config import SessionConfig
from decisions import Decider
from errors import OperatorAbort
from probe import Capabilities
from session_log import SessionLog
from shared import (
    MIRRORLIST,
    PACMAN_CONF,
    PACMAN_DB,
    PACMAN_HOOKS,
    CommandRunner,
    dashed_timestamp,
)

LATEST_SNAPSHOT_MARKER = "latest_snapshot.txt"
SNAPPER_PRE_MARKER = "snapper_pre_number.txt"
RESTORE_SCRIPT = "restore_packages.sh"

RESTORE_SCRIPT_BODY = """#!/bin/bash
# Generated by sysup: reinstall the newest explicit package list
cd "$(dirname "$0")" || exit 1
LATEST_LIST=$(ls -t pkglist_[0-9]*.txt 2>/dev/null | head -n1)
if [[ -z "$LATEST_LIST" ]]; then
    echo "No package list found" >&2
    exit 1
fi
echo "Restoring packages from: $LATEST_LIST"
sudo pacman -S --needed - < "$LATEST_LIST"
"""


@dataclass(frozen=True)
class SnapshotRecord:
    """A recovery point. ``pre_id`` is set for paired tools only."""

    tool: str
    description: str
    pre_id: str | None = None
    created_at: datetime = field(default_factory=datetime.now)


# ═══════════════════════════════════════════════════════════════════════════════
# Snapshot Tools
# ═══════════════════════════════════════════════════════════════════════════════


class SnapshotTool(Protocol):
    name: str
    paired: bool

    def ready(self) -> bool: ...

    def create(self, description: str) -> SnapshotRecord | None: ...


def _last_number(text: str) -> str | None:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if lines and lines[-1].isdigit():
        return lines[-1]
    return None


class TimeshiftTool:
    name = "timeshift"
    paired = False

    def __init__(
        self,
        runner: CommandRunner,
        log: SessionLog,
        config_file: Path = Path("/etc/timeshift/timeshift.json"),
    ):
        self.runner = runner
        self.log = log
        self.config_file = config_file

    def _cron_running(self) -> bool:
        return any(
            self.runner.query(["systemctl", "is-active", "--quiet", unit], timeout=5).ok
            for unit in ("cronie", "crond")
        )

    def ready(self) -> bool:
        if not self._cron_running():
            self.log.warn("Cron service not running - Timeshift may not work properly")
            return False
        if not self.config_file.exists():
            self.log.warn("Timeshift not configured. Run 'sudo timeshift --create' manually")
            return False
        return True

    def create(self, description: str) -> SnapshotRecord | None:
        self.log.info("Creating Timeshift snapshot...")
        result = self.runner.stream(
            ["sudo", "timeshift", "--create", "--comments", description, "--scripted"]
        )
        if not result.ok:
            return None
        return SnapshotRecord(self.name, description)


class SnapperTool:
    name = "snapper"
    paired = True

    def __init__(self, runner: CommandRunner, log: SessionLog):
        self.runner = runner
        self.log = log

    def ready(self) -> bool:
        if not self.runner.query(["sudo", "snapper", "list"], timeout=30).ok:
            self.log.warn("Snapper not configured. Run 'sudo snapper -c root create-config /' first")
            return False
        return True

    def create(self, description: str) -> SnapshotRecord | None:
        self.log.info("Creating Snapper snapshot...")
        result = self.runner.run([
            "sudo", "snapper", "create",
            "--type", "pre",
            "--cleanup-algorithm", "number",
            "--print-number",
            "--description", description,
        ])
        if result.dry_run:
            return SnapshotRecord(self.name, description)
        pre_id = _last_number(f"{result.stdout}\n{result.stderr}")
        if not result.ok or pre_id is None:
            return None
        return SnapshotRecord(self.name, description, pre_id=pre_id)

    def create_post(self, pre_id: str, description: str) -> str | None:
        result = self.runner.run([
            "sudo", "snapper", "create",
            "--type", "post",
            "--pre-number", pre_id,
            "--print-number",
            "--description", description,
        ])
        if not result.ok:
            return None
        return _last_number(f"{result.stdout}\n{result.stderr}")


def make_snapshot_tool(name: str | None, runner: CommandRunner, log: SessionLog) -> SnapshotTool | None:
    if name == "timeshift":
        return TimeshiftTool(runner, log)
    if name == "snapper":
        return SnapperTool(runner, log)
    return None


# ═══════════════════════════════════════════════════════════════════════════════
# Coordinator
# ═══════════════════════════════════════════════════════════════════════════════


class SnapshotCoordinator:
    def __init__(
        self,
        config: SessionConfig,
        caps: Capabilities,
        log: SessionLog,
        decider: Decider,
        runner: CommandRunner,
        store: BackupStore,
        tool: SnapshotTool | None = None,
        db_dir: Path = PACMAN_DB,
        pacman_conf: Path = PACMAN_CONF,
        mirrorlist: Path = MIRRORLIST,
        hooks_dir: Path = PACMAN_HOOKS,
    ):
        self.config = config
        self.caps = caps
        self.log = log
        self.decider = decider
        self.runner = runner
        self.store = store
        self.tool = tool if tool is not None else make_snapshot_tool(caps.snapshot_tool, runner, log)
        self.db_dir = db_dir
        self.pacman_conf = pacman_conf
        self.mirrorlist = mirrorlist
        self.hooks_dir = hooks_dir

    def prepare(self) -> SnapshotRecord | None:
        """Capture the recovery point.

        Raises:
            BackupDirError: If the backup directory is not writable.
            OperatorAbort: If snapshot creation failed and the operator
                declined to continue unprotected.
        """
        self.store.ensure_writable()

        if self.config.create_backup:
            self.log.step("Creating system snapshot...")
            self.save_package_lists()
            self.archive_database()
            if self.decider.decide("Backup /etc/pacman.conf and mirrorlist?", True):
                self.backup_configs()

        record = None
        if self.config.create_snapshot and self.tool is not None:
            record = self.create_filesystem_snapshot()
        elif self.tool is None:
            self.log.info("No snapshot tool configured, skipping filesystem snapshot")

        if self.config.create_backup:
            self.write_restore_script()
        return record

    def save_package_lists(self) -> None:
        if not self.caps.has("pacman"):
            return
        explicit = self.runner.query(["pacman", "-Qqe"], timeout=60)
        full = self.runner.query(["pacman", "-Q"], timeout=60)
        if not explicit.ok:
            self.log.warn("Could not list explicitly installed packages")
            return
        path = self.store.write_artifact("pkglist", explicit.stdout)
        self.store.write_artifact("pkglist_full", full.stdout)
        self.log.success(f"Package list saved to: {path}")

    def archive_database(self) -> Path | None:
        if not self.caps.has("pacman"):
            return None
        self.log.info("Backing up pacman database...")
        if self.config.dry_run:
            self.log.warn("DRY RUN - database archive skipped")
            return None

        target = self.store.unique_path("pacman_db", ".tar.gz")
        try:
            with tarfile.open(target, "w:gz") as archive:
                archive.add(self.db_dir, arcname=self.db_dir.name)
        except (OSError, tarfile.TarError) as e:
            self.log.warn(f"Could not backup pacman database: {e}")
            target.unlink(missing_ok=True)
            return None
        self.log.debug(f"Database archived to {target}")
        return target

    def backup_configs(self) -> None:
        copied = 0
        for source, stem in ((self.pacman_conf, "pacman.conf.backup"), (self.mirrorlist, "mirrorlist.backup")):
            try:
                shutil.copy2(source, self.store.unique_path(stem, ""))
                copied += 1
            except OSError as e:
                self.log.debug(f"Skipped {source}: {e}")

        if self.hooks_dir.is_dir():
            try:
                shutil.copytree(self.hooks_dir, self.store.unique_path("hooks_backup", ""))
                copied += 1
            except (OSError, shutil.Error) as e:
                self.log.debug(f"Skipped {self.hooks_dir}: {e}")

        if copied:
            self.log.success("Configuration files backed up")
        else:
            self.log.warn("No configuration files could be backed up")

    def write_restore_script(self) -> Path:
        path = self.store.root / RESTORE_SCRIPT
        path.write_text(RESTORE_SCRIPT_BODY)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        self.log.info(f"Created restore script: {path}")
        return path

    def create_filesystem_snapshot(self) -> SnapshotRecord | None:
        tool = self.tool
        assert tool is not None
        self.log.step(f"Creating filesystem snapshot with {tool.name}...")

        if not tool.ready():
            return None
        if not self.decider.decide(f"Create {tool.name.capitalize()} snapshot? (Recommended)", True):
            return None

        description = f"pre-upgrade-{dashed_timestamp()}"
        record = tool.create(description)
        if record is None:
            self.log.error(f"Failed to create {tool.name.capitalize()} snapshot")
            if not self.decider.decide("Continue without snapshot?", False):
                raise OperatorAbort("Snapshot creation failed and continuing unprotected was declined")
            return None

        if record.pre_id is not None:
            self.log.success(f"Snapper pre-snapshot created: #{record.pre_id}")
            self.store.write_marker(SNAPPER_PRE_MARKER, record.pre_id)
        else:
            self.log.success(f"{tool.name.capitalize()} snapshot created: {description}")
            if not tool.paired:
                self.store.write_marker(LATEST_SNAPSHOT_MARKER, description)
        return record

    def create_post_snapshot(self, record: SnapshotRecord | None) -> str | None:
        """Create the matching post snapshot for a paired pre snapshot."""
        if record is None or record.pre_id is None or not isinstance(self.tool, SnapperTool):
            return None

        self.log.step("Creating Snapper post-snapshot...")
        post_id = self.tool.create_post(record.pre_id, f"post-upgrade-{dashed_timestamp()}")
        if post_id is None:
            self.log.warn("Failed to create Snapper post-snapshot")
            return None
        self.log.success(f"Snapper post-snapshot created: #{post_id}")
        self.log.info(f"To rollback: sudo snapper rollback {record.pre_id}")
        return post_id
