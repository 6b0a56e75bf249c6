"""
commands.py - The upgrade command.

cmd_upgrade runs one orchestration pass:

    probe -> preflight -> snapshot -> upgrade -> (conflicts -> upgrade)
          -> post snapshot -> secondary managers -> cleanup -> summary

Fatal errors from any component are caught here, logged, notified and
turned into exit status 1.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from backup import BackupStore
from config import SessionConfig
from conflicts import ConflictResolver, StrategyContext
from decisions import Decider, make_decider
from errors import EssentialPackageError, FatalError
from executor import UpgradeExecutor
from maintenance import enable_parallel_downloads, refresh_keyrings
from notify import Notifier
from preflight import HostPaths, PreflightChecker, count_pending_updates
from probe import Capabilities, detect_capabilities, report_capabilities
from secondary import update_other_managers
from session_log import SessionLog, session_log_path
from shared import PACMAN_CACHE, PACMAN_CONF, CommandRunner, which
from snapshot import SnapshotCoordinator, SnapshotRecord
from upgrade_printer import UpgradePrinter
from verifier import PostUpgradeVerifier


@dataclass
class HostEnvironment:
    """Host access points; replaced wholesale in tests."""

    detect: Callable[[], Capabilities] = detect_capabilities
    runner_factory: Callable[[SessionLog, bool], CommandRunner] = CommandRunner
    paths: HostPaths = field(default_factory=HostPaths)
    pacman_conf: Path = PACMAN_CONF
    cache_dir: Path = PACMAN_CACHE
    etc_dir: Path = Path("/etc")
    has_tool: Callable[[str], bool] = which
    sleep: Callable[[float], None] = time.sleep
    env: Mapping[str, str] | None = None


@dataclass
class UpgradeSession:
    """Per-run collaborators shared by every phase."""

    config: SessionConfig
    printer: UpgradePrinter
    log: SessionLog
    decider: Decider
    runner: CommandRunner
    notifier: Notifier
    store: BackupStore
    host: HostEnvironment
    caps: Capabilities | None = None
    snapshot: SnapshotRecord | None = None
    removed: list[str] = field(default_factory=list)


def cmd_upgrade(
    config: SessionConfig,
    printer: UpgradePrinter,
    host: HostEnvironment | None = None,
    verbose: bool = False,
) -> int:
    """Run a full system upgrade. Returns the process exit status."""
    host = host or HostEnvironment()
    log_file = session_log_path(config.log_dir)
    try:
        log = SessionLog(printer, log_file, verbose=verbose)
    except OSError as e:
        printer.error(f"Cannot create log file {log_file}: {e}")
        return 1

    with log:
        session = UpgradeSession(
            config=config,
            printer=printer,
            log=log,
            decider=make_decider(config.interactive, log),
            runner=host.runner_factory(log, config.dry_run),
            notifier=Notifier(log, enabled=config.notifications, env=host.env, has_tool=host.has_tool),
            store=BackupStore(config.backup_dir),
            host=host,
        )
        printer.session_header(
            config.mode_label,
            config.dry_run,
            str(log_file),
            str(config.config_path) if config.config_path else None,
        )
        log.info("Starting system upgrade process...")
        log.info(f"Mode: {config.mode_label}")
        if config.dry_run:
            log.warn("DRY RUN MODE - No changes will be made")

        try:
            return _run_session(session)
        except FatalError as e:
            log.error(str(e))
            if isinstance(e, EssentialPackageError):
                log.error("Manual intervention required before upgrading again.")
            log.info(f"Review the log file for details: {log_file}")
            session.notifier.send("System Upgrade Failed", str(e))
            return 1


def _run_session(session: UpgradeSession) -> int:
    config, log, decider, runner, host = (
        session.config,
        session.log,
        session.decider,
        session.runner,
        session.host,
    )

    log.step("Detecting package managers...")
    caps = host.detect()
    session.caps = caps
    report_capabilities(caps, log)

    checker = PreflightChecker(config, caps, log, decider, runner, paths=host.paths, has_tool=host.has_tool)
    checker.run_all()

    coordinator = SnapshotCoordinator(
        config, caps, log, decider, runner, session.store, pacman_conf=host.pacman_conf
    )
    session.snapshot = coordinator.prepare()

    enable_parallel_downloads(config, caps, log, decider, runner, session.store, host.pacman_conf)

    log.step("Checking for available updates...")
    pending = checker.pending or count_pending_updates(caps, config, runner, host.has_tool)
    session.printer.pending_updates(pending.rows())
    if pending.up_to_date:
        log.success("System is up to date!")
        session.notifier.send("System Up To Date", "No updates available.")
        return 0

    if not decider.decide("Proceed with system upgrade?", True):
        log.info("Upgrade cancelled by user")
        return 0

    refresh_keyrings(caps, log, decider, runner, host.has_tool)

    upgraded = _upgrade_path(session, caps)

    coordinator.create_post_snapshot(session.snapshot)
    update_other_managers(config, caps, log, decider, runner)
    PostUpgradeVerifier(
        config, caps, log, decider, runner, session.store,
        etc_dir=host.etc_dir, has_tool=host.has_tool,
    ).run()

    _show_summary(session, upgraded)
    return 0 if upgraded else 1


def _upgrade_path(session: UpgradeSession, caps: Capabilities) -> bool:
    """Upgrade, and on failure resolve conflicts and retry once."""
    executor = UpgradeExecutor(
        session.config, caps, session.log, session.decider, session.runner, sleep=session.host.sleep
    )
    if executor.select_manager() is None:
        session.log.info("No system package manager to upgrade with, skipping system upgrade")
        return True

    result = executor.upgrade()
    if result.ok:
        return True

    ctx = StrategyContext(
        session.config,
        caps,
        session.log,
        session.decider,
        session.runner,
        session.store,
        cache_dir=session.host.cache_dir,
    )
    report = ConflictResolver(ctx, executor).resolve(result)
    session.removed = report.removed
    if not report.succeeded:
        session.log.error(f"System upgrade failed ({report.message})")
    return report.succeeded


def _show_summary(session: UpgradeSession, succeeded: bool) -> None:
    log, store, printer = session.log, session.store, session.printer

    rows = [
        ("Log file", str(log.log_file)),
        ("Backup dir", str(store.root)),
    ]
    ledger = store.removed_packages()
    if ledger:
        rows.append(("Removed packages", f"{len(ledger)} (see {store.removed_ledger.name})"))
    record = session.snapshot
    if record is not None and record.pre_id:
        rows.append(("Snapper snapshot", f"#{record.pre_id}"))
    elif record is not None:
        rows.append(("Snapshot", record.description))
    rows.append(("Warnings", str(log.counts["warning"])))

    printer.removed_packages(session.removed, str(store.removed_ledger))
    printer.summary(rows, succeeded)

    if session.config.dry_run:
        log.info(f"Dry run complete - {len(session.runner.skipped)} command(s) not executed")
    log.info(f"Review the log file for details: {log.log_file}")

    if succeeded:
        log.success("System upgrade completed!")
        session.notifier.send(
            "System Upgrade Complete",
            "All packages updated successfully. Check log for details.",
        )
    else:
        session.notifier.send(
            "System Upgrade Failed",
            f"The upgrade did not complete. See {log.log_file}",
        )
