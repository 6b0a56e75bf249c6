"""
executor.py - Runs the system upgrade with the highest-priority manager.

Priority: pamac, yay, paru, pacman. Up to three attempts with a fixed
five second delay; the last failure is handed to the conflict resolver
as a conflict-failure carrying the captured stderr.
"""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from tenacity import RetryCallState

from config import SessionConfig
from decisions import Decider
from probe import Capabilities
from retry_utils import result_retrying
from session_log import SessionLog
from shared import CommandResult, CommandRunner, format_command

MANAGER_PRIORITY: tuple[str, ...] = ("pamac", "yay", "paru", "pacman")

UPGRADE_COMMANDS: dict[str, list[str]] = {
    "pamac": ["sudo", "pamac", "upgrade", "--no-confirm"],
    "yay": ["yay", "-Syu", "--noconfirm"],
    "paru": ["paru", "-Syu", "--noconfirm"],
    "pacman": ["sudo", "pacman", "-Syu", "--noconfirm"],
}

OVERWRITE_COMMAND = ["sudo", "pacman", "-Syu", "--overwrite", "*", "--noconfirm"]

# Exit status of a process that could not be started (see shared.run_command)
NOT_STARTED = 127

_UPGRADED = re.compile(r"\b(?:upgrading|installing|reinstalling)\s+([a-z0-9@_+][a-z0-9@._+-]*?)(?:\.\.\.|\s|$)", re.I)
_KERNEL = re.compile(r"^linux\d*(?:-(?:lts|zen|hardened|rt|rt-lts))?$")
_INIT = frozenset({"systemd"})
_CORE_LIBS = frozenset({"glibc", "gcc-libs"})


class Outcome(Enum):
    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient-failure"
    CONFLICT_FAILURE = "conflict-failure"


@dataclass(frozen=True)
class AttemptResult:
    """Result of one upgrade call (all of its attempts)."""

    outcome: Outcome
    error_text: str = ""
    output: str = ""
    attempts: int = 0
    command: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS


def upgraded_packages(output: str) -> list[str]:
    """Package names pacman/pamac reported as upgraded or installed."""
    return sorted({match.group(1).lower() for match in _UPGRADED.finditer(output)})


def critical_markers(output: str) -> dict[str, list[str]]:
    """Group upgraded core packages by what the operator should do next."""
    names = upgraded_packages(output)
    return {
        "required": [n for n in names if _KERNEL.match(n)],
        "recommended": [n for n in names if n in _INIT],
        "services": [n for n in names if n in _CORE_LIBS],
    }


class UpgradeExecutor:
    MAX_ATTEMPTS = 3
    RETRY_DELAY = 5

    def __init__(
        self,
        config: SessionConfig,
        caps: Capabilities,
        log: SessionLog,
        decider: Decider,
        runner: CommandRunner,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.caps = caps
        self.log = log
        self.decider = decider
        self.runner = runner
        self.sleep = sleep
        self.invocations = 0

    def select_manager(self) -> str | None:
        for name in MANAGER_PRIORITY:
            if not self.caps.has(name):
                continue
            if name in ("yay", "paru") and not self.config.update_aur:
                continue
            return name
        return None

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        self.log.info(f"Retrying in {self.RETRY_DELAY} seconds...")

    def upgrade(self) -> AttemptResult:
        """Run the upgrade, retrying failed attempts."""
        self.log.step("Performing system upgrade...")
        manager = self.select_manager()
        if manager is None:
            self.log.warn("No system package manager available for the upgrade")
            return AttemptResult(Outcome.TRANSIENT_FAILURE, "no system package manager")

        cmd = UPGRADE_COMMANDS[manager]
        self.log.info(f"Using {manager} for system upgrade...")
        attempts = 0

        def attempt() -> CommandResult:
            nonlocal attempts
            attempts += 1
            self.invocations += 1
            result = self.runner.stream(cmd)
            if not result.ok:
                self.log.warn(f"Upgrade attempt {attempts} failed")
            return result

        retrying = result_retrying(
            attempts=self.MAX_ATTEMPTS,
            delay=self.RETRY_DELAY,
            failed=lambda result: not result.ok,
            sleep=self.sleep,
            before_sleep=self._before_sleep,
        )
        result: CommandResult = retrying(attempt)

        if result.ok:
            self.log.success("System upgrade completed successfully")
            if not result.dry_run:
                self.check_critical_packages(result.stdout)
            return AttemptResult(Outcome.SUCCESS, result.stderr, result.stdout, attempts, tuple(cmd))

        self.log.error(f"Upgrade failed after {attempts} attempts")
        outcome = Outcome.TRANSIENT_FAILURE if result.returncode == NOT_STARTED else Outcome.CONFLICT_FAILURE
        return AttemptResult(outcome, result.stderr, result.stdout, attempts, tuple(cmd))

    def upgrade_with_overwrite(self) -> AttemptResult:
        """Single upgrade attempt that overwrites conflicting files."""
        self.log.info("Re-running upgrade with --overwrite...")
        self.invocations += 1
        result = self.runner.stream(OVERWRITE_COMMAND)
        if result.ok:
            self.log.success("Upgrade with --overwrite completed")
            return AttemptResult(Outcome.SUCCESS, result.stderr, result.stdout, 1, tuple(OVERWRITE_COMMAND))
        self.log.error(f"Upgrade with --overwrite failed: {format_command(OVERWRITE_COMMAND)}")
        return AttemptResult(Outcome.CONFLICT_FAILURE, result.stderr, result.stdout, 1, tuple(OVERWRITE_COMMAND))

    def check_critical_packages(self, output: str) -> dict[str, list[str]]:
        """Warn about kernel / init / core library updates; offer a reboot."""
        self.log.info("Verifying critical system components...")
        markers = critical_markers(output)

        for name in markers["required"]:
            self.log.warn(f"Kernel updated ({name}) - REBOOT REQUIRED")
        for name in markers["recommended"]:
            self.log.warn(f"{name} updated - REBOOT RECOMMENDED")
        for name in markers["services"]:
            self.log.warn(f"{name} updated - Consider restarting active services")

        if markers["required"] or markers["recommended"]:
            changed = ", ".join(markers["required"] + markers["recommended"])
            self.log.printer.banner("SYSTEM REBOOT REQUIRED", [f"Updated: {changed}"], style="error")
            if self.decider.decide("Reboot now?", False):
                self.log.info("Rebooting system...")
                self.runner.run(["sudo", "systemctl", "reboot"])
        return markers
