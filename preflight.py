"""
preflight.py - Safety checks run before anything is mutated.

Checks, in order:
1. Partial-upgrade detection (unresolved library links)
2. Mirror / package-index freshness
3. Resources: battery, network reachability, latency, memory
4. Disk space, including an estimate from the pending update count

Each check either passes, warns, asks the operator for an override, or
raises a fatal error. The only side effects are the mitigations the
operator approves (emergency upgrade, mirror refresh, cache clean); each
is retried at most once.
"""

from __future__ import annotations

import shutil
import time
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path

from config import SessionConfig
from decisions import Decider
from errors import (
    BatteryTooLowError,
    InsufficientDiskSpaceError,
    NetworkUnavailableError,
    OperatorAbort,
)
from probe import Capabilities
from retry_utils import result_retrying
from session_log import SessionLog
from shared import CommandResult, CommandRunner, which

MIB = 1024 * 1024


class Severity(Enum):
    ADVISORY = "advisory"
    OVERRIDE = "override"
    FATAL = "fatal"


@dataclass
class PreflightResult:
    """Outcome of one preflight check."""

    name: str
    passed: bool
    message: str = ""
    severity: Severity = Severity.ADVISORY


@dataclass(frozen=True)
class HostPaths:
    """Filesystem locations read by the checks."""

    root: Path = Path("/")
    bin_dir: Path = Path("/usr/bin")
    power_supply: Path = Path("/sys/class/power_supply")
    meminfo: Path = Path("/proc/meminfo")
    mirror_status_dir: Path = Path("/var/lib/pacman-mirrors")


@dataclass
class PendingUpdates:
    official: int = 0
    aur: int = 0
    flatpak: int = 0
    snap: int = 0
    # checkupdates missing: the official count could not be taken
    unknown: bool = False

    @property
    def total(self) -> int:
        return self.official + self.aur + self.flatpak + self.snap

    @property
    def up_to_date(self) -> bool:
        return self.total == 0 and not self.unknown

    def rows(self) -> list[tuple[str, int]]:
        return [
            ("Official repositories", self.official),
            ("AUR packages", self.aur),
            ("Flatpak apps", self.flatpak),
            ("Snap packages", self.snap),
        ]


# ═══════════════════════════════════════════════════════════════════════════════
# Pending Updates
# ═══════════════════════════════════════════════════════════════════════════════


def count_pending_updates(
    caps: Capabilities,
    config: SessionConfig,
    runner: CommandRunner,
    has_tool: Callable[[str], bool] = which,
) -> PendingUpdates:
    """Count pending updates per enabled source (read-only queries)."""
    pending = PendingUpdates()

    if caps.has("pacman"):
        if has_tool("checkupdates"):
            # checkupdates exits 2 when nothing is pending
            pending.official = len(runner.query(["checkupdates"], timeout=120).lines)
        else:
            pending.unknown = True

    helper = caps.aur_helper
    if helper and config.update_aur:
        pending.aur = len(runner.query([helper, "-Qua"], timeout=120).lines)

    if caps.has("flatpak") and config.update_flatpak:
        pending.flatpak = len(runner.query(["flatpak", "remote-ls", "--updates"], timeout=120).lines)

    if caps.has("snap") and config.update_snap:
        lines = runner.query(["snap", "refresh", "--list"], timeout=60).lines
        pending.snap = len([line for line in lines if not line.startswith("Name ")])

    return pending


# ═══════════════════════════════════════════════════════════════════════════════
# Checker
# ═══════════════════════════════════════════════════════════════════════════════


class PreflightChecker:
    MIN_FREE_MB = 2048
    AVG_PACKAGE_MB = 50
    MIRROR_MAX_AGE_DAYS = 30
    LOW_MEMORY_MB = 512
    SLOW_LATENCY_MS = 1000
    CONNECTIVITY_HOST = "8.8.8.8"
    MIRROR_URL = "https://archlinux.org"
    LATENCY_URL = "https://archlinux.org/static/archlinux.svg"
    LDD_BATCH = 400

    def __init__(
        self,
        config: SessionConfig,
        caps: Capabilities,
        log: SessionLog,
        decider: Decider,
        runner: CommandRunner,
        paths: HostPaths | None = None,
        has_tool: Callable[[str], bool] = which,
    ):
        self.config = config
        self.caps = caps
        self.log = log
        self.decider = decider
        self.runner = runner
        self.paths = paths or HostPaths()
        self.has_tool = has_tool
        self.pending: PendingUpdates | None = None

    def run_all(self) -> list[PreflightResult]:
        """Run every check in order. Fatal outcomes raise."""
        results = [self.check_partial_upgrade(), self.check_mirror_health()]
        results.extend(self.check_resources())
        results.extend(self.check_disk_space())
        return results

    def _mitigate(self, *commands: list[str]) -> bool:
        """Run an approved mitigation; a failed attempt is retried once."""

        def attempt() -> CommandResult:
            result = CommandResult(0)
            for cmd in commands:
                result = self.runner.run(cmd)
                if not result.ok:
                    break
            return result

        retrying = result_retrying(
            attempts=2,
            delay=0,
            failed=lambda result: not result.ok,
            before_sleep=lambda _state: self.log.warn("Mitigation failed, retrying once"),
        )
        result = retrying(attempt)
        if not result.ok:
            self.log.warn("Mitigation did not succeed")
        return result.ok

    # ─────────────────────────────────────────────────────────────────────────
    # 1. Partial upgrade
    # ─────────────────────────────────────────────────────────────────────────

    def _unresolved_libraries(self) -> list[str]:
        try:
            binaries = sorted(str(p) for p in self.paths.bin_dir.iterdir() if p.is_file())
        except OSError:
            return []

        missing: list[str] = []
        with self.log.printer.status(f"Scanning {len(binaries)} binaries for broken library links..."):
            for start in range(0, len(binaries), self.LDD_BATCH):
                batch = binaries[start:start + self.LDD_BATCH]
                output = self.runner.query(["ldd", *batch], timeout=120).stdout
                for line in output.splitlines():
                    if "not found" in line:
                        missing.append(line.split("=>")[0].strip())
        return missing

    def check_partial_upgrade(self) -> PreflightResult:
        self.log.step("Checking for partial upgrades...")
        name = "partial-upgrade"
        if not self.caps.has("pacman"):
            return PreflightResult(name, True, "pacman not present")

        missing = self._unresolved_libraries()
        if not missing:
            self.log.success("No broken library links found")
            return PreflightResult(name, True)

        self.log.error("Detected broken library links! System may be partially upgraded.")
        self.log.items(f"{len(missing)} unresolved reference(s):", sorted(set(missing))[:10])
        self.log.warn("This usually happens after incomplete upgrades or power failures.")
        self.log.info("Recommendation: a full system upgrade with -Syyu is required")

        recovered = False
        if self.decider.decide("Try emergency system recovery?", True):
            recovered = self._mitigate(["sudo", "pacman", "-Syyu", "--noconfirm"])

        if not recovered and not self.decider.decide("Continue with the upgrade anyway?", True):
            raise OperatorAbort("Partial upgrade detected and not overridden")

        return PreflightResult(
            name,
            False,
            f"{len(missing)} unresolved library reference(s)",
            Severity.OVERRIDE,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # 2. Mirrors
    # ─────────────────────────────────────────────────────────────────────────

    def _url_reachable(self, url: str, timeout: float = 5) -> bool:
        try:
            with urllib.request.urlopen(url, timeout=timeout) as response:
                return bool(200 <= response.status < 400)
        except (urllib.error.URLError, OSError, ValueError):
            return False

    def _mirror_status_stale(self) -> bool:
        status = self.paths.mirror_status_dir / "status.json"
        try:
            modified = datetime.fromtimestamp(status.stat().st_mtime)
        except OSError:
            return False
        return datetime.now() - modified > timedelta(days=self.MIRROR_MAX_AGE_DAYS)

    def check_mirror_health(self) -> PreflightResult:
        self.log.step("Checking mirror health...")
        name = "mirrors"
        if not self.caps.has("pacman"):
            return PreflightResult(name, True, "pacman not present")

        passed = True
        message = ""
        if not self._url_reachable(self.MIRROR_URL):
            self.log.warn("Cannot reach Arch mirrors. Check internet connection.")
            passed, message = False, "upstream index unreachable"

        if self.has_tool("pacman-mirrors") and self._mirror_status_stale():
            self.log.warn(f"Mirror list is older than {self.MIRROR_MAX_AGE_DAYS} days")
            passed, message = False, "mirror list stale"
            if self.decider.decide("Update Manjaro mirrors?", True):
                if self._mitigate(
                    ["sudo", "pacman-mirrors", "--fasttrack"],
                    ["sudo", "pacman", "-Syy"],
                ):
                    self.log.success("Mirrors refreshed")
                    passed, message = True, "mirror list refreshed"
        elif passed:
            self.log.success("Mirrors look healthy")

        return PreflightResult(name, passed, message, Severity.OVERRIDE)

    # ─────────────────────────────────────────────────────────────────────────
    # 3. Resources
    # ─────────────────────────────────────────────────────────────────────────

    def _read_battery(self) -> tuple[int | None, bool] | None:
        """Return (capacity, ac_online), or None on hosts without a battery."""
        batteries = sorted(self.paths.power_supply.glob("BAT*"))
        if not batteries:
            return None

        try:
            capacity: int | None = int((batteries[0] / "capacity").read_text().strip())
        except (OSError, ValueError):
            capacity = None

        ac_online = True
        for online in sorted(self.paths.power_supply.glob("AC*/online")):
            try:
                ac_online = online.read_text().strip() != "0"
            except OSError:
                continue
            break
        return capacity, ac_online

    def _ping(self, host: str) -> bool:
        return self.runner.query(["ping", "-c", "1", "-W", "2", host], timeout=5).ok

    def _latency_ms(self, url: str) -> int | None:
        start = time.monotonic()
        if not self._url_reachable(url):
            return None
        return int((time.monotonic() - start) * 1000)

    def _available_memory_mb(self) -> int | None:
        try:
            for line in self.paths.meminfo.read_text().splitlines():
                if line.startswith("MemAvailable:"):
                    return int(line.split()[1]) // 1024
        except (OSError, ValueError, IndexError):
            return None
        return None

    def check_battery(self) -> PreflightResult:
        name = "battery"
        if not self.config.check_battery:
            return PreflightResult(name, True, "battery check disabled")

        battery = self._read_battery()
        if battery is None:
            return PreflightResult(name, True, "no battery")

        level, ac_online = battery
        self.log.info(f"Laptop detected, battery level: {level if level is not None else 'unknown'}%")
        minimum = self.config.min_battery_level

        if not ac_online and level is not None and level < minimum:
            self.log.error(f"Battery level too low: {level}% (minimum: {minimum}%)")
            self.log.error("Please connect AC power before system upgrade")
            if not self.decider.decide("Continue anyway? (Risk of partial upgrade if battery dies)", False):
                raise BatteryTooLowError(level, minimum)
            return PreflightResult(name, False, f"battery at {level}%, overridden", Severity.OVERRIDE)

        if not ac_online:
            self.log.warn("Running on battery power - consider connecting AC adapter")
        else:
            self.log.success("AC power connected")
        return PreflightResult(name, True)

    def check_network(self) -> PreflightResult:
        self.log.info("Checking network connectivity...")
        if not self._ping(self.CONNECTIVITY_HOST):
            self.log.error("No internet connectivity detected")
            raise NetworkUnavailableError(self.CONNECTIVITY_HOST)
        return PreflightResult("network", True, severity=Severity.FATAL)

    def check_latency(self) -> PreflightResult:
        name = "latency"
        latency = self._latency_ms(self.LATENCY_URL)
        if latency is None:
            self.log.warn("Could not test network speed")
            return PreflightResult(name, False, "latency unknown")

        self.log.info(f"Network latency: {latency}ms")
        if latency > self.SLOW_LATENCY_MS:
            self.log.warn(f"Slow network detected ({latency}ms latency)")
            self.log.warn("Upgrade may take longer than usual")
            return PreflightResult(name, False, f"{latency}ms")
        return PreflightResult(name, True, f"{latency}ms")

    def check_memory(self) -> PreflightResult:
        name = "memory"
        available = self._available_memory_mb()
        if available is None:
            return PreflightResult(name, True, "unknown")

        self.log.info(f"Available RAM: {available}MB")
        if available < self.LOW_MEMORY_MB:
            self.log.warn(f"Low available RAM (< {self.LOW_MEMORY_MB}MB)")
            self.log.warn("Consider closing applications before upgrade")
            return PreflightResult(name, False, f"{available}MB")
        return PreflightResult(name, True, f"{available}MB")

    def check_resources(self) -> list[PreflightResult]:
        self.log.step("Checking system resources...")
        return [
            self.check_battery(),
            self.check_network(),
            self.check_latency(),
            self.check_memory(),
        ]

    # ─────────────────────────────────────────────────────────────────────────
    # 4. Disk space
    # ─────────────────────────────────────────────────────────────────────────

    def _available_mb(self) -> int:
        return int(shutil.disk_usage(self.paths.root).free // MIB)

    def check_disk_space(self) -> list[PreflightResult]:
        self.log.step("Checking disk space...")
        results: list[PreflightResult] = []

        available = self._available_mb()
        self.log.info(f"Available space on {self.paths.root}: {available}MB")

        if available < self.MIN_FREE_MB:
            self.log.warn(f"Low disk space detected (< {self.MIN_FREE_MB}MB)")
            results.append(PreflightResult("disk-free", False, f"{available}MB", Severity.OVERRIDE))
            if self.caps.has("pacman") and self.decider.decide("Clean package cache now?", True):
                if self._mitigate(["sudo", "pacman", "-Sc", "--noconfirm"]):
                    available = self._available_mb()
        else:
            results.append(PreflightResult("disk-free", True, f"{available}MB"))

        with self.log.printer.status("Counting pending updates..."):
            self.pending = count_pending_updates(self.caps, self.config, self.runner, self.has_tool)
        estimate = self.pending.official
        if estimate > 0:
            needed = estimate * self.AVG_PACKAGE_MB
            self.log.info(f"Approximately {estimate} packages to update (~{needed}MB)")
            if available < needed:
                self.log.error("Insufficient disk space for estimated update size")
                self.log.error(f"Available: {available}MB, Estimated need: {needed}MB")
                if not self.decider.decide("Continue anyway? (Not recommended)", False):
                    raise InsufficientDiskSpaceError(available, needed)
                results.append(PreflightResult("disk-estimate", False, f"need {needed}MB", Severity.OVERRIDE))
                return results
        results.append(PreflightResult("disk-estimate", True))
        return results
