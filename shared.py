"""
shared.py - Common utilities for sysup.

Provides:
- The package-manager process abstraction (CommandRunner / CommandResult)
- Dry-run handling for every mutating command
- Timestamp helpers and pacman version ordering used across components
"""

from __future__ import annotations

import shlex
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from datetime import datetime
from functools import cmp_to_key
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from session_log import SessionLog

# ═══════════════════════════════════════════════════════════════════════════════
# Timestamps
# ═══════════════════════════════════════════════════════════════════════════════


def timestamp(now: datetime | None = None) -> str:
    """File-name timestamp, e.g. ``20261018_142530``."""
    return (now or datetime.now()).strftime("%Y%m%d_%H%M%S")


def dashed_timestamp(now: datetime | None = None) -> str:
    """Description timestamp, e.g. ``20261018-142530``."""
    return (now or datetime.now()).strftime("%Y%m%d-%H%M%S")


# ═══════════════════════════════════════════════════════════════════════════════
# Version Ordering
# ═══════════════════════════════════════════════════════════════════════════════


def _is_alnum(char: str) -> bool:
    return char.isascii() and char.isalnum()


def _segment_cmp(a: str, b: str) -> int:
    """Compare two version strings segment by segment (pacman's rpmvercmp)."""
    if a == b:
        return 0
    one = two = 0
    while one < len(a) and two < len(b):
        start1, start2 = one, two
        while one < len(a) and not _is_alnum(a[one]):
            one += 1
        while two < len(b) and not _is_alnum(b[two]):
            two += 1
        if one >= len(a) or two >= len(b):
            break
        # Differing separator runs decide on their own
        if one - start1 != two - start2:
            return -1 if one - start1 < two - start2 else 1

        start1, start2 = one, two
        numeric = a[one].isdigit()
        take = str.isdigit if numeric else str.isalpha
        while one < len(a) and a[one].isascii() and take(a[one]):
            one += 1
        while two < len(b) and b[two].isascii() and take(b[two]):
            two += 1
        seg1, seg2 = a[start1:one], b[start2:two]

        # Numeric segments are newer than alphabetic ones
        if not seg2:
            return 1 if numeric else -1
        if numeric:
            seg1, seg2 = seg1.lstrip("0"), seg2.lstrip("0")
            if len(seg1) != len(seg2):
                return 1 if len(seg1) > len(seg2) else -1
        if seg1 != seg2:
            return 1 if seg1 > seg2 else -1

    rest1, rest2 = a[one:], b[two:]
    if not rest1 and not rest2:
        return 0
    # "1.0rc1" < "1.0" < "1.0.1"
    if (not rest1 and not rest2[:1].isalpha()) or rest1[:1].isalpha():
        return -1
    return 1


def split_evr(version: str) -> tuple[str, str, str | None]:
    """Split ``[epoch:]pkgver[-pkgrel]``; a missing epoch is ``0``."""
    epoch, colon, rest = version.partition(":")
    if not colon or not (epoch == "" or epoch.isdigit()):
        epoch, rest = "0", version
    pkgver, dash, pkgrel = rest.rpartition("-")
    if not dash:
        return epoch or "0", rest, None
    return epoch or "0", pkgver, pkgrel


def vercmp(a: str, b: str) -> int:
    """Order two package versions the way ``pacman``'s ``vercmp`` does.

    Returns -1, 0 or 1. Epoch is compared first, then pkgver, then pkgrel
    when both sides carry one.
    """
    if a == b:
        return 0
    epoch1, ver1, rel1 = split_evr(a)
    epoch2, ver2, rel2 = split_evr(b)
    result = _segment_cmp(epoch1, epoch2) or _segment_cmp(ver1, ver2)
    if result == 0 and rel1 is not None and rel2 is not None:
        result = _segment_cmp(rel1, rel2)
    return result


version_key = cmp_to_key(vercmp)


# ═══════════════════════════════════════════════════════════════════════════════
# Subprocess Helpers
# ═══════════════════════════════════════════════════════════════════════════════


def format_command(cmd: list[str]) -> str:
    """Render a command list the way an operator would type it."""
    return shlex.join(cmd)


def which(name: str) -> bool:
    return shutil.which(name) is not None


@dataclass(frozen=True)
class CommandResult:
    """Exit code plus captured streams of one external process."""

    returncode: int
    stdout: str = ""
    stderr: str = ""
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def lines(self) -> list[str]:
        return [line for line in self.stdout.splitlines() if line.strip()]


def run_command(
    cmd: list[str],
    cwd: Path | None = None,
    timeout: float | None = 30,
) -> CommandResult:
    """Run a command and capture stdout and stderr separately.

    A command that cannot be started or times out is reported as a
    failed result (127 / 124), never raised.
    """
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return CommandResult(124, "", f"Timeout after {timeout}s")
    except OSError as e:
        return CommandResult(127, "", str(e))
    return CommandResult(result.returncode, result.stdout.rstrip(), result.stderr.rstrip())


class CommandRunner:
    """Process abstraction used by every component.

    ``query`` runs read-only commands (always executed, even in dry run).
    ``run`` and ``stream`` run mutating commands: they are logged verbatim
    and, in dry-run mode, reported as succeeded without starting a process.
    """

    def __init__(self, log: SessionLog, dry_run: bool = False):
        self.log = log
        self.dry_run = dry_run
        self.skipped: list[str] = []

    def query(self, cmd: list[str], timeout: float | None = 30) -> CommandResult:
        self.log.debug(f"Query: {format_command(cmd)}")
        return run_command(cmd, timeout=timeout)

    def _dry_run_result(self, command_line: str) -> CommandResult | None:
        self.log.command(command_line)
        if not self.dry_run:
            return None
        self.skipped.append(command_line)
        self.log.warn("DRY RUN - command not executed")
        return CommandResult(0, dry_run=True)

    def run(self, cmd: list[str], timeout: float | None = None) -> CommandResult:
        """Run a mutating command, capturing its output into the session log."""
        skipped = self._dry_run_result(format_command(cmd))
        if skipped is not None:
            return skipped
        result = run_command(cmd, timeout=timeout)
        self.log.output(result.stdout)
        self.log.output(result.stderr)
        return result

    def attach(self, cmd: list[str]) -> CommandResult:
        """Run an interactive mutating command on the operator's terminal."""
        skipped = self._dry_run_result(format_command(cmd))
        if skipped is not None:
            return skipped
        try:
            returncode = subprocess.run(cmd, check=False).returncode
        except OSError as e:
            self.log.error(f"Could not start {cmd[0]}: {e}")
            return CommandResult(127, "", str(e))
        return CommandResult(returncode)

    def stream(self, cmd: list[str]) -> CommandResult:
        """Run a long mutating command, streaming stdout live.

        stdout is echoed and logged line by line as it arrives; stderr goes
        to a temporary file, then into the log, and is returned separately
        for structured parsing.
        """
        skipped = self._dry_run_result(format_command(cmd))
        if skipped is not None:
            return skipped

        with tempfile.TemporaryFile(mode="w+", encoding="utf-8", errors="replace") as err_file:
            try:
                process = subprocess.Popen(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=err_file,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    bufsize=1,
                )
            except OSError as e:
                self.log.error(f"Could not start {cmd[0]}: {e}")
                return CommandResult(127, "", str(e))
            assert process.stdout is not None

            output_lines: list[str] = []
            try:
                for raw_line in process.stdout:
                    line = raw_line.rstrip("\n")
                    if line.strip():
                        output_lines.append(line)
                        self.log.output(line)
            finally:
                process.stdout.close()
                process.wait()

            err_file.seek(0)
            stderr = err_file.read().rstrip()

        self.log.output(stderr)
        return CommandResult(process.returncode, "\n".join(output_lines), stderr)


# ═══════════════════════════════════════════════════════════════════════════════
# Host Paths
# ═══════════════════════════════════════════════════════════════════════════════

PACMAN_CONF = Path("/etc/pacman.conf")
MIRRORLIST = Path("/etc/pacman.d/mirrorlist")
PACMAN_HOOKS = Path("/etc/pacman.d/hooks")
PACMAN_DB = Path("/var/lib/pacman/local")
PACMAN_CACHE = Path("/var/cache/pacman/pkg")
