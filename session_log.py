"""
session_log.py - Leveled session log written to terminal and file.

One SessionLog is created per run and passed to every component. Each
entry goes to the printer (terminal) and to an append-only timestamped log
file, so a non-interactive run leaves a complete audit trail.
"""

from __future__ import annotations

import itertools
import logging
from datetime import datetime
from pathlib import Path

from printer import Printer

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_session_ids = itertools.count(1)


def session_log_path(log_dir: Path, now: datetime | None = None) -> Path:
    """Return ``upgrade_<YYYYmmdd_HHMMSS>.log`` inside log_dir."""
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return log_dir / f"upgrade_{stamp}.log"


class SessionLog:
    """Structured leveled log for one orchestration run."""

    def __init__(self, printer: Printer, log_file: Path | None = None, verbose: bool = False):
        self.printer = printer
        self.log_file = log_file
        self.verbose = verbose
        self.counts: dict[str, int] = {"warning": 0, "error": 0}
        self._logger = logging.getLogger(f"sysup.session.{next(_session_ids)}")
        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False
        self._handler: logging.Handler | None = None

        if log_file is not None:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
            handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
            self._logger.addHandler(handler)
            self._handler = handler
        else:
            self._logger.addHandler(logging.NullHandler())

    def close(self) -> None:
        if self._handler is not None:
            self._handler.close()
            self._logger.removeHandler(self._handler)
            self._handler = None

    def __enter__(self) -> SessionLog:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # === Levels ===

    def step(self, message: str) -> None:
        self.printer.step(message)
        self._logger.info(f"==> {message}")

    def info(self, message: str) -> None:
        self.printer.info(message)
        self._logger.info(message)

    def success(self, message: str) -> None:
        self.printer.success(message)
        self._logger.log(SUCCESS, message)

    def warn(self, message: str) -> None:
        self.counts["warning"] += 1
        self.printer.warn(message)
        self._logger.warning(message)

    def error(self, message: str) -> None:
        self.counts["error"] += 1
        self.printer.error(message)
        self._logger.error(message)

    def debug(self, message: str) -> None:
        """File-only entry, shown on the terminal with --verbose."""
        if self.verbose:
            self.printer.detail(message)
        self._logger.debug(message)

    # === Command traffic ===

    def command(self, command_line: str) -> None:
        self.printer.detail(f"$ {command_line}")
        self._logger.info(f"Executing: {command_line}")

    def output(self, text: str, echo: bool = True) -> None:
        """Record raw command output, one log entry per line."""
        for line in text.splitlines():
            if not line.strip():
                continue
            if echo:
                self.printer.stream_line(line)
            self._logger.info(f"  | {line}")

    def items(self, header: str, values: list[str]) -> None:
        """Log a header followed by a bulleted list."""
        self.info(header)
        for value in values:
            self.printer.bullet(value)
            self._logger.info(f"  - {value}")

    def decision(self, prompt: str, answer: bool, automatic: bool) -> None:
        mode = "auto" if automatic else "operator"
        self._logger.info(f"Decision ({mode}): {prompt} -> {'yes' if answer else 'no'}")
