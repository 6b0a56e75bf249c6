"""
notify.py - Best-effort desktop / terminal notifications.

Sends title+message through notify-send (graphical sessions), dunstify,
and wall (terminal-only sessions). A missing or failing transport is
logged and ignored; notifications never fail the run.
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable, Mapping

from session_log import SessionLog
from shared import run_command, which

ICON = "system-software-update"
TIMEOUT_MS = "10000"


class Notifier:
    def __init__(
        self,
        log: SessionLog,
        enabled: bool = True,
        env: Mapping[str, str] | None = None,
        has_tool: Callable[[str], bool] = which,
    ):
        self.log = log
        self.enabled = enabled
        self.env = os.environ if env is None else env
        self.has_tool = has_tool
        self.sent: list[tuple[str, str]] = []

    @property
    def graphical(self) -> bool:
        return bool(self.env.get("DISPLAY") or self.env.get("WAYLAND_DISPLAY"))

    def _wall(self, text: str) -> bool:
        try:
            result = subprocess.run(
                ["wall"],
                input=text,
                capture_output=True,
                text=True,
                check=False,
                timeout=5,
            )
        except (OSError, subprocess.SubprocessError) as e:
            self.log.debug(f"wall failed: {e}")
            return False
        return result.returncode == 0

    def send(self, title: str, message: str) -> None:
        """Fire a notification on every available transport."""
        if not self.enabled:
            return
        self.sent.append((title, message))

        if self.graphical and self.has_tool("notify-send"):
            result = run_command(
                ["notify-send", "-u", "normal", "-t", TIMEOUT_MS, "-i", ICON, title, message],
                timeout=5,
            )
            if result.ok:
                self.log.debug("Desktop notification sent")

        if self.has_tool("dunstify"):
            run_command(["dunstify", "-u", "normal", "-t", TIMEOUT_MS, "-i", ICON, title, message], timeout=5)

        if not self.graphical:
            self._wall(f"{title}: {message}")
