"""
backup.py - The backup directory and its artifacts.

Every artifact is a timestamped plain-text (or tar) file. Existing files
are never overwritten: a numeric suffix is added on collision. The
removed-package ledger is append-only.
"""

from __future__ import annotations

import tempfile
from datetime import datetime
from pathlib import Path

from errors import BackupDirError
from shared import timestamp

REMOVED_LEDGER = "removed_packages.txt"


class BackupStore:
    def __init__(self, root: Path, now: datetime | None = None):
        self.root = root
        self.stamp = timestamp(now)

    def ensure_writable(self) -> None:
        """Create the directory and prove it accepts writes.

        Raises:
            BackupDirError: If the directory cannot be created or written.
        """
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(dir=self.root, prefix=".write-test-"):
                pass
        except OSError as e:
            raise BackupDirError(str(self.root), e.strerror or str(e)) from e

    def unique_path(self, stem: str, suffix: str = ".txt") -> Path:
        """Return ``<stem>_<stamp><suffix>``, suffixed ``_N`` if taken."""
        candidate = self.root / f"{stem}_{self.stamp}{suffix}"
        counter = 1
        while candidate.exists():
            candidate = self.root / f"{stem}_{self.stamp}_{counter}{suffix}"
            counter += 1
        return candidate

    def write_artifact(self, stem: str, text: str, suffix: str = ".txt") -> Path:
        path = self.unique_path(stem, suffix)
        path.write_text(text if text.endswith("\n") or not text else text + "\n")
        return path

    def write_marker(self, name: str, value: str) -> Path:
        """Write a small pointer file (latest snapshot, snapper pre id)."""
        path = self.root / name
        path.write_text(value + "\n")
        return path

    def read_marker(self, name: str) -> str | None:
        try:
            return (self.root / name).read_text().strip() or None
        except OSError:
            return None

    @property
    def removed_ledger(self) -> Path:
        return self.root / REMOVED_LEDGER

    def record_removed(self, package: str) -> None:
        with self.removed_ledger.open("a") as f:
            f.write(package + "\n")

    def removed_packages(self) -> list[str]:
        try:
            return [line.strip() for line in self.removed_ledger.read_text().splitlines() if line.strip()]
        except OSError:
            return []

    def write_orphans(self, packages: list[str]) -> Path:
        return self.write_artifact("orphans", "\n".join(packages))

    def newest(self, pattern: str) -> Path | None:
        """Most recently modified artifact matching a glob pattern."""
        matches = sorted(self.root.glob(pattern), key=lambda p: p.stat().st_mtime)
        return matches[-1] if matches else None
