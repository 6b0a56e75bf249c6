"""
UpgradePrinter - upgrade-specific terminal output extensions.

Extends the generic Printer class with the session header, the pending
update table, the removed-package list and the closing summary.
"""

from __future__ import annotations

from collections.abc import Sequence

from printer import Printer


class UpgradePrinter(Printer):
    """Printer subclass with system upgrade extensions."""

    def session_header(self, mode: str, dry_run: bool, log_file: str, config_path: str | None) -> None:
        """Print the run banner: mode, dry run flag, log location."""
        lines = [
            f"Mode:     {mode}",
            f"Log file: {log_file}",
        ]
        if config_path:
            lines.append(f"Config:   {config_path}")
        self.banner("System Upgrade Manager", lines)
        if dry_run:
            self.dry_run_banner()

    def pending_updates(self, rows: Sequence[tuple[str, int]]) -> None:
        """Display pending update counts per source."""
        shown = [(source, count) for source, count in rows if count]
        if not shown:
            return
        if self.has_rich and self.console:
            self.table("Pending updates", ["Source", "Count"], [[s, str(c)] for s, c in shown])
        else:
            print()
            for source, count in shown:
                print(f"{self.INDENT}{source:<24} {count:>5}")

    def removed_packages(self, packages: list[str], ledger: str) -> None:
        """List packages removed during conflict resolution."""
        if not packages:
            return
        self.warn(f"{len(packages)} package(s) removed to resolve conflicts:")
        for name in packages:
            self.bullet(name)
        self.detail(f"Reinstall later from the list in {ledger}")

    def summary(self, rows: list[tuple[str, str]], succeeded: bool) -> None:
        """Print the closing summary as aligned key/value lines."""
        title = "Upgrade completed" if succeeded else "Upgrade finished with errors"
        print()
        if succeeded:
            self.success(title)
        else:
            self.error(title)
        for key, value in rows:
            self.kv_line(key, value)
