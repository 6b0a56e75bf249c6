import io
import sys
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest.mock import patch


def _add_sysup_path():
    root = Path(__file__).resolve().parents[1]
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))


_add_sysup_path()

from printer import Printer  # noqa: E402
from upgrade_printer import UpgradePrinter  # noqa: E402


def _plain():
    return UpgradePrinter(use_plain=True, use_minimal=True)


class PlainLayoutTests(unittest.TestCase):
    def test_session_header_and_dry_run_banner(self):
        buf = io.StringIO()
        with redirect_stdout(buf):
            _plain().session_header("Automatic", True, "/tmp/upgrade.log", None)
        out = buf.getvalue()
        self.assertIn("System Upgrade Manager", out)
        self.assertIn("  Mode:     Automatic", out)
        self.assertIn("~ Dry Run (no changes will be made)", out)
        self.assertNotIn("Config:", out)

    def test_pending_updates_hide_empty_sources(self):
        buf = io.StringIO()
        with redirect_stdout(buf):
            _plain().pending_updates([("Official repositories", 12), ("AUR packages", 0), ("Flatpak apps", 3)])
        out = buf.getvalue()
        self.assertIn("Official repositories", out)
        self.assertIn("Flatpak apps", out)
        self.assertNotIn("AUR packages", out)

    def test_summary_rows_are_aligned(self):
        buf = io.StringIO()
        with redirect_stdout(buf):
            _plain().summary([("Log file", "/tmp/u.log"), ("Warnings", "2")], succeeded=True)
        lines = buf.getvalue().splitlines()
        self.assertIn("+ Upgrade completed", lines)
        self.assertIn("  Log file:         /tmp/u.log", lines)
        self.assertIn("  Warnings:         2", lines)

    def test_failed_summary_goes_to_stderr(self):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            _plain().summary([], succeeded=False)
        self.assertIn("x Upgrade finished with errors", err.getvalue())

    def test_removed_packages_list(self):
        buf = io.StringIO()
        with redirect_stdout(buf):
            _plain().removed_packages(["libfoo", "python-bar"], "/backups/removed_packages.txt")
        out = buf.getvalue()
        self.assertIn("! 2 package(s) removed to resolve conflicts:", out)
        self.assertIn("  - libfoo", out)
        self.assertIn("/backups/removed_packages.txt", out)


class ConfirmTests(unittest.TestCase):
    def test_plain_confirm(self):
        printer = Printer(use_plain=True, use_minimal=True)
        with patch("builtins.input", return_value=""):
            self.assertTrue(printer.confirm("Proceed with system upgrade?", default=True))
        with patch("builtins.input", return_value="y"):
            self.assertTrue(printer.confirm("Reboot now?", default=False))
        with patch("builtins.input", return_value="nope"):
            self.assertFalse(printer.confirm("Clean package cache?", default=True))
        with patch("builtins.input", side_effect=EOFError):
            self.assertFalse(printer.confirm("Reboot now?", default=False))


class RichLayoutTests(unittest.TestCase):
    def test_stream_line_wrap_preserves_indent(self):
        printer = Printer()
        if not printer.has_rich or not printer.console:
            self.skipTest("rich not available")

        printer.console.width = 36
        buf = io.StringIO()
        with redirect_stdout(buf):
            printer.stream_line("https://mirror.example.org/" + ("b" * 80))

        lines = [line for line in buf.getvalue().splitlines() if line]
        self.assertGreater(len(lines), 1)
        for line in lines:
            self.assertTrue(line.startswith("    "), line)


if __name__ == "__main__":
    unittest.main()
