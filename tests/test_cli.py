import io
import sys
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch


def _add_sysup_path():
    root = Path(__file__).resolve().parents[1]
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))


_add_sysup_path()

import cli  # noqa: E402


class CliTests(unittest.TestCase):
    def setUp(self):
        self._tmp = TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.captured = []
        patcher = patch("config.DEFAULT_CONFIG_PATH", self.tmp / "absent.conf")
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        self._tmp.cleanup()

    def _fake_upgrade(self, config, printer, host=None, verbose=False):
        self.captured.append((config, verbose))
        return 0

    def invoke(self, *args):
        out = io.StringIO()
        with redirect_stdout(out), redirect_stderr(out):
            with patch("cli.cmd_upgrade", side_effect=self._fake_upgrade):
                with self.assertRaises(SystemExit) as ctx:
                    cli.app(list(args))
        return ctx.exception.code, out.getvalue()

    def test_help(self):
        code, out = self.invoke("--help")
        self.assertEqual(code, 0)
        self.assertIn("--dry-run", out)
        self.assertEqual(self.captured, [])

    def test_unknown_flag_is_usage_error(self):
        code, _ = self.invoke("--frobnicate")
        self.assertEqual(code, 2)
        self.assertEqual(self.captured, [])

    def test_defaults(self):
        code, _ = self.invoke()
        self.assertEqual(code, 0)
        config, verbose = self.captured[0]
        self.assertTrue(config.interactive)
        self.assertFalse(config.dry_run)
        self.assertFalse(verbose)

    def test_short_flags(self):
        self.invoke("-a", "-d", "-v")
        config, verbose = self.captured[0]
        self.assertFalse(config.interactive)
        self.assertTrue(config.dry_run)
        self.assertTrue(verbose)

    def test_flags_override_config_file(self):
        path = self.tmp / "system-upgrade.conf"
        path.write_text("INTERACTIVE_MODE=false\nUPDATE_AUR=true\nAUTO_REMOVE_CONFLICTS=false\n")
        self.invoke("--config", str(path), "--interactive", "--no-aur", "--no-snapshot", "--auto-remove")
        config, _ = self.captured[0]
        self.assertTrue(config.interactive)
        self.assertFalse(config.update_aur)
        self.assertFalse(config.create_snapshot)
        self.assertTrue(config.auto_remove_conflicts)
        self.assertTrue(config.update_flatpak)

    def test_file_values_kept_without_flags(self):
        path = self.tmp / "system-upgrade.conf"
        path.write_text("INTERACTIVE_MODE=false\nUPDATE_SNAP=false\n")
        self.invoke("--config", str(path))
        config, _ = self.captured[0]
        self.assertFalse(config.interactive)
        self.assertFalse(config.update_snap)

    def test_missing_config_file(self):
        code, _ = self.invoke("--config", str(self.tmp / "nope.conf"))
        self.assertEqual(code, 1)
        self.assertEqual(self.captured, [])

    def test_exit_status_comes_from_upgrade(self):
        out = io.StringIO()
        with redirect_stdout(out), redirect_stderr(out):
            with patch("cli.cmd_upgrade", return_value=1):
                with self.assertRaises(SystemExit) as ctx:
                    cli.app([])
        self.assertEqual(ctx.exception.code, 1)


if __name__ == "__main__":
    unittest.main()
