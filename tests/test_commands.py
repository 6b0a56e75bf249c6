import sys
import unittest
from collections import namedtuple
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch


def _add_sysup_path():
    root = Path(__file__).resolve().parents[1]
    for path in (root, root / "tests"):
        if str(path) not in sys.path:
            sys.path.insert(0, str(path))


_add_sysup_path()

from commands import HostEnvironment, cmd_upgrade  # noqa: E402
from config import SessionConfig  # noqa: E402
from errors import NoPackageManagerError  # noqa: E402
from fakes import DummyPrinter, FakeRunner  # noqa: E402
from preflight import HostPaths  # noqa: E402
from probe import Capabilities  # noqa: E402
from shared import CommandResult  # noqa: E402

DiskUsage = namedtuple("DiskUsage", "total used free")
PLENTY = DiskUsage(0, 0, 100 * 1024 ** 3)

UPGRADE = "sudo pacman -Syu --noconfirm"
FIVE_PENDING = CommandResult(0, "\n".join(f"pkg{i} 1.0-1 -> 1.1-1" for i in range(5)))
CONFLICT = CommandResult(
    1, "", ":: installing icu (74.1-1) breaks dependency 'libicuuc.so=73-64' required by libxml2"
)


class CommandTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        for name in ("bin", "power_supply", "etc", "pkg"):
            (self.tmp / name).mkdir()
        self.pacman_conf = self.tmp / "etc" / "pacman.conf"
        self.pacman_conf.write_text("[options]\nParallelDownloads = 5\n")
        self.responses = {"checkupdates": FIVE_PENDING}
        self.managers = frozenset({"pacman"})
        self.runner = None
        self.printer = DummyPrinter()

        for target, kwargs in (
            ("preflight.shutil.disk_usage", {"return_value": PLENTY}),
            ("preflight.PreflightChecker._url_reachable", {"return_value": True}),
        ):
            patcher = patch(target, **kwargs)
            patcher.start()
            self.addCleanup(patcher.stop)

    def tearDown(self):
        self._tmp.cleanup()

    def _make_runner(self, log, dry_run):
        self.runner = FakeRunner(self.responses, dry_run=dry_run)
        return self.runner

    def host(self, detect=None):
        return HostEnvironment(
            detect=detect or (lambda: Capabilities(self.managers)),
            runner_factory=self._make_runner,
            paths=HostPaths(
                root=self.tmp,
                bin_dir=self.tmp / "bin",
                power_supply=self.tmp / "power_supply",
                meminfo=self.tmp / "meminfo",
                mirror_status_dir=self.tmp / "mirrors",
            ),
            pacman_conf=self.pacman_conf,
            cache_dir=self.tmp / "pkg",
            etc_dir=self.tmp / "etc",
            has_tool=lambda name: name == "checkupdates",
            sleep=lambda _seconds: None,
            env={},
        )

    def config(self, **overrides):
        base = SessionConfig(
            interactive=False,
            update_aur=False,
            create_snapshot=False,
            create_backup=False,
            notifications=False,
            log_dir=self.tmp / "logs",
            backup_dir=self.tmp / "backups",
        )
        return base.with_overrides(**overrides)

    def run_upgrade(self, config=None, detect=None):
        return cmd_upgrade(config or self.config(), self.printer, host=self.host(detect))

    def log_text(self):
        return next((self.tmp / "logs").glob("upgrade_*.log")).read_text()


class DryRunScenarioTests(CommandTestCase):
    def test_dry_run_makes_no_changes(self):
        code = self.run_upgrade(self.config(dry_run=True, create_backup=True))

        self.assertEqual(code, 0)
        self.assertIn(UPGRADE, self.runner.skipped)
        self.assertEqual(self.runner.count(UPGRADE), 1)
        backups = self.tmp / "backups"
        self.assertFalse((backups / "removed_packages.txt").exists())
        self.assertEqual(list(backups.glob("orphans_*")), [])
        self.assertEqual(list(backups.glob("pacman_db_*")), [])
        self.assertTrue((backups / "restore_packages.sh").exists())
        self.assertIn("DRY RUN MODE - No changes will be made", self.log_text())


class PreflightScenarioTests(CommandTestCase):
    def test_low_battery_stops_before_any_change(self):
        battery = self.tmp / "power_supply" / "BAT0"
        battery.mkdir()
        (battery / "capacity").write_text("15\n")
        adapter = self.tmp / "power_supply" / "AC"
        adapter.mkdir()
        (adapter / "online").write_text("0\n")

        code = self.run_upgrade()

        self.assertEqual(code, 1)
        self.assertEqual(self.runner.mutations, [])
        self.assertIn("Battery level too low: 15% (minimum: 30%)", self.log_text())

    def test_no_package_manager(self):
        def detect():
            raise NoPackageManagerError()

        code = self.run_upgrade(detect=detect)
        self.assertEqual(code, 1)
        self.assertEqual(self.runner.calls, [])
        self.assertIn("No package managers detected", self.printer.texts("error"))

    def test_up_to_date_host_skips_upgrade(self):
        self.responses["checkupdates"] = CommandResult(2)
        code = self.run_upgrade()
        self.assertEqual(code, 0)
        self.assertEqual(self.runner.count(UPGRADE), 0)


class ConflictScenarioTests(CommandTestCase):
    def setUp(self):
        super().setUp()
        for name in ("libxml2-2.11.5-1-x86_64.pkg.tar.zst", "libxml2-2.12.3-1-x86_64.pkg.tar.zst"):
            (self.tmp / "pkg" / name).write_bytes(b"")

    def test_downgrade_then_successful_retry(self):
        self.responses[UPGRADE] = [CONFLICT, CONFLICT, CONFLICT, CommandResult(0, "upgrading icu...")]
        code = self.run_upgrade()

        self.assertEqual(code, 0)
        self.assertEqual(self.runner.count(UPGRADE), 4)
        downgrade = ["sudo", "pacman", "-U", "--noconfirm", str(self.tmp / "pkg" / "libxml2-2.11.5-1-x86_64.pkg.tar.zst")]
        self.assertIn(downgrade, self.runner.mutations)

    def test_failed_retry_exits_non_zero(self):
        self.responses[UPGRADE] = CONFLICT
        code = self.run_upgrade()

        self.assertEqual(code, 1)
        # three attempts, then exactly one retry call with its own three attempts
        self.assertEqual(self.runner.count(UPGRADE), 6)
        self.assertIn("Upgrade still failing after conflict resolution", self.log_text())

    def test_essential_conflict_is_fatal_without_removal(self):
        self.responses[UPGRADE] = CommandResult(
            1, "", ":: unable to satisfy dependency 'libcrypt.so=2' required by glibc"
        )
        code = self.run_upgrade(self.config(auto_remove_conflicts=True))

        self.assertEqual(code, 1)
        self.assertFalse(self.runner.ran("sudo pacman -Rdd"))
        self.assertFalse(self.runner.ran("sudo pacman -U"))
        self.assertFalse((self.tmp / "backups" / "removed_packages.txt").exists())
        self.assertEqual(self.runner.count(UPGRADE), 3)
        self.assertIn("CRITICAL: Cannot remove essential package 'glibc'", self.log_text())


class SecondaryOnlyScenarioTests(CommandTestCase):
    def test_flatpak_only_host(self):
        self.managers = frozenset({"flatpak"})
        self.responses["flatpak remote-ls"] = CommandResult(0, "org.gimp.GIMP\n")
        code = self.run_upgrade()

        self.assertEqual(code, 0)
        self.assertEqual(self.runner.count(UPGRADE), 0)
        self.assertTrue(self.runner.ran("flatpak update -y"))


if __name__ == "__main__":
    unittest.main()
