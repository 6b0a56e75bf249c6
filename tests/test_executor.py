import sys
import unittest
from pathlib import Path
from unittest.mock import patch


def _add_sysup_path():
    root = Path(__file__).resolve().parents[1]
    for path in (root, root / "tests"):
        if str(path) not in sys.path:
            sys.path.insert(0, str(path))


_add_sysup_path()

from config import SessionConfig  # noqa: E402
from decisions import AutoDecider  # noqa: E402
from executor import Outcome, UpgradeExecutor, critical_markers, upgraded_packages  # noqa: E402
from fakes import DummyPrinter, FakeRunner, ScriptedDecider, make_log  # noqa: E402
from probe import Capabilities  # noqa: E402
from shared import CommandResult, CommandRunner  # noqa: E402

CONFLICT = CommandResult(1, "", "error: failed to prepare transaction (could not satisfy dependencies)")
PACMAN_OUTPUT = "\n".join([
    "( 1/3) upgrading linux61                       [######] 100%",
    "( 2/3) upgrading systemd                       [######] 100%",
    "( 3/3) upgrading glibc                         [######] 100%",
])


class ExecutorTestCase(unittest.TestCase):
    def setUp(self):
        self.printer = DummyPrinter()
        self.log = make_log(self.printer)
        self.sleeps = []

    def make_executor(self, runner, managers=("pacman",), config=None, decider=None):
        return UpgradeExecutor(
            config or SessionConfig(interactive=False),
            Capabilities(frozenset(managers)),
            self.log,
            decider or AutoDecider(self.log),
            runner,
            sleep=self.sleeps.append,
        )


class ManagerSelectionTests(ExecutorTestCase):
    def test_priority_order(self):
        runner = FakeRunner()
        self.assertEqual(self.make_executor(runner, ("pacman", "yay", "pamac")).select_manager(), "pamac")
        self.assertEqual(self.make_executor(runner, ("pacman", "paru", "yay")).select_manager(), "yay")
        self.assertEqual(self.make_executor(runner, ("pacman", "flatpak")).select_manager(), "pacman")

    def test_aur_helpers_skipped_when_aur_disabled(self):
        executor = self.make_executor(
            FakeRunner(), ("pacman", "yay"), config=SessionConfig(interactive=False, update_aur=False)
        )
        self.assertEqual(executor.select_manager(), "pacman")

    def test_no_system_manager_is_transient(self):
        runner = FakeRunner()
        result = self.make_executor(runner, ("flatpak",)).upgrade()
        self.assertEqual(result.outcome, Outcome.TRANSIENT_FAILURE)
        self.assertEqual(runner.calls, [])


class RetryTests(ExecutorTestCase):
    def test_never_more_than_three_attempts(self):
        runner = FakeRunner({"sudo pacman -Syu": CONFLICT})
        executor = self.make_executor(runner)
        result = executor.upgrade()

        self.assertEqual(result.outcome, Outcome.CONFLICT_FAILURE)
        self.assertEqual(result.attempts, 3)
        self.assertEqual(runner.count("sudo pacman -Syu"), 3)
        self.assertEqual(self.sleeps, [5, 5])
        self.assertIn("could not satisfy dependencies", result.error_text)
        self.assertEqual(executor.invocations, 3)

    def test_success_on_second_attempt(self):
        runner = FakeRunner({"sudo pacman -Syu": [CONFLICT, CommandResult(0, "")]})
        result = self.make_executor(runner).upgrade()
        self.assertTrue(result.ok)
        self.assertEqual(result.attempts, 2)
        self.assertEqual(self.sleeps, [5])

    def test_manager_that_cannot_start_is_transient(self):
        runner = FakeRunner({"sudo pacman -Syu": CommandResult(127, "", "No such file or directory")})
        result = self.make_executor(runner).upgrade()
        self.assertEqual(result.outcome, Outcome.TRANSIENT_FAILURE)

    def test_overwrite_is_a_single_attempt(self):
        runner = FakeRunner({"sudo pacman -Syu --overwrite": CONFLICT})
        executor = self.make_executor(runner)
        result = executor.upgrade_with_overwrite()
        self.assertEqual(result.outcome, Outcome.CONFLICT_FAILURE)
        self.assertEqual(result.attempts, 1)
        self.assertEqual(runner.mutations, [["sudo", "pacman", "-Syu", "--overwrite", "*", "--noconfirm"]])


class DryRunTests(ExecutorTestCase):
    def test_dry_run_never_starts_a_process(self):
        runner = CommandRunner(self.log, dry_run=True)
        with patch("shared.subprocess") as subprocess_mock:
            result = self.make_executor(runner, ("pamac", "pacman")).upgrade()
        subprocess_mock.Popen.assert_not_called()
        subprocess_mock.run.assert_not_called()
        self.assertTrue(result.ok)
        self.assertEqual(runner.skipped, ["sudo pamac upgrade --no-confirm"])
        self.assertEqual(self.sleeps, [])


class CriticalPackageTests(ExecutorTestCase):
    def test_markers(self):
        self.assertEqual(upgraded_packages(PACMAN_OUTPUT), ["glibc", "linux61", "systemd"])
        self.assertEqual(
            critical_markers(PACMAN_OUTPUT),
            {"required": ["linux61"], "recommended": ["systemd"], "services": ["glibc"]},
        )

    def test_nothing_critical(self):
        markers = critical_markers("upgrading firefox...\nupgrading linux-firmware...\n")
        self.assertEqual(markers, {"required": [], "recommended": [], "services": []})

    def test_reboot_defaults_to_no(self):
        runner = FakeRunner({"sudo pacman -Syu": CommandResult(0, PACMAN_OUTPUT)})
        self.make_executor(runner).upgrade()
        self.assertFalse(runner.ran("sudo systemctl reboot"))
        self.assertIn("SYSTEM REBOOT REQUIRED", self.printer.texts("banner"))

    def test_operator_can_reboot(self):
        runner = FakeRunner({"sudo pacman -Syu": CommandResult(0, PACMAN_OUTPUT)})
        self.make_executor(runner, decider=ScriptedDecider({"Reboot now?": True})).upgrade()
        self.assertTrue(runner.ran("sudo systemctl reboot"))


if __name__ == "__main__":
    unittest.main()
