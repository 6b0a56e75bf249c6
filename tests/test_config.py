import sys
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch


def _add_sysup_path():
    root = Path(__file__).resolve().parents[1]
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))


_add_sysup_path()

from config import SessionConfig, load_config, parse_config_text  # noqa: E402
from errors import ConfigError  # noqa: E402


class ParseConfigTests(unittest.TestCase):
    def test_parses_known_keys(self):
        text = "\n".join([
            "# generated by the installer",
            "INTERACTIVE_MODE=false",
            'AUTO_REMOVE_CONFLICTS="yes"',
            "export MIN_BATTERY_LEVEL=45",
            "UPDATE_SNAP=off  # no snaps here",
            "MAX_BLAST_RADIUS=3",
        ])
        values, unknown = parse_config_text(text)
        self.assertEqual(unknown, [])
        self.assertEqual(values["interactive"], False)
        self.assertEqual(values["auto_remove_conflicts"], True)
        self.assertEqual(values["min_battery_level"], 45)
        self.assertEqual(values["update_snap"], False)
        self.assertEqual(values["max_blast_radius"], 3)

    def test_unknown_keys_are_reported_not_applied(self):
        values, unknown = parse_config_text("COLOR_SCHEME=dark\nDRY_RUN=true\n")
        self.assertEqual(unknown, ["COLOR_SCHEME"])
        self.assertEqual(values, {"dry_run": True})

    def test_blast_radius_can_be_unlimited(self):
        values, _ = parse_config_text("MAX_BLAST_RADIUS=none\n")
        self.assertIsNone(values["max_blast_radius"])

    def test_paths_are_expanded(self):
        values, _ = parse_config_text("BACKUP_DIR=~/backups\n")
        self.assertEqual(values["backup_dir"], Path("~/backups").expanduser())

    def test_malformed_line_raises(self):
        with self.assertRaises(ConfigError) as ctx:
            parse_config_text("DRY_RUN\n", source="test.conf")
        self.assertIn("test.conf:1", str(ctx.exception))

    def test_bad_value_raises(self):
        with self.assertRaises(ConfigError):
            parse_config_text("DRY_RUN=maybe\n")
        with self.assertRaises(ConfigError):
            parse_config_text("MIN_BATTERY_LEVEL=150\n")
        with self.assertRaises(ConfigError):
            parse_config_text("MIN_BATTERY_LEVEL=lots\n")


class LoadConfigTests(unittest.TestCase):
    def test_missing_default_file_gives_defaults(self):
        with TemporaryDirectory() as tmp:
            with patch("config.DEFAULT_CONFIG_PATH", Path(tmp) / "absent.conf"):
                config, unknown = load_config()
        self.assertEqual(config, SessionConfig())
        self.assertEqual(unknown, [])

    def test_missing_explicit_file_raises(self):
        with TemporaryDirectory() as tmp:
            with self.assertRaises(ConfigError):
                load_config(Path(tmp) / "absent.conf")

    def test_file_values_applied(self):
        with TemporaryDirectory() as tmp:
            path = Path(tmp) / "system-upgrade.conf"
            path.write_text("INTERACTIVE_MODE=false\nCHECK_BATTERY=false\n")
            config, _ = load_config(path)
        self.assertFalse(config.interactive)
        self.assertFalse(config.check_battery)
        self.assertEqual(config.config_path, path)
        self.assertEqual(config.mode_label, "Automatic")


class OverrideTests(unittest.TestCase):
    def test_none_overrides_keep_values(self):
        base = SessionConfig(interactive=False, update_aur=False)
        merged = base.with_overrides(interactive=None, update_aur=None, dry_run=True)
        self.assertFalse(merged.interactive)
        self.assertFalse(merged.update_aur)
        self.assertTrue(merged.dry_run)

    def test_flags_beat_file_values(self):
        base = SessionConfig(interactive=False)
        self.assertTrue(base.with_overrides(interactive=True).interactive)

    def test_config_is_immutable(self):
        config = SessionConfig()
        with self.assertRaises(AttributeError):
            config.dry_run = True  # type: ignore[misc]


if __name__ == "__main__":
    unittest.main()
