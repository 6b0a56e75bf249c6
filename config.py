"""
Session configuration for sysup.

The configuration file uses shell-style ``KEY=value`` lines, the same
format the installer writes to ``~/.config/system-upgrade.conf``:

    INTERACTIVE_MODE=false
    AUTO_REMOVE_CONFLICTS=true
    MIN_BATTERY_LEVEL=30

Command-line flags are applied on top of the file values.
"""

from __future__ import annotations

import dataclasses
import shlex
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from errors import ConfigError

DEFAULT_CONFIG_PATH = Path("~/.config/system-upgrade.conf")
DEFAULT_LOG_DIR = Path("~/.system-upgrade-logs")
DEFAULT_BACKUP_DIR = Path("~/.system-upgrade-backups")


@dataclass(frozen=True)
class SessionConfig:
    """Options for one run. Never mutated; overrides return a new value."""

    interactive: bool = True
    dry_run: bool = False
    update_aur: bool = True
    update_flatpak: bool = True
    update_snap: bool = True
    parallel_downloads: bool = True
    clean_cache: bool = True
    notifications: bool = True
    create_backup: bool = True
    create_snapshot: bool = True
    auto_remove_conflicts: bool = False
    check_battery: bool = True
    min_battery_level: int = 30
    max_blast_radius: int | None = None
    log_dir: Path = DEFAULT_LOG_DIR.expanduser()
    backup_dir: Path = DEFAULT_BACKUP_DIR.expanduser()
    config_path: Path | None = None

    def with_overrides(self, **overrides: Any) -> SessionConfig:
        """Return a copy with every non-None override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **changes)

    @property
    def mode_label(self) -> str:
        return "Interactive" if self.interactive else "Automatic"


# ═══════════════════════════════════════════════════════════════════════════════
# Value Parsing
# ═══════════════════════════════════════════════════════════════════════════════

_TRUE = {"true", "yes", "1", "on"}
_FALSE = {"false", "no", "0", "off"}


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"expected true/false, got {raw!r}")


def _parse_percent(raw: str) -> int:
    value = int(raw)
    if not 0 <= value <= 100:
        raise ValueError(f"expected 0-100, got {value}")
    return value


def _parse_optional_count(raw: str) -> int | None:
    if raw.strip().lower() in ("", "none", "unlimited"):
        return None
    value = int(raw)
    if value < 0:
        raise ValueError(f"expected a non-negative count, got {value}")
    return value


def _parse_path(raw: str) -> Path:
    return Path(raw).expanduser()


# File key -> (SessionConfig field, parser)
CONFIG_KEYS: dict[str, tuple[str, Callable[[str], Any]]] = {
    "INTERACTIVE_MODE": ("interactive", _parse_bool),
    "DRY_RUN": ("dry_run", _parse_bool),
    "UPDATE_AUR": ("update_aur", _parse_bool),
    "UPDATE_FLATPAK": ("update_flatpak", _parse_bool),
    "UPDATE_SNAP": ("update_snap", _parse_bool),
    "ENABLE_PARALLEL_DOWNLOADS": ("parallel_downloads", _parse_bool),
    "CLEAN_CACHE_AFTER": ("clean_cache", _parse_bool),
    "SEND_NOTIFICATION": ("notifications", _parse_bool),
    "CREATE_BACKUP": ("create_backup", _parse_bool),
    "CREATE_SNAPSHOT": ("create_snapshot", _parse_bool),
    "AUTO_REMOVE_CONFLICTS": ("auto_remove_conflicts", _parse_bool),
    "CHECK_BATTERY": ("check_battery", _parse_bool),
    "MIN_BATTERY_LEVEL": ("min_battery_level", _parse_percent),
    "MAX_BLAST_RADIUS": ("max_blast_radius", _parse_optional_count),
    "LOG_DIR": ("log_dir", _parse_path),
    "BACKUP_DIR": ("backup_dir", _parse_path),
}


def parse_config_text(text: str, source: str = "<config>") -> tuple[dict[str, Any], list[str]]:
    """Parse ``KEY=value`` lines.

    Returns:
        Tuple of (field values keyed by SessionConfig field, unknown keys)

    Raises:
        ConfigError: On a malformed line or an invalid value.
    """
    values: dict[str, Any] = {}
    unknown: list[str] = []

    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].strip()
        if "=" not in line:
            raise ConfigError(f"{source}:{lineno}: expected KEY=value", path=source)

        key, _, raw_value = line.partition("=")
        key = key.strip()
        try:
            tokens = shlex.split(raw_value, comments=True)
        except ValueError as e:
            raise ConfigError(f"{source}:{lineno}: {e}", path=source) from e
        value = tokens[0] if tokens else ""

        if key not in CONFIG_KEYS:
            unknown.append(key)
            continue

        field_name, parser = CONFIG_KEYS[key]
        try:
            values[field_name] = parser(value)
        except ValueError as e:
            raise ConfigError(f"{source}:{lineno}: {key}: {e}", path=source) from e

    return values, unknown


def load_config(
    path: Path | None = None,
    base: SessionConfig | None = None,
) -> tuple[SessionConfig, list[str]]:
    """Load the configuration file on top of ``base`` (defaults).

    A missing default file is not an error; a missing file the operator
    named explicitly is.

    Returns:
        Tuple of (config, unknown keys found in the file)
    """
    config = base or SessionConfig()
    explicit = path is not None
    config_path = (path or DEFAULT_CONFIG_PATH).expanduser()

    if not config_path.exists():
        if explicit:
            raise ConfigError(f"Configuration file not found: {config_path}", path=str(config_path))
        return config, []

    try:
        text = config_path.read_text()
    except OSError as e:
        raise ConfigError(f"Cannot read {config_path}: {e}", path=str(config_path)) from e

    values, unknown = parse_config_text(text, source=str(config_path))
    return dataclasses.replace(config, config_path=config_path, **values), unknown
