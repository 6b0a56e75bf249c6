"""
cli.py - Typer-based CLI for sysup.

Safety-checked full system upgrade for Manjaro / Arch hosts.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Annotated, Any, ParamSpec, TypeVar, cast

import typer

from commands import cmd_upgrade
from config import SessionConfig, load_config
from errors import ConfigError
from upgrade_printer import UpgradePrinter

# ═══════════════════════════════════════════════════════════════════════════════
# Typer App
# ═══════════════════════════════════════════════════════════════════════════════

app = typer.Typer(
    name="sysup",
    help="Safety-checked system upgrade for Manjaro / Arch",
    add_completion=False,
    rich_markup_mode=None,
    no_args_is_help=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)

P = ParamSpec("P")
R = TypeVar("R")


def _typed_command(*args: Any, **kwargs: Any) -> Callable[[Callable[P, R]], Callable[P, R]]:
    return cast(Callable[[Callable[P, R]], Callable[P, R]], app.command(*args, **kwargs))


# ═══════════════════════════════════════════════════════════════════════════════
# Type Aliases for Options
# ═══════════════════════════════════════════════════════════════════════════════

OptMode = Annotated[
    bool | None,
    typer.Option("--interactive/--auto", "-i/-a", help="Ask before each decision, or answer with defaults"),
]
OptDryRun = Annotated[bool, typer.Option("--dry-run", "-d", help="Log commands without running them")]
OptNoAur = Annotated[bool, typer.Option("--no-aur", help="Skip AUR updates")]
OptNoFlatpak = Annotated[bool, typer.Option("--no-flatpak", help="Skip Flatpak updates")]
OptNoSnap = Annotated[bool, typer.Option("--no-snap", help="Skip Snap updates")]
OptNoBackup = Annotated[bool, typer.Option("--no-backup", help="Skip package list and config backups")]
OptNoSnapshot = Annotated[bool, typer.Option("--no-snapshot", help="Skip the filesystem snapshot")]
OptNoParallel = Annotated[bool, typer.Option("--no-parallel", help="Leave pacman ParallelDownloads alone")]
OptNoNotification = Annotated[bool, typer.Option("--no-notification", help="Do not send notifications")]
OptAutoRemove = Annotated[bool, typer.Option("--auto-remove", help="Remove conflicting packages without asking")]
OptConfig = Annotated[
    Path | None,
    typer.Option("--config", help="Configuration file", dir_okay=False),
]
OptPlain = Annotated[bool, typer.Option("--plain", help="Plain text output")]
OptMinimal = Annotated[bool, typer.Option("--minimal", help="Use ASCII glyphs")]
OptVerbose = Annotated[bool, typer.Option("--verbose", "-v", help="Show detailed info")]


def _flag_off(value: bool) -> bool | None:
    """Map a --no-X flag to a config override (None keeps the file value)."""
    return False if value else None


def build_config(
    config_path: Path | None,
    printer: UpgradePrinter,
    **overrides: Any,
) -> SessionConfig:
    """Defaults, then the config file, then flags.

    Raises:
        ConfigError: If the config file is missing (when named) or invalid.
    """
    config, unknown = load_config(config_path)
    for key in unknown:
        printer.warn(f"Ignoring unknown config key: {key}")
    return config.with_overrides(**overrides)


# ═══════════════════════════════════════════════════════════════════════════════
# Command
# ═══════════════════════════════════════════════════════════════════════════════


@_typed_command()
def main(
    interactive: OptMode = None,
    dry_run: OptDryRun = False,
    no_aur: OptNoAur = False,
    no_flatpak: OptNoFlatpak = False,
    no_snap: OptNoSnap = False,
    no_backup: OptNoBackup = False,
    no_snapshot: OptNoSnapshot = False,
    no_parallel: OptNoParallel = False,
    no_notification: OptNoNotification = False,
    auto_remove: OptAutoRemove = False,
    config: OptConfig = None,
    plain: OptPlain = False,
    minimal: OptMinimal = False,
    verbose: OptVerbose = False,
) -> None:
    """
    Upgrade every package manager on this host with safety checks.

    Examples:
        sysup                  # Interactive upgrade
        sysup --auto           # Unattended, answers every prompt with its default
        sysup -d --no-aur      # Show what would run, skip AUR
    """
    printer = UpgradePrinter(use_plain=plain, use_minimal=minimal)

    try:
        session_config = build_config(
            config,
            printer,
            interactive=interactive,
            dry_run=True if dry_run else None,
            update_aur=_flag_off(no_aur),
            update_flatpak=_flag_off(no_flatpak),
            update_snap=_flag_off(no_snap),
            create_backup=_flag_off(no_backup),
            create_snapshot=_flag_off(no_snapshot),
            parallel_downloads=_flag_off(no_parallel),
            notifications=_flag_off(no_notification),
            auto_remove_conflicts=True if auto_remove else None,
        )
    except ConfigError as e:
        printer.error(str(e))
        raise typer.Exit(1) from None

    raise typer.Exit(cmd_upgrade(session_config, printer, verbose=verbose))


# ═══════════════════════════════════════════════════════════════════════════════
# CLI Entry Point
# ═══════════════════════════════════════════════════════════════════════════════


def run_cli() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":
    run_cli()
