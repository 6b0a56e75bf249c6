"""
Terminal UI printer with Rich formatting.

Provides consistent output for the upgrade manager:
- Semantic colors via a Rich theme
- Glyph-based level indicators (success, warning, error, step)
- Spinners for long-running probes
- Plain-text mode for pipes, cron jobs and --plain
"""

from __future__ import annotations

import shutil
import sys
import textwrap
from types import TracebackType
from typing import IO, ClassVar, Literal

from rich import box
from rich.console import Console
from rich.live import Live
from rich.padding import Padding
from rich.panel import Panel
from rich.prompt import Confirm
from rich.spinner import Spinner
from rich.table import Table
from rich.text import Text
from rich.theme import Theme
from wcwidth import wcswidth

THEME = Theme({
    "success": "green",
    "error": "bold red",
    "warning": "yellow",
    "heading": "bold",
    "path": "cyan",
    "number": "cyan",
    "callout": "cyan",
    "dim": "dim",
    "step": "bold magenta",
})

GlyphTier = Literal["nerd", "unicode", "ascii"]

# name -> (nerd font, unicode, ascii)
GLYPHS: dict[str, tuple[str, str, str]] = {
    "success": ("󰄬", "✔", "+"),   # nf-md-check
    "error": ("󰅖", "✘", "x"),     # nf-md-close
    "warning": ("󰀦", "⚠", "!"),   # nf-md-alert
    "step": ("󰁔", "▶", ">"),      # nf-md-arrow_right_bold
    "info": ("󰋼", "ℹ", "i"),      # nf-md-information
    "dry_run": ("󰈈", "~", "~"),   # nf-md-eye
    "bullet": ("󰧟", "•", "-"),    # nf-md-circle_medium
    "prompt": ("󰘥", "?", "?"),    # nf-md-help_circle
}

_TIER_COLUMN: dict[GlyphTier, int] = {"nerd": 0, "unicode": 1, "ascii": 2}


def pick_tier(use_minimal: bool, use_unicode: bool) -> GlyphTier:
    """ASCII wins over unicode, which wins over an auto-detected nerd font."""
    if use_minimal:
        return "ascii"
    if use_unicode or int(wcswidth(GLYPHS["step"][0])) <= 0:
        return "unicode"
    return "nerd"


def padded(glyph: str, width: int = 2) -> str:
    """Pad a glyph so the text after it starts on the same column."""
    used = max(1, int(wcswidth(glyph)))
    return glyph + " " * max(0, width - used)


class _ProbeSpinner:
    """Transient spinner line; a no-op without a rich console."""

    def __init__(self, console: Console | None, message: str, indent: str = ""):
        self.message = message
        self.indent = indent
        self.live: Live | None = None
        if console is not None:
            self.spinner = Spinner("line", text=Text.from_ansi(message), style="step")
            self.live = Live(self._renderable(), console=console, refresh_per_second=12.5, transient=True)

    def _renderable(self) -> Padding:
        return Padding(self.spinner, (0, 0, 0, len(self.indent)), expand=False)

    def __enter__(self) -> _ProbeSpinner:
        if self.live:
            self.live.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> Literal[False]:
        if self.live:
            self.live.stop()
        return False

    def update(self, message: str) -> None:
        self.message = message
        if self.live:
            self.spinner.update(text=Text.from_ansi(message))
            self.live.update(self._renderable(), refresh=True)


class Printer:
    """Terminal output with Rich formatting.

    Layout grid:
    - Columns 0-1: Gutter (glyphs only)
    - Column 2+: Content
    - Column 4+: Nested details (command output, package lists)
    """

    INDENT = "  "
    INDENT2 = "    "
    KEY_WIDTH: ClassVar[int] = 18

    def __init__(
        self,
        use_plain: bool = False,
        use_minimal: bool = False,
        use_unicode: bool = False,
    ):
        self.use_plain = use_plain
        self.tier = pick_tier(use_minimal, use_unicode)
        column = _TIER_COLUMN[self.tier]
        self.raw_glyphs = {name: forms[column] for name, forms in GLYPHS.items()}
        self.marks = {name: padded(glyph) for name, glyph in self.raw_glyphs.items()}
        self.console: Console | None = None if use_plain else Console(theme=THEME, highlight=False)
        self.has_rich = self.console is not None

    # === Low-level emitters ===

    def _plain_fill(self, text: str, indent: str) -> str:
        columns = shutil.get_terminal_size(fallback=(80, 24)).columns
        return textwrap.fill(
            text,
            width=max(len(indent) + 20, columns),
            initial_indent=indent,
            subsequent_indent=indent,
            replace_whitespace=False,
            drop_whitespace=False,
            expand_tabs=False,
        )

    def _indented(self, text: str, indent: str, style: str | None = None) -> None:
        """Print each line at a fixed indent; wrapped continuations keep it."""
        for line in text.splitlines() or [text]:
            if not line:
                print()
            elif self.console is None:
                print(self._plain_fill(line, indent))
            else:
                body = Text.from_ansi(line)
                if style:
                    body.stylize(style)
                self.console.print(Padding(body, (0, 0, 0, len(indent)), expand=False), overflow="fold")

    def _marked(self, name: str, text: str, mark_style: str, text_style: str = "", stream: IO[str] | None = None) -> None:
        mark = self.marks[name]
        if self.console is None:
            print(f"{mark}{text}", file=stream or sys.stdout)
            return
        line = Text(mark, style=mark_style)
        line.append(text, style=text_style)
        self.console.print(line, overflow="fold")

    # === Leveled lines ===

    def step(self, text: str) -> None:
        """Start a new phase: blank line, then a bold heading."""
        print()
        self._marked("step", text, "step", "heading")

    def info(self, text: str) -> None:
        self._marked("info", text, "callout")

    def success(self, text: str) -> None:
        self._marked("success", text, "success")

    def warn(self, text: str) -> None:
        self._marked("warning", text, "warning")

    def error(self, text: str) -> None:
        self._marked("error", text, "error", stream=sys.stderr)

    # === Layout helpers ===

    def detail(self, text: str) -> None:
        self._indented(text, self.INDENT2, style="dim")

    def bullet(self, text: str) -> None:
        self._indented(self.marks["bullet"] + text, self.INDENT)

    def kv_line(self, key: str, value: str) -> None:
        label = f"{key + ':':<{self.KEY_WIDTH}}"
        if self.console is None:
            print(f"{self.INDENT}{label}{value}")
            return
        line = Text(label)
        line.append(value, style="path")
        self.console.print(Padding(line, (0, 0, 0, len(self.INDENT)), expand=False))

    def stream_line(self, text: str, indent: str = "    ") -> None:
        """Echo one line of live pacman / yay output."""
        self._indented(text, indent, style="dim")

    def banner(self, title: str, lines: list[str] | None = None, style: str = "callout") -> None:
        """Boxed banner used for the session header and the reboot notice."""
        lines = lines or []
        print()
        if self.console is not None:
            self.console.print(Panel(
                "\n".join(lines) or title,
                title=title if lines else None,
                title_align="left",
                border_style=style,
                box=box.ROUNDED,
                expand=False,
            ))
            return
        rule = "=" * max(len(title), *(len(self.INDENT) + len(text) for text in lines), 0)
        print(rule, title, *(self.INDENT + text for text in lines), rule, sep="\n")

    def table(self, title: str, columns: list[str], rows: list[list[str]]) -> None:
        print()
        if self.console is None:
            print(f"{self.INDENT}{title}")
            for row in rows:
                print(self.INDENT2 + "  ".join(row))
            return
        grid = Table(title=title, box=box.ROUNDED, header_style="heading", title_justify="left")
        for column in columns:
            grid.add_column(column)
        for row in rows:
            grid.add_row(*row)
        self.console.print(grid)

    def dry_run_banner(self) -> None:
        print()
        self._marked("dry_run", "Dry Run (no changes will be made)", "warning", "heading")

    def status(self, message: str) -> _ProbeSpinner:
        """Spinner shown while a slow probe (ldd scan, checkupdates) runs."""
        return _ProbeSpinner(self.console, message)

    def confirm(self, prompt: str, default: bool = True) -> bool:
        """Ask a yes/no question; EOF on stdin answers with the default."""
        question = f"{self.raw_glyphs['prompt']} {prompt}"
        try:
            if self.console is not None:
                return bool(Confirm.ask(f"[warning]{question}[/warning]", default=default, console=self.console))
            answer = input(question + (" [Y/n]: " if default else " [y/N]: ")).strip().lower()
        except EOFError:
            return default
        return default if not answer else answer in ("y", "yes")
