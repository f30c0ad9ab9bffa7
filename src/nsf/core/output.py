"""Terminal output for nsf, rendered with Rich.

Every tagged message goes through one table of levels giving its tag,
its colour, the verbosity it needs and its stream (warnings and errors
go to stderr). Chain tables, live rule listings and error reports are
rendered here as well, so commands hand over data and not markup.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Iterable

from rich.box import ROUNDED
from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from nsf.core.exceptions import NSFError


class Verbosity(IntEnum):
    """Output verbosity levels."""
    QUIET = 0    # Errors only
    NORMAL = 1   # Standard output
    VERBOSE = 2  # Additional details
    DEBUG = 3    # Everything, including every external command


@dataclass(frozen=True)
class Level:
    tag: str
    style: str
    verbosity: Verbosity
    stderr: bool = False


LEVELS = {
    "info": Level("INFO", "green", Verbosity.NORMAL),
    "success": Level("OK", "green", Verbosity.NORMAL),
    "warn": Level("WARN", "yellow", Verbosity.QUIET, stderr=True),
    "error": Level("ERROR", "red", Verbosity.QUIET, stderr=True),
    "debug": Level("DEBUG", "cyan", Verbosity.DEBUG),
}

# `iptables -S` lines that declare a policy or a chain rather than a rule
DECLARATION_PREFIXES = ("-P ", "-N ")


def _rich_console(*, stderr: bool, no_color: bool) -> RichConsole:
    return RichConsole(stderr=stderr, highlight=False, no_color=no_color)


class Console:
    """Verbosity-aware output shared by every command."""

    def __init__(self) -> None:
        self.verbosity = Verbosity.NORMAL
        self.dry_run = False
        self.no_color = False
        self._out = _rich_console(stderr=False, no_color=False)
        self._err = _rich_console(stderr=True, no_color=False)

    def configure(
        self,
        verbosity: int = 1,
        dry_run: bool = False,
        no_color: bool = False,
    ) -> None:
        """Set verbosity (clamped to QUIET..DEBUG), dry-run and colour."""
        self.verbosity = Verbosity(max(Verbosity.QUIET, min(verbosity, Verbosity.DEBUG)))
        self.dry_run = dry_run
        if no_color != self.no_color:
            self.no_color = no_color
            self._out = _rich_console(stderr=False, no_color=no_color)
            self._err = _rich_console(stderr=True, no_color=no_color)

    def shows(self, verbosity: Verbosity) -> bool:
        return self.verbosity >= verbosity

    def _emit(self, level: Level, message: str) -> None:
        if not self.shows(level.verbosity):
            return
        stream = self._err if level.stderr else self._out
        stream.print(f"[{level.style}][{level.tag}][/{level.style}] {message}")

    def info(self, message: str) -> None:
        self._emit(LEVELS["info"], message)

    def success(self, message: str) -> None:
        self._emit(LEVELS["success"], message)

    def warn(self, message: str) -> None:
        self._emit(LEVELS["warn"], message)

    def error(self, message: str) -> None:
        self._emit(LEVELS["error"], message)

    def debug(self, message: str) -> None:
        self._emit(LEVELS["debug"], message)

    def verbose(self, message: str) -> None:
        """Print a dimmed detail line at -v and above."""
        if self.shows(Verbosity.VERBOSE):
            self._out.print(f"[dim]{message}[/dim]")

    def step(self, message: str) -> None:
        if self.shows(Verbosity.NORMAL):
            self._out.print(f"[blue]->[/blue] {message}")

    def dry_run_msg(self, message: str) -> None:
        """Announce a skipped action, only in dry-run mode."""
        if self.dry_run:
            self._out.print(f"[blue][DRY-RUN][/blue] Would: {message}")

    def hint(self, message: str) -> None:
        self._out.print(f"[cyan]Hint:[/cyan] {message}")

    def print(self, message: Any = "", **kwargs: Any) -> None:
        """Print a string or any Rich renderable as is."""
        self._out.print(message, **kwargs)

    # =========================================================================
    # Domain rendering
    # =========================================================================

    def report_error(self, error: NSFError) -> None:
        """Print an error, its details and its hint to stderr."""
        self.error(error.message)
        for detail in error.details:
            self._err.print(Text(f"  {detail}", style="dim"))
        if error.hint:
            self._err.print(f"[cyan]Hint:[/cyan] {error.hint}")

    def chain_table(
        self,
        rows: Iterable[tuple[str, str, list[str]]],
        title: str = "Rendered chains",
    ) -> None:
        """Print chains with the umbrella chain they hook into and their rules.

        Args:
            rows: (chain name, umbrella chain, rendered rules) per chain
            title: Table title
        """
        table = Table(title=title, box=ROUNDED)
        table.add_column("Chain", style="bold", no_wrap=True)
        table.add_column("Hooked into", no_wrap=True)
        table.add_column("Rules")
        for name, umbrella, rules in rows:
            body = Text("\n".join(rules)) if rules else Text("(no rules)", style="dim")
            table.add_row(Text(name), Text(umbrella), body)
        self._out.print(table)

    def rule_listing(self, listing: str) -> None:
        """Print `iptables -S` output line by line, literally.

        Policy and chain declarations are dimmed so the rules stand out.
        """
        for line in listing.splitlines():
            if not line.strip():
                continue
            style = "dim" if line.startswith(DECLARATION_PREFIXES) else ""
            self._out.print(Text(line, style=style), soft_wrap=True)

    def summary(self, title: str, items: dict[str, Any]) -> None:
        """Print key/value pairs in a panel. Booleans become Yes/No."""
        grid = Table.grid(padding=(0, 2))
        grid.add_column(style="bold")
        grid.add_column()
        for key, value in items.items():
            if isinstance(value, bool):
                shown = Text("Yes", style="green") if value else Text("No", style="red")
            else:
                shown = Text(str(value))
            grid.add_row(f"{key}:", shown)
        self._out.print(Panel(grid, title=title, border_style="blue", expand=False))

    def yaml(self, yaml_text: str, title: str = "Configuration") -> None:
        syntax = Syntax(yaml_text, "yaml", theme="monokai", line_numbers=False)
        self._out.print(Panel(syntax, title=title, border_style="cyan"))


# Global console instance
console = Console()
