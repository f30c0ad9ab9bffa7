"""Execution context for commands.

The ExecutionContext holds the flags, configuration and console used by
the executor and services, plus the cancellation state every external
step checks before it runs.
"""

import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from nsf.core.config import AppConfig, DEFAULT_CONFIG_PATH
from nsf.core.exceptions import ReconcileCancelled
from nsf.core.output import Console, console, Verbosity


@dataclass
class ExecutionContext:
    """Execution context passed to the executor and services.

    Attributes:
        dry_run: If True, show what would happen without executing
        verbosity: Output verbosity level (0-3)
        no_color: If True, disable colored output
        config_path: Path to configuration file
        deadline: Absolute time.monotonic() value after which steps abort
    """

    # Runtime flags
    dry_run: bool = False
    verbosity: int = 1
    no_color: bool = False

    # Configuration
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG_PATH)

    # Cancellation
    deadline: Optional[float] = None
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)

    # Internal state (initialized lazily)
    _config: Optional[AppConfig] = field(default=None, repr=False)
    _console: Console = field(default_factory=lambda: console, repr=False)

    def __post_init__(self) -> None:
        """Configure console after initialization."""
        self._console.configure(
            verbosity=self.verbosity,
            dry_run=self.dry_run,
            no_color=self.no_color,
        )

    @property
    def config(self) -> AppConfig:
        """Get application configuration (lazy loaded)."""
        if self._config is None:
            self._config = AppConfig(config_path=self.config_path)
        return self._config

    @property
    def console(self) -> Console:
        """Get console for output."""
        return self._console

    @property
    def is_verbose(self) -> bool:
        """Check if verbose output is enabled."""
        return self.verbosity >= Verbosity.VERBOSE

    # Cancellation

    def cancel(self) -> None:
        """Request cancellation. Takes effect before the next external step."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without a deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check_cancelled(self, operation: str) -> None:
        """Raise if the context was cancelled or its deadline passed.

        Args:
            operation: Step about to run, for the error message

        Raises:
            ReconcileCancelled: If the step must not start
        """
        if self.cancel_event.is_set():
            raise ReconcileCancelled(
                f"Cancelled before {operation}",
                operation=operation,
            )
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise ReconcileCancelled(
                f"Deadline exceeded before {operation}",
                operation=operation,
            )

    def with_config(self, config: AppConfig) -> "ExecutionContext":
        """Create a new context with different config."""
        return ExecutionContext(
            dry_run=self.dry_run,
            verbosity=self.verbosity,
            no_color=self.no_color,
            config_path=self.config_path,
            deadline=self.deadline,
            cancel_event=self.cancel_event,
            _config=config,
            _console=self._console,
        )


def create_context(
    dry_run: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
    timeout: Optional[float] = None,
) -> ExecutionContext:
    """Create an execution context from CLI options.

    Args:
        dry_run: Preview changes without executing
        verbose: Increase verbosity (can be repeated)
        quiet: Suppress non-essential output
        no_color: Disable colored output
        config: Path to configuration file
        timeout: Overall time budget in seconds for the operation

    Returns:
        Configured execution context
    """
    if quiet:
        verbosity = Verbosity.QUIET
    else:
        verbosity = min(Verbosity.NORMAL + verbose, Verbosity.DEBUG)

    return ExecutionContext(
        dry_run=dry_run,
        verbosity=verbosity,
        no_color=no_color,
        config_path=config or DEFAULT_CONFIG_PATH,
        deadline=time.monotonic() + timeout if timeout else None,
    )
