"""Command execution with namespace attachment.

Provides:
- Safe command execution with output capture
- Running a command inside a network namespace via nsenter
- Timeouts bounded by the context deadline
- Dry-run mode support
"""

import shlex
import subprocess
from dataclasses import dataclass
from typing import Optional

from rich.markup import escape

from nsf.core.context import ExecutionContext
from nsf.core.exceptions import ExecutionError, PrerequisiteError, ReconcileCancelled


@dataclass
class CommandResult:
    """Result of a command execution."""
    command: list[str]
    return_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        """Check if command succeeded."""
        return self.return_code == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, as diagnostics are printed to either."""
        return self.stdout + self.stderr


class CommandExecutor:
    """Safe command execution with dry-run support and output capture.

    Features:
    - Dry-run mode shows what would happen
    - Output capture for processing
    - Network namespace attachment (nsenter --net)
    - Cancellation checked before every command
    """

    def __init__(self, ctx: ExecutionContext) -> None:
        """Initialize executor with context.

        Args:
            ctx: Execution context with flags
        """
        self.ctx = ctx

    def wrap_netns(self, command: list[str], netns: Optional[str]) -> list[str]:
        """Prefix a command so it runs inside the given network namespace."""
        if not netns:
            return list(command)
        nsenter = self.ctx.config.namespace.nsenter_binary
        return [nsenter, f"--net={netns}", "--"] + list(command)

    def _effective_timeout(self, timeout: Optional[float]) -> float:
        limit = float(timeout or self.ctx.config.iptables.command_timeout)
        remaining = self.ctx.remaining()
        if remaining is not None:
            limit = min(limit, remaining)
        return limit

    def run(
        self,
        command: list[str],
        *,
        netns: Optional[str] = None,
        description: Optional[str] = None,
        check: bool = True,
        read_only: bool = False,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Execute a command, optionally inside a network namespace.

        Args:
            command: Command as list of strings
            netns: Network namespace path to attach to
            description: Human-readable description for logging
            check: Raise exception on non-zero exit
            read_only: Command does not change state, run it even in dry-run
            timeout: Command timeout in seconds (default from config)

        Returns:
            CommandResult with output

        Raises:
            ReconcileCancelled: If the context was cancelled
            PrerequisiteError: If the binary is missing or cannot be executed
            ExecutionError: If command fails and check=True, or times out
        """
        self.ctx.check_cancelled(description or command[0])

        full_command = self.wrap_netns(command, netns)
        cmd_display = shlex.join(full_command)

        if description:
            self.ctx.console.verbose(description)
        self.ctx.console.debug(f"Running: {escape(cmd_display)}")

        if self.ctx.dry_run and not read_only:
            self.ctx.console.dry_run_msg(f"Run: {escape(cmd_display)}")
            return CommandResult(
                command=full_command,
                return_code=0,
                stdout="",
                stderr="",
            )

        effective_timeout = self._effective_timeout(timeout)
        if effective_timeout <= 0:
            raise ReconcileCancelled(
                f"Deadline exceeded before {description or cmd_display}",
                operation=description,
            )

        try:
            result = subprocess.run(
                full_command,
                capture_output=True,
                text=True,
                timeout=effective_timeout,
            )
        except subprocess.TimeoutExpired:
            raise ExecutionError(
                f"Command timed out after {effective_timeout:.0f}s: {description or cmd_display}",
                command=cmd_display,
            )
        except FileNotFoundError as e:
            raise PrerequisiteError(
                f"Command not found: {full_command[0]}",
                hint="Install it or point the configuration at the right binary",
                details=[str(e)],
            ) from e
        except OSError as e:
            raise PrerequisiteError(
                f"Cannot execute {full_command[0]}: {e.strerror or e}",
                hint="Check that it is executable and that nsf runs as root",
                details=[f"Command: {cmd_display}"],
            ) from e

        cmd_result = CommandResult(
            command=full_command,
            return_code=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )

        if check and result.returncode != 0:
            raise ExecutionError(
                f"Command failed: {description or cmd_display}",
                command=cmd_display,
                return_code=result.returncode,
                stderr=cmd_result.stderr.strip() or None,
            )

        return cmd_result
