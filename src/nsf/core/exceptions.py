"""Custom exceptions for the namespace firewall tool.

All exceptions provide:
- Clear error messages
- Optional hints for resolution
- Optional details for debugging
- Exit codes for proper shell integration
"""

from typing import Optional


class NSFError(Exception):
    """Base exception for all nsf errors.

    Attributes:
        message: Human-readable error description
        hint: Suggested action to resolve the error
        details: Additional context for debugging
        exit_code: Shell exit code (1-127)
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []

    def __str__(self) -> str:
        return self.message


class ConfigurationError(NSFError):
    """Configuration file or settings errors.

    Raised when:
    - Config file unreadable
    - Invalid YAML syntax
    - Invalid configuration values
    """
    exit_code = 2


class ValidationError(NSFError):
    """Input validation errors.

    Raised when:
    - Invalid chain, ipset or target names
    - Invalid pid or namespace path
    - Malformed request file
    """
    exit_code = 3


class ExecutionError(NSFError):
    """Command execution failures.

    Raised when:
    - Shell command returns non-zero exit code
    - Shell command times out
    - Binary cannot be executed
    """
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if stderr:
            details.append(f"Error output: {stderr}")
        super().__init__(message, hint=hint, details=details)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


class PrerequisiteError(NSFError):
    """Missing prerequisites.

    Raised when:
    - Required command not found
    - Insufficient permissions
    """
    exit_code = 6


# Domain-specific exceptions

class IdentityResolutionFailed(NSFError):
    """Container or process could not be resolved to a network namespace.

    Raised when:
    - Container runtime does not know the container
    - Container is not running (pid 0)
    - Namespace path does not exist
    """
    exit_code = 20

    def __init__(
        self,
        message: str,
        *,
        container_id: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.container_id = container_id


class InvalidDirection(ValidationError):
    """Chain direction is neither input nor output."""

    def __init__(
        self,
        direction: object,
        *,
        chain: Optional[str] = None,
    ) -> None:
        where = f" for chain {chain}" if chain else ""
        super().__init__(
            f"Unknown chain direction {direction!r}{where}",
            hint="Direction must be 'input' or 'output'",
        )
        self.direction = direction
        self.chain = chain


class FirewallError(NSFError):
    """Filter table errors scoped to a namespace and chain.

    Attributes:
        namespace: Network namespace path the command targeted
        chain: Chain the command operated on
        operation: Short operation name (list, create, flush, append)
    """

    def __init__(
        self,
        message: str,
        *,
        namespace: Optional[str] = None,
        chain: Optional[str] = None,
        operation: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        details = list(details or [])
        context = [
            f"{label}: {value}"
            for label, value in (
                ("Namespace", namespace),
                ("Chain", chain),
                ("Operation", operation),
            )
            if value
        ]
        super().__init__(message, hint=hint, details=context + details)
        self.namespace = namespace
        self.chain = chain
        self.operation = operation


class ChainQueryFailed(FirewallError):
    """Listing the rules of a chain failed."""
    exit_code = 21


class ChainNotFound(ChainQueryFailed):
    """The chain does not exist in the namespace."""


class MutationFailed(FirewallError):
    """Creating, flushing or appending to a chain failed.

    Carries the raw diagnostic text printed by the filter tool.
    """
    exit_code = 22

    def __init__(
        self,
        message: str,
        *,
        output: str = "",
        return_code: Optional[int] = None,
        namespace: Optional[str] = None,
        chain: Optional[str] = None,
        operation: Optional[str] = None,
        hint: Optional[str] = None,
    ) -> None:
        details = []
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if output.strip():
            details.append(f"Output: {output.strip()}")
        super().__init__(
            message,
            namespace=namespace,
            chain=chain,
            operation=operation,
            hint=hint,
            details=details,
        )
        self.output = output
        self.return_code = return_code


class ReconcileError(NSFError):
    """A reconciliation step failed.

    Wraps the first failure of a batch with the namespace, chain and step
    it happened in. The exit code is taken from the wrapped error.
    """

    def __init__(
        self,
        cause: NSFError,
        *,
        namespace: str,
        step: str,
        chain: Optional[str] = None,
    ) -> None:
        where = f"chain {chain}" if chain else "environment"
        super().__init__(
            f"Failed to {step} {where} in {namespace}: {cause.message}",
            hint=cause.hint,
            details=list(cause.details),
        )
        self.cause = cause
        self.namespace = namespace
        self.step = step
        self.chain = chain
        self.exit_code = cause.exit_code


class ReconcileCancelled(NSFError):
    """Reconciliation was cancelled or ran past its deadline."""
    exit_code = 24

    def __init__(self, message: str, *, operation: Optional[str] = None) -> None:
        super().__init__(
            message,
            hint="Increase --timeout or retry the reconciliation",
        )
        self.operation = operation
