"""Core framework components for the namespace firewall."""

from nsf.core.exceptions import (
    NSFError,
    ConfigurationError,
    ValidationError,
    ExecutionError,
    PrerequisiteError,
    IdentityResolutionFailed,
    InvalidDirection,
    FirewallError,
    ChainQueryFailed,
    ChainNotFound,
    MutationFailed,
    ReconcileError,
    ReconcileCancelled,
)

from nsf.core.context import ExecutionContext, create_context
from nsf.core.output import console, Console, Verbosity
from nsf.core.config import AppConfig, NSFConfig
from nsf.core.audit import (
    AuditLogger,
    AuditEvent,
    AuditEventType,
    AuditResult,
    get_audit_logger,
    configure_audit_logger,
)
from nsf.core.executor import CommandExecutor, CommandResult
from nsf.core.locking import namespace_lock

__all__ = [
    # Exceptions
    "NSFError",
    "ConfigurationError",
    "ValidationError",
    "ExecutionError",
    "PrerequisiteError",
    "IdentityResolutionFailed",
    "InvalidDirection",
    "FirewallError",
    "ChainQueryFailed",
    "ChainNotFound",
    "MutationFailed",
    "ReconcileError",
    "ReconcileCancelled",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "AppConfig",
    "NSFConfig",
    # Audit
    "AuditLogger",
    "AuditEvent",
    "AuditEventType",
    "AuditResult",
    "get_audit_logger",
    "configure_audit_logger",
    # Executor
    "CommandExecutor",
    "CommandResult",
    # Locking
    "namespace_lock",
]
