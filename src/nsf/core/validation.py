"""Input validation utilities.

Provides validation for:
- Chain names (iptables limits, reserved base chains)
- IP set names and jump targets
- Free-form rule fragments (protocol and port clauses)
- Process ids and namespace paths

All validators return the validated value or raise ValidationError.
"""

import re
from pathlib import Path
from typing import Union

from nsf.core.exceptions import ValidationError


# Kernel name limits (XT_EXTENSION_MAXNAMELEN and IPSET_MAXNAMELEN, minus NUL)
MAX_CHAIN_NAME_LENGTH = 28
MAX_IPSET_NAME_LENGTH = 31

# Chains owned by the kernel in the filter/nat/mangle tables
BUILTIN_CHAINS: frozenset[str] = frozenset({
    "INPUT", "OUTPUT", "FORWARD", "PREROUTING", "POSTROUTING",
})

NAME_PATTERN = re.compile(r"^[^\s!\"'`$;|&<>]+$")


def validate_chain_name(value: str, *, allow_builtin: bool = False) -> str:
    """Validate an iptables chain name.

    Rules:
    - 1 to 28 characters
    - No whitespace or shell metacharacters
    - Must not start with '-' (would be parsed as an option)
    - Must not be a built-in chain unless allow_builtin is set

    Args:
        value: Chain name to validate
        allow_builtin: Accept INPUT, OUTPUT and friends

    Returns:
        The validated chain name

    Raises:
        ValidationError: If validation fails
    """
    if not value:
        raise ValidationError(
            "Chain name cannot be empty",
            hint="Provide a chain name such as CHAOS-IN-web",
        )

    if len(value) > MAX_CHAIN_NAME_LENGTH:
        raise ValidationError(
            f"Chain name exceeds maximum length "
            f"({len(value)} > {MAX_CHAIN_NAME_LENGTH})",
            hint=f"Use a name with {MAX_CHAIN_NAME_LENGTH} or fewer characters",
            details=[f"Provided: {value}"],
        )

    if value.startswith("-") or not NAME_PATTERN.match(value):
        raise ValidationError(
            f"Invalid chain name: '{value}'",
            hint="Use letters, digits, '-' and '_' only",
        )

    if not allow_builtin and value in BUILTIN_CHAINS:
        raise ValidationError(
            f"'{value}' is a built-in chain",
            hint="Built-in chains are hooked into, never replaced",
        )

    return value


def validate_ipset_name(value: str) -> str:
    """Validate an IP set name referenced by a rule."""
    if not value:
        raise ValidationError("IP set name cannot be empty")

    if len(value) > MAX_IPSET_NAME_LENGTH:
        raise ValidationError(
            f"IP set name exceeds maximum length "
            f"({len(value)} > {MAX_IPSET_NAME_LENGTH})",
            details=[f"Provided: {value}"],
        )

    if value.startswith("-") or not NAME_PATTERN.match(value):
        raise ValidationError(
            f"Invalid IP set name: '{value}'",
            hint="IP set names cannot contain whitespace or shell characters",
        )

    return value


def validate_target(value: str) -> str:
    """Validate a jump target (ACCEPT, DROP, or a chain name)."""
    if not value:
        raise ValidationError(
            "Chain target cannot be empty",
            hint="Use ACCEPT, DROP, REJECT, RETURN or a chain name",
        )

    if value.startswith("-") or not NAME_PATTERN.match(value):
        raise ValidationError(
            f"Invalid chain target: '{value}'",
            hint="Use ACCEPT, DROP, REJECT, RETURN or a chain name",
        )

    return value


def validate_rule_fragment(value: str, field_name: str) -> str:
    """Validate a free-form rule fragment like '--sport 80'.

    Fragments are split on spaces when the command is built, so only
    single-line text without shell metacharacters is accepted.
    """
    if any(c in value for c in "\n\r;|&`$<>"):
        raise ValidationError(
            f"Invalid {field_name}: {value!r}",
            hint="Use a single line of iptables options, e.g. '--dport 443'",
        )
    return " ".join(value.split())


def validate_pid(value: Union[int, str]) -> int:
    """Validate a process id.

    Returns:
        The pid as an integer

    Raises:
        ValidationError: If the pid is not a positive integer
    """
    try:
        pid = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid process id: {value!r}")

    if pid <= 0:
        raise ValidationError(
            f"Invalid process id: {pid}",
            hint="Process id must be a positive integer",
        )

    return pid


def validate_netns_path(value: Union[str, Path]) -> str:
    """Validate a network namespace path (format only, not existence)."""
    path = str(value).strip()

    if not path or not path.startswith("/"):
        raise ValidationError(
            f"Namespace path must be absolute: {value!r}",
            hint="Use a path like /proc/1234/ns/net or /var/run/netns/NAME",
        )

    if ".." in Path(path).parts:
        raise ValidationError(
            f"Path traversal not allowed: {path}",
        )

    return path
