"""Shared fixtures: an execution context and a fake iptables backend."""

from typing import Optional

import pytest

from nsf.core.config import AppConfig, NSFConfig
from nsf.core.context import ExecutionContext
from nsf.core.executor import CommandResult


BUILTIN = ("INPUT", "OUTPUT", "FORWARD")


class FakeIptables:
    """Stands in for CommandExecutor and simulates one filter table per namespace.

    Understands the subset of iptables the services use: -S, -N, -F, -A.
    Failures are injected with fail_on[(op, chain)] = diagnostic text, or
    for every listing with read_error. With dry_run set, state-changing
    commands succeed without effect, like CommandExecutor in dry-run mode.
    """

    def __init__(self) -> None:
        self.tables: dict[Optional[str], dict[str, list[str]]] = {}
        self.calls: list[tuple[Optional[str], list[str]]] = []
        self.fail_on: dict[tuple[str, str], str] = {}
        self.dry_run = False
        self.read_error: Optional[str] = None

    def table(self, netns: Optional[str]) -> dict[str, list[str]]:
        if netns not in self.tables:
            self.tables[netns] = {name: [] for name in BUILTIN}
        return self.tables[netns]

    def rules(self, chain: str, netns: Optional[str] = None) -> list[str]:
        return self.table(netns)[chain]

    @property
    def mutations(self) -> list[list[str]]:
        return [args for _, args in self.calls if args[0] in ("-N", "-F", "-A")]

    def run(self, command, *, netns=None, description=None, check=True,
            read_only=False, timeout=None) -> CommandResult:
        args = list(command[1:])
        if args and args[0] == "-w":
            args = args[1:]
            if args and args[0].isdigit():
                args = args[1:]
        self.calls.append((netns, args))

        if self.dry_run and not read_only:
            return self._result(command, 0)

        op, chain = args[0], args[1]
        table = self.table(netns)

        if read_only and self.read_error:
            return self._result(command, 1, stderr=self.read_error)
        if (op, chain) in self.fail_on:
            return self._result(command, 1, stderr=self.fail_on[(op, chain)])

        missing = "iptables: No chain/target/match by that name.\n"
        if op == "-S":
            if chain not in table:
                return self._result(command, 1, stderr=missing)
            header = f"-P {chain} ACCEPT" if chain in BUILTIN else f"-N {chain}"
            return self._result(command, 0, stdout="\n".join([header] + table[chain]) + "\n")
        if op == "-N":
            if chain in table:
                return self._result(command, 1, stderr="iptables: Chain already exists.\n")
            table[chain] = []
            return self._result(command, 0)
        if op == "-F":
            if chain not in table:
                return self._result(command, 1, stderr=missing)
            table[chain].clear()
            return self._result(command, 0)
        if op == "-A":
            if chain not in table:
                return self._result(command, 1, stderr=missing)
            table[chain].append(" ".join(args))
            return self._result(command, 0)
        return self._result(command, 2, stderr=f"iptables: unknown option {op}\n")

    @staticmethod
    def _result(command, code, stdout="", stderr="") -> CommandResult:
        return CommandResult(command=list(command), return_code=code, stdout=stdout, stderr=stderr)


@pytest.fixture
def app_config(tmp_path):
    """Default configuration with audit and lock files under tmp_path."""
    config = NSFConfig()
    config.audit.log_path = tmp_path / "audit.log"
    config.namespace.lock_dir = tmp_path / "locks"
    return AppConfig(config_path=tmp_path / "config.yaml", config=config)


@pytest.fixture
def ctx(app_config):
    """Quiet execution context using the test configuration."""
    return ExecutionContext(verbosity=0, _config=app_config)


@pytest.fixture
def fake_iptables():
    """Fake iptables executor with an empty filter table per namespace."""
    return FakeIptables()
