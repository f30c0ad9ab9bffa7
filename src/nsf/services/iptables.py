"""Iptables state prober and chain mutator for one network namespace.

There is no structured query API for the filter table, so current state
is read from `iptables -S <chain>` output and rule presence is decided
by text containment. That logic sits behind the StateProber interface
so another backend can answer "does an equivalent rule exist" its own way.

Every command:
- runs inside the target namespace (nsenter --net=<path>)
- waits for the xtables lock (-w)
- checks the context for cancellation before it starts
"""

import re
from typing import Optional, Protocol

from nsf.core.context import ExecutionContext
from nsf.core.executor import CommandExecutor, CommandResult
from nsf.core.exceptions import (
    ChainNotFound,
    ChainQueryFailed,
    MutationFailed,
)
from nsf.services.rules import RenderedRule


# Diagnostic printed by `iptables -N` when the chain is already there
CHAIN_EXISTS_DIAGNOSTIC = "Chain already exists."

# Diagnostics printed by `iptables -S` for a missing chain (legacy, nft)
CHAIN_MISSING_DIAGNOSTICS = (
    "No chain/target/match by that name",
    "does not exist",
)


def rule_present(listing: str, rule: RenderedRule) -> bool:
    """Check whether a rule appears in a chain listing.

    Containment is bounded by whitespace so that '-A X -j web' is not
    found inside '-A X -j web2'.
    """
    rule = " ".join(rule.split())
    if not rule:
        return False
    pattern = re.compile(r"(?:^|\s)" + re.escape(rule) + r"(?=\s|$)", re.MULTILINE)
    return pattern.search(listing) is not None


class StateProber(Protocol):
    """Read access to the live rules of a namespace."""

    def list_rules(self, chain: str) -> str:
        """Return the raw listing of a chain, raising ChainNotFound if absent."""
        ...

    def has_rule(self, chain: str, rule: RenderedRule) -> bool:
        """Return True if an equivalent rule already exists in the chain."""
        ...


class _IptablesCommand:
    """Shared command plumbing for the prober and the mutator."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        netns: Optional[str],
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.netns = netns

    @property
    def namespace_label(self) -> str:
        return self.netns or "host namespace"

    def _run(
        self,
        args: list[str],
        *,
        description: str,
        read_only: bool = False,
    ) -> CommandResult:
        settings = self.ctx.config.iptables
        wait = ["-w", str(settings.wait_seconds)] if settings.wait_seconds else ["-w"]
        return self.executor.run(
            [settings.binary] + wait + args,
            netns=self.netns,
            description=description,
            check=False,
            read_only=read_only,
        )


class IptablesProber(_IptablesCommand):
    """State prober backed by `iptables -S`."""

    def list_rules(self, chain: str) -> str:
        """List the rules of a chain as printed by `iptables -S`.

        Raises:
            ChainNotFound: If the chain does not exist
            ChainQueryFailed: If the listing fails for any other reason
        """
        result = self._run(
            ["-S", chain],
            description=f"List rules of {chain}",
            read_only=True,
        )
        if result.success:
            return result.stdout

        output = result.output.strip()
        if any(marker in output for marker in CHAIN_MISSING_DIAGNOSTICS):
            raise ChainNotFound(
                f"Chain {chain} does not exist",
                namespace=self.namespace_label,
                chain=chain,
                operation="list",
            )
        raise ChainQueryFailed(
            f"Failed to list rules of chain {chain}",
            namespace=self.namespace_label,
            chain=chain,
            operation="list",
            details=[f"Exit code: {result.return_code}"] + ([f"Output: {output}"] if output else []),
        )

    def has_rule(self, chain: str, rule: RenderedRule) -> bool:
        return rule_present(self.list_rules(chain), rule)

    def chain_exists(self, chain: str) -> bool:
        """Check if a chain exists in the namespace."""
        try:
            self.list_rules(chain)
        except ChainNotFound:
            return False
        return True


class ChainMutator(_IptablesCommand):
    """Idempotent chain primitives: create, flush, ensure rule."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        netns: Optional[str],
        *,
        prober: Optional[StateProber] = None,
    ) -> None:
        super().__init__(ctx, executor, netns)
        self.prober: StateProber = prober or IptablesProber(ctx, executor, netns)

    def create_chain(self, name: str) -> bool:
        """Ensure a chain exists.

        Returns:
            True if the chain was created, False if it already existed

        Raises:
            MutationFailed: On any other failure, with the raw diagnostic
        """
        result = self._run(["-N", name], description=f"Create chain {name}")
        output = result.output

        if result.success and not output.strip():
            self.ctx.console.debug(f"Created chain {name}")
            return True
        if not result.success and CHAIN_EXISTS_DIAGNOSTIC in output:
            self.ctx.console.debug(f"Chain {name} already exists")
            return False

        raise MutationFailed(
            f"Failed to create chain {name}",
            output=output,
            return_code=result.return_code,
            namespace=self.namespace_label,
            chain=name,
            operation="create",
        )

    def flush_chain(self, name: str) -> None:
        """Remove every rule from a chain, keeping the chain itself.

        Raises:
            MutationFailed: If the flush fails
        """
        result = self._run(["-F", name], description=f"Flush chain {name}")
        if not result.success:
            raise MutationFailed(
                f"Failed to flush chain {name}",
                output=result.output,
                return_code=result.return_code,
                namespace=self.namespace_label,
                chain=name,
                operation="flush",
            )

    def ensure_rule(self, chain: str, rule: RenderedRule) -> bool:
        """Append a rule unless an equivalent one is already in the chain.

        Args:
            chain: Chain the rule belongs to, used for the presence check
            rule: Full rule specification starting with '-A <chain>'

        Returns:
            True if the rule was appended, False if it was already present

        In dry-run mode a chain that cannot be listed counts as empty: the
        -N that would create it was skipped, and listing may need root.

        Raises:
            ChainQueryFailed: If the chain cannot be listed
            MutationFailed: If the chain is missing or the append fails
        """
        try:
            present = self.prober.has_rule(chain, rule)
        except ChainQueryFailed as e:
            if self.ctx.dry_run:
                self.ctx.console.debug(f"Cannot list {chain} in dry-run, assuming it is empty")
                present = False
            elif isinstance(e, ChainNotFound):
                raise MutationFailed(
                    f"Cannot append to missing chain {chain}",
                    namespace=self.namespace_label,
                    chain=chain,
                    operation="append",
                    hint="Create the chain before adding rules to it",
                ) from e
            else:
                raise

        if present:
            self.ctx.console.debug(f"Rule already present in {chain}: {rule}")
            return False

        result = self._run(rule.split(), description=f"Append to {chain}: {rule}")
        if not result.success:
            raise MutationFailed(
                f"Failed to append rule to chain {chain}",
                output=result.output,
                return_code=result.return_code,
                namespace=self.namespace_label,
                chain=chain,
                operation="append",
                hint=f"Rule: {rule}",
            )
        return True
