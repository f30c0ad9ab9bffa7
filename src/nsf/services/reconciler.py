"""Reconcile a namespace's filter table with a set of desired chains.

For every call:
1. Bootstrap: ensure the umbrella chains (CHAOS-INPUT, CHAOS-OUTPUT)
   exist and are hooked once into INPUT / OUTPUT.
2. For each chain, in order: create it (or accept that it exists),
   flush it, append its rendered rules, and hook it once into the
   umbrella chain of its direction.

The first failure aborts the batch. Chains applied before it stay
applied, there is no rollback. Steps run strictly one after the other
since each one depends on the state the previous one left behind.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Generator, Iterable, Optional, Union

from nsf.core.audit import AuditEventType, AuditResult, get_audit_logger
from nsf.core.context import ExecutionContext
from nsf.core.executor import CommandExecutor
from nsf.core.exceptions import (
    NSFError,
    ReconcileCancelled,
    ReconcileError,
    ValidationError,
)
from nsf.core.locking import namespace_lock
from nsf.core.validation import (
    validate_chain_name,
    validate_ipset_name,
    validate_target,
)
from nsf.services.iptables import ChainMutator
from nsf.services.rules import (
    ChainIntent,
    Direction,
    RenderedRule,
    hook_rule,
    render_rules,
)
from nsf.services.runtime import ContainerResolver, NamespaceTarget


@dataclass
class PlannedChain:
    """An intent together with its rendered rules and umbrella chain."""
    intent: ChainIntent
    rules: list[RenderedRule]
    umbrella: str


@dataclass
class ReconcileReport:
    """What a reconciliation changed."""
    namespace: str
    chains_created: list[str] = field(default_factory=list)
    chains_replaced: list[str] = field(default_factory=list)
    rules_appended: int = 0
    hooks_added: int = 0

    @property
    def chains(self) -> list[str]:
        return self.chains_created + self.chains_replaced


class Reconciler:
    """Applies chain intents to one network namespace."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        target: Union[NamespaceTarget, str, None],
        *,
        mutator: Optional[ChainMutator] = None,
    ) -> None:
        """Initialize the reconciler.

        Args:
            ctx: Execution context
            executor: Command executor
            target: Namespace to operate on (None for the host namespace)
            mutator: Chain mutator to use (default: iptables in the namespace)
        """
        self.ctx = ctx
        self.executor = executor
        if isinstance(target, NamespaceTarget):
            self.target: Optional[NamespaceTarget] = target
            netns = target.path
        else:
            self.target = NamespaceTarget(path=target) if target else None
            netns = target
        self.netns = netns
        self.mutator = mutator or ChainMutator(ctx, executor, netns)
        self.prefix = ctx.config.iptables.chain_prefix

    @property
    def namespace_label(self) -> str:
        return self.netns or "host namespace"

    def umbrella_chains(self) -> dict[Direction, str]:
        """Umbrella chain name per direction."""
        return {direction: direction.umbrella_chain(self.prefix) for direction in Direction}

    @contextmanager
    def _step(self, step: str, chain: Optional[str] = None) -> Generator[None, None, None]:
        """Wrap failures of one step with namespace, chain and step."""
        try:
            yield
        except (ReconcileError, ReconcileCancelled):
            raise
        except NSFError as e:
            raise ReconcileError(
                e,
                namespace=self.namespace_label,
                step=step,
                chain=chain,
            ) from e

    # =========================================================================
    # Planning (pure)
    # =========================================================================

    def plan(self, chains: Iterable[ChainIntent]) -> list[PlannedChain]:
        """Validate and render every intent without touching the namespace.

        Raises:
            ReconcileError: Wrapping InvalidDirection or ValidationError
        """
        umbrellas = set(self.umbrella_chains().values())
        planned = []
        for intent in chains:
            with self._step("render", intent.name):
                validate_chain_name(intent.name)
                if intent.name in umbrellas:
                    raise ValidationError(
                        f"Chain name {intent.name} is reserved for the umbrella chain",
                        hint=f"Pick a name that does not collide with {sorted(umbrellas)}",
                    )
                validate_target(intent.target)
                for ipset in intent.ipsets:
                    validate_ipset_name(ipset)
                rules = render_rules(intent)
                planned.append(PlannedChain(
                    intent=intent,
                    rules=rules,
                    umbrella=intent.umbrella_chain(self.prefix),
                ))
        return planned

    # =========================================================================
    # Mutation
    # =========================================================================

    def bootstrap(self, report: Optional[ReconcileReport] = None) -> ReconcileReport:
        """Ensure the umbrella chains exist and are hooked into INPUT/OUTPUT.

        Safe to repeat: hooks are only appended when missing.
        """
        report = report or ReconcileReport(namespace=self.namespace_label)
        for direction, umbrella in self.umbrella_chains().items():
            with self._step("bootstrap", umbrella):
                if self.mutator.create_chain(umbrella):
                    self.ctx.console.verbose(f"Created umbrella chain {umbrella}")
                if self.mutator.ensure_rule(
                    direction.base_chain,
                    hook_rule(direction.base_chain, umbrella),
                ):
                    report.hooks_added += 1
                    self.ctx.console.verbose(f"Hooked {umbrella} into {direction.base_chain}")
        return report

    def apply_chain(self, planned: PlannedChain, report: ReconcileReport) -> None:
        """Replace the content of one chain and hook it into its umbrella."""
        name = planned.intent.name
        self.ctx.console.step(f"Applying chain {name} ({len(planned.rules)} rule(s))")

        with self._step("create", name):
            created = self.mutator.create_chain(name)

        # New or existing, the chain is replaced in full
        with self._step("flush", name):
            self.mutator.flush_chain(name)

        with self._step("append", name):
            for rule in planned.rules:
                if self.mutator.ensure_rule(name, rule):
                    report.rules_appended += 1

        with self._step("hook", name):
            if self.mutator.ensure_rule(planned.umbrella, hook_rule(planned.umbrella, name)):
                report.hooks_added += 1

        if created:
            report.chains_created.append(name)
        else:
            report.chains_replaced.append(name)

    def reconcile(self, chains: Iterable[ChainIntent]) -> ReconcileReport:
        """Make the namespace contain exactly the given chains.

        Every intent is validated and rendered before anything is changed,
        so a malformed intent causes no mutation at all.

        Returns:
            ReconcileReport describing the changes

        Raises:
            ReconcileError: First failure, with namespace, chain and step
            ReconcileCancelled: If cancelled between steps
        """
        planned = self.plan(chains)
        report = self.bootstrap()
        for item in planned:
            self.apply_chain(item, report)
        return report


def _audit(
    ctx: ExecutionContext,
    event_type: AuditEventType,
    target: NamespaceTarget,
    chains: list[ChainIntent],
    error: Optional[NSFError] = None,
    report: Optional[ReconcileReport] = None,
) -> None:
    if not ctx.config.audit.enabled:
        return

    if error is not None:
        result = AuditResult.FAILURE
    elif ctx.dry_run:
        result = AuditResult.DRY_RUN
    else:
        result = AuditResult.SUCCESS

    parameters: dict = {"chains": [c.name for c in chains]}
    if report is not None:
        parameters.update(
            rules_appended=report.rules_appended,
            hooks_added=report.hooks_added,
        )

    get_audit_logger().log_operation(
        event_type,
        result,
        namespace=target.path,
        container_id=target.container_id,
        operation="set_chains" if event_type is AuditEventType.CHAINS_RECONCILE else "bootstrap",
        parameters=parameters,
        error=str(error) if error is not None else None,
    )


def apply_chains(
    ctx: ExecutionContext,
    executor: CommandExecutor,
    target: NamespaceTarget,
    chains: list[ChainIntent],
) -> ReconcileReport:
    """Reconcile a namespace under its lock and record the outcome.

    Raises:
        NSFError: The first failure, unchanged after being audited
    """
    reconciler = Reconciler(ctx, executor, target)
    try:
        with namespace_lock(ctx, target.path):
            report = reconciler.reconcile(chains)
    except NSFError as e:
        _audit(ctx, AuditEventType.CHAINS_RECONCILE, target, chains, error=e)
        raise

    _audit(ctx, AuditEventType.CHAINS_RECONCILE, target, chains, report=report)
    return report


def bootstrap_namespace(
    ctx: ExecutionContext,
    executor: CommandExecutor,
    target: NamespaceTarget,
) -> ReconcileReport:
    """Run only the umbrella chain bootstrap under the namespace lock."""
    reconciler = Reconciler(ctx, executor, target)
    try:
        with namespace_lock(ctx, target.path):
            report = reconciler.bootstrap()
    except NSFError as e:
        _audit(ctx, AuditEventType.CHAINS_BOOTSTRAP, target, [], error=e)
        raise

    _audit(ctx, AuditEventType.CHAINS_BOOTSTRAP, target, [], report=report)
    return report


def set_container_chains(
    ctx: ExecutionContext,
    container_id: str,
    chains: list[ChainIntent],
    *,
    executor: Optional[CommandExecutor] = None,
) -> ReconcileReport:
    """Resolve a container's namespace and reconcile its chains.

    Raises:
        IdentityResolutionFailed: If the container cannot be resolved
        ReconcileError: If any reconciliation step fails
    """
    executor = executor or CommandExecutor(ctx)
    target = ContainerResolver(ctx, executor).from_container(container_id)
    return apply_chains(ctx, executor, target, chains)
