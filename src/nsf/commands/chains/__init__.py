"""Chain management commands.

Applies a chain request to a network namespace:
- Resolve the namespace from a container id, a pid or a path
- Bootstrap the umbrella chains and their hooks
- Replace the content of every requested chain
"""

import os
from pathlib import Path
from typing import Annotated, Optional

import typer

from nsf.core import (
    NSFError,
    ChainNotFound,
    ValidationError,
    console,
    ExecutionContext,
    create_context,
    CommandExecutor,
    configure_audit_logger,
)
from nsf.services.iptables import IptablesProber
from nsf.services.reconciler import (
    ReconcileReport,
    Reconciler,
    apply_chains,
    bootstrap_namespace,
)
from nsf.services.request import load_request
from nsf.services.runtime import ContainerResolver, NamespaceTarget


app = typer.Typer(
    name="chains",
    help="Reconcile iptables chains inside network namespaces.",
    no_args_is_help=True,
)


# Shared options
ContainerOption = Annotated[
    Optional[str],
    typer.Option("--container", "-C", help="Container id (docker:// or containerd:// prefix allowed)"),
]
PidOption = Annotated[
    Optional[int],
    typer.Option("--pid", "-p", help="Process id whose network namespace is targeted"),
]
NetnsOption = Annotated[
    Optional[Path],
    typer.Option("--netns", "-n", help="Network namespace path, e.g. /var/run/netns/blue"),
]
DryRunOption = Annotated[
    bool,
    typer.Option("--dry-run", help="Preview commands without executing them"),
]
TimeoutOption = Annotated[
    Optional[float],
    typer.Option("--timeout", "-t", help="Overall time budget in seconds"),
]
VerboseOption = Annotated[
    int,
    typer.Option("--verbose", "-v", count=True, help="Increase verbosity (-vv shows commands)"),
]
QuietOption = Annotated[
    bool,
    typer.Option("--quiet", "-q", help="Only show errors"),
]
NoColorOption = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output"),
]
ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to configuration file"),
]


def _get_services(
    dry_run: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
    timeout: Optional[float] = None,
) -> tuple[ExecutionContext, CommandExecutor]:
    """Create context and executor, and point the audit log at the config.

    Raises:
        ConfigurationError: If the config file is invalid
    """
    ctx = create_context(
        dry_run=dry_run,
        verbose=verbose,
        quiet=quiet,
        no_color=no_color,
        config=config,
        timeout=timeout,
    )
    audit = ctx.config.audit
    configure_audit_logger(log_path=audit.log_path, enabled=audit.enabled)
    return ctx, CommandExecutor(ctx)


def _check_root(ctx: ExecutionContext) -> None:
    """Check for root privileges."""
    if os.geteuid() != 0 and not ctx.dry_run:
        ctx.console.error("This operation requires root privileges")
        ctx.console.hint("Run with: sudo nsf chains ...")
        raise typer.Exit(6)


def handle_error(error: NSFError) -> None:
    """Report an NSFError and exit with its exit code."""
    console.report_error(error)
    raise typer.Exit(error.exit_code)


def _resolve_target(
    ctx: ExecutionContext,
    executor: CommandExecutor,
    container: Optional[str],
    pid: Optional[int],
    netns: Optional[Path],
) -> NamespaceTarget:
    """Resolve exactly one of --container, --pid, --netns.

    Raises:
        ValidationError: If none or several are given
        IdentityResolutionFailed: If the target cannot be resolved
    """
    given = [name for name, value in (
        ("--container", container),
        ("--pid", pid),
        ("--netns", netns),
    ) if value is not None]

    if len(given) != 1:
        raise ValidationError(
            "Specify exactly one namespace target" if given else "No namespace target given",
            hint="Use one of --container, --pid or --netns",
        )

    resolver = ContainerResolver(ctx, executor)
    if container is not None:
        return resolver.from_container(container)
    if pid is not None:
        return resolver.from_pid(pid)
    return resolver.from_path(netns)


def _print_report(ctx: ExecutionContext, target: NamespaceTarget, report: ReconcileReport) -> None:
    ctx.console.summary("Chains applied", {
        "Namespace": str(target),
        "Chains created": ", ".join(report.chains_created) or "-",
        "Chains replaced": ", ".join(report.chains_replaced) or "-",
        "Rules appended": report.rules_appended,
        "Hooks added": report.hooks_added,
    })


# =============================================================================
# Apply Command
# =============================================================================

@app.command("apply")
def chains_apply(
    request_file: Annotated[
        Path,
        typer.Argument(help="YAML or JSON file listing the chains"),
    ],
    container: ContainerOption = None,
    pid: PidOption = None,
    netns: NetnsOption = None,
    dry_run: DryRunOption = False,
    timeout: TimeoutOption = None,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Make a namespace contain exactly the requested chains.

    Each chain is created if missing, flushed, filled with one rule per
    IP set and hooked into CHAOS-INPUT or CHAOS-OUTPUT. Hooks are never
    duplicated, so the command is safe to repeat.

    [bold]Examples:[/bold]

        nsf chains apply chains.yaml --container docker://3f2a...
        nsf chains apply chains.yaml --pid 4242 --dry-run -vv
    """
    try:
        ctx, executor = _get_services(
            dry_run=dry_run,
            verbose=verbose,
            quiet=quiet,
            no_color=no_color,
            config=config,
            timeout=timeout,
        )
        _check_root(ctx)

        intents = load_request(request_file)
        target = _resolve_target(ctx, executor, container, pid, netns)

        ctx.console.step(f"Reconciling {len(intents)} chain(s) in {target}")
        report = apply_chains(ctx, executor, target, intents)

        if not ctx.dry_run:
            ctx.console.success(f"Chains in sync for {target}")
        if not quiet:
            _print_report(ctx, target, report)

    except NSFError as e:
        handle_error(e)


# =============================================================================
# Bootstrap Command
# =============================================================================

@app.command("bootstrap")
def chains_bootstrap(
    container: ContainerOption = None,
    pid: PidOption = None,
    netns: NetnsOption = None,
    dry_run: DryRunOption = False,
    timeout: TimeoutOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Create the umbrella chains and hook them into INPUT and OUTPUT.

    [bold]Examples:[/bold]

        nsf chains bootstrap --pid 4242
    """
    try:
        ctx, executor = _get_services(
            dry_run=dry_run,
            verbose=verbose,
            no_color=no_color,
            config=config,
            timeout=timeout,
        )
        _check_root(ctx)

        target = _resolve_target(ctx, executor, container, pid, netns)
        report = bootstrap_namespace(ctx, executor, target)

        if report.hooks_added:
            ctx.console.success(f"Added {report.hooks_added} hook(s) in {target}")
        else:
            ctx.console.info(f"Umbrella chains already hooked in {target}")

    except NSFError as e:
        handle_error(e)


# =============================================================================
# Render Command
# =============================================================================

@app.command("render")
def chains_render(
    request_file: Annotated[
        Path,
        typer.Argument(help="YAML or JSON file listing the chains"),
    ],
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Show the rules a request file renders to, without touching iptables.

    [bold]Examples:[/bold]

        nsf chains render chains.yaml
    """
    try:
        ctx, executor = _get_services(no_color=no_color, config=config)
        planned = Reconciler(ctx, executor, None).plan(load_request(request_file))

        ctx.console.chain_table(
            (item.intent.name, item.umbrella, item.rules) for item in planned
        )

    except NSFError as e:
        handle_error(e)


# =============================================================================
# List Command
# =============================================================================

@app.command("list")
def chains_list(
    chain: Annotated[
        str,
        typer.Argument(help="Chain to list, e.g. CHAOS-INPUT"),
    ],
    container: ContainerOption = None,
    pid: PidOption = None,
    netns: NetnsOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
    config: ConfigOption = None,
) -> None:
    """Print the live rules of a chain in a namespace (iptables -S).

    [bold]Examples:[/bold]

        nsf chains list CHAOS-INPUT --pid 4242
    """
    try:
        ctx, executor = _get_services(verbose=verbose, no_color=no_color, config=config)
        _check_root(ctx)

        target = _resolve_target(ctx, executor, container, pid, netns)
        prober = IptablesProber(ctx, executor, target.path)

        try:
            listing = prober.list_rules(chain)
        except ChainNotFound as e:
            ctx.console.warn(f"Chain {chain} does not exist in {target}")
            raise typer.Exit(e.exit_code)

        ctx.console.rule_listing(listing)

    except NSFError as e:
        handle_error(e)
