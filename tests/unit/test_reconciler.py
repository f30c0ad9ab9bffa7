"""Unit tests for namespace reconciliation."""

import json

import pytest
from unittest.mock import Mock, patch

from nsf.core.audit import AuditEventType, AuditResult
from nsf.core.exceptions import (
    InvalidDirection,
    MutationFailed,
    ReconcileCancelled,
    ReconcileError,
)
from nsf.services.reconciler import (
    Reconciler,
    apply_chains,
    bootstrap_namespace,
    set_container_chains,
)
from nsf.services.rules import ChainIntent, Direction
from nsf.services.runtime import NamespaceTarget


NETNS = "/proc/4242/ns/net"


def web_chain(**overrides) -> ChainIntent:
    values = dict(
        name="CHAOS-IN-web",
        direction=Direction.INBOUND,
        target="DROP",
        protocol="--protocol tcp",
        source_ports="--sport 80",
        ipsets=["setA", "setB"],
    )
    values.update(overrides)
    return ChainIntent(**values)


def db_chain(**overrides) -> ChainIntent:
    values = dict(
        name="CHAOS-OUT-db",
        direction=Direction.OUTBOUND,
        target="REJECT",
        ipsets=["dbhosts"],
    )
    values.update(overrides)
    return ChainIntent(**values)


@pytest.fixture
def reconciler(ctx, fake_iptables):
    """Reconciler bound to the fake backend."""
    return Reconciler(ctx, fake_iptables, NETNS)


class TestPlan:
    """Tests for Reconciler.plan."""

    def test_renders_each_chain(self, reconciler):
        """Should render rules and pick the umbrella per direction."""
        planned = reconciler.plan([web_chain(), db_chain()])

        assert [p.umbrella for p in planned] == ["CHAOS-INPUT", "CHAOS-OUTPUT"]
        assert planned[0].rules == [
            "-A CHAOS-IN-web -m set --match-set setA src -j DROP --protocol tcp --sport 80",
            "-A CHAOS-IN-web -m set --match-set setB src -j DROP --protocol tcp --sport 80",
        ]
        assert planned[1].rules == ["-A CHAOS-OUT-db -m set --match-set dbhosts dst -j REJECT"]

    def test_does_not_touch_namespace(self, reconciler, fake_iptables):
        """Planning runs no command."""
        reconciler.plan([web_chain()])
        assert fake_iptables.calls == []

    def test_invalid_direction(self, reconciler):
        """Bad direction is wrapped with the render step."""
        with pytest.raises(ReconcileError) as exc:
            reconciler.plan([web_chain(direction="forward")])
        assert isinstance(exc.value.cause, InvalidDirection)
        assert exc.value.step == "render"
        assert exc.value.chain == "CHAOS-IN-web"
        assert exc.value.exit_code == 3

    def test_umbrella_name_reserved(self, reconciler):
        """A chain cannot replace an umbrella chain."""
        with pytest.raises(ReconcileError) as exc:
            reconciler.plan([web_chain(name="CHAOS-INPUT")])
        assert "reserved" in exc.value.message

    def test_builtin_name_rejected(self, reconciler):
        """A chain cannot replace a built-in chain."""
        with pytest.raises(ReconcileError):
            reconciler.plan([web_chain(name="INPUT")])

    def test_bad_ipset(self, reconciler):
        """IP set names are validated."""
        with pytest.raises(ReconcileError):
            reconciler.plan([web_chain(ipsets=["set A"])])

    def test_custom_prefix(self, ctx, fake_iptables):
        """Umbrella chains follow the configured prefix."""
        ctx.config.iptables.chain_prefix = "NSF"
        planned = Reconciler(ctx, fake_iptables, NETNS).plan([db_chain()])
        assert planned[0].umbrella == "NSF-OUTPUT"


class TestBootstrap:
    """Tests for Reconciler.bootstrap."""

    def test_creates_and_hooks(self, reconciler, fake_iptables):
        """Should create both umbrella chains and hook them once."""
        report = reconciler.bootstrap()

        table = fake_iptables.table(NETNS)
        assert table["CHAOS-INPUT"] == []
        assert table["CHAOS-OUTPUT"] == []
        assert table["INPUT"] == ["-A INPUT -j CHAOS-INPUT"]
        assert table["OUTPUT"] == ["-A OUTPUT -j CHAOS-OUTPUT"]
        assert report.hooks_added == 2

    def test_idempotent(self, reconciler, fake_iptables):
        """Repeated bootstraps leave a single hook per base chain."""
        reconciler.bootstrap()
        second = reconciler.bootstrap()
        reconciler.bootstrap()

        assert fake_iptables.rules("INPUT", NETNS) == ["-A INPUT -j CHAOS-INPUT"]
        assert fake_iptables.rules("OUTPUT", NETNS) == ["-A OUTPUT -j CHAOS-OUTPUT"]
        assert second.hooks_added == 0

    def test_keeps_umbrella_content(self, reconciler, fake_iptables):
        """Bootstrap never flushes the umbrella chains."""
        reconciler.bootstrap()
        fake_iptables.table(NETNS)["CHAOS-INPUT"].append("-A CHAOS-INPUT -j CHAOS-IN-web")
        reconciler.bootstrap()
        assert fake_iptables.rules("CHAOS-INPUT", NETNS) == ["-A CHAOS-INPUT -j CHAOS-IN-web"]

    def test_create_failure(self, reconciler, fake_iptables):
        """Umbrella creation failure is wrapped with the bootstrap step."""
        fake_iptables.fail_on[("-N", "CHAOS-INPUT")] = "iptables: Permission denied.\n"
        with pytest.raises(ReconcileError) as exc:
            reconciler.bootstrap()
        assert exc.value.step == "bootstrap"
        assert exc.value.chain == "CHAOS-INPUT"
        assert isinstance(exc.value.cause, MutationFailed)

    @pytest.mark.parametrize("base,umbrella", [("INPUT", "CHAOS-INPUT"), ("OUTPUT", "CHAOS-OUTPUT")])
    def test_hook_failure_either_direction(self, reconciler, fake_iptables, base, umbrella):
        """A failed hook aborts bootstrap for both directions alike."""
        fake_iptables.fail_on[("-A", base)] = "iptables: Resource temporarily unavailable.\n"
        with pytest.raises(ReconcileError) as exc:
            reconciler.bootstrap()
        assert exc.value.chain == umbrella


class TestReconcile:
    """Tests for Reconciler.reconcile."""

    def test_end_state(self, reconciler, fake_iptables):
        """Each chain holds exactly its rendered rules and is hooked."""
        report = reconciler.reconcile([web_chain(), db_chain()])

        table = fake_iptables.table(NETNS)
        assert table["CHAOS-IN-web"] == [
            "-A CHAOS-IN-web -m set --match-set setA src -j DROP --protocol tcp --sport 80",
            "-A CHAOS-IN-web -m set --match-set setB src -j DROP --protocol tcp --sport 80",
        ]
        assert table["CHAOS-OUT-db"] == ["-A CHAOS-OUT-db -m set --match-set dbhosts dst -j REJECT"]
        assert table["CHAOS-INPUT"] == ["-A CHAOS-INPUT -j CHAOS-IN-web"]
        assert table["CHAOS-OUTPUT"] == ["-A CHAOS-OUTPUT -j CHAOS-OUT-db"]
        assert report.chains_created == ["CHAOS-IN-web", "CHAOS-OUT-db"]
        assert report.rules_appended == 3

    def test_repeated_reconcile_single_hook(self, reconciler, fake_iptables):
        """N reconciliations leave one hook per chain and no duplicate rules."""
        for _ in range(4):
            report = reconciler.reconcile([web_chain(), db_chain()])

        table = fake_iptables.table(NETNS)
        assert table["INPUT"].count("-A INPUT -j CHAOS-INPUT") == 1
        assert table["OUTPUT"].count("-A OUTPUT -j CHAOS-OUTPUT") == 1
        assert table["CHAOS-INPUT"] == ["-A CHAOS-INPUT -j CHAOS-IN-web"]
        assert len(table["CHAOS-IN-web"]) == 2
        assert report.chains_replaced == ["CHAOS-IN-web", "CHAOS-OUT-db"]
        assert report.hooks_added == 0

    def test_replaces_stale_rules(self, reconciler, fake_iptables):
        """Existing chain content is replaced, not merged."""
        reconciler.reconcile([web_chain(ipsets=["old1", "old2", "old3"])])
        reconciler.reconcile([web_chain(ipsets=["new"])])

        rules = fake_iptables.rules("CHAOS-IN-web", NETNS)
        assert len(rules) == 1
        assert "--match-set new src" in rules[0]

    def test_empty_ipsets_empties_chain(self, reconciler, fake_iptables):
        """A chain reconciled with no IP sets ends up empty but hooked."""
        reconciler.reconcile([web_chain()])
        reconciler.reconcile([web_chain(ipsets=[])])

        assert fake_iptables.rules("CHAOS-IN-web", NETNS) == []
        assert fake_iptables.rules("CHAOS-INPUT", NETNS) == ["-A CHAOS-INPUT -j CHAOS-IN-web"]

    def test_similar_names_hooked_separately(self, reconciler, fake_iptables):
        """A chain whose name prefixes another's still gets its own hook."""
        reconciler.reconcile([web_chain(name="CHAOS-IN-web2"), web_chain(name="CHAOS-IN-web")])
        assert fake_iptables.rules("CHAOS-INPUT", NETNS) == [
            "-A CHAOS-INPUT -j CHAOS-IN-web2",
            "-A CHAOS-INPUT -j CHAOS-IN-web",
        ]

    def test_step_order(self, reconciler, fake_iptables):
        """Per chain: create, flush, append rules, then hook."""
        reconciler.reconcile([db_chain()])
        mutations = fake_iptables.mutations
        assert mutations[-4:] == [
            ["-N", "CHAOS-OUT-db"],
            ["-F", "CHAOS-OUT-db"],
            ["-A", "CHAOS-OUT-db", "-m", "set", "--match-set", "dbhosts", "dst", "-j", "REJECT"],
            ["-A", "CHAOS-OUTPUT", "-j", "CHAOS-OUT-db"],
        ]

    def test_invalid_direction_no_mutation(self, reconciler, fake_iptables):
        """A malformed intent anywhere in the batch prevents every change."""
        with pytest.raises(ReconcileError):
            reconciler.reconcile([web_chain(), db_chain(direction=5)])
        assert fake_iptables.mutations == []

    def test_flush_failure_aborts_batch(self, reconciler, fake_iptables):
        """First failure stops the batch, earlier chains stay applied."""
        fake_iptables.fail_on[("-F", "CHAOS-OUT-db")] = "iptables: Device or resource busy.\n"
        third = web_chain(name="CHAOS-IN-api", ipsets=["api"])

        with pytest.raises(ReconcileError) as exc:
            reconciler.reconcile([web_chain(), db_chain(), third])

        assert exc.value.step == "flush"
        assert exc.value.chain == "CHAOS-OUT-db"
        assert exc.value.namespace == NETNS
        assert exc.value.exit_code == 22
        assert "Device or resource busy" in exc.value.cause.output

        table = fake_iptables.table(NETNS)
        assert len(table["CHAOS-IN-web"]) == 2
        assert "CHAOS-IN-api" not in table
        assert "-A CHAOS-OUTPUT -j CHAOS-OUT-db" not in table["CHAOS-OUTPUT"]

    def test_namespaces_are_independent(self, ctx, fake_iptables):
        """Reconciling one namespace never touches another."""
        Reconciler(ctx, fake_iptables, NETNS).reconcile([web_chain()])
        Reconciler(ctx, fake_iptables, "/proc/7/ns/net").reconcile([db_chain()])

        assert "CHAOS-OUT-db" not in fake_iptables.table(NETNS)
        assert "CHAOS-IN-web" not in fake_iptables.table("/proc/7/ns/net")

    def test_cancelled_before_step(self, ctx):
        """Cancellation surfaces unchanged, not wrapped."""
        mutator = Mock()
        mutator.create_chain.side_effect = ReconcileCancelled("Cancelled before Create chain X")
        reconciler = Reconciler(ctx, Mock(), NETNS, mutator=mutator)

        with pytest.raises(ReconcileCancelled):
            reconciler.reconcile([web_chain()])


class TestApplyChains:
    """Tests for apply_chains and bootstrap_namespace."""

    def test_audit_success(self, ctx, fake_iptables):
        """Should write a success line to the audit log."""
        target = NamespaceTarget(path=NETNS, pid=4242, container_id="abc123")
        with patch("nsf.services.reconciler.get_audit_logger") as mock_get:
            apply_chains(ctx, fake_iptables, target, [web_chain()])

        args, kwargs = mock_get.return_value.log_operation.call_args
        assert args == (AuditEventType.CHAINS_RECONCILE, AuditResult.SUCCESS)
        assert kwargs["namespace"] == NETNS
        assert kwargs["container_id"] == "abc123"
        assert kwargs["parameters"]["chains"] == ["CHAOS-IN-web"]

    def test_audit_failure_reraises(self, ctx, fake_iptables):
        """Failures are audited and re-raised."""
        fake_iptables.fail_on[("-F", "CHAOS-IN-web")] = "boom\n"
        target = NamespaceTarget(path=NETNS)
        with patch("nsf.services.reconciler.get_audit_logger") as mock_get:
            with pytest.raises(ReconcileError):
                apply_chains(ctx, fake_iptables, target, [web_chain()])

        args, kwargs = mock_get.return_value.log_operation.call_args
        assert args[1] == AuditResult.FAILURE
        assert "CHAOS-IN-web" in kwargs["error"]

    def test_audit_disabled(self, ctx, fake_iptables):
        """No audit call when auditing is off."""
        ctx.config.audit.enabled = False
        with patch("nsf.services.reconciler.get_audit_logger") as mock_get:
            apply_chains(ctx, fake_iptables, NamespaceTarget(path=NETNS), [web_chain()])
        mock_get.assert_not_called()

    def test_audit_written_to_file(self, ctx, fake_iptables, tmp_path):
        """The configured audit logger receives a JSON line."""
        from nsf.core.audit import configure_audit_logger

        configure_audit_logger(log_path=tmp_path / "audit.log")
        bootstrap_namespace(ctx, fake_iptables, NamespaceTarget(path=NETNS))

        line = json.loads((tmp_path / "audit.log").read_text().splitlines()[-1])
        assert line["event_type"] == "chains.bootstrap"
        assert line["target"]["namespace"] == NETNS
        assert line["parameters"]["hooks_added"] == 2

    def test_set_container_chains(self, ctx, fake_iptables):
        """Resolves the container, then reconciles its namespace."""
        target = NamespaceTarget(path=NETNS, pid=4242, container_id="abc")
        with patch("nsf.services.reconciler.ContainerResolver") as mock_resolver, \
                patch("nsf.services.reconciler.get_audit_logger"):
            mock_resolver.return_value.from_container.return_value = target
            report = set_container_chains(ctx, "docker://abc", [db_chain()], executor=fake_iptables)

        mock_resolver.return_value.from_container.assert_called_once_with("docker://abc")
        assert report.chains_created == ["CHAOS-OUT-db"]
        assert "CHAOS-OUT-db" in fake_iptables.table(NETNS)


class TestDryRun:
    """Tests for reconciliation in dry-run mode."""

    @pytest.fixture
    def dry_ctx(self, ctx, fake_iptables):
        ctx.dry_run = True
        fake_iptables.dry_run = True
        return ctx

    def test_fresh_namespace(self, dry_ctx, fake_iptables):
        """A namespace without any of the chains previews cleanly."""
        report = Reconciler(dry_ctx, fake_iptables, NETNS).reconcile([web_chain(), db_chain()])

        assert report.chains_created == ["CHAOS-IN-web", "CHAOS-OUT-db"]
        assert report.rules_appended == 3
        assert report.hooks_added == 4
        table = fake_iptables.table(NETNS)
        assert "CHAOS-IN-web" not in table
        assert "CHAOS-INPUT" not in table
        assert table["INPUT"] == []

    def test_existing_hooks_not_repeated(self, ctx, fake_iptables):
        """Hooks already in place are reported as present."""
        Reconciler(ctx, fake_iptables, NETNS).reconcile([web_chain()])
        ctx.dry_run = True
        fake_iptables.dry_run = True

        report = Reconciler(ctx, fake_iptables, NETNS).reconcile([web_chain()])
        assert report.hooks_added == 0

    def test_listing_denied(self, dry_ctx, fake_iptables):
        """Dry-run works when listings fail for lack of privileges."""
        fake_iptables.read_error = "iptables: Permission denied (you must be root).\n"
        report = Reconciler(dry_ctx, fake_iptables, NETNS).reconcile([db_chain()])
        assert report.rules_appended == 1
