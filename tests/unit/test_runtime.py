"""Unit tests for container and namespace resolution."""

from pathlib import Path

import pytest
from unittest.mock import Mock

from nsf.core.exceptions import IdentityResolutionFailed, ValidationError
from nsf.core.executor import CommandResult
from nsf.services.runtime import (
    ContainerResolver,
    NamespaceTarget,
    netns_path,
    strip_runtime_prefix,
)


def result(code=0, stdout="", stderr="") -> CommandResult:
    return CommandResult(command=["docker"], return_code=code, stdout=stdout, stderr=stderr)


@pytest.fixture
def mock_executor():
    """Executor mock answering a pid lookup with 4242."""
    executor = Mock()
    executor.run.return_value = result(stdout="4242\n")
    return executor


@pytest.fixture
def fake_proc(ctx, tmp_path):
    """Point proc_root at a temp dir holding /proc/4242/ns/net."""
    proc = tmp_path / "proc"
    (proc / "4242" / "ns").mkdir(parents=True)
    (proc / "4242" / "ns" / "net").touch()
    ctx.config.namespace.proc_root = proc
    return proc


class TestStripRuntimePrefix:
    """Tests for strip_runtime_prefix."""

    @pytest.mark.parametrize("raw", [
        "docker://3f2a9c",
        "containerd://3f2a9c",
        "cri-o://3f2a9c",
        "3f2a9c",
        "  docker://3f2a9c ",
    ])
    def test_strips(self, raw):
        """Should strip any known scheme."""
        assert strip_runtime_prefix(raw) == "3f2a9c"


class TestNetnsPath:
    """Tests for netns_path."""

    def test_default_proc(self):
        """Should build the /proc handle."""
        assert netns_path(4242) == "/proc/4242/ns/net"

    def test_custom_root(self):
        """Should honor another proc root."""
        assert netns_path("17", Path("/host/proc")) == "/host/proc/17/ns/net"

    def test_invalid_pid(self):
        """Should reject non-positive pids."""
        with pytest.raises(ValidationError):
            netns_path(0)


class TestNamespaceTarget:
    """Tests for NamespaceTarget."""

    def test_str_with_container(self):
        """Should show a short container id."""
        target = NamespaceTarget(path="/proc/1/ns/net", pid=1, container_id="a" * 64)
        assert str(target) == f"container {'a' * 12} (/proc/1/ns/net)"

    def test_str_path_only(self):
        """Should show the path."""
        assert str(NamespaceTarget(path="/var/run/netns/blue")) == "/var/run/netns/blue"


class TestGetPid:
    """Tests for ContainerResolver.get_pid."""

    def test_docker_command(self, ctx, mock_executor):
        """Should inspect the container with docker by default."""
        pid = ContainerResolver(ctx, mock_executor).get_pid("docker://3f2a9c")

        assert pid == 4242
        args, kwargs = mock_executor.run.call_args
        assert args[0] == ["docker", "inspect", "--format", "{{.State.Pid}}", "3f2a9c"]
        assert kwargs["read_only"] is True

    def test_containerd_command(self, ctx, mock_executor):
        """Should use crictl for containerd."""
        ctx.config.runtime.kind = "containerd"
        ContainerResolver(ctx, mock_executor).get_pid("containerd://3f2a9c")

        command = mock_executor.run.call_args[0][0]
        assert command[0] == "crictl"
        assert "{{.info.pid}}" in command
        assert command[-1] == "3f2a9c"

    def test_unknown_container(self, ctx, mock_executor):
        """Runtime failure is an identity failure."""
        mock_executor.run.return_value = result(1, stderr="Error: No such object: nope\n")
        with pytest.raises(IdentityResolutionFailed) as exc:
            ContainerResolver(ctx, mock_executor).get_pid("nope")
        assert exc.value.exit_code == 20
        assert exc.value.container_id == "nope"
        assert "Error: No such object: nope" in exc.value.details

    def test_not_running(self, ctx, mock_executor):
        """Pid 0 means the container is stopped."""
        mock_executor.run.return_value = result(stdout="0\n")
        with pytest.raises(IdentityResolutionFailed) as exc:
            ContainerResolver(ctx, mock_executor).get_pid("3f2a9c")
        assert "not running" in exc.value.message

    def test_garbage_output(self, ctx, mock_executor):
        """Non-numeric output is rejected."""
        mock_executor.run.return_value = result(stdout="<no value>\n")
        with pytest.raises(IdentityResolutionFailed):
            ContainerResolver(ctx, mock_executor).get_pid("3f2a9c")

    def test_empty_id(self, ctx, mock_executor):
        """An empty id never reaches the runtime."""
        with pytest.raises(IdentityResolutionFailed):
            ContainerResolver(ctx, mock_executor).get_pid("docker://")
        mock_executor.run.assert_not_called()


class TestResolve:
    """Tests for the from_* resolvers."""

    def test_from_container(self, ctx, mock_executor, fake_proc):
        """Should resolve container id to its namespace."""
        target = ContainerResolver(ctx, mock_executor).from_container("docker://3f2a9c")

        assert target.path == str(fake_proc / "4242" / "ns" / "net")
        assert target.pid == 4242
        assert target.container_id == "3f2a9c"

    def test_from_container_namespace_gone(self, ctx, mock_executor, tmp_path):
        """Should fail when the process has exited."""
        ctx.config.namespace.proc_root = tmp_path
        with pytest.raises(IdentityResolutionFailed) as exc:
            ContainerResolver(ctx, mock_executor).from_container("3f2a9c")
        assert "not found" in exc.value.message

    def test_dry_run_skips_existence(self, ctx, mock_executor, tmp_path):
        """Dry-run resolves without requiring the namespace."""
        ctx.dry_run = True
        ctx.config.namespace.proc_root = tmp_path
        target = ContainerResolver(ctx, mock_executor).from_container("3f2a9c")
        assert target.pid == 4242

    def test_from_pid(self, ctx, mock_executor, fake_proc):
        """Should resolve a pid without the runtime."""
        target = ContainerResolver(ctx, mock_executor).from_pid(4242)
        assert target.pid == 4242
        mock_executor.run.assert_not_called()

    def test_from_pid_invalid(self, ctx, mock_executor):
        """Invalid pids are identity failures."""
        with pytest.raises(IdentityResolutionFailed):
            ContainerResolver(ctx, mock_executor).from_pid(-3)

    def test_from_path(self, ctx, mock_executor, tmp_path):
        """Should accept an existing absolute path."""
        handle = tmp_path / "blue"
        handle.touch()
        target = ContainerResolver(ctx, mock_executor).from_path(handle)
        assert target.path == str(handle)
        assert target.pid is None

    def test_from_path_relative(self, ctx, mock_executor):
        """Relative paths are rejected."""
        with pytest.raises(ValidationError):
            ContainerResolver(ctx, mock_executor).from_path("netns/blue")
