"""Identity resolution: container id -> pid -> network namespace path.

Container ids may carry a runtime scheme ("docker://", "containerd://").
The pid is looked up through the runtime CLI and the namespace is the
/proc/<pid>/ns/net handle of that process.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from nsf.core.context import ExecutionContext
from nsf.core.executor import CommandExecutor
from nsf.core.exceptions import IdentityResolutionFailed, ValidationError
from nsf.core.validation import validate_netns_path, validate_pid


RUNTIME_PREFIXES = ("docker://", "containerd://", "cri-o://")


def strip_runtime_prefix(container_id: str) -> str:
    """Remove a runtime scheme from a container id."""
    container_id = container_id.strip()
    for prefix in RUNTIME_PREFIXES:
        if container_id.startswith(prefix):
            return container_id[len(prefix):]
    return container_id


def netns_path(pid: Union[int, str], proc_root: Path = Path("/proc")) -> str:
    """Network namespace handle of a process.

    Raises:
        ValidationError: If pid is not a positive integer
    """
    return str(proc_root / str(validate_pid(pid)) / "ns" / "net")


@dataclass(frozen=True)
class NamespaceTarget:
    """A resolved network namespace.

    Attributes:
        path: Namespace path every command is attached to
        pid: Process owning the namespace, when known
        container_id: Container the process belongs to, when known
    """
    path: str
    pid: Optional[int] = None
    container_id: Optional[str] = None

    def __str__(self) -> str:
        if self.container_id:
            return f"container {self.container_id[:12]} ({self.path})"
        return self.path


class ContainerResolver:
    """Resolve container ids and pids into namespace targets."""

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        self.ctx = ctx
        self.executor = executor

    def _pid_command(self, container_id: str) -> list[str]:
        runtime = self.ctx.config.runtime
        if runtime.kind == "containerd":
            return [
                runtime.crictl_binary, "inspect",
                "--output", "go-template",
                "--template", "{{.info.pid}}",
                container_id,
            ]
        return [runtime.docker_binary, "inspect", "--format", "{{.State.Pid}}", container_id]

    def get_pid(self, container_id: str) -> int:
        """Look up the init pid of a running container.

        Raises:
            IdentityResolutionFailed: If the runtime cannot resolve it
        """
        cid = strip_runtime_prefix(container_id)
        if not cid:
            raise IdentityResolutionFailed(
                "Container id cannot be empty",
                container_id=container_id,
            )

        result = self.executor.run(
            self._pid_command(cid),
            description=f"Resolve pid of container {cid[:12]}",
            check=False,
            read_only=True,
        )
        if not result.success:
            raise IdentityResolutionFailed(
                f"Failed to get pid of container {cid}",
                container_id=cid,
                hint=f"Check the container exists in {self.ctx.config.runtime.kind}",
                details=[result.output.strip()] if result.output.strip() else None,
            )

        raw = result.stdout.strip()
        try:
            pid = int(raw)
        except ValueError:
            raise IdentityResolutionFailed(
                f"Unexpected pid for container {cid}: {raw!r}",
                container_id=cid,
            )
        if pid <= 0:
            raise IdentityResolutionFailed(
                f"Container {cid} is not running",
                container_id=cid,
                hint="Start the container before applying chains",
            )
        return pid

    def _check_exists(self, path: str, container_id: Optional[str] = None) -> None:
        if self.ctx.dry_run:
            return
        if not Path(path).exists():
            raise IdentityResolutionFailed(
                f"Network namespace not found: {path}",
                container_id=container_id,
                hint="The process may have exited",
            )

    def from_container(self, container_id: str) -> NamespaceTarget:
        """Resolve a container id to its namespace."""
        pid = self.get_pid(container_id)
        path = netns_path(pid, self.ctx.config.namespace.proc_root)
        cid = strip_runtime_prefix(container_id)
        self._check_exists(path, cid)
        return NamespaceTarget(path=path, pid=pid, container_id=cid)

    def from_pid(self, pid: Union[int, str]) -> NamespaceTarget:
        """Resolve a pid to its namespace."""
        try:
            checked = validate_pid(pid)
        except ValidationError as e:
            raise IdentityResolutionFailed(e.message, hint=e.hint) from e
        path = netns_path(checked, self.ctx.config.namespace.proc_root)
        self._check_exists(path)
        return NamespaceTarget(path=path, pid=checked)

    def from_path(self, path: Union[str, Path]) -> NamespaceTarget:
        """Use a namespace path as given (e.g. /var/run/netns/NAME)."""
        checked = validate_netns_path(path)
        self._check_exists(checked)
        return NamespaceTarget(path=checked)
