"""Per-namespace mutual exclusion.

Two reconciliations of the same namespace race between listing a chain
and appending to it. Holding this lock for the whole reconciliation
closes that window:
- a threading.Lock per namespace serializes callers in this process
- an fcntl lock file per namespace serializes separate processes
"""

import fcntl
import hashlib
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from nsf.core.context import ExecutionContext
from nsf.core.exceptions import PrerequisiteError


POLL_INTERVAL = 0.05

_registry_guard = threading.Lock()
_thread_locks: dict[str, threading.Lock] = {}


def _thread_lock_for(key: str) -> threading.Lock:
    with _registry_guard:
        lock = _thread_locks.get(key)
        if lock is None:
            lock = _thread_locks[key] = threading.Lock()
        return lock


def lock_file_path(lock_dir: Path, netns: str) -> Path:
    """Lock file for a namespace path. Paths are hashed to stay filename-safe."""
    digest = hashlib.sha256(netns.encode()).hexdigest()[:16]
    return lock_dir / f"netns-{digest}.lock"


def _acquire_thread_lock(ctx: ExecutionContext, lock: threading.Lock, netns: str) -> None:
    while True:
        ctx.check_cancelled(f"lock {netns}")
        remaining = ctx.remaining()
        wait = POLL_INTERVAL if remaining is None else min(POLL_INTERVAL, remaining)
        if lock.acquire(timeout=wait):
            return


def _acquire_file_lock(ctx: ExecutionContext, fd: int, netns: str) -> None:
    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            return
        except BlockingIOError:
            ctx.check_cancelled(f"lock {netns}")
            time.sleep(POLL_INTERVAL)


@contextmanager
def namespace_lock(ctx: ExecutionContext, netns: str) -> Generator[None, None, None]:
    """Hold the exclusive lock for a namespace.

    No-op when locking is disabled in config. In dry-run mode only the
    in-process lock is taken.

    Raises:
        PrerequisiteError: If the lock directory cannot be used
        ReconcileCancelled: If cancelled or past the deadline while waiting
    """
    settings = ctx.config.namespace
    if not settings.lock:
        yield
        return

    thread_lock = _thread_lock_for(netns)
    _acquire_thread_lock(ctx, thread_lock, netns)
    try:
        if ctx.dry_run:
            yield
            return

        path = lock_file_path(settings.lock_dir, netns)
        try:
            settings.lock_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise PrerequisiteError(
                f"Cannot open namespace lock file: {path}",
                hint="Run as root, change namespace.lock_dir, or set namespace.lock: false",
                details=[str(e)],
            ) from e

        try:
            _acquire_file_lock(ctx, fd, netns)
            ctx.console.debug(f"Locked namespace {netns} ({path})")
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
    finally:
        thread_lock.release()
