# tests/conftest.py
"""Shared test fixtures and helpers.

Fakes:
- FakeEngine: scripted CheckpointEngine that records every dump/restore
- FakeRuntime: in-memory container runtime keyed by container name
- build_proc(): writes a fake procfs entry for ProcessProbe

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/engine/test_options.py
"""

import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from dockercr.contracts import (
    ContainerRuntimeError,
    ContainerState,
    EngineUnavailableError,
    LifecyclePhase,
    RuntimeUnavailableError,
    SnapshotOptions,
)
from dockercr.core.checkpoint import CheckpointMetadataStore
from dockercr.core.config import DockerCRSettings
from dockercr.core.locks import TargetLocks
from dockercr.core.probe import ProcessProbe
from dockercr.engine.orchestrator import CheckpointOrchestrator, RestoreOrchestrator
from dockercr.plugins.manager import LifecycleCallbacks, build_lifecycle_manager

# =============================================================================
# Fake procfs
# =============================================================================

TCP_HEADER = "  sl  local_address rem_address   st tx_queue rx_queue tr tm->when retrnsmt   uid  timeout inode"
UNIX_HEADER = "Num       RefCount Protocol Flags    Type St Inode Path"


def tcp_line(state: str) -> str:
    """One /proc/net/tcp row with the given hex st column."""
    return f"   0: 0100007F:1F90 0100007F:C350 {state} 00000000:00000000 00:00000000 00000000  1000        0 4242"


def build_proc(
    proc_root: Path,
    pid: int,
    *,
    state: str = "S",
    comm: str = "app",
    cmdline: str = "/usr/bin/app\x00--serve\x00",
    pgrp: int | None = None,
    session: int | None = None,
    tcp: list[str] | None = None,
    tcp6: list[str] | None = None,
    unix: list[str] | None = None,
    fds: list[str] | None = None,
) -> Path:
    """Write a fake /proc/<pid> tree and return its directory.

    fds are symlink targets, e.g. "pipe:[1234]" or "anon_inode:[eventfd]".
    """
    proc_dir = proc_root / str(pid)
    (proc_dir / "net").mkdir(parents=True)
    (proc_dir / "fd").mkdir()

    pgrp = pid if pgrp is None else pgrp
    session = pid + 1 if session is None else session
    (proc_dir / "stat").write_text(f"{pid} ({comm}) {state} 1 {pgrp} {session} 0 -1 4194560 0 0 0 0\n")
    (proc_dir / "comm").write_text(f"{comm}\n")
    (proc_dir / "cmdline").write_text(cmdline)
    (proc_dir / "net" / "tcp").write_text("\n".join([TCP_HEADER, *(tcp or [])]) + "\n")
    (proc_dir / "net" / "tcp6").write_text("\n".join([TCP_HEADER, *(tcp6 or [])]) + "\n")
    (proc_dir / "net" / "unix").write_text("\n".join([UNIX_HEADER, *(unix or [])]) + "\n")
    for number, target in enumerate(fds or [], start=3):
        os.symlink(target, proc_dir / "fd" / str(number))
    return proc_dir


# =============================================================================
# Fake engine
# =============================================================================


@dataclass
class FakeEngine:
    """Scripted CheckpointEngine.

    dump_failures is consumed one entry per dump call: an exception to
    raise, or None for success. Each call fires pre/post callbacks like the
    real engine does.
    """

    dump_failures: list[Exception | None] = field(default_factory=list)
    restore_failure: Exception | None = None
    version_error: Exception | None = None
    on_restore: Callable[[SnapshotOptions], None] | None = None
    dumps: list[SnapshotOptions] = field(default_factory=list)
    restores: list[SnapshotOptions] = field(default_factory=list)
    open_fds_seen: list[bool] = field(default_factory=list)

    def check_version(self) -> str:
        if self.version_error is not None:
            raise self.version_error
        return "Version: 3.19"

    def dump(self, options: SnapshotOptions, callbacks: LifecycleCallbacks) -> None:
        self.dumps.append(options)
        self.open_fds_seen.append(_fd_is_open(options.images_dir_fd))
        callbacks.notify(LifecyclePhase.PRE_DUMP)
        failure = self.dump_failures.pop(0) if self.dump_failures else None
        if failure is not None:
            raise failure
        callbacks.notify(LifecyclePhase.POST_DUMP)

    def restore(self, options: SnapshotOptions, callbacks: LifecycleCallbacks) -> None:
        self.restores.append(options)
        self.open_fds_seen.append(_fd_is_open(options.images_dir_fd))
        callbacks.notify(LifecyclePhase.PRE_RESTORE)
        if self.restore_failure is not None:
            raise self.restore_failure
        if self.on_restore is not None:
            self.on_restore(options)
        callbacks.notify(LifecyclePhase.POST_RESTORE, pid=4242)


def _fd_is_open(fd: int) -> bool:
    try:
        os.fstat(fd)
    except OSError:
        return False
    return True


def engine_missing() -> EngineUnavailableError:
    return EngineUnavailableError("cannot run 'criu' (is CRIU installed?)")


# =============================================================================
# Fake runtime
# =============================================================================


@dataclass
class FakeRuntime:
    """In-memory container runtime keyed by container name.

    Every mutating call is appended to calls as (method, container, ...).
    """

    containers: dict[str, ContainerState] = field(default_factory=dict)
    reachable: bool = True
    calls: list[tuple[Any, ...]] = field(default_factory=list)
    sessions_opened: int = 0
    start_pid: int = 5150
    survives_stop: bool = False
    checkpoint_error: ContainerRuntimeError | None = None
    live_after_restore_start: bool = True

    def add(self, name: str, *, image: str = "nginx:1.27", running: bool = True, pid: int = 4312) -> ContainerState:
        state = ContainerState(
            container_id=f"{name}-id",
            name=name,
            image=image,
            running=running,
            pid=pid if running else 0,
            status="running" if running else "exited",
        )
        self.containers[name] = state
        self.containers[state.container_id] = state
        return state

    @contextmanager
    def session(self) -> Iterator["FakeRuntime"]:
        self.sessions_opened += 1
        yield self

    def _set(self, key: str, **changes: Any) -> None:
        state = replace(self.containers[key], **changes)
        self.containers[state.name] = state
        self.containers[state.container_id] = state

    def mutations(self) -> list[str]:
        return [call[0] for call in self.calls]

    def ping(self) -> None:
        if not self.reachable:
            raise RuntimeUnavailableError("cannot reach the container runtime")

    def inspect(self, container: str) -> ContainerState | None:
        self.ping()
        return self.containers.get(container)

    def stop(self, container: str, grace_seconds: int) -> None:
        self.calls.append(("stop", container, grace_seconds))
        if not self.survives_stop:
            self._set(container, running=False, pid=0, status="exited")

    def kill(self, container: str) -> None:
        self.calls.append(("kill", container))
        self._set(container, running=False, pid=0, status="exited")

    def remove(self, container: str, *, force: bool = True) -> None:
        self.calls.append(("remove", container, force))
        state = self.containers.pop(container, None)
        if state is not None:
            self.containers.pop(state.container_id, None)
            self.containers.pop(state.name, None)

    def create(self, image: str, name: str, entrypoint: list[str] | None = None) -> str:
        self.calls.append(("create", name, image, entrypoint))
        state = ContainerState(container_id=f"{name}-new", name=name, image=image, running=False, pid=0, status="created")
        self.containers[name] = state
        self.containers[state.container_id] = state
        return state.container_id

    def start(self, container: str) -> None:
        self.calls.append(("start", container))
        self._set(container, running=True, pid=self.start_pid, status="running")

    def checkpoint(self, container: str, checkpoint_id: str, checkpoint_dir: Path, *, exit_container: bool) -> None:
        self.calls.append(("checkpoint", container, checkpoint_id, checkpoint_dir, exit_container))
        if self.checkpoint_error is not None:
            raise self.checkpoint_error

    def start_from_checkpoint(self, container: str, checkpoint_id: str, checkpoint_dir: Path) -> None:
        self.calls.append(("start_from_checkpoint", container, checkpoint_id, checkpoint_dir))
        if self.live_after_restore_start:
            self._set(container, running=True, pid=self.start_pid, status="running")

    def mark_live(self, name: str, pid: int) -> None:
        """Simulate a restored container reporting its new process."""
        self._set(name, running=True, pid=pid, status="running")


# =============================================================================
# Orchestrator fixtures
# =============================================================================


@pytest.fixture
def proc_root(tmp_path: Path) -> Path:
    root = tmp_path / "proc"
    root.mkdir()
    return root


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def cr_settings() -> DockerCRSettings:
    """Settings with verification bounded tightly for fast tests."""
    return DockerCRSettings(verify={"max_attempts": 3, "backoff_seconds": 0.0, "timeout_seconds": 5.0})


@pytest.fixture
def orchestrator_parts(
    tmp_path: Path,
    proc_root: Path,
    engine: FakeEngine,
    runtime: FakeRuntime,
    cr_settings: DockerCRSettings,
) -> dict[str, Any]:
    return {
        "settings": cr_settings,
        "engine": engine,
        "runtime": runtime,
        "probe": ProcessProbe(proc_root),
        "store": CheckpointMetadataStore(),
        "locks": TargetLocks(tmp_path / "locks"),
        "lifecycle": build_lifecycle_manager(),
    }


@pytest.fixture
def checkpointer(orchestrator_parts: dict[str, Any]) -> CheckpointOrchestrator:
    return CheckpointOrchestrator(**orchestrator_parts)


@pytest.fixture
def restorer(orchestrator_parts: dict[str, Any]) -> RestoreOrchestrator:
    return RestoreOrchestrator(**orchestrator_parts, sleep=lambda _seconds: None)


# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
