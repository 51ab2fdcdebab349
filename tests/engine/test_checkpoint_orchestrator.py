# tests/engine/test_checkpoint_orchestrator.py
"""Tests for the checkpoint state machine and its fallback chain."""

import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
from conftest import FakeEngine, FakeRuntime, build_proc, engine_missing, tcp_line

from dockercr.contracts import (
    CaptureTarget,
    CheckpointExhaustedError,
    ContainerRuntimeError,
    EngineError,
    EngineUnavailableError,
    HookCommandError,
    LifecyclePhase,
    PreconditionError,
    ProcessNotFoundError,
    Strategy,
    TargetBusyError,
    TargetKind,
    TargetNotFoundError,
    TargetNotRunningError,
    ZombieProcessError,
)
from dockercr.core.checkpoint import CheckpointMetadataStore
from dockercr.engine.options import CONTAINER_SKIP_MOUNTS
from dockercr.engine.orchestrator import CheckpointOrchestrator
from dockercr.plugins.hookspecs import hookimpl
from dockercr.plugins.manager import build_lifecycle_manager


class PhaseRecorder:
    def __init__(self) -> None:
        self.phases: list[tuple[str, str]] = []

    @hookimpl
    def dockercr_pre_dump(self, target: CaptureTarget) -> None:
        self.phases.append(("pre-dump", target.display_name))

    @hookimpl
    def dockercr_post_dump(self, target: CaptureTarget) -> None:
        self.phases.append(("post-dump", target.display_name))


@pytest.fixture
def web(runtime: FakeRuntime, proc_root: Path) -> None:
    """A running nginx container holding an established TCP connection."""
    runtime.add("web", pid=4312)
    build_proc(proc_root, 4312, comm="nginx", tcp=[tcp_line("01")])


class TestContainerCheckpoint:
    """Checkpointing a running container."""

    @pytest.mark.usefixtures("web")
    def test_first_strategy_succeeds(self, checkpointer: CheckpointOrchestrator, engine: FakeEngine, tmp_path: Path) -> None:
        result = checkpointer.checkpoint("web", tmp_path / "cps")

        record = result.record
        assert record.strategy == Strategy.DIRECT_CONTAINER_AWARE
        assert record.target_kind == TargetKind.CONTAINER
        assert record.container_name == "web"
        assert record.container_id == "web-id"
        assert record.image == "nginx:1.27"
        assert record.pid == 4312
        assert record.checkpoint_dir.parent == (tmp_path / "cps").resolve()
        assert [o.succeeded for o in result.outcomes] == [True]

        options = engine.dumps[0]
        assert options.tcp_established is True
        assert options.skip_mounts == CONTAINER_SKIP_MOUNTS
        assert options.log_file == "dump-direct-container-aware.log"
        assert options.leave_running is True

    @pytest.mark.usefixtures("web")
    def test_record_readable_after_checkpoint(self, checkpointer: CheckpointOrchestrator, tmp_path: Path) -> None:
        result = checkpointer.checkpoint("web", tmp_path / "cps")

        assert CheckpointMetadataStore().load(tmp_path / "cps") == result.record

    @pytest.mark.usefixtures("web")
    def test_fallback_to_next_strategy(self, checkpointer: CheckpointOrchestrator, engine: FakeEngine, tmp_path: Path) -> None:
        engine.dump_failures = [EngineError("criu dump exited with status 1", diagnostic="mnt: resolv.conf unreachable"), None]

        result = checkpointer.checkpoint("web", tmp_path / "cps")

        assert result.record.strategy == Strategy.DIRECT_MINIMAL
        assert [(o.strategy, o.succeeded) for o in result.outcomes] == [
            (Strategy.DIRECT_CONTAINER_AWARE, False),
            (Strategy.DIRECT_MINIMAL, True),
        ]
        assert result.outcomes[0].diagnostic == "mnt: resolv.conf unreachable"
        assert [o.log_file for o in engine.dumps] == ["dump-direct-container-aware.log", "dump-direct-minimal.log"]
        # Both attempts share one checkpoint directory
        assert engine.dumps[0].images_dir == engine.dumps[1].images_dir == result.record.checkpoint_dir

    @pytest.mark.usefixtures("web")
    def test_every_strategy_tried_once_then_exhausted(
        self, checkpointer: CheckpointOrchestrator, engine: FakeEngine, tmp_path: Path
    ) -> None:
        engine.dump_failures = [EngineError("mount failure"), EngineError("network namespace failure")]

        with pytest.raises(CheckpointExhaustedError) as exc_info:
            checkpointer.checkpoint("web", tmp_path / "cps")

        outcomes = exc_info.value.outcomes
        assert [o.strategy for o in outcomes] == [Strategy.DIRECT_CONTAINER_AWARE, Strategy.DIRECT_MINIMAL]
        assert [o.error for o in outcomes] == ["mount failure", "network namespace failure"]
        assert len(engine.dumps) == 2
        assert CheckpointMetadataStore().list_records(tmp_path / "cps") == []

    @pytest.mark.usefixtures("web")
    def test_relocate_stops_source(self, checkpointer: CheckpointOrchestrator, engine: FakeEngine, tmp_path: Path) -> None:
        result = checkpointer.checkpoint("web", tmp_path / "cps", relocate=True)

        assert engine.dumps[0].leave_running is False
        assert result.record.leave_running is False

    @pytest.mark.usefixtures("web")
    def test_images_directory_open_during_dump(self, checkpointer: CheckpointOrchestrator, engine: FakeEngine, tmp_path: Path) -> None:
        checkpointer.checkpoint("web", tmp_path / "cps")

        assert engine.open_fds_seen == [True]

    @pytest.mark.usefixtures("web")
    def test_two_checkpoints_same_root(self, checkpointer: CheckpointOrchestrator, tmp_path: Path) -> None:
        first = checkpointer.checkpoint("web", tmp_path / "cps")
        second = checkpointer.checkpoint("web", tmp_path / "cps")

        assert first.record.checkpoint_dir != second.record.checkpoint_dir
        assert len(CheckpointMetadataStore().list_records(tmp_path / "cps")) == 2

    @pytest.mark.usefixtures("web")
    def test_fixed_clock_sets_created_at(self, orchestrator_parts: dict[str, Any], tmp_path: Path) -> None:
        moment = datetime(2026, 10, 19, 10, 15, tzinfo=UTC)
        orchestrator = CheckpointOrchestrator(**orchestrator_parts, clock=lambda: moment)

        result = orchestrator.checkpoint("web", tmp_path / "cps")

        assert result.record.created_at == moment
        assert result.record.checkpoint_id.startswith("cp-20261019T101500")


class TestPreconditions:
    """Failures no strategy could recover from end the call at once."""

    def test_engine_unavailable_before_anything(
        self, checkpointer: CheckpointOrchestrator, engine: FakeEngine, runtime: FakeRuntime, tmp_path: Path
    ) -> None:
        engine.version_error = engine_missing()

        with pytest.raises(EngineUnavailableError):
            checkpointer.checkpoint("web", tmp_path / "cps")

        assert runtime.sessions_opened == 0
        assert not (tmp_path / "cps").exists()

    def test_container_not_found(self, checkpointer: CheckpointOrchestrator, tmp_path: Path) -> None:
        with pytest.raises(TargetNotFoundError, match="'ghost'"):
            checkpointer.checkpoint("ghost", tmp_path / "cps")

    def test_stopped_container(self, checkpointer: CheckpointOrchestrator, runtime: FakeRuntime, tmp_path: Path) -> None:
        runtime.add("web", running=False)

        with pytest.raises(TargetNotRunningError):
            checkpointer.checkpoint("web", tmp_path / "cps")

    def test_zombie_refused_for_every_strategy(
        self, checkpointer: CheckpointOrchestrator, engine: FakeEngine, runtime: FakeRuntime, proc_root: Path, tmp_path: Path
    ) -> None:
        runtime.add("web", pid=4312)
        build_proc(proc_root, 4312, state="Z")

        with pytest.raises(ZombieProcessError) as exc_info:
            checkpointer.checkpoint("web", tmp_path / "cps")

        assert exc_info.value.state == "zombie"
        assert engine.dumps == []
        assert not (tmp_path / "cps").exists()

    def test_vanished_process(self, checkpointer: CheckpointOrchestrator, engine: FakeEngine, tmp_path: Path) -> None:
        with pytest.raises(ProcessNotFoundError) as exc_info:
            checkpointer.checkpoint("999", tmp_path / "cps")

        assert exc_info.value.pid == 999
        assert engine.dumps == []
        assert not (tmp_path / "cps").exists()

    @pytest.mark.usefixtures("web")
    def test_busy_target_refused(
        self, checkpointer: CheckpointOrchestrator, orchestrator_parts: dict[str, Any], engine: FakeEngine, tmp_path: Path
    ) -> None:
        with orchestrator_parts["locks"].hold("container-web"), pytest.raises(TargetBusyError):
            checkpointer.checkpoint("web", tmp_path / "cps")

        assert engine.dumps == []

    def test_delegate_override_for_process_rejected(
        self, checkpointer: CheckpointOrchestrator, proc_root: Path, tmp_path: Path
    ) -> None:
        build_proc(proc_root, 77)

        with pytest.raises(PreconditionError, match="bare process"):
            checkpointer.checkpoint("77", tmp_path / "cps", strategies=[Strategy.CONTAINER_NATIVE_DELEGATE])


class TestProcessCheckpoint:
    def test_bare_process_uses_process_chain(
        self, checkpointer: CheckpointOrchestrator, engine: FakeEngine, runtime: FakeRuntime, proc_root: Path, tmp_path: Path
    ) -> None:
        build_proc(proc_root, 77, unix=["0000000000000000: 00000002 00000000 00010000 0001 01 12345 /run/app.sock"])

        result = checkpointer.checkpoint("77", tmp_path / "cps")

        assert result.record.target_kind == TargetKind.PROCESS
        assert result.record.strategy == Strategy.DIRECT_MINIMAL
        assert result.record.container_name is None
        assert engine.dumps[0].ext_unix_sk is True
        assert engine.dumps[0].pid == 77
        assert runtime.sessions_opened == 0


class TestDelegate:
    """Handing the capture to the container runtime."""

    @pytest.mark.usefixtures("web")
    def test_delegate_records_runtime_checkpoint(
        self,
        checkpointer: CheckpointOrchestrator,
        orchestrator_parts: dict[str, Any],
        engine: FakeEngine,
        runtime: FakeRuntime,
        tmp_path: Path,
    ) -> None:
        recorder = PhaseRecorder()
        orchestrator_parts["lifecycle"].register(recorder)

        result = checkpointer.checkpoint("web", tmp_path / "cps", strategies=[Strategy.CONTAINER_NATIVE_DELEGATE])

        record = result.record
        assert engine.dumps == []
        assert runtime.calls == [("checkpoint", "web-id", record.checkpoint_id, record.checkpoint_dir, False)]
        assert record.runtime_checkpoint_id == record.checkpoint_id
        assert recorder.phases == [("pre-dump", "container web"), ("post-dump", "container web")]

    @pytest.mark.usefixtures("web")
    def test_delegate_failure_falls_back(
        self, checkpointer: CheckpointOrchestrator, runtime: FakeRuntime, tmp_path: Path
    ) -> None:
        runtime.checkpoint_error = ContainerRuntimeError("checkpoint requires experimental mode", status_code=500)

        result = checkpointer.checkpoint(
            "web", tmp_path / "cps", strategies=[Strategy.CONTAINER_NATIVE_DELEGATE, Strategy.DIRECT_MINIMAL]
        )

        assert result.record.strategy == Strategy.DIRECT_MINIMAL
        assert "experimental" in (result.outcomes[0].error or "")


class TestHookCommands:
    @pytest.mark.usefixtures("web")
    def test_failing_hook_is_a_strategy_failure(
        self, orchestrator_parts: dict[str, Any], engine: FakeEngine, tmp_path: Path
    ) -> None:
        failing = [sys.executable, "-c", "raise SystemExit(3)"]
        orchestrator_parts["lifecycle"] = build_lifecycle_manager({LifecyclePhase.PRE_DUMP: failing})
        orchestrator = CheckpointOrchestrator(**orchestrator_parts)

        with pytest.raises(CheckpointExhaustedError) as exc_info:
            orchestrator.checkpoint("web", tmp_path / "cps")

        assert len(engine.dumps) == 2
        assert all("exited with status 3" in (o.error or "") for o in exc_info.value.outcomes)

    def test_hook_command_error_type(self) -> None:
        error = HookCommandError(LifecyclePhase.PRE_DUMP, ["/usr/local/bin/flush"], 3)

        assert str(error) == "pre-dump hook '/usr/local/bin/flush' exited with status 3"
