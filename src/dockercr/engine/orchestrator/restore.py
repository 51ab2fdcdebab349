"""RestoreOrchestrator: restore state machine.

States:
    idle -> metadata-load -> target-reconciliation -> invoking -> verifying -> done

The strategy is whatever the checkpoint record says. Restore never falls
back: an engine failure is terminal and surfaces with the engine's log.
"""

from __future__ import annotations

import contextlib
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from dockercr.contracts import (
    CaptureTarget,
    CheckpointRecord,
    ContainerRuntimeError,
    EngineError,
    HookCommandError,
    LifecyclePhase,
    PreconditionError,
    ProcessNotFoundError,
    RestoreFailedError,
    RestorePhase,
    RestoreResult,
    RestoreUnverifiedError,
    Strategy,
    TargetKind,
)
from dockercr.core.logging import get_logger
from dockercr.engine.criu import open_images_dir
from dockercr.engine.options import RESTORE_LOG_FILE, restore_options
from dockercr.engine.polling import PollConfig, PollingExhausted, poll_until
from dockercr.plugins.manager import LifecycleCallbacks

if TYPE_CHECKING:
    import pluggy

    from dockercr.core.checkpoint import CheckpointMetadataStore
    from dockercr.core.config import DockerCRSettings
    from dockercr.core.locks import TargetLocks
    from dockercr.core.probe import ProcessProbe
    from dockercr.engine.criu import CheckpointEngine
    from dockercr.engine.runtime import ContainerRuntime, RuntimeSession

logger = get_logger(__name__)

PIDFILE_NAME = "restore.pid"


class RestoreOrchestrator:
    """Restores a checkpoint with the strategy it was captured with.

    Usage:
        orchestrator = RestoreOrchestrator(settings=..., engine=..., runtime=..., ...)
        result = orchestrator.restore(Path("/var/lib/checkpoints/web"))
        print(result.restored_pid)
    """

    def __init__(
        self,
        *,
        settings: DockerCRSettings,
        engine: CheckpointEngine,
        runtime: ContainerRuntime,
        probe: ProcessProbe,
        store: CheckpointMetadataStore,
        locks: TargetLocks,
        lifecycle: pluggy.PluginManager,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._engine = engine
        self._runtime = runtime
        self._probe = probe
        self._store = store
        self._locks = locks
        self._lifecycle = lifecycle
        self._sleep = sleep

    def restore(self, checkpoint_path: Path, target: str | None = None) -> RestoreResult:
        """Restore the checkpoint at checkpoint_path.

        Args:
            checkpoint_path: A checkpoint directory, or a checkpoint root
                (its latest record is restored)
            target: Container to restore into; defaults to the recorded one

        Raises:
            MissingMetadataError: No record (nothing else is touched)
            IncompatibleCheckpointError: Record from another format version
            EngineUnavailableError / RuntimeUnavailableError: Collaborator down
            TargetBusyError: Another attempt holds the target
            RestoreFailedError: The engine (or runtime delegate) failed
            RestoreUnverifiedError: Target not observed live in time
        """
        log = logger.bind(checkpoint=str(checkpoint_path))
        self._transition(log, RestorePhase.IDLE)

        self._transition(log, RestorePhase.METADATA_LOAD)
        record = self._store.load(checkpoint_path)
        if record.target_kind == TargetKind.PROCESS and target is not None:
            raise PreconditionError(
                f"checkpoint {record.checkpoint_id} holds a bare process and restores without a target"
            )

        if record.strategy.invokes_engine:
            self._engine.check_version()
        restore_target = self._restore_target(record, target)
        log = log.bind(target=restore_target.display_name, strategy=record.strategy.value)
        log.info("restoring checkpoint", checkpoint_id=record.checkpoint_id, created_at=record.created_at.isoformat())

        callbacks = LifecycleCallbacks(self._lifecycle, restore_target)
        with self._locks.hold(restore_target.lock_key):
            if record.strategy == Strategy.CONTAINER_NATIVE_DELEGATE:
                self._restore_delegated(log, record, restore_target, callbacks)
            else:
                self._restore_direct(log, record, restore_target, callbacks)

            self._transition(log, RestorePhase.VERIFYING)
            restored_pid = self._verify(record, restore_target)

        self._transition(log, RestorePhase.DONE)
        log.info("restore verified", pid=restored_pid)
        return RestoreResult(record=record, target=restore_target.display_name, restored_pid=restored_pid)

    def _restore_target(self, record: CheckpointRecord, explicit: str | None) -> CaptureTarget:
        """Resolve the target to restore into.

        Containers are looked up so an id and a name for the same container
        share one lock key with checkpoint. A container the runtime does not
        know keeps the requested name; reconciliation recreates it.
        """
        if record.target_kind == TargetKind.PROCESS:
            return record.original_target
        requested = explicit or record.container_name or record.container_id
        assert requested is not None
        with self._runtime.session() as rt:
            rt.ping()
            state = rt.inspect(requested)
        if state is None:
            return CaptureTarget(kind=TargetKind.CONTAINER, container_name=requested, image=record.image)
        return CaptureTarget(
            kind=TargetKind.CONTAINER,
            container_id=state.container_id,
            container_name=state.name or requested,
            image=record.image,
        )

    # -------------------------------------------------------------------------
    # Direct engine restore
    # -------------------------------------------------------------------------

    def _restore_direct(
        self,
        log: structlog.stdlib.BoundLogger,
        record: CheckpointRecord,
        target: CaptureTarget,
        callbacks: LifecycleCallbacks,
    ) -> None:
        if target.is_container:
            self._transition(log, RestorePhase.TARGET_RECONCILIATION)
            with self._runtime.session() as rt:
                self._reconcile_container(log, rt, target)

        pidfile = record.checkpoint_dir / PIDFILE_NAME
        # The engine refuses to overwrite a pidfile
        with contextlib.suppress(FileNotFoundError):
            pidfile.unlink()

        self._transition(log, RestorePhase.INVOKING)
        with open_images_dir(record.checkpoint_dir) as images_dir_fd:
            options = restore_options(
                record,
                images_dir_fd=images_dir_fd,
                images_dir=record.checkpoint_dir,
                pidfile=str(pidfile),
                log_level=self._settings.engine.log_level,
                ghost_limit=self._settings.engine.ghost_limit,
            )
            try:
                self._engine.restore(options, callbacks)
            except EngineError as e:
                log.error("engine restore failed", error=str(e))
                raise RestoreFailedError(f"restore of {target.display_name} failed: {e}", diagnostic=e.diagnostic) from e

    def _reconcile_container(self, log: structlog.stdlib.BoundLogger, rt: RuntimeSession, target: CaptureTarget) -> None:
        """Leave a stopped container shell with the recorded name in place.

        A running container is stopped (killed if the grace period is not
        enough). A missing one is created from the recorded image and started
        once so its namespaces exist, then stopped.
        """
        assert target.container_name is not None and target.image is not None
        name = target.container_name
        runtime_settings = self._settings.runtime

        state = rt.inspect(name)
        if state is None:
            log.info("container missing, recreating shell", image=target.image)
            rt.create(target.image, name, entrypoint=list(runtime_settings.placeholder_entrypoint))
            rt.start(name)
            rt.stop(name, runtime_settings.stop_grace_seconds)
            return

        if state.running:
            log.info("stopping running container", grace_seconds=runtime_settings.stop_grace_seconds)
            rt.stop(name, runtime_settings.stop_grace_seconds)
            state = rt.inspect(name)
            if state is not None and state.running:
                log.warning("container survived stop, killing")
                rt.kill(name)

    # -------------------------------------------------------------------------
    # Runtime-delegated restore
    # -------------------------------------------------------------------------

    def _restore_delegated(
        self,
        log: structlog.stdlib.BoundLogger,
        record: CheckpointRecord,
        target: CaptureTarget,
        callbacks: LifecycleCallbacks,
    ) -> None:
        """Recreate the container and start it from the runtime checkpoint."""
        assert target.container_name is not None and target.image is not None
        assert record.runtime_checkpoint_id is not None
        name = target.container_name

        # Hooks run before the existing container is removed
        try:
            callbacks.notify(LifecyclePhase.PRE_RESTORE)
        except HookCommandError as e:
            log.error("pre-restore hook failed", error=str(e))
            raise RestoreFailedError(f"restore of {target.display_name} aborted: {e}") from e

        self._transition(log, RestorePhase.TARGET_RECONCILIATION)
        with self._runtime.session() as rt:
            if rt.inspect(name) is not None:
                log.info("removing existing container")
                rt.remove(name, force=True)
            rt.create(target.image, name)

        self._transition(log, RestorePhase.INVOKING)
        try:
            with self._runtime.session() as rt:
                rt.start_from_checkpoint(name, record.runtime_checkpoint_id, record.checkpoint_dir)
        except ContainerRuntimeError as e:
            log.error("runtime restore failed", error=str(e))
            raise RestoreFailedError(f"runtime restore of {target.display_name} failed: {e}") from e
        callbacks.notify(LifecyclePhase.POST_RESTORE)

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def _verify(self, record: CheckpointRecord, target: CaptureTarget) -> int:
        """Poll until the restored target is live.

        Raises:
            RestoreUnverifiedError: If it is not observed live within the bound
        """
        if target.is_container:
            assert target.container_name is not None
            check = self._container_check(target.container_name)
        else:
            check = self._process_check(record.checkpoint_dir / PIDFILE_NAME)

        config = PollConfig.from_settings(self._settings.verify)
        try:
            return poll_until(check, config, sleep=self._sleep)
        except PollingExhausted as e:
            raise RestoreUnverifiedError(
                f"{target.display_name} was not observed running after restore ({e}); "
                "the engine may have restored it partially",
                diagnostic=_read_engine_log(record.checkpoint_dir / RESTORE_LOG_FILE) if record.strategy.invokes_engine else None,
            ) from e

    def _container_check(self, name: str) -> Callable[[], int | None]:
        def check() -> int | None:
            with self._runtime.session() as rt:
                state = rt.inspect(name)
            return state.pid if state is not None and state.is_live else None

        return check

    def _process_check(self, pidfile: Path) -> Callable[[], int | None]:
        def check() -> int | None:
            try:
                pid = int(pidfile.read_text(encoding="utf-8").strip())
            except (OSError, ValueError):
                return None
            try:
                profile = self._probe.probe(pid)
            except ProcessNotFoundError:
                return None
            return pid if profile.state.is_checkpointable else None

        return check

    @staticmethod
    def _transition(log: structlog.stdlib.BoundLogger, phase: RestorePhase) -> None:
        log.debug("restore phase", phase=phase.value)


def _read_engine_log(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8", errors="replace") or None
    except OSError:
        return None
