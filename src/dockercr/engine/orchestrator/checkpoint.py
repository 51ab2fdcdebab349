"""CheckpointOrchestrator: checkpoint state machine with a strategy fallback chain.

States:
    idle -> probing -> option-building -> invoking -> recording -> done

A failed invocation records a StrategyOutcome and loops back to probing with
the next strategy. Precondition failures (target gone, zombie) end the call
at once: no later strategy could succeed against them.

The outcome list is local to one call and returned with the result (or the
CheckpointExhaustedError). There is no "current strategy" state shared
between calls.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from dockercr.contracts import (
    CapabilityProfile,
    CaptureTarget,
    CheckpointExhaustedError,
    CheckpointPhase,
    CheckpointRecord,
    CheckpointResult,
    ContainerRuntimeError,
    EngineError,
    HookCommandError,
    LifecyclePhase,
    PreconditionError,
    Strategy,
    StrategyOutcome,
    ZombieProcessError,
)
from dockercr.core.config import validate_strategy_chain
from dockercr.core.logging import get_logger
from dockercr.engine.criu import open_images_dir
from dockercr.engine.options import build_options
from dockercr.engine.orchestrator.targets import require_live_container, resolve_target
from dockercr.plugins.manager import LifecycleCallbacks

if TYPE_CHECKING:
    import pluggy

    from dockercr.core.checkpoint import CheckpointMetadataStore
    from dockercr.core.config import DockerCRSettings
    from dockercr.core.locks import TargetLocks
    from dockercr.core.probe import ProcessProbe
    from dockercr.engine.criu import CheckpointEngine
    from dockercr.engine.runtime import ContainerRuntime

logger = get_logger(__name__)

# Failures that move the chain on to the next strategy
_STRATEGY_FAILURES = (EngineError, HookCommandError, ContainerRuntimeError)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class CheckpointOrchestrator:
    """Checkpoints a process or container, falling back through strategies.

    Usage:
        orchestrator = CheckpointOrchestrator(
            settings=settings,
            engine=CriuEngine(settings.engine.criu_path),
            runtime=DockerRuntime(settings.runtime.socket_path),
            probe=ProcessProbe(),
            store=CheckpointMetadataStore(),
            locks=TargetLocks(settings.checkpoint.lock_dir),
            lifecycle=build_lifecycle_manager(settings.hooks),
        )
        result = orchestrator.checkpoint("web", Path("/var/lib/checkpoints/web"))
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
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._settings = settings
        self._engine = engine
        self._runtime = runtime
        self._probe = probe
        self._store = store
        self._locks = locks
        self._lifecycle = lifecycle
        self._clock = clock

    def checkpoint(
        self,
        target: str,
        destination: Path,
        *,
        relocate: bool = False,
        strategies: list[Strategy] | None = None,
    ) -> CheckpointResult:
        """Checkpoint target into a new directory under destination.

        Args:
            target: Container name/id, or a pid for a bare process
            destination: Checkpoint root; the checkpoint gets its own
                subdirectory
            relocate: Stop the source after capture instead of leaving it
                running
            strategies: Override the configured fallback chain

        Raises:
            EngineUnavailableError: Engine missing (nothing attempted)
            PreconditionError: Target missing, stopped or a zombie
            TargetBusyError: Another attempt holds the target
            CheckpointExhaustedError: Every strategy failed
        """
        log = logger.bind(target=target)
        self._transition(log, CheckpointPhase.IDLE)

        self._engine.check_version()
        capture_target = resolve_target(target, self._runtime)
        chain = self._chain_for(capture_target, strategies)
        leave_running = False if relocate else self._settings.checkpoint.leave_running

        with self._locks.hold(capture_target.lock_key):
            return self._run_chain(log, capture_target, destination, chain, leave_running)

    def _chain_for(self, target: CaptureTarget, override: list[Strategy] | None) -> list[Strategy]:
        if override is None:
            configured = self._settings.checkpoint
            return list(configured.container_strategies if target.is_container else configured.process_strategies)
        try:
            return validate_strategy_chain(list(override), for_containers=target.is_container)
        except ValueError as e:
            raise PreconditionError(f"cannot checkpoint {target.display_name}: {e}") from e

    def _run_chain(
        self,
        log: structlog.stdlib.BoundLogger,
        target: CaptureTarget,
        destination: Path,
        chain: list[Strategy],
        leave_running: bool,
    ) -> CheckpointResult:
        outcomes: list[StrategyOutcome] = []
        checkpoint_id: str | None = None
        directory: Path | None = None
        created_at = self._clock()
        callbacks = LifecycleCallbacks(self._lifecycle, target)

        for strategy in chain:
            attempt_log = log.bind(strategy=strategy.value)

            self._transition(attempt_log, CheckpointPhase.PROBING)
            profile = self._probe_target(target)

            if directory is None:
                checkpoint_id, directory = self._store.allocate(destination, created_at)
                attempt_log.debug("checkpoint directory allocated", path=str(directory))
            assert checkpoint_id is not None

            try:
                if strategy.invokes_engine:
                    self._dump(attempt_log, strategy, profile, directory, leave_running, callbacks)
                else:
                    self._delegate(attempt_log, target, checkpoint_id, directory, leave_running, callbacks)
            except _STRATEGY_FAILURES as e:
                diagnostic = e.diagnostic if isinstance(e, EngineError) else None
                outcomes.append(StrategyOutcome.failure(strategy, str(e), diagnostic))
                attempt_log.warning("strategy failed", error=str(e))
                continue

            outcomes.append(StrategyOutcome.success(strategy))
            self._transition(attempt_log, CheckpointPhase.RECORDING)
            record = CheckpointRecord(
                checkpoint_id=checkpoint_id,
                target_kind=target.kind,
                pid=profile.pid,
                strategy=strategy,
                created_at=created_at,
                checkpoint_dir=directory,
                container_id=target.container_id,
                container_name=target.container_name,
                image=target.image,
                resources=profile.resource_classes,
                leave_running=leave_running,
                runtime_checkpoint_id=None if strategy.invokes_engine else checkpoint_id,
            )
            self._store.write(record)
            self._transition(attempt_log, CheckpointPhase.DONE)
            return CheckpointResult(record=record, outcomes=tuple(outcomes))

        log.error("fallback chain exhausted", tried=[o.strategy.value for o in outcomes])
        raise CheckpointExhaustedError(target.display_name, outcomes)

    def _probe_target(self, target: CaptureTarget) -> CapabilityProfile:
        """Characterize the target's process as it is right now.

        Raises:
            PreconditionError: If the target is gone, stopped or a zombie
        """
        pid = target.pid
        if target.is_container:
            assert target.container_id is not None
            with self._runtime.session() as rt:
                pid = require_live_container(target.container_id, rt.inspect(target.container_id)).pid
        assert pid is not None

        profile = self._probe.probe(pid)
        if not profile.state.is_checkpointable:
            raise ZombieProcessError(pid, profile.state.value)
        return profile

    def _dump(
        self,
        log: structlog.stdlib.BoundLogger,
        strategy: Strategy,
        profile: CapabilityProfile,
        directory: Path,
        leave_running: bool,
        callbacks: LifecycleCallbacks,
    ) -> None:
        self._transition(log, CheckpointPhase.OPTION_BUILDING)
        with open_images_dir(directory) as images_dir_fd:
            options = build_options(
                profile,
                strategy,
                images_dir_fd=images_dir_fd,
                images_dir=directory,
                pid=profile.pid,
                leave_running=leave_running,
                log_file=f"dump-{strategy.value}.log",
                log_level=self._settings.engine.log_level,
                ghost_limit=self._settings.engine.ghost_limit,
            )
            assert options is not None
            self._transition(log, CheckpointPhase.INVOKING)
            self._engine.dump(options, callbacks)

    def _delegate(
        self,
        log: structlog.stdlib.BoundLogger,
        target: CaptureTarget,
        checkpoint_id: str,
        directory: Path,
        leave_running: bool,
        callbacks: LifecycleCallbacks,
    ) -> None:
        """Hand the whole capture to the runtime's checkpoint API.

        The runtime's engine integration does not reach our callbacks, so
        pre-dump and post-dump are fired around the request.
        """
        self._transition(log, CheckpointPhase.OPTION_BUILDING)
        assert target.container_id is not None
        self._transition(log, CheckpointPhase.INVOKING)
        callbacks.notify(LifecyclePhase.PRE_DUMP)
        with self._runtime.session() as rt:
            rt.checkpoint(target.container_id, checkpoint_id, directory, exit_container=not leave_running)
        callbacks.notify(LifecyclePhase.POST_DUMP)

    @staticmethod
    def _transition(log: structlog.stdlib.BoundLogger, phase: CheckpointPhase) -> None:
        log.debug("checkpoint phase", phase=phase.value)
