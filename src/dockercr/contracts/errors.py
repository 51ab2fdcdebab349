"""Exception taxonomy for checkpoint and restore orchestration.

Every failure either drives an explicit fallback transition (EngineError
during checkpoint) or reaches the caller. Errors that originate in the
engine carry its raw diagnostic text so the operator can see which
resource class (mounts, network namespace, cgroups) it tripped on.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dockercr.contracts.checkpoint import StrategyOutcome
    from dockercr.contracts.enums import LifecyclePhase


class DockerCRError(Exception):
    """Base class for all reported docker-cr errors."""


# =============================================================================
# Preconditions - always fatal, never retried
# =============================================================================


class PreconditionError(DockerCRError):
    """The target cannot be checkpointed or restored in its current state."""


class TargetNotFoundError(PreconditionError):
    """No container or process with the given identifier exists."""


class ProcessNotFoundError(TargetNotFoundError):
    """No process with the given pid exists at probe time."""

    def __init__(self, pid: int) -> None:
        self.pid = pid
        super().__init__(f"process {pid} does not exist")


class TargetNotRunningError(PreconditionError):
    """The target exists but has no running process to capture."""


class ZombieProcessError(PreconditionError):
    """The target process is a zombie (or already dead)."""

    def __init__(self, pid: int, state: str) -> None:
        self.pid = pid
        self.state = state
        super().__init__(f"cannot checkpoint process {pid} in state '{state}'")


class TargetBusyError(DockerCRError):
    """Another checkpoint or restore attempt holds the target."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"a checkpoint or restore of '{key}' is already in flight")


# =============================================================================
# External collaborators
# =============================================================================


class EngineUnavailableError(DockerCRError):
    """The checkpoint engine is not installed or failed its version check."""


class EngineError(DockerCRError):
    """The checkpoint engine reported a failure.

    Attributes:
        diagnostic: Raw engine output (log file contents or stderr), or None
            when the engine left nothing behind.
    """

    def __init__(self, message: str, *, diagnostic: str | None = None) -> None:
        self.diagnostic = diagnostic
        super().__init__(message)


class CallbackError(EngineError):
    """A lifecycle callback failed and the engine aborted the operation."""

    def __init__(self, phase: LifecyclePhase, cause: BaseException, *, diagnostic: str | None = None) -> None:
        self.phase = phase
        self.cause = cause
        super().__init__(f"{phase.value} callback failed: {cause}", diagnostic=diagnostic)


class HookCommandError(DockerCRError):
    """An external hook command exited non-zero."""

    def __init__(self, phase: LifecyclePhase, command: list[str], returncode: int) -> None:
        self.phase = phase
        self.command = command
        self.returncode = returncode
        super().__init__(f"{phase.value} hook {command[0]!r} exited with status {returncode}")


class RuntimeUnavailableError(DockerCRError):
    """The container runtime daemon cannot be reached."""


class ContainerRuntimeError(DockerCRError):
    """The container runtime rejected a request."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


# =============================================================================
# Checkpoint outcomes
# =============================================================================


class CheckpointExhaustedError(DockerCRError):
    """Every strategy in the fallback chain failed.

    Attributes:
        outcomes: One failed StrategyOutcome per attempted strategy, in the
            order they were tried.
    """

    def __init__(self, target: str, outcomes: list[StrategyOutcome]) -> None:
        self.target = target
        self.outcomes = outcomes
        tried = ", ".join(outcome.strategy.value for outcome in outcomes)
        super().__init__(f"all checkpoint strategies failed for {target} (tried: {tried})")


# =============================================================================
# Restore outcomes
# =============================================================================


class MissingMetadataError(DockerCRError):
    """The checkpoint directory holds no checkpoint record."""


class IncompatibleCheckpointError(DockerCRError):
    """The checkpoint record was written by an incompatible format version."""


class CheckpointCorruptionError(DockerCRError):
    """The checkpoint record exists but cannot be decoded."""


class RestoreFailedError(DockerCRError):
    """The engine failed to restore the recorded checkpoint.

    Restore never falls back to another strategy, so this is terminal.
    """

    def __init__(self, message: str, *, diagnostic: str | None = None) -> None:
        self.diagnostic = diagnostic
        super().__init__(message)


class RestoreUnverifiedError(DockerCRError):
    """The restored target was not observed running within the verification bound.

    The restore may have partially succeeded at the kernel level.
    """

    def __init__(self, message: str, *, diagnostic: str | None = None) -> None:
        self.diagnostic = diagnostic
        super().__init__(message)
