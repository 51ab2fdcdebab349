"""Target resolution shared by the checkpoint and restore state machines."""

from dockercr.contracts import (
    CaptureTarget,
    ContainerState,
    TargetKind,
    TargetNotFoundError,
    TargetNotRunningError,
)
from dockercr.core.logging import get_logger
from dockercr.engine.runtime import ContainerRuntime

logger = get_logger(__name__)


def is_process_identifier(identifier: str) -> bool:
    """All-digit identifiers name a bare process; anything else is a container."""
    return identifier.isdigit()


def require_live_container(identifier: str, state: ContainerState | None) -> ContainerState:
    """Check a container exists and has a running process behind it.

    Raises:
        TargetNotFoundError: If the runtime does not know the container
        TargetNotRunningError: If it is stopped or reports pid 0
    """
    if state is None:
        raise TargetNotFoundError(f"container {identifier!r} not found")
    if not state.running:
        raise TargetNotRunningError(f"container {identifier!r} is not running (status: {state.status})")
    if state.pid == 0:
        raise TargetNotRunningError(f"container {identifier!r} reports running but has no process")
    return state


def resolve_target(identifier: str, runtime: ContainerRuntime) -> CaptureTarget:
    """Turn a CLI target argument into a CaptureTarget.

    Bare processes are not checked here; the probe does that on every
    attempt.
    """
    if is_process_identifier(identifier):
        return CaptureTarget.for_process(int(identifier))

    with runtime.session() as rt:
        state = require_live_container(identifier, rt.inspect(identifier))
    logger.debug("container resolved", container=state.name, container_id=state.container_id, pid=state.pid)
    return CaptureTarget(
        kind=TargetKind.CONTAINER,
        pid=state.pid,
        container_id=state.container_id,
        container_name=state.name or identifier,
        image=state.image,
    )
