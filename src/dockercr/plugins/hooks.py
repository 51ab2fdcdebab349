"""Built-in lifecycle plugins.

- LoggingLifecyclePlugin: logs every phase boundary at debug level
- create_hook_command_plugin(): runs operator-configured commands at the
  phases they were configured for, and implements no other hook
"""

import os
import subprocess
from typing import Any

from dockercr.contracts import CaptureTarget, HookCommandError, LifecyclePhase
from dockercr.core.logging import get_logger
from dockercr.plugins.hookspecs import hook_name, hookimpl

logger = get_logger(__name__)

# Exit status a shell reports for a command it cannot find
_COMMAND_NOT_FOUND = 127


def run_hook_command(command: list[str], phase: LifecyclePhase, target: CaptureTarget, pid: int | None) -> None:
    """Spawn a hook command, wait for it, and fail on non-zero exit.

    The command sees DOCKERCR_PHASE, DOCKERCR_TARGET and DOCKERCR_PID (empty
    when the phase has no task) in its environment. Its output goes to the
    orchestrator's own stdout/stderr.

    Raises:
        HookCommandError: If the command cannot be started or exits non-zero.
    """
    env = {
        **os.environ,
        "DOCKERCR_PHASE": phase.value,
        "DOCKERCR_TARGET": target.container_name or str(target.pid),
        "DOCKERCR_PID": "" if pid is None else str(pid),
    }
    logger.info("running hook command", phase=phase.value, command=command)
    try:
        completed = subprocess.run(command, env=env, check=False)
    except OSError as e:
        logger.error("hook command could not be started", phase=phase.value, command=command, error=str(e))
        raise HookCommandError(phase, command, _COMMAND_NOT_FOUND) from e
    if completed.returncode != 0:
        raise HookCommandError(phase, command, completed.returncode)


def create_hook_command_plugin(commands: dict[LifecyclePhase, list[str]]) -> object:
    """Create a plugin running one external command per configured phase.

    Dynamically generates a class with one @hookimpl method per entry in
    commands, so phases without a command stay no-ops.

    Args:
        commands: Command argv to run, keyed by phase

    Returns:
        Object instance with the decorated hook methods
    """

    class HookCommandPlugin:
        """Dynamically generated hook-command implementer."""

        def __repr__(self) -> str:
            return f"HookCommandPlugin(phases={sorted(p.value for p in commands)})"

    for phase, command in commands.items():

        def hook_method(self: Any, target: CaptureTarget, pid: int | None, _phase: LifecyclePhase = phase, _command: list[str] = command) -> None:
            run_hook_command(_command, _phase, target, pid)

        setattr(HookCommandPlugin, hook_name(phase), hookimpl(hook_method))

    return HookCommandPlugin()


class LoggingLifecyclePlugin:
    """Logs each phase boundary the engine reaches."""

    def _log(self, phase: LifecyclePhase, target: CaptureTarget, pid: int | None) -> None:
        logger.debug("lifecycle phase", phase=phase.value, target=target.display_name, pid=pid)

    @hookimpl
    def dockercr_pre_dump(self, target: CaptureTarget) -> None:
        self._log(LifecyclePhase.PRE_DUMP, target, None)

    @hookimpl
    def dockercr_post_dump(self, target: CaptureTarget) -> None:
        self._log(LifecyclePhase.POST_DUMP, target, None)

    @hookimpl
    def dockercr_pre_restore(self, target: CaptureTarget) -> None:
        self._log(LifecyclePhase.PRE_RESTORE, target, None)

    @hookimpl
    def dockercr_post_restore(self, target: CaptureTarget, pid: int | None) -> None:
        self._log(LifecyclePhase.POST_RESTORE, target, pid)

    @hookimpl
    def dockercr_network_lock(self, target: CaptureTarget) -> None:
        self._log(LifecyclePhase.NETWORK_LOCK, target, None)

    @hookimpl
    def dockercr_network_unlock(self, target: CaptureTarget) -> None:
        self._log(LifecyclePhase.NETWORK_UNLOCK, target, None)

    @hookimpl
    def dockercr_setup_namespaces(self, target: CaptureTarget, pid: int | None) -> None:
        self._log(LifecyclePhase.SETUP_NAMESPACES, target, pid)

    @hookimpl
    def dockercr_post_setup_namespaces(self, target: CaptureTarget) -> None:
        self._log(LifecyclePhase.POST_SETUP_NAMESPACES, target, None)

    @hookimpl
    def dockercr_post_resume(self, target: CaptureTarget) -> None:
        self._log(LifecyclePhase.POST_RESUME, target, None)
