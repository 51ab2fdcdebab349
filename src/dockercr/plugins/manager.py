# src/dockercr/plugins/manager.py
"""Lifecycle plugin registration and dispatch.

Uses pluggy for hook-based plugin registration.
"""

import pluggy

from dockercr.contracts import CaptureTarget, LifecyclePhase
from dockercr.plugins.hooks import LoggingLifecyclePlugin, create_hook_command_plugin
from dockercr.plugins.hookspecs import PROJECT_NAME, LifecycleSpec, hook_name


def build_lifecycle_manager(
    hook_commands: dict[LifecyclePhase, list[str]] | None = None,
    *,
    plugins: list[object] | None = None,
) -> pluggy.PluginManager:
    """Create a plugin manager with the built-in lifecycle plugins registered.

    Args:
        hook_commands: External command per phase (settings.hooks)
        plugins: Additional plugin objects to register

    Returns:
        pluggy.PluginManager with LifecycleSpec loaded
    """
    pm = pluggy.PluginManager(PROJECT_NAME)
    pm.add_hookspecs(LifecycleSpec)
    pm.register(LoggingLifecyclePlugin(), name="logging")
    if hook_commands:
        pm.register(create_hook_command_plugin(hook_commands), name="hook-commands")
    for plugin in plugins or []:
        pm.register(plugin)
    return pm


class LifecycleCallbacks:
    """Dispatches engine phase boundaries to registered plugins for one target.

    Usage:
        callbacks = LifecycleCallbacks(build_lifecycle_manager(settings.hooks), target)
        callbacks.notify(LifecyclePhase.PRE_DUMP)

    Any exception raised by an implementation propagates to the caller,
    which aborts the engine operation in progress.
    """

    def __init__(self, plugin_manager: pluggy.PluginManager, target: CaptureTarget) -> None:
        self._pm = plugin_manager
        self._target = target

    def notify(self, phase: LifecyclePhase, pid: int | None = None) -> None:
        """Run every implementation of the hook for phase."""
        hook = getattr(self._pm.hook, hook_name(phase))
        hook(target=self._target, pid=pid)
