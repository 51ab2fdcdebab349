# src/dockercr/plugins/hookspecs.py
"""pluggy hook specifications for lifecycle callbacks.

The checkpoint engine reaches these phase boundaries during capture and
replay. Every hook receives the CaptureTarget and, where the engine
provides one, the pid of the task concerned. Implementations declare only
the arguments they use, and only the hooks they care about: a hook with no
implementation is a no-op.

Usage (implementing a plugin):
    from dockercr.plugins.hookspecs import hookimpl

    class FlushBeforeDump:
        @hookimpl  # NOT @hookspec - that's for defining specs
        def dockercr_pre_dump(self, target):
            flush_buffers(target)

Raising from an implementation aborts the current capture or restore.
"""

from typing import TYPE_CHECKING

import pluggy

from dockercr.contracts import LifecyclePhase

if TYPE_CHECKING:
    from dockercr.contracts import CaptureTarget

# Project name for pluggy
PROJECT_NAME = "dockercr"

# Hook specification marker
hookspec = pluggy.HookspecMarker(PROJECT_NAME)

# Hook implementation marker (for plugins to use)
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


def hook_name(phase: LifecyclePhase) -> str:
    """Name of the hook that handles a lifecycle phase."""
    return f"{PROJECT_NAME}_{phase.value.replace('-', '_')}"


class LifecycleSpec:
    """Hook specifications for engine phase boundaries."""

    @hookspec
    def dockercr_pre_dump(self, target: "CaptureTarget", pid: int | None) -> None:
        """State capture is about to begin."""

    @hookspec
    def dockercr_post_dump(self, target: "CaptureTarget", pid: int | None) -> None:
        """State capture has completed."""

    @hookspec
    def dockercr_pre_restore(self, target: "CaptureTarget", pid: int | None) -> None:
        """State replay is about to begin."""

    @hookspec
    def dockercr_post_restore(self, target: "CaptureTarget", pid: int | None) -> None:
        """State replay has completed; pid is the restored root task."""

    @hookspec
    def dockercr_network_lock(self, target: "CaptureTarget", pid: int | None) -> None:
        """The engine is about to lock the target's external network state."""

    @hookspec
    def dockercr_network_unlock(self, target: "CaptureTarget", pid: int | None) -> None:
        """The engine is about to unlock the target's external network state."""

    @hookspec
    def dockercr_setup_namespaces(self, target: "CaptureTarget", pid: int | None) -> None:
        """Per-namespace setup begins for the task pid."""

    @hookspec
    def dockercr_post_setup_namespaces(self, target: "CaptureTarget", pid: int | None) -> None:
        """Per-namespace setup has completed."""

    @hookspec
    def dockercr_post_resume(self, target: "CaptureTarget", pid: int | None) -> None:
        """The restored process has resumed execution."""
