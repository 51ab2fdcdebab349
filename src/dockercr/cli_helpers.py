"""CLI helper functions for wiring orchestrators from settings."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dockercr.core.config import DockerCRSettings
    from dockercr.engine.orchestrator import CheckpointOrchestrator, RestoreOrchestrator

# Lines of engine log shown with an error
LOG_TAIL_LINES = 40


def _collaborators(settings: "DockerCRSettings") -> dict[str, object]:
    """Build the engine, runtime, probe, store, locks and plugin manager."""
    from dockercr.core.checkpoint import CheckpointMetadataStore
    from dockercr.core.locks import TargetLocks
    from dockercr.core.probe import ProcessProbe
    from dockercr.engine.criu import CriuEngine
    from dockercr.engine.runtime import DockerRuntime
    from dockercr.plugins.manager import build_lifecycle_manager

    return {
        "engine": CriuEngine(settings.engine.criu_path),
        "runtime": DockerRuntime(
            settings.runtime.socket_path,
            api_version=settings.runtime.api_version,
            request_timeout=settings.runtime.request_timeout_seconds,
        ),
        "probe": ProcessProbe(),
        "store": CheckpointMetadataStore(),
        "locks": TargetLocks(settings.checkpoint.lock_dir),
        "lifecycle": build_lifecycle_manager(settings.hooks),
    }


def build_checkpoint_orchestrator(settings: "DockerCRSettings") -> "CheckpointOrchestrator":
    """Create a CheckpointOrchestrator against the real engine and runtime.

    Args:
        settings: Validated DockerCRSettings instance
    """
    from dockercr.engine.orchestrator import CheckpointOrchestrator

    return CheckpointOrchestrator(settings=settings, **_collaborators(settings))  # type: ignore[arg-type]


def build_restore_orchestrator(settings: "DockerCRSettings") -> "RestoreOrchestrator":
    """Create a RestoreOrchestrator against the real engine and runtime.

    Args:
        settings: Validated DockerCRSettings instance
    """
    from dockercr.engine.orchestrator import RestoreOrchestrator

    return RestoreOrchestrator(settings=settings, **_collaborators(settings))  # type: ignore[arg-type]


def tail_lines(text: str, limit: int = LOG_TAIL_LINES) -> list[str]:
    """Last lines of an engine log, with a marker when some were cut."""
    lines = text.rstrip("\n").splitlines()
    if len(lines) <= limit:
        return lines
    return [f"... ({len(lines) - limit} earlier lines omitted)", *lines[-limit:]]
