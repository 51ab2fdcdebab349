"""SnapshotOptionBuilder: pure mapping from resource classes to engine options.

One builder per strategy, registered in STRATEGY_BUILDERS. Builders have no
side effects and consult nothing but their arguments, so the same recorded
resource classes always rebuild the same options at restore time.

Invariant for every direct strategy: a resource class reported present
turns its engine flag on. No builder leaves such a flag at the engine
default, which could silently drop that state.
"""

import dataclasses
from collections.abc import Callable
from pathlib import Path

from dockercr.contracts import (
    CapabilityProfile,
    CgroupMode,
    CheckpointRecord,
    ResourceClass,
    SnapshotOptions,
    Strategy,
)

# Bind mounts the container runtime owns and recreates itself
CONTAINER_SKIP_MOUNTS: tuple[str, ...] = (
    "/etc/resolv.conf",
    "/etc/hostname",
    "/etc/hosts",
    "/dev/mqueue",
    "/proc/sys",
    "/proc/sysrq-trigger",
)

# Filesystem types the engine may dump and recreate
CONTAINER_ENABLE_FS: tuple[str, ...] = ("overlay", "proc", "sysfs", "devtmpfs", "tmpfs")

DEFAULT_GHOST_LIMIT = 1024 * 1024

DUMP_LOG_FILE = "dump.log"
RESTORE_LOG_FILE = "restore.log"


@dataclasses.dataclass(frozen=True)
class BuildContext:
    """Per-attempt values every builder needs."""

    images_dir_fd: int
    images_dir: Path
    pid: int | None
    leave_running: bool | None
    log_file: str = DUMP_LOG_FILE
    log_level: int = 4
    ghost_limit: int = DEFAULT_GHOST_LIMIT


def _flag(resources: frozenset[ResourceClass], resource: ResourceClass) -> bool | None:
    return True if resource in resources else None


def build_direct_minimal(resources: frozenset[ResourceClass], ctx: BuildContext) -> SnapshotOptions:
    """Identifier, destination and log routing, plus flags for present classes."""
    return SnapshotOptions(
        images_dir_fd=ctx.images_dir_fd,
        images_dir=ctx.images_dir,
        log_file=ctx.log_file,
        log_level=ctx.log_level,
        pid=ctx.pid,
        leave_running=ctx.leave_running,
        tcp_established=_flag(resources, ResourceClass.TCP_ESTABLISHED),
        ext_unix_sk=_flag(resources, ResourceClass.UNIX_SOCKET),
        shell_job=_flag(resources, ResourceClass.SHELL_JOB),
    )


def build_direct_container_aware(resources: frozenset[ResourceClass], ctx: BuildContext) -> SnapshotOptions:
    """Full container options: runtime-owned mounts skipped, cgroups left alone."""
    return SnapshotOptions(
        images_dir_fd=ctx.images_dir_fd,
        images_dir=ctx.images_dir,
        log_file=ctx.log_file,
        log_level=ctx.log_level,
        pid=ctx.pid,
        leave_running=ctx.leave_running,
        tcp_established=ResourceClass.TCP_ESTABLISHED in resources,
        ext_unix_sk=ResourceClass.UNIX_SOCKET in resources,
        file_locks=True,
        orphan_pts_master=True,
        shell_job=ResourceClass.SHELL_JOB in resources,
        link_remap=True,
        manage_cgroups=CgroupMode.IGNORE,
        skip_mounts=CONTAINER_SKIP_MOUNTS,
        enable_fs=CONTAINER_ENABLE_FS,
        ghost_limit=ctx.ghost_limit,
    )


def build_container_native_delegate(resources: frozenset[ResourceClass], ctx: BuildContext) -> None:
    """No engine options: the container runtime checkpoints on its own."""
    return None


OptionBuilder = Callable[[frozenset[ResourceClass], BuildContext], SnapshotOptions | None]

STRATEGY_BUILDERS: dict[Strategy, OptionBuilder] = {
    Strategy.DIRECT_CONTAINER_AWARE: build_direct_container_aware,
    Strategy.DIRECT_MINIMAL: build_direct_minimal,
    Strategy.CONTAINER_NATIVE_DELEGATE: build_container_native_delegate,
}


def build_options(
    profile: CapabilityProfile | frozenset[ResourceClass],
    strategy: Strategy,
    *,
    images_dir_fd: int,
    images_dir: Path,
    pid: int | None,
    leave_running: bool | None = True,
    log_file: str = DUMP_LOG_FILE,
    log_level: int = 4,
    ghost_limit: int = DEFAULT_GHOST_LIMIT,
) -> SnapshotOptions | None:
    """Build engine options for one attempt with one strategy.

    Returns:
        SnapshotOptions, or None for the container-native delegate

    Raises:
        KeyError: If no builder is registered for strategy
    """
    resources = profile.resource_classes if isinstance(profile, CapabilityProfile) else profile
    ctx = BuildContext(
        images_dir_fd=images_dir_fd,
        images_dir=images_dir,
        pid=pid,
        leave_running=leave_running,
        log_file=log_file,
        log_level=log_level,
        ghost_limit=ghost_limit,
    )
    return STRATEGY_BUILDERS[strategy](resources, ctx)


def restore_options(
    record: CheckpointRecord,
    *,
    images_dir_fd: int,
    images_dir: Path,
    pidfile: str,
    log_level: int = 4,
    ghost_limit: int = DEFAULT_GHOST_LIMIT,
) -> SnapshotOptions:
    """Engine options for restoring a record.

    Mirrors the recorded strategy's mount-skip list, filesystem allow-list
    and resource-class flags. The restored tree is detached from the
    orchestrator so our own exit does not tear it down.

    Raises:
        ValueError: If the record's strategy does not invoke the engine
    """
    options = build_options(
        record.resources,
        record.strategy,
        images_dir_fd=images_dir_fd,
        images_dir=images_dir,
        pid=None,
        leave_running=None,
        log_file=RESTORE_LOG_FILE,
        log_level=log_level,
        ghost_limit=ghost_limit,
    )
    if options is None:
        raise ValueError(f"strategy {record.strategy.value} is restored by the container runtime, not the engine")
    return dataclasses.replace(options, restore_detached=True, pidfile=pidfile)
