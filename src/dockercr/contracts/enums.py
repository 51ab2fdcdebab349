"""Status codes, kinds, and modes shared across subsystem boundaries.

Values that are persisted (Strategy, ResourceClass, TargetKind) appear
verbatim in checkpoint metadata files. Renaming a value breaks restore of
existing checkpoints.
"""

from enum import StrEnum


class TargetKind(StrEnum):
    """What a CaptureTarget identifies.

    Stored in checkpoint metadata (TARGET_KIND).
    """

    PROCESS = "process"
    CONTAINER = "container"


class ProcessState(StrEnum):
    """Lifecycle state decoded from /proc/<pid>/stat.

    UNKNOWN covers state letters the probe does not recognise; it is not
    treated as a precondition failure.
    """

    RUNNING = "running"
    SLEEPING = "sleeping"
    DISK_WAIT = "disk-wait"
    ZOMBIE = "zombie"
    STOPPED = "stopped"
    DEAD = "dead"
    UNKNOWN = "unknown"

    @property
    def is_checkpointable(self) -> bool:
        """Whether a process in this state has anything left to capture."""
        return self not in (ProcessState.ZOMBIE, ProcessState.DEAD)


class ResourceClass(StrEnum):
    """OS resource classes a process may hold.

    Stored in checkpoint metadata (RESOURCES) so restore can mirror the
    resource-class flags used at capture time.
    """

    TCP_ESTABLISHED = "tcp_established"
    UNIX_SOCKET = "unix_socket"
    PIPE = "pipe"
    EVENTFD = "eventfd"
    SIGNALFD = "signalfd"
    TIMERFD = "timerfd"
    SHELL_JOB = "shell_job"


class Strategy(StrEnum):
    """Named policy for which engine options a checkpoint attempt uses.

    Stored in checkpoint metadata (STRATEGY). Restore never picks a
    strategy of its own; it uses the one recorded here.

    Values:
        DIRECT_MINIMAL: Identifier, destination and log routing only.
            Least likely to trip over namespace complexity, lowest fidelity.
        DIRECT_CONTAINER_AWARE: Per-resource flags, cgroups left to the
            runtime, runtime-managed bind mounts skipped.
        CONTAINER_NATIVE_DELEGATE: No engine options at all; the whole
            operation is handed to the container runtime's checkpoint API.
    """

    DIRECT_MINIMAL = "direct-minimal"
    DIRECT_CONTAINER_AWARE = "direct-container-aware"
    CONTAINER_NATIVE_DELEGATE = "container-native-delegate"

    @property
    def invokes_engine(self) -> bool:
        """Whether this strategy calls the checkpoint engine directly."""
        return self is not Strategy.CONTAINER_NATIVE_DELEGATE


class CgroupMode(StrEnum):
    """How the engine treats the target's cgroups."""

    MANAGE = "manage"
    IGNORE = "ignore"


class LifecyclePhase(StrEnum):
    """Phase boundaries at which the engine invokes lifecycle callbacks.

    Values match the action names the engine passes to action scripts
    in CRTOOLS_SCRIPT_ACTION.
    """

    PRE_DUMP = "pre-dump"
    POST_DUMP = "post-dump"
    PRE_RESTORE = "pre-restore"
    POST_RESTORE = "post-restore"
    NETWORK_LOCK = "network-lock"
    NETWORK_UNLOCK = "network-unlock"
    SETUP_NAMESPACES = "setup-namespaces"
    POST_SETUP_NAMESPACES = "post-setup-namespaces"
    POST_RESUME = "post-resume"


class CheckpointPhase(StrEnum):
    """States of the checkpoint state machine."""

    IDLE = "idle"
    PROBING = "probing"
    OPTION_BUILDING = "option-building"
    INVOKING = "invoking"
    RECORDING = "recording"
    DONE = "done"


class RestorePhase(StrEnum):
    """States of the restore state machine."""

    IDLE = "idle"
    METADATA_LOAD = "metadata-load"
    TARGET_RECONCILIATION = "target-reconciliation"
    INVOKING = "invoking"
    VERIFYING = "verifying"
    DONE = "done"
