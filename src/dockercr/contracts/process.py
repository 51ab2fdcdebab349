"""Capture target and process characterization contracts.

CaptureTarget and CapabilityProfile are owned by the orchestration call
that created them and are discarded when that call returns.
"""

from dataclasses import dataclass

from dockercr.contracts.enums import ProcessState, ResourceClass, TargetKind


@dataclass(frozen=True)
class CaptureTarget:
    """What is being checkpointed or restored.

    A container target must carry the image reference and declared name so
    restore can recreate an equivalent container shell if the original is
    gone.
    """

    kind: TargetKind
    pid: int | None = None
    container_id: str | None = None
    container_name: str | None = None
    image: str | None = None

    def __post_init__(self) -> None:
        if self.kind == TargetKind.PROCESS:
            if self.pid is None or self.pid <= 0:
                raise ValueError(f"process target requires a positive pid, got {self.pid!r}")
        elif not self.image or not self.container_name:
            raise ValueError("container target requires both image and container_name")

    @classmethod
    def for_process(cls, pid: int) -> "CaptureTarget":
        return cls(kind=TargetKind.PROCESS, pid=pid)

    @property
    def is_container(self) -> bool:
        return self.kind == TargetKind.CONTAINER

    @property
    def lock_key(self) -> str:
        """Key used to refuse concurrent attempts against this target."""
        if self.is_container:
            return f"container-{self.container_name or self.container_id}"
        return f"pid-{self.pid}"

    @property
    def display_name(self) -> str:
        if self.is_container:
            return f"container {self.container_name}"
        return f"process {self.pid}"


@dataclass(frozen=True)
class CapabilityProfile:
    """Externally visible resource usage of a process at probe time.

    Computed fresh before every checkpoint attempt. Never reuse a profile
    across attempts; the process can change between retries.
    """

    pid: int
    name: str
    state: ProcessState
    has_established_tcp: bool = False
    has_unix_sockets: bool = False
    has_pipes: bool = False
    has_eventfd: bool = False
    has_signalfd: bool = False
    has_timerfd: bool = False
    is_shell_job: bool = False

    @property
    def resource_classes(self) -> frozenset[ResourceClass]:
        """Resource classes this profile reports present."""
        flags = {
            ResourceClass.TCP_ESTABLISHED: self.has_established_tcp,
            ResourceClass.UNIX_SOCKET: self.has_unix_sockets,
            ResourceClass.PIPE: self.has_pipes,
            ResourceClass.EVENTFD: self.has_eventfd,
            ResourceClass.SIGNALFD: self.has_signalfd,
            ResourceClass.TIMERFD: self.has_timerfd,
            ResourceClass.SHELL_JOB: self.is_shell_job,
        }
        return frozenset(resource for resource, present in flags.items() if present)


@dataclass(frozen=True)
class ContainerState:
    """What the container runtime reports about one container."""

    container_id: str
    name: str
    image: str
    running: bool
    pid: int
    status: str

    @property
    def is_live(self) -> bool:
        """Running with a real process behind it."""
        return self.running and self.pid != 0
