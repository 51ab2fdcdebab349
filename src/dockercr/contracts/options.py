"""Engine option contract.

SnapshotOptions is the complete configuration handed to the checkpoint
engine. A field left as None means "use the engine's default".
"""

from dataclasses import dataclass
from pathlib import Path

from dockercr.contracts.enums import CgroupMode


@dataclass(frozen=True)
class SnapshotOptions:
    """Options for one engine dump or restore call.

    Invariant: options derived from a CapabilityProfile never leave the flag
    for a present resource class at None or False. Dropping it would
    silently lose that state.
    """

    images_dir_fd: int
    images_dir: Path
    log_file: str
    log_level: int = 4
    pid: int | None = None
    leave_running: bool | None = None
    tcp_established: bool | None = None
    ext_unix_sk: bool | None = None
    file_locks: bool | None = None
    orphan_pts_master: bool | None = None
    shell_job: bool | None = None
    link_remap: bool | None = None
    manage_cgroups: CgroupMode | None = None
    skip_mounts: tuple[str, ...] = ()
    enable_fs: tuple[str, ...] = ()
    ghost_limit: int | None = None
    restore_detached: bool | None = None
    pidfile: str | None = None

    @property
    def log_path(self) -> Path:
        """Where the engine writes its log for this call."""
        return self.images_dir / self.log_file
