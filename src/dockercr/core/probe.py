"""ProcessProbe: read-only characterization of a live process.

Everything comes from procfs:
- /proc/<pid>/stat        lifecycle state, process group, session
- /proc/<pid>/cmdline     process name
- /proc/<pid>/fd/*        pipes, sockets, eventfd/signalfd/timerfd
- /proc/<pid>/net/tcp{,6} established TCP connections
- /proc/<pid>/net/unix    unix-domain sockets

A process can exit or close descriptors while it is being read. Any file
that disappears or cannot be read mid-probe counts as "resource absent";
only the initial existence check is fatal.
"""

from pathlib import Path

from dockercr.contracts import CapabilityProfile, ProcessNotFoundError, ProcessState
from dockercr.core.logging import get_logger

logger = get_logger(__name__)

_STATE_LETTERS: dict[str, ProcessState] = {
    "R": ProcessState.RUNNING,
    "S": ProcessState.SLEEPING,
    "I": ProcessState.SLEEPING,  # idle kernel thread
    "D": ProcessState.DISK_WAIT,
    "Z": ProcessState.ZOMBIE,
    "T": ProcessState.STOPPED,
    "t": ProcessState.STOPPED,  # tracing stop
    "X": ProcessState.DEAD,
    "x": ProcessState.DEAD,
}

# st column of /proc/net/tcp is hex; 01 is TCP_ESTABLISHED
_TCP_ESTABLISHED = 0x01

_FD_PREFIXES: dict[str, str] = {
    "pipe:": "has_pipes",
    "socket:": "has_unix_sockets",
    "anon_inode:[eventfd]": "has_eventfd",
    "anon_inode:[signalfd]": "has_signalfd",
    "anon_inode:[timerfd]": "has_timerfd",
}


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None


class ProcessProbe:
    """Builds CapabilityProfiles from procfs.

    Usage:
        probe = ProcessProbe()
        profile = probe.probe(1234)
        if not profile.state.is_checkpointable:
            ...

    Args:
        proc_root: Mount point of procfs. Tests point this at a fake tree.
    """

    def __init__(self, proc_root: Path = Path("/proc")) -> None:
        self._proc_root = proc_root

    def probe(self, pid: int) -> CapabilityProfile:
        """Characterize a live process.

        Zombie processes are profiled normally; deciding that a zombie cannot
        be checkpointed is the caller's job.

        Raises:
            ProcessNotFoundError: If no process with this pid exists now.
        """
        proc_dir = self._proc_root / str(pid)
        stat = _read_text(proc_dir / "stat")
        if stat is None:
            raise ProcessNotFoundError(pid)

        state, pgid, sid = self._parse_stat(stat)
        fd_flags = self._scan_fds(proc_dir / "fd")

        profile = CapabilityProfile(
            pid=pid,
            name=self._read_name(proc_dir),
            state=state,
            has_established_tcp=self._has_established_tcp(proc_dir / "net"),
            has_unix_sockets=fd_flags["has_unix_sockets"] or self._has_unix_sockets(proc_dir / "net" / "unix"),
            has_pipes=fd_flags["has_pipes"],
            has_eventfd=fd_flags["has_eventfd"],
            has_signalfd=fd_flags["has_signalfd"],
            has_timerfd=fd_flags["has_timerfd"],
            is_shell_job=pgid is not None and pgid == sid,
        )
        logger.debug(
            "process probed",
            pid=pid,
            name=profile.name,
            state=profile.state.value,
            resources=sorted(r.value for r in profile.resource_classes),
        )
        return profile

    @staticmethod
    def _parse_stat(stat: str) -> tuple[ProcessState, int | None, int | None]:
        """Decode state, pgrp and session from a stat line.

        The comm field is parenthesised and may itself contain spaces or
        parentheses, so fields are counted from the LAST ')'.
        """
        close = stat.rfind(")")
        if close == -1:
            return ProcessState.UNKNOWN, None, None
        fields = stat[close + 1 :].split()
        if not fields:
            return ProcessState.UNKNOWN, None, None

        state = _STATE_LETTERS.get(fields[0], ProcessState.UNKNOWN)
        # after comm: state(0) ppid(1) pgrp(2) session(3)
        try:
            pgid, sid = int(fields[2]), int(fields[3])
        except (IndexError, ValueError):
            return state, None, None
        return state, pgid, sid

    @staticmethod
    def _read_name(proc_dir: Path) -> str:
        cmdline = _read_text(proc_dir / "cmdline")
        if cmdline:
            return cmdline.split("\x00", 1)[0]
        comm = _read_text(proc_dir / "comm")
        return comm.strip() if comm else ""

    @staticmethod
    def _scan_fds(fd_dir: Path) -> dict[str, bool]:
        flags = dict.fromkeys(_FD_PREFIXES.values(), False)
        try:
            entries = list(fd_dir.iterdir())
        except OSError:
            return flags

        for entry in entries:
            try:
                link_target = str(entry.readlink())
            except OSError:
                continue
            for prefix, flag in _FD_PREFIXES.items():
                if link_target.startswith(prefix):
                    flags[flag] = True
                    break
        return flags

    @staticmethod
    def _has_established_tcp(net_dir: Path) -> bool:
        for table in ("tcp", "tcp6"):
            content = _read_text(net_dir / table)
            if content is None:
                continue
            for line in content.splitlines()[1:]:
                fields = line.split()
                if len(fields) < 4:
                    continue
                try:
                    if int(fields[3], 16) == _TCP_ESTABLISHED:
                        return True
                except ValueError:
                    continue
        return False

    @staticmethod
    def _has_unix_sockets(unix_table: Path) -> bool:
        content = _read_text(unix_table)
        if content is None:
            return False
        return any(line.strip() for line in content.splitlines()[1:])
