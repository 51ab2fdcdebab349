"""Checkpoint engine adapter: drives the CRIU command-line tool.

Each dump or restore runs `criu` as a child process with the images
directory passed as an inherited descriptor (/proc/self/fd/N), so the
directory the orchestrator opened is exactly the one the engine writes.

Lifecycle callbacks reach us through CRIU's --action-script. The adapter
generates a small script that execs `python -m dockercr.engine.notify`,
listens on a private unix socket for the relayed phase names, and
dispatches each one to the LifecycleCallbacks before replying. The wait
loop is single-threaded: CRIU blocks on the script, the script blocks on
our reply.
"""

import os
import shlex
import socket
import subprocess
import sys
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from dockercr.contracts import (
    CallbackError,
    CgroupMode,
    EngineError,
    EngineUnavailableError,
    LifecyclePhase,
    SnapshotOptions,
)
from dockercr.core.logging import get_logger
from dockercr.engine.notify import NOTIFY_SOCKET_ENV, REPLY_ERROR, REPLY_OK, decode_request

if TYPE_CHECKING:
    from dockercr.plugins.manager import LifecycleCallbacks

logger = get_logger(__name__)

# How often the wait loop checks whether CRIU has exited
_ACCEPT_INTERVAL_SECONDS = 0.2


class CheckpointEngine(Protocol):
    """What the orchestrators need from a checkpoint engine."""

    def check_version(self) -> str: ...

    def dump(self, options: SnapshotOptions, callbacks: "LifecycleCallbacks") -> None: ...

    def restore(self, options: SnapshotOptions, callbacks: "LifecycleCallbacks") -> None: ...


def build_argv(
    criu_path: str,
    command: str,
    options: SnapshotOptions,
    *,
    action_script: Path | None = None,
) -> list[str]:
    """Translate SnapshotOptions into a criu command line.

    Flags left at None (engine default) or False are omitted.
    """
    argv = [
        criu_path,
        command,
        "--images-dir",
        f"/proc/self/fd/{options.images_dir_fd}",
        "--log-file",
        options.log_file,
        f"-v{options.log_level}",
    ]
    if options.pid is not None:
        argv += ["--tree", str(options.pid)]

    switches = (
        (options.leave_running, "--leave-running"),
        (options.tcp_established, "--tcp-established"),
        (options.ext_unix_sk, "--ext-unix-sk"),
        (options.file_locks, "--file-locks"),
        (options.orphan_pts_master, "--orphan-pts-master"),
        (options.shell_job, "--shell-job"),
        (options.link_remap, "--link-remap"),
        (options.restore_detached, "--restore-detached"),
    )
    argv += [flag for enabled, flag in switches if enabled]

    if options.manage_cgroups == CgroupMode.MANAGE:
        argv.append("--manage-cgroups")
    elif options.manage_cgroups == CgroupMode.IGNORE:
        argv.append("--manage-cgroups=ignore")
    for mount in options.skip_mounts:
        argv += ["--skip-mnt", mount]
    if options.enable_fs:
        argv += ["--enable-fs", ",".join(options.enable_fs)]
    if options.ghost_limit is not None:
        argv += ["--ghost-limit", str(options.ghost_limit)]
    if options.pidfile is not None:
        argv += ["--pidfile", options.pidfile]
    if action_script is not None:
        argv += ["--action-script", str(action_script)]
    return argv


def write_action_script(directory: Path) -> Path:
    """Write the relay script CRIU runs at each phase boundary."""
    script = directory / "action-script.sh"
    script.write_text(f"#!/bin/sh\nexec {shlex.quote(sys.executable)} -m dockercr.engine.notify\n", encoding="utf-8")
    script.chmod(0o700)
    return script


@contextmanager
def open_images_dir(path: Path) -> Iterator[int]:
    """Hold a descriptor on the images directory for one engine call."""
    fd = os.open(path, os.O_RDONLY | os.O_DIRECTORY)
    try:
        yield fd
    finally:
        os.close(fd)


def _read_log(path: Path) -> str | None:
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    return text or None


def _first_line(error: Exception) -> str:
    lines = str(error).splitlines()
    return lines[0] if lines else type(error).__name__


class CriuEngine:
    """CheckpointEngine backed by the criu binary.

    Usage:
        engine = CriuEngine("criu")
        engine.check_version()
        engine.dump(options, callbacks)
    """

    def __init__(self, criu_path: str = "criu") -> None:
        self._criu_path = criu_path

    def check_version(self) -> str:
        """Confirm the engine is installed and runnable.

        Raises:
            EngineUnavailableError: If criu cannot be executed or its version
                check fails.
        """
        try:
            completed = subprocess.run([self._criu_path, "--version"], capture_output=True, text=True, check=False)
        except OSError as e:
            raise EngineUnavailableError(f"cannot run {self._criu_path!r} (is CRIU installed?): {e}") from e
        if completed.returncode != 0:
            raise EngineUnavailableError(
                f"{self._criu_path} --version exited with status {completed.returncode}: {completed.stderr.strip()}"
            )
        version = completed.stdout.strip().splitlines()[0] if completed.stdout.strip() else "unknown"
        logger.debug("engine version check passed", version=version)
        return version

    def dump(self, options: SnapshotOptions, callbacks: "LifecycleCallbacks") -> None:
        self._run("dump", options, callbacks)

    def restore(self, options: SnapshotOptions, callbacks: "LifecycleCallbacks") -> None:
        self._run("restore", options, callbacks)

    def _run(self, command: str, options: SnapshotOptions, callbacks: "LifecycleCallbacks") -> None:
        """Run one engine command, serving callbacks until it exits.

        Raises:
            CallbackError: If a lifecycle callback failed (the engine aborts)
            EngineError: If the engine exited non-zero
            EngineUnavailableError: If the engine binary cannot be started
        """
        with tempfile.TemporaryDirectory(prefix="dockercr-") as scratch:
            scratch_dir = Path(scratch)
            script = write_action_script(scratch_dir)
            socket_path = scratch_dir / "notify.sock"
            stderr_path = scratch_dir / "criu.stderr"
            argv = build_argv(self._criu_path, command, options, action_script=script)
            env = {**os.environ, NOTIFY_SOCKET_ENV: str(socket_path)}

            with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as server, stderr_path.open("wb") as stderr_file:
                server.bind(str(socket_path))
                server.listen(1)
                server.settimeout(_ACCEPT_INTERVAL_SECONDS)

                logger.info("invoking engine", command=command, argv=argv)
                try:
                    proc = subprocess.Popen(
                        argv,
                        pass_fds=(options.images_dir_fd,),
                        env=env,
                        stdin=subprocess.DEVNULL,
                        stdout=stderr_file,
                        stderr=stderr_file,
                    )
                except OSError as e:
                    raise EngineUnavailableError(f"cannot run {self._criu_path!r}: {e}") from e

                try:
                    failure = self._serve_callbacks(proc, server, callbacks)
                finally:
                    if proc.poll() is None:
                        proc.kill()
                        proc.wait()

            diagnostic = _read_log(options.log_path) or _read_log(stderr_path)

        if failure is not None:
            phase, cause = failure
            raise CallbackError(phase, cause, diagnostic=diagnostic) from cause
        if proc.returncode != 0:
            raise EngineError(f"criu {command} exited with status {proc.returncode}", diagnostic=diagnostic)
        logger.info("engine call succeeded", command=command)

    def _serve_callbacks(
        self,
        proc: subprocess.Popen[bytes],
        server: socket.socket,
        callbacks: "LifecycleCallbacks",
    ) -> tuple[LifecyclePhase, Exception] | None:
        """Answer relayed notifications until the engine exits.

        Returns the first callback failure, if any. Once a callback has
        failed, the engine aborts and no further phases are dispatched.
        """
        failure: tuple[LifecyclePhase, Exception] | None = None
        while proc.poll() is None:
            try:
                conn, _ = server.accept()
            except TimeoutError:
                continue
            with conn, conn.makefile("rb") as reader:
                action, pid = decode_request(reader.readline())
                try:
                    phase = LifecyclePhase(action)
                except ValueError:
                    # Phase docker-cr has no hook for
                    conn.sendall(f"{REPLY_OK}\n".encode())
                    continue

                if failure is not None:
                    conn.sendall(f"{REPLY_ERROR} aborted after {failure[0].value} failure\n".encode())
                    continue
                try:
                    callbacks.notify(phase, pid)
                except Exception as e:
                    logger.error("lifecycle callback failed", phase=phase.value, error=str(e))
                    failure = (phase, e)
                    conn.sendall(f"{REPLY_ERROR} {_first_line(e)}\n".encode())
                else:
                    conn.sendall(f"{REPLY_OK}\n".encode())
        return failure
