"""Exclusive per-target guard for checkpoint and restore attempts.

Invoking the engine is an exclusive, blocking operation: two attempts
against the same target must never overlap. The guard has two layers:
- an in-process registry, so re-entrant calls in one interpreter fail fast
- a non-blocking flock on <lock_dir>/<key>.lock, so separate docker-cr
  processes exclude each other

Neither layer waits. A held target raises TargetBusyError immediately.
"""

import fcntl
import os
import re
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from dockercr.contracts import TargetBusyError
from dockercr.core.logging import get_logger

logger = get_logger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class TargetLocks:
    """Refuses a second attempt against a target while one is in flight.

    Usage:
        locks = TargetLocks(Path("/run/lock/docker-cr"))
        with locks.hold(target.lock_key):
            engine.dump(...)
    """

    def __init__(self, lock_dir: Path) -> None:
        self._lock_dir = lock_dir
        self._in_flight: set[str] = set()
        self._registry_lock = threading.Lock()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the target for the duration of the block.

        Raises:
            TargetBusyError: If this or another process already holds it.
        """
        with self._registry_lock:
            if key in self._in_flight:
                raise TargetBusyError(key)
            self._in_flight.add(key)

        try:
            fd = self._acquire_file_lock(key)
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
                os.close(fd)
        finally:
            with self._registry_lock:
                self._in_flight.discard(key)

    def _acquire_file_lock(self, key: str) -> int:
        self._lock_dir.mkdir(parents=True, exist_ok=True)
        path = self._lock_dir / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.lock"
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            logger.warning("target lock held by another process", key=key, lock_file=str(path))
            raise TargetBusyError(key) from None
        return fd
