"""Advisory lock serializing ref updates on one local repository."""

from __future__ import annotations

import os
import threading
from contextlib import contextmanager

_LOCK_NAME = "patch2pr.lock"

_thread_locks: dict[str, threading.Lock] = {}
_thread_locks_guard = threading.Lock()


def _thread_lock(repo_path: str) -> threading.Lock:
    key = os.path.normcase(os.path.realpath(repo_path))
    with _thread_locks_guard:
        lock = _thread_locks.get(key)
        if lock is None:
            lock = _thread_locks[key] = threading.Lock()
        return lock


try:
    import fcntl

    def _lock_file(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_EX)

    def _unlock_file(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)

except ImportError:
    import msvcrt

    def _lock_file(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_LOCK, 1)

    def _unlock_file(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)


@contextmanager
def repo_lock(repo_path: str):
    """Hold an exclusive lock on *repo_path* across threads and processes.

    Compare-and-swap ref updates and pull request numbering run under this
    lock.
    """
    tlock = _thread_lock(repo_path)
    with tlock:
        fd = os.open(os.path.join(repo_path, _LOCK_NAME), os.O_CREAT | os.O_RDWR)
        os.set_inheritable(fd, False)
        try:
            _lock_file(fd)
            try:
                yield
            finally:
                _unlock_file(fd)
        finally:
            os.close(fd)
