"""Exclusive execution lock for the decision engine.

Purpose: at most one invocation may read and mutate the deferral state at a
time. The lock is a kernel-level advisory lock on a well-known file, so it is
dropped automatically when the holding process dies; the pid written into the
file is informational only and never used to decide ownership.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import psutil

from .errors import AlreadyRunningError

_RETRY_INTERVAL_S = 0.1


@dataclass
class ExecutionLock:
    path: Path
    _handle: Any

    @property
    def held(self) -> bool:
        return self._handle is not None

    def release(self) -> None:
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        try:
            _unlock_file(handle)
        finally:
            handle.close()

    def __enter__(self) -> "ExecutionLock":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.release()


class _LockHeld(Exception):
    pass


def _lock_file(handle) -> None:
    if os.name == "nt":
        import msvcrt

        try:
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)  # type: ignore[attr-defined]
        except OSError as exc:
            raise _LockHeld() from exc
        return
    import fcntl

    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError as exc:
        raise _LockHeld() from exc


def _unlock_file(handle) -> None:
    if os.name == "nt":
        import msvcrt

        try:
            msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)  # type: ignore[attr-defined]
        except OSError:
            return
        return
    import fcntl

    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    except OSError:
        return


def read_holder(path: Path) -> tuple[int | None, str | None]:
    """Best-effort diagnosis of the current lock holder (pid, process name)."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError:
        return None, None
    pid = None
    for line in text.splitlines():
        key, _, value = line.partition("=")
        if key.strip() == "pid":
            try:
                pid = int(value.strip())
            except ValueError:
                pid = None
    if pid is None:
        return None, None
    try:
        name = psutil.Process(pid).name()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        name = None
    return pid, name


def _write_holder(handle) -> None:
    # Lock is already held at this point; the pid line is diagnostics only.
    try:
        handle.seek(0)
        handle.truncate()
        handle.write(f"pid={os.getpid()}\n")
        handle.flush()
        os.fsync(handle.fileno())
    except OSError:
        pass


def acquire_execution_lock(lock_path: str | Path, timeout: float = 0) -> ExecutionLock:
    """Acquire the lock or raise ``AlreadyRunningError``.

    ``timeout=0`` fails immediately; a positive timeout polls until the
    deadline passes.
    """
    path = Path(str(lock_path)).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = path.open("a+", encoding="utf-8")
    deadline = time.monotonic() + max(0.0, float(timeout))
    while True:
        try:
            _lock_file(handle)
            break
        except _LockHeld:
            if time.monotonic() >= deadline:
                handle.close()
                pid, name = read_holder(path)
                raise AlreadyRunningError(path, holder_pid=pid, holder_name=name) from None
            time.sleep(_RETRY_INTERVAL_S)
        except BaseException:
            handle.close()
            raise
    _write_holder(handle)
    return ExecutionLock(path=path, _handle=handle)
