"""Inter-process locks shared by every Postbox process on one state directory."""

from __future__ import annotations

import fcntl
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO


class LockHeldError(RuntimeError):
    """Raised when another process already holds the instance lock."""


@contextmanager
def exclusive_lock(path: Path) -> Iterator[None]:
    """Block until this process holds an exclusive lock on ``path``."""

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def read_holder(path: Path) -> int | None:
    """Return the PID recorded in an instance lock file, if any."""

    try:
        contents = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    try:
        return int(contents) if contents else None
    except ValueError:
        return None


@dataclass
class InstanceLock:
    """Non-blocking lock held for as long as a mail-consuming command runs.

    The kernel drops the lock when the holder exits, so a crashed process
    never leaves a stale lock behind.
    """

    path: Path
    _handle: IO[str] | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.path = self.path.expanduser()

    def __enter__(self) -> InstanceLock:
        self.acquire()
        return self

    def __exit__(self, _exc_type, _exc, _tb) -> None:
        self.release()

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        if self._handle is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = self.path.open("a+", encoding="utf-8")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            handle.close()
            holder = read_holder(self.path)
            detail = f" (PID {holder})" if holder is not None else ""
            raise LockHeldError(
                f"Another Postbox process is already consuming mail for {self.path.parent}{detail}."
            ) from exc
        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._handle = handle

    def release(self) -> None:
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        try:
            handle.seek(0)
            handle.truncate()
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            handle.close()


__all__ = ["InstanceLock", "LockHeldError", "exclusive_lock", "read_holder"]
