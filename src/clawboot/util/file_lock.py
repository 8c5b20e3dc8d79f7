from __future__ import annotations

import fcntl
import os
from pathlib import Path
from typing import IO


class LockUnavailableError(RuntimeError):
    """Raised when a non-blocking lock cannot be acquired."""


def acquire_lockfile(path: Path, *, blocking: bool = True) -> IO[bytes]:
    """Open + flock a lockfile. Keep the returned handle open to hold the lock.

    Python opens files non-inheritable, so the lock is dropped on exec.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    f = path.open("r+b") if path.exists() else path.open("w+b")
    flags = fcntl.LOCK_EX
    if not blocking:
        flags |= fcntl.LOCK_NB
    try:
        fcntl.flock(f.fileno(), flags)
    except OSError as e:
        f.close()
        if not blocking:
            raise LockUnavailableError(str(e)) from e
        raise
    f.seek(0)
    f.truncate()
    f.write(f"{os.getpid()}\n".encode("ascii"))
    f.flush()
    return f


def release_lockfile(f: IO[bytes]) -> None:
    """Release a lockfile acquired via acquire_lockfile (best-effort)."""
    try:
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
    except (OSError, ValueError):
        pass
    try:
        f.close()
    except OSError:
        pass
