from __future__ import annotations

import fcntl
import json
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, Optional

from pydantic import BaseModel, Field, ValidationError

from obsctl.utils.diagnostics import LockHeldError

ACQUIRE_ATTEMPTS = 3

# Lock path -> descriptor carrying this process's flock.
_held_locks: Dict[str, int] = {}


class LockState(str, Enum):
    """Classification of run lock metadata/liveness state."""

    ABSENT = "absent"
    HELD = "held"
    STALE = "stale"


class RunLockMetadata(BaseModel):
    """
    Persisted run lock metadata. Informational only: ownership is the
    advisory flock on the lock file, which the kernel drops when the
    holder exits.
    """

    pid: int = Field(gt=0)
    command: str
    acquired_at: str


class LockProbeResult(BaseModel):
    state: LockState
    metadata: RunLockMetadata | None = None
    lock_path: str
    reason: str


def is_process_alive(pid: int) -> bool:
    """Return True when a process id appears to be alive on this host."""
    if pid <= 0:
        return False

    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False

    return True


def _try_flock(fd: int) -> bool:
    """Take an exclusive, non-blocking flock. Returns False when someone else holds it."""
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        return False
    return True


def _is_current_file(fd: int, lock_path: Path) -> bool:
    """True when `fd` still refers to the file at `lock_path` (not an unlinked predecessor)."""
    try:
        current = os.stat(lock_path)
    except FileNotFoundError:
        return False
    opened = os.fstat(fd)
    return (current.st_dev, current.st_ino) == (opened.st_dev, opened.st_ino)


def read_lock_metadata(lock_path: Path) -> RunLockMetadata:
    """Parse the lock file. Raises OSError, ValueError or ValidationError on bad content."""
    payload = json.loads(lock_path.read_text(encoding="utf-8"))
    return RunLockMetadata.model_validate(payload)


def _holder_pid(lock_path: Path) -> Optional[int]:
    try:
        return read_lock_metadata(lock_path).pid
    except (OSError, ValueError, ValidationError):
        return None


def probe_lock_state(lock_path: Path) -> LockProbeResult:
    """Classify the run lock as absent, held by a live flock, or stale."""
    try:
        fd = os.open(lock_path, os.O_RDONLY)
    except FileNotFoundError:
        return LockProbeResult(
            state=LockState.ABSENT,
            lock_path=str(lock_path),
            reason="Lock file not found.",
        )

    try:
        held = str(lock_path) in _held_locks or not _try_flock(fd)
    finally:
        # Closing drops any flock taken here.
        os.close(fd)

    try:
        metadata = read_lock_metadata(lock_path)
    except (OSError, ValueError, ValidationError) as exc:
        return LockProbeResult(
            state=LockState.HELD if held else LockState.STALE,
            lock_path=str(lock_path),
            reason=f"Invalid lock metadata payload: {exc}",
        )

    if held:
        return LockProbeResult(
            state=LockState.HELD,
            metadata=metadata,
            lock_path=str(lock_path),
            reason=f"Lock is held by pid={metadata.pid}.",
        )

    if is_process_alive(metadata.pid):
        reason = f"Lock holder pid={metadata.pid} is alive but no longer holds the lock."
    else:
        reason = f"Lock holder pid={metadata.pid} is not alive."
    return LockProbeResult(
        state=LockState.STALE,
        metadata=metadata,
        lock_path=str(lock_path),
        reason=reason,
    )


def acquire_run_lock(lock_path: Path, command: str) -> RunLockMetadata:
    """
    Take the single-instance lock for a mutating run.

    The flock is taken before anything is written, so a stale file left by
    a dead process is simply reused. A live holder raises LockHeldError.
    """
    key = str(lock_path)
    if key in _held_locks:
        raise LockHeldError(key, os.getpid())

    lock_path.parent.mkdir(parents=True, exist_ok=True)

    for _ in range(ACQUIRE_ATTEMPTS):
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
        if not _try_flock(fd):
            os.close(fd)
            raise LockHeldError(key, _holder_pid(lock_path))
        if _is_current_file(fd, lock_path):
            break
        # The previous holder unlinked this file between our open and flock.
        os.close(fd)
    else:
        raise LockHeldError(key, _holder_pid(lock_path))

    metadata = RunLockMetadata(
        pid=os.getpid(),
        command=command,
        acquired_at=datetime.now(timezone.utc).isoformat(),
    )
    os.ftruncate(fd, 0)
    os.write(fd, metadata.model_dump_json(indent=2).encode("utf-8"))
    _held_locks[key] = fd
    return metadata


def release_run_lock(lock_path: Path) -> bool:
    """Remove the lock when this process holds it. Returns whether anything was removed."""
    fd = _held_locks.pop(str(lock_path), None)
    if fd is None:
        return False
    try:
        # Unlink before unlocking; late openers of this inode fail the identity check.
        lock_path.unlink(missing_ok=True)
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
    return True


@contextmanager
def run_lock(lock_path: Path, command: str) -> Iterator[RunLockMetadata]:
    metadata = acquire_run_lock(lock_path, command)
    try:
        yield metadata
    finally:
        release_run_lock(lock_path)
