"""
Exclusive Device Access
=======================

Cross-process named locks that serialize access to a physical or logical
device across concurrent CI jobs on the same machine.

A lock is identified by its resource name, ``"{Platform}-{Target}"`` (or
``"{Platform}-Default"`` when no target is given). Each name maps to a lock
file in a shared directory; exclusion comes from an OS advisory lock on that
file (``flock`` on POSIX, ``msvcrt.locking`` on Windows), which the OS drops
automatically when the holding process dies.

The holder writes its PID into the file and a clean release truncates it.
Finding a PID in a freshly acquired file therefore means the previous holder
terminated without releasing: the lock was abandoned.

Usage:
    from app_runner.locking import ResourceLock, resource_name

    locks = ResourceLock()
    name = resource_name("Xbox", "192.168.1.20")
    handle = await locks.acquire(name, timeout=600)
    try:
        ...
    finally:
        locks.release(handle, name)
"""

import asyncio
import hashlib
import os
import re
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Optional, Union

import psutil

from app_runner.config import get_settings
from app_runner.errors import AbandonedLockError, LockTimeoutError
from app_runner.utils.logger import get_logger

if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

logger = get_logger(__name__)

# Prefix keeping our lock files apart from anything else in the directory
LOCK_NAMESPACE = "app-runner-"

# How often a blocked acquisition retries the OS lock (seconds)
_POLL_TICK = 0.25

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def resource_name(platform: str, target: Optional[str] = None) -> str:
    """
    Build the exclusive-access key for a platform/target pair.

    Args:
        platform: Platform name as passed to connect (e.g. "Xbox").
        target: Optional target identifier (IP, serial, device name).

    Returns:
        ``"{platform}-{target}"``, or ``"{platform}-Default"`` without a target.
    """
    target = (target or "").strip()
    return f"{platform}-{target or 'Default'}"


class AbandonedLockPolicy(Enum):
    """What to do when the previous lock holder terminated without releasing."""

    WARN = "warn"
    FAIL = "fail"


@dataclass
class LockHandle:
    """
    An acquired exclusive-access lock.

    Attributes:
        resource_name: Resource the lock guards.
        path: Lock file backing the lock.
        abandoned: True if the previous holder died while owning it.
        previous_pid: PID recorded by the abandoning holder, if any.
    """

    resource_name: str
    path: Path
    abandoned: bool = False
    previous_pid: Optional[int] = None
    _file: Optional[IO[str]] = field(default=None, repr=False)

    @property
    def is_held(self) -> bool:
        """Whether this handle still owns the OS lock."""
        return self._file is not None and not self._file.closed


def _try_lock(fh: IO[str]) -> bool:
    """Attempt a non-blocking exclusive lock. Returns False if busy."""
    if sys.platform == "win32":
        fh.seek(0)
        try:
            msvcrt.locking(fh.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    try:
        fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        return False
    return True


def _unlock(fh: IO[str]) -> None:
    if sys.platform == "win32":
        fh.seek(0)
        msvcrt.locking(fh.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(fh.fileno(), fcntl.LOCK_UN)


class ResourceLock:
    """
    Acquires and releases named cross-process device locks.

    Two acquisitions of the same name are strictly serialized, whether they
    come from different processes or from separate handles in one process.
    Different names never block each other.
    """

    def __init__(
        self,
        lock_dir: Optional[Union[str, Path]] = None,
        abandoned_policy: Optional[AbandonedLockPolicy] = None,
        poll_tick: float = _POLL_TICK,
    ) -> None:
        settings = get_settings().lock
        self.lock_dir = Path(lock_dir) if lock_dir else Path(settings.lock_dir)
        self.abandoned_policy = abandoned_policy or AbandonedLockPolicy(
            settings.abandoned_lock_policy
        )
        self.poll_tick = poll_tick

    def lock_path(self, name: str) -> Path:
        """Lock file for a resource name."""
        # The digest keeps names that sanitize identically apart.
        digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:8]
        safe = _UNSAFE_CHARS.sub("_", name)
        return self.lock_dir / f"{LOCK_NAMESPACE}{safe}-{digest}.lock"

    async def acquire(
        self,
        name: str,
        timeout: float,
        progress_interval: float = 60.0,
    ) -> LockHandle:
        """
        Acquire exclusive access to a resource, waiting up to ``timeout``.

        Args:
            name: Resource name (see :func:`resource_name`).
            timeout: Maximum seconds to wait for a busy resource.
            progress_interval: Seconds between "still waiting" messages.

        Returns:
            LockHandle owning the resource.

        Raises:
            LockTimeoutError: The resource stayed busy for ``timeout`` seconds.
            AbandonedLockError: The lock was abandoned and the policy is FAIL.
        """
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        path = self.lock_path(name)
        progress_interval = max(progress_interval, self.poll_tick)

        fh = open(path, "a+", encoding="utf-8")
        try:
            start = time.monotonic()
            next_progress = start + progress_interval
            waited = False

            while not _try_lock(fh):
                now = time.monotonic()
                elapsed = now - start
                remaining = timeout - elapsed
                if remaining <= 0:
                    raise LockTimeoutError(name, timeout)

                if not waited:
                    logger.info(
                        "Device is in use, waiting for exclusive access",
                        resource=name,
                        timeout_seconds=timeout,
                    )
                    waited = True
                elif now >= next_progress:
                    logger.info(
                        "Still waiting for exclusive access",
                        resource=name,
                        elapsed_seconds=round(elapsed),
                        remaining_seconds=round(remaining),
                    )
                    next_progress = now + progress_interval

                await asyncio.sleep(min(self.poll_tick, remaining))

            handle = LockHandle(resource_name=name, path=path, _file=fh)
            self._check_abandoned(handle, fh)
            self._record_owner(fh)

        except BaseException:
            # Closing the descriptor drops any OS lock we obtained.
            fh.close()
            raise

        logger.info(
            "Acquired exclusive access",
            resource=name,
            waited_seconds=round(time.monotonic() - start, 1),
        )
        return handle

    def _check_abandoned(self, handle: LockHandle, fh: IO[str]) -> None:
        fh.seek(0)
        content = fh.read().strip()
        if not content:
            return

        try:
            previous_pid = int(content.split()[0])
        except ValueError:
            previous_pid = -1

        handle.abandoned = True
        handle.previous_pid = previous_pid
        holder_alive = previous_pid > 0 and psutil.pid_exists(previous_pid)

        if self.abandoned_policy is AbandonedLockPolicy.FAIL:
            logger.error(
                "Lock was abandoned by its previous holder",
                resource=handle.resource_name,
                previous_pid=previous_pid,
                lock_file=str(handle.path),
            )
            raise AbandonedLockError(handle.resource_name, previous_pid)

        logger.warning(
            "Acquired abandoned lock; the previous holder exited without "
            "releasing it and device state may be inconsistent",
            resource=handle.resource_name,
            previous_pid=previous_pid,
            previous_holder_running=holder_alive,
        )

    @staticmethod
    def _record_owner(fh: IO[str]) -> None:
        fh.seek(0)
        fh.truncate()
        fh.write(f"{os.getpid()}\n")
        fh.flush()

    def release(self, handle: Optional[LockHandle], name: Optional[str] = None) -> None:
        """
        Release a lock. Never raises.

        A ``None`` handle is accepted as a no-op for platforms that do not
        lock. Failures are logged and the file descriptor is always closed.
        """
        if handle is None:
            return

        name = name or handle.resource_name
        fh = handle._file
        if fh is None or fh.closed:
            logger.warning("Lock handle is no longer valid", resource=name)
            handle._file = None
            return

        try:
            fh.seek(0)
            fh.truncate()
            fh.flush()
            _unlock(fh)
            logger.info("Released exclusive access", resource=name)
        except Exception as e:
            logger.warning("Failed to release lock cleanly", resource=name, error=str(e))
        finally:
            try:
                fh.close()
            except Exception as e:
                logger.warning("Failed to close lock file", resource=name, error=str(e))
            handle._file = None
