"""
Concurrent access control for armtoolchain.

This module provides file-based advisory locks so unrelated armtoolchain
processes (shells, build systems, CI jobs) can share one data directory.

Three independent lock scopes exist:
- ``download-<version>-<platform>``: one in-flight download per cache key
- ``install-<version>``: one install/remove commit per version
- ``active``: updates of the active toolchain pointer

Operations on disjoint scopes never block each other. Every scope can be
taken in blocking mode (wait up to the configured timeout, forever by
default) or busy mode (fail immediately with Busy).

Usage:
    from armtoolchain.core.locking import LockManager

    lock_manager = LockManager(layout.locks_dir)
    with lock_manager.install_lock("v21.1.1"):
        # Safely commit or remove the install directory
        pass

    with lock_manager.download_lock("v21.1.1-linux-x64", blocking=False):
        # Raises Busy if another process is downloading this key
        pass
"""

import logging
import re
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from filelock import FileLock, Timeout as LockTimeout

from armtoolchain.core.cancellation import CancellationToken
from armtoolchain.core.exceptions import Busy

logger = logging.getLogger(__name__)

ACTIVE_SCOPE = "active"

# Seconds between cancellation checks while waiting for a lock
CANCEL_POLL_INTERVAL = 0.1

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._+-]")


def sanitize_lock_name(name: str) -> str:
    """
    Turn an arbitrary scope name into a valid lock file name.

    Example:
        >>> sanitize_lock_name("download-v21/1:1")
        'download-v21-1-1'
    """
    return _UNSAFE_CHARS.sub("-", name)


class LockManager:
    """
    Manages named advisory locks for one data directory.

    Uses the ``filelock`` library for cross-platform, cross-process locking
    with automatic release on process death.

    Attributes:
        lock_dir: Directory where lock files are stored
        timeout: Seconds to wait in blocking mode (-1 waits forever)
    """

    def __init__(self, lock_dir: Path, timeout: float = -1):
        """
        Initialize lock manager.

        Args:
            lock_dir: Directory for lock files
            timeout: Seconds a blocking acquire may wait (-1 for no limit)
        """
        self.lock_dir = Path(lock_dir)
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout

    def lock_path(self, scope: str) -> Path:
        """Path of the lock file guarding a scope."""
        return self.lock_dir / f"{sanitize_lock_name(scope)}.lock"

    @contextmanager
    def hold(
        self,
        scope: str,
        blocking: bool = True,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Iterator[None]:
        """
        Hold the lock for a scope for the duration of the context.

        Args:
            scope: Lock scope name
            blocking: Wait for the lock (True) or fail immediately (False)
            cancel_token: Stops a blocking wait with Cancelled once set

        Raises:
            Busy: If the lock is held elsewhere and could not be taken in time
            Cancelled: If cancel_token is set while waiting
        """
        lock_path = self.lock_path(scope)
        timeout = self.timeout if blocking else 0
        lock = FileLock(lock_path, timeout=timeout)

        try:
            if blocking and cancel_token is not None:
                _acquire_cancellable(lock, timeout, cancel_token)
            else:
                lock.acquire()
        except LockTimeout as e:
            if blocking:
                message = (
                    f"Could not acquire lock '{scope}' after {timeout}s. "
                    "Another armtoolchain process may be running."
                )
            else:
                message = None
            logger.debug(f"Lock busy: {lock_path}")
            raise Busy(scope, message) from e

        logger.debug(f"Acquired lock: {lock_path}")
        try:
            yield
        finally:
            lock.release()
            logger.debug(f"Released lock: {lock_path}")

    def download_lock(self, cache_key: str, blocking: bool = True, cancel_token=None):
        """Lock for the download of one (version, platform) cache key."""
        return self.hold(f"download-{cache_key}", blocking=blocking, cancel_token=cancel_token)

    def install_lock(self, version, blocking: bool = True, cancel_token=None):
        """Lock for committing or removing one install directory."""
        return self.hold(f"install-{version}", blocking=blocking, cancel_token=cancel_token)

    def active_lock(self, blocking: bool = True):
        """Lock for the active toolchain pointer."""
        return self.hold(ACTIVE_SCOPE, blocking=blocking)


def _acquire_cancellable(lock: FileLock, timeout: float, cancel_token: CancellationToken):
    """Wait for a lock in short slices, checking the token between them."""
    deadline = None if timeout < 0 else time.monotonic() + timeout
    while True:
        cancel_token.check()
        wait = CANCEL_POLL_INTERVAL
        if deadline is not None:
            wait = max(0.0, min(wait, deadline - time.monotonic()))
        try:
            lock.acquire(timeout=wait)
            return
        except LockTimeout:
            if deadline is not None and time.monotonic() >= deadline:
                raise


@contextmanager
def try_lock(lock_path: Path, timeout: float = 0) -> Iterator[bool]:
    """
    Try to acquire lock without blocking (or with short timeout).

    This is useful for "try-and-skip" patterns where you want to attempt
    an operation but skip it if another process is already working on it.

    Args:
        lock_path: Path to lock file
        timeout: 0 for immediate (non-blocking), or seconds to wait

    Yields:
        bool: True if lock acquired, False otherwise

    Example:
        >>> with try_lock(Path('/tmp/my.lock')) as acquired:
        ...     if acquired:
        ...         do_work()
    """
    lock = FileLock(lock_path, timeout=timeout)

    acquired = False
    try:
        lock.acquire()
        acquired = True
    except LockTimeout:
        logger.debug(f"Could not acquire lock (try_lock): {lock_path}")

    try:
        yield acquired
    finally:
        if acquired:
            lock.release()


__all__ = ["LockManager", "try_lock", "sanitize_lock_name", "LockTimeout"]
