"""Advisory locks serializing evaluate calls on one instance.

Locking is cooperative: it only prevents interleaving when every caller
takes the lock. Two implementations share the ``Lock`` interface:

- ``MarkerLock``: exclusive creation of a marker file. Always available.
- ``LockfileLock``: the procmail ``lockfile`` command, available only
  when it is installed.

Examples:
    Hold an instance's lock around a critical section::

        >>> lock = MarkerLock(poll_interval=0.01)
        >>> with lock.held(channels.lock):
        ...     channels.send(["10 + 20"])
"""

import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import sh
from tenacity import retry, retry_if_result, wait_fixed

from imps.checks import command_exists
from imps.config import LockKind

logger = logging.getLogger(__name__)


class Lock(ABC):
    """Advisory lock capability keyed by a file path."""

    def __init__(self, poll_interval: float = 0.05) -> None:
        self.poll_interval = poll_interval

    @abstractmethod
    def available(self) -> bool:
        """Whether the underlying mechanism can be used on this host."""

    @abstractmethod
    def try_acquire(self, path: Path) -> bool:
        """Take the lock if it is free; never blocks."""

    def acquire(self, path: Path) -> None:
        """Block until the lock is taken. There is no timeout."""
        retry(
            retry=retry_if_result(lambda taken: not taken),
            wait=wait_fixed(self.poll_interval),
        )(self.try_acquire)(path)

    def release(self, path: Path) -> None:
        path.unlink(missing_ok=True)

    @contextmanager
    def held(self, path: Path) -> Iterator[None]:
        """Hold the lock for the duration of the block."""
        self.acquire(path)
        try:
            yield
        finally:
            self.release(path)


class MarkerLock(Lock):
    """Lock by exclusive creation of a marker file holding the owner's pid."""

    def available(self) -> bool:
        return True

    def try_acquire(self, path: Path) -> bool:
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o444)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as marker:
            marker.write(f"{os.getpid()}\n")
        return True


class LockfileLock(Lock):
    """Lock through the external ``lockfile`` command."""

    COMMAND = "lockfile"

    def available(self) -> bool:
        return command_exists(self.COMMAND)

    def try_acquire(self, path: Path) -> bool:
        if not path.parent.is_dir():
            raise FileNotFoundError(f"No directory for lock {path}")
        lockfile = sh.Command(self.COMMAND)
        try:
            lockfile("-r", "0", str(path))
        except sh.ErrorReturnCode as e:
            logger.debug("%s busy (exit %s)", path, e.exit_code)
            return False
        return True


def create_lock(kind: LockKind, poll_interval: float = 0.05) -> Lock:
    """Build the lock implementation named by ``kind``."""
    match kind:
        case "marker":
            return MarkerLock(poll_interval)
        case "lockfile":
            return LockfileLock(poll_interval)
