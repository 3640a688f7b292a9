"""Per-instance working directory and the named pipes inside it.

Layout of a working directory::

    imp.<name>.XXXXXXXX/
        request    FIFO, commands flow to the child's stdin
        response   FIFO, the child's stdout and stderr flow back
        lock       advisory lock marker (present only while held)
        ready      touched by the pump once both FIFOs are connected

The directory's existence is the liveness flag: removing it tells the
keep-alive side to let go of the FIFOs, which ends the child.
"""

import errno
import logging
import os
import select
import shutil
import tempfile
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import Self

from tenacity import RetryError, retry, retry_if_result, stop_after_delay, wait_fixed

from imps.errors import InstanceTornDownError, PumpStartError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Channels:
    """Paths of one instance's working directory."""

    workdir: Path

    @property
    def request(self) -> Path:
        return self.workdir / "request"

    @property
    def response(self) -> Path:
        return self.workdir / "response"

    @property
    def lock(self) -> Path:
        return self.workdir / "lock"

    @property
    def ready(self) -> Path:
        return self.workdir / "ready"

    @property
    def alive(self) -> bool:
        return self.workdir.is_dir()

    @classmethod
    def allocate(cls, name: str, parent: Path | None = None) -> Self:
        """Create a private working directory holding both FIFOs.

        Nothing is left behind if FIFO creation fails.
        """
        workdir = Path(tempfile.mkdtemp(prefix=f"imp.{name}.", dir=parent))
        channels = cls(workdir)
        try:
            os.mkfifo(channels.request, 0o600)
            os.mkfifo(channels.response, 0o600)
        except OSError:
            channels.remove()
            raise
        logger.debug("Allocated channels in %s", workdir)
        return channels

    def remove(self) -> None:
        """Delete the working directory. Safe to call more than once."""
        shutil.rmtree(self.workdir, ignore_errors=True)

    def wait_ready(self, timeout: float) -> None:
        """Block until the pump reports both FIFOs connected."""
        try:
            retry(
                retry=retry_if_result(lambda ready: not ready),
                stop=stop_after_delay(timeout),
                wait=wait_fixed(0.01),
            )(self.ready.exists)()
        except RetryError as e:
            raise PumpStartError(
                f"Channels in {self.workdir} did not connect within {timeout}s"
            ) from e

    def open_request(self) -> "RequestWriter":
        """Open the request FIFO for writing without blocking.

        A FIFO with no reader means the child has gone away.
        """
        try:
            fd = os.open(self.request, os.O_WRONLY | os.O_NONBLOCK)
        except FileNotFoundError as e:
            raise InstanceTornDownError(f"{self.workdir} no longer exists") from e
        except OSError as e:
            if e.errno == errno.ENXIO:
                raise InstanceTornDownError("No process reading requests") from e
            raise
        os.set_blocking(fd, True)
        return RequestWriter(fd)

    def send(self, lines: Sequence[str]) -> None:
        """Write ``lines`` as one batch, then let go of the request FIFO.

        The write end is not kept open while the response is read, so the
        child still sees end-of-file once the keep-alive lets go.
        """
        with self.open_request() as writer:
            writer.send(lines)

    def open_response(self, pending: bytearray | None = None) -> "ResponseReader":
        """Open the response FIFO for reading without blocking.

        ``pending`` carries an unterminated line over from an earlier reader.
        """
        try:
            fd = os.open(self.response, os.O_RDONLY | os.O_NONBLOCK)
        except FileNotFoundError as e:
            raise InstanceTornDownError(f"{self.workdir} no longer exists") from e
        return ResponseReader(fd, pending)


class RequestWriter:
    """Writes commands to the request FIFO, one per line."""

    def __init__(self, fd: int) -> None:
        self._file = open(fd, "wb", buffering=0)

    def send(self, lines: Sequence[str]) -> None:
        try:
            for line in lines:
                self._file.write(f"{line}\n".encode())
        except BrokenPipeError as e:
            raise InstanceTornDownError("Request channel closed") from e

    def close(self) -> None:
        try:
            self._file.close()
        except BrokenPipeError:
            logger.debug("Request channel already closed")

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


class ResponseReader:
    """Reads lines from the response FIFO with optional per-line timeouts.

    Bytes are taken one at a time so nothing beyond the terminating line
    is removed from the FIFO; whatever follows stays for the next caller.
    A read that times out mid-line keeps the partial bytes in ``pending``,
    which the owner can hand to the next reader.
    """

    def __init__(
        self, fd: int, pending: bytearray | None = None, encoding: str = "utf-8"
    ) -> None:
        self._fd = fd
        self._encoding = encoding
        self._pending = pending if pending is not None else bytearray()

    def readline(self, timeout: float | None) -> str | None:
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            remaining = None
            if deadline is not None:
                remaining = max(0.0, deadline - time.monotonic())
            ready, _, _ = select.select([self._fd], [], [], remaining)
            if not ready:
                return None
            try:
                chunk = os.read(self._fd, 1)
            except BlockingIOError:
                continue
            if not chunk:
                raise InstanceTornDownError("Response channel closed")
            if chunk == b"\n":
                line = self._pending.decode(self._encoding, errors="replace")
                self._pending.clear()
                return line.removesuffix("\r")
            self._pending += chunk

    def close(self) -> None:
        os.close(self._fd)

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
