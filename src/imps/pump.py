"""Child pumps: run the wrapped command wired to an instance's channels.

A FIFO only passes data while both ends are open. If the child's stdin
were the request FIFO alone, it would see end-of-file as soon as an
evaluate call closed its end. Each pump therefore keeps a writer on the
request FIFO and a reader on the response FIFO for as long as the
working directory exists, and touches ``ready`` once everything is
connected.

Two topologies, one observable behaviour:

- ``NativePump``: a detached ``sh`` process group. A background loop
  holds the FIFO ends while the shell ``exec``s the command with its
  stdin and stdout redirected to the FIFOs.
- ``RelayPump``: a detached ``python -m imps.relay`` process that runs
  the command on ordinary pipes and copies bytes between them and the
  FIFOs. For hosts where FIFO redirection of a native process is
  unreliable (Cygwin, MSYS).
"""

import logging
import subprocess
import sys
from abc import ABC, abstractmethod
from collections.abc import Sequence

from imps.channels import Channels
from imps.config import PumpKind

logger = logging.getLogger(__name__)

NATIVE_SCRIPT = r"""
workdir=$1 interval=$2 request=$3 response=$4
shift 4
{
    : > "$workdir/ready"
    while [ -d "$workdir" ]; do sleep "$interval"; done
} > "$request" < "$response" &
exec "$@" < "$request" > "$response" 2>&1
"""


class ChildPump(ABC):
    """Spawns and owns the processes behind one instance."""

    kind: str

    def __init__(
        self,
        channels: Channels,
        command: Sequence[str],
        *,
        keepalive_interval: float = 1.0,
    ) -> None:
        self.channels = channels
        self.command = tuple(command)
        self.keepalive_interval = keepalive_interval
        self.process: subprocess.Popen[bytes] | None = None

    @property
    def pump_id(self) -> str | None:
        if self.process is None:
            return None
        return f"{self.kind}:{self.process.pid}"

    @abstractmethod
    def argv(self) -> list[str]:
        """Command line of the detached supervising process."""

    def start(self) -> str:
        """Spawn the supervising process, detached from the caller."""
        self.process = subprocess.Popen(
            self.argv(),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            close_fds=True,
            start_new_session=True,
        )
        pump_id = f"{self.kind}:{self.process.pid}"
        logger.info("Started %s for %s", pump_id, " ".join(self.command))
        return pump_id

    def wait(self, timeout: float | None = None) -> int | None:
        """Reap the supervising process; None if it is still running."""
        if self.process is None:
            return None
        try:
            return self.process.wait(timeout)
        except subprocess.TimeoutExpired:
            return None


class NativePump(ChildPump):
    kind = "native"

    def argv(self) -> list[str]:
        return [
            "sh",
            "-c",
            NATIVE_SCRIPT,
            "imps-pump",
            str(self.channels.workdir),
            str(self.keepalive_interval),
            str(self.channels.request),
            str(self.channels.response),
            *self.command,
        ]


class RelayPump(ChildPump):
    kind = "relay"

    def argv(self) -> list[str]:
        return [
            sys.executable,
            "-m",
            "imps.relay",
            "--interval",
            str(self.keepalive_interval),
            str(self.channels.workdir),
            "--",
            *self.command,
        ]


def pump_class(kind: PumpKind) -> type[ChildPump]:
    """Resolve a configured pump kind, picking per host for ``auto``."""
    match kind:
        case "native":
            return NativePump
        case "relay":
            return RelayPump
        case "auto":
            if sys.platform.startswith(("cygwin", "msys")):
                return RelayPump
            return NativePump
