"""Evaluate protocol: push commands, decide when the response is complete.

A line-oriented program gives no framing, so one of three completion
strategies decides when to stop reading the response channel:

- ``Handshake``: a per-call token is substituted into the configured
  template and sent as a final command. Reading stops when the token
  comes back, either alone on a line or at the end of the last line of
  output. If the target never echoes the token the read blocks forever.
- ``BoundedWait``: read ``count`` lines, each with its own timeout.
  Missing lines are skipped, not retried.
- ``PlainTimeout``: read lines until one read times out. Best effort
  against slow producers.

Examples:
    Scan for an embedded sentinel::

        >>> scanner = SentinelScanner("ack-1-ack")
        >>> scanner.feed("42")
        '42'
        >>> scanner.feed(">>> ack-1-ack")
        '>>> '
        >>> scanner.state
        <ScanState.DONE: 'done'>
"""

import logging
import secrets
from collections.abc import Iterator, Sequence
from enum import Enum
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

PLACEHOLDER = "<key>"
"""Token in a handshake template replaced by the per-call sentinel."""


class LineSource(Protocol):
    """Response side of a channel pair."""

    def readline(self, timeout: float | None) -> str | None:
        """Return the next line, or None once ``timeout`` elapses.

        ``timeout=None`` blocks until a line arrives.
        """
        ...


class LineSink(Protocol):
    """Request side of a channel pair."""

    def send(self, lines: Sequence[str]) -> None: ...


# --- Completion variants ---


class Handshake(BaseModel):
    """Stop when the target echoes back a per-call token."""

    model_config = ConfigDict(frozen=True)

    template: str = Field(min_length=1)

    def substitute(self, token: str) -> str:
        return self.template.replace(PLACEHOLDER, token)


class BoundedWait(BaseModel):
    """Read a fixed number of lines, each bounded by ``timeout``."""

    model_config = ConfigDict(frozen=True)

    count: int = Field(ge=0)
    timeout: float = Field(ge=0)


class PlainTimeout(BaseModel):
    """Read until the channel stays quiet for ``timeout``."""

    model_config = ConfigDict(frozen=True)

    timeout: float = Field(ge=0)


type Completion = Handshake | BoundedWait | PlainTimeout


# --- Sentinel scanning ---


class ScanState(str, Enum):
    READING_LINE = "reading_line"
    SENTINEL_SEEN = "sentinel_seen"
    SENTINEL_EMBEDDED = "sentinel_embedded"
    DONE = "done"


class SentinelScanner:
    """State machine over response lines looking for the handshake token.

    ``READING_LINE`` emits every line verbatim. A line equal to the token
    passes through ``SENTINEL_SEEN`` and emits nothing. A line that
    contains the token passes through ``SENTINEL_EMBEDDED`` and emits the
    text before the token, even when that text is empty. Both end in
    ``DONE``.
    """

    def __init__(self, token: str) -> None:
        self.token = token
        self.state = ScanState.READING_LINE
        self.matched: ScanState | None = None

    @property
    def done(self) -> bool:
        return self.state is ScanState.DONE

    def feed(self, line: str) -> str | None:
        """Consume one line; return the text to emit, if any."""
        if self.done:
            raise RuntimeError("Sentinel already seen")

        if line == self.token:
            self.matched = ScanState.SENTINEL_SEEN
            emitted = None
        elif self.token in line:
            self.matched = ScanState.SENTINEL_EMBEDDED
            emitted = line[: line.index(self.token)]
        else:
            return line

        self.state = ScanState.DONE
        return emitted


def make_token() -> str:
    """Fresh sentinel for one evaluate call."""
    return f"ack-{secrets.token_hex(8)}-ack"


# --- Read strategies ---


def read_handshake(source: LineSource, token: str) -> Iterator[str]:
    """Yield response lines until the sentinel is seen."""
    scanner = SentinelScanner(token)
    while not scanner.done:
        line = source.readline(None)
        if line is None:
            continue
        emitted = scanner.feed(line)
        if emitted is not None:
            yield emitted
    logger.debug("Handshake %s finished (%s)", token, scanner.matched)


def read_bounded(source: LineSource, count: int, timeout: float) -> Iterator[str]:
    """Yield up to ``count`` lines, giving each ``timeout`` to arrive."""
    for _ in range(count):
        line = source.readline(timeout)
        if line is not None:
            yield line


def read_until_quiet(source: LineSource, timeout: float) -> Iterator[str]:
    """Yield lines until a read times out."""
    while (line := source.readline(timeout)) is not None:
        yield line


def exchange(
    sink: LineSink,
    source: LineSource,
    commands: Sequence[str],
    completion: Completion,
) -> list[str]:
    """Send ``commands`` and collect the response per ``completion``.

    Commands are always written, even when there are none: an empty
    exchange still drains whatever output the target has buffered.
    """
    match completion:
        case Handshake():
            token = make_token()
            sink.send([*commands, completion.substitute(token)])
            return list(read_handshake(source, token))
        case BoundedWait(count=count, timeout=timeout):
            sink.send(commands)
            return list(read_bounded(source, count, timeout))
        case PlainTimeout(timeout=timeout):
            sink.send(commands)
            return list(read_until_quiet(source, timeout))
