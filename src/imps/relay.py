"""Relay pump process: ``python -m imps.relay WORKDIR -- COMMAND...``.

Runs COMMAND on ordinary pipes and shuttles data between those pipes
and the FIFOs in WORKDIR:

- request FIFO -> child stdin, raw bytes as they arrive
- child stdout and stderr -> response FIFO, line by line

Both FIFOs are opened read-write so this process is always a reader and
a writer on each of them; the FIFOs never report end-of-file between
callers. Once WORKDIR disappears the child's stdin is closed, the child
exits and the response FIFO is closed, which ends any in-flight read.
"""

import logging
import os
import subprocess
import threading
import time
from pathlib import Path
from typing import IO, Annotated

import typer

from imps.channels import Channels

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, pretty_exceptions_show_locals=False)


def feed_requests(request_fd: int, stdin: IO[bytes]) -> None:
    """Copy request bytes into the child's stdin until either side closes."""
    while chunk := os.read(request_fd, 4096):
        try:
            stdin.write(chunk)
            stdin.flush()
        except (BrokenPipeError, ValueError):
            return


def drain_output(stdout: IO[bytes], response_fd: int) -> None:
    """Copy child output lines into the response FIFO until the child exits."""
    for line in iter(stdout.readline, b""):
        os.write(response_fd, line)


def relay(channels: Channels, command: list[str], interval: float) -> int:
    request_fd = os.open(channels.request, os.O_RDWR)
    response_fd = os.open(channels.response, os.O_RDWR)
    child = subprocess.Popen(
        command,
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        bufsize=0,
    )
    if child.stdin is None or child.stdout is None:
        raise RuntimeError("Relay child has no pipes")

    feeder = threading.Thread(
        target=feed_requests, args=(request_fd, child.stdin), daemon=True
    )
    drainer = threading.Thread(
        target=drain_output, args=(child.stdout, response_fd), daemon=True
    )
    feeder.start()
    drainer.start()
    channels.ready.touch()

    while channels.alive and child.poll() is None:
        time.sleep(interval)

    try:
        child.stdin.close()
    except BrokenPipeError:
        pass
    try:
        returncode = child.wait(timeout=interval * 5)
    except subprocess.TimeoutExpired:
        logger.warning("Child %s ignored end of input, killing it", child.pid)
        child.kill()
        returncode = child.wait()
    # Unread output can leave the drainer blocked on a full FIFO.
    drainer.join(interval)
    os.close(response_fd)
    os.close(request_fd)
    return returncode


@app.command()
def main(
    workdir: Annotated[Path, typer.Argument(help="Instance working directory")],
    command: Annotated[list[str], typer.Argument(help="Command to run")],
    interval: Annotated[
        float, typer.Option("--interval", help="Seconds between liveness checks")
    ] = 1.0,
) -> None:
    """Relay between an instance's FIFOs and a child on plain pipes."""
    raise typer.Exit(relay(Channels(workdir), command, interval))


if __name__ == "__main__":
    app()
