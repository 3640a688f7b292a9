"""Interactive shell bound to an instance.

Reads one line at a time at a ``<name>> `` prompt, evaluates it and shows
the result, through the instance's pager when one is configured. Each
instance keeps its own readline history file. End of input (Ctrl-D)
leaves the shell; the instance keeps running.
"""

import logging
import subprocess
from collections.abc import Callable, Sequence
from pathlib import Path
from types import TracebackType
from typing import TYPE_CHECKING, Self

from rich.console import Console
from rich.pager import Pager

try:
    import readline
except ImportError:  # Windows without pyreadline
    readline = None  # type: ignore[assignment]

if TYPE_CHECKING:
    from imps.instance import ImpInstance

logger = logging.getLogger(__name__)

HISTORY_LENGTH = 1000


class CommandPager(Pager):
    """Rich pager that pipes content into an external command."""

    def __init__(self, command: str) -> None:
        self.command = command

    def show(self, content: str) -> None:
        subprocess.run(self.command, shell=True, input=content, text=True, check=False)


class ShellHistory:
    """Swap readline's history for one instance's history file.

    The caller's history is restored on exit.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._saved: list[str] = []

    def __enter__(self) -> Self:
        if readline is None:
            return self
        self._saved = [
            item
            for i in range(1, readline.get_current_history_length() + 1)
            if (item := readline.get_history_item(i)) is not None
        ]
        readline.clear_history()
        readline.set_history_length(HISTORY_LENGTH)
        readline.set_auto_history(False)
        if self.path.exists():
            try:
                readline.read_history_file(str(self.path))
            except OSError as e:
                logger.warning("Could not read history %s: %s", self.path, e)
        return self

    def add(self, line: str) -> None:
        """Record a line unless it is blank or starts with ``-``."""
        if readline is None or not line.strip() or line.startswith("-"):
            return
        readline.add_history(line)

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if readline is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            readline.write_history_file(str(self.path))
        except OSError as e:
            logger.warning("Could not save history %s: %s", self.path, e)
        readline.set_auto_history(True)
        readline.clear_history()
        for item in self._saved:
            readline.add_history(item)


def paginate(console: Console, lines: Sequence[str], pager: str) -> None:
    """Show evaluate output, through ``pager`` when one is set."""
    if not lines:
        return
    text = "\n".join(lines)
    if pager:
        with console.pager(pager=CommandPager(pager)):
            console.out(text, highlight=False)
    else:
        console.out(text, highlight=False)


def run_shell(
    instance: "ImpInstance",
    initial: Sequence[str] = (),
    *,
    history_dir: Path,
    console: Console | None = None,
    prompt: Callable[[str], str] = input,
) -> None:
    """Read-eval-print loop over ``instance.evaluate``.

    Args:
        instance: The running instance to talk to.
        initial: Commands evaluated once, as a single call, before prompting.
        history_dir: Directory holding one history file per instance name.
        console: Output console (defaults to stdout).
        prompt: Line reader; raises ``EOFError`` at end of input.
    """
    console = console or Console()
    with ShellHistory(history_dir / instance.name) as history:
        if initial:
            history.add(" ".join(initial))
            paginate(console, instance.evaluate(*initial), instance.options.pager)

        while True:
            try:
                line = prompt(f"{instance.name}> ")
            except EOFError:
                console.out("")
                break
            except KeyboardInterrupt:
                console.out("")
                continue
            history.add(line)
            paginate(console, instance.evaluate(line), instance.options.pager)
