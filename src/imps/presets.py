"""Known commands: handshake templates, bootstrap lines and shortcuts.

When an instance is created with neither ``echo`` nor ``wait``, the
wrapped command is looked up here to pick a handshake template. For
``ssh`` the command run on the remote side is used instead.

Examples:
    Resolve the command behind an ssh invocation::

        >>> target_command(["ssh", "user@server", "bc", "-l"])
        'bc'
        >>> default_echo(["ssh", "user@server", "bash"])
        'echo "<key>"'

    Create a calculator with the right template already set::

        >>> calc = bc(registry)
        >>> calc.evaluate("6 * 7")
        ['42']
"""

import re
from collections.abc import Sequence
from itertools import takewhile
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from imps.instance import ImpInstance
    from imps.registry import Registry

SHELL_ECHO = 'echo "<key>"'
PYTHON_ECHO = 'print("<key>")'

ECHO_TEMPLATES: dict[str, str] = {
    "bash": SHELL_ECHO,
    "sh": SHELL_ECHO,
    "ksh": SHELL_ECHO,
    "zsh": SHELL_ECHO,
    "ssh": SHELL_ECHO,
    "bc": 'print "<key>\\n"',
    "dc": "[<key>] p",
    "python": PYTHON_ECHO,
    "aml": "aml.echo-<key>",
}
"""Handshake template per command name."""

BOOTSTRAP: dict[str, tuple[str, ...]] = {
    "python": ('import sys; sys.ps1 = sys.ps2 = ""',),
}
"""Commands evaluated once after start, output discarded."""

_PYTHON = re.compile(r"^python[\d.]*$")


def _target_index(command: Sequence[str]) -> int:
    if Path(command[0]).name != "ssh":
        return 0
    for index, arg in enumerate(command[1:], start=1):
        if arg == "ssh" or arg.startswith("-") or "@" in arg:
            continue
        return index
    return 0


def target_command(command: Sequence[str]) -> str:
    """Name of the program that will read the commands.

    For ssh this is the first argument that is not ``ssh``, an option or a
    ``user@host`` destination.
    """
    return Path(command[_target_index(command)]).name


def _family(command: Sequence[str]) -> str | None:
    index = _target_index(command)
    name = Path(command[index]).name
    if name.startswith("aml"):
        return "aml"
    if not _PYTHON.match(name):
        return name
    # Only an interactive interpreter evaluates its input line by line.
    options = takewhile(lambda arg: arg.startswith("-"), command[index + 1 :])
    return "python" if "-i" in options else None


def default_echo(command: Sequence[str]) -> str | None:
    """Handshake template for a known command, if there is one.

    Python counts as known only when started interactively (``-i``).
    """
    family = _family(command)
    return ECHO_TEMPLATES.get(family) if family else None


def bootstrap_commands(command: Sequence[str]) -> tuple[str, ...]:
    family = _family(command)
    return BOOTSTRAP.get(family, ()) if family else ()

# --- Shortcuts ---


def bc(registry: "Registry", **options: Any) -> "ImpInstance":
    """GNU bc with the math library."""
    return registry.create(["bc", "-l"], **options)


def bash(registry: "Registry", **options: Any) -> "ImpInstance":
    options.setdefault("name", "bash")
    return registry.create(["bash"], **options)


def python(registry: "Registry", **options: Any) -> "ImpInstance":
    """Interactive Python with unbuffered output."""
    options.setdefault("name", "python")
    return registry.create(["python3", "-i", "-u"], **options)


def festival(registry: "Registry", **options: Any) -> "ImpInstance":
    """Festival text-to-speech; fire and forget, one line back at most."""
    options.setdefault("name", "festival")
    options.setdefault("wait", 1)
    options.setdefault("timeout", 0)
    return registry.create(["festival", "--pipe"], **options)


def speak(instance: "ImpInstance", *sentences: str) -> None:
    """Have a festival instance say each sentence in turn."""
    for sentence in sentences:
        escaped = sentence.replace('"', '\\"')
        instance.evaluate(f'( SayText "{escaped}" )')
