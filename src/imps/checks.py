"""Name validity and dependency presence checks."""

import re
from collections.abc import Sequence
from pathlib import Path

import sh

NAME_PATTERN = re.compile(r"^\w+$", re.ASCII)


def is_valid_name(name: str) -> bool:
    """Names are non-empty and limited to ASCII letters, digits and underscore."""
    return bool(NAME_PATTERN.match(name))


def default_name(command: Sequence[str]) -> str:
    """Derive an instance name from the wrapped command's executable."""
    return re.sub(r"\W", "_", Path(command[0]).name, flags=re.ASCII)


def command_exists(command: str) -> bool:
    """Check whether ``command`` resolves to an executable."""
    try:
        sh.Command(command)
    except sh.CommandNotFound:
        return False
    return True
