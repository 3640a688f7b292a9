"""Command-line front end: wrap a program for the length of one command.

Every subcommand creates its own instance, uses it and destroys it on
exit. Options before the wrapped command belong to ``imps``; everything
from the command onwards is passed to the program untouched.

Usage:
    imps eval -l "10 + 20" -l ". * 4" bc -l
    printf '1 + 1\\n' | imps read bc -l
    imps shell -i "scale = 5" bc -l
    imps eval --wait 2 --timeout 0.5 -l hello ./two-liner
    imps presets
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from imps.errors import ImpError
from imps.instance import ImpInstance
from imps.presets import BOOTSTRAP, ECHO_TEMPLATES
from imps.registry import Registry

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="imps",
    help="Drive line-oriented programs as stateful services",
    no_args_is_help=True,
    add_completion=False,
)

# Stop option parsing at the wrapped command and keep its own flags.
PASSTHROUGH = {"allow_interspersed_args": False, "ignore_unknown_options": True}

Command = Annotated[
    list[str], typer.Argument(help="Program to wrap, with its arguments")
]
Name = Annotated[
    str | None, typer.Option("--name", "-n", help="Instance name")
]
Echo = Annotated[
    str | None,
    typer.Option("--echo", help="Handshake template containing <key>"),
]
Timeout = Annotated[
    float | None, typer.Option("--timeout", help="Per-line read timeout (seconds)")
]
Wait = Annotated[
    int | None, typer.Option("--wait", help="Number of response lines to wait for")
]
PagerOpt = Annotated[
    str | None, typer.Option("--pager", help="Pager command for shell output")
]
NoLock = Annotated[
    bool, typer.Option("--no-lock", help="Do not serialize evaluate calls")
]
Verbose = Annotated[
    bool, typer.Option("--verbose", "-v", help="Enable verbose logging")
]


@app.callback(invoke_without_command=True)
def callback(ctx: typer.Context) -> None:
    """Drive line-oriented programs as stateful services."""
    if ctx.invoked_subcommand is None:
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
    else:
        logging.basicConfig(level=logging.INFO)


def _options(
    echo: str | None,
    timeout: float | None,
    wait: int | None,
    pager: str | None,
    no_lock: bool,
) -> dict[str, Any]:
    """Instance options actually given on the command line."""
    given = {"echo": echo, "timeout": timeout, "wait": wait, "pager": pager}
    options = {key: value for key, value in given.items() if value is not None}
    if no_lock:
        options["lock_missing"] = True
    return options


@contextmanager
def _instance(
    command: list[str], name: str | None, options: dict[str, Any]
) -> Iterator[ImpInstance]:
    """Create an instance for the block; report library errors and exit 1."""
    try:
        with Registry() as registry:
            yield registry.create(command, name=name, **options)
    except ImpError as e:
        logger.debug("Command failed", exc_info=True)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e


def _print_lines(lines: list[str]) -> None:
    for line in lines:
        typer.echo(line)


@app.command("eval", context_settings=PASSTHROUGH)
def evaluate(
    command: Command,
    lines: Annotated[
        list[str] | None,
        typer.Option("--line", "-l", help="Command line to evaluate (repeatable)"),
    ] = None,
    name: Name = None,
    echo: Echo = None,
    timeout: Timeout = None,
    wait: Wait = None,
    pager: PagerOpt = None,
    no_lock: NoLock = False,
    verbose: Verbose = False,
) -> None:
    """Evaluate the given lines in one call and print the response."""
    _configure_logging(verbose)
    with _instance(command, name, _options(echo, timeout, wait, pager, no_lock)) as imp:
        _print_lines(imp.evaluate(*(lines or [])))


@app.command(context_settings=PASSTHROUGH)
def read(
    command: Command,
    name: Name = None,
    echo: Echo = None,
    timeout: Timeout = None,
    wait: Wait = None,
    pager: PagerOpt = None,
    no_lock: NoLock = False,
    verbose: Verbose = False,
) -> None:
    """Evaluate every line of standard input in one call."""
    _configure_logging(verbose)
    with _instance(command, name, _options(echo, timeout, wait, pager, no_lock)) as imp:
        _print_lines(imp.read(sys.stdin))


@app.command(context_settings=PASSTHROUGH)
def shell(
    command: Command,
    initial: Annotated[
        list[str] | None,
        typer.Option("--initial", "-i", help="Line evaluated before prompting"),
    ] = None,
    name: Name = None,
    echo: Echo = None,
    timeout: Timeout = None,
    wait: Wait = None,
    pager: PagerOpt = None,
    no_lock: NoLock = False,
    verbose: Verbose = False,
) -> None:
    """Interactive prompt bound to a fresh instance."""
    _configure_logging(verbose)
    with _instance(command, name, _options(echo, timeout, wait, pager, no_lock)) as imp:
        imp.shell(*(initial or []))


@app.command()
def presets() -> None:
    """List the commands with a built-in handshake template."""
    table = Table(title="Known commands")
    table.add_column("Command")
    table.add_column("Handshake template")
    table.add_column("Bootstrap")
    for command, template in sorted(ECHO_TEMPLATES.items()):
        table.add_row(
            command,
            escape(template),
            escape("; ".join(BOOTSTRAP.get(command, ()))),
        )
    Console().print(table)


if __name__ == "__main__":
    app()
