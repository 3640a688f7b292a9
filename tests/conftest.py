"""Shared test fixtures.

Scripted targets live in ``tests/fixtures`` and run under the current
interpreter, so no external program is needed.
"""

import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from imps.config import Settings
from imps.registry import Registry

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Fast-polling settings with every path under ``tmp_path``."""
    return Settings(
        keepalive_interval=0.1,
        start_timeout=10.0,
        lock_poll_interval=0.01,
        temp_dir=tmp_path,
        history_dir=tmp_path / "history",
    )


@pytest.fixture
def registry(settings: Settings) -> Iterator[Registry]:
    """Registry destroyed after the test, whatever it left running."""
    with Registry(settings) as registry:
        yield registry


@pytest.fixture
def target() -> Callable[..., list[str]]:
    """Build the command line of a scripted target."""

    def build(script: str, *args: str) -> list[str]:
        return [sys.executable, "-u", str(FIXTURES / f"{script}.py"), *args]

    return build
