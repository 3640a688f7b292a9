"""Integration tests against real child processes wired through FIFOs.

Every test runs under both pump topologies. Targets are the Python
scripts in ``tests/fixtures``.
"""

import os
import threading
import time
from collections.abc import Callable
from pathlib import Path

import pytest

from imps.config import Settings
from imps.errors import (
    AlreadyRunningError,
    DuplicateNameError,
    InstanceNotFoundError,
    InstanceTornDownError,
    LockUnavailableError,
    UnknownConfigOptionError,
)
from imps.instance import ImpInstance, InstanceState
from imps.lock import LockfileLock
from imps.registry import Registry

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(os.name != "posix", reason="named pipes need POSIX"),
]

Target = Callable[..., list[str]]


@pytest.fixture(params=["native", "relay"])
def settings(request: pytest.FixtureRequest, tmp_path: Path) -> Settings:
    return Settings(
        pump=request.param,
        keepalive_interval=0.1,
        start_timeout=10.0,
        lock_poll_interval=0.01,
        temp_dir=tmp_path,
        history_dir=tmp_path / "history",
    )


def workdirs(tmp_path: Path) -> list[Path]:
    return sorted(tmp_path.glob("imp.*"))


class TestLifecycle:
    """Creation, naming and teardown."""

    def test_duplicate_name_allocates_nothing(
        self, registry: Registry, target: Target, tmp_path: Path
    ) -> None:
        registry.create(target("passthrough"), name="echo", echo="<key>")
        assert len(workdirs(tmp_path)) == 1

        with pytest.raises(DuplicateNameError):
            registry.create(target("passthrough"), name="echo", echo="<key>")
        assert len(workdirs(tmp_path)) == 1

    def test_recreate_after_destroy_gets_new_workdir(
        self, registry: Registry, target: Target
    ) -> None:
        first = registry.create(target("passthrough"), name="echo", echo="<key>")
        first_dir = first.describe()["workdir"]
        first.destroy()

        second = registry.create(target("passthrough"), name="echo", echo="<key>")
        assert second.describe()["workdir"] != first_dir
        assert second.evaluate("fresh") == ["fresh"]

    def test_destroy_removes_workdir_and_name(
        self, registry: Registry, target: Target, tmp_path: Path
    ) -> None:
        imp = registry.create(target("passthrough"), name="echo", echo="<key>")
        assert imp.state is InstanceState.RUNNING
        assert list(registry.list("imp")) == ["echo"]

        imp.destroy()

        assert imp.state is InstanceState.DESTROYED
        assert workdirs(tmp_path) == []
        with pytest.raises(InstanceNotFoundError):
            registry.resolve("echo")
        assert imp.pump is not None
        assert imp.pump.process is not None
        assert imp.pump.process.poll() is not None

    def test_destroy_is_repeatable(
        self, registry: Registry, target: Target, tmp_path: Path
    ) -> None:
        """A stale handle cannot remove a newer instance of the same name."""
        first = registry.create(target("passthrough"), name="echo", echo="<key>")
        first.destroy()
        second = registry.create(target("passthrough"), name="echo", echo="<key>")

        first.destroy()

        assert "echo" in registry
        assert registry.resolve("echo") is second
        assert second.evaluate("still here") == ["still here"]
        registry.close()
        assert workdirs(tmp_path) == []

    def test_evaluate_after_destroy(self, registry: Registry, target: Target) -> None:
        imp = registry.create(target("passthrough"), name="echo", echo="<key>")
        imp.destroy()
        with pytest.raises(InstanceTornDownError):
            imp.evaluate("anything")

    def test_start_twice(self, registry: Registry, target: Target) -> None:
        imp = registry.create(target("passthrough"), name="echo", echo="<key>")
        with pytest.raises(AlreadyRunningError):
            imp.start()

    def test_pump_id_names_topology(
        self, registry: Registry, target: Target, settings: Settings
    ) -> None:
        imp = registry.create(target("passthrough"), name="echo", echo="<key>")
        assert imp.pump_id is not None
        assert imp.pump_id.startswith(f"{settings.pump}:")
        assert imp.configure("pump") == imp.pump_id

    def test_close_destroys_all(self, settings: Settings, target: Target) -> None:
        with Registry(settings) as registry:
            a = registry.create(target("passthrough"), name="a", echo="<key>")
            b = registry.create(target("silent"), name="b")
        assert a.state is InstanceState.DESTROYED
        assert b.state is InstanceState.DESTROYED
        assert workdirs(settings.temp_dir) == []  # type: ignore[arg-type]


class TestCompletion:
    """The three completion strategies against real targets."""

    def test_handshake_passthrough(self, registry: Registry, target: Target) -> None:
        imp = registry.create(target("passthrough"), name="echo", echo="<key>")
        assert imp.evaluate("alpha", "beta", "gamma") == ["alpha", "beta", "gamma"]
        assert imp.evaluate() == []

    def test_handshake_embedded_sentinel(
        self, registry: Registry, target: Target
    ) -> None:
        """Text before the token on the last line is returned."""
        imp = registry.create(target("passthrough"), name="echo", echo="> <key>")
        assert imp.evaluate("line") == ["line", "> "]

    def test_plain_timeout_on_silent_target(
        self, registry: Registry, target: Target
    ) -> None:
        imp = registry.create(target("silent"), name="quiet", timeout=0.2)
        start = time.monotonic()
        assert imp.evaluate("ignored", "also ignored") == []
        assert time.monotonic() - start < 2.0

    def test_bounded_wait(self, registry: Registry, target: Target) -> None:
        imp = registry.create(target("doubler"), name="twice", wait=2, timeout=2.0)
        assert imp.evaluate("hello") == ["hello", "HELLO"]
        assert imp.evaluate("again") == ["again", "AGAIN"]

    def test_leftover_output_is_returned_next_time(
        self, registry: Registry, target: Target
    ) -> None:
        imp = registry.create(target("doubler"), name="twice", wait=1, timeout=2.0)
        assert imp.evaluate("first") == ["first"]
        imp.configure("echo", "<key>")
        assert imp.evaluate() == ["FIRST"]

    def test_switching_strategy_at_runtime(
        self, registry: Registry, target: Target
    ) -> None:
        imp = registry.create(target("passthrough"), name="echo", timeout=0.3)
        assert imp.evaluate("slow path") == ["slow path"]
        imp.configure("echo", "<key>")
        assert imp.evaluate("fast path") == ["fast path"]
        imp.configure("echo", "")
        assert imp.evaluate("timeout again") == ["timeout again"]


class TestCalculator:
    """State retained by the target across calls."""

    def test_last_result_carries_over(self, registry: Registry, target: Target) -> None:
        calc = registry.create(target("calc"), name="calc", echo='print "<key>"')
        assert calc.evaluate("10 + 20") == ["30"]
        assert calc.evaluate(". * 4") == ["120"]

    def test_read_from_stream(self, registry: Registry, target: Target) -> None:
        calc = registry.create(target("calc"), name="calc", echo='print "<key>"')
        assert calc.read(["1 + 1\n", ". * 10\n"]) == ["2", "20"]


class TestConcurrency:
    """Locked evaluates never interleave."""

    @pytest.mark.parametrize("first", ["a", "b"])
    def test_callers_do_not_interleave(
        self, registry: Registry, target: Target, first: str
    ) -> None:
        imp = registry.create(target("slow_echo", "0.05"), name="slow", echo="<key>")
        batches = {
            "a": [f"a{i}" for i in range(5)],
            "b": [f"b{i}" for i in range(5)],
        }
        second = "b" if first == "a" else "a"
        results: dict[str, list[str]] = {}
        finished: list[str] = []

        def call(caller: str) -> None:
            results[caller] = imp.evaluate(*batches[caller])
            finished.append(caller)

        leader = threading.Thread(target=call, args=(first,))
        follower = threading.Thread(target=call, args=(second,))
        leader.start()
        deadline = time.monotonic() + 5
        while imp.state is not InstanceState.LOCKED and time.monotonic() < deadline:
            time.sleep(0.005)
        follower.start()
        leader.join(timeout=30)
        follower.join(timeout=30)

        assert results == batches
        assert finished == [first, second]


class TestTeardown:
    """Destroy releases readers in flight under every strategy."""

    @pytest.mark.parametrize(
        "options",
        [
            {"echo": "<key>"},
            {"timeout": 5.0},
            {"wait": 3, "timeout": 5.0},
        ],
        ids=["handshake", "plain-timeout", "bounded-wait"],
    )
    def test_destroy_during_read(
        self, registry: Registry, target: Target, options: dict[str, object]
    ) -> None:
        """A read still waiting for output fails instead of returning short."""
        imp = registry.create(target("silent"), name="quiet", **options)
        errors: list[BaseException] = []

        def call() -> None:
            try:
                imp.evaluate("never answered")
            except InstanceTornDownError as e:
                errors.append(e)

        reader = threading.Thread(target=call)
        reader.start()
        time.sleep(0.3)
        imp.destroy()
        reader.join(timeout=10)

        assert not reader.is_alive()
        assert len(errors) == 1


class TestConfigure:
    """Runtime configuration of a live instance."""

    @pytest.fixture
    def imp(self, registry: Registry, target: Target) -> ImpInstance:
        return registry.create(target("passthrough"), name="echo", echo="<key>")

    def test_dump_includes_read_only_keys(self, imp: ImpInstance) -> None:
        config = imp.configure()
        assert config["name"] == "echo"
        assert config["echo"] == "<key>"
        assert Path(config["request"]).is_fifo()
        assert Path(config["response"]).is_fifo()

    def test_set_and_get(self, imp: ImpInstance) -> None:
        assert imp.configure("timeout", "0.5") is None
        assert imp.configure("timeout") == 0.5

    def test_read_only_keys(self, imp: ImpInstance) -> None:
        with pytest.raises(UnknownConfigOptionError):
            imp.configure("workdir", "/tmp")

    def test_unknown_key(self, imp: ImpInstance) -> None:
        with pytest.raises(UnknownConfigOptionError):
            imp.configure("colour")

    def test_lock_can_be_switched_off(self, imp: ImpInstance) -> None:
        imp.configure("lock_missing", True)
        assert imp.evaluate("unlocked") == ["unlocked"]
        imp.configure("lock_missing", False)
        assert imp.evaluate("locked") == ["locked"]

    def test_unavailable_lock_cannot_be_enabled(
        self, imp: ImpInstance, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        imp.configure("lock_missing", True)
        imp.lock = LockfileLock()
        monkeypatch.setattr(LockfileLock, "available", lambda self: False)
        with pytest.raises(LockUnavailableError):
            imp.configure("lock_missing", False)
        assert imp.configure("lock_missing") is True
