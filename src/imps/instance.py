"""Instances: one wrapped command, its channels and its tunables.

``Instance`` is the interface the registry dispatches through;
``ImpInstance`` is its concrete variant. An imp owns a working directory
with two FIFOs and a pump keeping the wrapped command connected to them.

Lifecycle::

    CREATED --start()--> RUNNING <--evaluate()--> LOCKED
                            |
                        destroy()
                            v
                        DESTROYED

Examples:
    Evaluate commands against a calculator, relying on its retained state::

        >>> registry = Registry()
        >>> bc = registry.create(["bc", "-l"])
        >>> bc.evaluate("10 + 20")
        ['30']
        >>> bc.evaluate(". * 4")
        ['120']

    Inspect and change tunables::

        >>> bc.configure("timeout")
        0.2
        >>> bc.configure("timeout", "0.5")
        >>> bc.configure()["timeout"]
        0.5
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from imps.channels import Channels
from imps.config import ImpOptions, Settings
from imps.errors import (
    AlreadyRunningError,
    InstanceTornDownError,
    LockUnavailableError,
    UnknownConfigOptionError,
)
from imps.lock import Lock
from imps.protocol import exchange
from imps.pump import ChildPump
from imps.shell import run_shell

if TYPE_CHECKING:
    from imps.registry import Registry

logger = logging.getLogger(__name__)

_UNSET: Any = object()

# Keep-alive periods allowed for the pump to exit after stop.
REAP_INTERVALS = 10


class InstanceState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    LOCKED = "locked"
    DESTROYED = "destroyed"


class Instance(ABC):
    """Anything the registry can hold under a name."""

    kind: ClassVar[str]

    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    def destroy(self) -> None:
        """Release every resource and leave the registry."""


class ImpInstance(Instance):
    """A line-oriented command turned into a stateful service."""

    kind = "imp"

    READ_ONLY_KEYS: ClassVar[tuple[str, ...]] = (
        "name",
        "command",
        "workdir",
        "request",
        "response",
        "lock",
        "pump",
    )

    def __init__(
        self,
        name: str,
        command: Iterable[str],
        *,
        options: ImpOptions,
        lock: Lock,
        pump_class: type[ChildPump],
        settings: Settings,
        registry: "Registry | None" = None,
    ) -> None:
        super().__init__(name)
        self.command = tuple(command)
        self.options = options
        self.lock = lock
        self.pump_class = pump_class
        self.settings = settings
        self.registry = registry
        self.channels: Channels | None = None
        self.pump: ChildPump | None = None
        self._locked = False
        self._destroyed = False
        # Unterminated output left by a timed-out read.
        self._partial = bytearray()

    def __repr__(self) -> str:
        return f"ImpInstance(name={self.name!r}, state={self.state.value!r})"

    @property
    def pump_id(self) -> str | None:
        return self.pump.pump_id if self.pump is not None else None

    @property
    def lock_available(self) -> bool:
        return self.lock.available()

    @property
    def state(self) -> InstanceState:
        if self._destroyed or (self.pump is not None and self.channels is None):
            return InstanceState.DESTROYED
        if self.pump is None:
            return InstanceState.CREATED
        if self._locked:
            return InstanceState.LOCKED
        return InstanceState.RUNNING

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    def start(self) -> str:
        """Allocate channels and spawn the pump.

        Raises:
            AlreadyRunningError: a pump was already started for this instance.
            PumpStartError: the channels did not connect in time.
        """
        if self.pump is not None:
            raise AlreadyRunningError(
                f"imp {self.name} already running as {self.pump_id}"
            )

        channels = Channels.allocate(self.name, self.settings.temp_dir)
        pump = self.pump_class(
            channels,
            self.command,
            keepalive_interval=self.settings.keepalive_interval,
        )
        try:
            pump_id = pump.start()
            channels.wait_ready(self.settings.start_timeout)
        except BaseException:
            channels.remove()
            if not self._reap(pump) and pump.process is not None:
                pump.process.kill()
                pump.process.wait()
            raise

        self._partial.clear()
        self.channels = channels
        self.pump = pump
        return pump_id

    def _reap(self, pump: ChildPump) -> bool:
        """Wait a bounded time for the pump to exit once its directory is gone."""
        if pump.process is None:
            return True
        timeout = self.settings.keepalive_interval * REAP_INTERVALS
        if pump.wait(timeout) is None:
            logger.warning(
                "Pump %s still running %.1fs after stop", pump.pump_id, timeout
            )
            return False
        return True

    def stop(self) -> None:
        """Remove the working directory and reap the pump it winds down."""
        if self.channels is None:
            return
        self.channels.remove()
        self.channels = None
        if self.pump is not None:
            self._reap(self.pump)
        logger.info("Stopped imp %s (%s)", self.name, self.pump_id)

    def destroy(self) -> None:
        """Stop and leave the registry. Repeated calls do nothing."""
        if self._destroyed:
            return
        self._destroyed = True
        self.stop()
        if self.registry is not None:
            self.registry.unregister(self.name, self)

    # ------------------------------------------------------------------
    # Evaluate protocol
    # ------------------------------------------------------------------

    def _running_channels(self) -> Channels:
        channels = self.channels
        if channels is None or not channels.alive:
            raise InstanceTornDownError(f"imp {self.name} is not running")
        return channels

    @contextmanager
    def _serialized(self, channels: Channels) -> Iterator[None]:
        """Hold the advisory lock unless locking is switched off."""
        if self.options.lock_missing:
            yield
            return

        try:
            self.lock.acquire(channels.lock)
        except FileNotFoundError as e:
            raise InstanceTornDownError(f"imp {self.name} was destroyed") from e
        self._locked = True
        try:
            yield
        finally:
            self._locked = False
            self.lock.release(channels.lock)

    def evaluate(self, *commands: str) -> list[str]:
        """Push each command as one line and return the response lines.

        Raises:
            InstanceTornDownError: the instance is gone or went away mid-read.
        """
        channels = self._running_channels()
        completion = self.options.completion
        with self._serialized(channels):
            with channels.open_response(self._partial) as reader:
                lines = exchange(channels, reader, commands, completion)
        logger.debug(
            "%s: %d command(s) -> %d line(s)", self.name, len(commands), len(lines)
        )
        return lines

    def read(self, stream: Iterable[str]) -> list[str]:
        """Evaluate every line of ``stream`` (e.g. ``sys.stdin``) as one call."""
        return self.evaluate(*(line.rstrip("\r\n") for line in stream))

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def describe(self) -> dict[str, Any]:
        """Every queryable setting, read-only ones included."""
        channels = self.channels
        return {
            "name": self.name,
            "command": list(self.command),
            "workdir": str(channels.workdir) if channels else None,
            "request": str(channels.request) if channels else None,
            "response": str(channels.response) if channels else None,
            "lock": str(channels.lock) if channels else None,
            "pump": self.pump_id,
            **self.options.model_dump(),
        }

    def configure(self, key: str | None = None, value: Any = _UNSET) -> Any:
        """Dump, query or set configuration.

        ``configure()`` returns every setting, ``configure(key)`` one value
        and ``configure(key, value)`` changes a tunable.

        Raises:
            UnknownConfigOptionError: unknown key, or a read-only key set.
            InvalidEchoTemplateError: ``echo`` without ``<key>``.
            InvalidConfigValueError: the value fails validation.
            LockUnavailableError: locking switched on without a usable lock.
        """
        if key is None:
            return self.describe()

        if value is _UNSET:
            settings = self.describe()
            if key not in settings:
                raise UnknownConfigOptionError(f"Invalid config option '{key}'")
            return settings[key]

        if key in self.READ_ONLY_KEYS:
            raise UnknownConfigOptionError(f"Config option '{key}' is read-only")

        updated = self.options.updated(key, value)
        if key == "lock_missing" and not updated.lock_missing:
            if not self.lock.available():
                raise LockUnavailableError(
                    f"Cannot turn locking on: {type(self.lock).__name__} "
                    "is not available"
                )
        self.options = updated
        return None

    # ------------------------------------------------------------------
    # Interactive use
    # ------------------------------------------------------------------

    def shell(self, *initial: str) -> None:
        """Run an interactive shell; leaving it keeps the instance alive."""
        run_shell(self, initial, history_dir=self.settings.history_dir)
