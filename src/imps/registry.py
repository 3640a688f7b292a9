"""Registry of live named instances.

A ``Registry`` owns every instance created through it. It starts empty
and ``close()`` (or leaving its ``with`` block) destroys whatever is
still running. Names are reserved atomically, so two concurrent
``create`` calls for the same name cannot both succeed, and a failed
creation frees its name and removes everything it allocated.

Examples:
    Create, address by name, and tear down::

        >>> registry = Registry()
        >>> calc = registry.create(["bc", "-l"], name="calc")
        >>> sorted(registry.list("imp"))
        ['calc']
        >>> registry.resolve("calc", "imp").evaluate("2 ^ 10")
        ['1024']
        >>> registry.close()
"""

import logging
import threading
from collections.abc import Iterator, Sequence
from types import TracebackType
from typing import Any, Self

from imps.checks import command_exists, default_name, is_valid_name
from imps.config import ImpOptions, Settings, settings as default_settings
from imps.errors import (
    DependencyMissingError,
    DuplicateNameError,
    ImpError,
    InstanceNotFoundError,
    InvalidNameError,
    LockUnavailableError,
    WrongKindError,
)
from imps.instance import ImpInstance, Instance
from imps.lock import Lock, create_lock
from imps.presets import bootstrap_commands, default_echo, target_command
from imps.pump import pump_class

logger = logging.getLogger(__name__)


class Registry:
    """Name -> instance table with explicit lifetime."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or default_settings
        # None marks a name reserved by a creation still in progress.
        self._entries: dict[str, Instance | None] = {}
        self._guard = threading.Lock()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __contains__(self, name: object) -> bool:
        with self._guard:
            return isinstance(name, str) and self._entries.get(name) is not None

    # ------------------------------------------------------------------
    # Name bookkeeping
    # ------------------------------------------------------------------

    def register(self, name: str) -> None:
        """Reserve ``name`` for an instance about to be created.

        Raises:
            InvalidNameError: empty or not alphanumeric/underscore.
            DuplicateNameError: the name is live or reserved.
        """
        if not is_valid_name(name):
            raise InvalidNameError(f"Invalid instance name '{name}'")
        with self._guard:
            if name in self._entries:
                raise DuplicateNameError(f"An instance named '{name}' already exists")
            self._entries[name] = None

    def unregister(self, name: str, instance: Instance | None = None) -> None:
        """Free ``name``; with ``instance``, only while it still maps to it."""
        with self._guard:
            if instance is None or self._entries.get(name) is instance:
                self._entries.pop(name, None)

    def resolve(self, name: str, kind: str | None = None) -> Instance:
        """Look up a live instance, optionally checking its kind.

        Raises:
            InstanceNotFoundError: no live instance has that name.
            WrongKindError: the instance is not of ``kind``.
        """
        with self._guard:
            instance = self._entries.get(name)
        if instance is None:
            raise InstanceNotFoundError(f"No instance named '{name}'")
        if kind is not None and instance.kind != kind:
            raise WrongKindError(
                f"Instance '{name}' is a {instance.kind}, not a {kind}"
            )
        return instance

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(
        self,
        command: Sequence[str],
        *,
        name: str | None = None,
        **options: Any,
    ) -> ImpInstance:
        """Wrap ``command`` in a new running instance.

        Args:
            command: Argument vector of the program to wrap.
            name: Instance name; defaults to the executable's basename.
            **options: Initial tunables (``echo``, ``timeout``, ``wait``,
                ``pager``, ``lock_missing``).

        Raises:
            ValueError: ``command`` is empty.
            InvalidNameError, DuplicateNameError: the name cannot be used.
            DependencyMissingError: the executable is not on PATH.
            UnknownConfigOptionError, InvalidEchoTemplateError,
            InvalidConfigValueError, LockUnavailableError: bad options.
            PumpStartError: the child never connected.
        """
        if not command:
            raise ValueError("command must not be empty")
        if name is None:
            name = default_name(command)

        self.register(name)
        try:
            instance = self._build(name, command, options)
        except BaseException:
            self.unregister(name)
            raise

        with self._guard:
            self._entries[name] = instance
        logger.info("Created imp %s: %s", name, " ".join(command))
        return instance

    def _options(
        self, command: Sequence[str], given: dict[str, Any], lock: Lock
    ) -> ImpOptions:
        lock_available = lock.available()
        if not lock_available:
            logger.warning(
                "Lock '%s' unavailable: concurrent evaluates may interleave",
                self.settings.lock,
            )

        options = ImpOptions.from_settings(self.settings, lock_missing=not lock_available)
        for key, value in given.items():
            options = options.updated(key, value)
        if not options.lock_missing and not lock_available:
            raise LockUnavailableError(
                f"Cannot turn locking on: lock '{self.settings.lock}' is not available"
            )

        if not options.echo and options.wait < 0:
            template = default_echo(command)
            if template:
                options = options.updated("echo", template)
            else:
                logger.warning(
                    "Unrecognised command '%s' - using a timeout",
                    target_command(command),
                )
        return options

    def _build(
        self, name: str, command: Sequence[str], given: dict[str, Any]
    ) -> ImpInstance:
        if not command_exists(command[0]):
            raise DependencyMissingError(command[0])

        lock = create_lock(self.settings.lock, self.settings.lock_poll_interval)
        instance = ImpInstance(
            name,
            command,
            options=self._options(command, given, lock),
            lock=lock,
            pump_class=pump_class(self.settings.pump),
            settings=self.settings,
            registry=self,
        )
        instance.start()
        try:
            for line in bootstrap_commands(command):
                instance.evaluate(line)
        except BaseException:
            instance.stop()
            raise
        return instance

    def destroy(self, name: str) -> None:
        self.resolve(name).destroy()

    def close(self) -> None:
        """Destroy every remaining instance."""
        with self._guard:
            live = [i for i in self._entries.values() if i is not None]
        for instance in live:
            try:
                instance.destroy()
            except ImpError:
                logger.exception("Failed to destroy %s", instance.name)

    # Keep last: shadows the builtin ``list`` in the class body.
    def list(self, kind: str | None = None) -> Iterator[str]:
        """Yield the names of live instances, optionally of one kind."""
        with self._guard:
            live = [
                (name, instance)
                for name, instance in self._entries.items()
                if instance is not None
            ]
        for name, instance in live:
            if kind is None or instance.kind == kind:
                yield name
