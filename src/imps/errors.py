"""Exception hierarchy for imps.

Every failure an operation can report has its own class so callers can
tell them apart without parsing messages. All derive from ``ImpError``.

Construction and configuration errors are raised before any state is
kept. ``InstanceTornDownError`` is the one runtime condition: the
channels closed under an in-flight evaluate because the instance was
destroyed (or its child exited).
"""


class ImpError(RuntimeError):
    """Base class for all imps errors."""


class InvalidNameError(ImpError, ValueError):
    """Raised when an instance name is empty or not alphanumeric/underscore."""


class DuplicateNameError(ImpError):
    """Raised when an instance with the same name is already registered."""


class InstanceNotFoundError(ImpError):
    """Raised when no live instance has the requested name."""


class WrongKindError(ImpError):
    """Raised when a name resolves to an instance of another kind."""


class DependencyMissingError(ImpError):
    """Raised when the command to wrap cannot be found on PATH."""

    def __init__(self, command: str) -> None:
        self.command = command
        super().__init__(f"Cannot find the requested command '{command}'")


class AlreadyRunningError(ImpError):
    """Raised when starting a pump on an instance that already has one."""


class PumpStartError(ImpError):
    """Raised when the child's channels never connect after spawning."""


class InvalidEchoTemplateError(ImpError, ValueError):
    """Raised when a handshake template lacks the ``<key>`` placeholder."""


class LockUnavailableError(ImpError):
    """Raised when locking is enabled but the lock mechanism is absent."""


class UnknownConfigOptionError(ImpError):
    """Raised for config keys that do not exist or cannot be set."""


class InvalidConfigValueError(ImpError, ValueError):
    """Raised when a known config key is given an unusable value."""


class InstanceTornDownError(ImpError):
    """Raised when the channels close during an evaluate."""
