"""Turn line-oriented command-line programs into named, stateful services.

Each instance wraps one interactive program behind a pair of named pipes
and a detached pump process. Callers push commands with ``evaluate`` and
get back the lines the program printed in response.

Modules:
- channels: Working directory, FIFOs and their readers/writers
- checks: Name validity and command presence checks
- config: Process-wide settings and per-instance options
- errors: Exception hierarchy (all derive from ImpError)
- instance: Instance interface and the ImpInstance supervisor
- lock: Advisory locks serializing evaluate calls
- presets: Known-command handshake templates and shortcuts
- protocol: Completion strategies and the sentinel scanner
- pump: Native and relay process topologies
- registry: Named instance table with explicit lifetime
- relay: Entry point of the relay pump process
- shell: Interactive read-eval-print loop with history
"""

from imps.config import ImpOptions, Settings, settings
from imps.errors import (
    AlreadyRunningError,
    DependencyMissingError,
    DuplicateNameError,
    ImpError,
    InstanceNotFoundError,
    InstanceTornDownError,
    InvalidConfigValueError,
    InvalidEchoTemplateError,
    InvalidNameError,
    LockUnavailableError,
    PumpStartError,
    UnknownConfigOptionError,
    WrongKindError,
)
from imps.instance import ImpInstance, Instance, InstanceState
from imps.lock import Lock, LockfileLock, MarkerLock, create_lock
from imps.presets import bash, bc, festival, python, speak
from imps.protocol import (
    PLACEHOLDER,
    BoundedWait,
    Completion,
    Handshake,
    PlainTimeout,
    SentinelScanner,
)
from imps.registry import Registry

__all__ = [
    # Config
    "ImpOptions",
    "Settings",
    "settings",
    # Errors
    "AlreadyRunningError",
    "DependencyMissingError",
    "DuplicateNameError",
    "ImpError",
    "InstanceNotFoundError",
    "InstanceTornDownError",
    "InvalidConfigValueError",
    "InvalidEchoTemplateError",
    "InvalidNameError",
    "LockUnavailableError",
    "PumpStartError",
    "UnknownConfigOptionError",
    "WrongKindError",
    # Instances
    "ImpInstance",
    "Instance",
    "InstanceState",
    "Registry",
    # Locks
    "Lock",
    "LockfileLock",
    "MarkerLock",
    "create_lock",
    # Presets
    "bash",
    "bc",
    "festival",
    "python",
    "speak",
    # Protocol
    "PLACEHOLDER",
    "BoundedWait",
    "Completion",
    "Handshake",
    "PlainTimeout",
    "SentinelScanner",
]
