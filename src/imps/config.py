"""Configuration management using pydantic-settings.

Two layers:

1. ``Settings``: process-wide defaults read from the environment
   (``IMPS_*`` variables, ``.env`` then ``.env.local``).
2. ``ImpOptions``: the tunables of one instance (``echo``, ``timeout``,
   ``wait``, ``pager``, ``lock_missing``), seeded from ``Settings`` and
   changed through ``ImpInstance.configure``.

Usage:
    from imps.config import settings
    print(settings.keepalive_interval)
"""

from pathlib import Path
from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from imps.errors import (
    InvalidConfigValueError,
    InvalidEchoTemplateError,
    UnknownConfigOptionError,
)
from imps.protocol import (
    PLACEHOLDER,
    BoundedWait,
    Completion,
    Handshake,
    PlainTimeout,
)

PumpKind = Literal["auto", "native", "relay"]
LockKind = Literal["marker", "lockfile"]


class Settings(BaseSettings):
    """Process-wide defaults loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"),
        extra="ignore",
        populate_by_name=True,
    )

    # ==========================================================================
    # INSTANCE DEFAULTS
    # ==========================================================================

    timeout: float = Field(
        default=0.2,
        ge=0,
        validation_alias="IMPS_TIMEOUT",
        description="Per-line read timeout for the timeout strategies (seconds)",
    )

    wait: int = Field(
        default=-1,
        ge=-1,
        validation_alias="IMPS_WAIT",
        description="Lines to wait for per evaluate (-1 = read until quiet)",
    )

    pager: str = Field(
        default="",
        validation_alias="IMPS_PAGER",
        description="Pager command for the interactive shell (empty = none)",
    )

    # ==========================================================================
    # PROCESS SUPERVISION
    # ==========================================================================

    pump: PumpKind = Field(
        default="auto",
        validation_alias="IMPS_PUMP",
        description="Child pump topology",
    )

    keepalive_interval: float = Field(
        default=1.0,
        gt=0,
        validation_alias="IMPS_KEEPALIVE_INTERVAL",
        description="How often the keep-alive checks the working directory",
    )

    start_timeout: float = Field(
        default=5.0,
        gt=0,
        validation_alias="IMPS_START_TIMEOUT",
        description="Time allowed for the child's channels to connect",
    )

    temp_dir: Path | None = Field(
        default=None,
        validation_alias="IMPS_TEMP_DIR",
        description="Parent of instance working directories (None = system temp)",
    )

    # ==========================================================================
    # LOCKING
    # ==========================================================================

    lock: LockKind = Field(
        default="marker",
        validation_alias="IMPS_LOCK",
        description="Advisory lock implementation",
    )

    lock_poll_interval: float = Field(
        default=0.05,
        gt=0,
        validation_alias="IMPS_LOCK_POLL_INTERVAL",
        description="Retry period while waiting for a held lock",
    )

    # ==========================================================================
    # SHELL
    # ==========================================================================

    history_dir: Path = Field(
        default=Path.home() / ".imps" / "history",
        validation_alias="IMPS_HISTORY_DIR",
        description="Directory holding per-instance shell history",
    )


# Singleton instance
settings = Settings.model_validate({})


class ImpOptions(BaseModel):
    """Tunables of one instance.

    The completion strategy is derived, never stored, so it is always
    exactly one of the three variants: a non-empty ``echo`` selects the
    handshake, otherwise ``wait >= 0`` selects a bounded wait, otherwise
    a plain timeout.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    echo: str = Field(default="", description="Handshake template containing <key>")
    timeout: float = Field(default=0.2, ge=0, description="Per-line read timeout")
    wait: int = Field(default=-1, ge=-1, description="Lines to wait for (-1 = off)")
    pager: str = Field(default="", description="Pager for the interactive shell")
    lock_missing: bool = Field(default=False, description="Skip the advisory lock")

    @classmethod
    def from_settings(cls, source: Settings, *, lock_missing: bool = False) -> Self:
        """Seed options from the process-wide defaults."""
        return cls(
            timeout=source.timeout,
            wait=source.wait,
            pager=source.pager,
            lock_missing=lock_missing,
        )

    @classmethod
    def keys(cls) -> tuple[str, ...]:
        return tuple(cls.model_fields)

    def updated(self, key: str, value: Any) -> Self:
        """Return a copy with ``key`` set to ``value``.

        Raises:
            UnknownConfigOptionError: ``key`` is not a tunable.
            InvalidEchoTemplateError: an ``echo`` value lacks the placeholder.
            InvalidConfigValueError: the value fails validation.
        """
        if key not in type(self).model_fields:
            raise UnknownConfigOptionError(f"Invalid config option '{key}'")
        if key == "echo" and value and PLACEHOLDER not in str(value):
            raise InvalidEchoTemplateError(
                f"Invalid echo command - lacks {PLACEHOLDER}: {value!r}"
            )
        try:
            return self.model_validate({**self.model_dump(), key: value})
        except ValidationError as e:
            raise InvalidConfigValueError(
                f"Invalid value for '{key}': {value!r}"
            ) from e

    @property
    def completion(self) -> Completion:
        if self.echo:
            return Handshake(template=self.echo)
        if self.wait >= 0:
            return BoundedWait(count=self.wait, timeout=self.timeout)
        return PlainTimeout(timeout=self.timeout)
