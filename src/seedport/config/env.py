"""Environment variable loaders for configuration."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from .errors import InvalidConfigurationValueError, MissingConfigurationError

if TYPE_CHECKING:
    from collections.abc import Sequence


def require_env_vars(names: Sequence[str]) -> dict[str, str]:
    """Return every named variable, raising once for all that are missing or blank."""

    values = {name: os.getenv(name, "").strip() for name in names}
    missing = sorted(name for name, value in values.items() if not value)
    if missing:
        raise MissingConfigurationError(f"Missing configuration for: {', '.join(missing)}")
    return values


def require_env_var(name: str) -> str:
    return require_env_vars((name,))[name]


def optional_int_env(name: str, default: int) -> int:
    """Read an integer setting; blank or unset falls back to ``default``.

    Accepts decimal, ``0x`` hex and ``0b`` binary literals so quality masks can be
    written the way they are usually thought about (``SEEDPORT_ACCEPT_QL=0b1010``).
    """

    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw, 0)
    except ValueError as exc:
        raise InvalidConfigurationValueError(name, raw, "integer") from exc
