"""Defaults for import runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

from .env import optional_int_env, require_env_var

DEFAULT_SENTINEL_ID: Final[int] = 1
DEFAULT_MAX_ROW_ERRORS: Final[int] = 10
DEFAULT_MAX_STORE_ERRORS: Final[int] = 5
DEFAULT_MAX_REPORT_ENTRIES: Final[int] = 50


@dataclass(frozen=True, slots=True)
class ImportLimits:
    """Caps for the lists a load result carries.

    Totals are always counted in full; only the number of retained entries is
    bounded so a broken file of 100k rows still yields a readable report.
    """

    max_row_errors: int = DEFAULT_MAX_ROW_ERRORS
    max_store_errors: int = DEFAULT_MAX_STORE_ERRORS
    max_report_entries: int = DEFAULT_MAX_REPORT_ENTRIES


@dataclass(frozen=True, slots=True)
class ImportConfig:
    limits: ImportLimits = field(default_factory=ImportLimits)
    sentinel_id: int = DEFAULT_SENTINEL_ID
    accept_ql: int = 0


def get_import_config() -> ImportConfig:
    return ImportConfig(accept_ql=optional_int_env("SEEDPORT_ACCEPT_QL", 0))


def get_schema_path(path: Path | None = None) -> Path:
    """Return the compiled schema document, from ``path`` or ``SEEDPORT_SCHEMA``."""

    if path is not None:
        return path
    return Path(require_env_var("SEEDPORT_SCHEMA")).expanduser()
