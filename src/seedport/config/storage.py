"""Data directory and database configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

APP_DIR_NAME: Final[str] = "seedport"
DEFAULT_DB_FILENAME: Final[str] = "seedport.db"
HTTP_CACHE_FILENAME: Final[str] = "http_cache.db"

SEED_DIRNAME: Final[str] = "seed"
IMPORT_DIRNAME: Final[str] = "import"
BACKUP_DIRNAME: Final[str] = "backup"
MEDIA_DIRNAME: Final[str] = "media"


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """Layout of everything seedport keeps on disk.

    ``data_dir`` holds the SQLite database, the HTTP cache and one directory per
    record source: ``seed/`` (curated data loaded by ``load_all``), ``import/``
    (ad-hoc imports that take precedence over seeds), ``backup/`` (portable
    exports) and ``media/`` (downloaded files).
    """

    data_dir: Path
    database_filename: str = DEFAULT_DB_FILENAME
    http_cache_filename: str = HTTP_CACHE_FILENAME

    def resolve_data_dir(self) -> Path:
        return self.data_dir.expanduser().resolve()

    def ensure_data_dir(self) -> Path:
        data_dir = self.resolve_data_dir()
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir

    def database_path(self, *, ensure: bool = True) -> Path:
        base = self.ensure_data_dir() if ensure else self.resolve_data_dir()
        return base / self.database_filename

    def http_cache_path(self, *, ensure: bool = True) -> Path:
        base = self.ensure_data_dir() if ensure else self.resolve_data_dir()
        return base / self.http_cache_filename

    def database_uri(self) -> str:
        return f"sqlite+pysqlite:///{self.database_path()}"

    @property
    def seed_dir(self) -> Path:
        return self.resolve_data_dir() / SEED_DIRNAME

    @property
    def import_dir(self) -> Path:
        return self.resolve_data_dir() / IMPORT_DIRNAME

    @property
    def backup_dir(self) -> Path:
        return self.resolve_data_dir() / BACKUP_DIRNAME

    @property
    def media_dir(self) -> Path:
        return self.resolve_data_dir() / MEDIA_DIRNAME


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str


def _default_data_dir() -> Path:
    if os.name == "nt":
        base = os.getenv("LOCALAPPDATA")
        base_path = Path(base) if base else (Path.home() / "AppData" / "Local")
    else:
        base = os.getenv("XDG_DATA_HOME")
        base_path = Path(base) if base else (Path.home() / ".local" / "share")
    return (base_path / APP_DIR_NAME).expanduser().resolve()


def get_storage_config(data_dir: Path | None = None) -> StorageConfig:
    if data_dir is not None:
        return StorageConfig(data_dir=data_dir)
    env_dir = os.getenv("SEEDPORT_DATA_DIR")
    return StorageConfig(data_dir=Path(env_dir) if env_dir else _default_data_dir())


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    env_uri = os.getenv("DATABASE_URI")
    if env_uri:
        return DatabaseConfig(uri=env_uri)
    storage_config = storage or get_storage_config()
    return DatabaseConfig(uri=storage_config.database_uri())
