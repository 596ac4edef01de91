"""Where prodrecon keeps its database, HTTP cache and stored attachments."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from .errors import FatalConfigError

APP_DIR_NAME: Final[str] = "prodrecon"
DEFAULT_DB_FILENAME: Final[str] = "prodrecon.db"
HTTP_CACHE_FILENAME: Final[str] = "http_cache.db"
ATTACHMENTS_DIRNAME: Final[str] = "attachments"


@dataclass(frozen=True, slots=True)
class StorageConfig:
    data_dir: Path

    def directory(self, *parts: str, ensure: bool = True) -> Path:
        path = self.data_dir.expanduser().resolve().joinpath(*parts)
        if ensure:
            path.mkdir(parents=True, exist_ok=True)
        return path

    def database_path(self, *, ensure: bool = True) -> Path:
        return self.directory(ensure=ensure) / DEFAULT_DB_FILENAME

    def http_cache_path(self, *, ensure: bool = True) -> Path:
        return self.directory(ensure=ensure) / HTTP_CACHE_FILENAME

    def attachment_path(self, name: str) -> Path:
        """Path of a stored attachment; ``name`` must be a plain file name."""

        if not name or Path(name).name != name or name in {".", ".."}:
            raise FatalConfigError(f"Invalid attachment name: {name!r}")
        return self.directory(ATTACHMENTS_DIRNAME, ensure=False) / name

    def database_uri(self) -> str:
        return f"sqlite+pysqlite:///{self.database_path()}"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str


def _platform_data_home() -> Path:
    if os.name == "nt":
        local = os.getenv("LOCALAPPDATA")
        return Path(local) if local else Path.home() / "AppData" / "Local"
    xdg = os.getenv("XDG_DATA_HOME")
    return Path(xdg) if xdg else Path.home() / ".local" / "share"


def get_storage_config() -> StorageConfig:
    override = os.getenv("PRODRECON_DATA_DIR")
    data_dir = Path(override) if override else _platform_data_home() / APP_DIR_NAME
    return StorageConfig(data_dir=data_dir)


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    """``DATABASE_URI`` wins; otherwise a SQLite file in the data directory."""

    env_uri = os.getenv("DATABASE_URI")
    if env_uri:
        return DatabaseConfig(uri=env_uri)
    return DatabaseConfig(uri=(storage or get_storage_config()).database_uri())
