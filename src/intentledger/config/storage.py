"""Where intentledger keeps its SQLite ledger."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

DATA_DIR_ENV: Final[str] = "INTENTLEDGER_DATA_DIR"
DATABASE_URI_ENV: Final[str] = "DATABASE_URI"
LEDGER_FILENAME: Final[str] = "intentledger.db"
SQLITE_DRIVER: Final[str] = "sqlite+pysqlite"


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """Directory holding the ledger file. It is created on first use."""

    data_dir: Path
    database_filename: str = LEDGER_FILENAME

    @property
    def root(self) -> Path:
        return self.data_dir.expanduser().resolve()

    def database_path(self, *, ensure: bool = True) -> Path:
        if ensure:
            self.root.mkdir(parents=True, exist_ok=True)
        return self.root / self.database_filename

    def database_uri(self) -> str:
        return f"{SQLITE_DRIVER}:///{self.database_path()}"


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
    override = os.getenv(DATA_DIR_ENV)
    data_dir = Path(override) if override else _platform_data_home() / "intentledger"
    return StorageConfig(data_dir=data_dir)


def get_database_config(*, storage: StorageConfig | None = None) -> DatabaseConfig:
    """``DATABASE_URI`` wins; otherwise the ledger file under the data directory."""

    uri = os.getenv(DATABASE_URI_ENV)
    if uri:
        return DatabaseConfig(uri=uri)
    return DatabaseConfig(uri=(storage or get_storage_config()).database_uri())
