"""Embedded file database driver (SQLite)."""

import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List

from sqlalchemy.exc import DBAPIError

from ..constants import DEFAULT_DATA_DIR
from ..errors import DataSourceConnectionError
from ..models import EngineKind
from .sqlalchemy_driver import SQLAlchemyDriver, SQLAlchemyHandle

logger = logging.getLogger(__name__)


class SQLiteDriver(SQLAlchemyDriver):
    """SQLite files, opened read-only at the file level when the gateway is read-only."""

    kind = EngineKind.SQLITE

    def __init__(self, data_dir: str = DEFAULT_DATA_DIR):
        self.data_dir = Path(data_dir)

    def resolve_path(self, config: Dict[str, Any]) -> Path:
        """Database file of a data source; relative paths live under the data directory."""
        raw = config.get("path") or config.get("file_path") or config.get("database")
        if not raw:
            raise DataSourceConnectionError(
                "SQLite data source requires a 'path' setting", {"engine": self.kind.value}
            )
        path = Path(str(raw)).expanduser()
        if not path.is_absolute():
            path = self.data_dir / path
        return path

    def preflight(self, config: Dict[str, Any]) -> None:
        path = self.resolve_path(config)
        if not path.is_file():
            raise DataSourceConnectionError(
                f"Database file not found: {path.name}", {"engine": self.kind.value}
            )
        if path.stat().st_size == 0:
            raise DataSourceConnectionError(
                f"Database file is empty: {path.name}", {"engine": self.kind.value}
            )

    def build_url(self, config: Dict[str, Any]) -> str:
        # Connections come from the creator below
        return "sqlite://"

    def engine_options(self, config: Dict[str, Any], read_only: bool) -> Dict[str, Any]:
        path = self.resolve_path(config)
        timeout = float(config.get("busy_timeout_s", 5))

        def creator():
            # Handles are created on one thread and used from executor worker threads
            if read_only:
                return sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True,
                                       timeout=timeout, check_same_thread=False)
            return sqlite3.connect(str(path), timeout=timeout, check_same_thread=False)

        return {"creator": creator}

    def session_setup(self, read_only: bool) -> List[str]:
        if read_only:
            return ["PRAGMA query_only = ON"]
        return []

    def cancel(self, handle: SQLAlchemyHandle) -> bool:
        handle.dbapi_connection.interrupt()
        return True

    def is_timeout_error(self, error: Exception) -> bool:
        return isinstance(error, DBAPIError) and "interrupted" in str(error.orig).lower()
