"""In-memory registry of data sources.

The gateway only reads data sources on the request path. Updates come from the
surrounding application (or a JSON file at startup); whenever a data source's
connection settings change or it is deactivated, registered listeners are told
so cached connections and schema snapshots can be dropped.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .errors import DataSourceNotFoundError, InvalidInputError
from .models import DataSource, EngineKind
from .security import SecureCredentialManager, is_valid_schema_name
from .utils import sanitize_for_logging

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]


class DataSourceRegistry:
    """Thread-safe store of DataSource records keyed by id."""

    def __init__(self, credential_manager: Optional[SecureCredentialManager] = None):
        self._sources: Dict[str, DataSource] = {}
        self._listeners: List[ChangeListener] = []
        self._lock = threading.RLock()
        self._credential_manager = credential_manager

    def add_listener(self, listener: ChangeListener) -> None:
        """Call ``listener(data_source_id)`` after a data source changed or went away."""
        self._listeners.append(listener)

    def _notify(self, data_source_id: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(data_source_id)
            except Exception as e:
                logger.error(f"Data source change listener failed for '{data_source_id}': {e}")

    # -- reads -------------------------------------------------------------------

    def get(self, data_source_id: str) -> DataSource:
        """Return an active data source.

        Raises:
            DataSourceNotFoundError: Unknown id or inactive data source
        """
        data_source = self._sources.get(data_source_id)
        if data_source is None:
            raise DataSourceNotFoundError(data_source_id)
        if not data_source.is_active:
            raise DataSourceNotFoundError(data_source_id, "is inactive")
        return data_source

    def find(self, data_source_id: str) -> Optional[DataSource]:
        return self._sources.get(data_source_id)

    def list(self, include_inactive: bool = False) -> List[DataSource]:
        with self._lock:
            sources = list(self._sources.values())
        return [source for source in sources if include_inactive or source.is_active]

    # -- writes ------------------------------------------------------------------

    def upsert(self, data_source: DataSource) -> DataSource:
        """Create or replace a data source."""
        with self._lock:
            previous = self._sources.get(data_source.id)
            self._sources[data_source.id] = data_source
        changed = previous is not None and (
            previous.fingerprint() != data_source.fingerprint()
            or (previous.is_active and not data_source.is_active)
        )
        if previous is None:
            logger.info(f"Registered {data_source.engine_kind.value} data source '{data_source.id}'")
        elif changed:
            logger.info(f"Data source '{data_source.id}' changed")
            self._notify(data_source.id)
        return data_source

    def register(
        self,
        data_source_id: str,
        name: str,
        engine_kind: Union[str, EngineKind],
        connection_config: Dict[str, Any],
        is_active: bool = True,
    ) -> DataSource:
        return self.upsert(self.from_dict({
            "id": data_source_id,
            "name": name,
            "engine_kind": engine_kind,
            "connection_config": connection_config,
            "is_active": is_active,
        }))

    def deactivate(self, data_source_id: str) -> None:
        with self._lock:
            data_source = self._sources.get(data_source_id)
            if data_source is None:
                raise DataSourceNotFoundError(data_source_id)
            was_active = data_source.is_active
            data_source.is_active = False
        if was_active:
            logger.info(f"Data source '{data_source_id}' deactivated")
            self._notify(data_source_id)

    def remove(self, data_source_id: str) -> None:
        with self._lock:
            removed = self._sources.pop(data_source_id, None)
        if removed is not None:
            logger.info(f"Data source '{data_source_id}' removed")
            self._notify(data_source_id)

    # -- parsing -----------------------------------------------------------------

    def from_dict(self, entry: Dict[str, Any]) -> DataSource:
        """Build a DataSource from its JSON form, decrypting ``encrypted_config`` if present."""
        data_source_id = str(entry.get("id") or "").strip()
        if not data_source_id:
            raise InvalidInputError("Data source entry requires an 'id'")

        try:
            engine_kind = EngineKind.from_value(entry.get("engine_kind") or entry.get("type"))
        except ValueError as e:
            raise InvalidInputError(str(e), {"data_source_id": data_source_id}) from None

        config = dict(entry.get("connection_config") or {})
        if entry.get("encrypted_config"):
            if self._credential_manager is None or not self._credential_manager.is_enabled:
                raise InvalidInputError(
                    f"Data source '{data_source_id}' has an encrypted config but no master password is set",
                    {"data_source_id": data_source_id},
                )
            try:
                config.update(self._credential_manager.decrypt_config(entry["encrypted_config"]))
            except ValueError as e:
                raise InvalidInputError(
                    f"Cannot decrypt config of data source '{data_source_id}': {e}",
                    {"data_source_id": data_source_id},
                ) from None

        schemas = config.get("schemas") or ([config["schema"]] if config.get("schema") else [])
        for schema in schemas:
            if not is_valid_schema_name(str(schema)):
                raise InvalidInputError(
                    f"Invalid schema name '{schema}' for data source '{data_source_id}'",
                    {"data_source_id": data_source_id},
                )

        return DataSource(
            id=data_source_id,
            name=str(entry.get("name") or data_source_id),
            engine_kind=engine_kind,
            connection_config=config,
            is_active=bool(entry.get("is_active", True)),
        )

    def load_file(self, path: Union[str, Path]) -> int:
        """Load data sources from a JSON file.

        The file holds either a list of entries or ``{"data_sources": [...]}``.
        Returns the number of data sources loaded.
        """
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
        entries = payload.get("data_sources", []) if isinstance(payload, dict) else payload
        if not isinstance(entries, list):
            raise InvalidInputError(f"Data sources file {path.name} must contain a list of data sources")

        loaded = 0
        for entry in entries:
            data_source = self.from_dict(entry)
            self.upsert(data_source)
            logger.debug(f"Loaded data source {data_source.to_dict()} with config {sanitize_for_logging(data_source.connection_config)}")
            loaded += 1
        logger.info(f"Loaded {loaded} data source(s) from {path}")
        return loaded
