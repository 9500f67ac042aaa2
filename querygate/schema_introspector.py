"""Schema introspection with a per data source TTL cache."""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, List, Optional

from .connection_manager import ConnectionManager
from .constants import (
    DEFAULT_ACQUIRE_TIMEOUT_MS,
    DEFAULT_QUERY_TIMEOUT_MS,
    DEFAULT_SCHEMA_TTL_S,
    SCHEMA_PARTIAL_FAIL,
    SCHEMA_PARTIAL_OMIT,
)
from .datasource_registry import DataSourceRegistry
from .drivers import CatalogScan
from .errors import DataSourceConnectionError, GatewayError, QueryTimeoutError
from .models import DataSource, PooledConnection, SchemaSnapshot
from .utils import redact_error_message

logger = logging.getLogger(__name__)


class SchemaIntrospector:
    """Serves schema snapshots, refreshing at most once at a time per data source.

    Reads go straight to the cache dict. Refreshes take a per data source lock;
    callers arriving during a refresh wait for it (bounded by the acquire timeout)
    and then get the snapshot it produced.
    """

    def __init__(
        self,
        registry: DataSourceRegistry,
        connections: ConnectionManager,
        ttl_s: float = DEFAULT_SCHEMA_TTL_S,
        acquire_timeout_s: float = DEFAULT_ACQUIRE_TIMEOUT_MS / 1000.0,
        refresh_timeout_s: float = DEFAULT_QUERY_TIMEOUT_MS / 1000.0,
        partial_failure: str = SCHEMA_PARTIAL_OMIT,
        executor: Optional[ThreadPoolExecutor] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.connections = connections
        self.ttl_s = ttl_s
        self.acquire_timeout_s = acquire_timeout_s
        self.refresh_timeout_s = refresh_timeout_s
        self.partial_failure = partial_failure
        # None runs scans on the data source's own workers
        self._executor = executor
        self._clock = clock
        self._cache: Dict[str, SchemaSnapshot] = {}
        self._generations: Dict[str, int] = {}
        self._refresh_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _refresh_lock(self, data_source_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._refresh_locks.get(data_source_id)
            if lock is None:
                lock = threading.Lock()
                self._refresh_locks[data_source_id] = lock
            return lock

    def _is_fresh(self, snapshot: Optional[SchemaSnapshot], fingerprint: str) -> bool:
        return (
            snapshot is not None
            and snapshot.config_fingerprint == fingerprint
            and not snapshot.is_expired(self._clock())
        )

    def get_schema(self, data_source_id: str, force_refresh: bool = False) -> SchemaSnapshot:
        """Return the schema snapshot of a data source.

        Args:
            data_source_id: Registered data source id
            force_refresh: Bypass the cache and query the catalog

        Raises:
            DataSourceNotFoundError: Unknown or inactive data source
            DataSourceConnectionError: Catalog could not be read
            QueryTimeoutError: Refresh exceeded its time budget
        """
        data_source = self.registry.get(data_source_id)
        fingerprint = data_source.fingerprint()

        snapshot = self._cache.get(data_source_id)
        if not force_refresh and self._is_fresh(snapshot, fingerprint):
            logger.debug(f"Schema cache hit for data source '{data_source_id}'")
            return snapshot

        generation = self._generations.get(data_source_id, 0)
        lock = self._refresh_lock(data_source_id)
        started = time.monotonic()
        if not lock.acquire(timeout=self.acquire_timeout_s):
            elapsed_ms = (time.monotonic() - started) * 1000
            raise QueryTimeoutError(
                f"Timed out after {elapsed_ms:.0f}ms waiting for the schema refresh of data source '{data_source_id}'",
                data_source_id,
                elapsed_ms,
            )
        try:
            snapshot = self._cache.get(data_source_id)
            if snapshot is not None and snapshot.config_fingerprint == fingerprint:
                refreshed_meanwhile = self._generations.get(data_source_id, 0) != generation
                if refreshed_meanwhile or (not force_refresh and not snapshot.is_expired(self._clock())):
                    return snapshot

            snapshot = self._refresh(data_source, fingerprint)
            self._cache[data_source_id] = snapshot
            self._generations[data_source_id] = self._generations.get(data_source_id, 0) + 1
            return snapshot
        finally:
            lock.release()

    def _scan(self, conn: PooledConnection, data_source: DataSource) -> CatalogScan:
        scan = conn.driver.introspect(
            conn.handle,
            data_source.connection_config,
            fail_on_error=self.partial_failure == SCHEMA_PARTIAL_FAIL,
        )
        conn.driver.rollback(conn.handle)
        return scan

    def _submit(self, conn: PooledConnection, fn: Callable[..., Any], *args: Any) -> Future:
        if self._executor is not None:
            return self._executor.submit(fn, *args)
        return self.connections.submit(conn, fn, *args)

    def _refresh(self, data_source: DataSource, fingerprint: str) -> SchemaSnapshot:
        started = time.monotonic()
        conn = self.connections.acquire(data_source, fingerprint)
        future = self._submit(conn, self._scan, conn, data_source)
        try:
            scan = future.result(timeout=self.refresh_timeout_s)
        except FutureTimeoutError:
            elapsed_ms = (time.monotonic() - started) * 1000
            if future.cancel():
                self.connections.release(conn)
            else:
                conn.mark_invalid()
                try:
                    conn.driver.cancel(conn.handle)
                except Exception as e:
                    logger.warning(f"Could not cancel schema scan of data source '{data_source.id}': {e}")
                self.connections.release_when_done(conn, future)
            raise QueryTimeoutError(
                f"Schema introspection of data source '{data_source.id}' timed out after {elapsed_ms:.0f}ms",
                data_source.id,
                elapsed_ms,
            ) from None
        except GatewayError:
            conn.mark_invalid()
            self.connections.release(conn)
            raise
        except Exception as e:
            conn.mark_invalid()
            self.connections.release(conn)
            logger.error(f"Schema introspection of data source '{data_source.id}' failed: {type(e).__name__}")
            raise DataSourceConnectionError(
                f"Schema introspection of data source '{data_source.id}' failed: "
                f"{redact_error_message(str(e)).splitlines()[0] if str(e) else type(e).__name__}",
                {"data_source_id": data_source.id},
            ) from None
        self.connections.release(conn)

        warnings = list(scan.warnings)
        if not scan.tables and not scan.views:
            warnings.append("No tables or views found; check the configured schema and permissions")
        fetched_at = self._clock()
        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(
            f"Introspected data source '{data_source.id}': {len(scan.tables)} tables, "
            f"{len(scan.views)} views in {elapsed_ms:.0f}ms"
        )
        return SchemaSnapshot(
            data_source_id=data_source.id,
            tables=scan.tables,
            views=scan.views,
            fetched_at=fetched_at,
            ttl_expires_at=fetched_at + self.ttl_s,
            config_fingerprint=fingerprint,
            warnings=warnings,
        )

    def invalidate(self, data_source_id: str) -> None:
        """Drop the cached snapshot so the next request refetches it."""
        if self._cache.pop(data_source_id, None) is not None:
            logger.info(f"Schema cache invalidated for data source '{data_source_id}'")

    def cached_data_sources(self) -> List[str]:
        return list(self._cache.keys())
