"""Connection pooling for data sources.

Every data source gets its own SQLAlchemy ``QueuePool`` engine, keyed by data
source id and tagged with the configuration fingerprint it was built with; a
request that carries a different fingerprint retires the old engine as a whole.
The engine pool does the waiting, pre-ping and reconnecting. The manager keeps
the pool map, the checked-out counts and one worker pool per data source, sized
like the connection pool, so statements of one data source never wait for
worker threads held by another.
"""

import logging
import threading
import time
from contextlib import contextmanager
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy.exc import TimeoutError as PoolExhaustedError

from .constants import (
    DEFAULT_ACQUIRE_TIMEOUT_MS,
    DEFAULT_IDLE_TIMEOUT_S,
    DEFAULT_POOL_SIZE,
    DEFAULT_SWEEP_INTERVAL_S,
)
from .drivers import DriverRegistry
from .errors import DataSourceConnectionError, GatewayError, PoolTimeoutError
from .models import ConnectionState, DataSource, PooledConnection
from .utils import redact_error_message

logger = logging.getLogger(__name__)


class _DataSourcePool:
    """The engine of one data source built with one configuration fingerprint."""

    def __init__(self, data_source_id: str, fingerprint: str, engine: Any, driver: Any,
                 max_size: int, now: float):
        self.data_source_id = data_source_id
        self.fingerprint = fingerprint
        self.engine = engine
        self.driver = driver
        self.max_size = max_size
        self.workers = ThreadPoolExecutor(max_workers=max_size, thread_name_prefix=f"querygate-{data_source_id}")
        self.in_use = 0
        self.last_used_at = now
        self.retired = False

    def checked_in(self) -> int:
        return self.engine.pool.checkedin()

    def checked_out(self) -> int:
        return self.engine.pool.checkedout()


class ConnectionManager:
    """Owns the connection pools of all data sources."""

    def __init__(
        self,
        drivers: DriverRegistry,
        pool_size: int = DEFAULT_POOL_SIZE,
        acquire_timeout_s: float = DEFAULT_ACQUIRE_TIMEOUT_MS / 1000.0,
        idle_timeout_s: float = DEFAULT_IDLE_TIMEOUT_S,
        sweep_interval_s: float = DEFAULT_SWEEP_INTERVAL_S,
        read_only: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.drivers = drivers
        self.pool_size = pool_size
        self.acquire_timeout_s = acquire_timeout_s
        self.idle_timeout_s = idle_timeout_s
        self.sweep_interval_s = sweep_interval_s
        self.read_only = read_only
        self._clock = clock
        self._pools: Dict[str, _DataSourcePool] = {}
        # Guards the pool map and every pool's in_use/retired/last_used_at
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None
        self._closed = False

    # -- pool map ----------------------------------------------------------------

    def _reserve(self, data_source: DataSource, driver: Any, fingerprint: str) -> _DataSourcePool:
        """Current pool of a data source, built on first use, with one more checkout counted."""
        replaced = None
        with self._lock:
            if self._closed:
                raise DataSourceConnectionError("Connection manager is shut down")
            pool = self._pools.get(data_source.id)
            if pool is not None and pool.fingerprint != fingerprint:
                logger.info(f"Configuration of data source '{data_source.id}' changed, replacing its connection pool")
                replaced = self._pools.pop(data_source.id)
                pool = None
            if pool is None:
                try:
                    engine = driver.create_pool(
                        data_source.connection_config, self.read_only, self.pool_size, self.acquire_timeout_s
                    )
                except GatewayError:
                    raise
                except Exception as e:
                    raise DataSourceConnectionError(
                        f"Invalid connection settings for data source '{data_source.id}': "
                        f"{type(e).__name__}: {redact_error_message(str(e))}",
                        {"data_source_id": data_source.id},
                    ) from None
                pool = _DataSourcePool(data_source.id, fingerprint, engine, driver, self.pool_size, self._clock())
                self._pools[data_source.id] = pool
                logger.debug(f"Created connection pool for data source '{data_source.id}' (size {self.pool_size})")
            pool.in_use += 1
        if replaced is not None:
            self._retire(replaced)
        return pool

    def _unreserve(self, pool: _DataSourcePool) -> None:
        with self._lock:
            pool.in_use -= 1
            idle_retired = pool.retired and pool.in_use == 0
        if idle_retired:
            pool.workers.shutdown(wait=False)

    def _retire(self, pool: _DataSourcePool) -> None:
        """Close idle connections now; checked-out ones are discarded on release."""
        with self._lock:
            pool.retired = True
            idle_workers = pool.in_use == 0
        try:
            pool.driver.dispose_pool(pool.engine)
        except Exception as e:
            logger.warning(f"Error disposing connection pool of data source '{pool.data_source_id}': {e}")
        if idle_workers:
            pool.workers.shutdown(wait=False)

    # -- acquire / release -------------------------------------------------------

    def acquire(self, data_source: DataSource, config_fingerprint: Optional[str] = None) -> PooledConnection:
        """Check out a connection for exclusive use.

        Reuses an idle connection of the data source's pool (pre-pinged, stale
        ones are replaced), opens a new one while the pool has capacity, and
        otherwise waits up to the acquire timeout for a release.

        Raises:
            PoolTimeoutError: No connection became available within the timeout
            DataSourceConnectionError: The engine could not be reached
        """
        fingerprint = config_fingerprint or data_source.fingerprint()
        driver = self.drivers.get(data_source.engine_kind)

        while True:
            pool = self._reserve(data_source, driver, fingerprint)
            started = time.monotonic()
            try:
                handle = driver.checkout(pool.engine)
            except PoolExhaustedError:
                self._unreserve(pool)
                waited_ms = (time.monotonic() - started) * 1000
                logger.warning(
                    f"Pool for data source '{data_source.id}' exhausted "
                    f"({pool.max_size} in use), gave up after {waited_ms:.0f}ms"
                )
                raise PoolTimeoutError(data_source.id, waited_ms) from None
            except GatewayError:
                self._unreserve(pool)
                raise
            except Exception as e:
                self._unreserve(pool)
                raise DataSourceConnectionError(
                    f"Failed to open connection to data source '{data_source.id}': "
                    f"{type(e).__name__}: {redact_error_message(str(e))}",
                    {"data_source_id": data_source.id},
                ) from None

            if pool.retired:
                # Pool was replaced while waiting for a connection
                driver.checkin(handle, invalidate=True)
                self._unreserve(pool)
                continue

            now = self._clock()
            return PooledConnection(
                data_source_id=data_source.id,
                config_fingerprint=fingerprint,
                handle=handle,
                driver=driver,
                state=ConnectionState.IN_USE,
                created_at=now,
                last_used_at=now,
                pool=pool,
            )

    def release(self, conn: PooledConnection) -> None:
        """Return a connection to its pool, or discard it if it is invalid or outdated."""
        pool: _DataSourcePool = conn.pool
        with self._lock:
            if conn.state in (ConnectionState.IDLE, ConnectionState.CLOSED):
                logger.warning(f"Ignoring repeated release of connection to data source '{conn.data_source_id}'")
                return
            discard = conn.state == ConnectionState.INVALID or pool.retired or self._closed
            conn.state = ConnectionState.CLOSED if discard else ConnectionState.IDLE
            conn.last_used_at = pool.last_used_at = self._clock()
        conn.driver.checkin(conn.handle, invalidate=discard)
        if discard:
            logger.debug(f"Discarded connection to data source '{conn.data_source_id}'")
        self._unreserve(pool)

    def submit(self, conn: PooledConnection, fn: Callable[..., Any], *args: Any) -> Future:
        """Run ``fn(*args)`` on a worker thread of the connection's data source."""
        return conn.pool.workers.submit(fn, *args)

    def release_when_done(self, conn: PooledConnection, future: Future) -> None:
        """Release once a still-running statement finishes; the handle is never shared meanwhile."""
        future.add_done_callback(lambda _: self.release(conn))

    @contextmanager
    def connection(self, data_source: DataSource) -> Iterator[PooledConnection]:
        """Acquire a connection for the duration of a block; errors taint it."""
        conn = self.acquire(data_source)
        try:
            yield conn
        except Exception:
            conn.mark_invalid()
            raise
        finally:
            self.release(conn)

    # -- invalidation and eviction -----------------------------------------------

    def invalidate_all(self, data_source_id: str) -> None:
        """Close and discard every connection of a data source."""
        with self._lock:
            pool = self._pools.pop(data_source_id, None)
        if pool is not None:
            logger.info(f"Invalidating all connections of data source '{data_source_id}'")
            self._retire(pool)

    def sweep_idle(self) -> int:
        """Dispose pools unused for longer than the idle timeout. Returns how many connections were closed."""
        now = self._clock()
        expired: List[_DataSourcePool] = []
        with self._lock:
            for data_source_id, pool in list(self._pools.items()):
                if pool.in_use == 0 and now - pool.last_used_at > self.idle_timeout_s:
                    expired.append(self._pools.pop(data_source_id))
        closed = 0
        for pool in expired:
            closed += pool.checked_in()
            self._retire(pool)
        if closed:
            logger.info(f"Closed {closed} idle connection(s) of {len(expired)} data source(s)")
        return closed

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.sweep_interval_s):
            try:
                self.sweep_idle()
            except Exception as e:
                logger.error(f"Idle connection sweep failed: {e}")

    def start(self) -> None:
        """Start the background idle sweeper."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="querygate-pool-sweeper", daemon=True)
        self._sweeper.start()
        logger.debug(f"Idle connection sweeper started (interval {self.sweep_interval_s}s)")

    def close_all(self) -> None:
        """Close every pooled connection of every data source."""
        with self._lock:
            pools = list(self._pools.values())
            self._pools.clear()
        for pool in pools:
            self._retire(pool)

    def shutdown(self) -> None:
        """Stop the sweeper and close everything; later acquisitions fail."""
        with self._lock:
            self._closed = True
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None
        self.close_all()
        logger.info("Connection manager shut down")

    # -- reporting ---------------------------------------------------------------

    def stats(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            pools = [(pool, pool.in_use) for pool in self._pools.values()]
        report = {}
        for pool, in_use in pools:
            idle = pool.checked_in()
            report[pool.data_source_id] = {
                "size": idle + pool.checked_out(),
                "max_size": pool.max_size,
                "idle": idle,
                "in_use": in_use,
                "config_fingerprint": pool.fingerprint,
            }
        return report

    def active_data_sources(self) -> List[str]:
        """Ids of data sources that currently hold at least one connection."""
        return [data_source_id for data_source_id, pool in self.stats().items() if pool["size"] > 0]

    def test_connection(self, data_source: DataSource) -> Dict[str, Any]:
        """Open a throwaway session, ping it and count tables. Never touches the pool."""
        driver = self.drivers.get(data_source.engine_kind)
        started = time.perf_counter()
        handle = None
        try:
            handle = driver.open(data_source.connection_config, self.read_only)
            if not driver.ping(handle):
                return {"success": False, "message": "Connection opened but health check failed",
                        "latency_ms": round((time.perf_counter() - started) * 1000, 2), "table_count": None}
            table_count = driver.count_tables(handle, data_source.connection_config)
            driver.rollback(handle)
            latency_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.info(f"Connection test for data source '{data_source.id}' succeeded in {latency_ms}ms")
            return {
                "success": True,
                "message": f"Connected to {data_source.engine_kind.value} data source '{data_source.name}'",
                "latency_ms": latency_ms,
                "table_count": table_count,
            }
        except GatewayError as e:
            message = e.message
        except Exception as e:
            message = f"{type(e).__name__}: {redact_error_message(str(e))}"
        finally:
            if handle is not None:
                driver.close(handle)
        logger.warning(f"Connection test for data source '{data_source.id}' failed: {message}")
        return {"success": False, "message": message,
                "latency_ms": round((time.perf_counter() - started) * 1000, 2), "table_count": None}
