"""Query execution: validate, bound, run, normalize, audit."""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, List, Optional

from .audit import AuditLogger, LoggingAuditLogger
from .config import GatewayConfig
from .connection_manager import ConnectionManager
from .datasource_registry import DataSourceRegistry
from .drivers import RawResult
from .errors import (
    ForbiddenOperationError,
    GatewayError,
    InvalidInputError,
    QueryTimeoutError,
    ValidationError,
)
from .models import (
    AuditRecord,
    DataSource,
    ExecutionRequest,
    ExecutionResult,
    PooledConnection,
    ValidationResult,
)
from .normalization import normalize_result
from .row_limits import LimitPlan, plan_row_limit
from .security import SecurityLevel, audit_log_security_event
from .sql_validator import bind_name, validate
from .utils import sql_fingerprint, truncate_sql

logger = logging.getLogger(__name__)


def bind_parameters(supplied: Optional[Any], expected: List[str]) -> Dict[str, Any]:
    """Match caller-supplied bind values against the placeholders found in the SQL.

    Positional placeholders (named ``"1"``, ``"2"``, ...) take a list; named
    placeholders take a dict (or a list in placeholder order). The result maps
    each bind name of the planned statement to its value.

    Raises:
        InvalidInputError: Values are missing, superfluous or of the wrong shape
    """
    if not expected:
        if supplied:
            raise InvalidInputError("Parameters were supplied but the statement has no placeholders")
        return {}
    if supplied is None:
        raise InvalidInputError(
            f"Statement expects {len(expected)} bind parameter(s): {', '.join(expected)}",
            {"parameters": expected},
        )

    positional = all(name.isdigit() for name in expected)
    if isinstance(supplied, (list, tuple)):
        if len(supplied) != len(expected):
            raise InvalidInputError(
                f"Statement expects {len(expected)} bind parameter(s), got {len(supplied)}",
                {"parameters": expected},
            )
        return {bind_name(name): value for name, value in zip(expected, supplied)}
    if isinstance(supplied, dict):
        if positional:
            raise InvalidInputError("Positional placeholders require a list of parameter values")
        missing = [name for name in expected if name not in supplied]
        if missing:
            raise InvalidInputError(
                f"Missing bind parameter(s): {', '.join(missing)}", {"parameters": expected}
            )
        return {bind_name(name): supplied[name] for name in expected}
    raise InvalidInputError("Parameters must be a list or an object")


class QueryExecutor:
    """Runs caller SQL against a data source under the gateway's row, time and read-only policy."""

    def __init__(
        self,
        registry: DataSourceRegistry,
        connections: ConnectionManager,
        config: Optional[GatewayConfig] = None,
        audit_logger: Optional[AuditLogger] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.registry = registry
        self.connections = connections
        self.config = config or GatewayConfig()
        self.audit_logger = audit_logger or LoggingAuditLogger()
        # None runs statements on the data source's own workers
        self._executor = executor

    def effective_limit(self, requested: Optional[int]) -> int:
        return min(requested or self.config.default_limit, self.config.max_limit)

    def effective_timeout_ms(self, requested: Optional[int]) -> int:
        return min(requested or self.config.query_timeout_ms, self.config.max_query_timeout_ms)

    def _check_input(self, request: ExecutionRequest) -> None:
        if not isinstance(request.sql, str) or not request.sql.strip():
            raise InvalidInputError("SQL text is empty")
        if not request.data_source_id:
            raise InvalidInputError("data_source_id is required")
        if request.limit is not None and request.limit < 1:
            raise InvalidInputError(f"limit must be a positive integer, got {request.limit}")
        if request.offset is None or request.offset < 0:
            raise InvalidInputError(f"offset must not be negative, got {request.offset}")
        if request.timeout_ms is not None and request.timeout_ms < 1:
            raise InvalidInputError(f"timeout_ms must be a positive integer, got {request.timeout_ms}")

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Execute one statement.

        Raises:
            InvalidInputError: Malformed request (not audited)
            DataSourceNotFoundError: Unknown or inactive data source
            ValidationError: SQL failed validation; carries the error list
            ForbiddenOperationError: Mutating statement in read-only mode
            DataSourceConnectionError: Engine unreachable or pool exhausted
            QueryTimeoutError: Statement exceeded its timeout
            QueryExecutionError: Engine rejected the statement
        """
        self._check_input(request)

        started = time.perf_counter()
        outcome = "failure"
        error_code: Optional[str] = None
        is_read_only: Optional[bool] = None
        row_count: Optional[int] = None
        try:
            data_source = self.registry.get(request.data_source_id)
            driver = self.connections.drivers.get(data_source.engine_kind)

            # Always re-validate the exact text that is about to run
            validation = validate(request.sql, driver.sql_dialect)
            if not validation.is_valid:
                raise ValidationError(
                    "SQL validation failed", [error.to_dict() for error in validation.errors]
                )
            is_read_only = validation.is_read_only

            if self.config.read_only and not is_read_only:
                audit_log_security_event(
                    "read_only_violation",
                    {
                        "actor": request.actor,
                        "data_source_id": data_source.id,
                        "statement_type": validation.statement_type,
                        "sql_hash": sql_fingerprint(request.sql),
                    },
                    SecurityLevel.HIGH,
                )
                raise ForbiddenOperationError(
                    f"{validation.statement_type or 'This'} statement is not allowed: the gateway is read-only",
                    {"statement_type": validation.statement_type},
                )

            result = self._run(data_source, request, validation)
            row_count = result.row_count
            outcome = "success"
            return result
        except GatewayError as e:
            error_code = e.code
            raise
        finally:
            if outcome == "failure" and error_code is None:
                error_code = "INTERNAL_ERROR"
            self.audit_logger.record(AuditRecord(
                actor=request.actor,
                action="execute",
                data_source_id=request.data_source_id,
                sql_hash=sql_fingerprint(request.sql),
                is_read_only=is_read_only,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                outcome=outcome,
                error_code=error_code,
                row_count=row_count,
            ))

    def _run(self, data_source: DataSource, request: ExecutionRequest,
             validation: ValidationResult) -> ExecutionResult:
        warnings: List[str] = []
        effective_limit = self.effective_limit(request.limit)
        if request.limit and request.limit > self.config.max_limit:
            warnings.append(f"Requested limit {request.limit} exceeds the server maximum; capped at {effective_limit}")
        timeout_ms = self.effective_timeout_ms(request.timeout_ms)
        if request.timeout_ms and request.timeout_ms > self.config.max_query_timeout_ms:
            warnings.append(f"Requested timeout {request.timeout_ms}ms capped at {timeout_ms}ms")

        parameters = bind_parameters(request.parameters, validation.parameters)
        driver = self.connections.drivers.get(data_source.engine_kind)
        plan = plan_row_limit(request.sql, effective_limit, request.offset or 0, driver.sql_dialect)
        commit = not self.config.read_only and not validation.is_read_only

        logger.debug(f"Executing on '{data_source.id}': {truncate_sql(plan.sql)}")
        conn = self.connections.acquire(data_source)
        started = time.monotonic()
        future = self._submit(conn, self._run_statement, conn, plan, parameters, timeout_ms, commit)
        try:
            raw = future.result(timeout=timeout_ms / 1000.0)
        except FutureTimeoutError:
            elapsed_ms = (time.monotonic() - started) * 1000
            if future.cancel():
                # Never started; the connection was not touched
                self.connections.release(conn)
            else:
                conn.mark_invalid()
                self._cancel(conn)
                # The worker still holds the handle; it is closed once the call returns
                self.connections.release_when_done(conn, future)
            logger.warning(f"Statement on data source '{data_source.id}' timed out after {elapsed_ms:.0f}ms")
            raise QueryTimeoutError(
                f"Query on data source '{data_source.id}' exceeded the {timeout_ms}ms timeout",
                data_source.id,
                elapsed_ms,
            ) from None
        except Exception as e:
            elapsed_ms = (time.monotonic() - started) * 1000
            conn.mark_invalid()
            self.connections.release(conn)
            if isinstance(e, GatewayError):
                raise
            error = driver.translate_error(e, data_source.id, elapsed_ms)
            logger.warning(f"Statement on data source '{data_source.id}' failed: {error.message}")
            raise error from None
        self.connections.release(conn)

        execution_time_ms = round((time.monotonic() - started) * 1000, 2)
        result = self._build_result(raw, plan, execution_time_ms, warnings)
        logger.info(
            f"Executed {validation.statement_type} on '{data_source.id}': {result.row_count} rows "
            f"in {execution_time_ms}ms (limit {effective_limit}, truncated={result.truncated})"
        )
        return result

    def _submit(self, conn: PooledConnection, fn: Callable[..., Any], *args: Any) -> Future:
        if self._executor is not None:
            return self._executor.submit(fn, *args)
        return self.connections.submit(conn, fn, *args)

    @staticmethod
    def _run_statement(conn: PooledConnection, plan: LimitPlan, parameters: Dict[str, Any],
                       timeout_ms: int, commit: bool) -> RawResult:
        driver = conn.driver
        driver.set_statement_timeout(conn.handle, timeout_ms)
        raw = driver.execute(conn.handle, plan.sql, parameters, max_rows=plan.max_rows)
        if commit:
            driver.commit(conn.handle)
        else:
            driver.rollback(conn.handle)
        return raw

    def _cancel(self, conn: PooledConnection) -> None:
        try:
            if not conn.driver.cancel(conn.handle):
                logger.debug(f"Engine of data source '{conn.data_source_id}' does not support cancellation")
        except Exception as e:
            logger.warning(f"Could not cancel statement on data source '{conn.data_source_id}': {e}")

    @staticmethod
    def _build_result(raw: RawResult, plan: LimitPlan, execution_time_ms: float,
                      warnings: List[str]) -> ExecutionResult:
        if not raw.returns_rows:
            return ExecutionResult(
                columns=[],
                rows=[],
                row_count=0,
                truncated=False,
                execution_time_ms=execution_time_ms,
                effective_limit=plan.limit,
                affected_rows=raw.affected_rows,
                warnings=warnings,
            )

        page = list(raw.rows[plan.skip_rows:])
        # One row beyond the limit is fetched to detect truncation
        truncated = len(page) > plan.limit
        page = page[:plan.limit]
        columns, rows = normalize_result(raw.column_names, raw.native_types, page)
        if truncated:
            warnings.append(f"Result truncated to {plan.limit} rows")
        return ExecutionResult(
            columns=columns,
            rows=rows,
            row_count=len(rows),
            truncated=truncated,
            execution_time_ms=execution_time_ms,
            effective_limit=plan.limit,
            warnings=warnings,
        )
