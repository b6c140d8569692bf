"""Query execution against a database through its adapter.

Each call borrows its own DB-API connection and closes it afterwards.
Transactions hold one connection until released, and long-running queries
can be cancelled out of band through the backend id captured on connect.
"""

import threading
import time
from concurrent.futures import Future
from typing import Any, Dict, Optional, Sequence

import structlog

from .adapters import connect_from_info
from .contracts import QueryErrorInfo, QueryExecutionResult, QueryResult
from .sql_text import scan

DEFAULT_ROW_LIMIT = 10000
CANCELLED_MESSAGE = "Query cancelled."


def _run_cursor(conn: Any, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
    cursor = conn.cursor()
    try:
        if params:
            cursor.execute(sql, tuple(params))
        else:
            cursor.execute(sql)
        if cursor.description:
            columns = tuple(desc[0] for desc in cursor.description)
            rows = tuple(tuple(row) for row in cursor.fetchall())
        else:
            columns = ()
            rows = ()
        row_count = cursor.rowcount if cursor.rowcount is not None and cursor.rowcount >= 0 else None
        return QueryResult(columns=columns, rows=rows, row_count=row_count)
    finally:
        cursor.close()


def _close_quietly(conn: Any, logger: Any) -> None:
    try:
        conn.close()
    except Exception as exc:
        logger.debug("connection_close_failed", error=str(exc))


def resolve_row_limit(row_limit: Optional[int]) -> int:
    """Positive integer row limit, falling back to the default."""
    if isinstance(row_limit, bool) or not isinstance(row_limit, (int, float)):
        return DEFAULT_ROW_LIMIT
    if row_limit != row_limit or row_limit <= 0 or row_limit == float("inf"):
        return DEFAULT_ROW_LIMIT
    return int(row_limit)


class Transaction:
    """One connection held open for a unit of work."""

    def __init__(self, conn: Any, logger: Any) -> None:
        self._conn = conn
        self._logger = logger
        self._released = False

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        return _run_cursor(self._conn, sql, params)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        _close_quietly(self._conn, self._logger)


class QueryExecutor:
    """Runs SQL for one connection profile."""

    def __init__(
        self,
        adapter: Any,
        conn_info: Dict[str, Any],
        logger: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        self.adapter = adapter
        self.conn_info = conn_info
        self._logger = logger or structlog.get_logger(__name__)
        self._active: Dict[Any, Any] = {}
        self._active_lock = threading.Lock()

    def connect(self) -> Any:
        return connect_from_info(self.adapter, self.conn_info)

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        """Run one statement on a short-lived connection and commit it."""
        conn = self.connect()
        try:
            result = _run_cursor(conn, sql, params)
            conn.commit()
            return result
        finally:
            _close_quietly(conn, self._logger)

    def server_version(self) -> Optional[str]:
        """Version reported by the server, or None when it cannot be read."""
        conn = self.connect()
        try:
            return self.adapter.get_version(conn)
        finally:
            _close_quietly(conn, self._logger)

    def begin(self) -> Transaction:
        """Open a transaction; the caller must release it."""
        return Transaction(self.connect(), self._logger)

    def run(self, sql: str, row_limit: Optional[int] = None) -> QueryExecutionResult:
        """Run ad-hoc SQL; failures come back in the result, not as exceptions."""
        return self.run_cancelable(sql, row_limit).result()

    def run_cancelable(self, sql: str, row_limit: Optional[int] = None) -> "CancelableQuery":
        query = CancelableQuery(self, sql, resolve_row_limit(row_limit), self._logger)
        query.start()
        return query

    def cancel(self, backend_id: Any) -> bool:
        """Ask the server to cancel the statement running on a backend."""
        if backend_id is None:
            return False
        self._logger.info("query_cancel_requested", backend_id=backend_id)
        try:
            return bool(self.adapter.cancel_backend(self, backend_id))
        except Exception as exc:
            self._logger.warning("query_cancel_failed", backend_id=backend_id, error=str(exc))
            return False

    def active_connection(self, backend_id: Any) -> Any:
        with self._active_lock:
            return self._active.get(backend_id)

    def _register(self, backend_id: Any, conn: Any) -> None:
        with self._active_lock:
            self._active[backend_id] = conn

    def _unregister(self, backend_id: Any) -> None:
        with self._active_lock:
            self._active.pop(backend_id, None)


class CancelableQuery:
    """Background execution of one ad-hoc query."""

    def __init__(self, executor: QueryExecutor, sql: str, row_limit: int, logger: Any) -> None:
        self.sql = sql
        self.row_limit = row_limit
        self._executor = executor
        self._logger = logger
        self._future: "Future[QueryExecutionResult]" = Future()
        self._connected = threading.Event()
        self._backend_id = None
        self._cancelled = False

    @property
    def backend_id(self) -> Any:
        return self._backend_id

    def start(self) -> None:
        thread = threading.Thread(target=self._run, daemon=True)
        thread.start()

    def result(self, timeout: Optional[float] = None) -> QueryExecutionResult:
        return self._future.result(timeout)

    def done(self) -> bool:
        return self._future.done()

    def cancel(self, timeout: Optional[float] = 5.0) -> bool:
        """Flag the query as cancelled and ask the server to stop it."""
        self._cancelled = True
        if not self._connected.wait(timeout):
            return False
        if self._future.done():
            return False
        return self._executor.cancel(self._backend_id)

    def _statements(self):
        """Statements to send, one per call when the driver takes only one."""
        if self._executor.adapter.runs_multiple_statements():
            return [self.sql]
        return [statement.text for statement in scan(self.sql)] or [self.sql]

    def _run(self) -> None:
        start = time.monotonic()
        conn = None
        adapter = self._executor.adapter
        try:
            conn = self._executor.connect()
            try:
                self._backend_id = adapter.get_backend_id(conn)
            except Exception as exc:
                self._logger.debug("backend_id_unavailable", error=str(exc))
            if self._backend_id is not None:
                self._executor._register(self._backend_id, conn)
            self._connected.set()

            result = None
            for sql in self._statements():
                result = _run_cursor(conn, sql)
            conn.commit()
            rows = result.rows
            truncated = len(rows) > self.row_limit
            if truncated:
                rows = rows[:self.row_limit]
            self._future.set_result(QueryExecutionResult(
                sql=self.sql,
                columns=result.columns,
                rows=rows,
                row_count=result.row_count,
                duration_ms=int((time.monotonic() - start) * 1000),
                truncated=truncated,
                cancelled=False,
            ))
        except Exception as exc:
            self._future.set_result(self._failure(exc, conn, start))
        finally:
            self._connected.set()
            if self._backend_id is not None:
                self._executor._unregister(self._backend_id)
            if conn is not None:
                _close_quietly(conn, self._logger)

    def _failure(self, exc: Exception, conn: Any, start: float) -> QueryExecutionResult:
        adapter = self._executor.adapter
        if conn is not None:
            try:
                conn.rollback()
            except Exception as rollback_exc:
                self._logger.debug("rollback_failed", error=str(rollback_exc))
        info = adapter.error_info(exc)
        cancelled = self._cancelled or adapter.is_cancel_error(exc)
        if cancelled:
            info = QueryErrorInfo(
                message=CANCELLED_MESSAGE, detail=info.detail, code=info.code, position=info.position
            )
            self._logger.info("query_cancelled", sql=self.sql[:200])
        else:
            self._logger.warning("query_failed", sql=self.sql[:200], error=info.message)
        return QueryExecutionResult(
            sql=self.sql,
            duration_ms=int((time.monotonic() - start) * 1000),
            cancelled=cancelled,
            error=info,
        )
