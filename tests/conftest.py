"""Shared fixtures: SQLite-backed executors and a recording PostgreSQL fake."""

import sqlite3
import threading

import pytest
import structlog

from dbexplorer.adapters import PostgreSQLAdapter, SQLiteAdapter
from dbexplorer.contracts import QueryResult, TableReference
from dbexplorer.executor import QueryExecutor
from dbexplorer.table_data import TableDataProvider

PEOPLE = TableReference(schema_name="main", table_name="people")


def _create_people(path):
    conn = sqlite3.connect(path)
    with conn:
        conn.execute(
            'CREATE TABLE people (id INTEGER PRIMARY KEY, name TEXT NOT NULL, "user""name" TEXT)'
        )
        conn.executemany(
            'INSERT INTO people (id, name, "user""name") VALUES (?, ?, ?)',
            [(1, "ada", "a"), (2, "brian", "b"), (3, "cleo", None)],
        )
    conn.close()


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    structlog.reset_defaults()


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "explorer.db"
    _create_people(path)
    return str(path)


@pytest.fixture
def executor(db_path) -> QueryExecutor:
    return QueryExecutor(SQLiteAdapter(), {"database": db_path})


@pytest.fixture
def provider(executor) -> TableDataProvider:
    return TableDataProvider(executor)


@pytest.fixture
def people() -> TableReference:
    return PEOPLE


class RecordingTransaction:
    def __init__(self, owner):
        self.owner = owner
        self.committed = False
        self.rolled_back = False
        self.released = False

    def execute(self, sql, params=None):
        return self.owner.execute(sql, params)

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True

    def release(self):
        self.released = True


class RecordingExecutor:
    """Stands in for QueryExecutor; answers from a list of responders."""

    def __init__(self, adapter=None):
        self.adapter = adapter or PostgreSQLAdapter()
        self.calls = []
        self.responders = []
        self.transactions = []
        self._lock = threading.Lock()

    def respond(self, match, result):
        """Answer statements containing ``match`` with a result or exception."""
        self.responders.append((match, result))

    def execute(self, sql, params=None):
        with self._lock:
            self.calls.append((sql, tuple(params) if params else ()))
        for match, result in self.responders:
            if match in sql:
                if callable(result):
                    result = result(sql, params)
                if isinstance(result, Exception):
                    raise result
                return result
        return QueryResult(row_count=1)

    def begin(self):
        transaction = RecordingTransaction(self)
        self.transactions.append(transaction)
        return transaction


@pytest.fixture
def recording_executor() -> RecordingExecutor:
    return RecordingExecutor()
