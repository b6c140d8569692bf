"""Database adapters for different database types.

An adapter knows how to open a DB-API connection for its engine and how to
speak the engine's SQL dialect: identifier quoting, parameter markers, the
physical row locator used to address rows for editing, and the catalog
queries behind metadata and schema browsing.
"""

import re
from abc import ABC, abstractmethod

import structlog

from .contracts import QueryErrorInfo, Statement
from .errors import DBExplorerError, UnknownDatabaseType

logger = structlog.get_logger(__name__)


class DBAdapter(ABC):
    """Base class for database adapters."""

    db_type = "base"
    display_name = "Base"
    default_port = None
    requires_database = False
    required_module = None  # Module name to import for this adapter
    install_hint = None  # pip install hint for missing dependency
    quote_char = '"'

    @classmethod
    def is_available(cls):
        """Check if the required module for this adapter is installed."""
        if cls.required_module is None:
            return True
        try:
            __import__(cls.required_module)
            return True
        except ImportError:
            return False

    @abstractmethod
    def connect(self, host, user, password, port=None, database=None):
        """Connect to the database and return a connection object."""

    def get_version(self, conn):
        """Get the database version string."""
        try:
            cursor = conn.cursor()
            cursor.execute(self.get_version_query())
            row = cursor.fetchone()
            cursor.close()
            if row:
                return str(row[0])
        except Exception as exc:
            logger.debug("version_lookup_failed", db_type=self.db_type, error=str(exc))
        return None

    def get_version_query(self):
        """Get the SQL to retrieve database version."""
        return "SELECT VERSION()"

    # Dialect

    def quote_identifier(self, identifier):
        """Quote an identifier, doubling any embedded quote characters."""
        q = self.quote_char
        return f"{q}{identifier.replace(q, q + q)}{q}"

    def qualified_name(self, table):
        """Schema-qualified, quoted name of a TableReference."""
        return f"{self.quote_identifier(table.schema_name)}.{self.quote_identifier(table.table_name)}"

    def parameter_placeholder(self, position):
        """Marker for the 1-based bound parameter at ``position``."""
        return "%s"

    def supports_row_locator(self):
        """Whether rows can be addressed by their physical position."""
        return False

    def table_has_row_locator(self, executor, table):
        """Whether rows of this particular table carry a row locator."""
        return self.supports_row_locator()

    def fallback_order(self):
        """Ordering that keeps pages stable when there is no row locator."""
        return "1"

    def row_locator_expression(self):
        """Expression selecting the row locator as text."""
        return None

    def row_locator_order(self):
        """Expression ordering rows by physical position."""
        return None

    def row_locator_condition(self, placeholder):
        """Predicate matching a row by a locator bound at ``placeholder``."""
        return None

    def runs_multiple_statements(self):
        """Whether one driver call accepts several statements."""
        return False

    def add_pagination(self, sql, limit, offset=0):
        """Add pagination to a SQL statement. Default uses LIMIT/OFFSET."""
        sql_stripped = sql.strip()
        while sql_stripped.endswith(';'):
            sql_stripped = sql_stripped[:-1].strip()

        if offset > 0:
            return f"{sql_stripped} LIMIT {limit} OFFSET {offset}"
        return f"{sql_stripped} LIMIT {limit}"

    # Catalog queries

    def metadata_params(self, table):
        """Bound parameters for the column metadata queries."""
        return (table.schema_name, table.table_name)

    @abstractmethod
    def column_types_query(self):
        """SQL returning (column_name, column_type) in ordinal order."""

    def enum_values_query(self):
        """SQL returning (column_name, enum_value), or None without enum types."""
        return None

    def enum_rows(self, rows):
        """Turn rows of the enum query into (column_name, label) pairs."""
        return [(row[0], row[1]) for row in rows]

    @abstractmethod
    def schemas_query(self):
        """Statement listing user schemas."""

    @abstractmethod
    def tables_query(self, schema_name):
        """Statement listing base tables of a schema."""

    @abstractmethod
    def columns_query(self, table):
        """Statement returning (column_name, data_type, is_nullable) rows."""

    def drop_schema_sql(self, schema_name):
        return f"DROP SCHEMA {self.quote_identifier(schema_name)} CASCADE"

    def drop_table_sql(self, table):
        return f"DROP TABLE {self.qualified_name(table)}"

    def truncate_table_sql(self, table):
        return f"TRUNCATE TABLE {self.qualified_name(table)}"

    # Driver

    def get_backend_id(self, conn):
        """Identifier of the server process behind a connection, if any."""
        return None

    def cancel_backend(self, executor, backend_id):
        """Ask the server to cancel whatever the backend is running."""
        return False

    def is_cancel_error(self, exc):
        """Check whether a driver exception means the query was cancelled."""
        return False

    def error_info(self, exc):
        """Extract message/detail/code/position from a driver exception."""
        message = str(exc).strip() or "Unknown error"
        return QueryErrorInfo(message=message)


class PostgreSQLAdapter(DBAdapter):
    """Adapter for PostgreSQL."""

    db_type = "postgresql"
    display_name = "PostgreSQL"
    default_port = 5432
    requires_database = True
    required_module = "psycopg2"
    install_hint = "pip install dbexplorer[postgresql]"

    CANCELED_SQLSTATE = "57014"

    def connect(self, host, user, password, port=None, database=None):
        import psycopg2
        return psycopg2.connect(
            host=host,
            user=user,
            password=password,
            dbname=database or 'postgres',
            port=port or 5432,
            application_name="dbexplorer",
        )

    def get_version_query(self):
        return "SELECT version()"

    def get_version(self, conn):
        version_str = super().get_version(conn)
        if version_str and 'PostgreSQL' in version_str:
            # Extract just version number from full string
            parts = version_str.split()
            for i, p in enumerate(parts):
                if p == 'PostgreSQL' and i + 1 < len(parts):
                    return parts[i + 1].rstrip(',')
        return version_str[:30] if version_str else None

    def runs_multiple_statements(self):
        return True

    def supports_row_locator(self):
        return True

    def row_locator_expression(self):
        return "ctid::text"

    def row_locator_order(self):
        return "ctid"

    def row_locator_condition(self, placeholder):
        return f"ctid = {placeholder}::tid"

    def column_types_query(self):
        return """
            SELECT a.attname AS column_name,
                   pg_catalog.format_type(a.atttypid, a.atttypmod) AS column_type
            FROM pg_catalog.pg_attribute a
            JOIN pg_catalog.pg_class c ON c.oid = a.attrelid
            JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
            WHERE n.nspname = %s
              AND c.relname = %s
              AND a.attnum > 0
              AND NOT a.attisdropped
            ORDER BY a.attnum
        """

    def enum_values_query(self):
        # Domains over enum types resolve to their base enum.
        return """
            SELECT a.attname AS column_name, e.enumlabel AS enum_value
            FROM pg_catalog.pg_attribute a
            JOIN pg_catalog.pg_class c ON c.oid = a.attrelid
            JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
            JOIN pg_catalog.pg_type t ON t.oid = a.atttypid
            JOIN pg_catalog.pg_type et ON et.oid = CASE
                WHEN t.typtype = 'd' THEN t.typbasetype
                ELSE t.oid
            END
            JOIN pg_catalog.pg_enum e ON e.enumtypid = et.oid
            WHERE n.nspname = %s
              AND c.relname = %s
              AND a.attnum > 0
              AND NOT a.attisdropped
              AND et.typtype = 'e'
            ORDER BY a.attnum, e.enumsortorder
        """

    def schemas_query(self):
        return Statement(sql="""
            SELECT nspname
            FROM pg_catalog.pg_namespace
            WHERE nspname NOT LIKE 'pg_%' AND nspname <> 'information_schema'
            ORDER BY nspname
        """)

    def tables_query(self, schema_name):
        return Statement(sql="""
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s AND table_type = 'BASE TABLE'
            ORDER BY table_name
        """, params=(schema_name,))

    def columns_query(self, table):
        return Statement(sql="""
            SELECT column_name, data_type, is_nullable
            FROM information_schema.columns
            WHERE table_schema = %s AND table_name = %s
            ORDER BY ordinal_position
        """, params=(table.schema_name, table.table_name))

    def get_backend_id(self, conn):
        return conn.get_backend_pid()

    def cancel_backend(self, executor, backend_id):
        executor.execute("SELECT pg_cancel_backend(%s)", (backend_id,))
        return True

    def is_cancel_error(self, exc):
        return getattr(exc, "pgcode", None) == self.CANCELED_SQLSTATE

    def error_info(self, exc):
        diag = getattr(exc, "diag", None)
        message = getattr(diag, "message_primary", None) or str(exc).strip() or "Unknown error"
        return QueryErrorInfo(
            message=message,
            detail=getattr(diag, "message_detail", None),
            code=getattr(exc, "pgcode", None),
            position=getattr(diag, "statement_position", None),
        )


class MySQLAdapter(DBAdapter):
    """Adapter for MySQL.

    InnoDB exposes no physical row position, so rows loaded from MySQL carry
    no locator: inserts can be saved, updates and deletes cannot.
    """

    db_type = "mysql"
    display_name = "MySQL"
    default_port = 3306
    requires_database = True
    required_module = "mysql.connector"
    install_hint = "pip install dbexplorer[mysql]"
    quote_char = "`"

    QUERY_INTERRUPTED = 1317
    _ENUM_LABEL = re.compile(r"'((?:[^']|'')*)'")

    def connect(self, host, user, password, port=None, database=None):
        import mysql.connector
        config = {
            'host': host,
            'user': user,
            'password': password,
            'database': database or '',
        }
        if port:
            config['port'] = int(port)
        return mysql.connector.connect(**config)

    def column_types_query(self):
        return """
            SELECT COLUMN_NAME, COLUMN_TYPE
            FROM INFORMATION_SCHEMA.COLUMNS
            WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
            ORDER BY ORDINAL_POSITION
        """

    def enum_values_query(self):
        return """
            SELECT COLUMN_NAME, COLUMN_TYPE
            FROM INFORMATION_SCHEMA.COLUMNS
            WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s AND DATA_TYPE = 'enum'
            ORDER BY ORDINAL_POSITION
        """

    def enum_rows(self, rows):
        """Labels come packed in the column type, e.g. ``enum('a','b')``."""
        pairs = []
        for column_name, column_type in rows:
            if isinstance(column_type, (bytes, bytearray)):
                column_type = column_type.decode("utf-8")
            for label in self._ENUM_LABEL.findall(column_type or ""):
                pairs.append((column_name, label.replace("''", "'")))
        return pairs

    def schemas_query(self):
        return Statement(sql="""
            SELECT SCHEMA_NAME
            FROM INFORMATION_SCHEMA.SCHEMATA
            WHERE SCHEMA_NAME NOT IN ('information_schema', 'mysql', 'performance_schema', 'sys')
            ORDER BY SCHEMA_NAME
        """)

    def tables_query(self, schema_name):
        return Statement(sql="""
            SELECT TABLE_NAME
            FROM INFORMATION_SCHEMA.TABLES
            WHERE TABLE_SCHEMA = %s AND TABLE_TYPE = 'BASE TABLE'
            ORDER BY TABLE_NAME
        """, params=(schema_name,))

    def columns_query(self, table):
        return Statement(sql="""
            SELECT COLUMN_NAME, DATA_TYPE, IS_NULLABLE
            FROM INFORMATION_SCHEMA.COLUMNS
            WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
            ORDER BY ORDINAL_POSITION
        """, params=(table.schema_name, table.table_name))

    def drop_schema_sql(self, schema_name):
        return f"DROP SCHEMA {self.quote_identifier(schema_name)}"

    def get_backend_id(self, conn):
        return conn.connection_id

    def cancel_backend(self, executor, backend_id):
        executor.execute(f"KILL QUERY {int(backend_id)}")
        return True

    def is_cancel_error(self, exc):
        return getattr(exc, "errno", None) == self.QUERY_INTERRUPTED

    def error_info(self, exc):
        errno = getattr(exc, "errno", None)
        return QueryErrorInfo(
            message=getattr(exc, "msg", None) or str(exc).strip() or "Unknown error",
            detail=getattr(exc, "sqlstate", None),
            code=str(errno) if errno is not None else None,
        )


class SQLiteAdapter(DBAdapter):
    """Adapter for SQLite database files.

    ``database`` is the file path. Every operation opens its own connection,
    so ``:memory:`` databases do not survive between calls.
    """

    db_type = "sqlite"
    display_name = "SQLite"
    requires_database = True
    required_module = "sqlite3"

    _WITHOUT_ROWID = re.compile(r"\bWITHOUT\s+ROWID\b", re.IGNORECASE)

    def connect(self, host=None, user=None, password=None, port=None, database=None):
        import sqlite3
        if not database:
            raise DBExplorerError("SQLite needs a database file path")
        return sqlite3.connect(database, check_same_thread=False)

    def get_version_query(self):
        return "SELECT sqlite_version()"

    def parameter_placeholder(self, position):
        return "?"

    def supports_row_locator(self):
        return True

    def table_has_row_locator(self, executor, table):
        """Tables declared WITHOUT ROWID load read-only."""
        result = executor.execute(
            f"SELECT sql FROM {self.quote_identifier(table.schema_name)}.sqlite_master "
            "WHERE type = 'table' AND name = ?",
            (table.table_name,),
        )
        if not result.rows or not isinstance(result.rows[0][0], str):
            return True
        create_sql = result.rows[0][0]
        # table options follow the closing parenthesis of the column list
        return self._WITHOUT_ROWID.search(create_sql[create_sql.rfind(")"):]) is None

    def row_locator_expression(self):
        return "CAST(rowid AS TEXT)"

    def row_locator_order(self):
        return "rowid"

    def row_locator_condition(self, placeholder):
        return f"rowid = CAST({placeholder} AS INTEGER)"

    def metadata_params(self, table):
        return (table.table_name, table.schema_name)

    def column_types_query(self):
        return "SELECT name, type FROM pragma_table_info(?, ?) ORDER BY cid"

    def schemas_query(self):
        return Statement(sql="SELECT name FROM pragma_database_list WHERE name <> 'temp' ORDER BY seq")

    def tables_query(self, schema_name):
        return Statement(sql=f"""
            SELECT name
            FROM {self.quote_identifier(schema_name)}.sqlite_master
            WHERE type = 'table' AND name NOT LIKE 'sqlite_%'
            ORDER BY name
        """)

    def columns_query(self, table):
        return Statement(sql="""
            SELECT name, type, CASE WHEN "notnull" = 0 THEN 'YES' ELSE 'NO' END
            FROM pragma_table_info(?, ?)
            ORDER BY cid
        """, params=(table.table_name, table.schema_name))

    def drop_schema_sql(self, schema_name):
        raise DBExplorerError("SQLite schemas are attached databases and cannot be dropped")

    def truncate_table_sql(self, table):
        return f"DELETE FROM {self.qualified_name(table)}"

    def get_backend_id(self, conn):
        return id(conn)

    def cancel_backend(self, executor, backend_id):
        conn = executor.active_connection(backend_id)
        if conn is None:
            return False
        conn.interrupt()
        return True

    def is_cancel_error(self, exc):
        import sqlite3
        return isinstance(exc, sqlite3.OperationalError) and "interrupted" in str(exc)

    def error_info(self, exc):
        return QueryErrorInfo(
            message=str(exc).strip() or "Unknown error",
            code=getattr(exc, "sqlite_errorname", None),
        )


# Registry of available adapters
ADAPTERS = {
    'postgresql': PostgreSQLAdapter,
    'mysql': MySQLAdapter,
    'sqlite': SQLiteAdapter,
}


def get_adapter(db_type):
    """Get an adapter instance by type."""
    adapter_class = ADAPTERS.get(db_type)
    if adapter_class:
        return adapter_class()
    raise UnknownDatabaseType(f"Unknown database type: {db_type}")


def get_adapter_choices(include_unavailable=False):
    """Get list of (db_type, display_name) for UI.

    Args:
        include_unavailable: If True, include all adapters. If False, only include
                           adapters whose required modules are installed.
    """
    if include_unavailable:
        return [(key, cls.display_name) for key, cls in ADAPTERS.items()]
    return [(key, cls.display_name) for key, cls in ADAPTERS.items() if cls.is_available()]


def get_unavailable_adapters():
    """Get list of adapters that are not available due to missing dependencies.

    Returns list of (db_type, display_name, install_hint).
    """
    return [
        (key, cls.display_name, cls.install_hint)
        for key, cls in ADAPTERS.items()
        if not cls.is_available()
    ]


def connect_from_info(adapter, conn_info):
    """Open a connection from a dict with host/user/password/port/database."""
    return adapter.connect(
        conn_info.get("host"),
        conn_info.get("user"),
        conn_info.get("password"),
        port=conn_info.get("port"),
        database=conn_info.get("database"),
    )
