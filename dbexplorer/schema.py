"""Schema browsing: schemas, tables and columns of a connection."""

from typing import List, Optional

import structlog

from .contracts import SchemaColumn, SchemaDescriptor, TableDescriptor, TableReference
from .executor import QueryExecutor


class SchemaProvider:
    def __init__(
        self,
        executor: QueryExecutor,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        self.executor = executor
        self.adapter = executor.adapter
        self._logger = logger or structlog.get_logger(__name__)

    def list_schemas(self) -> List[SchemaDescriptor]:
        statement = self.adapter.schemas_query()
        result = self.executor.execute(statement.sql, statement.params)
        return [
            SchemaDescriptor(name=row[0])
            for row in result.rows
            if row and isinstance(row[0], str)
        ]

    def list_tables(self, schema_name: str) -> List[TableDescriptor]:
        statement = self.adapter.tables_query(schema_name)
        result = self.executor.execute(statement.sql, statement.params)
        return [
            TableDescriptor(schema_name=schema_name, name=row[0])
            for row in result.rows
            if row and isinstance(row[0], str)
        ]

    def list_columns(self, table: TableReference) -> List[SchemaColumn]:
        """Columns of a table in ordinal order."""
        statement = self.adapter.columns_query(table)
        result = self.executor.execute(statement.sql, statement.params)
        columns = []
        for row in result.rows:
            if len(row) < 3 or not isinstance(row[0], str):
                continue
            columns.append(SchemaColumn(
                schema_name=table.schema_name,
                table_name=table.table_name,
                name=row[0],
                data_type=row[1] if isinstance(row[1], str) else "",
                is_nullable=row[2] == "YES",
            ))
        return columns

    def drop_schema(self, schema_name: str) -> None:
        self.executor.execute(self.adapter.drop_schema_sql(schema_name))
        self._logger.info("schema_dropped", schema=schema_name)

    def drop_table(self, table: TableReference) -> None:
        self.executor.execute(self.adapter.drop_table_sql(table))
        self._logger.info("table_dropped", table=str(table))

    def truncate_table(self, table: TableReference) -> None:
        self.executor.execute(self.adapter.truncate_table_sql(table))
        self._logger.info("table_truncated", table=str(table))
