"""Paged table reads and transactional row edits.

Pages are read with the engine's physical row locator selected alongside
the table's columns. Edits captured against a page come back keyed by those
locators and are applied one statement per change inside one transaction.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Any, List, Optional, Sequence, Tuple

import structlog

from .contracts import (
    ColumnDescriptor,
    DeleteChange,
    InsertChange,
    PageRequest,
    RowLocator,
    SaveRequest,
    SaveResult,
    Statement,
    TablePage,
    TableReference,
    TableRow,
    TableSort,
    UpdateChange,
)
from .errors import QueryError
from .executor import QueryExecutor

DEFAULT_PAGE_SIZE = 100
ROW_LOCATOR_ALIAS = "__dbexplorer_row_locator__"


def normalize_page_size(page_size: Any, fallback: int = DEFAULT_PAGE_SIZE) -> int:
    if isinstance(page_size, bool) or not isinstance(page_size, (int, float)):
        return fallback
    if page_size != page_size or page_size <= 0 or page_size == float("inf"):
        return fallback
    return int(page_size)


def build_open_table_sql(
    adapter: Any,
    table: TableReference,
    limit: int,
    offset: int,
    sort_by: Optional[TableSort] = None,
    with_locator: Optional[bool] = None,
) -> str:
    """SELECT for one page, with the row locator when the table has one.

    Without a locator the page falls back to ordering by the first column so
    LIMIT/OFFSET paging stays stable.
    """
    if with_locator is None:
        with_locator = adapter.supports_row_locator()
    select_list = "*"
    order_by = []
    if sort_by is not None:
        order_by.append(f"{adapter.quote_identifier(sort_by.column_name)} {sort_by.direction.upper()}")
    if with_locator:
        alias = adapter.quote_identifier(ROW_LOCATOR_ALIAS)
        select_list = f"{adapter.row_locator_expression()} AS {alias}, *"
        order_by.append(adapter.row_locator_order())
    else:
        order_by.append(adapter.fallback_order())

    sql = f"SELECT {select_list} FROM {adapter.qualified_name(table)}"
    if order_by:
        sql += f" ORDER BY {', '.join(order_by)}"
    return adapter.add_pagination(sql, limit, offset)


def build_update_statement(
    adapter: Any,
    table: TableReference,
    columns: Sequence[str],
    change: UpdateChange,
) -> Optional[Statement]:
    """UPDATE for one row, or None when nothing in the change can be applied.

    Every resolvable cell becomes its own SET clause, so a column updated
    twice ends up with the value listed last.
    """
    if not change.row_locator or not adapter.supports_row_locator():
        return None

    params: List[Any] = []
    set_clauses = []
    for cell in change.updates:
        column_name = _column_at(columns, cell.column_index)
        if not column_name:
            continue
        params.append(cell.bound_value)
        placeholder = adapter.parameter_placeholder(len(params))
        set_clauses.append(f"{adapter.quote_identifier(column_name)} = {placeholder}")

    if not set_clauses:
        return None

    params.append(change.row_locator)
    condition = adapter.row_locator_condition(adapter.parameter_placeholder(len(params)))
    sql = f"UPDATE {adapter.qualified_name(table)} SET {', '.join(set_clauses)} WHERE {condition}"
    return Statement(sql=sql, params=tuple(params))


def build_insert_statement(
    adapter: Any,
    table: TableReference,
    columns: Sequence[str],
    change: InsertChange,
) -> Optional[Statement]:
    """INSERT of one row; the first value given for a column wins."""
    names = []
    placeholders = []
    params: List[Any] = []
    seen = set()
    for cell in change.values:
        if cell.column_index in seen:
            continue
        column_name = _column_at(columns, cell.column_index)
        if not column_name:
            continue
        seen.add(cell.column_index)
        params.append(cell.bound_value)
        names.append(adapter.quote_identifier(column_name))
        placeholders.append(adapter.parameter_placeholder(len(params)))

    if not names:
        return None

    sql = (
        f"INSERT INTO {adapter.qualified_name(table)} ({', '.join(names)}) "
        f"VALUES ({', '.join(placeholders)})"
    )
    return Statement(sql=sql, params=tuple(params))


def build_delete_statement(
    adapter: Any,
    table: TableReference,
    change: DeleteChange,
) -> Optional[Statement]:
    if not change.row_locator or not adapter.supports_row_locator():
        return None
    condition = adapter.row_locator_condition(adapter.parameter_placeholder(1))
    sql = f"DELETE FROM {adapter.qualified_name(table)} WHERE {condition}"
    return Statement(sql=sql, params=(change.row_locator,))


def _column_at(columns: Sequence[str], index: int) -> Optional[str]:
    if isinstance(index, bool) or not isinstance(index, int):
        return None
    if index < 0 or index >= len(columns):
        return None
    return columns[index] or None


class TableDataProvider:
    """Loads table pages and saves grid edits back to the table."""

    def __init__(
        self,
        executor: QueryExecutor,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        self.executor = executor
        self.adapter = executor.adapter
        self._logger = logger or structlog.get_logger(__name__)

    def load_page(self, request: PageRequest) -> TablePage:
        """Read one page of a table.

        Asks for one row more than the page size to learn whether a next
        page exists; column types and enum labels are looked up alongside.

        Raises:
            QueryError: the page query failed.
        """
        page_size = normalize_page_size(request.page_size)
        offset = request.page_index * page_size
        try:
            with_locator = self.adapter.table_has_row_locator(self.executor, request.table)
            sql = build_open_table_sql(
                self.adapter, request.table, page_size + 1, offset, request.sort_by, with_locator
            )
            result = self.executor.execute(sql)
        except Exception as exc:
            self._logger.warning("page_load_failed", table=str(request.table), error=str(exc))
            raise QueryError.from_exception(exc, self.adapter) from exc

        locator_index = None
        column_indexes = []
        columns = []
        for index, name in enumerate(result.columns):
            if name == ROW_LOCATOR_ALIAS and locator_index is None:
                locator_index = index
                continue
            column_indexes.append(index)
            columns.append(name)

        column_types, enum_values = self.load_metadata(request.table, columns)

        has_next_page = len(result.rows) > page_size
        rows = []
        for raw in result.rows[:page_size]:
            locator = raw[locator_index] if locator_index is not None else None
            rows.append(TableRow(
                row_locator=RowLocator(locator) if isinstance(locator, str) else None,
                values=tuple(raw[i] for i in column_indexes),
            ))

        self._logger.debug(
            "page_loaded",
            table=str(request.table),
            page_index=request.page_index,
            rows=len(rows),
            has_next_page=has_next_page,
        )
        return TablePage(
            table=request.table,
            columns=tuple(
                ColumnDescriptor(name=name, data_type=column_types[i], enum_values=enum_values[i])
                for i, name in enumerate(columns)
            ),
            rows=tuple(rows),
            page_size=page_size,
            page_index=request.page_index,
            has_next_page=has_next_page,
            sort_by=request.sort_by,
        )

    def load_metadata(
        self, table: TableReference, columns: Sequence[str]
    ) -> Tuple[List[str], List[Tuple[str, ...]]]:
        """Column types and enum labels, fetched concurrently."""
        if not columns:
            return [], []
        with ThreadPoolExecutor(max_workers=2) as pool:
            types_future = pool.submit(self.load_column_types, table, columns)
            enums_future = pool.submit(self.load_column_enum_values, table, columns)
            return types_future.result(), enums_future.result()

    def load_column_types(self, table: TableReference, columns: Sequence[str]) -> List[str]:
        """Type of each column, ``""`` where unknown or on failure."""
        if not columns:
            return []
        try:
            result = self.executor.execute(
                self.adapter.column_types_query(), self.adapter.metadata_params(table)
            )
        except Exception as exc:
            self._logger.warning(
                "metadata_lookup_failed", lookup="column_types", table=str(table), error=str(exc)
            )
            return ["" for _ in columns]

        type_by_column = {}
        for row in result.rows:
            if len(row) >= 2 and isinstance(row[0], str) and isinstance(row[1], str):
                type_by_column[row[0]] = row[1]
        return [type_by_column.get(name, "") for name in columns]

    def load_column_enum_values(
        self, table: TableReference, columns: Sequence[str]
    ) -> List[Tuple[str, ...]]:
        """Ordered enum labels of each column, empty where not an enum."""
        if not columns:
            return []
        sql = self.adapter.enum_values_query()
        if sql is None:
            return [() for _ in columns]
        try:
            result = self.executor.execute(sql, self.adapter.metadata_params(table))
            pairs = self.adapter.enum_rows(result.rows)
        except Exception as exc:
            self._logger.warning(
                "metadata_lookup_failed", lookup="enum_values", table=str(table), error=str(exc)
            )
            return [() for _ in columns]

        labels_by_column = {}
        for column_name, label in pairs:
            if isinstance(column_name, str) and isinstance(label, str):
                labels_by_column.setdefault(column_name, []).append(label)
        return [tuple(labels_by_column.get(name, ())) for name in columns]

    def save_changes(self, request: SaveRequest) -> SaveResult:
        """Apply a batch of edits atomically.

        Changes run in the order given, one statement each; changes that
        cannot be turned into a statement are skipped. Any failure rolls the
        whole batch back and the driver's exception propagates unchanged.
        Counts are what the engine reported, so an edit whose row moved or
        vanished since the page was loaded counts as zero.
        """
        if not request.changes or not request.columns:
            return SaveResult()

        counts = {"update": 0, "insert": 0, "delete": 0}
        transaction = self.executor.begin()
        try:
            for change in request.changes:
                statement = self._build_statement(request.table, request.columns, change)
                if statement is None:
                    self._logger.debug("change_skipped", kind=change.kind, table=str(request.table))
                    continue
                result = transaction.execute(statement.sql, statement.params)
                counts[change.kind] += result.row_count or 0
            transaction.commit()
        except Exception as exc:
            self._logger.warning("save_rolled_back", table=str(request.table), error=str(exc))
            try:
                transaction.rollback()
            except Exception as rollback_exc:
                self._logger.error("rollback_failed", table=str(request.table), error=str(rollback_exc))
            raise
        finally:
            transaction.release()

        self._logger.info(
            "changes_saved",
            table=str(request.table),
            updated=counts["update"],
            inserted=counts["insert"],
            deleted=counts["delete"],
        )
        return SaveResult(
            updated_rows=counts["update"],
            inserted_rows=counts["insert"],
            deleted_rows=counts["delete"],
        )

    def _build_statement(self, table, columns, change):
        if isinstance(change, InsertChange):
            return build_insert_statement(self.adapter, table, columns, change)
        if isinstance(change, DeleteChange):
            return build_delete_statement(self.adapter, table, change)
        return build_update_statement(self.adapter, table, columns, change)
