"""Tests for paged table reads and transactional saves."""

import sqlite3
import threading

import pytest

from dbexplorer.adapters import PostgreSQLAdapter
from dbexplorer.contracts import (
    CellChange,
    DeleteChange,
    InsertChange,
    PageRequest,
    QueryResult,
    SaveRequest,
    SaveResult,
    TableReference,
    TableSort,
    UpdateChange,
)
from dbexplorer.errors import QueryError
from dbexplorer.table_data import ROW_LOCATOR_ALIAS, TableDataProvider

COLUMNS = ("id", "name", 'user"name')


def _cell(index, value, is_null=False):
    return CellChange(column_index=index, value=value, is_null=is_null)


def _names(provider, people):
    page = provider.load_page(PageRequest(table=people, page_size=50))
    return [row.values for row in page.rows]


class TestLoadPage:
    def test_columns_rows_and_locators(self, provider, people) -> None:
        page = provider.load_page(PageRequest(table=people, page_size=10))

        assert page.column_names == list(COLUMNS)
        assert [c.data_type for c in page.columns] == ["INTEGER", "TEXT", "TEXT"]
        assert all(c.enum_values == () for c in page.columns)
        assert [row.values for row in page.rows] == [(1, "ada", "a"), (2, "brian", "b"), (3, "cleo", None)]
        assert [row.row_locator for row in page.rows] == ["1", "2", "3"]
        assert all(len(row.values) == len(page.columns) for row in page.rows)
        assert page.has_next_page is False

    def test_has_next_page_from_the_extra_row(self, provider, people) -> None:
        first = provider.load_page(PageRequest(table=people, page_size=2))
        second = provider.load_page(PageRequest(table=people, page_size=2, page_index=1))

        assert first.has_next_page is True
        assert [row.values[0] for row in first.rows] == [1, 2]
        assert second.has_next_page is False
        assert [row.values[0] for row in second.rows] == [3]

    def test_exact_fit_has_no_next_page(self, provider, people) -> None:
        page = provider.load_page(PageRequest(table=people, page_size=3))

        assert len(page.rows) == 3
        assert page.has_next_page is False

    def test_sort(self, provider, people) -> None:
        page = provider.load_page(
            PageRequest(table=people, page_size=10, sort_by=TableSort(column_name="name", direction="desc"))
        )

        assert [row.values[1] for row in page.rows] == ["cleo", "brian", "ada"]
        assert page.sort_by.direction == "desc"

    def test_invalid_page_size_falls_back_to_default(self, provider, people) -> None:
        page = provider.load_page(PageRequest(table=people, page_size=0))

        assert page.page_size == 100

    def test_without_rowid_table_loads_read_only(self, provider, db_path) -> None:
        conn = sqlite3.connect(db_path)
        with conn:
            conn.execute("CREATE TABLE tags (name TEXT PRIMARY KEY, uses INTEGER) WITHOUT ROWID")
            conn.executemany("INSERT INTO tags VALUES (?, ?)", [("b", 2), ("a", 1), ("c", 3)])
        conn.close()
        tags = TableReference(schema_name="main", table_name="tags")

        first = provider.load_page(PageRequest(table=tags, page_size=2))
        second = provider.load_page(PageRequest(table=tags, page_size=2, page_index=1))

        assert first.column_names == ["name", "uses"]
        assert [row.values for row in first.rows + second.rows] == [("a", 1), ("b", 2), ("c", 3)]
        assert all(row.row_locator is None for row in first.rows)
        assert first.has_next_page is True

    def test_missing_table_raises_query_error(self, provider) -> None:
        missing = TableReference(schema_name="main", table_name="nope")

        with pytest.raises(QueryError) as excinfo:
            provider.load_page(PageRequest(table=missing))

        assert "nope" in excinfo.value.message


class TestLoadPageQueries:
    def _page_result(self, rows):
        return QueryResult(columns=(ROW_LOCATOR_ALIAS, "id", "mood"), rows=rows)

    def test_requests_one_extra_row(self, recording_executor) -> None:
        recording_executor.respond("ctid::text", self._page_result(()))
        provider = TableDataProvider(recording_executor)
        table = TableReference(schema_name="public", table_name="t")

        provider.load_page(PageRequest(table=table, page_size=25, page_index=2))

        page_sql = recording_executor.calls[0][0]
        assert "LIMIT 26 OFFSET 50" in page_sql

    def test_metadata_lookups_run_concurrently(self, recording_executor) -> None:
        barrier = threading.Barrier(2, timeout=5)

        def types(sql, params):
            barrier.wait()
            return QueryResult(rows=(("id", "integer"), ("mood", "mood_type")))

        def enums(sql, params):
            barrier.wait()
            return QueryResult(rows=(("mood", "happy"), ("mood", "sad")))

        recording_executor.respond("ctid::text", self._page_result((("(0,1)", 1, "sad"),)))
        recording_executor.respond("format_type", types)
        recording_executor.respond("pg_enum", enums)
        provider = TableDataProvider(recording_executor)
        table = TableReference(schema_name="public", table_name="t")

        page = provider.load_page(PageRequest(table=table, page_size=10))

        assert [c.data_type for c in page.columns] == ["integer", "mood_type"]
        assert [c.enum_values for c in page.columns] == [(), ("happy", "sad")]
        assert page.rows[0].row_locator == "(0,1)"
        assert page.rows[0].values == (1, "sad")
        metadata_params = [params for sql, params in recording_executor.calls[1:]]
        assert metadata_params == [("public", "t"), ("public", "t")]

    def test_metadata_failures_degrade_to_empty_values(self, recording_executor) -> None:
        recording_executor.respond("ctid::text", self._page_result((("(0,1)", 1, "sad"),)))
        recording_executor.respond("format_type", RuntimeError("permission denied"))
        recording_executor.respond("pg_enum", RuntimeError("permission denied"))
        provider = TableDataProvider(recording_executor)
        table = TableReference(schema_name="public", table_name="t")

        page = provider.load_page(PageRequest(table=table))

        assert [c.data_type for c in page.columns] == ["", ""]
        assert [c.enum_values for c in page.columns] == [(), ()]
        assert len(page.rows) == 1


class TestSaveChanges:
    def test_empty_batches_touch_nothing(self, recording_executor) -> None:
        provider = TableDataProvider(recording_executor)
        table = TableReference(schema_name="public", table_name="t")

        assert provider.save_changes(SaveRequest(table=table, columns=COLUMNS)) == SaveResult()
        assert provider.save_changes(
            SaveRequest(table=table, columns=(), changes=(DeleteChange(row_locator="(0,1)"),))
        ) == SaveResult()
        assert recording_executor.transactions == []

    def test_applies_update_insert_delete(self, provider, people) -> None:
        page = provider.load_page(PageRequest(table=people))
        ada, brian, _ = page.rows

        result = provider.save_changes(SaveRequest(
            table=people,
            columns=page.column_names,
            changes=(
                UpdateChange(row_locator=ada.row_locator, updates=(_cell(2, "x", is_null=True),)),
                InsertChange(values=(_cell(0, 10), _cell(1, "dora"), _cell(2, "d"))),
                DeleteChange(row_locator=brian.row_locator),
            ),
        ))

        assert result == SaveResult(updated_rows=1, inserted_rows=1, deleted_rows=1)
        assert _names(provider, people) == [(1, "ada", None), (3, "cleo", None), (10, "dora", "d")]

    def test_no_op_save_leaves_rows_identical(self, provider, people) -> None:
        before = provider.load_page(PageRequest(table=people))

        provider.save_changes(SaveRequest(table=people, columns=before.column_names))

        assert provider.load_page(PageRequest(table=people)).rows == before.rows

    def test_update_of_vanished_row_counts_zero(self, provider, executor, people) -> None:
        page = provider.load_page(PageRequest(table=people))
        executor.execute("DELETE FROM people WHERE id = 2")

        result = provider.save_changes(SaveRequest(
            table=people,
            columns=page.column_names,
            changes=(UpdateChange(row_locator=page.rows[1].row_locator, updates=(_cell(1, "ghost"),)),),
        ))

        assert result.updated_rows == 0
        assert "ghost" not in [values[1] for values in _names(provider, people)]

    def test_insert_duplicates_keep_first_and_update_duplicates_keep_last(self, provider, people) -> None:
        page = provider.load_page(PageRequest(table=people))

        provider.save_changes(SaveRequest(
            table=people,
            columns=page.column_names,
            changes=(
                InsertChange(values=(_cell(0, 20), _cell(1, "first"), _cell(1, "second"))),
                UpdateChange(
                    row_locator=page.rows[0].row_locator,
                    updates=(_cell(1, "early"), _cell(1, "late")),
                ),
            ),
        ))

        rows = {values[0]: values[1] for values in _names(provider, people)}
        assert rows[20] == "first"
        assert rows[1] == "late"

    def test_quoted_column_name_round_trips(self, provider, people) -> None:
        page = provider.load_page(PageRequest(table=people))

        provider.save_changes(SaveRequest(
            table=people,
            columns=page.column_names,
            changes=(
                UpdateChange(row_locator=page.rows[2].row_locator, updates=(_cell(2, "quoted"),)),
                InsertChange(values=(_cell(1, "eve"), _cell(2, "e"))),
            ),
        ))

        rows = {values[1]: values[2] for values in _names(provider, people)}
        assert rows["cleo"] == "quoted"
        assert rows["eve"] == "e"

    def test_untranslatable_changes_are_skipped(self, provider, people) -> None:
        page = provider.load_page(PageRequest(table=people))

        result = provider.save_changes(SaveRequest(
            table=people,
            columns=page.column_names,
            changes=(
                UpdateChange(row_locator=page.rows[0].row_locator, updates=(_cell(9, "x"),)),
                InsertChange(values=(_cell(5, "x"),)),
                DeleteChange(row_locator=""),
                DeleteChange(row_locator=page.rows[0].row_locator),
            ),
        ))

        assert result == SaveResult(deleted_rows=1)

    def test_failure_rolls_back_the_whole_batch(self, provider, people) -> None:
        before = provider.load_page(PageRequest(table=people))

        with pytest.raises(sqlite3.IntegrityError):
            provider.save_changes(SaveRequest(
                table=people,
                columns=before.column_names,
                changes=(
                    UpdateChange(row_locator=before.rows[0].row_locator, updates=(_cell(1, "changed"),)),
                    InsertChange(values=(_cell(1, None, is_null=True),)),
                    DeleteChange(row_locator=before.rows[1].row_locator),
                ),
            ))

        after = provider.load_page(PageRequest(table=people))
        assert after.rows == before.rows

    def test_transaction_is_released_and_error_propagates(self, recording_executor) -> None:
        failure = RuntimeError("deadlock detected")
        recording_executor.respond("DELETE", failure)
        provider = TableDataProvider(recording_executor)
        table = TableReference(schema_name="public", table_name="t")

        with pytest.raises(RuntimeError) as excinfo:
            provider.save_changes(SaveRequest(
                table=table,
                columns=("id",),
                changes=(
                    InsertChange(values=(_cell(0, 1),)),
                    DeleteChange(row_locator="(0,1)"),
                ),
            ))

        assert excinfo.value is failure
        transaction = recording_executor.transactions[0]
        assert transaction.rolled_back
        assert not transaction.committed
        assert transaction.released

    def test_counts_come_from_the_engine(self, recording_executor) -> None:
        recording_executor.respond("UPDATE", QueryResult(row_count=0))
        provider = TableDataProvider(recording_executor)
        table = TableReference(schema_name="public", table_name="t")

        result = provider.save_changes(SaveRequest(
            table=table,
            columns=("id",),
            changes=(
                UpdateChange(row_locator="(0,1)", updates=(_cell(0, 2),)),
                InsertChange(values=(_cell(0, 3),)),
            ),
        ))

        assert result == SaveResult(updated_rows=0, inserted_rows=1)
        transaction = recording_executor.transactions[0]
        assert transaction.committed and transaction.released
        assert isinstance(recording_executor.adapter, PostgreSQLAdapter)
