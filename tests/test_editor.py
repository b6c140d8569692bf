"""Tests for the table editing session."""

from datetime import date, datetime

import pytest
from pydantic import ValidationError

from dbexplorer.contracts import TableReference
from dbexplorer.editor import (
    EditorDeleteChange,
    EditorInsertChange,
    TableEditorSession,
    format_value,
    parse_editor_changes,
    to_editor_row,
)
from dbexplorer.errors import DBExplorerError


@pytest.fixture
def session(provider, people) -> TableEditorSession:
    return TableEditorSession(provider, people, page_size=2)


class TestReload:
    def test_state_from_first_page(self, session) -> None:
        state = session.reload()

        assert state.columns == ("id", "name", 'user"name')
        assert state.column_types == ("INTEGER", "TEXT", "TEXT")
        assert state.rows[0].values == ("1", "ada", "a")
        assert state.page_number == 1
        assert state.has_next_page is True
        assert state.error is None

    def test_nulls_are_flagged(self, session) -> None:
        session.reload()
        session.change_page("next")

        assert session.state.rows[0].values == ("3", "cleo", "")
        assert session.state.rows[0].nulls == (False, False, True)

    def test_load_failure_is_reported_in_state(self, provider) -> None:
        session = TableEditorSession(provider, TableReference(schema_name="main", table_name="nope"))

        state = session.reload()

        assert "nope" in state.error
        assert state.columns == ()
        assert state.rows == ()

    def test_loading_state(self, session) -> None:
        state = session.loading_state()

        assert state.loading is True
        assert state.page_number == 1


class TestNavigation:
    def test_previous_on_first_page_is_a_no_op(self, session) -> None:
        session.reload()

        assert session.change_page("previous") is None
        assert session.page_index == 0

    def test_next_stops_at_the_last_page(self, session) -> None:
        session.reload()

        assert session.change_page("next").page_number == 2
        assert session.change_page("next") is None
        assert session.change_page("previous").page_number == 1

    def test_sort_toggles_direction_and_resets_page(self, session) -> None:
        session.reload()
        session.change_page("next")

        state = session.change_sort(1)
        assert (state.sort_column, state.sort_direction, state.page_number) == ("name", "asc", 1)

        state = session.change_sort(1)
        assert state.sort_direction == "desc"
        assert state.rows[0].values[1] == "cleo"

        state = session.change_sort(0)
        assert (state.sort_column, state.sort_direction) == ("id", "asc")

    def test_sort_on_unknown_column_is_a_no_op(self, session) -> None:
        session.reload()

        assert session.change_sort(9) is None
        assert session.sort is None


class TestSave:
    def test_grid_rows_map_to_locators(self, session, provider, people) -> None:
        session.reload()

        message = session.save_changes([
            {"kind": "update", "rowIndex": 0, "updates": [{"columnIndex": 1, "value": "ADA", "isNull": False}]},
            {"kind": "delete", "rowIndex": 1},
            {"kind": "insert", "values": [{"columnIndex": 1, "value": "zed", "isNull": False}]},
        ])

        assert message == "Saved changes: 1 updated, 1 inserted, 1 deleted."
        names = [row.values[1] for row in session.state.rows]
        assert names == ["ADA", "cleo"]

    def test_rows_without_locator_are_dropped(self, session) -> None:
        session.reload()

        message = session.save_changes([{"kind": "delete", "rowIndex": 42}])

        assert message == "Saved changes: no rows affected."

    def test_nothing_to_save(self, session) -> None:
        assert session.save_changes([]) == "No changes to save."

    def test_save_before_load(self, session) -> None:
        with pytest.raises(DBExplorerError):
            session.save_changes([{"kind": "delete", "rowIndex": 0}])


class TestParsing:
    def test_payloads_are_validated(self) -> None:
        changes = parse_editor_changes([
            {"kind": "insert", "values": [{"columnIndex": 0, "value": "1"}]},
            {"kind": "delete", "row_index": 3},
        ])

        assert isinstance(changes[0], EditorInsertChange)
        assert changes[0].values[0].is_null is False
        assert isinstance(changes[1], EditorDeleteChange)
        assert changes[1].row_index == 3

    def test_unknown_kind_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            parse_editor_changes([{"kind": "merge"}])


class TestFormatting:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (datetime(2024, 5, 1, 12, 30), "2024-05-01T12:30:00"),
            (date(2024, 5, 1), "2024-05-01"),
            (b"\x01\xff", "\\x01ff"),
            ({"a": [1, 2]}, '{"a": [1, 2]}'),
            (3.5, "3.5"),
            (False, "False"),
        ],
    )
    def test_format_value(self, value, expected) -> None:
        assert format_value(value) == expected

    def test_to_editor_row(self) -> None:
        row = to_editor_row([None, 1])

        assert row.values == ("", "1")
        assert row.nulls == (True, False)
