"""Editing session for one open table.

Keeps what a grid needs between a page load and the next save: the page
being shown, the sort, and the row locators behind each grid row. Grid
edits refer to rows by their index in the page; the session swaps those for
locators before handing the batch to the table data provider.
"""

import json
from datetime import date, datetime, time
from typing import Annotated, Any, Iterable, List, Literal, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .contracts import (
    CellChange,
    DeleteChange,
    InsertChange,
    PageRequest,
    SaveRequest,
    TableReference,
    TableSort,
    UpdateChange,
)
from .errors import DBExplorerError
from .table_data import DEFAULT_PAGE_SIZE, TableDataProvider, normalize_page_size


class _EditorModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class EditorUpdateChange(_EditorModel):
    kind: Literal["update"] = "update"
    row_index: int = Field(alias="rowIndex")
    updates: tuple[CellChange, ...] = ()


class EditorInsertChange(_EditorModel):
    kind: Literal["insert"] = "insert"
    values: tuple[CellChange, ...] = ()


class EditorDeleteChange(_EditorModel):
    kind: Literal["delete"] = "delete"
    row_index: int = Field(alias="rowIndex")


EditorChange = Annotated[
    Union[EditorUpdateChange, EditorInsertChange, EditorDeleteChange],
    Field(discriminator="kind"),
]

_editor_changes = TypeAdapter(List[EditorChange])


class EditorRow(_EditorModel):
    values: tuple[str, ...] = ()
    nulls: tuple[bool, ...] = ()


class EditorState(_EditorModel):
    schema_name: str
    table_name: str
    columns: tuple[str, ...] = ()
    column_types: tuple[str, ...] = ()
    column_enum_values: tuple[tuple[str, ...], ...] = ()
    rows: tuple[EditorRow, ...] = ()
    page_size: int
    page_number: int
    has_next_page: bool = False
    sort_column: Optional[str] = None
    sort_direction: Optional[Literal["asc", "desc"]] = None
    loading: bool = False
    error: Optional[str] = None


def parse_editor_changes(payload: Iterable[Any]) -> List[Any]:
    """Validate raw grid change payloads (dicts from the UI)."""
    return _editor_changes.validate_python(list(payload))


def format_value(value: Any) -> str:
    """Text shown in a grid cell for a non-NULL value."""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "\\x" + bytes(value).hex()
    if isinstance(value, (dict, list, tuple)):
        try:
            return json.dumps(value)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def to_editor_row(values: Iterable[Any]) -> EditorRow:
    texts = []
    nulls = []
    for value in values:
        if value is None:
            texts.append("")
            nulls.append(True)
        else:
            texts.append(format_value(value))
            nulls.append(False)
    return EditorRow(values=tuple(texts), nulls=tuple(nulls))


def summarize(result) -> str:
    parts = []
    if result.updated_rows > 0:
        parts.append(f"{result.updated_rows} updated")
    if result.inserted_rows > 0:
        parts.append(f"{result.inserted_rows} inserted")
    if result.deleted_rows > 0:
        parts.append(f"{result.deleted_rows} deleted")
    summary = ", ".join(parts) if parts else "no rows affected"
    return f"Saved changes: {summary}."


class TableEditorSession:
    def __init__(
        self,
        provider: TableDataProvider,
        table: TableReference,
        page_size: int = DEFAULT_PAGE_SIZE,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
    ) -> None:
        self.provider = provider
        self.table = table
        self.page_size = normalize_page_size(page_size)
        self.page_index = 0
        self.sort_column: Optional[str] = None
        self.sort_direction = "asc"
        self.state: Optional[EditorState] = None
        self._row_locators: List[str] = []
        self._logger = logger or structlog.get_logger(__name__)

    @property
    def sort(self) -> Optional[TableSort]:
        if not self.sort_column:
            return None
        return TableSort(column_name=self.sort_column, direction=self.sort_direction)

    def loading_state(self) -> EditorState:
        return EditorState(
            schema_name=self.table.schema_name,
            table_name=self.table.table_name,
            page_size=self.page_size,
            page_number=self.page_index + 1,
            loading=True,
        )

    def reload(self) -> EditorState:
        """Load the current page; a failure ends up in ``state.error``."""
        sort = self.sort
        try:
            page = self.provider.load_page(PageRequest(
                table=self.table,
                page_size=self.page_size,
                page_index=self.page_index,
                sort_by=sort,
            ))
        except Exception as exc:
            self._logger.warning("table_reload_failed", table=str(self.table), error=str(exc))
            self._row_locators = []
            self.state = EditorState(
                schema_name=self.table.schema_name,
                table_name=self.table.table_name,
                page_size=self.page_size,
                page_number=self.page_index + 1,
                sort_column=self.sort_column,
                sort_direction=self.sort_direction if sort else None,
                error=str(exc) or "Failed to load table data.",
            )
            return self.state

        self._row_locators = [row.row_locator or "" for row in page.rows]
        self.state = EditorState(
            schema_name=self.table.schema_name,
            table_name=self.table.table_name,
            columns=tuple(page.column_names),
            column_types=tuple(column.data_type for column in page.columns),
            column_enum_values=tuple(column.enum_values for column in page.columns),
            rows=tuple(to_editor_row(row.values) for row in page.rows),
            page_size=page.page_size,
            page_number=self.page_index + 1,
            has_next_page=page.has_next_page,
            sort_column=self.sort_column,
            sort_direction=self.sort_direction if sort else None,
        )
        return self.state

    def change_page(self, direction: str) -> Optional[EditorState]:
        """Move to the previous or next page; None when there is nowhere to go."""
        if direction == "previous":
            if self.page_index == 0:
                return None
            self.page_index -= 1
            return self.reload()

        if direction != "next" or self.state is None or not self.state.has_next_page:
            return None
        self.page_index += 1
        return self.reload()

    def change_sort(self, column_index: int) -> Optional[EditorState]:
        columns = self.state.columns if self.state else ()
        if not 0 <= column_index < len(columns):
            return None
        column_name = columns[column_index]
        if self.sort_column == column_name:
            self.sort_direction = "desc" if self.sort_direction == "asc" else "asc"
        else:
            self.sort_column = column_name
            self.sort_direction = "asc"
        self.page_index = 0
        return self.reload()

    def save_changes(self, changes: Iterable[Any]) -> str:
        """Save grid edits and reload; returns a summary for the user.

        Raises:
            DBExplorerError: no page is loaded to save against.
        """
        editor_changes = parse_editor_changes(changes)
        if not editor_changes:
            return "No changes to save."

        state = self.state
        if state is None or not state.columns:
            raise DBExplorerError("Reload the table before saving changes.")

        result = self.provider.save_changes(SaveRequest(
            table=self.table,
            columns=state.columns,
            changes=tuple(self._to_table_changes(editor_changes)),
        ))
        message = summarize(result)
        self._logger.info("table_saved", table=str(self.table), summary=message)
        self.reload()
        return message

    def _to_table_changes(self, editor_changes):
        mapped = []
        for change in editor_changes:
            if isinstance(change, EditorInsertChange):
                mapped.append(InsertChange(values=change.values))
                continue

            locator = self._locator_for(change.row_index)
            if not locator:
                self._logger.debug("change_without_locator", kind=change.kind, row_index=change.row_index)
                continue

            if isinstance(change, EditorDeleteChange):
                mapped.append(DeleteChange(row_locator=locator))
            else:
                mapped.append(UpdateChange(row_locator=locator, updates=change.updates))
        return mapped

    def _locator_for(self, row_index: int) -> str:
        if 0 <= row_index < len(self._row_locators):
            return self._row_locators[row_index]
        return ""
