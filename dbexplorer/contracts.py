"""Data passed between the table data engine and its callers."""

from typing import Annotated, Any, Literal, NewType, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Physical position of a stored row as handed out by the engine. Never parsed
# outside the adapter that minted it.
RowLocator = NewType("RowLocator", str)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


class TableReference(_Frozen):
    schema_name: str = Field(alias="schemaName")
    table_name: str = Field(alias="tableName")

    def __str__(self) -> str:
        return f"{self.schema_name}.{self.table_name}"


class TableSort(_Frozen):
    column_name: str = Field(alias="columnName")
    direction: Literal["asc", "desc"] = "asc"

    @field_validator("direction", mode="before")
    @classmethod
    def _normalize_direction(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class ColumnDescriptor(_Frozen):
    name: str
    data_type: str = Field(default="", alias="dataType")
    enum_values: tuple[str, ...] = Field(default=(), alias="enumValues")


class TableRow(_Frozen):
    row_locator: Optional[RowLocator] = Field(default=None, alias="rowLocator")
    values: tuple[Any, ...] = ()


class PageRequest(_Frozen):
    table: TableReference
    page_size: int = Field(default=100, alias="pageSize")
    page_index: int = Field(default=0, ge=0, alias="pageIndex")
    sort_by: Optional[TableSort] = Field(default=None, alias="sortBy")


class TablePage(_Frozen):
    table: TableReference
    columns: tuple[ColumnDescriptor, ...] = ()
    rows: tuple[TableRow, ...] = ()
    page_size: int = Field(alias="pageSize")
    page_index: int = Field(alias="pageIndex")
    has_next_page: bool = Field(default=False, alias="hasNextPage")
    sort_by: Optional[TableSort] = Field(default=None, alias="sortBy")

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]


class CellChange(_Frozen):
    column_index: int = Field(alias="columnIndex")
    value: Any = None
    is_null: bool = Field(default=False, alias="isNull")

    @property
    def bound_value(self) -> Any:
        return None if self.is_null else self.value


class UpdateChange(_Frozen):
    kind: Literal["update"] = "update"
    row_locator: RowLocator = Field(alias="rowLocator")
    updates: tuple[CellChange, ...] = ()


class InsertChange(_Frozen):
    kind: Literal["insert"] = "insert"
    values: tuple[CellChange, ...] = ()


class DeleteChange(_Frozen):
    kind: Literal["delete"] = "delete"
    row_locator: RowLocator = Field(alias="rowLocator")


TableChange = Annotated[
    Union[UpdateChange, InsertChange, DeleteChange], Field(discriminator="kind")
]


class SaveRequest(_Frozen):
    table: TableReference
    # Positional: must be the column list the page was loaded with.
    columns: tuple[str, ...]
    changes: tuple[TableChange, ...] = ()


class SaveResult(_Frozen):
    updated_rows: int = Field(default=0, alias="updatedRows")
    inserted_rows: int = Field(default=0, alias="insertedRows")
    deleted_rows: int = Field(default=0, alias="deletedRows")


class Statement(_Frozen):
    """One parameterized statement ready for the driver."""

    sql: str
    params: tuple[Any, ...] = ()


class QueryResult(_Frozen):
    columns: tuple[str, ...] = ()
    rows: tuple[tuple[Any, ...], ...] = ()
    row_count: Optional[int] = None


class QueryErrorInfo(_Frozen):
    message: str
    detail: Optional[str] = None
    code: Optional[str] = None
    position: Optional[str] = None


class QueryExecutionResult(_Frozen):
    sql: str
    columns: tuple[str, ...] = ()
    rows: tuple[tuple[Any, ...], ...] = ()
    row_count: Optional[int] = None
    duration_ms: int = 0
    truncated: bool = False
    cancelled: bool = False
    error: Optional[QueryErrorInfo] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SchemaDescriptor(_Frozen):
    name: str


class TableDescriptor(_Frozen):
    schema_name: str
    name: str

    def reference(self) -> TableReference:
        return TableReference(schema_name=self.schema_name, table_name=self.name)


class SchemaColumn(_Frozen):
    schema_name: str
    table_name: str
    name: str
    data_type: str
    is_nullable: bool


__all__ = [
    "CellChange",
    "ColumnDescriptor",
    "DeleteChange",
    "InsertChange",
    "PageRequest",
    "QueryErrorInfo",
    "QueryExecutionResult",
    "QueryResult",
    "RowLocator",
    "SaveRequest",
    "SaveResult",
    "SchemaColumn",
    "SchemaDescriptor",
    "Statement",
    "TableChange",
    "TableDescriptor",
    "TablePage",
    "TableReference",
    "TableRow",
    "TableSort",
    "UpdateChange",
]
