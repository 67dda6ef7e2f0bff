"""Operation descriptors - immutable records of one observed schema or data operation."""
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union


class OperationKind(str, enum.Enum):
    ADD_COLUMN = "add_column"
    REMOVE_COLUMN = "remove_column"
    RENAME_COLUMN = "rename_column"
    ADD_INDEX = "add_index"
    DATA_MUTATION = "data_mutation"
    RAW_ITERATION = "raw_iteration"
    SCHEMA_CHANGE = "schema_change"


class Category(str, enum.Enum):
    """What a migration unit touches. Mixing categories in one unit is unsafe."""

    DDL = "ddl"
    DATA = "data"
    INDEX = "index"


class _NoDefault:
    def __repr__(self) -> str:
        return "NO_DEFAULT"


# AddColumn.default when the caller passed no default at all (None is a real null default).
NO_DEFAULT: Any = _NoDefault()

CONCURRENTLY = "concurrently"
BATCHED_METHODS = frozenset({"find_each", "find_in_batches", "in_batches"})


def _require(value: Any, name: str) -> None:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} must be a non-empty string, got {value!r}")


@dataclass(frozen=True)
class AddColumn:
    """Add a column to an existing table."""

    table: str
    column: str
    type: str
    default: Any = NO_DEFAULT
    null: Optional[bool] = None

    kind = OperationKind.ADD_COLUMN
    category = Category.DDL

    def __post_init__(self) -> None:
        _require(self.table, "table")
        _require(self.column, "column")
        _require(self.type, "type")
        if self.null not in (None, True, False):
            raise ValueError(f"null must be True, False or None, got {self.null!r}")

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT

    def describe(self) -> str:
        return f"Add column {self.table}.{self.column} ({self.type})"

    def to_dict(self) -> Dict[str, Any]:
        d = {"type": self.kind.value, "table": self.table, "column": self.column,
             "column_type": self.type, "null": self.null}
        if self.has_default:
            d["default"] = self.default
        return d


@dataclass(frozen=True)
class RemoveColumn:
    """Drop a column."""

    table: str
    column: str
    type: Optional[str] = None

    kind = OperationKind.REMOVE_COLUMN
    category = Category.DDL

    def __post_init__(self) -> None:
        _require(self.table, "table")
        _require(self.column, "column")

    def describe(self) -> str:
        return f"Remove column {self.table}.{self.column}"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "table": self.table, "column": self.column,
                "column_type": self.type}


@dataclass(frozen=True)
class RenameColumn:
    """Rename a column in place."""

    table: str
    old_column: str
    new_column: str

    kind = OperationKind.RENAME_COLUMN
    category = Category.DDL

    def __post_init__(self) -> None:
        _require(self.table, "table")
        _require(self.old_column, "old_column")
        _require(self.new_column, "new_column")

    def describe(self) -> str:
        return f"Rename column {self.table}.{self.old_column} to {self.new_column}"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "table": self.table,
                "old_column": self.old_column, "new_column": self.new_column}


@dataclass(frozen=True)
class AddIndex:
    """Build an index. ``algorithm="concurrently"`` is the non-locking build."""

    table: str
    columns: Tuple[str, ...]
    name: Optional[str] = None
    unique: bool = False
    algorithm: Optional[str] = None

    kind = OperationKind.ADD_INDEX
    category = Category.INDEX

    def __post_init__(self) -> None:
        _require(self.table, "table")
        columns = (self.columns,) if isinstance(self.columns, str) else tuple(self.columns)
        if not columns:
            raise ValueError("columns must name at least one column")
        for col in columns:
            _require(col, "column")
        object.__setattr__(self, "columns", columns)
        if self.algorithm is not None:
            _require(self.algorithm, "algorithm")

    @property
    def concurrent(self) -> bool:
        return self.algorithm == CONCURRENTLY

    def describe(self) -> str:
        cols = ", ".join(self.columns)
        how = " concurrently" if self.concurrent else ""
        return f"Add index on {self.table}({cols}){how}"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "table": self.table, "columns": list(self.columns),
                "name": self.name, "unique": self.unique, "algorithm": self.algorithm}


@dataclass(frozen=True)
class DataMutation:
    """Write rows in bulk (update_all, delete_all)."""

    table: str
    action: str
    values: Dict[str, Any] = field(default_factory=dict)
    scoped: bool = False

    kind = OperationKind.DATA_MUTATION
    category = Category.DATA

    def __post_init__(self) -> None:
        _require(self.table, "table")
        _require(self.action, "action")

    def describe(self) -> str:
        return f"{self.action} on {self.table}"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "table": self.table, "action": self.action,
                "values": dict(self.values), "scoped": self.scoped}


@dataclass(frozen=True)
class RawIteration:
    """Read rows for processing in Python, either all at once or in batches."""

    table: str
    method: str
    scoped: bool = False
    batch_size: Optional[int] = None

    kind = OperationKind.RAW_ITERATION
    category = Category.DATA

    def __post_init__(self) -> None:
        _require(self.table, "table")
        _require(self.method, "method")

    @property
    def batched(self) -> bool:
        return self.method in BATCHED_METHODS

    def describe(self) -> str:
        return f"Iterate {self.table} with {self.method}"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "table": self.table, "method": self.method,
                "scoped": self.scoped, "batch_size": self.batch_size}


@dataclass(frozen=True)
class SchemaChange:
    """Any other DDL statement: create/drop table, change column, foreign keys, ...

    ``value`` carries the statement's argument where it has one: the new type
    for change_column, the default for change_column_default, the nullability
    for change_column_null, the referenced table for add_foreign_key.
    """

    table: str
    action: str
    column: Optional[str] = None
    value: Any = None

    kind = OperationKind.SCHEMA_CHANGE
    category = Category.DDL

    def __post_init__(self) -> None:
        _require(self.table, "table")
        _require(self.action, "action")

    def describe(self) -> str:
        target = f"{self.table}.{self.column}" if self.column else self.table
        return f"{self.action} {target}"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "table": self.table, "action": self.action,
                "column": self.column, "value": self.value}


Operation = Union[
    AddColumn,
    RemoveColumn,
    RenameColumn,
    AddIndex,
    DataMutation,
    RawIteration,
    SchemaChange,
]
