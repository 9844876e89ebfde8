"""Schema model for the entity-attribute-value grid: columns, rows, cells.

A :class:`Row` carries a sparse ``cells`` mapping keyed by column id.  A
missing entry is equivalent to an empty cell for filtering, and to ``""``
for sorting.

Cell values are stored as ``str | None`` and never coerced at storage
time.  :func:`classify_cell` turns a stored value into the closed tagged
union :class:`CellKind` (text, numeric-looking text, null) when a
comparison needs it.
"""

import enum
import math
from dataclasses import dataclass, field, replace
from typing import Any, Literal, Mapping

CellValue = str | None
Combinator = Literal["and", "or"]
SortDirection = Literal["asc", "desc"]

# Operators understood by the filter evaluator.  Anything else is accepted
# and matches every row.
FILTER_OPERATORS: tuple[str, ...] = (
    "contains",
    "does not contain",
    "is",
    "is not",
    "is empty",
    "is not empty",
)
VALUELESS_OPERATORS: frozenset[str] = frozenset({"is empty", "is not empty"})

ROW_ID_FIELD: str = "__row_id__"


class CellKind(enum.Enum):
    """Comparison-time classification of a stored cell value."""

    NULL = "null"
    TEXT = "text"
    NUMERIC_TEXT = "numeric_text"


def parse_numeric(value: CellValue) -> int | float | None:
    """Best-effort numeric parse of a cell value.

    Surrounding whitespace is ignored.  The text must be accepted in full
    by ``int`` or ``float`` and be finite, so ``"12abc"``, ``"nan"``,
    ``"inf"`` and ``"1_000"`` are not numeric.  ``None`` and ``""`` are
    not numeric.
    """
    if value is None:
        return None
    text = value.strip()
    # Python accepts digit separators ("1_000"); spreadsheet text does not.
    if not text or "_" in text:
        return None
    for conv in (int, float):
        try:
            number = conv(text)
        except ValueError:
            continue
        if isinstance(number, float) and not math.isfinite(number):
            return None
        return number
    return None


def classify_cell(value: CellValue) -> CellKind:
    """Return the :class:`CellKind` of a stored value."""
    if value is None:
        return CellKind.NULL
    if parse_numeric(value) is not None:
        return CellKind.NUMERIC_TEXT
    return CellKind.TEXT


def normalize_cell_value(value: Any) -> CellValue:
    """Coerce an incoming value to the stored ``str | None`` form."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class Column:
    id: str
    table_id: str
    name: str
    order: int
    kind: str = "text"
    visible: bool = True


@dataclass(frozen=True)
class Row:
    """A table row.  Edits produce a new ``Row`` with the same ``id``."""

    id: str
    table_id: str
    cells: Mapping[str, CellValue] = field(default_factory=dict)

    def value(self, column_id: str) -> CellValue:
        return self.cells.get(column_id)

    def has_cell(self, column_id: str) -> bool:
        return column_id in self.cells

    def with_cell(self, column_id: str, value: CellValue) -> "Row":
        return replace(self, cells={**self.cells, column_id: value})

    def without_cell(self, column_id: str) -> "Row":
        if column_id not in self.cells:
            return self
        cells = dict(self.cells)
        del cells[column_id]
        return replace(self, cells=cells)


@dataclass(frozen=True)
class Table:
    id: str
    name: str
    columns: tuple[Column, ...] = ()

    def column(self, column_id: str) -> Column | None:
        for col in self.columns:
            if col.id == column_id:
                return col
        return None


@dataclass(frozen=True)
class TablePage:
    """One page of a table read: schema plus a slice of rows."""

    table: Table
    rows: tuple[Row, ...]
    next_cursor: str | None
    total_rows: int


@dataclass(frozen=True)
class FilterPredicate:
    column_id: str
    operator: str
    value: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"column_id": self.column_id, "operator": self.operator, "value": self.value}


@dataclass(frozen=True)
class SortKey:
    column_id: str
    direction: SortDirection = "asc"

    def to_dict(self) -> dict[str, str]:
        return {"column_id": self.column_id, "direction": self.direction}


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one bulk-insert unit, as reported by the store."""

    batch_number: int
    total_batches: int
    rows_created: int


def row_to_grid_dict(row: Row, columns: tuple[Column, ...]) -> dict[str, Any]:
    """Flatten a row into a JSON-safe ``{column_id: value}`` dict for the browser.

    Missing and null cells become ``""`` so the frontend never has to deal
    with absent keys.  The row id is stored under ``__row_id__``.
    """
    flat: dict[str, Any] = {ROW_ID_FIELD: row.id}
    for col in columns:
        value = row.cells.get(col.id)
        flat[col.id] = "" if value is None else value
    return flat


def column_to_grid_dict(column: Column) -> dict[str, Any]:
    """Describe a column for the browser grid header."""
    return {
        "field": column.id,
        "headerName": column.name,
        "kind": column.kind,
        "order": column.order,
        "visible": column.visible,
    }
