"""Remote store boundary and an in-memory reference implementation.

:class:`TableStore` is the request/response interface the engine talks
to.  Every method is a coroutine: awaiting it is the only point where
the engine yields to other work.

:class:`MemoryTableStore` implements the interface in process.  It is
used by the tests, the CLI and the demo app, and can simulate network
latency with ``latency=...``.  Tables live on the instance, with rows
held in insertion order so that cursor pagination and display order
are the creation order.
"""

import asyncio
import random
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Iterable, Protocol, Sequence

import polars as pl

from reflex_eav_grid.errors import NotFoundError, ValidationError
from reflex_eav_grid.filtering import filter_rows
from reflex_eav_grid.models import (
    BatchResult,
    CellValue,
    Column,
    FilterPredicate,
    Row,
    SortKey,
    Table,
    TablePage,
    normalize_cell_value,
)
from reflex_eav_grid.sorting import sort_rows

_DEFAULT_CELL_CHUNK_SIZE: int = 5_000

DEFAULT_COLUMNS: tuple[tuple[str, str], ...] = (
    ("Name", "text"),
    ("Notes", "text"),
    ("Assignee", "text"),
    ("Status", "text"),
    ("Attachments", "text"),
)
_DEFAULT_EMPTY_ROWS: int = 3

_WORDS: tuple[str, ...] = (
    "alpha", "bravo", "charlie", "delta", "echo", "foxtrot", "golf",
    "hotel", "india", "juliet", "kilo", "lima", "mike", "november",
    "oscar", "papa", "quebec", "romeo", "sierra", "tango", "uniform",
    "victor", "whiskey", "xray", "yankee", "zulu",
)
_STATUSES: tuple[str, ...] = ("open", "in progress", "blocked", "done")


class TableStore(Protocol):
    """Request/response interface to the canonical table store."""

    async def create_table(self, name: str | None = None) -> Table: ...

    async def delete_table(self, table_id: str) -> None: ...

    async def list_tables(self) -> list[Table]: ...

    async def get_table(
        self,
        table_id: str,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> TablePage: ...

    async def create_row(self, table_id: str) -> Row: ...

    async def delete_row(self, row_id: str) -> None: ...

    async def create_column(self, table_id: str, name: str, kind: str = "text") -> Column: ...

    async def delete_column(self, column_id: str) -> None: ...

    async def rename_column(self, column_id: str, new_name: str) -> Column: ...

    async def set_column_visibility(self, column_id: str, visible: bool) -> Column: ...

    async def update_cell(self, row_id: str, column_id: str, value: CellValue) -> None: ...

    async def create_rows_batch(
        self,
        table_id: str,
        count: int,
        batch_number: int,
        total_batches: int,
        row_ids: Sequence[str],
    ) -> BatchResult: ...

    async def filter_rows(
        self,
        table_id: str,
        predicates: Sequence[FilterPredicate],
        combinator: str = "and",
    ) -> list[Row]: ...

    async def sort_rows(self, table_id: str, keys: Sequence[SortKey]) -> list[Row]: ...


@dataclass
class _TableRecord:
    table: Table
    # Insertion-ordered: dict order is display order.
    rows: dict[str, Row] = field(default_factory=dict)
    next_order: int = 0


def new_id() -> str:
    """Return a fresh collision-safe identifier."""
    return uuid.uuid4().hex


def _synthesize_value(kind: str, rng: random.Random) -> str:
    if kind == "number":
        return str(rng.randint(0, 100_000))
    if kind == "status":
        return rng.choice(_STATUSES)
    return " ".join(rng.choice(_WORDS) for _ in range(rng.randint(1, 3)))


def synthesize_cells(
    columns: Sequence[Column],
    row_ids: Sequence[str],
    rng: random.Random,
) -> pl.DataFrame:
    """Generate one cell per ``(row, column)`` pair as a long-format frame.

    The frame has the columns ``row_id``, ``column_id`` and ``value``.
    ``number`` columns get integer text, everything else short phrases.
    """
    row_col: list[str] = []
    col_col: list[str] = []
    values: list[str] = []
    for row_id in row_ids:
        for col in columns:
            row_col.append(row_id)
            col_col.append(col.id)
            values.append(_synthesize_value(col.kind, rng))
    return pl.DataFrame(
        {"row_id": row_col, "column_id": col_col, "value": values},
        schema={"row_id": pl.String, "column_id": pl.String, "value": pl.String},
    )


class MemoryTableStore:
    """In-process :class:`TableStore`.

    Args:
        latency: Seconds to sleep inside every call, to simulate a
            network round-trip.
        cell_chunk_size: Maximum number of cells written per insert
            statement during bulk population.
        seed: Seed for the value generator used by bulk population.
        verbose: Print a trace line for bulk operations.
    """

    def __init__(
        self,
        *,
        latency: float = 0.0,
        cell_chunk_size: int = _DEFAULT_CELL_CHUNK_SIZE,
        seed: int | None = None,
        verbose: bool = False,
    ) -> None:
        if cell_chunk_size <= 0:
            raise ValidationError("cell_chunk_size must be positive")
        self.latency = latency
        self.cell_chunk_size = cell_chunk_size
        self.verbose = verbose
        self._rng = random.Random(seed)
        self._tables: dict[str, _TableRecord] = {}
        # Reverse indexes so row/column ids resolve to their table.
        self._row_table: dict[str, str] = {}
        self._column_table: dict[str, str] = {}
        # Number of cell insert statements issued by bulk population.
        self.cell_insert_calls: int = 0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _round_trip(self) -> None:
        # Always yield, even with zero latency, so callers interleave.
        await asyncio.sleep(self.latency)

    def _record(self, table_id: str) -> _TableRecord:
        record = self._tables.get(table_id)
        if record is None:
            raise NotFoundError(f"Table not found: {table_id}")
        return record

    def _record_for_row(self, row_id: str) -> _TableRecord:
        table_id = self._row_table.get(row_id)
        if table_id is None:
            raise NotFoundError(f"Row not found: {row_id}")
        return self._record(table_id)

    def _record_for_column(self, column_id: str) -> _TableRecord:
        table_id = self._column_table.get(column_id)
        if table_id is None:
            raise NotFoundError(f"Column not found: {column_id}")
        return self._record(table_id)

    def _add_column(self, record: _TableRecord, name: str, kind: str) -> Column:
        column = Column(
            id=new_id(),
            table_id=record.table.id,
            name=name,
            order=record.next_order,
            kind=kind,
        )
        record.next_order += 1
        record.table = replace(record.table, columns=record.table.columns + (column,))
        self._column_table[column.id] = record.table.id
        return column

    def _replace_column(self, record: _TableRecord, column: Column) -> None:
        record.table = replace(
            record.table,
            columns=tuple(column if c.id == column.id else c for c in record.table.columns),
        )

    def _add_row(self, record: _TableRecord, row: Row) -> None:
        record.rows[row.id] = row
        self._row_table[row.id] = record.table.id

    def _insert_cells(self, record: _TableRecord, cells: Iterable[tuple[str, str, CellValue]]) -> None:
        for row_id, column_id, value in cells:
            record.rows[row_id] = record.rows[row_id].with_cell(column_id, value)

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    async def create_table(self, name: str | None = None) -> Table:
        """Create a table with the default columns and three empty rows."""
        await self._round_trip()
        if name is None:
            name = f"Table {len(self._tables) + 1}"
        record = _TableRecord(table=Table(id=new_id(), name=name))
        self._tables[record.table.id] = record
        for col_name, kind in DEFAULT_COLUMNS:
            self._add_column(record, col_name, kind)
        for _ in range(_DEFAULT_EMPTY_ROWS):
            cells = {col.id: "" for col in record.table.columns}
            self._add_row(record, Row(id=new_id(), table_id=record.table.id, cells=cells))
        return record.table

    async def delete_table(self, table_id: str) -> None:
        await self._round_trip()
        record = self._tables.pop(table_id, None)
        if record is None:
            raise NotFoundError(f"Table not found: {table_id}")
        for row_id in record.rows:
            self._row_table.pop(row_id, None)
        for col in record.table.columns:
            self._column_table.pop(col.id, None)

    async def list_tables(self) -> list[Table]:
        await self._round_trip()
        return [record.table for record in self._tables.values()]

    async def get_table(
        self,
        table_id: str,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> TablePage:
        """Read the schema and one page of rows.

        Rows come back in display order.  With *cursor* set, the page
        starts right after that row id.  ``limit=None`` returns every
        remaining row.
        """
        await self._round_trip()
        record = self._record(table_id)
        row_ids = list(record.rows)

        start = 0
        if cursor is not None:
            try:
                start = row_ids.index(cursor) + 1
            except ValueError:
                raise NotFoundError(f"Cursor row not found: {cursor}") from None

        stop = len(row_ids) if limit is None else min(len(row_ids), start + limit)
        page_ids = row_ids[start:stop]
        next_cursor = page_ids[-1] if stop < len(row_ids) and page_ids else None
        return TablePage(
            table=record.table,
            rows=tuple(record.rows[rid] for rid in page_ids),
            next_cursor=next_cursor,
            total_rows=len(row_ids),
        )

    # ------------------------------------------------------------------
    # Rows, columns, cells
    # ------------------------------------------------------------------

    async def create_row(self, table_id: str) -> Row:
        """Append a row with an empty cell for every column."""
        await self._round_trip()
        record = self._record(table_id)
        row = Row(
            id=new_id(),
            table_id=table_id,
            cells={col.id: "" for col in record.table.columns},
        )
        self._add_row(record, row)
        return row

    async def delete_row(self, row_id: str) -> None:
        await self._round_trip()
        record = self._record_for_row(row_id)
        del record.rows[row_id]
        del self._row_table[row_id]

    async def create_column(self, table_id: str, name: str, kind: str = "text") -> Column:
        """Append a column and give every existing row an empty cell for it."""
        await self._round_trip()
        if not name.strip():
            raise ValidationError("Column name must not be empty")
        record = self._record(table_id)
        column = self._add_column(record, name, kind)
        self._insert_cells(record, ((row_id, column.id, "") for row_id in list(record.rows)))
        return column

    async def delete_column(self, column_id: str) -> None:
        """Remove a column and its cells.  Remaining orders are not renumbered."""
        await self._round_trip()
        record = self._record_for_column(column_id)
        record.table = replace(
            record.table,
            columns=tuple(c for c in record.table.columns if c.id != column_id),
        )
        for row_id, row in list(record.rows.items()):
            record.rows[row_id] = row.without_cell(column_id)
        del self._column_table[column_id]

    async def rename_column(self, column_id: str, new_name: str) -> Column:
        await self._round_trip()
        if not new_name.strip():
            raise ValidationError("Column name must not be empty")
        record = self._record_for_column(column_id)
        column = replace(record.table.column(column_id), name=new_name)  # type: ignore[arg-type]
        self._replace_column(record, column)
        return column

    async def set_column_visibility(self, column_id: str, visible: bool) -> Column:
        await self._round_trip()
        record = self._record_for_column(column_id)
        column = replace(record.table.column(column_id), visible=visible)  # type: ignore[arg-type]
        self._replace_column(record, column)
        return column

    async def update_cell(self, row_id: str, column_id: str, value: CellValue) -> None:
        """Set one cell, creating it if the row has none for that column."""
        await self._round_trip()
        record = self._record_for_row(row_id)
        if self._column_table.get(column_id) != record.table.id:
            raise NotFoundError(f"Column {column_id} is not part of table {record.table.id}")
        self._insert_cells(record, [(row_id, column_id, normalize_cell_value(value))])

    # ------------------------------------------------------------------
    # Bulk population
    # ------------------------------------------------------------------

    async def create_rows_batch(
        self,
        table_id: str,
        count: int,
        batch_number: int,
        total_batches: int,
        row_ids: Sequence[str],
    ) -> BatchResult:
        """Insert one population batch.

        Reads the current column set, synthesises one generated cell per
        column for every new row, inserts the rows and then inserts the
        cells in chunks of at most ``cell_chunk_size``.

        *row_ids* are generated by the caller, which must hold the
        population lock for the table.
        """
        await self._round_trip()
        if count <= 0:
            raise ValidationError("Batch row count must be positive")
        if len(row_ids) != count:
            raise ValidationError(f"Expected {count} row ids, got {len(row_ids)}")
        if len(set(row_ids)) != count or any(rid in self._row_table for rid in row_ids):
            raise ValidationError("Batch row ids must be unique")

        t0 = time.perf_counter()
        record = self._record(table_id)
        columns = record.table.columns

        for row_id in row_ids:
            self._add_row(record, Row(id=row_id, table_id=table_id, cells={}))

        cells = synthesize_cells(columns, row_ids, self._rng)
        for chunk in cells.iter_slices(n_rows=self.cell_chunk_size):
            self.cell_insert_calls += 1
            self._insert_cells(record, chunk.iter_rows())

        if self.verbose:
            elapsed_ms = (time.perf_counter() - t0) * 1000
            print(
                f"[MemoryStore] batch {batch_number}/{total_batches}: "
                f"+{count} rows, {cells.height:,} cells ({elapsed_ms:.1f}ms)"
            )
        return BatchResult(
            batch_number=batch_number,
            total_batches=total_batches,
            rows_created=count,
        )

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    async def filter_rows(
        self,
        table_id: str,
        predicates: Sequence[FilterPredicate],
        combinator: str = "and",
    ) -> list[Row]:
        await self._round_trip()
        record = self._record(table_id)
        t0 = time.perf_counter()
        rows = filter_rows(list(record.rows.values()), predicates, combinator)
        if self.verbose:
            print(
                f"[MemoryStore] filter: {len(rows):,} of {len(record.rows):,} rows "
                f"({(time.perf_counter() - t0) * 1000:.1f}ms)"
            )
        return rows

    async def sort_rows(self, table_id: str, keys: Sequence[SortKey]) -> list[Row]:
        await self._round_trip()
        record = self._record(table_id)
        t0 = time.perf_counter()
        rows = sort_rows(list(record.rows.values()), keys)
        if self.verbose:
            print(
                f"[MemoryStore] sort: {len(rows):,} rows by {len(keys)} key(s) "
                f"({(time.perf_counter() - t0) * 1000:.1f}ms)"
            )
        return rows

    # ------------------------------------------------------------------
    # Introspection (not part of the remote interface)
    # ------------------------------------------------------------------

    def row_count(self, table_id: str) -> int:
        return len(self._record(table_id).rows)
