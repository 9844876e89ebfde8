"""Cache & mutation coordinator: the single owner of what the grid shows.

The coordinator sits between three sources of rows:

* the canonical pages fetched from the store so far,
* a store-evaluated filtered *or* sorted result,
* outstanding optimistic edits.

Its state is an immutable :class:`ViewState`.  Every change goes through
:meth:`Coordinator.dispatch`, which runs the pure reducer
:func:`reduce_view`; nothing else assigns to the state.  Renderers read
the authoritative sequence through :meth:`Coordinator.current_view`.

Mutations that can be undone are tracked as :class:`Mutation` objects
that move from ``PENDING`` to ``CONFIRMED`` or ``REVERTED``.  The
snapshot needed for the revert is captured when the mutation is
submitted.

Filter and sort are mutually exclusive modes: applying one clears the
rendered effect of the other, and the last one applied wins.
"""

import collections
import enum
import itertools
import time
import weakref
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Iterable, Literal, Sequence, TypeVar

from reflex_eav_grid.errors import (
    CellEditError,
    GridError,
    PopulationInProgressError,
    StoreError,
    ValidationError,
)
from reflex_eav_grid.filtering import validate_predicates
from reflex_eav_grid.models import (
    CellValue,
    Column,
    Combinator,
    FilterPredicate,
    Row,
    SortKey,
    TablePage,
    normalize_cell_value,
)
from reflex_eav_grid.sorting import validate_sort_keys
from reflex_eav_grid.store import TableStore

_DEFAULT_PAGE_SIZE: int = 100
_DEFAULT_MUTATION_LOG_SIZE: int = 200

# Population locks, shared by every coordinator that talks to the same store.
_population_locks: "weakref.WeakKeyDictionary[Any, set[str]]" = weakref.WeakKeyDictionary()


def population_locks_for(store: Any) -> set[str]:
    """Return the shared population lock set for *store*."""
    return _population_locks.setdefault(store, set())


ViewMode = Literal["unfiltered", "filtered", "sorted"]
T = TypeVar("T")


# ---------------------------------------------------------------------------
# View state
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LogicalView:
    """The row sequence the renderer must show, and where it came from."""

    rows: tuple[Row, ...]
    mode: ViewMode
    generation: int
    total_rows: int

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class ViewState:
    """Everything the grid shows for the active table.

    ``filtered_rows`` and ``sorted_rows`` are ``None`` when the mode is
    not active; an empty tuple means the mode is active and matched
    nothing.  ``generation`` increases whenever the authoritative
    sequence is replaced wholesale (as opposed to appended to).
    """

    table_id: str | None = None
    table_name: str = ""
    columns: tuple[Column, ...] = ()
    rows: tuple[Row, ...] = ()
    next_cursor: str | None = None
    total_rows: int = 0
    filtered_rows: tuple[Row, ...] | None = None
    sorted_rows: tuple[Row, ...] | None = None
    predicates: tuple[FilterPredicate, ...] = ()
    combinator: Combinator = "and"
    sort_keys: tuple[SortKey, ...] = ()
    search_term: str = ""
    selected_row_ids: frozenset[str] = frozenset()
    generation: int = 0

    @property
    def mode(self) -> ViewMode:
        if self.sorted_rows is not None:
            return "sorted"
        if self.filtered_rows is not None:
            return "filtered"
        return "unfiltered"

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None

    @property
    def visible_columns(self) -> tuple[Column, ...]:
        return tuple(c for c in self.columns if c.visible)

    def logical_view(self) -> LogicalView:
        if self.sorted_rows is not None:
            rows = self.sorted_rows
        elif self.filtered_rows is not None:
            rows = self.filtered_rows
        else:
            rows = self.rows
        return LogicalView(
            rows=rows,
            mode=self.mode,
            generation=self.generation,
            total_rows=self.total_rows,
        )

    def find_row(self, row_id: str) -> Row | None:
        for seq in (self.rows, self.filtered_rows or (), self.sorted_rows or ()):
            for row in seq:
                if row.id == row_id:
                    return row
        return None


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TableLoaded:
    page: TablePage


@dataclass(frozen=True)
class PageAppended:
    page: TablePage


@dataclass(frozen=True)
class RowsCleared:
    pass


@dataclass(frozen=True)
class SnapshotRestored:
    snapshot: ViewState


@dataclass(frozen=True)
class CellValueSet:
    row_id: str
    column_id: str
    value: CellValue


@dataclass(frozen=True)
class RowAppended:
    row: Row


@dataclass(frozen=True)
class RowRemoved:
    row_id: str


@dataclass(frozen=True)
class ColumnAdded:
    column: Column


@dataclass(frozen=True)
class ColumnRemoved:
    column_id: str


@dataclass(frozen=True)
class ColumnUpdated:
    column: Column


@dataclass(frozen=True)
class FilterApplied:
    predicates: tuple[FilterPredicate, ...]
    combinator: Combinator
    rows: tuple[Row, ...] | None


@dataclass(frozen=True)
class SortApplied:
    keys: tuple[SortKey, ...]
    rows: tuple[Row, ...] | None


@dataclass(frozen=True)
class SearchTermSet:
    term: str


@dataclass(frozen=True)
class SelectionSet:
    row_ids: frozenset[str]


def _map_rows(state: ViewState, fn: Callable[[Row], Row]) -> dict[str, Any]:
    """Apply *fn* to every row copy the state holds."""
    return {
        "rows": tuple(fn(r) for r in state.rows),
        "filtered_rows": (
            None if state.filtered_rows is None else tuple(fn(r) for r in state.filtered_rows)
        ),
        "sorted_rows": (
            None if state.sorted_rows is None else tuple(fn(r) for r in state.sorted_rows)
        ),
    }


def _drop_row(rows: tuple[Row, ...] | None, row_id: str) -> tuple[Row, ...] | None:
    if rows is None:
        return None
    return tuple(r for r in rows if r.id != row_id)


def _reduce_table_loaded(state: ViewState, action: TableLoaded) -> ViewState:
    page = action.page
    return ViewState(
        table_id=page.table.id,
        table_name=page.table.name,
        columns=page.table.columns,
        rows=page.rows,
        next_cursor=page.next_cursor,
        total_rows=page.total_rows,
        generation=state.generation + 1,
    )


def _reduce_page_appended(state: ViewState, action: PageAppended) -> ViewState:
    if action.page.table.id != state.table_id:
        return state
    known = {r.id for r in state.rows}
    fresh = tuple(r for r in action.page.rows if r.id not in known)
    return replace(
        state,
        columns=action.page.table.columns,
        rows=state.rows + fresh,
        next_cursor=action.page.next_cursor,
        total_rows=action.page.total_rows,
    )


def _reduce_rows_cleared(state: ViewState, action: RowsCleared) -> ViewState:
    return replace(
        state,
        rows=(),
        next_cursor=None,
        filtered_rows=None,
        sorted_rows=None,
        selected_row_ids=frozenset(),
        generation=state.generation + 1,
    )


def _reduce_snapshot_restored(state: ViewState, action: SnapshotRestored) -> ViewState:
    # The restored sequence replaces what is on screen, so it is a new generation.
    return replace(action.snapshot, generation=state.generation + 1)


def _reduce_cell_value_set(state: ViewState, action: CellValueSet) -> ViewState:
    def fn(row: Row) -> Row:
        return row.with_cell(action.column_id, action.value) if row.id == action.row_id else row

    return replace(state, **_map_rows(state, fn))


def _reduce_row_appended(state: ViewState, action: RowAppended) -> ViewState:
    if action.row.table_id != state.table_id:
        return state
    return replace(state, rows=state.rows + (action.row,), total_rows=state.total_rows + 1)


def _reduce_row_removed(state: ViewState, action: RowRemoved) -> ViewState:
    present = state.find_row(action.row_id) is not None
    return replace(
        state,
        rows=_drop_row(state.rows, action.row_id),  # type: ignore[arg-type]
        filtered_rows=_drop_row(state.filtered_rows, action.row_id),
        sorted_rows=_drop_row(state.sorted_rows, action.row_id),
        selected_row_ids=state.selected_row_ids - {action.row_id},
        total_rows=max(0, state.total_rows - 1) if present else state.total_rows,
    )


def _reduce_column_added(state: ViewState, action: ColumnAdded) -> ViewState:
    if action.column.table_id != state.table_id:
        return state
    column_id = action.column.id
    mapped = _map_rows(state, lambda r: r if r.has_cell(column_id) else r.with_cell(column_id, ""))
    return replace(state, columns=state.columns + (action.column,), **mapped)


def _reduce_column_removed(state: ViewState, action: ColumnRemoved) -> ViewState:
    column_id = action.column_id
    mapped = _map_rows(state, lambda r: r.without_cell(column_id))
    return replace(
        state,
        columns=tuple(c for c in state.columns if c.id != column_id),
        predicates=tuple(p for p in state.predicates if p.column_id != column_id),
        sort_keys=tuple(k for k in state.sort_keys if k.column_id != column_id),
        **mapped,
    )


def _reduce_column_updated(state: ViewState, action: ColumnUpdated) -> ViewState:
    return replace(
        state,
        columns=tuple(action.column if c.id == action.column.id else c for c in state.columns),
    )


def _reduce_filter_applied(state: ViewState, action: FilterApplied) -> ViewState:
    return replace(
        state,
        predicates=action.predicates,
        combinator=action.combinator,
        filtered_rows=action.rows,
        sorted_rows=None,
        generation=state.generation + 1,
    )


def _reduce_sort_applied(state: ViewState, action: SortApplied) -> ViewState:
    return replace(
        state,
        sort_keys=action.keys,
        sorted_rows=action.rows,
        filtered_rows=None,
        generation=state.generation + 1,
    )


def _reduce_search_term_set(state: ViewState, action: SearchTermSet) -> ViewState:
    return replace(state, search_term=action.term)


def _reduce_selection_set(state: ViewState, action: SelectionSet) -> ViewState:
    return replace(state, selected_row_ids=action.row_ids)


_REDUCERS: dict[type, Callable[[ViewState, Any], ViewState]] = {
    TableLoaded: _reduce_table_loaded,
    PageAppended: _reduce_page_appended,
    RowsCleared: _reduce_rows_cleared,
    SnapshotRestored: _reduce_snapshot_restored,
    CellValueSet: _reduce_cell_value_set,
    RowAppended: _reduce_row_appended,
    RowRemoved: _reduce_row_removed,
    ColumnAdded: _reduce_column_added,
    ColumnRemoved: _reduce_column_removed,
    ColumnUpdated: _reduce_column_updated,
    FilterApplied: _reduce_filter_applied,
    SortApplied: _reduce_sort_applied,
    SearchTermSet: _reduce_search_term_set,
    SelectionSet: _reduce_selection_set,
}


def reduce_view(state: ViewState, action: Any) -> ViewState:
    """Return the state that results from applying *action* to *state*."""
    reducer = _REDUCERS.get(type(action))
    if reducer is None:
        raise TypeError(f"Unknown view action: {type(action).__name__}")
    return reducer(state, action)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

class MutationStatus(enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"


@dataclass
class Mutation:
    """An optimistic change awaiting remote confirmation.

    ``snapshot`` holds whatever is needed to undo the change, captured
    when the mutation was submitted: the prior cell value for an edit,
    the whole :class:`ViewState` for a population run.
    """

    id: int
    kind: str
    target: str
    snapshot: Any
    status: MutationStatus = MutationStatus.PENDING
    error: str | None = None
    submitted_at: float = field(default_factory=time.monotonic)

    def confirm(self) -> None:
        if self.status is not MutationStatus.PENDING:
            raise RuntimeError(f"Mutation {self.id} is already {self.status.value}")
        self.status = MutationStatus.CONFIRMED

    def revert(self, error: str) -> Any:
        """Mark the mutation reverted and hand back its snapshot."""
        if self.status is not MutationStatus.PENDING:
            raise RuntimeError(f"Mutation {self.id} is already {self.status.value}")
        self.status = MutationStatus.REVERTED
        self.error = error
        return self.snapshot


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------

class Coordinator:
    """Owns the :class:`ViewState` and arbitrates every change to it.

    Args:
        store: The remote store.
        page_size: Rows fetched per page when browsing a table.
        mutation_log_size: Number of recent mutations kept for inspection.
        verbose: Print a trace line (with timing) for store round-trips.
        population_locks: Set of table ids with a population run in
            flight.  Defaults to the set shared by all coordinators on
            *store*.
    """

    def __init__(
        self,
        store: TableStore,
        *,
        page_size: int = _DEFAULT_PAGE_SIZE,
        mutation_log_size: int = _DEFAULT_MUTATION_LOG_SIZE,
        verbose: bool = False,
        population_locks: set[str] | None = None,
    ) -> None:
        if page_size <= 0:
            raise ValidationError("page_size must be positive")
        self.store = store
        self.page_size = page_size
        self.verbose = verbose
        self._state = ViewState()
        self._mutation_ids = itertools.count(1)
        self._mutations: collections.deque[Mutation] = collections.deque(maxlen=mutation_log_size)
        self._populating = (
            population_locks if population_locks is not None else population_locks_for(store)
        )
        # Bumped by every filter/sort request so late responses can be discarded.
        self._view_request_seq = 0

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def state(self) -> ViewState:
        return self._state

    @property
    def mutations(self) -> tuple[Mutation, ...]:
        return tuple(self._mutations)

    def current_view(self) -> LogicalView:
        """Synchronous accessor for the authoritative row sequence."""
        return self._state.logical_view()

    def dispatch(self, action: Any) -> ViewState:
        """Single entry point for state changes."""
        self._state = reduce_view(self._state, action)
        return self._state

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _log(self, message: str) -> None:
        if self.verbose:
            print(f"[EavGrid] {message}")

    def _require_table(self) -> str:
        if self._state.table_id is None:
            raise ValidationError("No active table")
        return self._state.table_id

    def _new_mutation(self, kind: str, target: str, snapshot: Any) -> Mutation:
        mutation = Mutation(id=next(self._mutation_ids), kind=kind, target=target, snapshot=snapshot)
        self._mutations.append(mutation)
        return mutation

    async def _call_store(self, description: str, request: Awaitable[T]) -> T:
        """Await a store request, surfacing transport failures as :class:`StoreError`."""
        t0 = time.perf_counter()
        try:
            result = await request
        except GridError:
            raise
        except Exception as exc:
            raise StoreError(f"{description} failed: {exc}") from exc
        self._log(f"{description} ({(time.perf_counter() - t0) * 1000:.1f}ms)")
        return result

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_table(self, table_id: str, *, full: bool = False) -> LogicalView:
        """Load a table and make it active, discarding filter/sort/search state.

        Only the first page is fetched unless *full* is set.
        """
        limit = None if full else self.page_size
        page = await self._call_store(
            f"load table {table_id}",
            self.store.get_table(table_id, limit=limit),
        )
        self._view_request_seq += 1
        self.dispatch(TableLoaded(page))
        self._log(
            f"table {page.table.name!r}: {len(page.rows):,} of {page.total_rows:,} rows loaded"
        )
        return self.current_view()

    async def switch_table(self, table_id: str) -> LogicalView:
        """Make another table active.  The new table starts unfiltered and unsorted."""
        return await self.load_table(table_id)

    async def load_next_page(self) -> int:
        """Append the next page of canonical rows.  Returns the number of rows added."""
        table_id = self._require_table()
        cursor = self._state.next_cursor
        if cursor is None:
            return 0
        page = await self._call_store(
            f"load page after {cursor}",
            self.store.get_table(table_id, limit=self.page_size, cursor=cursor),
        )
        if self._state.table_id != table_id or self._state.next_cursor != cursor:
            self._log("discarding stale page")
            return 0
        before = len(self._state.rows)
        self.dispatch(PageAppended(page))
        return len(self._state.rows) - before

    async def load_all(self) -> LogicalView:
        """Refetch the active table with every row."""
        return await self.load_table(self._require_table(), full=True)

    # ------------------------------------------------------------------
    # Cell edits
    # ------------------------------------------------------------------

    async def edit_cell(self, row_id: str, column_id: str, value: Any) -> Mutation:
        """Optimistically set a cell, then confirm or revert against the store.

        On failure the cell goes back to its prior value, unless a later
        edit has already overwritten it, and :class:`CellEditError` is
        raised.  Failed edits are not retried.
        """
        self._require_table()
        row = self._state.find_row(row_id)
        if row is None:
            raise ValidationError(f"Row {row_id} is not loaded")
        if not any(c.id == column_id for c in self._state.columns):
            raise ValidationError(f"Unknown column: {column_id}")

        new_value = normalize_cell_value(value)
        mutation = self._new_mutation("cell", f"{row_id}:{column_id}", row.value(column_id))
        self.dispatch(CellValueSet(row_id, column_id, new_value))

        try:
            await self._call_store(
                f"update cell {row_id}/{column_id}",
                self.store.update_cell(row_id, column_id, new_value),
            )
        except StoreError as exc:
            prior = mutation.revert(str(exc))
            current = self._state.find_row(row_id)
            if current is not None and current.value(column_id) == new_value:
                self.dispatch(CellValueSet(row_id, column_id, prior))
            raise CellEditError(row_id, column_id, str(exc)) from exc

        mutation.confirm()
        return mutation

    # ------------------------------------------------------------------
    # Rows and columns
    # ------------------------------------------------------------------

    async def add_row(self) -> Row:
        """Create a row remotely and append it once the store assigned its id."""
        table_id = self._require_table()
        row = await self._call_store("create row", self.store.create_row(table_id))
        self.dispatch(RowAppended(row))
        return row

    async def delete_row(self, row_id: str) -> None:
        """Delete a row and drop it from the view once the store confirmed."""
        self._require_table()
        await self._call_store(f"delete row {row_id}", self.store.delete_row(row_id))
        self.dispatch(RowRemoved(row_id))

    async def add_column(self, name: str, kind: str = "text") -> Column:
        table_id = self._require_table()
        if not name.strip():
            raise ValidationError("Column name must not be empty")
        column = await self._call_store(
            f"create column {name!r}",
            self.store.create_column(table_id, name, kind),
        )
        self.dispatch(ColumnAdded(column))
        return column

    async def delete_column(self, column_id: str) -> None:
        self._require_table()
        await self._call_store(f"delete column {column_id}", self.store.delete_column(column_id))
        self.dispatch(ColumnRemoved(column_id))

    async def rename_column(self, column_id: str, new_name: str) -> Column:
        self._require_table()
        if not new_name.strip():
            raise ValidationError("Column name must not be empty")
        column = await self._call_store(
            f"rename column {column_id}",
            self.store.rename_column(column_id, new_name),
        )
        self.dispatch(ColumnUpdated(column))
        return column

    async def set_column_visibility(self, column_id: str, visible: bool) -> Mutation:
        """Optimistically show/hide a column; reverted if the store rejects it."""
        self._require_table()
        column = next((c for c in self._state.columns if c.id == column_id), None)
        if column is None:
            raise ValidationError(f"Unknown column: {column_id}")

        mutation = self._new_mutation("column_visibility", column_id, column)
        self.dispatch(ColumnUpdated(replace(column, visible=visible)))
        try:
            await self._call_store(
                f"set visibility of {column_id}",
                self.store.set_column_visibility(column_id, visible),
            )
        except StoreError as exc:
            self.dispatch(ColumnUpdated(mutation.revert(str(exc))))
            raise
        mutation.confirm()
        return mutation

    # ------------------------------------------------------------------
    # Filter / sort / search
    # ------------------------------------------------------------------

    async def apply_filter(
        self,
        predicates: Sequence[FilterPredicate],
        combinator: str = "and",
    ) -> LogicalView:
        """Replace the logical view with the store's filtered rows.

        An empty predicate list clears the filter without a store call.
        Applying a filter clears the sorted view.  On failure the
        current view is kept and the error propagates.
        """
        table_id = self._require_table()
        checked, logic = validate_predicates(predicates, combinator)
        self._view_request_seq += 1
        seq = self._view_request_seq

        if not checked:
            self.dispatch(FilterApplied((), logic, None))
            return self.current_view()

        rows = await self._call_store(
            f"filter {len(checked)} predicate(s) ({logic.upper()})",
            self.store.filter_rows(table_id, checked, logic),
        )
        if seq != self._view_request_seq or self._state.table_id != table_id:
            self._log("discarding stale filter result")
            return self.current_view()
        self.dispatch(FilterApplied(tuple(checked), logic, tuple(rows)))
        self._log(f"filter matched {len(rows):,} rows")
        return self.current_view()

    async def clear_filter(self) -> LogicalView:
        return await self.apply_filter([], self._state.combinator)

    async def apply_sort(self, keys: Sequence[SortKey]) -> LogicalView:
        """Replace the logical view with the store's sorted rows.

        An empty key list clears the sort without a store call.
        Applying a sort clears the filtered view.
        """
        table_id = self._require_table()
        checked = validate_sort_keys(keys)
        self._view_request_seq += 1
        seq = self._view_request_seq

        if not checked:
            self.dispatch(SortApplied((), None))
            return self.current_view()

        rows = await self._call_store(
            f"sort by {len(checked)} key(s)",
            self.store.sort_rows(table_id, checked),
        )
        if seq != self._view_request_seq or self._state.table_id != table_id:
            self._log("discarding stale sort result")
            return self.current_view()
        self.dispatch(SortApplied(tuple(checked), tuple(rows)))
        return self.current_view()

    async def clear_sort(self) -> LogicalView:
        return await self.apply_sort([])

    def set_search_term(self, term: str) -> None:
        self.dispatch(SearchTermSet(term))

    def set_selection(self, row_ids: Iterable[str]) -> None:
        self.dispatch(SelectionSet(frozenset(row_ids)))

    # ------------------------------------------------------------------
    # Bulk population lock and snapshot
    # ------------------------------------------------------------------

    def is_populating(self, table_id: str) -> bool:
        return table_id in self._populating

    def acquire_population(self, table_id: str) -> None:
        """Take the single-flight population lock for *table_id*."""
        if table_id in self._populating:
            raise PopulationInProgressError(table_id)
        self._populating.add(table_id)

    def release_population(self, table_id: str) -> None:
        self._populating.discard(table_id)

    def begin_population(self, table_id: str) -> Mutation:
        """Snapshot the view and optimistically clear the rendered rows.

        Called when the first batch is submitted.  Clearing bumps the
        generation, which scrolls the renderer back to the top.
        """
        if table_id not in self._populating:
            raise RuntimeError(f"Population lock for {table_id} is not held")
        mutation = self._new_mutation("population", table_id, self._state)
        if self._state.table_id == table_id:
            self._view_request_seq += 1
            self.dispatch(RowsCleared())
        return mutation

    def revert_population(self, mutation: Mutation, error: str) -> None:
        """Put the pre-population view back after a failed or abandoned run."""
        snapshot: ViewState = mutation.revert(error)
        if self._state.table_id == snapshot.table_id:
            self.dispatch(SnapshotRestored(snapshot))

    async def finish_population(self, mutation: Mutation) -> None:
        """Refetch the full row set, then confirm the run.

        If the refetch fails the pre-population view is restored, the
        mutation is reverted and the :class:`StoreError` propagates.
        """
        if self._state.table_id == mutation.target:
            try:
                await self.load_table(mutation.target, full=True)
            except StoreError as exc:
                self.revert_population(mutation, str(exc))
                raise
        mutation.confirm()
