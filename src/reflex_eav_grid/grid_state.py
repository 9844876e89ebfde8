"""Reflex binding: state mixin and UI helpers for an editable EAV grid.

Users inherit from :class:`EavGridMixin` **and** ``rx.State`` and render
with :func:`eav_grid`::

    from reflex_eav_grid import EavGridMixin, eav_grid

    class GridState(EavGridMixin, rx.State):
        pass

    def index():
        return eav_grid(GridState)

    app.add_page(index, on_load=GridState.load_eav_grid)

Each browser session gets its own :class:`~reflex_eav_grid.coordinator.Coordinator`
and :class:`~reflex_eav_grid.windowing.WindowedRenderer`, kept in a
module-level registry because neither is JSON-serialisable.  All
sessions share one store, set with :func:`configure_store` (an in-memory
store is created on first use otherwise).

Only the rows of the current scroll window are sent to the browser.
"""

import time
from typing import Any

import reflex as rx

from reflex_eav_grid.coordinator import Coordinator
from reflex_eav_grid.errors import GridError, PopulationInProgressError
from reflex_eav_grid.filtering import describe_filters, generate_filter_sql
from reflex_eav_grid.models import (
    FILTER_OPERATORS,
    ROW_ID_FIELD,
    Column,
    FilterPredicate,
    SortKey,
    column_to_grid_dict,
    row_to_grid_dict,
)
from reflex_eav_grid.population import BulkPopulator, PopulationProgress
from reflex_eav_grid.presets import ViewPreset, dump_preset, load_preset
from reflex_eav_grid.search import column_header_matches, count_matches, matching_cells
from reflex_eav_grid.sorting import describe_sorts
from reflex_eav_grid.store import MemoryTableStore, TableStore
from reflex_eav_grid.viewport import viewport
from reflex_eav_grid.windowing import WindowedRenderer

_DEFAULT_PAGE_SIZE: int = 100
_DEFAULT_ROW_HEIGHT: int = 36
_DEFAULT_OVERSCAN: int = 10
_DEFAULT_VIEWPORT_HEIGHT: int = 600
_DEFAULT_POPULATION_COUNT: int = 15_000
# Start loading the next page when the window gets this close to the end.
_LOAD_MORE_MARGIN_ROWS: int = 50
_CELL_WIDTH: str = "180px"
_INDEX_WIDTH: str = "64px"


# ---------------------------------------------------------------------------
# Store and per-session registry
# ---------------------------------------------------------------------------

_shared_store: TableStore | None = None


def configure_store(store: TableStore) -> None:
    """Use *store* for every grid session created from now on."""
    global _shared_store
    _shared_store = store


def get_store() -> TableStore:
    global _shared_store
    if _shared_store is None:
        _shared_store = MemoryTableStore(verbose=True)
    return _shared_store


class _GridSession:
    """Objects backing one browser session's grid, kept outside Reflex state."""

    def __init__(self, store: TableStore, page_size: int, row_height: int) -> None:
        self.coordinator = Coordinator(store, page_size=page_size, verbose=True)
        self.renderer = WindowedRenderer(
            viewport_height=_DEFAULT_VIEWPORT_HEIGHT,
            row_height=row_height,
            overscan=_DEFAULT_OVERSCAN,
        )
        # Search counts are recomputed only when the view or term changes.
        self.search_state: Any = None
        self.search_term: str = ""
        self.search_count: int = 0


_session_registry: dict[str, _GridSession] = {}


def _get_session(key: str, page_size: int, row_height: int) -> _GridSession:
    if key not in _session_registry:
        _session_registry[key] = _GridSession(get_store(), page_size, row_height)
    return _session_registry[key]


# ---------------------------------------------------------------------------
# Mixin
# ---------------------------------------------------------------------------

class EavGridMixin(rx.State, mixin=True):
    """Reflex state mixin for a windowed, editable EAV grid.

    This is a Reflex **mixin** (``mixin=True``): every concrete subclass
    gets its own ``eav_grid_*`` vars.  Subclasses must also inherit from
    ``rx.State``::

        class MyGrid(EavGridMixin, rx.State):
            ...

    Handlers that talk to the store are async generators: they yield
    once so the loading state reaches the browser before the request.
    Store failures are shown as toasts.
    """

    # -- Frontend state vars --
    eav_grid_tables: list[dict[str, str]] = []
    eav_grid_table_id: str = ""
    eav_grid_table_name: str = ""
    eav_grid_columns: list[dict[str, Any]] = []
    eav_grid_visible_columns: list[dict[str, Any]] = []
    eav_grid_rows: list[dict[str, Any]] = []
    eav_grid_row_count: int = 0
    eav_grid_total_rows: int = 0
    eav_grid_mode: str = "unfiltered"
    eav_grid_generation: int = 0
    eav_grid_total_height: int = 0
    eav_grid_window_offset: int = 0
    eav_grid_row_height: int = _DEFAULT_ROW_HEIGHT
    eav_grid_loading: bool = False
    eav_grid_loaded: bool = False
    eav_grid_stats: str = ""
    eav_grid_filter_debug: str = "No active filters or sorts."
    eav_grid_filter_sql: str = ""
    eav_grid_preset_json: str = ""
    eav_grid_debug_expanded: bool = False
    eav_grid_search_term: str = ""
    eav_grid_search_matches: int = 0
    eav_grid_new_column_name: str = ""
    eav_grid_filter_items: list[dict[str, str]] = []
    eav_grid_filter_combinator: str = "and"
    eav_grid_sort_items: list[dict[str, str]] = []
    eav_grid_population_count: int = _DEFAULT_POPULATION_COUNT
    eav_grid_populating: bool = False
    eav_grid_population_rows: int = 0
    eav_grid_population_batch: int = 0
    eav_grid_population_total_batches: int = 0

    # -- Backend-only vars --
    _eav_grid_page_size: int = _DEFAULT_PAGE_SIZE

    @rx.var
    def eav_grid_population_percent(self) -> int:
        if self.eav_grid_population_total_batches == 0:
            return 0
        return int(100 * self.eav_grid_population_batch / self.eav_grid_population_total_batches)

    @rx.var
    def eav_grid_row_height_px(self) -> str:
        return f"{self.eav_grid_row_height}px"

    # ------------------------------------------------------------------
    # Loading and table switching
    # ------------------------------------------------------------------

    async def load_eav_grid(self):
        """Load the table list and open the current (or first) table.

        Creates a table with the default columns when the store is empty.
        """
        self.eav_grid_loading = True  # type: ignore[assignment]
        self.eav_grid_stats = "Loading table..."  # type: ignore[assignment]
        yield

        session = self._eav_grid_session()
        store = session.coordinator.store
        try:
            tables = await store.list_tables()
            if not tables:
                tables = [await store.create_table()]
            ids = [t.id for t in tables]
            target = self.eav_grid_table_id if self.eav_grid_table_id in ids else ids[0]
            await session.coordinator.load_table(target)
        except GridError as exc:
            self.eav_grid_loading = False  # type: ignore[assignment]
            yield rx.toast.error(f"Failed to load table: {exc}")
            return

        self.eav_grid_tables = [{"id": t.id, "name": t.name} for t in tables]  # type: ignore[assignment]
        self._reset_eav_grid_editors()
        self.eav_grid_loaded = True  # type: ignore[assignment]
        self.eav_grid_loading = False  # type: ignore[assignment]
        self._refresh_eav_grid()

    async def switch_eav_grid_table(self, table_id: str):
        """Make another table active; its view starts unfiltered and unsorted."""
        if self.eav_grid_populating:
            yield rx.toast.warning("Wait for row creation to finish before switching tables.")
            return
        self.eav_grid_loading = True  # type: ignore[assignment]
        yield

        try:
            await self._eav_grid_session().coordinator.switch_table(table_id)
        except GridError as exc:
            self.eav_grid_loading = False  # type: ignore[assignment]
            yield rx.toast.error(f"Failed to open table: {exc}")
            return

        self._reset_eav_grid_editors()
        self.eav_grid_loading = False  # type: ignore[assignment]
        self._refresh_eav_grid()

    async def create_eav_grid_table(self):
        session = self._eav_grid_session()
        store = session.coordinator.store
        try:
            table = await store.create_table()
            tables = await store.list_tables()
            await session.coordinator.load_table(table.id)
        except GridError as exc:
            yield rx.toast.error(f"Failed to create table: {exc}")
            return

        self.eav_grid_tables = [{"id": t.id, "name": t.name} for t in tables]  # type: ignore[assignment]
        self._reset_eav_grid_editors()
        self._refresh_eav_grid()
        yield rx.toast.success(f"Created {table.name}")

    async def handle_eav_grid_viewport(self, params: dict[str, Any]):
        """Record the browser's scroll position and slide the window.

        In the unfiltered view, the next page of rows is fetched when
        the window approaches the end of what has been loaded.
        """
        session = self._eav_grid_session()
        client_height = float(params.get("clientHeight") or 0)
        session.renderer.set_viewport(
            float(params.get("scrollTop") or 0),
            client_height if client_height > 0 else None,
        )
        self._refresh_eav_grid()

        coordinator = session.coordinator
        state = coordinator.state
        if self.eav_grid_loading or state.mode != "unfiltered" or not state.has_more:
            return
        if session.renderer.window.stop < len(state.rows) - _LOAD_MORE_MARGIN_ROWS:
            return

        self.eav_grid_loading = True  # type: ignore[assignment]
        self.eav_grid_stats = f"Loading rows {len(state.rows):,}..."  # type: ignore[assignment]
        yield

        t0 = time.perf_counter()
        try:
            added = await coordinator.load_next_page()
        except GridError as exc:
            self.eav_grid_loading = False  # type: ignore[assignment]
            yield rx.toast.error(f"Failed to load more rows: {exc}")
            return
        elapsed_ms = (time.perf_counter() - t0) * 1000
        self.eav_grid_loading = False  # type: ignore[assignment]
        self._refresh_eav_grid()
        print(
            f"[EavGrid] scroll-end page: +{added} rows, "
            f"loaded={len(coordinator.state.rows):,}, elapsed={elapsed_ms:.1f}ms"
        )

    # ------------------------------------------------------------------
    # Cells, rows, columns
    # ------------------------------------------------------------------

    async def handle_eav_grid_cell_edit(self, row_id: str, column_id: str, value: str):
        """Save a cell when its input loses focus.  Reverted with a toast on failure."""
        coordinator = self._eav_grid_session().coordinator
        row = coordinator.state.find_row(row_id)
        if row is None or (row.value(column_id) or "") == value:
            return
        try:
            await coordinator.edit_cell(row_id, column_id, value)
        except GridError as exc:
            self._refresh_eav_grid()
            yield rx.toast.error(str(exc))
            return
        self._refresh_eav_grid()

    async def add_eav_grid_row(self):
        try:
            await self._eav_grid_session().coordinator.add_row()
        except GridError as exc:
            yield rx.toast.error(f"Failed to add row: {exc}")
            return
        self._refresh_eav_grid()

    async def delete_eav_grid_row(self, row_id: str):
        try:
            await self._eav_grid_session().coordinator.delete_row(row_id)
        except GridError as exc:
            yield rx.toast.error(f"Failed to delete row: {exc}")
            return
        self._refresh_eav_grid()

    async def delete_eav_grid_selected_rows(self):
        coordinator = self._eav_grid_session().coordinator
        selected = sorted(coordinator.state.selected_row_ids)
        for row_id in selected:
            try:
                await coordinator.delete_row(row_id)
            except GridError as exc:
                self._refresh_eav_grid()
                yield rx.toast.error(f"Failed to delete row: {exc}")
                return
        self._refresh_eav_grid()
        if selected:
            yield rx.toast.info(f"Deleted {len(selected)} row(s)")

    def toggle_eav_grid_row_selection(self, row_id: str) -> None:
        coordinator = self._eav_grid_session().coordinator
        selected = set(coordinator.state.selected_row_ids)
        selected.symmetric_difference_update({row_id})
        coordinator.set_selection(selected)
        self._refresh_eav_grid()

    def set_eav_grid_new_column_name(self, name: str) -> None:
        self.eav_grid_new_column_name = name  # type: ignore[assignment]

    async def add_eav_grid_column(self):
        name = self.eav_grid_new_column_name.strip() or f"Column {len(self.eav_grid_columns) + 1}"
        try:
            await self._eav_grid_session().coordinator.add_column(name)
        except GridError as exc:
            yield rx.toast.error(f"Failed to add column: {exc}")
            return
        self.eav_grid_new_column_name = ""  # type: ignore[assignment]
        self._refresh_eav_grid()

    async def delete_eav_grid_column(self, column_id: str):
        try:
            await self._eav_grid_session().coordinator.delete_column(column_id)
        except GridError as exc:
            yield rx.toast.error(f"Failed to delete column: {exc}")
            return
        self._refresh_eav_grid()

    async def rename_eav_grid_column(self, column_id: str, name: str):
        coordinator = self._eav_grid_session().coordinator
        current = next((c for c in coordinator.state.columns if c.id == column_id), None)
        if current is None or current.name == name:
            return
        try:
            await coordinator.rename_column(column_id, name)
        except GridError as exc:
            self._refresh_eav_grid()
            yield rx.toast.error(f"Failed to rename column: {exc}")
            return
        self._refresh_eav_grid()

    async def toggle_eav_grid_column_visibility(self, column_id: str):
        coordinator = self._eav_grid_session().coordinator
        column = next((c for c in coordinator.state.columns if c.id == column_id), None)
        if column is None:
            return
        try:
            await coordinator.set_column_visibility(column_id, not column.visible)
        except GridError as exc:
            self._refresh_eav_grid()
            yield rx.toast.error(f"Failed to update column: {exc}")
            return
        self._refresh_eav_grid()

    # ------------------------------------------------------------------
    # Filter and sort editors
    # ------------------------------------------------------------------

    def add_eav_grid_filter_item(self) -> None:
        first = self.eav_grid_columns[0]["field"] if self.eav_grid_columns else ""
        self.eav_grid_filter_items = self.eav_grid_filter_items + [  # type: ignore[assignment]
            {"column_id": first, "operator": "contains", "value": ""}
        ]

    def set_eav_grid_filter_field(self, index: int, key: str, value: str) -> None:
        items = [dict(item) for item in self.eav_grid_filter_items]
        if 0 <= index < len(items):
            items[index][key] = value
        self.eav_grid_filter_items = items  # type: ignore[assignment]

    def remove_eav_grid_filter_item(self, index: int) -> None:
        items = list(self.eav_grid_filter_items)
        if 0 <= index < len(items):
            del items[index]
        self.eav_grid_filter_items = items  # type: ignore[assignment]

    def set_eav_grid_filter_combinator(self, value: str) -> None:
        self.eav_grid_filter_combinator = value  # type: ignore[assignment]

    def add_eav_grid_sort_item(self) -> None:
        first = self.eav_grid_columns[0]["field"] if self.eav_grid_columns else ""
        self.eav_grid_sort_items = self.eav_grid_sort_items + [  # type: ignore[assignment]
            {"column_id": first, "direction": "asc"}
        ]

    def set_eav_grid_sort_field(self, index: int, key: str, value: str) -> None:
        items = [dict(item) for item in self.eav_grid_sort_items]
        if 0 <= index < len(items):
            items[index][key] = value
        self.eav_grid_sort_items = items  # type: ignore[assignment]

    def remove_eav_grid_sort_item(self, index: int) -> None:
        items = list(self.eav_grid_sort_items)
        if 0 <= index < len(items):
            del items[index]
        self.eav_grid_sort_items = items  # type: ignore[assignment]

    async def apply_eav_grid_filters(self):
        """Evaluate the filter editor's predicates in the store.

        Replaces the view with the matching rows and clears any sort.
        """
        predicates = [
            FilterPredicate(item["column_id"], item["operator"], item.get("value", ""))
            for item in self.eav_grid_filter_items
            if item.get("column_id")
        ]
        self.eav_grid_loading = True  # type: ignore[assignment]
        self.eav_grid_stats = "Filtering..."  # type: ignore[assignment]
        yield

        try:
            view = await self._eav_grid_session().coordinator.apply_filter(
                predicates, self.eav_grid_filter_combinator
            )
        except GridError as exc:
            self.eav_grid_loading = False  # type: ignore[assignment]
            self._refresh_eav_grid()
            yield rx.toast.error(f"Failed to apply filter: {exc}")
            return

        self.eav_grid_loading = False  # type: ignore[assignment]
        self._refresh_eav_grid()
        if predicates:
            yield rx.toast.info(f"{len(view):,} row(s) match")

    async def clear_eav_grid_filters(self):
        self.eav_grid_filter_items = []  # type: ignore[assignment]
        try:
            await self._eav_grid_session().coordinator.clear_filter()
        except GridError as exc:
            yield rx.toast.error(str(exc))
            return
        self._refresh_eav_grid()

    async def apply_eav_grid_sort(self):
        """Evaluate the sort editor's keys in the store; clears any filter."""
        keys = [
            SortKey(item["column_id"], item.get("direction", "asc"))  # type: ignore[arg-type]
            for item in self.eav_grid_sort_items
            if item.get("column_id")
        ]
        self.eav_grid_loading = True  # type: ignore[assignment]
        self.eav_grid_stats = "Sorting..."  # type: ignore[assignment]
        yield

        try:
            await self._eav_grid_session().coordinator.apply_sort(keys)
        except GridError as exc:
            self.eav_grid_loading = False  # type: ignore[assignment]
            self._refresh_eav_grid()
            yield rx.toast.error(f"Failed to sort: {exc}")
            return

        self.eav_grid_loading = False  # type: ignore[assignment]
        self._refresh_eav_grid()

    async def clear_eav_grid_sort(self):
        self.eav_grid_sort_items = []  # type: ignore[assignment]
        try:
            await self._eav_grid_session().coordinator.clear_sort()
        except GridError as exc:
            yield rx.toast.error(str(exc))
            return
        self._refresh_eav_grid()

    def set_eav_grid_search(self, term: str) -> None:
        """Highlight *term* in cells and headers; rows are not filtered."""
        self._eav_grid_session().coordinator.set_search_term(term)
        self.eav_grid_search_term = term  # type: ignore[assignment]
        self._refresh_eav_grid()

    def toggle_eav_grid_debug(self) -> None:
        self.eav_grid_debug_expanded = not self.eav_grid_debug_expanded  # type: ignore[assignment]

    # ------------------------------------------------------------------
    # Presets
    # ------------------------------------------------------------------

    def download_eav_grid_preset(self) -> rx.event.EventSpec:
        """Download the current filter and sort as ``view_preset.json``."""
        return rx.download(  # type: ignore[return-value]
            data=dump_preset(self._eav_grid_preset()),
            filename="view_preset.json",
        )

    async def handle_eav_grid_preset_upload(self, files: list[rx.UploadFile]):
        """Load a preset file into the editors and apply it.

        A preset holding both filters and sort keys applies the filter,
        since only one of the two can shape the view at a time.
        """
        if not files:
            return

        content = await files[0].read()
        try:
            preset = load_preset(content)
        except GridError as exc:
            yield rx.toast.error(f"Invalid preset: {exc}")
            return

        self.eav_grid_filter_items = [p.to_dict() for p in preset.predicates]  # type: ignore[assignment]
        self.eav_grid_filter_combinator = preset.combinator  # type: ignore[assignment]
        self.eav_grid_sort_items = [k.to_dict() for k in preset.sort_keys]  # type: ignore[assignment]
        self.eav_grid_loading = True  # type: ignore[assignment]
        self.eav_grid_stats = "Applying preset..."  # type: ignore[assignment]
        yield

        coordinator = self._eav_grid_session().coordinator
        try:
            if preset.predicates or not preset.sort_keys:
                await coordinator.apply_filter(preset.predicates, preset.combinator)
            else:
                await coordinator.apply_sort(preset.sort_keys)
        except GridError as exc:
            self.eav_grid_loading = False  # type: ignore[assignment]
            self._refresh_eav_grid()
            yield rx.toast.error(f"Failed to apply preset: {exc}")
            return

        self.eav_grid_loading = False  # type: ignore[assignment]
        self._refresh_eav_grid()
        yield rx.toast.info(
            f"Preset applied: {len(preset.predicates)} filter(s), {len(preset.sort_keys)} sort(s)"
        )

    # ------------------------------------------------------------------
    # Bulk population
    # ------------------------------------------------------------------

    def set_eav_grid_population_count(self, value: str) -> None:
        # Ignore intermediate input such as "" or "-".
        if value.strip().isdigit():
            self.eav_grid_population_count = int(value)  # type: ignore[assignment]

    @rx.event(background=True)
    async def populate_eav_grid(self):
        """Create ``eav_grid_population_count`` rows in the active table.

        Runs as a background task so the grid stays usable.  Progress is
        published after every batch and announced with a toast every
        third batch.
        """
        async with self:
            busy = self.eav_grid_populating
            if busy or not self.eav_grid_table_id:
                table_id = ""
            else:
                session = self._eav_grid_session()
                table_id = self.eav_grid_table_id
                count = self.eav_grid_population_count
                self.eav_grid_populating = True  # type: ignore[assignment]
                self.eav_grid_population_rows = 0  # type: ignore[assignment]
                self.eav_grid_population_batch = 0  # type: ignore[assignment]
                self.eav_grid_population_total_batches = 0  # type: ignore[assignment]

        if busy:
            yield rx.toast.warning("Row creation already in progress")
            return
        if not table_id:
            return

        notices: list[PopulationProgress] = []
        populator = BulkPopulator(session.coordinator, on_progress=notices.append, verbose=True)
        t0 = time.perf_counter()
        try:
            async for _ in populator.populate(table_id, count):
                async with self:
                    self._publish_eav_grid_population(populator.progress)
                    self._refresh_eav_grid()
                for progress in notices:
                    yield rx.toast.info(
                        f"Created {progress.rows_created:,} rows "
                        f"(batch {progress.batch_number}/{progress.total_batches})"
                    )
                notices.clear()
        except PopulationInProgressError:
            # Another session is filling this table.
            async with self:
                self.eav_grid_populating = False  # type: ignore[assignment]
            yield rx.toast.warning("Row creation already in progress")
            return
        except GridError as exc:
            async with self:
                self._publish_eav_grid_population(populator.progress)
                self.eav_grid_populating = False  # type: ignore[assignment]
                self._refresh_eav_grid()
            yield rx.toast.error(str(exc))
            return

        async with self:
            self.eav_grid_populating = False  # type: ignore[assignment]
            self._refresh_eav_grid()
        elapsed_s = time.perf_counter() - t0
        yield rx.toast.success(f"Created {count:,} rows in {elapsed_s:.1f}s")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _eav_grid_session(self) -> _GridSession:
        key = f"{type(self).__name__}:{self.router.session.client_token}"
        return _get_session(key, self._eav_grid_page_size, self.eav_grid_row_height)

    def _reset_eav_grid_editors(self) -> None:
        self.eav_grid_filter_items = []  # type: ignore[assignment]
        self.eav_grid_filter_combinator = "and"  # type: ignore[assignment]
        self.eav_grid_sort_items = []  # type: ignore[assignment]
        self.eav_grid_search_term = ""  # type: ignore[assignment]

    def _publish_eav_grid_population(self, progress: PopulationProgress) -> None:
        self.eav_grid_population_rows = progress.rows_created  # type: ignore[assignment]
        self.eav_grid_population_batch = progress.batch_number  # type: ignore[assignment]
        self.eav_grid_population_total_batches = progress.total_batches  # type: ignore[assignment]

    def _eav_grid_preset(self) -> ViewPreset:
        state = self._eav_grid_session().coordinator.state
        return ViewPreset(
            predicates=state.predicates,
            combinator=state.combinator,
            sort_keys=state.sort_keys,
        )

    def _refresh_eav_grid(self) -> None:
        """Copy the coordinator's view and the renderer's window into state vars."""
        t0 = time.perf_counter()
        session = self._eav_grid_session()
        state = session.coordinator.state
        view = session.coordinator.current_view()
        renderer = session.renderer
        visible = state.visible_columns
        term = state.search_term

        rows: list[dict[str, Any]] = []
        for index, row in renderer.materialize(view):
            flat = row_to_grid_dict(row, visible)
            flat["__index__"] = index + 1
            flat["__selected__"] = row.id in state.selected_row_ids
            flat["__matches__"] = [cid for _, cid in matching_cells([row], visible, term)]
            rows.append(flat)

        if session.search_state is not state or session.search_term != term:
            session.search_state = state
            session.search_term = term
            session.search_count = count_matches(view.rows, state.columns, term)

        self.eav_grid_rows = rows  # type: ignore[assignment]
        self.eav_grid_columns = [  # type: ignore[assignment]
            {**column_to_grid_dict(c), "searchMatch": column_header_matches(c, term)}
            for c in state.columns
        ]
        self.eav_grid_visible_columns = [  # type: ignore[assignment]
            c for c in self.eav_grid_columns if c["visible"]
        ]
        self.eav_grid_table_id = state.table_id or ""  # type: ignore[assignment]
        self.eav_grid_table_name = state.table_name  # type: ignore[assignment]
        self.eav_grid_row_count = len(view)  # type: ignore[assignment]
        self.eav_grid_total_rows = view.total_rows  # type: ignore[assignment]
        self.eav_grid_mode = view.mode  # type: ignore[assignment]
        self.eav_grid_generation = view.generation  # type: ignore[assignment]
        self.eav_grid_total_height = int(renderer.total_height)  # type: ignore[assignment]
        self.eav_grid_window_offset = int(renderer.top_padding)  # type: ignore[assignment]
        self.eav_grid_search_matches = session.search_count  # type: ignore[assignment]
        self._update_eav_grid_filter_debug(state.columns)

        window = renderer.window
        elapsed_ms = (time.perf_counter() - t0) * 1000
        self.eav_grid_stats = (  # type: ignore[assignment]
            f"{view.mode}  window={window.start:,}-{window.stop:,}  "
            f"view={len(view):,} / {view.total_rows:,}  gen={view.generation}  "
            f"{elapsed_ms:.0f}ms"
        )

    def _update_eav_grid_filter_debug(self, columns: tuple[Column, ...]) -> None:
        state = self._eav_grid_session().coordinator.state
        names = {c.id: c.name for c in columns}
        parts: list[str] = []
        if state.predicates:
            parts.append(describe_filters(state.predicates, state.combinator, names))
        if state.sort_keys:
            parts.append(describe_sorts(state.sort_keys, names))
        parts.append(f"showing {state.mode} view")
        self.eav_grid_filter_debug = " | ".join(parts)  # type: ignore[assignment]

        if state.predicates and state.table_id:
            sql, params = generate_filter_sql(state.table_id, state.predicates, state.combinator)
            self.eav_grid_filter_sql = f"{sql}\n-- params: {params!r}"  # type: ignore[assignment]
        else:
            self.eav_grid_filter_sql = ""  # type: ignore[assignment]

        preset = self._eav_grid_preset()
        self.eav_grid_preset_json = "" if preset.is_empty else dump_preset(preset)  # type: ignore[assignment]


# ---------------------------------------------------------------------------
# UI helpers
# ---------------------------------------------------------------------------

def _cell(state_cls: type, row: rx.Var, column: rx.Var) -> rx.Component:
    field = column["field"].to(str)
    row_id = row[ROW_ID_FIELD].to(str)
    value = row[field].to(str)
    return rx.input(
        default_value=value,
        # The key includes the value so a reverted edit remounts the input.
        key=row_id + ":" + field + ":" + value,
        on_blur=lambda new_value: state_cls.handle_eav_grid_cell_edit(row_id, field, new_value),  # type: ignore[attr-defined]
        variant="soft",
        size="1",
        width=_CELL_WIDTH,
        min_width=_CELL_WIDTH,
        background=rx.cond(
            row["__matches__"].to(list).contains(field),
            "var(--yellow-a5)",
            "transparent",
        ),
    )


def _row(state_cls: type, row: rx.Var) -> rx.Component:
    row_id = row[ROW_ID_FIELD].to(str)
    return rx.hstack(
        rx.box(
            rx.text(row["__index__"].to(str), size="1", color="var(--gray-9)"),
            width=_INDEX_WIDTH,
            min_width=_INDEX_WIDTH,
            padding_left="0.5em",
            cursor="pointer",
            on_click=state_cls.toggle_eav_grid_row_selection(row_id),  # type: ignore[attr-defined]
        ),
        rx.foreach(
            state_cls.eav_grid_visible_columns,  # type: ignore[attr-defined]
            lambda column: _cell(state_cls, row, column),
        ),
        rx.icon_button(
            rx.icon("trash_2", size=12),
            size="1",
            variant="ghost",
            color_scheme="gray",
            on_click=state_cls.delete_eav_grid_row(row_id),  # type: ignore[attr-defined]
        ),
        key=row_id,
        height=state_cls.eav_grid_row_height_px,  # type: ignore[attr-defined]
        align="center",
        spacing="1",
        background=rx.cond(row["__selected__"].to(bool), "var(--accent-a3)", "transparent"),
        border_bottom="1px solid var(--gray-a4)",
    )


def _header_cell(state_cls: type, column: rx.Var) -> rx.Component:
    field = column["field"].to(str)
    name = column["headerName"].to(str)
    return rx.hstack(
        rx.input(
            default_value=name,
            key=field + ":" + name,
            on_blur=lambda new_name: state_cls.rename_eav_grid_column(field, new_name),  # type: ignore[attr-defined]
            variant="surface",
            size="1",
            font_weight="bold",
            flex="1 1 auto",
        ),
        rx.icon_button(
            rx.icon("eye_off", size=12),
            size="1",
            variant="ghost",
            color_scheme="gray",
            on_click=state_cls.toggle_eav_grid_column_visibility(field),  # type: ignore[attr-defined]
        ),
        rx.icon_button(
            rx.icon("x", size=12),
            size="1",
            variant="ghost",
            color_scheme="red",
            on_click=state_cls.delete_eav_grid_column(field),  # type: ignore[attr-defined]
        ),
        width=_CELL_WIDTH,
        min_width=_CELL_WIDTH,
        spacing="1",
        align="center",
        background=rx.cond(column["searchMatch"].to(bool), "var(--yellow-a5)", "transparent"),
    )


def eav_grid_toolbar(state_cls: type) -> rx.Component:
    """Table tabs, search box, row/column creation and bulk population controls."""
    tabs = rx.hstack(
        rx.foreach(
            state_cls.eav_grid_tables,  # type: ignore[attr-defined]
            lambda table: rx.button(
                table["name"],
                size="1",
                variant=rx.cond(
                    table["id"] == state_cls.eav_grid_table_id,  # type: ignore[attr-defined]
                    "solid",
                    "soft",
                ),
                on_click=state_cls.switch_eav_grid_table(table["id"]),  # type: ignore[attr-defined]
            ),
        ),
        rx.icon_button(
            rx.icon("plus", size=14),
            size="1",
            variant="outline",
            on_click=state_cls.create_eav_grid_table,  # type: ignore[attr-defined]
        ),
        spacing="2",
        align="center",
        wrap="wrap",
    )

    actions = rx.hstack(
        rx.input(
            placeholder="Search",
            value=state_cls.eav_grid_search_term,  # type: ignore[attr-defined]
            on_change=state_cls.set_eav_grid_search,  # type: ignore[attr-defined]
            size="1",
            width="12em",
        ),
        rx.cond(
            state_cls.eav_grid_search_term != "",  # type: ignore[attr-defined]
            rx.badge(state_cls.eav_grid_search_matches.to(str), " match(es)"),  # type: ignore[attr-defined]
        ),
        rx.spacer(),
        rx.button(
            rx.icon("plus", size=14),
            "Row",
            size="1",
            variant="outline",
            on_click=state_cls.add_eav_grid_row,  # type: ignore[attr-defined]
        ),
        rx.button(
            rx.icon("trash_2", size=14),
            "Selected",
            size="1",
            variant="outline",
            color_scheme="red",
            on_click=state_cls.delete_eav_grid_selected_rows,  # type: ignore[attr-defined]
        ),
        rx.input(
            placeholder="New column",
            value=state_cls.eav_grid_new_column_name,  # type: ignore[attr-defined]
            on_change=state_cls.set_eav_grid_new_column_name,  # type: ignore[attr-defined]
            size="1",
            width="10em",
        ),
        rx.button(
            rx.icon("columns_3", size=14),
            "Column",
            size="1",
            variant="outline",
            on_click=state_cls.add_eav_grid_column,  # type: ignore[attr-defined]
        ),
        rx.input(
            type="number",
            value=state_cls.eav_grid_population_count.to(str),  # type: ignore[attr-defined]
            on_change=state_cls.set_eav_grid_population_count,  # type: ignore[attr-defined]
            size="1",
            width="7em",
        ),
        rx.button(
            rx.icon("rows_4", size=14),
            "Create rows",
            size="1",
            loading=state_cls.eav_grid_populating,  # type: ignore[attr-defined]
            on_click=state_cls.populate_eav_grid,  # type: ignore[attr-defined]
        ),
        spacing="2",
        align="center",
        width="100%",
    )

    hidden = rx.hstack(
        rx.foreach(
            state_cls.eav_grid_columns,  # type: ignore[attr-defined]
            lambda column: rx.cond(
                column["visible"].to(bool),
                rx.fragment(),
                rx.button(
                    rx.icon("eye", size=12),
                    column["headerName"],
                    size="1",
                    variant="ghost",
                    color_scheme="gray",
                    on_click=state_cls.toggle_eav_grid_column_visibility(column["field"]),  # type: ignore[attr-defined]
                ),
            ),
        ),
        spacing="1",
    )

    return rx.vstack(tabs, actions, hidden, spacing="2", width="100%", margin_bottom="0.5em")


def eav_grid_population_bar(state_cls: type) -> rx.Component:
    """Progress bar shown while a population run is in flight."""
    return rx.cond(
        state_cls.eav_grid_populating,  # type: ignore[attr-defined]
        rx.hstack(
            rx.text(
                "Creating rows: ",
                state_cls.eav_grid_population_rows.to(str),  # type: ignore[attr-defined]
                " (batch ",
                state_cls.eav_grid_population_batch.to(str),  # type: ignore[attr-defined]
                "/",
                state_cls.eav_grid_population_total_batches.to(str),  # type: ignore[attr-defined]
                ")",
                size="1",
                white_space="nowrap",
            ),
            rx.progress(value=state_cls.eav_grid_population_percent, width="100%"),  # type: ignore[attr-defined]
            spacing="2",
            align="center",
            width="100%",
            margin_bottom="0.5em",
        ),
    )


def eav_grid_stats_bar(state_cls: type) -> rx.Component:
    """Row counts, view mode and the last refresh timing."""
    return rx.box(
        rx.hstack(
            rx.text(
                state_cls.eav_grid_row_count.to(str),  # type: ignore[attr-defined]
                " rows in view",
                size="2",
                weight="medium",
            ),
            rx.text("|", size="2", color="var(--gray-7)"),
            rx.text(
                state_cls.eav_grid_stats,  # type: ignore[attr-defined]
                size="1",
                color="var(--gray-9)",
                font_family="monospace",
            ),
            spacing="2",
            align="center",
        ),
        padding="0.4em 0.8em",
        border_radius="6px",
        background="var(--blue-a2)",
        border="1px solid var(--blue-a5)",
        margin_bottom="0.5em",
    )


def _filter_item_editor(state_cls: type, item: rx.Var, index: rx.Var) -> rx.Component:
    return rx.hstack(
        rx.select.root(
            rx.select.trigger(placeholder="Column"),
            rx.select.content(
                rx.foreach(
                    state_cls.eav_grid_columns,  # type: ignore[attr-defined]
                    lambda column: rx.select.item(column["headerName"], value=column["field"]),
                ),
            ),
            value=item["column_id"],
            on_change=lambda v: state_cls.set_eav_grid_filter_field(index, "column_id", v),  # type: ignore[attr-defined]
            size="1",
        ),
        rx.select(
            list(FILTER_OPERATORS),
            value=item["operator"],
            on_change=lambda v: state_cls.set_eav_grid_filter_field(index, "operator", v),  # type: ignore[attr-defined]
            size="1",
        ),
        rx.input(
            value=item["value"],
            on_change=lambda v: state_cls.set_eav_grid_filter_field(index, "value", v),  # type: ignore[attr-defined]
            size="1",
            width="12em",
        ),
        rx.icon_button(
            rx.icon("x", size=12),
            size="1",
            variant="ghost",
            on_click=state_cls.remove_eav_grid_filter_item(index),  # type: ignore[attr-defined]
        ),
        spacing="2",
        align="center",
    )


def _sort_item_editor(state_cls: type, item: rx.Var, index: rx.Var) -> rx.Component:
    return rx.hstack(
        rx.select.root(
            rx.select.trigger(placeholder="Column"),
            rx.select.content(
                rx.foreach(
                    state_cls.eav_grid_columns,  # type: ignore[attr-defined]
                    lambda column: rx.select.item(column["headerName"], value=column["field"]),
                ),
            ),
            value=item["column_id"],
            on_change=lambda v: state_cls.set_eav_grid_sort_field(index, "column_id", v),  # type: ignore[attr-defined]
            size="1",
        ),
        rx.select(
            ["asc", "desc"],
            value=item["direction"],
            on_change=lambda v: state_cls.set_eav_grid_sort_field(index, "direction", v),  # type: ignore[attr-defined]
            size="1",
        ),
        rx.icon_button(
            rx.icon("x", size=12),
            size="1",
            variant="ghost",
            on_click=state_cls.remove_eav_grid_sort_item(index),  # type: ignore[attr-defined]
        ),
        spacing="2",
        align="center",
    )


def eav_grid_filter_panel(state_cls: type) -> rx.Component:
    """Filter and sort editors with a collapsible debug section.

    The debug section shows the equivalent SQL for the active filter and
    the preset JSON (copy / download / upload).
    """
    upload_id = f"eav_preset_upload_{state_cls.__name__}"

    filters = rx.vstack(
        rx.hstack(
            rx.text("Filters", size="2", weight="bold"),
            rx.select(
                ["and", "or"],
                value=state_cls.eav_grid_filter_combinator,  # type: ignore[attr-defined]
                on_change=state_cls.set_eav_grid_filter_combinator,  # type: ignore[attr-defined]
                size="1",
            ),
            rx.button("Add", size="1", variant="outline", on_click=state_cls.add_eav_grid_filter_item),  # type: ignore[attr-defined]
            rx.button("Apply", size="1", on_click=state_cls.apply_eav_grid_filters),  # type: ignore[attr-defined]
            rx.button(
                "Clear",
                size="1",
                variant="outline",
                color_scheme="orange",
                on_click=state_cls.clear_eav_grid_filters,  # type: ignore[attr-defined]
            ),
            spacing="2",
            align="center",
        ),
        rx.foreach(
            state_cls.eav_grid_filter_items,  # type: ignore[attr-defined]
            lambda item, index: _filter_item_editor(state_cls, item, index),
        ),
        spacing="2",
    )

    sorts = rx.vstack(
        rx.hstack(
            rx.text("Sort", size="2", weight="bold"),
            rx.button("Add", size="1", variant="outline", on_click=state_cls.add_eav_grid_sort_item),  # type: ignore[attr-defined]
            rx.button("Apply", size="1", on_click=state_cls.apply_eav_grid_sort),  # type: ignore[attr-defined]
            rx.button(
                "Clear",
                size="1",
                variant="outline",
                color_scheme="orange",
                on_click=state_cls.clear_eav_grid_sort,  # type: ignore[attr-defined]
            ),
            spacing="2",
            align="center",
        ),
        rx.foreach(
            state_cls.eav_grid_sort_items,  # type: ignore[attr-defined]
            lambda item, index: _sort_item_editor(state_cls, item, index),
        ),
        spacing="2",
    )

    header = rx.hstack(
        rx.button(
            rx.cond(
                state_cls.eav_grid_debug_expanded,  # type: ignore[attr-defined]
                rx.icon("chevron_down", size=14),
                rx.icon("chevron_right", size=14),
            ),
            size="1",
            variant="ghost",
            color_scheme="orange",
            on_click=state_cls.toggle_eav_grid_debug,  # type: ignore[attr-defined]
            padding="2px",
        ),
        rx.icon("bug", size=14, color="var(--orange-9)"),
        rx.text(
            state_cls.eav_grid_filter_debug,  # type: ignore[attr-defined]
            size="1",
            color="var(--orange-11)",
            white_space="nowrap",
            overflow="hidden",
            text_overflow="ellipsis",
            flex="1 1 auto",
            min_width="0",
        ),
        rx.spacer(),
        rx.upload(
            rx.button(
                rx.icon("upload", size=14),
                "Upload",
                size="1",
                variant="outline",
                color_scheme="blue",
            ),
            id=upload_id,
            accept={".json": ["application/json"]},
            max_files=1,
            no_drag=True,
            on_drop=state_cls.handle_eav_grid_preset_upload(  # type: ignore[attr-defined]
                rx.upload_files(upload_id=upload_id)
            ),
            padding="0",
            border="none",
        ),
        align="center",
        spacing="2",
        width="100%",
    )

    expanded = rx.cond(
        state_cls.eav_grid_debug_expanded,  # type: ignore[attr-defined]
        rx.vstack(
            rx.cond(
                state_cls.eav_grid_filter_sql != "",  # type: ignore[attr-defined]
                rx.code_block(
                    state_cls.eav_grid_filter_sql,  # type: ignore[attr-defined]
                    language="sql",
                    show_line_numbers=False,
                    wrap_long_lines=True,
                ),
            ),
            rx.cond(
                state_cls.eav_grid_preset_json != "",  # type: ignore[attr-defined]
                rx.box(
                    rx.hstack(
                        rx.icon("braces", size=14, color="var(--orange-9)"),
                        rx.text("Preset JSON", size="1", weight="bold", color="var(--orange-11)"),
                        rx.spacer(),
                        rx.button(
                            rx.icon("clipboard_copy", size=12),
                            "Copy",
                            size="1",
                            variant="ghost",
                            color_scheme="orange",
                            on_click=rx.set_clipboard(state_cls.eav_grid_preset_json),  # type: ignore[attr-defined]
                        ),
                        rx.button(
                            rx.icon("download", size=12),
                            "Download",
                            size="1",
                            variant="ghost",
                            color_scheme="orange",
                            on_click=state_cls.download_eav_grid_preset,  # type: ignore[attr-defined]
                        ),
                        align="center",
                        spacing="2",
                        width="100%",
                    ),
                    rx.code_block(
                        state_cls.eav_grid_preset_json,  # type: ignore[attr-defined]
                        language="json",
                        show_line_numbers=False,
                        wrap_long_lines=True,
                    ),
                    width="100%",
                ),
            ),
            width="100%",
            margin_top="0.5em",
        ),
    )

    return rx.box(
        rx.hstack(filters, sorts, spacing="6", align="start", wrap="wrap"),
        rx.box(header, expanded, margin_top="0.75em"),
        padding="0.5em 0.8em",
        border_radius="8px",
        background="var(--orange-a2)",
        border="1px solid var(--orange-a5)",
        margin_top="0.5em",
        margin_bottom="0.5em",
    )


def eav_grid(
    state_cls: type,
    *,
    height: str = "600px",
    width: str = "100%",
    show_toolbar: bool = True,
    show_filter_panel: bool = True,
    debug_log: bool = False,
) -> rx.Component:
    """Return a windowed, editable grid bound to an :class:`EavGridMixin` state.

    Args:
        state_cls: The ``rx.State`` subclass that also inherits from
            :class:`EavGridMixin`.
        height: CSS height of the scrollable body.
        width: CSS width of the grid.
        show_toolbar: Show table tabs, search and creation controls.
        show_filter_panel: Show the filter/sort editors below the grid.
        debug_log: Enable browser console logging in the viewport.

    Returns:
        A Reflex component.
    """
    header = rx.hstack(
        rx.box(width=_INDEX_WIDTH, min_width=_INDEX_WIDTH),
        rx.foreach(
            state_cls.eav_grid_visible_columns,  # type: ignore[attr-defined]
            lambda column: _header_cell(state_cls, column),
        ),
        spacing="1",
        align="center",
        padding_y="0.25em",
        border_bottom="2px solid var(--gray-a6)",
    )

    body = viewport(
        rx.foreach(
            state_cls.eav_grid_rows,  # type: ignore[attr-defined]
            lambda row: _row(state_cls, row),
        ),
        total_height=state_cls.eav_grid_total_height,  # type: ignore[attr-defined]
        window_offset=state_cls.eav_grid_window_offset,  # type: ignore[attr-defined]
        scroll_key=state_cls.eav_grid_generation,  # type: ignore[attr-defined]
        on_viewport_change=state_cls.handle_eav_grid_viewport,  # type: ignore[attr-defined]
        debug_log=debug_log,
        height=height,
    )

    grid = rx.box(
        rx.box(header, body, overflow_x="auto", width="100%"),
        width=width,
        border="1px solid var(--gray-a5)",
        border_radius="6px",
    )

    parts: list[rx.Component] = []
    if show_toolbar:
        parts.append(eav_grid_toolbar(state_cls))
        parts.append(eav_grid_population_bar(state_cls))
    parts.append(grid)
    if show_filter_panel:
        parts.append(eav_grid_filter_panel(state_cls))
    return rx.fragment(*parts)
