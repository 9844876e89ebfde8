"""Tests for the cache & mutation coordinator."""

import asyncio

import pytest

from reflex_eav_grid.coordinator import (
    CellValueSet,
    ColumnRemoved,
    Coordinator,
    FilterApplied,
    MutationStatus,
    RowsCleared,
    SortApplied,
    ViewState,
    reduce_view,
)
from reflex_eav_grid.errors import (
    CellEditError,
    PopulationInProgressError,
    StoreError,
    ValidationError,
)
from reflex_eav_grid.models import FilterPredicate, Row, SortKey
from reflex_eav_grid.store import MemoryTableStore, new_id


class FlakyStore(MemoryTableStore):
    """Raises a transport error from the named methods."""

    def __init__(self, failing: set[str], **kwargs) -> None:
        super().__init__(**kwargs)
        self.failing = failing

    def _maybe_fail(self, name: str) -> None:
        if name in self.failing:
            raise ConnectionError(f"{name} unavailable")

    async def update_cell(self, row_id, column_id, value):
        await asyncio.sleep(0)
        self._maybe_fail("update_cell")
        return await super().update_cell(row_id, column_id, value)

    async def filter_rows(self, table_id, predicates, combinator="and"):
        self._maybe_fail("filter_rows")
        return await super().filter_rows(table_id, predicates, combinator)

    async def set_column_visibility(self, column_id, visible):
        self._maybe_fail("set_column_visibility")
        return await super().set_column_visibility(column_id, visible)

    async def get_table(self, *args, **kwargs):
        self._maybe_fail("get_table")
        return await super().get_table(*args, **kwargs)


async def _named_table(store: MemoryTableStore) -> tuple[Coordinator, str]:
    """A table whose three default rows have names a, b, c and statuses open, closed, null."""
    table = await store.create_table()
    name, status = table.columns[0].id, table.columns[3].id
    page = await store.get_table(table.id)
    for row, (n, s) in zip(page.rows, [("a", "open"), ("b", "closed"), ("c", None)]):
        await store.update_cell(row.id, name, n)
        await store.update_cell(row.id, status, s)
    coordinator = Coordinator(store, page_size=100)
    await coordinator.load_table(table.id)
    return coordinator, table.id


def _names(coordinator: Coordinator) -> list[str | None]:
    name = coordinator.state.columns[0].id
    return [r.value(name) for r in coordinator.current_view().rows]


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def test_pages_are_appended_without_a_new_generation():
    async def scenario():
        store = MemoryTableStore()
        table = await store.create_table()
        await store.create_rows_batch(table.id, 247, 1, 1, [new_id() for _ in range(247)])
        coordinator = Coordinator(store, page_size=100)
        first = await coordinator.load_table(table.id)
        added = [await coordinator.load_next_page() for _ in range(3)]
        appended = coordinator.current_view()
        await coordinator.load_all()
        return first, added, appended, coordinator

    first, added, appended, coordinator = asyncio.run(scenario())
    assert len(first) == 100
    assert first.total_rows == 250
    assert added == [100, 50, 0]
    assert len(appended) == 250
    assert appended.generation == first.generation
    assert not coordinator.state.has_more
    assert coordinator.current_view().generation == first.generation + 1


def test_switching_tables_discards_filter_sort_and_search():
    async def scenario():
        store = MemoryTableStore()
        coordinator, _ = await _named_table(store)
        name = coordinator.state.columns[0].id
        await coordinator.apply_sort([SortKey(name, "desc")])
        coordinator.set_search_term("a")
        coordinator.set_selection([coordinator.state.rows[0].id])
        other = await store.create_table("Other")
        await coordinator.switch_table(other.id)
        return coordinator.state, other

    state, other = asyncio.run(scenario())
    assert state.table_id == other.id
    assert state.table_name == "Other"
    assert state.mode == "unfiltered"
    assert state.sort_keys == ()
    assert state.search_term == ""
    assert state.selected_row_ids == frozenset()


def test_store_not_found_propagates():
    async def scenario():
        await Coordinator(MemoryTableStore()).load_table("missing")

    with pytest.raises(StoreError):
        asyncio.run(scenario())


def test_operations_need_an_active_table():
    async def scenario():
        await Coordinator(MemoryTableStore()).add_row()

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


# ---------------------------------------------------------------------------
# Cell edits
# ---------------------------------------------------------------------------

def test_cell_edit_is_optimistic_and_confirmed():
    async def scenario():
        store = MemoryTableStore()
        coordinator, table_id = await _named_table(store)
        row_id = coordinator.state.rows[0].id
        column_id = coordinator.state.columns[1].id
        task = asyncio.ensure_future(coordinator.edit_cell(row_id, column_id, "draft"))
        await asyncio.sleep(0)
        optimistic = coordinator.state.find_row(row_id).value(column_id)
        mutation = await task
        stored = await store.get_table(table_id)
        return optimistic, mutation, stored.rows[0].value(column_id)

    optimistic, mutation, stored = asyncio.run(scenario())
    assert optimistic == "draft"
    assert mutation.status is MutationStatus.CONFIRMED
    assert mutation.kind == "cell"
    assert stored == "draft"


def test_failed_cell_edit_reverts_to_prior_value():
    async def scenario():
        store = FlakyStore(set())
        coordinator, _ = await _named_table(store)
        store.failing = {"update_cell"}
        row_id = coordinator.state.rows[1].id
        name = coordinator.state.columns[0].id
        try:
            await coordinator.edit_cell(row_id, name, "bee")
        except CellEditError as exc:
            error = exc
        return coordinator, error, row_id, name

    coordinator, error, row_id, name = asyncio.run(scenario())
    assert error.row_id == row_id
    assert error.column_id == name
    assert "update_cell unavailable" in str(error)
    assert coordinator.state.find_row(row_id).value(name) == "b"
    mutation = coordinator.mutations[-1]
    assert mutation.status is MutationStatus.REVERTED
    assert mutation.snapshot == "b"


def test_failed_edit_does_not_clobber_a_later_edit():
    async def scenario():
        store = FlakyStore(set())
        coordinator, _ = await _named_table(store)
        row_id = coordinator.state.rows[0].id
        name = coordinator.state.columns[0].id
        store.failing = {"update_cell"}
        first = asyncio.ensure_future(coordinator.edit_cell(row_id, name, "one"))
        await asyncio.sleep(0)
        # The second edit lands locally before the first one fails.
        coordinator.dispatch(CellValueSet(row_id, name, "two"))
        with pytest.raises(CellEditError):
            await first
        return coordinator.state.find_row(row_id).value(name)

    assert asyncio.run(scenario()) == "two"


def test_edit_updates_every_copy_of_the_row():
    async def scenario():
        store = MemoryTableStore()
        coordinator, _ = await _named_table(store)
        status = coordinator.state.columns[3].id
        notes = coordinator.state.columns[1].id
        await coordinator.apply_filter([FilterPredicate(status, "is", "open")])
        row_id = coordinator.current_view().rows[0].id
        await coordinator.edit_cell(row_id, notes, "checked")
        return coordinator.state, row_id, notes

    state, row_id, notes = asyncio.run(scenario())
    assert state.filtered_rows[0].value(notes) == "checked"
    canonical = next(r for r in state.rows if r.id == row_id)
    assert canonical.value(notes) == "checked"


def test_edit_rejects_unknown_row_and_column():
    async def scenario(kind: str):
        coordinator, _ = await _named_table(MemoryTableStore())
        if kind == "row":
            await coordinator.edit_cell("nope", coordinator.state.columns[0].id, "x")
        else:
            await coordinator.edit_cell(coordinator.state.rows[0].id, "nope", "x")

    for kind in ("row", "column"):
        with pytest.raises(ValidationError):
            asyncio.run(scenario(kind))


# ---------------------------------------------------------------------------
# Rows and columns
# ---------------------------------------------------------------------------

def test_add_and_delete_rows():
    async def scenario():
        coordinator, _ = await _named_table(MemoryTableStore())
        row = await coordinator.add_row()
        after_add = coordinator.state
        await coordinator.delete_row(coordinator.state.rows[0].id)
        return row, after_add, coordinator.state

    row, after_add, after_delete = asyncio.run(scenario())
    assert after_add.rows[-1] == row
    assert after_add.total_rows == 4
    assert len(after_delete.rows) == 3
    assert after_delete.total_rows == 3


def test_column_lifecycle():
    async def scenario():
        coordinator, _ = await _named_table(MemoryTableStore())
        column = await coordinator.add_column("Priority")
        with_column = coordinator.state
        renamed = await coordinator.rename_column(column.id, "Urgency")
        await coordinator.delete_column(column.id)
        return column, with_column, renamed, coordinator.state

    column, with_column, renamed, final = asyncio.run(scenario())
    assert with_column.columns[-1] == column
    assert all(r.value(column.id) == "" and r.has_cell(column.id) for r in with_column.rows)
    assert renamed.name == "Urgency"
    assert column.id not in {c.id for c in final.columns}
    assert not any(r.has_cell(column.id) for r in final.rows)


def test_empty_column_name_is_rejected_without_store_call():
    async def scenario():
        coordinator, _ = await _named_table(MemoryTableStore())
        await coordinator.add_column("   ")

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_failed_visibility_change_is_reverted():
    async def scenario():
        store = FlakyStore(set())
        coordinator, _ = await _named_table(store)
        column_id = coordinator.state.columns[2].id
        hidden = await coordinator.set_column_visibility(column_id, False)
        visible_after_hide = coordinator.state.visible_columns
        store.failing = {"set_column_visibility"}
        with pytest.raises(StoreError):
            await coordinator.set_column_visibility(column_id, True)
        return hidden, visible_after_hide, coordinator.state, column_id

    hidden, visible_after_hide, state, column_id = asyncio.run(scenario())
    assert hidden.status is MutationStatus.CONFIRMED
    assert column_id not in {c.id for c in visible_after_hide}
    assert column_id not in {c.id for c in state.visible_columns}
    assert len(state.columns) == 5


# ---------------------------------------------------------------------------
# Filter and sort
# ---------------------------------------------------------------------------

def test_filter_and_sort_are_mutually_exclusive():
    async def scenario():
        coordinator, _ = await _named_table(MemoryTableStore())
        name = coordinator.state.columns[0].id
        status = coordinator.state.columns[3].id
        g0 = coordinator.current_view().generation

        await coordinator.apply_filter([FilterPredicate(status, "is empty")])
        filtered = (coordinator.current_view(), _names(coordinator))

        await coordinator.apply_sort([SortKey(name, "desc")])
        sorted_ = (coordinator.current_view(), _names(coordinator), coordinator.state)

        await coordinator.apply_filter([FilterPredicate(name, "is not", "b")])
        refiltered = (coordinator.current_view(), _names(coordinator), coordinator.state)
        return g0, filtered, sorted_, refiltered

    g0, filtered, sorted_, refiltered = asyncio.run(scenario())
    assert filtered[0].mode == "filtered"
    assert filtered[1] == ["c"]
    assert filtered[0].generation == g0 + 1

    assert sorted_[0].mode == "sorted"
    assert sorted_[1] == ["c", "b", "a"]
    assert sorted_[2].filtered_rows is None
    assert sorted_[0].generation == g0 + 2

    assert refiltered[0].mode == "filtered"
    assert refiltered[1] == ["a", "c"]
    assert refiltered[2].sorted_rows is None


def test_empty_match_is_distinct_from_no_filter():
    async def scenario():
        coordinator, _ = await _named_table(MemoryTableStore())
        name = coordinator.state.columns[0].id
        await coordinator.apply_filter([FilterPredicate(name, "is", "zzz")])
        empty = coordinator.current_view()
        await coordinator.clear_filter()
        return empty, coordinator.current_view()

    empty, cleared = asyncio.run(scenario())
    assert empty.mode == "filtered"
    assert len(empty) == 0
    assert cleared.mode == "unfiltered"
    assert len(cleared) == 3


def test_clear_sort_restores_canonical_order():
    async def scenario():
        coordinator, _ = await _named_table(MemoryTableStore())
        name = coordinator.state.columns[0].id
        await coordinator.apply_sort([SortKey(name, "desc")])
        await coordinator.clear_sort()
        return coordinator

    coordinator = asyncio.run(scenario())
    assert coordinator.current_view().mode == "unfiltered"
    assert _names(coordinator) == ["a", "b", "c"]


def test_failed_filter_keeps_current_view():
    async def scenario():
        store = FlakyStore(set())
        coordinator, _ = await _named_table(store)
        before = coordinator.current_view()
        store.failing = {"filter_rows"}
        with pytest.raises(StoreError):
            await coordinator.apply_filter(
                [FilterPredicate(coordinator.state.columns[0].id, "is", "a")]
            )
        return before, coordinator.current_view()

    before, after = asyncio.run(scenario())
    assert after == before


def test_invalid_filter_is_rejected_before_store_call():
    async def scenario():
        coordinator, _ = await _named_table(MemoryTableStore())
        await coordinator.apply_filter([FilterPredicate("c", "is", "x")], "xor")

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_stale_filter_result_is_discarded_after_table_switch():
    async def scenario():
        store = MemoryTableStore(latency=0.01)
        coordinator, _ = await _named_table(store)
        name = coordinator.state.columns[0].id
        pending = asyncio.ensure_future(
            coordinator.apply_filter([FilterPredicate(name, "is", "a")])
        )
        await asyncio.sleep(0)
        other = await store.create_table("Other")
        await coordinator.switch_table(other.id)
        await pending
        return coordinator.state, other

    state, other = asyncio.run(scenario())
    assert state.table_id == other.id
    assert state.mode == "unfiltered"
    assert state.predicates == ()


def test_stale_filter_result_is_discarded_after_newer_sort():
    async def scenario():
        store = MemoryTableStore(latency=0.01)
        coordinator, _ = await _named_table(store)
        name = coordinator.state.columns[0].id
        pending = asyncio.ensure_future(
            coordinator.apply_filter([FilterPredicate(name, "is", "a")])
        )
        await asyncio.sleep(0)
        await coordinator.apply_sort([SortKey(name, "desc")])
        await pending
        return coordinator

    coordinator = asyncio.run(scenario())
    assert coordinator.current_view().mode == "sorted"
    assert _names(coordinator) == ["c", "b", "a"]


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------

def _state_with_rows() -> ViewState:
    rows = (
        Row("r1", "t1", {"a": "1", "b": "x"}),
        Row("r2", "t1", {"a": "2"}),
    )
    return ViewState(
        table_id="t1",
        rows=rows,
        total_rows=2,
        filtered_rows=rows[:1],
        predicates=(FilterPredicate("b", "is", "x"), FilterPredicate("a", "is", "1")),
        selected_row_ids=frozenset({"r1"}),
        generation=4,
    )


def test_reducer_does_not_mutate_input():
    state = _state_with_rows()
    new = reduce_view(state, CellValueSet("r1", "a", "9"))
    assert state.rows[0].value("a") == "1"
    assert new.rows[0].value("a") == "9"
    assert new.filtered_rows[0].value("a") == "9"
    assert new.generation == state.generation


def test_removing_a_column_drops_its_predicates_and_cells():
    new = reduce_view(_state_with_rows(), ColumnRemoved("b"))
    assert [p.column_id for p in new.predicates] == ["a"]
    assert not new.rows[0].has_cell("b")


def test_rows_cleared_bumps_generation_and_drops_derived_views():
    new = reduce_view(_state_with_rows(), RowsCleared())
    assert new.rows == ()
    assert new.filtered_rows is None
    assert new.selected_row_ids == frozenset()
    assert new.generation == 5
    assert new.total_rows == 2


def test_filter_and_sort_actions_bump_generation():
    state = _state_with_rows()
    sorted_ = reduce_view(state, SortApplied((SortKey("a", "desc"),), state.rows[::-1]))
    assert sorted_.mode == "sorted"
    assert sorted_.filtered_rows is None
    assert sorted_.generation == 5
    refiltered = reduce_view(sorted_, FilterApplied((), "and", None))
    assert refiltered.mode == "unfiltered"
    assert refiltered.generation == 6


def test_unknown_action_is_rejected():
    with pytest.raises(TypeError):
        reduce_view(ViewState(), object())


# ---------------------------------------------------------------------------
# Population lock
# ---------------------------------------------------------------------------

def test_population_lock_is_single_flight_per_table():
    coordinator = Coordinator(MemoryTableStore())
    coordinator.acquire_population("t1")
    with pytest.raises(PopulationInProgressError):
        coordinator.acquire_population("t1")
    coordinator.acquire_population("t2")
    coordinator.release_population("t1")
    assert not coordinator.is_populating("t1")
    assert coordinator.is_populating("t2")


def test_begin_population_requires_the_lock():
    coordinator = Coordinator(MemoryTableStore())
    with pytest.raises(RuntimeError):
        coordinator.begin_population("t1")


def test_finish_population_restores_view_when_refetch_fails():
    async def scenario():
        store = FlakyStore(set())
        coordinator, table_id = await _named_table(store)
        before = [r.id for r in coordinator.current_view().rows]
        coordinator.acquire_population(table_id)
        mutation = coordinator.begin_population(table_id)
        cleared = len(coordinator.current_view())
        store.failing.add("get_table")
        with pytest.raises(StoreError, match="get_table unavailable"):
            await coordinator.finish_population(mutation)
        return coordinator, before, cleared, mutation

    coordinator, before, cleared, mutation = asyncio.run(scenario())
    assert cleared == 0
    assert [r.id for r in coordinator.current_view().rows] == before
    assert mutation.status is MutationStatus.REVERTED


def test_coordinators_on_one_store_see_each_others_population_lock():
    store = MemoryTableStore()
    first, second = Coordinator(store), Coordinator(store)
    first.acquire_population("t1")
    assert second.is_populating("t1")
    with pytest.raises(PopulationInProgressError):
        second.acquire_population("t1")
    first.release_population("t1")
    assert not second.is_populating("t1")
    assert not Coordinator(MemoryTableStore()).is_populating("t1")
