"""Tests for the bulk population pipeline."""

import asyncio

import pytest

from reflex_eav_grid.coordinator import Coordinator, MutationStatus
from reflex_eav_grid.errors import (
    PopulationFailedError,
    PopulationInProgressError,
    ValidationError,
)
from reflex_eav_grid.population import BulkPopulator, PopulationProgress, plan_batches
from reflex_eav_grid.store import MemoryTableStore


class FailingBatchStore(MemoryTableStore):
    """Fails ``create_rows_batch`` for one batch number."""

    def __init__(self, fail_on: int, **kwargs) -> None:
        super().__init__(**kwargs)
        self.fail_on = fail_on

    async def create_rows_batch(self, table_id, count, batch_number, total_batches, row_ids):
        if batch_number == self.fail_on:
            await asyncio.sleep(0)
            raise ConnectionError("connection reset")
        return await super().create_rows_batch(
            table_id, count, batch_number, total_batches, row_ids
        )


class RefetchFailingStore(MemoryTableStore):
    """Commits batches normally, then fails every read of the table."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.fail_reads = False

    async def create_rows_batch(self, table_id, count, batch_number, total_batches, row_ids):
        result = await super().create_rows_batch(
            table_id, count, batch_number, total_batches, row_ids
        )
        self.fail_reads = True
        return result

    async def get_table(self, *args, **kwargs):
        if self.fail_reads:
            await asyncio.sleep(0)
            raise ConnectionError("read timed out")
        return await super().get_table(*args, **kwargs)


async def _loaded(store: MemoryTableStore) -> tuple[Coordinator, str]:
    table = await store.create_table()
    coordinator = Coordinator(store)
    await coordinator.load_table(table.id)
    return coordinator, table.id


def test_plan_batches():
    assert plan_batches(2_500, 1_000) == [1_000, 1_000, 500]
    assert plan_batches(1_000, 1_000) == [1_000]
    assert plan_batches(1, 1_000) == [1]
    with pytest.raises(ValidationError):
        plan_batches(0)
    with pytest.raises(ValidationError):
        plan_batches(10, 0)


def test_progress_fraction():
    assert PopulationProgress().fraction == 0.0
    assert PopulationProgress(batch_number=1, total_batches=4).fraction == 0.25


def test_populate_creates_rows_in_batches_and_refetches():
    async def scenario():
        store = MemoryTableStore(seed=3)
        coordinator, table_id = await _loaded(store)
        populator = BulkPopulator(coordinator, inter_batch_delay=0)
        results = [r async for r in populator.populate(table_id, 2_500)]
        return store, coordinator, table_id, populator, results

    store, coordinator, table_id, populator, results = asyncio.run(scenario())
    assert [r.rows_created for r in results] == [1_000, 1_000, 500]
    assert [r.batch_number for r in results] == [1, 2, 3]
    assert all(r.total_batches == 3 for r in results)
    assert store.row_count(table_id) == 2_503

    view = coordinator.current_view()
    assert len(view) == 2_503
    assert view.mode == "unfiltered"
    assert not coordinator.state.has_more

    assert populator.progress == PopulationProgress(
        is_running=False,
        rows_created=2_500,
        batch_number=3,
        total_batches=3,
        table_id=table_id,
    )
    assert coordinator.mutations[-1].status is MutationStatus.CONFIRMED
    assert not coordinator.is_populating(table_id)


def test_progress_is_reported_on_cadence_and_after_final_batch():
    seen: list[PopulationProgress] = []

    async def scenario():
        store = MemoryTableStore()
        coordinator, table_id = await _loaded(store)
        populator = BulkPopulator(
            coordinator,
            batch_size=10,
            inter_batch_delay=0,
            progress_cadence=3,
            on_progress=seen.append,
        )
        return await populator.run(table_id, 70)

    final = asyncio.run(scenario())
    assert [p.batch_number for p in seen] == [3, 6, 7]
    assert [p.is_running for p in seen] == [True, True, False]
    assert final.rows_created == 70


def test_view_is_cleared_when_first_batch_is_submitted():
    async def scenario():
        store = MemoryTableStore()
        coordinator, table_id = await _loaded(store)
        generation = coordinator.current_view().generation
        populator = BulkPopulator(coordinator, batch_size=5, inter_batch_delay=0)
        gen = populator.populate(table_id, 12)
        await gen.__anext__()
        during = coordinator.current_view()
        progress = populator.progress
        await gen.aclose()
        return generation, during, progress, coordinator, table_id

    generation, during, progress, coordinator, table_id = asyncio.run(scenario())
    assert len(during) == 0
    assert during.generation > generation
    assert progress.is_running
    assert progress.rows_created == 5
    assert not coordinator.is_populating(table_id)


def test_failed_batch_restores_view_and_reports_committed_rows():
    async def scenario():
        store = FailingBatchStore(fail_on=2)
        coordinator, table_id = await _loaded(store)
        before = [r.id for r in coordinator.current_view().rows]
        populator = BulkPopulator(coordinator, inter_batch_delay=0)
        try:
            await populator.run(table_id, 2_500)
        except PopulationFailedError as exc:
            error = exc
        else:
            error = None
        return store, coordinator, table_id, before, error, populator

    store, coordinator, table_id, before, error, populator = asyncio.run(scenario())
    assert error is not None
    assert error.batch_number == 2
    assert error.total_batches == 3
    assert error.rows_committed == 1_000
    assert "connection reset" in str(error)

    # Earlier batches stay committed remotely.
    assert store.row_count(table_id) == 1_003
    # The rendered view goes back to what it was before the run.
    assert [r.id for r in coordinator.current_view().rows] == before

    mutation = coordinator.mutations[-1]
    assert mutation.kind == "population"
    assert mutation.status is MutationStatus.REVERTED
    assert not coordinator.is_populating(table_id)
    assert not populator.progress.is_running


def test_second_run_for_same_table_is_rejected_while_first_is_in_flight():
    async def scenario():
        store = MemoryTableStore()
        coordinator, table_id = await _loaded(store)
        first = BulkPopulator(coordinator, batch_size=10, inter_batch_delay=0)
        second = BulkPopulator(coordinator, batch_size=10, inter_batch_delay=0)
        gen = first.populate(table_id, 30)
        await gen.__anext__()
        try:
            await second.populate(table_id, 10).__anext__()
        except PopulationInProgressError as exc:
            rejected = exc
        else:
            rejected = None
        still_locked = coordinator.is_populating(table_id)
        async for _ in gen:
            pass
        return rejected, still_locked, coordinator, store, table_id

    rejected, still_locked, coordinator, store, table_id = asyncio.run(scenario())
    assert rejected is not None
    assert rejected.table_id == table_id
    assert still_locked
    assert not coordinator.is_populating(table_id)
    assert store.row_count(table_id) == 33


def test_runs_for_different_tables_do_not_block_each_other():
    async def scenario():
        store = MemoryTableStore()
        coordinator, first_id = await _loaded(store)
        other = await store.create_table()
        gen = BulkPopulator(coordinator, batch_size=10, inter_batch_delay=0).populate(first_id, 20)
        await gen.__anext__()
        progress = await BulkPopulator(coordinator, inter_batch_delay=0).run(other.id, 5)
        await gen.aclose()
        return progress, store.row_count(other.id)

    progress, count = asyncio.run(scenario())
    assert progress.rows_created == 5
    assert count == 8


def test_zero_rows_is_rejected_before_locking():
    async def scenario():
        store = MemoryTableStore()
        coordinator, table_id = await _loaded(store)
        try:
            await BulkPopulator(coordinator).run(table_id, 0)
        finally:
            assert not coordinator.is_populating(table_id)

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_generated_row_ids_are_unique_hex():
    async def scenario():
        store = MemoryTableStore()
        coordinator, table_id = await _loaded(store)
        await BulkPopulator(coordinator, batch_size=50, inter_batch_delay=0).run(table_id, 120)
        return coordinator.current_view().rows

    rows = asyncio.run(scenario())
    new_ids = [r.id for r in rows[3:]]
    assert len(new_ids) == 120
    assert len(set(new_ids)) == 120
    assert all(len(i) == 32 and int(i, 16) >= 0 for i in new_ids)


def test_failed_refetch_restores_view_and_reverts_mutation():
    async def scenario():
        store = RefetchFailingStore()
        coordinator, table_id = await _loaded(store)
        before = [r.id for r in coordinator.current_view().rows]
        populator = BulkPopulator(coordinator, inter_batch_delay=0)
        with pytest.raises(PopulationFailedError) as info:
            await populator.run(table_id, 10)
        return store, coordinator, table_id, before, info.value, populator

    store, coordinator, table_id, before, error, populator = asyncio.run(scenario())
    assert error.batch_number == 1
    assert error.total_batches == 1
    assert error.rows_committed == 10
    assert "read timed out" in str(error)

    assert store.row_count(table_id) == 13
    assert [r.id for r in coordinator.current_view().rows] == before
    assert coordinator.mutations[-1].status is MutationStatus.REVERTED
    assert not coordinator.is_populating(table_id)
    assert not populator.progress.is_running
    assert populator.progress.rows_created == 10


def test_coordinators_sharing_a_store_share_the_population_lock():
    async def scenario():
        store = MemoryTableStore()
        first, table_id = await _loaded(store)
        second = Coordinator(store)
        await second.load_table(table_id)
        results = await asyncio.gather(
            BulkPopulator(first, batch_size=10, inter_batch_delay=0).run(table_id, 20),
            BulkPopulator(second, batch_size=10, inter_batch_delay=0).run(table_id, 20),
            return_exceptions=True,
        )
        return store, table_id, results, first, second

    store, table_id, results, first, second = asyncio.run(scenario())
    rejected = [r for r in results if isinstance(r, PopulationInProgressError)]
    finished = [r for r in results if isinstance(r, PopulationProgress)]
    assert len(rejected) == 1
    assert len(finished) == 1
    assert finished[0].rows_created == 20
    assert store.row_count(table_id) == 23
    assert not first.is_populating(table_id)
    assert not second.is_populating(table_id)


def test_lock_set_can_be_passed_explicitly():
    store = MemoryTableStore()
    locks: set[str] = set()
    own = Coordinator(store, population_locks=locks)
    shared = Coordinator(store)
    own.acquire_population("t1")
    assert locks == {"t1"}
    assert own.is_populating("t1")
    assert not shared.is_populating("t1")
    own.release_population("t1")
    assert not locks


def test_cancelled_run_restores_view_and_releases_lock():
    async def scenario():
        store = MemoryTableStore(latency=0.05)
        coordinator, table_id = await _loaded(store)
        before = [r.id for r in coordinator.current_view().rows]
        populator = BulkPopulator(coordinator, batch_size=10, inter_batch_delay=0)
        task = asyncio.ensure_future(populator.run(table_id, 30))
        await asyncio.sleep(0.01)
        cleared = len(coordinator.current_view())
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return coordinator, table_id, before, cleared, populator

    coordinator, table_id, before, cleared, populator = asyncio.run(scenario())
    assert cleared == 0
    assert [r.id for r in coordinator.current_view().rows] == before
    assert coordinator.mutations[-1].status is MutationStatus.REVERTED
    assert not coordinator.is_populating(table_id)
    assert not populator.progress.is_running
