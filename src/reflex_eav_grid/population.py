"""Bulk population pipeline: create many synthetic rows in serial batches.

A run is split into batches of ``batch_size`` rows (the last batch takes
the remainder).  Batches are submitted one at a time, with a short
``asyncio.sleep`` between them so the event loop keeps serving the UI::

    populator = BulkPopulator(coordinator)
    async for result in populator.populate(table_id, 15_000):
        print(result.batch_number, "/", result.total_batches)

The coordinator is told about the run: it clears the rendered rows when
the first batch is submitted, refetches the table once the last batch
has been committed, and restores the old view if a batch or the refetch
fails or the run is cancelled.

Batches are not transactional as a group.  When batch *k* fails, batches
``1..k-1`` stay committed in the store; :class:`PopulationFailedError`
reports how many rows that was.
"""

import asyncio
import math
import time
from dataclasses import dataclass, replace
from typing import AsyncIterator, Callable

from reflex_eav_grid.coordinator import Coordinator, Mutation, MutationStatus
from reflex_eav_grid.errors import PopulationFailedError, StoreError, ValidationError
from reflex_eav_grid.models import BatchResult
from reflex_eav_grid.store import new_id

_DEFAULT_BATCH_SIZE: int = 1_000
_DEFAULT_INTER_BATCH_DELAY: float = 0.1
_DEFAULT_PROGRESS_CADENCE: int = 3


@dataclass(frozen=True)
class PopulationProgress:
    """Snapshot of a population run, safe to read at any time."""

    is_running: bool = False
    rows_created: int = 0
    batch_number: int = 0
    total_batches: int = 0
    table_id: str | None = None

    @property
    def fraction(self) -> float:
        if self.total_batches == 0:
            return 0.0
        return self.batch_number / self.total_batches


def plan_batches(total_count: int, batch_size: int = _DEFAULT_BATCH_SIZE) -> list[int]:
    """Return the row count of every batch, e.g. ``2500 -> [1000, 1000, 500]``."""
    if total_count <= 0:
        raise ValidationError("Row count must be positive")
    if batch_size <= 0:
        raise ValidationError("Batch size must be positive")
    total_batches = math.ceil(total_count / batch_size)
    sizes = [batch_size] * (total_batches - 1)
    sizes.append(total_count - batch_size * (total_batches - 1))
    return sizes


class BulkPopulator:
    """Runs population batches against the coordinator's store.

    Args:
        coordinator: Owner of the view; also holds the per-table
            single-flight lock.
        batch_size: Rows per batch.
        inter_batch_delay: Seconds to sleep between batches.
        progress_cadence: Call *on_progress* every this many batches
            (and always after the final one).
        on_progress: Optional callback receiving a
            :class:`PopulationProgress`.
        verbose: Print one line per batch.
    """

    def __init__(
        self,
        coordinator: Coordinator,
        *,
        batch_size: int = _DEFAULT_BATCH_SIZE,
        inter_batch_delay: float = _DEFAULT_INTER_BATCH_DELAY,
        progress_cadence: int = _DEFAULT_PROGRESS_CADENCE,
        on_progress: Callable[[PopulationProgress], None] | None = None,
        verbose: bool = False,
    ) -> None:
        if batch_size <= 0:
            raise ValidationError("batch_size must be positive")
        if progress_cadence <= 0:
            raise ValidationError("progress_cadence must be positive")
        self.coordinator = coordinator
        self.batch_size = batch_size
        self.inter_batch_delay = inter_batch_delay
        self.progress_cadence = progress_cadence
        self.on_progress = on_progress
        self.verbose = verbose
        self._progress = PopulationProgress()

    @property
    def progress(self) -> PopulationProgress:
        return self._progress

    def _notify(self) -> None:
        if self.on_progress is not None:
            self.on_progress(self._progress)

    async def populate(self, table_id: str, total_count: int) -> AsyncIterator[BatchResult]:
        """Create *total_count* rows in *table_id*, yielding one result per batch.

        Validation and the lock check happen when iteration starts.

        Raises:
            ValidationError: If *total_count* is not positive.
            PopulationInProgressError: If a run for *table_id* is
                already in flight.
            PopulationFailedError: If a batch or the final refetch
                fails.  Remaining batches are skipped and the view is
                restored.
        """
        sizes = plan_batches(total_count, self.batch_size)
        total_batches = len(sizes)
        self.coordinator.acquire_population(table_id)

        store = self.coordinator.store
        t0 = time.perf_counter()
        mutation: Mutation | None = None
        rows_committed = 0
        self._progress = PopulationProgress(
            is_running=True, total_batches=total_batches, table_id=table_id
        )
        try:
            for batch_number, count in enumerate(sizes, start=1):
                if batch_number > 1:
                    await asyncio.sleep(self.inter_batch_delay)

                row_ids = [new_id() for _ in range(count)]
                if mutation is None:
                    mutation = self.coordinator.begin_population(table_id)

                try:
                    result = await store.create_rows_batch(
                        table_id, count, batch_number, total_batches, row_ids
                    )
                except Exception as exc:
                    print(
                        f"[Population] batch {batch_number}/{total_batches} failed "
                        f"after {rows_committed:,} rows: {exc}"
                    )
                    self.coordinator.revert_population(mutation, str(exc))
                    raise PopulationFailedError(
                        batch_number, total_batches, rows_committed, str(exc)
                    ) from exc

                rows_committed += result.rows_created
                final = batch_number == total_batches
                if final:
                    try:
                        await self.coordinator.finish_population(mutation)
                    except StoreError as exc:
                        print(
                            f"[Population] refetch after batch {batch_number}/{total_batches} "
                            f"failed, {rows_committed:,} rows were committed: {exc}"
                        )
                        self._progress = PopulationProgress(
                            rows_created=rows_committed,
                            batch_number=batch_number,
                            total_batches=total_batches,
                            table_id=table_id,
                        )
                        self._notify()
                        raise PopulationFailedError(
                            batch_number, total_batches, rows_committed, str(exc)
                        ) from exc

                self._progress = PopulationProgress(
                    is_running=not final,
                    rows_created=rows_committed,
                    batch_number=batch_number,
                    total_batches=total_batches,
                    table_id=table_id,
                )
                if self.verbose:
                    print(
                        f"[Population] batch {batch_number}/{total_batches}: "
                        f"{rows_committed:,}/{total_count:,} rows "
                        f"({(time.perf_counter() - t0) * 1000:.1f}ms)"
                    )
                if final or batch_number % self.progress_cadence == 0:
                    self._notify()
                yield result
        finally:
            # Cancelled or closed mid-run: nothing confirmed or reverted the view yet.
            if mutation is not None and mutation.status is MutationStatus.PENDING:
                self.coordinator.revert_population(mutation, "Population was cancelled")
            self.coordinator.release_population(table_id)
            self._progress = replace(self._progress, is_running=False)

    async def run(self, table_id: str, total_count: int) -> PopulationProgress:
        """Drive :meth:`populate` to completion and return the final progress."""
        async for _ in self.populate(table_id, total_count):
            pass
        return self._progress
