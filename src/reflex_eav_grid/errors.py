"""Exception hierarchy for the grid engine.

Validation failures subclass ``ValueError`` and lookup failures subclass
``LookupError`` so callers that only know the built-in exceptions can still
catch them.
"""


class GridError(Exception):
    """Base class for every error raised by ``reflex_eav_grid``."""


class ValidationError(GridError, ValueError):
    """Input rejected before any store call was made."""


class StoreError(GridError):
    """The remote store rejected a request or could not be reached."""


class NotFoundError(StoreError, LookupError):
    """A table, row or column id does not exist in the store."""


class CellEditError(StoreError):
    """An optimistic cell edit failed remotely and was reverted locally."""

    def __init__(self, row_id: str, column_id: str, message: str) -> None:
        super().__init__(f"Failed to update cell ({row_id}, {column_id}): {message}")
        self.row_id = row_id
        self.column_id = column_id


class PopulationInProgressError(GridError):
    """A bulk population run is already in flight for this table."""

    def __init__(self, table_id: str) -> None:
        super().__init__(f"Row creation already in progress for table {table_id!r}")
        self.table_id = table_id


class PopulationFailedError(StoreError):
    """A population batch, or the refetch after the last one, failed.

    Committed batches are **not** rolled back:
    ``rows_committed`` rows remain in the store.  Re-run the population
    or accept the partial count.
    """

    def __init__(
        self,
        batch_number: int,
        total_batches: int,
        rows_committed: int,
        message: str,
    ) -> None:
        super().__init__(
            f"Failed to create batch {batch_number}/{total_batches}: {message} "
            f"({rows_committed:,} committed rows were kept)"
        )
        self.batch_number = batch_number
        self.total_batches = total_batches
        self.rows_committed = rows_committed
