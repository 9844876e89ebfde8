"""reflex-eav-grid -- windowed, editable spreadsheet grid over an EAV table store.

The engine (store boundary, filter/sort evaluation, bulk population and
the view coordinator) is framework free.  The Reflex binding lives in
:mod:`reflex_eav_grid.grid_state` and :mod:`reflex_eav_grid.viewport`::

    pip install reflex-eav-grid
"""

from reflex_eav_grid.coordinator import (
    Coordinator,
    LogicalView,
    Mutation,
    MutationStatus,
    ViewState,
    reduce_view,
)
from reflex_eav_grid.errors import (
    CellEditError,
    GridError,
    NotFoundError,
    PopulationFailedError,
    PopulationInProgressError,
    StoreError,
    ValidationError,
)
from reflex_eav_grid.filtering import describe_filters, filter_rows, generate_filter_sql
from reflex_eav_grid.grid_state import (
    EavGridMixin,
    configure_store,
    eav_grid,
    eav_grid_filter_panel,
    eav_grid_population_bar,
    eav_grid_stats_bar,
    eav_grid_toolbar,
)
from reflex_eav_grid.models import (
    BatchResult,
    CellKind,
    Column,
    FilterPredicate,
    Row,
    SortKey,
    Table,
    TablePage,
    classify_cell,
    parse_numeric,
)
from reflex_eav_grid.population import BulkPopulator, PopulationProgress
from reflex_eav_grid.presets import ViewPreset, dump_preset, load_preset
from reflex_eav_grid.search import count_matches, highlight_segments
from reflex_eav_grid.sorting import describe_sorts, sort_rows
from reflex_eav_grid.store import MemoryTableStore, TableStore
from reflex_eav_grid.viewport import EavViewport, viewport
from reflex_eav_grid.windowing import WindowedRenderer, compute_window
