"""Example Reflex app for the windowed EAV grid.

The store is in-memory with a small simulated round-trip, so optimistic
edits, the loading state and batch-by-batch population are visible.

Try:
  1. Click "Create rows" to add 15,000 rows in batches of 1,000.
  2. Filter on a column ("Status is open") or sort it.
  3. Type in the search box to highlight matching cells.
"""

import reflex as rx

from reflex_eav_grid import (
    EavGridMixin,
    MemoryTableStore,
    configure_store,
    eav_grid,
    eav_grid_stats_bar,
)

SIMULATED_LATENCY_S: float = 0.02

configure_store(MemoryTableStore(latency=SIMULATED_LATENCY_S, verbose=True))


class DemoState(EavGridMixin, rx.State):
    """Demo state; everything comes from the mixin."""


def _status_box(*children: rx.Component) -> rx.Component:
    return rx.box(
        *children,
        padding="0.6em 0.8em",
        border_radius="6px",
        background="var(--gray-a3)",
        margin_bottom="0.5em",
    )


def index() -> rx.Component:
    return rx.box(
        rx.heading("EAV Grid Demo", size="7", margin_bottom="0.25em"),
        _status_box(
            rx.text(
                "Table: ",
                rx.text.strong(DemoState.eav_grid_table_name),
                " -- ",
                DemoState.eav_grid_total_rows.to(str),
                " rows stored, view mode: ",
                rx.code(DemoState.eav_grid_mode),
                size="2",
            ),
        ),
        rx.cond(
            DemoState.eav_grid_loaded,
            rx.fragment(
                eav_grid_stats_bar(DemoState),
                eav_grid(DemoState, height="calc(100vh - 360px)", debug_log=True),
            ),
            rx.text("Loading...", color="var(--gray-9)"),
        ),
        padding="2em",
        max_width="1600px",
        margin="0 auto",
    )


app = rx.App()
app.add_page(index, title="EAV Grid Demo", on_load=DemoState.load_eav_grid)
