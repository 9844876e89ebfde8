"""CLI for reflex-eav-grid -- populate tables headlessly or serve the grid.

Usage::

    # Create 15,000 rows in a fresh in-memory table and report timing
    reflex-eav-grid populate --rows 15000

    # Populate, then filter and sort the result and export it
    reflex-eav-grid populate -n 5000 --filter "Status:is:open" --sort "Name:desc" --export out.csv

    # Launch the browser grid
    reflex-eav-grid serve --port 3000
"""

import asyncio
import os
import subprocess
import sys
import tempfile
import time
from pathlib import Path
from typing import Annotated, Optional

import typer

from reflex_eav_grid.coordinator import Coordinator
from reflex_eav_grid.errors import GridError
from reflex_eav_grid.filtering import describe_filters, rows_to_named_frame
from reflex_eav_grid.models import FilterPredicate, SortKey, Table
from reflex_eav_grid.population import BulkPopulator, PopulationProgress
from reflex_eav_grid.sorting import describe_sorts
from reflex_eav_grid.store import MemoryTableStore

app = typer.Typer(
    name="reflex-eav-grid",
    help="Populate, query and browse entity-attribute-value tables.",
    no_args_is_help=True,
)


def _column_id(table: Table, name: str) -> str:
    for col in table.columns:
        if col.name == name:
            return col.id
    raise typer.BadParameter(f"Unknown column: {name!r}")


def _parse_filter(table: Table, spec: str) -> FilterPredicate:
    """Parse ``COLUMN:OPERATOR[:VALUE]``."""
    parts = spec.split(":", 2)
    if len(parts) < 2:
        raise typer.BadParameter(f"Filter must look like COLUMN:OPERATOR[:VALUE], got {spec!r}")
    value = parts[2] if len(parts) == 3 else ""
    return FilterPredicate(_column_id(table, parts[0]), parts[1], value)


def _parse_sort(table: Table, spec: str) -> SortKey:
    """Parse ``COLUMN[:asc|desc]``."""
    name, _, direction = spec.partition(":")
    direction = direction or "asc"
    if direction not in ("asc", "desc"):
        raise typer.BadParameter(f"Sort direction must be asc or desc, got {direction!r}")
    return SortKey(_column_id(table, name), direction)  # type: ignore[arg-type]


def _print_progress(progress: PopulationProgress) -> None:
    typer.echo(
        f"  batch {progress.batch_number}/{progress.total_batches}: "
        f"{progress.rows_created:,} rows"
    )


async def _populate(
    rows: int,
    batch_size: int,
    delay: float,
    latency: float,
    cell_chunk_size: int,
    seed: Optional[int],
    filters: list[str],
    combinator: str,
    sorts: list[str],
    export: Optional[Path],
    verbose: bool,
) -> None:
    store = MemoryTableStore(
        latency=latency,
        cell_chunk_size=cell_chunk_size,
        seed=seed,
        verbose=verbose,
    )
    coordinator = Coordinator(store, verbose=verbose)
    table = await store.create_table()
    await coordinator.load_table(table.id)

    populator = BulkPopulator(
        coordinator,
        batch_size=batch_size,
        inter_batch_delay=delay,
        on_progress=_print_progress,
        verbose=verbose,
    )
    typer.echo(f"Creating {rows:,} rows in {table.name} ({table.id})")
    t0 = time.perf_counter()
    progress = await populator.run(table.id, rows)
    elapsed = time.perf_counter() - t0
    typer.echo(
        f"Done: {progress.rows_created:,} rows in {progress.total_batches} batch(es), "
        f"{store.cell_insert_calls} cell insert(s), {elapsed:.2f}s"
    )

    names = {c.id: c.name for c in table.columns}
    if filters:
        predicates = [_parse_filter(table, f) for f in filters]
        t0 = time.perf_counter()
        view = await coordinator.apply_filter(predicates, combinator)
        typer.echo(
            f"{describe_filters(predicates, combinator, names)} -> {len(view):,} rows "
            f"({(time.perf_counter() - t0) * 1000:.1f}ms)"
        )
    if sorts:
        keys = [_parse_sort(table, s) for s in sorts]
        t0 = time.perf_counter()
        view = await coordinator.apply_sort(keys)
        typer.echo(
            f"{describe_sorts(keys, names)} -> {len(view):,} rows "
            f"({(time.perf_counter() - t0) * 1000:.1f}ms)"
        )

    if export is not None:
        view = coordinator.current_view()
        frame = rows_to_named_frame(view.rows, coordinator.state.columns)
        if export.suffix.lower() in (".parquet", ".pq"):
            frame.write_parquet(export)
        else:
            frame.write_csv(export)
        typer.echo(f"Exported {frame.height:,} rows ({view.mode} view) to {export}")


@app.command()
def populate(
    rows: Annotated[int, typer.Option("--rows", "-n", help="Number of rows to create")] = 15_000,
    batch_size: Annotated[int, typer.Option("--batch-size", "-b", help="Rows per batch")] = 1_000,
    delay: Annotated[float, typer.Option("--delay", help="Seconds to wait between batches")] = 0.1,
    latency: Annotated[float, typer.Option("--latency", help="Simulated store round-trip in seconds")] = 0.0,
    cell_chunk_size: Annotated[int, typer.Option("--cell-chunk-size", help="Cells per insert statement")] = 5_000,
    seed: Annotated[Optional[int], typer.Option("--seed", help="Seed for generated cell values")] = None,
    filters: Annotated[
        Optional[list[str]],
        typer.Option("--filter", "-f", help="COLUMN:OPERATOR[:VALUE], repeatable"),
    ] = None,
    combinator: Annotated[str, typer.Option("--combinator", "-c", help="and / or")] = "and",
    sorts: Annotated[
        Optional[list[str]],
        typer.Option("--sort", "-s", help="COLUMN[:asc|desc], repeatable"),
    ] = None,
    export: Annotated[Optional[Path], typer.Option("--export", "-o", help="Write the view to .csv or .parquet")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Print store and batch traces")] = False,
) -> None:
    """Populate an in-memory table and optionally filter, sort and export it.

    When both --filter and --sort are given the sort is applied last and
    decides the exported view.
    """
    try:
        asyncio.run(
            _populate(
                rows,
                batch_size,
                delay,
                latency,
                cell_chunk_size,
                seed,
                filters or [],
                combinator,
                sorts or [],
                export,
                verbose,
            )
        )
    except GridError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# App template -- uses __PLACEHOLDER__ tokens for dynamic parts.
# ---------------------------------------------------------------------------

_APP_TEMPLATE = '''"""Auto-generated grid app: __TITLE__"""

import reflex as rx

from reflex_eav_grid import EavGridMixin, eav_grid, eav_grid_stats_bar


class GridState(EavGridMixin, rx.State):
    """Grid state for the generated app."""


def index() -> rx.Component:
    return rx.box(
        rx.heading("__TITLE__", size="6", margin_bottom="0.5em"),
        rx.cond(
            GridState.eav_grid_loaded,
            rx.fragment(
                eav_grid_stats_bar(GridState),
                eav_grid(GridState, height="__HEIGHT__"),
            ),
            rx.text("Loading...", color="var(--gray-9)"),
        ),
        padding="2em",
        max_width="1400px",
        margin="0 auto",
    )


app = rx.App()
app.add_page(index, on_load=GridState.load_eav_grid)
'''


def _build_app_code(title: str, height: str) -> str:
    """Generate the Reflex app module source code."""
    safe_title = title.replace("\\", "\\\\").replace('"', '\\"')
    return _APP_TEMPLATE.replace("__TITLE__", safe_title).replace("__HEIGHT__", height)


@app.command()
def serve(
    height: Annotated[str, typer.Option("--height", "-h", help="CSS height of the grid body")] = "calc(100vh - 320px)",
    port: Annotated[int, typer.Option("--port", "-p", help="Port for the Reflex frontend")] = 3000,
    title: Annotated[str, typer.Option("--title", "-t", help="Page title")] = "EAV Grid",
) -> None:
    """Generate a Reflex app around the grid and run it."""
    app_code = _build_app_code(title, height)

    tmp_dir = Path(tempfile.mkdtemp(prefix="eav_grid_app_"))
    app_name = "eav_grid_app"
    app_pkg = tmp_dir / app_name
    app_pkg.mkdir()
    (app_pkg / "__init__.py").write_text("")
    (app_pkg / f"{app_name}.py").write_text(app_code)

    rxconfig_code = f"""import reflex as rx
config = rx.Config(app_name="{app_name}", frontend_port={port})
"""
    (tmp_dir / "rxconfig.py").write_text(rxconfig_code)

    typer.echo(f"Launching grid app in {tmp_dir} on port {port}")
    os.chdir(tmp_dir)

    # reflex's CLI calls sys.exit(), so init runs in a subprocess.
    typer.echo("Initializing Reflex project...")
    subprocess.run(
        [sys.executable, "-m", "reflex", "init"],
        cwd=str(tmp_dir),
        check=True,
    )

    typer.echo("Starting grid app...")
    os.execvp(sys.executable, [sys.executable, "-m", "reflex", "run"])


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
