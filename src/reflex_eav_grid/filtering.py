"""Filter evaluation for EAV rows, built on polars expressions.

Each :class:`~reflex_eav_grid.models.FilterPredicate` is compiled into a
polars expression over a string-typed frame that holds one column per
referenced column id (absent cells are null).  The expressions are then
folded together with the single combinator of the query::

    predicates = [
        FilterPredicate("status", "is", "open"),
        FilterPredicate("name", "contains", "a"),
    ]
    matching = filter_rows(rows, predicates, "and")

Supported operators (case-sensitive, literal substring matching):

* ``contains`` / ``does not contain``
* ``is`` / ``is not``
* ``is empty`` / ``is not empty``

An unrecognised operator imposes no constraint: the predicate matches
every row.
"""

import functools
import operator
from typing import Any, Iterable, Sequence

import polars as pl

from reflex_eav_grid.errors import ValidationError
from reflex_eav_grid.models import (
    VALUELESS_OPERATORS,
    Column,
    Combinator,
    FilterPredicate,
    Row,
    normalize_cell_value,
)

_INDEX_COL: str = "__row_idx__"


def validate_predicates(
    predicates: Iterable[FilterPredicate],
    combinator: str,
) -> tuple[list[FilterPredicate], Combinator]:
    """Check a predicate list and normalise the combinator to ``"and"``/``"or"``.

    Raises:
        ValidationError: If a predicate has no column id or the
            combinator is neither AND nor OR.
    """
    logic = str(combinator).lower()
    if logic not in ("and", "or"):
        raise ValidationError(f"Unknown combinator: {combinator!r} (expected AND or OR)")
    checked: list[FilterPredicate] = []
    for predicate in predicates:
        if not predicate.column_id:
            raise ValidationError("Filter predicate is missing a column")
        checked.append(predicate)
    return checked, logic  # type: ignore[return-value]


def build_predicate_expr(predicate: FilterPredicate) -> pl.Expr:
    """Translate a single predicate to a boolean polars expression.

    Null cells never satisfy ``contains`` or ``is``, so their negations
    (``does not contain``, ``is not``) always match them.
    """
    col = pl.col(predicate.column_id)
    op = predicate.operator
    value = predicate.value

    if op == "contains":
        return col.str.contains(value, literal=True).fill_null(False)
    if op == "does not contain":
        return ~col.str.contains(value, literal=True).fill_null(False)
    if op == "is":
        return (col == value).fill_null(False)
    if op == "is not":
        return ~(col == value).fill_null(False)
    if op == "is empty":
        return col.is_null() | (col == "")
    if op == "is not empty":
        return col.is_not_null() & (col != "")

    # Permissive fallback.
    return pl.lit(True)


def apply_predicates(
    lf: pl.LazyFrame,
    predicates: Sequence[FilterPredicate],
    combinator: Combinator = "and",
) -> pl.LazyFrame:
    """Filter a LazyFrame whose columns are named by column id -- **no collect**.

    Zero predicates return *lf* unchanged.
    """
    if not predicates:
        return lf

    exprs = [build_predicate_expr(p) for p in predicates]
    joiner = operator.or_ if combinator == "or" else operator.and_
    combined = functools.reduce(joiner, exprs)
    return lf.filter(combined)


def rows_to_frame(rows: Sequence[Row], column_ids: Iterable[str]) -> pl.DataFrame:
    """Pivot EAV rows into a wide string frame with a positional index column.

    Only the requested column ids are materialised.  A row without a cell
    for a column gets a null in that column.
    """
    data: dict[str, list[Any]] = {_INDEX_COL: list(range(len(rows)))}
    schema: dict[str, pl.DataType] = {_INDEX_COL: pl.Int64()}
    for column_id in dict.fromkeys(column_ids):
        data[column_id] = [normalize_cell_value(row.cells.get(column_id)) for row in rows]
        schema[column_id] = pl.String()
    return pl.DataFrame(data, schema=schema)


def rows_to_named_frame(rows: Sequence[Row], columns: Sequence[Column]) -> pl.DataFrame:
    """Wide string frame labelled by column *name*, for export.

    Duplicate column names get a ``_<order>`` suffix.
    """
    data: dict[str, list[Any]] = {}
    for col in columns:
        label = col.name if col.name not in data else f"{col.name}_{col.order}"
        data[label] = [normalize_cell_value(row.cells.get(col.id)) for row in rows]
    return pl.DataFrame(data, schema={label: pl.String() for label in data})


def filter_rows(
    rows: Sequence[Row],
    predicates: Sequence[FilterPredicate],
    combinator: str = "and",
) -> list[Row]:
    """Return the rows matching *predicates*, in input order.

    Zero predicates return every row.  An empty result is a valid answer
    and means "filtering found nothing".

    Raises:
        ValidationError: See :func:`validate_predicates`.
    """
    checked, logic = validate_predicates(predicates, combinator)
    rows = list(rows)
    if not checked:
        return rows
    if not rows:
        return []

    frame = rows_to_frame(rows, (p.column_id for p in checked))
    matched = (
        apply_predicates(frame.lazy(), checked, logic)
        .select(_INDEX_COL)
        .collect()
        .get_column(_INDEX_COL)
        .to_list()
    )
    return [rows[i] for i in matched]


# ---------------------------------------------------------------------------
# Human-readable and SQL renderings
# ---------------------------------------------------------------------------

def describe_filters(
    predicates: Sequence[FilterPredicate],
    combinator: str = "and",
    column_names: dict[str, str] | None = None,
) -> str:
    """One-line summary of a filter, e.g. ``'2 filter(s) (AND): Status is "open", ...'``."""
    if not predicates:
        return "No active filters."
    names = column_names or {}
    parts: list[str] = []
    for p in predicates:
        name = names.get(p.column_id, p.column_id)
        if p.operator in VALUELESS_OPERATORS:
            parts.append(f"{name} {p.operator}")
        else:
            parts.append(f'{name} {p.operator} "{p.value}"')
    return f"{len(predicates)} filter(s) ({combinator.upper()}): " + ", ".join(parts)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _predicate_to_sql(predicate: FilterPredicate) -> tuple[str, list[Any]]:
    """Render one predicate as an ``EXISTS`` condition over the cell table."""
    cell_for_col = "SELECT 1 FROM cell AS c WHERE c.row_id = r.id AND c.column_id = ?"
    op = predicate.operator
    cid = predicate.column_id
    value = predicate.value

    if op in ("contains", "does not contain"):
        cond = f"EXISTS ({cell_for_col} AND c.value LIKE ? ESCAPE '\\')"
        params: list[Any] = [cid, f"%{_escape_like(value)}%"]
        return (cond if op == "contains" else f"NOT {cond}"), params
    if op in ("is", "is not"):
        cond = f"EXISTS ({cell_for_col} AND c.value = ?)"
        return (cond if op == "is" else f"NOT {cond}"), [cid, value]
    if op == "is empty":
        return (
            f"(NOT EXISTS ({cell_for_col}) "
            f"OR EXISTS ({cell_for_col} AND (c.value IS NULL OR c.value = '')))",
            [cid, cid],
        )
    if op == "is not empty":
        return (
            f"EXISTS ({cell_for_col} AND c.value IS NOT NULL AND c.value <> '')",
            [cid],
        )
    return "1 = 1", []


def generate_filter_sql(
    table_id: str,
    predicates: Sequence[FilterPredicate],
    combinator: str = "and",
) -> tuple[str, list[Any]]:
    """Render a filter as a parameterised SQL query over an EAV schema.

    The query assumes two relations::

        row(id, table_id, position)
        cell(row_id, column_id, value)

    and returns the matching row ids in display order.  Substring
    operators use ``LIKE`` with ``\\`` as escape character, so the
    database must compare case-sensitively (``PRAGMA
    case_sensitive_like = ON`` on SQLite) for results to agree with
    :func:`filter_rows`.

    Returns:
        A ``(sql, params)`` tuple using ``?`` placeholders.
    """
    checked, logic = validate_predicates(predicates, combinator)
    sql = "SELECT r.id FROM row AS r\nWHERE r.table_id = ?"
    params: list[Any] = [table_id]

    conditions: list[str] = []
    for predicate in checked:
        cond, cond_params = _predicate_to_sql(predicate)
        conditions.append(cond)
        params.extend(cond_params)

    if conditions:
        joiner = f"\n  {logic.upper()} "
        sql += "\n  AND (" + joiner.join(conditions) + ")"

    sql += "\nORDER BY r.position;"
    return sql, params
