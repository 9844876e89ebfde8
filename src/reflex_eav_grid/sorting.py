"""Multi-key sorting of EAV rows.

Cell values are compared pairwise: when *both* sides parse as numbers
(see :func:`~reflex_eav_grid.models.parse_numeric`) they are compared
numerically, otherwise as raw strings by code point.  A missing cell
sorts as ``""``.  ``desc`` inverts the comparison rather than reversing
the output, so rows that tie on every key keep their input order.

Because the numeric/string decision is made per pair, a column that
mixes numbers and text such as ``"2"``, ``"10"`` and ``"1a"`` has no
consistent total order.  The result is still deterministic for a given
input order.

Number parsing is strict: the whole trimmed cell must be a number, so
``"12abc"`` or ``"3 apples"`` compare as text rather than by their
leading digits.
"""

import functools
from typing import Sequence

from reflex_eav_grid.errors import ValidationError
from reflex_eav_grid.models import CellValue, Row, SortKey, parse_numeric


def validate_sort_keys(keys: Sequence[SortKey]) -> list[SortKey]:
    """Check that every key names a column and a known direction."""
    checked: list[SortKey] = []
    for key in keys:
        if not key.column_id:
            raise ValidationError("Sort key is missing a column")
        if key.direction not in ("asc", "desc"):
            raise ValidationError(f"Unknown sort direction: {key.direction!r}")
        checked.append(key)
    return checked


def compare_cells(a: CellValue, b: CellValue) -> int:
    """Three-way compare two cell values in ascending order."""
    a_text = a if a is not None else ""
    b_text = b if b is not None else ""

    a_num = parse_numeric(a_text)
    b_num = parse_numeric(b_text)
    if a_num is not None and b_num is not None:
        return (a_num > b_num) - (a_num < b_num)
    return (a_text > b_text) - (a_text < b_text)


def compare_rows(a: Row, b: Row, keys: Sequence[SortKey]) -> int:
    """Compare two rows along a tie-break chain of sort keys."""
    for key in keys:
        result = compare_cells(a.cells.get(key.column_id), b.cells.get(key.column_id))
        if result:
            return -result if key.direction == "desc" else result
    return 0


def sort_rows(rows: Sequence[Row], keys: Sequence[SortKey]) -> list[Row]:
    """Return *rows* ordered by *keys*; stable, and identity for no keys."""
    checked = validate_sort_keys(keys)
    if not checked:
        return list(rows)
    return sorted(rows, key=functools.cmp_to_key(lambda a, b: compare_rows(a, b, checked)))


def describe_sorts(
    keys: Sequence[SortKey],
    column_names: dict[str, str] | None = None,
) -> str:
    """One-line summary, e.g. ``'2 sort(s): Name desc, Status asc'``."""
    if not keys:
        return "No active sorts."
    names = column_names or {}
    parts = [f"{names.get(k.column_id, k.column_id)} {k.direction}" for k in keys]
    return f"{len(keys)} sort(s): " + ", ".join(parts)
