"""Toolbar search: case-insensitive highlighting over the current view.

Search never removes rows.  It only counts and marks literal
occurrences of the term in visible cells and column headers.  A blank
term matches nothing.
"""

import re
from typing import Iterable, Sequence

from reflex_eav_grid.models import Column, Row


def _needle(term: str) -> str | None:
    if not term or not term.strip():
        return None
    return term.lower()


def count_occurrences(text: str, term: str) -> int:
    """Number of non-overlapping case-insensitive occurrences of *term* in *text*."""
    if _needle(term) is None:
        return 0
    return len(re.findall(re.escape(term), text, flags=re.IGNORECASE))


def count_matches(rows: Iterable[Row], columns: Sequence[Column], term: str) -> int:
    """Total occurrences of *term* across the visible cells of *rows*."""
    if _needle(term) is None:
        return 0
    visible = [c.id for c in columns if c.visible]
    total = 0
    for row in rows:
        for column_id in visible:
            value = row.cells.get(column_id)
            if value:
                total += count_occurrences(value, term)
    return total


def matching_cells(
    rows: Iterable[Row],
    columns: Sequence[Column],
    term: str,
) -> list[tuple[str, str]]:
    """``(row_id, column_id)`` of every visible cell containing *term*, in view order."""
    needle = _needle(term)
    if needle is None:
        return []
    visible = [c.id for c in columns if c.visible]
    hits: list[tuple[str, str]] = []
    for row in rows:
        for column_id in visible:
            value = row.cells.get(column_id)
            if value and needle in value.lower():
                hits.append((row.id, column_id))
    return hits


def column_header_matches(column: Column, term: str) -> bool:
    needle = _needle(term)
    return needle is not None and needle in column.name.lower()


def highlight_segments(text: str, term: str) -> list[tuple[str, bool]]:
    """Split *text* into ``(segment, is_match)`` pieces.

    Joining the segments gives back *text* unchanged; matched pieces keep
    their original casing.
    """
    if not text:
        return []
    if _needle(term) is None:
        return [(text, False)]
    parts = re.split(f"({re.escape(term)})", text, flags=re.IGNORECASE)
    # re.split with one capture group alternates non-match / match.
    return [(part, i % 2 == 1) for i, part in enumerate(parts) if part]
