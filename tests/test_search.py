"""Tests for toolbar search highlighting."""

from reflex_eav_grid.models import Column, Row
from reflex_eav_grid.search import (
    column_header_matches,
    count_matches,
    count_occurrences,
    highlight_segments,
    matching_cells,
)

COLUMNS = (
    Column("name", "t1", "Name", 0),
    Column("notes", "t1", "Notes", 1),
    Column("secret", "t1", "Secret", 2, visible=False),
)
ROWS = [
    Row("r1", "t1", {"name": "Banana", "notes": "an ANA", "secret": "ana"}),
    Row("r2", "t1", {"name": "kiwi", "notes": None}),
    Row("r3", "t1", {"name": "ana.b"}),
]


def test_count_occurrences_is_case_insensitive_and_non_overlapping():
    assert count_occurrences("Banana", "ana") == 1
    assert count_occurrences("aaaa", "aa") == 2
    assert count_occurrences("AnA ana", "ANA") == 2


def test_count_occurrences_treats_term_literally():
    assert count_occurrences("a.b axb", ".") == 1
    assert count_occurrences("(x)", "(") == 1


def test_blank_term_matches_nothing():
    assert count_occurrences("anything", "") == 0
    assert count_matches(ROWS, COLUMNS, "   ") == 0
    assert matching_cells(ROWS, COLUMNS, "") == []
    assert not column_header_matches(COLUMNS[0], "")


def test_hidden_columns_are_not_searched():
    # r1: Banana (1) + "an ANA" (1), r3: "ana.b" (1); the hidden cell is skipped.
    assert count_matches(ROWS, COLUMNS, "ana") == 3
    assert matching_cells(ROWS, COLUMNS, "ana") == [("r1", "name"), ("r1", "notes"), ("r3", "name")]


def test_search_does_not_remove_rows():
    rows = list(ROWS)
    count_matches(rows, COLUMNS, "kiwi")
    assert rows == ROWS


def test_column_header_matches():
    assert column_header_matches(COLUMNS[1], "NOT")
    assert not column_header_matches(COLUMNS[1], "xyz")


def test_highlight_segments_keep_original_text():
    segments = highlight_segments("Banana split", "AN")
    assert segments == [("B", False), ("an", True), ("an", True), ("a split", False)]
    assert "".join(part for part, _ in segments) == "Banana split"


def test_highlight_segments_edge_cases():
    assert highlight_segments("", "a") == []
    assert highlight_segments("plain", "") == [("plain", False)]
    assert highlight_segments("plain", "zz") == [("plain", False)]
    assert highlight_segments("a+b", "+") == [("a", False), ("+", True), ("b", False)]
