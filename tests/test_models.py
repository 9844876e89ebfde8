"""Tests for cell classification and row helpers."""

import pytest

from reflex_eav_grid.models import (
    ROW_ID_FIELD,
    CellKind,
    Column,
    Row,
    classify_cell,
    column_to_grid_dict,
    normalize_cell_value,
    parse_numeric,
    row_to_grid_dict,
)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("42", 42),
        (" 7 ", 7),
        ("-3.5", -3.5),
        ("1e3", 1000.0),
        ("0", 0),
    ],
)
def test_parse_numeric_accepts_numbers(text, expected):
    assert parse_numeric(text) == expected


@pytest.mark.parametrize("text", [None, "", "   ", "12abc", "nan", "inf", "-Infinity", "1_000", "1,5"])
def test_parse_numeric_rejects_non_numbers(text):
    assert parse_numeric(text) is None


def test_classify_cell():
    assert classify_cell(None) is CellKind.NULL
    assert classify_cell("") is CellKind.TEXT
    assert classify_cell("3.14") is CellKind.NUMERIC_TEXT
    assert classify_cell("pi") is CellKind.TEXT


def test_normalize_cell_value():
    assert normalize_cell_value(None) is None
    assert normalize_cell_value(True) == "true"
    assert normalize_cell_value(12) == "12"
    assert normalize_cell_value("x") == "x"


def test_row_edits_keep_identity_and_do_not_mutate():
    row = Row(id="r1", table_id="t1", cells={"a": "1"})
    edited = row.with_cell("a", "2").with_cell("b", None)
    assert edited.id == row.id
    assert row.cells == {"a": "1"}
    assert edited.cells == {"a": "2", "b": None}
    assert edited.without_cell("b").cells == {"a": "2"}
    assert edited.without_cell("zzz") is edited


def test_grid_dicts():
    columns = (Column("a", "t1", "Alpha", 0), Column("b", "t1", "Beta", 1, visible=False))
    row = Row(id="r1", table_id="t1", cells={"a": None})
    assert row_to_grid_dict(row, columns) == {ROW_ID_FIELD: "r1", "a": "", "b": ""}
    assert column_to_grid_dict(columns[1]) == {
        "field": "b",
        "headerName": "Beta",
        "kind": "text",
        "order": 1,
        "visible": False,
    }
