"""Tests for dry-run risk simulation."""

from __future__ import annotations

import pytest

from voice_sheets.domain.actions import ActionKind, RiskLevel
from voice_sheets.errors import InvalidParametersError, UnsupportedActionError
from voice_sheets.safety.simulator import (
    LARGE_UPDATE_CELLS,
    SUPPORTED_KINDS,
    describe_format,
    int_param,
    is_supported,
    simulate,
)


def _grid(rows: int, cols: int) -> list[list[int]]:
    return [[0] * cols for _ in range(rows)]


class TestUpdateRisk:
    def test_small_update_is_low_risk_and_reversible(self) -> None:
        report = simulate("update_range", {"range": "A1:B2", "values": _grid(2, 2)})

        assert report.risk_level is RiskLevel.LOW
        assert report.reversible is True
        assert report.requires_confirmation is False
        assert report.cells_affected == ["A1", "B1", "A2", "B2"]
        assert report.estimated_impact.cells == 4
        assert report.warnings == []

    def test_exactly_threshold_cells_stays_low(self) -> None:
        report = simulate("update_range", {"range": "A1:J10", "values": _grid(10, 10)})

        assert report.estimated_impact.cells == LARGE_UPDATE_CELLS
        assert report.risk_level is RiskLevel.LOW

    def test_over_threshold_is_medium_with_warning(self) -> None:
        report = simulate("update_range", {"range": "A1:K10", "values": _grid(10, 11)})

        assert report.risk_level is RiskLevel.MEDIUM
        assert report.requires_confirmation is False
        assert report.warnings == ["Large update detected - affects more than 100 cells"]

    def test_preview_names_sheet(self) -> None:
        report = simulate(
            ActionKind.UPDATE_CELL,
            {"range": "B3", "sheetName": "Budget", "values": [[42]]},
        )

        assert report.preview == "Will update 1 cell(s) in range Budget!B3"

    def test_values_must_be_rows(self) -> None:
        with pytest.raises(InvalidParametersError):
            simulate("update_cell", {"range": "A1", "values": "oops"})


class TestInsertRisk:
    @pytest.mark.parametrize(
        ("count", "expected"),
        [(1, RiskLevel.LOW), (10, RiskLevel.LOW), (11, RiskLevel.MEDIUM)],
    )
    def test_row_threshold(self, count: int, expected: RiskLevel) -> None:
        report = simulate("insert_row", {"startIndex": 4, "count": count})

        assert report.risk_level is expected
        assert report.rows_affected == list(range(5, 5 + count))

    @pytest.mark.parametrize(
        ("count", "expected"),
        [(5, RiskLevel.LOW), (6, RiskLevel.MEDIUM)],
    )
    def test_column_threshold(self, count: int, expected: RiskLevel) -> None:
        report = simulate("insert_column", {"startIndex": 0, "count": count})

        assert report.risk_level is expected
        assert report.columns_affected[0] == "A"

    def test_count_defaults_to_one(self) -> None:
        report = simulate("insert_row", {"startIndex": 0})

        assert report.rows_affected == [1]
        assert report.preview == "Will insert 1 row(s) starting at row 1"

    def test_missing_start_index_is_rejected(self) -> None:
        with pytest.raises(InvalidParametersError, match="startIndex"):
            simulate("insert_row", {"count": 2})


class TestDestructiveActions:
    @pytest.mark.parametrize("count", [1, 1000])
    def test_delete_rows_is_always_high(self, count: int) -> None:
        report = simulate("delete_row", {"startIndex": 9, "count": count})

        assert report.risk_level is RiskLevel.HIGH
        assert report.reversible is True
        assert report.requires_confirmation is True
        assert "This is a destructive action" in report.warnings
        assert report.preview.startswith(f"Will DELETE {count} row(s) starting at row 10")

    def test_delete_columns_lists_letters(self) -> None:
        report = simulate("delete_column", {"startIndex": 25, "count": 2})

        assert report.columns_affected == ["Z", "AA"]
        assert report.risk_level is RiskLevel.HIGH

    def test_clear_range_is_high_and_reversible(self) -> None:
        report = simulate("clear_range", {"range": "A1:C3"})

        assert report.risk_level is RiskLevel.HIGH
        assert report.reversible is True
        assert report.estimated_impact.cells == 9

    def test_sort_is_irreversible_and_needs_confirmation(self) -> None:
        report = simulate("sort_data", {"range": "A2:B10", "columnIndex": 1, "ascending": False})

        assert report.risk_level is RiskLevel.MEDIUM
        assert report.reversible is False
        assert report.requires_confirmation is True
        assert report.preview == "Will sort data by column B in descending order"


class TestOtherKinds:
    def test_creations_are_not_reversible(self) -> None:
        assert simulate("create_spreadsheet", {"title": "Q3"}).reversible is False
        tally = simulate("create_tally_sheet", {})
        assert tally.cells_affected == ["A1", "B1", "C1", "D1", "E1"]
        assert tally.reversible is False

    def test_unbounded_range_is_reported_as_is(self) -> None:
        report = simulate("format_cells", {"range": "A:A", "format": {"bold": True}})

        assert report.cells_affected == ["A:A"]
        assert report.preview == "Will apply bold to range A:A"

    def test_append_transaction_preview(self) -> None:
        report = simulate(
            "append_transaction",
            {"sheetName": "Tally", "transaction": {"type": "income", "amount": 120}},
        )

        assert report.preview == "Will append a income entry (120) to Tally"
        assert report.estimated_impact.rows == 1

    @pytest.mark.parametrize(
        "kind", ["open_spreadsheet", "filter_data", "rename_sheet", "add_data_validation"]
    )
    def test_kinds_without_policy_are_unsupported(self, kind: str) -> None:
        assert is_supported(kind) is False
        with pytest.raises(UnsupportedActionError):
            simulate(kind, {})

    def test_unknown_kind_is_unsupported(self) -> None:
        assert is_supported("launch_rocket") is False
        with pytest.raises(UnsupportedActionError, match="launch_rocket"):
            simulate("launch_rocket", {})

    def test_supported_kinds_count(self) -> None:
        assert len(SUPPORTED_KINDS) == 17


class TestHelpers:
    def test_int_param_rejects_bool_and_negative(self) -> None:
        with pytest.raises(InvalidParametersError):
            int_param({"count": True}, "count")
        with pytest.raises(InvalidParametersError):
            int_param({"count": -1}, "count")
        assert int_param({"count": "3"}, "count") == 3
        assert int_param({}, "count", 1) == 1

    def test_describe_format(self) -> None:
        assert describe_format({"bold": True, "fontSize": 14}) == "bold, font size 14"
        assert describe_format({}) == "formatting"
        assert describe_format(None) == "formatting"
