"""Dry-run risk simulation for spreadsheet actions.

``simulate`` never touches a backend: it only inspects the action kind and
its parameters and reports which cells, rows and columns would change, how
risky the change is and whether it can be undone afterwards.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from voice_sheets.domain.actions import (
    ActionKind,
    DryRunReport,
    EstimatedImpact,
    RiskLevel,
)
from voice_sheets.errors import InvalidParametersError, UnsupportedActionError
from voice_sheets.sheets.ranges import count_values, expand_range, index_to_column

logger = logging.getLogger(__name__)

LARGE_UPDATE_CELLS = 100
LARGE_INSERT_ROWS = 10
LARGE_INSERT_COLUMNS = 5

TALLY_HEADERS = ("Date", "Type", "Category", "Description", "Amount")

_DESTRUCTIVE_WARNING = "This is a destructive action"

Params = Mapping[str, Any]


def int_param(params: Params, key: str, default: int | None = None) -> int:
    """Read an integer parameter, rejecting booleans and negative values."""
    value = params.get(key, default)
    if value is None:
        raise InvalidParametersError(f"Missing required parameter: {key}")
    if isinstance(value, bool):
        raise InvalidParametersError(f"Parameter {key} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidParametersError(f"Parameter {key} must be an integer") from exc
    if number < 0:
        raise InvalidParametersError(f"Parameter {key} must not be negative")
    return number


def _prefixed(params: Params) -> str:
    sheet_name = params.get("sheetName")
    range_a1 = params.get("range") or ""
    return f"{sheet_name}!{range_a1}" if sheet_name else str(range_a1)


def describe_format(cell_format: Any) -> str:
    if not isinstance(cell_format, Mapping):
        return "formatting"
    parts: list[str] = []
    if cell_format.get("bold"):
        parts.append("bold")
    if cell_format.get("italic"):
        parts.append("italic")
    if cell_format.get("underline"):
        parts.append("underline")
    if cell_format.get("textColor"):
        parts.append("text color")
    if cell_format.get("backgroundColor"):
        parts.append("background color")
    if cell_format.get("fontSize"):
        parts.append(f"font size {cell_format['fontSize']}")
    if cell_format.get("numberFormat"):
        parts.append("number format")
    return ", ".join(parts) if parts else "formatting"


def _create_spreadsheet(params: Params) -> DryRunReport:
    title = params.get("title") or "Untitled spreadsheet"
    sheet_names = params.get("sheetNames") or []
    suffix = f" with sheets: {', '.join(map(str, sheet_names))}" if sheet_names else ""
    return DryRunReport(
        cells_affected=[],
        risk_level=RiskLevel.LOW,
        reversible=False,
        preview=f'Will create new spreadsheet "{title}"{suffix}',
        estimated_impact=EstimatedImpact(cells=0),
    )


def _create_tally_sheet(params: Params) -> DryRunReport:
    title = params.get("title") or "Business Tally Sheet"
    cells = [f"{index_to_column(i)}1" for i in range(len(TALLY_HEADERS))]
    return DryRunReport(
        cells_affected=cells,
        risk_level=RiskLevel.LOW,
        reversible=False,
        preview=(
            f'Will create a new tally spreadsheet "{title}" with columns '
            f"{', '.join(TALLY_HEADERS)}"
        ),
        estimated_impact=EstimatedImpact(cells=len(cells), rows=1, columns=len(cells)),
    )


def _update_cells(params: Params) -> DryRunReport:
    values = params.get("values")
    if not isinstance(values, list):
        raise InvalidParametersError("Parameter values must be a list of rows")
    cell_count = count_values(values)
    large = cell_count > LARGE_UPDATE_CELLS
    return DryRunReport(
        cells_affected=expand_range(params.get("range")),
        risk_level=RiskLevel.MEDIUM if large else RiskLevel.LOW,
        reversible=True,
        preview=f"Will update {cell_count} cell(s) in range {_prefixed(params)}",
        warnings=[f"Large update detected - affects more than {LARGE_UPDATE_CELLS} cells"]
        if large
        else [],
        estimated_impact=EstimatedImpact(cells=cell_count),
    )


def _format_cells(params: Params) -> DryRunReport:
    cells = expand_range(params.get("range"))
    return DryRunReport(
        cells_affected=cells,
        risk_level=RiskLevel.LOW,
        reversible=True,
        preview=(
            f"Will apply {describe_format(params.get('format'))} "
            f"to range {_prefixed(params)}"
        ),
        estimated_impact=EstimatedImpact(cells=len(cells)),
    )


def _insert_rows(params: Params) -> DryRunReport:
    start = int_param(params, "startIndex")
    count = int_param(params, "count", 1)
    large = count > LARGE_INSERT_ROWS
    return DryRunReport(
        cells_affected=[],
        rows_affected=[start + i + 1 for i in range(count)],
        risk_level=RiskLevel.MEDIUM if large else RiskLevel.LOW,
        reversible=True,
        preview=f"Will insert {count} row(s) starting at row {start + 1}",
        warnings=[f"Inserting more than {LARGE_INSERT_ROWS} rows"] if large else [],
        estimated_impact=EstimatedImpact(cells=0, rows=count),
    )


def _insert_columns(params: Params) -> DryRunReport:
    start = int_param(params, "startIndex")
    count = int_param(params, "count", 1)
    large = count > LARGE_INSERT_COLUMNS
    return DryRunReport(
        cells_affected=[],
        columns_affected=[index_to_column(start + i) for i in range(count)],
        risk_level=RiskLevel.MEDIUM if large else RiskLevel.LOW,
        reversible=True,
        preview=(
            f"Will insert {count} column(s) starting at column {index_to_column(start)}"
        ),
        warnings=[f"Inserting more than {LARGE_INSERT_COLUMNS} columns"] if large else [],
        estimated_impact=EstimatedImpact(cells=0, columns=count),
    )


def _delete_rows(params: Params) -> DryRunReport:
    start = int_param(params, "startIndex")
    count = int_param(params, "count", 1)
    return DryRunReport(
        cells_affected=[],
        rows_affected=[start + i + 1 for i in range(count)],
        risk_level=RiskLevel.HIGH,
        reversible=True,
        preview=(
            f"Will DELETE {count} row(s) starting at row {start + 1}. "
            "This action removes data."
        ),
        warnings=[_DESTRUCTIVE_WARNING, "All data in these rows will be removed"],
        estimated_impact=EstimatedImpact(cells=0, rows=count),
    )


def _delete_columns(params: Params) -> DryRunReport:
    start = int_param(params, "startIndex")
    count = int_param(params, "count", 1)
    return DryRunReport(
        cells_affected=[],
        columns_affected=[index_to_column(start + i) for i in range(count)],
        risk_level=RiskLevel.HIGH,
        reversible=True,
        preview=(
            f"Will DELETE {count} column(s) starting at column {index_to_column(start)}. "
            "This action removes data."
        ),
        warnings=[_DESTRUCTIVE_WARNING, "All data in these columns will be removed"],
        estimated_impact=EstimatedImpact(cells=0, columns=count),
    )


def _clear_range(params: Params) -> DryRunReport:
    cells = expand_range(params.get("range"))
    return DryRunReport(
        cells_affected=cells,
        risk_level=RiskLevel.HIGH,
        reversible=True,
        preview=(
            f"Will CLEAR {len(cells)} cell(s) in range {_prefixed(params)}. "
            "All content will be removed."
        ),
        warnings=[_DESTRUCTIVE_WARNING, "Cell contents will be permanently cleared"],
        estimated_impact=EstimatedImpact(cells=len(cells)),
    )


def _sort_data(params: Params) -> DryRunReport:
    cells = expand_range(params.get("range"))
    column = index_to_column(int_param(params, "columnIndex", 0))
    order = "ascending" if params.get("ascending", True) else "descending"
    return DryRunReport(
        cells_affected=cells,
        risk_level=RiskLevel.MEDIUM,
        reversible=False,
        preview=f"Will sort data by column {column} in {order} order",
        warnings=["Sorting changes the order of rows", "This action cannot be easily undone"],
        estimated_impact=EstimatedImpact(cells=len(cells)),
    )


def _merge_cells(params: Params) -> DryRunReport:
    cells = expand_range(params.get("range"))
    return DryRunReport(
        cells_affected=cells,
        risk_level=RiskLevel.LOW,
        reversible=True,
        preview=f"Will merge cells in range {_prefixed(params)}",
        estimated_impact=EstimatedImpact(cells=len(cells)),
    )


def _freeze(params: Params) -> DryRunReport:
    rows = params.get("rowCount") or 0
    columns = params.get("columnCount") or 0
    return DryRunReport(
        cells_affected=[],
        risk_level=RiskLevel.LOW,
        reversible=True,
        preview=f"Will freeze {rows} row(s) and {columns} column(s)",
        estimated_impact=EstimatedImpact(cells=0),
    )


def _create_chart(params: Params) -> DryRunReport:
    chart_type = str(params.get("chartType") or "column").lower()
    data_range = params.get("dataRange")
    suffix = f" from {data_range}" if data_range else ""
    return DryRunReport(
        cells_affected=[],
        risk_level=RiskLevel.LOW,
        reversible=True,
        preview=f"Will create a {chart_type} chart{suffix}",
        estimated_impact=EstimatedImpact(cells=0),
    )


def _apply_formula(params: Params) -> DryRunReport:
    cells = expand_range(params.get("range"))
    return DryRunReport(
        cells_affected=cells,
        risk_level=RiskLevel.LOW,
        reversible=True,
        preview=f'Will apply formula "{params.get("formula", "")}" to {len(cells)} cell(s)',
        estimated_impact=EstimatedImpact(cells=len(cells)),
    )


def _append_transaction(params: Params) -> DryRunReport:
    transaction = params.get("transaction") or {}
    if not isinstance(transaction, Mapping):
        raise InvalidParametersError("Parameter transaction must be an object")
    amount = transaction.get("amount", params.get("amount", 0))
    kind = transaction.get("type") or "transaction"
    target = params.get("sheetName") or "the active sheet"
    return DryRunReport(
        cells_affected=[],
        risk_level=RiskLevel.LOW,
        reversible=True,
        preview=f"Will append a {kind} entry ({amount}) to {target}",
        estimated_impact=EstimatedImpact(cells=len(TALLY_HEADERS), rows=1),
    )


_SIMULATORS: dict[ActionKind, Callable[[Params], DryRunReport]] = {
    ActionKind.CREATE_SPREADSHEET: _create_spreadsheet,
    ActionKind.CREATE_TALLY_SHEET: _create_tally_sheet,
    ActionKind.UPDATE_CELL: _update_cells,
    ActionKind.UPDATE_RANGE: _update_cells,
    ActionKind.FORMAT_CELLS: _format_cells,
    ActionKind.INSERT_ROW: _insert_rows,
    ActionKind.INSERT_COLUMN: _insert_columns,
    ActionKind.DELETE_ROW: _delete_rows,
    ActionKind.DELETE_COLUMN: _delete_columns,
    ActionKind.CLEAR_RANGE: _clear_range,
    ActionKind.SORT_DATA: _sort_data,
    ActionKind.MERGE_CELLS: _merge_cells,
    ActionKind.FREEZE_ROWS: _freeze,
    ActionKind.FREEZE_COLUMNS: _freeze,
    ActionKind.CREATE_CHART: _create_chart,
    ActionKind.APPLY_FORMULA: _apply_formula,
    ActionKind.APPEND_TRANSACTION: _append_transaction,
}

SUPPORTED_KINDS = frozenset(_SIMULATORS)


def is_supported(action: ActionKind | str) -> bool:
    try:
        return ActionKind.parse(action) in SUPPORTED_KINDS
    except UnsupportedActionError:
        return False


def simulate(action: ActionKind | str, parameters: Params) -> DryRunReport:
    """Predict the effect of ``action`` without performing it.

    Raises:
        UnsupportedActionError: the kind has no simulation policy.
        InvalidParametersError: required positional parameters are malformed.
    """
    kind = ActionKind.parse(action)
    simulator = _SIMULATORS.get(kind)
    if simulator is None:
        raise UnsupportedActionError(kind.value)
    report = simulator(parameters or {})
    logger.debug(
        "Dry-run action=%s risk=%s reversible=%s cells=%d",
        kind.value,
        report.risk_level.value,
        report.reversible,
        report.estimated_impact.cells,
    )
    return report
