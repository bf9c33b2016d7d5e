"""Forward spreadsheet mutations, one per supported action kind.

Each mutation reads whatever its undo plan needs *before* changing the
sheet and returns it as the snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Mapping

from voice_sheets.domain.actions import ActionKind
from voice_sheets.errors import InvalidParametersError
from voice_sheets.safety.simulator import TALLY_HEADERS, int_param
from voice_sheets.sheets.backend import Dimension, SpreadsheetBackend
from voice_sheets.sheets.ranges import (
    column_span,
    index_to_column,
    parse_a1_range,
    qualify_range,
    row_span,
)

Params = Mapping[str, Any]

DEFAULT_TALLY_TITLE = "Business Tally Sheet"
DEFAULT_TALLY_SHEET = "Tally"


@dataclass
class MutationResult:
    result: dict[str, Any] = field(default_factory=dict)
    snapshot: dict[str, Any] | None = None
    # Set by creations: the spreadsheet the action produced.
    spreadsheet_id: str | None = None


def _range(params: Params) -> str:
    range_a1 = params.get("range")
    if not range_a1 or not isinstance(range_a1, str):
        raise InvalidParametersError("Parameter range is required")
    return qualify_range(range_a1, params.get("sheetName"))


def _grid_id(params: Params) -> int:
    return int_param(params, "sheetId", 0)


def _create_spreadsheet(
    backend: SpreadsheetBackend, _: str | None, params: Params
) -> MutationResult:
    title = params.get("title") or "Untitled spreadsheet"
    info = backend.create_spreadsheet(str(title), list(params.get("sheetNames") or []) or None)
    return MutationResult(
        result={"spreadsheet_id": info.spreadsheet_id, "url": info.url, "title": info.title},
        spreadsheet_id=info.spreadsheet_id,
    )


def _create_tally_sheet(
    backend: SpreadsheetBackend, _: str | None, params: Params
) -> MutationResult:
    title = str(params.get("title") or DEFAULT_TALLY_TITLE)
    sheet_name = str(params.get("sheetName") or DEFAULT_TALLY_SHEET)
    info = backend.create_spreadsheet(title, [sheet_name])
    header_range = qualify_range(f"A1:{index_to_column(len(TALLY_HEADERS) - 1)}1", sheet_name)
    backend.write_values(info.spreadsheet_id, header_range, [list(TALLY_HEADERS)])
    return MutationResult(
        result={"spreadsheet_id": info.spreadsheet_id, "url": info.url, "title": title},
        spreadsheet_id=info.spreadsheet_id,
    )


def _update_values(
    backend: SpreadsheetBackend, spreadsheet_id: str, params: Params
) -> MutationResult:
    range_a1 = _range(params)
    values = params.get("values")
    if not isinstance(values, list) or not all(isinstance(row, list) for row in values):
        raise InvalidParametersError("Parameter values must be a list of rows")
    previous = backend.read_values(spreadsheet_id, range_a1)
    updated = backend.write_values(spreadsheet_id, range_a1, values)
    return MutationResult(result={"updated_cells": updated}, snapshot={"values": previous})


def _apply_formula(
    backend: SpreadsheetBackend, spreadsheet_id: str, params: Params
) -> MutationResult:
    range_a1 = _range(params)
    formula = params.get("formula")
    if not formula or not isinstance(formula, str):
        raise InvalidParametersError("Parameter formula is required")
    grid = parse_a1_range(range_a1)
    if not grid.bounded:
        raise InvalidParametersError("apply_formula needs a bounded range")
    rows = grid.end_row_index - grid.start_row_index  # type: ignore[operator]
    cols = grid.end_column_index - grid.start_column_index  # type: ignore[operator]
    written = [[formula] * cols for _ in range(rows)]
    previous = backend.read_values(spreadsheet_id, range_a1)
    updated = backend.write_values(spreadsheet_id, range_a1, written)
    return MutationResult(
        result={"updated_cells": updated},
        snapshot={"values": previous, "written": written},
    )


def _format_cells(
    backend: SpreadsheetBackend, spreadsheet_id: str, params: Params
) -> MutationResult:
    range_a1 = _range(params)
    cell_format = params.get("format")
    if not isinstance(cell_format, Mapping) or not cell_format:
        raise InvalidParametersError("Parameter format must be a non-empty object")
    grid = parse_a1_range(range_a1, grid_id=_grid_id(params))
    previous = backend.read_format(spreadsheet_id, range_a1)
    backend.format_cells(spreadsheet_id, grid, dict(cell_format))
    return MutationResult(result={"formatted_range": range_a1}, snapshot={"format": previous})


def _insert(dimension: Dimension):
    def mutation(
        backend: SpreadsheetBackend, spreadsheet_id: str, params: Params
    ) -> MutationResult:
        start = int_param(params, "startIndex")
        count = int_param(params, "count", 1)
        backend.insert_dimension(spreadsheet_id, _grid_id(params), dimension, start, count)
        return MutationResult(result={"inserted": count, "start_index": start})

    return mutation


def _delete(dimension: Dimension):
    def mutation(
        backend: SpreadsheetBackend, spreadsheet_id: str, params: Params
    ) -> MutationResult:
        start = int_param(params, "startIndex")
        count = int_param(params, "count", 1)
        span = row_span(start, count) if dimension is Dimension.ROWS else column_span(start, count)
        deleted = backend.read_values(spreadsheet_id, qualify_range(span, params.get("sheetName")))
        backend.delete_dimension(spreadsheet_id, _grid_id(params), dimension, start, count)
        return MutationResult(
            result={"deleted": count, "start_index": start},
            snapshot={"deleted": deleted},
        )

    return mutation


def _clear_range(
    backend: SpreadsheetBackend, spreadsheet_id: str, params: Params
) -> MutationResult:
    range_a1 = _range(params)
    previous = backend.read_values(spreadsheet_id, range_a1)
    backend.clear_values(spreadsheet_id, range_a1)
    return MutationResult(result={"cleared_range": range_a1}, snapshot={"values": previous})


def _sort_data(
    backend: SpreadsheetBackend, spreadsheet_id: str, params: Params
) -> MutationResult:
    grid = parse_a1_range(_range(params), grid_id=_grid_id(params))
    column_index = int_param(params, "columnIndex", 0)
    ascending = bool(params.get("ascending", True))
    backend.sort_range(spreadsheet_id, grid, column_index, ascending)
    return MutationResult(
        result={"sorted_by": index_to_column(column_index), "ascending": ascending}
    )


def _merge_cells(
    backend: SpreadsheetBackend, spreadsheet_id: str, params: Params
) -> MutationResult:
    grid = parse_a1_range(_range(params), grid_id=_grid_id(params))
    merge_type = str(params.get("mergeType") or "MERGE_ALL")
    backend.merge_cells(spreadsheet_id, grid, merge_type)
    return MutationResult(result={"merge_type": merge_type})


def _freeze(rows: bool):
    key = "rowCount" if rows else "columnCount"

    def mutation(
        backend: SpreadsheetBackend, spreadsheet_id: str, params: Params
    ) -> MutationResult:
        grid_id = _grid_id(params)
        count = int_param(params, key, 0)
        previous = backend.get_frozen(spreadsheet_id, grid_id)
        if rows:
            backend.set_frozen(spreadsheet_id, grid_id, rows=count)
        else:
            backend.set_frozen(spreadsheet_id, grid_id, columns=count)
        return MutationResult(result={"frozen": count}, snapshot={"frozen": list(previous)})

    return mutation


def _create_chart(
    backend: SpreadsheetBackend, spreadsheet_id: str, params: Params
) -> MutationResult:
    data_range = params.get("dataRange")
    if not data_range or not isinstance(data_range, str):
        raise InvalidParametersError("Parameter dataRange is required")
    grid_id = _grid_id(params)
    chart_type = str(params.get("chartType") or "COLUMN")
    position = params.get("position")
    chart_id = backend.add_chart(
        spreadsheet_id,
        grid_id,
        chart_type,
        parse_a1_range(data_range, grid_id=grid_id),
        dict(position) if isinstance(position, Mapping) else None,
    )
    return MutationResult(result={"chart_id": chart_id}, snapshot={"chartId": chart_id})


def transaction_row(params: Params) -> list[Any]:
    transaction = params.get("transaction") or {}
    if not isinstance(transaction, Mapping):
        raise InvalidParametersError("Parameter transaction must be an object")
    amount = transaction.get("amount", params.get("amount"))
    if amount is None or isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise InvalidParametersError("Transaction amount must be a number")
    return [
        str(transaction.get("date") or date.today().isoformat()),
        str(transaction.get("type") or "expense"),
        str(transaction.get("category") or ""),
        str(transaction.get("description") or ""),
        amount,
    ]


def _append_transaction(
    backend: SpreadsheetBackend, spreadsheet_id: str, params: Params
) -> MutationResult:
    last_column = index_to_column(len(TALLY_HEADERS) - 1)
    target = qualify_range(f"A:{last_column}", params.get("sheetName"))
    updated_range = backend.append_values(spreadsheet_id, target, [transaction_row(params)])
    return MutationResult(
        result={"updated_range": updated_range},
        snapshot={"updatedRange": updated_range},
    )


Mutation = Callable[[SpreadsheetBackend, Any, Params], MutationResult]

MUTATIONS: dict[ActionKind, Mutation] = {
    ActionKind.CREATE_SPREADSHEET: _create_spreadsheet,
    ActionKind.CREATE_TALLY_SHEET: _create_tally_sheet,
    ActionKind.UPDATE_CELL: _update_values,
    ActionKind.UPDATE_RANGE: _update_values,
    ActionKind.APPLY_FORMULA: _apply_formula,
    ActionKind.FORMAT_CELLS: _format_cells,
    ActionKind.INSERT_ROW: _insert(Dimension.ROWS),
    ActionKind.INSERT_COLUMN: _insert(Dimension.COLUMNS),
    ActionKind.DELETE_ROW: _delete(Dimension.ROWS),
    ActionKind.DELETE_COLUMN: _delete(Dimension.COLUMNS),
    ActionKind.CLEAR_RANGE: _clear_range,
    ActionKind.SORT_DATA: _sort_data,
    ActionKind.MERGE_CELLS: _merge_cells,
    ActionKind.FREEZE_ROWS: _freeze(rows=True),
    ActionKind.FREEZE_COLUMNS: _freeze(rows=False),
    ActionKind.CREATE_CHART: _create_chart,
    ActionKind.APPEND_TRANSACTION: _append_transaction,
}
