"""Inverse-action planning for applied spreadsheet mutations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from voice_sheets.domain.actions import ActionKind, UndoActionKind

UNDO_ACTIONS: dict[ActionKind, UndoActionKind] = {
    ActionKind.UPDATE_CELL: UndoActionKind.RESTORE_CELL,
    ActionKind.UPDATE_RANGE: UndoActionKind.RESTORE_RANGE,
    ActionKind.APPLY_FORMULA: UndoActionKind.RESTORE_RANGE,
    ActionKind.FORMAT_CELLS: UndoActionKind.RESTORE_FORMAT,
    ActionKind.INSERT_ROW: UndoActionKind.DELETE_INSERTED_ROW,
    ActionKind.INSERT_COLUMN: UndoActionKind.DELETE_INSERTED_COLUMN,
    ActionKind.DELETE_ROW: UndoActionKind.RESTORE_DELETED_ROW,
    ActionKind.DELETE_COLUMN: UndoActionKind.RESTORE_DELETED_COLUMN,
    ActionKind.CLEAR_RANGE: UndoActionKind.RESTORE_CLEARED_RANGE,
    ActionKind.MERGE_CELLS: UndoActionKind.UNMERGE_CELLS,
    ActionKind.FREEZE_ROWS: UndoActionKind.RESTORE_FREEZE,
    ActionKind.FREEZE_COLUMNS: UndoActionKind.RESTORE_FREEZE,
    ActionKind.CREATE_CHART: UndoActionKind.DELETE_CHART,
    ActionKind.APPEND_TRANSACTION: UndoActionKind.DELETE_APPENDED_ROWS,
}


@dataclass
class UndoPlan:
    undo_action: str
    undo_data: dict[str, Any] = field(default_factory=dict)


def undo_action_for(action: ActionKind | str) -> str:
    """Name of the inverse action; unmapped kinds get ``undo_<kind>``."""
    kind = ActionKind.parse(action)
    mapped = UNDO_ACTIONS.get(kind)
    return mapped.value if mapped is not None else f"undo_{kind.value}"


def pad_values(values: Any, shape: Any) -> list[list[Any]]:
    """Pad ``values`` with blanks so it covers every cell of ``shape``.

    The values API omits trailing empty cells; writing the raw read back
    would leave the new content in place where the cell used to be blank.
    """
    rows = [list(row) for row in values] if isinstance(values, list) else []
    if not isinstance(shape, list):
        return rows or [[""]]
    for index, shape_row in enumerate(shape):
        width = len(shape_row) if isinstance(shape_row, list) else 1
        if index >= len(rows):
            rows.append([])
        if len(rows[index]) < width:
            rows[index].extend([""] * (width - len(rows[index])))
    return rows or [[""]]


def _positional(params: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "startIndex": params.get("startIndex"),
        "count": params.get("count") or 1,
        "sheetId": params.get("sheetId") or 0,
    }


def _restore_values(params, snapshot) -> dict[str, Any]:
    # apply_formula has no values parameter; the executor records what it wrote.
    shape = params.get("values") or (snapshot or {}).get("written")
    return {
        "range": params.get("range"),
        "sheetName": params.get("sheetName"),
        "previousValues": pad_values((snapshot or {}).get("values"), shape),
    }


def _restore_format(params, snapshot) -> dict[str, Any]:
    return {
        "range": params.get("range"),
        "sheetName": params.get("sheetName"),
        "sheetId": params.get("sheetId") or 0,
        "previousFormat": (snapshot or {}).get("format"),
    }


def _delete_inserted(params, snapshot) -> dict[str, Any]:
    return _positional(params)


def _restore_deleted(params, snapshot) -> dict[str, Any]:
    data = _positional(params)
    data["sheetName"] = params.get("sheetName")
    data["deletedData"] = list((snapshot or {}).get("deleted") or [])
    return data


def _restore_cleared(params, snapshot) -> dict[str, Any]:
    return {
        "range": params.get("range"),
        "sheetName": params.get("sheetName"),
        "clearedValues": list((snapshot or {}).get("values") or []),
    }


def _unmerge(params, snapshot) -> dict[str, Any]:
    return {
        "range": params.get("range"),
        "sheetName": params.get("sheetName"),
        "sheetId": params.get("sheetId") or 0,
    }


def _restore_freeze(params, snapshot) -> dict[str, Any]:
    frozen = (snapshot or {}).get("frozen") or (0, 0)
    return {
        "sheetId": params.get("sheetId") or 0,
        "previousRowCount": int(frozen[0]),
        "previousColumnCount": int(frozen[1]),
    }


def _delete_chart(params, snapshot) -> dict[str, Any]:
    return {"chartId": (snapshot or {}).get("chartId")}


def _delete_appended(params, snapshot) -> dict[str, Any]:
    return {
        "sheetId": params.get("sheetId") or 0,
        "sheetName": params.get("sheetName"),
        "updatedRange": (snapshot or {}).get("updatedRange"),
    }


_BUILDERS: dict[UndoActionKind, Callable[..., dict[str, Any]]] = {
    UndoActionKind.RESTORE_CELL: _restore_values,
    UndoActionKind.RESTORE_RANGE: _restore_values,
    UndoActionKind.RESTORE_FORMAT: _restore_format,
    UndoActionKind.DELETE_INSERTED_ROW: _delete_inserted,
    UndoActionKind.DELETE_INSERTED_COLUMN: _delete_inserted,
    UndoActionKind.RESTORE_DELETED_ROW: _restore_deleted,
    UndoActionKind.RESTORE_DELETED_COLUMN: _restore_deleted,
    UndoActionKind.RESTORE_CLEARED_RANGE: _restore_cleared,
    UndoActionKind.UNMERGE_CELLS: _unmerge,
    UndoActionKind.RESTORE_FREEZE: _restore_freeze,
    UndoActionKind.DELETE_CHART: _delete_chart,
    UndoActionKind.DELETE_APPENDED_ROWS: _delete_appended,
}


def build_undo_plan(
    action: ActionKind | str,
    parameters: Mapping[str, Any],
    snapshot: Mapping[str, Any] | None = None,
) -> UndoPlan:
    """Derive the inverse action and the data it needs.

    ``snapshot`` holds state captured before the mutation: ``values``,
    ``written``, ``format``, ``deleted``, ``frozen`` or, for creations, the created
    ``chartId`` / ``updatedRange``. Without it only positional data is kept.
    """
    kind = ActionKind.parse(action)
    params = parameters or {}
    mapped = UNDO_ACTIONS.get(kind)
    if mapped is None:
        return UndoPlan(undo_action=f"undo_{kind.value}", undo_data=dict(params))
    return UndoPlan(undo_action=mapped.value, undo_data=_BUILDERS[mapped](params, snapshot))
