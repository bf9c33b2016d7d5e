"""Time-bounded undo plans and their exactly-once execution."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

from voice_sheets.domain.actions import ActionKind, UndoActionKind
from voice_sheets.errors import (
    InvalidParametersError,
    RollbackExpiredError,
    RollbackNotFoundError,
    SheetsBackendError,
    UndoExecutionError,
    UndoUnsupportedError,
)
from voice_sheets.safety.simulator import int_param
from voice_sheets.safety.undo_plan import build_undo_plan
from voice_sheets.sheets.backend import BackendProvider, Dimension, SpreadsheetBackend
from voice_sheets.sheets.ranges import column_span, parse_a1_range, qualify_range, row_span
from voice_sheets.storage.db import SqliteStore
from voice_sheets.storage.models import RollbackAction
from voice_sheets.utils.time import parse_iso, to_iso, utc_now

logger = logging.getLogger(__name__)

UndoData = Mapping[str, Any]


@dataclass
class UndoResult:
    success: bool
    message: str
    undo_action: str
    rollback_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "undo_action": self.undo_action,
            "rollback_id": self.rollback_id,
        }


def _range_of(data: UndoData) -> str:
    range_a1 = data.get("range")
    if not range_a1:
        raise UndoExecutionError("Undo data has no range")
    return qualify_range(str(range_a1), data.get("sheetName"))


def _grid_id(data: UndoData) -> int:
    return int_param(data, "sheetId", 0)


def _restore_values(backend: SpreadsheetBackend, spreadsheet_id: str, data: UndoData) -> None:
    values = data.get("previousValues") or [[""]]
    backend.write_values(spreadsheet_id, _range_of(data), values)


def _restore_format(backend: SpreadsheetBackend, spreadsheet_id: str, data: UndoData) -> None:
    previous = data.get("previousFormat")
    if previous is None:
        raise UndoExecutionError("No previous format was captured for this action")
    grid = parse_a1_range(str(data.get("range") or ""), grid_id=_grid_id(data))
    backend.format_cells(spreadsheet_id, grid, dict(previous))


def _delete_inserted(dimension: Dimension):
    def handler(backend: SpreadsheetBackend, spreadsheet_id: str, data: UndoData) -> None:
        backend.delete_dimension(
            spreadsheet_id,
            _grid_id(data),
            dimension,
            int_param(data, "startIndex"),
            int_param(data, "count", 1),
        )

    return handler


def _restore_deleted(dimension: Dimension):
    def handler(backend: SpreadsheetBackend, spreadsheet_id: str, data: UndoData) -> None:
        start = int_param(data, "startIndex")
        count = int_param(data, "count", 1)
        backend.insert_dimension(spreadsheet_id, _grid_id(data), dimension, start, count)
        deleted = data.get("deletedData") or []
        if not deleted:
            logger.info(
                "No content captured for deleted %s start=%d count=%d",
                dimension.value.lower(),
                start,
                count,
            )
            return
        span = row_span(start, count) if dimension is Dimension.ROWS else column_span(start, count)
        backend.write_values(spreadsheet_id, qualify_range(span, data.get("sheetName")), deleted)

    return handler


def _restore_cleared(backend: SpreadsheetBackend, spreadsheet_id: str, data: UndoData) -> None:
    cleared = data.get("clearedValues") or []
    if not cleared:
        logger.info("Cleared range %s was empty; nothing to restore", data.get("range"))
        return
    backend.write_values(spreadsheet_id, _range_of(data), cleared)


def _unmerge(backend: SpreadsheetBackend, spreadsheet_id: str, data: UndoData) -> None:
    grid = parse_a1_range(str(data.get("range") or ""), grid_id=_grid_id(data))
    backend.unmerge_cells(spreadsheet_id, grid)


def _restore_freeze(backend: SpreadsheetBackend, spreadsheet_id: str, data: UndoData) -> None:
    backend.set_frozen(
        spreadsheet_id,
        _grid_id(data),
        rows=int_param(data, "previousRowCount", 0),
        columns=int_param(data, "previousColumnCount", 0),
    )


def _delete_chart(backend: SpreadsheetBackend, spreadsheet_id: str, data: UndoData) -> None:
    chart_id = data.get("chartId")
    if chart_id is None:
        raise UndoExecutionError("The created chart id was not recorded")
    backend.delete_chart(spreadsheet_id, int(chart_id))


def _delete_appended(backend: SpreadsheetBackend, spreadsheet_id: str, data: UndoData) -> None:
    updated = data.get("updatedRange")
    if not updated:
        raise UndoExecutionError("The appended range was not recorded")
    grid = parse_a1_range(str(updated))
    if grid.start_row_index is None or grid.end_row_index is None:
        raise UndoExecutionError(f"Appended range has no row bounds: {updated}")
    backend.delete_dimension(
        spreadsheet_id,
        _grid_id(data),
        Dimension.ROWS,
        grid.start_row_index,
        grid.end_row_index - grid.start_row_index,
    )


UndoHandler = Callable[[SpreadsheetBackend, str, UndoData], None]

_HANDLERS: dict[UndoActionKind, UndoHandler] = {
    UndoActionKind.RESTORE_CELL: _restore_values,
    UndoActionKind.RESTORE_RANGE: _restore_values,
    UndoActionKind.RESTORE_FORMAT: _restore_format,
    UndoActionKind.DELETE_INSERTED_ROW: _delete_inserted(Dimension.ROWS),
    UndoActionKind.DELETE_INSERTED_COLUMN: _delete_inserted(Dimension.COLUMNS),
    UndoActionKind.RESTORE_DELETED_ROW: _restore_deleted(Dimension.ROWS),
    UndoActionKind.RESTORE_DELETED_COLUMN: _restore_deleted(Dimension.COLUMNS),
    UndoActionKind.RESTORE_CLEARED_RANGE: _restore_cleared,
    UndoActionKind.UNMERGE_CELLS: _unmerge,
    UndoActionKind.RESTORE_FREEZE: _restore_freeze,
    UndoActionKind.DELETE_CHART: _delete_chart,
    UndoActionKind.DELETE_APPENDED_ROWS: _delete_appended,
}


class RollbackStore:
    """Persists undo plans and runs each of them at most once."""

    def __init__(
        self,
        store: SqliteStore,
        backends: BackendProvider,
        *,
        window_hours: int = 24,
        claim_lease_seconds: int = 600,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._backends = backends
        self._window_hours = window_hours
        self._lease = timedelta(seconds=claim_lease_seconds)
        self._clock = clock

    @property
    def window_hours(self) -> int:
        return self._window_hours

    def create_snapshot(
        self,
        user_id: str,
        action_id: str,
        sheet_id: str,
        action: ActionKind | str,
        parameters: Mapping[str, Any],
        snapshot: Mapping[str, Any] | None = None,
    ) -> RollbackAction:
        plan = build_undo_plan(action, parameters, snapshot)
        now = self._clock()
        record = RollbackAction(
            rollback_id=uuid.uuid4().hex,
            user_id=user_id,
            action_id=action_id,
            sheet_id=sheet_id,
            undo_action=plan.undo_action,
            undo_data=plan.undo_data,
            created_at=to_iso(now),
            expires_at=to_iso(now + timedelta(hours=self._window_hours)),
        )
        self._store.insert_rollback(record)
        logger.info(
            "Rollback snapshot created rollback_id=%s action_id=%s undo_action=%s",
            record.rollback_id,
            action_id,
            record.undo_action,
        )
        return record

    def execute_undo(self, user_id: str, rollback_id: str) -> UndoResult:
        """Apply the inverse action of ``rollback_id`` on behalf of ``user_id``.

        Raises:
            RollbackNotFoundError: unknown, foreign, already executed, or
                claimed by a concurrent request.
            RollbackExpiredError: the undo window has passed.
            UndoExecutionError: the inverse action failed; the record stays
                available for another attempt.
        """
        record = self._store.find_open_rollback(rollback_id, user_id)
        if record is None:
            raise RollbackNotFoundError(rollback_id)

        now = self._clock()
        if now > parse_iso(record.expires_at):
            raise RollbackExpiredError(rollback_id, self._window_hours)

        claimed_at = to_iso(now)
        if not self._store.claim_rollback(
            rollback_id, user_id, claimed_at, to_iso(now - self._lease)
        ):
            logger.info("Rollback claim lost rollback_id=%s", rollback_id)
            raise RollbackNotFoundError(rollback_id)

        try:
            self._perform(user_id, record)
        except Exception:
            self._store.release_rollback_claim(rollback_id, claimed_at)
            raise

        self._store.mark_rollback_executed(rollback_id, to_iso(self._clock()))
        logger.info(
            "Undo executed rollback_id=%s undo_action=%s", rollback_id, record.undo_action
        )
        return UndoResult(
            success=True,
            message=f"Successfully undid action: {record.undo_action}",
            undo_action=record.undo_action,
            rollback_id=rollback_id,
        )

    def _perform(self, user_id: str, record: RollbackAction) -> None:
        try:
            kind = UndoActionKind(record.undo_action)
        except ValueError as exc:
            raise UndoUnsupportedError(
                f"Unsupported undo action: {record.undo_action}"
            ) from exc
        handler = _HANDLERS[kind]
        try:
            handler(self._backends(user_id), record.sheet_id, record.undo_data)
        except (SheetsBackendError, InvalidParametersError) as exc:
            logger.error(
                "Undo failed rollback_id=%s undo_action=%s error=%s",
                record.rollback_id,
                record.undo_action,
                exc,
            )
            raise UndoExecutionError(f"Undo failed: {exc}") from exc

    def get_undo_history(self, user_id: str, limit: int = 10) -> list[RollbackAction]:
        return self._store.list_open_rollbacks(user_id, to_iso(self._clock()), limit)

    def get_undo_stats(self, user_id: str) -> dict[str, int]:
        return self._store.rollback_counts(user_id, to_iso(self._clock()))

    def cleanup_expired(self) -> int:
        deleted = self._store.delete_expired_rollbacks(to_iso(self._clock()))
        logger.info("Expired rollback actions cleaned up deleted=%d", deleted)
        return deleted
