"""Action intents, dry-run reports and the closed action-kind enumeration."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from voice_sheets.errors import RequestValidationError, UnsupportedActionError


class ActionKind(str, Enum):
    CREATE_SPREADSHEET = "create_spreadsheet"
    OPEN_SPREADSHEET = "open_spreadsheet"
    UPDATE_CELL = "update_cell"
    UPDATE_RANGE = "update_range"
    INSERT_ROW = "insert_row"
    INSERT_COLUMN = "insert_column"
    DELETE_ROW = "delete_row"
    DELETE_COLUMN = "delete_column"
    FORMAT_CELLS = "format_cells"
    APPLY_FORMULA = "apply_formula"
    SORT_DATA = "sort_data"
    FILTER_DATA = "filter_data"
    CREATE_CHART = "create_chart"
    RENAME_SHEET = "rename_sheet"
    MERGE_CELLS = "merge_cells"
    FREEZE_ROWS = "freeze_rows"
    FREEZE_COLUMNS = "freeze_columns"
    ADD_DATA_VALIDATION = "add_data_validation"
    CLEAR_RANGE = "clear_range"
    APPEND_TRANSACTION = "append_transaction"
    CREATE_TALLY_SHEET = "create_tally_sheet"

    @classmethod
    def parse(cls, value: object) -> "ActionKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError as exc:
            raise UnsupportedActionError(str(value)) from exc


class UndoActionKind(str, Enum):
    RESTORE_CELL = "restore_cell"
    RESTORE_RANGE = "restore_range"
    RESTORE_FORMAT = "restore_format"
    DELETE_INSERTED_ROW = "delete_inserted_row"
    DELETE_INSERTED_COLUMN = "delete_inserted_column"
    RESTORE_DELETED_ROW = "restore_deleted_row"
    RESTORE_DELETED_COLUMN = "restore_deleted_column"
    RESTORE_CLEARED_RANGE = "restore_cleared_range"
    UNMERGE_CELLS = "unmerge_cells"
    RESTORE_FREEZE = "restore_freeze"
    DELETE_CHART = "delete_chart"
    DELETE_APPENDED_ROWS = "delete_appended_rows"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Kinds that create a new spreadsheet and therefore need no target sheet.
CREATION_KINDS = frozenset({ActionKind.CREATE_SPREADSHEET, ActionKind.CREATE_TALLY_SHEET})


@dataclass
class ActionIntent:
    """Structured result of classifying one utterance."""

    action: ActionKind
    parameters: dict[str, Any] = field(default_factory=dict)
    confidence: float = 1.0
    confirmation_required: bool = False
    clarification_needed: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ActionIntent":
        """Build an intent from the classifier's wire format (camelCase keys)."""
        action = ActionKind.parse(payload.get("action"))
        parameters = payload.get("parameters") or {}
        if not isinstance(parameters, Mapping):
            raise RequestValidationError("Intent parameters must be an object")

        raw_confidence = payload.get("confidence", 1.0)
        if isinstance(raw_confidence, bool) or not isinstance(raw_confidence, (int, float)):
            raise RequestValidationError("Intent confidence must be a number")
        confidence = float(raw_confidence)
        if not 0.0 <= confidence <= 1.0:
            raise RequestValidationError("Intent confidence must be within [0, 1]")

        clarification = payload.get("clarificationNeeded")
        return cls(
            action=action,
            parameters=dict(parameters),
            confidence=confidence,
            confirmation_required=bool(payload.get("confirmationRequired", False)),
            clarification_needed=str(clarification) if clarification else None,
        )

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "action": self.action.value,
            "parameters": self.parameters,
            "confidence": self.confidence,
            "confirmationRequired": self.confirmation_required,
        }
        if self.clarification_needed:
            data["clarificationNeeded"] = self.clarification_needed
        return data


@dataclass
class EstimatedImpact:
    cells: int
    rows: int | None = None
    columns: int | None = None

    def to_dict(self) -> dict[str, int]:
        data = {"cells": self.cells}
        if self.rows is not None:
            data["rows"] = self.rows
        if self.columns is not None:
            data["columns"] = self.columns
        return data


@dataclass
class DryRunReport:
    cells_affected: list[str]
    risk_level: RiskLevel
    reversible: bool
    preview: str
    estimated_impact: EstimatedImpact
    warnings: list[str] = field(default_factory=list)
    rows_affected: list[int] | None = None
    columns_affected: list[str] | None = None

    @property
    def requires_confirmation(self) -> bool:
        return self.risk_level is RiskLevel.HIGH or not self.reversible

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "cells_affected": list(self.cells_affected),
            "risk_level": self.risk_level.value,
            "reversible": self.reversible,
            "preview": self.preview,
            "warnings": list(self.warnings),
            "estimated_impact": self.estimated_impact.to_dict(),
        }
        if self.rows_affected is not None:
            data["rows_affected"] = list(self.rows_affected)
        if self.columns_affected is not None:
            data["columns_affected"] = list(self.columns_affected)
        return data
