"""Spreadsheet backend contract consumed by the executor and rollback store."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol

from voice_sheets.sheets.ranges import GridRange


class Dimension(str, Enum):
    ROWS = "ROWS"
    COLUMNS = "COLUMNS"


@dataclass(frozen=True)
class SpreadsheetInfo:
    spreadsheet_id: str
    url: str | None = None
    title: str | None = None


class SpreadsheetBackend(Protocol):
    """Operations the safety pipeline needs from a spreadsheet service.

    Implementations raise ``SheetsBackendError`` (or ``BackendTimeoutError``)
    for every failure; callers treat both uniformly as mutation failures.
    """

    def create_spreadsheet(
        self, title: str, sheet_names: list[str] | None = None
    ) -> SpreadsheetInfo: ...

    def read_values(self, spreadsheet_id: str, range_a1: str) -> list[list[Any]]:
        """Cell contents as entered: formulas, not their computed values."""
        ...

    def write_values(
        self, spreadsheet_id: str, range_a1: str, values: list[list[Any]]
    ) -> int: ...

    def append_values(
        self, spreadsheet_id: str, range_a1: str, values: list[list[Any]]
    ) -> str: ...

    def clear_values(self, spreadsheet_id: str, range_a1: str) -> None: ...

    def read_format(self, spreadsheet_id: str, range_a1: str) -> dict[str, Any]: ...

    def format_cells(
        self, spreadsheet_id: str, grid: GridRange, cell_format: dict[str, Any]
    ) -> None: ...

    def insert_dimension(
        self, spreadsheet_id: str, grid_id: int, dimension: Dimension, start_index: int, count: int
    ) -> None: ...

    def delete_dimension(
        self, spreadsheet_id: str, grid_id: int, dimension: Dimension, start_index: int, count: int
    ) -> None: ...

    def merge_cells(self, spreadsheet_id: str, grid: GridRange, merge_type: str) -> None: ...

    def unmerge_cells(self, spreadsheet_id: str, grid: GridRange) -> None: ...

    def sort_range(
        self, spreadsheet_id: str, grid: GridRange, column_index: int, ascending: bool
    ) -> None: ...

    def add_chart(
        self,
        spreadsheet_id: str,
        grid_id: int,
        chart_type: str,
        data_range: GridRange,
        position: dict[str, int] | None = None,
    ) -> int: ...

    def delete_chart(self, spreadsheet_id: str, chart_id: int) -> None: ...

    def get_frozen(self, spreadsheet_id: str, grid_id: int) -> tuple[int, int]: ...

    def set_frozen(
        self,
        spreadsheet_id: str,
        grid_id: int,
        rows: int | None = None,
        columns: int | None = None,
    ) -> None: ...


# Resolves the backend to use on behalf of a user (per-user credentials).
BackendProvider = Callable[[str], SpreadsheetBackend]
