"""A1-notation helpers shared by the simulator, executor and backends."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from voice_sheets.errors import InvalidParametersError

_A1_PATTERN = re.compile(r"^([A-Z]+)?(\d+)?(?::([A-Z]+)?(\d+)?)?$")
_MAX_EXPANDED_CELLS = 1000


@dataclass(frozen=True)
class GridRange:
    """Zero-based, end-exclusive grid coordinates (Sheets API ``GridRange``)."""

    grid_id: int = 0
    start_row_index: int | None = None
    end_row_index: int | None = None
    start_column_index: int | None = None
    end_column_index: int | None = None

    @property
    def bounded(self) -> bool:
        return None not in (
            self.start_row_index,
            self.end_row_index,
            self.start_column_index,
            self.end_column_index,
        )

    @property
    def cell_count(self) -> int | None:
        if not self.bounded:
            return None
        rows = self.end_row_index - self.start_row_index  # type: ignore[operator]
        cols = self.end_column_index - self.start_column_index  # type: ignore[operator]
        return max(rows, 0) * max(cols, 0)

    def to_api(self) -> dict[str, int]:
        data = {"sheetId": self.grid_id}
        if self.start_row_index is not None:
            data["startRowIndex"] = self.start_row_index
        if self.end_row_index is not None:
            data["endRowIndex"] = self.end_row_index
        if self.start_column_index is not None:
            data["startColumnIndex"] = self.start_column_index
        if self.end_column_index is not None:
            data["endColumnIndex"] = self.end_column_index
        return data


def column_to_index(column: str) -> int:
    """Convert a column label to a zero-based index (A=0, Z=25, AA=26)."""
    index = 0
    for char in column.upper():
        if not "A" <= char <= "Z":
            raise InvalidParametersError(f"Invalid column label: {column}")
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index - 1


def index_to_column(index: int) -> str:
    """Convert a zero-based column index to its label (0=A, 26=AA)."""
    if index < 0:
        raise InvalidParametersError(f"Invalid column index: {index}")
    column = ""
    temp = index
    while temp >= 0:
        column = chr(temp % 26 + ord("A")) + column
        temp = temp // 26 - 1
    return column


def split_sheet_name(range_a1: str) -> tuple[str | None, str]:
    """Split ``'My Sheet'!A1:B2`` into (``My Sheet``, ``A1:B2``)."""
    if "!" not in range_a1:
        return None, range_a1
    sheet, _, cells = range_a1.rpartition("!")
    if len(sheet) >= 2 and sheet.startswith("'") and sheet.endswith("'"):
        sheet = sheet[1:-1].replace("''", "'")
    return sheet or None, cells


def qualify_range(range_a1: str, sheet_name: str | None) -> str:
    """Prefix a range with its sheet name unless it already carries one."""
    if not sheet_name or "!" in range_a1:
        return range_a1
    if re.fullmatch(r"[A-Za-z0-9_]+", sheet_name):
        return f"{sheet_name}!{range_a1}"
    escaped = sheet_name.replace("'", "''")
    return f"'{escaped}'!{range_a1}"


def parse_a1_range(range_a1: str, grid_id: int = 0) -> GridRange:
    _, cells = split_sheet_name(range_a1.strip())
    match = _A1_PATTERN.match(cells.upper())
    if not cells or match is None:
        raise InvalidParametersError(f"Invalid range format: {range_a1}")
    start_col, start_row, end_col, end_row = match.groups()
    single = ":" not in cells

    start_row_index = int(start_row) - 1 if start_row else None
    start_column_index = column_to_index(start_col) if start_col else None
    if single:
        end_row_index = start_row_index + 1 if start_row_index is not None else None
        end_column_index = start_column_index + 1 if start_column_index is not None else None
    else:
        end_row_index = int(end_row) if end_row else None
        end_column_index = column_to_index(end_col) + 1 if end_col else None

    return GridRange(
        grid_id=grid_id,
        start_row_index=start_row_index,
        end_row_index=end_row_index,
        start_column_index=start_column_index,
        end_column_index=end_column_index,
    )


def expand_range(range_a1: str | None, limit: int = _MAX_EXPANDED_CELLS) -> list[str]:
    """List the individual cells of a bounded range.

    Unbounded, unparsable or oversized ranges are reported as the range itself.
    """
    if not range_a1:
        return []
    try:
        grid = parse_a1_range(range_a1)
    except InvalidParametersError:
        return [range_a1]
    count = grid.cell_count
    if count is None or count > limit:
        return [range_a1]
    return [
        f"{index_to_column(col)}{row + 1}"
        for row in range(grid.start_row_index, grid.end_row_index)  # type: ignore[arg-type]
        for col in range(grid.start_column_index, grid.end_column_index)  # type: ignore[arg-type]
    ]


def count_values(values: Any) -> int:
    """Count cells in a 2-D value matrix."""
    if not isinstance(values, list):
        return 0
    return sum(len(row) if isinstance(row, list) else 1 for row in values)


def row_span(start_index: int, count: int) -> str:
    """A1 range covering ``count`` whole rows from a zero-based start."""
    return f"{start_index + 1}:{start_index + count}"


def column_span(start_index: int, count: int) -> str:
    return f"{index_to_column(start_index)}:{index_to_column(start_index + count - 1)}"
