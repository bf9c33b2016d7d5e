from __future__ import annotations

import asyncio
import contextlib
import os
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from voice_sheets.app import AppContext, build_app_context
from voice_sheets.config import Settings
from voice_sheets.domain.actions import ActionIntent
from voice_sheets.errors import SheetsBackendError
from voice_sheets.sheets.backend import Dimension, SpreadsheetInfo
from voice_sheets.sheets.ranges import GridRange, parse_a1_range, split_sheet_name
from voice_sheets.storage.db import SqliteStore


def pytest_sessionstart(session: pytest.Session) -> None:
    # Never talk to the real Sheets API from unit tests.
    os.environ.pop("GOOGLE_SHEETS_ACCESS_TOKEN", None)


@pytest.fixture(autouse=True)
def _close_default_event_loop() -> None:
    yield
    policy = asyncio.get_event_loop_policy()
    local = getattr(policy, "_local", None)
    loop = getattr(local, "_loop", None) if local is not None else None
    if loop is not None and not loop.is_running() and not loop.is_closed():
        with contextlib.suppress(Exception):
            loop.close()
    if loop is not None:
        with contextlib.suppress(Exception):
            policy.set_event_loop(None)


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeSheetsBackend:
    """In-memory spreadsheet: one grid per sheet name, grid ids by position."""

    def __init__(self) -> None:
        self.spreadsheets: dict[str, dict[str, list[list[Any]]]] = {}
        self.formats: dict[tuple[str, str], dict[str, Any]] = {}
        self.merges: list[tuple[str, GridRange, str]] = []
        self.charts: dict[int, tuple[str, str]] = {}
        self.frozen: dict[tuple[str, int], tuple[int, int]] = {}
        self.calls: list[str] = []
        self.fail_on: set[str] = set()
        self._next_chart_id = 1000

    # -- test helpers ----------------------------------------------------

    def add_spreadsheet(
        self, spreadsheet_id: str, sheets: dict[str, list[list[Any]]] | None = None
    ) -> None:
        self.spreadsheets[spreadsheet_id] = {
            name: [list(row) for row in rows] for name, rows in (sheets or {"Sheet1": []}).items()
        }

    def grid(self, spreadsheet_id: str, sheet_name: str | None = None) -> list[list[Any]]:
        return self._sheet(spreadsheet_id, sheet_name)

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise SheetsBackendError(f"{name} failed", status_code=500)

    def _sheet(self, spreadsheet_id: str, sheet_name: str | None) -> list[list[Any]]:
        try:
            sheets = self.spreadsheets[spreadsheet_id]
        except KeyError:
            raise SheetsBackendError(f"Spreadsheet not found: {spreadsheet_id}", 404) from None
        if sheet_name is None:
            return next(iter(sheets.values()))
        if sheet_name not in sheets:
            raise SheetsBackendError(f"Unable to parse range: {sheet_name}", 400)
        return sheets[sheet_name]

    def _sheet_by_grid(self, spreadsheet_id: str, grid_id: int) -> list[list[Any]]:
        sheets = list(self.spreadsheets[spreadsheet_id].values())
        return sheets[grid_id]

    @staticmethod
    def _ensure(grid: list[list[Any]], rows: int, cols: int) -> None:
        while len(grid) < rows:
            grid.append([])
        for row in grid:
            if len(row) < cols:
                row.extend([""] * (cols - len(row)))

    @staticmethod
    def _bounds(grid: list[list[Any]], rng: GridRange) -> tuple[int, int, int, int]:
        width = max((len(r) for r in grid), default=0)
        return (
            rng.start_row_index or 0,
            rng.end_row_index if rng.end_row_index is not None else len(grid),
            rng.start_column_index or 0,
            rng.end_column_index if rng.end_column_index is not None else width,
        )

    # -- SpreadsheetBackend ----------------------------------------------

    def create_spreadsheet(
        self, title: str, sheet_names: list[str] | None = None
    ) -> SpreadsheetInfo:
        self._check("create_spreadsheet")
        spreadsheet_id = f"sheet-{len(self.spreadsheets) + 1}"
        self.add_spreadsheet(spreadsheet_id, {name: [] for name in sheet_names or ["Sheet1"]})
        return SpreadsheetInfo(
            spreadsheet_id=spreadsheet_id,
            url=f"https://docs.example/{spreadsheet_id}",
            title=title,
        )

    def read_values(self, spreadsheet_id: str, range_a1: str) -> list[list[Any]]:
        self._check("read_values")
        sheet_name, _ = split_sheet_name(range_a1)
        grid = self._sheet(spreadsheet_id, sheet_name)
        r0, r1, c0, c1 = self._bounds(grid, parse_a1_range(range_a1))
        rows = []
        for row in grid[r0:r1]:
            cells = list(row[c0:c1])
            # The values API trims trailing blanks.
            while cells and cells[-1] in ("", None):
                cells.pop()
            rows.append(cells)
        while rows and not rows[-1]:
            rows.pop()
        return rows

    def write_values(self, spreadsheet_id: str, range_a1: str, values: list[list[Any]]) -> int:
        self._check("write_values")
        sheet_name, _ = split_sheet_name(range_a1)
        grid = self._sheet(spreadsheet_id, sheet_name)
        rng = parse_a1_range(range_a1)
        r0, c0 = rng.start_row_index or 0, rng.start_column_index or 0
        width = max((len(row) for row in values), default=0)
        self._ensure(grid, r0 + len(values), c0 + width)
        for i, row in enumerate(values):
            for j, value in enumerate(row):
                grid[r0 + i][c0 + j] = value
        return sum(len(row) for row in values)

    def append_values(self, spreadsheet_id: str, range_a1: str, values: list[list[Any]]) -> str:
        self._check("append_values")
        sheet_name, _ = split_sheet_name(range_a1)
        grid = self._sheet(spreadsheet_id, sheet_name)
        last = len(grid)
        while last and not any(cell not in ("", None) for cell in grid[last - 1]):
            last -= 1
        del grid[last:]
        for row in values:
            grid.append(list(row))
        width = max(len(row) for row in values)
        prefix = f"{sheet_name}!" if sheet_name else ""
        end_column = chr(ord("A") + width - 1)
        return f"{prefix}A{last + 1}:{end_column}{last + len(values)}"

    def clear_values(self, spreadsheet_id: str, range_a1: str) -> None:
        self._check("clear_values")
        sheet_name, _ = split_sheet_name(range_a1)
        grid = self._sheet(spreadsheet_id, sheet_name)
        r0, r1, c0, c1 = self._bounds(grid, parse_a1_range(range_a1))
        for row in grid[r0:r1]:
            for j in range(c0, min(c1, len(row))):
                row[j] = ""

    def read_format(self, spreadsheet_id: str, range_a1: str) -> dict[str, Any]:
        self._check("read_format")
        _, cells = split_sheet_name(range_a1)
        return dict(self.formats.get((spreadsheet_id, cells.split(":")[0]), {}))

    def format_cells(
        self, spreadsheet_id: str, grid: GridRange, cell_format: dict[str, Any]
    ) -> None:
        self._check("format_cells")
        col = chr(ord("A") + (grid.start_column_index or 0))
        key = (spreadsheet_id, f"{col}{(grid.start_row_index or 0) + 1}")
        self.formats[key] = dict(cell_format)

    def insert_dimension(
        self, spreadsheet_id: str, grid_id: int, dimension: Dimension, start_index: int, count: int
    ) -> None:
        self._check("insert_dimension")
        grid = self._sheet_by_grid(spreadsheet_id, grid_id)
        if dimension is Dimension.ROWS:
            self._ensure(grid, start_index, 0)
            for _ in range(count):
                grid.insert(start_index, [])
        else:
            for row in grid:
                if len(row) > start_index:
                    row[start_index:start_index] = [""] * count

    def delete_dimension(
        self, spreadsheet_id: str, grid_id: int, dimension: Dimension, start_index: int, count: int
    ) -> None:
        self._check("delete_dimension")
        grid = self._sheet_by_grid(spreadsheet_id, grid_id)
        if dimension is Dimension.ROWS:
            del grid[start_index:start_index + count]
        else:
            for row in grid:
                del row[start_index:start_index + count]

    def merge_cells(self, spreadsheet_id: str, grid: GridRange, merge_type: str) -> None:
        self._check("merge_cells")
        self.merges.append((spreadsheet_id, grid, merge_type))

    def unmerge_cells(self, spreadsheet_id: str, grid: GridRange) -> None:
        self._check("unmerge_cells")
        self.merges = [m for m in self.merges if not (m[0] == spreadsheet_id and m[1] == grid)]

    def sort_range(
        self, spreadsheet_id: str, grid: GridRange, column_index: int, ascending: bool
    ) -> None:
        self._check("sort_range")
        rows = self._sheet_by_grid(spreadsheet_id, grid.grid_id)
        r0, r1, _, _ = self._bounds(rows, grid)
        rows[r0:r1] = sorted(
            rows[r0:r1],
            key=lambda row: str(row[column_index]) if column_index < len(row) else "",
            reverse=not ascending,
        )

    def add_chart(
        self,
        spreadsheet_id: str,
        grid_id: int,
        chart_type: str,
        data_range: GridRange,
        position: dict[str, int] | None = None,
    ) -> int:
        self._check("add_chart")
        self._next_chart_id += 1
        self.charts[self._next_chart_id] = (spreadsheet_id, chart_type)
        return self._next_chart_id

    def delete_chart(self, spreadsheet_id: str, chart_id: int) -> None:
        self._check("delete_chart")
        if chart_id not in self.charts:
            raise SheetsBackendError(f"No chart with id {chart_id}", 400)
        del self.charts[chart_id]

    def get_frozen(self, spreadsheet_id: str, grid_id: int) -> tuple[int, int]:
        self._check("get_frozen")
        return self.frozen.get((spreadsheet_id, grid_id), (0, 0))

    def set_frozen(
        self,
        spreadsheet_id: str,
        grid_id: int,
        rows: int | None = None,
        columns: int | None = None,
    ) -> None:
        self._check("set_frozen")
        current_rows, current_cols = self.frozen.get((spreadsheet_id, grid_id), (0, 0))
        self.frozen[(spreadsheet_id, grid_id)] = (
            current_rows if rows is None else rows,
            current_cols if columns is None else columns,
        )


class ScriptedClassifier:
    """Returns queued intents in order; records what it was asked."""

    def __init__(self, *intents: ActionIntent) -> None:
        self.intents = list(intents)
        self.seen: list[str] = []

    def classify(self, transcript, context) -> ActionIntent:
        self.seen.append(transcript)
        return self.intents.pop(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path) -> SqliteStore:
    db = SqliteStore(str(tmp_path / "voice_sheets.sqlite"))
    yield db
    db.close()


@pytest.fixture
def backend() -> FakeSheetsBackend:
    fake = FakeSheetsBackend()
    fake.add_spreadsheet(
        "sheet-abc",
        {
            "Sheet1": [
                ["Name", "Qty"],
                ["apples", 3],
                ["pears", 5],
            ]
        },
    )
    return fake


@pytest.fixture
def classifier() -> ScriptedClassifier:
    return ScriptedClassifier()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def app_context(settings, store, backend, classifier, clock) -> AppContext:
    return build_app_context(
        settings,
        store=store,
        backends=lambda user_id: backend,
        classifier=classifier,
        clock=clock,
    )
