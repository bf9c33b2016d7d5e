"""Google Sheets v4 REST backend built on httpx."""

from __future__ import annotations

import logging
import re
from typing import Any, Callable
from urllib.parse import quote

import httpx

from voice_sheets.errors import (
    BackendTimeoutError,
    InvalidParametersError,
    SheetsBackendError,
)
from voice_sheets.sheets.backend import Dimension, SpreadsheetInfo
from voice_sheets.sheets.ranges import GridRange

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://sheets.googleapis.com/v4"

# Keys of the API ``CellFormat`` object passed through unchanged.
_NATIVE_FORMAT_KEYS = frozenset(
    {
        "textFormat",
        "numberFormat",
        "backgroundColor",
        "backgroundColorStyle",
        "horizontalAlignment",
        "verticalAlignment",
        "wrapStrategy",
        "borders",
        "padding",
        "textDirection",
        "textRotation",
        "hyperlinkDisplayType",
    }
)
_HEX_COLOR = re.compile(r"^#?([0-9a-fA-F]{6})$")


def _color(value: Any) -> dict[str, float] | None:
    if isinstance(value, dict):
        try:
            return {
                k: float(v) for k, v in value.items() if k in {"red", "green", "blue", "alpha"}
            }
        except (TypeError, ValueError) as exc:
            raise InvalidParametersError(f"Invalid color component: {value!r}") from exc
    if isinstance(value, str):
        match = _HEX_COLOR.match(value.strip())
        if match:
            raw = match.group(1)
            return {
                "red": int(raw[0:2], 16) / 255,
                "green": int(raw[2:4], 16) / 255,
                "blue": int(raw[4:6], 16) / 255,
            }
    return None


def to_cell_format(cell_format: dict[str, Any]) -> dict[str, Any]:
    """Translate the intent's format vocabulary into an API ``CellFormat``.

    Native ``CellFormat`` keys are kept as-is so a previously read format can
    be written back verbatim.
    """
    result: dict[str, Any] = {
        key: value for key, value in cell_format.items() if key in _NATIVE_FORMAT_KEYS
    }
    text_format: dict[str, Any] = dict(result.get("textFormat") or {})
    for key in ("bold", "italic", "underline", "strikethrough"):
        if key in cell_format:
            text_format[key] = bool(cell_format[key])
    if "fontSize" in cell_format:
        try:
            text_format["fontSize"] = int(cell_format["fontSize"])
        except (TypeError, ValueError) as exc:
            raise InvalidParametersError(
                f"fontSize must be a number, got {cell_format['fontSize']!r}"
            ) from exc
    if "textColor" in cell_format:
        color = _color(cell_format["textColor"])
        if color is not None:
            text_format["foregroundColor"] = color
    if text_format:
        result["textFormat"] = text_format

    background = cell_format.get("backgroundColor")
    if background is not None and not isinstance(background, dict):
        color = _color(background)
        if color is not None:
            result["backgroundColor"] = color
        else:
            result.pop("backgroundColor", None)

    number_format = cell_format.get("numberFormat")
    if isinstance(number_format, str):
        result["numberFormat"] = {"type": "NUMBER", "pattern": number_format}
    return result


class GoogleSheetsBackend:
    """``SpreadsheetBackend`` implementation talking to the Sheets REST API."""

    def __init__(
        self,
        token_provider: Callable[[], str],
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._token_provider = token_provider
        self._base_url = base_url.rstrip("/")
        self._client = httpx.Client(timeout=timeout_seconds, transport=transport)

    def close(self) -> None:
        self._client.close()

    # -- HTTP plumbing -------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        headers = {"Authorization": f"Bearer {self._token_provider()}"}
        try:
            response = self._client.request(method, url, params=params, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning("Sheets API timeout method=%s path=%s", method, path)
            raise BackendTimeoutError(f"Google Sheets request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise SheetsBackendError(f"Google Sheets operation failed: {exc}") from exc

        if response.status_code >= 400:
            raise SheetsBackendError(
                f"Google Sheets API error: {_error_message(response)}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise SheetsBackendError("Google Sheets API returned invalid JSON") from exc

    def _values_path(self, spreadsheet_id: str, range_a1: str, suffix: str = "") -> str:
        return (
            f"/spreadsheets/{quote(spreadsheet_id, safe='')}"
            f"/values/{quote(range_a1, safe='')}{suffix}"
        )

    def _batch_update(self, spreadsheet_id: str, requests: list[dict[str, Any]]) -> list[dict]:
        data = self._request(
            "POST",
            f"/spreadsheets/{quote(spreadsheet_id, safe='')}:batchUpdate",
            json={"requests": requests},
        )
        return list(data.get("replies") or [])

    # -- SpreadsheetBackend --------------------------------------------

    def create_spreadsheet(
        self, title: str, sheet_names: list[str] | None = None
    ) -> SpreadsheetInfo:
        body: dict[str, Any] = {"properties": {"title": title}}
        if sheet_names:
            body["sheets"] = [{"properties": {"title": name}} for name in sheet_names]
        data = self._request("POST", "/spreadsheets", json=body)
        spreadsheet_id = data.get("spreadsheetId")
        if not spreadsheet_id:
            raise SheetsBackendError("Google Sheets API did not return a spreadsheetId")
        logger.info("Spreadsheet created spreadsheet_id=%s", spreadsheet_id)
        return SpreadsheetInfo(
            spreadsheet_id=str(spreadsheet_id),
            url=data.get("spreadsheetUrl"),
            title=title,
        )

    def read_values(self, spreadsheet_id: str, range_a1: str) -> list[list[Any]]:
        """Read cells as entered, formulas included, so a USER_ENTERED write restores them."""
        data = self._request(
            "GET",
            self._values_path(spreadsheet_id, range_a1),
            params={"valueRenderOption": "FORMULA"},
        )
        return [list(row) for row in data.get("values") or []]

    def write_values(self, spreadsheet_id: str, range_a1: str, values: list[list[Any]]) -> int:
        data = self._request(
            "PUT",
            self._values_path(spreadsheet_id, range_a1),
            params={"valueInputOption": "USER_ENTERED"},
            json={"range": range_a1, "majorDimension": "ROWS", "values": values},
        )
        return int(data.get("updatedCells") or 0)

    def append_values(self, spreadsheet_id: str, range_a1: str, values: list[list[Any]]) -> str:
        data = self._request(
            "POST",
            self._values_path(spreadsheet_id, range_a1, ":append"),
            params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
            json={"majorDimension": "ROWS", "values": values},
        )
        updates = data.get("updates") or {}
        return str(updates.get("updatedRange") or "")

    def clear_values(self, spreadsheet_id: str, range_a1: str) -> None:
        self._request("POST", self._values_path(spreadsheet_id, range_a1, ":clear"), json={})

    def read_format(self, spreadsheet_id: str, range_a1: str) -> dict[str, Any]:
        """Return the ``userEnteredFormat`` of the top-left cell of the range."""
        data = self._request(
            "GET",
            f"/spreadsheets/{quote(spreadsheet_id, safe='')}",
            params={
                "ranges": range_a1,
                "includeGridData": "true",
                "fields": "sheets.data.rowData.values.userEnteredFormat",
            },
        )
        for sheet in data.get("sheets") or []:
            for grid in sheet.get("data") or []:
                for row in grid.get("rowData") or []:
                    for cell in row.get("values") or []:
                        return dict(cell.get("userEnteredFormat") or {})
        return {}

    def format_cells(
        self, spreadsheet_id: str, grid: GridRange, cell_format: dict[str, Any]
    ) -> None:
        self._batch_update(
            spreadsheet_id,
            [
                {
                    "repeatCell": {
                        "range": grid.to_api(),
                        "cell": {"userEnteredFormat": to_cell_format(cell_format)},
                        "fields": "userEnteredFormat",
                    }
                }
            ],
        )

    def insert_dimension(
        self, spreadsheet_id: str, grid_id: int, dimension: Dimension, start_index: int, count: int
    ) -> None:
        self._batch_update(
            spreadsheet_id,
            [
                {
                    "insertDimension": {
                        "range": _dimension_range(grid_id, dimension, start_index, count),
                        "inheritFromBefore": start_index > 0,
                    }
                }
            ],
        )

    def delete_dimension(
        self, spreadsheet_id: str, grid_id: int, dimension: Dimension, start_index: int, count: int
    ) -> None:
        self._batch_update(
            spreadsheet_id,
            [
                {
                    "deleteDimension": {
                        "range": _dimension_range(grid_id, dimension, start_index, count)
                    }
                }
            ],
        )

    def merge_cells(self, spreadsheet_id: str, grid: GridRange, merge_type: str) -> None:
        self._batch_update(
            spreadsheet_id,
            [{"mergeCells": {"range": grid.to_api(), "mergeType": merge_type}}],
        )

    def unmerge_cells(self, spreadsheet_id: str, grid: GridRange) -> None:
        self._batch_update(spreadsheet_id, [{"unmergeCells": {"range": grid.to_api()}}])

    def sort_range(
        self, spreadsheet_id: str, grid: GridRange, column_index: int, ascending: bool
    ) -> None:
        self._batch_update(
            spreadsheet_id,
            [
                {
                    "sortRange": {
                        "range": grid.to_api(),
                        "sortSpecs": [
                            {
                                "dimensionIndex": column_index,
                                "sortOrder": "ASCENDING" if ascending else "DESCENDING",
                            }
                        ],
                    }
                }
            ],
        )

    def add_chart(
        self,
        spreadsheet_id: str,
        grid_id: int,
        chart_type: str,
        data_range: GridRange,
        position: dict[str, int] | None = None,
    ) -> int:
        chart: dict[str, Any] = {
            "spec": {
                "title": "Chart",
                "basicChart": {
                    "chartType": chart_type.upper(),
                    "domains": [{"domain": {"sourceRange": {"sources": [data_range.to_api()]}}}],
                },
            }
        }
        if position:
            chart["position"] = {
                "overlayPosition": {
                    "anchorCell": {
                        "sheetId": grid_id,
                        "rowIndex": int(position.get("rowIndex", 0)),
                        "columnIndex": int(position.get("columnIndex", 0)),
                    }
                }
            }
        else:
            chart["position"] = {"sheetId": grid_id}
        replies = self._batch_update(spreadsheet_id, [{"addChart": {"chart": chart}}])
        try:
            return int(replies[0]["addChart"]["chart"]["chartId"])
        except (IndexError, KeyError, TypeError, ValueError) as exc:
            raise SheetsBackendError("Google Sheets API did not return a chartId") from exc

    def delete_chart(self, spreadsheet_id: str, chart_id: int) -> None:
        self._batch_update(spreadsheet_id, [{"deleteEmbeddedObject": {"objectId": chart_id}}])

    def get_frozen(self, spreadsheet_id: str, grid_id: int) -> tuple[int, int]:
        data = self._request(
            "GET",
            f"/spreadsheets/{quote(spreadsheet_id, safe='')}",
            params={"fields": "sheets.properties(sheetId,gridProperties)"},
        )
        for sheet in data.get("sheets") or []:
            props = sheet.get("properties") or {}
            if int(props.get("sheetId", -1)) == grid_id:
                grid_props = props.get("gridProperties") or {}
                return (
                    int(grid_props.get("frozenRowCount", 0)),
                    int(grid_props.get("frozenColumnCount", 0)),
                )
        raise SheetsBackendError(f"Sheet {grid_id} not found in spreadsheet {spreadsheet_id}")

    def set_frozen(
        self,
        spreadsheet_id: str,
        grid_id: int,
        rows: int | None = None,
        columns: int | None = None,
    ) -> None:
        grid_props: dict[str, int] = {}
        fields: list[str] = []
        if rows is not None:
            grid_props["frozenRowCount"] = rows
            fields.append("gridProperties.frozenRowCount")
        if columns is not None:
            grid_props["frozenColumnCount"] = columns
            fields.append("gridProperties.frozenColumnCount")
        if not fields:
            return
        self._batch_update(
            spreadsheet_id,
            [
                {
                    "updateSheetProperties": {
                        "properties": {"sheetId": grid_id, "gridProperties": grid_props},
                        "fields": ",".join(fields),
                    }
                }
            ],
        )


def _dimension_range(
    grid_id: int, dimension: Dimension, start_index: int, count: int
) -> dict[str, Any]:
    return {
        "sheetId": grid_id,
        "dimension": Dimension(dimension).value,
        "startIndex": start_index,
        "endIndex": start_index + count,
    }


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("code") or response.status_code)
    return f"HTTP {response.status_code}"
