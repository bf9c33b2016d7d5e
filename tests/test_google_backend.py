"""Google Sheets REST backend tests against httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from voice_sheets.errors import BackendTimeoutError, InvalidParametersError, SheetsBackendError
from voice_sheets.sheets.backend import Dimension
from voice_sheets.sheets.google import GoogleSheetsBackend, to_cell_format
from voice_sheets.sheets.ranges import parse_a1_range


class Recorder:
    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


def _backend(recorder: Recorder) -> GoogleSheetsBackend:
    return GoogleSheetsBackend(
        lambda: "ya29.test",
        base_url="https://sheets.test/v4/",
        transport=httpx.MockTransport(recorder),
    )


def test_read_values_quotes_range_and_sends_token() -> None:
    recorder = Recorder(httpx.Response(200, json={"values": [["a", 1]]}))

    values = _backend(recorder).read_values("abc", "'Q1 Sales'!A1:B2")

    request = recorder.requests[0]
    assert values == [["a", 1]]
    assert request.method == "GET"
    assert request.url.path == "/v4/spreadsheets/abc/values/'Q1 Sales'!A1:B2"
    assert b"Q1%20Sales" in request.url.raw_path
    assert request.headers["Authorization"] == "Bearer ya29.test"


def test_read_values_of_empty_range() -> None:
    recorder = Recorder(httpx.Response(200, json={"range": "Sheet1!A1"}))

    assert _backend(recorder).read_values("abc", "A1") == []


def test_write_values() -> None:
    recorder = Recorder(httpx.Response(200, json={"updatedCells": 4}))

    updated = _backend(recorder).write_values("abc", "A1:B2", [[1, 2], [3, 4]])

    request = recorder.requests[0]
    assert updated == 4
    assert request.method == "PUT"
    assert request.url.params["valueInputOption"] == "USER_ENTERED"
    assert recorder.body()["values"] == [[1, 2], [3, 4]]


def test_append_returns_updated_range() -> None:
    recorder = Recorder(
        httpx.Response(200, json={"updates": {"updatedRange": "Tally!A7:E7"}})
    )

    updated = _backend(recorder).append_values("abc", "Tally!A:E", [["2026-03-01", 5]])

    assert updated == "Tally!A7:E7"
    assert recorder.requests[0].url.params["insertDataOption"] == "INSERT_ROWS"


def test_create_spreadsheet() -> None:
    recorder = Recorder(
        httpx.Response(200, json={"spreadsheetId": "new-id", "spreadsheetUrl": "https://x/new-id"})
    )

    info = _backend(recorder).create_spreadsheet("Budget", ["Tally"])

    assert info.spreadsheet_id == "new-id"
    assert info.url == "https://x/new-id"
    assert recorder.body()["sheets"] == [{"properties": {"title": "Tally"}}]


def test_create_spreadsheet_without_id_fails() -> None:
    recorder = Recorder(httpx.Response(200, json={}))

    with pytest.raises(SheetsBackendError, match="spreadsheetId"):
        _backend(recorder).create_spreadsheet("Budget")


def test_delete_rows_batch_update() -> None:
    recorder = Recorder(httpx.Response(200, json={"replies": [{}]}))

    _backend(recorder).delete_dimension("abc", 7, Dimension.ROWS, 4, 2)

    assert recorder.requests[0].url.path == "/v4/spreadsheets/abc:batchUpdate"
    assert recorder.body() == {
        "requests": [
            {
                "deleteDimension": {
                    "range": {"sheetId": 7, "dimension": "ROWS", "startIndex": 4, "endIndex": 6}
                }
            }
        ]
    }


def test_add_chart_returns_chart_id() -> None:
    recorder = Recorder(
        httpx.Response(200, json={"replies": [{"addChart": {"chart": {"chartId": 42}}}]})
    )

    chart_id = _backend(recorder).add_chart("abc", 0, "line", parse_a1_range("A1:B5"))

    assert chart_id == 42
    chart = recorder.body()["requests"][0]["addChart"]["chart"]
    assert chart["spec"]["basicChart"]["chartType"] == "LINE"


def test_add_chart_without_reply_fails() -> None:
    recorder = Recorder(httpx.Response(200, json={"replies": []}))

    with pytest.raises(SheetsBackendError, match="chartId"):
        _backend(recorder).add_chart("abc", 0, "LINE", parse_a1_range("A1:B5"))


def test_get_frozen_finds_grid() -> None:
    recorder = Recorder(
        httpx.Response(
            200,
            json={
                "sheets": [
                    {"properties": {"sheetId": 0, "gridProperties": {"frozenRowCount": 1}}},
                    {"properties": {"sheetId": 5, "gridProperties": {"frozenColumnCount": 2}}},
                ]
            },
        )
    )

    assert _backend(recorder).get_frozen("abc", 5) == (0, 2)


def test_set_frozen_only_sends_given_fields() -> None:
    recorder = Recorder(httpx.Response(200, json={}))

    _backend(recorder).set_frozen("abc", 0, rows=2)

    update = recorder.body()["requests"][0]["updateSheetProperties"]
    assert update["fields"] == "gridProperties.frozenRowCount"
    assert update["properties"]["gridProperties"] == {"frozenRowCount": 2}


def test_read_format_returns_top_left_cell() -> None:
    recorder = Recorder(
        httpx.Response(
            200,
            json={
                "sheets": [
                    {
                        "data": [
                            {
                                "rowData": [
                                    {"values": [{"userEnteredFormat": {"textFormat": {"bold": True}}}]}
                                ]
                            }
                        ]
                    }
                ]
            },
        )
    )

    assert _backend(recorder).read_format("abc", "A1:B2") == {"textFormat": {"bold": True}}


def test_api_error_carries_status_and_message() -> None:
    recorder = Recorder(
        httpx.Response(403, json={"error": {"code": 403, "message": "The caller does not have permission"}})
    )

    with pytest.raises(SheetsBackendError) as excinfo:
        _backend(recorder).read_values("abc", "A1")

    assert excinfo.value.status_code == 403
    assert "does not have permission" in str(excinfo.value)


def test_timeout_is_retryable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    backend = GoogleSheetsBackend(lambda: "t", transport=httpx.MockTransport(handler))

    with pytest.raises(BackendTimeoutError) as excinfo:
        backend.read_values("abc", "A1")

    assert excinfo.value.retryable is True


def test_missing_token_fails_before_any_request() -> None:
    recorder = Recorder()

    def no_token() -> str:
        raise SheetsBackendError("GOOGLE_SHEETS_ACCESS_TOKEN is not configured")

    backend = GoogleSheetsBackend(no_token, transport=httpx.MockTransport(recorder))

    with pytest.raises(SheetsBackendError, match="not configured"):
        backend.read_values("abc", "A1")
    assert recorder.requests == []


def test_to_cell_format_translates_friendly_keys() -> None:
    result = to_cell_format(
        {"bold": True, "fontSize": 12, "backgroundColor": "#FF0000", "numberFormat": "0.00"}
    )

    assert result["textFormat"] == {"bold": True, "fontSize": 12}
    assert result["backgroundColor"] == {"red": 1.0, "green": 0.0, "blue": 0.0}
    assert result["numberFormat"] == {"type": "NUMBER", "pattern": "0.00"}


def test_to_cell_format_keeps_native_format() -> None:
    native = {"textFormat": {"italic": True}, "horizontalAlignment": "CENTER"}

    assert to_cell_format(native) == native


def test_read_values_asks_for_formulas() -> None:
    recorder = Recorder(httpx.Response(200, json={"values": [["=SUM(B1:B3)"]]}))

    values = _backend(recorder).read_values("abc", "A1")

    assert values == [["=SUM(B1:B3)"]]
    assert recorder.requests[0].url.params["valueRenderOption"] == "FORMULA"


@pytest.mark.parametrize(
    "cell_format",
    [
        {"fontSize": "large"},
        {"textColor": {"red": "lots"}},
        {"backgroundColor": "not-a-color", "textColor": {"green": None}},
    ],
)
def test_to_cell_format_rejects_non_numeric_values(cell_format) -> None:
    with pytest.raises(InvalidParametersError):
        to_cell_format(cell_format)


def test_bad_format_sends_no_batch_update() -> None:
    recorder = Recorder()

    with pytest.raises(InvalidParametersError):
        _backend(recorder).format_cells("abc", parse_a1_range("A1"), {"fontSize": "large"})

    assert recorder.requests == []
