"""Spreadsheet backend contract and adapters."""

from voice_sheets.sheets.backend import (
    BackendProvider,
    Dimension,
    SpreadsheetBackend,
    SpreadsheetInfo,
)
from voice_sheets.sheets.google import GoogleSheetsBackend
from voice_sheets.sheets.ranges import GridRange, parse_a1_range

__all__ = [
    "BackendProvider",
    "Dimension",
    "GoogleSheetsBackend",
    "GridRange",
    "SpreadsheetBackend",
    "SpreadsheetInfo",
    "parse_a1_range",
]
