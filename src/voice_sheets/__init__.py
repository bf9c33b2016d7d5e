"""Voice-driven spreadsheet operations with dry-run simulation and undo."""

__version__ = "0.3.0"
