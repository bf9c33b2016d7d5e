"""Logging helpers for the voice-sheets service."""

from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path

from voice_sheets.config import load_settings

_logging_configured = False
_logging_lock = threading.Lock()

_logger = logging.getLogger(__name__)

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S"


def configure_logging(level: str | None = None, log_file: str | None = None) -> None:
    """Configure root logging; arguments override the loaded settings."""
    global _logging_configured

    settings = load_settings()
    level_name = (level or settings.logging.level).upper()
    resolved_level = getattr(logging, level_name, logging.INFO)
    log_file = log_file or settings.logging.file

    handlers: list[logging.Handler] = []

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
    handlers.append(stream_handler)

    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
            handlers.append(file_handler)
        except OSError as exc:
            _logger.warning("Failed to open log file %s: %s", log_file, exc)

    logging.basicConfig(level=resolved_level, handlers=handlers, force=True)

    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    if not _logging_configured:
        with _logging_lock:
            if not _logging_configured:
                configure_logging()
    return logging.getLogger(name)
