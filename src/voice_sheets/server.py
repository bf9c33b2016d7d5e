"""Entrypoint for the voice-sheets HTTP service."""

from __future__ import annotations

import logging

import uvicorn

from voice_sheets import __version__
from voice_sheets.config import load_settings
from voice_sheets.logging_utils import configure_logging
from voice_sheets.transport.http_server import create_http_app


def run_entrypoint() -> None:
    settings = load_settings()
    configure_logging()
    logging.getLogger(__name__).info(
        "Initializing voice-sheets v%s database=%s", __version__, settings.storage.sqlite_path
    )

    app = create_http_app()
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        ws="none",
        log_config=None,
    )


if __name__ == "__main__":  # pragma: no cover
    run_entrypoint()
