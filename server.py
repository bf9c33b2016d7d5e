"""Convenience entrypoint for launching the voice-sheets service from a checkout."""

from __future__ import annotations

import sys
from pathlib import Path

SRC_DIR = Path(__file__).resolve().parent / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from voice_sheets.server import run_entrypoint  # noqa: E402

if __name__ == "__main__":
    run_entrypoint()
