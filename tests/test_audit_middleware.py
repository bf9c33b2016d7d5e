from __future__ import annotations

import logging
from contextlib import closing

import pytest
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from voice_sheets.middleware.audit import (
    AuditMiddleware,
    _sanitize_log_value,
    mask_exception_message,
)
from voice_sheets.middleware.identity import RequestContextMiddleware


async def _ok(request: Request) -> JSONResponse:
    return JSONResponse({"ok": True})


async def _boom(request: Request) -> JSONResponse:
    raise RuntimeError('upstream said {"access_token": "ya29.secret"}')


def _app(enabled: bool = True) -> Starlette:
    return Starlette(
        routes=[Route("/ok", _ok), Route("/boom", _boom), Route("/health", _ok)],
        middleware=[
            Middleware(AuditMiddleware, enabled=enabled),
            Middleware(RequestContextMiddleware),
        ],
    )


def test_sanitize_log_value_replaces_control_chars() -> None:
    assert _sanitize_log_value("a\nb\rc\x00d") == "a_b_c_d"
    assert _sanitize_log_value("tab\tstays") == "tab\tstays"


def test_mask_exception_message() -> None:
    masked = mask_exception_message('failed: {"access_token": "abc", "range": "A1"} password=hunter2')

    assert "abc" not in masked
    assert "hunter2" not in masked
    assert '"range": "A1"' in masked


def test_logs_start_and_end_with_user(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="voice_sheets.middleware.audit"):
        with closing(TestClient(_app())) as client:
            client.get("/ok", headers={"X-User-Id": "alice", "X-Request-Id": "req-7"})

    lines = [r.getMessage() for r in caplog.records if r.name == "voice_sheets.middleware.audit"]
    assert lines[0].startswith("REQUEST_START request_id=req-7 method=GET path=/ok")
    assert "user_id=alice" in lines[1]
    assert "status=200" in lines[1]


def test_unauthenticated_request_is_logged_as_anonymous(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="voice_sheets.middleware.audit"):
        with closing(TestClient(_app())) as client:
            client.get("/ok")

    assert "user_id=anonymous" in caplog.text
    assert "status=401" in caplog.text


def test_exception_is_masked_and_reraised(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="voice_sheets.middleware.audit"):
        with closing(TestClient(_app(), raise_server_exceptions=False)) as client:
            response = client.get("/boom", headers={"X-User-Id": "alice"})

    assert response.status_code == 500
    assert "ya29.secret" not in caplog.text
    assert "***MASKED***" in caplog.text


def test_disabled_and_exempt_paths_are_not_logged(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="voice_sheets.middleware.audit"):
        with closing(TestClient(_app())) as client:
            client.get("/health")
        with closing(TestClient(_app(enabled=False))) as client:
            client.get("/ok", headers={"X-User-Id": "alice"})

    assert "REQUEST_START" not in caplog.text
