"""Starlette HTTP surface for conversations, sheet actions, undo and audit."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager, suppress
from datetime import datetime
from typing import Any

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from voice_sheets import __version__
from voice_sheets.app import AppContext, build_app_context
from voice_sheets.auth.context import RequestContext
from voice_sheets.conversation.state_machine import describe
from voice_sheets.domain.actions import ActionIntent
from voice_sheets.domain.conversation import ConversationState, next_states
from voice_sheets.errors import (
    ActionExecutionError,
    BackendTimeoutError,
    ClassifierUnavailableError,
    ConversationEndedError,
    ConversationNotFoundError,
    InvalidParametersError,
    InvalidTransitionError,
    RequestValidationError,
    RollbackExpiredError,
    RollbackNotFoundError,
    SheetsBackendError,
    UndoExecutionError,
    UndoUnsupportedError,
    UnsupportedActionError,
    VoiceSheetsError,
)
from voice_sheets.execution.executor import ExecutionOutcome
from voice_sheets.middleware import (
    AuditMiddleware,
    BodySizeLimitMiddleware,
    RequestContextMiddleware,
    UserRateLimitMiddleware,
)
from voice_sheets.safety.simulator import simulate
from voice_sheets.transport import schemas
from voice_sheets.utils.jsonschema import validate_or_raise
from voice_sheets.utils.serialization import json_default
from voice_sheets.utils.time import parse_iso

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500

# Most specific first: lookup stops at the first isinstance match.
_STATUS_BY_ERROR: tuple[tuple[type[VoiceSheetsError], int], ...] = (
    (InvalidTransitionError, 409),
    (ConversationEndedError, 409),
    (ConversationNotFoundError, 404),
    (RollbackNotFoundError, 404),
    (RollbackExpiredError, 410),
    (UnsupportedActionError, 400),
    (RequestValidationError, 400),
    (InvalidParametersError, 400),
    (UndoUnsupportedError, 422),
    (UndoExecutionError, 500),
    (ActionExecutionError, 502),
    (BackendTimeoutError, 504),
    (SheetsBackendError, 502),
    (ClassifierUnavailableError, 503),
)


def status_for(exc: VoiceSheetsError) -> int:
    for error_class, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            return status
    return 500


def _hint(exc: VoiceSheetsError) -> str | None:
    if isinstance(exc, InvalidTransitionError):
        try:
            current = ConversationState(exc.current_state)
            allowed = ", ".join(s.value for s in next_states(current))
        except ValueError:
            allowed = ""
        return f"Allowed next states: {allowed or 'none'}"
    if isinstance(exc, RollbackExpiredError):
        return "Make the change again manually; the undo snapshot is gone."
    if isinstance(exc, ActionExecutionError) and exc.audit_id:
        return f"See audit record {exc.audit_id}"
    return None


def _json_response(payload: Any, status_code: int = 200) -> JSONResponse:
    # Round-trip through json_default so datetimes and enums serialize.
    return JSONResponse(
        json.loads(json.dumps(payload, default=json_default)), status_code=status_code
    )


def _error_response(exc: VoiceSheetsError) -> JSONResponse:
    error: dict[str, Any] = {
        "type": exc.error_type,
        "message": str(exc),
        "retryable": exc.retryable,
    }
    hint = _hint(exc)
    if hint:
        error["hint"] = hint
    reasons = getattr(exc, "errors", None)
    if reasons:
        error["reasons"] = list(reasons)
    return JSONResponse({"error": error}, status_code=status_for(exc))


async def _handle_domain_error(request: Request, exc: Exception) -> Response:
    assert isinstance(exc, VoiceSheetsError)
    status = status_for(exc)
    if status >= 500:
        logger.error("Request failed path=%s error=%s", request.url.path, exc)
    else:
        logger.info("Request rejected path=%s status=%d error=%s", request.url.path, status, exc)
    return _error_response(exc)


def _caller(request: Request) -> RequestContext:
    return request.state.request_context


async def _body(request: Request, schema: dict[str, object]) -> dict[str, Any]:
    raw = await request.body()
    if not raw:
        payload: Any = {}
    else:
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise RequestValidationError("Invalid JSON body") from exc
    validate_or_raise(schema, payload)
    return payload


def _query_int(request: Request, name: str, default: int, maximum: int = MAX_PAGE_SIZE) -> int:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RequestValidationError(f"Query parameter {name} must be an integer") from exc
    if value < 0 or value > maximum:
        raise RequestValidationError(f"Query parameter {name} must be within [0, {maximum}]")
    return value


def _query_datetime(request: Request, name: str) -> datetime | None:
    raw = request.query_params.get(name)
    if not raw:
        return None
    try:
        return parse_iso(raw)
    except ValueError as exc:
        raise RequestValidationError(f"Query parameter {name} must be an ISO-8601 time") from exc


def create_http_app(ctx: AppContext | None = None) -> Starlette:
    """Create the HTTP application around ``ctx`` (built from settings if omitted)."""
    ctx = ctx or build_app_context()
    settings = ctx.settings

    middleware = [
        Middleware(
            BodySizeLimitMiddleware,
            max_body_size_bytes=settings.server.max_body_size_kb * 1024,
        ),
        Middleware(
            AuditMiddleware,
            enabled=settings.server.audit_requests,
            trust_forwarded_headers=settings.server.trust_forwarded_headers,
        ),
        Middleware(
            RequestContextMiddleware,
            trust_forwarded_headers=settings.server.trust_forwarded_headers,
        ),
        Middleware(UserRateLimitMiddleware, config=settings.rate_limit),
    ]

    # -- health ---------------------------------------------------------

    async def health_handler(request: Request) -> Response:
        return JSONResponse({"status": "healthy", "version": __version__})

    # -- conversations --------------------------------------------------

    async def create_conversation(request: Request) -> Response:
        caller = _caller(request)
        body = await _body(request, schemas.CREATE_CONVERSATION_SCHEMA)
        conversation = await asyncio.to_thread(
            ctx.conversations.create, caller.user_id, body.get("sheetId"), body.get("title")
        )
        return _json_response(conversation.to_dict(), status_code=201)

    async def list_conversations(request: Request) -> Response:
        caller = _caller(request)
        limit = _query_int(request, "limit", 20)
        offset = _query_int(request, "offset", 0, maximum=1_000_000)

        def load() -> dict[str, Any]:
            active = ctx.conversations.get_active(caller.user_id)
            return {
                "conversations": [
                    c.to_dict() for c in ctx.conversations.history(caller.user_id, limit, offset)
                ],
                "total": ctx.conversations.count(caller.user_id),
                "active": active.to_dict() if active else None,
                "states": ctx.state_machine.state_stats(caller.user_id),
            }

        return _json_response(await asyncio.to_thread(load))

    async def get_conversation(request: Request) -> Response:
        caller = _caller(request)
        conversation_id = request.path_params["conversation_id"]

        def load() -> dict[str, Any]:
            conversation = ctx.conversations.get(conversation_id, caller.user_id)
            data = conversation.to_dict()
            data["messages"] = [m.to_dict() for m in ctx.conversations.messages(conversation_id)]
            return data

        return _json_response(await asyncio.to_thread(load))

    async def delete_conversation(request: Request) -> Response:
        caller = _caller(request)
        await asyncio.to_thread(
            ctx.conversations.delete, request.path_params["conversation_id"], caller.user_id
        )
        return JSONResponse({"success": True})

    async def end_conversation(request: Request) -> Response:
        caller = _caller(request)
        conversation = await asyncio.to_thread(
            ctx.conversations.end, request.path_params["conversation_id"], caller.user_id
        )
        return _json_response(conversation.to_dict())

    async def conversation_state(request: Request) -> Response:
        caller = _caller(request)
        conversation_id = request.path_params["conversation_id"]
        conversation = await asyncio.to_thread(
            ctx.conversations.get, conversation_id, caller.user_id
        )
        return JSONResponse(_state_payload(conversation_id, conversation.state))

    async def transition_state(request: Request) -> Response:
        caller = _caller(request)
        conversation_id = request.path_params["conversation_id"]
        body = await _body(request, schemas.TRANSITION_SCHEMA)

        def apply() -> dict[str, Any]:
            ctx.conversations.get(conversation_id, caller.user_id)
            result = ctx.state_machine.transition(
                conversation_id, ConversationState(body["newState"]), body.get("reason")
            )
            return {"success": True, **result.to_dict()}

        return JSONResponse(await asyncio.to_thread(apply))

    async def reset_state(request: Request) -> Response:
        caller = _caller(request)
        conversation_id = request.path_params["conversation_id"]

        def apply() -> dict[str, Any]:
            ctx.conversations.get(conversation_id, caller.user_id)
            result = ctx.state_machine.reset_to_idle(conversation_id, "reset by user")
            return {"success": True, **result.to_dict()}

        return JSONResponse(await asyncio.to_thread(apply))

    async def transition_history(request: Request) -> Response:
        caller = _caller(request)
        conversation_id = request.path_params["conversation_id"]
        limit = _query_int(request, "limit", 100)

        def load() -> dict[str, Any]:
            ctx.conversations.get(conversation_id, caller.user_id)
            return {
                "conversation_id": conversation_id,
                "transitions": [
                    t.to_dict() for t in ctx.state_machine.history(conversation_id, limit)
                ],
            }

        return _json_response(await asyncio.to_thread(load))

    async def begin_listening(request: Request) -> Response:
        caller = _caller(request)
        conversation_id = request.path_params["conversation_id"]
        state = await asyncio.to_thread(
            ctx.pipeline.begin_listening, conversation_id, caller.user_id
        )
        return JSONResponse(_state_payload(conversation_id, state))

    async def submit_transcript(request: Request) -> Response:
        caller = _caller(request)
        conversation_id = request.path_params["conversation_id"]
        body = await _body(request, schemas.TRANSCRIPT_SCHEMA)
        plan = await asyncio.to_thread(
            ctx.pipeline.handle_transcript, conversation_id, caller.user_id, body["transcript"]
        )
        return _json_response(plan.to_dict())

    async def cancel_turn(request: Request) -> Response:
        caller = _caller(request)
        conversation_id = request.path_params["conversation_id"]
        state = await asyncio.to_thread(ctx.pipeline.cancel, conversation_id, caller.user_id)
        return JSONResponse(_state_payload(conversation_id, state))

    # -- sheets ---------------------------------------------------------

    async def dry_run(request: Request) -> Response:
        body = await _body(request, schemas.DRY_RUN_SCHEMA)
        intent = ActionIntent.from_payload(body["intent"])
        report = simulate(intent.action, intent.parameters)
        return _json_response(
            {
                "intent": intent.to_dict(),
                "dry_run": report.to_dict(),
                "requires_confirmation": report.requires_confirmation
                or intent.confirmation_required,
            }
        )

    async def execute_action(request: Request) -> Response:
        caller = _caller(request)
        body = await _body(request, schemas.EXECUTE_SCHEMA)
        intent = ActionIntent.from_payload(body["intent"])
        conversation_id = body.get("conversationId")

        def run() -> ExecutionOutcome:
            sheet_id = body.get("sheetId")
            if conversation_id:
                conversation = ctx.conversations.get(conversation_id, caller.user_id)
                sheet_id = sheet_id or conversation.sheet_id
            try:
                outcome = ctx.executor.execute(
                    caller.user_id,
                    intent,
                    sheet_id=sheet_id,
                    conversation_id=conversation_id,
                    confirmed=bool(body.get("confirmed", False)),
                    client=caller,
                )
            except ActionExecutionError as exc:
                if conversation_id:
                    ctx.conversations.add_message(
                        conversation_id,
                        "assistant",
                        str(exc),
                        intent=intent.to_dict(),
                        execution_error=str(exc),
                    )
                raise
            if conversation_id and outcome.success:
                ctx.conversations.add_message(
                    conversation_id,
                    "assistant",
                    outcome.message,
                    intent=intent.to_dict(),
                    executed=True,
                )
            return outcome

        outcome = await asyncio.to_thread(run)
        return _json_response(outcome.to_dict())

    async def undo_history(request: Request) -> Response:
        caller = _caller(request)
        limit = _query_int(request, "limit", 10, maximum=100)

        def load() -> dict[str, Any]:
            return {
                "undo_history": [
                    r.to_dict() for r in ctx.rollbacks.get_undo_history(caller.user_id, limit)
                ],
                "stats": ctx.rollbacks.get_undo_stats(caller.user_id),
                "window_hours": ctx.rollbacks.window_hours,
            }

        return _json_response(await asyncio.to_thread(load))

    async def undo_action(request: Request) -> Response:
        caller = _caller(request)
        body = await _body(request, schemas.UNDO_SCHEMA)
        result = await asyncio.to_thread(
            ctx.executor.undo, caller.user_id, body["rollbackId"], client=caller
        )
        return JSONResponse(result.to_dict())

    # -- audit ----------------------------------------------------------

    async def audit_logs(request: Request) -> Response:
        caller = _caller(request)
        limit = _query_int(request, "limit", 100)
        offset = _query_int(request, "offset", 0, maximum=1_000_000)
        since = _query_datetime(request, "since")
        until = _query_datetime(request, "until")
        records = await asyncio.to_thread(
            ctx.audit.list_for_user,
            caller.user_id,
            limit=limit,
            offset=offset,
            action=request.query_params.get("action") or None,
            sheet_id=request.query_params.get("sheetId") or None,
            since=since,
            until=until,
        )
        return _json_response(
            {
                "logs": [r.to_dict() for r in records],
                "limit": limit,
                "offset": offset,
            }
        )

    async def audit_stats(request: Request) -> Response:
        caller = _caller(request)
        since = _query_datetime(request, "since")
        until = _query_datetime(request, "until")
        stats = await asyncio.to_thread(ctx.audit.stats_for_user, caller.user_id, since, until)
        return _json_response(stats)

    routes = [
        Route("/health", endpoint=health_handler, methods=["GET"]),
        Route("/conversations", endpoint=create_conversation, methods=["POST"]),
        Route("/conversations", endpoint=list_conversations, methods=["GET"]),
        Route("/conversations/{conversation_id}", endpoint=get_conversation, methods=["GET"]),
        Route(
            "/conversations/{conversation_id}",
            endpoint=delete_conversation,
            methods=["DELETE"],
        ),
        Route(
            "/conversations/{conversation_id}/end",
            endpoint=end_conversation,
            methods=["POST"],
        ),
        Route(
            "/conversations/{conversation_id}/state",
            endpoint=conversation_state,
            methods=["GET"],
        ),
        Route(
            "/conversations/{conversation_id}/state",
            endpoint=transition_state,
            methods=["PUT"],
        ),
        Route(
            "/conversations/{conversation_id}/state/reset",
            endpoint=reset_state,
            methods=["POST"],
        ),
        Route(
            "/conversations/{conversation_id}/transitions",
            endpoint=transition_history,
            methods=["GET"],
        ),
        Route(
            "/conversations/{conversation_id}/listen",
            endpoint=begin_listening,
            methods=["POST"],
        ),
        Route(
            "/conversations/{conversation_id}/transcript",
            endpoint=submit_transcript,
            methods=["POST"],
        ),
        Route(
            "/conversations/{conversation_id}/cancel",
            endpoint=cancel_turn,
            methods=["POST"],
        ),
        Route("/sheets/dry-run", endpoint=dry_run, methods=["POST"]),
        Route("/sheets/execute", endpoint=execute_action, methods=["POST"]),
        Route("/sheets/undo", endpoint=undo_history, methods=["GET"]),
        Route("/sheets/undo", endpoint=undo_action, methods=["POST"]),
        Route("/audit/logs", endpoint=audit_logs, methods=["GET"]),
        Route("/audit/stats", endpoint=audit_stats, methods=["GET"]),
    ]

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("Starting voice-sheets HTTP server v%s", __version__)
        sweeper_task: asyncio.Task | None = None
        if settings.safety.sweep_enabled:
            sweeper_task = asyncio.create_task(ctx.sweeper.run_forever())
        try:
            yield
        finally:
            logger.info("Stopping voice-sheets HTTP server...")
            if sweeper_task is not None:
                sweeper_task.cancel()
                with suppress(asyncio.CancelledError):
                    await sweeper_task

    app = Starlette(
        routes=routes,
        middleware=middleware,
        exception_handlers={VoiceSheetsError: _handle_domain_error},
        lifespan=lifespan,
    )
    app.state.context = ctx
    return app


def _state_payload(conversation_id: str, state: ConversationState) -> dict[str, Any]:
    return {
        "conversation_id": conversation_id,
        "current_state": state.value,
        "description": describe(state),
        "next_possible_states": [s.value for s in next_states(state)],
    }
