"""HTTP surface tests against an in-memory spreadsheet backend."""

from __future__ import annotations

from contextlib import closing

import pytest
from starlette.testclient import TestClient

from voice_sheets import __version__
from voice_sheets.domain.actions import ActionIntent, ActionKind
from voice_sheets.domain.conversation import ConversationState
from voice_sheets.errors import (
    ActionExecutionError,
    BackendTimeoutError,
    ClassifierUnavailableError,
    InvalidTransitionError,
    RollbackExpiredError,
    UndoUnsupportedError,
    VoiceSheetsError,
)
from voice_sheets.transport.http_server import create_http_app, status_for

USER = {"X-User-Id": "user-1"}


@pytest.fixture
def client(app_context):
    with closing(TestClient(create_http_app(app_context), headers=USER)) as test_client:
        yield test_client


def _create(client: TestClient, sheet_id: str | None = "sheet-abc") -> str:
    response = client.post("/conversations", json={"sheetId": sheet_id, "title": "Groceries"})
    assert response.status_code == 201
    return response.json()["conversation_id"]


def test_health_needs_no_identity(app_context) -> None:
    with closing(TestClient(create_http_app(app_context))) as anonymous:
        response = anonymous.get("/health")

    assert response.json() == {"status": "healthy", "version": __version__}


def test_requests_without_identity_are_rejected(app_context) -> None:
    with closing(TestClient(create_http_app(app_context))) as anonymous:
        response = anonymous.get("/conversations")

    assert response.status_code == 401


class TestConversations:
    def test_create_get_and_list(self, client) -> None:
        conversation_id = _create(client)

        detail = client.get(f"/conversations/{conversation_id}").json()
        listing = client.get("/conversations").json()

        assert detail["state"] == "IDLE"
        assert detail["title"] == "Groceries"
        assert detail["messages"] == []
        assert listing["total"] == 1
        assert listing["active"]["conversation_id"] == conversation_id
        assert listing["states"] == {"IDLE": 1}

    def test_other_users_cannot_see_conversation(self, client) -> None:
        conversation_id = _create(client)

        response = client.get(
            f"/conversations/{conversation_id}", headers={"X-User-Id": "user-2"}
        )

        assert response.status_code == 404
        assert response.json()["error"]["type"] == "ConversationNotFound"

    def test_unknown_fields_are_rejected(self, client) -> None:
        response = client.post("/conversations", json={"sheet": "x"})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["type"] == "ValidationError"
        assert error["reasons"]

    def test_invalid_json(self, client) -> None:
        response = client.post(
            "/conversations", content=b"{nope", headers={"content-type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Invalid JSON body"

    def test_end_and_delete(self, client) -> None:
        conversation_id = _create(client)

        ended = client.post(f"/conversations/{conversation_id}/end").json()
        blocked = client.post(f"/conversations/{conversation_id}/listen")
        deleted = client.delete(f"/conversations/{conversation_id}")

        assert ended["ended_at"] is not None
        assert blocked.status_code == 409
        assert blocked.json()["error"]["type"] == "ConversationEnded"
        assert deleted.json() == {"success": True}
        assert client.get(f"/conversations/{conversation_id}").status_code == 404

    def test_bad_paging_parameter(self, client) -> None:
        assert client.get("/conversations?limit=abc").status_code == 400
        assert client.get("/conversations?limit=501").status_code == 400


class TestStateEndpoints:
    def test_state_and_transition(self, client) -> None:
        conversation_id = _create(client)

        state = client.get(f"/conversations/{conversation_id}/state").json()
        moved = client.put(
            f"/conversations/{conversation_id}/state",
            json={"newState": "LISTENING", "reason": "mic on"},
        ).json()
        history = client.get(f"/conversations/{conversation_id}/transitions").json()

        assert state["current_state"] == "IDLE"
        assert state["description"] == "Ready to listen"
        assert state["next_possible_states"] == ["LISTENING"]
        assert moved == {
            "success": True,
            "conversation_id": conversation_id,
            "previous_state": "IDLE",
            "current_state": "LISTENING",
        }
        assert history["transitions"][0]["reason"] == "mic on"

    def test_invalid_transition_returns_409_with_hint(self, client) -> None:
        conversation_id = _create(client)

        response = client.put(
            f"/conversations/{conversation_id}/state", json={"newState": "EXECUTING"}
        )

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["type"] == "InvalidTransition"
        assert error["hint"] == "Allowed next states: LISTENING"

    def test_unknown_state_name_is_a_validation_error(self, client) -> None:
        conversation_id = _create(client)

        response = client.put(
            f"/conversations/{conversation_id}/state", json={"newState": "DANCING"}
        )

        assert response.status_code == 400

    def test_reset(self, client, app_context) -> None:
        conversation_id = _create(client)
        app_context.store.force_state(conversation_id, ConversationState.ERROR, "2026-03-01")

        response = client.post(f"/conversations/{conversation_id}/state/reset")

        assert response.json()["current_state"] == "IDLE"


class TestVoiceTurn:
    def test_delete_flow_with_confirmation_and_undo(
        self, client, classifier, backend
    ) -> None:
        conversation_id = _create(client)
        classifier.intents.append(
            ActionIntent(
                ActionKind.DELETE_ROW, {"startIndex": 1, "sheetName": "Sheet1"}, confidence=0.92
            )
        )
        intent = {"action": "delete_row", "parameters": {"startIndex": 1, "sheetName": "Sheet1"}}

        plan = client.post(
            f"/conversations/{conversation_id}/transcript",
            json={"transcript": "delete the apples row"},
        ).json()
        assert plan["state"] == "CONFIRMATION_REQUIRED"
        assert plan["dry_run"]["risk_level"] == "high"

        gated = client.post(
            "/sheets/execute", json={"intent": intent, "conversationId": conversation_id}
        ).json()
        assert gated["requires_confirmation"] is True
        assert gated["success"] is False
        assert backend.grid("sheet-abc")[1] == ["apples", 3]

        done = client.post(
            "/sheets/execute",
            json={"intent": intent, "conversationId": conversation_id, "confirmed": True},
        ).json()
        assert done["success"] is True
        assert done["sheet_id"] == "sheet-abc"
        assert backend.grid("sheet-abc") == [["Name", "Qty"], ["pears", 5]]

        state = client.get(f"/conversations/{conversation_id}/state").json()
        assert state["current_state"] == "COMPLETED"

        pending = client.get("/sheets/undo").json()
        assert [r["rollback_id"] for r in pending["undo_history"]] == [done["rollback_id"]]
        assert pending["window_hours"] == 24

        undone = client.post("/sheets/undo", json={"rollbackId": done["rollback_id"]})
        assert undone.json()["success"] is True
        assert backend.grid("sheet-abc")[1] == ["apples", 3]

        again = client.post("/sheets/undo", json={"rollbackId": done["rollback_id"]})
        assert again.status_code == 404

        messages = client.get(f"/conversations/{conversation_id}").json()["messages"]
        assert messages[-1]["executed"] is True

    def test_low_confidence_transcript(self, client, classifier) -> None:
        conversation_id = _create(client)
        classifier.intents.append(ActionIntent(ActionKind.UPDATE_CELL, {}, confidence=0.4))

        plan = client.post(
            f"/conversations/{conversation_id}/transcript", json={"transcript": "hmm"}
        ).json()

        assert plan["state"] == "CLARIFICATION_REQUIRED"
        cancelled = client.post(f"/conversations/{conversation_id}/cancel").json()
        assert cancelled["current_state"] == "IDLE"

    def test_empty_transcript_is_rejected(self, client) -> None:
        conversation_id = _create(client)

        response = client.post(
            f"/conversations/{conversation_id}/transcript", json={"transcript": ""}
        )

        assert response.status_code == 400

    def test_backend_failure_is_reported_and_recorded(self, client, backend) -> None:
        conversation_id = _create(client)
        backend.fail_on.add("write_values")
        client.put(f"/conversations/{conversation_id}/state", json={"newState": "LISTENING"})
        for state in ("TRANSCRIBING", "INTENT_CLASSIFIED", "READY_TO_EXECUTE"):
            client.put(f"/conversations/{conversation_id}/state", json={"newState": state})

        response = client.post(
            "/sheets/execute",
            json={
                "intent": {
                    "action": "update_cell",
                    "parameters": {"range": "B2", "values": [[1]]},
                },
                "conversationId": conversation_id,
            },
        )

        assert response.status_code == 502
        error = response.json()["error"]
        assert error["type"] == "ExecutionError"
        assert error["hint"].startswith("See audit record ")
        detail = client.get(f"/conversations/{conversation_id}").json()
        assert detail["state"] == "ERROR"
        assert "write_values failed" in detail["messages"][-1]["execution_error"]


class TestSheetsEndpoints:
    def test_dry_run(self, client, backend) -> None:
        response = client.post(
            "/sheets/dry-run",
            json={
                "intent": {
                    "action": "update_range",
                    "parameters": {"range": "A1:B2", "values": [[1, 2], [3, 4]]},
                    "confidence": 0.9,
                }
            },
        )

        body = response.json()
        assert body["dry_run"]["cells_affected"] == ["A1", "B1", "A2", "B2"]
        assert body["dry_run"]["risk_level"] == "low"
        assert body["requires_confirmation"] is False
        assert backend.calls == []

    def test_dry_run_unsupported_kind(self, client) -> None:
        response = client.post(
            "/sheets/dry-run", json={"intent": {"action": "rename_sheet", "parameters": {}}}
        )

        assert response.status_code == 400
        assert response.json()["error"]["type"] == "UnsupportedAction"

    def test_intent_confidence_is_validated(self, client) -> None:
        response = client.post(
            "/sheets/dry-run",
            json={"intent": {"action": "update_cell", "confidence": 1.5}},
        )

        assert response.status_code == 400
        assert response.json()["error"]["reasons"][0].startswith("intent.confidence")

    def test_execute_without_conversation(self, client, backend) -> None:
        response = client.post(
            "/sheets/execute",
            json={
                "intent": {"action": "update_cell", "parameters": {"range": "B3", "values": [[9]]}},
                "sheetId": "sheet-abc",
            },
        )

        assert response.json()["success"] is True
        assert backend.grid("sheet-abc")[2][1] == 9

    def test_execute_in_foreign_conversation(self, client) -> None:
        conversation_id = _create(client)

        response = client.post(
            "/sheets/execute",
            headers={"X-User-Id": "user-2"},
            json={
                "intent": {"action": "update_cell", "parameters": {"range": "A1", "values": [[1]]}},
                "conversationId": conversation_id,
            },
        )

        assert response.status_code == 404

    def test_expired_undo(self, client, clock) -> None:
        done = client.post(
            "/sheets/execute",
            json={
                "intent": {"action": "update_cell", "parameters": {"range": "B3", "values": [[9]]}},
                "sheetId": "sheet-abc",
            },
        ).json()
        clock.advance(hours=25)

        response = client.post("/sheets/undo", json={"rollbackId": done["rollback_id"]})

        assert response.status_code == 410
        assert response.json()["error"]["type"] == "RollbackExpired"


class TestAuditEndpoints:
    def test_logs_and_stats(self, client) -> None:
        client.post(
            "/sheets/execute",
            json={
                "intent": {"action": "update_cell", "parameters": {"range": "B3", "values": [[9]]}},
                "sheetId": "sheet-abc",
            },
        )
        client.post("/sheets/undo", json={"rollbackId": "missing"})

        logs = client.get("/audit/logs?action=update_cell").json()
        stats = client.get("/audit/stats").json()

        assert [entry["action"] for entry in logs["logs"]] == ["update_cell"]
        assert logs["logs"][0]["details"]["parameters"]["range"] == "B3"
        assert stats["total"] == 2
        assert stats["failed"] == 1
        assert stats["by_action"] == {"update_cell": 1, "undo_action": 1}

    def test_logs_are_scoped_to_caller(self, client) -> None:
        client.post(
            "/sheets/execute",
            json={
                "intent": {"action": "update_cell", "parameters": {"range": "B3", "values": [[9]]}},
                "sheetId": "sheet-abc",
            },
        )

        other = client.get("/audit/logs", headers={"X-User-Id": "user-2"}).json()

        assert other["logs"] == []

    def test_bad_since(self, client) -> None:
        assert client.get("/audit/logs?since=yesterday").status_code == 400


@pytest.mark.parametrize(
    ("exc", "status"),
    [
        (InvalidTransitionError("IDLE", "EXECUTING"), 409),
        (RollbackExpiredError("rb", 24), 410),
        (UndoUnsupportedError("x"), 422),
        (ActionExecutionError("update_cell", "boom"), 502),
        (BackendTimeoutError("slow"), 504),
        (ClassifierUnavailableError("down"), 503),
        (VoiceSheetsError("?"), 500),
    ],
)
def test_status_for(exc, status) -> None:
    assert status_for(exc) == status
