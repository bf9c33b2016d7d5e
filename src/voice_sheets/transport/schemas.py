"""JSON Schemas for HTTP request bodies."""

from __future__ import annotations

from voice_sheets.domain.actions import ActionKind
from voice_sheets.domain.conversation import ConversationState

INTENT_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "action": {"type": "string", "enum": [kind.value for kind in ActionKind]},
        "parameters": {"type": "object"},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "confirmationRequired": {"type": "boolean"},
        "clarificationNeeded": {"type": ["string", "null"]},
    },
    "required": ["action"],
}

CREATE_CONVERSATION_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "sheetId": {"type": ["string", "null"], "maxLength": 200},
        "title": {"type": ["string", "null"], "maxLength": 200},
    },
    "additionalProperties": False,
}

TRANSITION_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "newState": {"type": "string", "enum": [state.value for state in ConversationState]},
        "reason": {"type": ["string", "null"], "maxLength": 500},
    },
    "required": ["newState"],
    "additionalProperties": False,
}

TRANSCRIPT_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "transcript": {"type": "string", "minLength": 1, "maxLength": 5000},
    },
    "required": ["transcript"],
    "additionalProperties": False,
}

DRY_RUN_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "intent": INTENT_SCHEMA,
        "sheetId": {"type": ["string", "null"]},
    },
    "required": ["intent"],
}

EXECUTE_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "intent": INTENT_SCHEMA,
        "sheetId": {"type": ["string", "null"]},
        "conversationId": {"type": ["string", "null"]},
        "confirmed": {"type": "boolean"},
    },
    "required": ["intent"],
}

UNDO_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "rollbackId": {"type": "string", "minLength": 1},
    },
    "required": ["rollbackId"],
    "additionalProperties": False,
}
