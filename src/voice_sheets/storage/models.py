"""Persistent record types."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from voice_sheets.domain.conversation import ConversationState


@dataclass
class Conversation:
    conversation_id: str
    user_id: str
    state: ConversationState
    created_at: str
    updated_at: str
    sheet_id: str | None = None
    title: str | None = None
    ended_at: str | None = None

    @property
    def ended(self) -> bool:
        return self.ended_at is not None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


@dataclass
class TransitionRecord:
    conversation_id: str
    previous_state: ConversationState
    new_state: ConversationState
    created_at: str
    reason: str | None = None
    forced: bool = False
    transition_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["previous_state"] = self.previous_state.value
        data["new_state"] = self.new_state.value
        return data


@dataclass
class Message:
    message_id: str
    conversation_id: str
    role: str
    content: str
    created_at: str
    transcript: str | None = None
    intent: dict[str, Any] | None = None
    dry_run: dict[str, Any] | None = None
    executed: bool = False
    execution_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AuditRecord:
    audit_id: str
    user_id: str
    action: str
    success: bool
    created_at: str
    sheet_id: str | None = None
    sheet_name: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    error_message: str | None = None
    execution_time_ms: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RollbackAction:
    rollback_id: str
    user_id: str
    action_id: str
    sheet_id: str
    undo_action: str
    undo_data: dict[str, Any]
    created_at: str
    expires_at: str
    executed: bool = False
    claimed_at: str | None = None
    executed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
