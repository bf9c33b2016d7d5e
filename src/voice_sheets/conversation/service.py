"""Conversation lifecycle and message history."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from voice_sheets.domain.conversation import ConversationState
from voice_sheets.errors import ConversationNotFoundError, RequestValidationError
from voice_sheets.storage.db import SqliteStore
from voice_sheets.storage.models import Conversation, Message
from voice_sheets.utils.time import to_iso, utc_now

logger = logging.getLogger(__name__)

MESSAGE_ROLES = frozenset({"user", "assistant"})
DEFAULT_TITLE = "New Conversation"
CONTEXT_MESSAGES = 50


@dataclass
class ConversationContext:
    """What the classifier sees about the conversation so far."""

    conversation_id: str
    sheet_id: str | None = None
    last_action: str | None = None
    previous_messages: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "sheet_id": self.sheet_id,
            "last_action": self.last_action,
            "previous_messages": list(self.previous_messages),
        }


class ConversationService:
    def __init__(
        self,
        store: SqliteStore,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._clock = clock

    def create(
        self,
        user_id: str,
        sheet_id: str | None = None,
        title: str | None = None,
    ) -> Conversation:
        now = to_iso(self._clock())
        conversation = Conversation(
            conversation_id=uuid.uuid4().hex,
            user_id=user_id,
            sheet_id=sheet_id,
            state=ConversationState.IDLE,
            title=title or DEFAULT_TITLE,
            created_at=now,
            updated_at=now,
        )
        self._store.create_conversation(conversation)
        logger.info(
            "Conversation created conversation=%s user=%s", conversation.conversation_id, user_id
        )
        return conversation

    def get(self, conversation_id: str, user_id: str) -> Conversation:
        """Return a conversation owned by ``user_id``.

        Foreign conversations are reported as missing.
        """
        conversation = self._store.get_conversation(conversation_id)
        if conversation is None or conversation.user_id != user_id:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    def get_active(self, user_id: str) -> Conversation | None:
        return self._store.get_active_conversation(user_id)

    def history(self, user_id: str, limit: int = 20, offset: int = 0) -> list[Conversation]:
        return self._store.list_conversations(user_id, limit=limit, offset=offset)

    def count(self, user_id: str) -> int:
        return self._store.count_conversations(user_id)

    def end(self, conversation_id: str, user_id: str) -> Conversation:
        self.get(conversation_id, user_id)
        if self._store.end_conversation(conversation_id, to_iso(self._clock())):
            logger.info("Conversation ended conversation=%s", conversation_id)
        return self.get(conversation_id, user_id)

    def delete(self, conversation_id: str, user_id: str) -> None:
        if not self._store.delete_conversation(conversation_id, user_id):
            raise ConversationNotFoundError(conversation_id)
        logger.info("Conversation deleted conversation=%s", conversation_id)

    def update_sheet(
        self, conversation_id: str, user_id: str, sheet_id: str | None
    ) -> Conversation:
        self.get(conversation_id, user_id)
        self._store.update_conversation_sheet(conversation_id, sheet_id, to_iso(self._clock()))
        return self.get(conversation_id, user_id)

    def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        *,
        transcript: str | None = None,
        intent: dict[str, Any] | None = None,
        dry_run: dict[str, Any] | None = None,
        executed: bool = False,
        execution_error: str | None = None,
    ) -> Message:
        if role not in MESSAGE_ROLES:
            raise RequestValidationError(f"Invalid message role: {role}")
        if self._store.get_conversation(conversation_id) is None:
            raise ConversationNotFoundError(conversation_id)
        message = Message(
            message_id=uuid.uuid4().hex,
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=to_iso(self._clock()),
            transcript=transcript,
            intent=intent,
            dry_run=dry_run,
            executed=executed,
            execution_error=execution_error,
        )
        self._store.add_message(message)
        logger.debug(
            "Message added conversation=%s message=%s role=%s",
            conversation_id,
            message.message_id,
            role,
        )
        return message

    def messages(self, conversation_id: str, limit: int = CONTEXT_MESSAGES) -> list[Message]:
        return self._store.list_messages(conversation_id, limit)

    def build_context(self, conversation_id: str, user_id: str) -> ConversationContext:
        conversation = self.get(conversation_id, user_id)
        messages = self.messages(conversation_id)
        last_action = None
        for message in reversed(messages):
            if message.executed and message.intent:
                last_action = message.intent.get("action")
                break
        return ConversationContext(
            conversation_id=conversation_id,
            sheet_id=conversation.sheet_id,
            last_action=last_action,
            previous_messages=[{"role": m.role, "content": m.content} for m in messages],
        )
