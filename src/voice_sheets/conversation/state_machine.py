"""Conversation state machine backed by compare-and-set persistence."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from voice_sheets.domain.actions import ActionIntent, DryRunReport
from voice_sheets.domain.conversation import (
    SETTLED_STATES,
    STATE_DESCRIPTIONS,
    ConversationState,
    is_valid_transition,
    next_states,
)
from voice_sheets.errors import (
    ConversationEndedError,
    ConversationNotFoundError,
    InvalidTransitionError,
)
from voice_sheets.storage.db import SqliteStore
from voice_sheets.storage.models import Conversation, TransitionRecord
from voice_sheets.utils.time import to_iso, utc_now

logger = logging.getLogger(__name__)

DEFAULT_CLARIFICATION_THRESHOLD = 0.60


@dataclass
class TransitionResult:
    conversation_id: str
    previous_state: ConversationState
    current_state: ConversationState

    def to_dict(self) -> dict[str, str]:
        return {
            "conversation_id": self.conversation_id,
            "previous_state": self.previous_state.value,
            "current_state": self.current_state.value,
        }


def decide_after_dry_run(
    intent: ActionIntent,
    report: DryRunReport | None,
    threshold: float = DEFAULT_CLARIFICATION_THRESHOLD,
) -> ConversationState:
    """Pick the state that follows a classified and simulated utterance."""
    if intent.confidence < threshold:
        return ConversationState.CLARIFICATION_REQUIRED
    if intent.confirmation_required or (report is not None and report.requires_confirmation):
        return ConversationState.CONFIRMATION_REQUIRED
    return ConversationState.READY_TO_EXECUTE


def describe(state: ConversationState) -> str:
    return STATE_DESCRIPTIONS.get(state, "Unknown state")


class ConversationStateMachine:
    def __init__(
        self,
        store: SqliteStore,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._clock = clock

    def _load(self, conversation_id: str) -> Conversation:
        conversation = self._store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        if conversation.ended:
            raise ConversationEndedError(conversation_id)
        return conversation

    def current_state(self, conversation_id: str) -> ConversationState:
        conversation = self._store.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation.state

    def transition(
        self,
        conversation_id: str,
        target: ConversationState,
        reason: str | None = None,
    ) -> TransitionResult:
        """Move a conversation along one edge of the transition table.

        Raises:
            InvalidTransitionError: ``target`` is not reachable from the
                current state. Nothing is written in that case.
        """
        current = self._load(conversation_id).state
        # One retry: a concurrent writer may have moved the row between read and write.
        for attempt in range(2):
            if not is_valid_transition(current, target):
                logger.warning(
                    "Invalid state transition attempted conversation=%s from=%s to=%s",
                    conversation_id,
                    current.value,
                    target.value,
                )
                raise InvalidTransitionError(current.value, target.value)

            now = to_iso(self._clock())
            if self._store.compare_and_set_state(conversation_id, current, target, now):
                self._record(conversation_id, current, target, reason, forced=False, at=now)
                logger.info(
                    "State transition conversation=%s from=%s to=%s reason=%s",
                    conversation_id,
                    current.value,
                    target.value,
                    reason,
                )
                return TransitionResult(conversation_id, current, target)

            observed = self._load(conversation_id).state
            logger.info(
                "State transition lost race conversation=%s expected=%s observed=%s attempt=%d",
                conversation_id,
                current.value,
                observed.value,
                attempt + 1,
            )
            current = observed

        raise InvalidTransitionError(current.value, target.value)

    def force_transition(
        self,
        conversation_id: str,
        target: ConversationState,
        reason: str,
    ) -> TransitionResult:
        """Operator bypass of the transition table; always logged at WARNING."""
        now = to_iso(self._clock())
        previous = self._store.force_state(conversation_id, target, now)
        if previous is None:
            raise ConversationNotFoundError(conversation_id)
        self._record(conversation_id, previous, target, reason, forced=True, at=now)
        logger.warning(
            "Forced state transition conversation=%s from=%s to=%s reason=%s",
            conversation_id,
            previous.value,
            target.value,
            reason,
        )
        return TransitionResult(conversation_id, previous, target)

    def can_reset(self, conversation_id: str) -> bool:
        return self.current_state(conversation_id) is not ConversationState.EXECUTING

    def reset_to_idle(self, conversation_id: str, reason: str = "reset") -> TransitionResult:
        if not self.can_reset(conversation_id):
            raise InvalidTransitionError(
                ConversationState.EXECUTING.value, ConversationState.IDLE.value
            )
        return self.force_transition(conversation_id, ConversationState.IDLE, reason)

    def sweep_stale(self, max_age_minutes: int = 30) -> int:
        """Move conversations stuck in an in-flight state to ERROR."""
        now = self._clock()
        cutoff = to_iso(now - timedelta(minutes=max_age_minutes))
        now_iso = to_iso(now)
        moved = self._store.move_stale_conversations(
            cutoff, SETTLED_STATES, ConversationState.ERROR, now_iso
        )
        reason = f"stale for more than {max_age_minutes} minutes"
        for conversation_id, previous in moved:
            self._record(
                conversation_id, previous, ConversationState.ERROR, reason, forced=True, at=now_iso
            )
            logger.warning(
                "Forced state transition conversation=%s from=%s to=%s reason=%s",
                conversation_id,
                previous.value,
                ConversationState.ERROR.value,
                reason,
            )
        if moved:
            logger.info(
                "Cleaned up stuck conversations count=%d max_age_minutes=%d",
                len(moved),
                max_age_minutes,
            )
        return len(moved)

    def history(self, conversation_id: str, limit: int = 100) -> list[TransitionRecord]:
        return self._store.list_transitions(conversation_id, limit)

    def state_stats(self, user_id: str) -> dict[str, int]:
        return self._store.count_states(user_id)

    @staticmethod
    def describe(state: ConversationState) -> str:
        return describe(state)

    @staticmethod
    def next_states(state: ConversationState) -> list[ConversationState]:
        return next_states(state)

    def _record(
        self,
        conversation_id: str,
        previous: ConversationState,
        new: ConversationState,
        reason: str | None,
        *,
        forced: bool,
        at: str,
    ) -> None:
        self._store.add_transition(
            TransitionRecord(
                conversation_id=conversation_id,
                previous_state=previous,
                new_state=new,
                reason=reason,
                forced=forced,
                created_at=at,
            )
        )
