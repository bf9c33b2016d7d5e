"""Per-utterance glue: transcript, classification, dry-run and dispatch decision."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from voice_sheets.conversation.service import ConversationContext, ConversationService
from voice_sheets.conversation.state_machine import (
    DEFAULT_CLARIFICATION_THRESHOLD,
    ConversationStateMachine,
    decide_after_dry_run,
)
from voice_sheets.domain.actions import ActionIntent, DryRunReport
from voice_sheets.domain.conversation import ConversationState
from voice_sheets.safety.simulator import simulate

logger = logging.getLogger(__name__)


class IntentClassifier(Protocol):
    def classify(self, transcript: str, context: ConversationContext) -> ActionIntent: ...


@dataclass
class TurnPlan:
    conversation_id: str
    intent: ActionIntent
    report: DryRunReport | None
    state: ConversationState
    reply: str

    def to_dict(self) -> dict[str, object]:
        return {
            "conversation_id": self.conversation_id,
            "intent": self.intent.to_dict(),
            "dry_run": self.report.to_dict() if self.report is not None else None,
            "state": self.state.value,
            "reply": self.reply,
        }


class ConversationPipeline:
    def __init__(
        self,
        conversations: ConversationService,
        state_machine: ConversationStateMachine,
        classifier: IntentClassifier,
        *,
        clarification_threshold: float = DEFAULT_CLARIFICATION_THRESHOLD,
    ) -> None:
        self._conversations = conversations
        self._state_machine = state_machine
        self._classifier = classifier
        self._threshold = clarification_threshold

    def begin_listening(self, conversation_id: str, user_id: str) -> ConversationState:
        state = self._conversations.get(conversation_id, user_id).state
        if state is ConversationState.LISTENING:
            return state
        if state is ConversationState.COMPLETED:
            self._state_machine.transition(conversation_id, ConversationState.IDLE, "next turn")
        return self._state_machine.transition(
            conversation_id, ConversationState.LISTENING, "utterance started"
        ).current_state

    def handle_transcript(self, conversation_id: str, user_id: str, transcript: str) -> TurnPlan:
        """Classify and simulate one utterance and park the conversation.

        The conversation ends in CLARIFICATION_REQUIRED, CONFIRMATION_REQUIRED
        or READY_TO_EXECUTE. Classification and simulation failures move it to
        ERROR and propagate.
        """
        self.begin_listening(conversation_id, user_id)
        self._state_machine.transition(
            conversation_id, ConversationState.TRANSCRIBING, "transcript received"
        )
        context = self._conversations.build_context(conversation_id, user_id)
        self._conversations.add_message(
            conversation_id, "user", transcript, transcript=transcript
        )

        try:
            intent = self._classifier.classify(transcript, context)
        except Exception as exc:
            self._fail(conversation_id, exc)
            raise
        self._state_machine.transition(
            conversation_id, ConversationState.INTENT_CLASSIFIED, intent.action.value
        )

        report: DryRunReport | None = None
        if intent.confidence >= self._threshold:
            try:
                report = simulate(intent.action, intent.parameters)
            except Exception as exc:
                self._fail(conversation_id, exc)
                raise

        target = decide_after_dry_run(intent, report, self._threshold)
        self._state_machine.transition(conversation_id, target, "dry-run decision")

        reply = self._reply(intent, report, target)
        self._conversations.add_message(
            conversation_id,
            "assistant",
            reply,
            intent=intent.to_dict(),
            dry_run=report.to_dict() if report is not None else None,
        )
        logger.info(
            "Turn planned conversation=%s action=%s confidence=%.2f state=%s",
            conversation_id,
            intent.action.value,
            intent.confidence,
            target.value,
        )
        return TurnPlan(conversation_id, intent, report, target, reply)

    def cancel(self, conversation_id: str, user_id: str) -> ConversationState:
        """Decline a pending confirmation or clarification."""
        self._conversations.get(conversation_id, user_id)
        return self._state_machine.transition(
            conversation_id, ConversationState.IDLE, "cancelled by user"
        ).current_state

    def _fail(self, conversation_id: str, exc: Exception) -> None:
        logger.warning("Turn failed conversation=%s error=%s", conversation_id, exc)
        self._state_machine.transition(conversation_id, ConversationState.ERROR, str(exc))

    @staticmethod
    def _reply(
        intent: ActionIntent, report: DryRunReport | None, state: ConversationState
    ) -> str:
        if state is ConversationState.CLARIFICATION_REQUIRED:
            return intent.clarification_needed or "Could you clarify what you would like to do?"
        preview = report.preview if report is not None else intent.action.value
        if state is ConversationState.CONFIRMATION_REQUIRED:
            return f"{preview} Please confirm to continue."
        return preview
