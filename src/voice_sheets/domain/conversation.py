"""Conversation states and the fixed transition table."""

from __future__ import annotations

from enum import Enum


class ConversationState(str, Enum):
    IDLE = "IDLE"
    LISTENING = "LISTENING"
    TRANSCRIBING = "TRANSCRIBING"
    INTENT_CLASSIFIED = "INTENT_CLASSIFIED"
    CLARIFICATION_REQUIRED = "CLARIFICATION_REQUIRED"
    CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"
    READY_TO_EXECUTE = "READY_TO_EXECUTE"
    EXECUTING = "EXECUTING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


_S = ConversationState

TRANSITIONS: dict[ConversationState, frozenset[ConversationState]] = {
    _S.IDLE: frozenset({_S.LISTENING}),
    _S.LISTENING: frozenset({_S.TRANSCRIBING, _S.IDLE, _S.ERROR}),
    _S.TRANSCRIBING: frozenset({_S.INTENT_CLASSIFIED, _S.ERROR}),
    _S.INTENT_CLASSIFIED: frozenset(
        {
            _S.CLARIFICATION_REQUIRED,
            _S.CONFIRMATION_REQUIRED,
            _S.READY_TO_EXECUTE,
            _S.ERROR,
        }
    ),
    _S.CLARIFICATION_REQUIRED: frozenset({_S.LISTENING, _S.IDLE}),
    _S.CONFIRMATION_REQUIRED: frozenset({_S.READY_TO_EXECUTE, _S.IDLE, _S.ERROR}),
    _S.READY_TO_EXECUTE: frozenset({_S.EXECUTING, _S.ERROR}),
    _S.EXECUTING: frozenset({_S.COMPLETED, _S.ERROR}),
    _S.COMPLETED: frozenset({_S.IDLE}),
    _S.ERROR: frozenset({_S.IDLE, _S.LISTENING}),
}

# States the staleness sweep leaves alone.
SETTLED_STATES = frozenset({_S.IDLE, _S.COMPLETED, _S.ERROR})

STATE_DESCRIPTIONS: dict[ConversationState, str] = {
    _S.IDLE: "Ready to listen",
    _S.LISTENING: "Listening to your voice...",
    _S.TRANSCRIBING: "Converting speech to text...",
    _S.INTENT_CLASSIFIED: "Understanding your request...",
    _S.CLARIFICATION_REQUIRED: "Need more information",
    _S.CONFIRMATION_REQUIRED: "Waiting for your confirmation",
    _S.READY_TO_EXECUTE: "Ready to execute",
    _S.EXECUTING: "Performing action...",
    _S.COMPLETED: "Action completed",
    _S.ERROR: "An error occurred",
}


def is_valid_transition(current: ConversationState, target: ConversationState) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def next_states(current: ConversationState) -> list[ConversationState]:
    # Table order is not meaningful; sort for stable API output.
    return sorted(TRANSITIONS.get(current, frozenset()), key=lambda s: s.value)
