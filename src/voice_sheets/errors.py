"""Exception hierarchy for the safety pipeline.

Each class carries the ``error_type`` reported to HTTP clients and whether a
client may retry the same request unchanged.
"""

from __future__ import annotations


class VoiceSheetsError(Exception):
    error_type = "InternalError"
    retryable = False


class RequestValidationError(VoiceSheetsError, ValueError):
    error_type = "ValidationError"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class InvalidParametersError(VoiceSheetsError, ValueError):
    """The action parameters cannot be turned into a spreadsheet call."""

    error_type = "InvalidParameters"


class UnsupportedActionError(VoiceSheetsError):
    error_type = "UnsupportedAction"

    def __init__(self, action: str) -> None:
        super().__init__(f"Unsupported action: {action}")
        self.action = action


class ConversationNotFoundError(VoiceSheetsError):
    error_type = "ConversationNotFound"

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation not found: {conversation_id}")
        self.conversation_id = conversation_id


class ConversationEndedError(VoiceSheetsError):
    error_type = "ConversationEnded"

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"Conversation has ended: {conversation_id}")
        self.conversation_id = conversation_id


class InvalidTransitionError(VoiceSheetsError):
    """Requested state change is not permitted from the current state."""

    error_type = "InvalidTransition"

    def __init__(self, current_state: str, requested_state: str) -> None:
        super().__init__(
            f"Invalid state transition from {current_state} to {requested_state}"
        )
        self.current_state = current_state
        self.requested_state = requested_state


class RollbackUnavailableError(VoiceSheetsError):
    error_type = "RollbackUnavailable"


class RollbackNotFoundError(RollbackUnavailableError):
    error_type = "RollbackNotFound"

    def __init__(self, rollback_id: str) -> None:
        super().__init__(f"Rollback action not found or already executed: {rollback_id}")
        self.rollback_id = rollback_id


class RollbackExpiredError(RollbackUnavailableError):
    error_type = "RollbackExpired"

    def __init__(self, rollback_id: str, window_hours: int) -> None:
        super().__init__(
            "Undo window expired. Actions can only be undone within "
            f"{window_hours} hours"
        )
        self.rollback_id = rollback_id


class UndoExecutionError(VoiceSheetsError):
    error_type = "UndoFailed"


class UndoUnsupportedError(UndoExecutionError):
    error_type = "UndoUnsupported"


class SheetsBackendError(VoiceSheetsError):
    """Any failure reported by the spreadsheet backend."""

    error_type = "BackendError"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BackendTimeoutError(SheetsBackendError):
    error_type = "BackendTimeout"
    retryable = True


class ActionExecutionError(VoiceSheetsError):
    """A forward mutation failed; the failure has been audited."""

    error_type = "ExecutionError"

    def __init__(self, action: str, message: str, audit_id: str | None = None) -> None:
        super().__init__(f"Action {action} failed: {message}")
        self.action = action
        self.audit_id = audit_id


class ClassifierUnavailableError(VoiceSheetsError):
    error_type = "ClassifierUnavailable"
    retryable = True
