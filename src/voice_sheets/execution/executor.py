"""Confirmation-gated execution of spreadsheet actions."""

from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass, field
from typing import Any

from voice_sheets.audit.sink import AuditSink
from voice_sheets.auth.context import RequestContext, get_request_context_optional
from voice_sheets.conversation.state_machine import ConversationStateMachine
from voice_sheets.domain.actions import CREATION_KINDS, ActionIntent, DryRunReport
from voice_sheets.domain.conversation import ConversationState
from voice_sheets.errors import (
    ActionExecutionError,
    InvalidTransitionError,
    RequestValidationError,
    UnsupportedActionError,
    VoiceSheetsError,
)
from voice_sheets.execution.mutations import MUTATIONS, MutationResult
from voice_sheets.rollback.store import RollbackStore, UndoResult
from voice_sheets.safety.simulator import SUPPORTED_KINDS, simulate
from voice_sheets.sheets.backend import BackendProvider

logger = logging.getLogger(__name__)

UNDO_AUDIT_ACTION = "undo_action"


@dataclass
class ExecutionOutcome:
    action: str
    success: bool
    requires_confirmation: bool = False
    dry_run: DryRunReport | None = None
    result: dict[str, Any] = field(default_factory=dict)
    sheet_id: str | None = None
    audit_id: str | None = None
    rollback_id: str | None = None
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "success": self.success,
            "requires_confirmation": self.requires_confirmation,
            "dry_run": self.dry_run.to_dict() if self.dry_run is not None else None,
            "result": self.result,
            "sheet_id": self.sheet_id,
            "audit_id": self.audit_id,
            "rollback_id": self.rollback_id,
            "message": self.message,
        }


class ActionExecutor:
    def __init__(
        self,
        backends: BackendProvider,
        audit: AuditSink,
        rollbacks: RollbackStore,
        state_machine: ConversationStateMachine,
    ) -> None:
        self._backends = backends
        self._audit = audit
        self._rollbacks = rollbacks
        self._state_machine = state_machine

    def execute(
        self,
        user_id: str,
        intent: ActionIntent,
        *,
        sheet_id: str | None = None,
        conversation_id: str | None = None,
        confirmed: bool = False,
        client: RequestContext | None = None,
    ) -> ExecutionOutcome:
        """Run ``intent`` against the user's spreadsheet.

        Nothing is mutated, transitioned or audited when confirmation is
        still required, when the kind is unsupported, or when parameters are
        malformed. Once the conversation is EXECUTING every failure is
        audited, moves it to ERROR and surfaces as ``ActionExecutionError``.
        Without an explicit ``client`` the ambient request context is used.
        """
        client = client or get_request_context_optional()
        kind = intent.action
        if kind not in SUPPORTED_KINDS:
            raise UnsupportedActionError(kind.value)
        if not sheet_id and kind not in CREATION_KINDS:
            raise RequestValidationError(f"sheet_id is required for {kind.value}")
        report = simulate(kind, intent.parameters)

        if (intent.confirmation_required or report.requires_confirmation) and not confirmed:
            logger.info(
                "Confirmation required user=%s action=%s risk=%s reversible=%s",
                user_id,
                kind.value,
                report.risk_level.value,
                report.reversible,
            )
            return ExecutionOutcome(
                action=kind.value,
                success=False,
                requires_confirmation=True,
                dry_run=report,
                sheet_id=sheet_id,
                message=report.preview,
            )

        if conversation_id:
            self._enter_executing(conversation_id)

        started = time.perf_counter()
        try:
            mutation = MUTATIONS[kind](self._backends(user_id), sheet_id, intent.parameters)
        except Exception as exc:
            raise self._fail(
                user_id, intent, sheet_id, conversation_id, client, started, exc
            ) from exc

        target_sheet = mutation.spreadsheet_id or sheet_id
        try:
            record = self._audit.log_action(
                user_id,
                kind.value,
                success=True,
                sheet_id=target_sheet,
                sheet_name=intent.parameters.get("sheetName"),
                details={"parameters": intent.parameters, "result": mutation.result},
                execution_time_ms=_elapsed_ms(started),
                ip_address=client.ip_address if client else None,
                user_agent=client.user_agent if client else None,
            )
        except sqlite3.Error:
            self._move_to_error(conversation_id, "audit write failed")
            raise

        rollback_id = None
        if report.reversible and target_sheet:
            rollback_id = self._store_rollback(
                user_id, record.audit_id, target_sheet, intent, mutation
            )

        if conversation_id:
            self._complete(conversation_id, kind.value)

        logger.info(
            "Action executed user=%s action=%s sheet=%s audit_id=%s rollback_id=%s",
            user_id,
            kind.value,
            target_sheet,
            record.audit_id,
            rollback_id,
        )
        return ExecutionOutcome(
            action=kind.value,
            success=True,
            dry_run=report,
            result=mutation.result,
            sheet_id=target_sheet,
            audit_id=record.audit_id,
            rollback_id=rollback_id,
            message=f"Successfully executed {kind.value}",
        )

    def undo(
        self,
        user_id: str,
        rollback_id: str,
        *,
        client: RequestContext | None = None,
    ) -> UndoResult:
        """Execute a stored undo plan and audit the attempt."""
        client = client or get_request_context_optional()
        started = time.perf_counter()
        try:
            result = self._rollbacks.execute_undo(user_id, rollback_id)
        except VoiceSheetsError as exc:
            self._audit.log_action(
                user_id,
                UNDO_AUDIT_ACTION,
                success=False,
                details={"rollback_id": rollback_id},
                error_message=str(exc),
                execution_time_ms=_elapsed_ms(started),
                ip_address=client.ip_address if client else None,
                user_agent=client.user_agent if client else None,
            )
            raise
        self._audit.log_action(
            user_id,
            UNDO_AUDIT_ACTION,
            success=True,
            details={"rollback_id": rollback_id, "undo_action": result.undo_action},
            execution_time_ms=_elapsed_ms(started),
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
        )
        return result

    def _enter_executing(self, conversation_id: str) -> None:
        current = self._state_machine.current_state(conversation_id)
        if current is ConversationState.CONFIRMATION_REQUIRED:
            self._state_machine.transition(
                conversation_id, ConversationState.READY_TO_EXECUTE, "confirmed by user"
            )
        self._state_machine.transition(conversation_id, ConversationState.EXECUTING)

    def _complete(self, conversation_id: str, action: str) -> None:
        try:
            self._state_machine.transition(
                conversation_id, ConversationState.COMPLETED, f"{action} applied"
            )
        except InvalidTransitionError as exc:
            # The mutation is applied and audited; only the conversation moved on.
            logger.warning(
                "Conversation not completed conversation=%s action=%s error=%s",
                conversation_id,
                action,
                exc,
            )

    def _store_rollback(
        self,
        user_id: str,
        action_id: str,
        sheet_id: str,
        intent: ActionIntent,
        mutation: MutationResult,
    ) -> str | None:
        try:
            snapshot = self._rollbacks.create_snapshot(
                user_id,
                action_id,
                sheet_id,
                intent.action,
                intent.parameters,
                mutation.snapshot,
            )
        except (sqlite3.Error, VoiceSheetsError) as exc:
            # The mutation already happened; losing the undo plan must not fail it.
            logger.error(
                "Failed to store rollback plan action_id=%s action=%s error=%s",
                action_id,
                intent.action.value,
                exc,
            )
            return None
        return snapshot.rollback_id

    def _fail(
        self,
        user_id: str,
        intent: ActionIntent,
        sheet_id: str | None,
        conversation_id: str | None,
        client: RequestContext | None,
        started: float,
        exc: Exception,
    ) -> ActionExecutionError:
        logger.error(
            "Action failed user=%s action=%s sheet=%s error=%s",
            user_id,
            intent.action.value,
            sheet_id,
            exc,
        )
        self._move_to_error(conversation_id, str(exc))
        record = self._audit.log_action(
            user_id,
            intent.action.value,
            success=False,
            sheet_id=sheet_id,
            sheet_name=intent.parameters.get("sheetName"),
            details={"parameters": intent.parameters},
            error_message=str(exc),
            execution_time_ms=_elapsed_ms(started),
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
        )
        return ActionExecutionError(intent.action.value, str(exc), audit_id=record.audit_id)

    def _move_to_error(self, conversation_id: str | None, reason: str) -> None:
        if not conversation_id:
            return
        try:
            self._state_machine.transition(conversation_id, ConversationState.ERROR, reason)
        except VoiceSheetsError as exc:
            logger.error(
                "Failed to move conversation to ERROR conversation=%s error=%s",
                conversation_id,
                exc,
            )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
