"""Application context assembly."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from voice_sheets.audit.sink import AuditSink
from voice_sheets.config import Settings, load_settings
from voice_sheets.conversation.pipeline import ConversationPipeline, IntentClassifier
from voice_sheets.conversation.service import ConversationContext, ConversationService
from voice_sheets.conversation.state_machine import ConversationStateMachine
from voice_sheets.conversation.sweeper import MaintenanceSweeper
from voice_sheets.domain.actions import ActionIntent
from voice_sheets.errors import ClassifierUnavailableError, SheetsBackendError
from voice_sheets.execution.executor import ActionExecutor
from voice_sheets.rollback.store import RollbackStore
from voice_sheets.sheets.backend import BackendProvider, SpreadsheetBackend
from voice_sheets.sheets.google import GoogleSheetsBackend
from voice_sheets.storage.db import SqliteStore
from voice_sheets.utils.time import utc_now


@dataclass
class AppContext:
    """Application-wide dependency container.

    Built once at startup by ``build_app_context`` and handed to the HTTP
    app; tests build their own with fakes.
    """

    settings: Settings
    store: SqliteStore
    conversations: ConversationService
    state_machine: ConversationStateMachine
    audit: AuditSink
    rollbacks: RollbackStore
    executor: ActionExecutor
    pipeline: ConversationPipeline
    sweeper: MaintenanceSweeper


class UnconfiguredClassifier:
    """Placeholder used until a real intent classifier is wired in."""

    def classify(self, transcript: str, context: ConversationContext) -> ActionIntent:
        raise ClassifierUnavailableError("No intent classifier is configured")


def static_token_backends(settings: Settings) -> BackendProvider:
    """One shared Google Sheets backend using the configured access token."""
    token = settings.sheets.access_token

    def token_provider() -> str:
        if not token:
            raise SheetsBackendError("GOOGLE_SHEETS_ACCESS_TOKEN is not configured")
        return token

    backend = GoogleSheetsBackend(
        token_provider,
        base_url=settings.sheets.api_base_url,
        timeout_seconds=settings.sheets.timeout_seconds,
    )

    def provider(user_id: str) -> SpreadsheetBackend:
        return backend

    return provider


def build_app_context(
    settings: Settings | None = None,
    *,
    store: SqliteStore | None = None,
    backends: BackendProvider | None = None,
    classifier: IntentClassifier | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> AppContext:
    settings = settings or load_settings()
    safety = settings.safety
    store = store or SqliteStore(settings.storage.sqlite_path, wal=settings.storage.sqlite_wal)
    backends = backends or static_token_backends(settings)

    conversations = ConversationService(store, clock=clock)
    state_machine = ConversationStateMachine(store, clock=clock)
    audit = AuditSink(store, retention_days=safety.audit_retention_days, clock=clock)
    rollbacks = RollbackStore(
        store,
        backends,
        window_hours=safety.rollback_window_hours,
        claim_lease_seconds=safety.undo_claim_lease_seconds,
        clock=clock,
    )
    executor = ActionExecutor(backends, audit, rollbacks, state_machine)
    pipeline = ConversationPipeline(
        conversations,
        state_machine,
        classifier or UnconfiguredClassifier(),
        clarification_threshold=safety.clarification_threshold,
    )
    sweeper = MaintenanceSweeper(state_machine, rollbacks, audit, safety)

    return AppContext(
        settings=settings,
        store=store,
        conversations=conversations,
        state_machine=state_machine,
        audit=audit,
        rollbacks=rollbacks,
        executor=executor,
        pipeline=pipeline,
        sweeper=sweeper,
    )
