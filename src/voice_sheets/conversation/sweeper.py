"""Periodic maintenance: stale conversations, expired undo plans, old audit rows."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass

from voice_sheets.audit.sink import AuditSink
from voice_sheets.config import SafetySettings
from voice_sheets.conversation.state_machine import ConversationStateMachine
from voice_sheets.rollback.store import RollbackStore

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    stale_conversations: int = 0
    expired_rollbacks: int = 0
    purged_audit_records: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "stale_conversations": self.stale_conversations,
            "expired_rollbacks": self.expired_rollbacks,
            "purged_audit_records": self.purged_audit_records,
        }


class MaintenanceSweeper:
    """Runs the housekeeping jobs.

    Every job is a conditional bulk update or delete, so several instances
    sweeping the same database only duplicate work.
    """

    def __init__(
        self,
        state_machine: ConversationStateMachine,
        rollbacks: RollbackStore,
        audit: AuditSink,
        settings: SafetySettings,
    ) -> None:
        self._state_machine = state_machine
        self._rollbacks = rollbacks
        self._audit = audit
        self._settings = settings

    def run_once(self) -> SweepReport:
        report = SweepReport(
            stale_conversations=self._state_machine.sweep_stale(
                self._settings.stale_conversation_minutes
            ),
            expired_rollbacks=self._rollbacks.cleanup_expired(),
            purged_audit_records=self._audit.cleanup_old(self._settings.audit_retention_days),
        )
        logger.info(
            "Maintenance sweep done stale=%d expired_rollbacks=%d purged_audit=%d",
            report.stale_conversations,
            report.expired_rollbacks,
            report.purged_audit_records,
        )
        return report

    async def run_forever(self, interval_seconds: float | None = None) -> None:
        interval = interval_seconds or self._settings.sweep_interval_seconds
        logger.info("Maintenance sweeper started interval=%ss", interval)
        while True:
            try:
                await asyncio.to_thread(self.run_once)
            except sqlite3.Error:
                # Retried on the next tick.
                logger.exception("Maintenance sweep failed")
            await asyncio.sleep(interval)
