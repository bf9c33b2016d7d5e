"""Append-only audit trail of spreadsheet actions."""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable

from voice_sheets.storage.db import SqliteStore
from voice_sheets.storage.models import AuditRecord
from voice_sheets.utils.masking import redact_sensitive_fields
from voice_sheets.utils.time import to_iso, utc_now

logger = logging.getLogger(__name__)


class AuditSink:
    def __init__(
        self,
        store: SqliteStore,
        *,
        retention_days: int = 90,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._retention_days = retention_days
        self._clock = clock

    def record(self, record: AuditRecord) -> AuditRecord:
        """Persist ``record`` with sensitive detail keys masked.

        The record is durable when this returns; storage errors propagate.
        """
        details = redact_sensitive_fields(record.details or {})
        stored = replace(record, details=details if isinstance(details, dict) else {})
        self._store.insert_audit(stored)
        logger.info(
            "Audit record written audit_id=%s user=%s action=%s success=%s",
            stored.audit_id,
            stored.user_id,
            stored.action,
            stored.success,
        )
        return stored

    def log_action(
        self,
        user_id: str,
        action: str,
        *,
        success: bool,
        sheet_id: str | None = None,
        sheet_name: str | None = None,
        details: dict[str, Any] | None = None,
        error_message: str | None = None,
        execution_time_ms: int | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditRecord:
        return self.record(
            AuditRecord(
                audit_id=uuid.uuid4().hex,
                user_id=user_id,
                action=action,
                success=success,
                created_at=to_iso(self._clock()),
                sheet_id=sheet_id,
                sheet_name=sheet_name,
                details=details or {},
                error_message=error_message,
                execution_time_ms=execution_time_ms,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )

    def list_for_user(
        self,
        user_id: str,
        *,
        limit: int = 100,
        offset: int = 0,
        action: str | None = None,
        sheet_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[AuditRecord]:
        return self._store.list_audit(
            user_id=user_id,
            action=action,
            sheet_id=sheet_id,
            since=to_iso(since) if since else None,
            until=to_iso(until) if until else None,
            limit=limit,
            offset=offset,
        )

    def list_for_sheet(self, sheet_id: str, user_id: str, limit: int = 50) -> list[AuditRecord]:
        return self._store.list_audit(user_id=user_id, sheet_id=sheet_id, limit=limit)

    def stats_for_user(
        self,
        user_id: str,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> dict[str, object]:
        return self._store.audit_counts(
            user_id,
            since=to_iso(since) if since else None,
            until=to_iso(until) if until else None,
        )

    def cleanup_old(self, days_to_keep: int | None = None) -> int:
        """Delete records older than the retention window; returns the count."""
        days = self._retention_days if days_to_keep is None else days_to_keep
        cutoff = self._clock() - timedelta(days=days)
        deleted = self._store.delete_audit_before(to_iso(cutoff))
        logger.info("Old audit records cleaned up deleted=%d cutoff=%s", deleted, to_iso(cutoff))
        return deleted
