"""SQLite access layer for conversations, audit records and rollback plans."""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Iterable, Mapping, Sequence

from voice_sheets.domain.conversation import ConversationState
from voice_sheets.storage.models import (
    AuditRecord,
    Conversation,
    Message,
    RollbackAction,
    TransitionRecord,
)
from voice_sheets.utils.serialization import dumps

_SqlValue = str | bytes | int | float | None
_SqlParams = Sequence[_SqlValue] | Mapping[str, _SqlValue]


class SqliteStore:
    def __init__(self, path: str, wal: bool = True) -> None:
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._closed = False
        if wal:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                conversation_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                sheet_id TEXT,
                state TEXT NOT NULL,
                title TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                ended_at TEXT
            );

            CREATE TABLE IF NOT EXISTS conversation_transitions (
                transition_id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                previous_state TEXT NOT NULL,
                new_state TEXT NOT NULL,
                reason TEXT,
                forced INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                FOREIGN KEY(conversation_id) REFERENCES conversations(conversation_id)
                    ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS messages (
                message_id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                transcript TEXT,
                intent TEXT,
                dry_run TEXT,
                executed INTEGER NOT NULL DEFAULT 0,
                execution_error TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY(conversation_id) REFERENCES conversations(conversation_id)
                    ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS audit_log (
                audit_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                action TEXT NOT NULL,
                sheet_id TEXT,
                sheet_name TEXT,
                details TEXT NOT NULL,
                success INTEGER NOT NULL,
                error_message TEXT,
                execution_time_ms INTEGER,
                ip_address TEXT,
                user_agent TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS rollback_actions (
                rollback_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                action_id TEXT NOT NULL,
                sheet_id TEXT NOT NULL,
                undo_action TEXT NOT NULL,
                undo_data TEXT NOT NULL,
                executed INTEGER NOT NULL DEFAULT 0,
                claimed_at TEXT,
                executed_at TEXT,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_conversations_user ON conversations(user_id, updated_at);
            CREATE INDEX IF NOT EXISTS idx_conversations_state_updated
                ON conversations(state, updated_at);
            CREATE INDEX IF NOT EXISTS idx_transitions_conversation
                ON conversation_transitions(conversation_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_messages_conversation
                ON messages(conversation_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_audit_user_created ON audit_log(user_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_audit_sheet_created ON audit_log(sheet_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_rollback_user_open
                ON rollback_actions(user_id, executed, expires_at);
            """
        )
        self._conn.commit()

    def execute(
        self,
        query: str,
        params: _SqlParams,
    ) -> int:
        with self._lock:
            cursor = self._conn.execute(query, params)
            self._conn.commit()
            return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True

    def fetch_one(
        self,
        query: str,
        params: _SqlParams,
    ) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchone()

    def fetch_all(
        self,
        query: str,
        params: _SqlParams,
    ) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.execute(query, params)
            return cur.fetchall()

    # -- conversations -------------------------------------------------

    def create_conversation(self, conversation: Conversation) -> None:
        self.execute(
            """
            INSERT INTO conversations (
                conversation_id, user_id, sheet_id, state, title,
                created_at, updated_at, ended_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                conversation.conversation_id,
                conversation.user_id,
                conversation.sheet_id,
                conversation.state.value,
                conversation.title,
                conversation.created_at,
                conversation.updated_at,
                conversation.ended_at,
            ),
        )

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        row = self.fetch_one(
            "SELECT * FROM conversations WHERE conversation_id = ?", (conversation_id,)
        )
        return _conversation(row) if row is not None else None

    def get_active_conversation(self, user_id: str) -> Conversation | None:
        row = self.fetch_one(
            "SELECT * FROM conversations WHERE user_id = ? AND ended_at IS NULL "
            "ORDER BY updated_at DESC LIMIT 1",
            (user_id,),
        )
        return _conversation(row) if row is not None else None

    def list_conversations(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> list[Conversation]:
        rows = self.fetch_all(
            "SELECT * FROM conversations WHERE user_id = ? "
            "ORDER BY updated_at DESC LIMIT ? OFFSET ?",
            (user_id, limit, offset),
        )
        return [_conversation(row) for row in rows]

    def count_conversations(self, user_id: str) -> int:
        row = self.fetch_one(
            "SELECT COUNT(*) AS n FROM conversations WHERE user_id = ?", (user_id,)
        )
        return int(row["n"]) if row is not None else 0

    def end_conversation(self, conversation_id: str, ended_at: str) -> bool:
        return (
            self.execute(
                "UPDATE conversations SET ended_at = ?, updated_at = ? "
                "WHERE conversation_id = ? AND ended_at IS NULL",
                (ended_at, ended_at, conversation_id),
            )
            == 1
        )

    def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        return (
            self.execute(
                "DELETE FROM conversations WHERE conversation_id = ? AND user_id = ?",
                (conversation_id, user_id),
            )
            == 1
        )

    def update_conversation_sheet(
        self, conversation_id: str, sheet_id: str | None, updated_at: str
    ) -> bool:
        return (
            self.execute(
                "UPDATE conversations SET sheet_id = ?, updated_at = ? WHERE conversation_id = ?",
                (sheet_id, updated_at, conversation_id),
            )
            == 1
        )

    def compare_and_set_state(
        self,
        conversation_id: str,
        expected: ConversationState,
        new_state: ConversationState,
        updated_at: str,
    ) -> bool:
        """Move a live conversation from ``expected`` to ``new_state``.

        Returns True only if this caller observed ``expected`` and won; a
        concurrent writer that moved the row first makes this a no-op.
        """
        return (
            self.execute(
                "UPDATE conversations SET state = ?, updated_at = ? "
                "WHERE conversation_id = ? AND state = ? AND ended_at IS NULL",
                (new_state.value, updated_at, conversation_id, expected.value),
            )
            == 1
        )

    def force_state(
        self, conversation_id: str, new_state: ConversationState, updated_at: str
    ) -> ConversationState | None:
        """Unconditionally set the state; returns the previous state."""
        with self._lock:
            row = self._conn.execute(
                "SELECT state FROM conversations WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
            if row is None:
                return None
            self._conn.execute(
                "UPDATE conversations SET state = ?, updated_at = ? WHERE conversation_id = ?",
                (new_state.value, updated_at, conversation_id),
            )
            self._conn.commit()
            return ConversationState(row["state"])

    def move_stale_conversations(
        self,
        cutoff: str,
        settled: Iterable[ConversationState],
        target: ConversationState,
        updated_at: str,
    ) -> list[tuple[str, ConversationState]]:
        """Move unsettled conversations idle since before ``cutoff`` to ``target``.

        Each row is moved with its own conditional update so rows another
        instance already moved are skipped. Returns (id, previous state) pairs.
        """
        settled_values = [state.value for state in settled]
        placeholders = ",".join("?" for _ in settled_values)
        moved: list[tuple[str, ConversationState]] = []
        with self._lock:
            rows = self._conn.execute(
                f"SELECT conversation_id, state FROM conversations "
                f"WHERE state NOT IN ({placeholders}) AND updated_at < ? AND ended_at IS NULL",
                (*settled_values, cutoff),
            ).fetchall()
            for row in rows:
                cursor = self._conn.execute(
                    "UPDATE conversations SET state = ?, updated_at = ? "
                    "WHERE conversation_id = ? AND state = ? AND updated_at < ?",
                    (target.value, updated_at, row["conversation_id"], row["state"], cutoff),
                )
                if cursor.rowcount == 1:
                    moved.append((row["conversation_id"], ConversationState(row["state"])))
            self._conn.commit()
        return moved

    def count_states(self, user_id: str) -> dict[str, int]:
        rows = self.fetch_all(
            "SELECT state, COUNT(*) AS n FROM conversations WHERE user_id = ? GROUP BY state",
            (user_id,),
        )
        return {row["state"]: int(row["n"]) for row in rows}

    def add_transition(self, record: TransitionRecord) -> None:
        self.execute(
            """
            INSERT INTO conversation_transitions (
                conversation_id, previous_state, new_state, reason, forced, created_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.conversation_id,
                record.previous_state.value,
                record.new_state.value,
                record.reason,
                int(record.forced),
                record.created_at,
            ),
        )

    def list_transitions(self, conversation_id: str, limit: int = 100) -> list[TransitionRecord]:
        rows = self.fetch_all(
            "SELECT * FROM conversation_transitions WHERE conversation_id = ? "
            "ORDER BY transition_id ASC LIMIT ?",
            (conversation_id, limit),
        )
        return [
            TransitionRecord(
                transition_id=row["transition_id"],
                conversation_id=row["conversation_id"],
                previous_state=ConversationState(row["previous_state"]),
                new_state=ConversationState(row["new_state"]),
                reason=row["reason"],
                forced=bool(row["forced"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    # -- messages ------------------------------------------------------

    def add_message(self, message: Message) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO messages (
                    message_id, conversation_id, role, content, transcript,
                    intent, dry_run, executed, execution_error, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message.message_id,
                    message.conversation_id,
                    message.role,
                    message.content,
                    message.transcript,
                    dumps(message.intent) if message.intent is not None else None,
                    dumps(message.dry_run) if message.dry_run is not None else None,
                    int(message.executed),
                    message.execution_error,
                    message.created_at,
                ),
            )
            self._conn.execute(
                "UPDATE conversations SET updated_at = ? WHERE conversation_id = ?",
                (message.created_at, message.conversation_id),
            )
            self._conn.commit()

    def list_messages(self, conversation_id: str, limit: int = 100) -> list[Message]:
        rows = self.fetch_all(
            "SELECT * FROM messages WHERE conversation_id = ? "
            "ORDER BY created_at ASC, rowid ASC LIMIT ?",
            (conversation_id, limit),
        )
        return [
            Message(
                message_id=row["message_id"],
                conversation_id=row["conversation_id"],
                role=row["role"],
                content=row["content"],
                transcript=row["transcript"],
                intent=_json(row["intent"]),
                dry_run=_json(row["dry_run"]),
                executed=bool(row["executed"]),
                execution_error=row["execution_error"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    # -- audit log -----------------------------------------------------

    def insert_audit(self, record: AuditRecord) -> None:
        self.execute(
            """
            INSERT INTO audit_log (
                audit_id, user_id, action, sheet_id, sheet_name, details, success,
                error_message, execution_time_ms, ip_address, user_agent, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.audit_id,
                record.user_id,
                record.action,
                record.sheet_id,
                record.sheet_name,
                dumps(record.details),
                int(record.success),
                record.error_message,
                record.execution_time_ms,
                record.ip_address,
                record.user_agent,
                record.created_at,
            ),
        )

    def list_audit(
        self,
        *,
        user_id: str | None = None,
        sheet_id: str | None = None,
        action: str | None = None,
        since: str | None = None,
        until: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditRecord]:
        clauses: list[str] = []
        params: list[_SqlValue] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if sheet_id is not None:
            clauses.append("sheet_id = ?")
            params.append(sheet_id)
        if action is not None:
            clauses.append("action = ?")
            params.append(action)
        if since is not None:
            clauses.append("created_at >= ?")
            params.append(since)
        if until is not None:
            clauses.append("created_at <= ?")
            params.append(until)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.fetch_all(
            f"SELECT * FROM audit_log {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return [_audit(row) for row in rows]

    def audit_counts(
        self, user_id: str, since: str | None = None, until: str | None = None
    ) -> dict[str, object]:
        range_clause = ""
        params: tuple[_SqlValue, ...] = (user_id,)
        if since is not None:
            range_clause += " AND created_at >= ?"
            params += (since,)
        if until is not None:
            range_clause += " AND created_at <= ?"
            params += (until,)
        totals = self.fetch_one(
            "SELECT COUNT(*) AS total, COALESCE(SUM(success), 0) AS successful, "
            "AVG(execution_time_ms) AS avg_ms "
            f"FROM audit_log WHERE user_id = ?{range_clause}",
            params,
        )
        by_action = self.fetch_all(
            "SELECT action, COUNT(*) AS n FROM audit_log "
            f"WHERE user_id = ?{range_clause} GROUP BY action ORDER BY n DESC",
            params,
        )
        total = int(totals["total"]) if totals is not None else 0
        successful = int(totals["successful"]) if totals is not None else 0
        avg_ms = totals["avg_ms"] if totals is not None else None
        return {
            "total": total,
            "successful": successful,
            "failed": total - successful,
            "average_execution_time_ms": round(float(avg_ms), 2) if avg_ms is not None else None,
            "by_action": {row["action"]: int(row["n"]) for row in by_action},
        }

    def delete_audit_before(self, cutoff: str) -> int:
        return self.execute("DELETE FROM audit_log WHERE created_at < ?", (cutoff,))

    # -- rollback actions ----------------------------------------------

    def insert_rollback(self, action: RollbackAction) -> None:
        self.execute(
            """
            INSERT INTO rollback_actions (
                rollback_id, user_id, action_id, sheet_id, undo_action, undo_data,
                executed, claimed_at, executed_at, created_at, expires_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                action.rollback_id,
                action.user_id,
                action.action_id,
                action.sheet_id,
                action.undo_action,
                dumps(action.undo_data),
                int(action.executed),
                action.claimed_at,
                action.executed_at,
                action.created_at,
                action.expires_at,
            ),
        )

    def get_rollback(self, rollback_id: str) -> RollbackAction | None:
        row = self.fetch_one(
            "SELECT * FROM rollback_actions WHERE rollback_id = ?", (rollback_id,)
        )
        return _rollback(row) if row is not None else None

    def find_open_rollback(self, rollback_id: str, user_id: str) -> RollbackAction | None:
        row = self.fetch_one(
            "SELECT * FROM rollback_actions "
            "WHERE rollback_id = ? AND user_id = ? AND executed = 0",
            (rollback_id, user_id),
        )
        return _rollback(row) if row is not None else None

    def claim_rollback(
        self, rollback_id: str, user_id: str, now: str, lease_cutoff: str
    ) -> bool:
        """Atomically claim an unexecuted, unexpired rollback for execution.

        A claim older than ``lease_cutoff`` is treated as abandoned and may be
        taken over. Returns True if this caller won the claim.
        """
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE rollback_actions SET claimed_at = ? "
                "WHERE rollback_id = ? AND user_id = ? AND executed = 0 "
                "AND expires_at >= ? AND (claimed_at IS NULL OR claimed_at < ?)",
                (now, rollback_id, user_id, now, lease_cutoff),
            )
            self._conn.commit()
            return cursor.rowcount == 1

    def release_rollback_claim(self, rollback_id: str, claimed_at: str) -> bool:
        return (
            self.execute(
                "UPDATE rollback_actions SET claimed_at = NULL "
                "WHERE rollback_id = ? AND claimed_at = ? AND executed = 0",
                (rollback_id, claimed_at),
            )
            == 1
        )

    def mark_rollback_executed(self, rollback_id: str, executed_at: str) -> bool:
        return (
            self.execute(
                "UPDATE rollback_actions SET executed = 1, executed_at = ? "
                "WHERE rollback_id = ? AND executed = 0",
                (executed_at, rollback_id),
            )
            == 1
        )

    def list_open_rollbacks(self, user_id: str, now: str, limit: int = 10) -> list[RollbackAction]:
        rows = self.fetch_all(
            "SELECT * FROM rollback_actions "
            "WHERE user_id = ? AND executed = 0 AND expires_at > ? "
            "ORDER BY created_at DESC LIMIT ?",
            (user_id, now, limit),
        )
        return [_rollback(row) for row in rows]

    def rollback_counts(self, user_id: str, now: str) -> dict[str, int]:
        row = self.fetch_one(
            """
            SELECT
                COALESCE(SUM(CASE WHEN executed = 0 AND expires_at > ? THEN 1 ELSE 0 END), 0)
                    AS available,
                COALESCE(SUM(CASE WHEN executed = 1 THEN 1 ELSE 0 END), 0) AS executed,
                COALESCE(SUM(CASE WHEN expires_at <= ? THEN 1 ELSE 0 END), 0) AS expired
            FROM rollback_actions WHERE user_id = ?
            """,
            (now, now, user_id),
        )
        if row is None:
            return {"available": 0, "executed": 0, "expired": 0}
        return {
            "available": int(row["available"]),
            "executed": int(row["executed"]),
            "expired": int(row["expired"]),
        }

    def delete_expired_rollbacks(self, now: str) -> int:
        return self.execute("DELETE FROM rollback_actions WHERE expires_at < ?", (now,))


def _json(text: str | None) -> dict | None:
    if text is None:
        return None
    return json.loads(text)


def _conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        conversation_id=row["conversation_id"],
        user_id=row["user_id"],
        sheet_id=row["sheet_id"],
        state=ConversationState(row["state"]),
        title=row["title"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        ended_at=row["ended_at"],
    )


def _audit(row: sqlite3.Row) -> AuditRecord:
    return AuditRecord(
        audit_id=row["audit_id"],
        user_id=row["user_id"],
        action=row["action"],
        sheet_id=row["sheet_id"],
        sheet_name=row["sheet_name"],
        details=json.loads(row["details"]),
        success=bool(row["success"]),
        error_message=row["error_message"],
        execution_time_ms=row["execution_time_ms"],
        ip_address=row["ip_address"],
        user_agent=row["user_agent"],
        created_at=row["created_at"],
    )


def _rollback(row: sqlite3.Row) -> RollbackAction:
    return RollbackAction(
        rollback_id=row["rollback_id"],
        user_id=row["user_id"],
        action_id=row["action_id"],
        sheet_id=row["sheet_id"],
        undo_action=row["undo_action"],
        undo_data=json.loads(row["undo_data"]),
        executed=bool(row["executed"]),
        claimed_at=row["claimed_at"],
        executed_at=row["executed_at"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
    )
