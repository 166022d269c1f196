"""SQLite storage adapter.

Implements the history, decision and routing-directory ports on one SQLite
database. A fresh connection is opened per call, so methods are safe to run
from worker threads.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from core.errors import HistoryUnavailableError
from core.models import (
    CategorizationDecision,
    DestinationChannel,
    HistoryEntry,
    IssueCategory,
    Message,
    RoutingAttempt,
    RoutingRule,
    SEVERITIES,
)


def _utc(value: datetime) -> str:
    """Serialize timestamps in UTC so ISO strings compare chronologically."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _split(value: Optional[str]) -> tuple[str, ...]:
    return tuple(json.loads(value)) if value else ()


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the store and directory ports."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - messages: triaged message history with decided sentiment
        - decisions: append-only categorization log, one row per message
        - channels: destination channels (seeded from config.json)
        - routing_rules: rules with accumulated delivery counters
        - issue_categories: keyword lists mapped to departments
        - routing_attempts: append-only delivery log
        """

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    body TEXT NOT NULL,
                    sender_id TEXT NOT NULL,
                    sender_name TEXT,
                    chat_id TEXT NOT NULL,
                    chat_name TEXT,
                    timestamp TIMESTAMP NOT NULL,
                    sentiment TEXT
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_sender ON messages (sender_id, timestamp)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages (chat_id, timestamp)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS decisions (
                    message_id TEXT PRIMARY KEY,
                    category TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    escalation_score REAL NOT NULL,
                    sentiment TEXT,
                    intent TEXT,
                    flagged INTEGER NOT NULL,
                    flag_reason TEXT,
                    applied_rules TEXT,
                    business_context TEXT,
                    oracle_failed INTEGER NOT NULL DEFAULT 0,
                    emergency_fallback INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS channels (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    department TEXT NOT NULL,
                    priority_level INTEGER NOT NULL DEFAULT 3,
                    is_active INTEGER NOT NULL DEFAULT 1
                )
                """
            )
            # Counters survive re-seeding; only the rule definition is upserted.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS routing_rules (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    target_channel_id TEXT NOT NULL,
                    categories TEXT,
                    keywords TEXT,
                    severities TEXT,
                    priority INTEGER NOT NULL DEFAULT 5,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    total_routed INTEGER NOT NULL DEFAULT 0,
                    successful_routes INTEGER NOT NULL DEFAULT 0,
                    failed_routes INTEGER NOT NULL DEFAULT 0,
                    success_rate REAL NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS issue_categories (
                    name TEXT PRIMARY KEY,
                    department TEXT NOT NULL,
                    keywords TEXT NOT NULL,
                    auto_route INTEGER NOT NULL DEFAULT 1
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS routing_attempts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    message_id TEXT NOT NULL,
                    channel_id TEXT NOT NULL,
                    rule_id TEXT,
                    success INTEGER NOT NULL,
                    error TEXT,
                    retry_count INTEGER NOT NULL,
                    metadata TEXT,
                    created_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_attempts_channel ON routing_attempts (channel_id, created_at)"
            )

    # Seeding

    def seed_channels(self, channels: Iterable[DestinationChannel]) -> int:
        count = 0
        with self._connect() as conn:
            for channel in channels:
                conn.execute(
                    """
                    INSERT INTO channels (id, name, department, priority_level, is_active)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        department = excluded.department,
                        priority_level = excluded.priority_level,
                        is_active = excluded.is_active
                    """,
                    (channel.id, channel.name, channel.department, channel.priority_level, int(channel.is_active)),
                )
                count += 1
        return count

    def seed_rules(self, rules: Iterable[RoutingRule]) -> int:
        count = 0
        with self._connect() as conn:
            for rule in rules:
                conn.execute(
                    """
                    INSERT INTO routing_rules (
                        id, name, target_channel_id, categories, keywords, severities, priority, is_active
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        target_channel_id = excluded.target_channel_id,
                        categories = excluded.categories,
                        keywords = excluded.keywords,
                        severities = excluded.severities,
                        priority = excluded.priority,
                        is_active = excluded.is_active
                    """,
                    (
                        rule.id,
                        rule.name,
                        rule.target_channel_id,
                        json.dumps(list(rule.categories)),
                        json.dumps(list(rule.keywords), ensure_ascii=False),
                        json.dumps(list(rule.severities)),
                        rule.priority,
                        int(rule.is_active),
                    ),
                )
                count += 1
        return count

    def seed_issue_categories(self, categories: Iterable[IssueCategory]) -> int:
        count = 0
        with self._connect() as conn:
            for category in categories:
                conn.execute(
                    """
                    INSERT INTO issue_categories (name, department, keywords, auto_route)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(name) DO UPDATE SET
                        department = excluded.department,
                        keywords = excluded.keywords,
                        auto_route = excluded.auto_route
                    """,
                    (
                        category.name,
                        category.department,
                        json.dumps(list(category.keywords), ensure_ascii=False),
                        int(category.auto_route),
                    ),
                )
                count += 1
        return count

    # History

    def record_message(self, message: Message, sentiment: Optional[str]) -> None:
        """Insert a message into history; re-recording the same id is a no-op."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO messages (
                    id, body, sender_id, sender_name, chat_id, chat_name, timestamp, sentiment
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message.id,
                    message.body,
                    message.sender_id,
                    message.sender_name,
                    message.chat_id,
                    message.chat_name,
                    _utc(message.timestamp),
                    sentiment,
                ),
            )

    def _recent(self, column: str, value: str, since: datetime, limit: int) -> list[HistoryEntry]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"""
                    SELECT id, body, sender_id, chat_id, timestamp, sentiment
                    FROM messages
                    WHERE {column} = ? AND timestamp >= ?
                    ORDER BY timestamp DESC
                    LIMIT ?
                    """,
                    (value, _utc(since), limit),
                ).fetchall()
        except sqlite3.Error as exc:
            raise HistoryUnavailableError(f"History query failed: {exc}", {column: value}) from exc
        return [
            HistoryEntry(
                id=row["id"],
                body=row["body"],
                sender_id=row["sender_id"],
                chat_id=row["chat_id"],
                timestamp=datetime.fromisoformat(row["timestamp"]),
                sentiment=row["sentiment"],
            )
            for row in rows
        ]

    def recent_by_sender(self, sender_id: str, since: datetime, limit: int) -> list[HistoryEntry]:
        return self._recent("sender_id", sender_id, since, limit)

    def recent_by_chat(self, chat_id: str, since: datetime, limit: int) -> list[HistoryEntry]:
        return self._recent("chat_id", chat_id, since, limit)

    def cleanup_messages(self, retention_days: int) -> int:
        """Delete history older than the retention horizon and return the count."""

        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM messages WHERE timestamp < ?", (_utc(cutoff),))
            return cur.rowcount

    # Decisions

    def save_decision(self, message_id: str, decision: CategorizationDecision) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO decisions (
                    message_id, category, confidence, escalation_score, sentiment, intent, flagged,
                    flag_reason, applied_rules, business_context, oracle_failed, emergency_fallback, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message_id,
                    decision.category.value,
                    decision.confidence,
                    decision.escalation_score,
                    decision.sentiment,
                    decision.intent,
                    int(decision.flagging_decision),
                    decision.flag_reason,
                    json.dumps(list(decision.applied_rules)),
                    json.dumps(decision.business_context, ensure_ascii=False, default=str),
                    int(decision.oracle_failed),
                    int(decision.emergency_fallback),
                    _utc(datetime.now(timezone.utc)),
                ),
            )

    def has_decision(self, message_id: str) -> bool:
        with self._connect() as conn:
            row = conn.execute("SELECT 1 FROM decisions WHERE message_id = ?", (message_id,)).fetchone()
        return row is not None

    def get_decision(self, message_id: str) -> Optional[dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM decisions WHERE message_id = ?", (message_id,)).fetchone()
        if row is None:
            return None
        payload = dict(row)
        payload["applied_rules"] = json.loads(payload["applied_rules"] or "[]")
        payload["business_context"] = json.loads(payload["business_context"] or "{}")
        payload["flagged"] = bool(payload["flagged"])
        return payload

    # Routing directory

    def list_active_rules(self) -> list[RoutingRule]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM routing_rules WHERE is_active = 1 ORDER BY priority ASC, id ASC"
            ).fetchall()
        return [
            RoutingRule(
                id=row["id"],
                name=row["name"],
                target_channel_id=row["target_channel_id"],
                categories=_split(row["categories"]),
                keywords=_split(row["keywords"]),
                severities=_split(row["severities"]) or SEVERITIES,
                priority=row["priority"],
                is_active=bool(row["is_active"]),
                total_routed=row["total_routed"],
                successful_routes=row["successful_routes"],
                failed_routes=row["failed_routes"],
            )
            for row in rows
        ]

    def list_active_channels(self, department: Optional[str] = None) -> list[DestinationChannel]:
        query = "SELECT * FROM channels WHERE is_active = 1"
        params: tuple[Any, ...] = ()
        if department is not None:
            query += " AND department = ?"
            params = (department,)
        query += " ORDER BY priority_level ASC, id ASC"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            DestinationChannel(
                id=row["id"],
                name=row["name"],
                department=row["department"],
                priority_level=row["priority_level"],
                is_active=bool(row["is_active"]),
            )
            for row in rows
        ]

    def list_issue_categories(self) -> list[IssueCategory]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM issue_categories ORDER BY name ASC").fetchall()
        return [
            IssueCategory(
                name=row["name"],
                department=row["department"],
                keywords=_split(row["keywords"]),
                auto_route=bool(row["auto_route"]),
            )
            for row in rows
        ]

    def update_rule_stats(self, rule_id: str, success: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE routing_rules SET
                    total_routed = total_routed + 1,
                    successful_routes = successful_routes + ?,
                    failed_routes = failed_routes + ?,
                    success_rate = CAST(successful_routes + ? AS REAL) / (total_routed + 1)
                WHERE id = ?
                """,
                (int(success), int(not success), int(success), rule_id),
            )

    def save_routing_attempt(self, attempt: RoutingAttempt) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO routing_attempts (
                    message_id, channel_id, rule_id, success, error, retry_count, metadata, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    attempt.message_id,
                    attempt.channel_id,
                    attempt.rule_id,
                    int(attempt.success),
                    attempt.error,
                    attempt.retry_count,
                    json.dumps(attempt.metadata, default=str),
                    _utc(datetime.now(timezone.utc)),
                ),
            )

    def count_deliveries_since(self, channel_id: str, since: datetime) -> int:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total FROM routing_attempts
                WHERE channel_id = ? AND success = 1 AND created_at >= ?
                """,
                (channel_id, _utc(since)),
            ).fetchone()
        return int(row["total"])

    def list_routing_attempts(self, message_id: str) -> list[RoutingAttempt]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM routing_attempts WHERE message_id = ? ORDER BY id ASC",
                (message_id,),
            ).fetchall()
        return [
            RoutingAttempt(
                message_id=row["message_id"],
                channel_id=row["channel_id"],
                rule_id=row["rule_id"],
                success=bool(row["success"]),
                error=row["error"],
                retry_count=row["retry_count"],
                metadata=json.loads(row["metadata"] or "{}"),
            )
            for row in rows
        ]

    def message_report(self, message_id: str) -> Optional[dict[str, Any]]:
        """Stored decision plus every delivery attempt, for the inspect command."""

        decision = self.get_decision(message_id)
        attempts = self.list_routing_attempts(message_id)
        if decision is None and not attempts:
            return None
        return {
            "message_id": message_id,
            "decision": decision,
            "routing_attempts": [
                {
                    "channel_id": attempt.channel_id,
                    "rule_id": attempt.rule_id,
                    "success": attempt.success,
                    "error": attempt.error,
                    "retry_count": attempt.retry_count,
                    **attempt.metadata,
                }
                for attempt in attempts
            ],
        }
