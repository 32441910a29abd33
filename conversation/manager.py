"""
Conversation Context Manager — SQLite-backed.

Responsibility:
- Store command/response turns per session_id
- Serve a rolling window (last 10 turns, 30 minute retention)
- Summarize recent turns for model prompts
- Resolve "more"/"same" style references against the last successful turn

Performance:
- Persistent SQLite connection (no reconnect per query)
- WAL mode for concurrent reads

Prohibitions:
- Never alters dialogue state
- Never executes actions
"""

import json
import re
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from registry.action_registry import ACTION_REGISTRY, ActionRegistry

MAX_MESSAGES = 10
RETENTION = timedelta(minutes=30)
SUMMARY_MESSAGES = 3

_STOCK_VERBS = re.compile(r"\b(add|put|receive|use|take|remove|got|have|count)\b")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationManager:
    """SQLite-backed conversation context with persistent connection."""

    def __init__(
        self,
        db_path: str = "conversations.db",
        registry: ActionRegistry = ACTION_REGISTRY,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db_path = db_path
        self.registry = registry
        self._clock = clock
        # One connection for the manager lifetime
        self._conn = sqlite3.connect(
            db_path,
            check_same_thread=False,
            isolation_level="DEFERRED",
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._init_db()

    def _init_db(self) -> None:
        """Create tables if they don't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS conversation_turns (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                command TEXT NOT NULL,
                response TEXT NOT NULL DEFAULT '',
                action TEXT,
                parameters TEXT DEFAULT '{}',
                success INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_turns_session_id
            ON conversation_turns(session_id)
        """)
        self._conn.commit()

    def save_turn(
        self,
        session_id: str,
        command: str,
        response: str = "",
        action: str | None = None,
        parameters: dict[str, Any] | None = None,
        success: bool = False,
    ) -> None:
        """Persist one turn and prune anything outside the retention window."""
        now = self._clock()
        self._conn.execute(
            """INSERT INTO conversation_turns
               (session_id, command, response, action, parameters, success, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                session_id,
                command,
                response,
                action,
                json.dumps(parameters or {}, default=str),
                int(success),
                now.isoformat(timespec="microseconds"),
            ),
        )
        self._conn.execute(
            "DELETE FROM conversation_turns WHERE session_id = ? AND created_at <= ?",
            (session_id, (now - RETENTION).isoformat(timespec="microseconds")),
        )
        self._conn.commit()

    def get_history(self, session_id: str, limit: int = MAX_MESSAGES) -> list[dict]:
        """Recent turns within the retention window, oldest first."""
        cutoff = (self._clock() - RETENTION).isoformat(timespec="microseconds")
        rows = self._conn.execute(
            """SELECT command, response, action, parameters, success, created_at
               FROM conversation_turns
               WHERE session_id = ? AND created_at > ?
               ORDER BY id DESC
               LIMIT ?""",
            (session_id, cutoff, min(limit, MAX_MESSAGES)),
        ).fetchall()

        return [
            {
                "command": row["command"],
                "response": row["response"],
                "action": row["action"],
                "parameters": json.loads(row["parameters"] or "{}"),
                "success": bool(row["success"]),
                "created_at": row["created_at"],
            }
            for row in reversed(rows)
        ]

    def last_values(self, session_id: str) -> dict[str, Any]:
        """lastItem / lastLocation / lastQuantity from successful turns in the window."""
        values: dict[str, Any] = {}
        for turn in self.get_history(session_id):
            if not turn["success"] or not turn["action"]:
                continue
            params = turn["parameters"]
            for source, target in (("item", "lastItem"), ("location", "lastLocation"), ("quantity", "lastQuantity")):
                if params.get(source):
                    values[target] = params[source]
        return values

    def get_context_summary(self, session_id: str) -> str:
        history = self.get_history(session_id)
        recent = history[-SUMMARY_MESSAGES:]
        if not recent:
            return "No recent context."

        lines = [
            f'- "{turn["command"]}" -> {turn["action"] or "unknown"} {json.dumps(turn["parameters"]) if turn["parameters"] else "no params"}'
            for turn in recent
        ]
        summary = "Recent commands:\n" + "\n".join(lines)
        last = self.last_values(session_id)
        if last.get("lastItem"):
            summary += f"\n\nLast item: {last['lastItem']}"
        if last.get("lastLocation"):
            summary += f"\nLast location: {last['lastLocation']}"
        return summary

    def resolve_contextual_references(
        self,
        session_id: str,
        command: str,
        action: str,
        parameters: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Fill gaps from the previous successful turn.
        "5 more" / "same thing" reuse the last item; a stock verb reuses the
        last location, but only for actions that declare a location field.
        """
        lower = command.lower()
        last = self.last_values(session_id)
        resolved = dict(parameters)

        if not parameters.get("item") and last.get("lastItem") and ("more" in lower or "same" in lower):
            resolved["item"] = last["lastItem"]

        descriptor = self.registry.get(action)
        takes_location = descriptor is not None and "location" in descriptor.fields
        if (
            takes_location
            and not parameters.get("location")
            and last.get("lastLocation")
            and _STOCK_VERBS.search(lower)
        ):
            resolved["location"] = last["lastLocation"]

        return resolved

    def clear_session(self, session_id: str) -> None:
        """Clear all history for a session."""
        self._conn.execute("DELETE FROM conversation_turns WHERE session_id = ?", (session_id,))
        self._conn.commit()

    def close(self) -> None:
        """Close the persistent connection."""
        self._conn.close()
