"""Conversation history and plan lookup used by the memory system.

Both are collaborators of the memory system: conversations feed fact
extraction, and the user's plan gates what memory features apply.
"""

import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from .memory.plans import Plan, resolve_plan

MESSAGE_ROLES = ("user", "assistant")


@dataclass
class Conversation:
    """A conversation and its messages, oldest message first."""

    id: str
    user_id: str
    title: str
    created_at: str
    updated_at: str
    messages: list[dict[str, Any]] = field(default_factory=list)


class ConversationSource(Protocol):
    """Anything that can load a user's conversation with its messages."""

    def get_conversation_with_messages(
        self, conversation_id: str, user_id: str
    ) -> Conversation | None:
        ...


class PlanResolver(Protocol):
    """Anything that can tell which plan a user is subscribed to."""

    def get_plan_name(self, user_id: str) -> str | None:
        ...


class StaticPlanResolver:
    """Resolves plans from a fixed user -> plan mapping.

    Users without an entry get the default plan.
    """

    def __init__(
        self,
        user_plans: dict[str, str] | None = None,
        default: Plan = Plan.FREE,
    ) -> None:
        self.user_plans = dict(user_plans or {})
        self.default = default

    def get_plan_name(self, user_id: str) -> str:
        plan = self.user_plans.get(user_id)
        if plan is None:
            return self.default.value
        return resolve_plan(plan).value


class ConversationStore:
    """SQLite storage for conversations and their messages."""

    def __init__(self, db_path: Path) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
        return self._conn

    def init_db(self) -> None:
        """Create the conversations and messages tables if needed."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS conversations (
                id          TEXT PRIMARY KEY,
                user_id     TEXT NOT NULL,
                title       TEXT NOT NULL DEFAULT '',
                created_at  TEXT NOT NULL,
                updated_at  TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id               INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id  TEXT NOT NULL
                    REFERENCES conversations(id) ON DELETE CASCADE,
                role             TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
                content          TEXT NOT NULL,
                created_at       TEXT NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_conversations_user "
            "ON conversations(user_id, updated_at)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_conversation "
            "ON messages(conversation_id)"
        )
        conn.commit()

    def create_conversation(self, user_id: str, title: str = "") -> Conversation:
        """Create an empty conversation for a user."""
        now = datetime.now(timezone.utc).isoformat()
        conversation = Conversation(
            id=uuid.uuid4().hex,
            user_id=user_id,
            title=title,
            created_at=now,
            updated_at=now,
        )
        conn = self._get_connection()
        conn.execute(
            "INSERT INTO conversations (id, user_id, title, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (conversation.id, user_id, title, now, now),
        )
        conn.commit()
        return conversation

    def add_message(self, conversation_id: str, role: str, content: str) -> None:
        """Append a message to a conversation.

        Raises:
            ValueError: If role is not 'user' or 'assistant'.
        """
        if role not in MESSAGE_ROLES:
            raise ValueError(f"Invalid message role: {role}")

        now = datetime.now(timezone.utc).isoformat()
        conn = self._get_connection()
        conn.execute(
            "INSERT INTO messages (conversation_id, role, content, created_at) "
            "VALUES (?, ?, ?, ?)",
            (conversation_id, role, content, now),
        )
        conn.execute(
            "UPDATE conversations SET updated_at = ? WHERE id = ?",
            (now, conversation_id),
        )
        conn.commit()

    def list_conversations(self, user_id: str) -> list[Conversation]:
        """List a user's conversations, most recently updated first (no messages)."""
        conn = self._get_connection()
        cursor = conn.execute(
            "SELECT id, user_id, title, created_at, updated_at FROM conversations "
            "WHERE user_id = ? ORDER BY updated_at DESC",
            (user_id,),
        )
        return [self._row_to_conversation(row) for row in cursor.fetchall()]

    def get_conversation_with_messages(
        self, conversation_id: str, user_id: str
    ) -> Conversation | None:
        """Load a conversation with its messages, scoped to its owner.

        Returns:
            The conversation, or None if it doesn't exist or belongs to
            another user.
        """
        conn = self._get_connection()
        row = conn.execute(
            "SELECT id, user_id, title, created_at, updated_at FROM conversations "
            "WHERE id = ? AND user_id = ?",
            (conversation_id, user_id),
        ).fetchone()
        if row is None:
            return None

        conversation = self._row_to_conversation(row)
        cursor = conn.execute(
            "SELECT role, content FROM messages WHERE conversation_id = ? ORDER BY id",
            (conversation_id,),
        )
        conversation.messages = [
            {"role": m["role"], "content": m["content"]} for m in cursor.fetchall()
        ]
        return conversation

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _row_to_conversation(self, row: sqlite3.Row) -> Conversation:
        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
