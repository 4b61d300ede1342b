"""SQLite storage for user context facts."""

import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from .models import Fact, FactCategory

_COLUMNS = (
    "id, user_id, key, value, category, confidence, source_conversation_id, "
    "last_mentioned, created_at, updated_at"
)

# Newest first; rowid breaks ties between facts mentioned in the same instant
_RECENCY = "ORDER BY last_mentioned DESC, rowid DESC"


def _timestamp(moment: datetime | None = None) -> str:
    """Render a moment as a sortable UTC ISO timestamp."""
    if moment is None:
        moment = datetime.now(timezone.utc)
    elif moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _category_value(category: str) -> str:
    if isinstance(category, FactCategory):
        return category.value
    return category


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class UserContextStore:
    """Persistent per-user fact storage using SQLite.

    Facts are unique per (user_id, key); saving an existing key updates
    the fact in place. Every list query returns the most recently
    mentioned facts first.

    Errors from SQLite propagate to the caller. A category outside
    FactCategory is rejected by a CHECK constraint with
    sqlite3.IntegrityError.
    """

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
        return self._conn

    def init_db(self) -> None:
        """Create the user_context table if it doesn't exist."""
        categories = ", ".join(f"'{c.value}'" for c in FactCategory)
        conn = self._get_connection()
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS user_context (
                id                      TEXT PRIMARY KEY,
                user_id                 TEXT NOT NULL,
                key                     TEXT NOT NULL,
                value                   TEXT NOT NULL,
                category                TEXT NOT NULL CHECK (category IN ({categories})),
                confidence              INTEGER NOT NULL DEFAULT 100,
                source_conversation_id  TEXT,
                last_mentioned          TEXT NOT NULL,
                created_at              TEXT NOT NULL,
                updated_at              TEXT NOT NULL,
                UNIQUE(user_id, key)
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_user_context_recency "
            "ON user_context(user_id, last_mentioned)"
        )
        conn.commit()

    def upsert(
        self,
        user_id: str,
        key: str,
        value: str,
        category: str,
        confidence: int = 100,
        source_conversation_id: str | None = None,
        mentioned_at: datetime | None = None,
    ) -> Fact:
        """Create a fact or update the existing one with the same key.

        Args:
            user_id: Owner of the fact.
            key: Fact key, unique per user.
            value: The fact content.
            category: One of the FactCategory values.
            confidence: Estimate of correctness, 0-100.
            source_conversation_id: Conversation the fact came from.
            mentioned_at: When the fact was mentioned, defaults to now.

        Returns:
            The stored fact.
        """
        now = _timestamp()
        mentioned = _timestamp(mentioned_at) if mentioned_at else now
        conn = self._get_connection()
        cursor = conn.execute(
            f"""
            INSERT INTO user_context (
                id, user_id, key, value, category, confidence,
                source_conversation_id, last_mentioned, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, key) DO UPDATE SET
                value = excluded.value,
                category = excluded.category,
                confidence = excluded.confidence,
                source_conversation_id = COALESCE(
                    excluded.source_conversation_id, source_conversation_id
                ),
                last_mentioned = excluded.last_mentioned,
                updated_at = excluded.updated_at
            RETURNING {_COLUMNS}
            """,
            (
                uuid.uuid4().hex,
                user_id,
                key,
                value,
                _category_value(category),
                int(confidence),
                source_conversation_id,
                mentioned,
                now,
                now,
            ),
        )
        row = cursor.fetchone()
        conn.commit()
        return self._row_to_fact(row)

    def upsert_many(self, user_id: str, facts: list[dict[str, Any]]) -> list[Fact]:
        """Upsert several facts for a user.

        Args:
            user_id: Owner of the facts.
            facts: Dicts with key, value, category and optionally
                confidence and source_conversation_id.

        Returns:
            The stored facts, in input order.
        """
        return [
            self.upsert(
                user_id,
                fact["key"],
                fact["value"],
                fact["category"],
                confidence=fact.get("confidence", 100),
                source_conversation_id=fact.get("source_conversation_id"),
            )
            for fact in facts
        ]

    def list_by_user(self, user_id: str) -> list[Fact]:
        """Get all facts of a user, most recently mentioned first."""
        return self._select(f"WHERE user_id = ? {_RECENCY}", (user_id,))

    def list_by_category(self, user_id: str, category: str) -> list[Fact]:
        """Get a user's facts in one category, most recently mentioned first."""
        return self._select(
            f"WHERE user_id = ? AND category = ? {_RECENCY}",
            (user_id, _category_value(category)),
        )

    def list_recent(self, user_id: str, limit: int) -> list[Fact]:
        """Get a user's `limit` most recently mentioned facts."""
        return self._select(f"WHERE user_id = ? {_RECENCY} LIMIT ?", (user_id, limit))

    def search_by_keywords(
        self, user_id: str, keywords: list[str], limit: int = 10
    ) -> list[Fact]:
        """Find facts whose value contains any of the keywords.

        Matching is a case-insensitive substring match. With no keywords,
        the most recent facts are returned instead.

        Args:
            user_id: Owner of the facts.
            keywords: Terms to look for in fact values.
            limit: Maximum number of facts to return.

        Returns:
            Matching facts, most recently mentioned first.
        """
        if not keywords:
            return self.list_recent(user_id, limit)

        conditions = " OR ".join(["LOWER(value) LIKE ? ESCAPE '\\'"] * len(keywords))
        params = [f"%{_escape_like(k.lower())}%" for k in keywords]
        return self._select(
            f"WHERE user_id = ? AND ({conditions}) {_RECENCY} LIMIT ?",
            (user_id, *params, limit),
        )

    def get_by_key(self, user_id: str, key: str) -> Fact | None:
        """Get a user's fact by key."""
        facts = self._select("WHERE user_id = ? AND key = ?", (user_id, key))
        return facts[0] if facts else None

    def count(self, user_id: str) -> int:
        """Count a user's facts."""
        conn = self._get_connection()
        cursor = conn.execute(
            "SELECT COUNT(*) FROM user_context WHERE user_id = ?", (user_id,)
        )
        return cursor.fetchone()[0]

    def prune_oldest(self, user_id: str, keep_count: int) -> int:
        """Delete all but the keep_count most recently mentioned facts.

        Args:
            user_id: Owner of the facts.
            keep_count: Number of facts to keep.

        Returns:
            Number of facts deleted, 0 if already within the limit.
        """
        if keep_count < 0:
            raise ValueError("keep_count must not be negative")

        conn = self._get_connection()
        cursor = conn.execute(
            f"""
            DELETE FROM user_context
            WHERE user_id = ? AND id IN (
                SELECT id FROM user_context
                WHERE user_id = ? {_RECENCY}
                LIMIT -1 OFFSET ?
            )
            """,
            (user_id, user_id, keep_count),
        )
        conn.commit()
        return cursor.rowcount

    def delete_one(self, user_id: str, fact_id: str) -> bool:
        """Delete a user's fact by its id.

        Returns:
            True if a fact was deleted, False otherwise.
        """
        conn = self._get_connection()
        cursor = conn.execute(
            "DELETE FROM user_context WHERE id = ? AND user_id = ?",
            (fact_id, user_id),
        )
        conn.commit()
        return cursor.rowcount > 0

    def list_stale(
        self, user_id: str, days_old: int, now: datetime | None = None
    ) -> list[Fact]:
        """Get facts not mentioned in the last days_old days, oldest first."""
        reference = now or datetime.now(timezone.utc)
        cutoff = _timestamp(reference - timedelta(days=days_old))
        return self._select(
            "WHERE user_id = ? AND last_mentioned < ? ORDER BY last_mentioned ASC",
            (user_id, cutoff),
        )

    def touch(self, fact_id: str) -> bool:
        """Mark a fact as mentioned now.

        Returns:
            True if the fact exists.
        """
        conn = self._get_connection()
        cursor = conn.execute(
            "UPDATE user_context SET last_mentioned = ? WHERE id = ?",
            (_timestamp(), fact_id),
        )
        conn.commit()
        return cursor.rowcount > 0

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _select(self, clause: str, params: tuple[Any, ...]) -> list[Fact]:
        conn = self._get_connection()
        cursor = conn.execute(f"SELECT {_COLUMNS} FROM user_context {clause}", params)
        return [self._row_to_fact(row) for row in cursor.fetchall()]

    def _row_to_fact(self, row: sqlite3.Row) -> Fact:
        """Convert a database row to a Fact."""
        return Fact(
            id=row["id"],
            user_id=row["user_id"],
            key=row["key"],
            value=row["value"],
            category=row["category"],
            confidence=row["confidence"],
            source_conversation_id=row["source_conversation_id"],
            last_mentioned=row["last_mentioned"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
