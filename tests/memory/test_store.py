"""Tests for UserContextStore."""

import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from continuum.memory import FactCategory, UserContextStore

BASE_TIME = datetime(2020, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def store(tmp_path: Path) -> UserContextStore:
    """Create a UserContextStore with a temporary database."""
    db_path = tmp_path / "test_memory.db"
    store = UserContextStore(db_path)
    store.init_db()
    yield store
    store.close()


def add(store: UserContextStore, key: str, minutes: int, user_id: str = "u1",
        category: str = "technical", value: str | None = None):
    """Store a fact mentioned `minutes` after BASE_TIME."""
    return store.upsert(
        user_id,
        key,
        value or f"valor {key}",
        category,
        mentioned_at=BASE_TIME + timedelta(minutes=minutes),
    )


class TestUserContextStoreInit:
    """Tests for store initialization."""

    def test_creates_db_directory(self, tmp_path: Path):
        nested_path = tmp_path / "nested" / "dir" / "memory.db"
        store = UserContextStore(nested_path)
        store.init_db()
        assert nested_path.exists()
        store.close()

    def test_creates_table_and_index(self, store: UserContextStore):
        conn = store._get_connection()
        names = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master").fetchall()
        }
        assert "user_context" in names
        assert "idx_user_context_recency" in names

    def test_init_db_idempotent(self, store: UserContextStore):
        store.init_db()
        store.init_db()  # Should not raise


class TestUserContextStoreUpsert:
    """Tests for creating and updating facts."""

    def test_insert_returns_fact(self, store: UserContextStore):
        fact = store.upsert(
            "u1", "personal_ana", "Se llama Ana", "personal", 90, "conv-1"
        )
        assert fact.id
        assert fact.user_id == "u1"
        assert fact.key == "personal_ana"
        assert fact.value == "Se llama Ana"
        assert fact.category == "personal"
        assert fact.confidence == 90
        assert fact.source_conversation_id == "conv-1"
        assert fact.last_mentioned is not None
        assert fact.created_at == fact.updated_at

    def test_accepts_category_enum(self, store: UserContextStore):
        fact = store.upsert("u1", "k", "Prefiere ejemplos", FactCategory.PREFERENCES)
        assert fact.category == "preferences"

    def test_same_key_updates_in_place(self, store: UserContextStore):
        """A second upsert for the same key keeps one record and refreshes it."""
        first = add(store, "stack", 0, value="Usa Flask")
        second = add(store, "stack", 5, value="Usa FastAPI")

        assert second.id == first.id
        assert second.value == "Usa FastAPI"
        assert second.created_at == first.created_at
        assert second.last_mentioned > first.last_mentioned
        assert store.count("u1") == 1

    def test_repeated_identical_upsert(self, store: UserContextStore):
        """Identical input twice leaves exactly one record, freshly mentioned."""
        first = store.upsert("u1", "k", "Usa Rust", "technical")
        second = store.upsert("u1", "k", "Usa Rust", "technical")

        assert store.count("u1") == 1
        assert second.id == first.id
        assert second.last_mentioned >= first.last_mentioned
        assert second.updated_at >= first.updated_at

    def test_same_key_different_users(self, store: UserContextStore):
        """Keys are unique per user only."""
        add(store, "stack", 0, user_id="u1")
        add(store, "stack", 0, user_id="u2")
        assert store.count("u1") == 1
        assert store.count("u2") == 1

    def test_keeps_source_when_update_has_none(self, store: UserContextStore):
        store.upsert("u1", "k", "Usa Rust", "technical", source_conversation_id="conv-1")
        updated = store.upsert("u1", "k", "Usa Rust", "technical")
        assert updated.source_conversation_id == "conv-1"

    def test_unknown_category_rejected(self, store: UserContextStore):
        """Categories outside the enum are a hard failure."""
        with pytest.raises(sqlite3.IntegrityError):
            store.upsert("u1", "k", "Algo raro", "hobbies")

    def test_upsert_many(self, store: UserContextStore):
        saved = store.upsert_many(
            "u1",
            [
                {"key": "a", "value": "Se llama Ana", "category": "personal"},
                {"key": "b", "value": "Usa Go", "category": "technical", "confidence": 70},
            ],
        )
        assert [f.key for f in saved] == ["a", "b"]
        assert saved[0].confidence == 100
        assert saved[1].confidence == 70


class TestUserContextStoreQueries:
    """Tests for listing and searching facts."""

    def test_list_by_user_recency_order(self, store: UserContextStore):
        add(store, "old", 0)
        add(store, "new", 10)
        add(store, "mid", 5)
        add(store, "other", 20, user_id="u2")

        assert [f.key for f in store.list_by_user("u1")] == ["new", "mid", "old"]

    def test_list_by_category(self, store: UserContextStore):
        add(store, "p1", 0, category="personal")
        add(store, "t1", 1)
        add(store, "p2", 2, category="personal")

        facts = store.list_by_category("u1", FactCategory.PERSONAL)
        assert [f.key for f in facts] == ["p2", "p1"]

    def test_list_recent(self, store: UserContextStore):
        for i in range(5):
            add(store, f"k{i}", i)
        assert [f.key for f in store.list_recent("u1", 2)] == ["k4", "k3"]

    def test_get_by_key(self, store: UserContextStore):
        add(store, "k", 0)
        assert store.get_by_key("u1", "k").key == "k"
        assert store.get_by_key("u1", "missing") is None
        assert store.get_by_key("u2", "k") is None

    def test_empty_user(self, store: UserContextStore):
        assert store.list_by_user("nobody") == []
        assert store.count("nobody") == 0


class TestUserContextStoreSearch:
    """Tests for keyword search."""

    def test_matches_any_keyword(self, store: UserContextStore):
        add(store, "a", 0, value="Usa React en el frontend")
        add(store, "b", 1, value="Su base de datos es Postgres")
        add(store, "c", 2, value="Vive en Lima")

        facts = store.search_by_keywords("u1", ["react", "postgres"])
        assert [f.key for f in facts] == ["b", "a"]

    def test_case_insensitive(self, store: UserContextStore):
        add(store, "a", 0, value="Usa TypeScript")
        assert len(store.search_by_keywords("u1", ["TYPESCRIPT"])) == 1

    def test_limit(self, store: UserContextStore):
        for i in range(5):
            add(store, f"k{i}", i, value=f"Usa docker {i}")
        facts = store.search_by_keywords("u1", ["docker"], limit=3)
        assert [f.key for f in facts] == ["k4", "k3", "k2"]

    def test_empty_keywords_returns_recent(self, store: UserContextStore):
        for i in range(5):
            add(store, f"k{i}", i)
        facts = store.search_by_keywords("u1", [], limit=2)
        assert [f.key for f in facts] == ["k4", "k3"]

    def test_wildcards_are_literal(self, store: UserContextStore):
        """LIKE wildcards in keywords match literally."""
        add(store, "a", 0, value="Cobertura del 100%")
        add(store, "b", 1, value="Usa snake_case")
        add(store, "c", 2, value="Usa camelCase")

        assert [f.key for f in store.search_by_keywords("u1", ["%"])] == ["a"]
        assert [f.key for f in store.search_by_keywords("u1", ["e_c"])] == ["b"]

    def test_scoped_to_user(self, store: UserContextStore):
        add(store, "a", 0, user_id="u2", value="Usa React")
        assert store.search_by_keywords("u1", ["react"]) == []


class TestUserContextStorePrune:
    """Tests for pruning and deletion."""

    def test_prune_keeps_most_recent(self, store: UserContextStore):
        for i in range(12):
            add(store, f"k{i}", i)

        deleted = store.prune_oldest("u1", 10)

        assert deleted == 2
        keys = {f.key for f in store.list_by_user("u1")}
        assert keys == {f"k{i}" for i in range(2, 12)}

    def test_prune_under_limit_noop(self, store: UserContextStore):
        for i in range(3):
            add(store, f"k{i}", i)
        assert store.prune_oldest("u1", 10) == 0
        assert store.count("u1") == 3

    def test_prune_to_zero(self, store: UserContextStore):
        add(store, "k", 0)
        assert store.prune_oldest("u1", 0) == 1
        assert store.count("u1") == 0

    def test_prune_scoped_to_user(self, store: UserContextStore):
        for i in range(3):
            add(store, f"k{i}", i)
            add(store, f"k{i}", i, user_id="u2")

        store.prune_oldest("u1", 1)

        assert store.count("u1") == 1
        assert store.count("u2") == 3

    def test_prune_negative_rejected(self, store: UserContextStore):
        with pytest.raises(ValueError):
            store.prune_oldest("u1", -1)

    def test_delete_one(self, store: UserContextStore):
        fact = add(store, "k", 0)
        assert store.delete_one("u1", fact.id)
        assert store.count("u1") == 0

    def test_delete_one_other_user(self, store: UserContextStore):
        """A user cannot delete another user's fact."""
        fact = add(store, "k", 0)
        assert not store.delete_one("u2", fact.id)
        assert store.count("u1") == 1

    def test_delete_nonexistent(self, store: UserContextStore):
        assert not store.delete_one("u1", "missing")


class TestUserContextStoreStaleness:
    """Tests for stale fact lookup and touching."""

    def test_list_stale(self, store: UserContextStore):
        add(store, "old", 0)
        add(store, "older", -60 * 24 * 10)
        add(store, "fresh", 60 * 24 * 25)

        now = BASE_TIME + timedelta(days=30)
        stale = store.list_stale("u1", 20, now=now)

        assert [f.key for f in stale] == ["older", "old"]

    def test_touch_refreshes_last_mentioned(self, store: UserContextStore):
        fact = add(store, "k", 0)
        assert store.touch(fact.id)
        assert store.get_by_key("u1", "k").last_mentioned > fact.last_mentioned

    def test_touch_missing(self, store: UserContextStore):
        assert not store.touch("missing")


class TestUserContextStoreLifecycle:
    """Tests for store lifecycle."""

    def test_close_and_reopen(self, tmp_path: Path):
        db_path = tmp_path / "memory.db"

        store1 = UserContextStore(db_path)
        store1.init_db()
        store1.upsert("u1", "k", "Usa Rust", "technical")
        store1.close()

        store2 = UserContextStore(db_path)
        store2.init_db()
        facts = store2.list_by_user("u1")
        store2.close()

        assert len(facts) == 1

    def test_close_idempotent(self, store: UserContextStore):
        store.close()
        store.close()  # Should not raise
