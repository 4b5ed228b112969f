"""
Unit tests for the local SQLite replica.

Tests cover:
- Row CRUD primitives
- Unique constraints
- Multi-valued category index
- Transactions (commit, rollback, isolation, rollback failure)
"""

import sqlite3
import tempfile
import threading
from pathlib import Path

import pytest

from marketdb.realm_core.errors import ConstraintViolation, RollbackError
from marketdb.realm_core.storage import LocalStore


class TestLocalStore:
    """Tests for LocalStore table primitives."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def store(self, data_dir):
        local = LocalStore(Path(data_dir) / "market.db", wal_mode=False)
        local.initialize()
        return local

    def test_initialize_is_idempotent(self, store):
        """Calling initialize twice keeps the schema."""
        store.initialize()
        assert store.db_path.exists()
        assert store.count("realms") == 0

    def test_insert_and_get(self, store):
        """Inserted rows come back whole."""
        store.insert(
            "realms",
            {"realm_id": "shop/acme", "type": "shop", "name": "Acme", "owner_user_id": "u1"},
        )

        row = store.get("realms", "shop/acme")
        assert row["name"] == "Acme"
        assert row["owner_user_id"] == "u1"
        assert store.get("realms", "shop/missing") is None

    def test_insert_duplicate_key(self, store):
        """Duplicate primary key raises ConstraintViolation."""
        row = {"realm_id": "shop/acme", "type": "shop", "name": "Acme", "owner_user_id": "u1"}
        store.insert("realms", row)

        with pytest.raises(ConstraintViolation):
            store.insert("realms", row)

    def test_unique_column_group(self, store):
        """members(realm_id, user_id) is unique."""
        store.insert("members", {"id": "m1", "realm_id": "shop/a", "user_id": "u1", "roles": []})

        with pytest.raises(ConstraintViolation) as exc_info:
            store.insert("members", {"id": "m2", "realm_id": "shop/a", "user_id": "u1", "roles": []})
        assert exc_info.value.code == "CONSTRAINT_VIOLATION"

    def test_insert_missing_key(self, store):
        with pytest.raises(ValueError):
            store.insert("realms", {"type": "shop"})

    def test_unknown_table(self, store):
        with pytest.raises(ValueError):
            store.get("nope", "x")

    def test_update_merges(self, store):
        """Update merges the patch into the stored record."""
        store.insert("stores", {"id": "s1", "name": "Acme", "realm_id": "shop/acme", "owner_user_id": "u1"})

        updated = store.update("stores", "s1", {"description": "Tools"})
        assert updated["name"] == "Acme"
        assert updated["description"] == "Tools"
        assert store.get("stores", "s1")["description"] == "Tools"

    def test_update_missing_returns_none(self, store):
        assert store.update("stores", "missing", {"name": "x"}) is None

    def test_update_cannot_change_key(self, store):
        store.insert("stores", {"id": "s1", "name": "Acme", "realm_id": "shop/acme", "owner_user_id": "u1"})
        with pytest.raises(ValueError):
            store.update("stores", "s1", {"id": "s2"})

    def test_delete(self, store):
        store.insert("stores", {"id": "s1", "name": "Acme", "realm_id": "shop/acme", "owner_user_id": "u1"})

        assert store.delete("stores", "s1") is True
        assert store.delete("stores", "s1") is False
        assert store.get("stores", "s1") is None

    def test_scan_with_filters_and_pagination(self, store):
        for i in range(5):
            store.insert(
                "members",
                {"id": f"m{i}", "realm_id": f"shop/{i}", "user_id": "u1" if i < 3 else "u2", "roles": []},
            )

        rows = store.scan("members", where={"user_id": "u1"})
        assert [r["id"] for r in rows] == ["m0", "m1", "m2"]

        page = store.scan("members", where={"user_id": "u1"}, limit=2, offset=1)
        assert [r["id"] for r in page] == ["m1", "m2"]
        assert store.count("members", where={"user_id": "u2"}) == 2

    def test_scan_rejects_unindexed_column(self, store):
        """Filters only run over declared columns."""
        with pytest.raises(ValueError):
            store.scan("members", where={"email": "a@b.c"})

    def test_multi_valued_index(self, store):
        """Category membership is queryable through the side table."""
        store.insert("products", {"id": "p1", "realm_id": "shop/a", "categories": ["food", "home"]})
        store.insert("products", {"id": "p2", "realm_id": "shop/a", "categories": ["food"]})

        assert {r["id"] for r in store.scan("products", contains="food")} == {"p1", "p2"}
        assert [r["id"] for r in store.scan("products", contains="home")] == ["p1"]

        store.update("products", "p1", {"categories": ["beauty"]})
        assert [r["id"] for r in store.scan("products", contains="beauty")] == ["p1"]
        assert store.scan("products", contains="home") == []

        store.delete("products", "p1")
        assert store.scan("products", contains="beauty") == []

    def test_contains_requires_multi_table(self, store):
        with pytest.raises(ValueError):
            store.scan("stores", contains="food")

    def test_stats(self, store):
        store.insert("stores", {"id": "s1", "name": "Acme", "realm_id": "shop/acme", "owner_user_id": "u1"})
        stats = store.stats()
        assert stats["stores"] == 1
        assert stats["products"] == 0


class TestTransactions:
    """Tests for LocalStore.transaction()."""

    @pytest.fixture
    def data_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def store(self, data_dir):
        local = LocalStore(Path(data_dir) / "market.db", wal_mode=False)
        local.initialize()
        return local

    def _realm(self, realm_id):
        return {"realm_id": realm_id, "type": "shop", "name": realm_id, "owner_user_id": "u1"}

    def test_commit(self, store):
        with store.transaction():
            store.insert("realms", self._realm("shop/a"))
            store.insert("realms", self._realm("shop/b"))
            assert store.in_transaction

        assert not store.in_transaction
        assert store.count("realms") == 2

    def test_rollback_on_exception(self, store):
        """An exception inside the block undoes every write in it."""
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.insert("realms", self._realm("shop/a"))
                assert store.get("realms", "shop/a") is not None
                raise RuntimeError("boom")

        assert store.get("realms", "shop/a") is None

    def test_nested_joins_outer(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                with store.transaction():
                    store.insert("realms", self._realm("shop/a"))
                raise RuntimeError("boom")

        assert store.count("realms") == 0

    def test_uncommitted_rows_invisible_to_other_threads(self, store):
        """A reader on another connection never sees a half-done transaction."""
        seen = {}
        inserted = threading.Event()
        checked = threading.Event()

        def reader():
            inserted.wait(5)
            seen["row"] = store.get("realms", "shop/a")
            checked.set()

        thread = threading.Thread(target=reader)
        thread.start()
        with store.transaction():
            store.insert("realms", self._realm("shop/a"))
            inserted.set()
            checked.wait(5)
        thread.join(5)

        assert seen["row"] is None
        assert store.get("realms", "shop/a") is not None

    def test_rollback_failure_raises_rollback_error(self, store, rollback_fails):
        """A failed ROLLBACK reports the block's exception as its cause."""
        with pytest.raises(RollbackError) as exc_info:
            with store.transaction():
                store.insert("realms", self._realm("shop/a"))
                raise RuntimeError("boom")

        error = exc_info.value
        assert isinstance(error.cause, RuntimeError)
        assert isinstance(error.__cause__, sqlite3.OperationalError)
        assert error.code == "ROLLBACK_FAILED"
        assert error.details["cause"] == "boom"

    def test_integrity_error_is_translated(self, store):
        store.insert("realms", self._realm("shop/a"))
        with pytest.raises(ConstraintViolation) as exc_info:
            with store.transaction():
                store.insert("realms", self._realm("shop/a"))
        assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)
