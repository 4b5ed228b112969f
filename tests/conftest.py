"""
Shared fixtures: a fresh SQLite replica per test and a RealmService over it.
"""

import sqlite3
import tempfile
from pathlib import Path

import pytest

from marketdb.realm_core.service import RealmService
from marketdb.realm_core.storage import LocalStore


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def store(data_dir):
    """Initialized local store (WAL off for temp dirs)."""
    local = LocalStore(Path(data_dir) / "market.db", wal_mode=False)
    local.initialize()
    return local


@pytest.fixture
def service(store):
    return RealmService(store)


@pytest.fixture
def register(service):
    """Register a user and return their UserContext."""

    def _register(email, name, user_id=None):
        user = service.users.register(email, name, user_id=user_id)
        return service.users.context_for(user.id)

    return _register


@pytest.fixture
def ann(register):
    return register("ann@example.com", "Ann", user_id="ann")


@pytest.fixture
def bob(register):
    return register("bob@example.com", "Bob", user_id="bob")


class RollbackFailingConnection:
    """sqlite3 connection wrapper whose ROLLBACK always fails."""

    def __init__(self, conn):
        self._conn = conn

    def execute(self, sql, *args):
        if sql.strip().upper() == "ROLLBACK":
            raise sqlite3.OperationalError("disk I/O error")
        return self._conn.execute(sql, *args)

    def __getattr__(self, name):
        return getattr(self._conn, name)


@pytest.fixture
def rollback_fails(monkeypatch):
    """Make every ROLLBACK on new connections fail like a broken disk."""
    original_connect = LocalStore._connect
    monkeypatch.setattr(
        LocalStore, "_connect", lambda self: RollbackFailingConnection(original_connect(self))
    )
