"""
Local replica SQLite store for the realm core.

This module is the storage collaborator that EntityStore, RealmRegistry and
MembershipIndex are built on. It provides durable table primitives:
- insert / get / update (PATCH merge) / delete by key
- scan over declared index columns, including multi-valued membership
- transaction() binding several primitives into one SQLite transaction

Replication with a remote store runs elsewhere; this store is the local
replica's latest known state.

Invariants:
    - One SQLite file per local replica
    - Every write outside transaction() is its own BEGIN IMMEDIATE transaction
    - Rows written inside transaction() are invisible to other connections
      until commit
    - Column names are checked against the table definition, never
      interpolated from caller input

How to change safely:
    - Schema changes must be additive (new tables, new nullable columns)
    - Bump SCHEMA_VERSION and add a migration step when the layout changes
    - Use transaction() for any multi-row change that must not be observed half done
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..config import StorageConfig
from ..errors import ConstraintViolation, RollbackError, StorageError
from ..schema import now_ms
from .tables import TABLES, TableDef

logger = logging.getLogger(__name__)


class LocalStore:
    """SQLite-backed table primitives for the local replica.

    Thread safety:
        Each operation opens its own connection unless the calling thread
        is inside transaction(), in which case that thread's bound
        connection is reused. SQLite serializes writers; WAL mode lets
        readers proceed during writes.

    Example:
        >>> store = LocalStore("/var/lib/marketdb/market.db")
        >>> store.initialize()
        >>> store.insert("realms", {"realm_id": "shop/acme", "type": "shop", ...})
        >>> with store.transaction():
        ...     store.insert("stores", {...})
        ...     store.insert("members", {...})
    """

    # SQLite schema version for migrations
    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str | Path,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -16000,
    ) -> None:
        """Initialize the local store.

        Args:
            db_path: SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self._local = threading.local()

    @classmethod
    def from_config(cls, config: StorageConfig) -> LocalStore:
        return cls(
            config.db_path,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
            cache_size_pages=config.cache_size_pages,
        )

    # ------------------------------------------------------------------
    # Connections and transactions
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
        if self.wal_mode:
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    @property
    def in_transaction(self) -> bool:
        """Whether the calling thread is inside transaction()."""
        return getattr(self._local, "conn", None) is not None

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        bound = getattr(self._local, "conn", None)
        if bound is not None:
            yield bound
            return

        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _write(self, table: str | None = None) -> Iterator[sqlite3.Connection]:
        """Connection for a single write, joined to the open transaction if any."""
        with self._get_connection() as conn:
            if self.in_transaction:
                with _translate_errors(table):
                    yield conn
                return

            with _translate_errors(table):
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run every primitive in the block as one SQLite transaction.

        Nested calls join the outer transaction.

        Raises:
            RollbackError: If the block failed and rolling back also failed.
                The block's exception is carried as RollbackError.cause.
        """
        if self.in_transaction:
            yield
            return

        conn = self._connect()
        try:
            with _translate_errors(None):
                conn.execute("BEGIN IMMEDIATE")
            self._local.conn = conn
            try:
                yield
            except BaseException as e:
                self._local.conn = None
                self._rollback(conn, e)
                raise
            self._local.conn = None
            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                failure = StorageError(f"Commit failed: {e}")
                self._rollback(conn, failure)
                raise failure from e
        finally:
            self._local.conn = None
            conn.close()

    def _rollback(self, conn: sqlite3.Connection, cause: BaseException | None = None) -> None:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error(f"Rollback failed on {self.db_path}: {e}")
            raise RollbackError(f"Rollback failed: {e}", cause=cause) from e

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        with self._get_connection() as conn:
            statements = ["""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at INTEGER NOT NULL
                );
            """]
            statements += [table.ddl() for table in TABLES.values()]
            statements.append(
                f"INSERT OR IGNORE INTO schema_version (version, applied_at) "
                f"VALUES ({self.SCHEMA_VERSION}, strftime('%s', 'now') * 1000);"
            )
            conn.executescript("\n".join(statements))
        logger.info(f"Initialized local store: {self.db_path}")

    # ------------------------------------------------------------------
    # Table primitives
    # ------------------------------------------------------------------

    def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a new row.

        Args:
            table: Table name
            row: Full record; must contain the table key

        Returns:
            The stored record

        Raises:
            ConstraintViolation: If the key or a unique column set is taken
        """
        tdef = _table(table)
        if not row.get(tdef.key):
            raise ValueError(f"Row for {table} is missing key '{tdef.key}'")

        now = now_ms()
        columns = [tdef.key, *tdef.columns, "payload_json", "created_at", "updated_at"]
        values = [row[tdef.key], *[_column_value(row.get(c)) for c in tdef.columns]]
        values += [json.dumps(row), now, now]

        with self._write(table) as conn:
            conn.execute(
                f"INSERT INTO {tdef.name} ({', '.join(columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)})",
                values,
            )
            if tdef.multi:
                self._write_multi(conn, tdef, row[tdef.key], row.get(tdef.multi) or [])

        logger.debug("Inserted row", extra={"table": table, "key": row[tdef.key]})
        return dict(row)

    def get(self, table: str, key: str) -> dict[str, Any] | None:
        """Get a row by key, or None."""
        tdef = _table(table)
        with self._get_connection() as conn, _translate_errors(table):
            cursor = conn.execute(
                f"SELECT payload_json FROM {tdef.name} WHERE {tdef.key} = ?",
                (key,),
            )
            row = cursor.fetchone()
        return json.loads(row["payload_json"]) if row else None

    def update(self, table: str, key: str, patch: dict[str, Any]) -> dict[str, Any] | None:
        """Merge patch into a row.

        Returns:
            Updated record or None if not found
        """
        tdef = _table(table)
        if tdef.key in patch and patch[tdef.key] != key:
            raise ValueError(f"Cannot change key '{tdef.key}' of {table} row {key}")

        with self._write(table) as conn:
            cursor = conn.execute(
                f"SELECT payload_json FROM {tdef.name} WHERE {tdef.key} = ?",
                (key,),
            )
            existing = cursor.fetchone()
            if not existing:
                return None

            payload = json.loads(existing["payload_json"])
            payload.update(patch)

            assignments = [f"{c} = ?" for c in tdef.columns]
            assignments += ["payload_json = ?", "updated_at = ?"]
            values = [_column_value(payload.get(c)) for c in tdef.columns]
            values += [json.dumps(payload), now_ms(), key]
            conn.execute(
                f"UPDATE {tdef.name} SET {', '.join(assignments)} WHERE {tdef.key} = ?",
                values,
            )
            if tdef.multi and tdef.multi in patch:
                self._write_multi(conn, tdef, key, payload.get(tdef.multi) or [])

        logger.debug("Updated row", extra={"table": table, "key": key})
        return payload

    def delete(self, table: str, key: str) -> bool:
        """Delete a row by key.

        Returns:
            True if deleted, False if not found
        """
        tdef = _table(table)
        with self._write(table) as conn:
            if tdef.multi:
                conn.execute(f"DELETE FROM {tdef.multi_table} WHERE {tdef.key} = ?", (key,))
            cursor = conn.execute(f"DELETE FROM {tdef.name} WHERE {tdef.key} = ?", (key,))
            deleted = cursor.rowcount > 0

        logger.debug("Deleted row", extra={"table": table, "key": key, "deleted": deleted})
        return deleted

    def scan(
        self,
        table: str,
        where: dict[str, Any] | None = None,
        contains: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Scan rows by equality on indexed columns.

        Args:
            table: Table name
            where: Column -> value equality filters (columns must be declared)
            contains: Value that the multi-valued field must include
            limit: Maximum rows to return
            offset: Pagination offset

        Returns:
            Records ordered by creation time
        """
        tdef = _table(table)
        query, params = self._select(tdef, "payload_json", where, contains)
        query += " ORDER BY t.created_at, t.rowid"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        with self._get_connection() as conn, _translate_errors(table):
            cursor = conn.execute(query, params)
            return [json.loads(row["payload_json"]) for row in cursor.fetchall()]

    def count(
        self,
        table: str,
        where: dict[str, Any] | None = None,
        contains: str | None = None,
    ) -> int:
        """Count rows matching the same filters as scan()."""
        tdef = _table(table)
        query, params = self._select(tdef, "COUNT(*)", where, contains)
        with self._get_connection() as conn, _translate_errors(table):
            return conn.execute(query, params).fetchone()[0]

    def stats(self) -> dict[str, int]:
        """Row counts for every table."""
        return {name: self.count(name) for name in TABLES}

    def _select(
        self,
        tdef: TableDef,
        what: str,
        where: dict[str, Any] | None,
        contains: str | None,
    ) -> tuple[str, list[Any]]:
        allowed = {tdef.key, *tdef.columns}
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (where or {}).items():
            if column not in allowed:
                raise ValueError(f"Column '{column}' is not indexed on {tdef.name}")
            clauses.append(f"t.{column} = ?")
            params.append(_column_value(value))

        query = f"SELECT {what} FROM {tdef.name} t"
        if contains is not None:
            if not tdef.multi:
                raise ValueError(f"Table {tdef.name} has no multi-valued index")
            query += f" JOIN {tdef.multi_table} m ON m.{tdef.key} = t.{tdef.key}"
            clauses.append("m.value = ?")
            params.append(contains)

        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        return query, params

    def _write_multi(
        self,
        conn: sqlite3.Connection,
        tdef: TableDef,
        key: str,
        values: list[str],
    ) -> None:
        conn.execute(f"DELETE FROM {tdef.multi_table} WHERE {tdef.key} = ?", (key,))
        for value in dict.fromkeys(values):
            conn.execute(
                f"INSERT INTO {tdef.multi_table} ({tdef.key}, value) VALUES (?, ?)",
                (key, value),
            )


def _table(name: str) -> TableDef:
    try:
        return TABLES[name]
    except KeyError:
        raise ValueError(f"Unknown table: {name}") from None


def _column_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float)):
        return value
    return str(value)


@contextmanager
def _translate_errors(table: str | None) -> Iterator[None]:
    """Map sqlite3 exceptions onto the storage error taxonomy."""
    try:
        yield
    except sqlite3.IntegrityError as e:
        raise ConstraintViolation(f"Constraint violated on {table}: {e}", table=table) from e
    except sqlite3.Error as e:
        raise StorageError(f"Storage failure on {table}: {e}", table=table) from e
