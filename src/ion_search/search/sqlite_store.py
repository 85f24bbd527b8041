"""SQLite-backed implementation of the store contract.

Keeps sets, sorted sets and hashes in three clustered tables so a single
file can hold an application's whole search index without a separate
server:

- WAL mode with NORMAL synchronous for write throughput
- WITHOUT ROWID tables keyed by (key, member) for clustered lookups
- One connection guarded by a lock; every operation is its own transaction

Expiry uses wall-clock deadlines in ``key_expiry`` and is enforced lazily:
expired keys are purged at the start of each operation.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
import logging
from pathlib import Path
import sqlite3
import threading
import time

from ion_search.errors import StoreError


logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS set_members (
        key TEXT NOT NULL,
        member TEXT NOT NULL,
        PRIMARY KEY (key, member)
    ) WITHOUT ROWID
    """,
    """
    CREATE TABLE IF NOT EXISTS zset_members (
        key TEXT NOT NULL,
        member TEXT NOT NULL,
        score REAL NOT NULL,
        PRIMARY KEY (key, member)
    ) WITHOUT ROWID
    """,
    "CREATE INDEX IF NOT EXISTS idx_zset_score ON zset_members (key, score)",
    """
    CREATE TABLE IF NOT EXISTS hash_fields (
        key TEXT NOT NULL,
        field TEXT NOT NULL,
        value TEXT NOT NULL,
        PRIMARY KEY (key, field)
    ) WITHOUT ROWID
    """,
    """
    CREATE TABLE IF NOT EXISTS key_expiry (
        key TEXT PRIMARY KEY,
        expires_at REAL NOT NULL
    ) WITHOUT ROWID
    """,
    "CREATE INDEX IF NOT EXISTS idx_key_expiry_deadline ON key_expiry (expires_at)",
)

_DATA_TABLES = ("set_members", "zset_members", "hash_fields")


def apply_write_pragmas(
    conn: sqlite3.Connection,
    *,
    cache_size_kb: int = -16384,
    busy_timeout_ms: int = 30000,
) -> None:
    """Apply write-optimized PRAGMAs."""
    conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute(f"PRAGMA cache_size = {cache_size_kb}")
    conn.execute("PRAGMA temp_store = MEMORY")


class SqliteStore:
    """``Store`` persisted in a SQLite database file (or ``":memory:"``)."""

    def __init__(self, db_path: Path | str, *, clock: Callable[[], float] = time.time) -> None:
        self.db_path = str(db_path)
        self._clock = clock
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
            apply_write_pragmas(self._conn)
            for statement in _SCHEMA:
                self._conn.execute(statement)
        except sqlite3.Error as exc:
            msg = f"Failed to open SQLite store at {self.db_path}: {exc}"
            raise StoreError(msg) from exc
        logger.debug("Opened SQLite store at %s", self.db_path)

    def close(self) -> None:
        with self._lock:
            try:
                self._conn.close()
            except sqlite3.Error as exc:
                logger.warning("Error closing SQLite store %s: %s", self.db_path, exc)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                try:
                    self._purge_expired(self._conn)
                    yield self._conn
                except BaseException:
                    self._conn.execute("ROLLBACK")
                    raise
                self._conn.execute("COMMIT")
            except sqlite3.Error as exc:
                raise StoreError(f"SQLite store operation failed: {exc}") from exc

    def _purge_expired(self, conn: sqlite3.Connection) -> int:
        now = self._clock()
        expired = [row[0] for row in conn.execute("SELECT key FROM key_expiry WHERE expires_at <= ?", (now,))]
        for key in expired:
            self._drop(conn, key)
        return len(expired)

    @staticmethod
    def _drop(conn: sqlite3.Connection, key: str) -> bool:
        removed = 0
        for table in _DATA_TABLES:
            removed += conn.execute(f"DELETE FROM {table} WHERE key = ?", (key,)).rowcount  # noqa: S608
        conn.execute("DELETE FROM key_expiry WHERE key = ?", (key,))
        return removed > 0

    @staticmethod
    def _exists(conn: sqlite3.Connection, key: str) -> bool:
        for table in _DATA_TABLES:
            if conn.execute(f"SELECT 1 FROM {table} WHERE key = ? LIMIT 1", (key,)).fetchone():  # noqa: S608
                return True
        return False

    @staticmethod
    def _members(conn: sqlite3.Connection, key: str) -> set[str]:
        return {row[0] for row in conn.execute("SELECT member FROM set_members WHERE key = ?", (key,))}

    def _replace_set(self, conn: sqlite3.Connection, destination: str, members: set[str]) -> int:
        self._drop(conn, destination)
        conn.executemany(
            "INSERT INTO set_members (key, member) VALUES (?, ?)",
            ((destination, member) for member in members),
        )
        return len(members)

    def purge_expired(self) -> int:
        """Drop every expired key now; returns how many were removed."""
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                purged = self._purge_expired(self._conn)
                self._conn.execute("COMMIT")
            except sqlite3.Error as exc:
                self._conn.execute("ROLLBACK")
                raise StoreError(f"SQLite store operation failed: {exc}") from exc
        return purged

    # -- sets --------------------------------------------------------------

    def sadd(self, key: str, *members: str) -> int:
        with self._transaction() as conn:
            before = conn.total_changes
            conn.executemany(
                "INSERT OR IGNORE INTO set_members (key, member) VALUES (?, ?)",
                ((key, member) for member in members),
            )
            return conn.total_changes - before

    def srem(self, key: str, *members: str) -> int:
        with self._transaction() as conn:
            before = conn.total_changes
            conn.executemany(
                "DELETE FROM set_members WHERE key = ? AND member = ?",
                ((key, member) for member in members),
            )
            removed = conn.total_changes - before
            if not self._exists(conn, key):
                conn.execute("DELETE FROM key_expiry WHERE key = ?", (key,))
            return removed

    def smembers(self, key: str) -> set[str]:
        with self._transaction() as conn:
            return self._members(conn, key)

    def sismember(self, key: str, member: str) -> bool:
        with self._transaction() as conn:
            row = conn.execute("SELECT 1 FROM set_members WHERE key = ? AND member = ?", (key, member)).fetchone()
            return row is not None

    def scard(self, key: str) -> int:
        with self._transaction() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM set_members WHERE key = ?", (key,)).fetchone()[0])

    def sunionstore(self, destination: str, *keys: str) -> int:
        with self._transaction() as conn:
            result: set[str] = set()
            for key in keys:
                result |= self._members(conn, key)
            return self._replace_set(conn, destination, result)

    def sinterstore(self, destination: str, *keys: str) -> int:
        with self._transaction() as conn:
            sources = [self._members(conn, key) for key in keys]
            result = set.intersection(*sources) if sources else set()
            return self._replace_set(conn, destination, set(result))

    # -- sorted sets -------------------------------------------------------

    def zadd(self, key: str, mapping: Mapping[str, float]) -> int:
        with self._transaction() as conn:
            added = 0
            for member, score in mapping.items():
                exists = conn.execute(
                    "SELECT 1 FROM zset_members WHERE key = ? AND member = ?", (key, member)
                ).fetchone()
                if exists is None:
                    added += 1
                conn.execute(
                    "INSERT OR REPLACE INTO zset_members (key, member, score) VALUES (?, ?, ?)",
                    (key, member, float(score)),
                )
            return added

    def zrem(self, key: str, *members: str) -> int:
        with self._transaction() as conn:
            before = conn.total_changes
            conn.executemany(
                "DELETE FROM zset_members WHERE key = ? AND member = ?",
                ((key, member) for member in members),
            )
            removed = conn.total_changes - before
            if not self._exists(conn, key):
                conn.execute("DELETE FROM key_expiry WHERE key = ?", (key,))
            return removed

    def zscore(self, key: str, member: str) -> float | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT score FROM zset_members WHERE key = ? AND member = ?", (key, member)
            ).fetchone()
            return float(row[0]) if row else None

    def zrangebyscore(
        self,
        key: str,
        minimum: float | None = None,
        maximum: float | None = None,
        *,
        min_exclusive: bool = False,
        max_exclusive: bool = False,
    ) -> list[str]:
        clauses = ["key = ?"]
        params: list[object] = [key]
        if minimum is not None:
            clauses.append("score > ?" if min_exclusive else "score >= ?")
            params.append(float(minimum))
        if maximum is not None:
            clauses.append("score < ?" if max_exclusive else "score <= ?")
            params.append(float(maximum))
        query = f"SELECT member FROM zset_members WHERE {' AND '.join(clauses)} ORDER BY score, member"  # noqa: S608
        with self._transaction() as conn:
            return [row[0] for row in conn.execute(query, params)]

    # -- hashes ------------------------------------------------------------

    def hset(self, key: str, field: str, value: str) -> int:
        with self._transaction() as conn:
            exists = conn.execute("SELECT 1 FROM hash_fields WHERE key = ? AND field = ?", (key, field)).fetchone()
            conn.execute(
                "INSERT OR REPLACE INTO hash_fields (key, field, value) VALUES (?, ?, ?)",
                (key, field, value),
            )
            return 0 if exists else 1

    def hget(self, key: str, field: str) -> str | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT value FROM hash_fields WHERE key = ? AND field = ?", (key, field)).fetchone()
            return row[0] if row else None

    def hmget(self, key: str, fields: Iterable[str]) -> list[str | None]:
        wanted = list(fields)
        with self._transaction() as conn:
            values = dict(conn.execute("SELECT field, value FROM hash_fields WHERE key = ?", (key,)))
        return [values.get(field) for field in wanted]

    def hdel(self, key: str, *fields: str) -> int:
        with self._transaction() as conn:
            before = conn.total_changes
            conn.executemany(
                "DELETE FROM hash_fields WHERE key = ? AND field = ?",
                ((key, field) for field in fields),
            )
            removed = conn.total_changes - before
            if not self._exists(conn, key):
                conn.execute("DELETE FROM key_expiry WHERE key = ?", (key,))
            return removed

    def hgetall(self, key: str) -> dict[str, str]:
        with self._transaction() as conn:
            return dict(conn.execute("SELECT field, value FROM hash_fields WHERE key = ?", (key,)))

    # -- keys --------------------------------------------------------------

    def exists(self, key: str) -> bool:
        with self._transaction() as conn:
            return self._exists(conn, key)

    def delete(self, *keys: str) -> int:
        with self._transaction() as conn:
            return sum(1 for key in keys if self._drop(conn, key))

    def expire(self, key: str, seconds: int) -> bool:
        with self._transaction() as conn:
            if not self._exists(conn, key):
                return False
            if seconds <= 0:
                self._drop(conn, key)
                return True
            conn.execute(
                "INSERT OR REPLACE INTO key_expiry (key, expires_at) VALUES (?, ?)",
                (key, self._clock() + seconds),
            )
            return True

    def ttl(self, key: str) -> float | None:
        with self._transaction() as conn:
            if not self._exists(conn, key):
                return None
            row = conn.execute("SELECT expires_at FROM key_expiry WHERE key = ?", (key,)).fetchone()
            if row is None:
                return None
            return max(float(row[0]) - self._clock(), 0.0)
