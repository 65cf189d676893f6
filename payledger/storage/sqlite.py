import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Tuple

from payledger.core.canon import canonical_json_str, load_json
from . import StorageBackend


class SQLiteStorage(StorageBackend):
    """
    SQLite persistent key-value storage for ledger state.

    The connection is shared across threads, so one RLock guards every
    statement. A transaction holds it from BEGIN to COMMIT/ROLLBACK; other
    threads using this object wait and never read uncommitted rows.
    """

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            env_path = os.environ.get("LEDGER_DB_PATH")
            db_path = env_path if env_path else Path.cwd() / "payledger.db"

        self.db_path = Path(db_path)

        # Ensure the entire parent directory tree exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.db_path = self.db_path.resolve()

        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._in_tx = False
        self._connect()

    def _connect(self):
        # autocommit; transactions are opened explicitly
        self._conn = sqlite3.connect(
            str(self.db_path), isolation_level=None, check_same_thread=False
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_schema()

    def _create_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                namespace   TEXT    NOT NULL,
                key         TEXT    NOT NULL,
                value_json  TEXT    NOT NULL,
                PRIMARY KEY (namespace, key)
            )
        """)

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Storage connection is closed")
        return self._conn

    def get(self, namespace: str, key: str) -> Optional[dict]:
        with self._lock:
            row = self.conn.execute(
                "SELECT value_json FROM kv WHERE namespace = ? AND key = ?",
                (namespace, key)
            ).fetchone()
        return load_json(row[0]) if row else None

    def put(self, namespace: str, key: str, value: dict) -> None:
        with self._lock:
            self.conn.execute(
                "INSERT OR REPLACE INTO kv (namespace, key, value_json) VALUES (?, ?, ?)",
                (namespace, key, canonical_json_str(value))
            )

    def contains(self, namespace: str, key: str) -> bool:
        with self._lock:
            row = self.conn.execute(
                "SELECT 1 FROM kv WHERE namespace = ? AND key = ?",
                (namespace, key)
            ).fetchone()
        return row is not None

    def iter_items(self, namespace: str) -> Iterator[Tuple[str, dict]]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT key, value_json FROM kv WHERE namespace = ? ORDER BY key ASC",
                (namespace,)
            ).fetchall()
        for key, value_json in rows:
            yield key, load_json(value_json)

    def count(self, namespace: str) -> int:
        with self._lock:
            cursor = self.conn.execute(
                "SELECT COUNT(*) FROM kv WHERE namespace = ?",
                (namespace,)
            )
            return cursor.fetchone()[0]

    @contextmanager
    def transaction(self):
        with self._lock:
            if self._in_tx:
                # nested in this thread: the outer block owns the commit
                yield self
                return
            conn = self.conn
            conn.execute("BEGIN IMMEDIATE")
            self._in_tx = True
            try:
                yield self
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")
            finally:
                self._in_tx = False

    def close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
