"""
Lockbox Storage - transactional, bucket-partitioned key/value file.

A vault file is a SQLite database holding named buckets of binary
key/value pairs. The connection runs in EXCLUSIVE locking mode, so the
file stays locked for as long as a Store is open and a second opener
fails instead of sharing it.

Usage:
    store = Store.open("secrets.lockbox")
    with store.update() as tx:
        tx.create_bucket_if_not_exists("lockbox")
        tx.put("lockbox", "/some/key", b"value")
    with store.view() as tx:
        value = tx.get("lockbox", "/some/key")
    store.close()
"""
import sqlite3
import logging
from pathlib import Path
from contextlib import contextmanager
from typing import Iterator, Optional, Union

from .exceptions import StorageError

logger = logging.getLogger("lockbox.storage")

Key = Union[str, bytes]

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS buckets (
        name TEXT PRIMARY KEY
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS entries (
        bucket TEXT NOT NULL REFERENCES buckets(name) ON DELETE CASCADE,
        key BLOB NOT NULL,
        value BLOB NOT NULL,
        PRIMARY KEY (bucket, key)
    ) WITHOUT ROWID
    """,
)

PRAGMAS = (
    "PRAGMA locking_mode=EXCLUSIVE",
    "PRAGMA synchronous=FULL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA secure_delete=ON",
)


def _key(key: Key) -> bytes:
    if isinstance(key, str):
        return key.encode("utf-8")
    return bytes(key)


def _prefix_end(prefix: bytes) -> Optional[bytes]:
    """Smallest key greater than every key starting with ``prefix``.

    None when no such bound exists (empty or all-0xff prefix).
    """
    stripped = prefix.rstrip(b"\xff")
    if not stripped:
        return None
    return stripped[:-1] + bytes((stripped[-1] + 1,))


class Transaction:
    """Bucket operations bound to one open transaction.

    Only valid inside the ``with`` block of :meth:`Store.update` or
    :meth:`Store.view`.
    """

    def __init__(self, conn: sqlite3.Connection, writable: bool):
        self._conn = conn
        self.writable = writable
        self.closed = False

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        if self.closed:
            raise StorageError("Transaction is closed")
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as err:
            raise StorageError(f"Storage operation failed: {err}") from err

    def _check_writable(self) -> None:
        if not self.writable:
            raise StorageError("Cannot write in a read-only transaction")

    def _require_bucket(self, name: str) -> None:
        if not self.bucket_exists(name):
            raise StorageError(f"Bucket {name!r} does not exist")

    def bucket_exists(self, name: str) -> bool:
        row = self._execute(
            "SELECT 1 FROM buckets WHERE name = ?", (name,)
        ).fetchone()
        return row is not None

    def create_bucket_if_not_exists(self, name: str) -> bool:
        """Create bucket ``name``. Returns True if it was created."""
        self._check_writable()
        if not name:
            raise StorageError("Bucket name cannot be empty")
        cur = self._execute(
            "INSERT OR IGNORE INTO buckets (name) VALUES (?)", (name,)
        )
        return cur.rowcount == 1

    def get(self, bucket: str, key: Key) -> Optional[bytes]:
        """Value stored at ``key`` or None."""
        self._require_bucket(bucket)
        row = self._execute(
            "SELECT value FROM entries WHERE bucket = ? AND key = ?",
            (bucket, _key(key)),
        ).fetchone()
        return bytes(row[0]) if row is not None else None

    def put(self, bucket: str, key: Key, value: bytes) -> None:
        """Store ``value`` at ``key``, replacing any previous value."""
        self._check_writable()
        self._require_bucket(bucket)
        self._execute(
            "INSERT OR REPLACE INTO entries (bucket, key, value) VALUES (?, ?, ?)",
            (bucket, _key(key), bytes(value)),
        )

    def delete(self, bucket: str, key: Key) -> bool:
        """Remove ``key``. Returns True if something was removed."""
        self._check_writable()
        self._require_bucket(bucket)
        cur = self._execute(
            "DELETE FROM entries WHERE bucket = ? AND key = ?",
            (bucket, _key(key)),
        )
        return cur.rowcount > 0

    def keys(self, bucket: str, prefix: Key = b"") -> list[bytes]:
        """Sorted keys of ``bucket`` starting with ``prefix``."""
        self._require_bucket(bucket)
        prefix = _key(prefix)
        sql = "SELECT key FROM entries WHERE bucket = ? AND key >= ?"
        params: tuple = (bucket, prefix)
        upper = _prefix_end(prefix)
        if upper is not None:
            sql += " AND key < ?"
            params += (upper,)
        rows = self._execute(sql + " ORDER BY key", params).fetchall()
        return [bytes(row[0]) for row in rows]

    def count(self, bucket: str) -> int:
        """Number of keys stored in ``bucket``."""
        self._require_bucket(bucket)
        row = self._execute(
            "SELECT COUNT(*) FROM entries WHERE bucket = ?", (bucket,)
        ).fetchone()
        return row[0]


class Store:
    """Embedded key/value file with buckets and transactions."""

    def __init__(self, path: Path, conn: sqlite3.Connection):
        self.path = path
        self._conn: Optional[sqlite3.Connection] = conn

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<Store {str(self.path)!r} ({state})>"

    @classmethod
    def open(cls, path: Union[str, Path], timeout: float = 0.0) -> "Store":
        """Open or create the store at ``path`` and lock it.

        Args:
            path: Database file location.
            timeout: Seconds to wait for another holder to release the file.

        Raises:
            StorageError: If the file cannot be opened, is not a vault
                file, or is locked by another Store.
        """
        path = Path(path)
        try:
            conn = sqlite3.connect(
                str(path),
                timeout=timeout,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as err:
            raise StorageError(f"Cannot open {path}: {err}") from err
        try:
            for pragma in PRAGMAS:
                conn.execute(pragma)
            # take the exclusive lock now; locking_mode keeps it until close
            conn.execute("BEGIN EXCLUSIVE")
            for statement in _SCHEMA:
                conn.execute(statement)
            conn.execute("COMMIT")
        except sqlite3.Error as err:
            conn.close()
            raise StorageError(f"Cannot open {path}: {err}") from err
        logger.info("Opened store %s", path)
        return cls(path, conn)

    @property
    def closed(self) -> bool:
        return self._conn is None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError(f"Store {self.path} is closed")
        return self._conn

    @contextmanager
    def _transaction(self, begin: str, writable: bool) -> Iterator[Transaction]:
        conn = self._connection()
        try:
            conn.execute(begin)
        except sqlite3.Error as err:
            raise StorageError(f"Cannot start transaction: {err}") from err
        tx = Transaction(conn, writable=writable)
        try:
            yield tx
        except BaseException:
            tx.closed = True
            self._abort(conn)
            raise
        tx.closed = True
        if not writable:
            self._rollback(conn)
            return
        try:
            conn.execute("COMMIT")
        except sqlite3.Error as err:
            self._abort(conn)
            raise StorageError(f"Commit failed: {err}") from err

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        # sqlite may already have rolled back on its own after an I/O error
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as err:
            raise StorageError(f"Rollback failed: {err}") from err

    def _abort(self, conn: sqlite3.Connection) -> None:
        """Roll back while another error propagates; that error wins."""
        try:
            self._rollback(conn)
        except StorageError as err:
            logger.error("Store %s: %s", self.path, err)

    def update(self):
        """Read-write transaction; committed when the block exits cleanly."""
        return self._transaction("BEGIN IMMEDIATE", writable=True)

    def view(self):
        """Read-only transaction over a consistent snapshot."""
        return self._transaction("BEGIN", writable=False)

    def close(self) -> None:
        """Release the file lock and close the database. Idempotent."""
        if self._conn is None:
            return
        try:
            self._conn.close()
        except sqlite3.Error as err:
            raise StorageError(f"Cannot close {self.path}: {err}") from err
        finally:
            self._conn = None
        logger.info("Closed store %s", self.path)
