"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional, Any, Tuple, Union
from decimal import Decimal
from datetime import datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .exceptions import StorageError


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage, replacing any previous version"""
        pass

    @abstractmethod
    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a new record; fails with StorageError if the id is taken"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def begin_transaction(self, timeout: Optional[float] = None) -> None:
        """
        Start a database transaction (default no-op).

        Backends that serialize transactions wait at most timeout seconds
        and raise StorageError after that.
        """
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
        except BaseException:
            self.rollback()
            raise
        self.commit()


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


def _copy(record: Dict[str, Any]) -> Dict[str, Any]:
    # JSON round trip gives a deep copy with storage-equivalent types
    return json.loads(json.dumps(record, default=str))


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing.

    Writes made inside a transaction are staged per thread and only become
    visible to other threads on commit. Nested transactions join the
    outermost one.
    """

    _DELETED = object()

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._local = threading.local()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    @property
    def _depth(self) -> int:
        return getattr(self._local, 'depth', 0)

    def _staged(self, table: str) -> Optional[Dict[str, Any]]:
        """Writes staged by the current thread for a table, if any"""
        if not self._depth:
            return None
        return self._local.pending.get(table)

    def _table_view(self, table: str) -> Dict[str, Dict[str, Any]]:
        """Committed rows overlaid with this thread's staged writes"""
        self._ensure_table(table)
        committed = self._data[table]
        staged = self._staged(table)
        if not staged:
            return committed
        view = dict(committed)
        for record_id, record in staged.items():
            if record is self._DELETED:
                view.pop(record_id, None)
            else:
                view[record_id] = record
        return view

    def _write(self, table: str, record_id: str, record: Any) -> None:
        if self._depth:
            self._local.pending.setdefault(table, {})[record_id] = record
            return
        self._ensure_table(table)
        if record is self._DELETED:
            self._data[table].pop(record_id, None)
        else:
            self._data[table][record_id] = record

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._write(table, record_id, _copy(data))

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record; conflicts are re-checked at commit time"""
        with self._lock:
            if record_id in self._table_view(table):
                raise StorageError(
                    f"Record {record_id} already exists in {table}",
                    details={"table": table, "record_id": record_id}
                )
            if self._depth:
                self._local.inserts.add((table, record_id))
            self._write(table, record_id, _copy(data))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            record = self._table_view(table).get(record_id)
            if record:
                return _copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            return [_copy(record) for record in self._table_view(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            if record_id not in self._table_view(table):
                return False
            self._write(table, record_id, self._DELETED)
            return True

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            return record_id in self._table_view(table)

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            return [
                _copy(record) for record in self._table_view(table).values()
                if _matches(record, filters)
            ]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            return len(self._table_view(table))

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def begin_transaction(self, timeout: Optional[float] = None) -> None:
        """Start staging writes for the current thread"""
        if not self._depth:
            self._discard()
        self._local.depth = self._depth + 1

    def _discard(self) -> None:
        self._local.pending = {}
        self._local.inserts = set()
        self._local.rollback_only = False

    def commit(self) -> None:
        """Apply staged writes once the outermost transaction commits"""
        depth = self._depth
        if not depth:
            return
        self._local.depth = depth - 1
        if depth > 1:
            return

        pending, inserts = self._local.pending, self._local.inserts
        rollback_only = getattr(self._local, 'rollback_only', False)
        self._discard()
        if rollback_only:
            raise StorageError("Transaction was rolled back by a nested transaction")
        with self._lock:
            for table, record_id in inserts:
                self._ensure_table(table)
                if record_id in self._data[table]:
                    raise StorageError(
                        f"Record {record_id} already exists in {table}",
                        details={"table": table, "record_id": record_id}
                    )
            for table, records in pending.items():
                self._ensure_table(table)
                for record_id, record in records.items():
                    if record is self._DELETED:
                        self._data[table].pop(record_id, None)
                    else:
                        self._data[table][record_id] = record

    def rollback(self) -> None:
        """
        Roll back the current transaction.

        A nested rollback leaves the staged writes in place but marks the
        outermost transaction so that its commit fails instead of applying them.
        """
        depth = self._depth
        if not depth:
            return
        self._local.depth = depth - 1
        if depth > 1:
            self._local.rollback_only = True
            return
        self._discard()

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence.

    One connection is shared by all threads. A transaction holds the
    connection lock from begin to commit/rollback, so units of work on this
    backend run one at a time. Waiting for the lock gives up after
    lock_timeout seconds with StorageError; None waits without limit.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:", lock_timeout: Optional[float] = None):
        self.db_path = str(db_path)
        self.lock_timeout = lock_timeout
        self._lock = threading.RLock()
        self._depth = 0
        self._tables = set()
        try:
            # isolation_level='DEFERRED' lets sqlite3 open transactions implicitly
            self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
            self._connection.row_factory = sqlite3.Row

            # Enable WAL mode for better concurrent access
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}") from e

    def _acquire(self, timeout: Optional[float]) -> None:
        if timeout is None:
            timeout = self.lock_timeout
        if not self._lock.acquire(timeout=-1 if timeout is None else timeout):
            raise StorageError(
                "Timed out waiting for the database connection",
                details={"database": self.db_path, "timeout_seconds": timeout}
            )

    @contextmanager
    def _guard(self) -> Iterator[sqlite3.Connection]:
        """Hold the connection lock and translate driver errors"""
        self._acquire(None)
        try:
            if self._connection is None:
                raise StorageError("Storage is closed")
            try:
                yield self._connection
            except sqlite3.Error as e:
                raise StorageError(f"SQLite error: {e}") from e
        finally:
            self._lock.release()

    def _autocommit(self) -> None:
        # Only commit if not in transaction
        if not self._depth:
            self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        self._autocommit()
        self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._guard() as conn:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            # Use INSERT OR REPLACE to handle updates
            conn.execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, data_json, record_id, now, now))
            self._autocommit()

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record; the primary key rejects duplicates"""
        with self._guard() as conn:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            try:
                conn.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                """, (record_id, json.dumps(data, default=str), now, now))
            except sqlite3.IntegrityError as e:
                raise StorageError(
                    f"Record {record_id} already exists in {table}",
                    details={"table": table, "record_id": record_id}
                ) from e
            self._autocommit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._guard() as conn:
            self._ensure_table(table)
            row = conn.execute(f"SELECT data FROM {table} WHERE id = ?", (record_id,)).fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._guard() as conn:
            self._ensure_table(table)
            cursor = conn.execute(f"SELECT data FROM {table} ORDER BY created_at")
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._guard() as conn:
            self._ensure_table(table)
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            self._autocommit()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._guard() as conn:
            self._ensure_table(table)
            cursor = conn.execute(f"SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        return [record for record in self.load_all(table) if _matches(record, filters)]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._guard() as conn:
            self._ensure_table(table)
            return conn.execute(f"SELECT COUNT(*) AS count FROM {table}").fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._guard() as conn:
            self._ensure_table(table)
            conn.execute(f"DELETE FROM {table}")
            self._autocommit()

    def begin_transaction(self, timeout: Optional[float] = None) -> None:
        """Start a database transaction, holding the connection lock until it ends"""
        self._acquire(timeout)
        self._depth += 1

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if not self._depth:
                return
            self._depth -= 1
            try:
                if not self._depth and self._connection is not None:
                    try:
                        self._connection.commit()
                    except sqlite3.Error as e:
                        self._tables.clear()
                        self._connection.rollback()
                        raise StorageError(f"Commit failed: {e}") from e
            finally:
                self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if not self._depth:
                return
            self._depth -= 1
            try:
                # Tables created inside the transaction are gone again
                self._tables.clear()
                if self._connection is not None:
                    self._connection.rollback()
            finally:
                self._lock.release()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class KeyedLock:
    """
    Registry of per-key reentrant locks.

    Used to serialize read-modify-write cycles on one record while leaving
    other records free. Entries are dropped once nobody holds or waits on them.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, List[Any]] = {}  # key -> [RLock, users]

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None):
        """Hold the lock for key, failing with StorageError after the timeout"""
        if timeout is None:
            timeout = self.timeout
        with self._guard:
            entry = self._locks.setdefault(key, [threading.RLock(), 0])
            entry[1] += 1

        acquired = entry[0].acquire(timeout=-1 if timeout is None else timeout)
        try:
            if not acquired:
                raise StorageError(
                    f"Timed out waiting for lock on {key}",
                    details={"key": key, "timeout_seconds": timeout}
                )
            yield
        finally:
            if acquired:
                entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def paginate(items: List[Any], page: int, limit: int) -> Tuple[List[Any], int]:
    """Return one 1-based page of items together with the total count"""
    page = max(page, 1)
    limit = max(limit, 1)
    start = (page - 1) * limit
    return items[start:start + limit], len(items)


def create_storage(
    backend: str,
    database_path: str = ":memory:",
    lock_timeout: Optional[float] = None
) -> StorageInterface:
    """Build the storage backend named in configuration"""
    if backend == "memory":
        return InMemoryStorage()
    if backend == "sqlite":
        return SQLiteStorage(database_path, lock_timeout=lock_timeout)
    raise ValueError(f"Unknown storage backend: {backend}")
