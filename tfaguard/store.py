"""
Guard state persistence.

A guard's state record is saved after every accepted request and deleted
when the guard is destroyed. Rejected requests never reach the store.
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from .state import GuardState


class GuardStore(ABC):
    """
    Abstract interface for guard state records.

    Implementations must be:
    - Persistent (survives restarts)
    - Atomic per save (a record is either fully old or fully new)
    """

    @abstractmethod
    def load(self, guard_address: str) -> Optional[GuardState]:
        pass

    @abstractmethod
    def save(self, state: GuardState) -> None:
        pass

    @abstractmethod
    def delete(self, guard_address: str) -> bool:
        """Reclaim a destroyed guard's record. Returns True if one existed."""
        pass

    @abstractmethod
    def list_guards(self) -> List[str]:
        pass


class InMemoryGuardStore(GuardStore):
    """
    In-memory guard store for development/testing.

    WARNING: Not suitable for production.
    - Not persistent across restarts
    """

    def __init__(self):
        self._records: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, guard_address: str) -> Optional[GuardState]:
        with self._lock:
            raw = self._records.get(guard_address)
        return GuardState.from_dict(json.loads(raw)) if raw is not None else None

    def save(self, state: GuardState) -> None:
        raw = json.dumps(state.to_dict(), sort_keys=True)
        with self._lock:
            self._records[state.guard_address] = raw

    def delete(self, guard_address: str) -> bool:
        with self._lock:
            return self._records.pop(guard_address, None) is not None

    def list_guards(self) -> List[str]:
        with self._lock:
            return sorted(self._records)


class SqliteGuardStore(GuardStore):
    """
    SQLite-backed guard store.

    Schema:
        CREATE TABLE guards (
            guard_address TEXT PRIMARY KEY,
            owner_account TEXT NOT NULL,
            replay_counter INTEGER NOT NULL,
            state_json TEXT NOT NULL,
            updated_at INTEGER
        );
    """

    def __init__(self, db_path: Union[str, Path] = "data/tfaguard.db"):
        self._db_path = str(db_path)
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Thread-local connection, reused within the same thread."""
        if getattr(self._local, 'conn', None) is None:
            if self._db_path != ":memory:":
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self._db_path, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=FULL;")
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
        return self._local.conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Commits on success, rolls back on failure."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def _init_db(self) -> None:
        with self._transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS guards (
                guard_address TEXT PRIMARY KEY,
                owner_account TEXT NOT NULL,
                replay_counter INTEGER NOT NULL,
                state_json TEXT NOT NULL,
                updated_at INTEGER DEFAULT (strftime('%s', 'now'))
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_guards_owner
            ON guards(owner_account);""")

    def load(self, guard_address: str) -> Optional[GuardState]:
        row = self._get_connection().execute(
            "SELECT state_json FROM guards WHERE guard_address = ?",
            (guard_address,)
        ).fetchone()
        if row is None:
            return None
        return GuardState.from_dict(json.loads(row["state_json"]))

    def save(self, state: GuardState) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO guards(guard_address, owner_account, replay_counter, state_json, updated_at)
                VALUES(?, ?, ?, ?, strftime('%s', 'now'))
                ON CONFLICT(guard_address) DO UPDATE SET
                    replay_counter = excluded.replay_counter,
                    state_json = excluded.state_json,
                    updated_at = excluded.updated_at
                """,
                (
                    state.guard_address,
                    state.owner_account,
                    state.replay_counter,
                    json.dumps(state.to_dict(), sort_keys=True),
                )
            )

    def delete(self, guard_address: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM guards WHERE guard_address = ?", (guard_address,))
            return cursor.rowcount > 0

    def list_guards(self) -> List[str]:
        rows = self._get_connection().execute(
            "SELECT guard_address FROM guards ORDER BY guard_address"
        ).fetchall()
        return [r["guard_address"] for r in rows]

    def close(self) -> None:
        conn = getattr(self._local, 'conn', None)
        if conn is not None:
            conn.close()
            self._local.conn = None
