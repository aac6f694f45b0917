"""
Session State - which intent is active for which session
=========================================================

One authorization per session (task). Declaring again overwrites it;
clearing removes it. There is no expiry.

The engine only talks to the SessionStore interface (get/set/delete by
session id), so the backing store can be swapped:

    InMemorySessionStore   default, process-local, RLock-guarded dict
    SqliteSessionStore     persistent, survives process restarts (used by
                           the CLI hook, where every tool call is a new
                           process)

The store also holds one pending write snapshot per session (did the
target exist when the pre-hook allowed it?) so a post-hook in another
process can classify the write.

Sessions are independent. Only per-key consistency is guaranteed; nothing
synchronizes across sessions.
"""
from __future__ import annotations

import json
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from time_utils import utc_now_iso


@dataclass
class IntentState:
    """
    Snapshot of a declared intent, taken at declaration time.

    Name, constraints and criteria are not re-read live. Scope is re-read by
    the scope guard on every check; the snapshot scope is for display.
    """
    intent_id: str
    intent_name: str
    owned_scope: List[str] = field(default_factory=list)
    constraints: List[str] = field(default_factory=list)
    acceptance_criteria: List[str] = field(default_factory=list)
    activated_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IntentState":
        return cls(
            intent_id=str(data["intent_id"]),
            intent_name=str(data.get("intent_name", data["intent_id"])),
            owned_scope=list(data.get("owned_scope") or []),
            constraints=list(data.get("constraints") or []),
            acceptance_criteria=list(data.get("acceptance_criteria") or []),
            activated_at=str(data.get("activated_at") or utc_now_iso()),
        )


class SessionStore(ABC):
    """Keyed store of IntentState by session id."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[IntentState]:
        ...

    @abstractmethod
    def set(self, session_id: str, state: IntentState) -> None:
        ...

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        """Remove the session's authorization. Returns True if one existed."""
        ...

    @abstractmethod
    def sessions(self) -> List[str]:
        ...

    # --- Pending write snapshots ---
    # At most one per session: whether the target of the last allowed write
    # existed before the tool ran. The post-hook consumes it.

    @abstractmethod
    def remember_target(self, session_id: str, target_path: str, existed: bool) -> None:
        ...

    @abstractmethod
    def take_target(self, session_id: str, target_path: str) -> Optional[bool]:
        """Pop the snapshot if it is for this path. None if there is none."""
        ...

    @abstractmethod
    def forget_target(self, session_id: str) -> None:
        ...

    def clear(self) -> int:
        """Remove every session. Returns count removed."""
        removed = 0
        for session_id in self.sessions():
            if self.delete(session_id):
                removed += 1
        return removed


class InMemorySessionStore(SessionStore):
    """
    Process-local session store.

    RLock rather than Lock: a caller that re-enters (e.g. a hook that
    declares from inside another store call) must not deadlock.
    """

    def __init__(self):
        self._states: Dict[str, IntentState] = {}
        self._targets: Dict[str, Tuple[str, bool]] = {}
        self._lock = threading.RLock()

    def get(self, session_id: str) -> Optional[IntentState]:
        with self._lock:
            return self._states.get(session_id)

    def set(self, session_id: str, state: IntentState) -> None:
        with self._lock:
            self._states[session_id] = state

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._states.pop(session_id, None) is not None

    def sessions(self) -> List[str]:
        with self._lock:
            return list(self._states.keys())

    def clear(self) -> int:
        with self._lock:
            count = len(self._states)
            self._states.clear()
            self._targets.clear()
            return count

    def remember_target(self, session_id: str, target_path: str, existed: bool) -> None:
        with self._lock:
            self._targets[session_id] = (target_path, existed)

    def take_target(self, session_id: str, target_path: str) -> Optional[bool]:
        with self._lock:
            pending = self._targets.get(session_id)
            if pending is None or pending[0] != target_path:
                return None
            del self._targets[session_id]
            return pending[1]

    def forget_target(self, session_id: str) -> None:
        with self._lock:
            self._targets.pop(session_id, None)


class SqliteSessionStore(SessionStore):
    """
    Thread-safe SQLite session store.

    Schema:
        session_intents(session_id TEXT PRIMARY KEY, state_json TEXT, updated_at_unix INTEGER)

    Usage:
        store = SqliteSessionStore("/path/to/sessions.sqlite")
        store.set("task-1", state)
        store.get("task-1")
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = str(db_path)
        self._local = threading.local()
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get thread-local connection."""
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=5.0)
            self._local.conn.row_factory = sqlite3.Row
        return self._local.conn

    @contextmanager
    def _cursor(self):
        """Context manager for cursor with auto-commit."""
        conn = self._get_conn()
        cur = conn.cursor()
        try:
            yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cur.close()

    def ensure_schema(self) -> None:
        """Create table if not exists. Safe to call multiple times."""
        with self._cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS session_intents (
                    session_id TEXT PRIMARY KEY,
                    state_json TEXT NOT NULL,
                    updated_at_unix INTEGER NOT NULL
                )
            """)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS target_snapshots (
                    session_id TEXT PRIMARY KEY,
                    target_path TEXT NOT NULL,
                    existed INTEGER NOT NULL,
                    recorded_at_unix INTEGER NOT NULL
                )
            """)

    def get(self, session_id: str) -> Optional[IntentState]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT state_json FROM session_intents WHERE session_id = ?",
                (str(session_id),)
            )
            row = cur.fetchone()
            if row is None:
                return None
            try:
                return IntentState.from_dict(json.loads(row["state_json"]))
            except (json.JSONDecodeError, TypeError, KeyError):
                return None

    def set(self, session_id: str, state: IntentState) -> None:
        """Upsert: creates if not exists, overwrites if exists."""
        now = int(time.time())
        state_json = json.dumps(state.to_dict(), separators=(",", ":"))

        with self._cursor() as cur:
            cur.execute("""
                INSERT INTO session_intents (session_id, state_json, updated_at_unix)
                VALUES (?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    state_json = excluded.state_json,
                    updated_at_unix = excluded.updated_at_unix
            """, (str(session_id), state_json, now))

    def delete(self, session_id: str) -> bool:
        with self._cursor() as cur:
            cur.execute("DELETE FROM session_intents WHERE session_id = ?", (str(session_id),))
            return cur.rowcount > 0

    def sessions(self) -> List[str]:
        with self._cursor() as cur:
            cur.execute("SELECT session_id FROM session_intents ORDER BY session_id")
            return [row["session_id"] for row in cur.fetchall()]

    def clear(self) -> int:
        with self._cursor() as cur:
            cur.execute("DELETE FROM session_intents")
            removed = cur.rowcount
            cur.execute("DELETE FROM target_snapshots")
            return removed

    def remember_target(self, session_id: str, target_path: str, existed: bool) -> None:
        with self._cursor() as cur:
            cur.execute("""
                INSERT INTO target_snapshots (session_id, target_path, existed, recorded_at_unix)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    target_path = excluded.target_path,
                    existed = excluded.existed,
                    recorded_at_unix = excluded.recorded_at_unix
            """, (str(session_id), target_path, int(existed), int(time.time())))

    def take_target(self, session_id: str, target_path: str) -> Optional[bool]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT existed FROM target_snapshots WHERE session_id = ? AND target_path = ?",
                (str(session_id), target_path)
            )
            row = cur.fetchone()
            if row is None:
                return None
            cur.execute(
                "DELETE FROM target_snapshots WHERE session_id = ? AND target_path = ?",
                (str(session_id), target_path)
            )
            if cur.rowcount == 0:
                # Another process consumed it first
                return None
            return bool(row["existed"])

    def forget_target(self, session_id: str) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM target_snapshots WHERE session_id = ?", (str(session_id),))

    def close(self) -> None:
        """Close the connection for this thread."""
        if hasattr(self._local, "conn") and self._local.conn:
            self._local.conn.close()
            self._local.conn = None
