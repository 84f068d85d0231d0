"""Durable key/value state for tracking flags and pending conversions.

Keys are namespaced strings::

    entity:<order_id>:flag:<kind>     tracking flags (never cleared)
    entity:<order_id>:pending         order-level pending conversion
    pending:<scope_kind>:<scope_id>   per-visitor pending conversions

Values must be JSON-serialisable; both backends keep them as JSON text, so
a value read back is always a fresh copy.  ``add`` and ``update`` are the
atomic primitives.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

Clock = Callable[[], float]


def flag_key(entity_id: Any, kind: Any) -> str:
    kind_value = getattr(kind, "value", kind)
    return f"entity:{entity_id}:flag:{kind_value}"


def order_pending_key(entity_id: Any) -> str:
    return f"entity:{entity_id}:pending"


def scope_key(kind: str, scope_id: Any) -> str:
    return f"pending:{kind}:{scope_id}"


class KeyValueStore:
    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    def set(self, key: str, value: Any, *, ttl: Optional[float] = None) -> None:
        raise NotImplementedError

    def add(self, key: str, value: Any, *, ttl: Optional[float] = None) -> bool:
        """Insert only if ``key`` is absent; True if this call inserted it."""
        raise NotImplementedError

    def update(
        self,
        key: str,
        mutate: Callable[[Any], Any],
        *,
        ttl: Optional[float] = None,
    ) -> Any:
        """Atomically replace the value with ``mutate(current)``.

        ``current`` is None when the key is absent or expired.  Returning None
        deletes the key.  Returns the value written.
        """
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class InMemoryStore(KeyValueStore):
    """Process-local store; thread-safe so ``add`` stays atomic."""

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl: Optional[float]) -> Optional[float]:
        return None if ttl is None else self._clock() + ttl

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._live(key)
        return default if entry is None else json.loads(entry[0])

    def set(self, key: str, value: Any, *, ttl: Optional[float] = None) -> None:
        with self._lock:
            self._data[key] = (json.dumps(value), self._expiry(ttl))

    def add(self, key: str, value: Any, *, ttl: Optional[float] = None) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (json.dumps(value), self._expiry(ttl))
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def update(
        self,
        key: str,
        mutate: Callable[[Any], Any],
        *,
        ttl: Optional[float] = None,
    ) -> Any:
        with self._lock:
            entry = self._live(key)
            value = mutate(None if entry is None else json.loads(entry[0]))
            if value is None:
                self._data.pop(key, None)
            else:
                self._data[key] = (json.dumps(value), self._expiry(ttl))
            return value

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for key in list(self._data) if self._live(key) is not None)


@dataclass
class SqliteStore(KeyValueStore):
    path: Path
    clock: Clock = field(default=time.time)

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS relay_kv (
                    key TEXT PRIMARY KEY,
                    value_json TEXT NOT NULL,
                    expires_at REAL
                );
                """
            )

    def get(self, key: str, default: Any = None) -> Any:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT value_json FROM relay_kv
                WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)
                """,
                (key, self.clock()),
            ).fetchone()
        if row is None:
            return default
        return json.loads(row[0])

    def set(self, key: str, value: Any, *, ttl: Optional[float] = None) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO relay_kv (key, value_json, expires_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value_json=excluded.value_json,
                    expires_at=excluded.expires_at
                """,
                (key, json.dumps(value), self._expiry(ttl)),
            )

    def add(self, key: str, value: Any, *, ttl: Optional[float] = None) -> bool:
        now = self.clock()
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                "DELETE FROM relay_kv WHERE key = ? AND expires_at IS NOT NULL AND expires_at <= ?",
                (key, now),
            )
            cursor = conn.execute(
                """
                INSERT INTO relay_kv (key, value_json, expires_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO NOTHING
                """,
                (key, json.dumps(value), self._expiry(ttl)),
            )
            return cursor.rowcount == 1

    def update(
        self,
        key: str,
        mutate: Callable[[Any], Any],
        *,
        ttl: Optional[float] = None,
    ) -> Any:
        now = self.clock()
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                """
                SELECT value_json FROM relay_kv
                WHERE key = ? AND (expires_at IS NULL OR expires_at > ?)
                """,
                (key, now),
            ).fetchone()
            value = mutate(None if row is None else json.loads(row[0]))
            if value is None:
                conn.execute("DELETE FROM relay_kv WHERE key = ?", (key,))
                return None
            conn.execute(
                """
                INSERT INTO relay_kv (key, value_json, expires_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value_json=excluded.value_json,
                    expires_at=excluded.expires_at
                """,
                (key, json.dumps(value), self._expiry(ttl)),
            )
            return value

    def delete(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM relay_kv WHERE key = ?", (key,))

    def _expiry(self, ttl: Optional[float]) -> Optional[float]:
        return None if ttl is None else self.clock() + ttl

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.path), timeout=5.0)
        try:
            with conn:
                yield conn
        finally:
            conn.close()
