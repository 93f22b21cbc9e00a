"""
Persistent key-value storage for visitor state (cart, preferences).

One SQLite file acts as the physical store shared by every visitor namespace
and every worker process. Values are JSON wrapped in a versioned envelope that
may carry an expiry; same-process consumers of a key are notified after each
write, and writes made by other processes are picked up by ``sync()``.
"""
from __future__ import annotations

import copy
import json
import logging
import os
import sqlite3
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = 1

Listener = Callable[[], None]

_MISSING = object()


class SqliteBackend:
    def __init__(self, path: str) -> None:
        self.path = path
        self._listeners: Dict[str, List[Listener]] = {}
        self._last_seq = 0
        self._init()

    def _connect(self) -> sqlite3.Connection:
        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=5)
        conn.row_factory = sqlite3.Row
        return conn

    def _init(self) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    seq INTEGER NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_kv_seq ON kv(seq)")
            conn.commit()
            self._last_seq = self._max_seq(conn)
        finally:
            conn.close()

    @staticmethod
    def _max_seq(conn: sqlite3.Connection) -> int:
        return int(conn.execute("SELECT COALESCE(MAX(seq), 0) FROM kv").fetchone()[0])

    def get_item(self, key: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else None
        finally:
            conn.close()

    def _write(self, key: str, raw: Optional[str]) -> None:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            seq = self._max_seq(conn) + 1
            conn.execute(
                "INSERT INTO kv(key, value, seq) VALUES(?,?,?) "
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value, seq=excluded.seq",
                (key, raw, seq),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def set_item(self, key: str, raw: str) -> None:
        self._write(key, raw)

    def remove_item(self, key: str) -> None:
        # tombstone, so other processes see the removal on sync()
        self._write(key, None)

    def changes_since(self, seq: int) -> List[Tuple[int, str]]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT seq, key FROM kv WHERE seq > ? ORDER BY seq", (seq,)
            ).fetchall()
            return [(int(r["seq"]), r["key"]) for r in rows]
        finally:
            conn.close()

    # ---------------- notifications ----------------

    def subscribe(self, key: str, listener: Listener) -> Callable[[], None]:
        self._listeners.setdefault(key, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(key, [])
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(key, None)

        return unsubscribe

    def notify(self, key: str) -> None:
        for listener in list(self._listeners.get(key, [])):
            try:
                listener()
            except Exception:
                logger.exception("storage listener for %s failed", key)

    def poll(self) -> List[str]:
        """Notify listeners of keys written since the last poll (by any process)."""
        changes = self.changes_since(self._last_seq)
        if not changes:
            return []
        self._last_seq = changes[-1][0]
        keys: List[str] = []
        for _, key in changes:
            if key not in keys:
                keys.append(key)
        for key in keys:
            self.notify(key)
        return keys


class LocalStore:
    """Namespaced view over a :class:`SqliteBackend` with TTL envelopes."""

    def __init__(
        self,
        backend: SqliteBackend,
        namespace: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.backend = backend
        self.namespace = namespace
        self._clock = clock

    def full_key(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _discard(self, full_key: str) -> None:
        try:
            self.backend.remove_item(full_key)
        except Exception:
            logger.exception("could not remove stale entry %s", full_key)

    def _deserialize(self, full_key: str, raw: Optional[str]) -> Any:
        if raw is None:
            return _MISSING
        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.warning("corrupt payload under %s, dropping it", full_key)
            self._discard(full_key)
            return _MISSING

        meta = parsed.get("meta") if isinstance(parsed, dict) else None
        if isinstance(meta, dict) and meta.get("version") == ENVELOPE_VERSION and "value" in parsed:
            expires_at = meta.get("expiresAt")
            if isinstance(expires_at, (int, float)) and expires_at <= self._now_ms():
                self._discard(full_key)
                return _MISSING
            return parsed["value"]
        # plain JSON written without an envelope
        return parsed

    def get(self, key: str, default: Any = None) -> Any:
        full_key = self.full_key(key)
        try:
            raw = self.backend.get_item(full_key)
        except Exception:
            logger.exception("read of %s failed", full_key)
            return default
        value = self._deserialize(full_key, raw)
        return default if value is _MISSING else value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        full_key = self.full_key(key)
        expires_at = self._now_ms() + int(ttl * 1000) if ttl is not None else None
        payload = {"meta": {"version": ENVELOPE_VERSION, "expiresAt": expires_at}, "value": value}
        try:
            self.backend.set_item(full_key, json.dumps(payload))
        except (sqlite3.Error, OSError, TypeError, ValueError) as e:
            logger.error("write of %s failed: %s", full_key, e)
            return False
        self.backend.notify(full_key)
        return True

    def remove(self, key: str) -> None:
        full_key = self.full_key(key)
        try:
            self.backend.remove_item(full_key)
        except (sqlite3.Error, OSError) as e:
            logger.error("remove of %s failed: %s", full_key, e)
            return
        self.backend.notify(full_key)

    def subscribe(self, key: str, listener: Listener) -> Callable[[], None]:
        return self.backend.subscribe(self.full_key(key), listener)

    def sync(self) -> List[str]:
        try:
            return self.backend.poll()
        except Exception:
            logger.exception("storage sync failed")
            return []


class StoredValue:
    """
    A single key kept in memory and mirrored to a :class:`LocalStore`.

    Several StoredValue objects bound to the same key stay consistent: every
    successful write notifies the others, which re-read the stored value.
    If the write fails the new value is still kept in memory.
    """

    def __init__(self, store: LocalStore, key: str, default: Any, ttl: Optional[float] = None) -> None:
        self.store = store
        self.key = key
        self.ttl = ttl
        self._default = default
        self._value = store.get(key, _MISSING)
        if self._value is _MISSING:
            self._value = self._initial()
        self._unsubscribe = store.subscribe(key, self._reload)

    def _initial(self) -> Any:
        if callable(self._default):
            return self._default()
        return copy.deepcopy(self._default)

    @property
    def value(self) -> Any:
        return self._value

    def set(self, value: Any) -> Any:
        if callable(value):
            value = value(self._value)
        self._value = value
        self.store.set(self.key, value, ttl=self.ttl)
        return value

    def _reload(self) -> None:
        value = self.store.get(self.key, _MISSING)
        self._value = self._initial() if value is _MISSING else value

    def close(self) -> None:
        self._unsubscribe()
