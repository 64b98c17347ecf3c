"""
SQLite persistence layer for Swing Journal.

Local state is a handful of independent key-value entries (trades, profile,
watchlist, broker credentials, spreadsheet id). Each value is a JSON document
that is read once at startup and rewritten wholesale on every change.
"""
import sqlite3
import json
import os
import threading
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from config.settings import settings

TRADES_KEY = "swing-trades"
PROFILE_KEY = "user-profile"
WATCHLIST_KEY = "swing-trade-watchlist"
BROKER_CREDENTIALS_KEY = "broker_api_credentials"
SPREADSHEET_ID_KEY = "swing_trading_journal_spreadsheet_id"


class KeyValueStorage(Protocol):
    """Persistence port used by the ledger and the side stores."""

    def load(self, key: str) -> Optional[Any]: ...

    def save(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class SqliteKeyValueStore:
    """Durable storage backed by a single `kv_store` table."""

    def __init__(self, db_path: str = None):
        self.db_path = db_path or settings.DB_PATH
        self.init_db()

    def _get_connection(self) -> sqlite3.Connection:
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def init_db(self):
        conn = self._get_connection()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key         TEXT PRIMARY KEY,
                value       TEXT NOT NULL,
                updated_at  TEXT NOT NULL
            );
        """)
        conn.close()

    def load(self, key: str) -> Optional[Any]:
        conn = self._get_connection()
        row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        conn.close()
        return json.loads(row["value"]) if row else None

    def save(self, key: str, value: Any) -> None:
        now = datetime.now(timezone.utc).isoformat()
        conn = self._get_connection()
        conn.execute(
            """INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET
                   value = excluded.value,
                   updated_at = excluded.updated_at""",
            (key, json.dumps(value, ensure_ascii=False), now),
        )
        conn.commit()
        conn.close()

    def delete(self, key: str) -> None:
        conn = self._get_connection()
        conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        conn.commit()
        conn.close()

    def keys(self) -> list[str]:
        conn = self._get_connection()
        rows = conn.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        conn.close()
        return [r["key"] for r in rows]


class MemoryKeyValueStore:
    """In-process storage with the same JSON round trip as the SQLite store."""

    def __init__(self):
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def save(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = json.dumps(value, ensure_ascii=False)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._data)
