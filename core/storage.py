"""
Key-value persistence for the Geopolitical Analyzer.

Schema
──────
table: kv_store
  key        TEXT PRIMARY KEY
  value      TEXT NOT NULL
  updated_at TEXT NOT NULL  (ISO-8601 UTC)
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from core.errors import PersistenceError

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """String-to-string storage with overwrite-on-set semantics."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class InMemoryKeyValueStore:
    """Dict-backed store for tests and throwaway sessions."""

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value


class SqliteKeyValueStore:
    """Key-value store kept in a single SQLite table.

    Every ``sqlite3.Error`` or ``OSError`` surfaces as ``PersistenceError``.

    Args:
        path: Database file; parent directories are created on demand.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    @contextmanager
    def _connect(self):
        """Yield a connected sqlite3.Connection, creating the file/dir if needed."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.path))
        except (sqlite3.Error, OSError) as exc:
            raise PersistenceError(f"Cannot open {self.path}: {exc}") from exc
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceError(str(exc)) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create the kv_store table if it doesn't exist yet."""
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    key        TEXT PRIMARY KEY,
                    value      TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
        logger.info("Key-value store initialised at %s", self.path)

    def get(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        return None if row is None else row[0]

    def set(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "updated_at = excluded.updated_at",
                (key, value, now),
            )
