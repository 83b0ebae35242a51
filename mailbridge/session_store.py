"""Session handle storage for MailBridge.

The agent executor returns an opaque session handle after each run. This
store keeps the latest handle per sender key so the next message from the
same correspondent continues the same conversation.

Design Principles:
- One live handle per sender key (upsert, last write wins)
- History table for debugging session rotation
- Single writer: the polling loop
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from mailbridge.core.storage.paths import ensure_db_exists
from mailbridge.core.time import utc_now_ms

logger = logging.getLogger(__name__)


class SessionStore:
    """SQLite-based storage for agent session handles.

    Database schema:
    - sender_sessions: current handle for each sender key
    - session_history: every handle ever saved, with timestamp

    Example:
        >>> store = SessionStore()
        >>> store.save_session_handle("alice-at-example-com", "sess-123")
        >>> store.get_session_handle("alice-at-example-com")
        'sess-123'
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the session store.

        Args:
            db_path: Path to SQLite database. If None, uses default location.
        """
        self.db_path = str(ensure_db_exists("mailbridge", db_path))
        self._init_database()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
        finally:
            conn.close()

    def _init_database(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sender_sessions (
                    sender_key TEXT PRIMARY KEY,
                    session_handle TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS session_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    sender_key TEXT NOT NULL,
                    session_handle TEXT NOT NULL,
                    created_at INTEGER NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_session_history_sender
                ON session_history(sender_key)
            """)

            conn.commit()

    def get_session_handle(self, sender_key: str) -> Optional[str]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT session_handle FROM sender_sessions WHERE sender_key = ?",
                (sender_key,)
            ).fetchone()
        return row[0] if row else None

    def save_session_handle(self, sender_key: str, session_handle: str) -> None:
        """Upsert the live handle for a sender key."""
        now = utc_now_ms()

        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO sender_sessions (sender_key, session_handle, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(sender_key) DO UPDATE SET
                    session_handle = excluded.session_handle,
                    updated_at = excluded.updated_at
            """, (sender_key, session_handle, now, now))

            conn.execute("""
                INSERT INTO session_history (sender_key, session_handle, created_at)
                VALUES (?, ?, ?)
            """, (sender_key, session_handle, now))

            conn.commit()

        logger.debug(f"Saved session handle for {sender_key}")

    def get_history(self, sender_key: str) -> List[Dict[str, object]]:
        with self._get_connection() as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute("""
                SELECT session_handle, created_at FROM session_history
                WHERE sender_key = ?
                ORDER BY id ASC
            """, (sender_key,)).fetchall()
        return [dict(row) for row in rows]
