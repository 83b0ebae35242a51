"""Message idempotency using SQLite storage.

This module is the at-most-once boundary of the email channel. A message is
claimed (an idempotency record is written) before it is marked read and
before the agent sees it. The record's existence, not its responded_at field,
is what keeps a message from being processed twice.

Design Principles:
- Message ID based: Gmail message id is the unique key
- SQLite storage: Persistent across restarts
- Claim before confirm: a crash between claim and reply drops the message
  instead of invoking the agent a second time
- No TTL: records are never cleaned up, a message seen once stays seen
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional

from mailbridge.core.storage.paths import ensure_db_exists
from mailbridge.core.time import utc_now_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdempotencyRecord:
    """Durable marker that a message has been claimed.

    Timestamps are epoch milliseconds.
    """

    message_id: str
    thread_id: str
    sender_address: str
    subject: str
    processed_at: int
    responded_at: Optional[int] = None


class IdempotencyStore:
    """SQLite-based storage for processed email messages.

    Schema:
        CREATE TABLE processed_emails (
            message_id TEXT PRIMARY KEY,
            thread_id TEXT NOT NULL,
            sender_address TEXT NOT NULL,
            subject TEXT NOT NULL,
            processed_at INTEGER NOT NULL,
            responded_at INTEGER
        )
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the idempotency store.

        Args:
            db_path: Optional path to SQLite database file.
                    If None, uses the default mailbridge component path.
        """
        self.db_path = str(ensure_db_exists("mailbridge", db_path))
        self._init_schema()
        logger.debug(f"IdempotencyStore initialized: {self.db_path}")

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS processed_emails (
                    message_id TEXT PRIMARY KEY,
                    thread_id TEXT NOT NULL,
                    sender_address TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    processed_at INTEGER NOT NULL,
                    responded_at INTEGER
                )
            """)
            # Index for listing unanswered claims
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_processed_emails_responded
                ON processed_emails(responded_at)
            """)
            conn.commit()

    def is_processed(self, message_id: str) -> bool:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM processed_emails WHERE message_id = ?",
                (message_id,)
            ).fetchone()
        return row is not None

    def mark_processed(
        self,
        message_id: str,
        thread_id: str,
        sender_address: str,
        subject: str,
    ) -> bool:
        """Record a message as claimed.

        Returns:
            True if the record was created, False if it already existed
        """
        with self._get_connection() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO processed_emails
                    (message_id, thread_id, sender_address, subject, processed_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (message_id, thread_id, sender_address, subject, utc_now_ms())
                )
                conn.commit()
            except sqlite3.IntegrityError:
                logger.info(f"Message already claimed: {message_id}")
                return False
        return True

    def mark_responded(self, message_id: str) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "UPDATE processed_emails SET responded_at = ? WHERE message_id = ?",
                (utc_now_ms(), message_id)
            )
            conn.commit()

    def get_record(self, message_id: str) -> Optional[IdempotencyRecord]:
        with self._get_connection() as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute(
                "SELECT * FROM processed_emails WHERE message_id = ?",
                (message_id,)
            ).fetchone()
        return IdempotencyRecord(**dict(row)) if row else None

    def list_unresponded(self, limit: int = 50) -> List[IdempotencyRecord]:
        """Claimed messages that never got a reply, newest first."""
        with self._get_connection() as conn:
            conn.row_factory = sqlite3.Row
            rows = conn.execute(
                """
                SELECT * FROM processed_emails
                WHERE responded_at IS NULL
                ORDER BY processed_at DESC
                LIMIT ?
                """,
                (limit,)
            ).fetchall()
        return [IdempotencyRecord(**dict(row)) for row in rows]

    def get_stats(self) -> dict:
        """Get statistics about the idempotency store.

        Returns:
            Dictionary with stats: total_processed, total_responded, unresponded
        """
        with self._get_connection() as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute("""
                SELECT
                    COUNT(*) as total_processed,
                    SUM(CASE WHEN responded_at IS NOT NULL THEN 1 ELSE 0 END) as total_responded
                FROM processed_emails
            """).fetchone()

        total = row["total_processed"] or 0
        responded = row["total_responded"] or 0
        return {
            "total_processed": total,
            "total_responded": responded,
            "unresponded": total - responded,
        }


class DedupGate:
    """Idempotency boundary in front of the agent.

    Example:
        >>> gate = DedupGate(IdempotencyStore(tmp_path / "db.sqlite"))
        >>> if gate.should_process("m1") and gate.claim("m1", "t1", "a@b.c", "Hi"):
        ...     pass  # safe to hand m1 downstream exactly once
    """

    def __init__(self, store: IdempotencyStore):
        self.store = store

    def should_process(self, message_id: str) -> bool:
        """Pure existence check, no side effects."""
        return not self.store.is_processed(message_id)

    def claim(
        self,
        message_id: str,
        thread_id: str,
        sender_address: str,
        subject: str,
    ) -> bool:
        """Write the idempotency record.

        Must run before the message is marked read or handed downstream.

        Returns:
            True if this call created the record, False if another claim won
        """
        return self.store.mark_processed(message_id, thread_id, sender_address, subject)

    def mark_responded(self, message_id: str) -> None:
        self.store.mark_responded(message_id)
