"""SQLite persistence for threads, messages, titles and summaries."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Union

from ..errors import NotFound, StorageError
from .models import Message, Role, Summary, ThreadInfo

logger = logging.getLogger(__name__)

# Minimum spacing applied when a caller hands us a timestamp that does not
# advance past the newest message of the thread.
TIMESTAMP_STEP = 0.001

SCHEMA = """
CREATE TABLE IF NOT EXISTS thread (
    id TEXT PRIMARY KEY,
    model TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS message (
    thread_id TEXT NOT NULL REFERENCES thread(id) ON DELETE CASCADE,
    role INTEGER NOT NULL,
    content TEXT NOT NULL,
    timestamp REAL NOT NULL,
    tokens INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (thread_id, timestamp)
);

CREATE TABLE IF NOT EXISTS title (
    id TEXT PRIMARY KEY REFERENCES thread(id) ON DELETE CASCADE,
    content TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS summary (
    thread_id TEXT NOT NULL REFERENCES thread(id) ON DELETE CASCADE,
    start_index INTEGER NOT NULL,
    end_index INTEGER NOT NULL,
    content TEXT NOT NULL,
    PRIMARY KEY (thread_id, start_index, end_index),
    CHECK (start_index >= 0 AND start_index < end_index)
);
"""

LIST_THREADS_SQL = """
SELECT t.id,
       t.model,
       ti.content AS title,
       (SELECT MAX(m.timestamp) FROM message m WHERE m.thread_id = t.id) AS last_active,
       (SELECT m.content FROM message m
         WHERE m.thread_id = t.id AND m.role = ?
         ORDER BY m.timestamp LIMIT 1) AS preview
FROM thread t
LEFT JOIN title ti ON ti.id = t.id
ORDER BY last_active IS NULL, last_active DESC, t.id
"""


class Store:
    """Durable store for conversations.

    Every mutating method runs in its own transaction, so a failure leaves
    the database exactly as it was before the call.
    """

    def __init__(self, path: Union[str, Path] = ":memory:"):
        self.path = str(path)
        self._conn: Optional[sqlite3.Connection] = None
        try:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(SCHEMA)
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"Cannot open database at {self.path}: {exc}") from exc
        logger.debug("Opened database %s", self.path)

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("Database connection is closed")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            with self.conn:
                yield self.conn
        except sqlite3.Error as exc:
            logger.error("Transaction failed: %s", exc)
            raise StorageError(f"Database error: {exc}") from exc

    def _fetchall(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            return self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Database error: {exc}") from exc

    def _fetchone(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        try:
            return self.conn.execute(sql, params).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Database error: {exc}") from exc

    @staticmethod
    def _require_thread(conn: sqlite3.Connection, thread_id: str) -> None:
        row = conn.execute("SELECT 1 FROM thread WHERE id = ?", (thread_id,)).fetchone()
        if row is None:
            raise NotFound(f"Thread '{thread_id}' does not exist")

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    def create_thread(self, thread_id: str, model: str, system: Optional[Message] = None) -> None:
        """Create a thread, optionally together with its system message."""
        with self._transaction() as conn:
            conn.execute("INSERT INTO thread (id, model) VALUES (?, ?)", (thread_id, model))
            if system is not None:
                conn.execute(
                    "INSERT INTO message (thread_id, role, content, timestamp, tokens) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (thread_id, int(system.role), system.content, system.timestamp, system.tokens),
                )
        logger.info("Created thread %s (model=%s)", thread_id, model)

    def get_thread_model(self, thread_id: str) -> str:
        row = self._fetchone("SELECT model FROM thread WHERE id = ?", (thread_id,))
        if row is None:
            raise NotFound(f"Thread '{thread_id}' does not exist")
        return row["model"]

    def list_threads(self) -> List[ThreadInfo]:
        """Return every thread, most recently active first."""
        rows = self._fetchall(LIST_THREADS_SQL, (int(Role.USER),))
        return [
            ThreadInfo(
                id=row["id"],
                model=row["model"],
                title=row["title"],
                last_active=row["last_active"],
                preview=row["preview"],
            )
            for row in rows
        ]

    def delete_thread(self, thread_id: str) -> None:
        """Remove a thread together with its messages, title and summaries."""
        with self._transaction() as conn:
            self._require_thread(conn, thread_id)
            conn.execute("DELETE FROM message WHERE thread_id = ?", (thread_id,))
            conn.execute("DELETE FROM title WHERE id = ?", (thread_id,))
            conn.execute("DELETE FROM summary WHERE thread_id = ?", (thread_id,))
            conn.execute("DELETE FROM thread WHERE id = ?", (thread_id,))
        logger.info("Deleted thread %s", thread_id)

    def clear(self) -> None:
        """Remove every thread."""
        with self._transaction() as conn:
            for table in ("message", "title", "summary", "thread"):
                conn.execute(f"DELETE FROM {table}")
        logger.info("Cleared all threads")

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def append_message(
        self,
        thread_id: str,
        role: Role,
        content: str,
        timestamp: float,
        tokens: int = 0,
    ) -> float:
        """Append a message and return the timestamp actually stored.

        Timestamps within a thread are strictly increasing; one that does not
        advance past the newest stored message is moved just after it.
        """
        with self._transaction() as conn:
            self._require_thread(conn, thread_id)
            row = conn.execute(
                "SELECT MAX(timestamp) AS latest FROM message WHERE thread_id = ?",
                (thread_id,),
            ).fetchone()
            latest = row["latest"]
            if latest is not None and timestamp <= latest:
                logger.debug(
                    "Timestamp %.6f does not advance past %.6f in %s, correcting",
                    timestamp,
                    latest,
                    thread_id,
                )
                timestamp = latest + TIMESTAMP_STEP
            conn.execute(
                "INSERT INTO message (thread_id, role, content, timestamp, tokens) "
                "VALUES (?, ?, ?, ?, ?)",
                (thread_id, int(role), content, timestamp, tokens),
            )
        return timestamp

    def load_messages(self, thread_id: str) -> List[Message]:
        rows = self._fetchall(
            "SELECT role, content, timestamp, tokens FROM message "
            "WHERE thread_id = ? ORDER BY timestamp",
            (thread_id,),
        )
        return [
            Message(
                role=Role(row["role"]),
                content=row["content"],
                timestamp=row["timestamp"],
                tokens=row["tokens"],
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Titles
    # ------------------------------------------------------------------

    def get_title(self, thread_id: str) -> Optional[str]:
        row = self._fetchone("SELECT content FROM title WHERE id = ?", (thread_id,))
        return row["content"] if row is not None else None

    def upsert_title(self, thread_id: str, content: str) -> None:
        with self._transaction() as conn:
            self._require_thread(conn, thread_id)
            conn.execute(
                "INSERT INTO title (id, content) VALUES (?, ?) "
                "ON CONFLICT(id) DO UPDATE SET content = excluded.content",
                (thread_id, content),
            )

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def load_summaries(self, thread_id: str) -> List[Summary]:
        rows = self._fetchall(
            "SELECT start_index, end_index, content FROM summary "
            "WHERE thread_id = ? ORDER BY start_index",
            (thread_id,),
        )
        return [Summary(row["start_index"], row["end_index"], row["content"]) for row in rows]

    def upsert_summary(self, thread_id: str, start_index: int, end_index: int, content: str) -> None:
        """Store a summary for ``[start_index, end_index)``.

        Existing summaries lying entirely inside the new range are replaced.
        A range that partially overlaps an existing one is rejected.
        """
        if not 0 <= start_index < end_index:
            raise StorageError(f"Invalid summary range [{start_index}, {end_index})")

        with self._transaction() as conn:
            self._require_thread(conn, thread_id)
            rows = conn.execute(
                "SELECT start_index, end_index FROM summary WHERE thread_id = ?",
                (thread_id,),
            ).fetchall()
            for row in rows:
                s, e = row["start_index"], row["end_index"]
                if start_index <= s and e <= end_index:
                    conn.execute(
                        "DELETE FROM summary WHERE thread_id = ? AND start_index = ? AND end_index = ?",
                        (thread_id, s, e),
                    )
                elif s < end_index and start_index < e:
                    raise StorageError(
                        f"Summary [{start_index}, {end_index}) overlaps existing [{s}, {e})"
                    )
            conn.execute(
                "INSERT INTO summary (thread_id, start_index, end_index, content) VALUES (?, ?, ?, ?)",
                (thread_id, start_index, end_index, content),
            )
        logger.info("Stored summary [%d, %d) for thread %s", start_index, end_index, thread_id)
