"""
Capture Log - SQLite audit trail of saved captures.
Records every frame handed to the screenshot store and whether it has been
uploaded to the remote store.
"""

import logging
import os
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional


logger = logging.getLogger(__name__)


@dataclass
class CaptureEvent:
    """One saved capture."""
    id: Optional[int]
    timestamp: str
    tag: str
    path: str
    size: int
    uploaded: bool


class CaptureLog:
    """
    SQLite-based capture log.
    Keeps a history of captures even after the files themselves have been
    uploaded and deleted locally.
    """

    def __init__(self, db_path: str = "data/captures.db"):
        self.db_path = db_path
        self._lock = threading.Lock()

        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)

        self._init_db()

    def _init_db(self):
        with self._lock:
            conn = sqlite3.connect(self.db_path)
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS capture_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    tag TEXT NOT NULL,
                    path TEXT NOT NULL,
                    size INTEGER NOT NULL,
                    uploaded INTEGER DEFAULT 0
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_capture_path ON capture_events(path)
            """)

            conn.commit()
            conn.close()

            logger.info(f"Initialized capture log database at {self.db_path}")

    def record(self, tag: str, path: str, size: int, timestamp: datetime) -> int:
        """Record a saved capture. Returns the event id."""
        with self._lock:
            conn = sqlite3.connect(self.db_path)
            cursor = conn.cursor()

            cursor.execute("""
                INSERT INTO capture_events (timestamp, tag, path, size, uploaded)
                VALUES (?, ?, ?, ?, 0)
            """, (timestamp.isoformat(), tag, path, size))

            event_id = cursor.lastrowid
            conn.commit()
            conn.close()

            logger.debug(f"Logged capture #{event_id}: {tag} -> {path}")
            return event_id

    def mark_uploaded(self, path: str):
        with self._lock:
            conn = sqlite3.connect(self.db_path)
            cursor = conn.cursor()

            cursor.execute("""
                UPDATE capture_events SET uploaded = 1 WHERE path = ?
            """, (path,))

            conn.commit()
            conn.close()

    def get_recent(self, limit: int = 50, tag: Optional[str] = None) -> List[CaptureEvent]:
        with self._lock:
            conn = sqlite3.connect(self.db_path)
            cursor = conn.cursor()

            if tag:
                cursor.execute("""
                    SELECT id, timestamp, tag, path, size, uploaded
                    FROM capture_events
                    WHERE tag = ?
                    ORDER BY id DESC
                    LIMIT ?
                """, (tag, limit))
            else:
                cursor.execute("""
                    SELECT id, timestamp, tag, path, size, uploaded
                    FROM capture_events
                    ORDER BY id DESC
                    LIMIT ?
                """, (limit,))

            events = [
                CaptureEvent(
                    id=row[0],
                    timestamp=row[1],
                    tag=row[2],
                    path=row[3],
                    size=row[4],
                    uploaded=bool(row[5]),
                )
                for row in cursor.fetchall()
            ]

            conn.close()
            return events

    def get_stats(self) -> dict:
        with self._lock:
            conn = sqlite3.connect(self.db_path)
            cursor = conn.cursor()

            cursor.execute("SELECT COUNT(*) FROM capture_events")
            total = cursor.fetchone()[0]

            cursor.execute("SELECT COUNT(*) FROM capture_events WHERE uploaded = 0")
            pending = cursor.fetchone()[0]

            cursor.execute("""
                SELECT tag, COUNT(*)
                FROM capture_events
                GROUP BY tag
            """)
            by_tag = dict(cursor.fetchall())

            conn.close()

            return {
                "total_captures": total,
                "pending_upload": pending,
                "captures_by_tag": by_tag,
            }
