"""SQLite-backed journal of conflict decisions made during restore merges."""

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from .models import ConflictRecord, Resolution


class ConflictJournal:
    """
    Durable log of applied conflict resolutions.

    An interrupted interactive merge reads earlier decisions back so the
    user is not asked the same question twice.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path), isolation_level=None)
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        """Initialize database schema."""
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS conflicts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                folder TEXT NOT NULL,
                relative_path TEXT NOT NULL,
                existing_info TEXT NOT NULL,
                incoming_info TEXT NOT NULL,
                resolution TEXT NOT NULL,
                resolved_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_conflicts_lookup
                ON conflicts (session_id, folder, relative_path);
        """)

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def log(self, session_id: str, folder: str, record: ConflictRecord) -> None:
        """Log a decided conflict. Pending records are not journaled."""
        if record.resolution is Resolution.PENDING:
            return
        self.conn.execute(
            """INSERT INTO conflicts
               (session_id, folder, relative_path, existing_info, incoming_info,
                resolution, resolved_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (session_id, folder, record.relative_path,
             json.dumps(record.existing.to_dict()), json.dumps(record.incoming.to_dict()),
             record.resolution.value, datetime.now().isoformat())
        )

    def log_batch(self, session_id: str, folder: str, records: list[ConflictRecord]) -> None:
        """Log several decisions in a single transaction."""
        self.conn.execute("BEGIN")
        try:
            for record in records:
                self.log(session_id, folder, record)
            self.conn.execute("COMMIT")
        except Exception:
            self.conn.execute("ROLLBACK")
            raise

    def previous(self, session_id: str, folder: str, relative_path: str) -> Optional[Resolution]:
        """Get the latest decision for a path within a session and folder."""
        cursor = self.conn.execute(
            """SELECT resolution FROM conflicts
               WHERE session_id = ? AND folder = ? AND relative_path = ?
               ORDER BY id DESC LIMIT 1""",
            (session_id, folder, relative_path)
        )
        row = cursor.fetchone()
        return Resolution(row[0]) if row else None

    def previous_for_folder(self, session_id: str, folder: str) -> dict[str, Resolution]:
        """Get the latest decision for every journaled path of a folder."""
        cursor = self.conn.execute(
            """SELECT relative_path, resolution FROM conflicts
               WHERE session_id = ? AND folder = ?
               ORDER BY id""",
            (session_id, folder)
        )
        return {row[0]: Resolution(row[1]) for row in cursor}

    def count(self) -> int:
        """Get the total number of conflicts logged."""
        cursor = self.conn.execute("SELECT COUNT(*) FROM conflicts")
        return cursor.fetchone()[0]

    def clear(self) -> None:
        """Delete the database file."""
        self.conn.close()
        for suffix in ("", "-wal", "-shm"):
            path = Path(str(self.db_path) + suffix)
            if path.exists():
                path.unlink()
