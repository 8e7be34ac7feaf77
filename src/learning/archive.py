"""Append-only archive of edit events.

Events are kept regardless of opt-out or pause so a later policy change can
re-derive patterns from them. Rows are never deleted.
"""

import sqlite3
from datetime import datetime
from pathlib import Path

from db import wal_connect

from .models import EditEvent, parse_timestamp


class EditArchive:
    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with wal_connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS edit_events (
                    id TEXT PRIMARY KEY,
                    timestamp TEXT NOT NULL,
                    refinement_mode TEXT NOT NULL,
                    original_text TEXT NOT NULL,
                    edited_text TEXT NOT NULL,
                    source_context TEXT,
                    is_opted_out INTEGER NOT NULL DEFAULT 0,
                    was_paused INTEGER NOT NULL DEFAULT 0,
                    processed INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_timestamp ON edit_events(timestamp)"
            )

    def append(self, event: EditEvent, was_paused: bool = False) -> None:
        with wal_connect(self.db_path) as conn:
            conn.execute(
                """INSERT INTO edit_events
                   (id, timestamp, refinement_mode, original_text, edited_text,
                    source_context, is_opted_out, was_paused)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event.id,
                    event.timestamp.isoformat(),
                    event.refinement_mode,
                    event.original_text,
                    event.edited_text,
                    event.source_context,
                    int(event.is_opted_out),
                    int(was_paused),
                ),
            )

    def mark_processed(self, event_id: str) -> None:
        with wal_connect(self.db_path) as conn:
            conn.execute("UPDATE edit_events SET processed = 1 WHERE id = ?", (event_id,))

    def get(self, event_id: str) -> EditEvent | None:
        with wal_connect(self.db_path, row_factory=True) as conn:
            row = conn.execute("SELECT * FROM edit_events WHERE id = ?", (event_id,)).fetchone()
        return self._row_to_event(row) if row else None

    def unprocessed(self, include_opted_out: bool = False) -> list[EditEvent]:
        """Archived events that never produced patterns, oldest first."""
        sql = "SELECT * FROM edit_events WHERE processed = 0"
        if not include_opted_out:
            sql += " AND is_opted_out = 0"
        sql += " ORDER BY timestamp ASC"
        with wal_connect(self.db_path, row_factory=True) as conn:
            rows = conn.execute(sql).fetchall()
        return [self._row_to_event(r) for r in rows]

    def learnable_since(self, since: datetime | None) -> list[EditEvent]:
        """Events that contributed learning signal, for profile rebuilds."""
        sql = "SELECT * FROM edit_events WHERE processed = 1"
        params: list = []
        if since:
            sql += " AND timestamp > ?"
            params.append(since.isoformat())
        sql += " ORDER BY timestamp ASC"
        with wal_connect(self.db_path, row_factory=True) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_event(r) for r in rows]

    def count(self) -> dict:
        with wal_connect(self.db_path) as conn:
            row = conn.execute(
                """SELECT COUNT(*), COALESCE(SUM(is_opted_out), 0),
                          COALESCE(SUM(was_paused), 0), COALESCE(SUM(processed), 0)
                   FROM edit_events"""
            ).fetchone()
        return {"total": row[0], "opted_out": row[1], "paused": row[2], "processed": row[3]}

    @staticmethod
    def _row_to_event(row: sqlite3.Row) -> EditEvent:
        d = dict(row)
        return EditEvent(
            id=d["id"],
            timestamp=parse_timestamp(d["timestamp"]),
            refinement_mode=d["refinement_mode"],
            original_text=d["original_text"],
            edited_text=d["edited_text"],
            source_context=d["source_context"],
            is_opted_out=bool(d["is_opted_out"]),
        )
