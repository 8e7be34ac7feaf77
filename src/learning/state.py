"""Small persisted key/value state: pause flag, reset markers, sync cursor."""

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from db import wal_connect

from .models import parse_timestamp

PAUSED = "learning_paused"
LAST_RESET_AT = "last_reset_at"
RESET_NOTICE = "reset_notice"
AB_STATE = "ab_state"
SYNC_CURSOR = "sync_cursor"
LAST_SUCCESSFUL_SYNC = "last_successful_sync"
SYNC_ERROR = "sync_error"
SYNC_OFFLINE = "sync_offline"
SYNC_CONFLICT = "sync_conflict"


class EngineState:
    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with wal_connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS engine_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

    def get(self, key: str, default: Any = None) -> Any:
        with wal_connect(self.db_path) as conn:
            row = conn.execute("SELECT value FROM engine_state WHERE key = ?", (key,)).fetchone()
        return json.loads(row[0]) if row else default

    def set(self, key: str, value: Any) -> None:
        with wal_connect(self.db_path) as conn:
            conn.execute(
                """INSERT INTO engine_state (key, value) VALUES (?, ?)
                   ON CONFLICT(key) DO UPDATE SET value = excluded.value""",
                (key, json.dumps(value)),
            )

    def delete(self, key: str) -> None:
        with wal_connect(self.db_path) as conn:
            conn.execute("DELETE FROM engine_state WHERE key = ?", (key,))

    def get_time(self, key: str) -> datetime | None:
        return parse_timestamp(self.get(key))

    def set_time(self, key: str, value: datetime) -> None:
        self.set(key, value.isoformat())

    @property
    def paused(self) -> bool:
        return bool(self.get(PAUSED, False))

    @paused.setter
    def paused(self, value: bool) -> None:
        self.set(PAUSED, bool(value))
