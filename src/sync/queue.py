"""Durable outbound queue of pattern mutations awaiting remote acknowledgment."""

import json
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path

import structlog

from db import wal_connect
from learning.models import SyncQueueItem, new_id, parse_timestamp, utcnow
from shared_types import MutationType

logger = structlog.get_logger().bind(source="sync_queue")

DEFAULT_INITIAL_BACKOFF = 1.0
DEFAULT_MAX_BACKOFF = 60.0


def backoff_delay(
    retry_count: int,
    initial: float = DEFAULT_INITIAL_BACKOFF,
    maximum: float = DEFAULT_MAX_BACKOFF,
) -> float:
    """Seconds to wait after the ``retry_count``-th failure (1s, 2s, 4s ... capped)."""
    if retry_count <= 0:
        return 0.0
    return min(initial * 2 ** (retry_count - 1), maximum)


class SyncQueue:
    """SQLite-backed outbox.

    Items are only ever removed by :meth:`ack`, after the remote confirmed the
    write, so an interrupted or cancelled push leaves the queue untouched.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with wal_connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_queue (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    mutation_type TEXT NOT NULL
                        CHECK(mutation_type IN ('create','update','delete')),
                    target_entity_id TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    enqueued_at TEXT NOT NULL,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    next_attempt_at TEXT,
                    last_error TEXT,
                    revision INTEGER NOT NULL DEFAULT 0,
                    abandoned INTEGER NOT NULL DEFAULT 0
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_queue_target
                ON sync_queue(target_entity_id, abandoned)
            """)

    def enqueue(
        self,
        conn: sqlite3.Connection,
        mutation_type: MutationType,
        target_id: str,
        payload: dict,
        now: datetime | None = None,
    ) -> str:
        """Record a mutation inside the caller's transaction.

        A still-pending item for the same target is coalesced: its payload is
        replaced and its revision bumped, so an in-flight push of the older
        payload can't acknowledge the newer one away.
        """
        now = now or utcnow()
        row = conn.execute(
            """SELECT id, mutation_type FROM sync_queue
               WHERE target_entity_id = ? AND abandoned = 0
               ORDER BY seq DESC LIMIT 1""",
            (target_id,),
        ).fetchone()

        if row:
            item_id, existing_type = row[0], MutationType(row[1])
            if existing_type == MutationType.CREATE and mutation_type == MutationType.UPDATE:
                mutation_type = MutationType.CREATE
            conn.execute(
                """UPDATE sync_queue
                   SET mutation_type = ?, payload = ?, revision = revision + 1
                   WHERE id = ?""",
                (mutation_type.value, json.dumps(payload), item_id),
            )
            return item_id

        item_id = new_id()
        conn.execute(
            """INSERT INTO sync_queue
               (id, mutation_type, target_entity_id, payload, enqueued_at, next_attempt_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                item_id,
                mutation_type.value,
                target_id,
                json.dumps(payload),
                now.isoformat(),
                now.isoformat(),
            ),
        )
        return item_id

    def due_items(self, now: datetime | None = None, limit: int = 50) -> list[SyncQueueItem]:
        """Pending items whose backoff has elapsed, oldest first."""
        now = now or utcnow()
        with wal_connect(self.db_path, row_factory=True) as conn:
            rows = conn.execute(
                """SELECT * FROM sync_queue
                   WHERE abandoned = 0
                     AND (next_attempt_at IS NULL OR next_attempt_at <= ?)
                   ORDER BY seq ASC LIMIT ?""",
                (now.isoformat(), limit),
            ).fetchall()
        return [self._row_to_item(r) for r in rows]

    def all_items(self, include_abandoned: bool = True) -> list[SyncQueueItem]:
        sql = "SELECT * FROM sync_queue"
        if not include_abandoned:
            sql += " WHERE abandoned = 0"
        sql += " ORDER BY seq ASC"
        with wal_connect(self.db_path, row_factory=True) as conn:
            rows = conn.execute(sql).fetchall()
        return [self._row_to_item(r) for r in rows]

    def get(self, item_id: str) -> SyncQueueItem | None:
        with wal_connect(self.db_path, row_factory=True) as conn:
            row = conn.execute("SELECT * FROM sync_queue WHERE id = ?", (item_id,)).fetchone()
        return self._row_to_item(row) if row else None

    def ack(self, item: SyncQueueItem) -> bool:
        """Remove an acknowledged item unless it was coalesced since it was read."""
        with wal_connect(self.db_path) as conn:
            cur = conn.execute(
                "DELETE FROM sync_queue WHERE id = ? AND revision = ?",
                (item.id, item.revision),
            )
            removed = cur.rowcount > 0
        if not removed:
            logger.debug("sync_queue.ack_superseded", item_id=item.id)
        return removed

    def record_failure(
        self,
        item: SyncQueueItem,
        error: str,
        max_retries: int,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
        now: datetime | None = None,
    ) -> bool:
        """Count a failed attempt and schedule the next one.

        Returns True when the item just ran out of retries and was abandoned.
        """
        now = now or utcnow()
        with wal_connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT retry_count FROM sync_queue WHERE id = ?", (item.id,)
            ).fetchone()
            if not row:
                return False
            retries = row[0] + 1
            abandoned = retries >= max_retries
            next_at = now + timedelta(seconds=backoff_delay(retries, initial_backoff, max_backoff))
            conn.execute(
                """UPDATE sync_queue
                   SET retry_count = ?, next_attempt_at = ?, last_error = ?, abandoned = ?
                   WHERE id = ?""",
                (retries, next_at.isoformat(), error[:500], int(abandoned), item.id),
            )
        if abandoned:
            logger.warning(
                "sync_queue.item_abandoned",
                item_id=item.id,
                target_id=item.target_entity_id,
                retries=retries,
            )
        return abandoned

    def reset_schedule(self, now: datetime | None = None) -> int:
        """Make every non-abandoned item due now; retry counts are kept."""
        now = now or utcnow()
        with wal_connect(self.db_path) as conn:
            cur = conn.execute(
                "UPDATE sync_queue SET next_attempt_at = ? WHERE abandoned = 0",
                (now.isoformat(),),
            )
            return cur.rowcount

    def rearm_abandoned(self, now: datetime | None = None) -> int:
        """Give abandoned items a fresh retry budget."""
        now = now or utcnow()
        with wal_connect(self.db_path) as conn:
            cur = conn.execute(
                """UPDATE sync_queue
                   SET abandoned = 0, retry_count = 0, next_attempt_at = ?, last_error = NULL
                   WHERE abandoned = 1""",
                (now.isoformat(),),
            )
            return cur.rowcount

    def next_attempt_at(self) -> datetime | None:
        """Earliest scheduled attempt among pending items."""
        with wal_connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT MIN(next_attempt_at) FROM sync_queue WHERE abandoned = 0"
            ).fetchone()
        return parse_timestamp(row[0]) if row else None

    def pending_count(self) -> int:
        with wal_connect(self.db_path) as conn:
            return conn.execute("SELECT COUNT(*) FROM sync_queue").fetchone()[0]

    def abandoned_count(self) -> int:
        with wal_connect(self.db_path) as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM sync_queue WHERE abandoned = 1"
            ).fetchone()[0]

    def last_error(self) -> str | None:
        with wal_connect(self.db_path) as conn:
            row = conn.execute(
                """SELECT last_error FROM sync_queue
                   WHERE last_error IS NOT NULL ORDER BY seq DESC LIMIT 1"""
            ).fetchone()
        return row[0] if row else None

    def clear(self) -> int:
        with wal_connect(self.db_path) as conn:
            return conn.execute("DELETE FROM sync_queue").rowcount

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> SyncQueueItem:
        d = dict(row)
        return SyncQueueItem(
            id=d["id"],
            mutation_type=MutationType(d["mutation_type"]),
            target_entity_id=d["target_entity_id"],
            payload=json.loads(d["payload"]),
            enqueued_at=parse_timestamp(d["enqueued_at"]),
            retry_count=d["retry_count"],
            next_attempt_at=parse_timestamp(d["next_attempt_at"]),
            last_error=d["last_error"],
            revision=d["revision"],
            abandoned=bool(d["abandoned"]),
        )
