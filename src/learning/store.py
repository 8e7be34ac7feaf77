"""Pattern Store: SQLite persistence for learned correction patterns.

Single source of truth for what has been learned. Confidence is derived on
every read (see :mod:`learning.scoring`); only the evidence behind it is stored.
"""

import json
import sqlite3
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable

import structlog

from db import check_integrity, wal_connect, write_transaction
from shared_types import MutationType, PatternKind

from .errors import PatternNotFoundError, StoreCorruptionError
from .merge import PatternRecord, merge_records, pattern_id
from .models import CorrectionPattern, PatternFilter, normalize_surface, parse_timestamp, utcnow
from .scoring import ConfidencePolicy

logger = structlog.get_logger()


def move_aside(db_path: str | Path) -> Path:
    """Rename a database file to ``<name>.corrupt-<timestamp>``, dropping WAL sidecars."""
    path = Path(db_path).expanduser()
    stamp = utcnow().strftime("%Y%m%dT%H%M%S")
    moved = path.with_name(f"{path.name}.corrupt-{stamp}")
    path.rename(moved)
    for suffix in ("-wal", "-shm"):
        path.with_name(path.name + suffix).unlink(missing_ok=True)
    return moved


def recover_corrupt_store(db_path: str | Path) -> Path | None:
    """Move an unreadable database aside so an empty one can be rebuilt.

    Returns the path the corrupt file was moved to, or None if it was healthy.
    """
    path = Path(db_path).expanduser()
    if check_integrity(path):
        return None
    moved = move_aside(path)
    logger.error("store.corruption_recovered", db_path=str(path), moved_to=str(moved))
    return moved


class PatternStore:
    """Versioned collection of correction patterns with confidence metadata.

    When an ``outbox`` is attached, every mutation also records a sync queue
    item inside the same transaction.
    """

    def __init__(
        self,
        db_path: str | Path,
        policy: ConfidencePolicy | None = None,
        outbox=None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.policy = policy or ConfidencePolicy()
        self.outbox = outbox
        self.clock = clock
        try:
            self._init_db()
        except sqlite3.DatabaseError as e:
            raise StoreCorruptionError(str(e)) from e

    def _init_db(self):
        with wal_connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS correction_patterns (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    from_surface TEXT NOT NULL,
                    to_surface TEXT NOT NULL,
                    norm_from TEXT NOT NULL,
                    norm_to TEXT NOT NULL,
                    scope_key TEXT NOT NULL DEFAULT '',
                    scoped_mode TEXT,
                    occurrence_count INTEGER NOT NULL CHECK(occurrence_count >= 1),
                    first_seen_at TEXT NOT NULL,
                    last_reinforced_at TEXT NOT NULL,
                    last_applied_at TEXT,
                    is_user_disabled INTEGER NOT NULL DEFAULT 0,
                    disabled_changed_at TEXT,
                    generation INTEGER NOT NULL DEFAULT 0,
                    UNIQUE(norm_from, norm_to, scope_key)
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_patterns_scope
                ON correction_patterns(scope_key, is_user_disabled)
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS pattern_tombstones (
                    id TEXT PRIMARY KEY,
                    generation INTEGER NOT NULL,
                    deleted_at TEXT NOT NULL,
                    norm_from TEXT NOT NULL,
                    norm_to TEXT NOT NULL,
                    scope_key TEXT NOT NULL DEFAULT '',
                    record TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tombstones_key
                ON pattern_tombstones(norm_from, norm_to, scope_key)
            """)

    # --- reads ---

    def get(self, pattern_id: str) -> CorrectionPattern | None:
        with wal_connect(self.db_path, row_factory=True) as conn:
            row = conn.execute(
                "SELECT * FROM correction_patterns WHERE id = ?", (pattern_id,)
            ).fetchone()
        return self._row_to_pattern(row, self.clock()) if row else None

    def find_by_key(
        self, from_surface: str, to_surface: str, scoped_mode: str | None
    ) -> CorrectionPattern | None:
        with wal_connect(self.db_path, row_factory=True) as conn:
            row = conn.execute(
                """SELECT * FROM correction_patterns
                   WHERE norm_from = ? AND norm_to = ? AND scope_key = ?""",
                (normalize_surface(from_surface), normalize_surface(to_surface), scoped_mode or ""),
            ).fetchone()
        return self._row_to_pattern(row, self.clock()) if row else None

    def list_patterns(self, filter: PatternFilter | None = None) -> list[CorrectionPattern]:
        """Patterns matching the filter, highest confidence first."""
        f = filter or PatternFilter()
        sql = "SELECT * FROM correction_patterns WHERE 1=1"
        params: list = []
        if f.mode is not None:
            sql += " AND scope_key IN ('', ?)"
            params.append(f.mode)
        if f.kind is not None:
            sql += " AND kind = ?"
            params.append(PatternKind(f.kind).value)
        if not f.include_disabled:
            sql += " AND is_user_disabled = 0"
        if f.search:
            sql += " AND (norm_from LIKE ? OR norm_to LIKE ?)"
            like = f"%{normalize_surface(f.search)}%"
            params.extend([like, like])

        now = self.clock()
        with wal_connect(self.db_path, row_factory=True) as conn:
            rows = conn.execute(sql, params).fetchall()
        patterns = [self._row_to_pattern(r, now) for r in rows]

        if f.eligible_only:
            patterns = [p for p in patterns if self.policy.is_eligible(p, now)]
        patterns.sort(key=lambda p: (-p.confidence_score, p.from_surface.lower(), p.id))
        if f.limit is not None:
            patterns = patterns[: f.limit]
        return patterns

    def eligible_patterns(self, mode: str | None) -> list[CorrectionPattern]:
        """Enabled patterns scoped to ``mode`` (or global) that pass the policy."""
        now = self.clock()
        with wal_connect(self.db_path, row_factory=True) as conn:
            rows = conn.execute(
                """SELECT * FROM correction_patterns
                   WHERE is_user_disabled = 0
                     AND occurrence_count >= ?
                     AND scope_key IN ('', ?)""",
                (self.policy.min_occurrences, mode or ""),
            ).fetchall()
        patterns = [self._row_to_pattern(r, now) for r in rows]
        return [p for p in patterns if self.policy.is_eligible(p, now)]

    def records(self, include_tombstones: bool = False) -> list[PatternRecord]:
        """Syncable state of every pattern (plus tombstones when asked)."""
        with wal_connect(self.db_path, row_factory=True) as conn:
            rows = conn.execute("SELECT * FROM correction_patterns ORDER BY id").fetchall()
            tombs = []
            if include_tombstones:
                tombs = conn.execute("SELECT record FROM pattern_tombstones ORDER BY id").fetchall()
        records = [PatternRecord.from_pattern(self._row_to_pattern(r)) for r in rows]
        records.extend(PatternRecord.from_payload(json.loads(t[0])) for t in tombs)
        return records

    def count(self) -> int:
        with wal_connect(self.db_path) as conn:
            return conn.execute("SELECT COUNT(*) FROM correction_patterns").fetchone()[0]

    def get_stats(self) -> dict:
        now = self.clock()
        patterns = self.list_patterns()
        by_kind: dict[str, int] = {}
        for p in patterns:
            by_kind[p.kind.value] = by_kind.get(p.kind.value, 0) + 1
        return {
            "total": len(patterns),
            "eligible": sum(1 for p in patterns if self.policy.is_eligible(p, now)),
            "disabled": sum(1 for p in patterns if p.is_user_disabled),
            "by_kind": by_kind,
        }

    # --- mutations ---

    def reinforce_or_create(
        self,
        from_surface: str,
        to_surface: str,
        kind: PatternKind,
        scoped_mode: str | None = None,
        observed_at: datetime | None = None,
    ) -> tuple[CorrectionPattern, bool]:
        """Count one more occurrence of a correction, creating it if new.

        The existing pattern is found by its normalized key, so a row that
        arrived through import or sync under another id keeps that id.
        Returns the updated pattern and whether it was created.
        """
        ((pattern, created),) = self.reinforce_many(
            [(from_surface, to_surface, kind)], scoped_mode, observed_at
        )
        return pattern, created

    def reinforce_many(
        self,
        corrections: list[tuple[str, str, PatternKind]],
        scoped_mode: str | None = None,
        observed_at: datetime | None = None,
    ) -> list[tuple[CorrectionPattern, bool]]:
        """Reinforce every correction of one edit in a single transaction.

        Either all of them are counted or, on failure, none are.
        """
        if not corrections:
            return []
        observed_at = observed_at or self.clock()
        results = []
        with write_transaction(self.db_path) as conn:
            for from_surface, to_surface, kind in corrections:
                results.append(
                    self._reinforce(conn, from_surface, to_surface, kind, scoped_mode, observed_at)
                )

        now = self.clock()
        for pattern, created in results:
            pattern.confidence_score = self.policy.score(pattern, now)
            logger.debug(
                "store.pattern_reinforced",
                pattern_id=pattern.id,
                created=created,
                occurrences=pattern.occurrence_count,
            )
        return results

    def _reinforce(
        self,
        conn: sqlite3.Connection,
        from_surface: str,
        to_surface: str,
        kind: PatternKind,
        scoped_mode: str | None,
        observed_at: datetime,
    ) -> tuple[CorrectionPattern, bool]:
        key = (normalize_surface(from_surface), normalize_surface(to_surface), scoped_mode or "")
        row = self._row_by_key(conn, key)
        if row:
            existing = self._row_to_pattern(row)
            record = replace(
                PatternRecord.from_pattern(existing),
                occurrence_count=existing.occurrence_count + 1,
                last_reinforced_at=max(existing.last_reinforced_at, observed_at),
            )
            mutation = MutationType.UPDATE
            created = False
        else:
            pid = pattern_id(from_surface, to_surface, scoped_mode)
            tomb = self._tombstone_for(conn, pid, key)
            # Relearning reuses the buried id so the new generation outranks the tombstone
            record = PatternRecord(
                id=tomb.id if tomb else pid,
                kind=PatternKind(kind),
                from_surface=from_surface,
                to_surface=to_surface,
                scoped_mode=scoped_mode,
                occurrence_count=1,
                first_seen_at=observed_at,
                last_reinforced_at=observed_at,
                generation=tomb.generation + 1 if tomb else 0,
            )
            conn.execute(
                """DELETE FROM pattern_tombstones
                   WHERE id = ? OR (norm_from = ? AND norm_to = ? AND scope_key = ?)""",
                (record.id, *key),
            )
            mutation = MutationType.CREATE
            created = True

        self._upsert(conn, record)
        self._enqueue(conn, mutation, record)
        return record.to_pattern(), created

    def mark_applied(self, pattern_ids: list[str], at: datetime | None = None) -> None:
        """Record application time. Application is not reinforcement."""
        if not pattern_ids:
            return
        at = at or self.clock()
        with wal_connect(self.db_path) as conn:
            conn.executemany(
                "UPDATE correction_patterns SET last_applied_at = ? WHERE id = ?",
                [(at.isoformat(), pid) for pid in pattern_ids],
            )

    def set_disabled(self, pattern_id: str, disabled: bool) -> CorrectionPattern:
        now = self.clock()
        with write_transaction(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM correction_patterns WHERE id = ?", (pattern_id,)
            ).fetchone()
            if not row:
                raise PatternNotFoundError(pattern_id)
            conn.execute(
                """UPDATE correction_patterns
                   SET is_user_disabled = ?, disabled_changed_at = ?
                   WHERE id = ?""",
                (int(disabled), now.isoformat(), pattern_id),
            )
            updated = conn.execute(
                "SELECT * FROM correction_patterns WHERE id = ?", (pattern_id,)
            ).fetchone()
            pattern = self._row_to_pattern(updated, now)
            self._enqueue(conn, MutationType.UPDATE, PatternRecord.from_pattern(pattern))
        logger.info("store.pattern_disabled", pattern_id=pattern_id, disabled=disabled)
        return pattern

    def delete(self, pattern_id: str) -> None:
        """Remove a pattern, leaving a tombstone for sync."""
        now = self.clock()
        with write_transaction(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM correction_patterns WHERE id = ?", (pattern_id,)
            ).fetchone()
            if not row:
                raise PatternNotFoundError(pattern_id)
            tomb = PatternRecord.from_pattern(self._row_to_pattern(row)).tombstone(now)
            self._bury(conn, tomb)
            self._enqueue(conn, MutationType.DELETE, tomb)
        logger.info("store.pattern_deleted", pattern_id=pattern_id)

    def reset(self) -> int:
        """Delete every pattern (full learning reset). Returns count deleted."""
        now = self.clock()
        with write_transaction(self.db_path) as conn:
            rows = conn.execute("SELECT * FROM correction_patterns").fetchall()
            for row in rows:
                tomb = PatternRecord.from_pattern(self._row_to_pattern(row)).tombstone(now)
                self._bury(conn, tomb)
                self._enqueue(conn, MutationType.DELETE, tomb)
        return len(rows)

    def merge_remote(
        self,
        records: list[PatternRecord],
        echo: bool = True,
        publish_changes: bool = False,
    ) -> dict:
        """Merge incoming pattern states with the field-level merge rule.

        Runs in a single write transaction so concurrent readers see either
        the state before or after the whole merge. With ``echo`` the merged
        state is queued back out whenever it carries evidence the incoming
        record lacked; with ``publish_changes`` (snapshot import) whenever the
        local state changed.
        """
        stats = {"created": 0, "updated": 0, "deleted": 0, "unchanged": 0}
        with write_transaction(self.db_path) as conn:
            for incoming in records:
                local = self._local_record(conn, incoming)
                merged = merge_records(local, incoming) if local else incoming

                if merged == local:
                    stats["unchanged"] += 1
                elif merged.is_deleted:
                    if local is not None and not local.is_deleted:
                        stats["deleted"] += 1
                    else:
                        stats["unchanged"] += 1
                    self._bury(conn, merged)
                else:
                    if local is None or local.is_deleted:
                        stats["created"] += 1
                    else:
                        stats["updated"] += 1
                    if local is not None and local.id != merged.id:
                        conn.execute("DELETE FROM correction_patterns WHERE id = ?", (local.id,))
                    conn.execute(
                        """DELETE FROM pattern_tombstones
                           WHERE id = ? OR (norm_from = ? AND norm_to = ? AND scope_key = ?)""",
                        (merged.id, *merged.key),
                    )
                    self._upsert(conn, merged)

                if (echo and merged != incoming) or (publish_changes and merged != local):
                    mutation = MutationType.DELETE if merged.is_deleted else MutationType.UPDATE
                    self._enqueue(conn, mutation, merged)

        logger.info("store.merge_complete", incoming=len(records), **stats)
        return stats

    # --- internals ---

    def _local_record(self, conn: sqlite3.Connection, incoming: PatternRecord):
        row = conn.execute(
            "SELECT * FROM correction_patterns WHERE id = ?", (incoming.id,)
        ).fetchone()
        if row is None:
            row = self._row_by_key(conn, incoming.key)
        if row is not None:
            return PatternRecord.from_pattern(self._row_to_pattern(row))
        return self._tombstone_for(conn, incoming.id, incoming.key)

    @staticmethod
    def _row_by_key(conn: sqlite3.Connection, key: tuple[str, str, str]) -> sqlite3.Row | None:
        return conn.execute(
            """SELECT * FROM correction_patterns
               WHERE norm_from = ? AND norm_to = ? AND scope_key = ?""",
            key,
        ).fetchone()

    @staticmethod
    def _tombstone_for(
        conn: sqlite3.Connection, pid: str, key: tuple[str, str, str]
    ) -> PatternRecord | None:
        """Newest tombstone stored under ``pid`` or under the same normalized key."""
        tomb = conn.execute(
            """SELECT record FROM pattern_tombstones
               WHERE id = ? OR (norm_from = ? AND norm_to = ? AND scope_key = ?)
               ORDER BY generation DESC, deleted_at DESC
               LIMIT 1""",
            (pid, *key),
        ).fetchone()
        return PatternRecord.from_payload(json.loads(tomb[0])) if tomb else None

    def _upsert(self, conn: sqlite3.Connection, record: PatternRecord) -> None:
        norm_from, norm_to, scope = record.key
        conn.execute(
            """INSERT INTO correction_patterns
               (id, kind, from_surface, to_surface, norm_from, norm_to, scope_key,
                scoped_mode, occurrence_count, first_seen_at, last_reinforced_at,
                last_applied_at, is_user_disabled, disabled_changed_at, generation)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   kind = excluded.kind,
                   from_surface = excluded.from_surface,
                   to_surface = excluded.to_surface,
                   occurrence_count = excluded.occurrence_count,
                   first_seen_at = excluded.first_seen_at,
                   last_reinforced_at = excluded.last_reinforced_at,
                   last_applied_at = excluded.last_applied_at,
                   is_user_disabled = excluded.is_user_disabled,
                   disabled_changed_at = excluded.disabled_changed_at,
                   generation = excluded.generation""",
            (
                record.id,
                record.kind.value,
                record.from_surface,
                record.to_surface,
                norm_from,
                norm_to,
                scope,
                record.scoped_mode,
                record.occurrence_count,
                record.first_seen_at.isoformat(),
                record.last_reinforced_at.isoformat(),
                record.last_applied_at.isoformat() if record.last_applied_at else None,
                int(record.is_user_disabled),
                record.disabled_changed_at.isoformat() if record.disabled_changed_at else None,
                record.generation,
            ),
        )

    def _bury(self, conn: sqlite3.Connection, tomb: PatternRecord) -> None:
        norm_from, norm_to, scope = tomb.key
        conn.execute(
            """DELETE FROM correction_patterns
               WHERE id = ? OR (norm_from = ? AND norm_to = ? AND scope_key = ?)""",
            (tomb.id, norm_from, norm_to, scope),
        )
        conn.execute(
            """INSERT INTO pattern_tombstones
               (id, generation, deleted_at, norm_from, norm_to, scope_key, record)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   generation = excluded.generation,
                   deleted_at = excluded.deleted_at,
                   record = excluded.record""",
            (
                tomb.id,
                tomb.generation,
                tomb.deleted_at.isoformat(),
                norm_from,
                norm_to,
                scope,
                json.dumps(tomb.to_payload()),
            ),
        )

    def _enqueue(self, conn: sqlite3.Connection, mutation: MutationType, record: PatternRecord):
        if self.outbox is None:
            return
        self.outbox.enqueue(conn, mutation, record.id, record.to_payload(), now=self.clock())

    def _row_to_pattern(self, row: sqlite3.Row, now: datetime | None = None) -> CorrectionPattern:
        d = dict(row)
        pattern = CorrectionPattern(
            id=d["id"],
            kind=PatternKind(d["kind"]),
            from_surface=d["from_surface"],
            to_surface=d["to_surface"],
            scoped_mode=d["scoped_mode"],
            occurrence_count=d["occurrence_count"],
            last_applied_at=parse_timestamp(d["last_applied_at"]),
            last_reinforced_at=parse_timestamp(d["last_reinforced_at"]),
            is_user_disabled=bool(d["is_user_disabled"]),
            first_seen_at=parse_timestamp(d["first_seen_at"]),
            disabled_changed_at=parse_timestamp(d["disabled_changed_at"]),
            generation=d["generation"],
        )
        if now is not None:
            pattern.confidence_score = self.policy.score(pattern, now)
        return pattern
