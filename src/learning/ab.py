"""A/B Coordinator: bounded preference sampling on short transcriptions."""

import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Callable

import structlog

from db import wal_connect, write_transaction
from shared_types import ABChoice, ABState

from .errors import AlreadyDecidedError, LearningError
from .models import ABTestRecord, new_id, parse_timestamp, utcnow
from .state import AB_STATE, EngineState

logger = structlog.get_logger()

DEFAULT_SAMPLE_BUDGET = 50
DEFAULT_MAX_WORDS = 20


class RefinementCollaborator(ABC):
    """Produces refined candidates; the coordinator never calls a model itself."""

    @abstractmethod
    def refine(self, text: str, mode: str) -> str:
        """Return one independently refined version of ``text``."""


class ABCoordinator:
    """Issues at most ``budget`` A/B tests, then goes quiet for good.

    Every issued record counts against the budget, decided or not, so the
    number of prompts a user sees is bounded even if they never answer.
    """

    def __init__(
        self,
        db_path: str | Path,
        state: EngineState,
        profiler=None,
        budget: int = DEFAULT_SAMPLE_BUDGET,
        max_words: int = DEFAULT_MAX_WORDS,
        enabled: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine_state = state
        self.profiler = profiler
        self.budget = budget
        self.max_words = max_words
        self.enabled = enabled
        self.clock = clock
        with wal_connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS ab_records (
                    id TEXT PRIMARY KEY,
                    candidate_a TEXT NOT NULL,
                    candidate_b TEXT NOT NULL,
                    word_count INTEGER NOT NULL,
                    chosen TEXT NOT NULL DEFAULT 'none',
                    refinement_mode TEXT,
                    timestamp TEXT NOT NULL,
                    decided_at TEXT,
                    learned INTEGER NOT NULL DEFAULT 0,
                    retired INTEGER NOT NULL DEFAULT 0
                )
            """)

    @property
    def state(self) -> ABState:
        return ABState(self.engine_state.get(AB_STATE, ABState.INACTIVE.value))

    def issued_count(self) -> int:
        with wal_connect(self.db_path) as conn:
            return conn.execute("SELECT COUNT(*) FROM ab_records WHERE retired = 0").fetchone()[0]

    def should_sample(self, mode: str | None, word_count: int) -> bool:
        if self.engine_state.paused or not self.enabled:
            return False
        if word_count >= self.max_words:
            return False
        if self.state == ABState.EXHAUSTED:
            return False
        return self.issued_count() < self.budget

    def open_test(
        self,
        candidate_a: str,
        candidate_b: str,
        mode: str | None = None,
        word_count: int | None = None,
    ) -> ABTestRecord | None:
        """Record a new test with ``chosen = none``.

        Returns None when A/B sampling is disabled, the candidates reach
        ``max_words`` or the budget is spent.
        """
        if word_count is None:
            word_count = max(len(candidate_a.split()), len(candidate_b.split()))
        if not self.enabled or word_count >= self.max_words:
            logger.debug("ab.test_refused", enabled=self.enabled, word_count=word_count)
            return None
        record = ABTestRecord(
            id=new_id(),
            candidate_a=candidate_a,
            candidate_b=candidate_b,
            word_count=word_count,
            timestamp=self.clock(),
            refinement_mode=mode,
        )
        with write_transaction(self.db_path) as conn:
            issued = conn.execute(
                "SELECT COUNT(*) FROM ab_records WHERE retired = 0"
            ).fetchone()[0]
            if issued >= self.budget or self.state == ABState.EXHAUSTED:
                return None
            conn.execute(
                """INSERT INTO ab_records
                   (id, candidate_a, candidate_b, word_count, chosen, refinement_mode, timestamp)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.id,
                    record.candidate_a,
                    record.candidate_b,
                    record.word_count,
                    ABChoice.NONE.value,
                    mode,
                    record.timestamp.isoformat(),
                ),
            )
            issued += 1

        new_state = ABState.EXHAUSTED if issued >= self.budget else ABState.SAMPLING
        if new_state != self.state:
            self.engine_state.set(AB_STATE, new_state.value)
            logger.info("ab.state_changed", state=new_state.value, issued=issued)
        return record

    def sample(
        self, text: str, mode: str, refiner: RefinementCollaborator
    ) -> ABTestRecord | None:
        """Ask ``refiner`` for two candidates and open a test, if sampling applies."""
        words = len(text.split())
        if not self.should_sample(mode, words):
            return None
        candidate_a = refiner.refine(text, mode)
        candidate_b = refiner.refine(text, mode)
        return self.open_test(candidate_a, candidate_b, mode, word_count=words)

    def record_choice(self, test_id: str, chosen: ABChoice | str) -> ABTestRecord:
        """Set the user's choice exactly once.

        Raises:
            AlreadyDecidedError: a choice was already recorded.
            LearningError: unknown test id.
            ValueError: ``chosen`` is not A or B.
        """
        chosen = ABChoice(chosen)
        if chosen == ABChoice.NONE:
            raise ValueError("A/B choice must be 'A' or 'B'")

        learn = not self.engine_state.paused and self.profiler is not None
        now = self.clock()
        with write_transaction(self.db_path) as conn:
            row = conn.execute("SELECT * FROM ab_records WHERE id = ?", (test_id,)).fetchone()
            if row is None:
                raise LearningError(f"Unknown A/B test: {test_id}")
            if row["chosen"] != ABChoice.NONE.value:
                raise AlreadyDecidedError(test_id)
            conn.execute(
                "UPDATE ab_records SET chosen = ?, decided_at = ?, learned = ? WHERE id = ?",
                (chosen.value, now.isoformat(), int(learn), test_id),
            )
            record = self._row_to_record(row)

        record.chosen = chosen
        record.decided_at = now
        record.learned = learn
        if learn:
            selected, rejected = self._sides(record)
            self.profiler.observe_choice(selected, rejected)
        logger.info("ab.choice_recorded", test_id=test_id, learned=learn)
        return record

    def get(self, test_id: str) -> ABTestRecord | None:
        with wal_connect(self.db_path, row_factory=True) as conn:
            row = conn.execute("SELECT * FROM ab_records WHERE id = ?", (test_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def records(self) -> list[ABTestRecord]:
        with wal_connect(self.db_path, row_factory=True) as conn:
            rows = conn.execute(
                "SELECT * FROM ab_records WHERE retired = 0 ORDER BY timestamp ASC"
            ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def learned_choices(self) -> list[tuple[str, str]]:
        """(selected, rejected) pairs that fed the profile, in decision order."""
        with wal_connect(self.db_path, row_factory=True) as conn:
            rows = conn.execute(
                """SELECT * FROM ab_records
                   WHERE retired = 0 AND learned = 1 AND chosen != 'none'
                   ORDER BY decided_at ASC"""
            ).fetchall()
        return [self._sides(self._row_to_record(r)) for r in rows]

    def summary(self) -> dict:
        records = self.records()
        decided = [r for r in records if r.is_decided]
        return {
            "issued": len(records),
            "decided": len(decided),
            "chose_a": sum(1 for r in decided if r.chosen == ABChoice.A),
            "chose_b": sum(1 for r in decided if r.chosen == ABChoice.B),
            "pending": len(records) - len(decided),
        }

    def reset(self) -> None:
        """Retire every record and start over from ``inactive``."""
        with wal_connect(self.db_path) as conn:
            conn.execute("UPDATE ab_records SET retired = 1")
        self.engine_state.set(AB_STATE, ABState.INACTIVE.value)

    @staticmethod
    def _sides(record: ABTestRecord) -> tuple[str, str]:
        if record.chosen == ABChoice.A:
            return record.candidate_a, record.candidate_b
        return record.candidate_b, record.candidate_a

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ABTestRecord:
        d = dict(row)
        return ABTestRecord(
            id=d["id"],
            candidate_a=d["candidate_a"],
            candidate_b=d["candidate_b"],
            word_count=d["word_count"],
            chosen=ABChoice(d["chosen"]),
            timestamp=parse_timestamp(d["timestamp"]),
            refinement_mode=d["refinement_mode"],
            decided_at=parse_timestamp(d["decided_at"]),
            learned=bool(d["learned"]),
        )
