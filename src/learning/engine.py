"""LearningEngine is the single entry point the dictation/refinement flow talks to.

Owns one SQLite database and wires the components around it:

    submit_edit -> archive -> extractor -> store (+ outbox) -> profile
    apply_learning -> applier (store snapshot read, then profile style)
    A/B prompts -> coordinator -> profile
    sync loops -> queue/remote -> store.merge_remote
"""

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Callable

import structlog

from cli.config_models import EngineConfig
from observability import metrics
from shared_types import ABChoice
from sync import HttpRemoteStore, RemoteStore, SyncManager, SyncQueue

from .ab import ABCoordinator, RefinementCollaborator
from .applier import ApplicationEngine
from .archive import EditArchive
from .errors import StoreCorruptionError
from .extractor import PatternExtractor
from .models import (
    ABTestRecord,
    ApplyResult,
    CorrectionPattern,
    EditEvent,
    PatternFilter,
    PreferenceProfile,
    SyncStatus,
    new_id,
    utcnow,
)
from .profile import PreferenceProfiler
from .scoring import ConfidencePolicy, learning_quality
from .snapshot import build_snapshot, parse_snapshot
from .state import LAST_RESET_AT, RESET_NOTICE, EngineState
from .store import PatternStore, move_aside, recover_corrupt_store

logger = structlog.get_logger()


class LearningEngine:
    """Hybrid learning engine facade.

    Learning and application never raise into the caller for internal
    failures: ``submit_edit`` logs and still returns the event id and
    ``apply_learning`` falls back to the unchanged input.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        db_path: str | Path | None = None,
        remote: RemoteStore | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or EngineConfig()
        self.db_path = Path(db_path or self.config.paths.db_path).expanduser()
        self.clock = clock

        moved = recover_corrupt_store(self.db_path)
        try:
            self._open(remote)
        except (StoreCorruptionError, sqlite3.DatabaseError) as e:
            logger.error("engine.open_failed", error=str(e))
            moved = move_aside(self.db_path)
            self._open(remote)

        if moved is not None:
            self.state.set(
                RESET_NOTICE,
                {"reset_at": self.clock().isoformat(), "moved_to": str(moved)},
            )

    def _open(self, remote: RemoteStore | None) -> None:
        cfg = self.config
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        if remote is None and cfg.sync.enabled and cfg.sync.remote_url:
            remote = HttpRemoteStore(
                cfg.sync.remote_url,
                api_key=cfg.sync.api_key,
                timeout=cfg.sync.request_timeout,
                attempts=cfg.sync.request_attempts,
            )
        self.remote = remote

        self.state = EngineState(self.db_path)
        self.archive = EditArchive(self.db_path)
        self.queue = SyncQueue(self.db_path)
        self.policy = ConfidencePolicy(
            half_life_days=cfg.learning.half_life_days,
            min_occurrences=cfg.learning.min_occurrences,
            min_confidence=cfg.learning.min_confidence,
        )
        self.store = PatternStore(
            self.db_path,
            policy=self.policy,
            outbox=self.queue if remote is not None else None,
            clock=self.clock,
        )
        self.profiler = PreferenceProfiler(
            self.db_path, ab_signal_weight=cfg.profile.ab_signal_weight, clock=self.clock
        )
        self.extractor = PatternExtractor(
            self.store,
            self.state,
            profiler=self.profiler,
            scope_to_mode=cfg.learning.scope_patterns_to_mode,
            max_pattern_tokens=cfg.learning.max_pattern_tokens,
        )
        self.applier = ApplicationEngine(
            self.store,
            profiler=self.profiler,
            style_threshold=cfg.profile.style_threshold,
            min_samples=cfg.profile.min_samples,
            apply_adjustments=cfg.profile.apply_adjustments,
            excluded_contexts=cfg.learning.excluded_contexts,
        )
        self.ab = ABCoordinator(
            self.db_path,
            self.state,
            profiler=self.profiler,
            budget=cfg.ab.sample_budget,
            max_words=cfg.ab.max_words,
            enabled=cfg.ab.enabled,
            clock=self.clock,
        )
        self.sync = SyncManager(
            self.queue,
            self.store,
            self.state,
            remote=remote,
            max_retries=cfg.sync.max_retries,
            initial_backoff=cfg.sync.initial_backoff,
            max_backoff=cfg.sync.max_backoff,
            drain_interval=cfg.sync.drain_interval,
            pull_interval=cfg.sync.pull_interval,
            clock=self.clock,
        )

    # --- learning ---

    def submit_edit(
        self,
        original: str,
        edited: str,
        mode: str,
        source_context: str | None = None,
        opted_out: bool = False,
    ) -> str:
        """Archive a finalized edit and learn from it. Returns the event id."""
        event = EditEvent(
            id=new_id(),
            timestamp=self.clock(),
            refinement_mode=str(mode),
            original_text=original,
            edited_text=edited,
            source_context=source_context,
            is_opted_out=opted_out,
        )
        try:
            paused = self.state.paused
            self.archive.append(event, was_paused=paused)
            if paused or opted_out:
                logger.info(
                    "engine.edit_archived_only",
                    event_id=event.id,
                    paused=paused,
                    opted_out=opted_out,
                )
                return event.id
            with metrics.timer("learning.extract"):
                self.extractor.extract(event)
            self.archive.mark_processed(event.id)
            metrics.counter("learning.edits_processed")
        except Exception as e:
            logger.warning("engine.submit_failed", event_id=event.id, error=str(e))
        return event.id

    def replay_paused_events(self, include_opted_out: bool = False) -> int:
        """Learn from archived events that were skipped while paused.

        Opted-out events are only included when explicitly asked for. Events
        from before the last full reset are never replayed.
        """
        if self.state.paused:
            logger.info("engine.replay_skipped_paused")
            return 0
        reset_at = self.state.get_time(LAST_RESET_AT)
        replayed = 0
        for event in self.archive.unprocessed(include_opted_out=include_opted_out):
            if reset_at is not None and event.timestamp <= reset_at:
                continue
            self.extractor.extract(event, honor_opt_out=not include_opted_out)
            self.archive.mark_processed(event.id)
            replayed += 1
        logger.info("engine.replay_complete", replayed=replayed)
        return replayed

    def pause_learning(self) -> None:
        self.state.paused = True
        logger.info("engine.learning_paused")

    def resume_learning(self) -> None:
        self.state.paused = False
        logger.info("engine.learning_resumed")

    def is_paused(self) -> bool:
        return self.state.paused

    # --- application ---

    def apply_learning(
        self, text: str, mode: str | None, source_context: str | None = None
    ) -> tuple[str, list[str]]:
        result = self.apply_with_details(text, mode, source_context)
        return result.text, result.applied_pattern_ids

    def apply_with_details(
        self, text: str, mode: str | None, source_context: str | None = None
    ) -> ApplyResult:
        try:
            with metrics.timer("learning.apply"):
                result = self.applier.apply(text, mode, source_context)
            metrics.counter("learning.patterns_applied", len(result.applied_pattern_ids))
            return result
        except Exception as e:
            logger.warning("engine.apply_failed", mode=mode, error=str(e))
            return ApplyResult(text=text)

    # --- A/B ---

    def request_ab_candidates(self, mode: str | None, word_count: int) -> bool:
        return self.ab.should_sample(mode, word_count)

    def open_ab_test(
        self, candidate_a: str, candidate_b: str, mode: str | None = None
    ) -> ABTestRecord | None:
        return self.ab.open_test(candidate_a, candidate_b, mode)

    def sample_ab(
        self, text: str, mode: str, refiner: RefinementCollaborator
    ) -> ABTestRecord | None:
        return self.ab.sample(text, mode, refiner)

    def submit_ab_choice(self, test_id: str, chosen: ABChoice | str) -> ABTestRecord:
        """Raises AlreadyDecidedError on a second choice for the same test."""
        return self.ab.record_choice(test_id, chosen)

    # --- transparency & control ---

    def list_patterns(self, filter: PatternFilter | None = None) -> list[CorrectionPattern]:
        return self.store.list_patterns(filter)

    def disable_pattern(self, pattern_id: str) -> CorrectionPattern:
        return self.store.set_disabled(pattern_id, True)

    def enable_pattern(self, pattern_id: str) -> CorrectionPattern:
        return self.store.set_disabled(pattern_id, False)

    def delete_pattern(self, pattern_id: str) -> None:
        self.store.delete(pattern_id)

    def reset_all_learning(self) -> dict:
        """Forget patterns, A/B history and style profile. The edit archive stays."""
        deleted = self.store.reset()
        self.ab.reset()
        self.profiler.clear()
        self.state.set_time(LAST_RESET_AT, self.clock())
        logger.info("engine.learning_reset", patterns_deleted=deleted)
        return {"patterns_deleted": deleted}

    def get_profile(self) -> PreferenceProfile:
        return self.profiler.get_profile()

    def rebuild_profile(self) -> PreferenceProfile:
        since = self.state.get_time(LAST_RESET_AT)
        edits = [
            (e.original_text, e.edited_text)
            for e in self.archive.learnable_since(since)
            if e.original_text != e.edited_text
        ]
        return self.profiler.rebuild(edits, self.ab.learned_choices())

    def learning_reset_notice(self) -> dict | None:
        """Pending notice that local data was unreadable and has been reset."""
        return self.state.get(RESET_NOTICE)

    def acknowledge_reset_notice(self) -> None:
        self.state.delete(RESET_NOTICE)

    def stats(self) -> dict:
        ab = self.ab.summary()
        learned = len(self.archive.learnable_since(self.state.get_time(LAST_RESET_AT)))
        sessions = learned + ab["decided"]
        return {
            "patterns": self.store.get_stats(),
            "events": self.archive.count(),
            "ab": {**ab, "state": self.ab.state.value},
            "quality": {"level": learning_quality(sessions).value, "sessions": sessions},
            "paused": self.state.paused,
            "sync_pending": self.queue.pending_count(),
        }

    # --- backup ---

    def export_learning_data(self, include_disabled: bool = False) -> str:
        snapshot = build_snapshot(
            self.store.records(),
            ab_summary=self.ab.summary(),
            style_weights=self.profiler.get_profile().style_weights,
            include_disabled=include_disabled,
        )
        return snapshot.model_dump_json(indent=2)

    def import_learning_data(self, snapshot) -> dict:
        """Merge a snapshot into the local store.

        Raises:
            InvalidSnapshotError: malformed or unsupported snapshot.
        """
        parsed = parse_snapshot(snapshot)
        stats = self.store.merge_remote(
            [p.to_record() for p in parsed.patterns], echo=False, publish_changes=True
        )
        local = self.profiler.get_profile()
        restored = 0
        for name, weight in parsed.style_weights.items():
            if name not in local.style_weights:
                self.profiler.set_weight(name, weight, self.config.profile.min_samples)
                restored += 1
        logger.info("engine.snapshot_imported", styles_restored=restored, **stats)
        return {**stats, "styles_restored": restored}

    # --- sync ---

    def get_sync_status(self) -> SyncStatus:
        return self.sync.status()

    async def sync_now(self) -> dict:
        return await self.sync.sync_now()

    async def start_sync(self) -> None:
        await self.sync.start()

    async def stop_sync(self) -> None:
        await self.sync.stop()

    def retry_abandoned_sync(self) -> int:
        return self.sync.retry_abandoned()

    async def close(self) -> None:
        await self.sync.stop()
        if self.remote is not None:
            await self.remote.close()
