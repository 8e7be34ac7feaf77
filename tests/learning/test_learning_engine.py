"""End-to-end tests for the LearningEngine facade."""

import json

import pytest

from cli.config_models import EngineConfig
from learning.engine import LearningEngine
from learning.errors import AlreadyDecidedError, InvalidSnapshotError, PatternNotFoundError
from learning.models import PatternFilter
from learning.store import PatternStore
from observability import metrics
from shared_types import ABChoice, ABState, SyncState

ORIGINAL = "I'm gonna call you tomorrow"
EDITED = "I'm going to call you tomorrow"


def _teach(engine, clock, times=3, original=ORIGINAL, edited=EDITED, mode="cleanup", **kw):
    ids = []
    for _ in range(times):
        ids.append(engine.submit_edit(original, edited, mode, **kw))
        clock.advance(minutes=1)
    return ids


class TestLearnAndApply:
    def test_three_edits_make_pattern_active(self, engine, clock):
        _teach(engine, clock, times=2)
        assert engine.apply_learning("I'm gonna be late", "cleanup")[0] == "I'm gonna be late"

        _teach(engine, clock, times=1)
        text, ids = engine.apply_learning("I'm gonna be late", "cleanup")
        assert text == "I'm going to be late"
        assert len(ids) == 1

    def test_pattern_scoped_to_mode(self, engine, clock):
        _teach(engine, clock)
        assert engine.apply_learning("gonna", "email")[0] == "gonna"

    def test_submit_returns_archived_event(self, engine):
        event_id = engine.submit_edit(ORIGINAL, EDITED, "cleanup")
        assert engine.archive.get(event_id).edited_text == EDITED
        assert engine.stats()["events"]["processed"] == 1

    def test_submit_never_raises(self, engine, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("extractor crashed")

        monkeypatch.setattr(engine.extractor, "extract", boom)
        event_id = engine.submit_edit(ORIGINAL, EDITED, "cleanup")
        assert engine.archive.get(event_id) is not None

    def test_apply_never_raises(self, engine, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("applier crashed")

        monkeypatch.setattr(engine.applier, "apply", boom)
        assert engine.apply_learning("keep me", "cleanup") == ("keep me", [])

    def test_failed_edit_replays_without_double_counting(self, engine, monkeypatch):
        original = PatternStore._upsert
        written = []

        def fail_on_second(self, conn, record):
            written.append(record.id)
            if len(written) == 2:
                raise sqlite3.OperationalError("disk I/O error")
            original(self, conn, record)

        monkeypatch.setattr(PatternStore, "_upsert", fail_on_second)
        engine.submit_edit("I'm gonna call u", "I'm going to call you", "cleanup")
        assert engine.list_patterns() == []

        monkeypatch.setattr(PatternStore, "_upsert", original)
        assert engine.replay_paused_events() == 1
        patterns = engine.list_patterns()
        counts = sorted((p.from_surface.strip(), p.occurrence_count) for p in patterns)
        assert counts == [("gonna", 1), ("u", 1)]
        assert engine.replay_paused_events() == 0

    def test_details_and_metrics(self, engine, clock):
        _teach(engine, clock)
        result = engine.apply_with_details("gonna", "cleanup")
        assert result.text == "going to"
        assert metrics.count("learning.edits_processed") == 3
        assert metrics.count("learning.patterns_applied") == 1


class TestOptOutAndPause:
    def test_opted_out_edits_never_learn(self, engine, clock):
        _teach(engine, clock, opted_out=True)
        assert engine.list_patterns() == []
        assert engine.stats()["events"]["opted_out"] == 3

    def test_paused_edits_archived_then_replayed(self, engine, clock):
        engine.pause_learning()
        assert engine.is_paused()
        _teach(engine, clock)
        assert engine.list_patterns() == []
        assert engine.replay_paused_events() == 0

        engine.resume_learning()
        assert engine.replay_paused_events() == 3
        assert engine.apply_learning("gonna", "cleanup")[0] == "going to"
        assert engine.replay_paused_events() == 0

    def test_replay_skips_opted_out_unless_asked(self, engine, clock):
        engine.pause_learning()
        _teach(engine, clock, opted_out=True)
        engine.resume_learning()
        assert engine.replay_paused_events() == 0
        assert engine.replay_paused_events(include_opted_out=True) == 3
        assert len(engine.list_patterns()) == 1

    def test_paused_ab_prompts_suppressed(self, engine):
        engine.pause_learning()
        assert not engine.request_ab_candidates("cleanup", 5)


class TestControl:
    def test_disable_enable_delete(self, engine, clock):
        _teach(engine, clock)
        (pattern,) = engine.list_patterns()

        engine.disable_pattern(pattern.id)
        assert engine.apply_learning("gonna", "cleanup")[0] == "gonna"
        assert engine.list_patterns(PatternFilter(include_disabled=False)) == []

        engine.enable_pattern(pattern.id)
        assert engine.apply_learning("gonna", "cleanup")[0] == "going to"

        engine.delete_pattern(pattern.id)
        assert engine.apply_learning("gonna", "cleanup")[0] == "gonna"
        with pytest.raises(PatternNotFoundError):
            engine.delete_pattern(pattern.id)

    def test_reset_forgets_everything_but_archive(self, engine, clock):
        _teach(engine, clock)
        record = engine.open_ab_test("yes", "yeah", "cleanup")
        engine.submit_ab_choice(record.id, ABChoice.A)

        assert engine.reset_all_learning() == {"patterns_deleted": 1}
        assert engine.apply_learning("gonna", "cleanup")[0] == "gonna"
        assert engine.get_profile().style_weights == {}
        assert engine.ab.state == ABState.INACTIVE
        assert engine.stats()["events"]["total"] == 3

    def test_replay_ignores_events_before_reset(self, engine, clock):
        engine.pause_learning()
        _teach(engine, clock)
        engine.reset_all_learning()
        clock.advance(minutes=1)
        engine.resume_learning()
        assert engine.replay_paused_events() == 0

    def test_rebuild_profile_uses_learned_edits(self, engine, clock):
        _teach(engine, clock)
        before = engine.get_profile()
        engine.profiler.clear()
        rebuilt = engine.rebuild_profile()
        assert rebuilt.sample_counts == before.sample_counts
        for name, weight in before.style_weights.items():
            assert rebuilt.style_weights[name] == pytest.approx(weight)


class TestAB:
    def test_choice_once(self, engine):
        assert engine.request_ab_candidates("cleanup", 4)
        record = engine.open_ab_test("I am here", "I'm here", "cleanup")
        engine.submit_ab_choice(record.id, "B")
        with pytest.raises(AlreadyDecidedError):
            engine.submit_ab_choice(record.id, "A")

    def test_budget_from_config(self, tmp_path, clock):
        config = EngineConfig.from_dict(
            {"paths": {"db_path": str(tmp_path / "l.db")}, "ab": {"sample_budget": 1}}
        )
        engine = LearningEngine(config, clock=clock)
        assert engine.open_ab_test("a", "b") is not None
        assert engine.open_ab_test("c", "d") is None
        assert engine.stats()["ab"]["state"] == "exhausted"

    def test_long_candidates_refused(self, engine):
        long_text = " ".join(["word"] * 30)
        assert engine.open_ab_test(long_text, long_text + " more", "cleanup") is None
        assert engine.stats()["ab"]["issued"] == 0

    def test_disabled_in_config(self, tmp_path, clock):
        config = EngineConfig.from_dict(
            {"paths": {"db_path": str(tmp_path / "l.db")}, "ab": {"enabled": False}}
        )
        engine = LearningEngine(config, clock=clock)
        assert engine.open_ab_test("yes", "yeah") is None


class TestCorruption:
    def test_unreadable_store_is_rebuilt_with_notice(self, engine_config, clock):
        db_path = engine_config.paths.db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        db_path.write_bytes(b"garbage" * 500)

        engine = LearningEngine(engine_config, clock=clock)
        notice = engine.learning_reset_notice()
        assert notice is not None
        assert ".corrupt-" in notice["moved_to"]
        assert engine.stats()["patterns"]["total"] == 0

        engine.acknowledge_reset_notice()
        assert engine.learning_reset_notice() is None

    def test_healthy_store_has_no_notice(self, engine):
        assert engine.learning_reset_notice() is None


class TestBackup:
    def test_export_then_import_elsewhere(self, engine, tmp_path, clock):
        _teach(engine, clock)
        engine.profiler.set_weight("formality", 0.7, 12)
        exported = engine.export_learning_data()
        data = json.loads(exported)
        assert len(data["patterns"]) == 1
        assert "confidence_score" not in data["patterns"][0]

        other_config = EngineConfig.from_dict({"paths": {"db_path": str(tmp_path / "b.db")}})
        other = LearningEngine(other_config, clock=clock)
        stats = other.import_learning_data(exported)
        assert stats["created"] == 1
        assert stats["styles_restored"] == len(data["style_weights"])
        assert other.get_profile().style_weights["formality"] == pytest.approx(0.7)
        assert other.apply_learning("gonna", "cleanup")[0] == "going to"

        again = other.import_learning_data(exported)
        assert again["created"] == 0
        assert again["unchanged"] == 1
        assert again["styles_restored"] == 0

    def test_disabled_patterns_optional_in_export(self, engine, clock):
        _teach(engine, clock)
        (pattern,) = engine.list_patterns()
        engine.disable_pattern(pattern.id)
        assert json.loads(engine.export_learning_data())["patterns"] == []
        assert len(json.loads(engine.export_learning_data(include_disabled=True))["patterns"]) == 1

    def test_invalid_snapshot_leaves_store_untouched(self, engine, clock):
        _teach(engine, clock)
        with pytest.raises(InvalidSnapshotError):
            engine.import_learning_data('{"schema_version": 99, "patterns": []}')
        assert len(engine.list_patterns()) == 1

    def test_imported_pattern_keeps_learning(self, engine, tmp_path, clock):
        other_config = EngineConfig.from_dict({"paths": {"db_path": str(tmp_path / "b.db")}})
        other = LearningEngine(other_config, clock=clock)
        other.submit_edit(ORIGINAL, EDITED, "cleanup")
        data = json.loads(other.export_learning_data())
        data["patterns"][0]["id"] = "0000-foreign"
        engine.import_learning_data(json.dumps(data))

        _teach(engine, clock)
        assert [(p.id, p.occurrence_count) for p in engine.list_patterns()] == [
            ("0000-foreign", 4)
        ]
        assert engine.apply_learning("gonna", "cleanup")[0] == "going to"


class TestSyncStatus:
    def test_local_only_engine(self, engine, clock):
        _teach(engine, clock)
        status = engine.get_sync_status()
        assert status.state == SyncState.OFFLINE
        assert status.pending_count == 0
        assert not status.needs_attention

    @pytest.mark.asyncio
    async def test_sync_now_without_remote(self, engine):
        assert await engine.sync_now() == {"enabled": False}


class TestQuality:
    def test_quality_counts_learned_sessions(self, engine, clock):
        assert engine.stats()["quality"] == {"level": "minimal", "sessions": 0}
        _teach(engine, clock, times=9)
        record = engine.open_ab_test("yes", "yeah", "cleanup")
        engine.submit_ab_choice(record.id, ABChoice.B)
        assert engine.stats()["quality"] == {"level": "basic", "sessions": 10}

    def test_opted_out_and_reset_sessions_not_counted(self, engine, clock):
        _teach(engine, clock, times=2, opted_out=True)
        _teach(engine, clock, times=2)
        assert engine.stats()["quality"]["sessions"] == 2
        engine.reset_all_learning()
        assert engine.stats()["quality"]["sessions"] == 0
