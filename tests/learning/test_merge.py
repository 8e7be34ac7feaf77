"""Tests for the field-level pattern merge and store-to-store convergence."""

from dataclasses import replace
from datetime import timedelta

import pytest

from learning.merge import PatternRecord, merge_disabled_flag, merge_records, pattern_id
from learning.store import PatternStore
from shared_types import MutationType, PatternKind
from sync.queue import SyncQueue

TOKEN = PatternKind.TOKEN_SUBSTITUTION


@pytest.fixture
def base(clock):
    now = clock()
    return PatternRecord(
        id=pattern_id("gonna", "going to", None),
        kind=TOKEN,
        from_surface="gonna",
        to_surface="going to",
        scoped_mode=None,
        occurrence_count=3,
        first_seen_at=now - timedelta(days=5),
        last_reinforced_at=now - timedelta(days=1),
    )


def _variants(base, clock):
    now = clock()
    return [
        base,
        replace(base, occurrence_count=7, last_reinforced_at=now),
        replace(base, from_surface="Gonna", first_seen_at=now - timedelta(days=9)),
        replace(base, is_user_disabled=True, disabled_changed_at=now - timedelta(hours=2)),
        replace(base, is_user_disabled=False, disabled_changed_at=now - timedelta(hours=1)),
        replace(base, last_applied_at=now),
        base.tombstone(now),
        replace(base, generation=1, occurrence_count=1),
    ]


class TestMergeRules:
    def test_commutative(self, base, clock):
        variants = _variants(base, clock)
        for a in variants:
            for b in variants:
                assert merge_records(a, b) == merge_records(b, a)

    def test_idempotent(self, base, clock):
        for a in _variants(base, clock):
            assert merge_records(a, a) == a
            for b in _variants(base, clock):
                merged = merge_records(a, b)
                assert merge_records(merged, b) == merged

    def test_associative(self, base, clock):
        variants = _variants(base, clock)
        for a in variants:
            for b in variants:
                for c in variants:
                    left = merge_records(merge_records(a, b), c)
                    right = merge_records(a, merge_records(b, c))
                    assert left == right

    def test_evidence_fields(self, base, clock):
        now = clock()
        other = replace(base, occurrence_count=7, last_reinforced_at=now)
        merged = merge_records(base, other)
        assert merged.occurrence_count == 7
        assert merged.last_reinforced_at == now
        assert merged.first_seen_at == base.first_seen_at

    def test_deletion_final_within_generation(self, base, clock):
        tomb = base.tombstone(clock())
        stronger = replace(base, occurrence_count=50)
        assert merge_records(tomb, stronger).is_deleted

    def test_newer_generation_wins(self, base, clock):
        tomb = base.tombstone(clock())
        relearned = replace(base, generation=1, occurrence_count=1)
        merged = merge_records(tomb, relearned)
        assert not merged.is_deleted
        assert merged.generation == 1

    def test_disabled_last_writer_wins(self, clock):
        now = clock()
        earlier = now - timedelta(minutes=5)
        assert merge_disabled_flag(True, earlier, False, now) == (False, now)
        assert merge_disabled_flag(True, now, False, earlier) == (True, now)
        assert merge_disabled_flag(False, None, True, now) == (True, now)

    def test_disabled_tie_favors_disabled(self, clock):
        now = clock()
        assert merge_disabled_flag(False, now, True, now) == (True, now)

    def test_payload_round_trip(self, base, clock):
        record = replace(base, last_applied_at=clock(), is_user_disabled=True)
        assert PatternRecord.from_payload(record.to_payload()) == record


class TestStoreConvergence:
    def _device(self, tmp_path, name, clock):
        return PatternStore(tmp_path / f"{name}.db", clock=clock)

    def test_two_devices_converge(self, tmp_path, clock):
        a = self._device(tmp_path, "a", clock)
        b = self._device(tmp_path, "b", clock)
        for _ in range(3):
            a.reinforce_or_create("gonna", "going to", TOKEN)
            clock.advance(minutes=1)
        b.reinforce_or_create("gonna", "going to", TOKEN)
        for _ in range(2):
            b.reinforce_or_create("wanna", "want to", TOKEN)
        b.set_disabled(pattern_id("wanna", "want to", None), True)

        a_records = a.records(include_tombstones=True)
        b_records = b.records(include_tombstones=True)
        a.merge_remote(b_records)
        b.merge_remote(a_records)

        assert a.records(include_tombstones=True) == b.records(include_tombstones=True)
        merged = a.get(pattern_id("gonna", "going to", None))
        assert merged.occurrence_count == 3
        assert a.get(pattern_id("wanna", "want to", None)).is_user_disabled

    def test_merge_is_idempotent_on_store(self, tmp_path, clock):
        a = self._device(tmp_path, "a", clock)
        b = self._device(tmp_path, "b", clock)
        b.reinforce_or_create("gonna", "going to", TOKEN)
        incoming = b.records(include_tombstones=True)
        first = a.merge_remote(incoming)
        second = a.merge_remote(incoming)
        assert first["created"] == 1
        assert second == {"created": 0, "updated": 0, "deleted": 0, "unchanged": 1}

    def test_remote_delete_applies(self, tmp_path, clock):
        a = self._device(tmp_path, "a", clock)
        b = self._device(tmp_path, "b", clock)
        p, _ = a.reinforce_or_create("gonna", "going to", TOKEN)
        b.merge_remote(a.records())
        b.delete(p.id)
        stats = a.merge_remote(b.records(include_tombstones=True))
        assert stats["deleted"] == 1
        assert a.get(p.id) is None

    def test_echo_only_when_local_has_more(self, tmp_path, clock):
        queue = SyncQueue(tmp_path / "a.db")
        a = PatternStore(tmp_path / "a.db", outbox=queue, clock=clock)
        b = self._device(tmp_path, "b", clock)
        b.reinforce_or_create("gonna", "going to", TOKEN)

        a.merge_remote(b.records())
        assert queue.pending_count() == 0

        for _ in range(3):
            a.reinforce_or_create("wanna", "want to", TOKEN)
        queue.clear()
        a.reinforce_or_create("gonna", "going to", TOKEN)
        queue.clear()
        a.merge_remote(b.records())
        (item,) = queue.all_items()
        assert item.mutation_type == MutationType.UPDATE
        assert item.payload["occurrence_count"] == 2
