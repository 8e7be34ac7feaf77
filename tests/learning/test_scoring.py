"""Tests for confidence scoring and eligibility."""

import math
import random
from datetime import timedelta

import pytest

from learning.models import CorrectionPattern
from learning.scoring import (
    ConfidencePolicy,
    base_score,
    confidence,
    learning_quality,
    recency_factor,
)
from learning.store import PatternStore
from shared_types import LearningQuality, PatternKind

TOKEN = PatternKind.TOKEN_SUBSTITUTION


def _pattern(now, occurrences=3, age_days=0.0, disabled=False):
    return CorrectionPattern(
        id="p1",
        kind=PatternKind.TOKEN_SUBSTITUTION,
        from_surface="gonna",
        to_surface="going to",
        occurrence_count=occurrences,
        last_reinforced_at=now - timedelta(days=age_days),
        is_user_disabled=disabled,
    )


class TestScores:
    def test_base_score(self):
        assert base_score(1) == pytest.approx(0.5)
        assert base_score(3) == pytest.approx(0.75)

    def test_recency_at_half_life(self, clock):
        now = clock()
        assert recency_factor(now - timedelta(days=30), now) == pytest.approx(math.exp(-1))

    def test_future_reinforcement_is_not_boosted(self, clock):
        now = clock()
        assert recency_factor(now + timedelta(days=2), now) == pytest.approx(1.0)

    def test_monotonic_in_occurrences_and_age(self, clock):
        now = clock()
        for age in (0, 1, 10, 45, 90):
            reinforced = now - timedelta(days=age)
            scores = [confidence(n, reinforced, now) for n in range(1, 40)]
            assert scores == sorted(scores)
            assert all(0.0 <= s <= 1.0 for s in scores)
        for n in (1, 3, 20):
            by_age = [confidence(n, now - timedelta(days=d), now) for d in range(0, 120, 5)]
            assert by_age == sorted(by_age, reverse=True)


class TestEligibility:
    def test_three_fresh_occurrences_eligible(self, clock):
        assert ConfidencePolicy().is_eligible(_pattern(clock(), occurrences=3), clock())

    def test_two_occurrences_not_eligible(self, clock):
        assert not ConfidencePolicy().is_eligible(_pattern(clock(), occurrences=2), clock())

    def test_disabled_never_eligible(self, clock):
        p = _pattern(clock(), occurrences=50, disabled=True)
        assert not ConfidencePolicy().is_eligible(p, clock())

    def test_decays_out_of_eligibility(self, clock):
        p = _pattern(clock(), occurrences=3, age_days=30)
        assert not ConfidencePolicy().is_eligible(p, clock())

    @pytest.mark.parametrize("seed", range(12))
    def test_eligibility_matches_history(self, tmp_path, clock, seed):
        rng = random.Random(seed)
        store = PatternStore(tmp_path / "learning.db", clock=clock)
        policy = ConfidencePolicy()
        pairs = [("gonna", "going to"), ("u", "you"), ("thx", "thanks"), ("ok", "okay")]
        history = {}
        for _ in range(40):
            roll = rng.random()
            if roll < 0.6:
                from_surface, to_surface = rng.choice(pairs)
                mode = rng.choice([None, "cleanup", "email"])
                pattern, _ = store.reinforce_or_create(
                    from_surface, to_surface, TOKEN, scoped_mode=mode
                )
                entry = history.setdefault(pattern.id, {"n": 0, "disabled": False, "mode": mode})
                entry["n"] += 1
                entry["last"] = clock()
            elif roll < 0.9:
                clock.advance(hours=rng.randint(1, 400))
            elif history:
                pid = rng.choice(sorted(history))
                history[pid]["disabled"] = not history[pid]["disabled"]
                store.set_disabled(pid, history[pid]["disabled"])

        now = clock()
        expected = set()
        for pid, entry in history.items():
            age_days = (now - entry["last"]).total_seconds() / 86400
            score = (1 - 1 / (entry["n"] + 1)) * math.exp(-age_days / 30)
            should = entry["n"] >= 3 and score >= 0.5 and not entry["disabled"]
            assert policy.is_eligible(store.get(pid), now) == should
            if should and entry["mode"] in (None, "cleanup"):
                expected.add(pid)
        assert {p.id for p in store.eligible_patterns("cleanup")} == expected

    def test_custom_policy(self, clock):
        policy = ConfidencePolicy(min_occurrences=1, min_confidence=0.4)
        assert policy.is_eligible(_pattern(clock(), occurrences=1), clock())


class TestLearningQuality:
    @pytest.mark.parametrize(
        "sessions, level",
        [
            (0, LearningQuality.MINIMAL),
            (9, LearningQuality.MINIMAL),
            (10, LearningQuality.BASIC),
            (49, LearningQuality.BASIC),
            (50, LearningQuality.GOOD),
            (100, LearningQuality.EXCELLENT),
            (5000, LearningQuality.EXCELLENT),
        ],
    )
    def test_levels(self, sessions, level):
        assert learning_quality(sessions) == level
