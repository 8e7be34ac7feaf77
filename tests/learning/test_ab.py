"""Tests for the A/B coordinator's budget, state and choice recording."""

import pytest

from learning.ab import ABCoordinator, RefinementCollaborator
from learning.errors import AlreadyDecidedError, LearningError
from learning.profile import PreferenceProfiler
from learning.state import EngineState
from shared_types import ABChoice, ABState


class CountingRefiner(RefinementCollaborator):
    def __init__(self):
        self.calls = 0

    def refine(self, text: str, mode: str) -> str:
        self.calls += 1
        return f"{text} v{self.calls}"


@pytest.fixture
def state(db_path):
    return EngineState(db_path)


@pytest.fixture
def profiler(db_path, clock):
    return PreferenceProfiler(db_path, clock=clock)


@pytest.fixture
def ab(db_path, state, profiler, clock):
    return ABCoordinator(db_path, state, profiler=profiler, clock=clock)


class TestBudget:
    def test_starts_inactive(self, ab):
        assert ab.state == ABState.INACTIVE
        assert ab.should_sample("cleanup", 5)

    def test_long_transcriptions_not_sampled(self, ab):
        assert not ab.should_sample("cleanup", 20)
        assert ab.should_sample("cleanup", 19)

    def test_paused_or_disabled_not_sampled(self, db_path, state, ab):
        state.paused = True
        assert not ab.should_sample("cleanup", 3)
        state.paused = False
        off = ABCoordinator(db_path, state, enabled=False)
        assert not off.should_sample("cleanup", 3)

    def test_fifty_first_prompt_never_happens(self, ab, clock):
        for i in range(50):
            assert ab.open_test(f"a{i}", f"b{i}", "cleanup") is not None
            clock.advance(seconds=1)
        assert ab.state == ABState.EXHAUSTED
        assert not ab.should_sample("cleanup", 3)
        assert ab.open_test("a", "b", "cleanup") is None
        assert ab.issued_count() == 50

    def test_undecided_tests_count(self, db_path, state):
        small = ABCoordinator(db_path, state, budget=2)
        small.open_test("a", "b")
        small.open_test("c", "d")
        assert small.summary()["pending"] == 2
        assert small.open_test("e", "f") is None

    def test_open_refuses_long_candidates(self, ab):
        long_text = " ".join(["word"] * 30)
        assert ab.open_test(long_text, long_text, "cleanup") is None
        assert ab.open_test("short", "text", word_count=20) is None
        assert ab.issued_count() == 0
        assert ab.state == ABState.INACTIVE

    def test_open_refuses_when_disabled(self, db_path, state):
        off = ABCoordinator(db_path, state, enabled=False)
        assert off.open_test("yes", "yeah") is None
        assert off.issued_count() == 0

    def test_first_test_moves_to_sampling(self, ab):
        ab.open_test("a", "b")
        assert ab.state == ABState.SAMPLING

    def test_sample_uses_refiner(self, ab):
        refiner = CountingRefiner()
        record = ab.sample("short note", "messaging", refiner)
        assert refiner.calls == 2
        assert record.candidate_a == "short note v1"
        assert record.candidate_b == "short note v2"
        assert record.word_count == 2
        assert record.chosen == ABChoice.NONE

    def test_sample_skips_long_text(self, ab):
        refiner = CountingRefiner()
        assert ab.sample(" ".join(["word"] * 25), "cleanup", refiner) is None
        assert refiner.calls == 0


class TestChoices:
    def test_choice_recorded_once(self, ab):
        record = ab.open_test("I am going to go", "I'm gonna go")
        decided = ab.record_choice(record.id, "A")
        assert decided.chosen == ABChoice.A
        assert decided.learned
        with pytest.raises(AlreadyDecidedError):
            ab.record_choice(record.id, ABChoice.B)
        assert ab.get(record.id).chosen == ABChoice.A

    def test_choice_feeds_profile(self, ab, profiler):
        record = ab.open_test("I am going to go", "I'm gonna go")
        ab.record_choice(record.id, ABChoice.A)
        profile = profiler.get_profile()
        assert profile.style_weights["formality"] > 0
        assert "punctuation" not in profile.sample_counts

    def test_paused_choice_is_stored_not_learned(self, ab, state, profiler):
        record = ab.open_test("yes", "yeah")
        state.paused = True
        decided = ab.record_choice(record.id, ABChoice.B)
        assert not decided.learned
        assert profiler.get_profile().style_weights == {}
        assert ab.learned_choices() == []

    def test_invalid_choices(self, ab):
        record = ab.open_test("a", "b")
        with pytest.raises(ValueError):
            ab.record_choice(record.id, "none")
        with pytest.raises(ValueError):
            ab.record_choice(record.id, "C")
        with pytest.raises(LearningError):
            ab.record_choice("missing", "A")

    def test_summary(self, ab):
        first = ab.open_test("a", "b")
        second = ab.open_test("c", "d")
        ab.open_test("e", "f")
        ab.record_choice(first.id, "A")
        ab.record_choice(second.id, "B")
        assert ab.summary() == {"issued": 3, "decided": 2, "chose_a": 1, "chose_b": 1, "pending": 1}

    def test_learned_choices_are_selected_first(self, ab):
        record = ab.open_test("left", "right")
        ab.record_choice(record.id, "B")
        assert ab.learned_choices() == [("right", "left")]


class TestReset:
    def test_reset_restores_budget(self, ab):
        for i in range(50):
            ab.open_test(f"a{i}", f"b{i}")
        ab.reset()
        assert ab.state == ABState.INACTIVE
        assert ab.issued_count() == 0
        assert ab.records() == []
        assert ab.open_test("a", "b") is not None
