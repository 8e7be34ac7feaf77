"""Tests for the token-level diff analyzer."""

import random

import pytest

from learning.diff import MAX_EXACT_CELLS, analyze, apply_operations, tokenize
from learning.errors import EmptyInputError
from shared_types import EditOpKind

WORDS = ["the", "a", "gonna", "going", "to", "call", "you", "I'm", "tomorrow", "ok", ",", "."]


def _random_text(rng: random.Random, max_words: int) -> str:
    return " ".join(rng.choice(WORDS) for _ in range(rng.randint(0, max_words)))


class TestTokenize:
    def test_words_and_punctuation(self):
        assert [t.text for t in tokenize("I'm here, ok.")] == ["I'm", "here", ",", "ok", "."]

    def test_offsets_point_into_text(self):
        text = "call  you"
        for tok in tokenize(text):
            assert text[tok.start : tok.end] == tok.text


class TestAnalyze:
    def test_identical_texts_have_no_operations(self):
        assert analyze("same text", "same text") == []

    def test_both_empty_raises(self):
        with pytest.raises(EmptyInputError):
            analyze("", "")

    def test_empty_original_is_one_insert(self):
        ops = analyze("", "hello there")
        assert len(ops) == 1
        assert ops[0].kind == EditOpKind.INSERT
        assert ops[0].edited_text == "hello there"

    def test_single_replacement(self):
        ops = analyze("I'm gonna go", "I'm going to go")
        assert len(ops) == 1
        op = ops[0]
        assert op.kind == EditOpKind.REPLACE
        assert op.original_text == "gonna"
        assert op.edited_text == "going to"
        assert op.position == 1
        assert op.original_tokens == ("gonna",)
        assert op.edited_tokens == ("going", "to")

    def test_punctuation_insert_excludes_whitespace(self):
        ops = analyze("Hello world.", "Hello, world.")
        assert len(ops) == 1
        assert ops[0].kind == EditOpKind.INSERT
        assert ops[0].edited_text == ","

    def test_deletion(self):
        ops = analyze("send it right now", "send it now")
        assert [op.kind for op in ops] == [EditOpKind.DELETE]
        assert ops[0].original_text.strip() == "right"
        assert ops[0].original_tokens == ("right",)

    def test_operations_are_ordered(self):
        ops = analyze("gonna call ya tomorrow", "going to call you tomorrow")
        starts = [op.original_start for op in ops]
        assert starts == sorted(starts)
        assert [op.edited_text for op in ops] == ["going to", "you"]


class TestReplay:
    @pytest.mark.parametrize("seed", range(25))
    def test_operations_rebuild_edited_text(self, seed):
        rng = random.Random(seed)
        original = _random_text(rng, 12)
        edited = _random_text(rng, 12)
        if not original and not edited:
            return
        assert apply_operations(original, analyze(original, edited)) == edited

    def test_long_inputs_use_fallback_alignment(self):
        rng = random.Random(7)
        original = " ".join(rng.choice(WORDS) for _ in range(600))
        edited = original.replace("gonna", "going to")
        assert (len(original.split()) + 1) ** 2 > MAX_EXACT_CELLS
        assert apply_operations(original, analyze(original, edited)) == edited
