"""Token-level diff between AI-refined text and the user's final text."""

import difflib
import re
from dataclasses import dataclass

from shared_types import EditOpKind

from .errors import EmptyInputError
from .models import EditOperation

# Word runs (keeping inner apostrophes: I'm, don't) or a single punctuation mark
_TOKEN_RE = re.compile(r"\w+(?:['’]\w+)*|[^\w\s]")

# Above this many DP cells, anchors come from difflib instead of the exact DP
MAX_EXACT_CELLS = 250_000

# Alignment run states
_MATCH, _DELETING, _INSERTING, _REPLACING = range(4)


@dataclass(frozen=True)
class Token:
    text: str
    start: int
    end: int


def tokenize(text: str) -> list[Token]:
    return [Token(m.group(), m.start(), m.end()) for m in _TOKEN_RE.finditer(text)]


def word_count(text: str) -> int:
    return len(text.split())


def analyze(original: str, edited: str) -> list[EditOperation]:
    """Ordered edit operations turning ``original`` into ``edited``.

    Raises:
        EmptyInputError: both strings are empty.
    """
    if not original and not edited:
        raise EmptyInputError("Cannot diff two empty strings")
    if original == edited:
        return []

    a_toks = tokenize(original)
    b_toks = tokenize(edited)
    a = [t.text for t in a_toks]
    b = [t.text for t in b_toks]

    if (len(a) + 1) * (len(b) + 1) > MAX_EXACT_CELLS:
        anchors = _difflib_anchors(a, b)
    else:
        anchors = _align(a, b)

    return _build_operations(original, edited, a_toks, b_toks, anchors)


def apply_operations(original: str, operations: list[EditOperation]) -> str:
    """Replay operations produced by :func:`analyze` against ``original``."""
    pieces = []
    cursor = 0
    for op in operations:
        pieces.append(original[cursor : op.original_start])
        pieces.append(op.edited_text)
        cursor = op.original_end
    pieces.append(original[cursor:])
    return "".join(pieces)


def _step_cost(cost: tuple[int, int, int], state: int, new_state: int) -> tuple[int, int, int]:
    edits, replace_spans, spans = cost
    if new_state == _REPLACING and state != _REPLACING:
        replace_spans += 1
    if state == _MATCH:
        spans += 1
    return (edits + 1, replace_spans, spans)


def _align(a: list[str], b: list[str]) -> list[tuple[int, int]]:
    """Minimal edit alignment; returns matched (i, j) token index pairs.

    Cost is compared as (edits, replace spans, spans), so among alignments with
    the same edit distance the one with the fewest replace spans wins.
    """
    n, m = len(a), len(b)
    cost: list[list[list]] = [[[None] * 4 for _ in range(m + 1)] for _ in range(n + 1)]
    back: list[list[list]] = [[[None] * 4 for _ in range(m + 1)] for _ in range(n + 1)]
    cost[0][0][_MATCH] = (0, 0, 0)

    def relax(i, j, state, value, prev):
        current = cost[i][j][state]
        if current is None or value < current:
            cost[i][j][state] = value
            back[i][j][state] = prev

    after_delete = {
        _MATCH: _DELETING,
        _DELETING: _DELETING,
        _INSERTING: _REPLACING,
        _REPLACING: _REPLACING,
    }
    after_insert = {
        _MATCH: _INSERTING,
        _INSERTING: _INSERTING,
        _DELETING: _REPLACING,
        _REPLACING: _REPLACING,
    }

    for i in range(n + 1):
        for j in range(m + 1):
            for state in range(4):
                c = cost[i][j][state]
                if c is None:
                    continue
                prev = (i, j, state)
                if i < n and j < m:
                    if a[i] == b[j]:
                        relax(i + 1, j + 1, _MATCH, c, prev)
                    else:
                        relax(i + 1, j + 1, _REPLACING, _step_cost(c, state, _REPLACING), prev)
                if i < n:
                    ns = after_delete[state]
                    relax(i + 1, j, ns, _step_cost(c, state, ns), prev)
                if j < m:
                    ns = after_insert[state]
                    relax(i, j + 1, ns, _step_cost(c, state, ns), prev)

    end_state = min(
        (s for s in range(4) if cost[n][m][s] is not None),
        key=lambda s: cost[n][m][s],
    )

    anchors = []
    i, j, state = n, m, end_state
    while (i, j) != (0, 0):
        pi, pj, ps = back[i][j][state]
        if state == _MATCH and i - pi == 1 and j - pj == 1:
            anchors.append((pi, pj))
        i, j, state = pi, pj, ps
    anchors.reverse()
    return anchors


def _difflib_anchors(a: list[str], b: list[str]) -> list[tuple[int, int]]:
    matcher = difflib.SequenceMatcher(a=a, b=b, autojunk=False)
    anchors = []
    for block in matcher.get_matching_blocks():
        anchors.extend((block.a + k, block.b + k) for k in range(block.size))
    return anchors


def _build_operations(
    original: str,
    edited: str,
    a_toks: list[Token],
    b_toks: list[Token],
    anchors: list[tuple[int, int]],
) -> list[EditOperation]:
    n, m = len(a_toks), len(b_toks)
    ops = []
    a_char = b_char = 0
    a_idx = b_idx = 0

    for ai, bj in [*anchors, (n, m)]:
        a_stop = a_toks[ai].start if ai < n else len(original)
        b_stop = b_toks[bj].start if bj < m else len(edited)
        op = _gap_operation(
            original,
            edited,
            (a_char, a_stop),
            (b_char, b_stop),
            tuple(t.text for t in a_toks[a_idx:ai]),
            tuple(t.text for t in b_toks[b_idx:bj]),
            a_idx,
        )
        if op:
            ops.append(op)
        if ai < n:
            a_char, b_char = a_toks[ai].end, b_toks[bj].end
            a_idx, b_idx = ai + 1, bj + 1

    return ops


def _gap_operation(original, edited, a_span, b_span, a_tokens, b_tokens, position):
    a_start, a_end = a_span
    b_start, b_end = b_span
    a_text = original[a_start:a_end]
    b_text = edited[b_start:b_end]
    if a_text == b_text:
        return None

    # Shared leading/trailing whitespace stays outside the operation
    shortest = min(len(a_text), len(b_text))
    lead = 0
    while lead < shortest and a_text[lead] == b_text[lead] and a_text[lead].isspace():
        lead += 1
    trail = 0
    while (
        trail < shortest - lead
        and a_text[-1 - trail] == b_text[-1 - trail]
        and a_text[-1 - trail].isspace()
    ):
        trail += 1

    a_start, a_end = a_start + lead, a_end - trail
    b_start, b_end = b_start + lead, b_end - trail

    if a_start == a_end:
        kind = EditOpKind.INSERT
    elif b_start == b_end:
        kind = EditOpKind.DELETE
    else:
        kind = EditOpKind.REPLACE

    return EditOperation(
        kind=kind,
        position=position,
        original_start=a_start,
        original_end=a_end,
        edited_start=b_start,
        edited_end=b_end,
        original_text=original[a_start:a_end],
        edited_text=edited[b_start:b_end],
        original_tokens=a_tokens,
        edited_tokens=b_tokens,
    )
