"""Preference Profile: stylistic tendencies learned from edits and A/B choices.

Style dimensions form an open registry: each one knows how to measure a shift
between two texts and, optionally, how to push text in either direction once
the learned weight is strong enough.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable

import structlog

from db import wal_connect, write_transaction

from .models import PreferenceProfile, parse_timestamp, utcnow

logger = structlog.get_logger()

_WORD_RE = re.compile(r"\w+(?:['’]\w+)*")

FORMAL_WORDS = {
    "therefore", "furthermore", "however", "nevertheless", "consequently", "accordingly",
}
CASUAL_WORDS = {"gonna", "wanna", "yeah", "ok", "cool", "awesome"}

FORMALIZATIONS = {
    "gonna": "going to",
    "wanna": "want to",
    "gotta": "have to",
    "yeah": "yes",
    "ok": "very well",
}
CASUALIZATIONS = {
    "going to": "gonna",
    "want to": "wanna",
    "have to": "gotta",
    "very well": "ok",
}

FILLER_PHRASES = (
    "i think that",
    "i believe that",
    "it seems like",
    "in my opinion",
    "i would say that",
    "you know",
)

CONTRACTIONS = {
    "do not": "don't",
    "will not": "won't",
    "cannot": "can't",
    "should not": "shouldn't",
    "would not": "wouldn't",
    "could not": "couldn't",
    "have not": "haven't",
    "has not": "hasn't",
    "is not": "isn't",
    "are not": "aren't",
    "was not": "wasn't",
    "were not": "weren't",
    "i am": "i'm",
    "you are": "you're",
    "he is": "he's",
    "she is": "she's",
    "it is": "it's",
    "we are": "we're",
    "they are": "they're",
}
EXPANSIONS = {short: full for full, short in CONTRACTIONS.items()}
CONTRACTION_WORDS = set(EXPANSIONS) | {
    "i've", "you've", "we've", "they've",
    "i'll", "you'll", "he'll", "she'll", "it'll", "we'll", "they'll",
}

HEAVY_PUNCTUATION = set("!?;:—")


def _words(text: str) -> list[str]:
    return [w.lower().replace("’", "'") for w in _WORD_RE.findall(text)]


def _match_case(source: str, replacement: str) -> str:
    if replacement and source[:1].isupper():
        return replacement[0].upper() + replacement[1:]
    return replacement


def _phrase_alternation(phrases) -> str:
    ordered = sorted(phrases, key=len, reverse=True)
    return "|".join(r"\s+".join(re.escape(w) for w in p.split()) for p in ordered)


def _replace_phrases(text: str, mapping: dict[str, str]) -> str:
    """Whole-word, case-insensitive replacement; longest phrase wins."""
    pattern = re.compile(r"\b(" + _phrase_alternation(mapping) + r")\b", re.IGNORECASE)

    def substitute(m: re.Match) -> str:
        key = " ".join(m.group(0).lower().replace("’", "'").split())
        replacement = mapping[key]
        if key.startswith(("i ", "i'")):
            replacement = "I" + replacement[1:]
        return _match_case(m.group(0), replacement)

    return pattern.sub(substitute, text)


# --- measures: positive means the second text moved in the dimension's direction ---


def formality_score(text: str) -> float:
    words = _words(text)
    if not words:
        return 0.0
    formal = sum(1 for w in words if w in FORMAL_WORDS)
    casual = sum(1 for w in words if w in CASUAL_WORDS)
    return (formal - casual) / len(words)


def contraction_score(text: str) -> float:
    words = _words(text)
    if not words:
        return 0.0
    return sum(1 for w in words if w in CONTRACTION_WORDS) / len(words)


def punctuation_score(text: str) -> float:
    words = text.split()
    if not words:
        return 0.0
    return sum(1 for ch in text if ch in HEAVY_PUNCTUATION) / len(words)


def conciseness_shift(before: str, after: str) -> float:
    """Positive when ``after`` is shorter than ``before``."""
    before_count = len(before.split())
    if before_count == 0:
        return 0.0
    return (before_count - len(after.split())) / before_count


def remove_fillers(text: str) -> str:
    pattern = re.compile(r"\b(" + _phrase_alternation(FILLER_PHRASES) + r")\b,?\s*", re.IGNORECASE)
    result = pattern.sub("", text)
    result = re.sub(r"[ \t]{2,}", " ", result).strip()
    return result[:1].upper() + result[1:] if text[:1].isupper() else result


@dataclass(frozen=True)
class StyleDimension:
    """A named stylistic axis.

    ``measure(before, after)`` returns the shift from ``before`` to ``after``.
    ``toward``/``away`` rewrite text when the learned weight is strongly
    positive/negative; either may be None for measure-only dimensions.
    """

    name: str
    measure: Callable[[str, str], float]
    toward: Callable[[str], str] | None = None
    away: Callable[[str], str] | None = None
    from_choices: bool = True


STYLE_DIMENSIONS: dict[str, StyleDimension] = {}


def register_dimension(dimension: StyleDimension) -> StyleDimension:
    STYLE_DIMENSIONS[dimension.name] = dimension
    return dimension


register_dimension(
    StyleDimension(
        name="formality",
        measure=lambda before, after: formality_score(after) - formality_score(before),
        toward=lambda text: _replace_phrases(text, FORMALIZATIONS),
        away=lambda text: _replace_phrases(text, CASUALIZATIONS),
    )
)
register_dimension(
    StyleDimension(name="conciseness", measure=conciseness_shift, toward=remove_fillers)
)
register_dimension(
    StyleDimension(
        name="contractions",
        measure=lambda before, after: contraction_score(after) - contraction_score(before),
        toward=lambda text: _replace_phrases(text, CONTRACTIONS),
        away=lambda text: _replace_phrases(text, EXPANSIONS),
    )
)
register_dimension(
    StyleDimension(
        name="punctuation",
        measure=lambda before, after: punctuation_score(after) - punctuation_score(before),
        from_choices=False,
    )
)


def running_average(current: float, samples: int, delta: float) -> float:
    """Recency-biased average, clamped to [-1, 1]."""
    weight = min(0.3, 1.0 / (samples + 1))
    return max(-1.0, min(1.0, current * (1 - weight) + delta * weight))


class PreferenceProfiler:
    """Persists per-dimension weights in the ``preference_profile`` table."""

    def __init__(
        self,
        db_path: str | Path,
        dimensions: dict[str, StyleDimension] | None = None,
        ab_signal_weight: float = 0.5,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.dimensions = dimensions if dimensions is not None else STYLE_DIMENSIONS
        self.ab_signal_weight = ab_signal_weight
        self.clock = clock
        with wal_connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS preference_profile (
                    dimension TEXT PRIMARY KEY,
                    weight REAL NOT NULL DEFAULT 0.0,
                    sample_count INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL
                )
            """)

    def get_profile(self) -> PreferenceProfile:
        with wal_connect(self.db_path, row_factory=True) as conn:
            rows = conn.execute("SELECT * FROM preference_profile").fetchall()
        profile = PreferenceProfile()
        for row in rows:
            profile.style_weights[row["dimension"]] = row["weight"]
            profile.sample_counts[row["dimension"]] = row["sample_count"]
            updated = parse_timestamp(row["updated_at"])
            if profile.last_computed_at is None or updated > profile.last_computed_at:
                profile.last_computed_at = updated
        return profile

    def observe_edit(self, original: str, edited: str) -> dict[str, float]:
        deltas = {name: dim.measure(original, edited) for name, dim in self.dimensions.items()}
        self._apply_deltas(deltas)
        return deltas

    def observe_choice(self, selected: str, rejected: str) -> dict[str, float]:
        deltas = {
            name: dim.measure(rejected, selected) * self.ab_signal_weight
            for name, dim in self.dimensions.items()
            if dim.from_choices
        }
        self._apply_deltas(deltas)
        return deltas

    def adjust(
        self, text: str, threshold: float = 0.5, min_samples: int = 5
    ) -> tuple[str, list[str]]:
        """Rewrite ``text`` along every dimension with a strong enough weight."""
        profile = self.get_profile()
        applied = []
        for name, dim in self.dimensions.items():
            weight = profile.style_weights.get(name, 0.0)
            if profile.sample_counts.get(name, 0) < min_samples:
                continue
            rewrite = None
            if weight >= threshold:
                rewrite = dim.toward
            elif weight <= -threshold:
                rewrite = dim.away
            if rewrite is None:
                continue
            adjusted = rewrite(text)
            if adjusted != text:
                text = adjusted
                applied.append(name)
        return text, applied

    def rebuild(
        self,
        edits: Iterable[tuple[str, str]],
        choices: Iterable[tuple[str, str]] = (),
    ) -> PreferenceProfile:
        """Recompute from scratch: ``edits`` as (original, edited), ``choices``
        as (selected, rejected), each already in timestamp order."""
        self.clear()
        weights: dict[str, float] = {}
        counts: dict[str, int] = {}

        def fold(deltas: dict[str, float]):
            for name, delta in deltas.items():
                weights[name] = running_average(weights.get(name, 0.0), counts.get(name, 0), delta)
                counts[name] = counts.get(name, 0) + 1

        for original, edited in edits:
            fold({n: d.measure(original, edited) for n, d in self.dimensions.items()})
        for selected, rejected in choices:
            fold(
                {
                    n: d.measure(rejected, selected) * self.ab_signal_weight
                    for n, d in self.dimensions.items()
                    if d.from_choices
                }
            )

        now = self.clock().isoformat()
        with write_transaction(self.db_path) as conn:
            conn.executemany(
                """INSERT INTO preference_profile (dimension, weight, sample_count, updated_at)
                   VALUES (?, ?, ?, ?)""",
                [(name, weights[name], counts[name], now) for name in weights],
            )
        logger.info("profile.rebuilt", dimensions=len(weights))
        return self.get_profile()

    def set_weight(self, dimension: str, weight: float, sample_count: int) -> None:
        with wal_connect(self.db_path) as conn:
            conn.execute(
                """INSERT INTO preference_profile (dimension, weight, sample_count, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(dimension) DO UPDATE SET
                       weight = excluded.weight,
                       sample_count = excluded.sample_count,
                       updated_at = excluded.updated_at""",
                (dimension, max(-1.0, min(1.0, weight)), sample_count, self.clock().isoformat()),
            )

    def clear(self) -> None:
        with wal_connect(self.db_path) as conn:
            conn.execute("DELETE FROM preference_profile")

    def _apply_deltas(self, deltas: dict[str, float]) -> None:
        now = self.clock().isoformat()
        with write_transaction(self.db_path) as conn:
            for name, delta in deltas.items():
                row = conn.execute(
                    "SELECT weight, sample_count FROM preference_profile WHERE dimension = ?",
                    (name,),
                ).fetchone()
                current, samples = (row[0], row[1]) if row else (0.0, 0)
                conn.execute(
                    """INSERT INTO preference_profile (dimension, weight, sample_count, updated_at)
                       VALUES (?, ?, ?, ?)
                       ON CONFLICT(dimension) DO UPDATE SET
                           weight = excluded.weight,
                           sample_count = excluded.sample_count,
                           updated_at = excluded.updated_at""",
                    (name, running_average(current, samples, delta), samples + 1, now),
                )
