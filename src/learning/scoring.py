"""Confidence and recency scoring for correction patterns.

Confidence is never stored: it is a pure function of ``occurrence_count`` and
``last_reinforced_at`` evaluated at read time, so decay needs no background job.
"""

import math
from dataclasses import dataclass
from datetime import datetime

from shared_types import LearningQuality

from .models import CorrectionPattern

DEFAULT_HALF_LIFE_DAYS = 30.0
DEFAULT_MIN_OCCURRENCES = 3
DEFAULT_MIN_CONFIDENCE = 0.5

_SECONDS_PER_DAY = 86400.0


def base_score(occurrence_count: int) -> float:
    """1 - 1/(n+1): monotonically increasing, asymptotic to 1."""
    return 1.0 - 1.0 / (occurrence_count + 1)


def recency_factor(
    last_reinforced_at: datetime,
    now: datetime,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> float:
    age_days = max(0.0, (now - last_reinforced_at).total_seconds() / _SECONDS_PER_DAY)
    return math.exp(-age_days / half_life_days)


def confidence(
    occurrence_count: int,
    last_reinforced_at: datetime,
    now: datetime,
    half_life_days: float = DEFAULT_HALF_LIFE_DAYS,
) -> float:
    score = base_score(occurrence_count) * recency_factor(last_reinforced_at, now, half_life_days)
    return min(1.0, score)


@dataclass(frozen=True)
class ConfidencePolicy:
    """Thresholds deciding when a pattern may be applied."""

    half_life_days: float = DEFAULT_HALF_LIFE_DAYS
    min_occurrences: int = DEFAULT_MIN_OCCURRENCES
    min_confidence: float = DEFAULT_MIN_CONFIDENCE

    def score(self, pattern: CorrectionPattern, now: datetime) -> float:
        return confidence(
            pattern.occurrence_count, pattern.last_reinforced_at, now, self.half_life_days
        )

    def is_eligible(self, pattern: CorrectionPattern, now: datetime) -> bool:
        if pattern.is_user_disabled or pattern.occurrence_count < self.min_occurrences:
            return False
        return self.score(pattern, now) >= self.min_confidence


# Learning sessions needed to reach each quality level, highest first
QUALITY_LEVELS = (
    (100, LearningQuality.EXCELLENT),
    (50, LearningQuality.GOOD),
    (10, LearningQuality.BASIC),
)


def learning_quality(sessions: int) -> LearningQuality:
    """Coarse maturity of what has been learned, from learned edits plus A/B decisions."""
    for threshold, level in QUALITY_LEVELS:
        if sessions >= threshold:
            return level
    return LearningQuality.MINIMAL
