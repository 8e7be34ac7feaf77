"""Hybrid learning engine: learns correction patterns from user edits.

Import :class:`learning.engine.LearningEngine` for the full facade; the
components below can also be used on their own.
"""

from .diff import analyze, apply_operations
from .errors import (
    AlreadyDecidedError,
    EmptyInputError,
    InvalidSnapshotError,
    LearningError,
    NetworkUnavailableError,
    PatternNotFoundError,
    StoreCorruptionError,
    SyncConflictUnresolvable,
)
from .models import CorrectionPattern, EditEvent, EditOperation, PatternFilter
from .scoring import ConfidencePolicy
from .store import PatternStore

__all__ = [
    "AlreadyDecidedError",
    "ConfidencePolicy",
    "CorrectionPattern",
    "EditEvent",
    "EditOperation",
    "EmptyInputError",
    "InvalidSnapshotError",
    "LearningError",
    "NetworkUnavailableError",
    "PatternFilter",
    "PatternNotFoundError",
    "PatternStore",
    "StoreCorruptionError",
    "SyncConflictUnresolvable",
    "analyze",
    "apply_operations",
]
