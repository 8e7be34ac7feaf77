"""Data models for the hybrid learning engine."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from shared_types import ABChoice, EditOpKind, MutationType, PatternKind, SyncState


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex[:16]


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """ISO string -> aware datetime; naive values are taken as UTC."""
    if value is None or value == "":
        return None
    dt = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def normalize_surface(text: str) -> str:
    """Lookup form of a surface: lowercase, single spaces, trimmed."""
    return " ".join(text.lower().split())


@dataclass(frozen=True)
class EditEvent:
    """One finalized user correction. Archived append-only."""

    id: str
    timestamp: datetime
    refinement_mode: str
    original_text: str
    edited_text: str
    source_context: str | None = None
    is_opted_out: bool = False


@dataclass(frozen=True)
class EditOperation:
    """A single aligned change between two texts.

    ``position`` is the token index in the original where the change starts;
    the ``*_start``/``*_end`` pairs are character offsets.
    """

    kind: EditOpKind
    position: int
    original_start: int
    original_end: int
    edited_start: int
    edited_end: int
    original_text: str
    edited_text: str
    original_tokens: tuple[str, ...] = ()
    edited_tokens: tuple[str, ...] = ()


@dataclass
class CorrectionPattern:
    id: str
    kind: PatternKind
    from_surface: str
    to_surface: str
    scoped_mode: str | None = None
    occurrence_count: int = 1
    confidence_score: float = 0.0
    last_applied_at: datetime | None = None
    last_reinforced_at: datetime = field(default_factory=utcnow)
    is_user_disabled: bool = False
    first_seen_at: datetime = field(default_factory=utcnow)
    disabled_changed_at: datetime | None = None
    generation: int = 0

    @property
    def key(self) -> tuple[str, str, str]:
        return (
            normalize_surface(self.from_surface),
            normalize_surface(self.to_surface),
            self.scoped_mode or "",
        )

    @property
    def token_length(self) -> int:
        return len(self.from_surface.split())


@dataclass
class PatternFilter:
    """Settings UI filter for pattern listings."""

    mode: str | None = None
    kind: PatternKind | None = None
    include_disabled: bool = True
    eligible_only: bool = False
    search: str | None = None
    limit: int | None = None


@dataclass
class ABTestRecord:
    id: str
    candidate_a: str
    candidate_b: str
    word_count: int
    chosen: ABChoice = ABChoice.NONE
    timestamp: datetime = field(default_factory=utcnow)
    refinement_mode: str | None = None
    decided_at: datetime | None = None
    learned: bool = False

    @property
    def is_decided(self) -> bool:
        return self.chosen != ABChoice.NONE


@dataclass
class PreferenceProfile:
    style_weights: dict[str, float] = field(default_factory=dict)
    sample_counts: dict[str, int] = field(default_factory=dict)
    last_computed_at: datetime | None = None


@dataclass
class ApplyResult:
    text: str
    applied_pattern_ids: list[str] = field(default_factory=list)
    applied_styles: list[str] = field(default_factory=list)


@dataclass
class SyncQueueItem:
    id: str
    mutation_type: MutationType
    target_entity_id: str
    payload: dict
    enqueued_at: datetime = field(default_factory=utcnow)
    retry_count: int = 0
    next_attempt_at: datetime | None = None
    last_error: str | None = None
    revision: int = 0
    abandoned: bool = False


@dataclass
class SyncStatus:
    last_successful_sync: datetime | None
    pending_count: int
    state: SyncState
    needs_attention: bool = False
    last_error: str | None = None
