"""Field-level merge rules for correction patterns.

Used for inbound sync and snapshot import. Each field type has its own merge
function; together they form a commutative, idempotent merge, so two devices
merging the same pair of states in either order end up identical.

``confidence_score`` is deliberately absent: it is recomputed locally from the
merged ``occurrence_count`` and ``last_reinforced_at``.
"""

import hashlib
from dataclasses import asdict, dataclass, replace
from datetime import datetime

from shared_types import PatternKind

from .models import CorrectionPattern, normalize_surface, parse_timestamp


def pattern_id(from_surface: str, to_surface: str, scoped_mode: str | None) -> str:
    """Deterministic id so independently learned copies share an identity."""
    key = f"{normalize_surface(from_surface)}|{normalize_surface(to_surface)}|{scoped_mode or ''}"
    return hashlib.sha256(key.encode()).hexdigest()[:16]


@dataclass(frozen=True)
class PatternRecord:
    """Syncable state of one pattern (or its tombstone)."""

    id: str
    kind: PatternKind
    from_surface: str
    to_surface: str
    scoped_mode: str | None
    occurrence_count: int
    first_seen_at: datetime
    last_reinforced_at: datetime
    last_applied_at: datetime | None = None
    is_user_disabled: bool = False
    disabled_changed_at: datetime | None = None
    generation: int = 0
    deleted_at: datetime | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def key(self) -> tuple[str, str, str]:
        return (
            normalize_surface(self.from_surface),
            normalize_surface(self.to_surface),
            self.scoped_mode or "",
        )

    @classmethod
    def from_pattern(cls, pattern: CorrectionPattern) -> "PatternRecord":
        return cls(
            id=pattern.id,
            kind=PatternKind(pattern.kind),
            from_surface=pattern.from_surface,
            to_surface=pattern.to_surface,
            scoped_mode=pattern.scoped_mode,
            occurrence_count=pattern.occurrence_count,
            first_seen_at=pattern.first_seen_at,
            last_reinforced_at=pattern.last_reinforced_at,
            last_applied_at=pattern.last_applied_at,
            is_user_disabled=pattern.is_user_disabled,
            disabled_changed_at=pattern.disabled_changed_at,
            generation=pattern.generation,
        )

    def to_pattern(self) -> CorrectionPattern:
        return CorrectionPattern(
            id=self.id,
            kind=self.kind,
            from_surface=self.from_surface,
            to_surface=self.to_surface,
            scoped_mode=self.scoped_mode,
            occurrence_count=self.occurrence_count,
            last_applied_at=self.last_applied_at,
            last_reinforced_at=self.last_reinforced_at,
            is_user_disabled=self.is_user_disabled,
            first_seen_at=self.first_seen_at,
            disabled_changed_at=self.disabled_changed_at,
            generation=self.generation,
        )

    def tombstone(self, deleted_at: datetime) -> "PatternRecord":
        return replace(self, deleted_at=deleted_at)

    def to_payload(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind.value
        for name in (
            "first_seen_at",
            "last_reinforced_at",
            "last_applied_at",
            "disabled_changed_at",
            "deleted_at",
        ):
            value = data[name]
            data[name] = value.isoformat() if value else None
        return data

    @classmethod
    def from_payload(cls, data: dict) -> "PatternRecord":
        def ts(name: str) -> datetime | None:
            return parse_timestamp(data.get(name))

        return cls(
            id=data["id"],
            kind=PatternKind(data["kind"]),
            from_surface=data["from_surface"],
            to_surface=data["to_surface"],
            scoped_mode=data.get("scoped_mode"),
            occurrence_count=max(1, int(data["occurrence_count"])),
            first_seen_at=ts("first_seen_at") or ts("last_reinforced_at"),
            last_reinforced_at=ts("last_reinforced_at"),
            last_applied_at=ts("last_applied_at"),
            is_user_disabled=bool(data.get("is_user_disabled", False)),
            disabled_changed_at=ts("disabled_changed_at"),
            generation=int(data.get("generation", 0)),
            deleted_at=ts("deleted_at"),
        )


# --- per-field merge functions ---


def merge_occurrences(a: int, b: int) -> int:
    """Occurrences are additive evidence: keep the larger count."""
    return max(a, b)


def merge_latest(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def merge_earliest(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


def merge_disabled_flag(
    a_value: bool,
    a_changed_at: datetime | None,
    b_value: bool,
    b_changed_at: datetime | None,
) -> tuple[bool, datetime | None]:
    """Last writer wins on the single boolean; equal timestamps favor disabled."""
    if a_changed_at == b_changed_at:
        return (a_value or b_value), a_changed_at
    if b_changed_at is None or (a_changed_at is not None and a_changed_at > b_changed_at):
        return a_value, a_changed_at
    return b_value, b_changed_at


def merge_surface(a: str, b: str) -> str:
    """Same normalized key, possibly different casing: pick deterministically."""
    return min(a, b)


def merge_kind(a: PatternKind, b: PatternKind) -> PatternKind:
    return PatternKind(min(a.value, b.value))


def merge_records(a: PatternRecord, b: PatternRecord) -> PatternRecord:
    """Merge two states of the same pattern.

    A newer generation (re-learned after a deletion) replaces the older one
    wholesale; within a generation fields merge independently and a deletion
    is final.
    """
    if a.generation != b.generation:
        return a if a.generation > b.generation else b

    disabled, disabled_at = merge_disabled_flag(
        a.is_user_disabled, a.disabled_changed_at, b.is_user_disabled, b.disabled_changed_at
    )
    return PatternRecord(
        id=min(a.id, b.id),
        kind=merge_kind(a.kind, b.kind),
        from_surface=merge_surface(a.from_surface, b.from_surface),
        to_surface=merge_surface(a.to_surface, b.to_surface),
        scoped_mode=a.scoped_mode if a.scoped_mode is not None else b.scoped_mode,
        occurrence_count=merge_occurrences(a.occurrence_count, b.occurrence_count),
        first_seen_at=merge_earliest(a.first_seen_at, b.first_seen_at),
        last_reinforced_at=merge_latest(a.last_reinforced_at, b.last_reinforced_at),
        last_applied_at=merge_latest(a.last_applied_at, b.last_applied_at),
        is_user_disabled=disabled,
        disabled_changed_at=disabled_at,
        generation=a.generation,
        deleted_at=merge_latest(a.deleted_at, b.deleted_at),
    )
