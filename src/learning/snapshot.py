"""Backup snapshot schema for export/import of learning data."""

import json
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from shared_types import PatternKind

from .errors import InvalidSnapshotError
from .merge import PatternRecord
from .models import utcnow

SCHEMA_VERSION = 1


class SnapshotPattern(BaseModel):
    """One pattern as exported. Confidence is recomputed on import, never carried."""

    id: str
    kind: PatternKind
    from_surface: str = Field(..., min_length=1)
    to_surface: str
    scoped_mode: Optional[str] = None
    occurrence_count: int = Field(..., ge=1)
    first_seen_at: datetime
    last_reinforced_at: datetime
    last_applied_at: Optional[datetime] = None
    is_user_disabled: bool = False
    disabled_changed_at: Optional[datetime] = None
    generation: int = Field(0, ge=0)

    @classmethod
    def from_record(cls, record: PatternRecord) -> "SnapshotPattern":
        payload = record.to_payload()
        payload.pop("deleted_at", None)
        return cls.model_validate(payload)

    def to_record(self) -> PatternRecord:
        return PatternRecord.from_payload(self.model_dump(mode="json"))


class ABSummary(BaseModel):
    """Aggregate A/B outcome counts; no candidate text leaves the device."""

    issued: int = 0
    decided: int = 0
    chose_a: int = 0
    chose_b: int = 0
    pending: int = 0


class LearningSnapshot(BaseModel):
    schema_version: int = SCHEMA_VERSION
    exported_at: datetime = Field(default_factory=utcnow)
    patterns: list[SnapshotPattern] = Field(default_factory=list)
    ab_summary: ABSummary = Field(default_factory=ABSummary)
    style_weights: dict[str, float] = Field(default_factory=dict)


def build_snapshot(
    records: list[PatternRecord],
    ab_summary: dict | None = None,
    style_weights: dict[str, float] | None = None,
    include_disabled: bool = False,
) -> LearningSnapshot:
    patterns = [
        SnapshotPattern.from_record(r)
        for r in records
        if not r.is_deleted and (include_disabled or not r.is_user_disabled)
    ]
    return LearningSnapshot(
        patterns=patterns,
        ab_summary=ABSummary(**(ab_summary or {})),
        style_weights=dict(style_weights or {}),
    )


def parse_snapshot(data: str | bytes | dict | LearningSnapshot) -> LearningSnapshot:
    """Validate an exported snapshot.

    Raises:
        InvalidSnapshotError: malformed JSON, failed validation or an
            unsupported schema version.
    """
    if isinstance(data, LearningSnapshot):
        snapshot = data
    else:
        try:
            raw = json.loads(data) if isinstance(data, (str, bytes)) else data
        except json.JSONDecodeError as e:
            raise InvalidSnapshotError(f"Snapshot is not valid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise InvalidSnapshotError("Snapshot must be a JSON object")
        version = raw.get("schema_version")
        if version != SCHEMA_VERSION:
            raise InvalidSnapshotError(
                f"Unsupported snapshot schema version {version} (expected {SCHEMA_VERSION})"
            )
        try:
            snapshot = LearningSnapshot.model_validate(raw)
        except ValidationError as e:
            raise InvalidSnapshotError(f"Snapshot failed validation: {e}") from e

    if snapshot.schema_version != SCHEMA_VERSION:
        raise InvalidSnapshotError(
            f"Unsupported snapshot schema version {snapshot.schema_version}"
        )
    return snapshot
