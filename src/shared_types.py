"""Shared enums and types for the learning engine."""

from enum import StrEnum


class RefinementMode(StrEnum):
    RAW = "raw"
    CLEANUP = "cleanup"
    EMAIL = "email"
    MESSAGING = "messaging"


class PatternKind(StrEnum):
    TOKEN_SUBSTITUTION = "token-substitution"
    PHRASE_RULE = "phrase-rule"
    STYLISTIC_RULE = "stylistic-rule"


class EditOpKind(StrEnum):
    INSERT = "insert"
    DELETE = "delete"
    REPLACE = "replace"


class ABChoice(StrEnum):
    A = "A"
    B = "B"
    NONE = "none"


class ABState(StrEnum):
    INACTIVE = "inactive"
    SAMPLING = "sampling"
    EXHAUSTED = "exhausted"


class MutationType(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncState(StrEnum):
    ONLINE = "online"
    OFFLINE = "offline"
    DEGRADED = "degraded"


class LearningQuality(StrEnum):
    MINIMAL = "minimal"
    BASIC = "basic"
    GOOD = "good"
    EXCELLENT = "excellent"
