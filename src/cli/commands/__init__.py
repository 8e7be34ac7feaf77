"""CLI command modules."""

from .data_cmd import data
from .learning import apply, pause, profile, replay, reset, resume, status, submit
from .patterns_cmd import patterns
from .sync_cmd import sync

__all__ = [
    "apply",
    "data",
    "patterns",
    "pause",
    "profile",
    "replay",
    "reset",
    "resume",
    "status",
    "submit",
    "sync",
]
