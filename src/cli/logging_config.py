"""Structured logging configuration using structlog."""

import logging
import re
import sys
from pathlib import Path

import structlog

# Patterns to redact from log output
_REDACT_PATTERNS = [
    (re.compile(r"(Bearer\s+)[a-zA-Z0-9_.-]{8,}"), r"\1REDACTED"),
    (re.compile(r"(api[_-]?key['\"]?\s*[:=]\s*['\"]?)[a-zA-Z0-9_-]{8,}"), r"\1REDACTED"),
    (re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"), "REDACTED@email"),
]

# User text must never reach a log sink, whatever a call site passes
_TEXT_KEYS = {"text", "original_text", "edited_text", "candidate_a", "candidate_b"}


def _redact_sensitive(_, __, event_dict: dict) -> dict:
    """Structlog processor dropping user text and masking credentials."""
    for key in list(event_dict):
        value = event_dict[key]
        if key in _TEXT_KEYS:
            event_dict[key] = f"<{len(value)} chars>" if isinstance(value, str) else "<redacted>"
        elif isinstance(value, str):
            for pattern, replacement in _REDACT_PATTERNS:
                value = pattern.sub(replacement, value)
            event_dict[key] = value
    return event_dict


def setup_logging(
    json_mode: bool = False,
    level: str = "INFO",
    log_file: Path | None = None,
    file_level: str = "DEBUG",
) -> None:
    """Configure structlog over stdlib logging.

    Args:
        json_mode: JSON renderer for machine consumption, console renderer otherwise.
        level: Console log level.
        log_file: Optional file that always receives JSON lines.
        file_level: Log level for ``log_file``.
    """
    console_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _redact_sensitive,
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    def formatter(renderer) -> structlog.stdlib.ProcessorFormatter:
        return structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )

    console_renderer = (
        structlog.processors.JSONRenderer() if json_mode else structlog.dev.ConsoleRenderer()
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter(console_renderer))
    handler.setLevel(console_level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(console_level)

    if log_file is not None:
        log_file = Path(log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter(structlog.processors.JSONRenderer()))
        file_handler.setLevel(getattr(logging, file_level.upper(), logging.DEBUG))
        root.addHandler(file_handler)
        root.setLevel(min(console_level, file_handler.level))
