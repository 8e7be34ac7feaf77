"""Tests for structured logging configuration."""

import json
import logging

import pytest
import structlog

from cli.logging_config import _redact_sensitive, setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


class TestLoggingConfig:
    """Test structlog setup modes."""

    def test_level_filtering(self):
        """Log level filters lower messages."""
        setup_logging(json_mode=False, level="WARNING")
        assert logging.getLogger().level == logging.WARNING

    def test_default_level_is_info(self):
        setup_logging()
        assert logging.getLogger().level == logging.INFO

    def test_file_lowers_root_level(self, tmp_path):
        setup_logging(level="WARNING", log_file=tmp_path / "l.log", file_level="DEBUG")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 2

    def test_processor_chain_includes_redaction(self):
        setup_logging(json_mode=True)
        assert _redact_sensitive in structlog.get_config()["processors"]

    def test_file_receives_redacted_json(self, tmp_path):
        log_file = tmp_path / "logs" / "learning.log"
        setup_logging(level="WARNING", log_file=log_file)

        structlog.get_logger("test_file").info(
            "edit_recorded", text="hello world", auth="Bearer abcdefghijkl"
        )
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = log_file.read_text().strip().splitlines()
        entry = json.loads(lines[-1])
        assert entry["event"] == "edit_recorded"
        assert entry["text"] == "<11 chars>"
        assert entry["auth"] == "Bearer REDACTED"
        assert entry["level"] == "info"


class TestRedaction:
    def test_text_keys_masked(self):
        event = _redact_sensitive(None, None, {"edited_text": "going to", "mode": "cleanup"})
        assert event == {"edited_text": "<8 chars>", "mode": "cleanup"}

    def test_non_string_text_masked(self):
        assert _redact_sensitive(None, None, {"text": None})["text"] == "<redacted>"

    def test_email_and_api_key(self):
        event = _redact_sensitive(
            None, None, {"error": "user me@example.com sent api_key=sk12345678abc"}
        )
        assert "me@example.com" not in event["error"]
        assert "REDACTED@email" in event["error"]
        assert "sk12345678abc" not in event["error"]

    def test_other_values_untouched(self):
        assert _redact_sensitive(None, None, {"count": 3}) == {"count": 3}
