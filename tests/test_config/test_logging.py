"""Tests for structured logging setup."""

import structlog

from action_guard.observability.logging import REDACTED, SensitiveKeyRedactor, get_logger, setup_logging


class TestSensitiveKeyRedactor:
    """Tests for redaction of sensitive values."""

    def setup_method(self):
        self.redactor = SensitiveKeyRedactor()

    def test_masks_sensitive_keys(self):
        event = self.redactor(None, "info", {
            "event": "approval_request_created",
            "api_key": "sk-123",
            "Email": "dana@example.com",
            "action_id": "a-1",
        })

        assert event["api_key"] == REDACTED
        assert event["Email"] == REDACTED
        assert event["action_id"] == "a-1"
        assert event["event"] == "approval_request_created"

    def test_masks_nested_dicts(self):
        event = self.redactor(None, "info", {"contact": {"phone": "555-0100", "contact_id": "c-1"}})
        assert event["contact"] == {"phone": REDACTED, "contact_id": "c-1"}


class TestSetupLogging:
    """Tests for logging configuration."""

    def teardown_method(self):
        structlog.reset_defaults()

    def test_json_output_is_redacted(self, capsys):
        setup_logging(level="INFO", format="json")
        get_logger("tests").info("llm_configured", token="abc", model="gpt-4o-mini")

        err = capsys.readouterr().err
        assert '"event": "llm_configured"' in err
        assert '"token": "[REDACTED]"' in err
        assert "abc" not in err

    def test_level_filtering(self, capsys):
        setup_logging(level="WARNING", format="console")
        logger = get_logger("tests")
        logger.info("hidden_event")
        logger.warning("shown_event")

        err = capsys.readouterr().err
        assert "hidden_event" not in err
        assert "shown_event" in err
