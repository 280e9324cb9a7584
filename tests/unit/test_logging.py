"""Unit tests for logging service."""

import json

import structlog

from src.services.logging_service import configure_logging, redact_sensitive


class TestRedactSensitive:
    """Tests for redact_sensitive processor."""

    def test_redacts_password(self):
        event_dict = {"password": "Secret1", "event": "test"}
        result = redact_sensitive(None, None, event_dict)
        assert result["password"] == "REDACTED"

    def test_redacts_tokens_and_hashes(self):
        event_dict = {
            "refresh_token": "abc.def",
            "access_token": "eyJ...",
            "password_hash": "$argon2id$...",
            "salt": "xyz",
            "jwt_secret": "s",
            "event": "test",
        }
        result = redact_sensitive(None, None, event_dict)
        for key in ("refresh_token", "access_token", "password_hash", "salt", "jwt_secret"):
            assert result[key] == "REDACTED"
        assert result["event"] == "test"

    def test_redacts_nested_headers(self):
        event_dict = {"headers": {"Authorization": "Bearer abc", "accept": "json"}}
        result = redact_sensitive(None, None, event_dict)
        assert result["headers"] == {"Authorization": "REDACTED", "accept": "json"}

    def test_case_insensitive_redaction(self):
        event_dict = {"Password": "a", "REFRESH_TOKEN": "b"}
        result = redact_sensitive(None, None, event_dict)
        assert result == {"Password": "REDACTED", "REFRESH_TOKEN": "REDACTED"}

    def test_preserves_ids(self):
        event_dict = {
            "correlation_id": "abc-123",
            "session_id": "6b0f...",
            "user_id": "0a1b...",
            "event": "session_issued",
        }
        result = redact_sensitive(None, None, dict(event_dict))
        assert result == event_dict


class TestLoggingOutput:
    def test_json_with_correlation_id_and_redaction(self, capsys):
        configure_logging("INFO")
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id="corr-1")

        structlog.get_logger("test").info(
            "credential_set", user_id="u-1", password="Secret1"
        )
        structlog.contextvars.clear_contextvars()

        line = capsys.readouterr().out.strip().splitlines()[-1]
        entry = json.loads(line)
        assert entry["event"] == "credential_set"
        assert entry["correlation_id"] == "corr-1"
        assert entry["password"] == "REDACTED"
        assert entry["level"] == "info"
        assert "Secret1" not in line

    def test_level_filtering(self, capsys):
        configure_logging("WARNING")

        structlog.get_logger("test").info("quiet_event")

        assert "quiet_event" not in capsys.readouterr().out
        configure_logging("INFO")
