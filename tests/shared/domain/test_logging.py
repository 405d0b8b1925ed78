"""Tests for log event redaction and level selection."""

from shared.logging import REDACTED, get_log_level, redact_secrets


class TestRedactSecrets:
    def test_masks_credential_keys(self):
        event = redact_secrets(None, "info", {"event": "issued", "api_key": "raw", "caller_id": "c-1"})
        assert event == {"event": "issued", "api_key": REDACTED, "caller_id": "c-1"}

    def test_key_match_is_case_insensitive(self):
        event = redact_secrets(None, "info", {"event": "x", "Authorization": "Bearer abc"})
        assert event["Authorization"] == REDACTED

    def test_masks_nested_headers(self):
        event = redact_secrets(
            None,
            "info",
            {"event": "sent", "headers": {"X-Circles-Service-Key": "k", "Accept": "application/json"}},
        )
        assert event["headers"] == {"X-Circles-Service-Key": REDACTED, "Accept": "application/json"}

    def test_key_hash_is_kept(self):
        event = redact_secrets(None, "warning", {"event": "unknown key", "key_hash": "abc123"})
        assert event["key_hash"] == "abc123"


class TestLogLevel:
    def test_explicit_level_wins(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        assert get_log_level() == "ERROR"

    def test_derived_from_environment(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.setenv("ENVIRONMENT", "production")
        assert get_log_level() == "INFO"

    def test_test_environment_is_quiet(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.delenv("ENVIRONMENT", raising=False)
        monkeypatch.setenv("PROTEAN_ENV", "test")
        assert get_log_level() == "WARNING"
