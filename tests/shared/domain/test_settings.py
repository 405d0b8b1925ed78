"""Tests for environment-driven settings."""

from shared.settings import DispatchSettings, RunGateSettings, ledger_url


class TestRunGateSettings:
    def test_defaults(self):
        settings = RunGateSettings()
        assert settings.allow_started_takeover is False
        assert settings.stale_minutes == 10

    def test_reads_prefixed_variables(self, monkeypatch):
        monkeypatch.setenv("CODE_FULFILLMENT_ALLOW_STARTED_TAKEOVER", "Yes")
        monkeypatch.setenv("CODE_FULFILLMENT_STALE_MINUTES", "3")
        settings = RunGateSettings.from_env("CODE_FULFILLMENT_")
        assert settings.allow_started_takeover is True
        assert settings.stale_minutes == 3

    def test_other_prefixes_are_ignored(self, monkeypatch):
        monkeypatch.setenv("ERP_FULFILLMENT_ALLOW_STARTED_TAKEOVER", "true")
        assert RunGateSettings.from_env("CODE_FULFILLMENT_").allow_started_takeover is False

    def test_invalid_stale_minutes_fall_back(self, monkeypatch):
        monkeypatch.setenv("STALE_MINUTES", "soon")
        assert RunGateSettings.from_env().stale_minutes == 10
        monkeypatch.setenv("STALE_MINUTES", "0")
        assert RunGateSettings.from_env().stale_minutes == 10

    def test_unrecognized_boolean_is_false(self, monkeypatch):
        monkeypatch.setenv("ALLOW_STARTED_TAKEOVER", "maybe")
        assert RunGateSettings.from_env().allow_started_takeover is False


class TestDispatchSettings:
    def test_defaults(self):
        settings = DispatchSettings()
        assert settings.timeout_ms == 1500
        assert settings.timeout_seconds == 1.5
        assert settings.max_redirects == 3
        assert settings.max_response_bytes == 65536

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("OUTBOUND_FULFILLMENT_TIMEOUT_MS", "250")
        monkeypatch.setenv("OUTBOUND_MAX_REDIRECTS", "0")
        monkeypatch.setenv("OUTBOUND_MAX_RESPONSE_BYTES", "1024")
        settings = DispatchSettings.from_env()
        assert settings.timeout_ms == 250
        assert settings.max_redirects == 0
        assert settings.max_response_bytes == 1024

    def test_unparsable_values_use_defaults(self, monkeypatch):
        monkeypatch.setenv("OUTBOUND_FULFILLMENT_TIMEOUT_MS", "fast")
        monkeypatch.setenv("OUTBOUND_MAX_REDIRECTS", "-1")
        settings = DispatchSettings.from_env()
        assert settings.timeout_ms == 1500
        assert settings.max_redirects == 3


def test_ledger_url_defaults_to_local_sqlite(monkeypatch):
    monkeypatch.delenv("FULFILLMENT_LEDGER_URL", raising=False)
    assert ledger_url().startswith("sqlite+aiosqlite:///")
    monkeypatch.setenv("FULFILLMENT_LEDGER_URL", "postgresql+asyncpg://db/market")
    assert ledger_url() == "postgresql+asyncpg://db/market"
