from __future__ import annotations

from iplists.core.settings import Settings


def test_exempt_paths_accept_comma_separated_env(monkeypatch):
    monkeypatch.setenv("IPLISTS_EXEMPT_PATHS", "/ping, /health ,")
    monkeypatch.setenv("IPLISTS_IP_HEADER", " ")

    settings = Settings()

    assert settings.exempt_paths == ["/ping", "/health"]
    assert settings.ip_header is None


def test_gate_can_be_disabled_on_dev(monkeypatch):
    monkeypatch.setenv("IPLISTS_ENVIRONMENT", "development")
    monkeypatch.setenv("IPLISTS_ENABLED_ON_DEV", "false")
    assert Settings().gate_active is False

    monkeypatch.setenv("IPLISTS_ENVIRONMENT", "production")
    assert Settings().gate_active is True

    monkeypatch.setenv("IPLISTS_ENABLED", "0")
    assert Settings().gate_active is False
