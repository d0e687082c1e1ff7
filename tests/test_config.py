from __future__ import annotations

from udpmux.config import ServerConfig, server_config_from_env


def test_defaults():
    cfg = ServerConfig()
    assert cfg.port == 7777
    assert cfg.no_delay is True
    assert cfg.interval_ms == 40
    assert cfg.interval_s == 0.04


def test_from_env(monkeypatch):
    monkeypatch.setenv("UDPMUX_PORT", "9000")
    monkeypatch.setenv("UDPMUX_HOST", "127.0.0.1")
    monkeypatch.setenv("UDPMUX_NO_DELAY", "off")
    monkeypatch.setenv("UDPMUX_INTERVAL_MS", "0")
    monkeypatch.setenv("UDPMUX_TIMEOUT_MS", "not-a-number")

    cfg = server_config_from_env()

    assert cfg.port == 9000
    assert cfg.host == "127.0.0.1"
    assert cfg.no_delay is False
    assert cfg.interval_ms == 1
    assert cfg.timeout_ms == ServerConfig().timeout_ms

