from __future__ import annotations

import pytest

from mcp_log_source_server.core.config import EngineConfig


def test_from_env_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("LOG_SOURCE_HOST_ROOT", "LOG_SOURCE_MAX_FILES", "LOG_SOURCE_STREAM_BACKPRESSURE"):
        monkeypatch.delenv(name, raising=False)

    cfg = EngineConfig.from_env()
    assert cfg.host_root == "/"
    assert cfg.max_files == 5000
    assert cfg.stream_backpressure == "drop_oldest"


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_SOURCE_HOST_ROOT", "/host")
    monkeypatch.setenv("LOG_SOURCE_QUICK_TIME_BUDGET", "0.5")
    monkeypatch.setenv("LOG_SOURCE_MAX_FILES", "10")
    monkeypatch.setenv("LOG_SOURCE_STREAM_BACKPRESSURE", "block")
    monkeypatch.setenv("LOG_SOURCE_SETTINGS_FILE", "/tmp/settings.json")

    cfg = EngineConfig.from_env()
    assert cfg.host_root == "/host"
    assert cfg.quick_time_budget == 0.5
    assert cfg.max_files == 10
    assert cfg.stream_backpressure == "block"
    assert cfg.settings_file == "/tmp/settings.json"


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("LOG_SOURCE_MAX_FILES", "many", "LOG_SOURCE_MAX_FILES must be an integer"),
        ("LOG_SOURCE_POLL_INTERVAL", "fast", "LOG_SOURCE_POLL_INTERVAL must be a number"),
        ("LOG_SOURCE_SAMPLE_LINES", "0", "LOG_SOURCE_SAMPLE_LINES must be >= 1"),
        ("LOG_SOURCE_STREAM_BACKPRESSURE", "spill", "LOG_SOURCE_STREAM_BACKPRESSURE must be"),
    ],
)
def test_from_env_rejects_bad_values(monkeypatch: pytest.MonkeyPatch, name: str, value: str, message: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match=message):
        EngineConfig.from_env()


def test_constructor_validates_backpressure() -> None:
    with pytest.raises(ValueError):
        EngineConfig(stream_backpressure="spill")


def test_full_scan_cap_defaults_to_at_least_quick_cap(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOG_SOURCE_FULL_MAX_FILES", raising=False)
    monkeypatch.setenv("LOG_SOURCE_MAX_FILES", "80000")

    cfg = EngineConfig.from_env()
    assert cfg.full_max_files == 80000
    assert EngineConfig().full_max_files >= EngineConfig().max_files


def test_full_scan_cap_below_quick_cap_is_rejected() -> None:
    with pytest.raises(ValueError, match="full_max_files"):
        EngineConfig(max_files=100, full_max_files=10)
