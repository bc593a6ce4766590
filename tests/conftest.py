from __future__ import annotations

import gzip
from collections.abc import Callable
from pathlib import Path

import pytest

from mcp_log_source_server.core.config import EngineConfig
from mcp_log_source_server.core.log_service import LogSourceService
from mcp_log_source_server.core.settings import InMemorySettingsStore


@pytest.fixture
def write_lines() -> Callable[[Path, list[str]], Path]:
    def _write(path: Path, lines: list[str]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def write_gzip() -> Callable[[Path, list[str]], Path]:
    def _write(path: Path, lines: list[str]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with gzip.open(path, "wb") as f:
            f.write("".join(line + "\n" for line in lines).encode("utf-8"))
        return path

    return _write


@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    return EngineConfig(
        host_root=str(tmp_path / "host"),
        poll_interval=0.05,
        reopen_attempts=20,
    )


@pytest.fixture
def make_service(engine_config: EngineConfig) -> Callable[..., LogSourceService]:
    def _make(settings: dict[str, dict] | None = None) -> LogSourceService:
        return LogSourceService(engine_config, InMemorySettingsStore(settings))

    return _make
