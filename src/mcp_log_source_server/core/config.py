"""Engine configuration resolved from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, TypeVar

T = TypeVar("T")

BACKPRESSURE_POLICIES = ("block", "drop_oldest")


def _env(name: str, default: T, convert: Callable[[str], T], *, minimum: float | None = None) -> T:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = convert(raw.strip())
    except ValueError as exc:
        kind = "an integer" if convert is int else "a number"
        raise ValueError(f"{name} must be {kind}") from exc
    if minimum is not None and value < minimum:  # type: ignore[operator]
        raise ValueError(f"{name} must be >= {minimum:g}")
    return value


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Tunables for scanning, detection and streaming."""

    settings_file: str | None = None
    host_root: str = "/"

    quick_time_budget: float = 2.0  # seconds
    quick_max_depth: int = 2
    full_max_depth: int = 8
    max_files: int = 5000  # quick scans
    full_max_files: int = 50000  # full scans also walk deeper and count archives
    sample_lines: int = 5

    stream_queue_size: int = 1000
    stream_backpressure: str = "drop_oldest"
    poll_interval: float = 0.5
    reopen_attempts: int = 10

    def __post_init__(self) -> None:
        if self.stream_backpressure not in BACKPRESSURE_POLICIES:
            allowed = ", ".join(BACKPRESSURE_POLICIES)
            raise ValueError(f"stream_backpressure must be one of: {allowed}")
        if self.stream_queue_size < 1:
            raise ValueError("stream_queue_size must be >= 1")
        if self.full_max_files < self.max_files:
            raise ValueError("full_max_files must be >= max_files")

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Build a config from LOG_SOURCE_* variables, falling back to defaults."""
        d = cls()
        backpressure = os.getenv("LOG_SOURCE_STREAM_BACKPRESSURE", d.stream_backpressure).strip()
        if backpressure not in BACKPRESSURE_POLICIES:
            raise ValueError("LOG_SOURCE_STREAM_BACKPRESSURE must be 'block' or 'drop_oldest'")
        max_files = _env("LOG_SOURCE_MAX_FILES", d.max_files, int, minimum=1)
        return cls(
            settings_file=os.getenv("LOG_SOURCE_SETTINGS_FILE") or None,
            host_root=os.getenv("LOG_SOURCE_HOST_ROOT") or d.host_root,
            quick_time_budget=_env("LOG_SOURCE_QUICK_TIME_BUDGET", d.quick_time_budget, float, minimum=0.01),
            quick_max_depth=_env("LOG_SOURCE_QUICK_MAX_DEPTH", d.quick_max_depth, int, minimum=0),
            full_max_depth=_env("LOG_SOURCE_FULL_MAX_DEPTH", d.full_max_depth, int, minimum=0),
            max_files=max_files,
            full_max_files=_env("LOG_SOURCE_FULL_MAX_FILES", max(d.full_max_files, max_files), int, minimum=1),
            sample_lines=_env("LOG_SOURCE_SAMPLE_LINES", d.sample_lines, int, minimum=1),
            stream_queue_size=_env("LOG_SOURCE_STREAM_QUEUE_SIZE", d.stream_queue_size, int, minimum=1),
            stream_backpressure=backpressure,
            poll_interval=_env("LOG_SOURCE_POLL_INTERVAL", d.poll_interval, float, minimum=0.01),
            reopen_attempts=_env("LOG_SOURCE_REOPEN_ATTEMPTS", d.reopen_attempts, int, minimum=1),
        )
