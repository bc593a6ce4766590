"""MCP tool implementations.

This module contains the *implementation* behind the exposed MCP tools.
Keep this layer thin: validate inputs, translate them into core calls, and
return JSON-serializable data structures. Engine errors become
``{"ok": False, "error": {...}}``; malformed arguments raise ValueError.
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec

from mcp_log_source_server.core.errors import LogSourceError
from mcp_log_source_server.core.log_service import LogSourceService
from mcp_log_source_server.core.models import Resolution, ScanMode
from mcp_log_source_server.core.sources import SourceType

DEFAULT_MAX_EVENTS = 200
HARD_MAX_EVENTS = 5000
MAX_WAIT_SECONDS = 30.0

P = ParamSpec("P")

_service: LogSourceService | None = None


def get_service() -> LogSourceService:
    """Process-wide service built from LOG_SOURCE_* environment variables."""
    global _service
    if _service is None:
        _service = LogSourceService.from_env()
    return _service


def set_service(service: LogSourceService | None) -> None:
    global _service
    _service = service


def _error(exc: LogSourceError) -> dict[str, Any]:
    return {"ok": False, "error": exc.to_dict()}


def _structured(fn: Callable[P, Awaitable[dict[str, Any]]]) -> Callable[P, Awaitable[dict[str, Any]]]:
    @functools.wraps(fn)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> dict[str, Any]:
        try:
            return await fn(*args, **kwargs)
        except LogSourceError as exc:
            return _error(exc)

    return wrapper


def _parse_mode(mode: str) -> ScanMode:
    try:
        return ScanMode(mode.strip().lower())
    except ValueError as e:
        raise ValueError(f"Unknown scan mode '{mode}'. Valid values: quick, full.") from e


def _resolution_dict(path: str, r: Resolution) -> dict[str, Any]:
    return {
        "ok": True,
        "path": path,
        "regex": r.regex,
        "isOverride": r.is_override,
        "defaultRegex": r.default_regex,
        "logType": r.log_type.value,
        "needsConfiguration": r.needs_configuration,
    }


@_structured
async def list_default_files_impl(*, source: str, service: LogSourceService | None = None) -> dict[str, Any]:
    svc = service or get_service()
    st = SourceType.parse(source)
    return {"ok": True, "source": st.value, "files": svc.list_default_files(st)}


@_structured
async def detect_logging_services_impl(
    *,
    refresh: bool = False,
    service: LogSourceService | None = None,
) -> dict[str, Any]:
    svc = service or get_service()
    detection = await svc.detect_logging_services(refresh=refresh)
    return {"ok": True, **detection.to_dict()}


@_structured
async def detected_files_impl(
    *,
    source: str,
    mode: str = "quick",
    base_path: str | None = None,
    refresh: bool = False,
    service: LogSourceService | None = None,
) -> dict[str, Any]:
    svc = service or get_service()
    result = await svc.detected_files(
        SourceType.parse(source),
        mode=_parse_mode(mode),
        base_path=base_path,
        refresh=refresh,
    )
    return {"ok": True, **result.to_dict()}


@_structured
async def regex_config_impl(
    *,
    source: str,
    path: str,
    log_type: str | None = None,
    service: LogSourceService | None = None,
) -> dict[str, Any]:
    if not path:
        raise ValueError("path must not be empty")
    svc = service or get_service()
    return _resolution_dict(path, svc.regex_config(SourceType.parse(source), path, log_type))


@_structured
async def put_regex_config_impl(
    *,
    source: str,
    path: str,
    regex: str,
    log_type: str | None = None,
    service: LogSourceService | None = None,
) -> dict[str, Any]:
    if not path:
        raise ValueError("path must not be empty")
    svc = service or get_service()
    return _resolution_dict(path, svc.put_regex_config(SourceType.parse(source), path, regex, log_type))


@_structured
async def delete_regex_config_impl(
    *,
    source: str,
    path: str,
    service: LogSourceService | None = None,
) -> dict[str, Any]:
    if not path:
        raise ValueError("path must not be empty")
    svc = service or get_service()
    return _resolution_dict(path, svc.delete_regex_config(SourceType.parse(source), path))


@_structured
async def list_custom_regexes_impl(
    *,
    source: str | None = None,
    service: LogSourceService | None = None,
) -> dict[str, Any]:
    svc = service or get_service()
    st = SourceType.parse(source) if source else None
    overrides = svc.list_custom_regexes(st)
    count = sum(len(by_path) for by_path in overrides.values())
    return {"ok": True, "count": count, "overrides": overrides}


@_structured
async def generate_regex_impl(*, sample_line: str, service: LogSourceService | None = None) -> dict[str, Any]:
    svc = service or get_service()
    return {"ok": True, **svc.generate_regex(sample_line).to_dict()}


@_structured
async def open_stream_impl(
    *,
    source: str,
    path: str,
    max_lines: int | None = None,
    read_compressed: bool | None = None,
    service: LogSourceService | None = None,
) -> dict[str, Any]:
    if max_lines is not None and max_lines < 0:
        raise ValueError("max_lines must be >= 0")
    svc = service or get_service()
    session = svc.open_stream(
        SourceType.parse(source),
        path,
        max_lines=max_lines,
        read_compressed=read_compressed,
    )
    return {"ok": True, **session.to_dict()}


@_structured
async def read_stream_impl(
    *,
    session_id: str,
    max_events: int | None = None,
    wait_seconds: float = 0.0,
    service: LogSourceService | None = None,
) -> dict[str, Any]:
    if max_events is None:
        max_events = DEFAULT_MAX_EVENTS
    if max_events <= 0:
        raise ValueError("max_events must be > 0")
    max_events = min(max_events, HARD_MAX_EVENTS)
    if wait_seconds < 0:
        raise ValueError("wait_seconds must be >= 0")
    wait_seconds = min(wait_seconds, MAX_WAIT_SECONDS)

    svc = service or get_service()
    session = svc.streams.get(session_id)
    events = await svc.read_stream(session_id, max_events, wait_seconds)
    return {
        "ok": True,
        "session": session.to_dict(),
        "count": len(events),
        "events": [e.to_dict() for e in events],
    }


@_structured
async def close_stream_impl(*, session_id: str, service: LogSourceService | None = None) -> dict[str, Any]:
    svc = service or get_service()
    closed = await svc.close_stream(session_id)
    return {"ok": True, "sessionId": session_id, "closed": closed}


@_structured
async def list_streams_impl(*, service: LogSourceService | None = None) -> dict[str, Any]:
    svc = service or get_service()
    streams = svc.list_streams()
    return {"ok": True, "count": len(streams), "streams": streams}
