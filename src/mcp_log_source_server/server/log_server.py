"""MCP server entrypoint (stdio transport).

This module wires together:
- Tools: discovery, classification, regex configuration and live streams
- Resources: help text, source profiles and the settings schema

Run locally (stdio):
    python -m mcp_log_source_server.server.log_server
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Sequence
from typing import Any

from mcp.server.fastmcp import FastMCP

from mcp_log_source_server.resources.registry import register_resources
from mcp_log_source_server.tools.sources import (
    close_stream_impl,
    delete_regex_config_impl,
    detect_logging_services_impl,
    detected_files_impl,
    generate_regex_impl,
    list_custom_regexes_impl,
    list_default_files_impl,
    list_streams_impl,
    open_stream_impl,
    put_regex_config_impl,
    read_stream_impl,
    regex_config_impl,
)

LOGGER = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Configure a reasonable default logging setup.

    The MCP client typically captures stderr; stdout belongs to the stdio transport.
    """
    level_name = os.getenv("LOG_SOURCE_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


mcp = FastMCP("log-source", json_response=True)

register_resources(mcp)


@mcp.tool()
async def list_default_files(source: str) -> dict[str, Any]:
    """Return the built-in and manually configured log files of a source.

    Parameters
    ----------
    source:
        One of host-system, nginx, apache, npm.
    """
    return await list_default_files_impl(source=source)


@mcp.tool()
async def detect_logging_services(refresh: bool = False) -> dict[str, Any]:
    """Detect logging daemons (journald, rsyslog, syslog-ng) and the rotation policy.

    Results are cached; pass refresh=true to re-inspect the host.
    """
    return await detect_logging_services_impl(refresh=refresh)


@mcp.tool()
async def detected_files(
    source: str,
    mode: str = "quick",
    base_path: str | None = None,
    refresh: bool = False,
) -> dict[str, Any]:
    """Discover and classify a source's log files.

    Parameters
    ----------
    source:
        One of host-system, nginx, apache, npm.
    mode:
        "quick" (metadata only, bounded depth and time) or "full" (reads samples,
        includes compressed archives).
    base_path:
        Directory to scan instead of the configured/default base path.
    refresh:
        Discard cached detection and background scan results.

    Returns
    -------
    dict:
        {"files": {"systemCritical": [...], "rotationManaged": [...],
        "autoDetected": [...], "custom": [...]}, ...}
    """
    return await detected_files_impl(source=source, mode=mode, base_path=base_path, refresh=refresh)


@mcp.tool()
async def regex_config(source: str, path: str, log_type: str | None = None) -> dict[str, Any]:
    """Return the effective regex of a file: {regex, isOverride, defaultRegex}."""
    return await regex_config_impl(source=source, path=path, log_type=log_type)


@mcp.tool()
async def put_regex_config(source: str, path: str, regex: str, log_type: str | None = None) -> dict[str, Any]:
    """Save a regex override for a file. Invalid patterns are rejected and nothing is stored."""
    return await put_regex_config_impl(source=source, path=path, regex=regex, log_type=log_type)


@mcp.tool()
async def delete_regex_config(source: str, path: str) -> dict[str, Any]:
    """Remove a file's regex override, reverting to the source default."""
    return await delete_regex_config_impl(source=source, path=path)


@mcp.tool()
async def list_custom_regexes(source: str | None = None) -> dict[str, Any]:
    """List saved regex overrides as {source: {path: {regex, logType, updatedAt}}}."""
    return await list_custom_regexes_impl(source=source)


@mcp.tool()
async def generate_regex(sample_line: str) -> dict[str, Any]:
    """Suggest a regex with named groups for a sample log line.

    Returns
    -------
    dict:
        {"regex": str, "namedGroups": list[str], "testMatch": dict}
    """
    return await generate_regex_impl(sample_line=sample_line)


@mcp.tool()
async def open_stream(
    source: str,
    path: str,
    max_lines: int | None = None,
    read_compressed: bool | None = None,
) -> dict[str, Any]:
    """Start tailing a logical log file; returns a session id for read_stream.

    Parameters
    ----------
    max_lines:
        Historical lines to replay before following (0 = whole file). Defaults
        to the source's maxLines setting.
    read_compressed:
        Allow reading a compressed archive when it is the only physical file.
    """
    return await open_stream_impl(source=source, path=path, max_lines=max_lines, read_compressed=read_compressed)


@mcp.tool()
async def read_stream(session_id: str, max_events: int | None = None, wait_seconds: float = 0.0) -> dict[str, Any]:
    """Drain queued line and status events from a stream session.

    Each line event is {line, parsedFields, timestamp, offset}.
    """
    return await read_stream_impl(session_id=session_id, max_events=max_events, wait_seconds=wait_seconds)


@mcp.tool()
async def close_stream(session_id: str) -> dict[str, Any]:
    """Stop a stream session and release its file handle."""
    return await close_stream_impl(session_id=session_id)


@mcp.tool()
async def list_streams() -> dict[str, Any]:
    """List open stream sessions."""
    return await list_streams_impl()


def main(argv: Sequence[str] | None = None) -> None:
    """Start the MCP server over stdio."""
    _configure_logging()
    LOGGER.debug("Starting MCP server (transport=stdio)")
    _ = argv or sys.argv[1:]
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
