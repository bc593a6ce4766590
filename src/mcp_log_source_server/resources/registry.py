"""MCP resource registry.

Resources are addressable by URI and can be fetched by the MCP client on demand.
"""

from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP

from mcp_log_source_server.core.settings import LogSourceConfig
from mcp_log_source_server.core.sources import SourceType


def source_profiles() -> dict[str, Any]:
    """Describe every source type with its defaults and default regex table."""
    out: dict[str, Any] = {}
    for st in SourceType:
        p = st.profile
        out[st.value] = {
            "basePath": p.base_path,
            "patterns": p.patterns(),
            "defaultFiles": [f.to_dict() for f in p.default_files],
            "defaultRegex": {kind.value: regex for kind, regex in p.regexes.items()},
            "nameRegex": [{"glob": g, "regex": r} for g, r in p.name_regexes],
        }
    return out


def register_resources(mcp: FastMCP) -> None:
    """Register resource handlers on the MCP server."""

    @mcp.resource("app://log-source/help")
    def help_resource() -> str:
        """Return a short list of available resource URIs."""
        sources = ", ".join(s.value for s in SourceType)
        return (
            "Resources:\n"
            "- app://log-source/help\n"
            "- app://log-source/sources\n"
            "- app://log-source/schemas/settings\n"
            f"\nSources: {sources}\n"
        )

    @mcp.resource("app://log-source/sources")
    def sources_resource() -> dict[str, Any]:
        """Return source profiles and their default regex tables."""
        return source_profiles()

    @mcp.resource("app://log-source/schemas/settings")
    def settings_schema() -> dict[str, Any]:
        """Return the JSON schema for a source's settings blob."""
        return LogSourceConfig.model_json_schema(by_alias=True)
