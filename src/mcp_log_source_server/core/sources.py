"""Supported log source types and their built-in defaults.

Each source type is a closed enum member that carries a :class:`SourceProfile`
with its default base path, include patterns, well-known files and the default
regex for every log kind it understands.
"""

from __future__ import annotations

import fnmatch
import posixpath
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from .errors import UnknownSourceError
from .models import LogKind
from .normalize import normalize_name

_IP = r"(?P<ip>[\da-fA-F.:]+)"

ACCESS_COMBINED_REGEX = (
    rf"^{_IP}\s+\S+\s+(?P<user>\S+)\s+\[(?P<timestamp>[^\]]+)\]\s+"
    r'"(?P<method>[A-Z]+)\s+(?P<path>\S+)(?:\s+(?P<protocol>[^"]*))?"\s+'
    r"(?P<status>\d{3})\s+(?P<size>\d+|-)"
    r'(?:\s+"(?P<referer>[^"]*)"\s+"(?P<user_agent>[^"]*)")?'
)

APACHE_VHOST_ACCESS_REGEX = (
    r"^(?P<vhost>[^:\s]+)(?::(?P<port>\d+))?\s+"
    rf"{_IP}\s+\S+\s+(?P<user>\S+)\s+\[(?P<timestamp>[^\]]+)\]\s+"
    r'"(?P<method>[A-Z]+)\s+(?P<path>\S+)(?:\s+(?P<protocol>[^"]*))?"\s+'
    r"(?P<status>\d{3})\s+(?P<size>\d+|-)"
    r'(?:\s+"(?P<referer>[^"]*)"\s+"(?P<user_agent>[^"]*)")?'
)

APACHE_ERROR_REGEX = (
    r"^\[(?P<timestamp>[^\]]+)\]\s+\[(?P<level>[^\]]+)\]\s+"
    r"(?:\[pid\s+(?P<pid>\d+)(?::tid\s+(?P<tid>\d+))?\]\s+)?"
    r"(?:\[client\s+(?P<client>[^\]]+)\]\s+)?"
    r"(?P<message>.*)$"
)

NGINX_ERROR_REGEX = (
    r"^(?P<timestamp>\d{4}/\d{2}/\d{2}\s+\d{2}:\d{2}:\d{2})\s+"
    r"\[(?P<level>\w+)\]\s+(?P<message>.+)$"
)

NPM_ACCESS_REGEX = (
    r"^\[(?P<timestamp>[^\]]+)\]\s+(?P<cache>\S+)\s+(?P<upstream_status>\S+)\s+"
    r"(?P<status>\d+)\s+-\s+(?P<method>\S+)\s+(?P<scheme>\S+)\s+(?P<host>\S+)\s+"
    r'"(?P<path>[^"]+)"\s+\[Client\s+(?P<ip>[\da-fA-F.:]+)\]'
)

SYSLOG_REGEX = (
    r"^(?:<(?P<pri>\d{1,3})>(?:\d\s+)?)?"
    r"(?P<timestamp>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\S*"
    r"|[A-Z][a-z]{2}\s+\d{1,2}\s+\d{2}:\d{2}:\d{2})\s+"
    r"(?P<host>\S+)\s+(?P<tag>[^\s\[:]+)(?:\[(?P<pid>\d+)\])?:\s*(?P<message>.*)$"
)

# Host-system file stems that carry syslog-formatted content.
_SYSLOG_STEMS = (
    "syslog",
    "messages",
    "auth",
    "secure",
    "kern",
    "daemon",
    "mail",
    "maillog",
    "cron",
    "user",
    "debug",
)


class SourceType(str, Enum):
    """Closed set of log sources understood by the engine."""

    HOST_SYSTEM = "host-system"
    NGINX = "nginx"
    APACHE = "apache"
    NPM = "npm"

    @property
    def profile(self) -> SourceProfile:
        return PROFILES[self]

    @classmethod
    def parse(cls, source_id: str) -> SourceType:
        """Return the source type for ``source_id`` or raise UnknownSourceError."""
        try:
            return cls(source_id.strip().lower())
        except ValueError as exc:
            valid = ", ".join(s.value for s in cls)
            raise UnknownSourceError(
                f"Unknown log source '{source_id}'. Valid values: {valid}."
            ) from exc


@dataclass(frozen=True, slots=True)
class DefaultFile:
    path: str
    log_type: LogKind
    enabled: bool = True

    def to_dict(self) -> dict[str, object]:
        return {"path": self.path, "type": self.log_type.value, "enabled": self.enabled}


@dataclass(frozen=True, slots=True)
class SourceProfile:
    """Built-in defaults for one source type."""

    source: str
    base_path: str
    access_pattern: str | None
    error_pattern: str | None
    extra_patterns: tuple[str, ...] = ()
    default_files: tuple[DefaultFile, ...] = ()
    regexes: Mapping[LogKind, str] = field(default_factory=dict)
    # (file-name glob, regex) pairs that win over the per-kind default
    name_regexes: tuple[tuple[str, str], ...] = ()

    def patterns(
        self,
        *,
        access_pattern: str | None = None,
        error_pattern: str | None = None,
    ) -> list[str]:
        """Include globs, with configured access/error patterns replacing the defaults."""
        out: list[str] = []
        for p in (access_pattern or self.access_pattern, error_pattern or self.error_pattern):
            if p and p not in out:
                out.append(p)
        for p in self.extra_patterns:
            if p not in out:
                out.append(p)
        return out

    def default_regex(self, kind: LogKind, path: str | None = None) -> str:
        if path is not None:
            name = normalize_name(posixpath.basename(path)).lower()
            for glob, regex in self.name_regexes:
                if fnmatch.fnmatchcase(name, glob):
                    return regex
        return self.regexes.get(kind, "")

    def candidate_kinds(self, declared: LogKind) -> list[LogKind]:
        """Kinds to try against a sample line, declared kind first."""
        kinds = [declared] if declared in self.regexes else []
        kinds.extend(k for k in self.regexes if k != declared)
        return kinds

    def kind_for(self, path: str) -> LogKind:
        """Infer the log kind of ``path`` from its (normalized) file name."""
        name = normalize_name(posixpath.basename(path)).lower()
        if self.source == SourceType.HOST_SYSTEM.value:
            stem = name.split(".", 1)[0]
            if any(stem == s or stem.startswith(s + "-") for s in _SYSLOG_STEMS):
                return LogKind.SYSLOG
            return LogKind.CUSTOM
        if "error" in name:
            return LogKind.ERROR
        if "access" in name:
            return LogKind.ACCESS
        return LogKind.CUSTOM


PROFILES: dict[SourceType, SourceProfile] = {
    SourceType.HOST_SYSTEM: SourceProfile(
        source=SourceType.HOST_SYSTEM.value,
        base_path="/var/log",
        access_pattern=None,
        error_pattern=None,
        extra_patterns=(
            "syslog*",
            "messages*",
            "auth.log*",
            "secure*",
            "kern.log*",
            "daemon.log*",
            "mail.log*",
            "maillog*",
            "mail.err*",
            "cron*",
            "*.log",
        ),
        default_files=(
            DefaultFile("/var/log/syslog", LogKind.SYSLOG),
            DefaultFile("/var/log/messages", LogKind.SYSLOG),
            DefaultFile("/var/log/auth.log", LogKind.SYSLOG),
            DefaultFile("/var/log/secure", LogKind.SYSLOG),
            DefaultFile("/var/log/kern.log", LogKind.SYSLOG),
            DefaultFile("/var/log/daemon.log", LogKind.SYSLOG),
            DefaultFile("/var/log/mail.log", LogKind.SYSLOG),
            DefaultFile("/var/log/cron", LogKind.SYSLOG, enabled=False),
        ),
        regexes={LogKind.SYSLOG: SYSLOG_REGEX},
    ),
    SourceType.NGINX: SourceProfile(
        source=SourceType.NGINX.value,
        base_path="/var/log/nginx",
        access_pattern="access*.log",
        error_pattern="error*.log",
        default_files=(
            DefaultFile("/var/log/nginx/access.log", LogKind.ACCESS),
            DefaultFile("/var/log/nginx/error.log", LogKind.ERROR),
        ),
        regexes={LogKind.ACCESS: ACCESS_COMBINED_REGEX, LogKind.ERROR: NGINX_ERROR_REGEX},
    ),
    SourceType.APACHE: SourceProfile(
        source=SourceType.APACHE.value,
        base_path="/var/log/apache2",
        access_pattern="access*.log",
        error_pattern="error*.log",
        extra_patterns=("other_vhosts_access*.log",),
        default_files=(
            DefaultFile("/var/log/apache2/access.log", LogKind.ACCESS),
            DefaultFile("/var/log/apache2/error.log", LogKind.ERROR),
            DefaultFile("/var/log/apache2/other_vhosts_access.log", LogKind.ACCESS, enabled=False),
        ),
        regexes={LogKind.ACCESS: ACCESS_COMBINED_REGEX, LogKind.ERROR: APACHE_ERROR_REGEX},
        name_regexes=(("other_vhosts_access*", APACHE_VHOST_ACCESS_REGEX),),
    ),
    SourceType.NPM: SourceProfile(
        source=SourceType.NPM.value,
        base_path="/data/logs",
        access_pattern="*_access.log",
        error_pattern="*_error.log",
        extra_patterns=("letsencrypt*.log",),
        default_files=(
            DefaultFile("/data/logs/default-host_access.log", LogKind.ACCESS),
            DefaultFile("/data/logs/default-host_error.log", LogKind.ERROR),
            DefaultFile("/data/logs/fallback_access.log", LogKind.ACCESS),
            DefaultFile("/data/logs/fallback_error.log", LogKind.ERROR),
        ),
        regexes={LogKind.ACCESS: NPM_ACCESS_REGEX, LogKind.ERROR: NGINX_ERROR_REGEX},
    ),
}

