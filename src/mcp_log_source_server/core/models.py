"""Core data models for log source discovery."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .normalize import compression_suffix


class LogKind(str, Enum):
    """Kind of log content, used to pick a default parsing rule."""

    ACCESS = "access"
    ERROR = "error"
    SYSLOG = "syslog"
    CUSTOM = "custom"


class Category(str, Enum):
    """Disjoint classification buckets for logical files."""

    SYSTEM_CRITICAL = "systemCritical"
    ROTATION_MANAGED = "rotationManaged"
    AUTO_DETECTED = "autoDetected"
    CUSTOM = "custom"


class RotationSystem(str, Enum):
    """Daemon that owns log rotation on the host."""

    NONE = "none"
    LOGROTATE = "logrotate"
    SYSTEMD_JOURNALD = "systemd-journald"
    UNKNOWN = "unknown"


class ScanMode(str, Enum):
    QUICK = "quick"
    FULL = "full"


@dataclass(frozen=True, slots=True)
class CandidateFile:
    """Single filesystem entry found by a scan (never persisted)."""

    path: str
    declared_type: LogKind
    size_bytes: int
    modified_at: datetime
    sample: tuple[str, ...] = ()  # header lines, only filled in full mode

    @property
    def compressed(self) -> bool:
        return compression_suffix(self.path) is not None


@dataclass(frozen=True, slots=True)
class ScanResult:
    """Scanner output plus the limits that were hit."""

    base_path: str
    mode: ScanMode
    files: list[CandidateFile]
    truncated: bool = False  # time budget or file cap reached
    skipped_dirs: int = 0


@dataclass(frozen=True, slots=True)
class Resolution:
    """Effective parsing rule for one logical file."""

    regex: str
    is_override: bool
    default_regex: str
    log_type: LogKind

    @property
    def needs_configuration(self) -> bool:
        return not self.regex


@dataclass(frozen=True, slots=True)
class LogicalFile:
    """Rotation-normalized identity of one or more candidate files."""

    logical_path: str
    log_type: LogKind
    category: Category
    effective_regex: str
    is_override: bool
    default_regex: str
    members: tuple[CandidateFile, ...] = ()

    @property
    def primary(self) -> CandidateFile | None:
        """The uncompressed base file when present, else the newest member."""
        for m in self.members:
            if m.path == self.logical_path:
                return m
        if not self.members:
            return None
        return max(self.members, key=lambda m: m.modified_at)

    def to_dict(self) -> dict[str, Any]:
        primary = self.primary
        return {
            "path": self.logical_path,
            "type": self.log_type.value,
            "category": self.category.value,
            "size": primary.size_bytes if primary else 0,
            "modified": primary.modified_at.isoformat() if primary else None,
            "regex": self.effective_regex,
            "isOverride": self.is_override,
            "defaultRegex": self.default_regex,
            "variants": sorted(m.path for m in self.members if m.path != self.logical_path),
        }


@dataclass(frozen=True, slots=True)
class Classification:
    """Partition of logical files into the four categories."""

    system_critical: list[LogicalFile] = field(default_factory=list)
    rotation_managed: list[LogicalFile] = field(default_factory=list)
    auto_detected: list[LogicalFile] = field(default_factory=list)
    custom: list[LogicalFile] = field(default_factory=list)

    def bucket(self, category: Category) -> list[LogicalFile]:
        return {
            Category.SYSTEM_CRITICAL: self.system_critical,
            Category.ROTATION_MANAGED: self.rotation_managed,
            Category.AUTO_DETECTED: self.auto_detected,
            Category.CUSTOM: self.custom,
        }[category]

    def all_files(self) -> list[LogicalFile]:
        return [*self.system_critical, *self.rotation_managed, *self.auto_detected, *self.custom]

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {c.value: [f.to_dict() for f in self.bucket(c)] for c in Category}


@dataclass(frozen=True, slots=True)
class RotationEntry:
    """One configured log path in the rotation manager."""

    path: str
    rotation_pattern: str | None = None  # daily|weekly|monthly|yearly
    keep_days: int | None = None
    compress: bool | None = None
    rotate_count: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "rotationPattern": self.rotation_pattern,
            "keepDays": self.keep_days,
            "compress": self.compress,
            "rotate": self.rotate_count,
        }


@dataclass(frozen=True, slots=True)
class RotationPolicy:
    """Detected host rotation configuration (not persisted)."""

    system: RotationSystem
    config_path: str | None = None
    configured_entries: tuple[RotationEntry, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "system": self.system.value,
            "configPath": self.config_path,
            "configuredEntries": [e.to_dict() for e in self.configured_entries],
        }


@dataclass(frozen=True, slots=True)
class ServiceLogFile:
    """A log file written by a logging daemon, as declared in its config."""

    path: str
    log_type: str = "syslog"  # facility-derived: syslog|auth|kern|daemon|mail|cron|user|custom
    facility: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "type": self.log_type, "facility": self.facility}


@dataclass(frozen=True, slots=True)
class LoggingService:
    """A system logging daemon found on the host."""

    name: str  # journald|rsyslog|syslog-ng
    active: bool
    config_path: str | None = None
    log_files: tuple[ServiceLogFile, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "active": self.active,
            "configPath": self.config_path,
            "logFiles": [f.to_dict() for f in self.log_files],
        }


@dataclass(frozen=True, slots=True)
class HostDetection:
    """Result of host introspection."""

    host_root: str
    services: tuple[LoggingService, ...]
    rotation: RotationPolicy
    common_files: tuple[str, ...] = ()  # well-known critical files present on the host
    system_critical: tuple[str, ...] = ()
    auto_detected: tuple[str, ...] = ()
    available: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "hostRoot": self.host_root,
            "available": self.available,
            "services": [s.to_dict() for s in self.services],
            "rotation": self.rotation.to_dict(),
            "commonFiles": list(self.common_files),
            "categorizedFiles": {
                "systemCritical": list(self.system_critical),
                "autoDetected": list(self.auto_detected),
            },
        }


_SYSLOG_ALIASES = frozenset({"auth", "kern", "daemon", "mail", "cron", "user", "journald", "messages"})


def coerce_kind(value: str | LogKind | None) -> LogKind:
    """Map stored or legacy type names onto a LogKind (unknown names become CUSTOM)."""
    if isinstance(value, LogKind):
        return value
    name = (value or "").strip().lower()
    try:
        return LogKind(name)
    except ValueError:
        return LogKind.SYSLOG if name in _SYSLOG_ALIASES else LogKind.CUSTOM
