"""Host introspection: rotation policy and logging daemons.

Everything here is best effort. Paths found in host configuration files are
host-absolute (``/var/log/syslog``) and are resolved under ``host_root`` before
touching the filesystem, so the engine can inspect a host mounted at ``/host``.
Unreadable or missing pieces degrade to ``Unknown`` / ``None`` rather than
raising.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import re
import shlex
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Protocol

from .errors import DetectionUnavailableError
from .models import (
    HostDetection,
    LoggingService,
    RotationEntry,
    RotationPolicy,
    RotationSystem,
    ServiceLogFile,
)
from .normalize import is_critical, normalize

logger = logging.getLogger(__name__)

CADENCE_DAYS = {"daily": 1, "weekly": 7, "monthly": 30, "yearly": 365}

FACILITY_TYPES = {
    "auth": "auth",
    "authpriv": "auth",
    "kern": "kern",
    "daemon": "daemon",
    "mail": "mail",
    "cron": "cron",
    "user": "user",
    "syslog": "syslog",
}

# Well-known critical files across common distributions.
COMMON_CRITICAL_FILES = (
    "/var/log/syslog",
    "/var/log/messages",
    "/var/log/auth.log",
    "/var/log/secure",
    "/var/log/kern.log",
    "/var/log/daemon.log",
    "/var/log/mail.log",
    "/var/log/mail.err",
    "/var/log/maillog",
    "/var/log/cron",
    "/var/log/boot.log",
)

_MAX_INCLUDE_DEPTH = 8


def host_path(host_root: str, path: str) -> str:
    """Resolve a host-absolute ``path`` under ``host_root``."""
    if not host_root or host_root == "/":
        return path
    return os.path.join(host_root, path.lstrip("/"))


def _first_existing(host_root: str, candidates: Iterable[str]) -> str | None:
    for c in candidates:
        p = host_path(host_root, c)
        if os.path.exists(p):
            return p
    return None


def _read_text(path: str) -> str | None:
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return f.read()
    except OSError as exc:
        logger.debug("Cannot read %s: %s", path, exc)
        return None


def _config_dir_files(directory: str, *, suffix: str | None = None) -> list[str]:
    """Regular files of a config directory, skipping hidden and backup files."""
    try:
        names = sorted(os.listdir(directory))
    except OSError as exc:
        logger.debug("Cannot list %s: %s", directory, exc)
        return []
    out = []
    for name in names:
        if name.startswith(".") or name.endswith("~") or name.endswith((".dpkg-old", ".rpmsave")):
            continue
        if suffix is not None and not name.endswith(suffix):
            continue
        full = os.path.join(directory, name)
        if os.path.isfile(full):
            out.append(full)
    return out


# --------------------------------------------------------------------------- logrotate


@dataclass
class _Directives:
    cadence: str | None = None
    rotate: int | None = None
    maxage: int | None = None
    compress: bool | None = None

    def copy(self) -> _Directives:
        return _Directives(self.cadence, self.rotate, self.maxage, self.compress)

    def apply(self, line: str) -> None:
        words = line.split()
        if not words:
            return
        key = words[0]
        if key in CADENCE_DAYS:
            self.cadence = key
        elif key == "rotate" and len(words) > 1 and words[1].lstrip("-").isdigit():
            self.rotate = int(words[1])
        elif key == "maxage" and len(words) > 1 and words[1].isdigit():
            self.maxage = int(words[1])
        elif key == "compress":
            self.compress = True
        elif key == "nocompress":
            self.compress = False

    def keep_days(self) -> int | None:
        if self.maxage is not None:
            return self.maxage
        if self.rotate is not None and self.cadence is not None:
            return max(self.rotate, 0) * CADENCE_DAYS[self.cadence]
        return None


@dataclass
class _LogrotateParser:
    host_root: str
    entries: list[RotationEntry] = field(default_factory=list)
    _seen: set[str] = field(default_factory=set)

    def parse_file(self, path: str, defaults: _Directives, depth: int = 0) -> _Directives:
        """Parse one config file; returns the global defaults in effect afterwards."""
        real = os.path.realpath(path)
        if real in self._seen or depth > _MAX_INCLUDE_DEPTH:
            return defaults
        self._seen.add(real)
        text = _read_text(path)
        if text is None:
            return defaults
        return self._parse_text(text, os.path.dirname(path), defaults, depth)

    def _include(self, target: str, base_dir: str, defaults: _Directives, depth: int) -> _Directives:
        if target.startswith("/"):
            full = host_path(self.host_root, target)
        else:
            full = os.path.join(base_dir, target)
        if os.path.isdir(full):
            for f in _config_dir_files(full):
                defaults = self.parse_file(f, defaults, depth + 1)
            return defaults
        return self.parse_file(full, defaults, depth + 1)

    def _parse_text(self, text: str, base_dir: str, defaults: _Directives, depth: int) -> _Directives:
        pending: list[str] = []
        block_paths: list[str] | None = None
        block: _Directives | None = None
        in_script = False

        for raw in text.splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue

            if in_script:
                if line == "endscript":
                    in_script = False
                continue

            if block is not None:
                if line.startswith("}"):
                    self._emit(block_paths or [], block)
                    block, block_paths = None, None
                    continue
                if line in ("postrotate", "prerotate", "firstaction", "lastaction", "preremove"):
                    in_script = True
                    continue
                block.apply(line)
                continue

            if "{" in line:
                header = line.split("{", 1)[0]
                try:
                    paths = pending + shlex.split(header)
                except ValueError:
                    paths = pending + header.split()
                pending = []
                block_paths = paths
                block = defaults.copy()
                rest = line.split("{", 1)[1].strip()
                if rest.startswith("}"):
                    self._emit(block_paths, block)
                    block, block_paths = None, None
                continue

            words = line.split(None, 1)
            if words[0] == "include" and len(words) > 1:
                defaults = self._include(words[1].strip(), base_dir, defaults, depth)
                continue
            if line.startswith(("/", '"', "'")):
                # Multi-line block header: paths listed before the opening brace.
                try:
                    pending.extend(shlex.split(line))
                except ValueError:
                    pending.extend(line.split())
                continue
            defaults = defaults.copy()
            defaults.apply(line)

        if block is not None:
            self._emit(block_paths or [], block)
        return defaults

    def _emit(self, paths: list[str], d: _Directives) -> None:
        for p in paths:
            self.entries.append(
                RotationEntry(
                    path=p,
                    rotation_pattern=d.cadence,
                    keep_days=d.keep_days(),
                    compress=d.compress,
                    rotate_count=d.rotate,
                )
            )


class RotationInspector(Protocol):
    """One implementation per rotation manager."""

    system: RotationSystem

    def inspect(self, host_root: str) -> RotationPolicy | None:
        """Return a policy when this manager is present on the host, else None."""
        ...


class LogrotateInspector:
    system = RotationSystem.LOGROTATE

    binaries = ("/usr/sbin/logrotate", "/sbin/logrotate", "/usr/bin/logrotate")
    main_config = "/etc/logrotate.conf"
    config_dir = "/etc/logrotate.d"

    def inspect(self, host_root: str) -> RotationPolicy | None:
        binary = _first_existing(host_root, self.binaries)
        main = host_path(host_root, self.main_config)
        conf_dir = host_path(host_root, self.config_dir)
        has_main = os.path.isfile(main)
        has_dir = os.path.isdir(conf_dir)
        if binary is None and not has_main:
            return None
        if not (has_main or has_dir):
            return RotationPolicy(system=self.system)

        parser = _LogrotateParser(host_root)
        defaults = _Directives()
        if has_main:
            defaults = parser.parse_file(main, defaults)
        if has_dir:
            # Usually already pulled in by an include; the seen-set prevents duplicates.
            for f in _config_dir_files(conf_dir):
                parser.parse_file(f, defaults)

        return RotationPolicy(
            system=self.system,
            config_path=main if has_main else conf_dir,
            configured_entries=tuple(_dedupe_entries(parser.entries)),
        )


class JournaldInspector:
    system = RotationSystem.SYSTEMD_JOURNALD

    markers = ("/usr/lib/systemd", "/lib/systemd", "/usr/bin/journalctl", "/bin/journalctl")
    config = "/etc/systemd/journald.conf"

    def inspect(self, host_root: str) -> RotationPolicy | None:
        if _first_existing(host_root, self.markers) is None:
            return None
        conf = host_path(host_root, self.config)
        return RotationPolicy(
            system=self.system,
            config_path=conf if os.path.isfile(conf) else None,
        )


DEFAULT_INSPECTORS: tuple[RotationInspector, ...] = (LogrotateInspector(), JournaldInspector())


def _dedupe_entries(entries: Iterable[RotationEntry]) -> Iterator[RotationEntry]:
    seen: set[str] = set()
    for e in entries:
        if e.path in seen:
            continue
        seen.add(e.path)
        yield e


def detect_rotation(
    host_root: str,
    inspectors: Iterable[RotationInspector] = DEFAULT_INSPECTORS,
) -> RotationPolicy:
    """First inspector that recognizes the host wins; no match means NONE."""
    for inspector in inspectors:
        try:
            policy = inspector.inspect(host_root)
        except OSError as exc:
            logger.info("Rotation inspector %s failed: %s", inspector.system.value, exc)
            continue
        if policy is not None:
            return policy
    return RotationPolicy(system=RotationSystem.NONE)


def rotation_entry_for(
    policy: RotationPolicy,
    logical_path: str,
    host_root: str = "/",
) -> RotationEntry | None:
    """Return the configured entry covering ``logical_path`` (entries may be globs)."""
    for entry in policy.configured_entries:
        for pattern in {entry.path, host_path(host_root, entry.path)}:
            if logical_path == pattern or normalize(pattern) == logical_path:
                return entry
            if fnmatch.fnmatchcase(logical_path, pattern):
                return entry
    return None


# --------------------------------------------------------------------------- daemons

_RSYSLOG_RULE_RE = re.compile(r"^(?P<selector>\S+)\s+-?(?P<dest>/\S+)$")
_RSYSLOG_ACTION_RE = re.compile(r'file\s*=\s*"(?P<dest>/[^"]+)"')
_SYSLOG_NG_FILE_RE = re.compile(r'file\(\s*["\'](?P<dest>/[^"\']+)["\']')


def _selector_type(selector: str) -> tuple[str, str | None]:
    """Map an rsyslog selector (``auth,authpriv.*;mail.none``) to a log type."""
    for part in selector.split(";"):
        part = part.strip()
        if not part or part.endswith(".none"):
            continue
        facilities = part.split(".", 1)[0]
        for facility in facilities.split(","):
            facility = facility.strip()
            if facility == "*":
                continue
            return FACILITY_TYPES.get(facility, "custom"), facility
    return "syslog", "*"


def parse_rsyslog_config(text: str) -> list[ServiceLogFile]:
    out: list[ServiceLogFile] = []
    seen: set[str] = set()
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith(("#", "$", "module(", "input(")):
            continue
        m = _RSYSLOG_RULE_RE.match(line)
        if m:
            dest = m.group("dest")
            log_type, facility = _selector_type(m.group("selector"))
        else:
            a = _RSYSLOG_ACTION_RE.search(line)
            if not a:
                continue
            dest, log_type, facility = a.group("dest"), "syslog", None
        if dest in seen:
            continue
        seen.add(dest)
        out.append(ServiceLogFile(path=dest, log_type=log_type, facility=facility))
    return out


def parse_syslog_ng_config(text: str) -> list[ServiceLogFile]:
    out: list[ServiceLogFile] = []
    seen: set[str] = set()
    for m in _SYSLOG_NG_FILE_RE.finditer(text):
        dest = m.group("dest")
        if dest in seen:
            continue
        seen.add(dest)
        stem = os.path.basename(dest).split(".", 1)[0]
        log_type = FACILITY_TYPES.get(stem, "syslog" if stem in ("syslog", "messages") else "custom")
        out.append(ServiceLogFile(path=dest, log_type=log_type))
    return out


def _detect_journald(host_root: str) -> LoggingService | None:
    marker = _first_existing(
        host_root, ("/usr/bin/journalctl", "/bin/journalctl", "/usr/lib/systemd", "/lib/systemd")
    )
    if marker is None:
        return None
    conf = host_path(host_root, "/etc/systemd/journald.conf")
    journals = tuple(
        ServiceLogFile(path=p, log_type="journald")
        for p in ("/var/log/journal", "/run/log/journal")
        if os.path.isdir(host_path(host_root, p))
    )
    return LoggingService(
        name="journald",
        active=True,
        config_path=conf if os.path.isfile(conf) else None,
        log_files=journals,
    )


def _detect_rsyslog(host_root: str) -> LoggingService | None:
    binary = _first_existing(host_root, ("/usr/sbin/rsyslogd", "/sbin/rsyslogd"))
    if binary is None:
        return None
    conf = host_path(host_root, "/etc/rsyslog.conf")
    if not os.path.isfile(conf):
        return LoggingService(name="rsyslog", active=True)
    files: list[ServiceLogFile] = []
    sources = [conf, *_config_dir_files(host_path(host_root, "/etc/rsyslog.d"), suffix=".conf")]
    for path in sources:
        text = _read_text(path)
        if text is None:
            continue
        for f in parse_rsyslog_config(text):
            if all(f.path != existing.path for existing in files):
                files.append(f)
    return LoggingService(name="rsyslog", active=True, config_path=conf, log_files=tuple(files))


def _detect_syslog_ng(host_root: str) -> LoggingService | None:
    binary = _first_existing(host_root, ("/usr/sbin/syslog-ng", "/sbin/syslog-ng"))
    if binary is None:
        return None
    conf = _first_existing(host_root, ("/etc/syslog-ng/syslog-ng.conf", "/etc/syslog-ng.conf"))
    if conf is None:
        return LoggingService(name="syslog-ng", active=True)
    files: list[ServiceLogFile] = []
    sources = [conf, *_config_dir_files(os.path.join(os.path.dirname(conf), "conf.d"))]
    for path in sources:
        text = _read_text(path)
        if text is None:
            continue
        for f in parse_syslog_ng_config(text):
            if all(f.path != existing.path for existing in files):
                files.append(f)
    return LoggingService(name="syslog-ng", active=True, config_path=conf, log_files=tuple(files))


def detect_services(host_root: str) -> list[LoggingService]:
    """Logging daemons present on the host, in journald > syslog-ng > rsyslog order."""
    out: list[LoggingService] = []
    for inspect_service in (_detect_journald, _detect_syslog_ng, _detect_rsyslog):
        try:
            service = inspect_service(host_root)
        except OSError as exc:
            logger.info("Service inspection %s failed: %s", inspect_service.__name__, exc)
            continue
        if service is not None:
            out.append(service)
    return out


def common_files(host_root: str) -> list[str]:
    """Well-known critical files that exist under ``host_root``."""
    return [p for p in COMMON_CRITICAL_FILES if os.path.isfile(host_path(host_root, p))]


def categorize_files(
    host_root: str, services: Iterable[LoggingService], common: Iterable[str]
) -> tuple[list[str], list[str]]:
    """Split detected files into (systemCritical, autoDetected).

    Candidates are the common critical files plus every file a logging daemon
    writes that exists on the host. Directories such as the journal are skipped.
    """
    candidates = set(common)
    for service in services:
        for f in service.log_files:
            if os.path.isfile(host_path(host_root, f.path)):
                candidates.add(f.path)
    critical = sorted(p for p in candidates if is_critical(p))
    auto = sorted(p for p in candidates if not is_critical(p))
    return critical, auto


def _check_host_root(host_root: str) -> None:
    if not os.path.isdir(host_root):
        raise DetectionUnavailableError(f"Host root not found: {host_root}", path=host_root)
    if not os.access(host_root, os.R_OK | os.X_OK):
        raise DetectionUnavailableError(f"Host root not readable: {host_root}", path=host_root)


def detect(
    host_root: str = "/",
    inspectors: Iterable[RotationInspector] = DEFAULT_INSPECTORS,
) -> HostDetection:
    """Inspect the host; never raises, unavailable hosts report UNKNOWN rotation."""
    try:
        _check_host_root(host_root)
    except DetectionUnavailableError as exc:
        logger.info("Host detection unavailable: %s", exc)
        return HostDetection(
            host_root=host_root,
            services=(),
            rotation=RotationPolicy(system=RotationSystem.UNKNOWN),
            available=False,
        )

    services = detect_services(host_root)
    common = common_files(host_root)
    critical, auto = categorize_files(host_root, services, common)
    return HostDetection(
        host_root=host_root,
        services=tuple(services),
        rotation=detect_rotation(host_root, inspectors),
        common_files=tuple(common),
        system_critical=tuple(critical),
        auto_detected=tuple(auto),
    )
