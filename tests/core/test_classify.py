from __future__ import annotations

from datetime import UTC, datetime

from mcp_log_source_server.core.classify import classify, is_critical
from mcp_log_source_server.core.models import (
    CandidateFile,
    Category,
    LogKind,
    RotationEntry,
    RotationPolicy,
    RotationSystem,
)
from mcp_log_source_server.core.regex_store import RegexResolver
from mcp_log_source_server.core.regex_suggest import MESSAGE_ONLY_REGEX
from mcp_log_source_server.core.settings import InMemorySettingsStore, ManualLogFile
from mcp_log_source_server.core.sources import (
    ACCESS_COMBINED_REGEX,
    NGINX_ERROR_REGEX,
    SYSLOG_REGEX,
    SourceType,
)

ACCESS_LINES = [
    '127.0.0.1 - - [10/Oct/2000:13:55:36 -0700] "GET /apache_pb.gif HTTP/1.0" 200 2326',
    '10.0.0.7 - frank [10/Oct/2000:13:55:37 -0700] "POST /login HTTP/1.1" 302 -',
]
SYSLOG_LINES = [
    "Jan  5 12:00:00 myhost sshd[123]: Accepted password for root",
    "Jan  5 12:00:01 myhost CRON[456]: (root) CMD (run-parts /etc/cron.hourly)",
]

NO_ROTATION = RotationPolicy(system=RotationSystem.NONE)


def _file(path: str, kind: LogKind = LogKind.CUSTOM, sample: list[str] | None = None, ts: int = 0) -> CandidateFile:
    return CandidateFile(
        path=path,
        declared_type=kind,
        size_bytes=10,
        modified_at=datetime.fromtimestamp(1_700_000_000 + ts, tz=UTC),
        sample=tuple(sample or ()),
    )


def _run(source: SourceType, files, *, resolver=None, rotation=NO_ROTATION, manual=None):
    resolver = resolver or RegexResolver(InMemorySettingsStore())
    return classify(
        files,
        profile=source.profile,
        resolve=lambda p, k: resolver.resolve(source, p, k),
        rotation=rotation,
        manual=manual,
    )


def test_partition_is_complete_and_disjoint() -> None:
    files = [
        _file("/var/log/syslog", LogKind.SYSLOG, SYSLOG_LINES),
        _file("/var/log/syslog.1.gz", LogKind.SYSLOG, SYSLOG_LINES),
        _file("/var/log/apt/history.log", LogKind.CUSTOM, ["Start-Date: 2024-01-01  10:00:00"]),
        _file("/var/log/daemon-extra.log", LogKind.CUSTOM, SYSLOG_LINES),
        _file("/var/log/weird.log", LogKind.CUSTOM, ["\x00\x01 binary junk"]),
    ]
    rotation = RotationPolicy(
        system=RotationSystem.LOGROTATE,
        configured_entries=(RotationEntry("/var/log/apt/*.log"),),
    )
    result = _run(SourceType.HOST_SYSTEM, files, rotation=rotation)

    listed = [f.logical_path for f in result.all_files()]
    assert sorted(listed) == sorted(set(listed))
    assert set(listed) == {
        "/var/log/syslog",
        "/var/log/apt/history.log",
        "/var/log/daemon-extra.log",
        "/var/log/weird.log",
    }
    assert [f.logical_path for f in result.system_critical] == ["/var/log/syslog"]
    assert [f.logical_path for f in result.rotation_managed] == ["/var/log/apt/history.log"]
    assert [f.logical_path for f in result.auto_detected] == ["/var/log/daemon-extra.log"]
    assert [f.logical_path for f in result.custom] == ["/var/log/weird.log"]


def test_variants_inherit_their_logical_file() -> None:
    files = [
        _file("/var/log/nginx/access.log", LogKind.ACCESS, ACCESS_LINES, ts=10),
        _file("/var/log/nginx/access.log.1.gz", LogKind.ACCESS, ACCESS_LINES, ts=5),
    ]
    result = _run(SourceType.NGINX, files)

    assert len(result.all_files()) == 1
    lf = result.auto_detected[0]
    assert lf.logical_path == "/var/log/nginx/access.log"
    assert lf.effective_regex == ACCESS_COMBINED_REGEX
    assert lf.to_dict()["variants"] == ["/var/log/nginx/access.log.1.gz"]
    assert lf.primary is not None and lf.primary.path == "/var/log/nginx/access.log"


def test_override_wins_and_makes_file_custom() -> None:
    resolver = RegexResolver(InMemorySettingsStore())
    resolver.save_override(SourceType.NGINX, "/var/log/nginx/access.log", r"^(?P<all>.*)$", "access")
    files = [_file("/var/log/nginx/access.log", LogKind.ACCESS, ACCESS_LINES)]

    result = _run(SourceType.NGINX, files, resolver=resolver)

    assert result.auto_detected == []
    lf = result.custom[0]
    assert lf.is_override
    assert lf.effective_regex == r"^(?P<all>.*)$"
    assert lf.default_regex == ACCESS_COMBINED_REGEX


def test_override_keeps_critical_category() -> None:
    resolver = RegexResolver(InMemorySettingsStore())
    resolver.save_override(SourceType.HOST_SYSTEM, "/var/log/auth.log", r"^(?P<line>.*)$", "syslog")
    result = _run(SourceType.HOST_SYSTEM, [_file("/var/log/auth.log", LogKind.SYSLOG)], resolver=resolver)

    lf = result.system_critical[0]
    assert lf.is_override
    assert lf.effective_regex == r"^(?P<line>.*)$"


def test_quick_mode_uses_name_derived_kind() -> None:
    files = [
        _file("/var/log/nginx/access.log", LogKind.ACCESS),
        _file("/var/log/nginx/upstream.log", LogKind.CUSTOM),
    ]
    result = _run(SourceType.NGINX, files)

    assert [f.logical_path for f in result.auto_detected] == ["/var/log/nginx/access.log"]
    custom = result.custom[0]
    assert custom.logical_path == "/var/log/nginx/upstream.log"
    assert custom.effective_regex == ""
    assert not custom.is_override


def test_sample_refines_kind() -> None:
    files = [_file("/var/log/nginx/upstream.log", LogKind.CUSTOM, ["2024/01/01 12:00:00 [error] 12#0: boom"])]
    result = _run(SourceType.NGINX, files)

    lf = result.auto_detected[0]
    assert lf.log_type == LogKind.ERROR
    assert lf.effective_regex == NGINX_ERROR_REGEX


def test_manual_file_without_default_gets_suggestion() -> None:
    path = "/opt/app/app.log"
    files = [_file(path, LogKind.CUSTOM, ["hello world"])]
    manual = {path: ManualLogFile(path=path, type="custom")}

    result = _run(SourceType.HOST_SYSTEM, files, manual=manual)

    lf = result.auto_detected[0]
    assert lf.effective_regex == MESSAGE_ONLY_REGEX
    assert not lf.is_override


def test_manual_file_with_matching_default_is_auto_detected() -> None:
    path = "/opt/app/system.log"
    files = [_file(path, LogKind.CUSTOM, SYSLOG_LINES)]
    manual = {path: ManualLogFile(path=path, type="syslog")}

    result = _run(SourceType.HOST_SYSTEM, files, manual=manual)

    lf = result.auto_detected[0]
    assert lf.log_type == LogKind.SYSLOG
    assert lf.effective_regex == SYSLOG_REGEX


def test_critical_wins_over_disabled_manual_entry() -> None:
    path = "/var/log/auth.log"
    manual = {path: ManualLogFile(path=path, type="auth", enabled=False)}
    result = _run(SourceType.HOST_SYSTEM, [_file(path, LogKind.SYSLOG)], manual=manual)

    assert [f.logical_path for f in result.system_critical] == [path]
    assert result.system_critical[0].effective_regex == SYSLOG_REGEX


def test_is_critical_names() -> None:
    assert is_critical("/var/log/syslog")
    assert is_critical("/var/log/syslog.2.gz")
    assert is_critical("/var/log/messages-20240101")
    assert is_critical("/var/log/maillog")
    assert not is_critical("/var/log/nginx/access.log")
    assert not is_critical("/var/log/syslogd.pid")
