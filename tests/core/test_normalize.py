from __future__ import annotations

import pytest

from mcp_log_source_server.core.normalize import (
    compression_suffix,
    is_rotated_variant,
    normalize,
    normalize_name,
)


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("/var/log/nginx/access.log.1.gz", "/var/log/nginx/access.log"),
        ("/var/log/nginx/access.log.20240101", "/var/log/nginx/access.log"),
        ("/var/log/nginx/access.log.2.bz2", "/var/log/nginx/access.log"),
        ("/var/log/syslog.3.xz", "/var/log/syslog"),
        ("/var/log/syslog.gz", "/var/log/syslog"),
        ("/var/log/syslog", "/var/log/syslog"),
        ("access.log.1", "access.log"),
    ],
)
def test_normalize_strips_compression_then_rotation(path: str, expected: str) -> None:
    assert normalize(path) == expected


def test_normalize_is_idempotent() -> None:
    paths = [
        "/var/log/nginx/access.log.1.gz",
        "/var/log/nginx/access.log.20240101",
        "/var/log/app.log.1.gz.1",
        "/var/log/messages",
        "",
        "/",
        ".1",
    ]
    for p in paths:
        once = normalize(p)
        assert normalize(once) == once


def test_normalize_leaves_directories_alone() -> None:
    assert normalize("/srv/logs.1/app.log") == "/srv/logs.1/app.log"
    assert normalize("/srv/logs.1/app.log.2") == "/srv/logs.1/app.log"


def test_normalize_never_empties_a_name() -> None:
    assert normalize_name(".1") == ".1"
    assert normalize("/var/log/.gz") == "/var/log/.gz"
    assert normalize("") == ""


def test_compression_suffix_is_case_insensitive() -> None:
    assert compression_suffix("/var/log/a.log.GZ") == ".gz"
    assert compression_suffix("/var/log/a.log.xz") == ".xz"
    assert compression_suffix("/var/log/a.log") is None


def test_is_rotated_variant() -> None:
    assert is_rotated_variant("/var/log/a.log.1")
    assert not is_rotated_variant("/var/log/a.log")
