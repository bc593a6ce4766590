from __future__ import annotations

import itertools
import os
from pathlib import Path

import pytest

from mcp_log_source_server.core.errors import NotFoundError, PermissionDeniedError
from mcp_log_source_server.core.models import LogKind, ScanMode
from mcp_log_source_server.core.scanning import matches_patterns, read_sample, scan
from mcp_log_source_server.core.settings import ExcludeFilters
from mcp_log_source_server.core.sources import SourceType

PATTERNS = ["access*.log", "error*.log"]


@pytest.fixture
def nginx_dir(tmp_path: Path, write_lines, write_gzip) -> Path:
    base = tmp_path / "nginx"
    write_lines(base / "access.log", ["a 1", "a 2"])
    write_gzip(base / "access.log.1.gz", ["old 1", "old 2"])
    write_lines(base / "error.log", ["e 1"])
    write_lines(base / "notes.txt", ["not a log"])
    write_lines(base / "site" / "access.log", ["s 1"])
    write_lines(base / "old" / "access.log", ["o 1"])
    return base


def _rel(base: Path, paths) -> set[str]:
    return {os.path.relpath(p, base) for p in paths}


def test_quick_scan_skips_compressed_and_unmatched(nginx_dir: Path) -> None:
    result = scan(str(nginx_dir), PATTERNS)

    assert result.mode == ScanMode.QUICK
    assert _rel(nginx_dir, (f.path for f in result.files)) == {
        "access.log",
        "error.log",
        "site/access.log",
        "old/access.log",
    }
    assert all(f.sample == () for f in result.files)


def test_full_scan_reads_samples_including_compressed(nginx_dir: Path) -> None:
    result = scan(str(nginx_dir), PATTERNS, mode=ScanMode.FULL)
    by_rel = {os.path.relpath(f.path, nginx_dir): f for f in result.files}

    assert "access.log.1.gz" in by_rel
    assert by_rel["access.log.1.gz"].sample == ("old 1", "old 2")
    assert by_rel["access.log.1.gz"].compressed
    assert by_rel["access.log"].sample == ("a 1", "a 2")


def test_quick_results_are_subset_of_full(nginx_dir: Path) -> None:
    quick = {f.path for f in scan(str(nginx_dir), PATTERNS).files}
    full = {f.path for f in scan(str(nginx_dir), PATTERNS, mode=ScanMode.FULL).files}
    assert quick <= full


def test_exclude_filters_veto_include_patterns(nginx_dir: Path) -> None:
    exclude = ExcludeFilters(
        files=["error*"],
        directories=["old"],
        paths=[str(nginx_dir / "site")],
    )
    result = scan(str(nginx_dir), PATTERNS, exclude)
    assert _rel(nginx_dir, (f.path for f in result.files)) == {"access.log"}


def test_excluded_base_path_yields_nothing(nginx_dir: Path) -> None:
    result = scan(str(nginx_dir), PATTERNS, ExcludeFilters(paths=[str(nginx_dir)]))
    assert result.files == []


def test_depth_zero_stays_in_base(nginx_dir: Path) -> None:
    result = scan(str(nginx_dir), PATTERNS, depth=0)
    assert _rel(nginx_dir, (f.path for f in result.files)) == {"access.log", "error.log"}


def test_max_files_truncates(nginx_dir: Path) -> None:
    result = scan(str(nginx_dir), PATTERNS, max_files=1)
    assert result.truncated
    assert len(result.files) == 1


def test_time_budget_truncates(nginx_dir: Path) -> None:
    ticks = itertools.chain([0.0], itertools.repeat(5.0))
    result = scan(str(nginx_dir), PATTERNS, time_budget=1.0, clock=lambda: next(ticks))
    assert result.truncated
    assert result.files == []


def test_declared_type_comes_from_profile(nginx_dir: Path) -> None:
    result = scan(str(nginx_dir), PATTERNS, depth=0, kind_for=SourceType.NGINX.profile.kind_for)
    kinds = {os.path.basename(f.path): f.declared_type for f in result.files}
    assert kinds == {"access.log": LogKind.ACCESS, "error.log": LogKind.ERROR}


def test_missing_base_path_is_not_found(tmp_path: Path) -> None:
    with pytest.raises(NotFoundError) as exc_info:
        scan(str(tmp_path / "nope"), PATTERNS)
    assert exc_info.value.code == "NotFound"
    assert isinstance(exc_info.value, FileNotFoundError)


def test_file_as_base_path_is_not_found(tmp_path: Path) -> None:
    f = tmp_path / "file.log"
    f.write_text("x\n", encoding="utf-8")
    with pytest.raises(NotFoundError):
        scan(str(f), PATTERNS)


@pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="root ignores permissions")
def test_unreadable_base_path_is_permission_denied(tmp_path: Path) -> None:
    base = tmp_path / "locked"
    base.mkdir()
    base.chmod(0)
    try:
        with pytest.raises(PermissionDeniedError):
            scan(str(base), PATTERNS)
    finally:
        base.chmod(0o755)


def test_patterns_match_rotated_names() -> None:
    assert matches_patterns("access.log.1.gz", "access.log.1.gz", ["access*.log"])
    assert matches_patterns("vhosts/site.log", "site.log", ["vhosts/*.log"])
    assert not matches_patterns("notes.txt", "notes.txt", ["*.log"])
    assert matches_patterns("anything", "anything", [])


def test_read_sample_skips_blank_lines(tmp_path: Path) -> None:
    p = tmp_path / "a.log"
    p.write_text("\n\nfirst\n\nsecond\nthird\n", encoding="utf-8")
    assert read_sample(str(p), 2) == ("first", "second")
