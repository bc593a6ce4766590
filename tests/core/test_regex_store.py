from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from mcp_log_source_server.core.errors import InvalidPatternError
from mcp_log_source_server.core.models import LogKind
from mcp_log_source_server.core.regex_store import RegexResolver
from mcp_log_source_server.core.settings import InMemorySettingsStore
from mcp_log_source_server.core.sources import (
    ACCESS_COMBINED_REGEX,
    NGINX_ERROR_REGEX,
    SourceType,
)

ACCESS = "/var/log/nginx/access.log"


def test_resolves_profile_default_without_override() -> None:
    resolver = RegexResolver(InMemorySettingsStore())

    res = resolver.resolve(SourceType.NGINX, ACCESS)
    assert res.regex == ACCESS_COMBINED_REGEX
    assert not res.is_override
    assert res.log_type == LogKind.ACCESS

    err = resolver.resolve(SourceType.NGINX, "/var/log/nginx/error.log")
    assert err.regex == NGINX_ERROR_REGEX


def test_unknown_kind_resolves_to_empty_regex() -> None:
    resolver = RegexResolver(InMemorySettingsStore())
    res = resolver.resolve(SourceType.NGINX, "/var/log/nginx/upstream.log", LogKind.CUSTOM)
    assert res.regex == ""
    assert not res.is_override


def test_saved_override_wins_and_is_persisted() -> None:
    store = InMemorySettingsStore()
    resolver = RegexResolver(store)

    res = resolver.save_override(SourceType.NGINX, ACCESS, r"^(?P<line>.*)$", "access")

    assert res.is_override
    assert res.regex == r"^(?P<line>.*)$"
    assert res.default_regex == ACCESS_COMBINED_REGEX
    stored = store.get("nginx").custom_regex[ACCESS]
    assert stored.regex == r"^(?P<line>.*)$"
    assert stored.log_type == "access"
    assert stored.updated_at is not None


def test_invalid_pattern_is_rejected_and_nothing_is_stored() -> None:
    store = InMemorySettingsStore()
    resolver = RegexResolver(store)

    with pytest.raises(InvalidPatternError) as exc_info:
        resolver.save_override(SourceType.NGINX, ACCESS, "(")

    assert "missing )" in exc_info.value.message
    assert exc_info.value.to_dict()["code"] == "InvalidPattern"
    assert store.get("nginx").custom_regex == {}
    assert not resolver.resolve(SourceType.NGINX, ACCESS).is_override


def test_logical_override_applies_to_rotated_variants() -> None:
    resolver = RegexResolver(InMemorySettingsStore())
    resolver.save_override(SourceType.NGINX, ACCESS, r"^(?P<line>.*)$")

    res = resolver.resolve(SourceType.NGINX, ACCESS + ".1.gz")
    assert res.is_override
    assert res.regex == r"^(?P<line>.*)$"


def test_override_for_rotated_variant_is_stored_under_live_file() -> None:
    store = InMemorySettingsStore()
    resolver = RegexResolver(store)

    res = resolver.save_override(SourceType.NGINX, ACCESS + ".1", r"^(?P<b>.*)$")

    assert res.is_override
    assert set(store.get("nginx").custom_regex) == {ACCESS}
    assert resolver.resolve(SourceType.NGINX, ACCESS).regex == r"^(?P<b>.*)$"
    assert resolver.resolve(SourceType.NGINX, ACCESS + ".2.gz").is_override


def test_stored_physical_key_still_resolves_and_is_replaced_on_save() -> None:
    store = InMemorySettingsStore({"nginx": {"customRegex": {ACCESS + ".1": {"regex": r"^(?P<old>.*)$"}}}})
    resolver = RegexResolver(store)
    assert resolver.resolve(SourceType.NGINX, ACCESS + ".1").regex == r"^(?P<old>.*)$"

    resolver.save_override(SourceType.NGINX, ACCESS + ".1", r"^(?P<new>.*)$")

    assert set(store.get("nginx").custom_regex) == {ACCESS}
    assert resolver.resolve(SourceType.NGINX, ACCESS + ".1").regex == r"^(?P<new>.*)$"


def test_delete_through_variant_removes_logical_key_and_is_idempotent() -> None:
    store = InMemorySettingsStore()
    resolver = RegexResolver(store)
    resolver.save_override(SourceType.NGINX, ACCESS, r"^(?P<a>.*)$")

    res = resolver.delete_override(SourceType.NGINX, ACCESS + ".1")
    assert not res.is_override
    assert res.regex == ACCESS_COMBINED_REGEX
    assert store.get("nginx").custom_regex == {}

    again = resolver.delete_override(SourceType.NGINX, ACCESS + ".1")
    assert again.regex == ACCESS_COMBINED_REGEX


def test_configured_default_regex_replaces_builtin() -> None:
    store = InMemorySettingsStore({"nginx": {"defaultRegex": {"access": r"^(?P<raw>.+)$"}}})
    resolver = RegexResolver(store)

    res = resolver.resolve(SourceType.NGINX, ACCESS)
    assert res.regex == r"^(?P<raw>.+)$"
    assert res.default_regex == r"^(?P<raw>.+)$"


def test_sources_do_not_share_overrides() -> None:
    resolver = RegexResolver(InMemorySettingsStore())
    resolver.save_override(SourceType.NGINX, "/var/log/app.log", r"^(?P<a>.*)$")

    assert not resolver.resolve(SourceType.APACHE, "/var/log/app.log").is_override
    assert resolver.overrides(SourceType.APACHE) == {}


def test_concurrent_saves_to_different_keys_are_all_kept() -> None:
    store = InMemorySettingsStore()
    resolver = RegexResolver(store)
    paths = [f"/var/log/nginx/site{i}.log" for i in range(20)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda p: resolver.save_override(SourceType.NGINX, p, rf"^(?P<x>{len(p)})$"), paths))

    assert set(resolver.overrides(SourceType.NGINX)) == set(paths)
    assert set(store.get("nginx").custom_regex) == set(paths)


def test_saving_preserves_other_settings() -> None:
    store = InMemorySettingsStore(
        {"nginx": {"basePath": "/srv/nginx", "maxLines": 50, "dashboardTheme": "dark"}}
    )
    resolver = RegexResolver(store)
    resolver.save_override(SourceType.NGINX, ACCESS, r"^(?P<a>.*)$")

    blob = store.get("nginx").to_blob()
    assert blob["basePath"] == "/srv/nginx"
    assert blob["maxLines"] == 50
    assert blob["dashboardTheme"] == "dark"
    assert ACCESS in blob["customRegex"]


def test_refresh_reloads_external_changes() -> None:
    store = InMemorySettingsStore()
    resolver = RegexResolver(store)
    assert not resolver.resolve(SourceType.NGINX, ACCESS).is_override

    other = RegexResolver(store)
    other.save_override(SourceType.NGINX, ACCESS, r"^(?P<a>.*)$")
    resolver.refresh(SourceType.NGINX)

    assert resolver.resolve(SourceType.NGINX, ACCESS).is_override
