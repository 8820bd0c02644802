"""Tests for tag → version extraction and snapshot assembly."""

from __future__ import annotations

import json
import logging

import pytest

from agent_versions.application.query_builder import AutoVersionMode, ReleaseQueryBuilder
from agent_versions.application.resolver import VersionResolver, extract_version
from agent_versions.domain.entities import AgentProject, AgentVersion, TelemetryProject, TelemetryVersion
from agent_versions.domain.errors import AuthError
from agent_versions.domain.registry import Registry

from conftest import FakeFetcher, fragment


def _resolver(registry, fetcher, auto_mode=AutoVersionMode.MIRROR) -> VersionResolver:
    return VersionResolver(fetcher, registry, ReleaseQueryBuilder(registry, auto_mode=auto_mode))


# ---------------------------------------------------------------------------
# extract_version
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "tag, pattern, expected",
    [
        ("v1.2.3",                          "v(.*)",                                  "1.2.3"),
        ("@elastic/apm-rum@5.0.0",          "@elastic/apm-rum@(.*)",                  "5.0.0"),
        ("Instrumentation.AspNetCore-1.0.0-rc9.9", "Instrumentation.AspNetCore-(.*)", "1.0.0-rc9.9"),
        ("opentelemetry-propagator-jaeger/v0.21.0", "opentelemetry-propagator-jaeger/v(.*)", "0.21.0"),
        ("1.9.0",                           "(.*)",                                   "1.9.0"),
        ("release-v2.0",                    "v(.*)",                                  "2.0"),
        ("nightly-build",                   "v(.*)",                                  None),
        (None,                              "v(.*)",                                  None),
        ("v1.0",                            "v.*",                                    None),
        ("v1.0",                            "v(.*",                                   None),
        ("v1.0",                            "v(x)?1",                                 None),
    ],
)
def test_extract_version(tag, pattern, expected):
    assert extract_version(tag, pattern) == expected


# ---------------------------------------------------------------------------
# VersionResolver
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_single_agent_entry():
    registry = Registry([AgentProject("go", "apm-agent-go", "v(.*)")])
    fetcher  = FakeFetcher({"repo0": fragment("apm-agent-go", "v2.4.0")})

    snapshot = await _resolver(registry, fetcher).resolve()

    assert snapshot.to_dict() == {"go": {"latest_version": "2.4.0"}}
    assert len(fetcher.queries) == 1


@pytest.mark.asyncio
async def test_telemetry_entry_mirrors_sdk_version():
    registry = Registry([TelemetryProject("opentelemetry/go", "opentelemetry-go", "v(.*)")])
    fetcher  = FakeFetcher({"repo0": fragment("opentelemetry-go", "v1.9.0")})

    snapshot = await _resolver(registry, fetcher).resolve()

    assert snapshot.to_dict() == {
        "opentelemetry/go": {"sdk_latest_version": "1.9.0", "auto_latest_version": "1.9.0"}
    }


@pytest.mark.asyncio
async def test_non_matching_tag_leaves_field_absent(small_registry):
    fetcher = FakeFetcher({
        "repo0": fragment("apm-agent-go", "nightly-build"),
        "repo1": fragment("apm-agent-rum-js", "@elastic/apm-rum@5.12.0"),
        "repo2": fragment("opentelemetry-go", "v1.9.0"),
        "repo3": fragment("opentelemetry-java", "v1.30.0"),
    })

    snapshot = await _resolver(small_registry, fetcher).resolve()

    assert snapshot.records["go"] == AgentVersion(latest_version=None)
    assert snapshot.records["rum-js"] == AgentVersion(latest_version="5.12.0")
    assert snapshot.records["opentelemetry/go"] == TelemetryVersion("1.9.0", "1.9.0")
    assert snapshot.misses() == 1


@pytest.mark.asyncio
async def test_empty_releases_do_not_block_other_entries(small_registry):
    fetcher = FakeFetcher({
        "repo0": fragment("apm-agent-go"),
        "repo1": fragment("apm-agent-rum-js", "@elastic/apm-rum@5.12.0"),
        "repo2": fragment("opentelemetry-go"),
        "repo3": fragment("opentelemetry-java", "v1.30.0"),
    })

    snapshot = (await _resolver(small_registry, fetcher).resolve()).to_dict()

    assert snapshot["go"] == {"latest_version": None}
    assert snapshot["opentelemetry/go"] == {"sdk_latest_version": None, "auto_latest_version": None}
    assert snapshot["rum-js"] == {"latest_version": "5.12.0"}


@pytest.mark.asyncio
async def test_record_keys_depend_only_on_family(small_registry):
    snapshot = (await _resolver(small_registry, FakeFetcher({})).resolve()).to_dict()

    assert set(snapshot) == {"go", "rum-js", "opentelemetry/go", "opentelemetry/java"}
    for name, record in snapshot.items():
        if name.startswith("opentelemetry/"):
            assert set(record) == {"sdk_latest_version", "auto_latest_version"}
        else:
            assert set(record) == {"latest_version"}


@pytest.mark.asyncio
async def test_malformed_fragment_only_blanks_that_entry(small_registry, caplog):
    fetcher = FakeFetcher({
        "repo0": None,
        "repo1": {"name": "apm-agent-rum-js", "releases": "nope"},
        "repo2": fragment("opentelemetry-go", "v1.9.0"),
        "repo3": {"name": "opentelemetry-java", "releases": {"nodes": [{"tagName": 7}]}},
    })

    with caplog.at_level(logging.WARNING):
        snapshot = await _resolver(small_registry, fetcher).resolve()

    assert snapshot.records["go"].latest_version is None
    assert snapshot.records["rum-js"].latest_version is None
    assert snapshot.records["opentelemetry/java"].sdk_latest_version is None
    assert snapshot.records["opentelemetry/go"].sdk_latest_version == "1.9.0"
    assert caplog.text.count("Malformed response fragment") == 3


@pytest.mark.asyncio
async def test_shared_repository_resolves_both_entries():
    registry = Registry([
        AgentProject("js-base", "apm-agent-rum-js", "@elastic/apm-rum@(.*)"),
        AgentProject("rum-js",  "apm-agent-rum-js", "@elastic/apm-rum@(.*)"),
    ])
    fetcher = FakeFetcher({
        "repo0": fragment("apm-agent-rum-js", "@elastic/apm-rum@5.16.0"),
        "repo1": fragment("apm-agent-rum-js", "@elastic/apm-rum@5.16.0"),
    })

    snapshot = (await _resolver(registry, fetcher).resolve()).to_dict()

    assert snapshot == {
        "js-base": {"latest_version": "5.16.0"},
        "rum-js":  {"latest_version": "5.16.0"},
    }


@pytest.mark.asyncio
async def test_query_mode_reads_auto_repository(small_registry):
    fetcher = FakeFetcher({
        "repo0": fragment("apm-agent-go", "v2.4.0"),
        "repo1": fragment("apm-agent-rum-js", "@elastic/apm-rum@5.12.0"),
        "repo2": fragment("opentelemetry-go", "v1.9.0"),
        "repo3": fragment("opentelemetry-java", "v1.30.0"),
        "repo3_auto": fragment("opentelemetry-java-instrumentation", "v1.31.0"),
    })

    snapshot = await _resolver(small_registry, fetcher, AutoVersionMode.QUERY).resolve()

    assert snapshot.records["opentelemetry/java"] == TelemetryVersion("1.30.0", "1.31.0")
    # no auto repository configured: still mirrors
    assert snapshot.records["opentelemetry/go"] == TelemetryVersion("1.9.0", "1.9.0")


@pytest.mark.asyncio
async def test_query_mode_missing_auto_fragment_is_absent(small_registry):
    fetcher = FakeFetcher({"repo3": fragment("opentelemetry-java", "v1.30.0")})

    snapshot = await _resolver(small_registry, fetcher, AutoVersionMode.QUERY).resolve()

    assert snapshot.records["opentelemetry/java"] == TelemetryVersion("1.30.0", None)


@pytest.mark.asyncio
async def test_resolution_is_byte_for_byte_deterministic(small_registry):
    data = {
        "repo0": fragment("apm-agent-go", "v2.4.0"),
        "repo2": fragment("opentelemetry-go", "v1.9.0"),
    }

    first  = await _resolver(small_registry, FakeFetcher(data)).resolve()
    second = await _resolver(small_registry, FakeFetcher(dict(reversed(list(data.items()))))).resolve()

    assert first.to_json() == second.to_json()
    assert json.loads(first.to_json())["go"] == {"latest_version": "2.4.0"}


@pytest.mark.asyncio
async def test_fetcher_errors_propagate(small_registry):
    fetcher = FakeFetcher(error=AuthError("bad credentials"))

    with pytest.raises(AuthError):
        await _resolver(small_registry, fetcher).resolve()


def _registry_with_bad_patterns() -> Registry:
    return Registry([
        AgentProject("go", "apm-agent-go", "v.*"),
        TelemetryProject(
            "opentelemetry/java",
            sdk_repository       = "opentelemetry-java",
            sdk_version_pattern  = "v(.*)",
            auto_repository      = "opentelemetry-java-instrumentation",
            auto_version_pattern = "v.*",
        ),
    ])


@pytest.mark.asyncio
async def test_invalid_entries_are_published_with_null_fields():
    fetcher = FakeFetcher({"repo1": fragment("opentelemetry-java", "v1.30.0")})

    snapshot = await _resolver(_registry_with_bad_patterns(), fetcher).resolve()

    assert snapshot.to_dict() == {
        "go": {"latest_version": None},
        "opentelemetry/java": {"sdk_latest_version": "1.30.0", "auto_latest_version": "1.30.0"},
    }
    assert "apm-agent-go" not in fetcher.queries[0]


@pytest.mark.asyncio
async def test_query_mode_with_invalid_auto_pattern_leaves_auto_absent():
    fetcher = FakeFetcher({"repo1": fragment("opentelemetry-java", "v1.30.0")})

    snapshot = await _resolver(_registry_with_bad_patterns(), fetcher, AutoVersionMode.QUERY).resolve()

    assert snapshot.records["opentelemetry/java"] == TelemetryVersion("1.30.0", None)
    assert "repo1_auto" not in fetcher.queries[0]


@pytest.mark.asyncio
async def test_nothing_to_query_skips_the_fetch():
    fetcher = FakeFetcher({})

    snapshot = await _resolver(Registry([AgentProject("go", "apm-agent-go", "v.*")]), fetcher).resolve()

    assert fetcher.queries == []
    assert snapshot.to_dict() == {"go": {"latest_version": None}}
