"""Shared fakes for the collector tests.

FakeFetcher and InMemoryBlobStorage implement the two domain interfaces
so the application layer can be tested without network or storage.
"""

from __future__ import annotations

from typing import Any

import pytest

from agent_versions.domain.entities import AgentProject, TelemetryProject
from agent_versions.domain.errors import StorageError
from agent_versions.domain.interfaces import IBlobStorage, IReleaseFetcher
from agent_versions.domain.registry import Registry


def fragment(name: str, *tags: str) -> dict[str, Any]:
    """One aliased repository fragment as GitHub returns it."""
    return {"name": name, "releases": {"nodes": [{"tagName": tag} for tag in tags]}}


class FakeFetcher(IReleaseFetcher):
    def __init__(self, data: dict[str, Any] | None = None, error: Exception | None = None) -> None:
        self.data    = data or {}
        self.error   = error
        self.queries: list[str] = []

    async def fetch_releases(self, query: str) -> dict[str, Any]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return self.data


class InMemoryBlobStorage(IBlobStorage):
    def __init__(self) -> None:
        self.objects:   dict[str, bytes] = {}
        self.revisions: dict[str, int] = {}
        self.calls:     list[tuple[str, str]] = []
        self.fail_on:   set[str] = set()
        self._counter = 0

    def _next(self, key: str) -> int:
        self._counter += 1
        self.revisions[key] = self._counter
        return self._counter

    def _maybe_fail(self, op: str, key: str) -> None:
        self.calls.append((op, key))
        if op in self.fail_on:
            raise StorageError(f"{op} failed for {key}")

    def write(self, key: str, payload: bytes, if_revision_match: int | None = None) -> int:
        self._maybe_fail("write", key)
        if if_revision_match is not None and self.revisions.get(key, 0) != if_revision_match:
            raise StorageError(f"precondition failed for {key}")
        self.objects[key] = payload
        return self._next(key)

    def read_revision(self, key: str) -> int:
        self._maybe_fail("read_revision", key)
        return self.revisions.get(key, 0)

    def copy(self, source_key: str, target_key: str) -> int:
        self._maybe_fail("copy", target_key)
        self.objects[target_key] = self.objects[source_key]
        return self._next(target_key)

    def delete(self, key: str) -> None:
        self._maybe_fail("delete", key)
        self.objects.pop(key, None)
        self.revisions.pop(key, None)


@pytest.fixture
def storage() -> InMemoryBlobStorage:
    return InMemoryBlobStorage()


@pytest.fixture
def small_registry() -> Registry:
    """Two agents (one sharing a repository) and two telemetry entries."""
    return Registry([
        AgentProject("go",      "apm-agent-go",     "v(.*)"),
        AgentProject("rum-js",  "apm-agent-rum-js", "@elastic/apm-rum@(.*)"),
        TelemetryProject("opentelemetry/go", "opentelemetry-go", "v(.*)"),
        TelemetryProject(
            "opentelemetry/java",
            sdk_repository       = "opentelemetry-java",
            sdk_version_pattern  = "v(.*)",
            auto_repository      = "opentelemetry-java-instrumentation",
            auto_version_pattern = "v(.*)",
        ),
    ])
