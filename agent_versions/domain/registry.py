"""
Domain Layer — Registry of tracked projects
--------------------------------------------
The authoritative, immutable list of repositories whose latest release we
publish. Built once at startup and injected into the query builder and the
resolver; nothing mutates it afterwards.

An invalid entry (empty repository, missing or broken pattern, pattern
without a capturing group) is logged at ERROR and kept out of the query;
it is still published, with every version field null. The rest of the
registry is unaffected.
"""

from __future__ import annotations

import logging
import re
from types import MappingProxyType
from typing import Iterable, Mapping

from .entities import AgentProject, Family, ProjectEntry, TelemetryProject
from .errors import ConfigError

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Owners
# ---------------------------------------------------------------------------

DEFAULT_OWNERS: Mapping[Family, str] = MappingProxyType({
    Family.AGENT:     "elastic",
    Family.TELEMETRY: "open-telemetry",
})

# ---------------------------------------------------------------------------
# Tracked projects
# ---------------------------------------------------------------------------

_V  = "v(.*)"
_RUM = "@elastic/apm-rum@(.*)"

DEFAULT_PROJECTS: tuple[ProjectEntry, ...] = (
    AgentProject("java",         "apm-agent-java",    _V),
    AgentProject("dotnet",       "apm-agent-dotnet",  _V),
    AgentProject("nodejs",       "apm-agent-nodejs",  _V),
    AgentProject("python",       "apm-agent-python",  _V),
    AgentProject("go",           "apm-agent-go",      _V),
    AgentProject("php",          "apm-agent-php",     _V),
    AgentProject("iOS/swift",    "apm-agent-ios",     _V),
    AgentProject("js-base",      "apm-agent-rum-js",  _RUM),
    AgentProject("rum-js",       "apm-agent-rum-js",  _RUM),
    AgentProject("ruby",         "apm-agent-ruby",    _V),
    AgentProject("android/java", "apm-agent-android", _V),
    TelemetryProject(
        "opentelemetry/java",
        sdk_repository       = "opentelemetry-java",
        sdk_version_pattern  = _V,
        auto_repository      = "opentelemetry-java-instrumentation",
        auto_version_pattern = _V,
    ),
    TelemetryProject(
        "opentelemetry/dotnet",
        sdk_repository       = "opentelemetry-dotnet",
        sdk_version_pattern  = "Instrumentation.AspNetCore-(.*)",
        auto_repository      = "opentelemetry-dotnet-instrumentation",
        auto_version_pattern = _V,
    ),
    TelemetryProject("opentelemetry/nodejs", "opentelemetry-js",     _V),
    TelemetryProject("opentelemetry/python", "opentelemetry-python", _V),
    TelemetryProject("opentelemetry/ruby",   "opentelemetry-ruby",   "opentelemetry-propagator-jaeger/v(.*)"),
    TelemetryProject("opentelemetry/go",     "opentelemetry-go",     _V),
    TelemetryProject(
        "opentelemetry/php",
        sdk_repository       = "opentelemetry-php",
        sdk_version_pattern  = "(.*)",
        auto_repository      = "opentelemetry-php-instrumentation",
        auto_version_pattern = "(.*)",
    ),
    TelemetryProject("opentelemetry/cpp",    "opentelemetry-cpp",    _V),
    TelemetryProject("opentelemetry/erlang", "opentelemetry-erlang", _V),
    TelemetryProject("opentelemetry/swift",  "opentelemetry-swift",  "(.*)"),
    TelemetryProject("opentelemetry/webjs",  "opentelemetry-js",     _V),
)


def _check_pattern(display_name: str, label: str, pattern: str | None) -> None:
    if not pattern:
        raise ConfigError(f"{display_name}: {label} is missing")
    try:
        compiled = re.compile(pattern)
    except re.error as exc:
        raise ConfigError(f"{display_name}: {label} {pattern!r} does not compile: {exc}") from exc
    if compiled.groups < 1:
        raise ConfigError(f"{display_name}: {label} {pattern!r} has no capturing group")


def validate_entry(entry: ProjectEntry) -> None:
    """Raise ConfigError if the entry's primary repository cannot be queried."""
    if isinstance(entry, AgentProject):
        if not entry.repository:
            raise ConfigError(f"{entry.display_name}: repository is missing")
        _check_pattern(entry.display_name, "version_pattern", entry.version_pattern)
        return

    if not entry.sdk_repository:
        raise ConfigError(f"{entry.display_name}: sdk_repository is missing")
    _check_pattern(entry.display_name, "sdk_version_pattern", entry.sdk_version_pattern)


def validate_auto(entry: ProjectEntry) -> None:
    """Raise ConfigError if a configured auto-instrumentation lookup cannot run."""
    if isinstance(entry, TelemetryProject) and entry.auto_repository:
        _check_pattern(entry.display_name, "auto_version_pattern", entry.auto_version_pattern)


class Registry:
    """
    Read-only collection of ProjectEntry objects with lookup by display name.

    Declaration order is preserved; the query builder relies on it to hand
    out deterministic aliases.

    An entry that fails validation stays in the registry, so it still gets
    a key in the snapshot, but is never queried. A broken auto lookup only
    disables that lookup. Entries without a name and duplicate names are
    dropped: they cannot have a key of their own.
    """

    def __init__(
        self,
        entries: Iterable[ProjectEntry],
        owners:  Mapping[Family, str] = DEFAULT_OWNERS,
    ) -> None:
        accepted: list[ProjectEntry] = []
        by_name:  dict[str, ProjectEntry] = {}
        invalid:  set[str] = set()
        no_auto:  set[str] = set()

        for entry in entries:
            if not entry.display_name or entry.display_name in by_name:
                log.error("Dropping registry entry %r: missing or duplicate display name", entry.display_name)
                continue
            accepted.append(entry)
            by_name[entry.display_name] = entry

            try:
                validate_entry(entry)
            except ConfigError as exc:
                log.error("Invalid registry entry, publishing empty versions: %s", exc)
                invalid.add(entry.display_name)
                continue
            try:
                validate_auto(entry)
            except ConfigError as exc:
                log.error("Auto-instrumentation lookup disabled: %s", exc)
                no_auto.add(entry.display_name)

        self._entries = tuple(accepted)
        self._by_name = MappingProxyType(by_name)
        self._invalid = frozenset(invalid)
        self._no_auto = frozenset(no_auto)
        self._owners  = MappingProxyType(dict(owners))

    @classmethod
    def default(cls) -> "Registry":
        return cls(DEFAULT_PROJECTS)

    def __len__(self) -> int:
        return len(self._entries)

    def all_entries(self) -> tuple[ProjectEntry, ...]:
        return self._entries

    def resolve(self, display_name: str) -> ProjectEntry | None:
        return self._by_name.get(display_name)

    def owner_for(self, entry: ProjectEntry) -> str | None:
        return self._owners.get(entry.family)

    def is_queryable(self, entry: ProjectEntry) -> bool:
        """False when the entry's primary repository or pattern is invalid."""
        return entry.display_name not in self._invalid

    def auto_lookup_valid(self, entry: ProjectEntry) -> bool:
        """True when the entry configures an auto repository with a usable pattern."""
        return (
            isinstance(entry, TelemetryProject)
            and bool(entry.auto_repository)
            and entry.display_name not in self._invalid
            and entry.display_name not in self._no_auto
        )
