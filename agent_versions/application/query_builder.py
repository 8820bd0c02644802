from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from agent_versions.domain.entities import AgentProject, ProjectEntry, TelemetryProject
from agent_versions.domain.registry import Registry

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Query fragments
# ---------------------------------------------------------------------------
# One aliased `repository` lookup per tracked repository. Only the most
# recent release is requested: no pagination, no history.

REPOSITORY_FRAGMENT = """\
  {alias}: repository(owner: {owner}, name: {name}) {{
    name
    releases(first: 1, orderBy: {{field: CREATED_AT, direction: DESC}}) {{
      nodes {{
        tagName
      }}
    }}
  }}"""

PRIMARY = "primary"
AUTO    = "auto"


class AutoVersionMode(str, Enum):
    """
    Where a telemetry entry's auto_latest_version comes from.

    MIRROR copies the SDK version into both fields and never queries the
    auto-instrumentation repository. QUERY asks that repository for its own
    latest release whenever an auto repository and pattern are configured.
    """
    MIRROR = "mirror"
    QUERY  = "query"


@dataclass(frozen=True)
class AliasTarget:
    """What one alias in the composite query stands for."""
    entry:      ProjectEntry
    component:  str
    owner:      str
    repository: str
    pattern:    str


@dataclass(frozen=True)
class ReleaseQuery:
    text:    str
    targets: Mapping[str, AliasTarget]


def _literal(value: str) -> str:
    """GraphQL string literal; JSON string escaping is valid GraphQL."""
    return json.dumps(value)


class ReleaseQueryBuilder:
    """
    Turns the registry into one composite GraphQL query plus the
    alias → target table used to read the response back.

    Aliases are positional (repo0, repo1, ...) over the registry's declared
    order, so the same registry always yields the same query text.
    """

    def __init__(self, registry: Registry, auto_mode: AutoVersionMode = AutoVersionMode.MIRROR) -> None:
        self._registry  = registry
        self._auto_mode = auto_mode

    def _targets_for(self, index: int, entry: ProjectEntry, owner: str) -> list[tuple[str, AliasTarget]]:
        alias = f"repo{index}"

        if isinstance(entry, AgentProject):
            return [(alias, AliasTarget(entry, PRIMARY, owner, entry.repository, entry.version_pattern))]

        targets = [(alias, AliasTarget(entry, PRIMARY, owner, entry.sdk_repository, entry.sdk_version_pattern))]
        if self.queries_auto(entry):
            targets.append((
                f"{alias}_auto",
                AliasTarget(entry, AUTO, owner, entry.auto_repository, entry.auto_version_pattern),
            ))
        return targets

    def queries_auto(self, entry: ProjectEntry) -> bool:
        """True when the entry's auto field is read from its own repository."""
        return self._auto_mode is AutoVersionMode.QUERY and self._registry.auto_lookup_valid(entry)

    def mirrors_auto(self, entry: ProjectEntry) -> bool:
        """
        True when the entry's auto field copies the SDK version: always in
        MIRROR mode, and in QUERY mode for entries with no auto repository.
        An auto repository whose lookup is invalid leaves the field absent.
        """
        if self._auto_mode is AutoVersionMode.MIRROR:
            return True
        return isinstance(entry, TelemetryProject) and not entry.auto_repository

    def build(self) -> ReleaseQuery:
        targets: dict[str, AliasTarget] = {}

        for index, entry in enumerate(self._registry.all_entries()):
            if not self._registry.is_queryable(entry):
                log.warning("Skipping invalid registry entry %s in the query", entry.display_name)
                continue
            owner = self._registry.owner_for(entry)
            if owner is None:
                log.warning(
                    "No owner configured for %s (family=%s) — leaving it out of the query",
                    entry.display_name,
                    entry.family.value,
                )
                continue
            targets.update(self._targets_for(index, entry, owner))

        fragments = [
            REPOSITORY_FRAGMENT.format(
                alias=alias,
                owner=_literal(target.owner),
                name=_literal(target.repository),
            )
            for alias, target in targets.items()
        ]
        text = "query {\n" + "\n".join(fragments) + "\n}\n"

        log.info(
            "QueryBuilder produced %d aliased lookups for %d registry entries (auto mode: %s)",
            len(targets),
            len(self._registry),
            self._auto_mode.value,
        )
        return ReleaseQuery(text=text, targets=MappingProxyType(targets))
