from __future__ import annotations

import logging
import re
from typing import Any

from agent_versions.domain.entities import (
    AgentProject,
    AgentVersion,
    Snapshot,
    TelemetryVersion,
    VersionRecord,
    empty_record,
)
from agent_versions.domain.interfaces import IReleaseFetcher
from agent_versions.domain.registry import Registry
from .query_builder import AUTO, PRIMARY, AliasTarget, ReleaseQueryBuilder

log = logging.getLogger(__name__)

_MALFORMED = object()


def extract_version(tag_name: str | None, pattern: str) -> str | None:
    """
    First match, first capturing group; not anchored to the whole tag.

        extract_version("v1.2.3", "v(.*)")                               -> "1.2.3"
        extract_version("@elastic/apm-rum@5.0.0", "@elastic/apm-rum@(.*)") -> "5.0.0"
        extract_version("nightly-build", "v(.*)")                        -> None

    Never raises: a missing tag, a non-matching pattern, a pattern without
    groups or a group that did not take part in the match all give None.
    """
    if tag_name is None:
        return None
    try:
        match = re.search(pattern, tag_name)
    except re.error:
        return None
    if match is None or not match.re.groups:
        return None
    return match.group(1)


def _latest_tag(fragment: Any) -> Any:
    """
    Read the newest tag out of one aliased response fragment.

    Returns the tag (or None when no release exists yet), or _MALFORMED
    when the fragment does not have the expected shape.
    """
    if not isinstance(fragment, dict):
        return _MALFORMED
    releases = fragment.get("releases")
    if not isinstance(releases, dict):
        return _MALFORMED
    nodes = releases.get("nodes")
    if not isinstance(nodes, list):
        return _MALFORMED
    if not nodes:
        return None
    first = nodes[0]
    if not isinstance(first, dict):
        return _MALFORMED
    tag = first.get("tagName")
    if tag is not None and not isinstance(tag, str):
        return _MALFORMED
    return tag


class VersionResolver:
    """
    Runs the query built from the registry and turns the response into a
    Snapshot.

    Per-entry problems (no releases, pattern miss, malformed fragment,
    unknown owner, invalid registry entry) only blank that entry's fields.
    Fetcher errors are not caught here: without `data` there is nothing
    to salvage.
    """

    def __init__(self, fetcher: IReleaseFetcher, registry: Registry, builder: ReleaseQueryBuilder) -> None:
        self._fetcher  = fetcher
        self._registry = registry
        self._builder  = builder

    async def resolve(self) -> Snapshot:
        query = self._builder.build()
        if query.targets:
            data = await self._fetcher.fetch_releases(query.text)
        else:
            log.warning("Nothing to query: every registry entry is invalid or has no owner")
            data = {}

        # display_name -> {component: version}
        found: dict[str, dict[str, str | None]] = {}

        for alias, target in query.targets.items():
            version = self._extract(alias, target, data.get(alias))
            found.setdefault(target.entry.display_name, {})[target.component] = version

        unexpected = set(data) - set(query.targets)
        if unexpected:
            log.debug("Ignoring unrequested aliases in response: %s", sorted(unexpected))

        records = {
            entry.display_name: self._record(entry, found.get(entry.display_name))
            for entry in self._registry.all_entries()
        }
        return Snapshot(records)

    def _extract(self, alias: str, target: AliasTarget, fragment: Any) -> str | None:
        tag = _latest_tag(fragment)
        if tag is _MALFORMED:
            log.warning(
                "Malformed response fragment for %s (%s/%s, alias %s) — skipping",
                target.entry.display_name,
                target.owner,
                target.repository,
                alias,
            )
            return None
        if tag is None:
            log.debug("%s/%s has no releases yet", target.owner, target.repository)
            return None

        version = extract_version(tag, target.pattern)
        if version is None:
            log.debug(
                "Extraction miss for %s: tag %r does not match %r",
                target.entry.display_name,
                tag,
                target.pattern,
            )
        return version

    def _record(self, entry, components: dict[str, str | None] | None) -> VersionRecord:
        if components is None:
            return empty_record(entry)

        primary = components.get(PRIMARY)
        if isinstance(entry, AgentProject):
            return AgentVersion(latest_version=primary)

        if self._builder.queries_auto(entry):
            auto = components.get(AUTO)
        elif self._builder.mirrors_auto(entry):
            auto = primary
        else:
            auto = None
        return TelemetryVersion(sdk_latest_version=primary, auto_latest_version=auto)
