from __future__ import annotations

import logging
from datetime import datetime, timezone

from agent_versions.domain.entities import CollectionResult, Snapshot
from agent_versions.domain.errors import VersionCollectorError
from .publisher import SnapshotPublisher
from .resolver import VersionResolver

log = logging.getLogger(__name__)


class CollectApplicationService:
    """
    The top-level use case: resolve every tracked project's latest version
    and publish the snapshot.

    Receives all dependencies via constructor injection.
    Knows about the sequence of operations but not the implementation details.
    Publishing happens once, at the end, with the full snapshot or not at all.
    """

    def __init__(self, resolver: VersionResolver, publisher: SnapshotPublisher) -> None:
        self._resolver  = resolver
        self._publisher = publisher

    async def collect(self) -> Snapshot:
        """Resolve only. Used for dry runs."""
        return await self._resolver.resolve()

    async def execute(self) -> CollectionResult:
        """
        Run one full cycle.
        Returns a CollectionResult describing what happened; expected failures
        are carried in `error` rather than raised.
        """
        started_at = datetime.now(tz=timezone.utc)
        object_key = self._publisher.object_key
        entries    = 0
        misses     = 0

        log.info("CollectApplicationService | target object: %s", object_key)

        try:
            snapshot = await self._resolver.resolve()
            entries  = len(snapshot)
            misses   = snapshot.misses()
            log.info("Resolved %d entries | %d with missing versions", entries, misses)

            revision = self._publisher.publish(snapshot)

            elapsed = (datetime.now(tz=timezone.utc) - started_at).total_seconds()
            log.info("Collection complete | %d entries | %.1fs", entries, elapsed)
            return CollectionResult(
                status       = "success",
                entries      = entries,
                misses       = misses,
                elapsed_secs = elapsed,
                object_key   = object_key,
                revision     = revision,
            )
        except VersionCollectorError as exc:
            elapsed = (datetime.now(tz=timezone.utc) - started_at).total_seconds()
            log.error("Collection failed: %s", exc, exc_info=True)

            return CollectionResult(
                status       = "failed",
                entries      = entries,
                misses       = misses,
                elapsed_secs = elapsed,
                object_key   = object_key,
                error        = exc,
            )
