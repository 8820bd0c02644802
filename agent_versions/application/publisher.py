from __future__ import annotations

import logging
import uuid
from enum import Enum

from agent_versions.domain.entities import Snapshot
from agent_versions.domain.errors import StorageError
from agent_versions.domain.interfaces import IBlobStorage

log = logging.getLogger(__name__)


class WriteMode(str, Enum):
    """
    How the snapshot replaces the previous object.

    OVERWRITE    — one unconditional write; last writer wins.
    STAGED       — write a staging object, copy it over the final key, drop it.
    CONDITIONAL  — write only if the object's revision is unchanged since it was read.
    """
    OVERWRITE   = "overwrite"
    STAGED      = "staged"
    CONDITIONAL = "conditional"


class SnapshotPublisher:
    """
    Serializes a Snapshot and replaces the single well-known object with it.

    Never merges with or appends to the previous content.
    """

    def __init__(self, storage: IBlobStorage, object_key: str, write_mode: WriteMode = WriteMode.OVERWRITE) -> None:
        self._storage    = storage
        self._object_key = object_key
        self._write_mode = write_mode

    @property
    def object_key(self) -> str:
        return self._object_key

    def publish(self, snapshot: Snapshot) -> int:
        """Write the snapshot. Returns the object's new revision; raises StorageError."""
        payload = snapshot.to_json()

        if self._write_mode is WriteMode.STAGED:
            revision = self._publish_staged(payload)
        elif self._write_mode is WriteMode.CONDITIONAL:
            revision = self._publish_conditional(payload)
        else:
            revision = self._storage.write(self._object_key, payload)

        log.info(
            "Published %d entries (%d bytes) to %s | mode=%s | revision=%d",
            len(snapshot),
            len(payload),
            self._object_key,
            self._write_mode.value,
            revision,
        )
        return revision

    def _publish_staged(self, payload: bytes) -> int:
        staging_key = f"{self._object_key}.staging-{uuid.uuid4().hex}"
        self._storage.write(staging_key, payload, if_revision_match=0)
        revision = self._storage.copy(staging_key, self._object_key)
        try:
            self._storage.delete(staging_key)
        except StorageError as exc:
            # The final object is already in place; a leftover staging object is harmless.
            log.warning("Could not remove staging object %s: %s", staging_key, exc)
        return revision

    def _publish_conditional(self, payload: bytes) -> int:
        expected = self._storage.read_revision(self._object_key)
        log.debug("Conditional write of %s against revision %d", self._object_key, expected)
        return self._storage.write(self._object_key, payload, if_revision_match=expected)
