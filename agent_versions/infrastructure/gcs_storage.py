from __future__ import annotations

import logging

from google.api_core import exceptions as gcs_exceptions
from google.cloud import storage

from agent_versions.domain.errors import StorageError
from agent_versions.domain.interfaces import IBlobStorage

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
CONTENT_TYPE    = "application/json"


class GCSBlobStorage(IBlobStorage):
    """
    Concrete implementation of IBlobStorage on a Google Cloud Storage bucket.

    Receives a storage.Client (injected). Revisions are GCS object
    generations, which already use 0 for "object does not exist", so
    if_revision_match maps straight onto if_generation_match.
    """

    def __init__(self, client: storage.Client, bucket_name: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._bucket  = client.bucket(bucket_name)
        self._timeout = timeout

    def write(self, key: str, payload: bytes, if_revision_match: int | None = None) -> int:
        blob = self._bucket.blob(key)
        try:
            blob.upload_from_string(
                payload,
                content_type=CONTENT_TYPE,
                if_generation_match=if_revision_match,
                timeout=self._timeout,
            )
        except gcs_exceptions.PreconditionFailed as exc:
            raise StorageError(
                f"Precondition failed for gs://{self._bucket.name}/{key}: expected generation {if_revision_match}"
            ) from exc
        except gcs_exceptions.GoogleAPIError as exc:
            raise StorageError(f"Upload to gs://{self._bucket.name}/{key} failed: {exc}") from exc

        log.debug("Uploaded gs://%s/%s | %d bytes | generation=%s", self._bucket.name, key, len(payload), blob.generation)
        return blob.generation or 0

    def read_revision(self, key: str) -> int:
        try:
            blob = self._bucket.get_blob(key, timeout=self._timeout)
        except gcs_exceptions.GoogleAPIError as exc:
            raise StorageError(f"Reading metadata of gs://{self._bucket.name}/{key} failed: {exc}") from exc
        if blob is None:
            return 0
        return blob.generation or 0

    def copy(self, source_key: str, target_key: str) -> int:
        # Server-side copy: readers see either the old object or the new one.
        try:
            copied = self._bucket.copy_blob(
                self._bucket.blob(source_key),
                self._bucket,
                new_name=target_key,
                timeout=self._timeout,
            )
        except gcs_exceptions.GoogleAPIError as exc:
            raise StorageError(
                f"Copy gs://{self._bucket.name}/{source_key} → {target_key} failed: {exc}"
            ) from exc
        return copied.generation or 0

    def delete(self, key: str) -> None:
        try:
            self._bucket.blob(key).delete(timeout=self._timeout)
        except gcs_exceptions.GoogleAPIError as exc:
            raise StorageError(f"Deleting gs://{self._bucket.name}/{key} failed: {exc}") from exc
