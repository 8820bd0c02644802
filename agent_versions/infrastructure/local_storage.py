from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from agent_versions.domain.errors import StorageError
from agent_versions.domain.interfaces import IBlobStorage

log = logging.getLogger(__name__)


class LocalBlobStorage(IBlobStorage):
    """
    Stores objects as files under <root>/<bucket>/.

    This is the development-mode storage backend. Every write lands in a
    temporary file first and is moved into place with os.replace, so a
    reader never sees a half-written document.

    The revision is a generation counter kept in a hidden sidecar file
    (.<name>.generation) next to the object; it goes up by one on every
    write or copy onto the key. An object with no sidecar counts as
    generation 1. The revision check and the replace are two separate
    filesystem steps: conditional writes are only safe against writers in
    the same process, not against other processes sharing the directory.
    """

    def __init__(self, root: str | Path, bucket: str) -> None:
        self._dir = Path(root) / bucket

    def _path(self, key: str) -> Path:
        path = (self._dir / key).resolve()
        if self._dir.resolve() not in path.parents:
            raise StorageError(f"Object key {key!r} escapes the bucket directory")
        return path

    @staticmethod
    def _generation_path(path: Path) -> Path:
        return path.with_name(f".{path.name}.generation")

    def _revision(self, path: Path) -> int:
        if not path.exists():
            return 0
        try:
            return int(self._generation_path(path).read_text())
        except FileNotFoundError:
            return 1
        except ValueError as exc:
            raise StorageError(f"Corrupt generation file for {path}: {exc}") from exc

    @staticmethod
    def _replace_with(path: Path, write_tmp) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "wb") as tmp:
                write_tmp(tmp)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _store(self, path: Path, write_tmp) -> int:
        revision = self._revision(path) + 1
        self._replace_with(path, write_tmp)
        marker = str(revision).encode("ascii")
        self._replace_with(self._generation_path(path), lambda tmp: tmp.write(marker))
        return revision

    def write(self, key: str, payload: bytes, if_revision_match: int | None = None) -> int:
        path = self._path(key)
        if if_revision_match is not None and self._revision(path) != if_revision_match:
            raise StorageError(
                f"Precondition failed for {path}: expected revision {if_revision_match}"
            )
        try:
            revision = self._store(path, lambda tmp: tmp.write(payload))
        except OSError as exc:
            raise StorageError(f"Writing {path} failed: {exc}") from exc
        log.debug("Wrote %s | %d bytes | generation %d", path, len(payload), revision)
        return revision

    def read_revision(self, key: str) -> int:
        return self._revision(self._path(key))

    def copy(self, source_key: str, target_key: str) -> int:
        source, target = self._path(source_key), self._path(target_key)
        try:
            with source.open("rb") as src:
                return self._store(target, lambda tmp: shutil.copyfileobj(src, tmp))
        except OSError as exc:
            raise StorageError(f"Copying {source} → {target} failed: {exc}") from exc

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink()
            self._generation_path(path).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Deleting {key} failed: {exc}") from exc

    def read(self, key: str) -> bytes:
        return self._path(key).read_bytes()
