"""
Domain Layer — Interfaces (Abstract Contracts)
-----------------------------------------------
These are ABSTRACT definitions of what the infrastructure must provide.
The domain layer defines the shape; the infrastructure layer implements it.

The application layer only ever sees these two contracts, so tests can
hand the resolver a canned response and the publisher an in-memory store.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any


class IReleaseFetcher(ABC):
    """
    Contract that any GraphQL release client must fulfil.
    The application layer depends on THIS, not on the concrete GitHub client.
    """

    @abstractmethod
    async def fetch_releases(self, query: str) -> dict[str, Any]:
        """
        Send one composite query and return its `data` object,
        keyed by alias.

        Raises:
            TransportError          — request could not complete
            AuthError               — credential rejected
            MalformedResponseError  — body unusable
        """
        ...


class IBlobStorage(ABC):
    """
    Contract for a single-bucket object store.

    Revisions are integers; 0 means "object does not exist". Passing
    if_revision_match makes a write conditional on the current revision.
    Every failure is reported as StorageError.
    """

    @abstractmethod
    def write(self, key: str, payload: bytes, if_revision_match: int | None = None) -> int:
        """Replace the object at `key` entirely. Returns the new revision."""
        ...

    @abstractmethod
    def read_revision(self, key: str) -> int:
        """Current revision of `key`, or 0 when it does not exist."""
        ...

    @abstractmethod
    def copy(self, source_key: str, target_key: str) -> int:
        """Copy one object onto another in a single step. Returns the target's new revision."""
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove `key`."""
        ...
