"""
Domain Layer — Error taxonomy
-----------------------------
Every failure the collector knows how to name derives from
VersionCollectorError, so the application service can catch the whole
family in one place and let genuine bugs propagate.

Extraction misses (tag absent or pattern not matching) are NOT errors:
they become absent fields in the snapshot.
"""

from __future__ import annotations


class VersionCollectorError(Exception):
    """Base class for every expected failure of a collection run."""


class ConfigError(VersionCollectorError):
    """A registry entry or a setting is missing or invalid."""


class TransportError(VersionCollectorError):
    """The GraphQL request could not be completed (DNS, connection, timeout, 5xx)."""


class AuthError(VersionCollectorError):
    """The GraphQL endpoint rejected the credential (HTTP 401/403)."""


class MalformedResponseError(VersionCollectorError):
    """The response body is not JSON or carries no usable `data` object."""


class StorageError(VersionCollectorError):
    """The blob write (or one of its staging steps) failed."""
