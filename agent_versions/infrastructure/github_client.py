from __future__ import annotations

import logging
from typing import Any

import httpx

from agent_versions.domain.errors import AuthError, MalformedResponseError, TransportError
from agent_versions.domain.interfaces import IReleaseFetcher

log = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com/graphql"
DEFAULT_TIMEOUT = 30.0


class GitHubReleaseClient(IReleaseFetcher):
    """
    Concrete implementation of IReleaseFetcher for GitHub's GraphQL API.

    The constructor receives an httpx.AsyncClient (injected) rather than
    creating one internally. This lets callers control the client lifecycle
    and makes testing trivial — just pass a client built on a MockTransport.

    One call is one request: there is no retry here. A failed run is
    retried by whatever triggered it.
    """

    def __init__(
        self,
        token:   str,
        client:  httpx.AsyncClient,
        api_url: str = GITHUB_API_URL,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._client  = client
        self._api_url = api_url
        self._timeout = timeout
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type":  "application/json",
        }

    # IReleaseFetcher implementation
    async def fetch_releases(self, query: str) -> dict[str, Any]:
        try:
            response = await self._client.post(
                self._api_url,
                headers=self._headers,
                json={"query": query},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise TransportError(f"GraphQL request timed out after {self._timeout:.0f}s: {exc}") from exc
        except httpx.RequestError as exc:
            raise TransportError(f"GraphQL request failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise AuthError(f"GraphQL endpoint rejected the credential (HTTP {response.status_code})")

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TransportError(f"GraphQL endpoint returned HTTP {response.status_code}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise MalformedResponseError(f"GraphQL response is not JSON: {exc}") from exc

        if not isinstance(body, dict):
            raise MalformedResponseError(f"GraphQL response is a {type(body).__name__}, expected an object")

        # GraphQL-level errors (different from HTTP errors). A repository that
        # does not exist shows up here with a null fragment in `data`.
        if body.get("errors"):
            log.warning("GraphQL errors in response: %s", body["errors"])

        data = body.get("data")
        if not isinstance(data, dict):
            raise MalformedResponseError("GraphQL response carries no `data` object")

        log.debug("Fetched %d aliased fragments from %s", len(data), self._api_url)
        return data
