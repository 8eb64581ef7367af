"""Signing key cache for access token validation.

Fetches the identity authority's JSON Web Key Set and caches it for a
bounded TTL. A token signed with an unknown key id triggers a lazy refresh,
which covers key rotation without fetching on every request.

Concurrent misses share a single in-flight fetch; no lock is held while
the fetch is awaited.
"""

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.logging import get_logger

logger = get_logger(__name__)


class KeyFetchError(Exception):
    """The key set could not be fetched or was not a valid JWKS document."""
    pass


class SigningKeyCache:
    """
    Read-through cache of the authority's signing keys.

    Provides:
    - Cached key lookup by key id
    - TTL-bounded freshness
    - Rate-limited refresh on unknown key ids
    - Single-flight fetches
    """

    def __init__(
        self,
        jwks_uri: str,
        cache_ttl_seconds: float = 3600,
        min_refresh_interval_seconds: float = 30,
        timeout: float = 5.0,
        http_client: Optional[httpx.AsyncClient] = None
    ) -> None:
        """
        Initialize the key cache.

        Args:
            jwks_uri: URL of the authority's JWKS document
            cache_ttl_seconds: How long a fetched key set stays fresh
            min_refresh_interval_seconds: Minimum spacing of refreshes
                triggered by unknown key ids
            timeout: Fetch timeout in seconds
            http_client: Optional client (tests inject a mock transport)
        """
        self.jwks_uri = jwks_uri
        self.cache_ttl = cache_ttl_seconds
        self.min_refresh_interval = min_refresh_interval_seconds
        self.timeout = timeout

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

        self._keys: dict[Optional[str], dict[str, Any]] = {}
        self._fetched_at: Optional[float] = None
        self._inflight: Optional[asyncio.Task] = None

    def _is_fresh(self) -> bool:
        if self._fetched_at is None:
            return False
        return time.monotonic() - self._fetched_at < self.cache_ttl

    def _may_refresh_early(self) -> bool:
        if self._fetched_at is None:
            return True
        return time.monotonic() - self._fetched_at >= self.min_refresh_interval

    async def get_key(self, kid: Optional[str]) -> Optional[dict[str, Any]]:
        """
        Get the signing key (JWK dict) for a key id.

        A token without a kid matches only when the key set holds exactly
        one key.

        Returns:
            The JWK, or None if the authority does not publish that key

        Raises:
            KeyFetchError: If the cache is stale and the authority is unreachable
        """
        if not self._is_fresh():
            await self.refresh()
        else:
            key = self._find(kid)
            if key is not None:
                return key
            if not self._may_refresh_early():
                return None
            logger.info("Unknown signing key id, refreshing key set", kid=kid)
            await self.refresh()

        return self._find(kid)

    def _find(self, kid: Optional[str]) -> Optional[dict[str, Any]]:
        if kid is None:
            if len(self._keys) == 1:
                return next(iter(self._keys.values()))
            return None
        return self._keys.get(kid)

    async def refresh(self) -> None:
        """
        Fetch the key set, joining an in-flight fetch if one is running.

        Raises:
            KeyFetchError: If the fetch fails
        """
        if self._inflight is None:
            self._inflight = asyncio.create_task(self._fetch())
            self._inflight.add_done_callback(self._clear_inflight)

        # Shielded so one cancelled waiter does not cancel the shared fetch.
        await asyncio.shield(self._inflight)

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # Retrieve the exception so an unawaited failure is not reported.
            task.exception()

    async def _fetch(self) -> None:
        try:
            response = await self._client.get(self.jwks_uri, timeout=self.timeout)
            response.raise_for_status()
            document = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Failed to fetch signing keys", jwks_uri=self.jwks_uri, error=str(e))
            raise KeyFetchError(f"Failed to fetch JWKS: {e}") from e

        keys = document.get("keys") if isinstance(document, dict) else None
        if not isinstance(keys, list):
            raise KeyFetchError("JWKS document has no 'keys' array")

        self._keys = {
            key.get("kid"): key
            for key in keys
            if isinstance(key, dict) and key.get("use", "sig") == "sig"
        }
        self._fetched_at = time.monotonic()

        logger.info("Signing keys refreshed", jwks_uri=self.jwks_uri, key_count=len(self._keys))

    async def close(self) -> None:
        """Close the HTTP client if this cache created it."""
        if self._owns_client:
            await self._client.aclose()
