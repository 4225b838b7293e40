"""Pull-based key-set client with TTL caching for resource services.

The client fetches the issuer's JWKS document over HTTP and caches the parsed
key set for ``cache_ttl`` seconds. Fetch errors are retried with exponential
backoff; once retries are exhausted the last-known-good key set keeps serving
and a new fetch is attempted after ``stale_retry_after`` seconds. With no
key set to fall back on, ``KeySetFetchFailure`` propagates to the caller.
"""

import asyncio
import time
from collections.abc import Callable
from typing import Any

import httpx
import jwt
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from tessera.core.errors import KeySetFetchFailure
from tessera.core.logging import get_logger
from tessera.core.settings import ResourceSettings
from tessera.crypto.keys import RSA_KEY_SIZE
from tessera.crypto.types import SIGNING_ALGORITHM, KeySet
from tessera.verifier.refresh_gate import RefreshGate

logger = get_logger("tessera.verifier.jwks_client")


def parse_key_set(document: Any) -> KeySet:
    """Turn a JWKS document into a KeySet of usable RS256 verification keys."""
    if not isinstance(document, dict) or not isinstance(document.get("keys"), list):
        raise ValueError("key-set document has no 'keys' list")

    keys: dict[str, RSAPublicKey] = {}
    for entry in document["keys"]:
        if not isinstance(entry, dict):
            continue
        kid = entry.get("kid")
        if not isinstance(kid, str) or not kid:
            logger.warning("Skipping JWK without key id")
            continue
        if (
            entry.get("kty") != "RSA"
            or entry.get("use", "sig") != "sig"
            or entry.get("alg", SIGNING_ALGORITHM) != SIGNING_ALGORITHM
        ):
            logger.warning("Skipping JWK not usable for RS256 signatures", kid=kid)
            continue
        try:
            key = jwt.PyJWK(entry, algorithm=SIGNING_ALGORITHM).key
        except (jwt.PyJWTError, KeyError, ValueError) as exc:
            logger.warning("Skipping unparseable JWK", kid=kid, error=str(exc))
            continue
        if not isinstance(key, RSAPublicKey) or key.key_size < RSA_KEY_SIZE:
            logger.warning("Skipping JWK that is not an RSA-2048+ public key", kid=kid)
            continue
        keys[kid] = key
    return KeySet(keys=keys)


class JWKSClient:
    """Fetches and caches the issuer's published key set."""

    def __init__(
        self,
        jwks_url: str,
        *,
        cache_ttl: float = 300.0,
        timeout: float = 5.0,
        attempts: int = 3,
        backoff: float = 0.5,
        stale_retry_after: float = 10.0,
        refresh_gate: RefreshGate | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self._jwks_url = jwks_url
        self._cache_ttl = cache_ttl
        self._timeout = timeout
        self._attempts = attempts
        self._backoff = backoff
        self._stale_retry_after = stale_retry_after
        self._gate = refresh_gate or RefreshGate()
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=timeout, headers={"Accept": "application/json"}
        )
        self._clock = clock
        self._lock = asyncio.Lock()
        self._key_set: KeySet | None = None
        self._expires_at = 0.0

    @classmethod
    def from_settings(
        cls, settings: ResourceSettings, http_client: httpx.AsyncClient | None = None
    ) -> "JWKSClient":
        return cls(
            settings.jwks_url,
            cache_ttl=settings.jwks_cache_ttl,
            timeout=settings.jwks_fetch_timeout,
            attempts=settings.jwks_fetch_attempts,
            backoff=settings.jwks_retry_backoff,
            stale_retry_after=settings.jwks_refresh_min_interval,
            refresh_gate=RefreshGate(min_interval=settings.jwks_refresh_min_interval),
            http_client=http_client,
        )

    @property
    def cached(self) -> KeySet | None:
        return self._key_set

    def _is_fresh(self) -> bool:
        return self._key_set is not None and self._clock() < self._expires_at

    async def get_key_set(self) -> KeySet:
        """Return the cached key set, fetching it when missing or stale."""
        if self._is_fresh():
            assert self._key_set is not None
            return self._key_set
        async with self._lock:
            if self._is_fresh():
                assert self._key_set is not None
                return self._key_set
            return await self._reload()

    async def refresh(self) -> KeySet:
        """Refetch ahead of the TTL unless the refresh gate throttles it.

        A throttled caller still waits for any fetch in flight and gets its result.
        """
        if self._key_set is not None and not self._gate.allow():
            async with self._lock:
                return self._key_set
        async with self._lock:
            return await self._reload()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def _reload(self) -> KeySet:
        try:
            key_set = await self._fetch()
        except KeySetFetchFailure:
            if self._key_set is None:
                raise
            self._expires_at = self._clock() + self._stale_retry_after
            logger.warning(
                "Serving last-known-good key set",
                kids=sorted(self._key_set.kids),
                retry_after=self._stale_retry_after,
            )
            return self._key_set

        self._key_set = key_set
        self._expires_at = self._clock() + self._cache_ttl
        logger.info("Key set refreshed", keys_count=len(key_set))
        return key_set

    async def _fetch(self) -> KeySet:
        last_error: Exception | None = None
        for attempt in range(1, self._attempts + 1):
            try:
                response = await self._http.get(self._jwks_url, timeout=self._timeout)
                response.raise_for_status()
                return parse_key_set(response.json())
            except (httpx.HTTPError, ValueError) as exc:
                last_error = exc
                logger.warning(
                    "Key-set fetch attempt failed",
                    url=self._jwks_url,
                    attempt=attempt,
                    max_attempts=self._attempts,
                    error=str(exc),
                )
                if attempt < self._attempts:
                    await asyncio.sleep(self._backoff * 2 ** (attempt - 1))

        logger.error("Key-set fetch failed", url=self._jwks_url, attempts=self._attempts)
        raise KeySetFetchFailure(
            f"could not fetch key set from {self._jwks_url}: {last_error}",
            attempts=self._attempts,
        ) from last_error
