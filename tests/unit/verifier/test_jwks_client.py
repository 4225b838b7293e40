"""Tests for the key-set client."""

import asyncio

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from tessera.core.errors import KeySetFetchFailure
from tessera.core.settings import ResourceSettings
from tessera.crypto.keys import public_key_to_jwk
from tessera.issuer.jwks import JWKSPublisher
from tessera.issuer.key_store import KeyStore
from tessera.verifier.jwks_client import JWKSClient, parse_key_set
from tessera.verifier.refresh_gate import RefreshGate

JWKS_URL = "http://auth.test/.well-known/jwks.json"


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


class JWKSServer:
    """Programmable handler for httpx.MockTransport."""

    def __init__(self, key_store: KeyStore) -> None:
        self.key_store = key_store
        self.calls = 0
        self.failures: list[Exception | int] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.failures:
            failure = self.failures.pop(0)
            if isinstance(failure, Exception):
                raise failure
            return httpx.Response(failure)
        doc = JWKSPublisher(self.key_store).publish().model_dump()
        return httpx.Response(200, json=doc)


@pytest.fixture
def server(key_store: KeyStore) -> JWKSServer:
    return JWKSServer(key_store)


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def jwks_client(server: JWKSServer, monotonic: FakeMonotonic) -> JWKSClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(server))
    return JWKSClient(
        JWKS_URL,
        cache_ttl=300,
        attempts=3,
        backoff=0,
        stale_retry_after=10,
        refresh_gate=RefreshGate(min_interval=10, clock=monotonic),
        http_client=http,
        clock=monotonic,
    )


class TestGetKeySet:
    """Tests for cached key-set retrieval."""

    async def test_fetches_once_and_caches(
        self, jwks_client: JWKSClient, server: JWKSServer, key_store: KeyStore
    ) -> None:
        first = await jwks_client.get_key_set()
        second = await jwks_client.get_key_set()
        assert first.kids == {key_store.current_signing_key().kid}
        assert second is first
        assert server.calls == 1

    async def test_refetches_after_ttl(
        self, jwks_client: JWKSClient, server: JWKSServer, monotonic: FakeMonotonic
    ) -> None:
        await jwks_client.get_key_set()
        monotonic.value += 301
        await jwks_client.get_key_set()
        assert server.calls == 2

    async def test_retries_transient_failure(
        self, jwks_client: JWKSClient, server: JWKSServer
    ) -> None:
        server.failures = [500, httpx.ConnectTimeout("timed out")]
        key_set = await jwks_client.get_key_set()
        assert len(key_set) == 1
        assert server.calls == 3

    async def test_invalid_body_counts_as_failure(
        self, jwks_client: JWKSClient, server: JWKSServer, key_store: KeyStore
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            server.calls += 1
            if server.calls == 1:
                return httpx.Response(200, content=b"<html>")
            return httpx.Response(
                200, json=JWKSPublisher(key_store).publish().model_dump()
            )

        client = JWKSClient(
            JWKS_URL,
            backoff=0,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        assert len(await client.get_key_set()) == 1
        assert server.calls == 2

    async def test_exhausted_retries_without_cache(
        self, jwks_client: JWKSClient, server: JWKSServer
    ) -> None:
        server.failures = [503, 503, 503]
        with pytest.raises(KeySetFetchFailure) as excinfo:
            await jwks_client.get_key_set()
        assert excinfo.value.attempts == 3
        assert server.calls == 3
        assert jwks_client.cached is None

    async def test_serves_last_known_good(
        self,
        jwks_client: JWKSClient,
        server: JWKSServer,
        monotonic: FakeMonotonic,
    ) -> None:
        original = await jwks_client.get_key_set()
        monotonic.value += 301
        server.failures = [503, 503, 503]
        assert await jwks_client.get_key_set() is original
        assert server.calls == 4

        # stale entry is retried only after stale_retry_after
        assert await jwks_client.get_key_set() is original
        assert server.calls == 4
        monotonic.value += 11
        await jwks_client.get_key_set()
        assert server.calls == 5


class TestRefresh:
    """Tests for forced refreshes."""

    async def test_picks_up_rotated_key(
        self, jwks_client: JWKSClient, key_store: KeyStore
    ) -> None:
        await jwks_client.get_key_set()
        new_kid = key_store.rotate()
        refreshed = await jwks_client.refresh()
        assert new_kid in refreshed

    async def test_throttled_within_interval(
        self,
        jwks_client: JWKSClient,
        server: JWKSServer,
        monotonic: FakeMonotonic,
    ) -> None:
        await jwks_client.get_key_set()
        await jwks_client.refresh()
        await jwks_client.refresh()
        assert server.calls == 2
        monotonic.value += 10
        await jwks_client.refresh()
        assert server.calls == 3

    async def test_refresh_without_cache_fetches(
        self, jwks_client: JWKSClient, server: JWKSServer
    ) -> None:
        await jwks_client.refresh()
        assert server.calls == 1
        assert jwks_client.cached is not None

    async def test_throttled_caller_waits_for_fetch_in_flight(
        self, key_store: KeyStore, server: JWKSServer, monotonic: FakeMonotonic
    ) -> None:
        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.05)
            return server(request)

        client = JWKSClient(
            JWKS_URL,
            backoff=0,
            refresh_gate=RefreshGate(min_interval=10, clock=monotonic),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(slow)),
            clock=monotonic,
        )
        await client.get_key_set()
        monotonic.value += 60
        new_kid = key_store.rotate()

        results = await asyncio.gather(client.refresh(), client.refresh(), client.refresh())
        assert all(new_kid in key_set.kids for key_set in results)
        assert server.calls == 2


class TestFromSettings:
    """Tests for settings-driven construction."""

    async def test_uses_configured_url(self, key_store: KeyStore) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(
                200, json=JWKSPublisher(key_store).publish().model_dump()
            )

        settings = ResourceSettings(jwks_url=JWKS_URL)
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = JWKSClient.from_settings(settings, http_client=http)
        await client.get_key_set()
        assert seen == [JWKS_URL]


class TestParseKeySet:
    """Tests for JWKS document parsing."""

    def test_skips_unusable_entries(self, key_store: KeyStore) -> None:
        good = JWKSPublisher(key_store).publish().model_dump()["keys"][0]
        weak = rsa.generate_private_key(public_exponent=65537, key_size=1024)
        document = {
            "keys": [
                good,
                {"kty": "EC", "kid": "ec-1", "crv": "P-256", "x": "AA", "y": "AA"},
                {**good, "kid": "rs512", "alg": "RS512"},
                {**good, "kid": "enc", "use": "enc"},
                public_key_to_jwk(weak.public_key(), "weak").model_dump(),
                {"kty": "RSA", "kid": "broken", "n": "!!", "e": "AQAB"},
                {key: value for key, value in good.items() if key != "kid"},
                "not-a-jwk",
            ]
        }
        assert parse_key_set(document).kids == {good["kid"]}

    @pytest.mark.parametrize("document", [{}, {"keys": "nope"}, [], None])
    def test_requires_keys_list(self, document: object) -> None:
        with pytest.raises(ValueError, match="keys"):
            parse_key_set(document)

    def test_empty_key_list(self) -> None:
        assert len(parse_key_set({"keys": []})) == 0
