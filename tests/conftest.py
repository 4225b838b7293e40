"""Shared test fixtures for tessera."""

from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from tessera.core.app import create_app
from tessera.core.clock import ManualClock
from tessera.core.settings import IssuerSettings
from tessera.db.base import BaseEntity
from tessera.db.engine import get_session
from tessera.issuer.key_store import KeyStore
from tessera.issuer.token_issuer import TokenIssuer
from tessera.issuer.types import Principal
from tessera.verifier.token_verifier import TokenVerifier

ISSUER = "http://localhost:8000"
ADMIN_TOKEN = "admin-secret"
START = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
TOKEN_LIFETIME = timedelta(minutes=15)
GRACE_PERIOD = timedelta(hours=1)
CLOCK_SKEW = timedelta(seconds=30)


class StaticCredentials:
    """Credential checker backed by a fixed username -> (password, principal) map."""

    def __init__(self, users: dict[str, tuple[str, Principal]]) -> None:
        self._users = users

    async def check(self, username: str, password: str) -> Principal | None:
        entry = self._users.get(username)
        if entry is None or entry[0] != password:
            return None
        return entry[1]


@pytest.fixture(autouse=True)
def _set_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set environment variables for test settings."""
    monkeypatch.setenv("AUTH_ISSUER_URL", ISSUER)
    monkeypatch.setenv("AUTH_LOG_JSON", "false")


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def key_store(clock: ManualClock) -> KeyStore:
    """A store with one ACTIVE key and a one-hour rotation grace period."""
    return KeyStore.provision(GRACE_PERIOD, clock=clock)


@pytest.fixture
def token_issuer(key_store: KeyStore, clock: ManualClock) -> TokenIssuer:
    return TokenIssuer(key_store, issuer=ISSUER, lifetime=TOKEN_LIFETIME, clock=clock)


@pytest.fixture
def verifier(clock: ManualClock) -> TokenVerifier:
    return TokenVerifier(expected_issuer=ISSUER, clock_skew=CLOCK_SKEW, clock=clock)


@pytest.fixture
def issuer_settings() -> IssuerSettings:
    return IssuerSettings(
        issuer_url=ISSUER,
        access_token_ttl=int(TOKEN_LIFETIME.total_seconds()),
        key_rotation_grace=int(GRACE_PERIOD.total_seconds()),
        admin_token=ADMIN_TOKEN,
    )


@pytest.fixture
def credential_checker() -> StaticCredentials:
    return StaticCredentials(
        {
            "alice": ("wonderland", Principal(subject="alice", roles=frozenset({"DOCTOR"}))),
            "root": ("hunter2", Principal(subject="root", roles=frozenset({"ADMIN"}))),
            "ghost": ("boo", Principal(subject="ghost", roles=frozenset())),
        }
    )


@pytest.fixture
async def db_session() -> AsyncIterator[AsyncSession]:
    """Create an in-memory SQLite async session for tests."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(BaseEntity.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def auth_app(
    issuer_settings: IssuerSettings,
    key_store: KeyStore,
    credential_checker: StaticCredentials,
    clock: ManualClock,
    db_session: AsyncSession,
) -> FastAPI:
    """Authentication service wired to the test key store and database."""
    app = create_app(
        settings=issuer_settings,
        key_store=key_store,
        credential_checker=credential_checker,
        clock=clock,
    )

    async def _override_session() -> AsyncIterator[AsyncSession]:
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_session] = _override_session
    return app


@pytest.fixture
async def client(auth_app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Create an httpx test client for the authentication service."""
    transport = ASGITransport(app=auth_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
