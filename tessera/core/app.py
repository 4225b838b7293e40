"""FastAPI application factory for the tessera authentication service."""

import asyncio
import contextlib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tessera.core.clock import Clock, utc_now
from tessera.core.logging import configure_logging, get_logger
from tessera.core.settings import IssuerSettings
from tessera.db.engine import create_schema, dispose_engine, session_scope
from tessera.db.repo_keys import load_key_store, save_keys
from tessera.issuer.key_store import KeyStore
from tessera.issuer.routes_jwks import router as jwks_router
from tessera.issuer.routes_keys import router as keys_router
from tessera.issuer.routes_login import router as login_router
from tessera.issuer.types import CredentialChecker

logger = get_logger("tessera.core.app")


async def _open_key_store(settings: IssuerSettings, clock: Clock) -> KeyStore:
    """Load persisted keys, or provision an in-memory store when persistence is off."""
    if settings.persists_keys:
        await create_schema()
        async with session_scope() as session:
            return await load_key_store(
                session,
                settings.signing_key_encryption_key,
                settings.grace_period,
                clock=clock,
            )
    logger.warning("Signing keys are not persisted; set AUTH_SIGNING_KEY_ENCRYPTION_KEY")
    return await asyncio.to_thread(KeyStore.provision, settings.grace_period, clock)


async def retire_expired_keys(
    store: KeyStore, settings: IssuerSettings, *, force_save: bool = False
) -> list[str]:
    """Apply due RETIRING -> RETIRED transitions and persist them.

    ``force_save`` writes the key records even when nothing retired, to catch
    up after a sweep whose save failed.
    """
    retired = store.retire_expired()
    if (retired or force_save) and settings.persists_keys:
        async with session_scope() as session:
            await save_keys(session, store.all_keys(), settings.signing_key_encryption_key)
    return retired


async def _retire_loop(app: FastAPI) -> None:
    settings: IssuerSettings = app.state.settings
    unsaved = False
    while True:
        await asyncio.sleep(settings.retire_check_interval)
        try:
            await retire_expired_keys(app.state.key_store, settings, force_save=unsaved)
            unsaved = False
        except Exception:
            unsaved = True
            logger.exception("Key retirement sweep failed")


def create_app(
    *,
    settings: IssuerSettings | None = None,
    key_store: KeyStore | None = None,
    credential_checker: CredentialChecker | None = None,
    clock: Clock = utc_now,
) -> FastAPI:
    """Build and configure the FastAPI application."""
    settings = settings or IssuerSettings()
    configure_logging(settings.log_level, json=settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.key_store is None:
            app.state.key_store = await _open_key_store(settings, clock)
        retirer = asyncio.create_task(_retire_loop(app))
        try:
            yield
        finally:
            retirer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await retirer
            await dispose_engine()

    app = FastAPI(
        title="tessera authentication service",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.key_store = key_store
    app.state.credential_checker = credential_checker
    app.state.clock = clock

    if credential_checker is None:
        logger.warning("No credential checker configured; /auth/login is disabled")

    app.include_router(jwks_router)
    app.include_router(login_router)
    app.include_router(keys_router)

    return app
