"""Tests for the key administration endpoints."""

import threading

import pytest
from cryptography.fernet import Fernet
from fastapi import FastAPI
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

import tessera.issuer.key_store as key_store_module
from tessera.core.settings import IssuerSettings
from tessera.crypto.types import KeyStatus, SigningKeyPair
from tessera.db.repo_keys import get_all_keys
from tessera.issuer.deps import get_settings
from tessera.issuer.key_store import KeyStore

ADMIN = {"Authorization": "Bearer admin-secret"}


class TestAdminToken:
    """Tests for admin bearer token enforcement."""

    async def test_missing_token(self, client: AsyncClient) -> None:
        resp = await client.post("/admin/keys/rotate")
        assert resp.status_code == 401

    async def test_wrong_token(self, client: AsyncClient) -> None:
        resp = await client.get("/admin/keys", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    async def test_unconfigured_token(
        self, client: AsyncClient, auth_app: FastAPI
    ) -> None:
        auth_app.dependency_overrides[get_settings] = lambda: IssuerSettings(
            admin_token=""
        )
        resp = await client.get("/admin/keys", headers=ADMIN)
        assert resp.status_code == 503


class TestListKeys:
    """Tests for GET /admin/keys."""

    async def test_lists_active_key(self, client: AsyncClient, key_store: KeyStore) -> None:
        resp = await client.get("/admin/keys", headers=ADMIN)
        assert resp.status_code == 200
        body = resp.json()
        assert len(body) == 1
        assert body[0]["kid"] == key_store.current_signing_key().kid
        assert body[0]["status"] == "active"
        assert "private_key" not in body[0]


class TestRotate:
    """Tests for POST /admin/keys/rotate."""

    async def test_rotates(self, client: AsyncClient, key_store: KeyStore) -> None:
        old_kid = key_store.current_signing_key().kid
        resp = await client.post("/admin/keys/rotate", headers=ADMIN)
        assert resp.status_code == 200
        body = resp.json()
        assert body["kid"] == key_store.current_signing_key().kid
        statuses = {k["kid"]: k["status"] for k in body["keys"]}
        assert statuses == {old_kid: "retiring", body["kid"]: "active"}

    async def test_generates_key_off_event_loop_thread(
        self, client: AsyncClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        threads: list[int] = []
        generate = key_store_module.generate_signing_key

        def recording_generate(**kwargs: object) -> SigningKeyPair:
            threads.append(threading.get_ident())
            return generate(**kwargs)

        monkeypatch.setattr(key_store_module, "generate_signing_key", recording_generate)
        resp = await client.post("/admin/keys/rotate", headers=ADMIN)
        assert resp.status_code == 200
        assert len(threads) == 1
        assert threads[0] != threading.get_ident()

    async def test_not_persisted_without_encryption_key(
        self, client: AsyncClient, db_session: AsyncSession
    ) -> None:
        await client.post("/admin/keys/rotate", headers=ADMIN)
        assert await get_all_keys(db_session) == []

    async def test_persisted_with_encryption_key(
        self,
        client: AsyncClient,
        auth_app: FastAPI,
        issuer_settings: IssuerSettings,
        db_session: AsyncSession,
    ) -> None:
        auth_app.state.settings = issuer_settings.model_copy(
            update={"signing_key_encryption_key": Fernet.generate_key().decode()}
        )
        resp = await client.post("/admin/keys/rotate", headers=ADMIN)
        rows = await get_all_keys(db_session)
        assert {r.kid for r in rows} == {k["kid"] for k in resp.json()["keys"]}
        assert all(
            r.private_key_pem and "BEGIN" not in r.private_key_pem for r in rows
        )


def _persisting(app: FastAPI, settings: IssuerSettings) -> None:
    app.state.settings = settings.model_copy(
        update={"signing_key_encryption_key": Fernet.generate_key().decode()}
    )


class TestRotatePersistence:
    """Rotation is only installed once its key records are stored."""

    async def test_failed_commit_keeps_current_key(
        self,
        client: AsyncClient,
        auth_app: FastAPI,
        issuer_settings: IssuerSettings,
        key_store: KeyStore,
        db_session: AsyncSession,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        _persisting(auth_app, issuer_settings)
        old_kid = key_store.current_signing_key().kid

        async def failing_commit() -> None:
            raise RuntimeError("disk I/O error")

        with monkeypatch.context() as patched, pytest.raises(RuntimeError):
            patched.setattr(db_session, "commit", failing_commit)
            await client.post("/admin/keys/rotate", headers=ADMIN)

        assert key_store.current_signing_key().kid == old_kid
        assert len(key_store.all_keys()) == 1
        assert await get_all_keys(db_session) == []

    async def test_concurrent_rotation_conflicts(
        self,
        client: AsyncClient,
        auth_app: FastAPI,
        issuer_settings: IssuerSettings,
        key_store: KeyStore,
        db_session: AsyncSession,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        _persisting(auth_app, issuer_settings)
        stale = key_store.plan_rotation()
        winner = key_store.rotate()
        monkeypatch.setattr(key_store, "plan_rotation", lambda: stale)

        resp = await client.post("/admin/keys/rotate", headers=ADMIN)
        assert resp.status_code == 409
        assert key_store.current_signing_key().kid == winner

        rows = {r.kid: r for r in await get_all_keys(db_session)}
        assert rows[stale.fresh.kid].status == KeyStatus.RETIRED.value
        assert rows[stale.fresh.kid].private_key_pem is None
        assert [kid for kid, r in rows.items() if r.status == "active"] == [winner]
