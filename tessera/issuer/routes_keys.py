"""Admin endpoints for signing key rotation and inventory."""

import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from tessera.core.errors import RotationConflict
from tessera.core.settings import IssuerSettings
from tessera.crypto.types import KeyStatus, SigningKeyPair
from tessera.db.engine import get_session
from tessera.db.repo_keys import save_keys
from tessera.issuer.deps import get_key_store, get_settings, require_admin_token
from tessera.issuer.key_store import KeyStore
from tessera.issuer.types import KeyInfo, RotationResponse

router = APIRouter(prefix="/admin/keys", tags=["keys"])

AdminToken = Annotated[str, Depends(require_admin_token)]
Store = Annotated[KeyStore, Depends(get_key_store)]
Settings = Annotated[IssuerSettings, Depends(get_settings)]


def _key_info(pair: SigningKeyPair) -> KeyInfo:
    return KeyInfo(
        kid=pair.kid,
        algorithm=pair.algorithm,
        status=pair.status.value,
        created_at=pair.created_at,
        retire_at=pair.retire_at,
    )


@router.get("")
async def list_keys(_token: AdminToken, store: Store) -> list[KeyInfo]:
    """GET /admin/keys -- every known key and its lifecycle state."""
    return [_key_info(k) for k in store.all_keys()]


@router.post("/rotate")
async def rotate_keys(
    _token: AdminToken,
    store: Store,
    settings: Settings,
    db: Annotated[AsyncSession, Depends(get_session)],
) -> RotationResponse:
    """POST /admin/keys/rotate -- activate a new key, demote the current one."""
    rotation = await asyncio.to_thread(store.plan_rotation)
    if settings.persists_keys:
        await save_keys(db, rotation.keys, settings.signing_key_encryption_key)
        await db.commit()
    try:
        kid = store.apply(rotation)
    except RotationConflict as exc:
        if settings.persists_keys:
            discarded = rotation.fresh.model_copy(
                update={"status": KeyStatus.RETIRED, "private_key": None}
            )
            await save_keys(
                db, [*store.all_keys(), discarded], settings.signing_key_encryption_key
            )
            await db.commit()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return RotationResponse(kid=kid, keys=[_key_info(k) for k in store.all_keys()])
