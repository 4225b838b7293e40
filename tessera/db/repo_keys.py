"""Database operations for signing key persistence."""

import asyncio
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tessera.core.clock import Clock, utc_now
from tessera.core.errors import NoActiveKey
from tessera.core.logging import get_logger
from tessera.crypto.keys import (
    decrypt_private_key,
    encrypt_private_key,
    load_private_key,
    load_public_key,
    private_key_to_pem,
    public_key_to_pem,
)
from tessera.crypto.types import KeyStatus, SigningKeyPair
from tessera.db.models_keys import SigningKeyEntity
from tessera.issuer.key_store import KeyStore

logger = get_logger("tessera.db.repo_keys")


def _aware(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; every stored value is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def pair_to_entity(pair: SigningKeyPair, fernet_key: str) -> SigningKeyEntity:
    """Build the row for ``pair``, encrypting any private material."""
    private_pem = None
    if pair.private_key is not None:
        private_pem = encrypt_private_key(private_key_to_pem(pair.private_key), fernet_key)
    return SigningKeyEntity(
        kid=pair.kid,
        algorithm=pair.algorithm,
        private_key_pem=private_pem,
        public_key_pem=public_key_to_pem(pair.public_key),
        status=pair.status.value,
        created_at=pair.created_at,
        retire_at=pair.retire_at,
    )


def entity_to_pair(entity: SigningKeyEntity, fernet_key: str) -> SigningKeyPair:
    """Rebuild a key pair from its row, decrypting the private half."""
    status = KeyStatus(entity.status)
    private_key = None
    if entity.private_key_pem and status is not KeyStatus.RETIRED:
        private_key = load_private_key(
            decrypt_private_key(entity.private_key_pem, fernet_key)
        )
    created_at = _aware(entity.created_at)
    assert created_at is not None
    return SigningKeyPair(
        kid=entity.kid,
        algorithm=entity.algorithm,
        private_key=private_key,
        public_key=load_public_key(entity.public_key_pem),
        created_at=created_at,
        status=status,
        retire_at=_aware(entity.retire_at),
    )


async def get_all_keys(session: AsyncSession) -> list[SigningKeyEntity]:
    """Return every stored signing key, newest first."""
    stmt = select(SigningKeyEntity).order_by(SigningKeyEntity.created_at.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def save_keys(
    session: AsyncSession, pairs: Iterable[SigningKeyPair], fernet_key: str
) -> None:
    """Insert or update the rows for ``pairs``."""
    for pair in pairs:
        await session.merge(pair_to_entity(pair, fernet_key))
    await session.flush()


async def load_key_store(
    session: AsyncSession,
    fernet_key: str,
    grace_period: timedelta,
    clock: Clock = utc_now,
) -> KeyStore:
    """Rebuild the key store from the database, provisioning a key if none is ACTIVE."""
    entities = await get_all_keys(session)
    store = KeyStore(
        grace_period=grace_period,
        keys=[entity_to_pair(e, fernet_key) for e in entities],
        clock=clock,
    )
    try:
        store.current_signing_key()
    except NoActiveKey:
        kid = await asyncio.to_thread(store.rotate)
        logger.info("Provisioned signing key", kid=kid)
    store.retire_expired()
    await save_keys(session, store.all_keys(), fernet_key)
    return store
