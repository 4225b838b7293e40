"""In-process signing key store with rotation and grace-period retirement.

The store follows a single-writer, many-reader discipline. Key records are
immutable and the whole collection is swapped as one tuple under a lock, so a
reader sees either the state before a rotation or the state after it.
RETIRING keys stop being published as soon as their ``retire_at`` passes;
``retire_expired`` later makes that transition permanent and drops the private
material.
"""

import threading
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import NamedTuple

from tessera.core.clock import Clock, utc_now
from tessera.core.errors import NoActiveKey, RotationConflict
from tessera.core.logging import get_logger
from tessera.crypto.keys import generate_signing_key
from tessera.crypto.types import KeySet, KeyStatus, SigningKeyPair

logger = get_logger("tessera.issuer.key_store")


class Rotation(NamedTuple):
    """A generated key and the key records that installing it produces."""

    fresh: SigningKeyPair
    demoted: str | None
    retire_at: datetime
    keys: tuple[SigningKeyPair, ...]


class KeyStore:
    """Owns the signing key pairs of the authentication service."""

    def __init__(
        self,
        grace_period: timedelta,
        keys: Iterable[SigningKeyPair] = (),
        clock: Clock = utc_now,
    ) -> None:
        snapshot = tuple(keys)
        active = [k.kid for k in snapshot if k.status is KeyStatus.ACTIVE]
        if len(active) > 1:
            raise ValueError(f"more than one ACTIVE signing key: {active}")
        if grace_period <= timedelta(0):
            raise ValueError("grace_period must be positive")
        self._grace_period = grace_period
        self._clock = clock
        self._lock = threading.Lock()
        self._keys: tuple[SigningKeyPair, ...] = snapshot

    @classmethod
    def provision(cls, grace_period: timedelta, clock: Clock = utc_now) -> "KeyStore":
        """Create a store holding one freshly generated ACTIVE key."""
        store = cls(grace_period=grace_period, clock=clock)
        store.rotate()
        return store

    @property
    def grace_period(self) -> timedelta:
        return self._grace_period

    def current_signing_key(self) -> SigningKeyPair:
        """Return the ACTIVE key; raise NoActiveKey if none was provisioned."""
        for key in self._keys:
            if key.status is KeyStatus.ACTIVE:
                return key
        raise NoActiveKey("no ACTIVE signing key has been provisioned")

    def published_keys(self, now: datetime | None = None) -> list[SigningKeyPair]:
        """Keys whose public half is currently published, newest first."""
        at = now or self._clock()
        keys = [k for k in self._keys if k.is_published(at)]
        return sorted(keys, key=lambda k: k.created_at, reverse=True)

    def public_key_set(self, now: datetime | None = None) -> KeySet:
        """All non-RETIRED public keys keyed by key id."""
        return KeySet(keys={k.kid: k.public_key for k in self.published_keys(now)})

    def all_keys(self) -> tuple[SigningKeyPair, ...]:
        """Every key the store knows about, including RETIRED ones."""
        return self._keys

    def rotate(self) -> str:
        """Activate a fresh key and demote the current one to RETIRING.

        Returns the new key id.
        """
        return self.apply(self.plan_rotation())

    def plan_rotation(self) -> Rotation:
        """Generate the next key and the records a rotation would leave behind.

        Nothing changes until ``apply`` is called, so callers can persist
        ``Rotation.keys`` first.
        """
        now = self._clock()
        fresh = generate_signing_key(created_at=now)
        retire_at = now + self._grace_period
        with self._lock:
            current = self._keys
        demoted = next((k.kid for k in current if k.status is KeyStatus.ACTIVE), None)
        return Rotation(
            fresh=fresh,
            demoted=demoted,
            retire_at=retire_at,
            keys=_rotate_records(current, fresh, retire_at, now),
        )

    def apply(self, rotation: Rotation) -> str:
        """Install a planned rotation and return the new key id.

        Raises RotationConflict if another rotation changed the ACTIVE key
        since the plan was made.
        """
        with self._lock:
            active = next(
                (k.kid for k in self._keys if k.status is KeyStatus.ACTIVE), None
            )
            if active != rotation.demoted:
                raise RotationConflict(
                    f"ACTIVE key is {active}, rotation planned against {rotation.demoted}"
                )
            self._keys = _rotate_records(
                self._keys, rotation.fresh, rotation.retire_at, self._clock()
            )

        logger.info(
            "Signing key rotated",
            kid=rotation.fresh.kid,
            retiring_kid=rotation.demoted,
            retire_at=rotation.retire_at.isoformat() if rotation.demoted else None,
        )
        return rotation.fresh.kid

    def retire_expired(self) -> list[str]:
        """Move RETIRING keys past their deadline to RETIRED.

        Returns the key ids that changed state.
        """
        now = self._clock()
        with self._lock:
            before = {k.kid: k.status for k in self._keys}
            self._keys = _apply_retirement(self._keys, now)
            retired = [
                k.kid
                for k in self._keys
                if k.status is KeyStatus.RETIRED and before[k.kid] is not KeyStatus.RETIRED
            ]
        if retired:
            logger.info("Signing keys retired", kids=retired)
        return retired


def _apply_retirement(
    keys: tuple[SigningKeyPair, ...], now: datetime
) -> tuple[SigningKeyPair, ...]:
    """Retire overdue keys and discard their private material."""
    result = []
    for key in keys:
        if (
            key.status is KeyStatus.RETIRING
            and key.retire_at is not None
            and key.retire_at <= now
        ):
            key = key.model_copy(
                update={"status": KeyStatus.RETIRED, "private_key": None}
            )
        result.append(key)
    return tuple(result)


def _rotate_records(
    keys: tuple[SigningKeyPair, ...],
    fresh: SigningKeyPair,
    retire_at: datetime,
    now: datetime,
) -> tuple[SigningKeyPair, ...]:
    """Demote the ACTIVE key, append ``fresh``, and retire overdue keys."""
    updated = [
        key.model_copy(update={"status": KeyStatus.RETIRING, "retire_at": retire_at})
        if key.status is KeyStatus.ACTIVE
        else key
        for key in keys
    ]
    updated.append(fresh)
    return _apply_retirement(tuple(updated), now)
