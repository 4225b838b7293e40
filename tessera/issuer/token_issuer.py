"""Bearer token issuance using RS256 and the store's ACTIVE key."""

from datetime import datetime, timedelta

import jwt

from tessera.core.clock import Clock, utc_now
from tessera.core.errors import CredentialRejected, NoActiveKey
from tessera.core.logging import get_logger
from tessera.crypto.types import SIGNING_ALGORITHM
from tessera.issuer.key_store import KeyStore
from tessera.issuer.types import IssuedToken, Principal

logger = get_logger("tessera.issuer.token_issuer")


class TokenIssuer:
    """Creates signed, bounded-lifetime identity tokens."""

    def __init__(
        self,
        key_store: KeyStore,
        issuer: str,
        lifetime: timedelta,
        clock: Clock = utc_now,
    ) -> None:
        if lifetime <= timedelta(0):
            raise ValueError("token lifetime must be positive")
        self._key_store = key_store
        self._issuer = issuer
        self._lifetime = lifetime
        self._clock = clock

    @property
    def issuer(self) -> str:
        return self._issuer

    def issue(self, principal: Principal, now: datetime | None = None) -> IssuedToken:
        """Sign a token for ``principal`` with the current ACTIVE key.

        Raises CredentialRejected for an unusable principal and NoActiveKey
        when the store has no key to sign with.
        """
        self._check_principal(principal)
        key = self._key_store.current_signing_key()
        if key.private_key is None:
            raise NoActiveKey(f"ACTIVE key {key.kid} has no private material")
        issued_at = (now or self._clock()).replace(microsecond=0)
        expires_at = issued_at + self._lifetime
        roles = sorted(principal.roles)
        payload = {
            "iss": self._issuer,
            "sub": principal.subject,
            "roles": roles,
            "iat": issued_at,
            "exp": expires_at,
        }
        token = jwt.encode(
            payload,
            key.private_key,
            algorithm=SIGNING_ALGORITHM,
            headers={"kid": key.kid},
        )
        logger.info(
            "Token issued",
            sub=principal.subject,
            kid=key.kid,
            expires_at=expires_at.isoformat(),
        )
        return IssuedToken(
            token=token,
            key_id=key.kid,
            subject=principal.subject,
            roles=frozenset(roles),
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def _check_principal(self, principal: Principal) -> None:
        reason = None
        if not principal.subject.strip():
            reason = "empty subject"
        elif not principal.roles:
            reason = "principal has no roles"
        elif any(role.split() != [role] for role in principal.roles):
            reason = "roles must be non-empty tokens without whitespace"
        elif principal.issuer is not None and principal.issuer != self._issuer:
            reason = "principal was verified for another issuer"
        if reason is not None:
            logger.warning("Principal rejected", sub=principal.subject, reason=reason)
            raise CredentialRejected(reason)
