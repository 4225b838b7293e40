"""Stateless RS256 token verification against a fetched key set.

Checks run in a fixed order and the first failure ends verification:

1. token structure and header (``kid``, ``alg``)   -> MALFORMED_TOKEN
2. key id present in the key set                  -> UNKNOWN_KEY
3. signature over header and payload               -> INVALID_SIGNATURE
   (claim shape is parsed only after the signature holds, so a tampered
   payload always reads as INVALID_SIGNATURE)
4. ``iss`` equals the expected issuer              -> ISSUER_MISMATCH
5. ``now <= exp + skew``                           -> TOKEN_EXPIRED
6. ``iat <= now + skew``                           -> TOKEN_NOT_YET_VALID

No step retries and nothing is cached; each call is independent and safe to
run concurrently.
"""

import json
from datetime import UTC, datetime, timedelta

import jwt
from pydantic import BaseModel, Field, ValidationError

from tessera.core.clock import Clock, utc_now
from tessera.core.errors import FailureKind
from tessera.crypto.types import SIGNING_ALGORITHM, KeySet
from tessera.verifier.types import VerificationResult, VerifiedClaims

DEFAULT_CLOCK_SKEW = timedelta(seconds=30)
# 3000-01-01T00:00:00Z; keeps datetime arithmetic with the skew in range
MAX_TIMESTAMP = 32503680000


class _TokenPayload(BaseModel):
    """Claim shape every issued token carries."""

    iss: str
    sub: str
    roles: list[str] = Field(min_length=1)
    iat: int = Field(ge=0, lt=MAX_TIMESTAMP)
    exp: int = Field(ge=0, lt=MAX_TIMESTAMP)


class TokenVerifier:
    """Validates bearer tokens for one expected issuer."""

    def __init__(
        self,
        expected_issuer: str,
        clock_skew: timedelta = DEFAULT_CLOCK_SKEW,
        clock: Clock = utc_now,
    ) -> None:
        if clock_skew < timedelta(0):
            raise ValueError("clock_skew must not be negative")
        self._expected_issuer = expected_issuer
        self._skew = clock_skew
        self._clock = clock
        self._jws = jwt.PyJWS()

    def verify(
        self, token: str, key_set: KeySet, now: datetime | None = None
    ) -> VerificationResult:
        """Verify ``token`` and return its claims or a typed failure."""
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as exc:
            return VerificationResult.rejected(FailureKind.MALFORMED_TOKEN, str(exc))

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            return VerificationResult.rejected(
                FailureKind.MALFORMED_TOKEN, "header has no key id"
            )
        if header.get("alg") != SIGNING_ALGORITHM:
            return VerificationResult.rejected(
                FailureKind.MALFORMED_TOKEN, f"unsupported algorithm {header.get('alg')!r}"
            )

        key = key_set.get(kid)
        if key is None:
            return VerificationResult.rejected(FailureKind.UNKNOWN_KEY, kid)

        try:
            decoded = self._jws.decode_complete(
                token, key=key, algorithms=[SIGNING_ALGORITHM]
            )
        except jwt.InvalidSignatureError:
            return VerificationResult.rejected(FailureKind.INVALID_SIGNATURE, kid)
        except jwt.InvalidTokenError as exc:
            return VerificationResult.rejected(FailureKind.MALFORMED_TOKEN, str(exc))

        try:
            payload = _TokenPayload.model_validate(json.loads(decoded["payload"]))
        except (ValueError, ValidationError) as exc:
            return VerificationResult.rejected(
                FailureKind.MALFORMED_TOKEN, f"invalid claims: {exc}"
            )

        if payload.iss != self._expected_issuer:
            return VerificationResult.rejected(FailureKind.ISSUER_MISMATCH, payload.iss)

        at = now or self._clock()
        issued_at = datetime.fromtimestamp(payload.iat, UTC)
        expires_at = datetime.fromtimestamp(payload.exp, UTC)
        if at > expires_at + self._skew:
            return VerificationResult.rejected(
                FailureKind.TOKEN_EXPIRED, expires_at.isoformat()
            )
        if issued_at > at + self._skew:
            return VerificationResult.rejected(
                FailureKind.TOKEN_NOT_YET_VALID, issued_at.isoformat()
            )

        return VerificationResult.success(
            VerifiedClaims(
                subject=payload.sub,
                roles=frozenset(payload.roles),
                issuer=payload.iss,
                issued_at=issued_at,
                expires_at=expires_at,
                key_id=kid,
            )
        )
