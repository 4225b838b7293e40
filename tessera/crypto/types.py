"""Type definitions for signing keys, key sets, and JWKS documents."""

from datetime import datetime
from enum import StrEnum

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
from pydantic import BaseModel, ConfigDict, Field

SIGNING_ALGORITHM = "RS256"


class KeyStatus(StrEnum):
    """Lifecycle state of a signing key pair."""

    ACTIVE = "active"
    RETIRING = "retiring"
    RETIRED = "retired"


class SigningKeyPair(BaseModel):
    """An RSA signing key pair and its rotation state.

    Records are immutable; rotation replaces them with updated copies so that
    concurrent readers never observe a half-written key.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    kid: str
    algorithm: str = SIGNING_ALGORITHM
    private_key: RSAPrivateKey | None = Field(default=None, exclude=True, repr=False)
    public_key: RSAPublicKey = Field(exclude=True, repr=False)
    created_at: datetime
    status: KeyStatus = KeyStatus.ACTIVE
    retire_at: datetime | None = None

    def is_published(self, now: datetime) -> bool:
        """Whether the public half belongs in the key set at ``now``."""
        if self.status is KeyStatus.RETIRED:
            return False
        if self.status is KeyStatus.RETIRING and self.retire_at is not None:
            return now < self.retire_at
        return True


class KeySet(BaseModel):
    """Read-only view of verification keys, keyed by key id."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    keys: dict[str, RSAPublicKey] = Field(default_factory=dict)

    def get(self, kid: str) -> RSAPublicKey | None:
        return self.keys.get(kid)

    def __contains__(self, kid: object) -> bool:
        return kid in self.keys

    def __len__(self) -> int:
        return len(self.keys)

    @property
    def kids(self) -> frozenset[str]:
        return frozenset(self.keys)


class JWKEntry(BaseModel):
    """Single JWK entry in a JWKS response."""

    kty: str = "RSA"
    use: str = "sig"
    alg: str = SIGNING_ALGORITHM
    kid: str
    n: str
    e: str


class JWKSResponse(BaseModel):
    """JSON Web Key Set response."""

    keys: list[JWKEntry]
