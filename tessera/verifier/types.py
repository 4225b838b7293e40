"""Type definitions for verification results and authorization decisions."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tessera.core.errors import FailureKind, TokenRejected


class VerifiedClaims(BaseModel):
    """Claims of a token whose signature, issuer, and validity window checked out."""

    model_config = ConfigDict(frozen=True)

    subject: str
    roles: frozenset[str]
    issuer: str
    issued_at: datetime
    expires_at: datetime
    key_id: str


class VerificationResult(BaseModel):
    """Either verified claims or the reason the token was rejected."""

    model_config = ConfigDict(frozen=True)

    claims: VerifiedClaims | None = None
    failure: FailureKind | None = None
    detail: str = ""

    @model_validator(mode="after")
    def _exactly_one_outcome(self) -> "VerificationResult":
        if (self.claims is None) == (self.failure is None):
            raise ValueError("a result carries either claims or a failure")
        return self

    @classmethod
    def success(cls, claims: VerifiedClaims) -> "VerificationResult":
        return cls(claims=claims)

    @classmethod
    def rejected(cls, failure: FailureKind, detail: str = "") -> "VerificationResult":
        return cls(failure=failure, detail=detail)

    @property
    def ok(self) -> bool:
        return self.claims is not None

    def unwrap(self) -> VerifiedClaims:
        """Return the claims or raise TokenRejected with the failure kind."""
        if self.claims is None:
            assert self.failure is not None
            raise TokenRejected(self.failure, self.detail)
        return self.claims


class AuthorizationPolicy(BaseModel):
    """Roles that may call a protected endpoint; any one of them suffices."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    required_roles: frozenset[str] = Field(min_length=1)

    def is_satisfied_by(self, roles: frozenset[str]) -> bool:
        return not self.required_roles.isdisjoint(roles)


class DenyReason(StrEnum):
    """Why the gate refused a request."""

    UNAUTHENTICATED = "unauthenticated"
    INSUFFICIENT_ROLE = "insufficient_role"


class AuthorizationDecision(BaseModel):
    """Outcome of an authorization check."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: DenyReason | None = None

    @classmethod
    def allow(cls) -> "AuthorizationDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason) -> "AuthorizationDecision":
        return cls(allowed=False, reason=reason)
