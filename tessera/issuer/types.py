"""Type definitions for principals, issued tokens, and the login boundary."""

from datetime import datetime
from typing import Protocol

from pydantic import BaseModel, ConfigDict


class Principal(BaseModel):
    """A caller whose credentials the external collaborator has verified."""

    model_config = ConfigDict(frozen=True)

    subject: str
    roles: frozenset[str]
    issuer: str | None = None


class IssuedToken(BaseModel):
    """A signed bearer token and the facts stamped into it."""

    model_config = ConfigDict(frozen=True)

    token: str
    key_id: str
    subject: str
    roles: frozenset[str]
    issued_at: datetime
    expires_at: datetime

    @property
    def expires_in(self) -> int:
        return int((self.expires_at - self.issued_at).total_seconds())


class TokenResponse(BaseModel):
    """Login endpoint response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int


class LoginPayload(BaseModel):
    """Credentials forwarded untouched to the credential checker."""

    username: str
    password: str


class CredentialChecker(Protocol):
    """External collaborator that validates credentials against a user store."""

    async def check(self, username: str, password: str) -> Principal | None:
        """Return the verified principal, or None when credentials are wrong."""
        ...


class KeyInfo(BaseModel):
    """Public inventory entry for one signing key."""

    kid: str
    algorithm: str
    status: str
    created_at: datetime
    retire_at: datetime | None = None


class RotationResponse(BaseModel):
    """Result of a key rotation."""

    kid: str
    keys: list[KeyInfo]
