"""FastAPI request boundary for resource services.

``BearerGuard.requires(policy)`` builds a dependency that turns the
``Authorization: Bearer`` header into ``VerifiedClaims`` or an HTTP error:
401 for a missing or rejected token, 403 for an authenticated caller lacking
the policy's roles, 503 when no key set can be obtained.
"""

from collections.abc import Awaitable, Callable
from typing import Annotated

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tessera.core.errors import FailureKind, KeySetFetchFailure
from tessera.core.logging import get_logger
from tessera.core.settings import ResourceSettings
from tessera.verifier.authorization import AuthorizationGate
from tessera.verifier.jwks_client import JWKSClient
from tessera.verifier.token_verifier import TokenVerifier
from tessera.verifier.types import (
    AuthorizationPolicy,
    DenyReason,
    VerificationResult,
    VerifiedClaims,
)

logger = get_logger("tessera.verifier.guard")

_bearer = HTTPBearer(auto_error=False)

RETRY_AFTER_SECONDS = "5"


class BearerGuard:
    """Verifies bearer tokens and enforces role policies per request."""

    def __init__(
        self,
        jwks_client: JWKSClient,
        verifier: TokenVerifier,
        gate: AuthorizationGate | None = None,
    ) -> None:
        self._jwks = jwks_client
        self._verifier = verifier
        self._gate = gate or AuthorizationGate()

    @classmethod
    def from_settings(
        cls, settings: ResourceSettings, http_client: httpx.AsyncClient | None = None
    ) -> "BearerGuard":
        """Wire a guard for a resource service from its environment settings."""
        return cls(
            jwks_client=JWKSClient.from_settings(settings, http_client=http_client),
            verifier=TokenVerifier(
                expected_issuer=settings.expected_issuer, clock_skew=settings.skew
            ),
        )

    @property
    def jwks_client(self) -> JWKSClient:
        return self._jwks

    async def authenticate(self, token: str) -> VerificationResult:
        """Verify ``token``, forcing one key-set refresh on an unknown key id.

        Raises KeySetFetchFailure if no key set is available at all.
        """
        key_set = await self._jwks.get_key_set()
        result = self._verifier.verify(token, key_set)
        if result.failure is FailureKind.UNKNOWN_KEY:
            key_set = await self._jwks.refresh()
            result = self._verifier.verify(token, key_set)
        return result

    def requires(
        self, policy: AuthorizationPolicy
    ) -> Callable[..., Awaitable[VerifiedClaims]]:
        """Build a FastAPI dependency enforcing ``policy``."""

        async def dependency(
            credentials: Annotated[
                HTTPAuthorizationCredentials | None, Depends(_bearer)
            ],
        ) -> VerifiedClaims:
            claims = None
            if credentials is not None:
                claims = await self._claims_for(credentials.credentials)
            decision = self._gate.authorize(claims, policy)
            if decision.reason is DenyReason.UNAUTHENTICATED:
                raise _unauthenticated()
            if decision.reason is DenyReason.INSUFFICIENT_ROLE:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="insufficient_role",
                )
            assert claims is not None
            return claims

        return dependency

    async def _claims_for(self, token: str) -> VerifiedClaims | None:
        try:
            result = await self.authenticate(token)
        except KeySetFetchFailure as exc:
            logger.error("Key set unavailable", attempts=exc.attempts)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="key_set_unavailable",
                headers={"Retry-After": RETRY_AFTER_SECONDS},
            ) from exc
        if not result.ok:
            assert result.failure is not None
            logger.warning(
                "Token rejected", failure=result.failure.value, detail=result.detail
            )
            raise _unauthenticated(result.failure)
        return result.claims


def _unauthenticated(failure: FailureKind | None = None) -> HTTPException:
    challenge = 'Bearer error="invalid_token"' if failure else "Bearer"
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=failure.value if failure else "missing_token",
        headers={"WWW-Authenticate": challenge},
    )
