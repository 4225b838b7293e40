"""FastAPI dependency injection for the authentication service."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tessera.core.settings import IssuerSettings
from tessera.issuer.jwks import JWKSPublisher
from tessera.issuer.key_store import KeyStore
from tessera.issuer.token_issuer import TokenIssuer
from tessera.issuer.types import CredentialChecker

_security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> IssuerSettings:
    return request.app.state.settings


def get_key_store(request: Request) -> KeyStore:
    store: KeyStore | None = request.app.state.key_store
    if store is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return store


def get_credential_checker(request: Request) -> CredentialChecker | None:
    return request.app.state.credential_checker


def get_publisher(
    store: Annotated[KeyStore, Depends(get_key_store)],
) -> JWKSPublisher:
    return JWKSPublisher(store)


def get_token_issuer(
    request: Request,
    store: Annotated[KeyStore, Depends(get_key_store)],
    settings: Annotated[IssuerSettings, Depends(get_settings)],
) -> TokenIssuer:
    return TokenIssuer(
        key_store=store,
        issuer=settings.issuer_url,
        lifetime=settings.token_lifetime,
        clock=request.app.state.clock,
    )


async def require_admin_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_security)],
    settings: Annotated[IssuerSettings, Depends(get_settings)],
) -> str:
    """Verify the AUTH_ADMIN_TOKEN Bearer token."""
    expected = settings.admin_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    if credentials is None or credentials.credentials != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
        )
    return credentials.credentials
