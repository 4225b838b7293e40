"""Key-set publication and issuer metadata endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Response

from tessera.core.settings import IssuerSettings
from tessera.crypto.types import JWKSResponse
from tessera.issuer.deps import get_publisher, get_settings
from tessera.issuer.jwks import JWKSPublisher
from tessera.issuer.metadata import IssuerMetadata, build_metadata

router = APIRouter()


@router.get("/.well-known/openid-configuration")
async def issuer_metadata(
    settings: Annotated[IssuerSettings, Depends(get_settings)],
) -> IssuerMetadata:
    """Issuer metadata for key-set discovery."""
    return build_metadata(settings)


@router.get("/.well-known/jwks.json")
async def jwks(
    response: Response,
    publisher: Annotated[JWKSPublisher, Depends(get_publisher)],
    settings: Annotated[IssuerSettings, Depends(get_settings)],
) -> JWKSResponse:
    """JSON Web Key Set endpoint."""
    response.headers["Cache-Control"] = f"public, max-age={settings.jwks_max_age}"
    return publisher.publish()
