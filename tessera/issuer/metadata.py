"""Issuer metadata document builder."""

from pydantic import BaseModel

from tessera.core.settings import IssuerSettings
from tessera.crypto.types import SIGNING_ALGORITHM


class IssuerMetadata(BaseModel):
    """.well-known/openid-configuration response, limited to what verifiers need."""

    issuer: str
    jwks_uri: str
    token_endpoint: str
    token_signing_alg_values_supported: list[str]
    access_token_lifetime: int


def build_metadata(settings: IssuerSettings) -> IssuerMetadata:
    """Build the metadata document from settings."""
    issuer = settings.issuer_url.rstrip("/")
    return IssuerMetadata(
        issuer=settings.issuer_url,
        jwks_uri=f"{issuer}/.well-known/jwks.json",
        token_endpoint=f"{issuer}/auth/login",
        token_signing_alg_values_supported=[SIGNING_ALGORITHM],
        access_token_lifetime=settings.access_token_ttl,
    )
