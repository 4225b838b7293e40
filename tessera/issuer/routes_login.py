"""Login endpoint: issues a bearer token for a verified principal."""

from typing import Annotated

from fastapi import APIRouter, Depends
from starlette.responses import JSONResponse

from tessera.core.errors import CredentialRejected, NoActiveKey
from tessera.core.logging import get_logger
from tessera.issuer.deps import get_credential_checker, get_token_issuer
from tessera.issuer.token_issuer import TokenIssuer
from tessera.issuer.types import CredentialChecker, LoginPayload, TokenResponse

router = APIRouter(prefix="/auth", tags=["login"])

logger = get_logger("tessera.issuer.routes_login")

HTTP_UNAUTHORIZED = 401
HTTP_SERVICE_UNAVAILABLE = 503


@router.post("/login", response_model=None)
async def login(
    payload: LoginPayload,
    issuer: Annotated[TokenIssuer, Depends(get_token_issuer)],
    checker: Annotated[CredentialChecker | None, Depends(get_credential_checker)],
) -> TokenResponse | JSONResponse:
    """POST /auth/login -- exchange verified credentials for a bearer token."""
    if checker is None:
        return JSONResponse(
            {"error": "temporarily_unavailable"},
            status_code=HTTP_SERVICE_UNAVAILABLE,
        )

    principal = await checker.check(payload.username, payload.password)
    if principal is None:
        logger.info("Login rejected", username=payload.username)
        return JSONResponse(
            {"error": "invalid_credentials"},
            status_code=HTTP_UNAUTHORIZED,
        )

    try:
        issued = issuer.issue(principal)
    except CredentialRejected:
        return JSONResponse(
            {"error": "invalid_credentials"},
            status_code=HTTP_UNAUTHORIZED,
        )
    except NoActiveKey:
        logger.error("Issuance impossible without an ACTIVE signing key")
        return JSONResponse(
            {"error": "server_error", "error_description": "No signing key"},
            status_code=500,
        )

    return TokenResponse(access_token=issued.token, expires_in=issued.expires_in)
