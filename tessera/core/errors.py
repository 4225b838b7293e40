"""Failure taxonomy for key management, issuance, and verification.

Token verification reports its terminal failures as a ``FailureKind`` on a
``VerificationResult``; ``TokenRejected`` is the exception form of the same
outcome. ``KeySetFetchFailure`` is the only retryable error in the set.
"""

from enum import StrEnum


class FailureKind(StrEnum):
    """Why a bearer token was rejected."""

    MALFORMED_TOKEN = "malformed_token"
    UNKNOWN_KEY = "unknown_key"
    INVALID_SIGNATURE = "invalid_signature"
    ISSUER_MISMATCH = "issuer_mismatch"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_NOT_YET_VALID = "token_not_yet_valid"


class AuthError(Exception):
    """Base class for every authentication failure raised by tessera."""


class NoActiveKey(AuthError):  # noqa: N818
    """No signing key is ACTIVE; issuance is impossible until one is provisioned."""


class CredentialRejected(AuthError):  # noqa: N818
    """The principal handed to the issuer is not fit to receive a token."""


class KeySetFetchFailure(AuthError):  # noqa: N818
    """The published key set could not be retrieved."""

    def __init__(self, message: str, attempts: int = 1) -> None:
        super().__init__(message)
        self.attempts = attempts


class TokenRejected(AuthError):  # noqa: N818
    """A bearer token failed verification."""

    def __init__(self, kind: FailureKind, detail: str = "") -> None:
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail


class RotationConflict(AuthError):  # noqa: N818
    """Another rotation replaced the ACTIVE key while this one was being prepared."""
