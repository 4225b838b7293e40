"""Role-based authorization decisions over verified claims."""

from tessera.core.logging import get_logger
from tessera.core.settings import ResourceSettings
from tessera.verifier.types import (
    AuthorizationDecision,
    AuthorizationPolicy,
    DenyReason,
    VerifiedClaims,
)

logger = get_logger("tessera.verifier.authorization")


class AuthorizationGate:
    """Allows a caller whose roles intersect the policy's required roles.

    A missing caller is denied as UNAUTHENTICATED; a verified caller without a
    required role is denied as INSUFFICIENT_ROLE. Every deny is logged.
    """

    def authorize(
        self, claims: VerifiedClaims | None, policy: AuthorizationPolicy
    ) -> AuthorizationDecision:
        if claims is None:
            logger.info(
                "Authorization denied",
                reason=DenyReason.UNAUTHENTICATED.value,
                policy=policy.name,
            )
            return AuthorizationDecision.deny(DenyReason.UNAUTHENTICATED)

        if not policy.is_satisfied_by(claims.roles):
            logger.warning(
                "Authorization denied",
                reason=DenyReason.INSUFFICIENT_ROLE.value,
                sub=claims.subject,
                roles=sorted(claims.roles),
                required=sorted(policy.required_roles),
                policy=policy.name,
            )
            return AuthorizationDecision.deny(DenyReason.INSUFFICIENT_ROLE)

        return AuthorizationDecision.allow()


def policies_from_settings(settings: ResourceSettings) -> dict[str, AuthorizationPolicy]:
    """Build the per-endpoint policies configured for a resource service."""
    return {
        name: AuthorizationPolicy(name=name, required_roles=frozenset(roles))
        for name, roles in settings.role_policies.items()
    }
