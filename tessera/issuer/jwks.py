"""JSON Web Key Set publication for the signing key store."""

from tessera.crypto.keys import public_key_to_jwk
from tessera.crypto.types import JWKSResponse
from tessera.issuer.key_store import KeyStore


class JWKSPublisher:
    """Serializes the store's published public keys; holds no state of its own."""

    def __init__(self, key_store: KeyStore) -> None:
        self._key_store = key_store

    def publish(self) -> JWKSResponse:
        """Build the key-set document for every non-RETIRED key."""
        return JWKSResponse(
            keys=[
                public_key_to_jwk(key.public_key, key.kid)
                for key in self._key_store.published_keys()
            ]
        )
