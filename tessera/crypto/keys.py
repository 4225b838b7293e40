"""RSA signing key generation, PEM and Fernet encoding, and JWK conversion."""

import base64
from datetime import datetime

import uuid_utils
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from tessera.crypto.types import JWKEntry, KeyStatus, SigningKeyPair

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537


def generate_signing_key(created_at: datetime) -> SigningKeyPair:
    """Generate a new ACTIVE RSA-2048 key pair with a time-ordered key id."""
    private_key = rsa.generate_private_key(
        public_exponent=RSA_PUBLIC_EXPONENT,
        key_size=RSA_KEY_SIZE,
    )
    return SigningKeyPair(
        kid=str(uuid_utils.uuid7()),
        private_key=private_key,
        public_key=private_key.public_key(),
        created_at=created_at,
        status=KeyStatus.ACTIVE,
    )


def private_key_to_pem(private_key: RSAPrivateKey) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def public_key_to_pem(public_key: RSAPublicKey) -> str:
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()


def load_private_key(private_pem: str) -> RSAPrivateKey:
    """Load a PEM private key, insisting that it is RSA."""
    loaded = serialization.load_pem_private_key(private_pem.encode(), password=None)
    if not isinstance(loaded, RSAPrivateKey):
        raise ValueError("signing key is not an RSA private key")
    return loaded


def load_public_key(public_pem: str) -> RSAPublicKey:
    """Load a PEM public key, insisting that it is RSA."""
    loaded = serialization.load_pem_public_key(public_pem.encode())
    if not isinstance(loaded, RSAPublicKey):
        raise ValueError("verification key is not an RSA public key")
    return loaded


def encrypt_private_key(private_pem: str, fernet_key: str) -> str:
    """Encrypt a PEM private key with Fernet for database storage."""
    cipher = Fernet(fernet_key.encode())
    return cipher.encrypt(private_pem.encode()).decode()


def decrypt_private_key(encrypted: str, fernet_key: str) -> str:
    """Decrypt a Fernet-encrypted PEM private key."""
    cipher = Fernet(fernet_key.encode())
    return cipher.decrypt(encrypted.encode()).decode()


def _int_to_base64url(value: int) -> str:
    """Encode an integer as base64url without padding."""
    byte_length = (value.bit_length() + 7) // 8
    raw = value.to_bytes(byte_length, byteorder="big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def public_key_to_jwk(public_key: RSAPublicKey, kid: str) -> JWKEntry:
    """Convert an RSA public key to its JWK form."""
    numbers = public_key.public_numbers()
    return JWKEntry(
        kid=kid,
        n=_int_to_base64url(numbers.n),
        e=_int_to_base64url(numbers.e),
    )
