"""
Layer 3 | ASYMMETRIC: RSA-OAEP key wrapping
===========================================
Wraps the per-envelope AES key under the recipient's public key.

RSA here only ever encrypts 32-byte symmetric keys, never message content.
OAEP with SHA-256 leaves room for (key_bytes - 66) bytes of payload, i.e.
190 bytes under a 2048-bit key, so a 256-bit AES key always fits. Public
keys smaller than 2048 bits are refused.

Failures are explicit: a mismatched private key raises KeyUnwrapError, it
never hands back a wrong key.

Dependencies: cryptography >= 41.0
"""

import logging
from typing import Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import rsa, padding
from cryptography.hazmat.primitives import hashes, serialization

from ..errors import KeyWrapError, KeyUnwrapError
from .layer1_keypair import MIN_KEY_SIZE

logger = logging.getLogger(__name__)

PemKey = Union[str, bytes]

_HASH_SIZE = 32   # SHA-256 digest length


def _pem_bytes(key: PemKey) -> bytes:
    return key.encode("ascii") if isinstance(key, str) else bytes(key)


def _oaep():
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None
    )


def load_public_key(public_key: PemKey) -> rsa.RSAPublicKey:
    """Parse a PEM public key. Raises KeyWrapError if unusable."""
    try:
        key = serialization.load_pem_public_key(_pem_bytes(public_key))
    except (ValueError, TypeError, UnsupportedAlgorithm, UnicodeEncodeError) as exc:
        raise KeyWrapError("Malformed public key.") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise KeyWrapError("Public key is not an RSA key.")
    if key.key_size < MIN_KEY_SIZE:
        raise KeyWrapError(f"RSA public key must be at least {MIN_KEY_SIZE} bits.")
    return key


def load_private_key(private_key: PemKey) -> rsa.RSAPrivateKey:
    """Parse a PEM private key. Raises KeyUnwrapError if unusable."""
    try:
        key = serialization.load_pem_private_key(_pem_bytes(private_key), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm, UnicodeEncodeError) as exc:
        raise KeyUnwrapError("Malformed private key.") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyUnwrapError("Private key is not an RSA key.")
    return key


class AsymmetricCipher:
    """RSA-OAEP(SHA-256) wrap / unwrap of symmetric keys."""

    @staticmethod
    def max_wrap_size(public_key: PemKey) -> int:
        """Largest payload OAEP-SHA256 accepts under this key."""
        key = load_public_key(public_key)
        return key.key_size // 8 - 2 * _HASH_SIZE - 2

    def wrap(self, symmetric_key: bytes, recipient_public_key: PemKey) -> bytes:
        """Encrypt a symmetric key with the recipient's public key."""
        key   = load_public_key(recipient_public_key)
        limit = key.key_size // 8 - 2 * _HASH_SIZE - 2
        if len(symmetric_key) > limit:
            raise KeyWrapError(
                f"Key of {len(symmetric_key)} bytes exceeds the OAEP limit of {limit} bytes.")
        try:
            return key.encrypt(symmetric_key, _oaep())
        except ValueError as exc:
            raise KeyWrapError("RSA-OAEP wrap failed.") from exc

    def unwrap(self, wrapped_key: bytes, private_key: PemKey) -> bytes:
        """Recover a symmetric key. Raises KeyUnwrapError on mismatch."""
        key = load_private_key(private_key)
        if len(wrapped_key) != key.key_size // 8:
            raise KeyUnwrapError("Wrapped key length does not match the private key.")
        try:
            return key.decrypt(wrapped_key, _oaep())
        except ValueError as exc:
            raise KeyUnwrapError("Private key does not match the wrapping key.") from exc
