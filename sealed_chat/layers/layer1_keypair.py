"""
Layer 1 | KEYPAIR: RSA-2048 account keys
========================================
One RSA keypair per account, generated once at registration.

The public key is handed to the backend during registration; the private
key goes straight into the local key store and never leaves the device.

Both halves are carried as PEM text so they can be stored and transmitted
as plain strings:
    public  -> SubjectPublicKeyInfo
    private -> PKCS8, unencrypted (the key store is responsible for at-rest
               protection)

Secure randomness: the caller may inject ``random_source``. It is probed
before generation; a source that raises or returns short output fails with
KeyGenerationError instead of silently producing weak keys.

Dependencies: cryptography >= 41.0
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Callable

from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives import serialization

from ..errors import KeyGenerationError

logger = logging.getLogger(__name__)

MIN_KEY_SIZE = 2048
PROBE_BYTES  = 32


@dataclass(frozen=True)
class KeyPair:
    public_key:  str
    private_key: str = field(repr=False)


class KeyPairGenerator:
    """RSA keypair generation with an explicit secure random source."""

    def __init__(self, key_size: int = MIN_KEY_SIZE,
                 random_source: Callable[[int], bytes] = os.urandom):
        if key_size < MIN_KEY_SIZE:
            raise ValueError(f"RSA key size must be at least {MIN_KEY_SIZE} bits.")
        self.key_size       = key_size
        self._random_source = random_source

    def _check_random_source(self):
        try:
            sample = self._random_source(PROBE_BYTES)
        except Exception as exc:
            raise KeyGenerationError("Secure random source is unavailable.") from exc
        if not isinstance(sample, (bytes, bytearray)) or len(sample) != PROBE_BYTES:
            raise KeyGenerationError("Secure random source returned malformed output.")

    def generate(self) -> KeyPair:
        """Generate a fresh keypair. Raises KeyGenerationError on failure."""
        self._check_random_source()
        try:
            private_key = rsa.generate_private_key(
                public_exponent=65537,
                key_size=self.key_size,
            )
        except Exception as exc:
            raise KeyGenerationError(f"RSA-{self.key_size} generation failed.") from exc

        public_pem = private_key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo
        )
        private_pem = private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption()
        )
        logger.debug(f"Generated RSA-{self.key_size} keypair")
        return KeyPair(public_key=public_pem.decode("ascii"),
                       private_key=private_pem.decode("ascii"))
