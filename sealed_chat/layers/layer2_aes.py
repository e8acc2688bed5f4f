"""
Layer 2 | SYMMETRIC: AES-256-GCM
================================
Bulk encryption for every payload type: text, images and files.

GCM is authenticated: a wrong key, a flipped bit or a relabelled envelope
(via the associated data) is detected on decryption and reported as
DecryptionError rather than producing garbage plaintext.

Key: 256 bits (32 bytes), fresh per envelope
IV:  128 bits (16 bytes), fresh per envelope, sent in clear
Tag: 128 bits (16 bytes), appended to the ciphertext

Ciphertext format: ciphertext || tag(16)
The IV is not prepended; it travels as its own envelope field.

Dependencies: cryptography >= 41.0
"""

import os
import base64
import binascii
from dataclasses import dataclass, field
from typing import Callable, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import DecryptionError

KEY_SIZE = 32   # 256-bit key
IV_SIZE  = 16   # 128-bit IV
TAG_SIZE = 16


@dataclass(frozen=True)
class SymmetricKeyMaterial:
    """Ephemeral per-envelope key and IV. Only the wrapped key is ever sent."""

    key: bytes = field(repr=False)
    iv:  bytes

    def __post_init__(self):
        if len(self.key) != KEY_SIZE:
            raise ValueError(f"AES-256 key must be {KEY_SIZE} bytes.")
        if len(self.iv) != IV_SIZE:
            raise ValueError(f"IV must be {IV_SIZE} bytes.")


class SymmetricCipher:
    """AES-256-GCM encryption under caller-supplied key material."""

    def __init__(self, random_source: Callable[[int], bytes] = os.urandom):
        self._random_source = random_source

    def new_key(self) -> SymmetricKeyMaterial:
        return SymmetricKeyMaterial(key=self._random_source(KEY_SIZE),
                                    iv=self._random_source(IV_SIZE))

    def encrypt(self, plaintext: bytes, material: SymmetricKeyMaterial,
                aad: Optional[bytes] = None) -> bytes:
        """
        Encrypt and authenticate.
        aad = Additional Authenticated Data (bound to the tag, not encrypted).
        Returns: ciphertext || tag
        """
        return AESGCM(material.key).encrypt(material.iv, plaintext, aad)

    def decrypt(self, ciphertext: bytes, material: SymmetricKeyMaterial,
                aad: Optional[bytes] = None) -> bytes:
        """
        Decrypt and verify the tag.
        Raises DecryptionError if the key is wrong or the data was modified.
        """
        if len(ciphertext) < TAG_SIZE:
            raise DecryptionError("Ciphertext too short.")
        try:
            return AESGCM(material.key).decrypt(material.iv, ciphertext, aad)
        except InvalidTag as exc:
            raise DecryptionError("Authentication failed: wrong key or corrupted ciphertext.") from exc


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(text) -> bytes:
    """Strict base64 decoding. Raises DecryptionError on invalid input."""
    try:
        if isinstance(text, str):
            text = text.encode("ascii")
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise DecryptionError("Invalid base64 data.") from exc
