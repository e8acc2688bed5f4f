"""
Layer 4 | ENVELOPE: RSA-OAEP + AES-256-GCM hybrid encryption
============================================================
Composes layers 2 and 3 into "encrypt for recipient" and "decrypt with my
private key".

Every outgoing message or file gets a fresh AES-256 key and IV. The payload
is encrypted with AES-GCM, the AES key is wrapped with the recipient's RSA
public key, and the four pieces travel together as an Envelope:

    ciphertext   AES-GCM ciphertext || tag
    wrapped_key  RSA-OAEP(recipient_public_key, aes_key)
    iv           16-byte GCM IV (not secret)
    type         text | image | file

The wire version and payload type are bound into the GCM tag as associated
data, so relabelling an envelope makes it undecryptable.

Wire format (JSON, standard padded base64):

    {"v": 1, "type": "text", "ciphertext": "...", "wrapped_key": "...", "iv": "..."}

Self-messages: the key is wrapped only for the recipient. The sender
cannot open their own sent envelopes; clients show a placeholder instead.

Files and images are base64-encoded before encryption (seal_file) and
decoded after decryption (open_file).

Dependencies: cryptography >= 41.0
"""

import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from ..errors import (DecryptionError, EnvelopeDecryptionError,
                      EnvelopeFormatError, KeyUnwrapError)
from .layer2_aes import (IV_SIZE, KEY_SIZE, SymmetricCipher,
                         SymmetricKeyMaterial, b64decode, b64encode)
from .layer3_rsa import AsymmetricCipher, PemKey

logger = logging.getLogger(__name__)

WIRE_VERSION = 1


class PayloadType(str, Enum):
    TEXT  = "text"
    IMAGE = "image"
    FILE  = "file"

    @property
    def is_attachment(self) -> bool:
        return self is not PayloadType.TEXT


def _aad(payload_type: PayloadType) -> bytes:
    return f"sealed-chat/v{WIRE_VERSION}/{payload_type.value}".encode("ascii")


@dataclass(frozen=True)
class Envelope:
    ciphertext:  bytes = field(repr=False)
    wrapped_key: bytes = field(repr=False)
    iv:          bytes
    type:        PayloadType

    def __post_init__(self):
        if not isinstance(self.type, PayloadType):
            object.__setattr__(self, "type", PayloadType(self.type))

    def with_ciphertext(self, ciphertext: bytes) -> "Envelope":
        """Copy carrying a separately downloaded ciphertext blob."""
        return replace(self, ciphertext=ciphertext)

    def header(self) -> "Envelope":
        """Copy without ciphertext, for listing attachments."""
        return replace(self, ciphertext=b"")

    def to_dict(self) -> dict:
        return {
            "v":           WIRE_VERSION,
            "type":        self.type.value,
            "ciphertext":  b64encode(self.ciphertext),
            "wrapped_key": b64encode(self.wrapped_key),
            "iv":          b64encode(self.iv),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Envelope":
        if not isinstance(data, dict):
            raise EnvelopeFormatError("Envelope must be a JSON object.")
        if data.get("v") != WIRE_VERSION:
            raise EnvelopeFormatError(f"Unsupported envelope version: {data.get('v')!r}")
        try:
            payload_type = PayloadType(data["type"])
            ciphertext   = b64decode(data["ciphertext"])
            wrapped_key  = b64decode(data["wrapped_key"])
            iv           = b64decode(data["iv"])
        except KeyError as exc:
            raise EnvelopeFormatError(f"Envelope is missing field {exc.args[0]!r}.") from exc
        except (ValueError, DecryptionError) as exc:
            raise EnvelopeFormatError("Envelope field is malformed.") from exc
        if len(iv) != IV_SIZE:
            raise EnvelopeFormatError(f"IV must be {IV_SIZE} bytes.")
        return cls(ciphertext=ciphertext, wrapped_key=wrapped_key, iv=iv, type=payload_type)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text) -> "Envelope":
        try:
            data = json.loads(text)
        except (ValueError, TypeError) as exc:
            raise EnvelopeFormatError("Envelope is not valid JSON.") from exc
        return cls.from_dict(data)


class EnvelopeEncoder:
    """Hybrid RSA-OAEP + AES-256-GCM envelope encryption."""

    def __init__(self, symmetric: Optional[SymmetricCipher] = None,
                 asymmetric: Optional[AsymmetricCipher] = None):
        self._symmetric  = symmetric or SymmetricCipher()
        self._asymmetric = asymmetric or AsymmetricCipher()

    def encrypt_for_recipient(self, payload: bytes, payload_type: PayloadType,
                              recipient_public_key: PemKey) -> Envelope:
        """
        Encrypt an arbitrary-length payload.
        Only the holder of the matching private key can open the result.
        Raises KeyWrapError if the public key is unusable.
        """
        payload_type = PayloadType(payload_type)

        # 1. Fresh AES-256 key + IV for this envelope only
        material = self._symmetric.new_key()

        # 2. Encrypt the payload with AES-256-GCM
        ciphertext = self._symmetric.encrypt(payload, material, _aad(payload_type))

        # 3. Wrap the AES key with RSA-OAEP
        wrapped_key = self._asymmetric.wrap(material.key, recipient_public_key)

        logger.debug(f"Sealed {payload_type.value} envelope: "
                     f"payload={len(payload)}B ciphertext={len(ciphertext)}B")
        return Envelope(ciphertext=ciphertext, wrapped_key=wrapped_key,
                        iv=material.iv, type=payload_type)

    def _unwrap(self, envelope: Envelope, private_key: PemKey) -> SymmetricKeyMaterial:
        key = self._asymmetric.unwrap(envelope.wrapped_key, private_key)
        if len(key) != KEY_SIZE:
            raise KeyUnwrapError("Unwrapped key has the wrong length.")
        return SymmetricKeyMaterial(key=key, iv=envelope.iv)

    def decrypt_with_private_key(self, envelope: Envelope, private_key: PemKey) -> bytes:
        """
        Open an envelope produced by encrypt_for_recipient().
        Raises EnvelopeDecryptionError; the cause is KeyUnwrapError or DecryptionError.
        """
        try:
            material = self._unwrap(envelope, private_key)
            return self._symmetric.decrypt(envelope.ciphertext, material, _aad(envelope.type))
        except (KeyUnwrapError, DecryptionError) as exc:
            raise EnvelopeDecryptionError(f"Cannot decrypt {envelope.type.value} envelope.") from exc
        except ValueError as exc:
            # bad IV length on a hand-built envelope
            raise EnvelopeDecryptionError("Envelope is malformed.") from exc

    def check_key(self, envelope: Envelope, private_key: PemKey) -> None:
        """Unwrap only. Confirms the envelope is addressed to this private key."""
        try:
            self._unwrap(envelope, private_key)
        except (KeyUnwrapError, ValueError) as exc:
            raise EnvelopeDecryptionError("Envelope is not addressed to this key.") from exc

    # ── text ────────────────────────────────────────────────────────────────

    def seal_text(self, text: str, recipient_public_key: PemKey) -> Envelope:
        return self.encrypt_for_recipient(text.encode("utf-8"), PayloadType.TEXT,
                                          recipient_public_key)

    def open_text(self, envelope: Envelope, private_key: PemKey) -> str:
        plaintext = self.decrypt_with_private_key(envelope, private_key)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EnvelopeDecryptionError("Decrypted text is not valid UTF-8.") from exc

    # ── files / images ──────────────────────────────────────────────────────

    def seal_file(self, data: bytes, recipient_public_key: PemKey,
                  payload_type: PayloadType = PayloadType.FILE) -> Envelope:
        payload_type = PayloadType(payload_type)
        if not payload_type.is_attachment:
            raise ValueError("seal_file() needs an image or file payload type.")
        return self.encrypt_for_recipient(b64encode(data).encode("ascii"), payload_type,
                                          recipient_public_key)

    def open_file(self, envelope: Envelope, private_key: PemKey) -> bytes:
        encoded = self.decrypt_with_private_key(envelope, private_key)
        try:
            return b64decode(encoded)
        except DecryptionError as exc:
            raise EnvelopeDecryptionError("Decrypted file payload is not valid base64.") from exc
