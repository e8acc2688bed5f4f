"""
Error taxonomy for sealed_chat.

Key generation failures are fatal (registration cannot proceed). Everything
else is recoverable and is turned into a per-message failure state by the
lazy decryption coordinator.
"""


class SealedChatError(Exception):
    """Base class for every error raised by this package."""


class KeyGenerationError(SealedChatError):
    """The secure random source is unavailable or RSA generation failed."""


class KeyWrapError(SealedChatError):
    """A symmetric key could not be wrapped under the recipient's public key."""


class KeyUnwrapError(SealedChatError):
    """A wrapped key could not be recovered with the given private key."""


class DecryptionError(SealedChatError):
    """Symmetric decryption failed: wrong key, tampered or truncated data."""


class EnvelopeDecryptionError(SealedChatError):
    """An envelope could not be opened. ``__cause__`` holds the reason."""


class EnvelopeFormatError(EnvelopeDecryptionError):
    """Serialized envelope is malformed."""


class KeyStoreError(SealedChatError):
    pass


class AttachmentNotReady(SealedChatError):
    pass


class BackendError(SealedChatError):
    """Raised by the chat backend for unknown users, bad credentials, etc."""
