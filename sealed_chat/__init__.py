"""
sealed_chat
===========
End-to-end encrypted messaging client core.

Hybrid envelope encryption: a fresh AES-256-GCM key protects each message
or file, and the recipient's RSA public key wraps that AES key. Only the
recipient's private key, which never leaves the device, can open it.

Layers:
    1  KEYPAIR     RSA-2048 account keys (PEM)
    2  SYMMETRIC   AES-256-GCM payload encryption
    3  ASYMMETRIC  RSA-OAEP key wrapping
    4  ENVELOPE    hybrid encrypt-for-recipient / decrypt-with-private-key

Client side:
    LazyDecryptionCoordinator   user-triggered, cached batch decryption
    KeyStore                    local private-key storage
    ChatBackend                 server boundary (InMemoryBackend for tests)
    SecureChatClient            registration, sending, conversations

License: Apache 2.0
"""

__version__ = "1.0.0"

from .errors                  import (SealedChatError, KeyGenerationError, KeyWrapError,
                                      KeyUnwrapError, DecryptionError,
                                      EnvelopeDecryptionError, EnvelopeFormatError,
                                      KeyStoreError, AttachmentNotReady, BackendError)
from .layers.layer1_keypair   import KeyPair, KeyPairGenerator
from .layers.layer2_aes       import SymmetricCipher, SymmetricKeyMaterial
from .layers.layer3_rsa       import AsymmetricCipher
from .layers.layer4_envelope  import Envelope, EnvelopeEncoder, PayloadType
from .keystore                import KeyStore, MemoryKeyStore, FileKeyStore
from .lazy                    import (LazyDecryptionCoordinator, IncomingMessage,
                                      MessageState, DecryptionResult)
from .backend                 import ChatBackend, InMemoryBackend, Contact
from .poller                  import MessagePoller
from .client                  import SecureChatClient, Conversation
from .config                  import Settings, configure_logging

__all__ = [
    "SealedChatError",
    "KeyGenerationError",
    "KeyWrapError",
    "KeyUnwrapError",
    "DecryptionError",
    "EnvelopeDecryptionError",
    "EnvelopeFormatError",
    "KeyStoreError",
    "AttachmentNotReady",
    "BackendError",
    "KeyPair",
    "KeyPairGenerator",
    "SymmetricCipher",
    "SymmetricKeyMaterial",
    "AsymmetricCipher",
    "Envelope",
    "EnvelopeEncoder",
    "PayloadType",
    "KeyStore",
    "MemoryKeyStore",
    "FileKeyStore",
    "LazyDecryptionCoordinator",
    "IncomingMessage",
    "MessageState",
    "DecryptionResult",
    "ChatBackend",
    "InMemoryBackend",
    "Contact",
    "MessagePoller",
    "SecureChatClient",
    "Conversation",
    "Settings",
    "configure_logging",
]
