"""
Client facade: registration, sending, and per-contact conversations.

Registration generates the account keypair, stores the private key locally
and publishes only the public key. Sending fetches the recipient's public
key and seals the payload for them. Conversations poll for new envelopes
and decrypt lazily when asked.
"""

import logging
from concurrent.futures import Future
from typing import List, Optional

from .backend import ChatBackend, Contact
from .config import Settings
from .errors import BackendError
from .keystore import KeyStore
from .lazy import IncomingMessage, LazyDecryptionCoordinator, display_for
from .layers.layer1_keypair import KeyPairGenerator
from .layers.layer4_envelope import EnvelopeEncoder, PayloadType
from .poller import MessagePoller

logger = logging.getLogger(__name__)


class SecureChatClient:

    def __init__(self, backend: ChatBackend, key_store: KeyStore,
                 settings: Optional[Settings] = None,
                 encoder: Optional[EnvelopeEncoder] = None):
        self.settings  = settings or Settings()
        self._backend  = backend
        self._keys     = key_store
        self._encoder  = encoder or EnvelopeEncoder()
        self.user_id: Optional[str] = None

    def register(self, email: str, password: str,
                 generator: Optional[KeyPairGenerator] = None) -> str:
        """
        Create an account. KeyGenerationError propagates: without a keypair
        the account cannot exist.
        """
        generator = generator or KeyPairGenerator(self.settings.rsa_key_size)
        keypair = generator.generate()
        self._keys.save(keypair.private_key)
        self.user_id = self._backend.register(email, password, keypair.public_key)
        logger.info(f"Account {self.user_id} registered")
        return self.user_id

    def login(self, email: str, password: str) -> str:
        self.user_id = self._backend.login(email, password)
        if self._keys.load() is None:
            logger.warning("Logged in without a private key on this device; "
                           "incoming messages will not decrypt")
        return self.user_id

    def _require_login(self) -> str:
        if self.user_id is None:
            raise BackendError("Not logged in.")
        return self.user_id

    def contacts(self) -> List[Contact]:
        me = self._require_login()
        return [c for c in self._backend.list_users() if c.user_id != me]

    def send_text(self, contact_id: str, text: str) -> str:
        me = self._require_login()
        envelope = self._encoder.seal_text(text, self._backend.get_public_key(contact_id))
        return self._backend.send_message(me, contact_id, envelope)

    def send_attachment(self, contact_id: str, data: bytes, filename: str,
                        payload_type: PayloadType = PayloadType.FILE) -> str:
        """Upload the ciphertext as a blob, then send the envelope header."""
        me = self._require_login()
        envelope = self._encoder.seal_file(data, self._backend.get_public_key(contact_id),
                                           payload_type)
        blob_ref = self._backend.upload_blob(me, contact_id, envelope.ciphertext,
                                             envelope.type, filename)
        return self._backend.send_message(me, contact_id, envelope.header(), blob_ref=blob_ref)

    def open_conversation(self, contact_id: str) -> "Conversation":
        return Conversation(self, contact_id)


class Conversation:
    """
    One open chat screen. Owns a poller and a decryption cache; close()
    tears both down.
    """

    def __init__(self, client: SecureChatClient, contact_id: str):
        self.contact_id = contact_id
        self._client    = client
        self._backend   = client._backend
        me              = client._require_login()
        self.coordinator = LazyDecryptionCoordinator(
            me, client._encoder, client._keys,
            max_workers=client.settings.decrypt_workers)
        self._poller = MessagePoller(self._fetch, self.coordinator.ingest,
                                     interval=client.settings.poll_interval)

    def _fetch(self) -> List[IncomingMessage]:
        return self._backend.fetch_messages(self.coordinator.local_user_id, self.contact_id)

    def start(self) -> None:
        """Start background polling."""
        self._poller.start()

    def refresh(self) -> bool:
        return self._poller.refresh_now()

    def decrypt_all(self) -> Future:
        return self.coordinator.decrypt_all()

    def decrypt(self, message_id: str) -> Future:
        return self.coordinator.request_decrypt(message_id)

    def load_attachment(self, message_id: str) -> Future:
        return self.coordinator.load_attachment(message_id, self._backend.download_blob)

    def messages(self) -> List[tuple]:
        return self.coordinator.messages()

    def render(self) -> List[str]:
        """Display lines, oldest first."""
        lines = []
        for message, result in self.coordinator.messages():
            who = "me" if message.sender_id == self.coordinator.local_user_id else "them"
            lines.append(f"{who}: {display_for(message, result)}")
        return lines

    def close(self) -> None:
        self._poller.stop()
        self.coordinator.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
