"""
Boundary to the chat server.

ChatBackend is the request/response surface the client needs: account
registration, public-key lookup, opaque message and blob storage, and
message listing. The server never sees plaintext or private keys.

InMemoryBackend keeps everything in process. It stores envelopes in their
JSON wire form, exactly as a remote server would receive them.
"""

import os
import time
import uuid
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from cryptography.hazmat.primitives import constant_time, hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import BackendError
from .lazy import IncomingMessage
from .layers.layer4_envelope import Envelope, PayloadType

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 200_000


@dataclass(frozen=True)
class Contact:
    user_id: str
    email:   str


class ChatBackend(ABC):

    @abstractmethod
    def register(self, email: str, password: str, public_key: str) -> str:
        """Create an account and publish its public key. Returns the user id."""

    @abstractmethod
    def login(self, email: str, password: str) -> str:
        ...

    @abstractmethod
    def get_public_key(self, user_id: str) -> str:
        ...

    @abstractmethod
    def list_users(self) -> List[Contact]:
        ...

    @abstractmethod
    def send_message(self, sender_id: str, receiver_id: str, envelope: Envelope,
                     blob_ref: Optional[str] = None) -> str:
        """Store an envelope. Returns the message id."""

    @abstractmethod
    def upload_blob(self, sender_id: str, receiver_id: str, ciphertext: bytes,
                    payload_type: PayloadType, filename: str) -> str:
        """Store attachment ciphertext. Returns a reference for download_blob()."""

    @abstractmethod
    def download_blob(self, blob_ref: str) -> bytes:
        ...

    @abstractmethod
    def fetch_messages(self, user_id: str, contact_id: str) -> List[IncomingMessage]:
        """All messages between two users, in no particular order."""


def _hash_password(password: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt,
                     iterations=PBKDF2_ITERATIONS)
    return kdf.derive(password.encode("utf-8"))


@dataclass
class _Account:
    user_id:       str
    email:         str
    salt:          bytes
    password_hash: bytes
    public_key:    str


@dataclass(frozen=True)
class _StoredMessage:
    message_id:    str
    sender_id:     str
    receiver_id:   str
    timestamp:     float
    envelope_json: str
    blob_ref:      Optional[str]


class InMemoryBackend(ChatBackend):
    """Thread-safe in-process server."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock    = clock
        self._lock     = threading.Lock()
        self._accounts: Dict[str, _Account] = {}
        self._by_email: Dict[str, str] = {}
        self._messages: List[_StoredMessage] = []
        self._blobs:    Dict[str, bytes] = {}

    def _account(self, user_id: str) -> _Account:
        try:
            return self._accounts[user_id]
        except KeyError:
            raise BackendError(f"Unknown user: {user_id}") from None

    def register(self, email: str, password: str, public_key: str) -> str:
        email = email.strip().lower()
        if not email or not password:
            raise BackendError("Email and password are required.")
        salt = os.urandom(16)
        account = _Account(user_id=uuid.uuid4().hex, email=email, salt=salt,
                           password_hash=_hash_password(password, salt),
                           public_key=public_key)
        with self._lock:
            if email in self._by_email:
                raise BackendError(f"Email already registered: {email}")
            self._accounts[account.user_id] = account
            self._by_email[email] = account.user_id
        logger.info(f"Registered user {account.user_id}")
        return account.user_id

    def login(self, email: str, password: str) -> str:
        with self._lock:
            user_id = self._by_email.get(email.strip().lower())
            account = self._accounts.get(user_id) if user_id else None
        if account is None:
            raise BackendError("Invalid credentials.")
        if not constant_time.bytes_eq(_hash_password(password, account.salt),
                                      account.password_hash):
            raise BackendError("Invalid credentials.")
        return account.user_id

    def get_public_key(self, user_id: str) -> str:
        with self._lock:
            return self._account(user_id).public_key

    def list_users(self) -> List[Contact]:
        with self._lock:
            return [Contact(a.user_id, a.email) for a in self._accounts.values()]

    def send_message(self, sender_id: str, receiver_id: str, envelope: Envelope,
                     blob_ref: Optional[str] = None) -> str:
        stored = _StoredMessage(message_id=uuid.uuid4().hex, sender_id=sender_id,
                                receiver_id=receiver_id, timestamp=self._clock(),
                                envelope_json=envelope.to_json(), blob_ref=blob_ref)
        with self._lock:
            self._account(sender_id)
            self._account(receiver_id)
            if blob_ref is not None and blob_ref not in self._blobs:
                raise BackendError(f"Unknown blob: {blob_ref}")
            self._messages.append(stored)
        return stored.message_id

    def upload_blob(self, sender_id: str, receiver_id: str, ciphertext: bytes,
                    payload_type: PayloadType, filename: str) -> str:
        blob_ref = f"{PayloadType(payload_type).value}/{uuid.uuid4().hex}/{os.path.basename(filename)}"
        with self._lock:
            self._account(sender_id)
            self._account(receiver_id)
            self._blobs[blob_ref] = bytes(ciphertext)
        logger.debug(f"Stored blob {blob_ref} ({len(ciphertext)}B)")
        return blob_ref

    def download_blob(self, blob_ref: str) -> bytes:
        with self._lock:
            try:
                return self._blobs[blob_ref]
            except KeyError:
                raise BackendError(f"Unknown blob: {blob_ref}") from None

    def fetch_messages(self, user_id: str, contact_id: str) -> List[IncomingMessage]:
        pair = {user_id, contact_id}
        with self._lock:
            stored = [m for m in self._messages if {m.sender_id, m.receiver_id} == pair]
        return [
            IncomingMessage.from_wire(m.message_id, m.sender_id, m.receiver_id,
                                      m.timestamp, m.envelope_json, m.blob_ref)
            for m in stored
        ]
