"""
Lazy decryption of incoming message batches.

Polling delivers ciphertext only. Nothing is decrypted until the user asks
for it, either for the whole conversation (decrypt_all) or one message
(request_decrypt). Per message:

    ciphertext -> decrypting -> decrypted | failed

Results are cached by message id. A failure is terminal and is never
retried automatically. Messages sent by the local user skip the machine
(state ``own``): they are wrapped for the recipient and cannot be opened
here.

Image and file messages only have their wrapped key checked during a
batch; ``decrypted`` then means "ready". The bytes are fetched and
decrypted on demand with load_attachment().

All crypto runs on a bounded thread pool. close() cancels pending work and
drops any result that arrives afterwards.
"""

import logging
import threading
from concurrent.futures import Future, InvalidStateError, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .errors import (AttachmentNotReady, EnvelopeDecryptionError, EnvelopeFormatError,
                     KeyUnwrapError, SealedChatError)
from .keystore import KeyStore
from .layers.layer4_envelope import Envelope, EnvelopeEncoder, PayloadType

logger = logging.getLogger(__name__)

FAILED_PLACEHOLDER     = "[Decryption Failed]"
ENCRYPTED_PLACEHOLDER  = "[Encrypted]"
DECRYPTING_PLACEHOLDER = "[Decrypting...]"
OWN_PLACEHOLDER        = "[Sent - encrypted]"
READY_PLACEHOLDERS = {
    PayloadType.IMAGE: "[Image]",
    PayloadType.FILE:  "[File]",
}


class MessageState(str, Enum):
    CIPHERTEXT = "ciphertext"
    DECRYPTING = "decrypting"
    DECRYPTED  = "decrypted"
    FAILED     = "failed"
    OWN        = "own"


@dataclass(frozen=True)
class IncomingMessage:
    """One message as returned by a poll: metadata plus an opaque envelope."""

    message_id:  str
    sender_id:   str
    receiver_id: str
    timestamp:   float
    envelope:    Optional[Envelope]
    blob_ref:    Optional[str] = None

    @property
    def sort_key(self) -> Tuple[float, str]:
        return (self.timestamp, str(self.message_id))

    @classmethod
    def from_wire(cls, message_id: str, sender_id: str, receiver_id: str,
                  timestamp: float, envelope_json, blob_ref: Optional[str] = None
                  ) -> "IncomingMessage":
        """
        Build from a stored JSON envelope. A malformed envelope yields
        ``envelope=None``; the coordinator marks that message failed.
        """
        try:
            envelope = Envelope.from_json(envelope_json)
        except EnvelopeFormatError as exc:
            logger.warning(f"Message {message_id} has a malformed envelope: {exc}")
            envelope = None
        return cls(message_id=message_id, sender_id=sender_id, receiver_id=receiver_id,
                   timestamp=timestamp, envelope=envelope, blob_ref=blob_ref)


@dataclass(frozen=True)
class DecryptionResult:
    state:     MessageState
    plaintext: Optional[str] = field(default=None, repr=False)
    ready:     bool = False


def display_for(message: IncomingMessage, result: DecryptionResult) -> str:
    """Text to show for a message in the given state."""
    if result.state is MessageState.OWN:
        return OWN_PLACEHOLDER
    if result.state is MessageState.CIPHERTEXT:
        return ENCRYPTED_PLACEHOLDER
    if result.state is MessageState.DECRYPTING:
        return DECRYPTING_PLACEHOLDER
    if result.state is MessageState.FAILED:
        return FAILED_PLACEHOLDER
    if message.envelope.type.is_attachment:
        return READY_PLACEHOLDERS[message.envelope.type]
    return result.plaintext


_CIPHERTEXT = DecryptionResult(MessageState.CIPHERTEXT)
_DECRYPTING = DecryptionResult(MessageState.DECRYPTING)
_FAILED     = DecryptionResult(MessageState.FAILED)
_OWN        = DecryptionResult(MessageState.OWN)


class _BatchKey:
    """Reads the private key at most once per batch, drops it when done."""

    def __init__(self, key_store: KeyStore, size: int):
        self._store     = key_store
        self._lock      = threading.Lock()
        self._remaining = size
        self._loaded    = False
        self._key: Optional[str] = None
        self._error: Optional[Exception] = None

    def get(self) -> str:
        with self._lock:
            if not self._loaded:
                self._loaded = True
                try:
                    self._key = self._store.load()
                except Exception as exc:
                    logger.error(f"Cannot read private key: {exc!r}")
                    self._error = exc
                else:
                    if self._key is None:
                        logger.error("No private key in the key store; batch will fail")
            if self._error is not None:
                raise KeyUnwrapError("Private key could not be read.") from self._error
            if self._key is None:
                raise KeyUnwrapError("No private key available.")
            return self._key

    def release(self):
        with self._lock:
            self._remaining -= 1
            if self._remaining <= 0:
                self._key = None


class LazyDecryptionCoordinator:
    """Per-conversation cache of user-triggered decryptions."""

    def __init__(self, local_user_id: str, encoder: EnvelopeEncoder,
                 key_store: KeyStore, max_workers: int = 4,
                 executor: Optional[ThreadPoolExecutor] = None):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.local_user_id = local_user_id
        self._encoder      = encoder
        self._key_store    = key_store
        self._owns_executor = executor is None
        self._executor     = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="sealed-chat-decrypt")
        self._lock         = threading.RLock()
        self._messages: Dict[str, IncomingMessage]  = {}
        self._results:  Dict[str, DecryptionResult] = {}
        self._pending:  Set[Future] = set()
        self._closed       = False

    # ── state ───────────────────────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self):
        if self._closed:
            raise RuntimeError("Coordinator is closed.")

    def ingest(self, messages: Iterable[IncomingMessage]) -> int:
        """Merge a poll result. Returns how many messages were new."""
        added = 0
        with self._lock:
            if self._closed:
                return 0
            for message in messages:
                if message.message_id in self._messages:
                    continue
                self._messages[message.message_id] = message
                if message.sender_id == self.local_user_id:
                    self._results[message.message_id] = _OWN
                elif message.envelope is None:
                    self._results[message.message_id] = _FAILED
                else:
                    self._results[message.message_id] = _CIPHERTEXT
                added += 1
        if added:
            logger.debug(f"Ingested {added} new message(s)")
        return added

    def state(self, message_id: str) -> MessageState:
        with self._lock:
            return self._results[message_id].state

    def result(self, message_id: str) -> DecryptionResult:
        with self._lock:
            return self._results[message_id]

    def messages(self) -> List[Tuple[IncomingMessage, DecryptionResult]]:
        """Messages in display order (timestamp, then id) with their state."""
        with self._lock:
            ordered = sorted(self._messages.values(), key=lambda m: m.sort_key)
            return [(m, self._results[m.message_id]) for m in ordered]

    def display_text(self, message_id: str) -> str:
        with self._lock:
            message = self._messages[message_id]
            result  = self._results[message_id]
        return display_for(message, result)

    # ── decryption ──────────────────────────────────────────────────────────

    def decrypt_all(self) -> Future:
        """
        Decrypt every message still in ``ciphertext`` state.
        Returns a Future resolving to the number of messages resolved.
        Already decrypted, failed or in-flight messages are left alone.
        """
        with self._lock:
            self._ensure_open()
            ids = [mid for mid, r in self._results.items()
                   if r.state is MessageState.CIPHERTEXT]
            for mid in ids:
                self._results[mid] = _DECRYPTING
            return self._dispatch(ids)

    def request_decrypt(self, message_id: str) -> Future:
        """Decrypt one message if it has not been attempted yet."""
        with self._lock:
            self._ensure_open()
            if self._results[message_id].state is not MessageState.CIPHERTEXT:
                return self._dispatch([])
            self._results[message_id] = _DECRYPTING
            return self._dispatch([message_id])

    def _dispatch(self, ids: List[str]) -> Future:
        batch = Future()
        if not ids:
            batch.set_result(0)
            return batch

        logger.info(f"Decrypting batch of {len(ids)} message(s)")
        batch_key = _BatchKey(self._key_store, len(ids))
        counter   = {"left": len(ids), "resolved": 0}
        counter_lock = threading.Lock()

        def _one_done(future: Future):
            self._forget(future)
            batch_key.release()
            with counter_lock:
                counter["left"] -= 1
                if not future.cancelled() and future.exception() is None and future.result():
                    counter["resolved"] += 1
                finished = counter["left"] == 0
            if finished:
                try:
                    batch.set_result(counter["resolved"])
                except InvalidStateError:
                    pass  # cancelled by close()

        self._pending.add(batch)
        batch.add_done_callback(self._forget)
        for mid in ids:
            future = self._executor.submit(self._decrypt_one, mid, batch_key)
            self._pending.add(future)
            future.add_done_callback(_one_done)
        return batch

    def _forget(self, future: Future):
        with self._lock:
            self._pending.discard(future)

    def _decrypt_one(self, message_id: str, batch_key: _BatchKey) -> bool:
        with self._lock:
            if self._closed:
                return False
            message = self._messages[message_id]

        envelope = message.envelope
        try:
            private_key = batch_key.get()
            if envelope.type.is_attachment:
                self._encoder.check_key(envelope, private_key)
                result = DecryptionResult(MessageState.DECRYPTED, ready=True)
            else:
                text   = self._encoder.open_text(envelope, private_key)
                result = DecryptionResult(MessageState.DECRYPTED, plaintext=text)
        except SealedChatError as exc:
            logger.warning(f"Message {message_id} could not be decrypted: {exc}")
            result = _FAILED
        except Exception:
            logger.exception(f"Unexpected error decrypting message {message_id}")
            result = _FAILED

        with self._lock:
            if self._closed:
                return False
            self._results[message_id] = result
        return result.state is MessageState.DECRYPTED

    # ── attachments ─────────────────────────────────────────────────────────

    def load_attachment(self, message_id: str,
                        fetch_blob: Callable[[str], bytes]) -> Future:
        """
        Fetch and decrypt an image/file once its readiness flag is set.
        The Future resolves to the original bytes, or raises
        EnvelopeDecryptionError (the message is then marked failed).
        """
        with self._lock:
            self._ensure_open()
            message = self._messages[message_id]
            result  = self._results[message_id]
            if not (result.state is MessageState.DECRYPTED and result.ready):
                raise AttachmentNotReady(f"Message {message_id} is not ready to open.")

        def _mark_failed():
            with self._lock:
                if not self._closed:
                    self._results[message_id] = _FAILED

        def _load() -> bytes:
            try:
                blob = fetch_blob(message.blob_ref) if message.blob_ref else message.envelope.ciphertext
                private_key = self._key_store.load()
                if private_key is None:
                    raise EnvelopeDecryptionError("No private key available.")
                return self._encoder.open_file(message.envelope.with_ciphertext(blob), private_key)
            except EnvelopeDecryptionError:
                _mark_failed()
                raise
            except Exception as exc:
                logger.exception(f"Cannot load attachment {message_id}")
                _mark_failed()
                raise EnvelopeDecryptionError(f"Attachment {message_id} could not be loaded.") from exc

        with self._lock:
            future = self._executor.submit(_load)
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    # ── teardown ────────────────────────────────────────────────────────────

    def close(self):
        """Cancel pending work and clear the cache. Safe to call twice."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            pending = list(self._pending)
            self._pending.clear()
            self._messages.clear()
            self._results.clear()
        for future in pending:
            future.cancel()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        logger.debug(f"Coordinator closed, {len(pending)} pending task(s) cancelled")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False
