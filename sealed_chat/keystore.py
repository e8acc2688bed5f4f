"""
Local private-key storage.

The private key is saved once at registration and read back whenever a
decrypt batch needs it. Nothing in this package caches it beyond a single
batch or attachment load.
"""

import os
import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional

from .errors import KeyStoreError

logger = logging.getLogger(__name__)


class KeyStore(ABC):
    """Single-slot store for the account's private key (PEM text)."""

    @abstractmethod
    def save(self, private_key: str) -> None:
        ...

    @abstractmethod
    def load(self) -> Optional[str]:
        """Return the stored key, or None if nothing has been saved."""

    @abstractmethod
    def clear(self) -> None:
        ...


class MemoryKeyStore(KeyStore):
    """Process-local store. Forgotten when the process exits."""

    def __init__(self):
        self._lock = threading.Lock()
        self._key: Optional[str] = None

    def save(self, private_key: str) -> None:
        with self._lock:
            self._key = private_key

    def load(self) -> Optional[str]:
        with self._lock:
            return self._key

    def clear(self) -> None:
        with self._lock:
            self._key = None


class FileKeyStore(KeyStore):
    """
    PEM file readable only by the owning user (0600, parent directory 0700).
    """

    def __init__(self, path: str):
        self.path = os.path.expanduser(path)

    def save(self, private_key: str) -> None:
        directory = os.path.dirname(self.path)
        try:
            if directory:
                os.makedirs(directory, mode=0o700, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="ascii") as f:
                f.write(private_key)
            os.chmod(self.path, 0o600)
        except OSError as exc:
            raise KeyStoreError(f"Cannot write private key to {self.path}") from exc
        logger.info(f"Private key saved to {self.path}")

    def load(self) -> Optional[str]:
        try:
            with open(self.path, "r", encoding="ascii") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise KeyStoreError(f"Cannot read private key from {self.path}") from exc

    def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise KeyStoreError(f"Cannot remove {self.path}") from exc
