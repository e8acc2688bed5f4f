"""
Runtime settings, read from the environment (and an optional .env file).

    SEALED_CHAT_LOG_LEVEL        INFO
    SEALED_CHAT_RSA_KEY_SIZE     2048
    SEALED_CHAT_DECRYPT_WORKERS  4
    SEALED_CHAT_POLL_INTERVAL    2.0   seconds between message refreshes
    SEALED_CHAT_KEY_FILE         ~/.sealed_chat/private_key.pem
"""

import os
import logging
from dataclasses import dataclass

from dotenv import load_dotenv

from .layers.layer1_keypair import MIN_KEY_SIZE

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

DEFAULT_KEY_FILE = os.path.join("~", ".sealed_chat", "private_key.pem")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not an integer, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not a number, using {default}")
        return default


@dataclass(frozen=True)
class Settings:
    log_level:       str   = "INFO"
    rsa_key_size:    int   = 2048
    decrypt_workers: int   = 4
    poll_interval:   float = 2.0
    key_file:        str   = DEFAULT_KEY_FILE

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """Build settings from SEALED_CHAT_* variables."""
        if dotenv:
            load_dotenv()
        workers = _env_int("SEALED_CHAT_DECRYPT_WORKERS", cls.decrypt_workers)
        if workers < 1:
            logger.warning("SEALED_CHAT_DECRYPT_WORKERS must be >= 1, using 1")
            workers = 1
        interval = _env_float("SEALED_CHAT_POLL_INTERVAL", cls.poll_interval)
        if interval <= 0:
            logger.warning(f"SEALED_CHAT_POLL_INTERVAL must be positive, using {cls.poll_interval}")
            interval = cls.poll_interval
        key_size = _env_int("SEALED_CHAT_RSA_KEY_SIZE", cls.rsa_key_size)
        if key_size < MIN_KEY_SIZE:
            logger.warning(f"SEALED_CHAT_RSA_KEY_SIZE must be >= {MIN_KEY_SIZE}, using {MIN_KEY_SIZE}")
            key_size = MIN_KEY_SIZE
        return cls(
            log_level=os.getenv("SEALED_CHAT_LOG_LEVEL", cls.log_level).upper(),
            rsa_key_size=key_size,
            decrypt_workers=workers,
            poll_interval=interval,
            key_file=os.path.expanduser(os.getenv("SEALED_CHAT_KEY_FILE", DEFAULT_KEY_FILE)),
        )


def configure_logging(level: str = "INFO") -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)
