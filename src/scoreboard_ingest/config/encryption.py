"""Fernet encryption for the vision API key stored in the settings row.

Falls back to a ``plain:`` prefix when no encryption key is configured so
that development databases keep working without extra setup.
"""

from __future__ import annotations

import os

import structlog
from cryptography.fernet import Fernet

logger = structlog.get_logger()

_PLAIN_PREFIX = "plain:"
_KEY_ENV = "SCOREBOARD_ENCRYPTION_KEY"


def get_fernet() -> Fernet | None:
    """Return a Fernet instance from ``SCOREBOARD_ENCRYPTION_KEY``, or ``None``."""
    key = os.environ.get(_KEY_ENV, "")
    if not key:
        return None
    return Fernet(key.encode())


def encrypt_value(value: str) -> str:
    """Encrypt *value*, or store it behind the ``plain:`` prefix without a key."""
    fernet = get_fernet()
    if fernet is None:
        logger.warning("encryption_key_not_set", hint=f"Set {_KEY_ENV} for production use")
        return f"{_PLAIN_PREFIX}{value}"
    return fernet.encrypt(value.encode()).decode()


def decrypt_value(token: str) -> str:
    """Reverse :func:`encrypt_value`.

    Raises:
        RuntimeError: The token is encrypted but no key is configured.
    """
    if token.startswith(_PLAIN_PREFIX):
        return token[len(_PLAIN_PREFIX):]
    fernet = get_fernet()
    if fernet is None:
        raise RuntimeError(
            f"Cannot decrypt value: {_KEY_ENV} is not set but the stored token is not plain-text."
        )
    return fernet.decrypt(token.encode()).decode()
