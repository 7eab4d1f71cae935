"""
Field-level encryption for sensitive patient attributes.

The persistence adapter calls encrypt_field/decrypt_field explicitly at its
boundary; nothing is encrypted implicitly on save. Tokens are Fernet
(AES-128-CBC + HMAC-SHA256), so tampering with a stored value is detected
on read.
"""

import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from rxgate.app import config

logger = logging.getLogger(__name__)

_fernet: Optional[Fernet] = None


def _load_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        key = config.FIELD_KEY
        if not key:
            # Dev fallback: stable across restarts, never for production data
            logger.warning("RXGATE_FIELD_KEY not set; deriving field key from JWT secret")
            digest = hashlib.sha256(config.JWT_SECRET_KEY.encode("utf-8")).digest()
            key = base64.urlsafe_b64encode(digest).decode("ascii")
        _fernet = Fernet(key.encode("ascii") if isinstance(key, str) else key)
    return _fernet


def encrypt_field(value: Optional[str]) -> Optional[str]:
    """Encrypt a field value; None passes through."""
    if value is None:
        return None
    return _load_fernet().encrypt(value.encode("utf-8")).decode("ascii")


def decrypt_field(token: Optional[str]) -> Optional[str]:
    """
    Decrypt a stored field value.

    Raises:
        ValueError: If the token was tampered with or encrypted under another key
    """
    if token is None:
        return None
    try:
        return _load_fernet().decrypt(token.encode("ascii")).decode("utf-8")
    except InvalidToken:
        raise ValueError("Encrypted field failed integrity check")
