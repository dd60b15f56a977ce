"""
Encryption for tenant secrets (generation API keys, channel tokens).
Fernet symmetric encryption with the configured ENCRYPTION_KEY.
"""
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def _get_fernet():
    from cryptography.fernet import Fernet
    from reengage.config import get_settings

    key = get_settings().encryption_key
    if not key:
        return None
    return Fernet(key.encode() if isinstance(key, str) else key)


def encrypt_value(plaintext: str) -> str:
    """Encrypt a secret. Stored as-is when no key is configured."""
    if not plaintext:
        return plaintext

    fernet = _get_fernet()
    if fernet is None:
        logger.warning("ENCRYPTION_KEY not configured - storing secret unencrypted")
        return plaintext
    return fernet.encrypt(plaintext.encode()).decode()


def decrypt_value(encrypted: Optional[str]) -> Optional[str]:
    """
    Decrypt a secret. Values that are not Fernet tokens are returned as-is
    (rows written before encryption was enabled).
    """
    if not encrypted:
        return encrypted

    fernet = _get_fernet()
    if fernet is None:
        return encrypted

    from cryptography.fernet import InvalidToken
    try:
        return fernet.decrypt(encrypted.encode()).decode()
    except InvalidToken:
        return encrypted
