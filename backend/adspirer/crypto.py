"""
Field-level encryption for OAuth tokens stored at rest.

Fernet symmetric encryption from the `cryptography` package, keyed by ENCRYPTION_KEY.
Without a key (development), values pass through unchanged.
"""

import logging
from cryptography.fernet import Fernet, InvalidToken
from adspirer.config import get_settings

logger = logging.getLogger(__name__)

_fernet = None
_NO_KEY_WARNING_EMITTED = False


def _get_fernet() -> Fernet | None:
    """Lazy-init the Fernet instance from the configured key."""
    global _fernet, _NO_KEY_WARNING_EMITTED
    if _fernet is not None:
        return _fernet

    settings = get_settings()
    key = settings.encryption_key

    if not key:
        if settings.is_production:
            raise RuntimeError("ENCRYPTION_KEY must be set in production.")
        if not _NO_KEY_WARNING_EMITTED:
            logger.warning("ENCRYPTION_KEY not set, OAuth tokens will be stored in plaintext.")
            _NO_KEY_WARNING_EMITTED = True
        return None

    try:
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
    except Exception as exc:
        raise RuntimeError(f"Invalid ENCRYPTION_KEY: {exc}") from exc

    return _fernet


def reset_cipher() -> None:
    """Forget the cached cipher so a changed ENCRYPTION_KEY takes effect."""
    global _fernet
    _fernet = None


def encrypt_value(plaintext: str | None) -> str | None:
    if plaintext is None:
        return None
    f = _get_fernet()
    if f is None:
        return plaintext
    return f.encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str | None) -> str | None:
    if ciphertext is None:
        return None
    f = _get_fernet()
    if f is None:
        return ciphertext
    try:
        return f.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        # Stored before encryption was enabled
        logger.warning("Failed to decrypt value, returning as-is.")
        return ciphertext
