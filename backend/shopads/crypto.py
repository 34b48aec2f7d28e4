"""
Field-level encryption for shop tokens and partner keys.

Uses Fernet symmetric encryption from the `cryptography` package, keyed by
ENCRYPTION_KEY. Without a key (development) values pass through unchanged.
"""

import logging
from typing import Optional
from cryptography.fernet import Fernet, InvalidToken
from shopads.config import Settings

logger = logging.getLogger(__name__)


class SecretBox:
    """Encrypts secrets before they are written and decrypts them on read."""

    def __init__(self, settings: Settings):
        self._fernet: Optional[Fernet] = None
        key = settings.encryption_key
        if not key:
            if settings.is_production:
                raise RuntimeError(
                    "ENCRYPTION_KEY must be set in production. "
                    "Generate one with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
                )
            logger.warning(
                "ENCRYPTION_KEY not set; shop tokens will be stored in plaintext. "
                "This is acceptable for local development only."
            )
            return
        try:
            self._fernet = Fernet(key.encode())
        except (ValueError, TypeError) as exc:
            raise RuntimeError(f"Invalid ENCRYPTION_KEY: {exc}") from exc

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if plaintext is None or self._fernet is None:
            return plaintext
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        if ciphertext is None or self._fernet is None:
            return ciphertext
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken:
            # Rows written before encryption was enabled
            logger.warning("Failed to decrypt value, returning as-is (may be pre-encryption plaintext).")
            return ciphertext
