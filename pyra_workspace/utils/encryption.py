"""Symmetric encryption for secrets stored in the database.

Webhook signing secrets and settings flagged ``encrypted`` (SMTP password)
are stored as Fernet tokens. The key comes from ``PYRA_ENCRYPTION_KEY``.

Generate a key with:
    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

import os
import logging
from typing import Optional
from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_ENV = "PYRA_ENCRYPTION_KEY"


class EncryptionService:
    """Encrypt and decrypt short strings with a Fernet key."""

    def __init__(self, encryption_key: Optional[str] = None):
        """Initialize the cipher.

        Args:
            encryption_key: Base64-encoded Fernet key (default: from env var)

        Raises:
            ValueError: If the key is missing or malformed
        """
        key_str = encryption_key or os.getenv(ENCRYPTION_KEY_ENV)

        if not key_str:
            raise ValueError(
                f"Encryption key not configured. Set {ENCRYPTION_KEY_ENV} environment variable."
            )

        try:
            self.cipher = Fernet(key_str.encode("utf-8"))
        except (ValueError, TypeError) as e:
            raise ValueError(
                f"Invalid encryption key format: {e}. "
                "Key must be a valid base64-encoded Fernet key (44 characters)."
            )

    def encrypt(self, plaintext: str) -> str:
        """Encrypt plaintext and return the token as text."""
        if plaintext is None:
            raise ValueError("Cannot encrypt None value")

        # Empty settings stay empty
        if plaintext == "":
            return ""

        return self.cipher.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a token produced by :meth:`encrypt`.

        Raises:
            ValueError: If the token was tampered with or the key changed
        """
        if ciphertext is None:
            raise ValueError("Cannot decrypt None value")

        if ciphertext == "":
            return ""

        try:
            return self.cipher.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            logger.error("Decryption failed: Invalid token (wrong key or tampered data)")
            raise ValueError(
                "Failed to decrypt data. The encryption key may have changed; "
                "re-enter this value or regenerate the webhook secret."
            )


_encryption_service: Optional[EncryptionService] = None


def get_encryption_service() -> EncryptionService:
    """Get or create the process-wide encryption service."""
    global _encryption_service

    if _encryption_service is None:
        _encryption_service = EncryptionService()

    return _encryption_service


def encrypt_value(plaintext: str) -> str:
    """Encrypt a value using the global service."""
    return get_encryption_service().encrypt(plaintext)


def decrypt_value(ciphertext: str) -> str:
    """Decrypt a value using the global service."""
    return get_encryption_service().decrypt(ciphertext)


def is_encryption_configured() -> bool:
    """Return True when ``PYRA_ENCRYPTION_KEY`` is set."""
    return bool(os.getenv(ENCRYPTION_KEY_ENV))

