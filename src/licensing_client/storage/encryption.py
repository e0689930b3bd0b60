"""At-rest encryption for stored license tokens.

Uses Fernet (AES-128-CBC with HMAC-SHA256) from the cryptography library.
The Fernet key is either configured directly or derived from the host
application's secret, so tokens copied to another installation cannot be
decrypted there.
"""

import base64
import hashlib
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from licensing_client.common.exceptions import InvalidConfigurationError
from licensing_client.common.logging import get_logger

logger = get_logger("storage.encryption")


class EncryptionError(Exception):
    """Raised when encryption/decryption operations fail."""


def derive_key(secret: str) -> bytes:
    """Derive a Fernet key from an arbitrary application secret."""
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class TokenEncryptor:
    """
    Symmetric encryption of token strings.

    Example:
        encryptor = TokenEncryptor.from_secret(app_key)
        ciphertext = encryptor.encrypt(token)
        encryptor.decrypt(ciphertext)  # == token
    """

    def __init__(self, encryption_key: str | bytes):
        if not encryption_key:
            raise InvalidConfigurationError("Encryption key cannot be empty")
        if isinstance(encryption_key, str):
            encryption_key = encryption_key.encode("utf-8")
        try:
            self.fernet = Fernet(encryption_key)
        except (ValueError, TypeError) as exc:
            raise InvalidConfigurationError(f"Invalid encryption key: {exc}") from exc

    @classmethod
    def from_secret(cls, secret: str) -> "TokenEncryptor":
        if not secret:
            raise InvalidConfigurationError("No encryption key or app key configured")
        return cls(derive_key(secret))

    @classmethod
    def from_config(cls, encryption_key: Optional[str], app_key: Optional[str]) -> "TokenEncryptor":
        """Prefer an explicit Fernet key, otherwise derive one from the app key."""
        if encryption_key:
            return cls(encryption_key)
        return cls.from_secret(app_key or "")

    def encrypt(self, plaintext: str) -> bytes:
        try:
            return self.fernet.encrypt(plaintext.encode("utf-8"))
        except (AttributeError, TypeError) as exc:
            raise EncryptionError(f"Failed to encrypt data: {exc}") from exc

    def decrypt(self, ciphertext: bytes) -> str:
        """
        Raises:
            EncryptionError: wrong key, tampered or truncated data
        """
        try:
            return self.fernet.decrypt(ciphertext).decode("utf-8")
        except InvalidToken as exc:
            logger.error("Decryption failed: invalid token (wrong key or corrupted data)")
            raise EncryptionError("Failed to decrypt data: Invalid token") from exc
        except (TypeError, UnicodeDecodeError) as exc:
            logger.error("Decryption failed: %s", exc)
            raise EncryptionError(f"Failed to decrypt data: {exc}") from exc
