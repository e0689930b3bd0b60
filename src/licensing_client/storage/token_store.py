"""
Durable token storage with a read-through / write-through cache.

Layout under the storage directory:

    <sha256(license key)>.token   Fernet-encrypted token, one per key
    last_heartbeat                Unix timestamp of the last heartbeat
    grace_period.json             {"started_at": ..., "reason": ...}

The files are the source of truth. Every write lands on disk (atomically)
before the cache is updated, and a cache miss falls back to disk.
"""

import hashlib
import json
import shutil
import time
from pathlib import Path
from typing import Any, Mapping, Optional

from licensing_client.common.config import LicensingSettings
from licensing_client.common.exceptions import InvalidTokenError, TokenStorageFailedError
from licensing_client.common.logging import get_logger
from licensing_client.storage.atomic import atomic_write
from licensing_client.storage.cache import TokenCache, create_cache
from licensing_client.storage.encryption import EncryptionError, TokenEncryptor

logger = get_logger("storage")

DEFAULT_KEY = "default"
TOKEN_SUFFIX = ".token"
HEARTBEAT_FILE = "last_heartbeat"
GRACE_PERIOD_FILE = "grace_period.json"
CACHE_KEY_PREFIX = "licensing:token:"


class TokenStore:
    """Encrypted, file-backed store for license tokens and client state."""

    def __init__(
        self,
        storage_path: Path,
        encryptor: TokenEncryptor,
        cache: Optional[TokenCache] = None,
        cache_ttl: int = 3600,
    ):
        self.storage_path = Path(storage_path)
        self.encryptor = encryptor
        self.cache = cache
        self.cache_ttl = cache_ttl
        self._ensure_storage_directory()

    @classmethod
    def from_settings(cls, settings: LicensingSettings) -> "TokenStore":
        encryptor = TokenEncryptor.from_config(settings.encryption_key, settings.app_key)
        return cls(
            settings.storage_path,
            encryptor,
            cache=create_cache(settings, encryptor=encryptor),
            cache_ttl=settings.cache_ttl,
        )

    # ── Tokens ──

    def store(self, token: str, key: str = DEFAULT_KEY) -> None:
        """Persist a token for ``key`` and mirror it in the cache.

        Raises:
            TokenStorageFailedError: on any encryption or I/O error
        """
        try:
            ciphertext = self.encryptor.encrypt(token)
            atomic_write(self._token_path(key), ciphertext)
            if self.cache is not None:
                self.cache.put(self._cache_key(key), token, self.cache_ttl)
        except (OSError, EncryptionError) as exc:
            raise TokenStorageFailedError(str(exc)) from exc
        logger.debug("Stored token", extra={"license_key": key})

    def retrieve(self, key: str = DEFAULT_KEY) -> Optional[str]:
        """Return the token for ``key``, or None if none is stored.

        Raises:
            InvalidTokenError: the stored file cannot be read or decrypted
        """
        path = self._token_path(key)
        if self.cache is not None:
            cached = self.cache.get(self._cache_key(key))
            if cached:
                if path.is_file():
                    return cached
                # Removed from disk by another process; drop the stale copy
                self.cache.forget(self._cache_key(key))
                return None

        try:
            ciphertext = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.error("Cannot read stored token: %s", exc, extra={"license_key": key})
            raise InvalidTokenError() from exc

        try:
            token = self.encryptor.decrypt(ciphertext)
        except EncryptionError as exc:
            logger.error("Stored token is corrupted", extra={"license_key": key})
            raise InvalidTokenError() from exc

        if self.cache is not None:
            try:
                self.cache.put(self._cache_key(key), token, self.cache_ttl)
            except (OSError, EncryptionError) as exc:
                logger.warning("Could not repopulate token cache: %s", exc)
        return token

    def delete(self, key: str = DEFAULT_KEY) -> None:
        self._token_path(key).unlink(missing_ok=True)
        if self.cache is not None:
            self.cache.forget(self._cache_key(key))

    def exists(self, key: str = DEFAULT_KEY) -> bool:
        """Whether a durable token exists for ``key`` (cache not consulted)."""
        return self._token_path(key).is_file()

    # ── Heartbeat ──

    def store_last_heartbeat(self, timestamp: Optional[int] = None) -> None:
        value = int(time.time()) if timestamp is None else int(timestamp)
        try:
            atomic_write(self.storage_path / HEARTBEAT_FILE, str(value).encode("ascii"))
        except OSError as exc:
            raise TokenStorageFailedError(str(exc)) from exc

    def get_last_heartbeat(self) -> Optional[int]:
        path = self.storage_path / HEARTBEAT_FILE
        try:
            return int(path.read_text(encoding="ascii").strip())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable heartbeat record: %s", exc)
            return None

    # ── Grace period ──

    def store_grace_period(self, data: Mapping[str, Any]) -> None:
        try:
            atomic_write(
                self.storage_path / GRACE_PERIOD_FILE,
                json.dumps(dict(data)).encode("utf-8"),
            )
        except (OSError, TypeError) as exc:
            raise TokenStorageFailedError(str(exc)) from exc

    def get_grace_period(self) -> Optional[dict[str, Any]]:
        path = self.storage_path / GRACE_PERIOD_FILE
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable grace period record: %s", exc)
            return None
        return data if isinstance(data, dict) else None

    def clear_grace_period(self) -> None:
        (self.storage_path / GRACE_PERIOD_FILE).unlink(missing_ok=True)

    # ── Housekeeping ──

    def clear_all(self) -> None:
        """Erase every stored record and flush the whole cache namespace."""
        if self.storage_path.is_dir():
            shutil.rmtree(self.storage_path)
        self._ensure_storage_directory()
        if self.cache is not None:
            self.cache.flush()
        logger.info("Cleared all stored licensing data")

    def _ensure_storage_directory(self) -> None:
        self.storage_path.mkdir(mode=0o755, parents=True, exist_ok=True)

    def _token_path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.storage_path / f"{digest}{TOKEN_SUFFIX}"

    @staticmethod
    def _cache_key(key: str) -> str:
        return f"{CACHE_KEY_PREFIX}{key}"
