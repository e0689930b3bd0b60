"""
Token cache stores.

The cache only ever mirrors values the durable store already holds. Two
stores are provided:

- ``memory``: per-process dict, fastest, lost on restart
- ``file``: one JSON file per entry, shared by every worker process on the
  host; entries are replaced atomically
"""

import hashlib
import json
import threading
import time
from pathlib import Path
from typing import Optional, Protocol

from licensing_client.common.config import LicensingSettings
from licensing_client.common.logging import get_logger
from licensing_client.storage.atomic import atomic_write
from licensing_client.storage.encryption import EncryptionError, TokenEncryptor

logger = get_logger("storage.cache")


class TokenCache(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def put(self, key: str, value: str, ttl: int) -> None: ...

    def forget(self, key: str) -> None: ...

    def flush(self) -> None: ...


class MemoryCache:
    """In-process TTL cache."""

    def __init__(self):
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if time.time() >= expires_at:
                del self._entries[key]
                return None
            return value

    def put(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            self._entries[key] = (value, time.time() + ttl)

    def forget(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def flush(self) -> None:
        with self._lock:
            self._entries.clear()


class FileCache:
    """Host-wide TTL cache backed by a directory of JSON files.

    When an encryptor is given, values are encrypted on disk just like the
    durable token files.
    """

    SUFFIX = ".cache.json"

    def __init__(self, directory: Path, encryptor: Optional[TokenEncryptor] = None):
        self.directory = Path(directory)
        self.encryptor = encryptor

    def _path(self, key: str) -> Path:
        name = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.directory / f"{name}{self.SUFFIX}"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            entry = json.loads(path.read_text(encoding="utf-8"))
            value = entry["value"]
            expires_at = float(entry["expires_at"])
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError) as exc:
            # A broken cache entry is a miss; the durable store is authoritative
            logger.warning("Discarding unreadable cache entry %s: %s", path.name, exc)
            self.forget(key)
            return None

        if time.time() >= expires_at:
            self.forget(key)
            return None

        if self.encryptor is None:
            return value
        try:
            return self.encryptor.decrypt(value.encode("ascii"))
        except (EncryptionError, UnicodeEncodeError, AttributeError):
            logger.warning("Discarding undecryptable cache entry %s", path.name)
            self.forget(key)
            return None

    def put(self, key: str, value: str, ttl: int) -> None:
        if self.encryptor is not None:
            value = self.encryptor.encrypt(value).decode("ascii")
        entry = {"value": value, "expires_at": time.time() + ttl}
        atomic_write(self._path(key), json.dumps(entry).encode("utf-8"))

    def forget(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def flush(self) -> None:
        if not self.directory.is_dir():
            return
        for path in self.directory.glob(f"*{self.SUFFIX}"):
            path.unlink(missing_ok=True)


def create_cache(
    settings: LicensingSettings,
    encryptor: Optional[TokenEncryptor] = None,
) -> Optional[TokenCache]:
    """Build the configured cache store, or None when caching is disabled."""
    if not settings.cache_enabled:
        return None
    if settings.cache_store == "memory":
        return MemoryCache()
    return FileCache(settings.cache_path, encryptor=encryptor)
