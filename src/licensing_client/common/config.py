"""Licensing client configuration via pydantic-settings."""

import warnings
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def endpoint_prefix(api_version: str) -> str:
    """Path prefix of every licensing endpoint for an API version."""
    return f"/api/licensing/{api_version}"


# Settings that must be present outside development for tokens to be trusted
_REQUIRED_SECRETS = ("public_key", "app_key")


class LicensingSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="LICENSING_",
        env_file=".env",
        extra="ignore",
    )

    # Licensing server
    server_url: str = "https://licensing.example.com"
    api_version: str = "v1"
    license_key: str = ""
    timeout: float = 30.0
    max_retries: int = 1
    retry_backoff_base: float = 0.5

    # Token verification: Ed25519 public key, PEM or base64-encoded raw bytes
    public_key: str = ""

    # Host application identity (part of the device fingerprint)
    app_key: str = ""
    app_version: str = ""
    environment: str = "production"
    timezone: str = "UTC"

    # At-rest encryption; derived from app_key when empty
    encryption_key: str = ""
    storage_path: Path = Path.home() / ".licensing"

    # Cache
    cache_enabled: bool = True
    cache_store: str = "file"
    cache_ttl: int = 3600  # seconds

    # Heartbeat
    heartbeat_enabled: bool = True
    heartbeat_interval: int = 3600  # seconds

    # Grace period when the server is unreachable
    grace_period_days: int = 7

    # Logging
    debug: bool = False
    log_level: str = "INFO"

    @field_validator("timeout", "cache_ttl", "heartbeat_interval")
    @classmethod
    def _positive(cls, value):
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("grace_period_days")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("max_retries")
    @classmethod
    def _at_least_one_attempt(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("cache_store")
    @classmethod
    def _known_store(cls, value: str) -> str:
        value = value.lower()
        if value not in ("memory", "file"):
            raise ValueError(f"unknown cache store {value!r} (expected 'memory' or 'file')")
        return value

    @field_validator("server_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def api_base_path(self) -> str:
        """Path prefix shared by every licensing endpoint."""
        return endpoint_prefix(self.api_version)

    @property
    def cache_path(self) -> Path:
        return self.storage_path / "cache"

    def validate_for_production(self) -> None:
        """Raise if secrets are missing in non-development environments."""
        missing = [name for name in _REQUIRED_SECRETS if not getattr(self, name)]

        if self.environment != "development" and missing:
            env_vars = ", ".join(f"LICENSING_{name.upper()}" for name in missing)
            raise RuntimeError(
                f"Missing licensing configuration in '{self.environment}' environment. "
                f"Set these environment variables: {env_vars}."
            )

        if missing:
            warnings.warn(
                "Licensing client running without LICENSING_PUBLIC_KEY / LICENSING_APP_KEY; "
                "tokens cannot be verified",
                UserWarning,
                stacklevel=2,
            )
