"""
LicenseClient — the license state engine used by host applications.

Composes the fingerprint generator, the remote API client, the token store
and the token validator. Per license key the client moves through:

    NoToken -> Activated -> Valid | Refreshing | GracePeriod | Invalid

Local checks (``is_valid``, ``is_expiring_soon``) never touch the network
and never raise. Best-effort operations (``deactivate``, ``refresh``,
``heartbeat``) report an ``OperationResult`` instead of raising. ``validate``
and ``activate`` raise the specific licensing error.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from licensing_client.api.client import LicensingApiClient
from licensing_client.common.config import LicensingSettings
from licensing_client.common.exceptions import (
    ActivationFailedError,
    InvalidConfigurationError,
    LicenseNotActivatedError,
    LicensingError,
)
from licensing_client.common.logging import get_logger, setup_logging
from licensing_client.common.schemas import ValidationResponse
from licensing_client.fingerprint.generator import FingerprintGenerator
from licensing_client.storage.token_store import TokenStore
from licensing_client.tokens.claims import LicenseClaims
from licensing_client.tokens.validator import TokenValidator

logger = get_logger("client")

GRACE_PERIOD_REASON = "server_unreachable"
DEFAULT_EXPIRY_WARNING_DAYS = 7


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Read an ISO-8601 string or Unix timestamp as an aware datetime."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class OperationResult:
    """Outcome of a best-effort operation. Truthy when it succeeded."""

    success: bool
    code: str = ""
    message: str = ""

    def __bool__(self) -> bool:
        return self.success


class LicenseClient:
    """Device-bound license client with offline validation and grace periods."""

    def __init__(
        self,
        settings: LicensingSettings,
        fingerprint_generator: Optional[FingerprintGenerator] = None,
        api: Optional[LicensingApiClient] = None,
        store: Optional[TokenStore] = None,
        validator: Optional[TokenValidator] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.settings = settings
        self.fingerprint_generator = fingerprint_generator or FingerprintGenerator.from_settings(settings)
        self.api = api or LicensingApiClient.from_settings(settings, transport=transport)
        self.store = store or TokenStore.from_settings(settings)
        self.validator = validator or TokenValidator.from_settings(
            settings, self.fingerprint_generator
        )

    @classmethod
    def from_settings(cls, settings: LicensingSettings) -> "LicenseClient":
        """Build a client and configure package logging from ``settings``."""
        setup_logging(settings.log_level, settings.debug)
        return cls(settings)

    def _resolve_key(self, key: Optional[str]) -> str:
        return self.settings.license_key if key is None else key

    # ── Activation ──

    def activate(self, key: Optional[str] = None) -> bool:
        """Activate a license on this device and store the issued token.

        Raises:
            InvalidConfigurationError: no license key given or configured
            InvalidLicenseKeyError, UsageLimitExceededError, ...: server refusal
            ActivationFailedError: any other failure, including a missing token
            TokenStorageFailedError: the token could not be persisted
        """
        license_key = self._resolve_key(key)
        if not license_key:
            raise InvalidConfigurationError("No license key provided")

        fingerprint = self.fingerprint_generator.generate()
        metadata = self.fingerprint_generator.metadata()
        response = self.api.activate(license_key, fingerprint, metadata)

        if not response.token:
            raise ActivationFailedError("No token received from server")

        self.store.store(response.token, license_key)
        self.store.store_last_heartbeat()
        self.end_grace_period()
        logger.info("License activated", extra={"license_key": license_key})
        return True

    def deactivate(self, key: Optional[str] = None) -> OperationResult:
        """Release this device's activation and remove the stored token.

        The server is informed first. If that request fails the local token
        is kept and the failure is reported. If the server answers but does
        not confirm (``success`` false), the local token is removed anyway
        and the result carries ``code="REMOTE_NOT_CONFIRMED"``.
        """
        license_key = self._resolve_key(key)
        if not license_key:
            return OperationResult(False, "NO_KEY", "No license key provided")

        try:
            fingerprint = self.fingerprint_generator.generate()
            response = self.api.deactivate(license_key, fingerprint)
            self.store.delete(license_key)
        except (LicensingError, OSError) as exc:
            logger.warning("Deactivation failed: %s", exc, extra={"license_key": license_key})
            return _failure(exc)

        logger.info("License deactivated", extra={"license_key": license_key})
        if not response.success:
            return OperationResult(
                True, "REMOTE_NOT_CONFIRMED",
                "Local license removed; server did not confirm deactivation",
            )
        return OperationResult(True, "DEACTIVATED", "License deactivated")

    # ── Local validation ──

    def is_valid(self, key: Optional[str] = None) -> bool:
        """Offline check of the stored token. Never raises."""
        token = self._stored_token(key)
        if not token:
            return False
        return self.validator.is_valid(token)

    def validate(self, key: Optional[str] = None) -> LicenseClaims:
        """Offline check of the stored token, raising the reason on failure.

        Raises:
            InvalidConfigurationError: no license key given or configured
            LicenseNotActivatedError: nothing stored for the key
            InvalidTokenError: stored token corrupted or signature invalid
            PublicKeyMissingError, FingerprintMismatchError,
            LicenseExpiredError, UsageLimitExceededError: validator failures
        """
        license_key = self._resolve_key(key)
        if not license_key:
            raise InvalidConfigurationError("No license key provided")

        token = self.store.retrieve(license_key)
        if not token:
            raise LicenseNotActivatedError()
        return self.validator.validate(token)

    def is_expiring_soon(
        self,
        days: int = DEFAULT_EXPIRY_WARNING_DAYS,
        key: Optional[str] = None,
    ) -> bool:
        token = self._stored_token(key)
        if not token:
            return False
        return self.validator.is_expiring_soon(token, days)

    def license_info(self, key: Optional[str] = None) -> dict[str, Any]:
        """Claims of the stored token as a plain mapping, {} if unavailable."""
        token = self._stored_token(key)
        if not token:
            return {}
        return self.validator.extract_license_info(token)

    def _stored_token(self, key: Optional[str]) -> Optional[str]:
        license_key = self._resolve_key(key)
        if not license_key:
            return None
        try:
            return self.store.retrieve(license_key)
        except LicensingError as exc:
            logger.warning("Stored token unavailable: %s", exc.message, extra={"license_key": license_key})
            return None

    # ── Server round-trips ──

    def refresh(self, key: Optional[str] = None) -> OperationResult:
        """Ask the server for a fresh token. Never raises on remote failure."""
        license_key = self._resolve_key(key)
        if not license_key:
            return OperationResult(False, "NO_KEY", "No license key provided")

        try:
            fingerprint = self.fingerprint_generator.generate()
            response = self.api.refresh(license_key, fingerprint)
            if not response.token:
                return OperationResult(False, "NO_TOKEN", "No token received from server")
            self.store.store(response.token, license_key)
            self.store.store_last_heartbeat()
        except InvalidConfigurationError:
            raise
        except (LicensingError, OSError) as exc:
            logger.info("Token refresh failed: %s", exc, extra={"license_key": license_key})
            return _failure(exc)

        self.end_grace_period()
        logger.info("License token refreshed", extra={"license_key": license_key})
        return OperationResult(True, "REFRESHED", "Token refreshed")

    def heartbeat(self, key: Optional[str] = None) -> OperationResult:
        """Check in with the server if the heartbeat interval has elapsed.

        The last-heartbeat timestamp is shared by all license keys.
        """
        if not self.settings.heartbeat_enabled:
            return OperationResult(True, "DISABLED", "Heartbeat disabled")

        license_key = self._resolve_key(key)
        if not license_key:
            return OperationResult(False, "NO_KEY", "No license key provided")

        if not self.heartbeat_due():
            return OperationResult(True, "SKIPPED", "Heartbeat not due")

        try:
            fingerprint = self.fingerprint_generator.generate()
            response = self.api.heartbeat(license_key, fingerprint, self._heartbeat_data())
            if not response.success:
                return OperationResult(
                    False, "HEARTBEAT_FAILED",
                    response.error or "Server did not accept heartbeat",
                )
            self.store.store_last_heartbeat()
            self.end_grace_period()
            if response.token:
                self.store.store(response.token, license_key)
                logger.info("Token rotated by heartbeat", extra={"license_key": license_key})
                return OperationResult(True, "TOKEN_ROTATED", "Heartbeat sent, token rotated")
        except InvalidConfigurationError:
            raise
        except (LicensingError, OSError) as exc:
            logger.info("Heartbeat failed: %s", exc, extra={"license_key": license_key})
            return _failure(exc)

        return OperationResult(True, "OK", "Heartbeat sent")

    def heartbeat_due(self) -> bool:
        last = self.store.get_last_heartbeat()
        if not last:
            return True
        return time.time() - last >= self.settings.heartbeat_interval

    def _heartbeat_data(self) -> dict[str, str]:
        return {
            "version": self.settings.app_version,
            "environment": self.settings.environment,
            "python_version": self.fingerprint_generator.python_version(),
        }

    def validate_remote(self, key: Optional[str] = None) -> ValidationResponse:
        """Ask the server whether the license is valid for this device."""
        license_key = self._resolve_key(key)
        if not license_key:
            raise InvalidConfigurationError("No license key provided")
        return self.api.validate(license_key, self.fingerprint_generator.generate())

    def fetch_license_info(self, key: Optional[str] = None) -> dict[str, Any]:
        """Full license record as held by the server."""
        license_key = self._resolve_key(key)
        if not license_key:
            raise InvalidConfigurationError("No license key provided")
        return self.api.license_info(license_key)

    def is_server_healthy(self) -> bool:
        return self.api.health()

    # ── Grace period ──

    def is_in_grace_period(self) -> bool:
        ends_at = self.grace_period_ends_at()
        return ends_at is not None and _now() < ends_at

    def grace_period_ends_at(self) -> Optional[datetime]:
        record = self.store.get_grace_period()
        if not record:
            return None
        started_at = _parse_timestamp(record.get("started_at"))
        if started_at is None:
            return None
        return started_at + timedelta(days=self.settings.grace_period_days)

    def start_grace_period(self) -> None:
        self.store.store_grace_period({
            "started_at": _now().isoformat(),
            "reason": GRACE_PERIOD_REASON,
        })
        logger.warning(
            "Licensing server unreachable; grace period of %d day(s) started",
            self.settings.grace_period_days,
        )

    def end_grace_period(self) -> None:
        self.store.clear_grace_period()

    # ── Lifecycle ──

    def clear_all(self) -> None:
        self.store.clear_all()

    def close(self) -> None:
        self.api.close()

    def __enter__(self) -> "LicenseClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _failure(exc: Exception) -> OperationResult:
    if isinstance(exc, LicensingError):
        return OperationResult(False, exc.code, exc.message)
    return OperationResult(False, "STORAGE_FAILED", str(exc))
