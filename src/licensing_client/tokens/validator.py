"""
Offline license token validation.

Tokens are compact JWS strings signed with Ed25519 (``EdDSA``). Checks run in
a fixed order and stop at the first failure:

1. a verification key is configured
2. signature and structure
3. claims decode into ``LicenseClaims``
4. fingerprint claim matches this device
5. ``exp`` is strictly in the future (absent = perpetual)
6. ``current_usages < max_usages`` (absent or -1 = unlimited)
"""

import base64
import binascii
import hmac
import re
from datetime import datetime, timezone
from typing import Any, Optional

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from pydantic import ValidationError

from licensing_client.common.config import LicensingSettings
from licensing_client.common.exceptions import (
    FingerprintMismatchError,
    InvalidConfigurationError,
    InvalidTokenError,
    LicenseExpiredError,
    LicensingError,
    PublicKeyMissingError,
    UsageLimitExceededError,
)
from licensing_client.common.logging import get_logger
from licensing_client.fingerprint.generator import FingerprintGenerator
from licensing_client.tokens.claims import LicenseClaims

logger = get_logger("tokens")

ALGORITHM = "EdDSA"
PASERK_PUBLIC_PREFIX = "k4.public."
SECONDS_PER_DAY = 86400

# Library errors that talk about expiry are reported as expiry
_EXPIRY_MESSAGE = re.compile(r"\bexp\b|expired", re.IGNORECASE)

# exp/iat may be ISO-8601 strings, which the JWT library cannot check itself
_DECODE_OPTIONS = {
    "verify_signature": True,
    "verify_exp": False,
    "verify_iat": False,
    "verify_nbf": False,
    "verify_aud": False,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def load_public_key(encoded: str) -> Ed25519PublicKey:
    """Load an Ed25519 public key from PEM or base64 of the raw 32 bytes.

    Raises:
        ValueError: if the value is not a usable Ed25519 public key
    """
    text = encoded.strip()
    if text.startswith("-----BEGIN"):
        key = serialization.load_pem_public_key(text.encode("ascii"))
        if not isinstance(key, Ed25519PublicKey):
            raise ValueError("PEM key is not an Ed25519 public key")
        return key

    if text.startswith(PASERK_PUBLIC_PREFIX):
        text = text[len(PASERK_PUBLIC_PREFIX):]
    normalised = text.replace("+", "-").replace("/", "_")
    try:
        raw = base64.urlsafe_b64decode(normalised + "=" * (-len(normalised) % 4))
    except binascii.Error as exc:
        raise ValueError(f"public key is not valid base64: {exc}") from exc
    return Ed25519PublicKey.from_public_bytes(raw)


class TokenValidator:
    """Verifies license tokens against a public key and this device."""

    def __init__(
        self,
        public_key: Optional[str],
        fingerprint_generator: FingerprintGenerator,
    ):
        self.fingerprint_generator = fingerprint_generator
        self._public_key: Optional[Ed25519PublicKey] = None
        if public_key:
            try:
                self._public_key = load_public_key(public_key)
            except ValueError as exc:
                raise InvalidConfigurationError("Invalid public key format") from exc

    @classmethod
    def from_settings(
        cls,
        settings: LicensingSettings,
        fingerprint_generator: FingerprintGenerator,
    ) -> "TokenValidator":
        return cls(settings.public_key or None, fingerprint_generator)

    @property
    def has_public_key(self) -> bool:
        return self._public_key is not None

    # ── Strict validation ──

    def validate(self, token: str) -> LicenseClaims:
        """Verify a token and return its claims.

        Raises:
            PublicKeyMissingError: no verification key configured
            InvalidTokenError: bad signature, structure or claim types
            FingerprintMismatchError: token bound to another device
            LicenseExpiredError: ``exp`` is not in the future
            UsageLimitExceededError: ``current_usages >= max_usages``
        """
        if self._public_key is None:
            raise PublicKeyMissingError()

        payload = self._verify_signature(token)

        try:
            claims = LicenseClaims.model_validate(payload)
        except ValidationError as exc:
            raise InvalidTokenError() from exc

        if not self._fingerprint_matches(claims):
            raise FingerprintMismatchError()
        if not self._not_expired(claims):
            raise LicenseExpiredError()
        if not claims.within_usage_limits:
            raise UsageLimitExceededError()

        return claims

    def _verify_signature(self, token: str) -> dict[str, Any]:
        try:
            return jwt.decode(
                token,
                self._public_key,
                algorithms=[ALGORITHM],
                options=_DECODE_OPTIONS,
            )
        except jwt.ExpiredSignatureError as exc:
            raise LicenseExpiredError() from exc
        except jwt.PyJWTError as exc:
            if _EXPIRY_MESSAGE.search(str(exc)):
                raise LicenseExpiredError() from exc
            claimed_key = str(self.decode_unverified(token).get("license_key") or "")
            logger.debug("Token rejected: %s", exc, extra={"license_key": claimed_key})
            raise InvalidTokenError() from exc

    def _fingerprint_matches(self, claims: LicenseClaims) -> bool:
        if not claims.fingerprint:
            return False
        current = self.fingerprint_generator.generate()
        return hmac.compare_digest(
            claims.fingerprint.encode("utf-8"), current.encode("utf-8")
        )

    @staticmethod
    def _not_expired(claims: LicenseClaims) -> bool:
        if claims.exp is None:
            return True
        return claims.exp > _now()

    # ── Total helpers ──

    def is_valid(self, token: str) -> bool:
        try:
            self.validate(token)
        except LicensingError:
            return False
        return True

    def expiration(self, token: str) -> Optional[datetime]:
        """Expiry of a valid token, or None when perpetual or invalid."""
        try:
            return self.validate(token).exp
        except LicensingError:
            return None

    def is_expiring_soon(self, token: str, days: int = 7) -> bool:
        """True when a valid token expires within ``days`` but has not yet."""
        expires_at = self.expiration(token)
        if expires_at is None:
            return False
        days_left = (expires_at - _now()).total_seconds() / SECONDS_PER_DAY
        return 0 < days_left <= days

    def extract_license_info(self, token: str) -> dict[str, Any]:
        try:
            return self.validate(token).license_info()
        except LicensingError:
            return {}

    @staticmethod
    def decode_unverified(token: str) -> dict[str, Any]:
        """Peek at claims without any verification. Diagnostics only."""
        try:
            return jwt.decode(token, options={"verify_signature": False})
        except jwt.PyJWTError:
            return {}
