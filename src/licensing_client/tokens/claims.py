"""Typed view over the claims carried by a license token."""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNLIMITED_USAGES = -1


class LicenseClaims(BaseModel):
    """Claims decoded from a verified token.

    Unknown claims are ignored. ``exp`` and ``iat`` accept ISO-8601 strings
    or Unix timestamps; naive values are read as UTC.
    """

    model_config = ConfigDict(extra="ignore")

    license_key: Optional[str] = None
    fingerprint: Optional[str] = None
    exp: Optional[datetime] = None
    iat: Optional[datetime] = None
    max_usages: Optional[int] = None
    current_usages: Optional[int] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    features: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("exp", "iat")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("fingerprint", mode="before")
    @classmethod
    def _fingerprint_as_text(cls, value):
        # A non-string fingerprint is a device mismatch, not a malformed token
        if value is not None and not isinstance(value, str):
            return str(value)
        return value

    @field_validator("features", mode="before")
    @classmethod
    def _null_features(cls, value):
        return [] if value is None else value

    @field_validator("metadata", mode="before")
    @classmethod
    def _null_metadata(cls, value):
        return {} if value is None else value

    @property
    def is_perpetual(self) -> bool:
        return self.exp is None

    @property
    def is_unlimited(self) -> bool:
        """No usage cap applies: either counter missing, or the -1 sentinel."""
        if self.max_usages is None or self.current_usages is None:
            return True
        return self.max_usages == UNLIMITED_USAGES

    @property
    def within_usage_limits(self) -> bool:
        return self.is_unlimited or self.current_usages < self.max_usages

    def license_info(self) -> dict[str, Any]:
        """Project claims into the license info mapping shown to callers."""
        return {
            "license_key": self.license_key,
            "customer_email": self.customer_email,
            "customer_name": self.customer_name,
            "expires_at": self.exp.isoformat() if self.exp else None,
            "issued_at": self.iat.isoformat() if self.iat else None,
            "max_usages": self.max_usages,
            "current_usages": self.current_usages,
            "features": list(self.features),
            "metadata": dict(self.metadata),
        }
