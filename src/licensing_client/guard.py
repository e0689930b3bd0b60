"""
Per-request license check with server-outage tolerance.

Run once per guarded operation (for example once per inbound request):

1. stored token valid                          -> allow
2. otherwise refresh from the server succeeds  -> allow
3. otherwise already inside a grace period     -> allow
4. otherwise server unhealthy                  -> start grace period, allow
5. otherwise                                   -> deny

On allow a rate-limited heartbeat is sent and an expiry warning is raised
when the license ends within seven days.
"""

from dataclasses import dataclass
from typing import Optional

from licensing_client.client import DEFAULT_EXPIRY_WARNING_DAYS, LicenseClient
from licensing_client.common.exceptions import LicensingError
from licensing_client.common.logging import get_logger

logger = get_logger("guard")

VALID = "valid"
REFRESHED = "refreshed"
GRACE_PERIOD = "grace_period"
GRACE_PERIOD_STARTED = "grace_period_started"
LICENSE_INVALID = "license_invalid"
ERROR = "error"


@dataclass
class GuardDecision:
    """Whether a guarded operation may proceed, and why."""

    allowed: bool
    reason: str
    expiring_soon: bool = False
    expires_at: Optional[str] = None
    code: str = ""
    message: str = ""

    def __bool__(self) -> bool:
        return self.allowed


class LicenseGuard:
    """Applies the resiliency protocol on top of a LicenseClient."""

    def __init__(
        self,
        client: LicenseClient,
        warning_days: int = DEFAULT_EXPIRY_WARNING_DAYS,
    ):
        self.client = client
        self.warning_days = warning_days

    def check(self, key: Optional[str] = None) -> GuardDecision:
        try:
            reason = self._admit(key)
            if reason is None:
                logger.warning("License check denied")
                return GuardDecision(
                    False, LICENSE_INVALID,
                    code="LICENSE_INVALID", message="Invalid or expired license",
                )

            self.client.heartbeat(key)
            decision = GuardDecision(True, reason)
            if self.client.is_expiring_soon(self.warning_days, key):
                decision.expiring_soon = True
                decision.expires_at = self.client.license_info(key).get("expires_at")
            return decision
        except LicensingError as exc:
            logger.error("License check failed: %s", exc.message)
            return GuardDecision(False, ERROR, code=exc.code, message=exc.message)

    def _admit(self, key: Optional[str]) -> Optional[str]:
        """Walk the fallback chain; None means deny."""
        if self.client.is_valid(key):
            return VALID
        if self.client.refresh(key):
            return REFRESHED
        if self.client.is_in_grace_period():
            return GRACE_PERIOD
        if not self.client.is_server_healthy():
            self.client.start_grace_period()
            return GRACE_PERIOD_STARTED
        return None
