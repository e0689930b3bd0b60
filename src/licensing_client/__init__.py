"""licensing-client: device-bound license validation with offline grace periods."""

from licensing_client.client import LicenseClient, OperationResult
from licensing_client.common.config import LicensingSettings
from licensing_client.fingerprint.generator import FingerprintGenerator
from licensing_client.guard import GuardDecision, LicenseGuard
from licensing_client.storage.token_store import TokenStore
from licensing_client.tokens.claims import LicenseClaims
from licensing_client.tokens.validator import TokenValidator

__all__ = [
    "LicenseClient",
    "OperationResult",
    "LicensingSettings",
    "FingerprintGenerator",
    "GuardDecision",
    "LicenseGuard",
    "TokenStore",
    "LicenseClaims",
    "TokenValidator",
]
__version__ = "0.1.0"
