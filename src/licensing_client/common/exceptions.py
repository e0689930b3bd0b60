"""Licensing client exception hierarchy."""


class LicensingError(Exception):
    """Base exception for all licensing errors."""

    def __init__(self, message: str = "", code: str = "LICENSING_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class InvalidLicenseKeyError(LicensingError):
    """Raised when the server does not recognise the license key."""

    def __init__(self, message: str = "The provided license key is invalid."):
        super().__init__(message, code="INVALID_KEY")


class LicenseExpiredError(LicensingError):
    """Raised when a license token has expired."""

    def __init__(self, message: str = "The license has expired."):
        super().__init__(message, code="EXPIRED")


class LicenseNotActivatedError(LicensingError):
    """Raised when no token is stored for a license key."""

    def __init__(self, message: str = "The license has not been activated."):
        super().__init__(message, code="NOT_ACTIVATED")


class ServerUnreachableError(LicensingError):
    """Raised when the licensing server cannot be reached or fails."""

    def __init__(self, message: str = "Unable to reach the licensing server."):
        super().__init__(message, code="SERVER_UNREACHABLE")


class InvalidTokenError(LicensingError):
    """Raised when a token fails signature checks or the stored copy is corrupted."""

    def __init__(self, message: str = "The license token is invalid or corrupted."):
        super().__init__(message, code="INVALID_TOKEN")


class FingerprintMismatchError(LicensingError):
    """Raised when a token is bound to a different device."""

    def __init__(self, message: str = "Device fingerprint does not match the licensed device."):
        super().__init__(message, code="FINGERPRINT_MISMATCH")


class UsageLimitExceededError(LicensingError):
    """Raised when a license has used up its allowed activations."""

    def __init__(self, message: str = "License usage limit has been exceeded."):
        super().__init__(message, code="USAGE_LIMIT")


class InvalidConfigurationError(LicensingError):
    """Raised when required configuration is missing or malformed."""

    def __init__(self, message: str = "Invalid configuration"):
        super().__init__(f"Invalid configuration: {message}", code="INVALID_CONFIG")


class ActivationFailedError(LicensingError):
    """Raised when activation fails for a reason other than a known status."""

    def __init__(self, message: str = "Activation failed"):
        super().__init__(f"License activation failed: {message}", code="ACTIVATION_FAILED")


class DeactivationFailedError(LicensingError):
    """Raised when the server rejects a deactivation."""

    def __init__(self, message: str = "Deactivation failed"):
        super().__init__(f"License deactivation failed: {message}", code="DEACTIVATION_FAILED")


class TokenStorageFailedError(LicensingError):
    """Raised when a token cannot be written to durable storage."""

    def __init__(self, message: str = "Storage failed"):
        super().__init__(f"Failed to store license token: {message}", code="STORAGE_FAILED")


class PublicKeyMissingError(LicensingError):
    """Raised when no verification key is configured."""

    def __init__(self, message: str = "Public key for token verification is not configured."):
        super().__init__(message, code="PUBLIC_KEY_MISSING")
