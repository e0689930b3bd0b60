"""
HTTP client for the remote licensing server.

All endpoints live under ``/api/licensing/{api_version}/``. Error statuses are
mapped to licensing exceptions the same way on every endpoint:

    404 -> InvalidLicenseKeyError
    409 -> UsageLimitExceededError
    403 -> FingerprintMismatchError
    410 -> LicenseExpiredError

Anything else is reported with the endpoint's fallback error (activation,
deactivation, or server unreachable).
"""

import time
from typing import Any, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from licensing_client.common.config import LicensingSettings, endpoint_prefix
from licensing_client.common.exceptions import (
    ActivationFailedError,
    DeactivationFailedError,
    FingerprintMismatchError,
    InvalidLicenseKeyError,
    LicenseExpiredError,
    LicensingError,
    ServerUnreachableError,
    UsageLimitExceededError,
)
from licensing_client.common.logging import get_logger
from licensing_client.common.schemas import (
    DeactivationResponse,
    HealthResponse,
    HeartbeatResponse,
    ServerResponse,
    TokenResponse,
    ValidationResponse,
)

logger = get_logger("api")

STATUS_ERRORS: dict[int, type[LicensingError]] = {
    404: InvalidLicenseKeyError,
    409: UsageLimitExceededError,
    403: FingerprintMismatchError,
    410: LicenseExpiredError,
}


class LicensingApiClient:
    """
    Synchronous HTTP client for the licensing server.

    Every request carries the configured timeout. Timeouts, connection
    errors, 5xx and 429 responses are retried up to ``max_retries`` attempts
    in total with exponential backoff; other 4xx responses are not retried.
    """

    def __init__(
        self,
        server_url: str = "https://licensing.example.com",
        api_version: str = "v1",
        timeout: float = 30.0,
        max_retries: int = 1,
        retry_backoff_base: float = 0.5,
        debug: bool = False,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.server_url = server_url.rstrip("/")
        self.api_version = api_version
        self.max_retries = max(1, max_retries)
        self.retry_backoff_base = retry_backoff_base
        self.debug = debug
        self._http = httpx.Client(
            base_url=self.server_url,
            timeout=timeout,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: LicensingSettings,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "LicensingApiClient":
        return cls(
            server_url=settings.server_url,
            api_version=settings.api_version,
            timeout=settings.timeout,
            max_retries=settings.max_retries,
            retry_backoff_base=settings.retry_backoff_base,
            debug=settings.debug,
            transport=transport,
        )

    def endpoint(self, path: str) -> str:
        return f"{endpoint_prefix(self.api_version)}/{path.lstrip('/')}"

    # ── Transport ──

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request with retry.

        Returns the last response (possibly an error status). Raises
        ServerUnreachableError when no response could be obtained.
        """
        last_error = None
        for attempt in range(self.max_retries):
            try:
                resp = getattr(self._http, method)(self.endpoint(path), **kwargs)
            except httpx.TimeoutException:
                last_error = "timeout"
            except httpx.HTTPError as e:
                last_error = str(e) or e.__class__.__name__
            else:
                if resp.status_code < 500 and resp.status_code != 429:
                    return resp
                last_error = f"HTTP {resp.status_code}"
                if attempt == self.max_retries - 1:
                    return resp

            if attempt < self.max_retries - 1:
                time.sleep(self.retry_backoff_base * (2 ** attempt))

        raise ServerUnreachableError(
            f"Unable to reach the licensing server after {self.max_retries} attempt(s): {last_error}"
        )

    def _call(
        self,
        method: str,
        path: str,
        fallback: type[LicensingError],
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Perform a request and return the decoded JSON object.

        Raises the mapped error for known statuses, ``fallback`` otherwise.
        """
        try:
            resp = self._request(method, path, **kwargs)
        except ServerUnreachableError as exc:
            self._log_error(f"Request to {path} failed", exc.message)
            if fallback is ServerUnreachableError:
                raise
            raise fallback(exc.message) from exc

        if resp.status_code >= 400:
            self._log_error(f"Request to {path} failed", f"HTTP {resp.status_code}")
            error_cls = STATUS_ERRORS.get(resp.status_code)
            if error_cls is not None:
                raise error_cls()
            raise fallback(f"Licensing server returned HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            self._log_error(f"Invalid JSON from {path}", str(exc))
            raise fallback("Invalid JSON response") from exc
        if not isinstance(data, dict):
            raise fallback("Unexpected response body")
        return data

    @staticmethod
    def _parse(model: type[ServerResponse], data: dict[str, Any], fallback: type[LicensingError]):
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise fallback("Malformed response from licensing server") from exc

    def _log_error(self, message: str, detail: str) -> None:
        if self.debug:
            logger.error("%s: %s", message, detail)
        else:
            logger.debug("%s: %s", message, detail)

    # ── Endpoints ──

    def activate(
        self,
        license_key: str,
        fingerprint: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> TokenResponse:
        data = self._call(
            "post", "activate", ActivationFailedError,
            json={
                "license_key": license_key,
                "fingerprint": fingerprint,
                "metadata": metadata or {},
            },
        )
        return self._parse(TokenResponse, data, ActivationFailedError)

    def deactivate(self, license_key: str, fingerprint: str) -> DeactivationResponse:
        data = self._call(
            "post", "deactivate", DeactivationFailedError,
            json={"license_key": license_key, "fingerprint": fingerprint},
        )
        return self._parse(DeactivationResponse, data, DeactivationFailedError)

    def refresh(self, license_key: str, fingerprint: str) -> TokenResponse:
        data = self._call(
            "post", "refresh", ServerUnreachableError,
            json={"license_key": license_key, "fingerprint": fingerprint},
        )
        return self._parse(TokenResponse, data, ServerUnreachableError)

    def heartbeat(
        self,
        license_key: str,
        fingerprint: str,
        data: Optional[dict[str, Any]] = None,
    ) -> HeartbeatResponse:
        """Send a heartbeat. Failures are reported in the response, never raised."""
        try:
            body = self._call(
                "post", "heartbeat", ServerUnreachableError,
                json={
                    "license_key": license_key,
                    "fingerprint": fingerprint,
                    "data": data or {},
                },
            )
            return self._parse(HeartbeatResponse, body, ServerUnreachableError)
        except LicensingError as exc:
            return HeartbeatResponse(success=False, error=exc.message)

    def validate(self, license_key: str, fingerprint: str) -> ValidationResponse:
        data = self._call(
            "post", "validate", ServerUnreachableError,
            json={"license_key": license_key, "fingerprint": fingerprint},
        )
        return self._parse(ValidationResponse, data, ServerUnreachableError)

    def license_info(self, license_key: str) -> dict[str, Any]:
        return self._call(
            "get", f"licenses/{quote(license_key, safe='')}", ServerUnreachableError,
        )

    def health(self) -> bool:
        try:
            data = self._call("get", "health", ServerUnreachableError)
            return self._parse(HealthResponse, data, ServerUnreachableError).healthy
        except LicensingError as exc:
            self._log_error("Health check failed", exc.message)
            return False

    # ── Lifecycle ──

    def close(self) -> None:
        """Close the HTTP client."""
        self._http.close()

    def __enter__(self) -> "LicensingApiClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
