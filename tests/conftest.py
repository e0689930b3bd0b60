"""Shared test fixtures for the licensing client."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Union

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from licensing_client.client import LicenseClient
from licensing_client.common.config import LicensingSettings
from licensing_client.fingerprint.generator import FingerprintGenerator
from licensing_client.storage.token_store import TokenStore
from licensing_client.tokens.validator import TokenValidator


LICENSE_KEY = "LIC-TEST-0001-ABCD"
APP_KEY = "test-app-key-for-unit-tests"
APP_VERSION = "1.0.0"
API_PREFIX = "/api/licensing/v1"


class FakeLicensingServer:
    """In-memory stand-in for the licensing server, served via httpx.MockTransport."""

    def __init__(self):
        self.routes: dict[tuple[str, str], Union[tuple[int, Any], Callable]] = {}
        self.requests: list[httpx.Request] = []

    def respond(self, method: str, path: str, status: int = 200, json: Any = None) -> None:
        self.routes[(method.upper(), f"{API_PREFIX}/{path}")] = (status, json)

    def respond_with(self, method: str, path: str, handler: Callable) -> None:
        self.routes[(method.upper(), f"{API_PREFIX}/{path}")] = handler

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(route):
            return route(request)
        status, body = route
        return httpx.Response(status, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == f"{API_PREFIX}/{path}"]


@pytest.fixture(scope="session")
def signing_key() -> Ed25519PrivateKey:
    return Ed25519PrivateKey.generate()


@pytest.fixture(scope="session")
def public_key_pem(signing_key) -> str:
    return signing_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


@pytest.fixture
def fingerprint_generator() -> FingerprintGenerator:
    return FingerprintGenerator(
        app_key=APP_KEY,
        app_version=APP_VERSION,
        environment="testing",
    )


@pytest.fixture
def device_fingerprint(fingerprint_generator) -> str:
    return fingerprint_generator.generate()


@pytest.fixture
def settings(tmp_path, public_key_pem) -> LicensingSettings:
    return LicensingSettings(
        server_url="http://licensing.test",
        license_key=LICENSE_KEY,
        public_key=public_key_pem,
        app_key=APP_KEY,
        app_version=APP_VERSION,
        environment="testing",
        storage_path=tmp_path / "licensing",
        cache_store="memory",
        grace_period_days=7,
        heartbeat_interval=3600,
        timeout=5,
    )


@pytest.fixture
def claims(device_fingerprint) -> dict[str, Any]:
    now = datetime.now(timezone.utc)
    return {
        "license_key": LICENSE_KEY,
        "fingerprint": device_fingerprint,
        "exp": (now + timedelta(days=365)).isoformat(),
        "iat": now.isoformat(),
        "max_usages": 5,
        "current_usages": 1,
        "customer_name": "Ada Lovelace",
        "customer_email": "ada@example.com",
        "features": ["reports", "export"],
        "metadata": {"plan": "pro"},
    }


@pytest.fixture
def make_token(signing_key, claims) -> Callable[..., str]:
    """Sign a token from the default claims, with per-claim overrides."""

    def _make(
        key: Optional[Ed25519PrivateKey] = None,
        drop: tuple[str, ...] = (),
        **overrides: Any,
    ) -> str:
        payload = {**claims, **overrides}
        for name in drop:
            payload.pop(name, None)
        return jwt.encode(payload, key or signing_key, algorithm="EdDSA")

    return _make


@pytest.fixture
def validator(public_key_pem, fingerprint_generator) -> TokenValidator:
    return TokenValidator(public_key_pem, fingerprint_generator)


@pytest.fixture
def store(settings) -> TokenStore:
    return TokenStore.from_settings(settings)


@pytest.fixture
def server() -> FakeLicensingServer:
    return FakeLicensingServer()


@pytest.fixture
def license_client(settings, fingerprint_generator, server):
    client = LicenseClient(
        settings,
        fingerprint_generator=fingerprint_generator,
        transport=server.transport,
    )
    yield client
    client.close()


@pytest.fixture
def package_logger():
    """The ``licensing_client`` logger, restored after the test reconfigures it."""
    logger = logging.getLogger("licensing_client")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield logger
    logger.handlers = handlers
    logger.setLevel(level)
    logger.propagate = propagate
