"""Tests for tokens.validator — signed token verification and claim checks."""

import base64
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.asymmetric.rsa import generate_private_key

from licensing_client.common.exceptions import (
    FingerprintMismatchError,
    InvalidConfigurationError,
    InvalidTokenError,
    LicenseExpiredError,
    PublicKeyMissingError,
    UsageLimitExceededError,
)
from licensing_client.tokens.claims import LicenseClaims
from licensing_client.tokens.validator import TokenValidator, load_public_key


NOW = datetime(2026, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def frozen_now():
    with patch("licensing_client.tokens.validator._now", return_value=NOW):
        yield NOW


class TestPublicKey:
    def test_missing_key_fails_before_parsing(self, fingerprint_generator):
        validator = TokenValidator(None, fingerprint_generator)
        with pytest.raises(PublicKeyMissingError):
            validator.validate("not even a token")

    def test_malformed_key_is_configuration_error(self, fingerprint_generator):
        with pytest.raises(InvalidConfigurationError):
            TokenValidator("definitely-not-a-key", fingerprint_generator)

    def test_non_ed25519_pem_rejected(self, fingerprint_generator):
        rsa_pem = generate_private_key(public_exponent=65537, key_size=2048).public_key().public_bytes(
            serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode()
        with pytest.raises(InvalidConfigurationError):
            TokenValidator(rsa_pem, fingerprint_generator)

    def test_raw_base64_key(self, signing_key, fingerprint_generator, make_token):
        raw = signing_key.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw,
        )
        encoded = base64.urlsafe_b64encode(raw).decode().rstrip("=")
        validator = TokenValidator(encoded, fingerprint_generator)
        assert validator.is_valid(make_token()) is True

    def test_paserk_prefixed_key(self, signing_key):
        raw = signing_key.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw,
        )
        encoded = "k4.public." + base64.urlsafe_b64encode(raw).decode().rstrip("=")
        assert load_public_key(encoded).public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw,
        ) == raw

    def test_from_settings(self, settings, fingerprint_generator):
        assert TokenValidator.from_settings(settings, fingerprint_generator).has_public_key


class TestSignature:
    def test_valid_token(self, validator, make_token, claims):
        result = validator.validate(make_token())
        assert isinstance(result, LicenseClaims)
        assert result.license_key == claims["license_key"]
        assert result.features == ["reports", "export"]
        assert result.metadata == {"plan": "pro"}

    def test_wrong_signing_key(self, validator, make_token):
        token = make_token(key=Ed25519PrivateKey.generate())
        with pytest.raises(InvalidTokenError):
            validator.validate(token)

    def test_tampered_payload(self, validator, make_token):
        header, payload, signature = make_token().split(".")
        forged = jwt.encode({"license_key": "other"}, Ed25519PrivateKey.generate(), algorithm="EdDSA")
        tampered = ".".join([header, forged.split(".")[1], signature])
        with pytest.raises(InvalidTokenError):
            validator.validate(tampered)

    def test_garbage(self, validator):
        with pytest.raises(InvalidTokenError):
            validator.validate("abc.def")

    def test_hs256_token_rejected(self, validator, claims):
        token = jwt.encode(claims, "shared-secret", algorithm="HS256")
        with pytest.raises(InvalidTokenError):
            validator.validate(token)

    def test_library_expiry_error_maps_to_expired(self, validator, make_token):
        with patch("licensing_client.tokens.validator.jwt.decode",
                   side_effect=jwt.ExpiredSignatureError("Signature has expired")):
            with pytest.raises(LicenseExpiredError):
                validator.validate(make_token())

    def test_expiry_worded_error_maps_to_expired(self, validator, make_token):
        with patch("licensing_client.tokens.validator.jwt.decode",
                   side_effect=jwt.DecodeError("token exp claim invalid")):
            with pytest.raises(LicenseExpiredError):
                validator.validate(make_token())

    def test_bad_claim_types_are_invalid(self, validator, make_token):
        with pytest.raises(InvalidTokenError):
            validator.validate(make_token(max_usages="many"))


class TestFingerprint:
    def test_mismatch(self, validator, make_token):
        with pytest.raises(FingerprintMismatchError):
            validator.validate(make_token(fingerprint="0" * 64))

    def test_missing_claim(self, validator, make_token):
        with pytest.raises(FingerprintMismatchError):
            validator.validate(make_token(drop=("fingerprint",)))

    @pytest.mark.parametrize("claim", [12345, 1.5, ["abc"]])
    def test_non_string_claim_is_mismatch(self, validator, make_token, claim):
        with pytest.raises(FingerprintMismatchError):
            validator.validate(make_token(fingerprint=claim))

    def test_checked_before_expiry(self, validator, make_token):
        token = make_token(fingerprint="0" * 64, exp="2000-01-01T00:00:00+00:00")
        with pytest.raises(FingerprintMismatchError):
            validator.validate(token)


class TestExpiration:
    def test_one_second_ahead_is_valid(self, validator, make_token, frozen_now):
        token = make_token(exp=(frozen_now + timedelta(seconds=1)).isoformat())
        assert validator.validate(token).exp == frozen_now + timedelta(seconds=1)

    def test_one_second_ago_is_expired(self, validator, make_token, frozen_now):
        token = make_token(exp=(frozen_now - timedelta(seconds=1)).isoformat())
        with pytest.raises(LicenseExpiredError):
            validator.validate(token)

    def test_exactly_now_is_expired(self, validator, make_token, frozen_now):
        with pytest.raises(LicenseExpiredError):
            validator.validate(make_token(exp=frozen_now.isoformat()))

    def test_absent_exp_is_perpetual(self, validator, make_token):
        claims = validator.validate(make_token(drop=("exp",)))
        assert claims.exp is None
        assert claims.is_perpetual

    def test_numeric_exp(self, validator, make_token, frozen_now):
        token = make_token(exp=int((frozen_now + timedelta(hours=1)).timestamp()))
        assert validator.is_valid(token) is True

    def test_naive_iso_exp_read_as_utc(self, validator, make_token, frozen_now):
        naive = (frozen_now + timedelta(minutes=5)).replace(tzinfo=None).isoformat()
        assert validator.validate(make_token(exp=naive)).exp.tzinfo is not None


class TestUsageLimits:
    def test_at_limit_is_exceeded(self, validator, make_token):
        with pytest.raises(UsageLimitExceededError):
            validator.validate(make_token(max_usages=5, current_usages=5))

    def test_one_below_limit_is_valid(self, validator, make_token):
        assert validator.is_valid(make_token(max_usages=5, current_usages=4)) is True

    @pytest.mark.parametrize("current", [0, 5, 10_000])
    def test_unlimited(self, validator, make_token, current):
        assert validator.is_valid(make_token(max_usages=-1, current_usages=current)) is True

    def test_missing_counters_are_unmetered(self, validator, make_token):
        assert validator.is_valid(make_token(drop=("max_usages",), current_usages=99)) is True
        assert validator.is_valid(make_token(drop=("current_usages",), max_usages=1)) is True


class TestClaimsUsage:
    @pytest.mark.parametrize("max_usages,current,unlimited", [
        (None, 3, True),
        (5, None, True),
        (-1, 100, True),
        (5, 1, False),
    ])
    def test_is_unlimited(self, max_usages, current, unlimited):
        claims = LicenseClaims(max_usages=max_usages, current_usages=current)
        assert claims.is_unlimited is unlimited

    @pytest.mark.parametrize("max_usages,current,within", [
        (5, 4, True),
        (5, 5, False),
        (-1, 5, True),
        (None, 99, True),
        (1, None, True),
    ])
    def test_within_usage_limits_matches_validator(self, validator, make_token, max_usages, current, within):
        claims = LicenseClaims(max_usages=max_usages, current_usages=current)
        assert claims.within_usage_limits is within
        counters = {"max_usages": max_usages, "current_usages": current}
        present = {name: value for name, value in counters.items() if value is not None}
        missing = tuple(name for name, value in counters.items() if value is None)
        token = make_token(drop=missing, **present)
        assert validator.is_valid(token) is within


class TestTotalHelpers:
    def test_is_valid_never_raises(self, fingerprint_generator):
        assert TokenValidator(None, fingerprint_generator).is_valid("x") is False

    def test_expiration(self, validator, make_token, frozen_now):
        exp = frozen_now + timedelta(days=30)
        assert validator.expiration(make_token(exp=exp.isoformat())) == exp

    def test_expiration_of_invalid_token(self, validator):
        assert validator.expiration("garbage") is None

    def test_expiring_soon_within_threshold(self, validator, make_token, frozen_now):
        token = make_token(exp=(frozen_now + timedelta(days=5)).isoformat())
        assert validator.is_expiring_soon(token, 7) is True
        assert validator.is_expiring_soon(token, 3) is False

    def test_expired_is_not_expiring_soon(self, validator, make_token, frozen_now):
        token = make_token(exp=(frozen_now - timedelta(days=1)).isoformat())
        assert validator.is_expiring_soon(token, 7) is False

    def test_perpetual_is_not_expiring_soon(self, validator, make_token):
        assert validator.is_expiring_soon(make_token(drop=("exp",)), 7) is False

    def test_extract_license_info(self, validator, make_token, claims):
        info = validator.extract_license_info(make_token())
        assert info["license_key"] == claims["license_key"]
        assert info["customer_name"] == "Ada Lovelace"
        assert info["customer_email"] == "ada@example.com"
        assert info["max_usages"] == 5
        assert info["current_usages"] == 1
        assert info["features"] == ["reports", "export"]
        assert info["metadata"] == {"plan": "pro"}
        assert info["expires_at"] is not None
        assert info["issued_at"] is not None

    def test_extract_license_info_on_failure(self, validator, make_token):
        assert validator.extract_license_info(make_token(fingerprint="nope")) == {}

    def test_decode_unverified(self, validator, make_token):
        assert validator.decode_unverified(make_token())["customer_name"] == "Ada Lovelace"
        assert validator.decode_unverified("garbage") == {}
