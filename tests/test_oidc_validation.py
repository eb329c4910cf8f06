"""Tests for OIDC token validation."""

import base64
import json
from datetime import UTC, datetime, timedelta

import pytest


# Create a mock JWT token for testing (unsigned)
def _create_test_jwt(
    payload: dict,
    header: dict | None = None,
) -> str:
    """Create a test JWT token (without valid signature)."""
    if header is None:
        header = {"alg": "RS256", "typ": "JWT"}

    def b64_encode(data: dict) -> str:
        json_bytes = json.dumps(data).encode()
        return base64.urlsafe_b64encode(json_bytes).decode().rstrip("=")

    header_b64 = b64_encode(header)
    payload_b64 = b64_encode(payload)
    # Fake signature
    signature_b64 = "fake_signature_for_testing"

    return f"{header_b64}.{payload_b64}.{signature_b64}"


def _claims(**overrides: object) -> dict:
    now = datetime.now(UTC)
    payload = {
        "iss": "https://example.com",
        "sub": "user123",
        "aud": "my-client",
        "exp": int((now + timedelta(hours=1)).timestamp()),
        "iat": int(now.timestamp()),
    }
    payload.update(overrides)
    return {k: v for k, v in payload.items() if v is not None}


class TestTokenValidationResult:
    """Tests for TokenValidationResult."""

    def test_to_dict(self) -> None:
        """Test serialization."""
        from oidcauth.core.oidc.validation import (
            TokenValidationResult,
            ValidationCheck,
            ValidationStatus,
        )

        result = TokenValidationResult(
            is_valid=True,
            signature_valid=True,
            claims_valid=True,
            checks=[
                ValidationCheck(
                    name="Test Check",
                    description="A test check",
                    status=ValidationStatus.VALID,
                    expected="expected",
                    actual="actual",
                    message="Test message",
                )
            ],
            warnings=["Test warning"],
        )

        data = result.to_dict()

        assert data["is_valid"] is True
        assert data["checks"][0]["name"] == "Test Check"
        assert data["checks"][0]["status"] == "valid"
        assert data["warnings"] == ["Test warning"]

    def test_failed_checks(self) -> None:
        """Test only invalid checks are reported as failed."""
        from oidcauth.core.oidc.validation import TokenValidationResult, ValidationCheck, ValidationStatus

        result = TokenValidationResult(
            checks=[
                ValidationCheck(name="A", description="", status=ValidationStatus.VALID),
                ValidationCheck(name="B", description="", status=ValidationStatus.INVALID),
                ValidationCheck(name="C", description="", status=ValidationStatus.WARNING),
            ]
        )

        assert [c.name for c in result.failed_checks] == ["B"]


class TestClaimValidation:
    """Tests for claim checks with signature verification disabled."""

    def _validate(self, payload: dict, nonce: str | None = None, **kwargs):
        from oidcauth.core.oidc.validation import TokenValidator

        kwargs.setdefault("issuer", "https://example.com")
        validator = TokenValidator(audience="my-client", verify_signature=False, **kwargs)
        result = validator.validate_token(_create_test_jwt(payload), nonce=nonce)
        return result, {c.name: c for c in result.checks}

    def test_valid_token(self) -> None:
        """Test validation of a token with valid claims."""
        from oidcauth.core.oidc.validation import ValidationStatus

        result, checks = self._validate(_claims(nonce="test-nonce"), nonce="test-nonce")

        assert checks["Issuer (iss)"].status == ValidationStatus.VALID
        assert checks["Audience (aud)"].status == ValidationStatus.VALID
        assert checks["Expiration (exp)"].status == ValidationStatus.VALID
        assert checks["Nonce"].status == ValidationStatus.VALID
        assert checks["Signature"].status == ValidationStatus.SKIPPED
        assert result.is_valid is True
        assert result.signature_valid is None
        assert result.warnings

    def test_expired_token(self) -> None:
        """Test validation of an expired token."""
        from oidcauth.core.oidc.validation import ValidationStatus

        now = datetime.now(UTC)
        result, checks = self._validate(
            _claims(exp=int((now - timedelta(hours=1)).timestamp()), iat=int((now - timedelta(hours=2)).timestamp()))
        )

        assert checks["Expiration (exp)"].status == ValidationStatus.INVALID
        assert result.is_valid is False
        assert "Expiration (exp)" in (result.error or "")

    def test_expiry_within_clock_skew(self) -> None:
        """Test a token expired less than the allowed skew ago is accepted."""
        from oidcauth.core.oidc.validation import ValidationStatus

        exp = int((datetime.now(UTC) - timedelta(seconds=30)).timestamp())
        _, checks = self._validate(_claims(exp=exp), clock_skew_seconds=120)

        assert checks["Expiration (exp)"].status == ValidationStatus.VALID

    def test_missing_expiry(self) -> None:
        """Test exp is required."""
        from oidcauth.core.oidc.validation import ValidationStatus

        result, checks = self._validate(_claims(exp=None))

        assert checks["Expiration (exp)"].status == ValidationStatus.INVALID
        assert result.is_valid is False

    def test_issuer_mismatch(self) -> None:
        """Test validation with issuer mismatch."""
        from oidcauth.core.oidc.validation import ValidationStatus

        _, checks = self._validate(_claims(iss="https://wrong-issuer.com"))

        assert checks["Issuer (iss)"].status == ValidationStatus.INVALID

    def test_any_well_formed_issuer_without_expected_issuer(self) -> None:
        """Test a well-formed issuer is accepted when none is configured."""
        from oidcauth.core.oidc.validation import ValidationStatus

        _, checks = self._validate(_claims(iss="https://login.example.org/tenant"), issuer=None)

        assert checks["Issuer (iss)"].status == ValidationStatus.VALID

    @pytest.mark.parametrize("iss", ["not a url", "ftp://example.com", "https://example.com?x=1", None])
    def test_malformed_issuer(self, iss: str | None) -> None:
        """Test a missing or malformed issuer is rejected."""
        from oidcauth.core.oidc.validation import ValidationStatus

        _, checks = self._validate(_claims(iss=iss), issuer=None)

        assert checks["Issuer (iss)"].status == ValidationStatus.INVALID

    def test_audience_mismatch(self) -> None:
        """Test validation with audience mismatch."""
        from oidcauth.core.oidc.validation import ValidationStatus

        _, checks = self._validate(_claims(aud="wrong-client"))

        assert checks["Audience (aud)"].status == ValidationStatus.INVALID

    def test_audience_list(self) -> None:
        """Test validation with audience as a list."""
        from oidcauth.core.oidc.validation import ValidationStatus

        _, checks = self._validate(_claims(aud=["my-client", "other-client"]))

        assert checks["Audience (aud)"].status == ValidationStatus.VALID

    def test_nonce_mismatch(self) -> None:
        """Test validation with nonce mismatch."""
        from oidcauth.core.oidc.validation import ValidationStatus

        _, checks = self._validate(_claims(nonce="wrong-nonce"), nonce="expected-nonce")

        assert checks["Nonce"].status == ValidationStatus.INVALID

    def test_issued_in_future(self) -> None:
        """Test a token issued in the future is rejected."""
        from oidcauth.core.oidc.validation import ValidationStatus

        iat = int((datetime.now(UTC) + timedelta(hours=1)).timestamp())
        _, checks = self._validate(_claims(iat=iat), clock_skew_seconds=0)

        assert checks["Issued At (iat)"].status == ValidationStatus.INVALID

    @pytest.mark.parametrize(("claim", "check"), [("exp", "Expiration (exp)"), ("iat", "Issued At (iat)")])
    @pytest.mark.parametrize("value", [10**20, float("nan")])
    def test_unrepresentable_timestamp(self, claim: str, check: str, value: float) -> None:
        """Test a date claim that is not a usable timestamp fails its check instead of raising."""
        from oidcauth.core.oidc.validation import ValidationStatus

        result, checks = self._validate(_claims(**{claim: value}))

        assert checks[check].status == ValidationStatus.INVALID
        assert result.is_valid is False

    def test_missing_subject_is_warning(self) -> None:
        """Test a missing subject does not invalidate the token."""
        from oidcauth.core.oidc.validation import ValidationStatus

        result, checks = self._validate(_claims(sub=None))

        assert checks["Subject (sub)"].status == ValidationStatus.WARNING
        assert result.is_valid is True

    def test_malformed_token(self) -> None:
        """Test a token that is not a JWT is invalid without raising."""
        from oidcauth.core.oidc.validation import TokenValidator

        result = TokenValidator(audience="my-client", verify_signature=False).validate_token("garbage")

        assert result.is_valid is False
        assert result.error is not None
        assert "Invalid JWT format" in result.error


class TestSignatureValidation:
    """Tests for signature checks against a configured key."""

    def test_valid_signature(self, make_id_token, public_key_pem: str) -> None:
        """Test a token signed by the provider key verifies."""
        from oidcauth.core.oidc.validation import TokenValidator

        validator = TokenValidator(audience="test-client", signing_key=public_key_pem)
        result = validator.validate_token(make_id_token())

        assert result.signature_valid is True
        assert result.is_valid is True

    def test_tampered_payload(self, make_id_token, public_key_pem: str) -> None:
        """Test a token whose payload was altered fails."""
        from oidcauth.core.oidc.validation import TokenValidator

        header, _, signature = make_id_token().split(".")
        forged_payload = _create_test_jwt(_claims(aud="test-client")).split(".")[1]
        forged = f"{header}.{forged_payload}.{signature}"

        result = TokenValidator(audience="test-client", signing_key=public_key_pem).validate_token(forged)

        assert result.signature_valid is False
        assert result.is_valid is False

    def test_unsigned_token_rejected(self, public_key_pem: str) -> None:
        """Test alg=none is never accepted."""
        from oidcauth.core.oidc.validation import TokenValidator

        token = _create_test_jwt(_claims(aud="test-client"), header={"alg": "none", "typ": "JWT"})

        result = TokenValidator(audience="test-client", signing_key=public_key_pem).validate_token(token)

        assert result.signature_valid is False

    def test_no_key_material(self, make_id_token) -> None:
        """Test signature verification without a key fails the signature check."""
        from oidcauth.core.oidc.validation import TokenValidator, ValidationStatus

        result = TokenValidator(audience="test-client").validate_token(make_id_token())
        checks = {c.name: c for c in result.checks}

        assert checks["Signature"].status == ValidationStatus.INVALID
        assert result.is_valid is False

    def test_jwks_unreachable(self, make_id_token, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test a JWKS fetch failure is a transport error, not an invalid token."""
        from jwt import PyJWKClientConnectionError

        from oidcauth.core.errors import TransportError
        from oidcauth.core.oidc.validation import JWKSManager, TokenValidator

        def fail(self, token: str) -> None:
            raise PyJWKClientConnectionError("connection refused")

        monkeypatch.setattr(JWKSManager, "get_signing_key", fail)
        validator = TokenValidator(audience="test-client", jwks_uri="https://idp.example.com/jwks")

        with pytest.raises(TransportError):
            validator.validate_token(make_id_token())

    def test_jwks_client_keeps_sub_second_timeout(self, make_id_token, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the configured timeout reaches the JWKS client unchanged."""
        from oidcauth.core.oidc import validation

        captured: dict = {}

        class FakeJWKClient:
            def __init__(self, uri: str, timeout: float) -> None:
                captured["timeout"] = timeout

            def get_signing_key_from_jwt(self, token: str):
                raise validation.PyJWKClientError("no keys")

        monkeypatch.setattr(validation, "PyJWKClient", FakeJWKClient)
        manager = validation.JWKSManager("https://idp.example.com/jwks", timeout=0.5)

        with pytest.raises(validation.PyJWKClientError):
            manager.get_signing_key(make_id_token())

        assert captured["timeout"] == 0.5
