"""ID token verification.

Checks ID tokens against the client configuration: signature (JWKS or a
configured public key), audience, expiry and issuer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from urllib.parse import urlparse

import jwt
from jwt import PyJWKClient, PyJWKClientConnectionError, PyJWKClientError

from oidcauth.core.errors import TransportError


class ValidationStatus(StrEnum):
    """Status of a validation check."""

    VALID = "valid"
    INVALID = "invalid"
    SKIPPED = "skipped"
    WARNING = "warning"


@dataclass
class ValidationCheck:
    """Result of a single validation check."""

    name: str
    description: str
    status: ValidationStatus
    expected: str | None = None
    actual: str | None = None
    message: str = ""


@dataclass
class TokenValidationResult:
    """Complete validation result for an ID token."""

    is_valid: bool = False
    signature_valid: bool | None = None  # None if not checked
    claims_valid: bool = False

    checks: list[ValidationCheck] = field(default_factory=list)

    error: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def failed_checks(self) -> list[ValidationCheck]:
        """Checks that made the token invalid."""
        return [c for c in self.checks if c.status == ValidationStatus.INVALID]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "is_valid": self.is_valid,
            "signature_valid": self.signature_valid,
            "claims_valid": self.claims_valid,
            "checks": [
                {
                    "name": c.name,
                    "description": c.description,
                    "status": c.status.value,
                    "expected": c.expected,
                    "actual": c.actual,
                    "message": c.message,
                }
                for c in self.checks
            ],
            "error": self.error,
            "warnings": self.warnings,
        }


# Asymmetric algorithms only; symmetric algs would require sharing the client secret
_SECURE_ALGORITHMS = frozenset(
    {
        "RS256",
        "RS384",
        "RS512",
        "ES256",
        "ES384",
        "ES512",
        "PS256",
        "PS384",
        "PS512",
        "EdDSA",
    }
)


class JWKSManager:
    """Fetches signing keys from a provider's JWKS endpoint."""

    def __init__(self, jwks_uri: str, timeout: float = 10.0) -> None:
        self.jwks_uri = jwks_uri
        self.timeout = timeout
        self._jwks_client: PyJWKClient | None = None

    def get_signing_key(self, token: str) -> Any:
        """Get the signing key for a token from JWKS.

        Raises:
            PyJWKClientError: If no matching key is found.
            PyJWKClientConnectionError: If the JWKS cannot be fetched.
        """
        if not self._jwks_client:
            self._jwks_client = PyJWKClient(self.jwks_uri, timeout=self.timeout)
        return self._jwks_client.get_signing_key_from_jwt(token).key


class TokenValidator:
    """Validates ID tokens for a single OIDC client."""

    def __init__(
        self,
        audience: str,
        issuer: str | None = None,
        jwks_uri: str | None = None,
        signing_key: str | None = None,
        verify_signature: bool = True,
        clock_skew_seconds: int = 120,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the token validator.

        Args:
            audience: Expected audience (aud claim), the client_id.
            issuer: Expected issuer (iss claim). Any well-formed issuer if None.
            jwks_uri: URI to fetch JWKS for signature verification.
            signing_key: PEM public key used instead of JWKS.
            verify_signature: Whether signatures are checked at all.
            clock_skew_seconds: Allowed clock skew for time-based validation.
            timeout: Timeout for JWKS requests, in seconds.
        """
        self.audience = audience
        self.issuer = issuer
        self.jwks_uri = jwks_uri
        self.signing_key = signing_key
        self.verify_signature = verify_signature
        self.clock_skew_seconds = clock_skew_seconds
        self._jwks_manager = JWKSManager(jwks_uri, timeout) if jwks_uri else None

    def validate_token(self, token: str, nonce: str | None = None) -> TokenValidationResult:
        """Validate an ID token.

        Malformed tokens produce an invalid result rather than an exception.

        Args:
            token: JWT token string.
            nonce: Expected nonce value, when the authorization request sent one.

        Returns:
            TokenValidationResult with all validation checks.

        Raises:
            TransportError: If the JWKS could not be fetched.
        """
        result = TokenValidationResult()

        try:
            payload = jwt.decode(token, options={"verify_signature": False})
        except jwt.exceptions.PyJWTError as e:
            result.error = f"Invalid JWT format: {e}"
            return result

        if self.verify_signature:
            sig_check = self._validate_signature(token)
            result.checks.append(sig_check)
            result.signature_valid = sig_check.status == ValidationStatus.VALID
        else:
            result.checks.append(
                ValidationCheck(
                    name="Signature",
                    description="Token signature verification",
                    status=ValidationStatus.SKIPPED,
                    message="Signature verification disabled by configuration",
                )
            )
            result.warnings.append("ID token signature was not verified.")

        claim_checks = self._validate_claims(payload, nonce)
        result.checks.extend(claim_checks)
        result.claims_valid = all(c.status != ValidationStatus.INVALID for c in claim_checks)

        result.is_valid = result.signature_valid is not False and result.claims_valid
        if not result.is_valid:
            result.error = "; ".join(f"{c.name}: {c.message}" for c in result.failed_checks)

        return result

    def _resolve_key(self, token: str) -> Any:
        if self.signing_key:
            return self.signing_key
        if self._jwks_manager:
            return self._jwks_manager.get_signing_key(token)
        return None

    def _validate_signature(self, token: str) -> ValidationCheck:
        """Validate token signature against the configured key material."""

        def invalid(message: str) -> ValidationCheck:
            return ValidationCheck(
                name="Signature",
                description="Token signature verification",
                status=ValidationStatus.INVALID,
                message=message,
            )

        try:
            key = self._resolve_key(token)
            if key is None:
                return invalid("No JWKS URI or signing key configured")

            # Claims are validated separately
            jwt.decode(
                token,
                key,
                algorithms=list(_SECURE_ALGORITHMS),
                options={
                    "verify_exp": False,
                    "verify_nbf": False,
                    "verify_iat": False,
                    "verify_aud": False,
                    "verify_iss": False,
                },
            )
        except PyJWKClientConnectionError as e:
            raise TransportError(f"Could not fetch JWKS from {self.jwks_uri}: {e}") from e
        except PyJWKClientError as e:
            return invalid(f"Could not find matching key in JWKS: {e}")
        except jwt.exceptions.InvalidSignatureError:
            return invalid("Signature verification failed - token may have been tampered with")
        except jwt.exceptions.PyJWTError as e:
            return invalid(f"Could not verify token signature: {e}")
        except ValueError as e:
            return invalid(f"Signing key could not be loaded: {e}")

        return ValidationCheck(
            name="Signature",
            description="Token signature verification",
            status=ValidationStatus.VALID,
            message="Signature verified",
        )

    def _validate_claims(
        self,
        payload: dict[str, Any],
        nonce: str | None = None,
    ) -> list[ValidationCheck]:
        """Validate the claims an ID token must carry."""
        checks = []
        now = datetime.now(UTC).timestamp()

        # Audience (aud)
        aud = payload.get("aud")
        if isinstance(aud, list):
            aud_valid = self.audience in aud
            aud_str = ", ".join(str(a) for a in aud)
        else:
            aud_valid = aud == self.audience
            aud_str = str(aud) if aud else "(not present)"
        checks.append(
            ValidationCheck(
                name="Audience (aud)",
                description="Token audience includes this client",
                status=ValidationStatus.VALID if aud_valid else ValidationStatus.INVALID,
                expected=self.audience,
                actual=aud_str,
                message="Audience matches" if aud_valid else "Audience mismatch",
            )
        )

        # Expiration (exp)
        exp = payload.get("exp")
        exp_time = _to_datetime(exp)
        if exp_time is not None:
            is_expired = now > exp + self.clock_skew_seconds
            checks.append(
                ValidationCheck(
                    name="Expiration (exp)",
                    description="Token has not expired",
                    status=ValidationStatus.INVALID if is_expired else ValidationStatus.VALID,
                    actual=exp_time.isoformat(),
                    message="Token has expired" if is_expired else "Token is not expired",
                )
            )
        else:
            checks.append(
                ValidationCheck(
                    name="Expiration (exp)",
                    description="Token expiration time",
                    status=ValidationStatus.INVALID,
                    actual=str(exp) if exp is not None else "(not present)",
                    message="Expiration claim missing or not a valid timestamp",
                )
            )

        # Issuer (iss)
        iss = payload.get("iss")
        if self.issuer:
            iss_valid = iss == self.issuer
            message = "Issuer matches" if iss_valid else "Issuer mismatch"
        else:
            iss_valid = isinstance(iss, str) and _is_well_formed_issuer(iss)
            message = "Issuer is well-formed" if iss_valid else "Issuer missing or malformed"
        checks.append(
            ValidationCheck(
                name="Issuer (iss)",
                description="Token issuer",
                status=ValidationStatus.VALID if iss_valid else ValidationStatus.INVALID,
                expected=self.issuer,
                actual=str(iss) if iss else "(not present)",
                message=message,
            )
        )

        # Issued At (iat)
        iat = payload.get("iat")
        iat_time = _to_datetime(iat)
        if iat_time is not None:
            is_future = now < iat - self.clock_skew_seconds
            checks.append(
                ValidationCheck(
                    name="Issued At (iat)",
                    description="Token issue time is not in future",
                    status=ValidationStatus.INVALID if is_future else ValidationStatus.VALID,
                    actual=iat_time.isoformat(),
                    message="Token issued in the future (clock skew?)" if is_future else "Issue time is valid",
                )
            )
        elif iat is not None:
            checks.append(
                ValidationCheck(
                    name="Issued At (iat)",
                    description="Token issue time",
                    status=ValidationStatus.INVALID,
                    actual=str(iat),
                    message="Issue time is not a valid timestamp",
                )
            )

        # Subject (sub)
        if not payload.get("sub"):
            checks.append(
                ValidationCheck(
                    name="Subject (sub)",
                    description="Token contains subject identifier",
                    status=ValidationStatus.WARNING,
                    message="Subject claim not present",
                )
            )

        # Nonce
        if nonce:
            token_nonce = payload.get("nonce")
            checks.append(
                ValidationCheck(
                    name="Nonce",
                    description="Nonce matches request",
                    status=ValidationStatus.VALID if token_nonce == nonce else ValidationStatus.INVALID,
                    expected=nonce,
                    actual=str(token_nonce) if token_nonce else "(not present)",
                    message="Nonce matches" if token_nonce == nonce else "Nonce mismatch or missing",
                )
            )

        return checks


def _to_datetime(value: Any) -> datetime | None:
    """Convert a numeric date claim, or None if it is not a representable timestamp."""
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(value, tz=UTC)
    except (ValueError, OverflowError, OSError):
        return None


def _is_well_formed_issuer(iss: str) -> bool:
    parsed = urlparse(iss)
    return parsed.scheme in ("https", "http") and bool(parsed.netloc) and not parsed.query and not parsed.fragment
