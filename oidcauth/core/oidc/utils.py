"""OIDC utility functions.

Provides utilities for decoding and inspecting JWT tokens and for deriving
account names from ID token claims.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass
class DecodedToken:
    """Represents a decoded JWT token."""

    header: dict[str, Any] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)
    signature: str = ""

    # Decoded information
    is_valid_format: bool = True
    error: str | None = None

    # Common claims
    issuer: str | None = None
    subject: str | None = None
    audience: str | list[str] | None = None
    expiration: datetime | None = None
    issued_at: datetime | None = None
    nonce: str | None = None
    preferred_username: str | None = None

    @property
    def is_expired(self) -> bool:
        """Check if the token is expired."""
        if self.expiration is None:
            return False
        return datetime.now(UTC) > self.expiration

    @property
    def algorithm(self) -> str | None:
        """Get the signing algorithm from the header."""
        return self.header.get("alg")


def decode_jwt(token: str) -> DecodedToken:
    """Decode a JWT token without verification.

    This decodes the token for inspection purposes only.
    It does NOT verify the signature.

    Args:
        token: JWT token string.

    Returns:
        DecodedToken with header and payload.
    """
    parts = token.split(".") if token else []
    if len(parts) != 3:
        return DecodedToken(
            is_valid_format=False,
            error=f"Invalid JWT format: expected 3 parts, got {len(parts)}",
        )

    try:
        header = _decode_base64url(parts[0])
        payload = _decode_base64url(parts[1])
    except (binascii.Error, ValueError, UnicodeDecodeError) as e:
        return DecodedToken(is_valid_format=False, error=f"Failed to decode JWT: {e}")

    if not isinstance(header, dict) or not isinstance(payload, dict):
        return DecodedToken(is_valid_format=False, error="JWT header and payload must be JSON objects")

    decoded = DecodedToken(
        header=header,
        payload=payload,
        signature=parts[2],
        issuer=payload.get("iss"),
        subject=payload.get("sub"),
        audience=payload.get("aud"),
        nonce=payload.get("nonce"),
        preferred_username=payload.get("preferred_username"),
    )

    try:
        if "exp" in payload:
            decoded.expiration = datetime.fromtimestamp(payload["exp"], tz=UTC)
        if "iat" in payload:
            decoded.issued_at = datetime.fromtimestamp(payload["iat"], tz=UTC)
    except (TypeError, ValueError, OverflowError, OSError) as e:
        decoded.is_valid_format = False
        decoded.error = f"Invalid timestamp claim: {e}"

    return decoded


def _decode_base64url(data: str) -> Any:
    """Decode base64url-encoded JSON data."""
    padding = 4 - len(data) % 4
    if padding != 4:
        data += "=" * padding
    return json.loads(base64.urlsafe_b64decode(data))


def format_account_name(display_name: str, subject: str | None) -> str:
    """Build a unique account name from a display name and the ID token subject.

    Only the subject is guaranteed to be stable and unique, so it is appended
    to the human-readable part: ``preferred_username (sub)``.
    """
    if not subject:
        return display_name
    return f"{display_name} ({subject})"


def format_token_claims(payload: dict[str, Any]) -> list[tuple[str, str, str]]:
    """Format token claims for display.

    Args:
        payload: JWT payload dictionary.

    Returns:
        List of (claim_name, claim_value, description) tuples.
    """
    claim_descriptions = {
        "iss": "Issuer",
        "sub": "Subject (User ID)",
        "aud": "Audience",
        "exp": "Expiration Time",
        "iat": "Issued At",
        "nbf": "Not Before",
        "nonce": "Nonce",
        "auth_time": "Authentication Time",
        "azp": "Authorized Party",
        "at_hash": "Access Token Hash",
        "c_hash": "Code Hash",
        "name": "Full Name",
        "preferred_username": "Preferred Username",
        "email": "Email Address",
        "email_verified": "Email Verified",
    }

    claims = []
    for key, value in payload.items():
        description = claim_descriptions.get(key, "Custom Claim")

        if key in ("exp", "iat", "nbf", "auth_time") and isinstance(value, (int, float)):
            try:
                dt = datetime.fromtimestamp(value, tz=UTC)
                formatted_value = f"{value} ({dt.isoformat()})"
            except (ValueError, OverflowError, OSError):
                formatted_value = str(value)
        elif isinstance(value, dict):
            formatted_value = json.dumps(value, indent=2)
        elif isinstance(value, list):
            formatted_value = ", ".join(str(v) for v in value)
        else:
            formatted_value = str(value)

        claims.append((key, formatted_value, description))

    return claims
