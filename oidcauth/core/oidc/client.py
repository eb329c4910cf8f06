"""Token endpoint client.

Exchanges authorization codes and refresh tokens for token sets and gates
every returned ID token through verification.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from oidcauth.core.config import ClientConfig
from oidcauth.core.errors import (
    InvalidGrantError,
    InvalidTokenError,
    TokenEndpointError,
    TransportError,
)
from oidcauth.core.logging import LoggingClient, ProtocolLogger, get_protocol_logger
from oidcauth.core.oidc.validation import TokenValidationResult, TokenValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenSet:
    """Tokens issued together by the provider. Never mutated; a refresh yields a new set.

    ``id_token`` is None only for a refresh response that did not include one.
    """

    id_token: str | None
    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    scope: str | None = None
    refresh_token: str | None = None

    raw_response: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_response(
        cls,
        data: dict[str, Any],
        refresh_token: str | None = None,
        require_id_token: bool = True,
    ) -> TokenSet:
        """Build a TokenSet from a token endpoint JSON response.

        Args:
            data: Decoded JSON body.
            refresh_token: Refresh token to keep when the response carries none.
            require_id_token: Whether a missing ID token is an error.

        Raises:
            InvalidTokenError: If the access token, or a required ID token, is missing.
        """
        id_token = data.get("id_token") or None
        access_token = data.get("access_token")
        required = ("id_token", "access_token") if require_id_token else ("access_token",)
        missing = [name for name in required if not data.get(name)]
        if missing:
            raise InvalidTokenError(f"Token response is missing {', '.join(missing)}")

        expires_in = data.get("expires_in")
        if expires_in is not None:
            try:
                expires_in = int(expires_in)
            except (TypeError, ValueError):
                raise InvalidTokenError(f"Token response has non-integer expires_in: {expires_in!r}") from None

        return cls(
            id_token=id_token,
            access_token=access_token,
            token_type=data.get("token_type") or "Bearer",
            expires_in=expires_in,
            scope=data.get("scope"),
            refresh_token=data.get("refresh_token") or refresh_token,
            raw_response=data,
        )


class TokenExchanger:
    """Talks to the provider's token and userinfo endpoints for one client."""

    def __init__(
        self,
        config: ClientConfig,
        protocol_logger: ProtocolLogger | None = None,
        transport: httpx.BaseTransport | None = None,
        validator: TokenValidator | None = None,
    ) -> None:
        """Initialize the exchanger.

        Args:
            config: Client configuration with endpoints and credentials.
            protocol_logger: Optional protocol logger for HTTP traffic capture.
            transport: Optional httpx transport (used to fake the provider in tests).
            validator: Optional ID token validator; built from config if omitted.
        """
        config.validate()
        self.config = config
        self._protocol_logger = protocol_logger or get_protocol_logger()
        self._transport = transport
        self._http_client: LoggingClient | None = None
        self.validator = validator or TokenValidator(
            audience=config.client_id,
            issuer=config.issuer,
            jwks_uri=config.jwks_uri,
            signing_key=config.id_token_signing_key,
            verify_signature=config.verify_signature,
            clock_skew_seconds=config.clock_skew_seconds,
            timeout=config.http_timeout,
        )

    @property
    def http_client(self) -> LoggingClient:
        """Get or create HTTP client with logging."""
        if self._http_client is None:
            self._http_client = LoggingClient(
                protocol_logger=self._protocol_logger,
                timeout=self.config.http_timeout,
                transport=self._transport,
            )
        return self._http_client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def exchange_code(self, code: str, nonce: str | None = None) -> TokenSet:
        """Exchange an authorization code for a verified token set.

        Args:
            code: Authorization code from the redirect.
            nonce: Nonce sent with the authorization request, checked against the ID token.

        Returns:
            TokenSet whose ID token passed verification.

        Raises:
            InvalidTokenError: If the returned ID token fails verification.
            InvalidGrantError: If the code was rejected as invalid_grant.
            TransportError: On network failures or other token endpoint errors.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.config.redirect_uri,
        }
        logger.debug("Exchanging authorization code for tokens")
        token_set = TokenSet.from_response(self._token_request(data))
        self._require_valid(token_set.id_token, nonce)
        return token_set

    def refresh(self, refresh_token: str) -> TokenSet:
        """Exchange a refresh token for a new verified token set.

        Scopes are sent again because some providers require them on refresh.
        If the provider does not rotate the refresh token, the current one is
        carried into the new set. Providers may leave the ID token out of a
        refresh response; it is verified only when present.

        Raises:
            InvalidGrantError: If the refresh token is expired or revoked.
            InvalidTokenError: If the response lacks an access token or the ID token fails verification.
            TransportError: On network failures or other token endpoint errors.
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "scope": " ".join(self.config.scopes),
        }
        logger.debug("Refreshing tokens")
        token_set = TokenSet.from_response(
            self._token_request(data), refresh_token=refresh_token, require_id_token=False
        )
        if token_set.id_token:
            self._require_valid(token_set.id_token)
        else:
            logger.debug("Refresh response carried no ID token")
        return token_set

    def validate(self, id_token: str, nonce: str | None = None) -> TokenValidationResult:
        """Run every ID token check and return the detailed result."""
        return self.validator.validate_token(id_token, nonce=nonce)

    def verify(self, id_token: str, nonce: str | None = None) -> bool:
        """Check an ID token's signature, audience, expiry and issuer.

        Returns False for malformed or invalid tokens; raises only when the
        signing keys cannot be fetched.

        Raises:
            TransportError: If the JWKS could not be fetched.
        """
        result = self.validate(id_token, nonce=nonce)
        if not result.is_valid:
            logger.warning(f"ID token rejected: {result.error}")
        return result.is_valid

    def get_userinfo(self, access_token: str) -> dict[str, Any]:
        """Fetch claims about the user from the userinfo endpoint.

        Raises:
            TransportError: If the endpoint is not configured, unreachable or rejects the token.
        """
        if not self.config.userinfo_endpoint:
            raise TransportError("UserInfo endpoint not configured")

        try:
            response = self.http_client.get(
                self.config.userinfo_endpoint,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error fetching userinfo: {e}") from e

        if response.status_code != 200:
            raise TransportError(f"UserInfo request failed with status {response.status_code}")

        try:
            claims = response.json()
        except ValueError as e:
            raise TransportError(f"UserInfo response is not valid JSON: {e}") from e

        if not isinstance(claims, dict):
            raise TransportError("UserInfo response is not a JSON object")
        return claims

    def _require_valid(self, id_token: str, nonce: str | None = None) -> None:
        if not self.verify(id_token, nonce=nonce):
            raise InvalidTokenError("Invalid ID token returned.")

    def _token_request(self, data: dict[str, str]) -> dict[str, Any]:
        """POST a grant to the token endpoint and decode the JSON reply."""
        auth: tuple[str, str] | None = None
        if self.config.client_secret:
            auth = (self.config.client_id, self.config.client_secret)
        else:
            data = {**data, "client_id": self.config.client_id}

        try:
            response = self.http_client.post(
                self.config.token_endpoint,
                data=data,
                auth=auth,
                headers={"Accept": "application/json"},
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Token request timed out after {self.config.http_timeout}s") from e
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error during token request: {e}") from e

        body = response.text

        if response.status_code == 400 and "invalid_grant" in body:
            description = _json_field(response, "error_description") or "Grant is invalid, expired or revoked"
            raise InvalidGrantError(description, body=body)

        if response.status_code != 200:
            raise TokenEndpointError(
                response.status_code,
                error=_json_field(response, "error"),
                description=_json_field(response, "error_description"),
                body=body,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TransportError(f"Token response is not valid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise TransportError("Token response is not a JSON object")
        return payload


def _json_field(response: httpx.Response, name: str) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get(name), str):
        return data[name]
    return None
