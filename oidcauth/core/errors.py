"""Error types raised by the token lifecycle components."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from oidcauth.core.lifecycle import ReauthorizationIntent


class OIDCAuthError(Exception):
    """Base exception for OIDCAuth errors."""


class ConfigError(OIDCAuthError):
    """Raised when the static client configuration is invalid."""


class TransportError(OIDCAuthError):
    """Raised when a network exchange fails or returns an unusable response.

    Never retried automatically; callers may try again later.
    """


class TokenEndpointError(TransportError):
    """Raised when the token endpoint rejects a request for a reason other than invalid_grant."""

    def __init__(
        self,
        status_code: int,
        error: str | None = None,
        description: str | None = None,
        body: str = "",
    ) -> None:
        self.status_code = status_code
        self.error = error or "token_error"
        self.description = description or f"Token request failed with status {status_code}"
        self.body = body
        super().__init__(f"{self.status_code} {self.error}: {self.description}")


class InvalidTokenError(OIDCAuthError):
    """Raised when an ID token fails verification or a token response is incomplete."""


class InvalidGrantError(OIDCAuthError):
    """Raised when the token endpoint answers 400 invalid_grant.

    The refresh token (or authorization code) is expired or revoked.
    """

    def __init__(self, description: str = "", body: str = "") -> None:
        self.description = description
        self.body = body
        super().__init__(description or "invalid_grant")


class AuthorizationDeniedError(OIDCAuthError):
    """Raised when the user declines to authorize the client.

    This is a normal negative outcome and is never shown as an error dialog.
    """


class AuthorizationError(OIDCAuthError):
    """Raised when the authorization endpoint redirects back with an error."""

    def __init__(self, error: str, description: str | None = None) -> None:
        self.error = error
        self.description = description
        super().__init__(f"{error}: {description}" if description else error)

    @property
    def user_message(self) -> str:
        """Message shown to the user, error code and description verbatim."""
        return f"Error code: {self.error}\n\n{self.description or ''}"


class ReauthorizationRequiredError(OIDCAuthError):
    """Raised when an account has no usable tokens and must be authorized again."""

    def __init__(self, intent: ReauthorizationIntent) -> None:
        self.intent = intent
        super().__init__(f"Account '{intent.account}' must be authorized again")


class UnrecoverableApiError(OIDCAuthError):
    """Raised when a guarded API call fails and no retry is left."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code} {message}")
