"""Authenticated API calls.

Wraps an outbound HTTP request with the account's ID token as bearer
credential. A 401/403 response gets exactly one retry with a refreshed token.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from oidcauth.core.errors import ReauthorizationRequiredError, TransportError, UnrecoverableApiError
from oidcauth.core.lifecycle import ReauthorizationIntent, TokenLifecycleManager
from oidcauth.core.logging import LoggingClient, ProtocolLogger, get_protocol_logger, redact_sensitive
from oidcauth.storage.credentials import TokenKind

logger = logging.getLogger(__name__)

# Statuses meaning the bearer token was not accepted
REJECTED_TOKEN_STATUSES = frozenset({401, 403})


class ApiRequestGuard:
    """Sends API requests on behalf of an account."""

    def __init__(
        self,
        manager: TokenLifecycleManager,
        protocol_logger: ProtocolLogger | None = None,
        transport: httpx.BaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the guard.

        Args:
            manager: Lifecycle manager handing out tokens.
            protocol_logger: Optional protocol logger for HTTP traffic capture.
            transport: Optional httpx transport (used to fake the API in tests).
            timeout: Request timeout in seconds; defaults to the client's http_timeout.
        """
        self.manager = manager
        self._protocol_logger = protocol_logger or get_protocol_logger()
        self._transport = transport
        self._timeout = timeout or manager.config.http_timeout
        self._http_client: LoggingClient | None = None

    @property
    def http_client(self) -> LoggingClient:
        """Get or create HTTP client with logging."""
        if self._http_client is None:
            self._http_client = LoggingClient(
                protocol_logger=self._protocol_logger,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._http_client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def call(
        self,
        method: str,
        url: str,
        account: str,
        body: str | bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> str:
        """Send a request authenticated with the account's ID token.

        Args:
            method: HTTP method.
            url: Request URL.
            account: Account whose token authenticates the request.
            body: Optional request body.
            headers: Optional extra headers.

        Returns:
            Response body text of a 2xx response.

        Raises:
            ReauthorizationRequiredError: If the account must be authorized again.
            UnrecoverableApiError: On any non-2xx response left after the retry.
            TransportError: On network failures or a failed token refresh.
        """
        with self._protocol_logger.operation("api_call", account):
            token = self._token(account)
            response = self._send(method, url, token, body, headers)

            if response.status_code in REJECTED_TOKEN_STATUSES:
                logger.info(
                    f"{method} {redact_sensitive(url)} returned {response.status_code} "
                    f"for account {account}, refreshing token"
                )
                self.manager.invalidate_token(account, TokenKind.ID, token)
                token = self._token(account)
                response = self._send(method, url, token, body, headers)

            if not response.is_success:
                raise UnrecoverableApiError(response.status_code, response.reason_phrase or response.text)

            return response.text

    def get_json(self, account: str, url: str) -> dict[str, Any]:
        """GET a JSON object on behalf of an account.

        Raises:
            UnrecoverableApiError: If the call fails or the body is not a JSON object.
        """
        text = self.call("GET", url, account)
        try:
            data = json.loads(text)
        except ValueError as e:
            raise UnrecoverableApiError(200, f"Response is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise UnrecoverableApiError(200, "Response is not a JSON object")
        return data

    def make_request(self, account: str, method: str, url: str) -> str:
        """Send a bodiless request on behalf of an account and return the body text."""
        return self.call(method, url, account)

    def _token(self, account: str) -> str:
        result = self.manager.get_auth_token(account, TokenKind.ID)
        if isinstance(result, ReauthorizationIntent):
            raise ReauthorizationRequiredError(result)
        return result

    def _send(
        self,
        method: str,
        url: str,
        token: str,
        body: str | bytes | None,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        request_headers = httpx.Headers(headers or {})
        request_headers["Authorization"] = f"Bearer {token}"
        request_headers["Accept"] = "application/json"
        try:
            return self.http_client.request(method, url, content=body, headers=request_headers)
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} {url} timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error during {method} {url}: {e}") from e
