"""Token lifecycle management.

Decides, per account, whether a cached token can be used, must be refreshed
or requires the user to authorize the client again, and drives the
interactive authorization to completion.

State machine per account::

    NO_TOKEN --(refresh token present)--> NEEDS_REFRESH --(ok)--> HAS_VALID_TOKEN
    NO_TOKEN --(no refresh token)--> NEEDS_REAUTHORIZATION
    NEEDS_REFRESH --(invalid_grant / invalid token)--> NEEDS_REAUTHORIZATION
    NEEDS_REAUTHORIZATION --(authorization completed)--> HAS_VALID_TOKEN
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import StrEnum

import httpx

from oidcauth.core.config import ClientConfig, FlowType
from oidcauth.core.errors import (
    AuthorizationDeniedError,
    AuthorizationError,
    InvalidGrantError,
    InvalidTokenError,
    TransportError,
)
from oidcauth.core.logging import ProtocolLogger, get_protocol_logger
from oidcauth.core.oidc.client import TokenExchanger, TokenSet
from oidcauth.core.oidc.flows import (
    AuthorizationDenied,
    AuthorizationFailure,
    AuthorizationRequest,
    get_flow,
)
from oidcauth.core.oidc.utils import decode_jwt, format_account_name
from oidcauth.storage.credentials import CredentialStore, TokenKind

logger = logging.getLogger(__name__)


class TokenState(StrEnum):
    """Token state of an account."""

    NO_TOKEN = "no_token"
    HAS_VALID_TOKEN = "has_valid_token"
    NEEDS_REFRESH = "needs_refresh"
    NEEDS_REAUTHORIZATION = "needs_reauthorization"


@dataclass(frozen=True)
class ReauthorizationIntent:
    """Request for the user to authorize the client again.

    Returned instead of a token; the caller hands ``authorization_url`` to the
    interactive UI and later passes the redirect and ``request`` to
    ``TokenLifecycleManager.complete_authorization``.
    """

    account: str | None
    request: AuthorizationRequest

    @property
    def authorization_url(self) -> str:
        return self.request.url

    @property
    def state(self) -> str:
        return self.request.state

    @property
    def nonce(self) -> str:
        return self.request.nonce

    @property
    def flow_type(self) -> FlowType:
        return self.request.flow_type


class TokenLifecycleManager:
    """Hands out tokens for accounts, refreshing or re-authorizing as needed.

    Refreshes are serialized per account, so concurrent callers for the same
    account trigger at most one refresh.
    """

    def __init__(
        self,
        config: ClientConfig,
        store: CredentialStore,
        exchanger: TokenExchanger | None = None,
        protocol_logger: ProtocolLogger | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            config: Client configuration.
            store: Credential store holding accounts and token slots.
            exchanger: Token exchanger; built from config if omitted.
            protocol_logger: Optional protocol logger for HTTP traffic capture.
            transport: Optional httpx transport for the built exchanger.
        """
        self.config = config
        self.store = store
        self._protocol_logger = protocol_logger or get_protocol_logger()
        self.exchanger = exchanger or TokenExchanger(
            config, protocol_logger=self._protocol_logger, transport=transport
        )
        self._flow = get_flow(config.flow_type)
        self._states: dict[str, TokenState] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def state(self, account: str) -> TokenState:
        """Last known token state of an account."""
        return self._states.get(account, TokenState.NO_TOKEN)

    def get_auth_token(self, account: str, kind: TokenKind = TokenKind.ID) -> str | ReauthorizationIntent:
        """Get a usable token for an account.

        A cached token is returned as is. Otherwise the stored refresh token
        is used once; if that is impossible or rejected, a
        ReauthorizationIntent is returned instead of a token.

        Args:
            account: Account name.
            kind: Which token to return.

        Returns:
            The token, or a ReauthorizationIntent.

        Raises:
            TransportError: If the refresh failed on the network or at the
                token endpoint. The account stays in NEEDS_REFRESH.
        """
        with self._account_lock(account):
            token = self.store.get(account, kind)
            if self._is_usable(token, kind):
                self._set_state(account, TokenState.HAS_VALID_TOKEN)
                return token

            refresh_token = self.store.get(account, TokenKind.REFRESH)
            if not refresh_token:
                logger.info(f"No refresh token for account {account}, authorization required")
                self._set_state(account, TokenState.NEEDS_REAUTHORIZATION)
                return self._intent(account)

            self._set_state(account, TokenState.NEEDS_REFRESH)
            try:
                with self._protocol_logger.operation("token_refresh", account):
                    token_set = self.exchanger.refresh(refresh_token)
            except InvalidGrantError as e:
                logger.warning(f"Refresh token for account {account} rejected: {e}")
                self.store.invalidate(account, TokenKind.REFRESH)
                self._set_state(account, TokenState.NEEDS_REAUTHORIZATION)
                return self._intent(account)
            except InvalidTokenError as e:
                logger.warning(f"Refresh for account {account} returned unusable tokens: {e}")
                self._set_state(account, TokenState.NEEDS_REAUTHORIZATION)
                return self._intent(account)

            self._persist(account, token_set)
            token = _token_of(token_set, kind)
            if not token:
                logger.info(f"Refresh for account {account} returned no {kind.name.lower()} token")
                self._set_state(account, TokenState.NEEDS_REAUTHORIZATION)
                return self._intent(account)

            self._set_state(account, TokenState.HAS_VALID_TOKEN)
            return token

    def begin_authorization(self, account: str | None = None) -> AuthorizationRequest:
        """Start an interactive authorization.

        Args:
            account: Account being re-authorized, or None for a new account.

        Returns:
            AuthorizationRequest whose URL is shown to the user.
        """
        request = self._flow.create_authorization_request(self.config)
        logger.info(f"Starting {request.flow_type} authorization for account {account or '<new>'}")
        return request

    def complete_authorization(
        self,
        redirect_uri: str,
        request: AuthorizationRequest,
        account: str | None = None,
    ) -> str:
        """Finish an interactive authorization from the redirect it ended with.

        Tokens are verified before anything is stored. New accounts are named
        ``preferred_username (sub)``.

        Args:
            redirect_uri: Redirect URI returned by the interactive UI.
            request: The request created by begin_authorization.
            account: Account being re-authorized, or None for a new account.

        Returns:
            Name of the authorized account.

        Raises:
            AuthorizationDeniedError: If the user declined.
            AuthorizationError: If the provider redirected back with an error.
            InvalidTokenError: If an ID token failed verification.
            InvalidGrantError: If the authorization code was rejected.
            TransportError: On network or token endpoint failures.
        """
        flow = get_flow(request.flow_type)
        result = flow.parse_redirect(redirect_uri, expected_state=request.state)

        if isinstance(result, AuthorizationDenied):
            self._mark_reauthorization(account)
            logger.info(f"User denied authorization for account {account or '<new>'}")
            raise AuthorizationDeniedError(result.description or "access_denied")

        if isinstance(result, AuthorizationFailure):
            self._mark_reauthorization(account)
            logger.warning(f"Authorization failed: {result.error} {result.description or ''}")
            raise AuthorizationError(result.error, result.description)

        try:
            with self._protocol_logger.operation("code_exchange", account):
                token_set = flow.complete(result, self.exchanger, nonce=request.nonce)
                name = account or self._account_name(token_set)
        except (InvalidTokenError, InvalidGrantError):
            self._mark_reauthorization(account)
            raise

        with self._account_lock(name):
            self.store.create_account(name, self.config.account_type)
            self._persist(name, token_set)
            self._set_state(name, TokenState.HAS_VALID_TOKEN)
        logger.info(f"Account {name} authorized")
        return name

    def cancel_authorization(self, account: str | None) -> None:
        """Record that the user dismissed the authorization UI. Nothing is stored."""
        self._mark_reauthorization(account)
        logger.info(f"Authorization cancelled for account {account or '<new>'}")

    def invalidate_token(self, account: str, kind: TokenKind, token: str) -> bool:
        """Invalidate a cached token if it is still the one stored.

        A token already replaced by a concurrent refresh is left alone.

        Returns:
            True if the slot was cleared.
        """
        with self._account_lock(account):
            if self.store.get(account, kind) != token:
                return False
            self.store.invalidate(account, kind)
            self._set_state(account, TokenState.NO_TOKEN)
            logger.debug(f"Invalidated {kind} for account {account}")
            return True

    def _intent(self, account: str) -> ReauthorizationIntent:
        return ReauthorizationIntent(account=account, request=self.begin_authorization(account))

    def _account_name(self, token_set: TokenSet) -> str:
        """Derive the account name from userinfo, then the ID token, then the app name."""
        decoded = decode_jwt(token_set.id_token)
        username = None
        if self.config.userinfo_endpoint:
            try:
                username = self.exchanger.get_userinfo(token_set.access_token).get("preferred_username")
            except TransportError as e:
                logger.warning(f"Could not fetch userinfo, naming account from ID token: {e}")
        username = username or decoded.preferred_username or self.config.app_name
        return format_account_name(username, decoded.subject)

    def _persist(self, account: str, token_set: TokenSet) -> None:
        slots = (
            (TokenKind.ID, token_set.id_token),
            (TokenKind.ACCESS, token_set.access_token),
            (TokenKind.REFRESH, token_set.refresh_token),
        )
        for kind, value in slots:
            if value:
                self.store.set(account, kind, value)
            elif kind != TokenKind.ID:
                self.store.invalidate(account, kind)

    def _mark_reauthorization(self, account: str | None) -> None:
        if account is None:
            return
        with self._account_lock(account):
            self._set_state(account, TokenState.NEEDS_REAUTHORIZATION)

    def _set_state(self, account: str, state: TokenState) -> None:
        previous = self._states.get(account, TokenState.NO_TOKEN)
        self._states[account] = state
        if previous != state:
            logger.debug(f"Account {account}: {previous} -> {state}")

    @contextmanager
    def _account_lock(self, account: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(account, threading.Lock())
        with lock:
            yield

    @staticmethod
    def _is_usable(token: str | None, kind: TokenKind) -> bool:
        if not token:
            return False
        if kind != TokenKind.ID:
            return True
        decoded = decode_jwt(token)
        return decoded.is_valid_format and not decoded.is_expired


def _token_of(token_set: TokenSet, kind: TokenKind) -> str | None:
    if kind == TokenKind.ACCESS:
        return token_set.access_token
    if kind == TokenKind.REFRESH:
        return token_set.refresh_token
    return token_set.id_token
