"""OIDC authentication flows.

Each supported flow is a strategy that knows how to:
- build the authorization request URL,
- parse the redirect that ends the interactive authorization,
- turn the parsed result into a verified token set.

Flows:
- Authorization Code: all tokens come from the token endpoint.
- Implicit: all tokens come back in the redirect fragment; no refresh token.
- Hybrid: code and ID token in the fragment, remaining tokens from the token endpoint.
"""

from __future__ import annotations

import re
import secrets
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar
from urllib.parse import parse_qsl, urlencode, urlsplit

from oidcauth.core.config import ClientConfig, FlowType
from oidcauth.core.errors import ConfigError, InvalidTokenError
from oidcauth.core.oidc.client import TokenSet

if TYPE_CHECKING:
    from oidcauth.core.oidc.client import TokenExchanger

# Scopes that let the provider issue refresh tokens ("offline" on some providers)
OFFLINE_SCOPES = frozenset({"offline_access", "offline"})

_INTEGER = re.compile(r"\d+")


@dataclass(frozen=True)
class AuthorizationRequest:
    """An authorization request handed to the interactive UI."""

    url: str
    state: str
    nonce: str
    flow_type: FlowType


@dataclass(frozen=True)
class CodeGrant:
    """Authorization code returned by the Authorization Code flow."""

    code: str
    state: str | None = None


@dataclass(frozen=True)
class ImplicitTokens:
    """Tokens returned in the redirect fragment by the Implicit flow."""

    access_token: str
    id_token: str
    token_type: str
    expires_in: int
    scope: str | None = None
    state: str | None = None

    def to_token_set(self) -> TokenSet:
        """Convert to a TokenSet. The Implicit flow never yields a refresh token."""
        return TokenSet(
            id_token=self.id_token,
            access_token=self.access_token,
            token_type=self.token_type,
            expires_in=self.expires_in,
            scope=self.scope,
        )

    def to_fragment(self) -> str:
        """Encode as a redirect URI fragment."""
        params = {
            "access_token": self.access_token,
            "id_token": self.id_token,
            "token_type": self.token_type,
            "expires_in": str(self.expires_in),
            "scope": self.scope,
            "state": self.state,
        }
        return urlencode({k: v for k, v in params.items() if v is not None})


@dataclass(frozen=True)
class HybridTokens:
    """Code and ID token returned by the Hybrid flow."""

    code: str
    id_token: str
    state: str | None = None


@dataclass(frozen=True)
class AuthorizationFailure:
    """The provider (or the redirect itself) reported an error."""

    error: str
    description: str | None = None


@dataclass(frozen=True)
class AuthorizationDenied:
    """The user declined to authorize the client."""

    description: str | None = None


AuthorizationResult = CodeGrant | ImplicitTokens | HybridTokens | AuthorizationFailure | AuthorizationDenied


def select_prompt(scopes: Iterable[str]) -> str:
    """Pick the OIDC prompt value for a scope list.

    Refresh tokens need explicit consent; otherwise force a fresh login so the
    user cannot authorize the wrong account by accident.
    """
    return "consent" if OFFLINE_SCOPES.intersection(scopes) else "login"


def _params(component: str) -> dict[str, str]:
    return dict(parse_qsl(component, keep_blank_values=True))


class OIDCFlow:
    """Base class for flow strategies."""

    flow_type: ClassVar[FlowType]
    response_type: ClassVar[str]

    def create_authorization_request(
        self,
        config: ClientConfig,
        state: str | None = None,
        nonce: str | None = None,
    ) -> AuthorizationRequest:
        """Create the authorization request URL for this flow.

        Args:
            config: Client configuration.
            state: OAuth2 state parameter (generated if not provided).
            nonce: OIDC nonce parameter (generated if not provided).

        Returns:
            AuthorizationRequest with URL, state and nonce.

        Raises:
            ConfigError: If the configuration is invalid.
        """
        config.validate()
        state = state or secrets.token_urlsafe(32)
        nonce = nonce or secrets.token_urlsafe(32)

        params: dict[str, str] = {
            "response_type": self.response_type,
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "scope": " ".join(config.scopes),
            "state": state,
            "nonce": nonce,
            "prompt": select_prompt(config.scopes),
        }
        if config.display:
            params["display"] = config.display

        separator = "&" if "?" in config.authorization_endpoint else "?"
        url = f"{config.authorization_endpoint}{separator}{urlencode(params)}"

        return AuthorizationRequest(url=url, state=state, nonce=nonce, flow_type=self.flow_type)

    def parse_redirect(self, redirect_uri: str, expected_state: str | None = None) -> AuthorizationResult:
        """Parse the redirect URI that ends the interactive authorization.

        Args:
            redirect_uri: Full redirect URI including query and fragment.
            expected_state: State sent with the request; a different or missing
                state in the response is reported as a failure.

        Returns:
            The AuthorizationResult variant for this redirect.
        """
        parts = urlsplit(redirect_uri)
        query = _params(parts.query)
        fragment = _params(parts.fragment)

        # Errors may come back in the query or, for fragment flows, the fragment
        for params in (query, fragment):
            if "error" in params:
                if params["error"] == "access_denied":
                    return AuthorizationDenied(params.get("error_description"))
                return AuthorizationFailure(params["error"], params.get("error_description"))

        params = self._response_params(query, fragment)

        if expected_state is not None and params.get("state") != expected_state:
            return AuthorizationFailure(
                "state_mismatch",
                f"State parameter mismatch. Expected: {expected_state}, Got: {params.get('state')}",
            )

        return self._build_result(params)

    def complete(
        self,
        result: AuthorizationResult,
        exchanger: TokenExchanger,
        nonce: str | None = None,
    ) -> TokenSet:
        """Turn a successful authorization result into a verified TokenSet.

        Raises:
            InvalidTokenError: If an ID token fails verification.
            InvalidGrantError: If the token endpoint rejects the code.
            TransportError: On network or token endpoint failures.
        """
        raise NotImplementedError

    def _response_params(self, query: dict[str, str], fragment: dict[str, str]) -> dict[str, str]:
        return fragment or query

    def _build_result(self, params: dict[str, str]) -> AuthorizationResult:
        raise NotImplementedError

    def _unexpected(self, result: AuthorizationResult) -> ValueError:
        return ValueError(f"{type(self).__name__} cannot complete a {type(result).__name__} result")


class AuthorizationCodeFlow(OIDCFlow):
    """Authorization Code flow: the code arrives in the query."""

    flow_type = FlowType.AUTHORIZATION_CODE
    response_type = "code"

    def _response_params(self, query: dict[str, str], fragment: dict[str, str]) -> dict[str, str]:
        return query

    def _build_result(self, params: dict[str, str]) -> AuthorizationResult:
        if not params.get("code"):
            return AuthorizationFailure("invalid_response", "Redirect does not contain a code parameter")
        return CodeGrant(code=params["code"], state=params.get("state"))

    def complete(
        self,
        result: AuthorizationResult,
        exchanger: TokenExchanger,
        nonce: str | None = None,
    ) -> TokenSet:
        if not isinstance(result, CodeGrant):
            raise self._unexpected(result)
        return exchanger.exchange_code(result.code, nonce=nonce)


class ImplicitFlow(OIDCFlow):
    """Implicit flow: every token arrives in the fragment, the token endpoint is unused."""

    flow_type = FlowType.IMPLICIT
    response_type = "id_token token"

    def _response_params(self, query: dict[str, str], fragment: dict[str, str]) -> dict[str, str]:
        return fragment

    def _build_result(self, params: dict[str, str]) -> AuthorizationResult:
        missing = [
            name for name in ("access_token", "id_token", "token_type", "expires_in") if not params.get(name)
        ]
        if missing:
            return AuthorizationFailure("invalid_response", f"Redirect fragment is missing {', '.join(missing)}")

        if not _INTEGER.fullmatch(params["expires_in"]):
            return AuthorizationFailure("invalid_response", f"expires_in is not an integer: {params['expires_in']}")

        return ImplicitTokens(
            access_token=params["access_token"],
            id_token=params["id_token"],
            token_type=params["token_type"],
            expires_in=int(params["expires_in"]),
            scope=params.get("scope"),
            state=params.get("state"),
        )

    def complete(
        self,
        result: AuthorizationResult,
        exchanger: TokenExchanger,
        nonce: str | None = None,
    ) -> TokenSet:
        if not isinstance(result, ImplicitTokens):
            raise self._unexpected(result)
        if not exchanger.verify(result.id_token, nonce=nonce):
            raise InvalidTokenError("Invalid ID token returned.")
        return result.to_token_set()


class HybridFlow(OIDCFlow):
    """Hybrid flow: code and ID token in the fragment, access and refresh tokens via the code.

    ``token`` is deliberately not requested so the access token is only ever
    issued to an authenticated client at the token endpoint.
    """

    flow_type = FlowType.HYBRID
    response_type = "code id_token"

    def _build_result(self, params: dict[str, str]) -> AuthorizationResult:
        missing = [name for name in ("code", "id_token") if not params.get(name)]
        if missing:
            return AuthorizationFailure("invalid_response", f"Redirect is missing {', '.join(missing)}")
        return HybridTokens(code=params["code"], id_token=params["id_token"], state=params.get("state"))

    def complete(
        self,
        result: AuthorizationResult,
        exchanger: TokenExchanger,
        nonce: str | None = None,
    ) -> TokenSet:
        if not isinstance(result, HybridTokens):
            raise self._unexpected(result)
        if not exchanger.verify(result.id_token, nonce=nonce):
            raise InvalidTokenError("Invalid ID token returned in the redirect fragment.")
        return exchanger.exchange_code(result.code, nonce=nonce)


FLOWS: dict[FlowType, OIDCFlow] = {
    FlowType.AUTHORIZATION_CODE: AuthorizationCodeFlow(),
    FlowType.IMPLICIT: ImplicitFlow(),
    FlowType.HYBRID: HybridFlow(),
}


def get_flow(flow_type: FlowType | str) -> OIDCFlow:
    """Look up the strategy for a flow type.

    Raises:
        ConfigError: If the flow type is not supported.
    """
    try:
        return FLOWS[FlowType(flow_type)]
    except (KeyError, ValueError):
        raise ConfigError(f"Unsupported flow_type: {flow_type!r}") from None


def build_authorization_url(config: ClientConfig, flow: FlowType | str | None = None) -> str:
    """Build the authorization endpoint URL for a flow.

    Args:
        config: Client configuration.
        flow: Flow to use; defaults to the configured flow type.

    Raises:
        ConfigError: If the configuration or flow type is invalid.
    """
    strategy = get_flow(flow or config.flow_type)
    return strategy.create_authorization_request(config).url
