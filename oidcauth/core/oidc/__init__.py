"""OIDC flows, token exchange and ID token verification."""

from oidcauth.core.oidc.client import TokenExchanger, TokenSet
from oidcauth.core.oidc.flows import (
    FLOWS,
    AuthorizationCodeFlow,
    AuthorizationDenied,
    AuthorizationFailure,
    AuthorizationRequest,
    AuthorizationResult,
    CodeGrant,
    HybridFlow,
    HybridTokens,
    ImplicitFlow,
    ImplicitTokens,
    OIDCFlow,
    build_authorization_url,
    get_flow,
)
from oidcauth.core.oidc.utils import (
    DecodedToken,
    decode_jwt,
    format_account_name,
    format_token_claims,
)
from oidcauth.core.oidc.validation import (
    JWKSManager,
    TokenValidationResult,
    TokenValidator,
    ValidationCheck,
    ValidationStatus,
)

__all__ = [
    # Client
    "TokenExchanger",
    "TokenSet",
    # Flows
    "FLOWS",
    "AuthorizationCodeFlow",
    "AuthorizationDenied",
    "AuthorizationFailure",
    "AuthorizationRequest",
    "AuthorizationResult",
    "CodeGrant",
    "HybridFlow",
    "HybridTokens",
    "ImplicitFlow",
    "ImplicitTokens",
    "OIDCFlow",
    "build_authorization_url",
    "get_flow",
    # Utils
    "DecodedToken",
    "decode_jwt",
    "format_account_name",
    "format_token_claims",
    # Validation
    "JWKSManager",
    "TokenValidationResult",
    "TokenValidator",
    "ValidationCheck",
    "ValidationStatus",
]
