"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fakes import (
    AUTHORIZATION_ENDPOINT,
    CLIENT_ID,
    CLIENT_SECRET,
    ISSUER,
    REDIRECT_URI,
    TOKEN_ENDPOINT,
    USERINFO_ENDPOINT,
    FakeProvider,
)

from oidcauth.core.config import ClientConfig
from oidcauth.core.logging import ProtocolLogger
from oidcauth.storage import InMemoryCredentialStore


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    """RSA key the fake provider signs ID tokens with."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def public_key_pem(rsa_private_key: rsa.RSAPrivateKey) -> str:
    """PEM encoded public half of the provider key."""
    return (
        rsa_private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("ascii")
    )


@pytest.fixture
def make_id_token(rsa_private_key: rsa.RSAPrivateKey) -> Callable[..., str]:
    """Factory for signed ID tokens. Keyword arguments override claims; None removes one."""

    def factory(key: Any = None, **claims: Any) -> str:
        now = datetime.now(UTC)
        payload: dict[str, Any] = {
            "iss": ISSUER,
            "sub": "user-123",
            "aud": CLIENT_ID,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(hours=1)).timestamp()),
            "preferred_username": "alice",
        }
        payload.update(claims)
        payload = {k: v for k, v in payload.items() if v is not None}
        return jwt.encode(payload, key or rsa_private_key, algorithm="RS256")

    return factory


@pytest.fixture
def client_config(public_key_pem: str) -> ClientConfig:
    """Client configuration pointing at the fake provider."""
    return ClientConfig(
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        authorization_endpoint=AUTHORIZATION_ENDPOINT,
        token_endpoint=TOKEN_ENDPOINT,
        userinfo_endpoint=USERINFO_ENDPOINT,
        redirect_uri=REDIRECT_URI,
        scopes=("openid", "profile", "offline_access"),
        issuer=ISSUER,
        id_token_signing_key=public_key_pem,
        http_timeout=5.0,
    )


@pytest.fixture
def protocol_logger() -> ProtocolLogger:
    """Protocol logger private to one test."""
    return ProtocolLogger()


@pytest.fixture
def store() -> InMemoryCredentialStore:
    """Empty in-memory credential store."""
    return InMemoryCredentialStore()


@pytest.fixture
def provider() -> FakeProvider:
    """Fake OpenID Connect provider and resource server."""
    return FakeProvider()
