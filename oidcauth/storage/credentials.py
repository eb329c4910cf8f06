"""Credential store interface and in-memory implementation.

The token core reads and writes individual token slots keyed by
``(account name, TokenKind)``. Stores only guarantee per-slot atomicity.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol, runtime_checkable


class TokenKind(StrEnum):
    """Token slot keys stored per account."""

    ID = "oidcauth.TOKEN_TYPE_ID"
    ACCESS = "oidcauth.TOKEN_TYPE_ACCESS"
    REFRESH = "oidcauth.TOKEN_TYPE_REFRESH"

    @classmethod
    def from_name(cls, name: str) -> TokenKind:
        """Resolve a short name (``id``, ``access``, ``refresh``) or a full slot key."""
        try:
            return cls[name.upper()]
        except KeyError:
            return cls(name)


@dataclass(frozen=True)
class AccountHandle:
    """An account known to the credential store."""

    name: str
    account_type: str


@runtime_checkable
class CredentialStore(Protocol):
    """Persistent account and token storage."""

    def get(self, account: str, kind: TokenKind) -> str | None: ...

    def set(self, account: str, kind: TokenKind, value: str) -> None: ...

    def invalidate(self, account: str, kind: TokenKind) -> None: ...

    def create_account(self, name: str, account_type: str) -> AccountHandle: ...

    def list_accounts(self, account_type: str | None = None) -> list[AccountHandle]: ...


class InMemoryCredentialStore:
    """Credential store kept in process memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._accounts: dict[str, AccountHandle] = {}
        self._tokens: dict[tuple[str, TokenKind], str] = {}

    def get(self, account: str, kind: TokenKind) -> str | None:
        with self._lock:
            return self._tokens.get((account, kind))

    def set(self, account: str, kind: TokenKind, value: str) -> None:
        with self._lock:
            if account not in self._accounts:
                raise KeyError(f"Unknown account: {account}")
            self._tokens[(account, kind)] = value

    def invalidate(self, account: str, kind: TokenKind) -> None:
        with self._lock:
            self._tokens.pop((account, kind), None)

    def create_account(self, name: str, account_type: str) -> AccountHandle:
        """Create an account, or return the existing one with that name."""
        with self._lock:
            handle = self._accounts.get(name)
            if handle is None:
                handle = AccountHandle(name=name, account_type=account_type)
                self._accounts[name] = handle
            return handle

    def list_accounts(self, account_type: str | None = None) -> list[AccountHandle]:
        with self._lock:
            return [
                handle
                for handle in self._accounts.values()
                if account_type is None or handle.account_type == account_type
            ]
