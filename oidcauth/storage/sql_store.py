"""Credential store backed by the SQL database.

Token values are encrypted with Fernet before they reach the database, so a
copied database file is useless without the key.
"""

from __future__ import annotations

import logging

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import select
from sqlalchemy.orm import Session

from oidcauth.storage.credentials import AccountHandle, TokenKind
from oidcauth.storage.database import Database, DatabaseError
from oidcauth.storage.models import Account, AccountToken

logger = logging.getLogger(__name__)


class SQLCredentialStore:
    """Credential store persisting accounts and encrypted tokens with SQLAlchemy."""

    def __init__(self, database: Database, key: str | bytes) -> None:
        """Initialize the store.

        Args:
            database: Database holding the accounts and account_tokens tables.
            key: Fernet key used to encrypt token values.

        Raises:
            DatabaseError: If the key is not a valid Fernet key.
        """
        self._db = database
        try:
            self._fernet = Fernet(key)
        except ValueError as e:
            raise DatabaseError(f"Invalid encryption key: {e}") from e

    def get(self, account: str, kind: TokenKind) -> str | None:
        with self._db.get_session() as session:
            row = self._token_row(session, account, kind)
            if row is None:
                return None
            try:
                return self._fernet.decrypt(row.encrypted_value.encode("ascii")).decode("utf-8")
            except InvalidToken:
                raise DatabaseError(
                    f"Could not decrypt {kind} for account '{account}'; wrong encryption key?"
                ) from None

    def set(self, account: str, kind: TokenKind, value: str) -> None:
        encrypted = self._fernet.encrypt(value.encode("utf-8")).decode("ascii")
        with self._db.get_session() as session, session.begin():
            account_row = self._account_row(session, account)
            if account_row is None:
                raise KeyError(f"Unknown account: {account}")

            row = self._token_row(session, account, kind)
            if row is None:
                session.add(AccountToken(account_id=account_row.id, kind=str(kind), encrypted_value=encrypted))
            else:
                row.encrypted_value = encrypted
        logger.debug(f"Stored {kind} for account {account}")

    def invalidate(self, account: str, kind: TokenKind) -> None:
        with self._db.get_session() as session, session.begin():
            row = self._token_row(session, account, kind)
            if row is not None:
                session.delete(row)
        logger.debug(f"Invalidated {kind} for account {account}")

    def create_account(self, name: str, account_type: str) -> AccountHandle:
        """Create an account, or return the existing one with that name."""
        with self._db.get_session() as session, session.begin():
            row = self._account_row(session, name)
            if row is None:
                row = Account(name=name, account_type=account_type)
                session.add(row)
                logger.info(f"Created account {name}")
            return AccountHandle(name=row.name, account_type=row.account_type)

    def list_accounts(self, account_type: str | None = None) -> list[AccountHandle]:
        stmt = select(Account).order_by(Account.name)
        if account_type is not None:
            stmt = stmt.where(Account.account_type == account_type)
        with self._db.get_session() as session:
            return [AccountHandle(name=row.name, account_type=row.account_type) for row in session.scalars(stmt)]

    @staticmethod
    def _account_row(session: Session, name: str) -> Account | None:
        return session.scalars(select(Account).where(Account.name == name)).first()

    @staticmethod
    def _token_row(session: Session, account: str, kind: TokenKind) -> AccountToken | None:
        stmt = (
            select(AccountToken)
            .join(Account)
            .where(Account.name == account, AccountToken.kind == str(kind))
        )
        return session.scalars(stmt).first()
