"""SQLAlchemy 2.x ORM models for the credential store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class Account(Base):
    """An authorized user account for one client."""

    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(500), unique=True, nullable=False)
    account_type: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    tokens: Mapped[list[AccountToken]] = relationship(back_populates="account", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Account(name='{self.name}', type='{self.account_type}')>"


class AccountToken(Base):
    """One token slot of an account.

    The value is stored encrypted; see SQLCredentialStore.
    """

    __tablename__ = "account_tokens"
    __table_args__ = (UniqueConstraint("account_id", "kind", name="uq_account_token_kind"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    kind: Mapped[str] = mapped_column(String(100), nullable=False)
    encrypted_value: Mapped[str] = mapped_column(Text, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    account: Mapped[Account] = relationship(back_populates="tokens")

    def __repr__(self) -> str:
        return f"<AccountToken(account_id={self.account_id}, kind='{self.kind}')>"
