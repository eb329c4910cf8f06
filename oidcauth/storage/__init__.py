"""Storage module for OIDCAuth.

Provides the credential store interface, an in-memory store and a SQLite
store with tokens encrypted at rest.
"""

from oidcauth.storage.credentials import (
    AccountHandle,
    CredentialStore,
    InMemoryCredentialStore,
    TokenKind,
)
from oidcauth.storage.database import (
    DEFAULT_DB_PATH,
    DEFAULT_KEY_PATH,
    ENV_DB_KEY,
    ENV_DB_KEY_FILE,
    Database,
    DatabaseError,
    KeyNotFoundError,
    create_database_engine,
    generate_encryption_key,
    get_encryption_key,
    save_encryption_key,
)
from oidcauth.storage.models import Account, AccountToken, Base
from oidcauth.storage.sql_store import SQLCredentialStore

__all__ = [
    # Credential stores
    "AccountHandle",
    "CredentialStore",
    "InMemoryCredentialStore",
    "SQLCredentialStore",
    "TokenKind",
    # Database management
    "Database",
    "DatabaseError",
    "KeyNotFoundError",
    "create_database_engine",
    "generate_encryption_key",
    "get_encryption_key",
    "save_encryption_key",
    # Constants
    "DEFAULT_DB_PATH",
    "DEFAULT_KEY_PATH",
    "ENV_DB_KEY",
    "ENV_DB_KEY_FILE",
    # Models
    "Base",
    "Account",
    "AccountToken",
]
