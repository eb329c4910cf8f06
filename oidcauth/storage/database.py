"""SQLite database integration with encryption keys for token values."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography.fernet import Fernet
from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from oidcauth.core.config import DEFAULT_CONFIG_DIR

if TYPE_CHECKING:
    from sqlalchemy.engine.interfaces import DBAPIConnection
    from sqlalchemy.pool import ConnectionPoolEntry

# Default database location
DEFAULT_DB_PATH = DEFAULT_CONFIG_DIR / "credentials.db"
DEFAULT_KEY_PATH = DEFAULT_CONFIG_DIR / "db.key"

# Environment variable names
ENV_DB_KEY = "OIDCAUTH_DB_KEY"
ENV_DB_KEY_FILE = "OIDCAUTH_DB_KEY_FILE"


class DatabaseError(Exception):
    """Base exception for database errors."""


class KeyNotFoundError(DatabaseError):
    """Raised when encryption key cannot be found."""


def get_encryption_key(key_path: Path | None = None) -> str:
    """Get encryption key from environment variable or key file.

    Priority:
    1. OIDCAUTH_DB_KEY environment variable (direct key)
    2. OIDCAUTH_DB_KEY_FILE environment variable (path to key file)
    3. Key file at ``key_path`` (default ~/.oidcauth/db.key)

    Returns:
        The Fernet key as a urlsafe base64 string.

    Raises:
        KeyNotFoundError: If no key is found in any location.
    """
    key = os.environ.get(ENV_DB_KEY)
    if key:
        return key

    key_file_path = os.environ.get(ENV_DB_KEY_FILE)
    if key_file_path:
        env_key_path = Path(key_file_path)
        if env_key_path.exists():
            return env_key_path.read_text().strip()
        raise KeyNotFoundError(f"Key file not found: {key_file_path}")

    key_path = key_path or DEFAULT_KEY_PATH
    if key_path.exists():
        return key_path.read_text().strip()

    raise KeyNotFoundError(
        f"No encryption key found. Set {ENV_DB_KEY} environment variable, "
        f"set {ENV_DB_KEY_FILE} to point to a key file, "
        f"or create key file at {key_path}"
    )


def generate_encryption_key() -> str:
    """Generate a new Fernet key (AES-128-CBC with HMAC-SHA256)."""
    return Fernet.generate_key().decode("ascii")


def save_encryption_key(key: str, key_path: Path | None = None) -> Path:
    """Save encryption key to a file with secure permissions.

    Args:
        key: The encryption key to save.
        key_path: Path to save the key. Defaults to ~/.oidcauth/db.key.

    Returns:
        The path where the key was saved.
    """
    if key_path is None:
        key_path = DEFAULT_KEY_PATH

    key_path.parent.mkdir(parents=True, exist_ok=True)

    # Owner read/write only
    key_path.write_text(key)
    key_path.chmod(0o600)

    return key_path


def _configure_sqlite(dbapi_connection: DBAPIConnection, _connection_record: ConnectionPoolEntry) -> None:
    """Configure each new SQLite connection.

    This is called by SQLAlchemy's event system for each new connection.
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    # Several CLI processes may refresh tokens at once
    cursor.execute("PRAGMA busy_timeout = 5000")
    cursor.close()


def create_database_engine(db_path: Path | None = None, echo: bool = False) -> Engine:
    """Create SQLAlchemy engine for the credential database.

    Args:
        db_path: Path to the database file. Defaults to ~/.oidcauth/credentials.db.
        echo: Whether to echo SQL statements (for debugging).

    Returns:
        Configured SQLAlchemy Engine.
    """
    if db_path is None:
        db_path = DEFAULT_DB_PATH

    db_path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        f"sqlite:///{db_path}",
        echo=echo,
        pool_pre_ping=True,
    )

    event.listen(engine, "connect", _configure_sqlite)

    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create a session factory for the given engine."""
    return sessionmaker(bind=engine, expire_on_commit=False)


class Database:
    """Database manager for the credential store."""

    def __init__(self, db_path: Path | None = None, echo: bool = False) -> None:
        """Initialize database manager.

        Args:
            db_path: Path to the database file.
            echo: Whether to echo SQL statements.
        """
        self._db_path = db_path or DEFAULT_DB_PATH
        self._engine: Engine | None = None
        self._session_factory: sessionmaker[Session] | None = None
        self._echo = echo

    @property
    def path(self) -> Path:
        """Location of the database file."""
        return self._db_path

    @property
    def engine(self) -> Engine:
        """Get or create the database engine."""
        if self._engine is None:
            self._engine = create_database_engine(self._db_path, self._echo)
        return self._engine

    @property
    def session_factory(self) -> sessionmaker[Session]:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = create_session_factory(self.engine)
        return self._session_factory

    def get_session(self) -> Session:
        """Create a new database session."""
        return self.session_factory()

    def init_db(self) -> None:
        """Create all tables defined in the models."""
        from oidcauth.storage.models import Base

        Base.metadata.create_all(self.engine)

    def verify_connection(self) -> bool:
        """Verify the database can be opened and queried.

        Raises:
            DatabaseError: If the connection fails.
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            return True
        except SQLAlchemyError as e:
            raise DatabaseError(f"Database connection failed: {e}") from e

    def close(self) -> None:
        """Close database connections."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
