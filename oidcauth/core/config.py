"""Application configuration management.

Loads configuration from config.yaml files and environment variables.
Environment variables take precedence over config file settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from enum import StrEnum
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

from oidcauth.core.errors import ConfigError

# Default config locations
DEFAULT_CONFIG_DIR = Path.home() / ".oidcauth"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

# Environment variable prefix
ENV_PREFIX = "OIDCAUTH_"

DEFAULT_SCOPES = ("openid", "profile", "offline_access")
DEFAULT_ACCOUNT_TYPE = "com.example.oidcauth"
DEFAULT_APP_NAME = "OIDCAuth"


class FlowType(StrEnum):
    """OIDC authentication flow used to obtain tokens."""

    AUTHORIZATION_CODE = "authorization_code"
    IMPLICIT = "implicit"
    HYBRID = "hybrid"


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _unique(scopes: Any) -> tuple[str, ...]:
    if isinstance(scopes, str):
        scopes = scopes.split()
    seen: list[str] = []
    for scope in scopes or ():
        if scope and scope not in seen:
            seen.append(scope)
    return tuple(seen)


@dataclass(frozen=True)
class ClientConfig:
    """Static OIDC client configuration shared by all components."""

    client_id: str
    authorization_endpoint: str
    token_endpoint: str
    redirect_uri: str
    userinfo_endpoint: str = ""
    client_secret: str | None = None
    scopes: tuple[str, ...] = DEFAULT_SCOPES
    flow_type: FlowType = FlowType.AUTHORIZATION_CODE

    # ID token verification
    issuer: str | None = None
    jwks_uri: str | None = None
    id_token_signing_key: str | None = None  # PEM public key
    verify_signature: bool = True
    clock_skew_seconds: int = 120

    # Request/account presentation
    display: str | None = "touch"
    account_type: str = DEFAULT_ACCOUNT_TYPE
    app_name: str = DEFAULT_APP_NAME

    http_timeout: float = 30.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "scopes", _unique(self.scopes))
        if not isinstance(self.flow_type, FlowType):
            try:
                object.__setattr__(self, "flow_type", FlowType(self.flow_type))
            except ValueError:
                raise ConfigError(f"Unsupported flow_type: {self.flow_type!r}") from None

    def validate(self) -> None:
        """Check the configuration, failing fast on anything unusable.

        Raises:
            ConfigError: If a required value is missing or malformed.
        """
        if not self.client_id:
            raise ConfigError("client_id must not be empty")

        for name in ("authorization_endpoint", "token_endpoint"):
            value = getattr(self, name)
            if not _is_http_url(value):
                raise ConfigError(f"{name} is not a valid http(s) URL: {value!r}")

        if self.userinfo_endpoint and not _is_http_url(self.userinfo_endpoint):
            raise ConfigError(f"userinfo_endpoint is not a valid http(s) URL: {self.userinfo_endpoint!r}")

        if self.jwks_uri and not _is_http_url(self.jwks_uri):
            raise ConfigError(f"jwks_uri is not a valid http(s) URL: {self.jwks_uri!r}")

        # Native apps may use custom schemes (app://...), so only require a scheme
        if not self.redirect_uri or not urlparse(self.redirect_uri).scheme:
            raise ConfigError(f"redirect_uri is not a valid URI: {self.redirect_uri!r}")

        if not self.scopes:
            raise ConfigError("At least one scope must be configured")

        if self.verify_signature and not (self.jwks_uri or self.id_token_signing_key):
            raise ConfigError(
                "ID token signature verification requires jwks_uri or id_token_signing_key "
                "(set verify_signature: false to disable it)"
            )

        if self.http_timeout <= 0:
            raise ConfigError("http_timeout must be positive")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientConfig:
        """Create ClientConfig from a dictionary."""
        return cls(
            client_id=data.get("client_id", ""),
            client_secret=data.get("client_secret") or None,
            authorization_endpoint=data.get("authorization_endpoint", ""),
            token_endpoint=data.get("token_endpoint", ""),
            userinfo_endpoint=data.get("userinfo_endpoint", ""),
            redirect_uri=data.get("redirect_uri", ""),
            scopes=_unique(data.get("scopes", DEFAULT_SCOPES)),
            flow_type=data.get("flow_type", FlowType.AUTHORIZATION_CODE),
            issuer=data.get("issuer") or None,
            jwks_uri=data.get("jwks_uri") or None,
            id_token_signing_key=data.get("id_token_signing_key") or None,
            verify_signature=data.get("verify_signature", True),
            clock_skew_seconds=data.get("clock_skew_seconds", 120),
            display=data.get("display", "touch"),
            account_type=data.get("account_type", DEFAULT_ACCOUNT_TYPE),
            app_name=data.get("app_name", DEFAULT_APP_NAME),
            http_timeout=float(data.get("http_timeout", 30.0)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "authorization_endpoint": self.authorization_endpoint,
            "token_endpoint": self.token_endpoint,
            "userinfo_endpoint": self.userinfo_endpoint,
            "redirect_uri": self.redirect_uri,
            "scopes": list(self.scopes),
            "flow_type": self.flow_type.value,
            "issuer": self.issuer,
            "jwks_uri": self.jwks_uri,
            "id_token_signing_key": self.id_token_signing_key,
            "verify_signature": self.verify_signature,
            "clock_skew_seconds": self.clock_skew_seconds,
            "display": self.display,
            "account_type": self.account_type,
            "app_name": self.app_name,
            "http_timeout": self.http_timeout,
        }


@dataclass
class StorageSettings:
    """Credential store settings."""

    db_path: Path = DEFAULT_CONFIG_DIR / "credentials.db"
    key_path: Path = DEFAULT_CONFIG_DIR / "db.key"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StorageSettings:
        """Create StorageSettings from a dictionary."""
        defaults = cls()
        return cls(
            db_path=Path(data["db_path"]).expanduser() if data.get("db_path") else defaults.db_path,
            key_path=Path(data["key_path"]).expanduser() if data.get("key_path") else defaults.key_path,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"db_path": str(self.db_path), "key_path": str(self.key_path)}


@dataclass
class LoggingSettings:
    """Protocol logging settings."""

    level: str = "INFO"
    trace_enabled: bool = False
    log_file: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoggingSettings:
        """Create LoggingSettings from a dictionary."""
        return cls(
            level=str(data.get("level", "INFO")).upper(),
            trace_enabled=data.get("trace_enabled", False),
            log_file=data.get("log_file"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "level": self.level,
            "trace_enabled": self.trace_enabled,
            "log_file": self.log_file,
        }


@dataclass
class AppConfig:
    """Main application configuration."""

    client: ClientConfig
    storage: StorageSettings = field(default_factory=StorageSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_path: Path | None = None) -> AppConfig:
        """Create AppConfig from a dictionary."""
        return cls(
            client=ClientConfig.from_dict(data.get("client") or {}),
            storage=StorageSettings.from_dict(data.get("storage") or {}),
            logging=LoggingSettings.from_dict(data.get("logging") or {}),
            config_path=config_path,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "client": self.client.to_dict(),
            "storage": self.storage.to_dict(),
            "logging": self.logging.to_dict(),
        }

    def save(self, path: Path | None = None) -> None:
        """Save configuration to a YAML file.

        Args:
            path: Path to save to. Uses config_path or default if not specified.
        """
        save_path = path or self.config_path or DEFAULT_CONFIG_FILE
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False)


def _get_env_bool(key: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_env_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {value!r}") from None


# Client fields that can be overridden by OIDCAUTH_<NAME> string variables
_ENV_CLIENT_FIELDS = (
    "client_id",
    "client_secret",
    "authorization_endpoint",
    "token_endpoint",
    "userinfo_endpoint",
    "redirect_uri",
    "issuer",
    "jwks_uri",
    "flow_type",
    "account_type",
    "app_name",
)


def _apply_env_overrides(config: AppConfig) -> AppConfig:
    overrides: dict[str, Any] = {}
    for name in _ENV_CLIENT_FIELDS:
        value = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
        if value:
            overrides[name] = value

    if os.environ.get(f"{ENV_PREFIX}SCOPES"):
        overrides["scopes"] = os.environ[f"{ENV_PREFIX}SCOPES"]

    overrides["verify_signature"] = _get_env_bool(
        f"{ENV_PREFIX}VERIFY_SIGNATURE", config.client.verify_signature
    )
    overrides["http_timeout"] = _get_env_float(f"{ENV_PREFIX}HTTP_TIMEOUT", config.client.http_timeout)

    config.client = replace(config.client, **overrides)

    # Storage settings
    if os.environ.get(f"{ENV_PREFIX}DB_PATH"):
        config.storage.db_path = Path(os.environ[f"{ENV_PREFIX}DB_PATH"])

    # Logging settings
    if os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
        config.logging.level = os.environ[f"{ENV_PREFIX}LOG_LEVEL"].upper()

    config.logging.trace_enabled = _get_env_bool(f"{ENV_PREFIX}LOG_TRACE", config.logging.trace_enabled)

    return config


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load application configuration.

    Configuration is loaded in this order (later values override earlier):
    1. Default values
    2. config.yaml file (if exists)
    3. Environment variables

    The client configuration is not validated here; components validate it
    before first use.

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        AppConfig with merged settings.

    Raises:
        ConfigError: If the config file cannot be parsed.
    """
    config = AppConfig(client=ClientConfig.from_dict({}))

    file_path = config_path or DEFAULT_CONFIG_FILE
    if file_path.exists():
        try:
            with open(file_path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Could not read config file {file_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {file_path} must contain a mapping")
        config = AppConfig.from_dict(data, config_path=file_path)
    elif config_path is not None:
        raise ConfigError(f"Config file not found: {config_path}")

    return _apply_env_overrides(config)


def get_default_config_yaml() -> str:
    """Get the default config.yaml content as a string.

    Useful for generating example configuration files.
    """
    return """\
# OIDCAuth Configuration File
# Environment variables override these settings (prefix: OIDCAUTH_)

client:
  # Credentials registered with your OpenID Connect provider
  client_id: ""
  client_secret: ""

  # Provider endpoints
  authorization_endpoint: "https://www.example.com/oauth2/authorize"
  token_endpoint: "https://www.example.com/oauth2/token"
  userinfo_endpoint: "https://www.example.com/oauth2/userinfo"

  # Must match the redirect URI registered with the provider. Native apps may
  # use a custom scheme that only marks the end of the authorization.
  redirect_uri: "app://oidcauth.example.com"

  # `offline_access` lets the provider issue refresh tokens. Some providers
  # call it `offline` instead.
  scopes:
    - openid
    - profile
    - offline_access

  # One of: authorization_code, implicit, hybrid
  flow_type: authorization_code

  # ID token verification. Either jwks_uri or id_token_signing_key (PEM) is
  # required while verify_signature is true.
  # issuer: "https://www.example.com"
  # jwks_uri: "https://www.example.com/oauth2/keys"
  verify_signature: true

  # Fallback account name when the provider does not return a username
  app_name: "OIDCAuth"

  # Seconds before a network call is abandoned
  http_timeout: 30

storage:
  db_path: "~/.oidcauth/credentials.db"
  key_path: "~/.oidcauth/db.key"

logging:
  # ERROR, INFO, DEBUG or TRACE
  level: INFO
  # TRACE logs full token bodies - never enable in production
  trace_enabled: false
"""
