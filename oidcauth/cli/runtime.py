"""Wiring of configuration, storage and token components for CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NoReturn

import click

from oidcauth.core.config import AppConfig, load_config
from oidcauth.core.errors import ConfigError
from oidcauth.core.guard import ApiRequestGuard
from oidcauth.core.lifecycle import ReauthorizationIntent, TokenLifecycleManager
from oidcauth.core.logging import configure_logging
from oidcauth.storage import Database, DatabaseError, SQLCredentialStore, get_encryption_key


@dataclass
class Runtime:
    """Components shared by one CLI invocation."""

    config: AppConfig
    database: Database
    store: SQLCredentialStore
    manager: TokenLifecycleManager
    guard: ApiRequestGuard

    def close(self) -> None:
        self.guard.close()
        self.manager.exchanger.close()
        self.database.close()


def get_app_config(ctx: click.Context) -> AppConfig:
    """Load the configuration once per invocation and set up logging from it."""
    obj: dict[str, Any] = ctx.ensure_object(dict)
    if "app_config" not in obj:
        try:
            app_config = load_config(obj.get("config_path"))
        except ConfigError as e:
            raise click.ClickException(str(e)) from None

        configure_logging(
            level=obj.get("log_level") or app_config.logging.level,
            trace_enabled=app_config.logging.trace_enabled,
            log_file=app_config.logging.log_file,
        )
        obj["app_config"] = app_config
    return obj["app_config"]


def build_store(app_config: AppConfig) -> tuple[Database, SQLCredentialStore]:
    """Open the credential database, creating tables on first use."""
    try:
        key = get_encryption_key(app_config.storage.key_path)
        database = Database(db_path=app_config.storage.db_path)
        database.init_db()
        return database, SQLCredentialStore(database, key)
    except DatabaseError as e:
        raise click.ClickException(f"{e}\nRun 'oidcauth init' first.") from None


def build_runtime(ctx: click.Context) -> Runtime:
    """Build the token components for commands that talk to the provider.

    Tests may pass an httpx transport as ``obj["transport"]``.
    """
    app_config = get_app_config(ctx)
    database, store = build_store(app_config)
    transport = ctx.obj.get("transport")

    try:
        manager = TokenLifecycleManager(app_config.client, store, transport=transport)
    except ConfigError as e:
        database.close()
        raise click.ClickException(f"Invalid client configuration: {e}") from None

    guard = ApiRequestGuard(manager, transport=transport)
    runtime = Runtime(config=app_config, database=database, store=store, manager=manager, guard=guard)
    ctx.call_on_close(runtime.close)
    return runtime


def exit_for_reauthorization(ctx: click.Context, intent: ReauthorizationIntent) -> NoReturn:
    """Print the authorization URL for an account that must log in again and exit with status 2."""
    account = intent.account or ""
    click.echo(
        f"Account '{account}' must be authorized again. "
        f"Run 'oidcauth login --account \"{account}\"' or open:",
        err=True,
    )
    click.echo(intent.authorization_url)
    ctx.exit(2)
