"""CLI entry point for OIDCAuth."""

from pathlib import Path

import click

from oidcauth import __version__
from oidcauth.cli import accounts as account_commands
from oidcauth.cli import api as api_commands


@click.group()
@click.version_option(version=__version__, prog_name="oidcauth")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to config.yaml (default: ~/.oidcauth/config.yaml).",
)
@click.option(
    "--log-level",
    type=click.Choice(["ERROR", "INFO", "DEBUG", "TRACE"], case_sensitive=False),
    default=None,
    help="Override the configured log level.",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str | None) -> None:
    """OIDCAuth - OpenID Connect account authentication helper."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level


@cli.command()
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite existing config, database and key files.",
)
@click.pass_context
def init(ctx: click.Context, force: bool) -> None:
    """Initialize OIDCAuth configuration and credential database."""
    from oidcauth.core.config import DEFAULT_CONFIG_FILE, get_default_config_yaml, load_config
    from oidcauth.core.errors import ConfigError
    from oidcauth.storage import Database, DatabaseError, generate_encryption_key, save_encryption_key

    config_path: Path = ctx.obj.get("config_path") or DEFAULT_CONFIG_FILE

    if not config_path.exists() or force:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(get_default_config_yaml())
        click.echo(f"Configuration template written to: {config_path}")

    try:
        app_config = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from None

    db_path = app_config.storage.db_path
    key_path = app_config.storage.key_path

    if key_path.exists() and db_path.exists() and not force:
        click.echo("OIDCAuth is already initialized.")
        click.echo(f"  Database: {db_path}")
        click.echo(f"  Key file: {key_path}")
        click.echo("")
        click.echo("Use --force to reinitialize (WARNING: this will delete stored accounts)")
        return

    if not key_path.exists() or force:
        click.echo("Generating encryption key...")
        save_encryption_key(generate_encryption_key(), key_path)
        click.echo(f"Encryption key saved to: {key_path}")

    if force and db_path.exists():
        db_path.unlink()
        click.echo(f"Removed existing database: {db_path}")

    click.echo(f"Creating credential database at: {db_path}")
    try:
        database = Database(db_path=db_path)
        database.init_db()
        database.verify_connection()
        database.close()
    except DatabaseError as e:
        raise click.ClickException(str(e)) from None

    click.echo("")
    click.echo("OIDCAuth initialized successfully!")
    click.echo("")
    click.echo("Next steps:")
    click.echo(f"  1. Edit {config_path} with your client registration")
    click.echo("  2. Run 'oidcauth login' to authorize an account")


cli.add_command(account_commands.login)
cli.add_command(account_commands.token)
cli.add_command(account_commands.accounts)
cli.add_command(account_commands.inspect)
cli.add_command(api_commands.get)
cli.add_command(api_commands.request)
