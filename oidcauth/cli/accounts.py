"""Account and token CLI commands."""

from __future__ import annotations

import json

import click

from oidcauth.cli.runtime import build_runtime, build_store, exit_for_reauthorization, get_app_config
from oidcauth.core.errors import (
    AuthorizationDeniedError,
    AuthorizationError,
    InvalidGrantError,
    InvalidTokenError,
    TransportError,
)
from oidcauth.core.lifecycle import ReauthorizationIntent
from oidcauth.core.oidc.utils import decode_jwt, format_token_claims
from oidcauth.core.oidc.validation import ValidationStatus
from oidcauth.storage import TokenKind

# Common option for JSON output
json_option = click.option(
    "--json",
    "output_json",
    is_flag=True,
    help="Output results as JSON for scripting",
)

_STATUS_COLORS = {
    ValidationStatus.VALID: "green",
    ValidationStatus.INVALID: "red",
    ValidationStatus.WARNING: "yellow",
    ValidationStatus.SKIPPED: "white",
}


@click.command()
@click.option("--account", default=None, help="Re-authorize an existing account instead of adding one.")
@click.pass_context
def login(ctx: click.Context, account: str | None) -> None:
    """Authorize the client and store the account's tokens.

    Prints the authorization URL, then asks for the redirect URI the
    browser ended on. Leave the answer empty to cancel.
    """
    runtime = build_runtime(ctx)
    request = runtime.manager.begin_authorization(account)

    click.echo("Open this URL in a browser and authorize the client:")
    click.echo("")
    click.echo(f"  {request.url}")
    click.echo("")

    redirect_uri = click.prompt(
        "Redirect URI (leave empty to cancel)",
        default="",
        show_default=False,
    ).strip()
    if not redirect_uri:
        runtime.manager.cancel_authorization(account)
        click.echo("Authorization cancelled.")
        ctx.exit(1)

    try:
        name = runtime.manager.complete_authorization(redirect_uri, request, account)
    except AuthorizationDeniedError:
        # The user chose to deny; nothing to report
        ctx.exit(1)
    except AuthorizationError as e:
        raise click.ClickException(e.user_message) from None
    except (InvalidTokenError, InvalidGrantError, TransportError) as e:
        raise click.ClickException(f"Authorization failed: {e}") from None

    click.echo(click.style(f"Account authorized: {name}", fg="green"))


@click.command()
@click.argument("account")
@click.option(
    "--type",
    "token_type",
    type=click.Choice(["id", "access", "refresh"]),
    default="id",
    show_default=True,
    help="Which token to print.",
)
@click.pass_context
def token(ctx: click.Context, account: str, token_type: str) -> None:
    """Print a usable token for ACCOUNT, refreshing it if needed.

    Exits with status 2 and prints the authorization URL when the account
    must be authorized again.
    """
    runtime = build_runtime(ctx)
    try:
        result = runtime.manager.get_auth_token(account, TokenKind.from_name(token_type))
    except TransportError as e:
        raise click.ClickException(f"Token refresh failed: {e}") from None

    if isinstance(result, ReauthorizationIntent):
        exit_for_reauthorization(ctx, result)

    click.echo(result)


@click.command("accounts")
@json_option
@click.pass_context
def accounts(ctx: click.Context, output_json: bool) -> None:
    """List stored accounts."""
    app_config = get_app_config(ctx)
    database, store = build_store(app_config)
    try:
        handles = store.list_accounts(app_config.client.account_type)
    finally:
        database.close()

    if output_json:
        click.echo(json.dumps([{"name": h.name, "account_type": h.account_type} for h in handles], indent=2))
        return

    if not handles:
        click.echo("No accounts stored. Run 'oidcauth login' to add one.")
        return

    click.echo(f"Accounts ({app_config.client.account_type}):")
    for handle in handles:
        click.echo(f"  {handle.name}")


@click.command()
@click.argument("account")
@json_option
@click.pass_context
def inspect(ctx: click.Context, account: str, output_json: bool) -> None:
    """Show the claims and verification checks of ACCOUNT's stored ID token."""
    runtime = build_runtime(ctx)
    id_token = runtime.store.get(account, TokenKind.ID)
    if not id_token:
        raise click.ClickException(f"No ID token stored for account '{account}'")

    decoded = decode_jwt(id_token)
    if not decoded.is_valid_format:
        raise click.ClickException(f"Stored ID token is malformed: {decoded.error}")

    try:
        validation = runtime.manager.exchanger.validate(id_token)
    except TransportError as e:
        raise click.ClickException(f"Could not verify token: {e}") from None

    if output_json:
        click.echo(
            json.dumps(
                {"header": decoded.header, "claims": decoded.payload, "validation": validation.to_dict()},
                indent=2,
                default=str,
            )
        )
        return

    click.echo(f"Account: {account}")
    click.echo(f"Algorithm: {decoded.algorithm or '(none)'}")
    if decoded.expiration:
        expiry = "expired" if decoded.is_expired else "valid until"
        click.echo(f"Expiry: {expiry} {decoded.expiration.isoformat()}")

    click.echo("")
    click.echo("Claims:")
    for name, value, description in format_token_claims(decoded.payload):
        click.echo(f"  {name}: {value}  ({description})")

    click.echo("")
    click.echo("Checks:")
    for check in validation.checks:
        line = f"  [{check.status.value.upper()}] {check.name}: {check.message}"
        click.echo(click.style(line, fg=_STATUS_COLORS[check.status]))

    click.echo("")
    if validation.is_valid:
        click.echo(click.style("ID token is valid", fg="green", bold=True))
    else:
        click.echo(click.style(f"ID token is invalid: {validation.error}", fg="red", bold=True))
