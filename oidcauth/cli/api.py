"""Authenticated API call CLI commands."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import TypeVar

import click

from oidcauth.cli.runtime import build_runtime, exit_for_reauthorization
from oidcauth.core.errors import ReauthorizationRequiredError, TransportError, UnrecoverableApiError

T = TypeVar("T")

HTTP_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def _guarded(ctx: click.Context, call: Callable[[], T]) -> T:
    """Run a guarded API call, turning failures into CLI errors."""
    try:
        return call()
    except ReauthorizationRequiredError as e:
        exit_for_reauthorization(ctx, e.intent)
    except UnrecoverableApiError as e:
        raise click.ClickException(f"API call failed: {e.status_code} {e.message}") from None
    except TransportError as e:
        raise click.ClickException(str(e)) from None


def _parse_headers(values: tuple[str, ...]) -> dict[str, str]:
    headers = {}
    for value in values:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            raise click.BadParameter(f"Expected 'Name: value', got {value!r}", param_hint="--header")
        headers[name.strip()] = content.strip()
    return headers


@click.command("get")
@click.argument("account")
@click.argument("url")
@click.pass_context
def get(ctx: click.Context, account: str, url: str) -> None:
    """GET a JSON document from URL as ACCOUNT."""
    runtime = build_runtime(ctx)
    data = _guarded(ctx, lambda: runtime.guard.get_json(account, url))
    click.echo(json.dumps(data, indent=2))


@click.command("request")
@click.argument("account")
@click.argument("method", type=click.Choice(HTTP_METHODS, case_sensitive=False))
@click.argument("url")
@click.option("--data", "body", default=None, help="Request body to send.")
@click.option("-H", "--header", "header_values", multiple=True, help="Extra header as 'Name: value'.")
@click.pass_context
def request(
    ctx: click.Context,
    account: str,
    method: str,
    url: str,
    body: str | None,
    header_values: tuple[str, ...],
) -> None:
    """Send an HTTP request to URL as ACCOUNT and print the response body."""
    headers = _parse_headers(header_values)
    runtime = build_runtime(ctx)
    method = method.upper()

    if body is None and not headers:
        text = _guarded(ctx, lambda: runtime.guard.make_request(account, method, url))
    else:
        text = _guarded(ctx, lambda: runtime.guard.call(method, url, account, body=body, headers=headers))
    click.echo(text)
