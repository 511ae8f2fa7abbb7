"""
Command line access to the pickup API using the stored session.

Usage:
    pickup-client set-tokens <access-token> <refresh-token>
    pickup-client request GET /orders
    pickup-client status
    pickup-client logout
"""

import json
import logging
import sys
from dataclasses import dataclass
from typing import Any

import anyio
import click
import httpx

from pickup_client.client.errors import ApiStatusError, ClientError, SessionExpiredError
from pickup_client.client.http import AuthenticatedClient
from pickup_client.settings import ClientSettings
from pickup_client.shared.auth import TokenPair


@dataclass
class CliState:
    settings: ClientSettings
    transport: httpx.AsyncBaseTransport | None = None

    def create_client(self) -> AuthenticatedClient:
        return AuthenticatedClient(settings=self.settings, transport=self.transport)


@click.group()
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level",
)
@click.pass_context
def main(ctx: click.Context, log_level: str) -> None:
    """Pickup API client."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if ctx.obj is None:
        ctx.obj = CliState(settings=ClientSettings())


@main.command()
@click.pass_obj
def status(state: CliState) -> None:
    """Show whether a session is stored."""

    async def _status() -> bool:
        async with state.create_client() as client:
            return client.store.tokens is not None

    if anyio.run(_status):
        click.echo("Signed in")
    else:
        click.echo("Not signed in")


@main.command("set-tokens")
@click.argument("access_token")
@click.argument("refresh_token")
@click.pass_obj
def set_tokens(state: CliState, access_token: str, refresh_token: str) -> None:
    """Store a token pair obtained by signing in."""

    async def _set_tokens() -> None:
        async with state.create_client() as client:
            await client.store.set_tokens(TokenPair(access_token=access_token, refresh_token=refresh_token))

    anyio.run(_set_tokens)
    click.echo("Tokens stored")


@main.command()
@click.pass_obj
def logout(state: CliState) -> None:
    """Forget the stored session."""

    async def _logout() -> None:
        async with state.create_client() as client:
            await client.store.clear()

    anyio.run(_logout)
    click.echo("Signed out")


@main.command()
@click.argument("method", type=click.Choice(["GET", "POST", "PUT", "PATCH", "DELETE"], case_sensitive=False))
@click.argument("path")
@click.option("--data", default=None, help="JSON request body")
@click.pass_obj
def request(state: CliState, method: str, path: str, data: str | None) -> None:
    """Send an authenticated request and print the response body."""
    kwargs: dict[str, Any] = {}
    if data is not None:
        try:
            kwargs["json"] = json.loads(data)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"Invalid JSON: {e}", param_hint="--data") from e

    async def _request() -> httpx.Response:
        async with state.create_client() as client:
            return await client.request(method.upper(), path, **kwargs)

    try:
        response = anyio.run(_request)
    except SessionExpiredError:
        click.echo("Session expired, sign in again", err=True)
        sys.exit(1)
    except ApiStatusError as e:
        click.echo(f"Error {e.status_code}: {e.message or e}", err=True)
        sys.exit(1)
    except (ClientError, httpx.TransportError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    try:
        click.echo(json.dumps(response.json(), indent=2, ensure_ascii=False))
    except ValueError:
        click.echo(response.text)


if __name__ == "__main__":
    main()
