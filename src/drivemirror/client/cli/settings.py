"""Settings commands for drivemirror CLI.

Commands:
- credentials: Store the OAuth client and refresh token
- proxy: Show, set or disable the HTTP proxy
"""

from __future__ import annotations

import sys

import click

from drivemirror.client.auth import Credentials
from drivemirror.client.cli.config import (
    load_config,
    load_proxy,
    save_config,
    save_credentials,
)


@click.command()
@click.option("--client-id", prompt=True, help="OAuth client id.")
@click.option("--client-secret", prompt=True, hide_input=True, help="OAuth client secret.")
@click.option("--refresh-token", prompt=True, hide_input=True, help="OAuth refresh token.")
def credentials(client_id: str, client_secret: str, refresh_token: str) -> None:
    """Store the credentials used to reach the remote store."""
    creds = Credentials(
        client_id=client_id.strip(),
        client_secret=client_secret.strip(),
        refresh_token=refresh_token.strip(),
    )
    if not creds.is_complete:
        click.echo("Error: client id, client secret and refresh token are required.", err=True)
        sys.exit(1)
    save_credentials(creds)
    click.echo("Credentials saved.")


@click.command()
@click.option("--host", help="Proxy host name.")
@click.option("--port", type=click.IntRange(1, 65535), default=80, show_default=True)
@click.option("--username", help="Proxy user name.")
@click.option("--password", help="Proxy password.")
@click.option("--disable", is_flag=True, help="Stop using the stored proxy.")
def proxy(
    host: str | None,
    port: int,
    username: str | None,
    password: str | None,
    disable: bool,
) -> None:
    """Show or change the HTTP proxy settings.

    Without options, prints the current proxy.
    """
    config = load_config()

    if disable:
        if not config.get("proxy"):
            click.echo("No proxy configured.")
            return
        config["proxy"]["active"] = False
        save_config(config)
        click.echo("Proxy disabled.")
        return

    if host:
        config["proxy"] = {
            "host": host,
            "port": port,
            "username": username or "",
            "password": password or "",
            "active": True,
        }
        save_config(config)
        click.echo(f"Proxy set to {host}:{port}.")
        return

    settings = load_proxy()
    if settings is None:
        click.echo("No proxy configured.")
        return
    state = "active" if settings.active else "disabled"
    user = f" as {settings.username}" if settings.username else ""
    click.echo(f"Proxy {settings.host}:{settings.port}{user} ({state})")
