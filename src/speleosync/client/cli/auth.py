"""Authentication commands for the speleosync CLI.

Commands:
- login: Authenticate with a SpeleoDB instance
- logout: Forget the stored token
"""

from __future__ import annotations

import click

from speleosync.client.cli.config import load_config, save_config
from speleosync.client.cli.context import fail, fail_with, open_service, server_config
from speleosync.client.cli.credentials import delete_token, store_token


@click.command()
@click.option("--server", default=None, help="Instance address (default: saved or www.speleoDB.org).")
@click.option("--email", default=None, help="Account email.")
@click.option("--token", default=None, help="Pre-issued 40-character API token.")
def login(server: str | None, email: str | None, token: str | None) -> None:
    """Authenticate with a SpeleoDB instance.

    Uses --token when given, otherwise prompts for email and password.
    """
    config = load_config()
    password = None
    if not token:
        email = email or click.prompt("Email", default=config.get("email") or None)
        password = click.prompt("Password", hide_input=True)

    target = server_config(server)
    if not target.is_secure and not target.is_local:
        click.echo(
            f"Warning: {target.server_url} does not use HTTPS; "
            "credentials are sent unencrypted.",
            err=True,
        )

    with open_service(require_login=False, server=server) as service:
        result = service.authenticate(
            email=email,
            password=password,
            token=token,
            server_url=target.server_url,
        )
        if not result.ok:
            fail_with(result.error, "Login")
        server_url = service.session.server_url

    if not store_token(server_url, result.value):
        fail("Logged in, but the token could not be saved to the keyring.")

    config["server_url"] = server_url
    if email:
        config["email"] = email
    save_config(config)
    click.echo(f"Logged in to {server_url}")


@click.command()
def logout() -> None:
    """Forget the stored token for the configured instance."""
    server_url = server_config().server_url
    delete_token(server_url)
    click.echo(f"Logged out of {server_url}")
