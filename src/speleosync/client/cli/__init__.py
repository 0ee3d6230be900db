"""Command-line interface for speleosync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- login: Authenticate with a SpeleoDB instance
- logout: Forget the stored token
- projects: List projects
- create: Create a project
- download: Download a project's survey file
- local: List downloaded projects
- forget: Delete a local copy
- lock: Acquire or refresh a project lock
- unlock: Release a project lock
- upload: Upload a new revision
- edit: Interactive lock / download / upload session
"""

from __future__ import annotations

import logging

import click

from speleosync.client.cli.auth import login, logout
from speleosync.client.cli.config import (
    get_config_dir,
    get_config_file,
    get_projects_dir,
    load_config,
    save_config,
)
from speleosync.client.cli.edit import edit
from speleosync.client.cli.lock import lock, unlock, upload
from speleosync.client.cli.projects import create, download, forget, local, projects


class ClickEchoHandler(logging.Handler):
    """Logging handler that writes records to stderr through click."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def configure_logging(verbose: bool) -> None:
    """Route speleosync log records to the terminal."""
    package_logger = logging.getLogger("speleosync")
    for handler in list(package_logger.handlers):
        if isinstance(handler, ClickEchoHandler):
            package_logger.removeHandler(handler)

    handler = ClickEchoHandler()
    handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


@click.group()
@click.version_option(package_name="speleosync")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def cli(verbose: bool) -> None:
    """speleosync - SpeleoDB project sync and locking."""
    configure_logging(verbose)


# Session commands
cli.add_command(login)
cli.add_command(logout)

# Project commands
cli.add_command(projects)
cli.add_command(create)
cli.add_command(download)
cli.add_command(local)
cli.add_command(forget)

# Lock commands
cli.add_command(lock)
cli.add_command(unlock)
cli.add_command(upload)
cli.add_command(edit)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_config_dir",
    "get_config_file",
    "get_projects_dir",
    "load_config",
    "save_config",
]
