"""Shared wiring for CLI commands.

Builds the session, transport, metadata store and service from the saved
configuration, and renders failures the same way for every command.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, NoReturn

import click

from speleosync.client.api import HTTPClient
from speleosync.client.cli.config import get_projects_dir, get_state_db, load_config
from speleosync.client.cli.credentials import load_token
from speleosync.client.service import SyncService
from speleosync.client.session import Session
from speleosync.client.state import ProjectStateStore
from speleosync.core.config import ServerConfig

if TYPE_CHECKING:
    from speleosync.client.api import Project
    from speleosync.client.errors import ServiceError


def fail(message: str) -> NoReturn:
    """Print an error to stderr and exit with status 1."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def fail_with(error: ServiceError, operation: str) -> NoReturn:
    """Exit with the user-facing text for a service failure."""
    fail(error.user_message(operation))


def server_config(server: str | None = None) -> ServerConfig:
    """Get the server config from an explicit address or the saved one."""
    return ServerConfig(server_url=server or load_config().get("server_url", ""))


@contextmanager
def open_service(require_login: bool = True, server: str | None = None) -> Iterator[SyncService]:
    """Create a SyncService for the configured server.

    Args:
        require_login: Restore the stored token into the session and exit
            with an error if there is none.
        server: Server address overriding the saved one.
    """
    config = server_config(server)
    session = Session()
    if require_login:
        token = load_token(config.server_url)
        if not token:
            fail("Not logged in. Run 'speleosync login' first.")
        session.login(token, config.server_url)

    projects_dir = get_projects_dir()
    projects_dir.mkdir(parents=True, exist_ok=True)
    store = ProjectStateStore(get_state_db())
    http = HTTPClient(config)
    service = SyncService(session, http, projects_dir, store=store)
    try:
        yield service
    finally:
        service.close()
        http.close()
        store.close()


def find_project(service: SyncService, project_id: str) -> Project:
    """Look a project up by id, exiting if it cannot be found."""
    result = service.list_projects()
    if not result.ok:
        fail_with(result.error, "Listing projects")
    for project in result.value:
        if project.id == project_id:
            return project
    fail(f"Project not found: {project_id}")
