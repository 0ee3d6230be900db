"""Locking and upload commands for the speleosync CLI.

Commands:
- lock: Acquire or refresh a project lock
- unlock: Release a project lock
- upload: Upload the local survey file as a new revision
"""

from __future__ import annotations

import click

from speleosync.client.cli.context import fail, fail_with, find_project, open_service
from speleosync.client.controller import describe_lock_holder


@click.command()
@click.argument("project_id")
def lock(project_id: str) -> None:
    """Acquire or refresh the lock on a project."""
    with open_service() as service:
        project = find_project(service, project_id)
        if not project.permission.can_lock:
            fail(f"{project.name} is read-only.")
        result = service.acquire_or_refresh_project_mutex(project)
    if not result.ok:
        fail_with(result.error, "Lock")
    if not result.value:
        fail(describe_lock_holder(project))
    click.echo(f"Locked {project.name}")


@click.command()
@click.argument("project_id")
def unlock(project_id: str) -> None:
    """Release the lock on a project."""
    with open_service() as service:
        project = find_project(service, project_id)
        result = service.release_project_mutex(project)
    if not result.ok:
        fail_with(result.error, "Unlock")
    if not result.value:
        fail(f"Could not release the lock on {project.name}.")
    click.echo(f"Unlocked {project.name}")


@click.command()
@click.argument("project_id")
@click.option("--message", "-m", required=True, help="Description of the changes.")
@click.option("--release", is_flag=True, help="Release the lock after uploading.")
def upload(project_id: str, message: str, release: bool) -> None:
    """Upload the local survey file as a new revision.

    The lock is refreshed before uploading; the upload is refused if
    someone else holds it.
    """
    with open_service() as service:
        project = find_project(service, project_id)
        if not project.permission.can_lock:
            fail(f"{project.name} is read-only.")

        result = service.upload_project(message, project)
        if not result.ok:
            fail_with(result.error, "Upload")
        click.echo(f"Uploaded {project.name}")

        if release:
            released = service.release_project_mutex(project)
            if not released.ok:
                fail_with(released.error, "Unlock")
            if not released.value:
                fail(f"Could not release the lock on {project.name}.")
            click.echo(f"Unlocked {project.name}")
