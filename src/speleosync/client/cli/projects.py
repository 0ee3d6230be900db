"""Project commands for the speleosync CLI.

Commands:
- projects: List projects visible to the user
- create: Create a project
- download: Download a project's survey file
- local: List projects downloaded to this machine
- forget: Delete a project's local file and record
"""

from __future__ import annotations

from datetime import datetime

import click

from speleosync.client.api import project_file_name, sort_projects
from speleosync.client.cli.context import fail, fail_with, find_project, open_service
from speleosync.client.retry import retry_result
from speleosync.client.service import DownloadStatus

PERMISSION_LABELS = {
    "ADMIN": "admin",
    "READ_AND_WRITE": "read/write",
    "READ_ONLY": "read-only",
}


@click.command()
@click.option(
    "--sort",
    "sort_by",
    type=click.Choice(["name", "date"]),
    default="name",
    show_default=True,
    help="Sort by name or by last modification (newest first).",
)
@click.option(
    "--retries",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Retry this many times on network or server errors.",
)
def projects(sort_by: str, retries: int) -> None:
    """List projects visible to the user."""
    with open_service() as service:
        result = retry_result(service.list_projects, max_retries=retries)
    if not result.ok:
        fail_with(result.error, "Listing projects")

    if not result.value:
        click.echo("No projects.")
        return

    for project in sort_projects(result.value, by=sort_by):
        permission = PERMISSION_LABELS.get(project.permission.value, project.permission.value)
        line = f"{project.id}  {project.name}  [{permission}]"
        if project.is_locked:
            line += f"  locked by {project.active_mutex.user}"
        click.echo(line)


@click.command()
@click.option("--name", prompt=True, help="Project name.")
@click.option("--description", prompt=True, help="Project description.")
@click.option("--country", prompt="Country code", help="ISO country code, e.g. US.")
@click.option("--latitude", default=None, help="Optional latitude.")
@click.option("--longitude", default=None, help="Optional longitude.")
def create(
    name: str,
    description: str,
    country: str,
    latitude: str | None,
    longitude: str | None,
) -> None:
    """Create a project."""
    with open_service() as service:
        result = service.create_project(name, description, country, latitude, longitude)
    if not result.ok:
        fail_with(result.error, "Project creation")
    click.echo(f"Created project {result.value.name} ({result.value.id})")


@click.command()
@click.argument("project_id")
def download(project_id: str) -> None:
    """Download a project's survey file without locking it."""
    with open_service() as service:
        project = find_project(service, project_id)
        result = service.download_project(project)
    if not result.ok:
        fail_with(result.error, "Download")

    outcome = result.value
    if outcome.status == DownloadStatus.DOWNLOADED:
        click.echo(f"Downloaded {project.name} to {outcome.path}")
    elif outcome.status == DownloadStatus.EMPTY_PROJECT:
        click.echo(f"{project.name} has no content yet.")
    else:
        click.echo(f"{project.name} has no file on the server.")


def _format_time(timestamp: float | None) -> str:
    if timestamp is None:
        return "never"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M")


@click.command()
def local() -> None:
    """List projects downloaded to this machine."""
    with open_service(require_login=False) as service:
        records = service.store.list_records()
        projects_dir = service.projects_dir

    if not records:
        click.echo("No local projects.")
        return

    for record in records:
        line = (
            f"{record.project_id}  {record.name}  "
            f"downloaded {_format_time(record.downloaded_at)}  "
            f"uploaded {_format_time(record.uploaded_at)}"
        )
        if not (projects_dir / project_file_name(record.project_id)).exists():
            line += "  (no local file)"
        click.echo(line)


@click.command()
@click.argument("project_id")
def forget(project_id: str) -> None:
    """Delete a project's local file and metadata record.

    The server copy and any lock are left alone.
    """
    with open_service(require_login=False) as service:
        path = service.projects_dir / project_file_name(project_id)
        had_file = path.exists()
        path.unlink(missing_ok=True)
        had_record = service.store.remove(project_id)

    if not had_file and not had_record:
        fail(f"No local copy of {project_id}.")
    click.echo(f"Forgot {project_id}")
