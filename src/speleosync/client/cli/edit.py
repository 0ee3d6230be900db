"""Interactive edit session for the speleosync CLI.

Commands:
- edit: Lock, download and upload a project in one session
"""

from __future__ import annotations

from pathlib import Path

import click

from speleosync.client.api import Project
from speleosync.client.cli.context import fail, find_project, open_service
from speleosync.client.controller import Action, ControllerListener, LockController
from speleosync.client.errors import ServiceError
from speleosync.core.types import LockState


class ConsoleHost:
    """Host for a terminal session: the survey tool edits the file itself."""

    def load_local_file(self, path: Path) -> None:
        click.echo(f"Project file: {path}")

    def flush_current_edits_to_local_file(self) -> None:
        # Edits are saved by the survey tool
        pass


class ConsoleListener(ControllerListener):
    """Echoes controller notifications to the terminal."""

    def on_log(self, message: str) -> None:
        click.echo(f"  {message}")

    def on_failure(self, action: Action, message: str, error: ServiceError | None) -> None:
        click.echo(f"Error: {message}", err=True)


def _confirm_release(project: Project) -> bool:
    return click.confirm(f"Release the lock on '{project.name}'?", default=True)


@click.command()
@click.argument("project_id")
def edit(project_id: str) -> None:
    """Edit a project: lock it, download it, upload revisions.

    Save your changes in the survey tool, then enter a message to upload
    them. An empty message ends the session.
    """
    with open_service() as service:
        project = find_project(service, project_id)
        controller = LockController(service, ConsoleHost(), ConsoleListener())
        try:
            opened = controller.open_project(project).result()
            if not opened.ok:
                fail(opened.message)
            click.echo(opened.message)

            if opened.state != LockState.LOCKED:
                return

            while controller.state == LockState.LOCKED:
                message = click.prompt(
                    "Upload message (empty to finish)", default="", show_default=False
                )
                if not message.strip():
                    break
                uploaded = controller.upload(message).result()
                if uploaded.ok:
                    click.echo(uploaded.message)

            if controller.state == LockState.LOCKED:
                released = controller.unlock(_confirm_release).result()
                click.echo(released.message)
        except (KeyboardInterrupt, click.Abort):
            controller.release_if_held()
            raise
        finally:
            service.shutdown()
