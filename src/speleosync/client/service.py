"""Synchronization service: every SpeleoDB operation the client performs.

This module provides:
- SyncService: authenticate, list, create, download, upload and the
  project mutex operations, each blocking or as a future on the pool
- DownloadResult / DownloadStatus: outcome of a download

Operations return a ServiceResult and never retry. The only exception
raised is NotAuthenticatedError, before any network call, when an
operation needing a session is called while logged out.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from speleosync.client.api import Project, ProjectCreationRequest
from speleosync.client.errors import (
    LockNotHeldError,
    NotAuthenticatedError,
    ServiceError,
    ServiceResult,
    classify_status,
)
from speleosync.client.session import AuthToken
from speleosync.client.workers import WorkerPool
from speleosync.core.config import normalize_server_url

if TYPE_CHECKING:
    from collections.abc import Callable
    from concurrent.futures import Future

    from speleosync.client.api import HTTPClient
    from speleosync.client.session import Session, SessionSnapshot
    from speleosync.client.state import ProjectStateStore, Reconciliation

logger = logging.getLogger(__name__)

# Failures of these are reported as results, not raised
TRANSPORT_ERRORS: tuple[type[Exception], ...] = (httpx.HTTPError, OSError)


class DownloadStatus(Enum):
    """What a successful download produced."""

    DOWNLOADED = "downloaded"  # Local file replaced with server content
    NO_CONTENT = "no_content"  # 404: nothing stored for this project
    EMPTY_PROJECT = "empty_project"  # 422: project exists, no revision yet


@dataclass(frozen=True)
class DownloadResult:
    """Outcome of download_project().

    Attributes:
        path: Local file path for the project (absent unless DOWNLOADED).
        status: What the server returned.
        reconciliation: Comparison with the previous local record, when a
            metadata store is configured.
    """

    path: Path
    status: DownloadStatus
    reconciliation: Reconciliation | None = None

    @property
    def has_content(self) -> bool:
        return self.status == DownloadStatus.DOWNLOADED


def _json(response: httpx.Response) -> Any:
    """Decode a JSON body, None if it is not JSON."""
    try:
        return response.json()
    except ValueError:
        return None


class SyncService:
    """Client-side operations against one SpeleoDB instance.

    Usage:
        session = Session()
        with HTTPClient(config) as http:
            service = SyncService(session, http, projects_dir)
            service.authenticate(token=token, server_url="localhost:8000")
            projects = service.list_projects().unwrap()
    """

    def __init__(
        self,
        session: Session,
        http_client: HTTPClient,
        projects_dir: Path,
        pool: WorkerPool | None = None,
        store: ProjectStateStore | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            session: Session shared with the rest of the client.
            http_client: Transport for every call.
            projects_dir: Directory holding the local project files.
            pool: Pool for the *_async variants. Created and started on
                first use if omitted.
            store: Optional metadata store updated on download and upload.
        """
        self._session = session
        self._http = http_client
        self._projects_dir = Path(projects_dir)
        self._pool = pool
        self._owns_pool = pool is None
        self._store = store

    @property
    def session(self) -> Session:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._session.is_authenticated

    @property
    def projects_dir(self) -> Path:
        return self._projects_dir

    @property
    def store(self) -> ProjectStateStore | None:
        return self._store

    @property
    def pool(self) -> WorkerPool:
        """Get the worker pool, creating and starting one on first use."""
        if self._pool is None:
            self._pool = WorkerPool()
            self._pool.start()
        return self._pool

    def close(self) -> None:
        """Stop the worker pool if this service created it."""
        if self._owns_pool and self._pool is not None:
            self._pool.stop()

    def shutdown(self) -> None:
        """Stop the worker pool, cancelling queued work."""
        if self._pool is not None:
            self._pool.stop()

    def local_file_path(self, project: Project) -> Path:
        """Get the local synchronized file for a project."""
        return self._projects_dir / project.file_name

    def _require_session(self) -> SessionSnapshot:
        snapshot = self._session.snapshot
        if not snapshot.is_authenticated:
            raise NotAuthenticatedError()
        return snapshot

    # === Authentication ===

    def authenticate(
        self,
        email: str | None = None,
        password: str | None = None,
        token: str | None = None,
        server_url: str | None = None,
    ) -> ServiceResult[str]:
        """Log in with a pre-issued token, or with email and password.

        A token takes precedence over email/password. On any failure the
        session is left fully unauthenticated.

        Returns:
            The session token on success.
        """
        server = normalize_server_url(server_url or self._http.config.server_url)

        result = self._authenticate(email, password, token, server)
        if result.ok:
            self._session.login(result.value, server)
            logger.info(f"Authenticated with {server}")
        else:
            self._session.clear()
            logger.warning(f"Authentication with {server} failed: {result.error}")
        return result

    def _authenticate(
        self,
        email: str | None,
        password: str | None,
        token: str | None,
        server: str,
    ) -> ServiceResult[str]:
        use_token = bool(token and token.strip())
        if use_token and not AuthToken.is_well_formed(token):
            return ServiceResult.failure(
                ServiceError.validation("Invalid token format: expected 40 hexadecimal characters")
            )
        if not use_token and not (email and email.strip() and password):
            return ServiceResult.failure(
                ServiceError.validation("Email and password, or a token, are required")
            )

        try:
            if use_token:
                response = self._http.verify_token(server, token.strip().lower())
            else:
                response = self._http.request_token(server, email.strip(), password)
        except TRANSPORT_ERRORS as e:
            return ServiceResult.failure(ServiceError.from_exception("Authentication failed", e))

        if response.status_code != 200:
            return ServiceResult.failure(
                ServiceError.from_response("Authentication failed", response)
            )

        data = _json(response)
        received = data.get("token") if isinstance(data, dict) else None
        if not received or not isinstance(received, str):
            return ServiceResult.failure(
                ServiceError(
                    "Authentication failed: no token in server response",
                    status_code=response.status_code,
                    body=response.text,
                )
            )
        return ServiceResult.success(received)

    def logout(self) -> None:
        """Reset the session. Always safe to call."""
        self._session.clear()
        logger.info("Logged out")

    # === Projects ===

    def list_projects(self) -> ServiceResult[list[Project]]:
        """Fetch every project visible to the user."""
        snapshot = self._require_session()
        try:
            response = self._http.list_projects(snapshot)
        except TRANSPORT_ERRORS as e:
            return ServiceResult.failure(ServiceError.from_exception("Failed to list projects", e))

        if response.status_code != 200:
            return ServiceResult.failure(
                ServiceError.from_response("Failed to list projects", response)
            )

        data = _json(response)
        items = data.get("data") if isinstance(data, dict) else None
        if not isinstance(items, list):
            return ServiceResult.failure(
                ServiceError(
                    "Failed to list projects: unexpected response format",
                    status_code=response.status_code,
                    body=response.text,
                )
            )

        try:
            projects = [Project.from_dict(item) for item in items]
        except (ValueError, AttributeError) as e:
            return ServiceResult.failure(
                ServiceError(
                    f"Failed to list projects: {e}",
                    status_code=response.status_code,
                    body=response.text,
                )
            )

        logger.debug(f"Listed {len(projects)} project(s)")
        return ServiceResult.success(projects)

    def create_project(
        self,
        name: str | None,
        description: str | None,
        country_code: str | None,
        latitude: str | float | None = None,
        longitude: str | float | None = None,
    ) -> ServiceResult[Project]:
        """Create a project owned by the current user."""
        snapshot = self._require_session()
        try:
            request = ProjectCreationRequest.create(
                name, description, country_code, latitude, longitude
            )
        except ValueError as e:
            return ServiceResult.failure(ServiceError.validation(str(e)))

        try:
            response = self._http.create_project(snapshot, request.to_payload())
        except TRANSPORT_ERRORS as e:
            return ServiceResult.failure(ServiceError.from_exception("Failed to create project", e))

        data = _json(response)
        if response.status_code != 201:
            message = "Failed to create project"
            if isinstance(data, dict) and data.get("error"):
                message = f"{message}: {data['error']}"
            return ServiceResult.failure(ServiceError.from_response(message, response))

        try:
            project = Project.from_dict(data["data"])
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            return ServiceResult.failure(
                ServiceError(
                    f"Failed to create project: unexpected response ({e})",
                    status_code=response.status_code,
                    body=response.text,
                )
            )

        logger.info(f"Created project {project.name} ({project.id})")
        return ServiceResult.success(project)

    # === File transfer ===

    def download_project(self, project: Project) -> ServiceResult[DownloadResult]:
        """Download a project, replacing the local file.

        A 404 or 422 answer is not an error: the stale local copy, if any,
        is deleted and the status says the project has no content.
        """
        snapshot = self._require_session()
        path = self.local_file_path(project)

        try:
            response = self._http.download_project(snapshot, project.id)
        except TRANSPORT_ERRORS as e:
            return ServiceResult.failure(
                ServiceError.from_exception("Failed to download project", e)
            )

        if response.status_code == 200:
            try:
                self._write_atomically(path, response.content)
            except OSError as e:
                return ServiceResult.failure(
                    ServiceError.from_exception("Failed to save downloaded project", e)
                )
            status = DownloadStatus.DOWNLOADED
            logger.info(f"Downloaded {project.name} to {path} ({len(response.content)} bytes)")
        elif response.status_code in (404, 422):
            status = (
                DownloadStatus.NO_CONTENT
                if response.status_code == 404
                else DownloadStatus.EMPTY_PROJECT
            )
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                return ServiceResult.failure(
                    ServiceError.from_exception("Failed to remove stale project file", e)
                )
            logger.info(f"Project {project.name} has no content on server ({status.value})")
        else:
            return ServiceResult.failure(
                ServiceError.from_response("Failed to download project", response)
            )

        reconciliation = None
        if self._store is not None:
            reconciliation = self._store.reconcile(project)
            if status == DownloadStatus.DOWNLOADED:
                self._store.record_download(project)
        return ServiceResult.success(DownloadResult(path, status, reconciliation))

    def _write_atomically(self, path: Path, content: bytes) -> None:
        """Write content to path via a temporary file and an atomic rename."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def upload_project(self, message: str | None, project: Project) -> ServiceResult[None]:
        """Upload the local file as a new revision of the project.

        The project mutex is refreshed immediately before sending; if the
        server refuses it the upload is not attempted.
        """
        snapshot = self._require_session()
        if not message or not message.strip():
            return ServiceResult.failure(ServiceError.validation("Upload message cannot be empty"))

        path = self.local_file_path(project)
        if not path.is_file():
            return ServiceResult.failure(
                ServiceError.validation(f"Local project file not found: {path}")
            )

        try:
            lock = self._http.acquire_mutex(snapshot, project.id)
        except TRANSPORT_ERRORS as e:
            return ServiceResult.failure(ServiceError.from_exception("Failed to upload project", e))
        if lock.status_code != 200:
            return ServiceResult.failure(
                LockNotHeldError(
                    "Failed to upload project: project lock is not held "
                    f"(HTTP {lock.status_code})",
                    kind=classify_status(lock.status_code),
                    status_code=lock.status_code,
                    body=lock.text,
                )
            )

        try:
            content = path.read_bytes()
            response = self._http.upload_project(snapshot, project.id, message.strip(), content)
        except TRANSPORT_ERRORS as e:
            return ServiceResult.failure(ServiceError.from_exception("Failed to upload project", e))

        if response.status_code != 200:
            return ServiceResult.failure(
                ServiceError.from_response("Failed to upload project", response)
            )

        if self._store is not None:
            self._store.record_upload(project)
        logger.info(f"Uploaded {project.name} ({len(content)} bytes)")
        return ServiceResult.success(None)

    # === Locking ===

    def acquire_or_refresh_project_mutex(self, project: Project) -> ServiceResult[bool]:
        """Acquire the project mutex, or refresh it if already held.

        Returns:
            True if the lock is held, False if the server refused it.
        """
        snapshot = self._require_session()
        try:
            response = self._http.acquire_mutex(snapshot, project.id)
        except TRANSPORT_ERRORS as e:
            return ServiceResult.failure(ServiceError.from_exception("Failed to acquire lock", e))

        if response.status_code == 200:
            logger.info(f"Lock acquired on {project.name}")
            return ServiceResult.success(True)
        logger.info(f"Lock on {project.name} refused (HTTP {response.status_code})")
        return ServiceResult.success(False)

    def release_project_mutex(self, project: Project) -> ServiceResult[bool]:
        """Release the project mutex.

        Returns:
            True if released, False if the server refused.
        """
        snapshot = self._require_session()
        try:
            response = self._http.release_mutex(snapshot, project.id)
        except TRANSPORT_ERRORS as e:
            return ServiceResult.failure(ServiceError.from_exception("Failed to release lock", e))

        if response.status_code == 200:
            logger.info(f"Lock released on {project.name}")
            return ServiceResult.success(True)
        logger.info(f"Release of {project.name} refused (HTTP {response.status_code})")
        return ServiceResult.success(False)

    # === Background variants ===

    def _submit(
        self,
        fn: Callable[..., ServiceResult[Any]],
        *args: Any,
        on_complete: Callable[[Any], None] | None = None,
        needs_session: bool = True,
    ) -> Future:
        if needs_session:
            self._require_session()
        return self.pool.submit(fn, *args, on_complete=on_complete)

    def authenticate_async(
        self,
        email: str | None = None,
        password: str | None = None,
        token: str | None = None,
        server_url: str | None = None,
        on_complete: Callable[[ServiceResult[str]], None] | None = None,
    ) -> Future:
        """Run authenticate() on the worker pool."""
        return self._submit(
            self.authenticate, email, password, token, server_url,
            on_complete=on_complete, needs_session=False,
        )

    def list_projects_async(
        self, on_complete: Callable[[ServiceResult[list[Project]]], None] | None = None
    ) -> Future:
        """Run list_projects() on the worker pool."""
        return self._submit(self.list_projects, on_complete=on_complete)

    def create_project_async(
        self,
        name: str | None,
        description: str | None,
        country_code: str | None,
        latitude: str | float | None = None,
        longitude: str | float | None = None,
        on_complete: Callable[[ServiceResult[Project]], None] | None = None,
    ) -> Future:
        """Run create_project() on the worker pool."""
        return self._submit(
            self.create_project, name, description, country_code, latitude, longitude,
            on_complete=on_complete,
        )

    def download_project_async(
        self,
        project: Project,
        on_complete: Callable[[ServiceResult[DownloadResult]], None] | None = None,
    ) -> Future:
        """Run download_project() on the worker pool."""
        return self._submit(self.download_project, project, on_complete=on_complete)

    def upload_project_async(
        self,
        message: str | None,
        project: Project,
        on_complete: Callable[[ServiceResult[None]], None] | None = None,
    ) -> Future:
        """Run upload_project() on the worker pool."""
        return self._submit(self.upload_project, message, project, on_complete=on_complete)

    def acquire_or_refresh_project_mutex_async(
        self,
        project: Project,
        on_complete: Callable[[ServiceResult[bool]], None] | None = None,
    ) -> Future:
        """Run acquire_or_refresh_project_mutex() on the worker pool."""
        return self._submit(
            self.acquire_or_refresh_project_mutex, project, on_complete=on_complete
        )

    def release_project_mutex_async(
        self,
        project: Project,
        on_complete: Callable[[ServiceResult[bool]], None] | None = None,
    ) -> Future:
        """Run release_project_mutex() on the worker pool."""
        return self._submit(self.release_project_mutex, project, on_complete=on_complete)
