"""HTTP transport for the SpeleoDB REST API.

This module provides:
- HTTPClient: long-lived pooled HTTP client, one method per endpoint
- Project / ProjectMutex: project metadata from the server
- ProjectCreationRequest: validated payload for project creation

HTTPClient only speaks the wire protocol and returns raw responses;
interpreting status codes is the synchronization service's job.
"""

from __future__ import annotations

import logging
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx

from speleosync.core.config import ServerConfig
from speleosync.core.types import Permission

if TYPE_CHECKING:
    from collections.abc import Iterable

    from speleosync.client.session import SessionSnapshot

logger = logging.getLogger(__name__)

API_BASE_PATH = "/api/v1"
AUTH_TOKEN_ENDPOINT = f"{API_BASE_PATH}/user/auth-token/"
PROJECTS_ENDPOINT = f"{API_BASE_PATH}/projects/"

TML_EXTENSION = ".tml"
ARTIFACT_CONTENT_TYPE = "application/octet-stream"

_BASE36_ALPHABET = string.digits + string.ascii_lowercase


def _parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp from the API, None if absent or invalid."""
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparseable timestamp from server: {value!r}")
        return None


def to_base36(number: int) -> str:
    """Render a non-negative integer in base 36 (0-9a-z)."""
    if number < 0:
        raise ValueError("Only non-negative integers can be rendered")
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_boundary() -> str:
    """Generate a multipart boundary: a random 256-bit value in base 36."""
    return to_base36(secrets.randbits(256))


def project_file_name(project_id: str) -> str:
    """Get the local/uploaded file name for a project."""
    return f"{project_id}{TML_EXTENSION}"


@dataclass(frozen=True)
class ProjectMutex:
    """Active lock on a project, as reported by the server."""

    user: str
    creation_date: datetime | None = None
    modified_date: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectMutex:
        """Create from API response dictionary."""
        return cls(
            user=str(data.get("user") or "unknown user"),
            creation_date=_parse_datetime(data.get("creation_date")),
            modified_date=_parse_datetime(data.get("modified_date")),
        )


@dataclass(frozen=True)
class Project:
    """Project metadata from server.

    Attributes:
        id: Server-assigned identifier.
        name: Human readable name.
        permission: Access level of the current user.
        active_mutex: Current lock holder, or None if unlocked.
    """

    id: str
    name: str
    permission: Permission = Permission.READ_ONLY
    active_mutex: ProjectMutex | None = None
    description: str = ""
    country: str = ""
    creation_date: datetime | None = None
    modified_date: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Project:
        """Create from API response dictionary.

        Raises:
            ValueError: If the payload has no usable id.
        """
        project_id = str(data.get("id") or "").strip()
        if not project_id:
            raise ValueError("Project payload must contain a non-empty 'id'")
        mutex = data.get("active_mutex")
        return cls(
            id=project_id,
            name=str(data.get("name") or "Unknown Project"),
            permission=Permission.from_string(data.get("permission")),
            active_mutex=ProjectMutex.from_dict(mutex) if isinstance(mutex, dict) else None,
            description=str(data.get("description") or ""),
            country=str(data.get("country") or ""),
            creation_date=_parse_datetime(data.get("creation_date")),
            modified_date=_parse_datetime(data.get("modified_date")),
        )

    @property
    def file_name(self) -> str:
        """Name of the synchronized file for this project."""
        return project_file_name(self.id)

    @property
    def is_locked(self) -> bool:
        """Whether someone holds the project mutex."""
        return self.active_mutex is not None


def sort_projects(projects: Iterable[Project], by: str = "name") -> list[Project]:
    """Sort projects by name (case-insensitive) or by modification date.

    Args:
        projects: Projects to sort.
        by: "name" or "date" (most recently modified first).

    Returns:
        A new sorted list.
    """
    if by == "date":
        oldest = datetime.min
        return sorted(
            projects,
            key=lambda p: (p.modified_date or oldest).replace(tzinfo=None),
            reverse=True,
        )
    if by == "name":
        return sorted(projects, key=lambda p: p.name.lower())
    raise ValueError(f"Unknown sort key: {by}")


@dataclass(frozen=True)
class ProjectCreationRequest:
    """Validated payload for creating a project.

    Coordinates are optional and independent of each other.
    """

    name: str
    description: str
    country_code: str
    latitude: str | None = None
    longitude: str | None = None

    @classmethod
    def create(
        cls,
        name: str | None,
        description: str | None,
        country_code: str | None,
        latitude: str | float | None = None,
        longitude: str | float | None = None,
    ) -> ProjectCreationRequest:
        """Build a request, trimming all fields.

        Raises:
            ValueError: If a required field is missing or blank.
        """
        if not name or not name.strip():
            raise ValueError("Project name is required")
        if not description or not description.strip():
            raise ValueError("Project description is required")
        if not country_code or not country_code.strip():
            raise ValueError("Country code is required")

        def _coordinate(value: str | float | None) -> str | None:
            if value is None:
                return None
            text = str(value).strip()
            return text or None

        return cls(
            name=name.strip(),
            description=description.strip(),
            country_code=country_code.strip(),
            latitude=_coordinate(latitude),
            longitude=_coordinate(longitude),
        )

    def to_payload(self) -> dict[str, str]:
        """Get the JSON body sent to the server."""
        payload = {
            "name": self.name,
            "description": self.description,
            "country": self.country_code,
        }
        if self.latitude is not None:
            payload["latitude"] = self.latitude
        if self.longitude is not None:
            payload["longitude"] = self.longitude
        return payload


class HTTPClient:
    """Pooled HTTP client for the SpeleoDB API.

    One instance is shared by every operation; it holds no per-call state
    so concurrent use from worker threads is safe.
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the HTTP client.

        Args:
            config: Timeouts and SSL settings. The server URL is taken from
                the session on each call, not from this config.
        """
        self._config = config or ServerConfig()
        self._metadata_timeout = httpx.Timeout(
            self._config.timeout, connect=self._config.connect_timeout
        )
        self._transfer_timeout = httpx.Timeout(
            self._config.transfer_timeout, connect=self._config.connect_timeout
        )
        self._client = httpx.Client(
            timeout=self._metadata_timeout,
            verify=self._config.verify_ssl,
            follow_redirects=True,
        )

    @property
    def config(self) -> ServerConfig:
        return self._config

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HTTPClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    @staticmethod
    def _auth_headers(token: str) -> dict[str, str]:
        return {"Authorization": f"Token {token}"}

    @staticmethod
    def _project_url(session: SessionSnapshot, project_id: str, action: str) -> str:
        return f"{session.server_url}{PROJECTS_ENDPOINT}{project_id}/{action}/"

    # === Authentication ===

    def request_token(self, server_url: str, email: str, password: str) -> httpx.Response:
        """Exchange email and password for a token."""
        return self._client.post(
            f"{server_url}{AUTH_TOKEN_ENDPOINT}",
            json={"email": email, "password": password},
        )

    def verify_token(self, server_url: str, token: str) -> httpx.Response:
        """Check an existing token; the server echoes it back when valid."""
        return self._client.get(
            f"{server_url}{AUTH_TOKEN_ENDPOINT}",
            headers=self._auth_headers(token),
        )

    # === Projects ===

    def list_projects(self, session: SessionSnapshot) -> httpx.Response:
        """Fetch all projects visible to the user."""
        return self._client.get(
            f"{session.server_url}{PROJECTS_ENDPOINT}",
            headers=self._auth_headers(session.token.value),
        )

    def create_project(
        self, session: SessionSnapshot, payload: dict[str, str]
    ) -> httpx.Response:
        """Create a project."""
        return self._client.post(
            f"{session.server_url}{PROJECTS_ENDPOINT}",
            json=payload,
            headers=self._auth_headers(session.token.value),
        )

    # === File transfer ===

    def download_project(self, session: SessionSnapshot, project_id: str) -> httpx.Response:
        """Download the project's survey file.

        The transfer timeout bounds the whole download, not only each read,
        so a body trickling in slowly still ends in a timeout.

        Raises:
            httpx.ReadTimeout: If the body is still arriving at the deadline.
        """
        deadline = time.monotonic() + self._config.transfer_timeout
        with self._client.stream(
            "GET",
            self._project_url(session, project_id, "download/ariane_tml"),
            headers=self._auth_headers(session.token.value),
            timeout=self._transfer_timeout,
        ) as response:
            chunks = []
            for chunk in response.iter_raw():
                if time.monotonic() > deadline:
                    raise httpx.ReadTimeout(
                        f"Download exceeded {self._config.transfer_timeout}s",
                        request=response.request,
                    )
                chunks.append(chunk)

        # Raw chunks; the new response decodes any Content-Encoding itself
        return httpx.Response(
            response.status_code,
            headers=response.headers,
            content=b"".join(chunks),
            request=response.request,
        )

    def upload_project(
        self,
        session: SessionSnapshot,
        project_id: str,
        message: str,
        content: bytes,
    ) -> httpx.Response:
        """Upload a new revision of the project's survey file.

        The body has exactly two parts: the text part "message" followed by
        the binary part "artifact".
        """
        boundary = generate_boundary()
        headers = self._auth_headers(session.token.value)
        headers["Content-Type"] = f"multipart/form-data; boundary={boundary}"
        return self._client.put(
            self._project_url(session, project_id, "upload/ariane_tml"),
            data={"message": message},
            files={
                "artifact": (project_file_name(project_id), content, ARTIFACT_CONTENT_TYPE)
            },
            headers=headers,
            timeout=self._transfer_timeout,
        )

    # === Locking ===

    def acquire_mutex(self, session: SessionSnapshot, project_id: str) -> httpx.Response:
        """Acquire or refresh the project mutex."""
        return self._client.post(
            self._project_url(session, project_id, "acquire"),
            headers=self._auth_headers(session.token.value),
        )

    def release_mutex(self, session: SessionSnapshot, project_id: str) -> httpx.Response:
        """Release the project mutex."""
        return self._client.post(
            self._project_url(session, project_id, "release"),
            headers=self._auth_headers(session.token.value),
        )
