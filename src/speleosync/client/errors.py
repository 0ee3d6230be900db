"""Error classification and typed results for SpeleoDB operations.

This module provides:
- ServiceError, NotAuthenticatedError, LockNotHeldError: classified failures
- ServiceResult: success value or classified error
- classify: map a status code or transport exception to an ErrorKind
- user_message: user-facing text for a failure
"""

from __future__ import annotations

import json
import socket
from dataclasses import dataclass
from typing import Generic, TypeVar

import httpx

from speleosync.core.types import ErrorKind

T = TypeVar("T")

NETWORK_UNREACHABLE_PATTERNS = (
    "connection refused",
    "no route to host",
    "host unreachable",
    "network is unreachable",
    "network unreachable",
    "connection reset",
    "unknown host",
    "name resolution",
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
)

NETWORK_UNREACHABLE_TYPES: tuple[type[BaseException], ...] = (
    httpx.ConnectError,
    ConnectionRefusedError,
    ConnectionResetError,
    socket.gaierror,
)

TIMEOUT_PATTERNS = ("timed out", "timeout", "interrupted")

TIMEOUT_TYPES: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    TimeoutError,
    InterruptedError,
)

NETWORK_UNREACHABLE_ADVICE = """Can't reach server - Please check:
• Server is online and accessible
• Network connection is working
• Server URL is correct
• Firewall isn't blocking the connection"""

TIMEOUT_ADVICE = """Request timed out - Server may be:
• Overloaded or slow to respond
• Experiencing network issues
• Temporarily unavailable
Try again in a few moments"""


def classify_status(status_code: int) -> ErrorKind:
    """Classify an HTTP status code."""
    if status_code in (401, 403):
        return ErrorKind.AUTH
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if 400 <= status_code < 500:
        return ErrorKind.VALIDATION
    if status_code >= 500:
        return ErrorKind.SERVER
    return ErrorKind.UNKNOWN


def classify_exception(exc: BaseException) -> ErrorKind:
    """Classify a transport-layer exception by type, then by message."""
    if isinstance(exc, ServiceError):
        return exc.kind
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_status(exc.response.status_code)
    if isinstance(exc, NETWORK_UNREACHABLE_TYPES):
        return ErrorKind.NETWORK_UNREACHABLE
    if isinstance(exc, TIMEOUT_TYPES):
        return ErrorKind.TIMEOUT

    message = str(exc).lower()
    type_name = type(exc).__name__.lower()
    if any(p in message for p in NETWORK_UNREACHABLE_PATTERNS) or type_name in (
        "connectexception",
        "unknownhostexception",
        "noroutetohostexception",
    ):
        return ErrorKind.NETWORK_UNREACHABLE
    if any(p in message for p in TIMEOUT_PATTERNS) or "timeout" in type_name:
        return ErrorKind.TIMEOUT
    return ErrorKind.UNKNOWN


def classify(failure: BaseException | httpx.Response | int) -> ErrorKind:
    """Classify a failure given as a status code, a response or an exception."""
    if isinstance(failure, int):
        return classify_status(failure)
    if isinstance(failure, httpx.Response):
        return classify_status(failure.status_code)
    return classify_exception(failure)


def safe_message(exc: BaseException | None) -> str:
    """Get a non-empty message for an exception."""
    if exc is None:
        return "Unknown error"
    message = str(exc).strip()
    return message or type(exc).__name__


class ServiceError(Exception):
    """A classified failure of a SpeleoDB operation.

    Attributes:
        kind: Classification of the failure.
        status_code: HTTP status code, or None for transport failures.
        body: Raw response body, kept for diagnostics.
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status_code = status_code
        self.body = body

    @property
    def retryable(self) -> bool:
        """Whether the failed operation may be retried."""
        return self.kind.retryable

    @classmethod
    def from_response(cls, message: str, response: httpx.Response) -> ServiceError:
        """Build an error from an unexpected HTTP response."""
        body = response.text
        return cls(
            f"{message} (HTTP {response.status_code})",
            kind=classify_status(response.status_code),
            status_code=response.status_code,
            body=body,
        )

    @classmethod
    def from_exception(cls, message: str, exc: BaseException) -> ServiceError:
        """Build an error from a transport exception."""
        return cls(f"{message}: {safe_message(exc)}", kind=classify_exception(exc))

    @classmethod
    def validation(cls, message: str) -> ServiceError:
        """Build a validation error raised before any network call."""
        return cls(message, kind=ErrorKind.VALIDATION)

    def user_message(self, operation: str = "Operation") -> str:
        """Get the text to show to the user for this failure."""
        return user_message(self, operation)

    def __repr__(self) -> str:
        return (
            f"ServiceError(kind={self.kind.name}, status_code={self.status_code}, "
            f"message={self.message!r})"
        )


class NotAuthenticatedError(ServiceError):
    """An operation requiring a session was called while logged out."""

    def __init__(self, message: str = "User is not authenticated") -> None:
        super().__init__(message, kind=ErrorKind.AUTH)


class LockNotHeldError(ServiceError):
    """The server refused to acquire or refresh a project mutex."""


def user_message(error: ServiceError, operation: str = "Operation") -> str:
    """Build user-facing text for a failure.

    Network and timeout failures get a remediation checklist since the raw
    exception text is rarely actionable. Auth and validation failures show
    the server's own message.
    """
    if error.kind == ErrorKind.NETWORK_UNREACHABLE:
        return NETWORK_UNREACHABLE_ADVICE
    if error.kind == ErrorKind.TIMEOUT:
        return TIMEOUT_ADVICE
    if error.kind in (ErrorKind.AUTH, ErrorKind.VALIDATION):
        return server_detail(error) or error.message
    return f"{operation} failed: {error.message}"


def server_detail(error: ServiceError) -> str | None:
    """Extract the server's literal message from an error body, if any."""
    if not error.body:
        return None
    try:
        data = json.loads(error.body)
    except ValueError:
        return error.body.strip() or None
    if isinstance(data, dict):
        for key in ("detail", "error", "message"):
            if data.get(key):
                return str(data[key])
    return None


@dataclass
class ServiceResult(Generic[T]):
    """Outcome of a service operation.

    Exactly one of value/error is meaningful: error is None on success.
    """

    value: T | None = None
    error: ServiceError | None = None

    @property
    def ok(self) -> bool:
        """Whether the operation succeeded."""
        return self.error is None

    @property
    def retryable(self) -> bool:
        """Whether the operation failed and may be retried."""
        return self.error is not None and self.error.retryable

    @classmethod
    def success(cls, value: T) -> ServiceResult[T]:
        """Create a successful result."""
        return cls(value=value)

    @classmethod
    def failure(cls, error: ServiceError) -> ServiceResult[T]:
        """Create a failed result."""
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value, raising the error if the operation failed."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
