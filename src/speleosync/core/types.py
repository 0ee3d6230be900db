"""Shared types for speleosync.

This module defines enums used across the client: project permissions,
lock lifecycle states and error kinds.
"""

from __future__ import annotations

import logging
from enum import Enum

logger = logging.getLogger(__name__)


class Permission(str, Enum):
    """Access level of the authenticated user on a project."""

    ADMIN = "ADMIN"
    READ_AND_WRITE = "READ_AND_WRITE"
    READ_ONLY = "READ_ONLY"

    @classmethod
    def from_string(cls, value: str | None) -> Permission:
        """Parse a permission string, degrading unknown values to READ_ONLY."""
        if value:
            try:
                return cls(value.strip().upper())
            except ValueError:
                logger.info(f"Unknown permission '{value}', defaulting to read-only")
        return cls.READ_ONLY

    @property
    def can_lock(self) -> bool:
        """Whether this access level allows acquiring the project mutex."""
        return self in (Permission.ADMIN, Permission.READ_AND_WRITE)


class LockState(str, Enum):
    """State of the client-side project lock mirror.

    UNLOCKED -> ACQUIRING -> LOCKED -> RELEASING -> UNLOCKED, plus
    LOCKED -> UNLOCKED on forced release.
    """

    UNLOCKED = "unlocked"
    ACQUIRING = "acquiring"
    LOCKED = "locked"
    RELEASING = "releasing"


class ErrorKind(str, Enum):
    """Classification of a failed network operation."""

    AUTH = "auth"
    NETWORK_UNREACHABLE = "network_unreachable"
    TIMEOUT = "timeout"
    SERVER = "server"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        """Whether an operation failing with this kind may be retried."""
        return self in (
            ErrorKind.NETWORK_UNREACHABLE,
            ErrorKind.SERVER,
            ErrorKind.TIMEOUT,
        )
