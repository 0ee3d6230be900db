"""Authenticated session state for the SpeleoDB client.

This module provides:
- AuthToken: validated, log-safe authentication token
- SessionSnapshot: token and server URL that always belong together
- Session: current snapshot, replaced atomically
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass

OAUTH_TOKEN_PATTERN = re.compile(r"^[a-f0-9]{40}$")


@dataclass(frozen=True)
class AuthToken:
    """An authentication token.

    The raw value is never rendered by repr() so tokens do not leak into
    logs.
    """

    value: str

    @classmethod
    def parse(cls, raw: str) -> AuthToken:
        """Create a token from user input (trimmed).

        Raises:
            ValueError: If the token is empty.
        """
        token = (raw or "").strip()
        if not token:
            raise ValueError("Auth token cannot be empty")
        return cls(token)

    @staticmethod
    def is_well_formed(raw: str | None) -> bool:
        """Check if a user-supplied token is exactly 40 hexadecimal characters."""
        if raw is None:
            return False
        return OAUTH_TOKEN_PATTERN.match(raw.strip().lower()) is not None

    def __bool__(self) -> bool:
        return bool(self.value)

    def __repr__(self) -> str:
        return f"AuthToken({'***' if self.value else 'empty'})"

    __str__ = __repr__


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of a session: both fields always belong together."""

    token: AuthToken = AuthToken("")
    server_url: str = ""

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token) and bool(self.server_url)


_EMPTY = SessionSnapshot()


class Session:
    """Current authentication state of the client.

    Token and server URL are stored as one immutable snapshot and replaced
    with a single assignment, so a reader never sees a new token paired
    with an old server URL.
    """

    def __init__(self) -> None:
        """Create an unauthenticated session."""
        self._snapshot = _EMPTY
        self._lock = threading.Lock()

    @property
    def snapshot(self) -> SessionSnapshot:
        """Get the current token/server pair."""
        return self._snapshot

    @property
    def token(self) -> str:
        """Get the raw token value, empty when logged out."""
        return self._snapshot.token.value

    @property
    def server_url(self) -> str:
        return self._snapshot.server_url

    @property
    def is_authenticated(self) -> bool:
        """Check if both a token and a server URL are set."""
        return self._snapshot.is_authenticated

    def login(self, token: str, server_url: str) -> None:
        """Set token and server URL together.

        Raises:
            ValueError: If either value is empty.
        """
        if not server_url:
            raise ValueError("Both token and server URL are required")
        snapshot = SessionSnapshot(token=AuthToken.parse(token), server_url=server_url)
        with self._lock:
            self._snapshot = snapshot

    def clear(self) -> None:
        """Reset to unauthenticated. Always safe to call."""
        with self._lock:
            self._snapshot = _EMPTY

    def __repr__(self) -> str:
        state = "authenticated" if self.is_authenticated else "anonymous"
        return f"Session({state}, server_url={self.server_url!r})"
