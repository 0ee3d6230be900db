"""Tests for shared enums."""

from __future__ import annotations

from speleosync.core.types import ErrorKind, Permission


class TestPermission:
    """Tests for Permission parsing."""

    def test_known_values(self) -> None:
        """Should parse known permission strings, case-insensitively."""
        assert Permission.from_string("ADMIN") is Permission.ADMIN
        assert Permission.from_string("read_and_write") is Permission.READ_AND_WRITE
        assert Permission.from_string(" READ_ONLY ") is Permission.READ_ONLY

    def test_unknown_degrades_to_read_only(self) -> None:
        """Should treat unknown or missing values as read-only."""
        assert Permission.from_string("WEB_VIEWER") is Permission.READ_ONLY
        assert Permission.from_string(None) is Permission.READ_ONLY
        assert Permission.from_string("") is Permission.READ_ONLY

    def test_can_lock(self) -> None:
        """Only write-capable permissions may lock."""
        assert Permission.ADMIN.can_lock is True
        assert Permission.READ_AND_WRITE.can_lock is True
        assert Permission.READ_ONLY.can_lock is False


class TestErrorKind:
    """Tests for ErrorKind retryability."""

    def test_retryable_kinds(self) -> None:
        """Network, timeout and server failures may be retried."""
        assert ErrorKind.NETWORK_UNREACHABLE.retryable is True
        assert ErrorKind.TIMEOUT.retryable is True
        assert ErrorKind.SERVER.retryable is True

    def test_non_retryable_kinds(self) -> None:
        """Other kinds may not be retried."""
        for kind in (ErrorKind.AUTH, ErrorKind.VALIDATION, ErrorKind.NOT_FOUND, ErrorKind.UNKNOWN):
            assert kind.retryable is False
