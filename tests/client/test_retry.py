"""Tests for retry_result."""

from __future__ import annotations

from speleosync.client.errors import ServiceError, ServiceResult
from speleosync.client.retry import retry_result
from speleosync.core.types import ErrorKind


def results(*items: ServiceResult[str]):  # type: ignore[no-untyped-def]
    """Create an operation returning the given results in order."""
    queue = list(items)
    calls: list[int] = []

    def operation() -> ServiceResult[str]:
        calls.append(1)
        return queue.pop(0)

    operation.calls = calls  # type: ignore[attr-defined]
    return operation


SERVER_DOWN = ServiceResult.failure(ServiceError("down", kind=ErrorKind.SERVER))
BAD_INPUT = ServiceResult.failure(ServiceError("bad", kind=ErrorKind.VALIDATION))


class TestRetryResult:
    """Tests for retry_result()."""

    def test_success_first_try(self) -> None:
        """Should not sleep when the first attempt succeeds."""
        sleeps: list[float] = []
        operation = results(ServiceResult.success("ok"))

        result = retry_result(operation, sleep=sleeps.append)

        assert result.value == "ok"
        assert sleeps == []

    def test_retries_retryable_failures(self) -> None:
        """Should back off exponentially until success."""
        sleeps: list[float] = []
        operation = results(SERVER_DOWN, SERVER_DOWN, ServiceResult.success("ok"))

        result = retry_result(operation, initial_backoff=1.0, sleep=sleeps.append)

        assert result.ok is True
        assert sleeps == [1.0, 2.0]
        assert len(operation.calls) == 3

    def test_non_retryable_returned_immediately(self) -> None:
        """Should not retry validation failures."""
        sleeps: list[float] = []
        operation = results(BAD_INPUT)

        result = retry_result(operation, sleep=sleeps.append)

        assert result is BAD_INPUT
        assert sleeps == []

    def test_gives_up_after_max_retries(self) -> None:
        """Should return the last failure once retries are exhausted."""
        sleeps: list[float] = []
        operation = results(SERVER_DOWN, SERVER_DOWN, SERVER_DOWN)

        result = retry_result(operation, max_retries=2, sleep=sleeps.append)

        assert result.retryable is True
        assert len(operation.calls) == 3
        assert sleeps == [1.0, 2.0]

    def test_backoff_capped(self) -> None:
        """Should not sleep longer than max_backoff."""
        sleeps: list[float] = []
        operation = results(SERVER_DOWN, SERVER_DOWN, SERVER_DOWN, SERVER_DOWN)

        retry_result(
            operation,
            max_retries=3,
            initial_backoff=4.0,
            max_backoff=5.0,
            sleep=sleeps.append,
        )

        assert sleeps == [4.0, 5.0, 5.0]

    def test_zero_retries(self) -> None:
        """Should call once when retries are disabled."""
        operation = results(SERVER_DOWN)
        assert retry_result(operation, max_retries=0, sleep=lambda _: None) is SERVER_DOWN
