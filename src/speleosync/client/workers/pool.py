"""Worker pool for background SpeleoDB operations.

This module provides:
- WorkerPool: a fixed set of threads fed by a queue, returning futures
- WorkerTask: a queued call with its future and callbacks
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


class PoolState(Enum):
    """State of the worker pool."""

    STOPPED = auto()
    RUNNING = auto()
    STOPPING = auto()


@dataclass
class WorkerTask:
    """A call to be executed by the worker pool.

    Attributes:
        fn: Callable to run.
        args: Positional arguments for fn.
        kwargs: Keyword arguments for fn.
        future: Future resolved with the return value or exception.
        on_complete: Callback with the return value on success.
        on_error: Callback with the exception on failure.
    """

    fn: Callable[..., Any]
    args: tuple[Any, ...]
    kwargs: dict[str, Any]
    future: Future
    on_complete: Callable[[Any], None] | None = None
    on_error: Callable[[BaseException], None] | None = None

    @property
    def name(self) -> str:
        return getattr(self.fn, "__qualname__", repr(self.fn))


class WorkerPool:
    """Pool of threads executing network operations off the caller's thread.

    Usage:
        pool = WorkerPool()
        pool.start()

        future = pool.submit(service.list_projects, on_complete=callback)

        # Cancels queued work; in-flight calls finish or time out
        pool.stop()
    """

    def __init__(self, max_workers: int | None = None) -> None:
        """Initialize the worker pool.

        Args:
            max_workers: Number of threads. Defaults to the CPU count,
                capped at DEFAULT_MAX_WORKERS.
        """
        self._max_workers = max_workers or min(os.cpu_count() or 2, DEFAULT_MAX_WORKERS)

        self._pool_state = PoolState.STOPPED
        self._lock = threading.Lock()

        self._task_queue: queue.Queue[WorkerTask | None] = queue.Queue()
        self._workers: list[threading.Thread] = []

        self._active_count = 0
        self._completed_count = 0
        self._error_count = 0

    @property
    def state(self) -> PoolState:
        """Get current pool state."""
        return self._pool_state

    @property
    def is_running(self) -> bool:
        return self._pool_state == PoolState.RUNNING

    @property
    def max_workers(self) -> int:
        return self._max_workers

    @property
    def active_count(self) -> int:
        """Get number of tasks currently executing."""
        with self._lock:
            return self._active_count

    @property
    def queue_size(self) -> int:
        """Get number of queued tasks."""
        return self._task_queue.qsize()

    @property
    def completed_count(self) -> int:
        """Get number of completed tasks."""
        return self._completed_count

    @property
    def error_count(self) -> int:
        """Get number of failed tasks."""
        return self._error_count

    def start(self) -> None:
        """Start the worker threads."""
        with self._lock:
            if self._pool_state != PoolState.STOPPED:
                logger.warning("Worker pool already running")
                return

            self._pool_state = PoolState.RUNNING

            for i in range(self._max_workers):
                thread = threading.Thread(
                    target=self._worker_loop,
                    name=f"WorkerPool-{i}",
                    daemon=True,
                )
                thread.start()
                self._workers.append(thread)

            logger.debug(f"Worker pool started with {self._max_workers} workers")

    def stop(self, timeout: float = 10.0) -> None:
        """Stop the worker pool.

        Queued tasks are cancelled; running tasks are not interrupted.

        Args:
            timeout: Maximum time to wait for workers to finish.
        """
        with self._lock:
            if self._pool_state == PoolState.STOPPED:
                return

            self._pool_state = PoolState.STOPPING
            logger.debug("Worker pool stopping...")

            cancelled = self._drain_queue()

            # Poison pills to stop workers
            for _ in self._workers:
                self._task_queue.put(None)

        if cancelled:
            logger.info(f"Cancelled {cancelled} queued task(s)")

        workers = list(self._workers)
        for worker in workers:
            worker.join(timeout=timeout / len(workers))

        with self._lock:
            self._pool_state = PoolState.STOPPED
            self._workers.clear()
            logger.debug("Worker pool stopped")

    def _drain_queue(self) -> int:
        """Cancel every queued task. Called with the lock held."""
        cancelled = 0
        while True:
            try:
                task = self._task_queue.get_nowait()
            except queue.Empty:
                return cancelled
            if task is not None and task.future.cancel():
                cancelled += 1

    def submit(
        self,
        fn: Callable[..., Any],
        *args: Any,
        on_complete: Callable[[Any], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
        **kwargs: Any,
    ) -> Future:
        """Submit a call to the pool.

        Args:
            fn: Callable to run on a worker thread.
            *args: Positional arguments for fn.
            on_complete: Callback with the return value on success.
            on_error: Callback with the exception on failure.
            **kwargs: Keyword arguments for fn.

        Returns:
            A future for the call. If the pool is not running the future
            is already cancelled.
        """
        future: Future = Future()
        task = WorkerTask(
            fn=fn,
            args=args,
            kwargs=kwargs,
            future=future,
            on_complete=on_complete,
            on_error=on_error,
        )

        with self._lock:
            if self._pool_state != PoolState.RUNNING:
                logger.warning(f"Cannot submit {task.name}: pool not running")
                future.cancel()
                return future
            self._task_queue.put(task)

        logger.debug(f"Task submitted: {task.name}")
        return future

    def _worker_loop(self) -> None:
        """Main loop for worker threads."""
        while True:
            try:
                task = self._task_queue.get(timeout=1.0)
            except queue.Empty:
                if self._pool_state != PoolState.RUNNING:
                    break
                continue

            if task is None:
                # Poison pill
                break

            try:
                self._process_task(task)
            except Exception:
                logger.exception("Unexpected error in worker loop")

    def _process_task(self, task: WorkerTask) -> None:
        """Run a single task and resolve its future."""
        if not task.future.set_running_or_notify_cancel():
            return

        with self._lock:
            self._active_count += 1

        try:
            result = task.fn(*task.args, **task.kwargs)
        except Exception as e:
            self._error_count += 1
            logger.exception(f"Task error: {task.name}")
            task.future.set_exception(e)
            if task.on_error:
                task.on_error(e)
        else:
            self._completed_count += 1
            task.future.set_result(result)
            if task.on_complete:
                task.on_complete(result)
        finally:
            with self._lock:
                self._active_count -= 1
