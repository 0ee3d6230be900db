"""Background execution for SpeleoDB operations.

This package provides:
- WorkerPool: threads fed by a queue, each submission returning a Future
- WorkerTask: a queued call with its future and callbacks

Usage:
    from speleosync.client.workers import WorkerPool

    pool = WorkerPool(max_workers=4)
    pool.start()
    future = pool.submit(service.list_projects, on_complete=callback)
    pool.stop()
"""

from speleosync.client.workers.pool import PoolState, WorkerPool, WorkerTask

__all__ = [
    "PoolState",
    "WorkerPool",
    "WorkerTask",
]
