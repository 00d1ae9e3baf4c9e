"""Workers for concurrent sync runs.

Usage:
    from drivemirror.client.sync.workers import SyncTask, WorkerPool

    pool = WorkerPool(orchestrator, max_workers=3)
    pool.start()
    pool.submit(SyncTask(destination, local_root))
    pool.stop()
"""

from drivemirror.client.sync.workers.pool import PoolState, SyncTask, WorkerPool

__all__ = [
    "PoolState",
    "SyncTask",
    "WorkerPool",
]
