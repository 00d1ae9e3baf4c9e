"""Worker pool for concurrent sync runs.

This module provides:
- WorkerPool: Runs sync tasks on a fixed number of threads
- SyncTask: A queued sync run, also its own stop requester
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import TYPE_CHECKING, Any

from drivemirror.client.sync.types import OperationResult

if TYPE_CHECKING:
    from collections.abc import Callable

    from drivemirror.client.sync.orchestrator import SyncOrchestrator
    from drivemirror.client.sync.types import (
        RemoteDestination,
        StatusReporter,
        StopRequester,
    )

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 3
DEFAULT_STOP_GRACE = 2.0  # seconds


class PoolState(Enum):
    """State of the worker pool."""

    STOPPED = auto()
    RUNNING = auto()
    STOPPING = auto()


@dataclass(eq=False)
class SyncTask:
    """A sync run to be executed by the worker pool.

    Attributes:
        destination: Remote destination folder.
        local_root: Local directory to upload.
        overwrite: Whether differing remote files may be replaced.
        reporter: Optional progress receiver.
        stop_requester: Optional external stop signal.
        on_complete: Callback with the run result.
        on_error: Callback when the run raised.
    """

    destination: RemoteDestination
    local_root: Path
    overwrite: bool = False
    reporter: StatusReporter | None = None
    stop_requester: StopRequester | None = None
    on_complete: Callable[[OperationResult], None] | None = None
    on_error: Callable[[Exception], None] | None = None
    cancel_requested: bool = field(default=False)
    result: OperationResult | None = field(default=None, init=False)
    error: Exception | None = field(default=None, init=False)
    _done: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    def __post_init__(self) -> None:
        self.local_root = Path(self.local_root).expanduser().resolve()

    def __str__(self) -> str:
        return f"{self.local_root} -> {self.destination}"

    def request_cancel(self) -> None:
        """Request cancellation of this task."""
        self.cancel_requested = True

    def is_stop_requested(self) -> bool:
        """Check if the run should stop."""
        if self.cancel_requested:
            return True
        return self.stop_requester is not None and self.stop_requester.is_stop_requested()

    def is_same_task_as(self, other: SyncTask) -> bool:
        """Check if both tasks mirror the same directory to the same place."""
        return self.local_root == other.local_root and self.destination == other.destination

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the task has finished.

        Returns:
            True if the task finished within the timeout.
        """
        return self._done.wait(timeout)

    def finish(self, result: OperationResult | None = None, error: Exception | None = None) -> None:
        """Record the outcome and wake up waiters."""
        self.result = result
        self.error = error
        self._done.set()


class WorkerPool:
    """Pool of threads running sync tasks.

    Each task is one sync run. Runs execute concurrently, a run itself is
    sequential.

    Usage:
        pool = WorkerPool(orchestrator)
        pool.start()
        task = SyncTask(RemoteDestination(title="Backups"), Path("~/docs"))
        pool.submit(task)
        task.wait()
        pool.stop()
    """

    def __init__(self, orchestrator: SyncOrchestrator, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        """Initialize the worker pool.

        Args:
            orchestrator: Runs the sync of each task.
            max_workers: Number of threads.
        """
        if max_workers < 1:
            raise ValueError("A worker pool needs at least one worker")
        self._orchestrator = orchestrator
        self._max_workers = max_workers

        self._pool_state = PoolState.STOPPED
        self._lock = threading.Lock()
        self._task_queue: queue.Queue[SyncTask | None] = queue.Queue()

        # Queued and running tasks
        self._tasks: list[SyncTask] = []
        self._running: set[int] = set()
        self._workers: list[threading.Thread] = []

        self._completed_count = 0
        self._error_count = 0

    @property
    def state(self) -> PoolState:
        """Get current pool state."""
        return self._pool_state

    @property
    def active_count(self) -> int:
        """Get number of running tasks."""
        with self._lock:
            return len(self._running)

    @property
    def pending_count(self) -> int:
        """Get number of queued or running tasks."""
        with self._lock:
            return len(self._tasks)

    @property
    def completed_count(self) -> int:
        return self._completed_count

    @property
    def error_count(self) -> int:
        return self._error_count

    def start(self) -> None:
        """Start the worker pool."""
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

            logger.info(f"Worker pool started with {self._max_workers} workers")

    def submit(self, task: SyncTask) -> bool:
        """Queue a task.

        Args:
            task: Task to run.

        Returns:
            True if queued, False if the pool is not running or the same
            task is already queued or running.
        """
        with self._lock:
            if self._pool_state != PoolState.RUNNING:
                logger.warning("Cannot submit task: pool not running")
                return False
            if any(task.is_same_task_as(other) for other in self._tasks):
                logger.warning(f"Task already queued or running: {task}")
                return False
            self._tasks.append(task)
            self._task_queue.put(task)

        logger.debug(f"Task submitted: {task}")
        return True

    def stop(self, grace: float = DEFAULT_STOP_GRACE) -> None:
        """Stop the worker pool.

        Queued and running tasks get the grace period to finish. Then they
        are cancelled: running runs stop at their next check, queued tasks
        finish as STOPPED without running.

        Args:
            grace: Seconds to wait before cancelling, and again for threads
                to exit after cancelling.
        """
        with self._lock:
            if self._pool_state == PoolState.STOPPED:
                return
            self._pool_state = PoolState.STOPPING
            tasks = list(self._tasks)
            logger.info("Worker pool stopping...")

        deadline = time.monotonic() + grace
        for task in tasks:
            task.wait(max(0.0, deadline - time.monotonic()))

        unfinished = [task for task in tasks if not task.done]
        if unfinished:
            logger.info(f"Cancelling {len(unfinished)} unfinished tasks")
            for task in unfinished:
                task.request_cancel()

        for _ in self._workers:
            self._task_queue.put(None)

        deadline = time.monotonic() + grace
        for worker in self._workers:
            worker.join(timeout=max(0.0, deadline - time.monotonic()))
        alive = sum(1 for worker in self._workers if worker.is_alive())
        if alive:
            logger.warning(f"{alive} workers still busy after stop")

        with self._lock:
            self._pool_state = PoolState.STOPPED
            self._workers.clear()
            leftover = self._drain_queue()
            logger.info("Worker pool stopped")

        for task in leftover:
            result = OperationResult()
            result.mark_stopped()
            task.finish(result=result)

    def _drain_queue(self) -> list[SyncTask]:
        """Remove tasks no worker picked up. Caller holds the lock."""
        leftover: list[SyncTask] = []
        while True:
            try:
                task = self._task_queue.get_nowait()
            except queue.Empty:
                break
            if task is not None:
                leftover.append(task)
                if task in self._tasks:
                    self._tasks.remove(task)
        return leftover

    def cancel(self, task: SyncTask) -> bool:
        """Cancel a queued or running task.

        Returns:
            True if cancellation was requested, False if the task is unknown.
        """
        with self._lock:
            if task not in self._tasks:
                return False
        task.request_cancel()
        logger.info(f"Cancellation requested for: {task}")
        return True

    def _worker_loop(self) -> None:
        """Main loop for worker threads."""
        while self._pool_state != PoolState.STOPPED:
            try:
                task = self._task_queue.get(timeout=1.0)
                if task is None:
                    # Poison pill - stop worker
                    break
                self._process_task(task)
            except queue.Empty:
                continue
            except Exception:
                logger.exception("Unexpected error in worker loop")

    def _process_task(self, task: SyncTask) -> None:
        """Run one task and record its outcome."""
        with self._lock:
            self._running.add(id(task))

        result: OperationResult | None = None
        error: Exception | None = None
        try:
            if task.is_stop_requested():
                logger.info(f"Skipping cancelled task: {task}")
                result = OperationResult()
                result.mark_stopped()
            else:
                result = self._orchestrator.synchronize(
                    task.destination,
                    task.local_root,
                    overwrite=task.overwrite,
                    stop_requester=task,
                    reporter=task.reporter,
                )
        except Exception as e:
            logger.exception(f"Task error: {task}")
            error = e
        finally:
            with self._lock:
                self._running.discard(id(task))
                if task in self._tasks:
                    self._tasks.remove(task)

        task.finish(result=result, error=error)
        if error is not None:
            self._error_count += 1
            self._notify(task.on_error, error)
        else:
            self._completed_count += 1
            self._notify(task.on_complete, result)

    @staticmethod
    def _notify(callback: Callable[[Any], None] | None, value: object) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            logger.exception("Task callback failed")
