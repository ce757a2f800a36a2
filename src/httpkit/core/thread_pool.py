"""
=============================================================================
THREAD POOL
=============================================================================

Worker threads pulling connection tasks from a bounded queue.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          ThreadPool                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   submit(func, args) ──► [Task] [Task] [Task] ...   (bounded queue) │
    │                                   │                                  │
    │                                   │ get()                            │
    │                                   ▼                                  │
    │        ┌──────────┐ ┌──────────┐ ┌──────────┐ ┌──────────┐          │
    │        │ Worker 0 │ │ Worker 1 │ │ Worker 2 │ │ Worker 3 │  ...     │
    │        └──────────┘ └──────────┘ └──────────┘ └──────────┘          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

min_workers threads start with the pool; another is added (up to
max_workers) whenever every worker is busy and tasks are waiting. A full
queue makes submit(block=False) return False, which the server turns into
503 Service Unavailable.

Shutdown uses the poison-pill pattern: one None per worker, each worker
exits when it pulls one.

=============================================================================
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Task:
    """A deferred call: func(*args, **kwargs)."""
    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    submitted_at: float = field(default_factory=time.time)


class Worker(threading.Thread):
    """Daemon thread running tasks until it receives a poison pill."""

    def __init__(self, pool: "ThreadPool", worker_id: int):
        super().__init__(name=f"httpkit-worker-{worker_id}", daemon=True)
        self.pool = pool
        self.worker_id = worker_id
        self.state = WorkerState.IDLE
        self.tasks_completed = 0
        self.tasks_failed = 0

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")
        while not self.pool._stopping.is_set():
            try:
                task = self.pool._task_queue.get(timeout=0.5)
            except queue.Empty:
                continue
            if task is None:
                break
            self._execute(task)
        self.state = WorkerState.STOPPED
        logger.debug(f"Worker {self.worker_id} stopped")

    def _execute(self, task: Task) -> None:
        self.state = WorkerState.BUSY
        start = time.time()
        try:
            task.func(*task.args, **task.kwargs)
            self.tasks_completed += 1
        except Exception as e:
            # Task errors are logged; the worker itself keeps going.
            logger.exception(f"Worker {self.worker_id} task failed after {time.time() - start:.3f}s: {e}")
            self.tasks_failed += 1
        finally:
            self.state = WorkerState.IDLE
            self.pool._task_done()


class ThreadPool:
    """
    Bounded pool of worker threads.

    Usage:
        pool = ThreadPool(min_workers=4, max_workers=16, queue_size=100)
        pool.start()
        if not pool.submit(handle, args=(conn,), block=False):
            reject(conn)
        pool.shutdown(wait=True, timeout=5.0)
    """

    def __init__(self, min_workers: int = 4, max_workers: int = 16, queue_size: int = 100):
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.max_queue_size = queue_size

        self._task_queue: "queue.Queue[Optional[Task]]" = queue.Queue(maxsize=queue_size)
        self._workers: List[Worker] = []
        self._lock = threading.Lock()
        self._unfinished = 0
        self._all_done = threading.Condition(self._lock)
        self._stopping = threading.Event()
        self._started = False
        self._shutdown = False
        self._next_worker_id = 0

    def start(self) -> None:
        """Start min_workers threads. Does nothing if already started."""
        with self._lock:
            if self._started:
                return
            logger.info(f"Starting thread pool with {self.min_workers} workers")
            self._stopping.clear()
            for _ in range(self.min_workers):
                self._add_worker()
            self._started = True
            self._shutdown = False

    def _add_worker(self) -> None:
        # Caller holds self._lock.
        worker = Worker(self, self._next_worker_id)
        self._next_worker_id += 1
        self._workers.append(worker)
        worker.start()

    def submit(self, func: Callable[..., Any], args: tuple = (), kwargs: Optional[dict] = None,
               block: bool = True, timeout: Optional[float] = None) -> bool:
        """
        Queue a task.

        Returns:
            True if queued, False if the queue was full

        Raises:
            RuntimeError: The pool is not running
        """
        with self._lock:
            if not self._started or self._shutdown:
                raise RuntimeError("Thread pool is not running")
            self._unfinished += 1

        try:
            self._task_queue.put(Task(func, args, kwargs or {}), block=block, timeout=timeout)
        except queue.Full:
            self._task_done()
            return False

        self._maybe_scale_up()
        return True

    def _task_done(self) -> None:
        with self._all_done:
            self._unfinished -= 1
            if self._unfinished <= 0:
                self._all_done.notify_all()

    def _maybe_scale_up(self) -> None:
        with self._lock:
            busy = sum(1 for w in self._workers if w.state == WorkerState.BUSY)
            if (busy == len(self._workers) and len(self._workers) < self.max_workers
                    and not self._task_queue.empty()):
                logger.debug(f"Scaling up: {len(self._workers)} -> {len(self._workers) + 1} workers")
                self._add_worker()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every submitted task has finished.

        Returns:
            False if `timeout` passed first
        """
        with self._all_done:
            return self._all_done.wait_for(lambda: self._unfinished <= 0, timeout)

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> bool:
        """
        Stop accepting tasks and stop the workers.

        Args:
            wait: Let queued and running tasks finish first
            timeout: Upper bound on that wait

        Returns:
            True if every task finished, False if the wait timed out (or
            was skipped) with work still outstanding. Workers still busy
            at that point are left to finish on their own as daemons.
        """
        with self._lock:
            if not self._started:
                return True
            self._shutdown = True

        logger.info("Shutting down thread pool...")
        drained = self.wait_idle(timeout) if wait else self._unfinished <= 0

        if not drained:
            # Drop tasks nobody has picked up yet.
            while True:
                try:
                    if self._task_queue.get_nowait() is not None:
                        self._task_done()
                except queue.Empty:
                    break

        with self._lock:
            workers, self._workers = self._workers, []
            self._started = False

        self._stopping.set()
        for _ in workers:
            try:
                self._task_queue.put_nowait(None)
            except queue.Full:
                break
        if drained:
            for worker in workers:
                worker.join(timeout=2.0)

        logger.info("Thread pool shutdown complete")
        return drained

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.BUSY)

    @property
    def pending(self) -> int:
        """Tasks queued or running."""
        return self._unfinished

    @property
    def stats(self) -> dict:
        return {
            "workers": {"total": len(self._workers), "busy": self.busy_workers},
            "tasks": {
                "queued": self._task_queue.qsize(),
                "completed": sum(w.tasks_completed for w in self._workers),
                "failed": sum(w.tasks_failed for w in self._workers),
            },
        }
