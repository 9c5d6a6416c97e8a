"""
=============================================================================
THREAD POOL IMPLEMENTATION
=============================================================================

A thread pool manages a group of worker threads that process tasks from
a shared queue.

=============================================================================
WHY A GROWING POOL FOR CHAT?
=============================================================================

An HTTP request occupies a worker for milliseconds. A chat client
occupies a worker for as long as it stays connected, because its read
loop blocks in recv() waiting for the next line.

    ┌─────────────────────────────────────────────────────────────────────┐
    │               Fixed pool of 2 workers, 3 clients                    │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Worker-0  ──► alice.run()   (blocked in recv, for hours)          │
    │   Worker-1  ──► bob.run()     (blocked in recv, for hours)          │
    │   Queue     ──► carol.run()   (never starts!)                       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

So this pool keeps an exact count of OUTSTANDING tasks (queued or
running). Whenever that count exceeds the number of workers, a new
worker is started before the task is queued. Every task therefore has a
worker that will pick it up.

Workers are still reused: when a client leaves, its worker goes back to
the queue and serves the next client. Idle workers above min_workers
retire after idle_timeout seconds.

=============================================================================
THREAD POOL ARCHITECTURE
=============================================================================

    submit(task)
        │
        ├──► outstanding += 1
        ├──► outstanding > workers?  → start another Worker
        └──► queue.put(task)
                  │
        ┌─────────┼─────────┐
        ▼         ▼         ▼
    Worker-0  Worker-1  Worker-2     each: get() → run → outstanding -= 1

=============================================================================
"""

import threading
import queue
import time
import logging
from typing import Callable, Optional, Any
from dataclasses import dataclass
from enum import Enum


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    """Worker thread states, used for monitoring."""
    IDLE = "idle"        # Waiting for task
    BUSY = "busy"        # Executing task
    STOPPED = "stopped"  # Thread exited


@dataclass
class Task:
    """
    A deferred function call: "Call this function with these arguments later".

    Attributes:
        func: The function to execute.
        args: Positional arguments for the function.
        kwargs: Keyword arguments for the function.
        submitted_at: Time the task was submitted.
    """
    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = None
    submitted_at: float = 0.0

    def __post_init__(self):
        if self.kwargs is None:
            self.kwargs = {}
        if self.submitted_at == 0.0:
            self.submitted_at = time.time()


class Worker(threading.Thread):
    """
    Worker thread that processes tasks from the queue.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        Worker Loop                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. Wait for task from queue (up to idle_timeout)                  │
    │          │                                                           │
    │          ├── Timed out → ask the pool whether to retire             │
    │          │                                                           │
    │          ├── None ("poison pill") → exit                            │
    │          │                                                           │
    │          └── Task → execute, log any exception, report done         │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘
    """

    def __init__(self, pool: "ThreadPool", worker_id: int, idle_timeout: float = 60.0):
        """
        Initialize the worker.

        Args:
            pool: Owning pool (task queue and bookkeeping).
            worker_id: Unique identifier for this worker (for logging).
            idle_timeout: Seconds to wait for a task before considering retirement.
        """
        super().__init__(name=f"Worker-{worker_id}", daemon=True)

        self.pool = pool
        self.worker_id = worker_id
        self.idle_timeout = idle_timeout
        self.state = WorkerState.IDLE

        self._shutdown = threading.Event()

        self.tasks_completed = 0
        self.tasks_failed = 0

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")

        while not self._shutdown.is_set():
            try:
                task = self.pool._task_queue.get(timeout=self.idle_timeout)
            except queue.Empty:
                if self.pool._retire(self):
                    break
                continue

            if task is None:
                break

            try:
                self._execute_task(task)
            finally:
                self.pool._task_finished()

        self.state = WorkerState.STOPPED
        logger.debug(f"Worker {self.worker_id} stopped")

    def _execute_task(self, task: Task):
        """
        Execute a single task.

        Exceptions are logged and counted, never allowed to kill the worker.
        """
        self.state = WorkerState.BUSY
        start_time = time.time()

        try:
            task.func(*task.args, **task.kwargs)

            elapsed = time.time() - start_time
            logger.debug(f"Worker {self.worker_id} completed task in {elapsed:.3f}s")
            self.tasks_completed += 1

        except Exception as e:
            elapsed = time.time() - start_time
            logger.exception(
                f"Worker {self.worker_id} task failed after {elapsed:.3f}s: {e}"
            )
            self.tasks_failed += 1

        finally:
            self.state = WorkerState.IDLE

    def shutdown(self):
        """Signal the worker to stop."""
        self._shutdown.set()


class ThreadPool:
    """
    Thread pool for long-running, blocking tasks.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      ThreadPool Usage                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   pool = ThreadPool(min_workers=4)       # max_workers=None         │
    │   pool.start()                                                       │
    │                                                                      │
    │   pool.submit(session.run)               # one per client           │
    │                                                                      │
    │   print(pool.stats)                                                  │
    │                                                                      │
    │   pool.shutdown(wait=True, timeout=5.0)                             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: Optional[int] = None,
        idle_timeout: float = 60.0
    ):
        """
        Initialize the thread pool.

        Args:
            min_workers: Worker threads created at startup and never retired.
            max_workers: Upper bound on worker threads, None for no bound.
                         With a bound, tasks beyond it wait in the queue.
            idle_timeout: Seconds an extra worker may sit idle before retiring.
        """
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.idle_timeout = idle_timeout

        self._task_queue: queue.Queue[Optional[Task]] = queue.Queue()

        self._workers: list[Worker] = []
        self._lock = threading.Lock()  # Protects _workers and _outstanding

        # Tasks submitted but not yet finished (queued + running)
        self._outstanding = 0

        self._started = False
        self._shutdown = False
        self._next_worker_id = 0

    def start(self):
        """Start the pool with min_workers threads."""
        if self._started:
            return

        logger.info(f"Starting thread pool with {self.min_workers} workers")

        with self._lock:
            for _ in range(self.min_workers):
                self._add_worker()

        self._started = True
        self._shutdown = False

    def _add_worker(self) -> Worker:
        """Start one more worker. Caller must hold self._lock."""
        worker = Worker(
            pool=self,
            worker_id=self._next_worker_id,
            idle_timeout=self.idle_timeout
        )
        self._next_worker_id += 1
        self._workers.append(worker)
        worker.start()
        return worker

    def submit(
        self,
        func: Callable[..., Any],
        args: tuple = (),
        kwargs: dict = None,
    ) -> bool:
        """
        Submit a task for execution.

        Args:
            func: The function to execute.
            args: Positional arguments for the function.
            kwargs: Keyword arguments for the function.

        Returns:
            True once the task is queued.

        Raises:
            RuntimeError: If pool is not started or is shutting down.
        """
        if not self._started:
            raise RuntimeError("Thread pool not started")

        if self._shutdown:
            raise RuntimeError("Thread pool is shutting down")

        task = Task(func=func, args=args, kwargs=kwargs or {})

        with self._lock:
            self._outstanding += 1
            if self._outstanding > len(self._workers) and (
                self.max_workers is None or len(self._workers) < self.max_workers
            ):
                logger.debug(
                    f"Scaling up: {len(self._workers)} -> {len(self._workers) + 1} workers"
                )
                self._add_worker()
            self._task_queue.put(task)

        return True

    def _task_finished(self):
        with self._lock:
            self._outstanding -= 1

    def _retire(self, worker: Worker) -> bool:
        """
        Decide whether an idle worker should exit.

        A worker may leave only if the pool stays above min_workers and the
        remaining workers still cover every outstanding task.
        """
        with self._lock:
            remaining = len(self._workers) - 1
            if self._shutdown or remaining < self.min_workers or remaining < self._outstanding:
                return False
            self._workers.remove(worker)

        logger.debug(f"Worker {worker.worker_id} retiring after {self.idle_timeout}s idle")
        return True

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None):
        """
        Shutdown the thread pool.

        Args:
            wait: Whether to wait for outstanding tasks to complete.
            timeout: Maximum time to wait for them. None = wait forever.
        """
        if not self._started:
            return

        logger.info("Shutting down thread pool...")
        self._shutdown = True

        if wait:
            deadline = time.time() + timeout if timeout is not None else None
            while self.outstanding_tasks > 0:
                if deadline is not None and time.time() > deadline:
                    logger.warning(
                        f"Shutdown timeout, abandoning {self.outstanding_tasks} tasks"
                    )
                    break
                time.sleep(0.05)

        with self._lock:
            workers = list(self._workers)
            self._workers.clear()

        # One poison pill per worker
        for _ in workers:
            self._task_queue.put(None)

        for worker in workers:
            worker.shutdown()
            worker.join(timeout=2.0)

        self._started = False
        logger.info("Thread pool shutdown complete")

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def outstanding_tasks(self) -> int:
        """Tasks submitted but not yet finished."""
        with self._lock:
            return self._outstanding

    @property
    def worker_count(self) -> int:
        with self._lock:
            return len(self._workers)

    @property
    def busy_workers(self) -> int:
        """Get count of busy workers."""
        with self._lock:
            return sum(1 for w in self._workers if w.state == WorkerState.BUSY)

    @property
    def stats(self) -> dict:
        """
        Get thread pool statistics.

        Returns a dict with worker and task counts, useful for monitoring.
        """
        with self._lock:
            workers = list(self._workers)
            outstanding = self._outstanding

        return {
            "workers": {
                "total": len(workers),
                "busy": sum(1 for w in workers if w.state == WorkerState.BUSY),
                "idle": sum(1 for w in workers if w.state == WorkerState.IDLE),
            },
            "tasks": {
                "outstanding": outstanding,
                "queued": self._task_queue.qsize(),
                "completed": sum(w.tasks_completed for w in workers),
                "failed": sum(w.tasks_failed for w in workers),
            },
        }
