"""
Timer and background-execution utilities.

Provides:
- Scheduler / TimerHandle abstraction for cancelable one-shot timers
- ThreadingScheduler backed by threading.Timer
- Debouncer that collapses bursts of triggers into one call
- WorkerPool for fire-and-forget background replication
"""
import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from typing import Callable, Dict, Optional, Set

log = logging.getLogger(__name__)


class TimerHandle:
    """Handle returned by ``Scheduler.call_later``; cancel() is idempotent."""

    def __init__(self, cancel_fn: Optional[Callable[[], None]] = None):
        self._cancel_fn = cancel_fn
        self._cancelled = False
        self._lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
        if self._cancel_fn is not None:
            self._cancel_fn()


class Scheduler(ABC):
    """Source of time and one-shot timers."""

    @abstractmethod
    def now(self) -> float:
        """Monotonic time in seconds."""
        pass

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds unless cancelled."""
        pass


def run_callback(callback: Callable[[], None], description: str = "timer") -> None:
    """Invoke a callback, logging instead of propagating its errors."""
    try:
        callback()
    except Exception as e:
        log.warning(f"{description} callback error: {e}")
        if log.isEnabledFor(logging.DEBUG):
            log.debug("Full traceback:", exc_info=e)


class ThreadingScheduler(Scheduler):
    """
    Scheduler running callbacks on daemon ``threading.Timer`` threads.

    Callback exceptions are logged and never escape the timer thread.
    """

    def __init__(self):
        self._timers: Set[threading.Timer] = set()
        self._lock = threading.Lock()
        self._shutdown = False

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        if self._shutdown:
            raise RuntimeError("Scheduler is shut down")

        timer: Optional[threading.Timer] = None

        def fire():
            with self._lock:
                self._timers.discard(timer)
            if not handle.cancelled:
                run_callback(callback)

        def cancel():
            timer.cancel()
            with self._lock:
                self._timers.discard(timer)

        handle = TimerHandle(cancel)
        timer = threading.Timer(max(0.0, delay), fire)
        timer.daemon = True
        with self._lock:
            self._timers.add(timer)
        timer.start()
        return handle

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._timers)

    def shutdown(self) -> None:
        """Cancel every outstanding timer."""
        self._shutdown = True
        with self._lock:
            timers = list(self._timers)
            self._timers.clear()
        for timer in timers:
            timer.cancel()


class Debouncer:
    """
    Collapse a burst of triggers into a single call after a quiet period.

    Every ``trigger()`` cancels the pending call and reschedules it.
    """

    def __init__(self, scheduler: Scheduler, delay: float, callback: Callable[[], None]):
        self._scheduler = scheduler
        self._delay = delay
        self._callback = callback
        self._handle: Optional[TimerHandle] = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._handle is not None and not self._handle.cancelled

    def trigger(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
            self._generation += 1
            generation = self._generation
            self._handle = self._scheduler.call_later(
                self._delay, lambda: self._fire(generation)
            )

    def _fire(self, generation: int) -> None:
        with self._lock:
            # A newer trigger superseded this timer after it started firing.
            if generation != self._generation:
                return
            self._handle = None
        self._callback()

    def cancel(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
                self._handle = None


class WorkerPool:
    """
    Managed thread pool for background operations.

    Failures are logged, never raised into the pool; callers that care
    about outcomes record them inside the submitted function.
    """

    def __init__(
        self,
        max_workers: int = 2,
        thread_name_prefix: str = "reportgrid-sync"
    ):
        """
        Initialize the worker pool.

        Args:
            max_workers: Maximum concurrent workers
            thread_name_prefix: Prefix for worker thread names
        """
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=thread_name_prefix
        )
        self._futures: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self._shutdown = False
        self._task_counter = 0

    def submit(self, func: Callable, *args, task_name: str = "", **kwargs) -> str:
        """
        Submit a task for execution.

        Args:
            func: Function to execute
            *args: Function arguments
            task_name: Human-readable task name
            **kwargs: Function keyword arguments

        Returns:
            Task ID for tracking
        """
        if self._shutdown:
            raise RuntimeError("WorkerPool is shut down")

        with self._lock:
            self._task_counter += 1
            task_id = f"{task_name or func.__name__}-{self._task_counter}"

        def wrapper() -> None:
            started = time.time()
            try:
                func(*args, **kwargs)
            except Exception as e:
                log.error(f"Task {task_id} failed: {e}")
            else:
                log.debug(f"Task {task_id} finished in {time.time() - started:.2f}s")

        future = self._executor.submit(wrapper)
        with self._lock:
            self._futures[task_id] = future
        future.add_done_callback(lambda _: self._forget(task_id))
        return task_id

    def _forget(self, task_id: str) -> None:
        with self._lock:
            self._futures.pop(task_id, None)

    @property
    def pending_count(self) -> int:
        """Tasks submitted but not yet finished."""
        with self._lock:
            return len(self._futures)

    def wait_all(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for all in-flight tasks.

        Returns:
            True if every task finished within the timeout
        """
        with self._lock:
            futures = list(self._futures.values())
        if not futures:
            return True
        _, not_done = wait_futures(futures, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        """
        Shut down the worker pool.

        Args:
            wait: Whether to wait for pending tasks
        """
        self._shutdown = True
        self._executor.shutdown(wait=wait)
        log.debug("WorkerPool shutdown complete")


# Global worker pool instance
_worker_pool: Optional[WorkerPool] = None


def get_worker_pool(max_workers: int = 2) -> WorkerPool:
    """Get the global worker pool instance."""
    global _worker_pool
    if _worker_pool is None:
        _worker_pool = WorkerPool(max_workers=max_workers)
    return _worker_pool
