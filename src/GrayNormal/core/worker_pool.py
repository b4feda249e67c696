"""Fixed-size thread pool with an explicit scheduling order and an outcome channel.

Workers block on a single condition variable until a task is queued or
shutdown is requested. Every executed task posts a :class:`TaskOutcome`
to a thread-safe queue so the submitting thread, not the worker, decides
what to do about failures.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from queue import Empty, Queue
from typing import Any, Callable, Hashable, Iterator, List, Optional

logger = logging.getLogger("gray_normal.pool")

ORDER_FIFO = "fifo"
ORDER_LIFO = "lifo"


@dataclass
class TaskOutcome:
    """Result (or error) of one executed task."""

    key: Hashable
    result: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class WorkerPool:
    """Run zero-argument callables on N OS threads.

    ``order`` selects which queued task a free worker takes next:
    ``"fifo"`` (submission order) or ``"lifo"`` (most recent first).
    """

    def __init__(self, num_workers: int, order: str = ORDER_FIFO,
                 name: str = "worker"):
        if num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {num_workers}")
        if order not in (ORDER_FIFO, ORDER_LIFO):
            raise ValueError(f"order must be 'fifo' or 'lifo', got '{order}'")
        self._order = order
        self._tasks: deque = deque()
        self._cond = threading.Condition(threading.Lock())
        self._shutdown = False
        self._outcomes: Queue = Queue()
        self._submitted = 0
        self._threads: List[threading.Thread] = []
        for i in range(num_workers):
            t = threading.Thread(
                target=self._worker_loop,
                name=f"{name}-{i}",
                daemon=True,
            )
            t.start()
            self._threads.append(t)
        logger.debug("Started %d %s worker(s) (order=%s)", num_workers, name, order)

    @property
    def num_workers(self) -> int:
        return len(self._threads)

    @property
    def order(self) -> str:
        return self._order

    @property
    def pending(self) -> int:
        """Number of queued tasks not yet picked up by a worker."""
        with self._cond:
            return len(self._tasks)

    @property
    def alive(self) -> int:
        """Number of worker threads still running."""
        return sum(1 for t in self._threads if t.is_alive())

    def add(self, task: Callable[[], Any], key: Hashable = None) -> Hashable:
        """Queue ``task`` and wake one idle worker. Returns the task key."""
        with self._cond:
            if self._shutdown:
                raise RuntimeError("Cannot add tasks to a pool that is shutting down")
            if key is None:
                key = self._submitted
            self._submitted += 1
            self._tasks.append((key, task))
            self._cond.notify()
        return key

    def cancel(self) -> List[Hashable]:
        """Drop every task that has not started yet and return their keys.

        Tasks already running are allowed to finish.
        """
        with self._cond:
            dropped = [key for key, _ in self._tasks]
            self._tasks.clear()
        if dropped:
            logger.debug("Cancelled %d queued task(s)", len(dropped))
        return dropped

    def join(self):
        """Request shutdown, let workers drain the queue, and wait for them to exit."""
        with self._cond:
            self._shutdown = True
            self._cond.notify_all()
        for t in self._threads:
            t.join()
        logger.debug("All %d worker(s) terminated", len(self._threads))

    def next_outcome(self, timeout: Optional[float] = None) -> Optional[TaskOutcome]:
        """Return the next task outcome, or None if none arrives within ``timeout``."""
        try:
            return self._outcomes.get(timeout=timeout)
        except Empty:
            return None

    def outcomes(self) -> Iterator[TaskOutcome]:
        """Yield outcomes that are already available without blocking."""
        while True:
            try:
                yield self._outcomes.get_nowait()
            except Empty:
                return

    def _take(self):
        if self._order == ORDER_FIFO:
            return self._tasks.popleft()
        return self._tasks.pop()

    def _worker_loop(self):
        while True:
            with self._cond:
                while not self._tasks and not self._shutdown:
                    self._cond.wait()
                if not self._tasks:
                    # Shutdown requested and nothing left to drain.
                    return
                key, task = self._take()

            try:
                outcome = TaskOutcome(key, result=task())
            except BaseException as exc:
                # SystemExit and friends are reported like any other failure.
                logger.debug("Task %r raised %r", key, exc, exc_info=True)
                outcome = TaskOutcome(key, error=exc)
            self._outcomes.put(outcome)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.join()
        return False
