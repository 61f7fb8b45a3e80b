"""
Deferred work tagged with the match generation it belongs to.

Some collector work has to wait: the rating only settles a few seconds after
the game ends, and the simulator's log lines trail the phase change that
triggered them. Each such task remembers the generation that scheduled it
and checks it again right before running; if a new match has started in the
meantime, the task is dropped instead of writing into the new match.
"""

import logging
import threading
import time
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class DeferredTask:
    """One scheduled call. ``wait()`` returns once it ran, was skipped or was cancelled."""

    def __init__(self, name: str, generation: int, delay: float,
                 func: Callable[[], None], is_current: Callable[[int], bool]):
        self.name = name
        self.generation = generation
        self.delay = delay
        self._func = func
        self._is_current = is_current
        self._done = threading.Event()
        self._timer: Optional[threading.Timer] = None
        self.ran = False
        self.skipped = False
        self.error: Optional[BaseException] = None

    def start(self):
        self._timer = threading.Timer(self.delay, self._run)
        self._timer.daemon = True
        self._timer.name = f"deferred-{self.name}"
        self._timer.start()

    def _run(self):
        try:
            if not self._is_current(self.generation):
                self.skipped = True
                logger.info(f"Skipping stale task '{self.name}' from match generation {self.generation}")
                return
            self._func()
            self.ran = True
        except Exception as e:
            self.error = e
            logger.error(f"Deferred task '{self.name}' failed: {e}", exc_info=True)
        finally:
            self._done.set()

    def cancel(self):
        if self._timer is not None:
            self._timer.cancel()
        if not self._done.is_set():
            self.skipped = True
            self._done.set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)


class DeferredTaskScheduler:
    """Runs DeferredTasks on timer threads and keeps track of the pending ones."""

    def __init__(self, is_current: Callable[[int], bool]):
        self._is_current = is_current
        self._tasks: List[DeferredTask] = []
        self._lock = threading.Lock()

    def schedule(self, name: str, generation: int, delay: float, func: Callable[[], None]) -> DeferredTask:
        task = DeferredTask(name, generation, max(0.0, delay), func, self._is_current)
        with self._lock:
            self._tasks = [t for t in self._tasks if not t.done]
            self._tasks.append(task)
        logger.debug(f"Scheduled '{name}' in {task.delay:.1f}s (generation {generation})")
        task.start()
        return task

    def pending(self) -> List[DeferredTask]:
        with self._lock:
            return [t for t in self._tasks if not t.done]

    def wait_all(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no task is pending, including tasks scheduled while waiting.

        Returns:
            False if ``timeout`` elapsed first
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        while True:
            pending = self.pending()
            if not pending:
                return True
            for task in pending:
                while not task.wait(0.05):
                    if deadline is not None and time.monotonic() >= deadline:
                        return False

    def cancel_all(self):
        for task in self.pending():
            task.cancel()
