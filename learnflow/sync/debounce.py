import os
import threading
from typing import Callable, Optional

from learnflow.utils import get_logger

LOG = get_logger()

AUTO_SYNC_DELAY_SECONDS = float(os.getenv('AUTO_SYNC_DELAY_SECONDS', '5'))


class DebouncedTask:
    """Runs ``fn`` once, ``delay`` seconds after the most recent ``schedule()``.

    Each ``schedule()`` cancels the pending timer before starting a new one. A run that has
    already started is never interrupted, so overlapping runs are possible. A superseded timer that fires anyway does nothing.
    """

    def __init__(self, fn: Callable[[], None], delay: float = AUTO_SYNC_DELAY_SECONDS, timer_factory: Callable[..., threading.Timer] = threading.Timer):
        self.fn = fn
        self.delay = delay
        self._timer_factory = timer_factory
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def _run(self, timer: threading.Timer) -> None:
        with self._lock:
            # a newer schedule() owns the slot now
            if self._timer is not timer:
                return
            self._timer = None
        try:
            self.fn()
        except Exception:
            LOG.exception('debounced_task_failed', exc_info=True)

    def schedule(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = self._timer_factory(self.delay, lambda: self._run(timer))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def pending(self) -> bool:
        return self._timer is not None
