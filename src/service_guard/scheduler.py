"""Periodic timers that fire on a shared thread pool."""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

logger = logging.getLogger("service-guard.scheduler")


class PeriodicTimer:
    """Auto-resetting timer owned by a TimerService.

    The first fire comes one interval after start(). A timer that falls behind
    skips the missed fires instead of bursting to catch up.
    """

    def __init__(self, service: "TimerService", interval: float, callback: Callable[[], None], name: str):
        self.service = service
        self.interval = interval
        self.callback = callback
        self.name = name
        self._generation = 0
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def start(self):
        self.service._arm(self)

    def stop(self):
        self.service._disarm(self)

    def _fire(self):
        try:
            self.callback()
        except Exception:
            logger.exception(f"Timer '{self.name}' callback failed")


class TimerService:
    """One dispatcher thread handing timer fires to a worker pool."""

    def __init__(self, max_workers: Optional[int] = None, name: str = "guard-timer"):
        self.name = name
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=f"{name}-worker")
        self._cond = threading.Condition()
        self._queue: list[tuple[float, int, int, PeriodicTimer]] = []
        self._seq = itertools.count()
        self._thread: Optional[threading.Thread] = None
        self._closed = False

    def schedule(self, interval: float, callback: Callable[[], None], name: str = "timer") -> PeriodicTimer:
        """Create a stopped timer; call start() on it to begin firing."""
        if interval <= 0:
            raise ValueError("Timer interval must be positive")
        return PeriodicTimer(self, interval, callback, name)

    def _arm(self, timer: PeriodicTimer):
        with self._cond:
            if self._closed:
                raise RuntimeError("Timer service has been shut down")
            if timer._active:
                return
            timer._active = True
            timer._generation += 1
            self._push(timer, time.monotonic() + timer.interval)
            self._ensure_thread()
            self._cond.notify()

    def _disarm(self, timer: PeriodicTimer):
        with self._cond:
            timer._active = False
            # queued entries carrying an old generation are discarded on pop
            timer._generation += 1

    def _push(self, timer: PeriodicTimer, due: float):
        heapq.heappush(self._queue, (due, next(self._seq), timer._generation, timer))

    def _ensure_thread(self):
        if self._thread is None:
            self._thread = threading.Thread(target=self._dispatch, name=f"{self.name}-dispatch", daemon=True)
            self._thread.start()

    def _dispatch(self):
        with self._cond:
            while not self._closed:
                if not self._queue:
                    self._cond.wait()
                    continue

                due, _, generation, timer = self._queue[0]
                delay = due - time.monotonic()
                if delay > 0:
                    self._cond.wait(delay)
                    continue

                heapq.heappop(self._queue)
                if generation != timer._generation or not timer._active:
                    continue

                self._pool.submit(timer._fire)

                next_due = due + timer.interval
                now = time.monotonic()
                if next_due <= now:
                    next_due = now + timer.interval
                self._push(timer, next_due)

    def shutdown(self, wait: bool = True):
        """Stop all timers. With ``wait``, block until running callbacks finish."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            for _, _, _, timer in self._queue:
                timer._active = False
            self._queue.clear()
            self._cond.notify_all()

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        self._pool.shutdown(wait=wait)
