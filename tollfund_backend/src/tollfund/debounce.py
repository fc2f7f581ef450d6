from __future__ import annotations

from threading import RLock, Timer, current_thread
from typing import Callable, Optional


class Debouncer:
    """
    Coalesce bursts of triggers into one call of `action`.

    Each trigger() restarts the quiet period; `action` runs once, `delay`
    seconds after the last trigger. flush() runs a pending action right away
    (used on shutdown so the last edit is never lost); cancel() drops it.
    A delay of 0 runs the action synchronously on every trigger.
    """

    def __init__(self, delay: float, action: Callable[[], None]) -> None:
        if delay < 0:
            raise ValueError("delay must be >= 0")
        self._delay = delay
        self._action = action
        self._lock = RLock()
        self._timer: Optional[Timer] = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def trigger(self) -> None:
        if self._delay == 0:
            self._action()
            return
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = Timer(self._delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            # A flush or a newer trigger may have replaced this timer
            if self._timer is not current_thread():
                return
            self._timer = None
            self._action()

    def flush(self) -> bool:
        """Run the pending action now. Returns True if there was one."""
        with self._lock:
            if self._timer is None:
                return False
            self._timer.cancel()
            self._timer = None
            self._action()
            return True

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
