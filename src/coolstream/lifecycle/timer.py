"""
Idle Timer
==========

Cancellable one-shot timer for the idle shutdown.

Scheduling goes through a small Scheduler protocol so the controller can
run against real threading.Timer objects in production and a manually
advanced clock in tests.

Race handling:
    A timer that was already firing when it got cancelled (or replaced by
    a newer schedule) must not act. Every schedule() hands the callback a
    generation token; claim(token) only succeeds for the newest,
    still-pending generation.

Design Rules:
    - At most one pending timer at any time
    - Not thread-safe on its own; the owner serializes access with its lock
"""

import logging
import threading
from typing import Callable, Optional, Protocol


logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """Handle returned by a Scheduler."""

    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Runs a callback once after a delay."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class ThreadingScheduler:
    """Scheduler backed by daemon threading.Timer objects."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(delay, callback)
        timer.name = "idle-timer"
        timer.daemon = True
        timer.start()
        return timer


class IdleTimer:
    """
    Single-slot idle shutdown timer.

    Attributes:
        delay: Seconds between schedule() and the callback

    Example:
        timer = IdleTimer(30.0, on_timeout)

        timer.schedule()      # last client left
        timer.cancel()        # a client came back

        def on_timeout(token):
            with lock:
                if timer.claim(token):
                    ...
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[int], None],
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        """
        Initialize idle timer.

        Args:
            delay: Timeout in seconds
            callback: Called with the generation token when the timer fires
            scheduler: Scheduling backend (ThreadingScheduler if None)
        """
        if delay < 0:
            raise ValueError("delay must be >= 0")

        self.delay = delay
        self._callback = callback
        self._scheduler = scheduler if scheduler is not None else ThreadingScheduler()
        self._handle: Optional[TimerHandle] = None
        self._generation: int = 0

    @property
    def is_pending(self) -> bool:
        """Whether a timer is armed and not yet claimed or cancelled."""
        return self._handle is not None

    def schedule(self) -> int:
        """
        Arm the timer, replacing any pending one.

        Returns:
            Generation token the callback will receive
        """
        self.cancel()
        self._generation += 1
        token = self._generation
        self._handle = self._scheduler.call_later(
            self.delay,
            lambda: self._callback(token),
        )
        return token

    def cancel(self) -> bool:
        """
        Disarm the pending timer.

        A callback that is already running will fail claim().

        Returns:
            True if a pending timer was cancelled.
        """
        handle = self._handle
        if handle is None:
            return False
        self._handle = None
        self._generation += 1
        handle.cancel()
        return True

    def claim(self, token: int) -> bool:
        """
        Consume a firing.

        Returns:
            True if `token` belongs to the pending timer; the timer is no
            longer pending afterwards. False for stale or cancelled timers.
        """
        if self._handle is None or token != self._generation:
            return False
        self._handle = None
        return True
