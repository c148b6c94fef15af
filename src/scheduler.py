"""
Single-threaded timer scheduler used to drive operation polling.

Wraps :class:`sched.scheduler` so that the clock and the sleep function can be
swapped out. Production code uses ``time.monotonic``/``time.sleep``; tests pass a
fake clock and advance it without sleeping.
"""

import logging
import sched
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# Lower value runs first when two events are due at the same instant.
PRIORITY_RETIRE = 0
PRIORITY_POLL = 1


class Scheduler:
    """Cooperative timer queue with an injectable clock."""

    def __init__(
        self,
        timefunc: Callable[[], float] = time.monotonic,
        delayfunc: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the scheduler.

        Args:
            timefunc: Returns the current time in seconds
            delayfunc: Blocks (or advances a fake clock) for the given seconds
        """
        self._timefunc = timefunc
        self._delayfunc = delayfunc
        self._sched = sched.scheduler(timefunc, delayfunc)

    def now(self) -> float:
        return self._timefunc()

    @property
    def pending(self) -> int:
        """Number of queued events."""
        return len(self._sched.queue)

    def call_later(
        self, delay: float, action: Callable, *args, priority: int = PRIORITY_POLL
    ) -> sched.Event:
        """Schedule ``action(*args)`` to run ``delay`` seconds from now."""
        return self._sched.enter(max(delay, 0), priority, action, argument=args)

    def cancel(self, event: Optional[sched.Event]) -> None:
        """Cancel a queued event. Unknown or already-run events are ignored."""
        if event is None:
            return
        try:
            self._sched.cancel(event)
        except ValueError:
            pass

    def run_pending(self) -> None:
        """Run every event that is already due, without waiting."""
        self._sched.run(blocking=False)

    def run_for(self, seconds: float) -> None:
        """
        Advance time by ``seconds``, running events as they come due.

        Args:
            seconds: How long to run
        """
        deadline = self._timefunc() + seconds
        while True:
            delay = self._sched.run(blocking=False)
            now = self._timefunc()
            if delay is None or now + delay > deadline:
                if deadline > now:
                    self._delayfunc(deadline - now)
                    self._sched.run(blocking=False)
                return
            self._delayfunc(delay)

    def run_until_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Run events until the queue is empty or ``timeout`` expires.

        Args:
            timeout: Maximum seconds to run, or None to run until drained

        Returns:
            True if the queue drained, False if the timeout was hit
        """
        if timeout is None:
            self._sched.run(blocking=True)
            return True

        deadline = self._timefunc() + timeout
        while True:
            delay = self._sched.run(blocking=False)
            if delay is None:
                return True
            now = self._timefunc()
            if now + delay > deadline:
                if deadline > now:
                    self._delayfunc(deadline - now)
                self._sched.run(blocking=False)
                if self._sched.empty():
                    return True
                logger.debug(
                    f"Scheduler timeout after {timeout}s with {self.pending} pending event(s)"
                )
                return False
            self._delayfunc(delay)
