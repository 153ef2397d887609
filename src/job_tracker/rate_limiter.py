import time
from typing import Callable, Optional

DEFAULT_MIN_INTERVAL = 0.2  # seconds between classifier calls


class RateLimiter:
    """Keeps at least ``min_interval`` seconds between the end of one call and
    the start of the next. One instance per run; nothing is shared across runs.

    Usage::

        limiter.throttle()
        try:
            result = classifier.classify(msg)
        finally:
            limiter.mark()
    """

    def __init__(
        self,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_return: Optional[float] = None
        self.waited = 0.0

    def throttle(self) -> float:
        """Block until the interval since the last ``mark()`` has elapsed.
        Returns the time slept; 0.0 before the first call of the run."""
        if self._last_return is None:
            return 0.0
        remaining = self.min_interval - (self._clock() - self._last_return)
        if remaining <= 0:
            return 0.0
        self._sleep(remaining)
        self.waited += remaining
        return remaining

    def mark(self) -> None:
        self._last_return = self._clock()
