import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict


class CircuitBreaker:
    """
    Refuses calls to a failing dependency (the model backend, in practice)
    once ``threshold`` failures land inside ``window_seconds``. Calls are
    allowed again after ``cooldown_seconds``, starting from an empty failure
    history.
    """

    def __init__(
        self,
        name: str,
        threshold: int = 3,
        window_seconds: float = 60.0,
        cooldown_seconds: float = 120.0,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.threshold = threshold
        self.window_seconds = window_seconds
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self.failures: Deque[float] = deque()
        self.open_until: float = 0.0
        self.reason: str = ""
        self.trips = 0
        self.logger = logging.getLogger(f"quarry.safety.{name}")

    @property
    def tripped(self) -> bool:
        return self._clock() < self.open_until

    def allow(self) -> bool:
        now = self._clock()
        self._expire(now)
        return now >= self.open_until

    def retry_after(self) -> float:
        """Seconds until calls are allowed again; 0 when the breaker is closed."""
        return max(0.0, self.open_until - self._clock())

    def record_failure(self, reason: str) -> None:
        now = self._clock()
        self.failures.append(now)
        self.reason = reason
        self._expire(now)
        if len(self.failures) >= self.threshold and now >= self.open_until:
            self.open_until = now + self.cooldown_seconds
            self.trips += 1
            self.logger.warning(
                "%s breaker open for %.0fs after %d failures in %.0fs: %s",
                self.name,
                self.cooldown_seconds,
                len(self.failures),
                self.window_seconds,
                reason,
            )

    def record_success(self) -> None:
        self._expire(self._clock())
        if not self.failures:
            self.reason = ""

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "open": self.tripped,
            "failures": len(self.failures),
            "trips": self.trips,
            "retry_after": round(self.retry_after(), 3),
            "reason": self.reason,
        }

    def _expire(self, now: float) -> None:
        while self.failures and now - self.failures[0] > self.window_seconds:
            self.failures.popleft()
        if self.open_until and now >= self.open_until:
            self.logger.info("%s breaker closed after cooldown", self.name)
            self.open_until = 0.0
            self.failures.clear()
            self.reason = ""
