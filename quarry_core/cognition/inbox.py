import logging
import threading
from collections import deque
from typing import Deque, List, Optional

from ..signals import Signal


class SignalInbox:
    """Bounded, thread-safe buffer of signals waiting for the next turn. Drops the oldest when full."""

    def __init__(self, limit: int = 200):
        if limit <= 0:
            raise ValueError("limit must be positive")
        self._items: Deque[Signal] = deque(maxlen=limit)
        self._lock = threading.Lock()
        self.dropped = 0
        self.logger = logging.getLogger("quarry.inbox")

    def push(self, signal: Signal) -> None:
        with self._lock:
            if len(self._items) == self._items.maxlen:
                self.dropped += 1
                self.logger.debug("Inbox full; dropping oldest signal")
            self._items.append(signal)

    __call__ = push

    def requeue(self, signals: List[Signal]) -> None:
        """Put undelivered signals back ahead of newer ones; the oldest are dropped if that overflows."""
        with self._lock:
            combined = list(signals) + list(self._items)
            overflow = max(0, len(combined) - self._items.maxlen)
            if overflow:
                self.dropped += overflow
                self.logger.debug("Inbox full; dropping %d requeued signal(s)", overflow)
            self._items.clear()
            self._items.extend(combined[overflow:])

    def drain(self, max_items: Optional[int] = None) -> List[Signal]:
        with self._lock:
            count = len(self._items) if max_items is None else min(max_items, len(self._items))
            return [self._items.popleft() for _ in range(count)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
