import logging
from typing import Callable, Dict, List

from ..signals import CHANNELS, Signal

Consumer = Callable[[Signal], None]


class ChannelRouter:
    """
    Publish signals to the fixed set of named channels.

    Delivery is synchronous and in subscription order. A consumer that raises is
    logged and skipped; the remaining consumers still receive the signal.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Consumer]] = {channel: [] for channel in CHANNELS}
        self.logger = logging.getLogger("quarry.perception.routing")
        self.delivery_failures = 0

    def subscribe(self, channel: str, consumer: Consumer) -> Callable[[], None]:
        if channel not in self._subscribers:
            raise ValueError(f"Unknown channel: {channel}")
        self._subscribers[channel].append(consumer)

        def _unsubscribe() -> None:
            try:
                self._subscribers[channel].remove(consumer)
            except ValueError:
                pass

        return _unsubscribe

    def subscribers(self, channel: str) -> List[Consumer]:
        return list(self._subscribers.get(channel, ()))

    def publish(self, channel: str, signal: Signal) -> int:
        delivered = 0
        for consumer in self.subscribers(channel):
            try:
                consumer(signal)
                delivered += 1
            except Exception as exc:
                self.delivery_failures += 1
                self.logger.warning(
                    "Consumer %r on %s failed for %s: %s", consumer, channel, signal.source_event_id, exc
                )
        return delivered
