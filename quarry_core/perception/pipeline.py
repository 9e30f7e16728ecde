import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from ..errors import DefinitionError
from ..signals import Signal
from .context import PerceptionContext
from .definitions import PerceptionEventDefinition
from .routing import ChannelRouter, Consumer
from .saliency import SaliencyStore


class WorldAdapter(Protocol):
    def on(self, event: str, handler: Callable[..., None]) -> None:
        ...

    def off(self, event: str, handler: Callable[..., None]) -> None:
        ...


@dataclass
class PipelineStats:
    received: int = 0
    filtered: int = 0
    dropped: int = 0
    suppressed: int = 0
    emitted: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "received": self.received,
            "filtered": self.filtered,
            "dropped": self.dropped,
            "suppressed": self.suppressed,
            "emitted": self.emitted,
        }


class PerceptionPipeline:
    """
    Turns raw world callbacks into signals on the conscious, reflex and system channels.

    Each occurrence is matched, filtered, extracted, saliency-gated and delivered
    synchronously before ``handle`` returns. Saliency state belongs to this
    instance, so separate pipelines never share dedup keys.
    """

    def __init__(
        self,
        router: Optional[ChannelRouter] = None,
        saliency: Optional[SaliencyStore] = None,
        context: Optional[PerceptionContext] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.router = router or ChannelRouter()
        self.saliency = saliency or SaliencyStore(clock=clock)
        self.stats = PipelineStats()
        self.context = context
        self.logger = logging.getLogger("quarry.perception")
        self._clock = clock
        self._definitions: Dict[str, PerceptionEventDefinition] = {}
        self._by_event: Dict[str, List[PerceptionEventDefinition]] = {}
        self._world: Optional[WorldAdapter] = None
        self._listeners: List[Tuple[str, Callable[..., None]]] = []

    def register(self, definition: PerceptionEventDefinition) -> None:
        if definition.id in self._definitions:
            raise ValueError(f"Perception event already registered: {definition.id}")
        self._definitions[definition.id] = definition
        self._by_event.setdefault(definition.source.event, []).append(definition)
        if self._world is not None and len(self._by_event[definition.source.event]) == 1:
            self._listen(definition.source.event)

    def register_all(self, definitions: Iterable[PerceptionEventDefinition]) -> None:
        for definition in definitions:
            self.register(definition)

    def definitions(self) -> List[PerceptionEventDefinition]:
        return list(self._definitions.values())

    def signal_types(self) -> List[str]:
        types: List[str] = []
        for definition in self._definitions.values():
            if definition.signal and definition.signal.type not in types:
                types.append(definition.signal.type)
        return types

    def events(self) -> List[str]:
        return list(self._by_event)

    def subscribe(self, channel: str, consumer: Consumer) -> Callable[[], None]:
        return self.router.subscribe(channel, consumer)

    def attach(self, world: WorldAdapter, context: PerceptionContext) -> None:
        if self._world is not None:
            self.detach()
        self._world = world
        self.context = context
        for event in self._by_event:
            self._listen(event)

    def detach(self) -> None:
        if self._world is not None:
            for event, handler in self._listeners:
                self._world.off(event, handler)
        self._listeners = []
        self._world = None

    def _listen(self, event: str) -> None:
        def _handler(*args: Any) -> None:
            self.handle(event, *args)

        self._world.on(event, _handler)
        self._listeners.append((event, _handler))

    def handle(self, event: str, *args: Any) -> List[Signal]:
        """Process one raw callback occurrence and return the signals it produced."""
        definitions = self._by_event.get(event)
        if not definitions:
            return []
        if self.context is None:
            self.logger.debug("Dropping %s: pipeline has no perception context", event)
            return []
        self.stats.received += 1
        signals: List[Signal] = []
        for definition in list(definitions):
            signal = self._process(definition, args)
            if signal is not None:
                signals.append(signal)
        return signals

    def _process(self, definition: PerceptionEventDefinition, args: Tuple[Any, ...]) -> Optional[Signal]:
        context = self.context
        binding = definition.source
        try:
            if binding.filter is not None and not binding.filter(context, *args):
                self.stats.filtered += 1
                return None
        except Exception as exc:
            self._report(DefinitionError(definition.id, "filter", exc))
            return None

        try:
            payload = binding.extract(context, *args)
        except Exception as exc:
            self._report(DefinitionError(definition.id, "extract", exc))
            return None

        if definition.saliency is not None:
            try:
                key = definition.saliency.key_for(payload)
                passed = self.saliency.observe(
                    key, payload, definition.saliency.threshold, definition.saliency.measure
                )
            except Exception as exc:
                self._report(DefinitionError(definition.id, "saliency", exc))
                return None
            if not passed:
                self.stats.suppressed += 1
                return None

        if definition.signal is None:
            return None

        try:
            signal = Signal(
                source_event_id=definition.id,
                type=definition.signal.type,
                description=definition.signal.description(payload),
                metadata=definition.signal.metadata_for(payload),
                timestamp=self._clock(),
            )
        except Exception as exc:
            self._report(DefinitionError(definition.id, "signal", exc))
            return None

        self.stats.emitted += 1
        for route in definition.routes:
            self.router.publish(route, signal)
        return signal

    def _report(self, error: DefinitionError) -> None:
        self.stats.dropped += 1
        self.logger.warning("Perception definition error, occurrence dropped: %s", error)
