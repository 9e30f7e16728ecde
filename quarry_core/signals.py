import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping

CONSCIOUS = "conscious"
REFLEX = "reflex"
SYSTEM = "system"

CHANNELS = (CONSCIOUS, REFLEX, SYSTEM)


@dataclass(frozen=True)
class Signal:
    source_event_id: str
    type: str
    description: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=lambda: time.time())

    def __post_init__(self):
        # Every consumer on every channel sees the same instance.
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_event_id": self.source_event_id,
            "type": self.type,
            "description": self.description,
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp,
        }
