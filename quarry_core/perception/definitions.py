from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Tuple, Union

from ..signals import CHANNELS
from .saliency import KeyState, constant

Filter = Callable[..., bool]
Extract = Callable[..., Any]
Measure = Callable[[Any, KeyState], float]


@dataclass(frozen=True)
class SourceBinding:
    event: str
    extract: Extract
    filter: Optional[Filter] = None


@dataclass(frozen=True)
class SaliencySpec:
    threshold: float
    key: Union[str, Callable[[Any], str]]
    measure: Measure = constant

    def key_for(self, payload: Any) -> str:
        if callable(self.key):
            return str(self.key(payload))
        return self.key


@dataclass(frozen=True)
class SignalSpec:
    type: str
    description: Callable[[Any], str]
    metadata: Optional[Callable[[Any], Mapping[str, Any]]] = None

    def metadata_for(self, payload: Any) -> Mapping[str, Any]:
        if self.metadata is not None:
            metadata = dict(self.metadata(payload))
        elif isinstance(payload, Mapping):
            metadata = dict(payload)
        else:
            metadata = {"value": payload}
        return MappingProxyType(metadata)


@dataclass(frozen=True)
class PerceptionEventDefinition:
    id: str
    modality: str
    kind: str
    source: SourceBinding
    saliency: Optional[SaliencySpec] = None
    signal: Optional[SignalSpec] = None
    routes: Tuple[str, ...] = ()


def define_perception_event(
    id: str,
    modality: str,
    kind: str,
    source: SourceBinding,
    saliency: Optional[SaliencySpec] = None,
    signal: Optional[SignalSpec] = None,
    routes: Tuple[str, ...] = (),
) -> PerceptionEventDefinition:
    if not id:
        raise ValueError("Perception event id must be non-empty")
    unknown = [route for route in routes if route not in CHANNELS]
    if unknown:
        raise ValueError(f"Unknown routes for {id}: {', '.join(unknown)}")
    if saliency is not None and saliency.threshold < 0:
        raise ValueError(f"Saliency threshold for {id} must be non-negative")
    return PerceptionEventDefinition(
        id=id,
        modality=modality,
        kind=kind,
        source=source,
        saliency=saliency,
        signal=signal,
        routes=tuple(routes),
    )
