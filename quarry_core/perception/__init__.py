from .context import PerceptionContext
from .definitions import (
    PerceptionEventDefinition,
    SaliencySpec,
    SignalSpec,
    SourceBinding,
    define_perception_event,
)
from .pipeline import PerceptionPipeline, PipelineStats
from .routing import ChannelRouter
from .saliency import KeyState, SaliencyStore, constant, occurrence_count, windowed_count

__all__ = [
    "PerceptionContext",
    "PerceptionEventDefinition",
    "SaliencySpec",
    "SignalSpec",
    "SourceBinding",
    "define_perception_event",
    "PerceptionPipeline",
    "PipelineStats",
    "ChannelRouter",
    "KeyState",
    "SaliencyStore",
    "constant",
    "occurrence_count",
    "windowed_count",
]
