"""
Quarry Core: the perception-to-action core of an autonomous game-world agent.

Raw world callbacks are turned into deduplicated signals by the perception
pipeline and routed to channels. The cognition loop feeds conscious signals to
a streaming language model, whose reply is a short script run by a sandboxed,
stateful engine. Connecting to an actual world is left to the host.
"""

from .config import RuntimeConfig
from .signals import CONSCIOUS, REFLEX, SYSTEM, Signal
from .actions import Action, ActionInstruction, ActionParam, ActionResult
from .perception import PerceptionContext, PerceptionPipeline, define_perception_event
from .scripting import ScriptEngine, ScriptPlanner, normalize_script
from .cognition import CognitionLoop, CognitiveAgent

__all__ = [
    "RuntimeConfig",
    "CONSCIOUS",
    "REFLEX",
    "SYSTEM",
    "Signal",
    "Action",
    "ActionInstruction",
    "ActionParam",
    "ActionResult",
    "PerceptionContext",
    "PerceptionPipeline",
    "define_perception_event",
    "ScriptEngine",
    "ScriptPlanner",
    "normalize_script",
    "CognitionLoop",
    "CognitiveAgent",
]
