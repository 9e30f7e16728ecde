from .agent import AgentResult, CognitiveAgent, Usage
from .inbox import SignalInbox
from .loop import CognitionLoop
from .tools import Tool

__all__ = [
    "AgentResult",
    "CognitiveAgent",
    "Usage",
    "SignalInbox",
    "CognitionLoop",
    "Tool",
]
