from .engine import SAFE_BUILTINS, ScriptEngine, ScriptPolicy, StateRecord
from .normalizer import STATE_RECORD, normalize_script
from .planner import ScriptPlanner, extract_script_candidate
from .render import NO_VALUE, render_value

__all__ = [
    "SAFE_BUILTINS",
    "ScriptEngine",
    "ScriptPolicy",
    "StateRecord",
    "STATE_RECORD",
    "normalize_script",
    "ScriptPlanner",
    "extract_script_candidate",
    "NO_VALUE",
    "render_value",
]
