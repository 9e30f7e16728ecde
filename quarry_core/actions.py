import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from .errors import PlannerError

PARAM_KINDS: Dict[str, Tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list, tuple),
    "any": (object,),
}


@dataclass(frozen=True)
class ActionParam:
    name: str
    kind: str = "any"
    required: bool = True
    default: Any = None
    description: str = ""

    def __post_init__(self) -> None:
        if self.kind not in PARAM_KINDS:
            raise ValueError(f"Unsupported parameter kind: {self.kind}")

    def accepts(self, value: Any) -> bool:
        if self.kind in ("number", "integer") and isinstance(value, bool):
            return False
        return isinstance(value, PARAM_KINDS[self.kind])


@dataclass(frozen=True)
class Action:
    """A world-mutating command scripts may call; ``perform`` is supplied by the host."""

    name: str
    description: str = ""
    params: Tuple[ActionParam, ...] = ()
    perform: Optional[Callable[..., Any]] = None

    def param_names(self) -> Tuple[str, ...]:
        return tuple(param.name for param in self.params)

    def validate(self, params: Dict[str, Any]) -> Dict[str, Any]:
        known = {param.name: param for param in self.params}
        unknown = [key for key in params if key not in known]
        if unknown:
            raise PlannerError(f"{self.name}: unknown parameter(s) {', '.join(sorted(unknown))}")
        validated: Dict[str, Any] = {}
        for param in self.params:
            if param.name not in params:
                if param.required:
                    raise PlannerError(f"{self.name}: missing required parameter '{param.name}'")
                if param.default is not None:
                    validated[param.name] = param.default
                continue
            value = params[param.name]
            if not param.accepts(value):
                raise PlannerError(
                    f"{self.name}: parameter '{param.name}' expects {param.kind}, got {type(value).__name__}"
                )
            validated[param.name] = value
        return validated

    def to_tool_schema(self) -> Dict[str, Any]:
        json_types = {"any": None, "array": "array", "object": "object"}
        properties: Dict[str, Any] = {}
        for param in self.params:
            prop: Dict[str, Any] = {}
            json_type = json_types.get(param.kind, param.kind)
            if json_type:
                prop["type"] = json_type
            if param.description:
                prop["description"] = param.description
            properties[param.name] = prop
        return {
            "type": "object",
            "properties": properties,
            "required": [param.name for param in self.params if param.required],
        }


@dataclass(frozen=True)
class ActionInstruction:
    tool: str
    params: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "tool": self.tool, "params": dict(self.params)}


SKIP = ActionInstruction(tool="skip")


@dataclass
class ActionResult:
    instruction: ActionInstruction
    success: bool
    detail: str = ""
    executed_at: float = field(default_factory=lambda: time.time())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instruction": self.instruction.to_dict(),
            "success": self.success,
            "detail": self.detail,
            "executed_at": self.executed_at,
        }


class ActionAuditor:
    def __init__(self, max_records: int = 2000):
        self.records: deque[ActionResult] = deque(maxlen=max_records)

    def record(self, result: ActionResult) -> None:
        self.records.append(result)

    def recent_failures(self, limit: int = 5) -> list[ActionResult]:
        return [r for r in self.records if not r.success][-limit:]
