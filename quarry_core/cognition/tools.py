import inspect
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Union

from ..actions import Action, ActionInstruction

ToolResult = Union[str, Dict[str, Any]]


@dataclass(frozen=True)
class Tool:
    """A function the model may call mid-stream; ``execute`` receives the decoded arguments."""

    name: str
    description: str
    execute: Callable[[Dict[str, Any]], Union[ToolResult, Awaitable[ToolResult]]]
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    async def invoke(self, raw_arguments: str) -> str:
        arguments = json.loads(raw_arguments) if raw_arguments.strip() else {}
        if not isinstance(arguments, dict):
            raise ValueError(f"{self.name}: tool arguments must be a JSON object")
        result = self.execute(arguments)
        if inspect.isawaitable(result):
            result = await result
        if hasattr(result, "to_dict"):
            result = result.to_dict()
        if isinstance(result, str):
            return result
        return json.dumps(result, default=str)

    @classmethod
    def from_action(cls, action: Action, dispatcher: Callable[[ActionInstruction], Any]) -> "Tool":
        def _execute(arguments: Dict[str, Any]) -> Any:
            return dispatcher(ActionInstruction(tool=action.name, params=action.validate(arguments)))

        return cls(
            name=action.name,
            description=action.description,
            execute=_execute,
            parameters=action.to_tool_schema(),
        )
