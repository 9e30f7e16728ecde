import re
import textwrap
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..actions import SKIP, Action, ActionInstruction
from ..errors import ActionLimitExceeded, PlannerError, UnknownToolError
from .engine import ScriptEngine
from .render import render_value

_FENCED = re.compile(r"```(?:python3|python|py)?[ \t]*\r?\n(.*?)```", re.IGNORECASE | re.DOTALL)


def extract_script_candidate(text: str) -> str:
    """Return the body of the first fenced code block, or the trimmed text when there is none."""
    trimmed = text.strip()
    match = _FENCED.search(trimmed)
    if match and match.group(1).strip():
        return textwrap.dedent(match.group(1)).strip()
    return textwrap.dedent(text).strip()


@dataclass
class _ActiveRun:
    actions: List[ActionInstruction] = field(default_factory=list)
    by_name: Dict[str, Action] = field(default_factory=dict)


class ScriptPlanner:
    """
    Evaluates planner scripts and collects the tool calls they make.

    Each available action is exposed to scripts as a function of the same name;
    ``use(name, params)`` dispatches dynamically and ``skip()`` declares an idle
    turn. Calls are only recorded; the host performs them afterwards.
    """

    def __init__(self, engine: Optional[ScriptEngine] = None, max_actions_per_turn: int = 5):
        self.engine = engine or ScriptEngine(timeout_ms=750.0)
        self.max_actions_per_turn = max_actions_per_turn
        self.last_result: Optional[str] = None
        self._active: Optional[_ActiveRun] = None

    @classmethod
    def from_config(cls, config) -> "ScriptPlanner":
        return cls(ScriptEngine.from_config(config), max_actions_per_turn=config.max_actions_per_turn)

    def evaluate(self, content: str, available_actions: Sequence[Action]) -> List[ActionInstruction]:
        script = extract_script_candidate(content)
        run = _ActiveRun(by_name={action.name: action for action in available_actions})
        self._install_action_tools(available_actions)
        self._active = run
        try:
            result = self.engine.run(script)
        finally:
            self._active = None

        self.last_result = None
        if result is not None:
            self.last_result = render_value(result, self.engine.render_max_depth, self.engine.render_max_length)

        if not run.actions:
            return [SKIP]
        if any(action.tool == "skip" for action in run.actions) and len(run.actions) > 1:
            raise PlannerError("skip() cannot be mixed with other tool calls in the same script")
        return run.actions

    def _install_action_tools(self, available_actions: Sequence[Action]) -> None:
        # The available actions can change between turns.
        self.engine.bind("skip", self._skip, overwrite=True)
        self.engine.bind("use", self._use, overwrite=True)
        for action in available_actions:
            self.engine.bind(action.name, self._make_tool(action.name), overwrite=True)

    def _make_tool(self, name: str):
        def _tool(*args: Any, **kwargs: Any) -> ActionInstruction:
            action = self._require_run().by_name.get(name)
            if action is None:
                raise UnknownToolError(name)
            return self._enqueue(name, self._map_args(action, args, kwargs))

        _tool.__name__ = name
        return _tool

    def _map_args(self, action: Action, args: Sequence[Any], kwargs: Dict[str, Any]) -> Dict[str, Any]:
        keys = action.param_names()
        if len(args) == 1 and not kwargs and isinstance(args[0], dict):
            return dict(args[0])
        if len(args) > len(keys):
            raise PlannerError(f"{action.name}() takes {len(keys)} argument(s), got {len(args)}")
        params = dict(zip(keys, args))
        for key, value in kwargs.items():
            if key in params:
                raise PlannerError(f"{action.name}() got multiple values for '{key}'")
            params[key] = value
        return params

    def _skip(self) -> ActionInstruction:
        return self._enqueue("skip", {})

    def _use(self, tool_name: Any, params: Any = None) -> ActionInstruction:
        if not isinstance(tool_name, str) or not tool_name:
            raise PlannerError("use(tool_name, params) requires a non-empty string tool_name")
        return self._enqueue(tool_name, params if isinstance(params, dict) else {})

    def _require_run(self) -> _ActiveRun:
        if self._active is None:
            raise PlannerError("Tool calls are only allowed during planner evaluation")
        return self._active

    def _enqueue(self, tool: str, params: Dict[str, Any]) -> ActionInstruction:
        run = self._require_run()
        if len(run.actions) >= self.max_actions_per_turn:
            raise ActionLimitExceeded(self.max_actions_per_turn)
        if tool == "skip":
            instruction = SKIP
        else:
            action = run.by_name.get(tool)
            if action is None:
                raise UnknownToolError(tool)
            instruction = ActionInstruction(tool=tool, params=action.validate(params))
        run.actions.append(instruction)
        return instruction
