import pytest

from quarry_core.actions import SKIP, Action, ActionInstruction, ActionParam
from quarry_core.config import RuntimeConfig
from quarry_core.errors import (
    ActionLimitExceeded,
    PlannerError,
    ScriptRuntimeError,
    ScriptTimeout,
    UnknownToolError,
)
from quarry_core.scripting.engine import ScriptEngine
from quarry_core.scripting.planner import ScriptPlanner, extract_script_candidate

ACTIONS = [
    Action("chat", "chat tool", (ActionParam("message", "string"),)),
    Action(
        "goToPlayer",
        "goToPlayer tool",
        (ActionParam("player_name", "string"), ActionParam("closeness", "number")),
    ),
]


def test_positional_and_dict_args_become_instructions():
    planner = ScriptPlanner()
    planned = planner.evaluate(
        'chat("hello")\ngoToPlayer({"player_name": "Alex", "closeness": 2})',
        ACTIONS,
    )
    assert planned == [
        ActionInstruction("chat", {"message": "hello"}),
        ActionInstruction("goToPlayer", {"player_name": "Alex", "closeness": 2}),
    ]


def test_keyword_args_are_accepted():
    planner = ScriptPlanner()
    planned = planner.evaluate('goToPlayer("Alex", closeness=3)', ACTIONS)
    assert planned == [ActionInstruction("goToPlayer", {"player_name": "Alex", "closeness": 3})]


def test_use_dispatches_dynamically():
    planner = ScriptPlanner()
    planned = planner.evaluate('use("chat", {"message": "via-use"})', ACTIONS)
    assert planned == [ActionInstruction("chat", {"message": "via-use"})]


def test_variables_persist_across_turns():
    planner = ScriptPlanner()
    planner.evaluate("count = 2", ACTIONS)
    planned = planner.evaluate('chat("count=" + str(count))', ACTIONS)
    assert planned == [ActionInstruction("chat", {"message": "count=2"})]


def test_no_tool_calls_means_skip():
    planner = ScriptPlanner()
    assert planner.evaluate("x = 1 + 1", ACTIONS) == [SKIP]
    assert planner.last_result is None


def test_last_result_keeps_rendered_value():
    planner = ScriptPlanner()
    planner.evaluate("[1, 2, 3]", ACTIONS)
    assert planner.last_result == "[1, 2, 3]"


def test_skip_cannot_be_mixed_with_tools():
    planner = ScriptPlanner()
    with pytest.raises(PlannerError, match="skip\\(\\) cannot be mixed"):
        planner.evaluate('skip()\nchat("oops")', ACTIONS)


def test_timeout_on_long_running_scripts():
    planner = ScriptPlanner(ScriptEngine(timeout_ms=20))
    with pytest.raises(ScriptTimeout, match="Script execution timed out"):
        planner.evaluate("while True:\n    pass", ACTIONS)


def test_fenced_code_is_extracted():
    planner = ScriptPlanner()
    planned = planner.evaluate('Sure!\n```python\nchat("fenced")\n```', ACTIONS)
    assert planned == [ActionInstruction("chat", {"message": "fenced"})]


def test_extract_script_candidate():
    assert extract_script_candidate("```py\nskip()\n```") == "skip()"
    assert extract_script_candidate("```python3\nskip()\n```") == "skip()"
    assert extract_script_candidate("  skip()  ") == "skip()"


def test_action_limit_is_enforced():
    planner = ScriptPlanner(max_actions_per_turn=2)
    with pytest.raises(ScriptRuntimeError) as excinfo:
        planner.evaluate('for _ in range(3):\n    chat("spam")', ACTIONS)
    assert isinstance(excinfo.value.cause, ActionLimitExceeded)


def test_unknown_tool_via_use():
    planner = ScriptPlanner()
    with pytest.raises(ScriptRuntimeError) as excinfo:
        planner.evaluate('use("fly", {})', ACTIONS)
    assert isinstance(excinfo.value.cause, UnknownToolError)


def test_invalid_params_are_rejected():
    planner = ScriptPlanner()
    with pytest.raises(ScriptRuntimeError) as excinfo:
        planner.evaluate("chat(5)", ACTIONS)
    assert isinstance(excinfo.value.cause, PlannerError)
    assert "expects string" in str(excinfo.value)


def test_tools_outside_evaluation_are_rejected():
    planner = ScriptPlanner()
    planner.evaluate("x = 1", ACTIONS)
    chat = planner.engine.get("chat")
    with pytest.raises(PlannerError, match="only allowed during planner evaluation"):
        chat("late")


def test_indented_script_is_dedented():
    planner = ScriptPlanner()
    planned = planner.evaluate('\n    chat("hello")\n    skip_turn = False\n', ACTIONS)
    assert planned == [ActionInstruction("chat", {"message": "hello"})]


def test_scripts_cannot_shadow_tools():
    planner = ScriptPlanner()
    with pytest.raises(ScriptRuntimeError, match="read-only"):
        planner.evaluate("chat = 'shadowed'", ACTIONS)
    planned = planner.evaluate('chat("back")', ACTIONS)
    assert planned == [ActionInstruction("chat", {"message": "back"})]


def test_from_config_applies_turn_limit_and_timeout():
    planner = ScriptPlanner.from_config(RuntimeConfig(max_actions_per_turn=1, script_timeout_ms=30.0))
    assert planner.max_actions_per_turn == 1
    assert planner.engine.timeout_ms == 30.0
