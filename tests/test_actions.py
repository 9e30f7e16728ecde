import asyncio
import json

import pytest

from quarry_core.actions import Action, ActionAuditor, ActionInstruction, ActionParam, ActionResult
from quarry_core.cognition.tools import Tool
from quarry_core.errors import PlannerError

GOTO = Action(
    "goToPlayer",
    "walk to a player",
    (
        ActionParam("player_name", "string", description="who to follow"),
        ActionParam("closeness", "number", required=False, default=2),
    ),
)


def test_validate_fills_defaults_and_checks_types():
    assert GOTO.validate({"player_name": "Alex"}) == {"player_name": "Alex", "closeness": 2}
    with pytest.raises(PlannerError, match="missing required parameter 'player_name'"):
        GOTO.validate({})
    with pytest.raises(PlannerError, match="unknown parameter"):
        GOTO.validate({"player_name": "Alex", "speed": 3})
    with pytest.raises(PlannerError, match="expects number"):
        GOTO.validate({"player_name": "Alex", "closeness": True})


def test_unsupported_param_kind_is_rejected():
    with pytest.raises(ValueError):
        ActionParam("x", "complex")


def test_tool_schema_lists_required_params():
    schema = GOTO.to_tool_schema()
    assert schema["required"] == ["player_name"]
    assert schema["properties"]["player_name"] == {"type": "string", "description": "who to follow"}
    assert schema["properties"]["closeness"] == {"type": "number"}


def test_auditor_keeps_recent_failures():
    auditor = ActionAuditor(max_records=3)
    for index in range(5):
        auditor.record(ActionResult(ActionInstruction("chat", id=f"a{index}"), success=index % 2 == 0))
    assert len(auditor.records) == 3
    assert [r.instruction.id for r in auditor.recent_failures()] == ["a3"]


def test_tool_from_action_dispatches_validated_instruction():
    dispatched = []

    def _dispatcher(instruction):
        dispatched.append(instruction)
        return ActionResult(instruction, success=True, detail="arrived", executed_at=1.0)

    tool = Tool.from_action(GOTO, _dispatcher)
    result = asyncio.run(tool.invoke('{"player_name": "Alex"}'))

    assert dispatched == [ActionInstruction("goToPlayer", {"player_name": "Alex", "closeness": 2})]
    assert json.loads(result)["detail"] == "arrived"
    assert tool.to_openai()["function"]["parameters"] == GOTO.to_tool_schema()


def test_tool_rejects_non_object_arguments():
    tool = Tool(name="noop", description="", execute=lambda args: "ok")
    assert asyncio.run(tool.invoke("")) == "ok"
    with pytest.raises(ValueError):
        asyncio.run(tool.invoke("[1, 2]"))
