import json
from typing import Any, Dict, List, Sequence

from ..actions import Action
from ..signals import Signal

SYSTEM_PROMPT = """\
# Role
You are an autonomous agent acting inside a live game world.

# How you act
- Each turn you reply with one short Python script inside a ```python fenced block.
- Call the tools listed below as plain functions, e.g. chat("hi") or use("chat", {{"message": "hi"}}).
- Call skip() when nothing needs doing. skip() cannot be combined with other calls.
- At most {max_actions} tool calls per script. Scripts have a short time budget; do not loop forever.
- Names you assign persist between turns, so you can keep notes in variables.
- The value of the last expression is reported back to you as the script result.

# What you receive
- Lines starting with "Perception" describe things that just happened in the world.
- Lines starting with "Internal Feedback" report how your previous actions went.
- The world keeps moving while you think; prefer recent information.

# Available tools
{tools}
"""


def describe_tools(actions: Sequence[Action]) -> str:
    blocks = []
    for action in actions:
        lines = [f"[{action.name}]", f"Description: {action.description}"]
        for param in action.params:
            suffix = "" if param.required else " (optional)"
            detail = f" -> {param.description}" if param.description else ""
            lines.append(f"- {param.name}: {param.kind}{suffix}{detail}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) if blocks else "(none)"


def system_prompt(actions: Sequence[Action], max_actions: int) -> str:
    return SYSTEM_PROMPT.format(tools=describe_tools(actions), max_actions=max_actions)


def describe_signal(signal: Signal) -> str:
    source = f" (source: {signal.source_event_id})" if signal.source_event_id else ""
    return f"Perception [{signal.type}]{source}: {signal.description}"


def describe_feedback(feedback: Sequence[Dict[str, Any]]) -> str:
    """One line for a single feedback entry; consecutive entries are batched into one."""
    if not feedback:
        return ""
    if len(feedback) > 1:
        return f"Internal Feedback (batched): {json.dumps(list(feedback), default=str)}"
    entry = feedback[0]
    outcome = entry.get("result") if entry.get("result") is not None else entry.get("error")
    return (
        f"Internal Feedback: {entry.get('status', 'unknown')}. "
        f"Last Action: {json.dumps(entry.get('action'), default=str)}. "
        f"Result: {json.dumps(outcome, default=str)}"
    )


def build_messages(system: str, user_message: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user_message},
    ]


def compose_turn(signals: Sequence[Signal], feedback: Sequence[Dict[str, Any]], last_result: Any = None) -> str:
    lines = [describe_signal(signal) for signal in signals]
    feedback_line = describe_feedback(feedback)
    if feedback_line:
        lines.append(feedback_line)
    if last_result is not None:
        lines.append(f"Previous script result: {last_result}")
    if not lines:
        lines.append("Nothing new happened. Call skip() unless you have something to do.")
    return "\n".join(lines)
