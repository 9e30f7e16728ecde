import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..config import RuntimeConfig
from ..errors import ModelTransportError
from ..safety import CircuitBreaker
from .llm import build_client, is_rate_limit_error, should_retry_error, to_error_message
from .tools import Tool

Message = Dict[str, Any]


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: Any) -> None:
        if other is None:
            return
        self.prompt_tokens += int(getattr(other, "prompt_tokens", 0) or 0)
        self.completion_tokens += int(getattr(other, "completion_tokens", 0) or 0)
        self.total_tokens += int(getattr(other, "total_tokens", 0) or 0)

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class AgentResult:
    text: str
    usage: Usage = field(default_factory=Usage)
    tool_rounds: int = 0


async def _notify(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class CognitiveAgent:
    """
    Streams one model response, running tool calls between rounds.

    Text fragments reach ``on_delta`` in arrival order and are never retracted.
    Tool rounds are capped at the number of tools offered; the final round is
    requested without tools so the model has to answer in text. Any failure is
    raised as ``ModelTransportError`` carrying whatever text already arrived.
    """

    def __init__(
        self,
        config: RuntimeConfig,
        client: Any = None,
        breaker: Optional[CircuitBreaker] = None,
        retry_delay_seconds: float = 1.0,
    ):
        self.config = config
        self._client = client
        self.breaker = breaker or CircuitBreaker(
            "llm",
            threshold=config.llm_breaker_threshold,
            window_seconds=config.llm_breaker_window_seconds,
            cooldown_seconds=config.llm_breaker_cooldown_seconds,
        )
        self.retry_delay_seconds = retry_delay_seconds
        self.logger = logging.getLogger("quarry.agent")

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = build_client(self.config)
        return self._client

    async def stream(
        self,
        messages: Sequence[Message],
        *,
        json_mode: bool = False,
        tools: Optional[Sequence[Tool]] = None,
        on_delta: Optional[Callable[[str], Any]] = None,
        on_finish: Optional[Callable[[Usage], Any]] = None,
    ) -> AgentResult:
        if not self.breaker.allow():
            raise ModelTransportError(
                f"Model calls suspended for {self.breaker.retry_after():.0f}s: {self.breaker.reason or 'circuit open'}"
            )

        conversation: List[Message] = list(messages)
        offered = list(tools or [])
        by_name = {tool.name: tool for tool in offered}
        usage = Usage()
        delivered: List[str] = []
        rounds = 0
        try:
            while True:
                allow_tools = bool(offered) and rounds < len(offered)
                round_text, calls, round_usage = await self._stream_round(
                    conversation, json_mode, offered if allow_tools else [], on_delta, delivered
                )
                usage.add(round_usage)
                if not calls or not allow_tools:
                    break
                rounds += 1
                conversation.append(
                    {
                        "role": "assistant",
                        "content": round_text or None,
                        "tool_calls": [
                            {
                                "id": call["id"],
                                "type": "function",
                                "function": {"name": call["name"], "arguments": call["arguments"]},
                            }
                            for call in calls
                        ],
                    }
                )
                for call in calls:
                    conversation.append(
                        {"role": "tool", "tool_call_id": call["id"], "content": await self._run_tool(by_name, call)}
                    )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            message = to_error_message(exc)
            self.breaker.record_failure(message)
            self.logger.warning("Model stream failed after %d chars: %s", sum(map(len, delivered)), message)
            raise ModelTransportError(f"Model stream failed: {message}", "".join(delivered)) from exc

        self.breaker.record_success()
        result = AgentResult(text="".join(delivered), usage=usage, tool_rounds=rounds)
        await _notify(on_finish, usage)
        return result

    async def decide(self, messages: Sequence[Message], **kwargs: Any) -> AgentResult:
        """``stream`` with retries for errors that look transient."""
        remaining = max(0, self.config.llm_max_attempts - 1)
        while True:
            try:
                return await self.stream(messages, **kwargs)
            except ModelTransportError as exc:
                cause = exc.__cause__ or exc
                should_retry, remaining = should_retry_error(cause, remaining)
                if not should_retry:
                    raise
                remaining -= 1
                delay = self.retry_delay_seconds * (2 if is_rate_limit_error(cause) else 1)
                self.logger.warning("Retrying model call (%d attempts left): %s", remaining, exc)
                await asyncio.sleep(delay)

    async def _stream_round(
        self,
        conversation: List[Message],
        json_mode: bool,
        tools: Sequence[Tool],
        on_delta: Optional[Callable[[str], Any]],
        delivered: List[str],
    ) -> Tuple[str, List[Dict[str, str]], Any]:
        request: Dict[str, Any] = {
            "model": self.config.llm_model,
            "messages": conversation,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}
        if tools:
            request["tools"] = [tool.to_openai() for tool in tools]

        response = await self.client.chat.completions.create(**request)
        parts: List[str] = []
        calls: Dict[int, Dict[str, str]] = {}
        round_usage = None
        async for chunk in response:
            if getattr(chunk, "usage", None) is not None:
                round_usage = chunk.usage
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta.content:
                parts.append(delta.content)
                delivered.append(delta.content)
                await _notify(on_delta, delta.content)
            for fragment in getattr(delta, "tool_calls", None) or []:
                slot = calls.setdefault(fragment.index, {"id": "", "name": "", "arguments": ""})
                if fragment.id:
                    slot["id"] = fragment.id
                function = getattr(fragment, "function", None)
                if function is not None:
                    slot["name"] += function.name or ""
                    slot["arguments"] += function.arguments or ""
        return "".join(parts), [calls[index] for index in sorted(calls)], round_usage

    async def _run_tool(self, by_name: Dict[str, Tool], call: Dict[str, str]) -> str:
        tool = by_name.get(call["name"])
        if tool is None:
            return f"Error: unknown tool {call['name']}"
        try:
            return await tool.invoke(call["arguments"])
        except Exception as exc:
            self.logger.warning("Tool %s failed: %s", call["name"], exc)
            return f"Error: {to_error_message(exc)}"
