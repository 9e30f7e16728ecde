import asyncio
import concurrent.futures
import dataclasses
import inspect
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence

from ..actions import Action, ActionAuditor, ActionInstruction, ActionResult
from ..audit import build_logger, log_turn
from ..config import RuntimeConfig
from ..errors import ModelTransportError, PlannerError, ScriptError
from ..perception.pipeline import PerceptionPipeline
from ..scripting.planner import ScriptPlanner, extract_script_candidate
from ..signals import CONSCIOUS
from .agent import CognitiveAgent
from .inbox import SignalInbox
from .prompts import build_messages, compose_turn, system_prompt

Dispatcher = Callable[[ActionInstruction], Any]


class CognitionLoop:
    def __init__(
        self,
        config: RuntimeConfig,
        pipeline: PerceptionPipeline,
        agent: CognitiveAgent,
        planner: ScriptPlanner,
        actions: Sequence[Action],
        dispatcher: Optional[Dispatcher] = None,
    ):
        self.config = config
        self.pipeline = pipeline
        self.agent = agent
        self.planner = planner
        self.actions = list(actions)
        self.dispatcher: Dispatcher = dispatcher or self._perform
        self.inbox = SignalInbox(config.signal_inbox_limit)
        self._unsubscribe = pipeline.subscribe(CONSCIOUS, self.inbox.push)
        self.feedback: Deque[Dict[str, Any]] = deque(maxlen=config.feedback_limit)
        self.auditor = ActionAuditor()
        self.audit_logger = build_logger(config)
        self.logger = logging.getLogger("quarry.cognition")
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._next_action_id = 1
        self.running = False
        self.turns = 0

    async def start(self) -> None:
        self.running = True
        try:
            while self.running:
                tick_start = time.monotonic()
                try:
                    await self.tick()
                except asyncio.CancelledError:
                    self.running = False
                    raise
                except Exception as exc:
                    self.logger.exception("Cognition tick crashed: %s", exc)
                elapsed = time.monotonic() - tick_start
                await asyncio.sleep(max(0.0, self.config.tick_interval_seconds - elapsed))
        finally:
            self.running = False
            self._shutdown_executor()

    def stop(self) -> None:
        self.running = False

    def close(self) -> None:
        self.stop()
        self._unsubscribe()
        self._shutdown_executor()

    async def tick(self) -> List[ActionResult]:
        """Run one turn. Returns the results of the actions performed, if any."""
        signals = self.inbox.drain(self.config.max_signals_per_turn)
        feedback = list(self.feedback)
        self.feedback.clear()
        if not signals and not feedback:
            return []
        self.turns += 1

        prompt = compose_turn(signals, feedback, self.planner.last_result)
        messages = build_messages(system_prompt(self.actions, self.planner.max_actions_per_turn), prompt)
        signal_dicts = [signal.to_dict() for signal in signals]
        try:
            reply = await self.agent.decide(messages)
        except ModelTransportError as exc:
            self.logger.warning("Model call failed; abandoning turn: %s", exc)
            self.inbox.requeue(signals)
            self.feedback.extendleft(reversed(feedback))
            log_turn(self.audit_logger, signal_dicts, "", [], error=str(exc))
            return []

        script = extract_script_candidate(reply.text)
        loop = asyncio.get_running_loop()
        try:
            instructions = await loop.run_in_executor(
                self._executor_lazy(), self.planner.evaluate, reply.text, self.actions
            )
        except (ScriptError, PlannerError) as exc:
            self.logger.warning("Planner script failed: %s", exc)
            self._add_feedback({"status": "failed", "action": {"tool": "script"}, "error": str(exc)})
            log_turn(self.audit_logger, signal_dicts, script, [], error=str(exc))
            return []

        results: List[ActionResult] = []
        for instruction in self._ensure_ids(instructions):
            if instruction.tool == "skip":
                continue
            results.append(await self._dispatch(instruction))
        log_turn(self.audit_logger, signal_dicts, script, [result.to_dict() for result in results])
        return results

    def _ensure_ids(self, instructions: Sequence[ActionInstruction]) -> List[ActionInstruction]:
        stamped = []
        for instruction in instructions:
            if instruction.id is None and instruction.tool != "skip":
                instruction = dataclasses.replace(instruction, id=f"a{self._next_action_id}")
                self._next_action_id += 1
            stamped.append(instruction)
        return stamped

    async def _dispatch(self, instruction: ActionInstruction) -> ActionResult:
        try:
            outcome = self.dispatcher(instruction)
            if inspect.isawaitable(outcome):
                outcome = await outcome
            result = ActionResult(instruction=instruction, success=True, detail="" if outcome is None else str(outcome))
        except Exception as exc:
            self.logger.warning("Action %s (%s) failed: %s", instruction.tool, instruction.id, exc)
            result = ActionResult(instruction=instruction, success=False, detail=str(exc))
        self.auditor.record(result)
        entry: Dict[str, Any] = {
            "status": "success" if result.success else "failed",
            "action": instruction.to_dict(),
        }
        entry["result" if result.success else "error"] = result.detail
        self._add_feedback(entry)
        return result

    def _perform(self, instruction: ActionInstruction) -> Any:
        action = next((a for a in self.actions if a.name == instruction.tool), None)
        if action is None or action.perform is None:
            raise RuntimeError(f"No handler registered for action {instruction.tool}")
        return action.perform(**instruction.params)

    def _add_feedback(self, entry: Dict[str, Any]) -> None:
        self.feedback.append(entry)

    def _executor_lazy(self) -> concurrent.futures.ThreadPoolExecutor:
        if self._executor is None:
            # One worker: the planner's engine refuses overlapping runs.
            self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="quarry-planner")
        return self._executor

    def _shutdown_executor(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
