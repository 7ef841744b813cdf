# harness.py
# Orchestration engine.
#
# The Agent owns all control flow. The backend only proposes; the harness
# decides what runs, in what order, and when the run is over.
#
# Control flow:
#   goal → working memory reset → planner → plan stored
#   → per step: context + step prompt → backend ⇄ tool pipeline (bounded)
#   → step recorded → next step → result extraction
#
# Steps, tool calls and backend calls are strictly sequential: every memory
# write from one tool is visible to the next tool and the next backend call.

import asyncio
import logging
from typing import Any

from taskloop.backends import ReasoningBackend
from taskloop.context import ContextManager
from taskloop.errors import AgentAbortedError, ConfigError, ToolDeniedError
from taskloop.events import EventBus, EventType, Listener
from taskloop.executor import ToolExecutor
from taskloop.memory import WorkingMemory
from taskloop.models import Message, RunResult, Step, StopReason, ToolResultBlock
from taskloop.permissions import PermissionManager
from taskloop.planner import Planner
from taskloop.presets import Preset
from taskloop.registry import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_STEP_DELAY = 0.5


class Agent:
    """
    Plan-then-execute agent driven by a preset.

    Example:
        preset = get_preset("general")
        agent = Agent(preset, preset.build_registry(), create_backend("anthropic"))
        result = await agent.run("Summarize today's weather in Paris")
    """

    def __init__(
        self,
        preset: Preset,
        registry: ToolRegistry,
        backend: ReasoningBackend,
        *,
        permissions: PermissionManager | None = None,
        events: EventBus | None = None,
        context: ContextManager | None = None,
        step_delay: float = DEFAULT_STEP_DELAY,
    ) -> None:
        missing = [name for name in preset.tools if name not in registry]
        if missing:
            raise ConfigError(
                f"Preset '{preset.name}' exposes unregistered tools: {', '.join(missing)}"
            )

        self.preset = preset
        self.registry = registry
        self.backend = backend
        self.events = events if events is not None else EventBus()
        self.step_delay = step_delay

        self.memory = WorkingMemory(preset.initial_state(), state_model=preset.state_model)
        self.context = context or ContextManager(backend, model=preset.model, events=self.events)
        self.executor = ToolExecutor(registry, self.memory, self.events, permissions)
        self.planner = Planner(preset, registry, backend, self.events)

        self._aborted = False

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener):
        return self.events.subscribe(listener)

    def abort(self) -> None:
        """Request cancellation. Takes effect at the next step or iteration boundary."""
        self._aborted = True

    def _check_aborted(self) -> None:
        if self._aborted:
            raise AgentAbortedError("Agent aborted")

    def state(self) -> dict[str, Any]:
        return self.memory.full_state(self.preset.extract_stats)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, goal: str) -> RunResult:
        self._aborted = False
        self.context.clear()

        try:
            self.events.emit(EventType.AGENT_STARTED, {"goal": goal, "preset": self.preset.name})
            logger.info("Run started: %s", goal)

            self.memory.set_goal(goal, self.preset.initial_state())
            self.events.emit(
                EventType.PHASE_START,
                {"phase": self.preset.phases[0], "message": "Creating plan..."},
            )

            plan = await self.planner.create_plan(goal)
            self.memory.set_plan(plan)
            total = len(plan.steps)
            phase = self.preset.phases[0]

            for index, step in enumerate(plan.steps):
                self._check_aborted()

                if step.phase != phase:
                    self.events.emit(EventType.PHASE_END, {"phase": phase})
                    phase = step.phase
                self.events.emit(EventType.PHASE_START, {"phase": step.phase})
                self.events.emit(
                    EventType.STEP_START,
                    {
                        "step_id": step.id,
                        "total_steps": total,
                        "action": step.action,
                        "phase": step.phase,
                        "tool": step.tool,
                    },
                )
                logger.info("Step %d/%d [%s] %s", step.id, total, step.phase, step.action)

                outcome = await self.execute_step(step)
                self.memory.complete_step(outcome)

                self.events.emit(
                    EventType.STEP_COMPLETE,
                    {"step_id": step.id, "total_steps": total, "action": step.action},
                )

                if self.step_delay and index < total - 1:
                    await asyncio.sleep(self.step_delay)

            self.events.emit(EventType.PHASE_END, {"phase": phase})
            result = self._build_result()
            self.events.emit(EventType.AGENT_COMPLETE, result.model_dump())
            logger.info("Run complete: %s", result.stats)
            return result

        except Exception as exc:
            denied = isinstance(exc, ToolDeniedError)
            payload: dict[str, Any] = {
                "message": str(exc),
                "error_type": type(exc).__name__,
                "denied": denied,
            }
            if denied:
                payload["tool"] = exc.tool_name
            self.events.emit(EventType.AGENT_ERROR, payload)
            logger.error("Run failed (%s): %s", type(exc).__name__, exc)
            raise

    def _build_result(self) -> RunResult:
        if self.preset.extract_result is not None:
            output = self.preset.extract_result(self.memory)
        else:
            output = {"state": self.memory.get_context()["state"]}

        if self.preset.extract_stats is not None:
            stats = self.preset.extract_stats(self.memory)
        else:
            stats = {
                "completed_steps": self.memory.current_step_index,
                "total_steps": self.memory.total_steps,
            }
        return RunResult(success=True, output=output, stats=stats)

    # ------------------------------------------------------------------
    # Step execution
    # ------------------------------------------------------------------

    async def execute_step(self, step: Step) -> dict[str, Any]:
        """
        Drive one step's backend ⇄ tool loop.

        Ends on a turn without tool use, or after max_iterations_per_step
        iterations. Exhaustion is not an error: it is logged, announced as
        step:max_iterations, and the step counts as done.
        """
        system_prompt = self.preset.step_prompt(step, self.memory.get_context())
        tool_schemas = self.registry.get_schemas(self.preset.tools)

        instruction = Message(role="user", content=f"Execute step {step.id}: {step.action}")
        messages = [*self.context.get_messages(), instruction]

        max_iterations = self.preset.max_iterations_per_step
        iterations = 0
        while iterations < max_iterations:
            self._check_aborted()
            iterations += 1

            response = await self.backend.create_message(
                model=self.preset.model,
                max_tokens=self.preset.step_max_tokens,
                system=system_prompt,
                tools=tool_schemas,
                messages=messages,
            )

            tool_uses = response.tool_uses
            if response.stop_reason is StopReason.TOOL_USE and tool_uses:
                messages.append(Message(role="assistant", content=response.content))
                results = []
                for block in tool_uses:
                    outcome = await self.executor.execute(block.name, block.input)
                    results.append(ToolResultBlock(tool_use_id=block.id, content=outcome))
                messages.append(Message(role="user", content=results))
                continue

            text = response.text
            if text:
                await self.context.add_message(instruction)
                await self.context.add_message(Message(role="assistant", content=text))
            return {"step_id": step.id, "text": text, "iterations": iterations, "exhausted": False}

        logger.warning(
            "Step %d stopped after %d iterations without a final answer", step.id, max_iterations
        )
        self.events.emit(
            EventType.STEP_MAX_ITERATIONS,
            {"step_id": step.id, "iterations": max_iterations},
        )
        return {"step_id": step.id, "text": "", "iterations": iterations, "exhausted": True}
