# memory.py
# Working memory for one agent run.
#
# Holds the goal, the plan, step progress and an open key/value scratchpad.
# Keys declared on the preset's state model are type-checked on write;
# anything else is accepted as ad hoc tool state.

import copy
from typing import Any, Callable

from pydantic import BaseModel, TypeAdapter

from taskloop.models import Plan, Step


class WorkingMemory:
    def __init__(
        self,
        initial_state: dict[str, Any] | None = None,
        state_model: type[BaseModel] | None = None,
    ) -> None:
        self.goal: str | None = None
        self.plan: Plan | None = None
        self.current_step_index: int = 0
        self.step_results: dict[int, Any] = {}
        self.state: dict[str, Any] = copy.deepcopy(initial_state or {})
        self._state_model = state_model
        self._adapters: dict[str, TypeAdapter] = {}

    # ------------------------------------------------------------------
    # Key/value state
    # ------------------------------------------------------------------

    def _validate(self, key: str, value: Any) -> Any:
        if self._state_model is None or key not in self._state_model.model_fields:
            return value
        adapter = self._adapters.get(key)
        if adapter is None:
            adapter = TypeAdapter(self._state_model.model_fields[key].annotation)
            self._adapters[key] = adapter
        return adapter.validate_python(value)

    def get(self, key: str, default: Any = None) -> Any:
        return self.state.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Store a value. Raises pydantic.ValidationError for a mistyped declared key."""
        self.state[key] = self._validate(key, value)

    def update(self, key: str, fn: Callable[[Any], Any]) -> Any:
        """Replace a value with fn(current). Missing keys pass None."""
        value = self._validate(key, fn(self.state.get(key)))
        self.state[key] = value
        return value

    def has(self, key: str) -> bool:
        return key in self.state

    def delete(self, key: str) -> bool:
        if key in self.state:
            del self.state[key]
            return True
        return False

    def keys(self) -> list[str]:
        return list(self.state)

    # ------------------------------------------------------------------
    # Plan progress
    # ------------------------------------------------------------------

    def set_goal(self, goal: str, initial_state: dict[str, Any] | None = None) -> None:
        """Start a new goal. Clears progress and resets state to the initial shape."""
        self.goal = goal
        self.plan = None
        self.current_step_index = 0
        self.step_results = {}
        self.state = copy.deepcopy(initial_state or {})

    def set_plan(self, plan: Plan) -> None:
        self.plan = plan

    @property
    def total_steps(self) -> int:
        return len(self.plan.steps) if self.plan else 0

    @property
    def current_step(self) -> Step | None:
        if self.plan is None or self.current_step_index >= len(self.plan.steps):
            return None
        return self.plan.steps[self.current_step_index]

    def complete_step(self, result: Any = None) -> None:
        """Record the outcome of the current step and advance the cursor by one."""
        self.step_results[self.current_step_index] = result
        self.current_step_index += 1

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def get_context(self) -> dict[str, Any]:
        """Read-only snapshot for prompt builders."""
        current = self.current_step
        return {
            "goal": self.goal,
            "plan": self.plan.model_copy(deep=True) if self.plan else None,
            "current_step": current.model_copy() if current else None,
            "completed_steps": self.current_step_index,
            "total_steps": self.total_steps,
            "state": copy.deepcopy(self.state),
        }

    def full_state(
        self, extract_stats: Callable[["WorkingMemory"], dict[str, Any]] | None = None
    ) -> dict[str, Any]:
        snapshot = {
            "goal": self.goal,
            "plan": self.plan.model_dump() if self.plan else None,
            "current_step_index": self.current_step_index,
            "state": copy.deepcopy(self.state),
        }
        if extract_stats is not None:
            snapshot["stats"] = extract_stats(self)
        else:
            snapshot["stats"] = {
                "completed_steps": self.current_step_index,
                "total_steps": self.total_steps,
            }
        return snapshot
