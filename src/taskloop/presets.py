# presets.py
# Workflow presets.
#
# A preset is the tagged configuration an Agent runs with: phase vocabulary,
# exposed tools, state shape, prompt builders and result extractors. It is
# validated when constructed, not at first use.

from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, InstanceOf, field_validator

from taskloop import prompts
from taskloop.errors import ConfigError
from taskloop.registry import Tool, ToolRegistry
from taskloop.tools import GENERAL_TOOLS, WORKSPACE_TOOLS


class Preset(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    display_name: str = ""
    description: str = ""
    phases: list[str] = Field(..., min_length=1)
    tools: list[str] = Field(..., min_length=1)
    tool_implementations: list[InstanceOf[Tool]] = Field(default_factory=list)
    state_model: Optional[type[BaseModel]] = None

    step_prompt: Callable[..., str]
    planning_prompt: Callable[[str, str, str], str]
    extract_result: Optional[Callable[..., dict[str, Any]]] = None
    extract_stats: Optional[Callable[..., dict[str, Any]]] = None

    max_iterations_per_step: int = Field(default=5, ge=1)
    model: Optional[str] = None
    planner_max_tokens: int = Field(default=1500, ge=1)
    step_max_tokens: int = Field(default=4000, ge=1)

    @field_validator("tools")
    @classmethod
    def _unique_tools(cls, value: list[str]) -> list[str]:
        if len(set(value)) != len(value):
            raise ValueError("Preset tools must be unique.")
        return value

    def initial_state(self) -> dict[str, Any]:
        return self.state_model().model_dump() if self.state_model else {}

    def build_registry(self) -> ToolRegistry:
        """A fresh registry holding this preset's tool implementations."""
        registry = ToolRegistry()
        registry.register_many(list(self.tool_implementations))
        return registry


# ---------------------------------------------------------------------------
# General preset
# ---------------------------------------------------------------------------


class GeneralState(BaseModel):
    notes: list[dict[str, Any]] = Field(default_factory=list)
    thoughts: list[dict[str, Any]] = Field(default_factory=list)
    results: dict[str, Any] = Field(default_factory=dict)
    final_answer: Optional[str] = None
    completion_summary: Optional[str] = None


def _general_result(memory) -> dict[str, Any]:
    return {
        "answer": memory.get("final_answer"),
        "summary": memory.get("completion_summary"),
        "notes": memory.get("notes") or [],
        "thoughts": memory.get("thoughts") or [],
        "results": memory.get("results") or {},
    }


def _general_stats(memory) -> dict[str, Any]:
    return {
        "completed_steps": memory.current_step_index,
        "total_steps": memory.total_steps,
        "notes_count": len(memory.get("notes") or []),
        "thoughts_count": len(memory.get("thoughts") or []),
        "results_count": len(memory.get("results") or {}),
    }


GENERAL = Preset(
    name="general",
    display_name="General Purpose Agent",
    description="Handles any task by planning and executing steps",
    phases=["understand", "work", "deliver"],
    tools=[tool.name for tool in GENERAL_TOOLS],
    tool_implementations=GENERAL_TOOLS,
    state_model=GeneralState,
    step_prompt=prompts.step_prompt,
    planning_prompt=prompts.planning_prompt,
    extract_result=_general_result,
    extract_stats=_general_stats,
)

WORKSPACE = GENERAL.model_copy(
    update={
        "name": "workspace",
        "display_name": "Workspace Agent",
        "description": "General agent that can also manage files and call webhooks",
        "tools": [tool.name for tool in WORKSPACE_TOOLS],
        "tool_implementations": WORKSPACE_TOOLS,
    }
)


# ---------------------------------------------------------------------------
# Preset registry
# ---------------------------------------------------------------------------

_PRESETS: dict[str, Preset] = {GENERAL.name: GENERAL, WORKSPACE.name: WORKSPACE}


def get_preset(name: str) -> Preset:
    try:
        return _PRESETS[name]
    except KeyError:
        raise ConfigError(
            f"Unknown preset '{name}'. Available: {', '.join(sorted(_PRESETS))}"
        ) from None


def has_preset(name: str) -> bool:
    return name in _PRESETS


def register_preset(preset: Preset) -> None:
    _PRESETS[preset.name] = preset


def list_presets() -> list[dict[str, str]]:
    return [
        {"name": p.name, "display_name": p.display_name, "description": p.description}
        for p in _PRESETS.values()
    ]
