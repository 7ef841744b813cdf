# models.py
# Data contracts for the taskloop orchestrator.
# No business logic lives here, only schema and validation.
#
# Content blocks are the canonical conversation schema. Every backend adapter
# translates into and out of these shapes.

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, model_validator


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------


class Step(BaseModel):
    """A single unit of planned work."""

    id: int = Field(..., ge=1, description="1-based step index, matches position.")
    phase: str = Field(..., description="Phase tag from the preset's vocabulary.")
    action: str = Field(..., description="What this step does.")
    tool: str = Field(..., description="Tool name; should exist in the registry.")
    details: str = Field(default="", description="Free-text guidance for the step.")


class Plan(BaseModel):
    """A complete execution plan produced by the planner."""

    goal: str = Field(..., description="Top-level objective of the plan.")
    approach: str = Field(default="", description="Brief description of the approach.")
    steps: list[Step] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _ids_match_positions(self) -> "Plan":
        for position, step in enumerate(self.steps, start=1):
            if step.id != position:
                raise ValueError(
                    f"Step ids must match their position: step at position "
                    f"{position} has id {step.id}."
                )
        return self


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    """A backend's request to call a tool with specific input."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    """A tool outcome carried back into the conversation."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: Any = None


ContentBlock = Annotated[
    Union[TextBlock, ToolUseBlock, ToolResultBlock],
    Field(discriminator="type"),
]


class Message(BaseModel):
    role: Literal["user", "assistant"]
    content: str | list[ContentBlock]


class StopReason(str, Enum):
    END_TURN = "end_turn"
    TOOL_USE = "tool_use"


class BackendResponse(BaseModel):
    """One canonical assistant turn."""

    stop_reason: StopReason
    content: list[ContentBlock] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]


class ToolSchema(BaseModel):
    """Canonical tool declaration sent to a backend."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


class Approval(BaseModel):
    """Decision returned by an approval handler."""

    approved: bool
    persist: bool = False


class PermissionRecord(BaseModel):
    """On-disk shape of the permission store."""

    version: int = 1
    always_allow: list[str] = Field(default_factory=list)
    updated_at: str | None = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class RunResult(BaseModel):
    """Final result of an agent run."""

    success: bool
    output: dict[str, Any] = Field(default_factory=dict)
    stats: dict[str, Any] = Field(default_factory=dict)
