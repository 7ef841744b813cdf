# registry.py
# Tool registry: name to {schema, executor} lookup.
#
# No behaviour beyond registration, lookup and schema projection. The
# execution pipeline owns calling, permissions and error folding.

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from taskloop.events import Emit
from taskloop.models import ToolSchema


@dataclass
class ToolContext:
    """Second argument handed to every tool executor."""

    memory: Any
    emit: Emit


ToolOutcome = Any
Executor = Callable[[dict[str, Any], ToolContext], Union[ToolOutcome, Awaitable[ToolOutcome]]]


@dataclass(frozen=True)
class Tool:
    name: str
    schema: ToolSchema
    execute: Executor

    def missing_inputs(self, tool_input: dict[str, Any]) -> list[str]:
        """Required properties absent from `tool_input`."""
        required = self.schema.input_schema.get("required", [])
        return [key for key in required if key not in tool_input]


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if not tool.name:
            raise ValueError("Tool must have a name.")
        if tool.schema is None or tool.schema.name != tool.name:
            raise ValueError(f"Tool '{tool.name}' must have a schema with a matching name.")
        if not callable(tool.execute):
            raise ValueError(f"Tool '{tool.name}' must have a callable executor.")
        self._tools[tool.name] = tool

    def register_many(self, tools: list[Tool]) -> None:
        for tool in tools:
            self.register(tool)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def get_executor(self, name: str) -> Executor | None:
        tool = self._tools.get(name)
        return tool.execute if tool else None

    def get_schemas(self, names: list[str] | None = None) -> list[ToolSchema]:
        """Project schemas for `names` (all tools when None), skipping unknown names."""
        selected = names if names is not None else list(self._tools)
        return [self._tools[name].schema for name in selected if name in self._tools]

    def list(self) -> list[str]:
        return list(self._tools)

    def clear(self) -> None:
        self._tools.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
