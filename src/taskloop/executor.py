# executor.py
# Tool execution pipeline.
#
# Approval → lookup → input check → call. Only a permission denial escapes
# as an exception; every other failure becomes an {"error": ...} outcome the
# backend can read and adapt to.

import inspect
import logging
from collections.abc import Mapping
from typing import Any

from taskloop.errors import ToolDeniedError
from taskloop.events import EventBus, EventType
from taskloop.memory import WorkingMemory
from taskloop.permissions import PermissionManager
from taskloop.registry import ToolContext, ToolRegistry

logger = logging.getLogger(__name__)


class ToolExecutor:
    def __init__(
        self,
        registry: ToolRegistry,
        memory: WorkingMemory,
        events: EventBus | None = None,
        permissions: PermissionManager | None = None,
    ) -> None:
        self.registry = registry
        self.memory = memory
        self.events = events if events is not None else EventBus()
        self.permissions = permissions

    async def execute(self, tool_name: str, tool_input: dict[str, Any]) -> dict[str, Any]:
        self.events.emit(EventType.TOOL_START, {"tool": tool_name, "input": tool_input})

        # Approval failures other than a denial fold into the outcome too.
        try:
            if self.permissions is not None:
                approval = await self.permissions.request_approval(tool_name, tool_input)
                if not approval.approved:
                    raise ToolDeniedError(tool_name)
            outcome = await self._run(tool_name, tool_input)
        except ToolDeniedError:
            raise
        except Exception as exc:
            logger.exception("Tool '%s' failed", tool_name)
            outcome = {"error": str(exc) or type(exc).__name__}

        self.events.emit(EventType.TOOL_RESULT, {"tool": tool_name, "result": outcome})
        return outcome

    async def _run(self, tool_name: str, tool_input: dict[str, Any]) -> dict[str, Any]:
        tool = self.registry.get(tool_name)
        if tool is None:
            logger.warning("Backend requested unknown tool '%s'", tool_name)
            return {"error": f"Unknown tool: {tool_name}"}

        missing = tool.missing_inputs(tool_input)
        if missing:
            return {"error": f"Missing required input(s) for {tool_name}: {', '.join(missing)}"}

        context = ToolContext(memory=self.memory, emit=self.events.emit)
        result = tool.execute(tool_input, context)
        if inspect.isawaitable(result):
            result = await result

        if isinstance(result, Mapping):
            return dict(result)
        return {"result": result}
