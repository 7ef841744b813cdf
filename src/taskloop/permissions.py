# permissions.py
# Human-in-the-loop approval gate for side-effecting tools.
#
# Safe bookkeeping tools never prompt. Everything else goes to an approval
# handler; with no handler the request is denied. "Always allow" decisions
# are written straight to .agent-permissions.json.

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Union

from pydantic import ValidationError

from taskloop.events import EventBus, EventType
from taskloop.models import Approval, PermissionRecord

logger = logging.getLogger(__name__)

SAFE_TOOLS: frozenset[str] = frozenset({"think", "save_note", "store_result", "complete_task"})

PERMISSIONS_FILE = ".agent-permissions.json"

ApprovalHandler = Callable[
    [str, dict[str, Any]],
    Awaitable[Union[Approval, Mapping[str, Any]]],
]


class PermissionManager:
    """
    Decides whether a tool call needs approval and records persistent grants.

    The store is single-writer per process: saves are a plain
    read-modify-write of the whole file.
    """

    def __init__(
        self,
        working_directory: str | Path = ".",
        *,
        approval_handler: ApprovalHandler | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.path = Path(working_directory) / PERMISSIONS_FILE
        self._handler = approval_handler
        self._events = events
        self.permissions = PermissionRecord()
        self.load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> PermissionRecord:
        """Load the store. A missing or unreadable file yields empty defaults."""
        try:
            raw = self.path.read_text(encoding="utf-8")
            self.permissions = PermissionRecord.model_validate(json.loads(raw))
        except FileNotFoundError:
            self.permissions = PermissionRecord()
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Ignoring unreadable permission store %s: %s", self.path, exc)
            self.permissions = PermissionRecord()
        return self.permissions

    def save(self) -> None:
        self.permissions.updated_at = datetime.now(timezone.utc).isoformat()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(self.permissions.model_dump_json(indent=2), encoding="utf-8")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_safe_tool(self, tool_name: str) -> bool:
        return tool_name in SAFE_TOOLS

    def is_always_allowed(self, tool_name: str) -> bool:
        return tool_name in self.permissions.always_allow

    def requires_approval(self, tool_name: str) -> bool:
        return not (self.is_safe_tool(tool_name) or self.is_always_allowed(tool_name))

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    def set_approval_handler(self, handler: ApprovalHandler | None) -> None:
        self._handler = handler

    def add_always_allow(self, tool_name: str) -> None:
        if tool_name not in self.permissions.always_allow:
            self.permissions.always_allow.append(tool_name)
            self.save()
            logger.info("Tool '%s' added to always-allow list", tool_name)

    def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._events is not None:
            self._events.emit(event_type, data)

    async def request_approval(self, tool_name: str, tool_input: dict[str, Any]) -> Approval:
        if not self.requires_approval(tool_name):
            return Approval(approved=True, persist=False)

        self._emit(EventType.APPROVAL_REQUIRED, {"tool": tool_name, "input": tool_input})

        if self._handler is None:
            self._emit(EventType.APPROVAL_DENIED, {"tool": tool_name, "reason": "No approval handler"})
            return Approval(approved=False, persist=False)

        decision = await self._handler(tool_name, tool_input)
        if not isinstance(decision, Approval):
            decision = Approval.model_validate(dict(decision))

        if decision.approved and decision.persist:
            self.add_always_allow(tool_name)

        if not decision.approved:
            self._emit(EventType.APPROVAL_DENIED, {"tool": tool_name, "reason": "User denied"})
            logger.info("Approval denied for tool '%s'", tool_name)

        return decision
