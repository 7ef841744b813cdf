# events.py
# Lifecycle event channel.
#
# Components publish named events through an EventBus handed to them at
# construction. Delivery is fire-and-forget: a failing listener is logged
# and skipped, never allowed to affect the run.

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    # Run lifecycle
    AGENT_STARTED = "agent:started"
    AGENT_COMPLETE = "agent:complete"
    AGENT_ERROR = "agent:error"

    # Phases, plan, steps
    PHASE_START = "phase:start"
    PHASE_END = "phase:end"
    PLAN_CREATED = "plan:created"
    STEP_START = "step:start"
    STEP_COMPLETE = "step:complete"
    STEP_MAX_ITERATIONS = "step:max_iterations"

    # Tools
    TOOL_START = "tool:start"
    TOOL_RESULT = "tool:result"

    # Approval
    APPROVAL_REQUIRED = "approval:required"
    APPROVAL_DENIED = "approval:denied"

    # Context
    CONTEXT_COMPRESSED = "context:compressed"

    # Emitted by built-in tools
    NOTE_SAVED = "note:saved"
    THOUGHT_RECORDED = "thought:recorded"
    RESULT_STORED = "result:stored"
    TASK_COMPLETED = "task:completed"


@dataclass
class Event:
    """A published event. `type` stays a plain string so unknown names pass through."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)


Listener = Callable[[Event], None]
Emit = Callable[[str, dict[str, Any]], None]


class EventBus:
    """Synchronous publish/subscribe channel shared by one run's components."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a callable that removes it again."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event_type: str, data: dict[str, Any] | None = None) -> None:
        name = event_type.value if isinstance(event_type, EventType) else str(event_type)
        event = Event(type=name, data=dict(data or {}))
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener failed on %s", name)

    def __len__(self) -> int:
        return len(self._listeners)
