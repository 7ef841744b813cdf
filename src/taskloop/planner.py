# planner.py
# Goal → Plan, with one backend call and defensive JSON recovery.
#
# Backend output is untrusted free text. The first balanced {...} object is
# cut out of the surrounding prose, then parsed with progressively more
# aggressive repairs before giving up.

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from taskloop.backends import ReasoningBackend
from taskloop.errors import PlanParseError
from taskloop.events import EventBus, EventType
from taskloop.models import Message, Plan
from taskloop.presets import Preset
from taskloop.registry import ToolRegistry

logger = logging.getLogger(__name__)

_CONTROL_CHARS = re.compile(r"[\x00-\x1f]")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def extract_json_object(text: str) -> str | None:
    """
    Return the first balanced {...} object starting at the first '{'.

    Braces inside double-quoted strings are ignored and backslash escapes
    inside strings are honoured. Returns None when nothing balances.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape = False
    for index in range(start, len(text)):
        ch = text[index]
        if escape:
            escape = False
            continue
        if ch == "\\" and in_string:
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def parse_plan_json(text: str) -> dict[str, Any]:
    """Extract and decode the plan object. Raises PlanParseError on failure."""
    raw = extract_json_object(text or "")
    if raw is None:
        raise PlanParseError("Failed to parse plan: no structured plan found in response")

    without_controls = _CONTROL_CHARS.sub(" ", raw)
    attempts = [raw, without_controls, _TRAILING_COMMA.sub(r"\1", without_controls)]

    for attempt in attempts:
        try:
            data = json.loads(attempt)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    raise PlanParseError("Failed to parse plan: backend returned a malformed plan")


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------


class Planner:
    def __init__(
        self,
        preset: Preset,
        registry: ToolRegistry,
        backend: ReasoningBackend,
        events: EventBus | None = None,
    ) -> None:
        self.preset = preset
        self.registry = registry
        self.backend = backend
        self.events = events

    def tool_descriptions(self) -> str:
        lines = []
        for name in self.preset.tools:
            tool = self.registry.get(name)
            lines.append(f"- {name}: {tool.schema.description}" if tool else f"- {name}")
        return "\n".join(lines)

    def phase_list(self) -> str:
        return "|".join(self.preset.phases) or "execute"

    async def create_plan(self, goal: str) -> Plan:
        prompt = self.preset.planning_prompt(goal, self.tool_descriptions(), self.phase_list())

        response = await self.backend.create_message(
            model=self.preset.model,
            max_tokens=self.preset.planner_max_tokens,
            messages=[Message(role="user", content=prompt)],
        )

        data = parse_plan_json(response.text)
        data.setdefault("goal", goal)
        try:
            plan = Plan.model_validate(data)
        except ValidationError as exc:
            raise PlanParseError(f"Failed to parse plan: malformed plan ({exc.error_count()} errors)\n{exc}") from exc

        for step in plan.steps:
            if step.phase not in self.preset.phases:
                logger.warning("Step %d uses unknown phase '%s'", step.id, step.phase)

        logger.info("Plan created with %d steps", len(plan.steps))
        if self.events is not None:
            self.events.emit(EventType.PLAN_CREATED, {"plan": plan.model_dump()})
        return plan
