import pytest
from unittest.mock import MagicMock, patch

from fakes import ScriptedBackend, plan_turn, text_turn, tool_turn
from taskloop.errors import (
    AgentAbortedError,
    BackendError,
    ConfigError,
    PlanParseError,
    ToolDeniedError,
)
from taskloop.harness import Agent
from taskloop.models import Message, ToolResultBlock, ToolSchema
from taskloop.permissions import PermissionManager
from taskloop.presets import GENERAL
from taskloop.registry import Tool, ToolRegistry

PARIS_STEPS = [
    {"id": 1, "phase": "understand", "action": "Search for the Paris forecast", "tool": "web_search"},
    {"id": 2, "phase": "work", "action": "Record the forecast", "tool": "save_note"},
    {"id": 3, "phase": "deliver", "action": "Report the weather", "tool": "complete_task"},
]

HITS = [{"title": "Paris forecast", "body": "Sunny, 21C", "href": "https://weather.example.com/paris"}]


def _agent(backend, preset=GENERAL, registry=None, **kwargs) -> Agent:
    kwargs.setdefault("step_delay", 0)
    return Agent(preset, registry or preset.build_registry(), backend, **kwargs)


def _recorder(agent):
    seen = []
    agent.subscribe(seen.append)
    return seen


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
@patch("taskloop.tools._search", return_value=HITS)
async def test_run_paris_weather(mock_search):
    backend = ScriptedBackend([
        plan_turn(PARIS_STEPS, goal="Summarize today's weather in Paris"),
        tool_turn("web_search", {"query": "Paris weather today"}),
        text_turn("Found the forecast."),
        tool_turn("save_note", {"content": "Sunny, 21C", "category": "finding"}),
        text_turn("Noted."),
        tool_turn("complete_task", {"answer": "Sunny and 21C in Paris.", "summary": "Searched and reported."}),
        text_turn("Done."),
    ])
    agent = _agent(backend)
    seen = _recorder(agent)

    result = await agent.run("Summarize today's weather in Paris")

    assert result.success is True
    assert result.output["answer"] == "Sunny and 21C in Paris."
    assert result.output["notes"][0]["content"] == "Sunny, 21C"
    assert result.stats["completed_steps"] == 3
    assert result.stats["notes_count"] == 1
    mock_search.assert_called_once_with("Paris weather today")
    assert len(backend.requests) == 7

    types = [e.type for e in seen]
    assert types[0] == "agent:started"
    assert types[-1] == "agent:complete"
    assert types.count("step:start") == 3
    assert types.count("step:complete") == 3
    assert "plan:created" in types
    assert "task:completed" in types

    # Phase boundaries follow the plan's phase changes
    phase_events = [(e.type, e.data["phase"]) for e in seen if e.type in ("phase:start", "phase:end")]
    assert phase_events == [
        ("phase:start", "understand"),
        ("phase:start", "understand"),
        ("phase:end", "understand"),
        ("phase:start", "work"),
        ("phase:end", "work"),
        ("phase:start", "deliver"),
        ("phase:end", "deliver"),
    ]

    # Tool outcome fed back on the next call within the step
    feedback = backend.requests[2].messages[-1]
    assert isinstance(feedback.content[0], ToolResultBlock)
    assert feedback.content[0].content["result_count"] == 1

    # Later steps see earlier steps through the context window
    step_two = backend.requests[3]
    assert [m.content for m in step_two.messages] == [
        "Execute step 1: Search for the Paris forecast",
        "Found the forecast.",
        "Execute step 2: Record the forecast",
    ]
    assert [t.name for t in step_two.tools] == GENERAL.tools

    # Memory writes from step 2 reach the step 3 system prompt
    assert "Sunny, 21C" in backend.requests[5].system


@pytest.mark.asyncio
async def test_run_resets_memory_between_goals():
    steps = [{"id": 1, "phase": "work", "action": "Think", "tool": "think"}]
    backend = ScriptedBackend([
        plan_turn(steps),
        tool_turn("think", {"thought": "first run"}),
        text_turn("ok"),
    ])
    agent = _agent(backend)
    await agent.run("first")

    backend.push(plan_turn(steps), text_turn("ok"))
    result = await agent.run("second")

    assert result.output["thoughts"] == []
    assert agent.memory.goal == "second"
    # Context starts empty for a new run
    assert backend.requests[-1].messages == [Message(role="user", content="Execute step 1: Think")]


# ---------------------------------------------------------------------------
# Denial
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_denied_tool_stops_the_run(tmp_path):
    execute = MagicMock(return_value={"deleted": True})
    dangerous = Tool(
        name="delete_everything",
        schema=ToolSchema(name="delete_everything", description="Delete all files"),
        execute=execute,
    )
    preset = GENERAL.model_copy(update={
        "tools": [*GENERAL.tools, "delete_everything"],
        "tool_implementations": [*GENERAL.tool_implementations, dangerous],
    })
    backend = ScriptedBackend([
        plan_turn([
            {"id": 1, "phase": "understand", "action": "Reason", "tool": "think"},
            {"id": 2, "phase": "work", "action": "Clean up", "tool": "delete_everything"},
        ]),
        tool_turn("think", {"thought": "plan the cleanup"}),
        text_turn("Ready."),
        tool_turn("delete_everything", {}),
    ])
    agent = _agent(backend, preset, permissions=PermissionManager(tmp_path))
    seen = _recorder(agent)

    with pytest.raises(ToolDeniedError) as exc_info:
        await agent.run("Tidy the workspace")

    assert exc_info.value.tool_name == "delete_everything"
    execute.assert_not_called()
    assert agent.memory.current_step_index == 1
    assert backend.turns == []

    errors = [e for e in seen if e.type == "agent:error"]
    assert len(errors) == 1
    assert errors[0].data["denied"] is True
    assert errors[0].data["tool"] == "delete_everything"
    assert "approval:denied" in [e.type for e in seen]


# ---------------------------------------------------------------------------
# Abort
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_abort_takes_effect_at_next_step():
    backend = ScriptedBackend([
        plan_turn([
            {"id": 1, "phase": "work", "action": "One", "tool": "think"},
            {"id": 2, "phase": "work", "action": "Two", "tool": "think"},
        ]),
        text_turn("first done"),
    ])
    agent = _agent(backend)
    seen = _recorder(agent)

    def abort_after_first(event):
        if event.type == "step:complete" and event.data["step_id"] == 1:
            agent.abort()

    agent.subscribe(abort_after_first)

    with pytest.raises(AgentAbortedError):
        await agent.run("goal")

    assert len(backend.requests) == 2
    assert agent.memory.current_step_index == 1
    errors = [e for e in seen if e.type == "agent:error"]
    assert errors[0].data["error_type"] == "AgentAbortedError"
    assert errors[0].data["denied"] is False


@pytest.mark.asyncio
async def test_abort_takes_effect_mid_step():
    backend = ScriptedBackend([
        plan_turn([{"id": 1, "phase": "work", "action": "Loop", "tool": "think"}]),
        tool_turn("think", {"thought": "first"}),
        text_turn("never requested"),
    ])
    agent = _agent(backend)
    seen = _recorder(agent)

    def abort_after_tool(event):
        if event.type == "tool:result":
            agent.abort()

    agent.subscribe(abort_after_tool)

    with pytest.raises(AgentAbortedError):
        await agent.run("goal")

    assert len(backend.requests) == 2
    assert len(backend.turns) == 1
    assert agent.memory.current_step_index == 0
    assert "step:complete" not in [e.type for e in seen]
    assert [e.type for e in seen].count("agent:error") == 1


# ---------------------------------------------------------------------------
# Iteration bound
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_step_stops_at_max_iterations():
    preset = GENERAL.model_copy(update={"max_iterations_per_step": 2})
    backend = ScriptedBackend([
        plan_turn([{"id": 1, "phase": "work", "action": "Loop", "tool": "think"}]),
        tool_turn("think", {"thought": "a"}, call_id="c1"),
        tool_turn("think", {"thought": "b"}, call_id="c2"),
    ])
    agent = _agent(backend, preset)
    seen = _recorder(agent)

    result = await agent.run("goal")

    assert result.success is True
    assert len(backend.requests) == 3
    assert agent.memory.step_results[0]["exhausted"] is True
    assert agent.memory.step_results[0]["iterations"] == 2
    assert [e.data for e in seen if e.type == "step:max_iterations"] == [{"step_id": 1, "iterations": 2}]


@pytest.mark.asyncio
async def test_unknown_tool_is_fed_back_not_raised():
    backend = ScriptedBackend([
        plan_turn([{"id": 1, "phase": "work", "action": "Try", "tool": "think"}]),
        tool_turn("teleport", {}),
        text_turn("That tool does not exist; moving on."),
    ])
    agent = _agent(backend)

    result = await agent.run("goal")

    assert result.success is True
    feedback = backend.requests[2].messages[-1].content[0]
    assert feedback.content == {"error": "Unknown tool: teleport"}


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_planner_failure_is_fatal():
    backend = ScriptedBackend([text_turn("no plan today")])
    agent = _agent(backend)
    seen = _recorder(agent)

    with pytest.raises(PlanParseError):
        await agent.run("goal")

    assert len(backend.requests) == 1
    assert "step:start" not in [e.type for e in seen]
    assert seen[-1].type == "agent:error"


@pytest.mark.asyncio
async def test_backend_failure_mid_step_is_fatal():
    backend = ScriptedBackend([
        plan_turn([
            {"id": 1, "phase": "work", "action": "One", "tool": "think"},
            {"id": 2, "phase": "work", "action": "Two", "tool": "think"},
        ]),
        text_turn("first done"),
        BackendError("upstream overloaded", provider="scripted", status_code=529),
    ])
    agent = _agent(backend)
    seen = _recorder(agent)

    with pytest.raises(BackendError) as exc_info:
        await agent.run("goal")

    assert exc_info.value.status_code == 529
    assert agent.memory.current_step_index == 1
    errors = [e for e in seen if e.type == "agent:error"]
    assert len(errors) == 1
    assert errors[0].data == {
        "message": "upstream overloaded",
        "error_type": "BackendError",
        "denied": False,
    }
    assert "agent:complete" not in [e.type for e in seen]


def test_unregistered_preset_tool_is_rejected():
    registry = ToolRegistry()
    with pytest.raises(ConfigError, match="unregistered tools"):
        Agent(GENERAL, registry, ScriptedBackend())
