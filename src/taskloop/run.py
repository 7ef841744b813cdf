# run.py
# Entry point. Config and wiring only, no logic lives here.
#
# Backend, preset and limits come from TASKLOOP_* settings (see config.py).

import asyncio
import logging

from rich.console import Console
from rich.prompt import Prompt

from taskloop.backends import create_backend
from taskloop.config import get_settings
from taskloop.context import ContextManager
from taskloop.errors import ToolDeniedError
from taskloop.events import Event, EventBus
from taskloop.harness import Agent
from taskloop.logs import setup_logging
from taskloop.models import Approval
from taskloop.permissions import PermissionManager
from taskloop.presets import get_preset

logger = logging.getLogger(__name__)
console = Console()

GOALS = [
    "Summarize today's weather in Paris.",
    "Find recent papers on transformer attention mechanisms and summarize the key findings.",
]


async def console_approval(tool_name: str, tool_input: dict) -> Approval:
    """Ask on the terminal: y = once, a = always, n = deny."""
    console.print(f"\n[yellow]Approval required[/yellow] for [bold]{tool_name}[/bold]: {tool_input}")
    answer = await asyncio.to_thread(
        Prompt.ask, "Allow?", choices=["y", "a", "n"], default="n", console=console
    )
    return Approval(approved=answer in ("y", "a"), persist=answer == "a")


def log_event(event: Event) -> None:
    logger.debug("event %s %s", event.type, event.data)


def build_agent() -> Agent:
    settings = get_settings()
    events = EventBus()
    events.subscribe(log_event)

    preset = get_preset(settings.preset)
    backend = create_backend(settings.provider, **settings.backend_options())
    permissions = PermissionManager(
        settings.permissions_dir, approval_handler=console_approval, events=events
    )
    context = ContextManager(
        backend,
        model=preset.model,
        max_tokens=settings.context_max_tokens,
        compression_trigger=settings.compression_trigger,
        min_messages_to_keep=settings.min_messages_to_keep,
        summary_max_tokens=settings.summary_max_tokens,
        events=events,
    )
    return Agent(
        preset,
        preset.build_registry(),
        backend,
        permissions=permissions,
        events=events,
        context=context,
        step_delay=settings.step_delay,
    )


async def _run_all() -> None:
    agent = build_agent()
    for goal in GOALS:
        try:
            result = await agent.run(goal)
        except ToolDeniedError as exc:
            console.print(f"[red]Stopped:[/red] permission denied for '{exc.tool_name}'.")
            continue
        console.print(f"\n[bold][RESULT][/bold] {result.output.get('answer')}")
        console.print(f"[dim]{result.stats}[/dim]\n")


def main() -> None:
    setup_logging(get_settings().log_level)
    asyncio.run(_run_all())


if __name__ == "__main__":
    main()
