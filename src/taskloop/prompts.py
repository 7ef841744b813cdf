# prompts.py
# Prompt builders for the built-in presets.

from typing import Any

from taskloop.models import Step

RESULT_PREVIEW_CHARS = 200


def _notes_section(state: dict[str, Any]) -> str:
    notes = state.get("notes") or []
    if not notes:
        return ""
    lines = "\n".join(f"- [{n.get('category', 'note')}]: {n.get('content', '')}" for n in notes)
    return f"\nNOTES COLLECTED:\n{lines}\n"


def _thoughts_section(state: dict[str, Any]) -> str:
    thoughts = state.get("thoughts") or []
    if not thoughts:
        return ""
    lines = "\n".join(f"- {t.get('thought', '')}" for t in thoughts)
    return f"\nREASONING SO FAR:\n{lines}\n"


def _results_section(state: dict[str, Any]) -> str:
    results = state.get("results") or {}
    if not results:
        return ""
    lines = []
    for key, value in results.items():
        if isinstance(value, str) and len(value) > RESULT_PREVIEW_CHARS:
            value = value[:RESULT_PREVIEW_CHARS] + "..."
        lines.append(f"- {key}: {value}")
    return "\nSTORED RESULTS:\n" + "\n".join(lines) + "\n"


def step_prompt(step: Step, context: dict[str, Any]) -> str:
    """System prompt for executing one step of a plan."""
    state = context.get("state") or {}
    sections = _notes_section(state) + _thoughts_section(state) + _results_section(state)

    return f"""\
You are a capable assistant executing a specific step in a planned workflow.

CURRENT GOAL: {context.get("goal")}

CURRENT STEP: {step.action}
PHASE: {step.phase}
TOOL TO USE: {step.tool}
DETAILS: {step.details}

PROGRESS: Step {context.get("completed_steps", 0) + 1} of {context.get("total_steps", 0)}
{sections}
Execute this step by using the {step.tool} tool. Be thorough and accurate.

Guidelines:
- Focus on completing the specific step described
- Use the designated tool to accomplish the step
- Be precise and provide detailed, useful outputs
- If this is the final step, use complete_task to deliver the result
"""


def planning_prompt(goal: str, tool_descriptions: str, phase_list: str) -> str:
    return f"""\
You are a planning agent that creates step-by-step plans to accomplish tasks.

GOAL: {goal}

AVAILABLE TOOLS:
{tool_descriptions}

AVAILABLE PHASES: {phase_list}

Your job is to create a plan that will accomplish the goal. Think about:
1. What information needs to be gathered? (understand phase)
2. What work needs to be done? (work phase)
3. How should the result be delivered? (deliver phase)

Create a detailed plan. Output ONLY valid JSON:

{{
  "goal": "the goal",
  "approach": "brief description of your approach",
  "steps": [
    {{
      "id": 1,
      "phase": "{phase_list}",
      "action": "what to do",
      "tool": "tool_name",
      "details": "specific details for this step"
    }}
  ]
}}

Important guidelines:
- Number steps from 1 in the order they should run
- Use "understand" phase for research, gathering information, and analysis
- Use "work" phase for processing, computing, and creating outputs
- Use "deliver" phase for the final step that completes the task
- The final step should ALWAYS use the "complete_task" tool to deliver the answer
- Use "think" when you need to reason through something complex
- Use "save_note" to record important findings or decisions
- Use "store_result" to save intermediate outputs needed later
- Use "web_search" when you need current information from the internet
- Only use tools from the AVAILABLE TOOLS list

Create a realistic, efficient plan that accomplishes the goal."""
