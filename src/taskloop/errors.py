# errors.py
# Exception taxonomy for the orchestrator.
#
# Everything here is fatal to a run. Tool-level failures never raise: they
# are folded into {"error": ...} outcomes by the execution pipeline.


class TaskloopError(Exception):
    """Base class for all orchestrator errors."""


class ConfigError(TaskloopError):
    """Raised when a preset, registry or settings combination is invalid."""


class PlanParseError(TaskloopError):
    """Raised when the planner response holds no usable plan. Never retried."""


class ToolDeniedError(TaskloopError):
    """
    Raised when approval for a tool is denied.

    Aborts the whole run rather than letting the backend try again.
    """

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"User denied tool '{tool_name}'")
        self.tool_name = tool_name


class AgentAbortedError(TaskloopError):
    """Raised at the next checkpoint after abort() is called."""


class BackendError(TaskloopError):
    """Raised when a reasoning backend call fails."""

    def __init__(self, message: str, provider: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
