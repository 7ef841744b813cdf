# backends.py
# Reasoning backend adapters.
#
# Every adapter speaks the canonical protocol from models.py:
#   from_canonical(request)  → native request payload
#   _send(payload)           → native response
#   to_canonical(response)   → BackendResponse(stop_reason, content blocks)
#
# The engine receives a constructed adapter. There is no module-level
# default client.

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any

import anthropic
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from taskloop.errors import BackendError, ConfigError
from taskloop.models import (
    BackendResponse,
    ContentBlock,
    Message,
    StopReason,
    TextBlock,
    ToolResultBlock,
    ToolSchema,
    ToolUseBlock,
)

logger = logging.getLogger(__name__)

VALID_PROVIDERS = ("anthropic", "openai", "ollama")

DEFAULT_MODELS = {
    "anthropic": "claude-sonnet-4-20250514",
    "openai": "gpt-4o",
    "ollama": "llama3.2",
}

DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434/v1"


class BackendRequest(BaseModel):
    """Canonical request handed to an adapter."""

    model: str
    max_tokens: int
    system: str | None = None
    tools: list[ToolSchema] = Field(default_factory=list)
    messages: list[Message]


def _encode_outcome(content: Any) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content, default=str, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Base adapter
# ---------------------------------------------------------------------------


class ReasoningBackend(ABC):
    """One backend's translation to and from the canonical protocol."""

    provider: str = ""

    def __init__(self, default_model: str | None = None) -> None:
        self.default_model = default_model or DEFAULT_MODELS.get(self.provider, "")

    @abstractmethod
    def from_canonical(self, request: BackendRequest) -> dict[str, Any]:
        """Build the native request payload."""

    @abstractmethod
    async def _send(self, payload: dict[str, Any]) -> Any:
        """Issue the native call. Must raise BackendError on failure."""

    @abstractmethod
    def to_canonical(self, response: Any) -> BackendResponse:
        """Translate a native response into one canonical assistant turn."""

    async def create_message(
        self,
        *,
        max_tokens: int,
        messages: list[Message],
        model: str | None = None,
        system: str | None = None,
        tools: list[ToolSchema] | None = None,
    ) -> BackendResponse:
        request = BackendRequest(
            model=model or self.default_model,
            max_tokens=max_tokens,
            system=system,
            tools=tools or [],
            messages=messages,
        )
        payload = self.from_canonical(request)
        logger.debug(
            "%s request: model=%s messages=%d tools=%d",
            self.provider, request.model, len(request.messages), len(request.tools),
        )
        response = await self._send(payload)
        return self.to_canonical(response)


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicBackend(ReasoningBackend):
    """
    Anthropic Messages API.

    The canonical protocol mirrors Anthropic's block model, so translation is
    mostly 1:1. The system prompt travels as a top-level parameter.
    """

    provider = "anthropic"

    def __init__(
        self,
        default_model: str | None = None,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        client: Any = None,
    ) -> None:
        super().__init__(default_model)
        self._client = client or AsyncAnthropic(api_key=api_key, base_url=base_url)

    def _block_to_native(self, block: ContentBlock) -> dict[str, Any]:
        if isinstance(block, TextBlock):
            return {"type": "text", "text": block.text}
        if isinstance(block, ToolUseBlock):
            return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
        return {
            "type": "tool_result",
            "tool_use_id": block.tool_use_id,
            "content": _encode_outcome(block.content),
        }

    def from_canonical(self, request: BackendRequest) -> dict[str, Any]:
        messages = []
        for message in request.messages:
            if isinstance(message.content, str):
                messages.append({"role": message.role, "content": message.content})
            else:
                messages.append({
                    "role": message.role,
                    "content": [self._block_to_native(b) for b in message.content],
                })

        payload: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "messages": messages,
        }
        if request.system:
            payload["system"] = request.system
        if request.tools:
            payload["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.input_schema}
                for t in request.tools
            ]
        return payload

    async def _send(self, payload: dict[str, Any]) -> Any:
        try:
            return await self._client.messages.create(**payload)
        except anthropic.APIStatusError as exc:
            raise BackendError(str(exc), provider=self.provider, status_code=exc.status_code) from exc
        except anthropic.APIError as exc:
            raise BackendError(str(exc), provider=self.provider) from exc

    def to_canonical(self, response: Any) -> BackendResponse:
        content: list[ContentBlock] = []
        for block in response.content:
            if block.type == "text":
                content.append(TextBlock(text=block.text))
            elif block.type == "tool_use":
                tool_input = block.input if isinstance(block.input, dict) else {"raw": block.input}
                content.append(ToolUseBlock(id=block.id, name=block.name, input=tool_input))

        if response.stop_reason == "max_tokens":
            logger.warning("Anthropic response truncated at max_tokens")

        has_tool_use = any(isinstance(b, ToolUseBlock) for b in content)
        stop_reason = (
            StopReason.TOOL_USE
            if response.stop_reason == "tool_use" and has_tool_use
            else StopReason.END_TURN
        )
        return BackendResponse(stop_reason=stop_reason, content=content)


# ---------------------------------------------------------------------------
# OpenAI (chat completions)
# ---------------------------------------------------------------------------


class OpenAIBackend(ReasoningBackend):
    """
    OpenAI chat completions.

    Tool calls live in `tool_calls` with JSON-string arguments, tool results
    are separate `role: tool` messages and the system prompt is the first
    message.
    """

    provider = "openai"
    token_param = "max_completion_tokens"

    def __init__(
        self,
        default_model: str | None = None,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        client: Any = None,
    ) -> None:
        super().__init__(default_model)
        if client is None:
            api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ConfigError("OPENAI_API_KEY is required for the OpenAI backend.")
            client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        self._client = client

    # -- request ---------------------------------------------------------

    def _tools_to_native(self, tools: list[ToolSchema]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.input_schema,
                },
            }
            for t in tools
        ]

    def _assistant_to_native(self, message: Message) -> dict[str, Any]:
        if isinstance(message.content, str):
            return {"role": "assistant", "content": message.content}

        text_parts: list[str] = []
        tool_calls: list[dict[str, Any]] = []
        for block in message.content:
            if isinstance(block, TextBlock):
                text_parts.append(block.text)
            elif isinstance(block, ToolUseBlock):
                tool_calls.append({
                    "id": block.id,
                    "type": "function",
                    "function": {"name": block.name, "arguments": json.dumps(block.input)},
                })

        native: dict[str, Any] = {"role": "assistant", "content": "\n".join(text_parts) or None}
        if tool_calls:
            native["tool_calls"] = tool_calls
        return native

    def _user_to_native(self, message: Message) -> list[dict[str, Any]]:
        if isinstance(message.content, str):
            return [{"role": "user", "content": message.content}]

        native: list[dict[str, Any]] = []
        text_parts: list[str] = []
        for block in message.content:
            if isinstance(block, ToolResultBlock):
                native.append({
                    "role": "tool",
                    "tool_call_id": block.tool_use_id,
                    "content": _encode_outcome(block.content),
                })
            elif isinstance(block, TextBlock):
                text_parts.append(block.text)
        if text_parts:
            native.append({"role": "user", "content": "\n".join(text_parts)})
        return native

    def from_canonical(self, request: BackendRequest) -> dict[str, Any]:
        messages: list[dict[str, Any]] = []
        if request.system:
            messages.append({"role": "system", "content": request.system})
        for message in request.messages:
            if message.role == "assistant":
                messages.append(self._assistant_to_native(message))
            else:
                messages.extend(self._user_to_native(message))

        payload: dict[str, Any] = {
            "model": request.model,
            self.token_param: request.max_tokens,
            "messages": messages,
        }
        if request.tools:
            payload["tools"] = self._tools_to_native(request.tools)
        return payload

    async def _send(self, payload: dict[str, Any]) -> Any:
        try:
            return await self._client.chat.completions.create(**payload)
        except openai.APIStatusError as exc:
            raise BackendError(str(exc), provider=self.provider, status_code=exc.status_code) from exc
        except openai.APIError as exc:
            raise BackendError(str(exc), provider=self.provider) from exc

    # -- response --------------------------------------------------------

    @staticmethod
    def parse_arguments(arguments: str | None) -> dict[str, Any]:
        """
        Decode tool-call arguments without ever raising.

        Anything that is not a JSON object comes back as {"raw": arguments}
        so the executor sees the inconsistency instead of the turn failing.
        """
        if not arguments:
            return {}
        try:
            parsed = json.loads(arguments)
        except (json.JSONDecodeError, TypeError):
            return {"raw": arguments}
        if not isinstance(parsed, dict):
            return {"raw": arguments}
        return parsed

    def to_canonical(self, response: Any) -> BackendResponse:
        if not response.choices:
            raise BackendError("Response contained no choices.", provider=self.provider)
        choice = response.choices[0]
        message = choice.message

        content: list[ContentBlock] = []
        if message.content:
            content.append(TextBlock(text=message.content))
        for call in message.tool_calls or []:
            content.append(
                ToolUseBlock(
                    id=call.id,
                    name=call.function.name,
                    input=self.parse_arguments(call.function.arguments),
                )
            )

        if choice.finish_reason == "length":
            logger.warning("%s response truncated at the token limit", self.provider)

        # Some OpenAI-compatible servers report "stop" alongside tool calls,
        # so the presence of tool-use blocks decides as well.
        has_tool_use = any(isinstance(b, ToolUseBlock) for b in content)
        stop_reason = (
            StopReason.TOOL_USE
            if choice.finish_reason == "tool_calls" or has_tool_use
            else StopReason.END_TURN
        )
        return BackendResponse(stop_reason=stop_reason, content=content)


# ---------------------------------------------------------------------------
# Ollama (OpenAI-compatible endpoint)
# ---------------------------------------------------------------------------


class OllamaBackend(OpenAIBackend):
    """Local models served by Ollama through its OpenAI-compatible /v1 API."""

    provider = "ollama"
    token_param = "max_tokens"

    def __init__(
        self,
        default_model: str | None = None,
        *,
        base_url: str | None = None,
        client: Any = None,
    ) -> None:
        base_url = base_url or os.getenv("OLLAMA_BASE_URL") or DEFAULT_OLLAMA_BASE_URL
        if client is None:
            client = AsyncOpenAI(api_key="ollama", base_url=base_url)
        super().__init__(default_model, client=client)
        self.base_url = base_url


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_backend(provider: str, **options: Any) -> ReasoningBackend:
    """Construct the adapter for `provider`."""
    if provider == "anthropic":
        return AnthropicBackend(**options)
    if provider == "openai":
        return OpenAIBackend(**options)
    if provider == "ollama":
        return OllamaBackend(**options)
    raise ConfigError(
        f"Unknown backend provider '{provider}'. Valid providers: {', '.join(VALID_PROVIDERS)}"
    )
