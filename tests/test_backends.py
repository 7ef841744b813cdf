import json

import httpx
import openai
import pytest
from anthropic.types import Message as AnthropicMessage
from openai.types.chat import ChatCompletion
from unittest.mock import AsyncMock, MagicMock

from taskloop.backends import (
    DEFAULT_OLLAMA_BASE_URL,
    AnthropicBackend,
    BackendRequest,
    OllamaBackend,
    OpenAIBackend,
    create_backend,
)
from taskloop.errors import BackendError, ConfigError
from taskloop.models import (
    Message,
    StopReason,
    TextBlock,
    ToolResultBlock,
    ToolSchema,
    ToolUseBlock,
)

SEARCH = ToolSchema(
    name="web_search",
    description="Search the web",
    input_schema={"type": "object", "properties": {"query": {"type": "string"}}, "required": ["query"]},
)

CONVERSATION = [
    Message(role="user", content="Execute step 1: Search"),
    Message(
        role="assistant",
        content=[
            TextBlock(text="Searching now."),
            ToolUseBlock(id="call_1", name="web_search", input={"query": "paris"}),
        ],
    ),
    Message(role="user", content=[ToolResultBlock(tool_use_id="call_1", content={"result_count": 0})]),
]


def _request(**overrides) -> BackendRequest:
    fields = {"model": "m", "max_tokens": 100, "system": "be brief", "tools": [SEARCH], "messages": CONVERSATION}
    fields.update(overrides)
    return BackendRequest(**fields)


def _completion(message: dict, finish_reason: str) -> ChatCompletion:
    return ChatCompletion.model_validate({
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "gpt-4o",
        "choices": [{"index": 0, "finish_reason": finish_reason, "message": {"role": "assistant", **message}}],
    })


def _anthropic_message(content: list[dict], stop_reason: str) -> AnthropicMessage:
    return AnthropicMessage.model_validate({
        "id": "msg_1",
        "type": "message",
        "role": "assistant",
        "model": "claude",
        "content": content,
        "stop_reason": stop_reason,
        "stop_sequence": None,
        "usage": {"input_tokens": 1, "output_tokens": 1},
    })


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

def test_anthropic_request_shape():
    payload = AnthropicBackend(client=MagicMock()).from_canonical(_request())

    assert payload["system"] == "be brief"
    assert payload["max_tokens"] == 100
    assert payload["tools"][0]["input_schema"]["required"] == ["query"]
    assert payload["messages"][0] == {"role": "user", "content": "Execute step 1: Search"}
    assert payload["messages"][1]["content"][1] == {
        "type": "tool_use", "id": "call_1", "name": "web_search", "input": {"query": "paris"},
    }
    result = payload["messages"][2]["content"][0]
    assert result["type"] == "tool_result"
    assert json.loads(result["content"]) == {"result_count": 0}


def test_anthropic_request_omits_empty_system_and_tools():
    payload = AnthropicBackend(client=MagicMock()).from_canonical(_request(system=None, tools=[]))
    assert "system" not in payload
    assert "tools" not in payload


def test_anthropic_response_tool_use():
    backend = AnthropicBackend(client=MagicMock())
    response = backend.to_canonical(_anthropic_message(
        [
            {"type": "text", "text": "Let me look."},
            {"type": "tool_use", "id": "toolu_1", "name": "web_search", "input": {"query": "paris"}},
        ],
        "tool_use",
    ))
    assert response.stop_reason is StopReason.TOOL_USE
    assert response.text == "Let me look."
    assert response.tool_uses[0].input == {"query": "paris"}


def test_anthropic_response_end_turn():
    backend = AnthropicBackend(client=MagicMock())
    response = backend.to_canonical(_anthropic_message([{"type": "text", "text": "Done."}], "end_turn"))
    assert response.stop_reason is StopReason.END_TURN
    assert response.tool_uses == []


@pytest.mark.asyncio
async def test_anthropic_create_message_round_trip():
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=_anthropic_message([{"type": "text", "text": "hi"}], "end_turn"))
    backend = AnthropicBackend("claude-test", client=client)

    response = await backend.create_message(max_tokens=50, messages=[Message(role="user", content="hello")])

    assert response.text == "hi"
    kwargs = client.messages.create.await_args.kwargs
    assert kwargs["model"] == "claude-test"
    assert kwargs["max_tokens"] == 50


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------

def test_openai_requires_key_without_client(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ConfigError, match="OPENAI_API_KEY"):
        OpenAIBackend()


def test_openai_request_shape():
    payload = OpenAIBackend(client=MagicMock()).from_canonical(_request())
    messages = payload["messages"]

    assert payload["max_completion_tokens"] == 100
    assert payload["tools"][0]["function"]["parameters"] == SEARCH.input_schema
    assert messages[0] == {"role": "system", "content": "be brief"}
    assert messages[1] == {"role": "user", "content": "Execute step 1: Search"}
    assert messages[2]["content"] == "Searching now."
    call = messages[2]["tool_calls"][0]
    assert call["id"] == "call_1"
    assert json.loads(call["function"]["arguments"]) == {"query": "paris"}
    assert messages[3]["role"] == "tool"
    assert messages[3]["tool_call_id"] == "call_1"
    assert json.loads(messages[3]["content"]) == {"result_count": 0}


def test_openai_response_tool_calls():
    backend = OpenAIBackend(client=MagicMock())
    response = backend.to_canonical(_completion(
        {
            "content": None,
            "tool_calls": [{
                "id": "call_9",
                "type": "function",
                "function": {"name": "web_search", "arguments": '{"query": "paris"}'},
            }],
        },
        "tool_calls",
    ))
    assert response.stop_reason is StopReason.TOOL_USE
    assert response.tool_uses[0].id == "call_9"
    assert response.tool_uses[0].input == {"query": "paris"}


def test_openai_response_tool_calls_with_stop_finish_reason():
    backend = OpenAIBackend(client=MagicMock())
    response = backend.to_canonical(_completion(
        {
            "content": "calling",
            "tool_calls": [{"id": "c", "type": "function", "function": {"name": "think", "arguments": "{}"}}],
        },
        "stop",
    ))
    assert response.stop_reason is StopReason.TOOL_USE


def test_openai_response_text():
    backend = OpenAIBackend(client=MagicMock())
    response = backend.to_canonical(_completion({"content": "All done."}, "stop"))
    assert response.stop_reason is StopReason.END_TURN
    assert response.text == "All done."


def test_openai_parse_arguments_never_raises():
    assert OpenAIBackend.parse_arguments("") == {}
    assert OpenAIBackend.parse_arguments(None) == {}
    assert OpenAIBackend.parse_arguments('{"a": 1}') == {"a": 1}
    assert OpenAIBackend.parse_arguments("{oops") == {"raw": "{oops"}
    assert OpenAIBackend.parse_arguments("[1]") == {"raw": "[1]"}


def test_openai_response_without_choices():
    backend = OpenAIBackend(client=MagicMock())
    with pytest.raises(BackendError):
        backend.to_canonical(MagicMock(choices=[]))


@pytest.mark.asyncio
async def test_openai_sdk_errors_are_normalized():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        side_effect=openai.APIConnectionError(request=httpx.Request("POST", "https://api.example.com"))
    )
    backend = OpenAIBackend(client=client)

    with pytest.raises(BackendError) as exc_info:
        await backend.create_message(max_tokens=10, messages=[Message(role="user", content="hi")])

    assert exc_info.value.provider == "openai"
    assert exc_info.value.status_code is None


# ---------------------------------------------------------------------------
# Ollama and factory
# ---------------------------------------------------------------------------

def test_ollama_uses_max_tokens_and_default_url(monkeypatch):
    monkeypatch.delenv("OLLAMA_BASE_URL", raising=False)
    backend = OllamaBackend(client=MagicMock())
    payload = backend.from_canonical(_request())
    assert "max_tokens" in payload
    assert "max_completion_tokens" not in payload
    assert backend.base_url == DEFAULT_OLLAMA_BASE_URL
    assert backend.default_model == "llama3.2"


def test_create_backend_dispatches():
    assert isinstance(create_backend("anthropic", client=MagicMock()), AnthropicBackend)
    assert isinstance(create_backend("ollama", client=MagicMock()), OllamaBackend)


def test_create_backend_rejects_unknown_provider():
    with pytest.raises(ConfigError, match="Unknown backend provider 'gemini'"):
        create_backend("gemini")
