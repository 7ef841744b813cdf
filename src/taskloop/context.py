# context.py
# Bounded conversation history with summarizing compression.
#
# When estimated usage crosses the trigger, everything but the newest
# `min_messages_to_keep` messages is summarized by one backend call and the
# result is appended to the running summary. The summary only ever grows.

import json
import logging

from taskloop import tokens
from taskloop.backends import ReasoningBackend
from taskloop.events import EventBus, EventType
from taskloop.models import Message

logger = logging.getLogger(__name__)

# Headroom kept free for the system prompt and the next response.
BUDGET_FACTOR = 0.75

SUMMARY_PROMPT = """\
Summarize this conversation, preserving key facts, decisions, and any research/content produced:

{transcript}

CONCISE SUMMARY:"""


class ContextManager:
    def __init__(
        self,
        backend: ReasoningBackend,
        *,
        model: str | None = None,
        max_tokens: int = 16000,
        compression_trigger: float = 0.7,
        min_messages_to_keep: int = 6,
        summary_max_tokens: int = 500,
        preview_chars: int = 300,
        events: EventBus | None = None,
    ) -> None:
        self.backend = backend
        self.model = model
        self.max_tokens = max_tokens
        self.compression_trigger = compression_trigger
        self.min_messages_to_keep = min_messages_to_keep
        self.summary_max_tokens = summary_max_tokens
        self.preview_chars = preview_chars
        self.events = events
        self.messages: list[Message] = []
        self.summary: str | None = None

    @property
    def utilization(self) -> float:
        summary_tokens = tokens.estimate(self.summary) if self.summary else 0
        message_tokens = tokens.estimate_messages(self.messages)
        return (summary_tokens + message_tokens) / (self.max_tokens * BUDGET_FACTOR)

    async def add_message(self, message: Message) -> None:
        self.messages.append(message)
        if self.utilization > self.compression_trigger:
            await self.compress()

    def _render(self, message: Message) -> str:
        if isinstance(message.content, str):
            content = message.content
        else:
            content = json.dumps(
                [block.model_dump() for block in message.content], default=str, ensure_ascii=False
            )
        preview = content[: self.preview_chars]
        if len(content) > self.preview_chars:
            preview += "..."
        return f"{message.role}: {preview}"

    async def compress(self) -> None:
        """Fold the older messages into the running summary. One pass only."""
        if len(self.messages) <= self.min_messages_to_keep:
            return

        # The kept suffix must open with a user turn so roles keep
        # alternating after the summary exchange.
        split = len(self.messages) - self.min_messages_to_keep
        while split > 0 and self.messages[split].role != "user":
            split -= 1
        if split == 0:
            return

        older, kept = self.messages[:split], self.messages[split:]
        transcript = "\n\n".join(self._render(m) for m in older)

        response = await self.backend.create_message(
            model=self.model,
            max_tokens=self.summary_max_tokens,
            messages=[Message(role="user", content=SUMMARY_PROMPT.format(transcript=transcript))],
        )
        increment = response.text.strip()

        self.summary = f"{self.summary}\n\nLater: {increment}" if self.summary else increment
        self.messages = kept

        logger.info("Context compressed: %d messages summarized, %d kept", len(older), len(kept))
        if self.events is not None:
            self.events.emit(
                EventType.CONTEXT_COMPRESSED,
                {"compressed": len(older), "kept": len(kept), "utilization": self.utilization},
            )

    def get_messages(self) -> list[Message]:
        """Summary exchange (when present) followed by the live buffer, as fresh copies."""
        result: list[Message] = []
        if self.summary:
            result.append(Message(role="user", content=f"[Previous context: {self.summary}]"))
            result.append(Message(role="assistant", content="I have the context. Continuing."))
        result.extend(m.model_copy(deep=True) for m in self.messages)
        return result

    def clear(self) -> None:
        self.messages = []
        self.summary = None
