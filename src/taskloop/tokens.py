# tokens.py
# Approximate token counting.
#
# Not a real tokenizer. Blends a word-based and a character-based estimate
# into a stable, monotonic "how full is the window" proxy.

import json
import math
from typing import Any

from taskloop.models import Message, TextBlock, ToolResultBlock, ToolUseBlock

MESSAGE_OVERHEAD = 4
BLOCK_OVERHEAD = 4


def _as_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content, default=str, ensure_ascii=False)


def estimate(content: Any) -> int:
    """Estimate tokens for a string (or the JSON dump of anything else)."""
    text = _as_text(content)
    words = len(text.split())
    return math.ceil((words * 1.3 + len(text) / 4) / 2)


def _block_tokens(block: Any) -> int:
    if isinstance(block, TextBlock):
        return BLOCK_OVERHEAD + estimate(block.text)
    if isinstance(block, ToolResultBlock):
        return BLOCK_OVERHEAD + estimate(block.content if block.content is not None else "")
    if isinstance(block, ToolUseBlock):
        return BLOCK_OVERHEAD + estimate(block.input)
    return BLOCK_OVERHEAD + estimate(block)


def estimate_messages(messages: list[Message]) -> int:
    total = 0
    for message in messages:
        total += MESSAGE_OVERHEAD
        if isinstance(message.content, str):
            total += estimate(message.content)
        else:
            total += sum(_block_tokens(block) for block in message.content)
    return total
