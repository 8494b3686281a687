"""Data-stream wire encoding of chat events, plus word-chunk smoothing of text."""

import asyncio
import json
import re
from typing import Any, AsyncGenerator, AsyncIterator, Optional

from ..models.chat import (
    Finish,
    ReasoningDelta,
    StepStart,
    StreamError,
    StreamEvent,
    TextDelta,
    ToolCall,
    ToolResult,
)
from .error_handler import user_facing_message

WORD_CHUNK = re.compile(r"\s*\S+\s+")


def _part(code: str, value: Any) -> str:
    return f"{code}:{json.dumps(value, ensure_ascii=False, separators=(',', ':'))}\n"


def encode_event(event: StreamEvent) -> Optional[str]:
    """Encode one event as a data-stream line; raw error text is never sent."""
    if isinstance(event, TextDelta):
        return _part("0", event.text)
    if isinstance(event, ReasoningDelta):
        return _part("g", event.text)
    if isinstance(event, StepStart):
        return _part("f", {"messageId": event.message_id})
    if isinstance(event, ToolCall):
        return _part("9", {"toolCallId": event.tool_call_id, "toolName": event.tool_name, "args": event.args})
    if isinstance(event, ToolResult):
        return _part("a", {"toolCallId": event.tool_call_id, "result": event.output.model_dump()})
    if isinstance(event, StreamError):
        return _part("3", user_facing_message(event.error))
    if isinstance(event, Finish):
        return _part("d", {"finishReason": event.finish_reason, "usage": event.usage})
    return None


async def smooth_stream(events: AsyncGenerator[StreamEvent, None], delay_ms: int = 50) -> AsyncIterator[StreamEvent]:
    """Re-chunk text deltas into whole words, pausing between chunks.

    Any non-text event flushes buffered text first, so ordering is preserved.
    """
    buffer = ""
    try:
        async for event in events:
            if not isinstance(event, TextDelta):
                if buffer:
                    yield TextDelta(text=buffer)
                    buffer = ""
                yield event
                continue
            buffer += event.text
            while True:
                match = WORD_CHUNK.match(buffer)
                if match is None:
                    break
                chunk = match.group(0)
                buffer = buffer[len(chunk):]
                yield TextDelta(text=chunk)
                if delay_ms > 0:
                    await asyncio.sleep(delay_ms / 1000)
        if buffer:
            yield TextDelta(text=buffer)
    finally:
        await events.aclose()
