"""
OpenAI chat.completions wire encoding for reconciled reply events.

- answer   -> delta.content
- thinking -> delta.reasoning_content
- replace  -> delta.content prefixed with REPLACE_MARKER; clients swap the
  whole answer for the text that follows
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import AsyncIterable
from typing import Any

from .reconciler import StreamEvent

REPLACE_MARKER = "__REPLACE__"


def encode_openai_sse_event(payload: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def encode_openai_done() -> bytes:
    return b"data: [DONE]\n\n"


class ChunkEncoder:
    def __init__(self, model: str) -> None:
        self.model = model
        self.response_id = f"chatcmpl-{uuid.uuid4().hex}"
        self.created = int(time.time())

    def _chunk(self, delta: dict[str, Any], finish_reason: str | None = None) -> bytes:
        return encode_openai_sse_event(
            {
                "id": self.response_id,
                "object": "chat.completion.chunk",
                "created": self.created,
                "model": self.model,
                "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
            }
        )

    def event(self, event: StreamEvent) -> bytes:
        if event.kind == "thinking":
            return self._chunk({"reasoning_content": event.text})
        if event.kind == "replace":
            return self._chunk({"content": REPLACE_MARKER + event.text})
        return self._chunk({"content": event.text})

    def finish(self) -> bytes:
        return self._chunk({}, finish_reason="stop")

    def error(self, payload: dict[str, Any]) -> bytes:
        return encode_openai_sse_event(payload)

    def done(self) -> bytes:
        return encode_openai_done()


async def collect_completion(events: AsyncIterable[StreamEvent], model: str) -> dict[str, Any]:
    """
    Fold an event stream into one non-streaming chat.completion object.
    """
    answer = ""
    thinking = ""
    async for event in events:
        if event.kind == "thinking":
            thinking += event.text
        elif event.kind == "replace":
            answer = event.text
        else:
            answer += event.text

    message: dict[str, Any] = {"role": "assistant", "content": answer}
    if thinking:
        message["reasoning_content"] = thinking
    return {
        "id": f"chatcmpl-{uuid.uuid4().hex}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [{"index": 0, "message": message, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
    }


__all__ = [
    "REPLACE_MARKER",
    "ChunkEncoder",
    "collect_completion",
    "encode_openai_done",
    "encode_openai_sse_event",
]
