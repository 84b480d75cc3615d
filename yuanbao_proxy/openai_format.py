"""
OpenAI chat.completions wire format for translated Yuanbao events.

ChatCompletionChunkEncoder turns the event channel into
`chat.completion.chunk` SSE frames; collect_completion() and
build_completion_payload() produce the buffered `chat.completion` object.
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import AsyncIterable
from dataclasses import dataclass
from typing import Any

from .messages import (
    ChatCompletionEvent,
    ErrorEvent,
    FinishEvent,
    MessageEvent,
    MessageKind,
)
from .upstream import UpstreamStreamError, UpstreamTimeoutError


class IncompleteStreamError(Exception):
    """The event channel closed before a FinishEvent was received."""


def encode_openai_sse_event(payload: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def encode_openai_done() -> bytes:
    return b"data: [DONE]\n\n"


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex}"


def error_payload(error: Exception) -> dict[str, Any]:
    error_type = "upstream_error"
    status = None
    if isinstance(error, UpstreamTimeoutError):
        error_type = "upstream_timeout"
    if isinstance(error, UpstreamStreamError):
        status = error.status_code
    return {
        "error": {
            "type": error_type,
            "status": status,
            "message": str(error),
        }
    }


class ChatCompletionChunkEncoder:
    """
    Encode ChatCompletionEvents as OpenAI chat.completion.chunk SSE frames.

    Thinking text goes to `delta.reasoning_content` (the DeepSeek
    convention most OpenAI clients understand), answer text to
    `delta.content`. A FinishEvent produces the finish chunk plus
    `[DONE]`; an ErrorEvent produces one error frame and no `[DONE]`.
    """

    def __init__(self, model: str) -> None:
        self.model = model
        self.response_id = new_completion_id()
        self.created = int(time.time())
        self.finished = False
        self.failed = False

    @property
    def done(self) -> bool:
        return self.finished or self.failed

    def _chunk(self, delta: dict[str, Any], finish_reason: str | None = None) -> bytes:
        return encode_openai_sse_event(
            {
                "id": self.response_id,
                "object": "chat.completion.chunk",
                "created": self.created,
                "model": self.model,
                "choices": [
                    {"index": 0, "delta": delta, "finish_reason": finish_reason}
                ],
            }
        )

    def start(self) -> bytes:
        return self._chunk({"role": "assistant"})

    def encode(self, event: ChatCompletionEvent) -> list[bytes]:
        if self.done:
            return []
        if isinstance(event, MessageEvent):
            field = "reasoning_content" if event.kind is MessageKind.THINK else "content"
            return [self._chunk({field: event.text})]
        if isinstance(event, FinishEvent):
            self.finished = True
            return [self._chunk({}, finish_reason=event.reason), encode_openai_done()]
        if isinstance(event, ErrorEvent):
            self.failed = True
            return [encode_openai_sse_event(error_payload(event.error))]
        return []


@dataclass(frozen=True)
class CompletionResult:
    content: str
    reasoning: str
    finish_reason: str


async def collect_completion(
    events: AsyncIterable[ChatCompletionEvent],
) -> CompletionResult:
    """
    Buffer a whole completion.

    Raises the carried error for an ErrorEvent, and IncompleteStreamError
    when the channel closes without a FinishEvent.
    """
    content: list[str] = []
    reasoning: list[str] = []
    async for event in events:
        if isinstance(event, MessageEvent):
            if event.kind is MessageKind.THINK:
                reasoning.append(event.text)
            else:
                content.append(event.text)
        elif isinstance(event, FinishEvent):
            return CompletionResult(
                content="".join(content),
                reasoning="".join(reasoning),
                finish_reason=event.reason,
            )
        elif isinstance(event, ErrorEvent):
            raise event.error
    raise IncompleteStreamError("upstream stream ended without a finish event")


def build_completion_payload(result: CompletionResult, *, model: str) -> dict[str, Any]:
    message: dict[str, Any] = {"role": "assistant", "content": result.content}
    if result.reasoning:
        message["reasoning_content"] = result.reasoning
    return {
        "id": new_completion_id(),
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": message,
                "finish_reason": result.finish_reason,
            }
        ],
        # The upstream does not report token usage.
        "usage": {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
    }


__all__ = [
    "ChatCompletionChunkEncoder",
    "CompletionResult",
    "IncompleteStreamError",
    "build_completion_payload",
    "collect_completion",
    "encode_openai_done",
    "encode_openai_sse_event",
    "error_payload",
]
