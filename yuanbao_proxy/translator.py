"""
Yuanbao SSE frame classification.

Every `message` event from the upstream carries a JSON object with a `type`
discriminator. Only three shapes matter:

- {"type": "think", "content": "..."}   reasoning text (R1 models)
- {"type": "text", "msg": "..."}        answer text
- anything else                         control frames; some carry `stopReason`

decode_frame() turns the payload into a closed set of frame types, and
translate_events() drives the per-request loop that pushes the resulting
ChatCompletionEvents onto the consumer's channel.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Optional, Union

import anyio
import httpx
from anyio.streams.memory import MemoryObjectSendStream

from .logging_config import logger
from .messages import (
    ChatCompletionEvent,
    ErrorEvent,
    FinishEvent,
    MessageEvent,
    MessageKind,
)
from .sse import DEFAULT_EVENT_NAME, ServerSentEvent
from .upstream import UpstreamStreamError, UpstreamTimeoutError

DEFAULT_FINISH_REASON = "stop"


@dataclass(frozen=True)
class ThinkFrame:
    content: str


@dataclass(frozen=True)
class TextFrame:
    msg: str


@dataclass(frozen=True)
class ControlFrame:
    type: str
    stop_reason: str


UpstreamFrame = Union[ThinkFrame, TextFrame, ControlFrame]


def _str_field(payload: dict[str, Any], name: str) -> str:
    value = payload.get(name)
    return value if isinstance(value, str) else ""


def decode_frame(data: str) -> Optional[UpstreamFrame]:
    """
    Decode one `message` payload; None when it is not valid JSON.

    Yuanbao interleaves non-JSON markers (e.g. "[DONE]") with the JSON
    frames, so a decode failure is expected and only means "skip".
    """
    try:
        payload = json.loads(data)
    except (json.JSONDecodeError, TypeError):
        return None

    if not isinstance(payload, dict):
        return ControlFrame(type="", stop_reason="")

    frame_type = _str_field(payload, "type")
    if frame_type == "think":
        return ThinkFrame(content=_str_field(payload, "content"))
    if frame_type == "text":
        return TextFrame(msg=_str_field(payload, "msg"))
    return ControlFrame(type=frame_type, stop_reason=_str_field(payload, "stopReason"))


def _consumer_gone(sender: MemoryObjectSendStream[ChatCompletionEvent]) -> bool:
    return sender.statistics().open_receive_streams == 0


async def translate_events(
    events: AsyncIterator[ServerSentEvent],
    sender: MemoryObjectSendStream[ChatCompletionEvent],
) -> None:
    """
    Classify upstream events and push them to `sender` until the stream ends.

    - clean end: one FinishEvent with the last stopReason seen ("stop" if none);
    - transport error: the channel is closed without FinishEvent and
      UpstreamStreamError is raised;
    - idle timeout: an ErrorEvent is sent first, then as above;
    - receiver closed: stop reading and return.

    The channel is always closed on return.
    """
    finish_reason = DEFAULT_FINISH_REASON
    frame_count = 0

    async with sender:
        try:
            async for event in events:
                if _consumer_gone(sender):
                    logger.info("translate_events: consumer gone, stopping upstream read")
                    return

                if event.event != DEFAULT_EVENT_NAME:
                    continue

                frame = decode_frame(event.data)
                if frame is None:
                    logger.debug("translate_events: skipping non-JSON frame %r", event.data[:200])
                    continue

                frame_count += 1
                if frame_count == 1:
                    logger.debug("translate_events: received first frame")

                if isinstance(frame, ThinkFrame):
                    if not frame.content:
                        continue
                    await sender.send(MessageEvent(kind=MessageKind.THINK, text=frame.content))
                elif isinstance(frame, TextFrame):
                    await sender.send(MessageEvent(kind=MessageKind.MSG, text=frame.msg))
                else:
                    if frame.stop_reason:
                        finish_reason = frame.stop_reason
                    logger.debug(
                        "translate_events: control frame type=%r stopReason=%r",
                        frame.type,
                        frame.stop_reason,
                    )

            logger.info(
                "translate_events: stream ended (frames=%d, finish_reason=%s)",
                frame_count,
                finish_reason,
            )
            await sender.send(FinishEvent(reason=finish_reason))
        except anyio.BrokenResourceError:
            logger.info("translate_events: consumer gone, stopping upstream read")
        except httpx.TimeoutException as exc:
            error = UpstreamTimeoutError(
                status_code=None,
                message="upstream idle timeout",
                text=str(exc),
            )
            with suppress(anyio.BrokenResourceError):
                await sender.send(ErrorEvent(error=error))
            raise error from exc
        except httpx.HTTPError as exc:
            raise UpstreamStreamError(
                status_code=None,
                message="stream error",
                text=str(exc) or type(exc).__name__,
            ) from exc


__all__ = [
    "ControlFrame",
    "DEFAULT_FINISH_REASON",
    "TextFrame",
    "ThinkFrame",
    "UpstreamFrame",
    "decode_frame",
    "translate_events",
]
