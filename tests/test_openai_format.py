import json

import pytest

from yuanbao_proxy.messages import ErrorEvent, FinishEvent, MessageEvent, MessageKind
from yuanbao_proxy.openai_format import (
    ChatCompletionChunkEncoder,
    CompletionResult,
    IncompleteStreamError,
    build_completion_payload,
    collect_completion,
    error_payload,
)
from yuanbao_proxy.upstream import UpstreamStreamError, UpstreamTimeoutError


def _payload(frame: bytes):
    text = frame.decode("utf-8")
    assert text.startswith("data: ") and text.endswith("\n\n")
    body = text[len("data: "):-2]
    return body if body == "[DONE]" else json.loads(body)


async def _aiter(items):
    for item in items:
        yield item


def test_encoder_emits_openai_chunks():
    encoder = ChatCompletionChunkEncoder("deepseek-r1")
    frames = [encoder.start()]
    for event in [
        MessageEvent(kind=MessageKind.THINK, text="hmm"),
        MessageEvent(kind=MessageKind.MSG, text="你好"),
        FinishEvent(reason="stop"),
    ]:
        frames.extend(encoder.encode(event))

    payloads = [_payload(frame) for frame in frames]
    assert payloads[-1] == "[DONE]"
    chunks = payloads[:-1]
    assert {chunk["id"] for chunk in chunks} == {encoder.response_id}
    assert all(chunk["object"] == "chat.completion.chunk" for chunk in chunks)
    assert all(chunk["model"] == "deepseek-r1" for chunk in chunks)
    assert [chunk["choices"][0]["delta"] for chunk in chunks] == [
        {"role": "assistant"},
        {"reasoning_content": "hmm"},
        {"content": "你好"},
        {},
    ]
    assert chunks[-1]["choices"][0]["finish_reason"] == "stop"
    assert encoder.done


def test_encoder_error_event_has_no_done_marker():
    encoder = ChatCompletionChunkEncoder("deepseek-v3")
    error = UpstreamTimeoutError(status_code=None, message="upstream idle timeout")
    frames = encoder.encode(ErrorEvent(error=error))

    assert len(frames) == 1
    assert _payload(frames[0]) == {
        "error": {
            "type": "upstream_timeout",
            "status": None,
            "message": "upstream idle timeout",
        }
    }
    assert encoder.done
    assert encoder.encode(FinishEvent(reason="stop")) == []


def test_error_payload_for_plain_upstream_error():
    error = UpstreamStreamError(status_code=502, message="stream error", text="reset")
    assert error_payload(error)["error"] == {
        "type": "upstream_error",
        "status": 502,
        "message": "stream error: reset",
    }


@pytest.mark.asyncio
async def test_collect_completion_concatenates_text():
    result = await collect_completion(
        _aiter(
            [
                MessageEvent(kind=MessageKind.THINK, text="a"),
                MessageEvent(kind=MessageKind.MSG, text="Hel"),
                MessageEvent(kind=MessageKind.THINK, text="b"),
                MessageEvent(kind=MessageKind.MSG, text="lo"),
                FinishEvent(reason="length"),
            ]
        )
    )
    assert result == CompletionResult(content="Hello", reasoning="ab", finish_reason="length")


@pytest.mark.asyncio
async def test_collect_completion_without_finish_is_incomplete():
    with pytest.raises(IncompleteStreamError):
        await collect_completion(_aiter([MessageEvent(kind=MessageKind.MSG, text="x")]))


@pytest.mark.asyncio
async def test_collect_completion_raises_carried_error():
    error = UpstreamTimeoutError(status_code=None, message="upstream idle timeout")
    with pytest.raises(UpstreamTimeoutError):
        await collect_completion(_aiter([ErrorEvent(error=error)]))


def test_completion_payload():
    payload = build_completion_payload(
        CompletionResult(content="Hello", reasoning="", finish_reason="stop"),
        model="deepseek-v3",
    )
    assert payload["object"] == "chat.completion"
    assert payload["id"].startswith("chatcmpl-")
    assert payload["model"] == "deepseek-v3"
    assert payload["choices"] == [
        {
            "index": 0,
            "message": {"role": "assistant", "content": "Hello"},
            "finish_reason": "stop",
        }
    ]

    with_reasoning = build_completion_payload(
        CompletionResult(content="x", reasoning="why", finish_reason="stop"),
        model="deepseek-r1",
    )
    assert with_reasoning["choices"][0]["message"]["reasoning_content"] == "why"
