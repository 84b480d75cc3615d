import json

import httpx
import pytest

from yuanbao_proxy.messages import (
    ChatCompletionRequest,
    ChatMessage,
    ChatMessages,
    ChatModel,
    EmptyConversationError,
)
from yuanbao_proxy.settings import ConfigError
from yuanbao_proxy.upstream import (
    BROWSER_USER_AGENT,
    UpstreamStreamError,
    YuanbaoClient,
    build_request_body,
    build_upstream_headers,
)


def _request(*contents: str, model: ChatModel = ChatModel.DEEPSEEK_R1) -> ChatCompletionRequest:
    return ChatCompletionRequest(
        messages=ChatMessages(ChatMessage(role="user", content=c) for c in contents),
        chat_model=model,
    )


def test_identity_headers(settings):
    headers = build_upstream_headers(settings)
    assert headers == {
        "Cookie": "hy_source=web; hy_user=user-123; hy_token=token-abc",
        "Origin": "https://yuanbao.tencent.com",
        "Referer": "https://yuanbao.tencent.com/chat/naQivTmsDa",
        "X-Agentid": "naQivTmsDa",
        "User-Agent": BROWSER_USER_AGENT,
    }


@pytest.mark.parametrize(
    "overrides",
    [
        {"HY_TOKEN": "abc\r\nX-Injected: 1"},
        {"AGENT_ID": "agent\n"},
        {"HY_USER": "用户"},
    ],
)
def test_malformed_identity_is_a_config_error(make_settings, overrides):
    with pytest.raises(ConfigError):
        YuanbaoClient(make_settings(**overrides))


def test_request_body_shape():
    body = build_request_body(
        _request("hello", model=ChatModel.DEEPSEEK_V3),
        prompt="hello",
        agent_id="agent-1",
    )
    assert body == {
        "model": "gpt_175B_0404",
        "prompt": "hello",
        "plugin": "Adaptive",
        "displayPrompt": "hello",
        "displayPromptType": 1,
        "options": {
            "imageIntention": {
                "needIntentionModel": True,
                "backendUpdateFlag": 2,
                "intentionStatus": True,
            }
        },
        "multimedia": [],
        "agentId": "agent-1",
        "supportHint": 1,
        "version": "v2",
        "chatModelId": "deep_seek_v3",
    }


@pytest.mark.asyncio
async def test_start_completion_posts_to_conversation(settings, sse_body):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream; charset=utf-8"},
            content=sse_body({"type": "text", "msg": "hi"}),
        )

    client = YuanbaoClient(settings, transport=httpx.MockTransport(handler))
    try:
        stream = await client.start_completion(_request("hi", "there"))
        async with stream:
            events = [event async for event in stream.events()]
        assert stream.is_closed
    finally:
        await client.aclose()

    assert [e.data for e in events] == ['{"type": "text", "msg": "hi"}']
    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == "https://yuanbao.tencent.com/api/chat/conv-1"
    assert request.headers["accept"] == "text/event-stream"
    assert request.headers["x-agentid"] == "naQivTmsDa"
    assert request.headers["cookie"].startswith("hy_source=web; ")
    body = json.loads(request.content)
    assert body["prompt"] == "#[user]\nhi\n\n#[user]\nthere\n\n"
    assert body["chatModelId"] == "deep_seek"
    assert body["agentId"] == "naQivTmsDa"


@pytest.mark.asyncio
async def test_explicit_conversation_id_overrides_configured_one(settings, sse_body):
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(
            200, headers={"content-type": "text/event-stream"}, content=sse_body()
        )

    client = YuanbaoClient(settings, transport=httpx.MockTransport(handler))
    try:
        stream = await client.start_completion(_request("x"), conversation_id="other")
        await stream.aclose()
    finally:
        await client.aclose()
    assert seen == ["/api/chat/other"]


@pytest.mark.asyncio
async def test_empty_messages_fail_before_any_http_call(settings):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200)

    client = YuanbaoClient(settings, transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(EmptyConversationError):
            await client.start_completion(_request())
    finally:
        await client.aclose()
    assert calls == []


@pytest.mark.asyncio
async def test_http_error_status_cannot_open_stream(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"msg": "login required"})

    client = YuanbaoClient(settings, transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(UpstreamStreamError) as excinfo:
            await client.start_completion(_request("hi"))
    finally:
        await client.aclose()

    assert excinfo.value.status_code == 401
    assert "login required" in excinfo.value.text


@pytest.mark.asyncio
async def test_connect_error_cannot_open_stream(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = YuanbaoClient(settings, transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(UpstreamStreamError) as excinfo:
            await client.start_completion(_request("hi"))
    finally:
        await client.aclose()

    assert excinfo.value.status_code is None
    assert "connection refused" in str(excinfo.value)


@pytest.mark.asyncio
async def test_non_event_stream_response_is_rejected(settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": True})

    client = YuanbaoClient(settings, transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(UpstreamStreamError, match="unexpected content type"):
            await client.start_completion(_request("hi"))
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_conversation_id_is_the_configured_one(settings):
    client = YuanbaoClient(settings, transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    try:
        assert await client.conversation_id() == "conv-1"
    finally:
        await client.aclose()


@pytest.mark.asyncio
async def test_bad_retry_field_does_not_break_the_stream(settings, sse_body):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            headers={"content-type": "text/event-stream"},
            content=b"retry: \xc2\xb2\n" + sse_body({"type": "text", "msg": "ok"}),
        )

    client = YuanbaoClient(settings, transport=httpx.MockTransport(handler))
    try:
        async with await client.start_completion(_request("hi")) as stream:
            events = [event async for event in stream.events()]
    finally:
        await client.aclose()

    assert [e.data for e in events] == ['{"type": "text", "msg": "ok"}']
    assert events[0].retry is None
