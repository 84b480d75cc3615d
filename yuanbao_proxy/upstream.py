import json
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from .log_sanitizer import sanitize_headers_for_log
from .logging_config import logger
from .messages import ChatCompletionRequest
from .settings import ConfigError, Settings
from .sse import ServerSentEvent, SSEDecoder


YUANBAO_ORIGIN = "https://yuanbao.tencent.com"
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/134.0.0.0 Safari/537.36"
)

# Fixed protocol fields of the Yuanbao web client.
UPSTREAM_MODEL_FAMILY = "gpt_175B_0404"
UPSTREAM_PLUGIN = "Adaptive"
UPSTREAM_API_VERSION = "v2"


class UpstreamStreamError(Exception):
    """
    Raised when the upstream SSE stream cannot be opened, or breaks while
    it is being consumed.

    status_code is the upstream HTTP status when one was received.
    """

    def __init__(
        self,
        *,
        status_code: Optional[int],
        message: str,
        text: str = "",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.text = text

    def __str__(self) -> str:
        if self.text:
            return f"{self.message}: {self.text}"
        return self.message


class UpstreamTimeoutError(UpstreamStreamError):
    """No upstream data arrived within the configured idle timeout."""


def _check_header_value(name: str, value: str) -> str:
    if any(ch in value for ch in ("\r", "\n", "\0")):
        raise ConfigError(f"header {name!r} contains a control character")
    try:
        value.encode("latin-1")
    except UnicodeEncodeError as exc:
        raise ConfigError(f"header {name!r} is not latin-1 encodable") from exc
    return value


def build_upstream_headers(settings: Settings) -> Dict[str, str]:
    """
    Build the fixed identity headers sent with every upstream request.

    Yuanbao checks the session cookie and does some light browser
    fingerprinting, so the request has to look like its web client.
    Malformed values raise ConfigError; this runs once at start-up.
    """
    headers: Dict[str, str] = {
        "Cookie": (
            f"hy_source=web; hy_user={settings.hy_user}; hy_token={settings.hy_token}"
        ),
        "Origin": YUANBAO_ORIGIN,
        "Referer": f"{YUANBAO_ORIGIN}/chat/{settings.agent_id}",
        "X-Agentid": settings.agent_id,
        "User-Agent": BROWSER_USER_AGENT,
    }
    return {name: _check_header_value(name, value) for name, value in headers.items()}


def build_request_body(
    request: ChatCompletionRequest, *, prompt: str, agent_id: str
) -> Dict[str, Any]:
    return {
        "model": UPSTREAM_MODEL_FAMILY,
        "prompt": prompt,
        "plugin": UPSTREAM_PLUGIN,
        "displayPrompt": prompt,
        "displayPromptType": 1,
        "options": {
            "imageIntention": {
                "needIntentionModel": True,
                "backendUpdateFlag": 2,
                "intentionStatus": True,
            }
        },
        "multimedia": [],
        "agentId": agent_id,
        "supportHint": 1,
        "version": UPSTREAM_API_VERSION,
        "chatModelId": request.chat_model.upstream_id,
    }


class UpstreamEventStream:
    """
    A live upstream SSE response.

    Nothing is read until events() is iterated. The owner must call
    aclose() (or use it as an async context manager) to release the
    connection.
    """

    def __init__(self, response: httpx.Response, *, url: str) -> None:
        self._response = response
        self.url = url
        self.status_code = response.status_code

    async def __aenter__(self) -> "UpstreamEventStream":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    @property
    def is_closed(self) -> bool:
        return self._response.is_closed

    async def events(self) -> AsyncIterator[ServerSentEvent]:
        decoder = SSEDecoder()
        async for line in self._response.aiter_lines():
            event = decoder.decode(line)
            if event is not None:
                yield event
        # A final event without its blank line terminator is discarded.

    async def aclose(self) -> None:
        await self._response.aclose()


class YuanbaoClient:
    """
    Owns the outbound HTTP identity and turns completion requests into
    live upstream SSE streams.

    One instance (and one httpx.AsyncClient) is shared by every request;
    nothing on it is mutated after construction.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._headers = build_upstream_headers(settings)
        self._client = httpx.AsyncClient(
            base_url=settings.upstream_base_url,
            headers=self._headers,
            timeout=httpx.Timeout(
                settings.upstream_idle_timeout,
                connect=settings.upstream_connect_timeout,
            ),
            transport=transport,
        )
        logger.info(
            "YuanbaoClient ready: base_url=%s agent_id=%s headers=%s",
            settings.upstream_base_url,
            settings.agent_id,
            sanitize_headers_for_log(self._headers),
        )

    async def conversation_id(self) -> str:
        # Conversations are not created per request; the configured one is reused.
        return self._settings.conversation_id

    async def start_completion(
        self,
        request: ChatCompletionRequest,
        *,
        conversation_id: Optional[str] = None,
    ) -> UpstreamEventStream:
        """
        Open the upstream SSE stream for one completion.

        Raises EmptyConversationError before any I/O when there is nothing
        to send, and UpstreamStreamError when the stream cannot be opened
        (transport failure, HTTP error status, non-SSE response).
        """
        if conversation_id is None:
            conversation_id = await self.conversation_id()

        prompt = request.messages.render()
        body = build_request_body(request, prompt=prompt, agent_id=self._settings.agent_id)
        url = f"/api/chat/{conversation_id}"

        logger.info(
            "start_completion: opening POST %s (model=%s, messages=%d, prompt_chars=%d)",
            url,
            request.chat_model.public_name,
            len(request.messages),
            len(prompt),
        )

        upstream_request = self._client.build_request(
            "POST",
            url,
            json=body,
            headers={"Accept": "text/event-stream"},
        )
        try:
            response = await self._client.send(upstream_request, stream=True)
        except httpx.HTTPError as exc:
            logger.warning("Upstream transport error while opening %s: %s", url, exc)
            raise UpstreamStreamError(
                status_code=None,
                message="cannot open stream",
                text=str(exc),
            ) from exc

        if response.status_code >= 400:
            text = await self._read_error_body(response)
            try:
                payload_str = json.dumps(body, ensure_ascii=False)
            except TypeError:
                payload_str = repr(body)
            logger.warning(
                "Upstream HTTP error %s for %s; payload=%s; response=%s",
                response.status_code,
                url,
                payload_str,
                text,
            )
            raise UpstreamStreamError(
                status_code=response.status_code,
                message=f"cannot open stream: upstream HTTP {response.status_code}",
                text=text,
            )

        content_type = response.headers.get("content-type", "")
        if not content_type.strip().lower().startswith("text/event-stream"):
            await response.aclose()
            logger.warning(
                "Upstream %s answered with content-type %r instead of an event stream",
                url,
                content_type,
            )
            raise UpstreamStreamError(
                status_code=response.status_code,
                message="cannot open stream: unexpected content type",
                text=content_type,
            )

        logger.info(
            "start_completion: connected to upstream %s with status %s",
            url,
            response.status_code,
        )
        return UpstreamEventStream(response, url=url)

    @staticmethod
    async def _read_error_body(response: httpx.Response) -> str:
        try:
            text_bytes = await response.aread()
        except httpx.HTTPError as exc:
            return f"<unreadable body: {exc}>"
        finally:
            await response.aclose()
        return text_bytes.decode("utf-8", errors="ignore")

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = [
    "BROWSER_USER_AGENT",
    "UpstreamEventStream",
    "UpstreamStreamError",
    "UpstreamTimeoutError",
    "YuanbaoClient",
    "build_request_body",
    "build_upstream_headers",
]
