import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
from anyio.streams.memory import MemoryObjectReceiveStream
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.types import Receive, Scope, Send

from .completion import CompletionService
from .deps import get_completion_service
from .errors import bad_gateway, bad_request, upstream_failure
from .log_sanitizer import sanitize_headers_for_log
from .logging_config import logger
from .messages import (
    ChatCompletionEvent,
    ChatCompletionRequest,
    ChatMessages,
    ChatModel,
    EmptyConversationError,
    InvalidModelError,
)
from .openai_format import (
    ChatCompletionChunkEncoder,
    IncompleteStreamError,
    build_completion_payload,
    collect_completion,
)
from .schemas import ChatCompletionBody, HealthResponse, ModelInfo, ModelsResponse
from .settings import Settings, load_settings
from .upstream import UpstreamStreamError, YuanbaoClient


MODEL_OWNER = "yuanbao"


async def handle_unexpected_error(request: Request, exc: Exception):
    """
    Global exception handler: log with an error id and return a structured 500.
    """
    error_id = uuid.uuid4().hex
    logger.exception(
        "Unhandled error %s %s (error_id=%s)",
        request.method,
        request.url.path,
        error_id,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "Internal server error",
            "error_id": error_id,
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the shared upstream client and completion service on startup and
    release them on shutdown.

    A malformed upstream header raises ConfigError here, which aborts startup.
    """
    settings: Settings = app.state.settings
    client = YuanbaoClient(settings, transport=app.state.upstream_transport)
    service = CompletionService(client)
    app.state.completion_service = service
    try:
        yield
    finally:
        await service.aclose()
        await client.aclose()
        logger.info("Upstream client closed")


async def _stream_chunks(
    receiver: MemoryObjectReceiveStream[ChatCompletionEvent],
    *,
    model: str,
) -> AsyncIterator[bytes]:
    encoder = ChatCompletionChunkEncoder(model)
    async with receiver:
        yield encoder.start()
        async for event in receiver:
            for chunk in encoder.encode(event):
                yield chunk

    if not encoder.done:
        logger.warning(
            "chat_completions: upstream stream %s closed without a finish event",
            encoder.response_id,
        )


class EventStreamResponse(StreamingResponse):
    """
    `text/event-stream` response over a completion channel.

    The receive end is closed as soon as the response ends, including when
    the client disconnects while the chunk generator is suspended, so the
    translator stops reading upstream right away.
    """

    media_type = "text/event-stream"

    def __init__(
        self,
        receiver: MemoryObjectReceiveStream[ChatCompletionEvent],
        *,
        model: str,
    ) -> None:
        self._receiver = receiver
        super().__init__(
            _stream_chunks(receiver, model=model),
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self._receiver.close()


def create_app(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    if settings is None:
        settings = load_settings()

    app = FastAPI(title="Yuanbao Proxy", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.upstream_transport = transport
    app.add_exception_handler(Exception, handle_unexpected_error)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Basic request/response logging; credential headers are redacted.
        """
        client_host = request.client.host if request.client else "-"
        logger.info(
            "HTTP %s %s from %s, headers=%s",
            request.method,
            request.url.path,
            client_host,
            sanitize_headers_for_log(request.headers),
        )
        try:
            response = await call_next(request)
        except Exception as exc:
            response = await handle_unexpected_error(request, exc)
        logger.info(
            "HTTP %s %s -> %s", request.method, request.url.path, response.status_code
        )
        return response

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse()

    @app.get("/v1/models", response_model=ModelsResponse)
    async def list_models() -> ModelsResponse:
        return ModelsResponse(
            data=[
                ModelInfo(id=name, owned_by=MODEL_OWNER)
                for name in ChatModel.public_names()
            ]
        )

    @app.post("/v1/chat/completions")
    async def chat_completions(
        body: ChatCompletionBody,
        service: CompletionService = Depends(get_completion_service),
    ):
        """
        OpenAI-compatible chat completions backed by Yuanbao.

        Request errors (unknown model, empty messages) and upstream-open
        failures are answered with a JSON error before any stream starts.
        """
        logger.info(
            "chat_completions: model=%r stream=%r messages=%d",
            body.model,
            body.stream,
            len(body.messages),
        )

        try:
            chat_model = ChatModel.parse(body.model)
        except InvalidModelError as exc:
            raise bad_request(
                str(exc),
                details={"model": body.model, "supported": ChatModel.public_names()},
            )

        request = ChatCompletionRequest(
            messages=ChatMessages(body.messages),
            chat_model=chat_model,
        )
        try:
            receiver = await service.create_completion(request)
        except EmptyConversationError as exc:
            raise bad_request(str(exc))
        except UpstreamStreamError as exc:
            raise upstream_failure(exc)

        if body.stream:
            return EventStreamResponse(receiver, model=chat_model.public_name)

        try:
            async with receiver:
                result = await collect_completion(receiver)
        except UpstreamStreamError as exc:
            logger.warning("chat_completions: upstream stream failed: %s", exc)
            raise upstream_failure(exc)
        except IncompleteStreamError as exc:
            logger.warning("chat_completions: %s", exc)
            raise bad_gateway("upstream stream terminated abnormally")

        return build_completion_payload(result, model=chat_model.public_name)

    return app


__all__ = ["EventStreamResponse", "create_app", "handle_unexpected_error", "lifespan"]
