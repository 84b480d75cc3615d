from __future__ import annotations

import asyncio
import math
from contextlib import aclosing

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from .logging_config import logger
from .messages import ChatCompletionEvent, ChatCompletionRequest
from .translator import translate_events
from .upstream import UpstreamEventStream, UpstreamStreamError, YuanbaoClient


class CompletionService:
    """
    Runs one chat completion end to end.

    create_completion() opens the upstream stream, starts the translator as
    a background task and hands back the receiving end of a fresh channel
    right away, so the HTTP layer can start responding before any content
    has arrived.
    """

    def __init__(self, client: YuanbaoClient) -> None:
        self._client = client
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def create_completion(
        self, request: ChatCompletionRequest
    ) -> MemoryObjectReceiveStream[ChatCompletionEvent]:
        """
        Start a completion and return its event channel.

        Validation and upstream-open errors are raised here; no channel is
        created for a request that failed to start.
        """
        conversation_id = await self._client.conversation_id()
        logger.info("create_completion: using fixed conversation %s", conversation_id)

        stream = await self._client.start_completion(
            request, conversation_id=conversation_id
        )

        sender: MemoryObjectSendStream[ChatCompletionEvent]
        receiver: MemoryObjectReceiveStream[ChatCompletionEvent]
        sender, receiver = anyio.create_memory_object_stream(math.inf)

        task = asyncio.create_task(
            self._pump(stream, sender),
            name=f"yuanbao-sse-{conversation_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return receiver

    @staticmethod
    async def _pump(
        stream: UpstreamEventStream,
        sender: MemoryObjectSendStream[ChatCompletionEvent],
    ) -> None:
        try:
            async with aclosing(stream.events()) as events:
                await translate_events(events, sender)
        except UpstreamStreamError as exc:
            logger.warning("SSE exit: %s (url=%s)", exc, stream.url)
        except Exception:
            # Nobody awaits this task; log instead of leaving it unretrieved.
            logger.exception("SSE task failed (url=%s)", stream.url)
        finally:
            await stream.aclose()

    async def aclose(self) -> None:
        """
        Cancel translator tasks that are still running (application shutdown).
        """
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("CompletionService closed; cancelled %d in-flight streams", len(tasks))


__all__ = ["CompletionService"]
