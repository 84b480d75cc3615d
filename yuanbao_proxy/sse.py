"""
Line-oriented decoder for text/event-stream bodies.

Follows the WHATWG event-stream rules closely enough for Yuanbao:
`event`, `data`, `id` and `retry` fields, comment lines, multi-line data and
blank-line dispatch. Lines are expected without their terminator, e.g. the
output of httpx.Response.aiter_lines().
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DEFAULT_EVENT_NAME = "message"


@dataclass(frozen=True)
class ServerSentEvent:
    event: str = DEFAULT_EVENT_NAME
    data: str = ""
    id: Optional[str] = None
    retry: Optional[int] = None


class SSEDecoder:
    def __init__(self) -> None:
        self._event = ""
        self._data: list[str] = []
        self._last_event_id: Optional[str] = None
        self._retry: Optional[int] = None

    def decode(self, line: str) -> Optional[ServerSentEvent]:
        """
        Feed one line; return an event when the line completes one.
        """
        line = line.rstrip("\r\n")

        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            if "\0" not in value:
                self._last_event_id = value
        elif field == "retry":
            if value.isascii() and value.isdigit():
                self._retry = int(value)
        # Unknown field names are ignored.
        return None

    def _dispatch(self) -> Optional[ServerSentEvent]:
        if not self._data and not self._event:
            return None

        if not self._data:
            # An event block with no data lines is dropped.
            self._event = ""
            return None

        event = ServerSentEvent(
            event=self._event or DEFAULT_EVENT_NAME,
            data="\n".join(self._data),
            id=self._last_event_id,
            retry=self._retry,
        )
        self._event = ""
        self._data = []
        self._retry = None
        return event


__all__ = ["DEFAULT_EVENT_NAME", "SSEDecoder", "ServerSentEvent"]
