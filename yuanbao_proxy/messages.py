"""
Normalized chat model shared by the upstream client, the translator and the
HTTP layer.

- ChatMessage / ChatMessages: the caller's conversation and how it is
  flattened into the single prompt string Yuanbao accepts;
- ChatModel: public model names and their upstream identifiers;
- ChatCompletionEvent: the semantic events produced while a completion
  streams (thinking text, answer text, error, finish).
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator


class EmptyConversationError(ValueError):
    """Raised when a conversation with no messages is rendered."""


class InvalidModelError(ValueError):
    """Raised when a public model name is not one of ChatModel."""


def _content_parts_to_text(content: Any) -> Optional[str]:
    """
    OpenAI clients may send content as a list of parts; keep the text ones.
    """
    if content is None or isinstance(content, str):
        return content
    if isinstance(content, list):
        segments: list[str] = []
        for part in content:
            if isinstance(part, str):
                segments.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                segments.append(part["text"])
        return "".join(segments)
    return content


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    role: str
    content: Optional[str] = None
    reasoning_content: Optional[str] = None

    @field_validator("content", mode="before")
    @classmethod
    def _flatten_content(cls, value: Any) -> Any:
        return _content_parts_to_text(value)


class ChatMessages:
    """
    Ordered, immutable conversation history supplied by the caller.
    """

    __slots__ = ("_items",)

    def __init__(self, messages: Iterable[ChatMessage] = ()) -> None:
        self._items: tuple[ChatMessage, ...] = tuple(messages)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(self._items)

    def __getitem__(self, index: int) -> ChatMessage:
        return self._items[index]

    def __repr__(self) -> str:
        return f"ChatMessages({list(self._items)!r})"

    def render(self) -> str:
        """
        Flatten the conversation into one upstream prompt.

        A single message is sent verbatim. Longer histories become
        "#[role]" blocks, because the upstream API takes one prompt string
        per turn and has no notion of a message list.
        """
        if not self._items:
            raise EmptyConversationError("cannot render an empty conversation")
        if len(self._items) == 1:
            return self._items[0].content or ""
        return "".join(
            f"#[{item.role.strip()}]\n{(item.content or '').strip()}\n\n"
            for item in self._items
        )


def render_prompt(messages: Sequence[ChatMessage]) -> str:
    return ChatMessages(messages).render()


class ChatModel(str, Enum):
    DEEPSEEK_V3 = "deepseek-v3"
    DEEPSEEK_R1 = "deepseek-r1"

    @classmethod
    def parse(cls, name: str) -> "ChatModel":
        for model in cls:
            if model.value == name:
                return model
        raise InvalidModelError("invalid model")

    @classmethod
    def public_names(cls) -> list[str]:
        return [model.value for model in cls]

    @property
    def public_name(self) -> str:
        return self.value

    @property
    def upstream_id(self) -> str:
        return _UPSTREAM_MODEL_IDS[self]


_UPSTREAM_MODEL_IDS: dict[ChatModel, str] = {
    ChatModel.DEEPSEEK_V3: "deep_seek_v3",
    ChatModel.DEEPSEEK_R1: "deep_seek",
}


@dataclass(frozen=True)
class ChatCompletionRequest:
    messages: ChatMessages
    chat_model: ChatModel


class MessageKind(str, Enum):
    THINK = "think"
    MSG = "msg"


@dataclass(frozen=True)
class MessageEvent:
    kind: MessageKind
    text: str


@dataclass(frozen=True)
class ErrorEvent:
    error: Exception


@dataclass(frozen=True)
class FinishEvent:
    reason: str


ChatCompletionEvent = Union[MessageEvent, ErrorEvent, FinishEvent]


__all__ = [
    "ChatCompletionEvent",
    "ChatCompletionRequest",
    "ChatMessage",
    "ChatMessages",
    "ChatModel",
    "EmptyConversationError",
    "ErrorEvent",
    "FinishEvent",
    "InvalidModelError",
    "MessageEvent",
    "MessageKind",
    "render_prompt",
]
