from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .messages import ChatMessage


class HealthResponse(BaseModel):
    status: str = "ok"


class ModelInfo(BaseModel):
    id: str
    object: str = "model"
    created: Optional[int] = None
    owned_by: Optional[str] = None


class ModelsResponse(BaseModel):
    object: str = "list"
    data: list[ModelInfo] = Field(default_factory=list)


class ChatCompletionBody(BaseModel):
    """
    Inbound OpenAI chat.completions request.

    Sampling knobs are accepted for client compatibility; the upstream has
    no equivalent for them.
    """

    model_config = ConfigDict(extra="ignore")

    model: str
    messages: List[ChatMessage]
    stream: bool = False

    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    user: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
