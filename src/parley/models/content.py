"""Content parts and results exchanged with the language model."""

from __future__ import annotations

import time
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

# ── Part Models ────────────────────────────────────────────────────────────────


class TextContent(BaseModel):
    """A plain text segment of a multimodal request."""

    type: Literal["text"] = "text"
    text: str

    def to_llm(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


class ImageContent(BaseModel):
    """An inline image, carried as a ``data:`` URI."""

    type: Literal["image_url"] = "image_url"
    url: str

    def to_llm(self) -> dict[str, Any]:
        return {"type": "image_url", "image_url": {"url": self.url}}


class AudioContent(BaseModel):
    """Inline audio, carried as bare base64 with its container format."""

    type: Literal["input_audio"] = "input_audio"
    data: str
    format: str = "wav"

    def to_llm(self) -> dict[str, Any]:
        return {"type": "input_audio", "input_audio": {"data": self.data, "format": self.format}}


# Discriminated union on the ``type`` field.
ContentPart = Annotated[
    TextContent | ImageContent | AudioContent,
    Field(discriminator="type"),
]


# ── Token Usage ────────────────────────────────────────────────────────────────


class TokenUsage(BaseModel):
    """Token counts reported for a single completion."""

    input: int = 0
    output: int = 0
    total: int = 0

    def effective_total(self) -> int:
        """Return total, computing from parts when the explicit total is zero."""
        if self.total:
            return self.total
        return self.input + self.output


class Completion(BaseModel):
    """Text returned by an Inference ``complete()`` call."""

    text: str
    usage: TokenUsage | None = None


# ── Admission ──────────────────────────────────────────────────────────────────


class LimitKind(StrEnum):
    MAX_MESSAGES = "max_messages"
    MAX_IMAGES = "max_images"
    MAX_VOICE = "max_voice"
    VOICE_TOO_LONG = "voice_too_long"


class ValidationResult(BaseModel):
    """Outcome of an admission check on a candidate item."""

    valid: bool
    reason: str | None = None
    """Localized, user-facing explanation. ``None`` when valid."""
    limit_kind: LimitKind | None = None

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(valid=True)


# ── Result Types ───────────────────────────────────────────────────────────────


class ReplyMetadata(BaseModel):
    model: str
    token_count: int | None = None
    response_time_ms: int
    used_media: bool = False
    degraded_items: int = 0
    """Media items that could not be resolved and were sent as placeholders."""


class AssistantReply(BaseModel):
    """The result of a ``ContextAssembler.generate()`` call."""

    text: str
    metadata: ReplyMetadata


class StatisticEvent(BaseModel):
    """One row of the ``statistics`` table."""

    user_id: int
    action_type: str
    action_data: dict[str, Any] | None = None
    session_messages_count: int | None = None
    model_used: str | None = None
    tokens_used: int | None = None
    response_time_ms: int | None = None
    error_occurred: bool = False
    error_message: str | None = None
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))
