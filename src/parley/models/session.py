"""Session and buffered-item models."""

from __future__ import annotations

import time
from enum import StrEnum

from pydantic import BaseModel, Field, model_validator


class SessionState(StrEnum):
    """Lifecycle state of a session. Row absence means "no session"."""

    COLLECTING = "collecting"
    WAITING_ACTION = "waiting_action"
    CONVERSATION = "conversation"


class ItemKind(StrEnum):
    """Content kind of a buffered item."""

    TEXT = "text"
    IMAGE = "image"
    VOICE = "voice"
    VIDEO = "video"
    STICKER = "sticker"
    DOCUMENT = "document"
    AUDIO = "audio"
    VIDEO_NOTE = "video_note"


MEDIA_KINDS: frozenset[ItemKind] = frozenset({ItemKind.IMAGE, ItemKind.VOICE})
"""Kinds whose media can be resolved for the model. Everything else is placeholder-only."""

PLACEHOLDER_LABELS: dict[ItemKind, str] = {
    ItemKind.IMAGE: "[Изображение]",
    ItemKind.VOICE: "[Голосовое сообщение]",
    ItemKind.VIDEO: "[Видео]",
    ItemKind.STICKER: "[Стикер]",
    ItemKind.DOCUMENT: "[Документ]",
    ItemKind.AUDIO: "[Аудиофайл]",
    ItemKind.VIDEO_NOTE: "[Видеосообщение]",
}


class Author(BaseModel):
    """Who wrote a forwarded fragment, relative to the session owner."""

    is_self: bool = False
    display_name: str = "Unknown"
    source_id: int | None = None
    """Original sender id. ``None`` for hidden senders and channel forwards."""


class MediaRef(BaseModel):
    """Reference to resolvable media held by the chat platform."""

    file_id: str
    size: int | None = None
    duration: int | None = None
    """Seconds; voice only."""
    mime_type: str | None = None
    width: int | None = None
    height: int | None = None


class BufferedItem(BaseModel):
    """
    One forwarded conversation fragment stored in a session.

    Immutable once created. ``timestamp`` is the origin send time in seconds and
    drives both chronological ordering and the ``[HH:MM]`` transcript label.
    """

    model_config = {"frozen": True}

    author: Author
    timestamp: int
    kind: ItemKind
    text: str
    media: MediaRef | None = None

    @model_validator(mode="after")
    def validate_media(self) -> BufferedItem:
        if self.media is not None and self.kind not in MEDIA_KINDS:
            raise ValueError(f"{self.kind} items cannot carry media")
        return self

    @property
    def has_media(self) -> bool:
        """True when the item carries media the assembler can resolve."""
        return self.kind in MEDIA_KINDS and self.media is not None


class SessionStats(BaseModel):
    """Counts derived from a session buffer. Never persisted."""

    total_messages: int = 0
    image_count: int = 0
    voice_count: int = 0

    @classmethod
    def of(cls, items: list[BufferedItem]) -> SessionStats:
        return cls(
            total_messages=len(items),
            image_count=sum(1 for i in items if i.kind == ItemKind.IMAGE),
            voice_count=sum(1 for i in items if i.kind == ItemKind.VOICE),
        )


class Session(BaseModel):
    """The per-user buffer plus the AI-interaction state layered over it."""

    user_id: int
    state: SessionState = SessionState.COLLECTING
    messages: list[BufferedItem] = Field(default_factory=list)
    """Buffered items in ascending ``timestamp`` order."""
    last_instruction: str | None = None
    last_message_id: int | None = None
    """Handle of the most recent progress notification, for in-place edits."""
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))
    updated_at: int = Field(default_factory=lambda: int(time.time() * 1000))

    @property
    def stats(self) -> SessionStats:
        return SessionStats.of(self.messages)

    @property
    def is_empty(self) -> bool:
        return not self.messages


class SessionUpdate(BaseModel):
    """
    Partial update of the mutable session fields.

    Only fields passed explicitly are written, so ``SessionUpdate(last_instruction=None)``
    clears the column while ``SessionUpdate(state=...)`` leaves it untouched.
    An update with no fields is rejected at construction time.
    """

    state: SessionState | None = None
    last_instruction: str | None = None
    last_message_id: int | None = None

    @model_validator(mode="after")
    def validate_not_empty(self) -> SessionUpdate:
        if not self.model_fields_set:
            raise ValueError("SessionUpdate requires at least one field")
        if "state" in self.model_fields_set and self.state is None:
            raise ValueError("state cannot be cleared")
        return self

    def columns(self) -> dict[str, object]:
        """Return ``{column: value}`` for the explicitly supplied fields."""
        return {name: getattr(self, name) for name in sorted(self.model_fields_set)}
