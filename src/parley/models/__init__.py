"""Parley data models."""

from parley.models.config import (
    InferenceConfig,
    LimitsConfig,
    LoggingConfig,
    MediaConfig,
    ParleyConfig,
    StoreConfig,
    TelegramConfig,
)
from parley.models.content import (
    AssistantReply,
    AudioContent,
    Completion,
    ContentPart,
    ImageContent,
    LimitKind,
    ReplyMetadata,
    StatisticEvent,
    TextContent,
    TokenUsage,
    ValidationResult,
)
from parley.models.session import (
    MEDIA_KINDS,
    PLACEHOLDER_LABELS,
    Author,
    BufferedItem,
    ItemKind,
    MediaRef,
    Session,
    SessionState,
    SessionStats,
    SessionUpdate,
)

__all__ = [
    # Config
    "InferenceConfig",
    "LimitsConfig",
    "LoggingConfig",
    "MediaConfig",
    "ParleyConfig",
    "StoreConfig",
    "TelegramConfig",
    # Session
    "MEDIA_KINDS",
    "PLACEHOLDER_LABELS",
    "Author",
    "BufferedItem",
    "ItemKind",
    "MediaRef",
    "Session",
    "SessionState",
    "SessionStats",
    "SessionUpdate",
    # Content parts
    "TextContent",
    "ImageContent",
    "AudioContent",
    "ContentPart",
    # Results
    "TokenUsage",
    "Completion",
    "LimitKind",
    "ValidationResult",
    "ReplyMetadata",
    "AssistantReply",
    "StatisticEvent",
]
