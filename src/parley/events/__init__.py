"""Parley event bus."""

from parley.events.bus import EventBus, Handler, ParleyEvent
from parley.events.payloads import (
    AnalysisStartedPayload,
    InstructionRecordedPayload,
    ItemBufferedPayload,
    LimitExceededPayload,
    MediaDegradedPayload,
    ReplyGeneratedPayload,
    SessionCreatedPayload,
    SessionDeletedPayload,
    SessionResetPayload,
)

__all__ = [
    "AnalysisStartedPayload",
    "EventBus",
    "Handler",
    "InstructionRecordedPayload",
    "ItemBufferedPayload",
    "LimitExceededPayload",
    "MediaDegradedPayload",
    "ParleyEvent",
    "ReplyGeneratedPayload",
    "SessionCreatedPayload",
    "SessionDeletedPayload",
    "SessionResetPayload",
]
