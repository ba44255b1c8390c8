"""Typed payload definitions for each ParleyEvent.

Usage example::

    from parley.events.bus import EventBus, ParleyEvent
    from parley.events.payloads import LimitExceededPayload

    def on_limit(event: ParleyEvent, payload: LimitExceededPayload) -> None:
        print(f"user {payload['user_id']} hit {payload['limit_kind']}")

    bus.subscribe(ParleyEvent.LIMIT_EXCEEDED, on_limit)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import TypedDict

# ── Session lifecycle ─────────────────────────────────────────────────────────


class SessionCreatedPayload(TypedDict):
    """Payload for :attr:`ParleyEvent.SESSION_CREATED`."""

    user_id: int


class SessionResetPayload(TypedDict):
    """Payload for :attr:`ParleyEvent.SESSION_RESET`."""

    user_id: int
    previous_state: str
    discarded_items: int
    """Buffered items thrown away by the reset."""


class SessionDeletedPayload(TypedDict):
    """Payload for :attr:`ParleyEvent.SESSION_DELETED`."""

    user_id: int


# ── Buffer ────────────────────────────────────────────────────────────────────


class ItemBufferedPayload(TypedDict):
    """Payload for :attr:`ParleyEvent.ITEM_BUFFERED`."""

    user_id: int
    kind: str
    total_messages: int
    """Buffer size after the item was merged."""


class LimitExceededPayload(TypedDict):
    """Payload for :attr:`ParleyEvent.LIMIT_EXCEEDED`."""

    user_id: int
    limit_kind: str


# ── AI interaction ────────────────────────────────────────────────────────────


class AnalysisStartedPayload(TypedDict):
    """Payload for :attr:`ParleyEvent.ANALYSIS_STARTED`."""

    user_id: int
    total_messages: int


class InstructionRecordedPayload(TypedDict):
    """Payload for :attr:`ParleyEvent.INSTRUCTION_RECORDED`."""

    user_id: int
    instruction: str


class ReplyGeneratedPayload(TypedDict):
    """Payload for :attr:`ParleyEvent.REPLY_GENERATED`."""

    model: str
    used_media: bool
    response_time_ms: int
    token_count: int | None


class MediaDegradedPayload(TypedDict):
    """Payload for :attr:`ParleyEvent.MEDIA_DEGRADED`."""

    file_id: str
    kind: str
    error: str
