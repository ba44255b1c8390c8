"""In-process pub/sub event bus for session lifecycle events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["ParleyEvent", dict[str, Any]], None | Awaitable[None]]


class ParleyEvent(StrEnum):
    """All event types published by Parley components.

    Typed payload definitions for each event live in
    :mod:`parley.events.payloads`.

    **Payload schemas by event:**

    ``SESSION_CREATED``, ``SESSION_DELETED``
        ``user_id: int``

    ``SESSION_RESET``
        ``user_id: int``, ``previous_state: str``, ``discarded_items: int``

    ``ITEM_BUFFERED``
        ``user_id: int``, ``kind: str``, ``total_messages: int``

    ``LIMIT_EXCEEDED``
        ``user_id: int``, ``limit_kind: str``

    ``ANALYSIS_STARTED``
        ``user_id: int``, ``total_messages: int``

    ``INSTRUCTION_RECORDED``
        ``user_id: int``, ``instruction: str``

    ``REPLY_GENERATED``
        ``model: str``, ``used_media: bool``, ``response_time_ms: int``,
        ``token_count: int | None``

    ``MEDIA_DEGRADED``
        ``file_id: str``, ``kind: str``, ``error: str``
    """

    # Session lifecycle
    SESSION_CREATED = "session.created"
    SESSION_RESET = "session.reset"
    SESSION_DELETED = "session.deleted"

    # Buffer
    ITEM_BUFFERED = "item.buffered"
    LIMIT_EXCEEDED = "limit.exceeded"

    # AI interaction
    ANALYSIS_STARTED = "analysis.started"
    INSTRUCTION_RECORDED = "instruction.recorded"
    REPLY_GENERATED = "reply.generated"
    MEDIA_DEGRADED = "media.degraded"


class EventBus:
    """
    Simple in-process pub/sub event bus.

    Design decisions:
    - Sync handlers are called inline within ``publish()``.
    - Async handlers are scheduled via ``asyncio.create_task()`` (fire-and-forget).
    - Handler exceptions are logged but never propagate to the publisher.

    Example::

        bus = EventBus()

        def on_reset(event, payload):
            print(f"User {payload['user_id']} started over")

        bus.subscribe(ParleyEvent.SESSION_RESET, on_reset)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._handlers: dict[ParleyEvent, list[Handler]] = {}
        self._global_handlers: list[Handler] = []
        self._pending: set[asyncio.Task[None]] = set()
        self._logger = logger or structlog.get_logger("parley.events")

    def subscribe(self, event: ParleyEvent, handler: Handler) -> None:
        """Register a handler for a specific event type. May be sync or async."""
        self._handlers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Register a handler for ALL event types."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event: ParleyEvent, handler: Handler) -> None:
        """Remove a previously registered handler. No-op if not found."""
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: ParleyEvent, payload: dict[str, Any]) -> None:
        """
        Publish an event to all registered handlers.

        Sync handlers are called immediately in registration order.
        Async handlers are scheduled as background tasks (non-blocking).
        Exceptions from any handler are logged and swallowed.
        """
        all_handlers = list(self._handlers.get(event, [])) + list(self._global_handlers)
        for handler in all_handlers:
            try:
                result = handler(event, payload)
                if asyncio.iscoroutine(result):
                    try:
                        loop = asyncio.get_running_loop()
                    except RuntimeError:
                        # No running event loop, skip async handler
                        result.close()
                        continue
                    task = loop.create_task(self._run_async(event, handler, result))
                    self._pending.add(task)
                    task.add_done_callback(self._pending.discard)
            except Exception as exc:
                self._log_handler_error(event, handler, exc)

    async def _run_async(
        self, event: ParleyEvent, handler: Handler, coro: Awaitable[None]
    ) -> None:
        try:
            await coro
        except Exception as exc:
            self._log_handler_error(event, handler, exc)

    def _log_handler_error(self, event: ParleyEvent, handler: Handler, exc: Exception) -> None:
        self._logger.error(
            "event_handler_error",
            event_type=str(event),
            handler=getattr(handler, "__qualname__", repr(handler)),
            error=str(exc),
        )
