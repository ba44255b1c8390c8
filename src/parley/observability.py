"""structlog configuration and the error-log sink."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any

import structlog

from parley.models.config import LoggingConfig
from parley.store.sessions import SessionStore

_ERROR_METHODS = frozenset({"error", "critical", "exception"})
_RESERVED_KEYS = frozenset({"event", "level", "logger", "timestamp", "exc_info"})


class ErrorLogSink:
    """
    structlog processor that mirrors error-level events into the ``logs`` table.

    Writes are scheduled as tasks on the running loop and never block or
    fail the logging call. Outside a running loop the event is only rendered.
    """

    def __init__(self, store: SessionStore) -> None:
        self._store = store
        self._pending: set[asyncio.Task[None]] = set()

    def __call__(
        self, logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        if method_name not in _ERROR_METHODS:
            return event_dict
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return event_dict

        context = {
            key: value if isinstance(value, (str, int, float, bool, type(None))) else repr(value)
            for key, value in event_dict.items()
            if key not in _RESERVED_KEYS
        }
        if event_dict.get("logger"):
            context["logger"] = event_dict["logger"]
        task = loop.create_task(
            self._store.log_error(method_name, str(event_dict.get("event", "")), context)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return event_dict

    async def flush(self) -> None:
        """Wait for every scheduled write to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending))


def configure_logging(
    config: LoggingConfig | None = None, store: SessionStore | None = None
) -> ErrorLogSink | None:
    """
    Configure stdlib logging and structlog for the process.

    Args:
        config: Level and renderer settings.
        store: When given and ``persist_errors`` is on, error-level events are
            also written to the store's ``logs`` table.

    Returns:
        The installed :class:`ErrorLogSink`, or None if errors are not persisted.
    """
    config = config or LoggingConfig()
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, config.level),
        force=True,
    )
    # litellm and httpx are chatty at INFO.
    for noisy in ("httpx", "LiteLLM", "litellm"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    sink = ErrorLogSink(store) if store is not None and config.persist_errors else None

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if sink is not None:
        processors.append(sink)
    if config.json_output:
        processors.append(structlog.processors.JSONRenderer(ensure_ascii=False))
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return sink
