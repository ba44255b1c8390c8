"""Per-key serial execution lanes."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable
from functools import partial
from typing import Any, TypeVar

import structlog

T = TypeVar("T")


class SerialExecutor:
    """
    Runs submitted coroutines one at a time per key, in submission order.

    Each key owns a chain: a new task waits for the key's current tail to
    settle, then runs. Tasks for different keys never wait on each other.

    A task that raises is logged and resolves to ``None``; the next task in
    the same lane still runs and the exception never reaches the event loop's
    "exception was never retrieved" handler. A lane's entry is dropped as soon
    as its last task finishes, so idle users cost no memory.

    Ordering is fixed at ``submit()`` time, which is synchronous: callers that
    submit before their first ``await`` keep the order in which their events
    arrived.

    Example::

        lanes = SerialExecutor()
        first = lanes.submit(user_id, lambda: ingest(item_a))
        second = lanes.submit(user_id, lambda: ingest(item_b))  # starts after first
        await second
    """

    def __init__(self, name: str = "lanes") -> None:
        self._tails: dict[Hashable, asyncio.Task[Any]] = {}
        self._logger = structlog.get_logger(f"parley.{name}")

    def submit(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> asyncio.Task[T | None]:
        """
        Queue ``fn`` behind every task already submitted for ``key``.

        Args:
            key: Lane identifier (the user id).
            fn: Zero-argument callable returning the awaitable to run.

        Returns:
            A task resolving to ``fn``'s result, or ``None`` if it raised.
        """
        previous = self._tails.get(key)
        task = asyncio.get_running_loop().create_task(self._run(key, previous, fn))
        self._tails[key] = task
        task.add_done_callback(partial(self._prune, key))
        return task

    async def _run(
        self,
        key: Hashable,
        previous: asyncio.Task[Any] | None,
        fn: Callable[[], Awaitable[T]],
    ) -> T | None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
        try:
            return await fn()
        except Exception as exc:
            self._logger.error(
                "lane_task_failed",
                key=key,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

    def _prune(self, key: Hashable, task: asyncio.Task[Any]) -> None:
        if self._tails.get(key) is task:
            del self._tails[key]

    def is_busy(self, key: Hashable) -> bool:
        """True while ``key`` has a queued or running task."""
        return key in self._tails

    @property
    def active_lanes(self) -> int:
        """Number of keys with pending work."""
        return len(self._tails)

    async def drain(self) -> None:
        """Wait until every lane is idle, including tasks submitted while draining."""
        while self._tails:
            await asyncio.wait(set(self._tails.values()))
