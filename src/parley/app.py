"""Application wiring and the long-polling loop."""

from __future__ import annotations

import asyncio
import signal
from typing import Any

import structlog
from pydantic import ValidationError

from parley.context.assembler import ContextAssembler
from parley.events.bus import EventBus
from parley.inference.base import Inference
from parley.inference.litellm_client import LiteLLMInference
from parley.lanes import SerialExecutor
from parley.limits.validator import LimitsValidator
from parley.media.fetcher import PlatformMediaFetcher
from parley.messenger.telegram import TelegramAPIError, TelegramMessenger, parse_update
from parley.models.config import ParleyConfig
from parley.observability import ErrorLogSink, configure_logging
from parley.router import BOT_COMMANDS, Router
from parley.state.machine import SessionStateMachine
from parley.store.sessions import SessionStore

_POLL_BACKOFF_SECS = 5.0


class ParleyApp:
    """
    A running bot: store, lanes, state machine, assembler and router.

    Usage::

        app = await ParleyApp.create(ParleyConfig.from_env())
        try:
            await app.run()
        finally:
            await app.close()
    """

    def __init__(
        self,
        config: ParleyConfig,
        store: SessionStore,
        messenger: TelegramMessenger,
        router: Router,
        event_bus: EventBus,
        sink: ErrorLogSink | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._messenger = messenger
        self._router = router
        self._event_bus = event_bus
        self._sink = sink
        self._stopping = asyncio.Event()
        self._inflight: set[asyncio.Task[None]] = set()
        self._logger = structlog.get_logger("parley.app")

    @classmethod
    async def create(
        cls,
        config: ParleyConfig | None = None,
        *,
        inference: Inference | None = None,
        messenger: TelegramMessenger | None = None,
    ) -> ParleyApp:
        """
        Build and initialize every component.

        Raises:
            ValueError: If no bot token is configured.
            aiosqlite.Error: If the database cannot be initialized.
        """
        cfg = config or ParleyConfig.from_env()
        if messenger is None and not cfg.telegram.bot_token:
            raise ValueError("TELEGRAM_BOT_TOKEN is not set")

        store = SessionStore(cfg.store)
        await store.initialize()
        sink = configure_logging(cfg.logging, store)

        event_bus = EventBus()
        messenger = messenger or TelegramMessenger(cfg.telegram)
        media = PlatformMediaFetcher(messenger.download_file, cfg.media)
        assembler = ContextAssembler(
            inference or LiteLLMInference(cfg.inference), media, cfg.inference, event_bus
        )
        state_machine = SessionStateMachine(store, LimitsValidator(cfg.limits), event_bus)
        router = Router(state_machine, assembler, messenger, store, SerialExecutor(), cfg.limits)

        structlog.get_logger("parley.app").info(
            "app_created", model=cfg.inference.model, db_path=cfg.store.db_path
        )
        return cls(cfg, store, messenger, router, event_bus, sink)

    @property
    def router(self) -> Router:
        return self._router

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    def handle_update(self, update: dict[str, Any]) -> asyncio.Task[None] | None:
        """Parse one raw update and dispatch it as its own task."""
        try:
            event = parse_update(update)
        except (ValidationError, KeyError, TypeError) as exc:
            self._logger.warning(
                "update_unparseable", update_id=update.get("update_id"), error=str(exc)
            )
            return None
        if event is None:
            return None
        task = asyncio.get_running_loop().create_task(self._router.dispatch(event))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def run(self) -> None:
        """Long-poll ``getUpdates`` until :meth:`stop` is called."""
        try:
            await self._messenger.set_commands(BOT_COMMANDS)
        except TelegramAPIError as exc:
            self._logger.warning("set_commands_failed", error=str(exc))

        self._logger.info("polling_started")
        offset: int | None = None
        while not self._stopping.is_set():
            poll = asyncio.ensure_future(self._messenger.get_updates(offset))
            stop = asyncio.ensure_future(self._stopping.wait())
            done, _ = await asyncio.wait({poll, stop}, return_when=asyncio.FIRST_COMPLETED)
            if poll not in done:
                poll.cancel()
                break
            stop.cancel()
            try:
                updates = poll.result()
            except TelegramAPIError as exc:
                self._logger.error("polling_failed", error=str(exc))
                await self._sleep_or_stop(_POLL_BACKOFF_SECS)
                continue
            for update in updates:
                offset = int(update["update_id"]) + 1
                self.handle_update(update)
        self._logger.info("polling_stopped")

    async def _sleep_or_stop(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except TimeoutError:
            pass

    def stop(self) -> None:
        self._stopping.set()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.stop)

    async def close(self) -> None:
        """Finish in-flight work, then release the HTTP client and database."""
        self.stop()
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        await self._router.lanes.drain()
        if self._sink is not None:
            await self._sink.flush()
        await self._messenger.close()
        await self._store.close()
        self._logger.info("app_closed")

    async def __aenter__(self) -> ParleyApp:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
