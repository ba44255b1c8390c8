"""Inbound event dispatch into the session lifecycle."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any

import structlog

from parley.context.assembler import ContextAssembler
from parley.lanes import SerialExecutor
from parley.messenger.base import (
    CallbackEvent,
    CommandEvent,
    ForwardedEvent,
    InboundEvent,
    InlineButton,
    Keyboard,
    MessageGoneError,
    MessageNotModifiedError,
    Messenger,
    MessengerError,
    TextEvent,
)
from parley.models.config import LimitsConfig
from parley.models.content import StatisticEvent
from parley.models.session import Session
from parley.state.machine import (
    InstructionTooLongError,
    SessionExpiredError,
    SessionRejection,
    SessionStateMachine,
    UnknownActionError,
    UnsupportedContentError,
    build_item,
)
from parley.store.sessions import SessionStore

SERVICE_UNAVAILABLE = "❌ Сервис временно недоступен, попробуй позже"
SERVICE_UNAVAILABLE_ALERT = "❌ Сервис временно недоступен"
BUFFER_CLEARED = "🗑 Буфер очищен"
UNKNOWN_COMMAND = "❓ Неизвестная команда. Используй /help"

HELP_TEXT = """🤖 Telegram Context Assistant Bot

Я помогаю анализировать переписки и составлять ответы.

📖 Как пользоваться:

1️⃣ Перешли мне сообщения из диалога (один или несколько)
2️⃣ Используй команду /analyze
3️⃣ Выбери действие:
   • 📝 Резюме - краткое содержание переписки
   • 💼 Официально - помощь с формальным ответом
   • 😊 Дружески - помощь с дружеским ответом
   • Или напиши свою инструкцию

4️⃣ Получи результат и используй 🔄 для других вариантов

⚙️ Команды:
/analyze - Анализировать собранные сообщения
/clear - Очистить буфер сообщений
/help - Показать это сообщение

💡 Совет: Я определяю, какие сообщения написал ты, а какие - собеседник."""

BOT_COMMANDS: list[tuple[str, str]] = [
    ("analyze", "Анализировать переписку"),
    ("clear", "Очистить буфер"),
    ("help", "Помощь"),
]

ANALYZE_BUTTON: Keyboard = [[InlineButton(text="📊 Анализировать", callback_data="/analyze")]]

ANALYZE_MENU: Keyboard = [
    [InlineButton(text="📝 Резюме", callback_data="summary")],
    [
        InlineButton(text="💼 Официально", callback_data="formal"),
        InlineButton(text="😊 Дружески", callback_data="friendly"),
    ],
    [InlineButton(text="🗑 Очистить", callback_data="clear")],
]

REGENERATE_BUTTON: Keyboard = [
    [InlineButton(text="🔄 Еще варианты", callback_data="regenerate")]
]

ANALYZE_CALLBACKS = frozenset({"/analyze", "analyze"})
ACTION_CALLBACKS = frozenset({"summary", "formal", "friendly"})
CALLBACK_ALLOW_LIST = ANALYZE_CALLBACKS | ACTION_CALLBACKS | {"clear", "regenerate"}


def analyze_menu_text(total: int) -> str:
    return f"📊 В буфере {total} сообщений.\n\nВыбери действие:"


class Router:
    """
    Routes inbound events into lanes, the state machine and the assembler.

    Every outward-facing outcome produces exactly one user-visible message
    (or callback alert) and exactly one statistics row. Rejections are
    reported with their own text; any other failure gets a generic notice
    and an error statistic.

    All flows that touch the session run in the user's serial lane; only
    help/start bypasses it.
    """

    def __init__(
        self,
        state_machine: SessionStateMachine,
        assembler: ContextAssembler,
        messenger: Messenger,
        store: SessionStore,
        lanes: SerialExecutor | None = None,
        limits: LimitsConfig | None = None,
    ) -> None:
        self._sm = state_machine
        self._assembler = assembler
        self._messenger = messenger
        self._store = store
        self._lanes = lanes or SerialExecutor()
        self._limits = limits or state_machine.validator.config
        self._logger = structlog.get_logger("parley.router")

    @property
    def lanes(self) -> SerialExecutor:
        return self._lanes

    async def dispatch(self, event: InboundEvent) -> None:
        """
        Handle one inbound event to completion.

        The lane slot is taken before the first ``await`` so that events for
        one user are processed in the order ``dispatch`` was called.
        """
        if isinstance(event, CommandEvent) and event.command in ("help", "start"):
            await self._on_help(event)
            return
        handler = self._handler_for(event)
        await self._lanes.submit(event.user_id, partial(handler, event))

    def _handler_for(self, event: InboundEvent) -> Callable[[Any], Awaitable[None]]:
        if isinstance(event, ForwardedEvent):
            return self._on_forward
        if isinstance(event, CommandEvent):
            return self._on_command
        if isinstance(event, CallbackEvent):
            return self._on_callback
        if isinstance(event, TextEvent):
            return self._on_text
        raise TypeError(f"Unsupported event: {type(event).__name__}")

    # ── Outcome helpers ────────────────────────────────────────────────────────

    async def _stat(self, user_id: int, action_type: str, **fields: Any) -> None:
        await self._store.log_statistic(
            StatisticEvent(user_id=user_id, action_type=action_type, **fields)
        )

    async def _rejected(
        self,
        user_id: int,
        rejection: SessionRejection,
        callback_id: str | None = None,
        **fields: Any,
    ) -> None:
        self._logger.info("request_rejected", user_id=user_id, code=rejection.code)
        try:
            if callback_id is not None:
                await self._messenger.answer_callback(
                    callback_id, text=rejection.user_message, show_alert=True
                )
            else:
                await self._messenger.send_message(user_id, rejection.user_message)
        except MessengerError as exc:
            self._logger.error("rejection_notice_failed", user_id=user_id, error=str(exc))
        action_data = {"reason": rejection.code}
        if rejection.action_type == "limit_exceeded":
            action_data = {"limit_type": rejection.code}
        await self._stat(user_id, rejection.action_type, action_data=action_data, **fields)

    async def _failed(
        self,
        user_id: int,
        action_type: str,
        exc: Exception,
        callback_id: str | None = None,
    ) -> None:
        self._logger.error(
            "flow_failed",
            user_id=user_id,
            action_type=action_type,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        try:
            if callback_id is not None:
                await self._messenger.answer_callback(
                    callback_id, text=SERVICE_UNAVAILABLE_ALERT, show_alert=True
                )
            else:
                await self._messenger.send_message(user_id, SERVICE_UNAVAILABLE)
        except MessengerError as notify_exc:
            self._logger.error("failure_notice_failed", user_id=user_id, error=str(notify_exc))
        await self._stat(
            user_id, action_type, error_occurred=True, error_message=str(exc)
        )

    async def _typing(self, user_id: int, action: str = "typing") -> None:
        try:
            await self._messenger.send_chat_action(user_id, action)
        except MessengerError as exc:
            self._logger.debug("typing_indicator_failed", user_id=user_id, error=str(exc))

    # ── Forwarded content ──────────────────────────────────────────────────────

    async def _on_forward(self, event: ForwardedEvent) -> None:
        user_id = event.user_id
        try:
            item = build_item(event)
        except UnsupportedContentError:
            self._logger.debug("unsupported_forward_skipped", user_id=user_id, kind=event.kind)
            return

        try:
            session = await self._sm.ingest(user_id, item)
            await self._show_progress(user_id, session)
        except SessionRejection as rejection:
            count = getattr(rejection, "total_messages", None)
            await self._rejected(user_id, rejection, session_messages_count=count)
            return
        except Exception as exc:
            await self._failed(user_id, "forward_error", exc)
            return
        await self._stat(
            user_id, "forward_message", session_messages_count=len(session.messages)
        )

    async def _show_progress(self, user_id: int, session: Session) -> None:
        """
        Show buffer progress, editing the previous notice when possible.

        A deleted or stale notice is replaced by a new one; an unchanged
        notice is left alone. Other edit failures propagate.
        """
        text = self._sm.validator.format_progress_message(session)
        buttons = ANALYZE_BUTTON if session.messages else None
        if session.last_message_id is not None:
            try:
                await self._messenger.edit_message_text(
                    user_id, session.last_message_id, text, buttons
                )
                return
            except MessageNotModifiedError:
                self._logger.debug("progress_not_modified", user_id=user_id)
                return
            except MessageGoneError as exc:
                self._logger.warning(
                    "progress_edit_failed",
                    user_id=user_id,
                    message_id=session.last_message_id,
                    error=str(exc),
                )
        message_id = await self._messenger.send_message(user_id, text, buttons)
        await self._sm.remember_progress_message(user_id, message_id)

    # ── Commands ───────────────────────────────────────────────────────────────

    async def _on_help(self, event: CommandEvent) -> None:
        try:
            await self._messenger.send_message(event.user_id, HELP_TEXT)
        except Exception as exc:
            await self._failed(event.user_id, "help_error", exc)
            return
        await self._stat(event.user_id, "help_command")

    async def _on_command(self, event: CommandEvent) -> None:
        if event.command == "analyze":
            await self._analyze(event.user_id)
        elif event.command == "clear":
            await self._clear(event.user_id, "clear_command", "clear_error")
        else:
            await self._rejected(
                event.user_id,
                UnknownActionError(UNKNOWN_COMMAND),
            )

    async def _analyze(self, user_id: int, callback_id: str | None = None) -> None:
        try:
            session = await self._sm.begin_analysis(user_id)
            await self._messenger.send_message(
                user_id, analyze_menu_text(len(session.messages)), ANALYZE_MENU
            )
        except SessionRejection as rejection:
            await self._rejected(user_id, rejection, callback_id)
            return
        except Exception as exc:
            await self._failed(
                user_id, "callback_error" if callback_id else "analyze_error", exc, callback_id
            )
            return
        await self._stat(
            user_id, "analyze_clicked", session_messages_count=len(session.messages)
        )
        if callback_id is not None:
            await self._ack(callback_id)

    async def _clear(
        self,
        user_id: int,
        action_type: str,
        error_action: str,
        callback_id: str | None = None,
    ) -> None:
        try:
            await self._sm.clear(user_id)
            await self._messenger.send_message(user_id, BUFFER_CLEARED)
        except Exception as exc:
            await self._failed(user_id, error_action, exc, callback_id)
            return
        await self._stat(user_id, action_type)
        if callback_id is not None:
            await self._ack(callback_id)

    async def _ack(self, callback_id: str) -> None:
        try:
            await self._messenger.answer_callback(callback_id)
        except MessengerError as exc:
            self._logger.warning("callback_ack_failed", callback_id=callback_id, error=str(exc))

    # ── Buttons ────────────────────────────────────────────────────────────────

    async def _on_callback(self, event: CallbackEvent) -> None:
        user_id, data, callback_id = event.user_id, event.data, event.callback_id
        try:
            if data not in CALLBACK_ALLOW_LIST:
                raise UnknownActionError()
            session = await self._sm.get(user_id)
            if session is None:
                raise SessionExpiredError()
        except SessionRejection as rejection:
            await self._rejected(user_id, rejection, callback_id)
            return
        except Exception as exc:
            await self._failed(user_id, "callback_error", exc, callback_id)
            return

        if data in ANALYZE_CALLBACKS:
            await self._analyze(user_id, callback_id)
        elif data == "clear":
            await self._clear(user_id, "button_clear", "callback_error", callback_id)
        elif data == "regenerate":
            await self._instruct(user_id, None, "regenerate", "callback_error", callback_id)
        else:
            await self._instruct(user_id, data, f"button_{data}", "callback_error", callback_id)

    # ── Instructions ───────────────────────────────────────────────────────────

    async def _on_text(self, event: TextEvent) -> None:
        await self._instruct(event.user_id, event.text, "custom_request", "message_error")

    async def _instruct(
        self,
        user_id: int,
        instruction: str | None,
        action_type: str,
        error_action: str,
        callback_id: str | None = None,
    ) -> None:
        """
        Run one instruction against the buffer and send the reply.

        ``instruction=None`` replays the session's last instruction.
        """
        try:
            session = await self._sm.require_interactive(user_id)
            if instruction is None:
                instruction = self._sm.regeneration_instruction(session)
            elif (
                not self._assembler.is_known_action(instruction)
                and len(instruction) > self._limits.max_instruction_chars
            ):
                raise InstructionTooLongError(self._limits.max_instruction_chars)

            has_media = any(item.has_media for item in session.messages)
            await self._typing(user_id, "upload_photo" if has_media else "typing")
            reply = await self._assembler.generate(session.messages, instruction)
            await self._sm.record_instruction(user_id, instruction)
            await self._messenger.send_message(user_id, reply.text, REGENERATE_BUTTON)
        except SessionRejection as rejection:
            await self._rejected(user_id, rejection, callback_id)
            return
        except Exception as exc:
            await self._failed(user_id, error_action, exc, callback_id)
            return

        await self._stat(
            user_id,
            action_type,
            session_messages_count=len(session.messages),
            model_used=reply.metadata.model,
            tokens_used=reply.metadata.token_count,
            response_time_ms=reply.metadata.response_time_ms,
            action_data={
                "used_media": reply.metadata.used_media,
                "degraded_items": reply.metadata.degraded_items,
            },
        )
        if callback_id is not None:
            await self._ack(callback_id)
