"""Session lifecycle: buffering, analysis, conversation."""

from __future__ import annotations

import structlog

from parley.events.bus import EventBus, ParleyEvent
from parley.limits.validator import LimitsValidator
from parley.messenger.base import ForwardedEvent
from parley.models.content import ValidationResult
from parley.models.session import (
    MEDIA_KINDS,
    PLACEHOLDER_LABELS,
    Author,
    BufferedItem,
    ItemKind,
    Session,
    SessionState,
    SessionUpdate,
)
from parley.store.sessions import SessionStore

# ── Rejections ─────────────────────────────────────────────────────────────────


class SessionRejection(Exception):
    """
    A request refused by the lifecycle rules.

    Rejections are expected outcomes: they carry a stable ``code``, the
    statistics ``action_type`` they are recorded under, and a localized
    ``user_message``. They are never logged as errors.
    """

    code: str = "rejected"
    action_type: str = "request_rejected"
    default_message: str = "❌ Действие недоступно"

    def __init__(self, user_message: str | None = None) -> None:
        self.user_message = user_message or self.default_message
        super().__init__(self.user_message)


class LimitExceededError(SessionRejection):
    action_type = "limit_exceeded"

    def __init__(self, validation: ValidationResult, total_messages: int = 0) -> None:
        if validation.limit_kind is None:
            raise ValueError("LimitExceededError needs a failed validation with a limit kind")
        self.validation = validation
        self.total_messages = total_messages
        self.code = validation.limit_kind.value
        super().__init__(validation.reason)


class EmptyBufferError(SessionRejection):
    code = "empty_buffer"
    action_type = "analyze_rejected"
    default_message = "❌ Нет сообщений в буфере"


class NoSessionError(SessionRejection):
    code = "no_session"
    default_message = "Переслай сообщения и используй /analyze"


class AnalysisRequiredError(SessionRejection):
    code = "analyze_first"
    default_message = "💡 Используй /analyze"


class NoInstructionError(SessionRejection):
    code = "no_instruction"
    default_message = "❌ Нет предыдущей инструкции"


class UnknownActionError(SessionRejection):
    code = "unknown_action"
    action_type = "unknown_action"
    default_message = "❌ Неизвестное действие"


class SessionExpiredError(SessionRejection):
    """A button was pressed after its session was cleared."""

    code = "session_expired"
    action_type = "session_expired"
    default_message = "❌ Сессия истекла"


class InstructionTooLongError(SessionRejection):
    code = "instruction_too_long"

    def __init__(self, limit: int) -> None:
        super().__init__(f"⚠️ Слишком длинный запрос: максимум {limit} символов.")


class UnsupportedContentError(SessionRejection):
    code = "unsupported_content"


# ── Ingestion mapping ──────────────────────────────────────────────────────────


def build_item(event: ForwardedEvent) -> BufferedItem:
    """
    Turn a forwarded event into an immutable buffered item.

    ``is_self`` is decided here, once: the sender matches the owning user.
    Hidden senders and channel forwards are never "self".

    Raises:
        UnsupportedContentError: If a text item has no text.
    """
    author = Author(
        is_self=event.sender_id is not None and event.sender_id == event.user_id,
        display_name=event.sender_name or "Unknown",
        source_id=event.sender_id,
    )
    if event.kind == ItemKind.TEXT:
        if not event.text:
            raise UnsupportedContentError()
        text = event.text
    else:
        text = PLACEHOLDER_LABELS[event.kind]
    return BufferedItem(
        author=author,
        timestamp=event.forward_date,
        kind=event.kind,
        text=text,
        media=event.media if event.kind in MEDIA_KINDS else None,
    )


# ── State machine ──────────────────────────────────────────────────────────────


class SessionStateMachine:
    """
    Computes session transitions and delegates every write to the store.

    Transitions::

        (none)          --forward-->             collecting
        collecting      --forward (admitted)-->  collecting
        waiting_action  --forward-->             collecting  (buffer discarded)
        conversation    --forward-->             collecting  (buffer discarded)
        any, non-empty  --analyze-->             waiting_action
        waiting_action  --instruction-->         conversation
        conversation    --instruction/regen-->   conversation
        any             --clear-->               (none)

    Every method must run inside the owning user's serial lane; the machine
    itself holds no locks.
    """

    def __init__(
        self,
        store: SessionStore,
        validator: LimitsValidator,
        event_bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._validator = validator
        self._event_bus = event_bus or EventBus()
        self._logger = structlog.get_logger("parley.state")

    @property
    def validator(self) -> LimitsValidator:
        return self._validator

    async def get(self, user_id: int) -> Session | None:
        return await self._store.get_session(user_id)

    async def ingest(self, user_id: int, item: BufferedItem) -> Session:
        """
        Admit a forwarded item into the user's buffer.

        Creates the session if needed and resets it first when it has moved
        past passive buffering. Limits are checked before the append.

        Returns:
            The session after the merge.

        Raises:
            LimitExceededError: The item would break a buffer limit. The
                session (including any reset) is otherwise left as is.
        """
        session, created = await self._store.create_or_get_session(
            user_id, SessionState.COLLECTING
        )
        if created:
            self._event_bus.publish(ParleyEvent.SESSION_CREATED, {"user_id": user_id})
        elif session.state != SessionState.COLLECTING:
            previous = session.state
            discarded = len(session.messages)
            session = await self._store.reset_session(user_id, SessionState.COLLECTING)
            self._logger.info(
                "session_reset",
                user_id=user_id,
                previous_state=previous.value,
                discarded_items=discarded,
            )
            self._event_bus.publish(
                ParleyEvent.SESSION_RESET,
                {
                    "user_id": user_id,
                    "previous_state": previous.value,
                    "discarded_items": discarded,
                },
            )

        validation = self._validator.validate_new_message(session, item)
        if not validation.valid:
            rejection = LimitExceededError(validation, total_messages=len(session.messages))
            self._logger.info("limit_exceeded", user_id=user_id, limit_kind=rejection.code)
            self._event_bus.publish(
                ParleyEvent.LIMIT_EXCEEDED, {"user_id": user_id, "limit_kind": rejection.code}
            )
            raise rejection

        session = await self._store.append_message_sorted(user_id, item)
        self._event_bus.publish(
            ParleyEvent.ITEM_BUFFERED,
            {"user_id": user_id, "kind": item.kind.value, "total_messages": len(session.messages)},
        )
        return session

    async def begin_analysis(self, user_id: int) -> Session:
        """
        Move a non-empty session to ``waiting_action``.

        Raises:
            EmptyBufferError: No session, or nothing buffered.
        """
        session = await self._store.get_session(user_id)
        if session is None or session.is_empty:
            raise EmptyBufferError()
        session = await self._store.update_session(
            user_id, SessionUpdate(state=SessionState.WAITING_ACTION)
        )
        self._event_bus.publish(
            ParleyEvent.ANALYSIS_STARTED,
            {"user_id": user_id, "total_messages": len(session.messages)},
        )
        return session

    async def require_interactive(self, user_id: int) -> Session:
        """
        Return the session if it can take an instruction.

        Raises:
            NoSessionError: Nothing has been forwarded yet.
            AnalysisRequiredError: Still collecting; analyze must run first.
        """
        session = await self._store.get_session(user_id)
        if session is None:
            raise NoSessionError()
        if session.state == SessionState.COLLECTING:
            raise AnalysisRequiredError()
        return session

    def regeneration_instruction(self, session: Session) -> str:
        """
        Return the instruction to replay for a "regenerate" request.

        Raises:
            NoInstructionError: No instruction has been processed yet.
        """
        if not session.last_instruction:
            raise NoInstructionError()
        return session.last_instruction

    async def record_instruction(self, user_id: int, instruction: str) -> Session:
        """Enter (or stay in) ``conversation``, remembering ``instruction`` for regeneration."""
        session = await self._store.update_session(
            user_id,
            SessionUpdate(state=SessionState.CONVERSATION, last_instruction=instruction),
        )
        self._event_bus.publish(
            ParleyEvent.INSTRUCTION_RECORDED, {"user_id": user_id, "instruction": instruction}
        )
        return session

    async def remember_progress_message(self, user_id: int, message_id: int) -> Session:
        return await self._store.update_session(
            user_id, SessionUpdate(last_message_id=message_id)
        )

    async def clear(self, user_id: int) -> bool:
        """Delete the session outright. Returns True if one existed."""
        deleted = await self._store.delete_session(user_id)
        if deleted:
            self._event_bus.publish(ParleyEvent.SESSION_DELETED, {"user_id": user_id})
        return deleted
