"""Messenger capability: inbound event shapes and the outbound protocol."""

from __future__ import annotations

from typing import Annotated, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from parley.models.session import ItemKind, MediaRef

# ── Errors ─────────────────────────────────────────────────────────────────────


class MessengerError(Exception):
    """Base class for chat-platform failures."""


class MessageGoneError(MessengerError):
    """The message to edit was deleted, is too old, or its id is invalid."""


class MessageNotModifiedError(MessengerError):
    """An edit was a no-op because the text and markup are unchanged."""


# ── Outbound ───────────────────────────────────────────────────────────────────


class InlineButton(BaseModel):
    """A single inline keyboard button carrying a callback payload."""

    text: str
    callback_data: str


Keyboard = list[list[InlineButton]]


@runtime_checkable
class Messenger(Protocol):
    """Outbound operations the bot needs from the chat platform."""

    async def send_message(
        self, user_id: int, text: str, buttons: Keyboard | None = None
    ) -> int:
        """Send ``text`` and return the new message's id."""
        ...

    async def edit_message_text(
        self, user_id: int, message_id: int, text: str, buttons: Keyboard | None = None
    ) -> None:
        """
        Replace the text of a previously sent message.

        Raises:
            MessageGoneError: The message can no longer be edited.
            MessageNotModifiedError: Nothing changed.
            MessengerError: Any other platform failure.
        """
        ...

    async def send_chat_action(self, user_id: int, action: str = "typing") -> None: ...

    async def answer_callback(
        self, callback_id: str, text: str | None = None, show_alert: bool = False
    ) -> None: ...


# ── Inbound ────────────────────────────────────────────────────────────────────


class ForwardedEvent(BaseModel):
    """
    A message the user forwarded to the bot.

    ``sender_id`` is ``None`` when the original sender is hidden or the
    message was forwarded from a channel.
    """

    type: Literal["forwarded"] = "forwarded"
    user_id: int
    forward_date: int
    """Original send time, seconds since the epoch."""
    sender_id: int | None = None
    sender_name: str | None = None
    kind: ItemKind
    text: str | None = None
    media: MediaRef | None = None


class TextEvent(BaseModel):
    """Plain text typed by the user (not a command, not forwarded)."""

    type: Literal["text"] = "text"
    user_id: int
    text: str


class CommandEvent(BaseModel):
    """A slash command such as ``/analyze``. ``command`` has no leading slash."""

    type: Literal["command"] = "command"
    user_id: int
    command: str
    args: str = ""


class CallbackEvent(BaseModel):
    """An inline button press."""

    type: Literal["callback"] = "callback"
    user_id: int
    callback_id: str
    data: str


InboundEvent = Annotated[
    ForwardedEvent | TextEvent | CommandEvent | CallbackEvent,
    Field(discriminator="type"),
]
