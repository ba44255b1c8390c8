"""Chat-platform capability: event shapes, protocol and the Telegram adapter."""

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
from parley.messenger.telegram import TelegramAPIError, TelegramMessenger, parse_update

__all__ = [
    "Messenger",
    "MessengerError",
    "MessageGoneError",
    "MessageNotModifiedError",
    "TelegramAPIError",
    "TelegramMessenger",
    "InlineButton",
    "Keyboard",
    "ForwardedEvent",
    "TextEvent",
    "CommandEvent",
    "CallbackEvent",
    "InboundEvent",
    "parse_update",
]
