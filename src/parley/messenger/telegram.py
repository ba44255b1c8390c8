"""Telegram Bot API adapter over httpx."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from parley.messenger.base import (
    CallbackEvent,
    CommandEvent,
    ForwardedEvent,
    InboundEvent,
    Keyboard,
    MessageGoneError,
    MessageNotModifiedError,
    MessengerError,
    TextEvent,
)
from parley.models.config import TelegramConfig
from parley.models.session import ItemKind, MediaRef

_GONE_MARKERS = (
    "message to edit not found",
    "message can't be edited",
    "MESSAGE_ID_INVALID",
)
_NOT_MODIFIED_MARKER = "message is not modified"
MAX_MESSAGE_LENGTH = 4096

# Forwarded kinds carried only as a placeholder label.
_PLACEHOLDER_FIELDS: tuple[tuple[str, ItemKind], ...] = (
    ("video", ItemKind.VIDEO),
    ("sticker", ItemKind.STICKER),
    ("document", ItemKind.DOCUMENT),
    ("audio", ItemKind.AUDIO),
    ("video_note", ItemKind.VIDEO_NOTE),
)

logger = structlog.get_logger("parley.telegram")


class TelegramAPIError(MessengerError):
    """The Bot API answered ``ok: false`` or the HTTP request failed."""

    def __init__(self, method: str, description: str, error_code: int | None = None) -> None:
        self.method = method
        self.description = description
        self.error_code = error_code
        super().__init__(f"{method}: {description}")


class TelegramMessenger:
    """
    :class:`~parley.messenger.base.Messenger` over the Telegram Bot API.

    Owns its ``httpx.AsyncClient`` unless one is passed in (tests pass a
    client built on ``httpx.MockTransport``).
    """

    def __init__(
        self, config: TelegramConfig, client: httpx.AsyncClient | None = None
    ) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.request_timeout)
        self._base = f"{config.api_base}/bot{config.bot_token}"
        self._file_base = f"{config.api_base}/file/bot{config.bot_token}"

    async def _call(self, method: str, payload: dict[str, Any] | None = None) -> Any:
        try:
            response = await self._client.post(f"{self._base}/{method}", json=payload or {})
        except httpx.HTTPError as exc:
            raise TelegramAPIError(method, f"transport error: {exc}") from exc
        try:
            body = response.json()
        except ValueError as exc:
            raise TelegramAPIError(
                method, f"non-JSON response (HTTP {response.status_code})"
            ) from exc
        if not body.get("ok"):
            raise TelegramAPIError(
                method,
                body.get("description", "unknown error"),
                body.get("error_code"),
            )
        return body.get("result")

    @staticmethod
    def _markup(buttons: Keyboard | None) -> dict[str, Any] | None:
        if not buttons:
            return None
        return {
            "inline_keyboard": [
                [button.model_dump() for button in row] for row in buttons
            ]
        }

    # ── Messenger protocol ─────────────────────────────────────────────────────

    async def send_message(
        self, user_id: int, text: str, buttons: Keyboard | None = None
    ) -> int:
        payload: dict[str, Any] = {"chat_id": user_id, "text": text[:MAX_MESSAGE_LENGTH]}
        markup = self._markup(buttons)
        if markup:
            payload["reply_markup"] = markup
        result = await self._call("sendMessage", payload)
        return int(result["message_id"])

    async def edit_message_text(
        self, user_id: int, message_id: int, text: str, buttons: Keyboard | None = None
    ) -> None:
        payload: dict[str, Any] = {
            "chat_id": user_id,
            "message_id": message_id,
            "text": text[:MAX_MESSAGE_LENGTH],
        }
        markup = self._markup(buttons)
        if markup:
            payload["reply_markup"] = markup
        try:
            await self._call("editMessageText", payload)
        except TelegramAPIError as exc:
            if any(marker in exc.description for marker in _GONE_MARKERS):
                raise MessageGoneError(exc.description) from exc
            if _NOT_MODIFIED_MARKER in exc.description:
                raise MessageNotModifiedError(exc.description) from exc
            raise

    async def send_chat_action(self, user_id: int, action: str = "typing") -> None:
        await self._call("sendChatAction", {"chat_id": user_id, "action": action})

    async def answer_callback(
        self, callback_id: str, text: str | None = None, show_alert: bool = False
    ) -> None:
        payload: dict[str, Any] = {"callback_query_id": callback_id}
        if text is not None:
            payload["text"] = text
            payload["show_alert"] = show_alert
        await self._call("answerCallbackQuery", payload)

    # ── Transport ──────────────────────────────────────────────────────────────

    async def get_updates(self, offset: int | None = None) -> list[dict[str, Any]]:
        payload: dict[str, Any] = {
            "timeout": self._config.poll_timeout,
            "allowed_updates": ["message", "callback_query"],
        }
        if offset is not None:
            payload["offset"] = offset
        return await self._call("getUpdates", payload) or []

    async def download_file(self, file_id: str) -> bytes:
        """Resolve ``file_id`` via ``getFile`` and download its content."""
        info = await self._call("getFile", {"file_id": file_id})
        path = info.get("file_path") if info else None
        if not path:
            raise TelegramAPIError("getFile", f"no file_path for {file_id!r}")
        try:
            response = await self._client.get(f"{self._file_base}/{path}")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise TelegramAPIError("download", str(exc)) from exc
        return response.content

    async def set_commands(self, commands: list[tuple[str, str]]) -> None:
        await self._call(
            "setMyCommands",
            {"commands": [{"command": c, "description": d} for c, d in commands]},
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


# ── Update parsing ─────────────────────────────────────────────────────────────


def _forward_sender(message: dict[str, Any]) -> tuple[int | None, str | None] | None:
    """
    Return ``(sender_id, sender_name)`` for a forwarded message, or None.

    Understands both ``forward_origin`` and the legacy ``forward_from`` /
    ``forward_sender_name`` fields.
    """
    origin = message.get("forward_origin")
    if origin:
        kind = origin.get("type")
        if kind == "user":
            sender = origin.get("sender_user", {})
            return sender.get("id"), sender.get("first_name")
        if kind == "hidden_user":
            return None, origin.get("sender_user_name")
        if kind == "chat":
            return None, origin.get("sender_chat", {}).get("title")
        if kind == "channel":
            return None, origin.get("chat", {}).get("title")
        return None, None
    if "forward_date" not in message:
        return None
    sender = message.get("forward_from")
    if sender:
        return sender.get("id"), sender.get("first_name")
    return None, message.get("forward_sender_name")


def _parse_forward(user_id: int, message: dict[str, Any]) -> ForwardedEvent | None:
    sender = _forward_sender(message)
    if sender is None:
        return None
    sender_id, sender_name = sender
    origin = message.get("forward_origin") or {}
    forward_date = origin.get("date") or message.get("forward_date") or message.get("date", 0)
    base: dict[str, Any] = {
        "user_id": user_id,
        "forward_date": int(forward_date),
        "sender_id": sender_id,
        "sender_name": sender_name,
    }

    if message.get("text"):
        return ForwardedEvent(kind=ItemKind.TEXT, text=message["text"], **base)
    if message.get("photo"):
        photo = message["photo"][-1]
        return ForwardedEvent(
            kind=ItemKind.IMAGE,
            media=MediaRef(
                file_id=photo["file_id"],
                size=photo.get("file_size"),
                width=photo.get("width"),
                height=photo.get("height"),
            ),
            **base,
        )
    if message.get("voice"):
        voice = message["voice"]
        return ForwardedEvent(
            kind=ItemKind.VOICE,
            media=MediaRef(
                file_id=voice["file_id"],
                size=voice.get("file_size"),
                duration=voice.get("duration"),
                mime_type=voice.get("mime_type"),
            ),
            **base,
        )
    for field_name, kind in _PLACEHOLDER_FIELDS:
        if message.get(field_name):
            return ForwardedEvent(kind=kind, **base)

    logger.debug("unsupported_forward_skipped", user_id=user_id, keys=sorted(message))
    return None


def parse_update(update: dict[str, Any]) -> InboundEvent | None:
    """
    Map a raw Bot API update to an inbound event.

    Returns None for updates the bot does not act on (edits, group service
    messages, unsupported forwarded content).
    """
    query = update.get("callback_query")
    if query:
        return CallbackEvent(
            user_id=query["from"]["id"],
            callback_id=str(query["id"]),
            data=query.get("data") or "",
        )

    message = update.get("message")
    if not message or "from" not in message:
        return None
    user_id = message["from"]["id"]

    if "forward_origin" in message or "forward_date" in message:
        return _parse_forward(user_id, message)

    text = message.get("text")
    if not text:
        return None
    if text.startswith("/"):
        head, _, args = text.partition(" ")
        command = head[1:].split("@", 1)[0].lower()
        if not command:
            return None
        return CommandEvent(user_id=user_id, command=command, args=args.strip())
    return TextEvent(user_id=user_id, text=text)
