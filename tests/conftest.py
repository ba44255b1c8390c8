"""Shared fixtures for Parley tests."""

from __future__ import annotations

from typing import Any

import pytest
import pytest_asyncio

from parley.context.assembler import ContextAssembler
from parley.events.bus import EventBus, ParleyEvent
from parley.lanes import SerialExecutor
from parley.limits.validator import LimitsValidator
from parley.media.fetcher import MediaDownloadError
from parley.messenger.base import ForwardedEvent, Keyboard
from parley.models.config import InferenceConfig, LimitsConfig, ParleyConfig, StoreConfig
from parley.models.content import Completion, TokenUsage
from parley.models.session import Author, BufferedItem, ItemKind, MediaRef
from parley.router import Router
from parley.state.machine import SessionStateMachine
from parley.store.sessions import SessionStore

USER_ID = 1001
PEER_ID = 2002

# 2024-01-01 12:00:00 UTC
BASE_TS = 1_704_110_400


class FakeMessenger:
    """Records outbound calls; optionally fails edits or sends."""

    def __init__(self) -> None:
        self.sent: list[tuple[int, str, Keyboard | None]] = []
        self.edits: list[tuple[int, int, str]] = []
        self.actions: list[tuple[int, str]] = []
        self.callbacks: list[tuple[str, str | None, bool]] = []
        self.edit_error: Exception | None = None
        self.send_error: Exception | None = None
        self.action_error: Exception | None = None
        self._next_id = 100

    async def send_message(self, user_id: int, text: str, buttons: Keyboard | None = None) -> int:
        if self.send_error is not None:
            raise self.send_error
        self._next_id += 1
        self.sent.append((user_id, text, buttons))
        return self._next_id

    async def edit_message_text(
        self, user_id: int, message_id: int, text: str, buttons: Keyboard | None = None
    ) -> None:
        if self.edit_error is not None:
            raise self.edit_error
        self.edits.append((user_id, message_id, text))

    async def send_chat_action(self, user_id: int, action: str = "typing") -> None:
        if self.action_error is not None:
            raise self.action_error
        self.actions.append((user_id, action))

    async def answer_callback(
        self, callback_id: str, text: str | None = None, show_alert: bool = False
    ) -> None:
        self.callbacks.append((callback_id, text, show_alert))

    @property
    def texts(self) -> list[str]:
        return [text for _, text, _ in self.sent]


class FakeInference:
    """Returns a canned completion and records every request."""

    def __init__(self, text: str = "Draft reply") -> None:
        self.text = text
        self.calls: list[dict[str, Any]] = []
        self.transcriptions: list[tuple[str, bytes, str]] = []
        self.error: Exception | None = None

    async def complete(
        self, model: str, messages: list[dict[str, Any]], max_tokens: int | None = None
    ) -> Completion:
        self.calls.append({"model": model, "messages": messages, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return Completion(text=self.text, usage=TokenUsage(input=40, output=2, total=42))

    async def transcribe(self, model: str, audio: bytes, language: str) -> str:
        self.transcriptions.append((model, audio, language))
        if self.error is not None:
            raise self.error
        return "расшифровка"


class FakeMediaFetcher:
    """Serves deterministic media; file ids in ``failing`` raise a download error."""

    def __init__(self) -> None:
        self.failing: set[str] = set()
        self.requested: list[str] = []

    def _check(self, file_id: str) -> None:
        self.requested.append(file_id)
        if file_id in self.failing:
            raise MediaDownloadError(f"cannot download {file_id}")

    async def fetch_bytes(self, file_id: str) -> bytes:
        self._check(file_id)
        return b"raw-" + file_id.encode()

    async def fetch_as_inline_image(self, file_id: str, mime_type: str | None = None) -> str:
        self._check(file_id)
        return f"data:{mime_type or 'image/jpeg'};base64,SU1H"

    async def fetch_as_inline_audio(self, file_id: str) -> str:
        self._check(file_id)
        return "V0FW"

    async def fetch_as_wav(self, file_id: str) -> bytes:
        self._check(file_id)
        return b"RIFF-wav"


def make_item(
    ts: int,
    text: str = "hello",
    kind: ItemKind = ItemKind.TEXT,
    is_self: bool = False,
    name: str = "Alice",
    file_id: str | None = None,
    duration: int | None = None,
) -> BufferedItem:
    """Helper to create a BufferedItem; ``file_id`` attaches media for image/voice."""
    media = MediaRef(file_id=file_id, duration=duration) if file_id else None
    return BufferedItem(
        author=Author(is_self=is_self, display_name=name, source_id=USER_ID if is_self else PEER_ID),
        timestamp=ts,
        kind=kind,
        text=text,
        media=media,
    )


def make_forward(
    ts: int = BASE_TS,
    text: str | None = "hello",
    kind: ItemKind = ItemKind.TEXT,
    sender_id: int | None = PEER_ID,
    sender_name: str | None = "Alice",
    file_id: str | None = None,
    duration: int | None = None,
    user_id: int = USER_ID,
) -> ForwardedEvent:
    """Helper to create a ForwardedEvent as parsed from the platform."""
    media = MediaRef(file_id=file_id, duration=duration) if file_id else None
    return ForwardedEvent(
        user_id=user_id,
        forward_date=ts,
        sender_id=sender_id,
        sender_name=sender_name,
        kind=kind,
        text=text,
        media=media,
    )


@pytest.fixture
def config(tmp_path):
    """ParleyConfig with a temp database path."""
    return ParleyConfig(store=StoreConfig(db_path=str(tmp_path / "test.db")))


@pytest_asyncio.fixture
async def store(config):
    """Initialized SessionStore backed by a temp SQLite database."""
    s = SessionStore(config.store)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[ParleyEvent, dict[str, Any]]] = []

    def _collect(event: ParleyEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest.fixture
def limits():
    return LimitsConfig()


@pytest.fixture
def validator(limits):
    return LimitsValidator(limits)


@pytest.fixture
def state_machine(store, validator, event_bus):
    return SessionStateMachine(store, validator, event_bus)


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def inference():
    return FakeInference()


@pytest.fixture
def media():
    return FakeMediaFetcher()


@pytest.fixture
def inference_config():
    return InferenceConfig(model="test/model", timezone="UTC")


@pytest.fixture
def assembler(inference, media, inference_config, event_bus):
    return ContextAssembler(inference, media, inference_config, event_bus)


@pytest_asyncio.fixture
async def router(state_machine, assembler, messenger, store, limits):
    """Router over the fakes. Lanes are drained before teardown."""
    r = Router(state_machine, assembler, messenger, store, SerialExecutor(), limits)
    yield r
    await r.lanes.drain()
