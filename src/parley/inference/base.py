"""Inference capability: chat completion and transcription."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from parley.models.content import Completion


class InferenceError(Exception):
    """Base class for language-model failures."""


class InferenceTimeoutError(InferenceError):
    """The model did not answer within the configured timeout."""


@runtime_checkable
class Inference(Protocol):
    """
    Language-model operations the assembler depends on.

    ``messages`` use the OpenAI chat format; a message ``content`` may be a
    string or a list of ``text`` / ``image_url`` / ``input_audio`` parts.
    """

    async def complete(
        self,
        model: str,
        messages: list[dict[str, Any]],
        max_tokens: int | None = None,
    ) -> Completion: ...

    async def transcribe(self, model: str, audio: bytes, language: str) -> str: ...
