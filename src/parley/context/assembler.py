"""Prompt assembly from buffered items and the model call."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

import structlog

from parley.context import prompts
from parley.events.bus import EventBus, ParleyEvent
from parley.inference.base import Inference, InferenceError
from parley.media.fetcher import MediaError, MediaFetcher
from parley.models.config import InferenceConfig
from parley.models.content import (
    AssistantReply,
    AudioContent,
    ContentPart,
    ImageContent,
    ReplyMetadata,
    TextContent,
)
from parley.models.session import BufferedItem, ItemKind, MediaRef


@dataclass
class ResolvedMedia:
    """A media item rendered as its caption line plus the resolved content."""

    item: BufferedItem
    parts: list[ContentPart]


@dataclass
class DegradedMedia:
    """A media item that failed to resolve; only a placeholder line is sent."""

    item: BufferedItem
    placeholder: TextContent
    error: str


@dataclass
class AssembledRequest:
    """The exact chat request about to be sent to the model."""

    messages: list[dict[str, Any]]
    max_tokens: int
    used_media: bool
    parts: list[ContentPart] = field(default_factory=list)
    """Transcript parts in chronological order; empty for text-only requests."""
    degraded: list[DegradedMedia] = field(default_factory=list)


class ContextAssembler:
    """
    Turns a session buffer plus an instruction into a model reply.

    A buffer without resolvable media becomes one plain-text transcript
    prompt. Otherwise each media item contributes two parts (a caption line
    and its resolved image, audio, description or transcript) and every other
    item contributes one transcript line. A media item that fails to resolve
    is replaced by a single placeholder line and never aborts the request.

    Inference errors are not caught here.
    """

    def __init__(
        self,
        inference: Inference,
        media: MediaFetcher,
        config: InferenceConfig,
        event_bus: EventBus | None = None,
    ) -> None:
        self._inference = inference
        self._media = media
        self._config = config
        self._zone = ZoneInfo(config.timezone)
        self._event_bus = event_bus or EventBus()
        self._logger = structlog.get_logger("parley.context")

    @property
    def model(self) -> str:
        return self._config.model

    # ── Instructions ───────────────────────────────────────────────────────────

    @staticmethod
    def is_known_action(key: str) -> bool:
        return key in prompts.INSTRUCTION_TEMPLATES

    @staticmethod
    def resolve_instruction(key_or_text: str) -> str:
        """Map an action key to its directive; anything else is used verbatim."""
        return prompts.INSTRUCTION_TEMPLATES.get(key_or_text, key_or_text)

    # ── Transcript ─────────────────────────────────────────────────────────────

    def format_time(self, timestamp: int) -> str:
        return datetime.fromtimestamp(timestamp, tz=self._zone).strftime("%H:%M")

    def speaker(self, item: BufferedItem) -> str:
        return prompts.SELF_LABEL if item.author.is_self else item.author.display_name

    def transcript_line(self, item: BufferedItem, text: str | None = None) -> str:
        return prompts.TRANSCRIPT_LINE.render(
            time=self.format_time(item.timestamp),
            speaker=self.speaker(item),
            text=item.text if text is None else text,
        )

    def build_transcript(self, items: list[BufferedItem]) -> str:
        return "\n".join(self.transcript_line(item) for item in items)

    # ── Media resolution ───────────────────────────────────────────────────────

    async def resolve_media(self, item: BufferedItem) -> ResolvedMedia | DegradedMedia:
        """
        Resolve one media item, degrading to a placeholder on failure.

        Raises:
            ValueError: If the item carries no media.
        """
        media = item.media
        if media is None or not item.has_media:
            raise ValueError(f"{item.kind.value} item at {item.timestamp} has no media")
        file_id = media.file_id
        try:
            if item.kind == ItemKind.IMAGE:
                caption = TextContent(text=self.transcript_line(item, prompts.IMAGE_CAPTION))
                content = await self._resolve_image(media)
            else:
                caption = TextContent(text=self.transcript_line(item, prompts.VOICE_CAPTION))
                content = await self._resolve_voice(media)
        except (MediaError, InferenceError) as exc:
            failed = prompts.IMAGE_FAILED if item.kind == ItemKind.IMAGE else prompts.VOICE_FAILED
            self._logger.warning(
                "media_degraded", file_id=file_id, kind=item.kind.value, error=str(exc)
            )
            self._event_bus.publish(
                ParleyEvent.MEDIA_DEGRADED,
                {"file_id": file_id, "kind": item.kind.value, "error": str(exc)},
            )
            return DegradedMedia(
                item=item,
                placeholder=TextContent(text=self.transcript_line(item, failed)),
                error=str(exc),
            )
        return ResolvedMedia(item=item, parts=[caption, content])

    async def _resolve_image(self, media: MediaRef) -> ContentPart:
        data_uri = await self._media.fetch_as_inline_image(media.file_id, media.mime_type)
        if self._config.image_mode == "inline":
            return ImageContent(url=data_uri)
        completion = await self._inference.complete(
            self._config.vision_model or self._config.model,
            [
                {
                    "role": "user",
                    "content": [
                        TextContent(text=prompts.DESCRIBE_IMAGE_PROMPT).to_llm(),
                        ImageContent(url=data_uri).to_llm(),
                    ],
                }
            ],
        )
        return TextContent(text=completion.text.strip())

    async def _resolve_voice(self, media: MediaRef) -> ContentPart:
        if self._config.voice_mode == "inline":
            return AudioContent(data=await self._media.fetch_as_inline_audio(media.file_id))
        wav = await self._media.fetch_as_wav(media.file_id)
        transcript = await self._inference.transcribe(
            self._config.transcription_model, wav, self._config.transcription_language
        )
        return TextContent(text=transcript.strip())

    async def build_parts(
        self, items: list[BufferedItem]
    ) -> tuple[list[ContentPart], list[DegradedMedia]]:
        """
        Render every item into content parts, preserving buffer order.

        Media items are resolved concurrently; all results are collected
        before any part is emitted.
        """
        media_items = [item for item in items if item.has_media]
        results = await asyncio.gather(*(self.resolve_media(item) for item in media_items))
        pending = iter(results)

        parts: list[ContentPart] = []
        degraded: list[DegradedMedia] = []
        for item in items:
            if not item.has_media:
                parts.append(TextContent(text=self.transcript_line(item)))
                continue
            result = next(pending)
            if isinstance(result, ResolvedMedia):
                parts.extend(result.parts)
            else:
                parts.append(result.placeholder)
                degraded.append(result)
        return parts, degraded

    # ── Request ────────────────────────────────────────────────────────────────

    async def assemble(self, items: list[BufferedItem], instruction: str) -> AssembledRequest:
        instruction_text = self.resolve_instruction(instruction)

        if not any(item.has_media for item in items):
            prompt = prompts.render_text_prompt(self.build_transcript(items), instruction_text)
            return AssembledRequest(
                messages=[
                    {"role": "system", "content": prompts.TEXT_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self._config.text_max_tokens,
                used_media=False,
            )

        parts, degraded = await self.build_parts(items)
        content: list[ContentPart] = [
            TextContent(text=prompts.CONTEXT_HEADER),
            *parts,
            TextContent(text=prompts.render_trailer(instruction_text)),
        ]
        return AssembledRequest(
            messages=[
                {"role": "system", "content": prompts.MULTIMODAL_SYSTEM_PROMPT},
                {"role": "user", "content": [part.to_llm() for part in content]},
            ],
            max_tokens=self._config.multimodal_max_tokens,
            used_media=True,
            parts=parts,
            degraded=degraded,
        )

    async def generate(self, items: list[BufferedItem], instruction: str) -> AssistantReply:
        """
        Build the request for ``items`` and return the model's reply.

        Elapsed time covers assembly (including media resolution) and the
        model call.

        Raises:
            InferenceError: The completion call failed or timed out.
        """
        start = time.monotonic()
        request = await self.assemble(items, instruction)
        completion = await self._inference.complete(
            self._config.model, request.messages, max_tokens=request.max_tokens
        )
        elapsed_ms = int((time.monotonic() - start) * 1000)

        token_count = completion.usage.effective_total() if completion.usage else None
        metadata = ReplyMetadata(
            model=self._config.model,
            token_count=token_count or None,
            response_time_ms=elapsed_ms,
            used_media=request.used_media,
            degraded_items=len(request.degraded),
        )
        self._logger.info(
            "reply_generated",
            model=metadata.model,
            used_media=metadata.used_media,
            items=len(items),
            degraded_items=metadata.degraded_items,
            response_time_ms=elapsed_ms,
            token_count=metadata.token_count,
        )
        self._event_bus.publish(
            ParleyEvent.REPLY_GENERATED,
            {
                "model": metadata.model,
                "used_media": metadata.used_media,
                "response_time_ms": elapsed_ms,
                "token_count": metadata.token_count,
            },
        )
        return AssistantReply(text=completion.text, metadata=metadata)
