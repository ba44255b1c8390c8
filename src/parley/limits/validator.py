"""Admission control for session buffers."""

from __future__ import annotations

from parley.models.config import LimitsConfig
from parley.models.content import LimitKind, ValidationResult
from parley.models.session import BufferedItem, ItemKind, Session, SessionStats


class LimitsValidator:
    """
    Stateless admission checks for the session buffer.

    Checks run before an item is appended: the store append is an atomic
    sorted merge and cannot be rolled back cheaply once committed.
    """

    def __init__(self, config: LimitsConfig | None = None) -> None:
        self._config = config or LimitsConfig()

    @property
    def config(self) -> LimitsConfig:
        return self._config

    def error_message(self, kind: LimitKind) -> str:
        """Return the localized explanation shown for a rejected item."""
        cfg = self._config
        if kind == LimitKind.MAX_MESSAGES:
            return (
                f"⚠️ Достигнут лимит: максимум {cfg.max_messages} сообщений в одной сессии.\n"
                "Используй /clear чтобы начать новую сессию."
            )
        if kind == LimitKind.MAX_IMAGES:
            return (
                f"⚠️ Достигнут лимит: максимум {cfg.max_images} изображений в одной сессии.\n"
                "Используй /clear чтобы начать новую сессию."
            )
        if kind == LimitKind.MAX_VOICE:
            return (
                f"⚠️ Достигнут лимит: максимум {cfg.max_voice} голосовых сообщений "
                "в одной сессии.\nИспользуй /clear чтобы начать новую сессию."
            )
        return (
            "⚠️ Голосовое сообщение слишком длинное.\n"
            f"Максимальная длительность: {cfg.max_voice_duration} секунд."
        )

    def validate_new_message(self, session: Session, candidate: BufferedItem) -> ValidationResult:
        """
        Decide whether ``candidate`` may join ``session``'s buffer.

        Checks run in order and the first failure wins: total count, image
        count, voice count, voice duration.
        """
        cfg = self._config
        stats = session.stats

        if stats.total_messages >= cfg.max_messages:
            return self._reject(LimitKind.MAX_MESSAGES)

        if candidate.kind == ItemKind.IMAGE and stats.image_count >= cfg.max_images:
            return self._reject(LimitKind.MAX_IMAGES)

        if candidate.kind == ItemKind.VOICE:
            if stats.voice_count >= cfg.max_voice:
                return self._reject(LimitKind.MAX_VOICE)
            duration = candidate.media.duration if candidate.media else None
            if (duration or 0) > cfg.max_voice_duration:
                return self._reject(LimitKind.VOICE_TOO_LONG)

        return ValidationResult.ok()

    def format_progress_message(self, session: Session) -> str:
        """Render the running ``n/max`` counters shown after each admitted item."""
        return self.format_stats(session.stats)

    def format_stats(self, stats: SessionStats) -> str:
        cfg = self._config
        parts = [f"📝 Накоплено: {stats.total_messages}/{cfg.max_messages} сообщений"]
        if stats.image_count > 0:
            parts.append(f"{stats.image_count}/{cfg.max_images} изображений")
        if stats.voice_count > 0:
            parts.append(f"{stats.voice_count}/{cfg.max_voice} голосовых")

        text = ", ".join(parts)
        if stats.total_messages >= 1:
            text += "\n💡 Используй /analyze чтобы выбрать действие или ввести свой запрос"
        return text

    def _reject(self, kind: LimitKind) -> ValidationResult:
        return ValidationResult(valid=False, reason=self.error_message(kind), limit_kind=kind)
