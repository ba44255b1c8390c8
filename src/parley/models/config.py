"""Configuration models for Parley components."""

from __future__ import annotations

import os
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator


class LimitsConfig(BaseModel):
    """Admission limits applied to every session buffer."""

    max_messages: int = Field(
        default=50,
        ge=1,
        le=1_000,
        description="Maximum buffered items per session.",
    )

    max_images: int = Field(
        default=5,
        ge=0,
        description="Maximum image items per session.",
    )

    max_voice: int = Field(
        default=7,
        ge=0,
        description="Maximum voice items per session.",
    )

    max_voice_duration: int = Field(
        default=60,
        ge=1,
        description="Longest accepted voice message, in seconds.",
    )

    max_instruction_chars: int = Field(
        default=2_000,
        ge=10,
        le=20_000,
        description="Longest free-text instruction forwarded to the model.",
    )


class InferenceConfig(BaseModel):
    """Configuration for the language-model calls."""

    model: str = "openrouter/google/gemini-2.5-flash"
    """litellm model string used for every completion."""

    text_max_tokens: int = Field(default=1_000, ge=16, le=32_000)
    multimodal_max_tokens: int = Field(default=2_000, ge=16, le=32_000)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)

    timeout_secs: float = Field(
        default=60.0,
        gt=0,
        le=600,
        description="Upper bound on a single completion or transcription call.",
    )

    transcription_model: str = "openai/whisper-1"
    transcription_language: str = "ru"

    vision_model: str | None = Field(
        default=None,
        description="Model used when image_mode='describe'. None = use ``model``.",
    )

    image_mode: Literal["inline", "describe"] = "inline"
    """``inline`` sends the picture itself; ``describe`` sends a vision-model caption."""

    voice_mode: Literal["inline", "transcribe"] = "inline"
    """``inline`` sends WAV audio; ``transcribe`` sends a speech-to-text transcript."""

    timezone: str = "UTC"
    """IANA zone used to render ``[HH:MM]`` transcript labels."""

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value!r}") from exc
        return value


class MediaConfig(BaseModel):
    """Configuration for media download and transcoding."""

    download_timeout_secs: float = Field(default=30.0, gt=0, le=300)
    transcode_timeout_secs: float = Field(default=30.0, gt=0, le=300)
    ffmpeg_binary: str = "ffmpeg"
    audio_sample_rate: int = Field(default=16_000, ge=8_000, le=48_000)
    default_image_mime: str = "image/jpeg"


class StoreConfig(BaseModel):
    """Configuration for the SQLite persistence layer."""

    db_path: str = Field(
        default="~/.parley/parley.db",
        description="Path to the SQLite database file. ~ is expanded at runtime.",
    )

    wal_mode: bool = True
    """Use WAL journal mode for better concurrent read performance."""

    connection_timeout: float = 30.0
    """Seconds to wait for the database connection before raising."""


class TelegramConfig(BaseModel):
    """Configuration for the Telegram Bot API transport."""

    bot_token: str = ""
    api_base: str = "https://api.telegram.org"
    poll_timeout: int = Field(default=30, ge=0, le=50)
    request_timeout: float = Field(
        default=40.0,
        gt=0,
        description="HTTP timeout; must exceed poll_timeout for long polling.",
    )

    @model_validator(mode="after")
    def validate_timeouts(self) -> TelegramConfig:
        if self.request_timeout <= self.poll_timeout:
            raise ValueError("request_timeout must be greater than poll_timeout")
        return self


class LoggingConfig(BaseModel):
    """Configuration for structlog output."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_output: bool = False
    persist_errors: bool = True
    """Mirror error-level events into the store's ``logs`` table."""

    @field_validator("level", mode="before")
    @classmethod
    def normalise_level(cls, value: str) -> str:
        return value.upper() if isinstance(value, str) else value


class ParleyConfig(BaseModel):
    """
    Top-level configuration for a Parley deployment.

    All sub-configs have sensible defaults and can be overridden individually.

    Example::

        config = ParleyConfig(
            limits=LimitsConfig(max_messages=20),
            inference=InferenceConfig(model="openai/gpt-4o-mini"),
        )
    """

    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    inference: InferenceConfig = Field(default_factory=InferenceConfig)
    media: MediaConfig = Field(default_factory=MediaConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> ParleyConfig:
        """Return a config instance with all defaults."""
        return cls()

    @classmethod
    def from_env(cls, env_file: str | None = None) -> ParleyConfig:
        """
        Build a config from environment variables and a ``.env`` file.

        Without ``env_file`` the nearest ``.env`` from the working directory
        upwards is used. Only variables that are set override the defaults;
        variables already in the environment win over the file.

        Raises:
            pydantic.ValidationError: If any supplied value is out of range.
        """
        load_dotenv(env_file or find_dotenv(usecwd=True))
        env = os.environ

        inference: dict[str, object] = {}
        for key, var in (
            ("model", "PARLEY_MODEL"),
            ("vision_model", "PARLEY_VISION_MODEL"),
            ("transcription_model", "PARLEY_TRANSCRIPTION_MODEL"),
            ("image_mode", "PARLEY_IMAGE_MODE"),
            ("voice_mode", "PARLEY_VOICE_MODE"),
            ("timezone", "PARLEY_TIMEZONE"),
        ):
            if env.get(var):
                inference[key] = env[var]

        store: dict[str, object] = {}
        if env.get("PARLEY_DB_PATH"):
            store["db_path"] = env["PARLEY_DB_PATH"]

        logging_cfg: dict[str, object] = {}
        if env.get("LOG_LEVEL"):
            logging_cfg["level"] = env["LOG_LEVEL"]
        if env.get("LOG_JSON"):
            logging_cfg["json_output"] = env["LOG_JSON"].lower() in ("1", "true", "yes")

        return cls(
            inference=InferenceConfig(**inference),
            store=StoreConfig(**store),
            telegram=TelegramConfig(bot_token=env.get("TELEGRAM_BOT_TOKEN", "")),
            logging=LoggingConfig(**logging_cfg),
        )
