"""Inference backed by litellm's provider-agnostic async API."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from parley.inference.base import InferenceError, InferenceTimeoutError
from parley.models.config import InferenceConfig
from parley.models.content import Completion, TokenUsage


class LiteLLMInference:
    """
    :class:`~parley.inference.base.Inference` implementation over ``litellm``.

    Every call is bounded by ``InferenceConfig.timeout_secs``; provider errors
    are re-raised as :class:`InferenceError` with the original chained. No
    retries happen here.

    Example::

        inference = LiteLLMInference(InferenceConfig(model="openai/gpt-4o-mini"))
        completion = await inference.complete(
            "openai/gpt-4o-mini", [{"role": "user", "content": "Hi"}]
        )
    """

    def __init__(self, config: InferenceConfig) -> None:
        self._config = config
        self._logger = structlog.get_logger("parley.inference")

    async def complete(
        self,
        model: str,
        messages: list[dict[str, Any]],
        max_tokens: int | None = None,
    ) -> Completion:
        import litellm

        call_kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": self._config.temperature,
            "max_tokens": max_tokens or self._config.text_max_tokens,
        }
        try:
            response = await asyncio.wait_for(
                litellm.acompletion(**call_kwargs), timeout=self._config.timeout_secs
            )
        except TimeoutError as exc:
            self._logger.error("completion_timeout", model=model, timeout=self._config.timeout_secs)
            raise InferenceTimeoutError(
                f"{model} did not answer within {self._config.timeout_secs}s"
            ) from exc
        except Exception as exc:
            self._logger.error("completion_failed", model=model, error=str(exc))
            raise InferenceError(f"Completion failed for {model}") from exc

        text = response.choices[0].message.content or ""
        usage = None
        if getattr(response, "usage", None):
            usage = TokenUsage(
                input=getattr(response.usage, "prompt_tokens", 0) or 0,
                output=getattr(response.usage, "completion_tokens", 0) or 0,
                total=getattr(response.usage, "total_tokens", 0) or 0,
            )
        return Completion(text=text, usage=usage)

    async def transcribe(self, model: str, audio: bytes, language: str) -> str:
        import litellm

        try:
            response = await asyncio.wait_for(
                litellm.atranscription(
                    model=model, file=("audio.wav", audio), language=language
                ),
                timeout=self._config.timeout_secs,
            )
        except TimeoutError as exc:
            self._logger.error("transcription_timeout", model=model)
            raise InferenceTimeoutError(
                f"{model} did not transcribe within {self._config.timeout_secs}s"
            ) from exc
        except Exception as exc:
            self._logger.error("transcription_failed", model=model, error=str(exc))
            raise InferenceError(f"Transcription failed for {model}") from exc

        return getattr(response, "text", "") or ""
