"""Generative service boundary and its Anthropic-backed implementation."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import anthropic
from anthropic import AsyncAnthropic

from src.config import Settings, settings
from src.llm.errors import QuotaExceededError, RequestTimeoutError
from src.llm.prompts import SYSTEM_PROMPT

logger = logging.getLogger(__name__)


class GenerativeService(Protocol):
    """Returns generated text or raises a classified failure."""

    async def generate(self, payload: str, model: str) -> str: ...

    async def converse(
        self,
        payload: str,
        acknowledgement: str,
        model: str,
        thinking: bool = False,
    ) -> str: ...


def _response_text(response: Any) -> str:
    """Concatenate text blocks; thinking blocks are ignored."""
    return "".join(
        block.text for block in response.content if getattr(block, "type", None) == "text"
    )


class AnthropicService:
    """:class:`GenerativeService` over the Anthropic Messages API.

    SDK-level retries are disabled; the pipeline's retry policy owns retries.
    """

    def __init__(
        self,
        config: Settings = settings,
        client: AsyncAnthropic | None = None,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        self._config = config
        self._system_prompt = system_prompt
        self._client = client or AsyncAnthropic(
            api_key=config.anthropic_api_key,
            max_retries=0,
            timeout=config.request_timeout_seconds,
        )

    def supports_thinking(self, model: str) -> bool:
        return model == self._config.thinking_model

    async def _create(self, model: str, messages: list[dict[str, Any]], thinking: bool) -> Any:
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": self._config.max_output_tokens,
            "system": self._system_prompt,
            "messages": messages,
        }
        if thinking:
            # Budget and answer share the model's output ceiling.
            ceiling = self._config.thinking_max_tokens
            answer = min(self._config.max_output_tokens, ceiling // 2)
            budget = min(self._config.thinking_budget_tokens, ceiling - answer)
            kwargs["thinking"] = {"type": "enabled", "budget_tokens": budget}
            kwargs["max_tokens"] = budget + answer

        try:
            return await self._client.messages.create(**kwargs)
        except anthropic.RateLimitError as exc:
            raise QuotaExceededError(str(exc)) from exc
        except anthropic.APITimeoutError as exc:
            raise RequestTimeoutError(self._config.request_timeout_seconds) from exc

    async def generate(self, payload: str, model: str) -> str:
        response = await self._create(
            model, [{"role": "user", "content": payload}], thinking=False
        )
        return _response_text(response)

    async def converse(
        self,
        payload: str,
        acknowledgement: str,
        model: str,
        thinking: bool = False,
    ) -> str:
        use_thinking = thinking and self.supports_thinking(model)
        if thinking and not use_thinking:
            logger.info("Thinking mode requested but not applied for model %s", model)

        messages: list[dict[str, Any]] = [{"role": "user", "content": payload}]
        first = await self._create(model, messages, thinking=use_thinking)

        messages = [
            *messages,
            {"role": "assistant", "content": _response_text(first) or "(no output)"},
            {"role": "user", "content": acknowledgement},
        ]
        second = await self._create(model, messages, thinking=use_thinking)
        return _response_text(second)
