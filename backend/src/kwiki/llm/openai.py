"""OpenAI-compatible chat completions adapter."""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from kwiki.llm.base import (
    RESPONSE_SHAPE_ERRORS,
    GenerationOptions,
    GenerationResult,
    Provider,
    StreamDelta,
    TokenUsage,
    decode_json_object,
)
from kwiki.llm.errors import LLMAuthenticationError, LLMBadResponseError, classify_http_error

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com"

OPENAI_MODELS = [
    "gpt-4o",
    "gpt-4o-mini",
    "gpt-4-turbo",
    "gpt-4",
    "gpt-3.5-turbo",
    "o1-preview",
    "o1-mini",
]

# USD per 1K tokens: (input, output)
OPENAI_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o": (0.0025, 0.01),
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-4-turbo": (0.01, 0.03),
    "gpt-4": (0.03, 0.06),
    "gpt-3.5-turbo": (0.0005, 0.0015),
    "o1-preview": (0.015, 0.06),
    "o1-mini": (0.003, 0.012),
}
FALLBACK_PRICE_PER_1K = 0.002

# Extra parameters the chat completions endpoint accepts as-is
SUPPORTED_EXTRAS = (
    "presence_penalty",
    "frequency_penalty",
    "seed",
    "user",
    "response_format",
    "logit_bias",
)

SSE_DATA_PREFIX = "data: "
SSE_DONE = "[DONE]"


def parse_usage(data: Any) -> TokenUsage | None:
    """Parse an OpenAI-style ``usage`` object, if present."""
    if not isinstance(data, dict):
        return None
    return TokenUsage(
        prompt_tokens=int(data.get("prompt_tokens") or 0),
        completion_tokens=int(data.get("completion_tokens") or 0),
    )


class OpenAICompatibleProvider(Provider):
    """Shared request/response handling for OpenAI-shaped chat backends.

    Subclasses pick the base URL, endpoint path and model namespace.
    """

    chat_path = "/v1/chat/completions"
    models_path = "/v1/models"
    allow_empty_content = False

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise LLMAuthenticationError(f"{self.name} API key is not configured", provider=self.name)
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def build_payload(self, options: GenerationOptions) -> dict[str, Any]:
        """Serialize options into a chat completions request body."""
        payload: dict[str, Any] = {
            "model": options.model,
            "messages": options.messages(),
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "stream": options.stream,
        }
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.stop:
            payload["stop"] = list(options.stop)
        for key in SUPPORTED_EXTRAS:
            if key in options.extra:
                payload[key] = options.extra[key]
        if options.stream:
            payload["stream_options"] = {"include_usage": True}
        return payload

    def _extract_message_text(self, message: dict[str, Any]) -> str:
        return message.get("content") or ""

    async def _generate(self, options: GenerationOptions) -> GenerationResult:
        response = await self._client.post(
            f"{self.base_url}{self.chat_path}",
            json=self.build_payload(options),
            headers=self._headers(),
        )
        if response.status_code >= 400:
            raise classify_http_error(self.name, response.status_code, response.text)

        data = decode_json_object(self.name, response)
        try:
            result = self._parse_completion(data)
        except RESPONSE_SHAPE_ERRORS as e:
            raise LLMBadResponseError(
                f"{self.name} returned an unexpected completion shape: {e!r}", provider=self.name
            ) from e

        if not result.text and not self.allow_empty_content:
            logger.warning(f"{self.name} returned empty content for {options.model}")
        return result

    def _parse_completion(self, data: dict[str, Any]) -> GenerationResult:
        usage = parse_usage(data.get("usage"))
        model = data.get("model") or ""
        choices = data.get("choices") or []
        if not choices:
            logger.warning(f"{self.name} response for {model or 'unknown model'} contained no choices")
            return GenerationResult(text="", usage=usage, model=model, raw=data)

        choice = choices[0]
        text = self._extract_message_text(choice.get("message") or {})
        if not isinstance(text, str):
            raise TypeError(f"message content is a {type(text).__name__}")
        return GenerationResult(
            text=text,
            usage=usage,
            model=model,
            finish_reason=choice.get("finish_reason") or "",
            raw=data,
        )

    async def _stream_deltas(self, options: GenerationOptions) -> AsyncIterator[StreamDelta]:
        async with self._client.stream(
            "POST",
            f"{self.base_url}{self.chat_path}",
            json=self.build_payload(options),
            headers=self._headers(),
        ) as response:
            if response.status_code >= 400:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise classify_http_error(self.name, response.status_code, body)

            async for line in response.aiter_lines():
                if not line.startswith(SSE_DATA_PREFIX):
                    continue
                payload = line[len(SSE_DATA_PREFIX):].strip()
                if payload == SSE_DONE:
                    break
                try:
                    delta = self._parse_chunk(json.loads(payload))
                except (json.JSONDecodeError, *RESPONSE_SHAPE_ERRORS):
                    logger.warning(f"{self.name} skipped malformed stream chunk: {payload[:100]}")
                    continue
                if delta is not None:
                    yield delta

    def _parse_chunk(self, chunk: dict[str, Any]) -> StreamDelta | None:
        """Turn one stream chunk into a delta; None when it carries nothing."""
        usage = parse_usage(chunk.get("usage"))
        choices = chunk.get("choices") or []
        if not choices:
            return StreamDelta(usage=usage) if usage is not None else None
        choice = choices[0]
        text = (choice.get("delta") or {}).get("content") or ""
        if not isinstance(text, str):
            raise TypeError(f"delta content is a {type(text).__name__}")
        return StreamDelta(text=text, usage=usage, finish_reason=choice.get("finish_reason"))

    async def is_available(self) -> bool:
        if not self.api_key:
            return False
        try:
            response = await self._client.get(
                f"{self.base_url}{self.models_path}",
                headers=self._headers(),
                timeout=10.0,
            )
        except httpx.HTTPError as e:
            logger.debug(f"{self.name} availability probe failed: {e}")
            return False
        return response.status_code < 400


class OpenAIProvider(OpenAICompatibleProvider):
    """Adapter for the OpenAI chat completions API."""

    name = "openai"
    default_model = "gpt-4o-mini"

    def __init__(self, api_key: str | None = None, base_url: str | None = None, **kwargs):
        super().__init__(base_url=base_url or OPENAI_BASE_URL, api_key=api_key, **kwargs)

    async def get_models(self) -> list[str]:
        return list(OPENAI_MODELS)

    def calculate_cost(self, model: str, usage: TokenUsage) -> float:
        pricing = OPENAI_PRICING.get(model)
        if pricing is None:
            return usage.total_tokens / 1000 * FALLBACK_PRICE_PER_1K
        input_price, output_price = pricing
        return usage.prompt_tokens / 1000 * input_price + usage.completion_tokens / 1000 * output_price
