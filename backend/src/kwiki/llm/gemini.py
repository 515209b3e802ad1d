"""Google Generative Language (Gemini) adapter."""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

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

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"

GEMINI_MODELS = [
    "gemini-2.0-flash-exp",
    "gemini-1.5-flash",
    "gemini-1.5-pro",
    "gemini-1.0-pro",
]


def extract_text(data: dict[str, Any]) -> str:
    """Concatenate the text parts of the first candidate."""
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    content = candidates[0].get("content") or {}
    return "".join(str(part.get("text", "")) for part in content.get("parts") or [])


def extract_finish_reason(data: dict[str, Any]) -> str | None:
    candidates = data.get("candidates") or []
    if not candidates:
        return None
    return candidates[0].get("finishReason")


def parse_usage_metadata(data: dict[str, Any]) -> TokenUsage | None:
    metadata = data.get("usageMetadata")
    if not isinstance(metadata, dict):
        return None
    return TokenUsage(
        prompt_tokens=int(metadata.get("promptTokenCount") or 0),
        completion_tokens=int(metadata.get("candidatesTokenCount") or 0),
    )


class GeminiProvider(Provider):
    """Adapter for the Gemini ``generateContent`` API (key in query string)."""

    name = "gemini"
    default_model = "gemini-2.0-flash-exp"

    def __init__(self, api_key: str | None = None, base_url: str | None = None, **kwargs):
        super().__init__(base_url=base_url or GEMINI_BASE_URL, api_key=api_key, **kwargs)

    def _params(self) -> dict[str, str]:
        if not self.api_key:
            raise LLMAuthenticationError("Gemini API key is not configured", provider=self.name)
        return {"key": self.api_key}

    def build_payload(self, options: GenerationOptions) -> dict[str, Any]:
        """Serialize options into a ``generateContent`` request body."""
        generation_config: dict[str, Any] = {
            "temperature": options.temperature,
            "maxOutputTokens": options.max_tokens,
        }
        if options.top_p is not None:
            generation_config["topP"] = options.top_p
        if options.top_k is not None:
            generation_config["topK"] = options.top_k
        if options.stop:
            generation_config["stopSequences"] = list(options.stop)

        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": options.prompt}]}],
            "generationConfig": generation_config,
        }
        if options.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": options.system_prompt}]}
        if "safetySettings" in options.extra:
            payload["safetySettings"] = options.extra["safetySettings"]
        return payload

    async def _generate(self, options: GenerationOptions) -> GenerationResult:
        response = await self._client.post(
            f"{self.base_url}/v1beta/models/{options.model}:generateContent",
            params=self._params(),
            json=self.build_payload(options),
        )
        if response.status_code >= 400:
            raise classify_http_error(self.name, response.status_code, response.text)

        data = decode_json_object("Gemini", response)
        if not data.get("candidates"):
            logger.warning(f"Gemini response for {options.model} contained no candidates")

        try:
            return GenerationResult(
                text=extract_text(data),
                usage=parse_usage_metadata(data),
                finish_reason=extract_finish_reason(data) or "",
                raw=data,
            )
        except RESPONSE_SHAPE_ERRORS as e:
            raise LLMBadResponseError(
                f"Gemini returned an unexpected response shape: {e!r}", provider=self.name
            ) from e

    async def _stream_deltas(self, options: GenerationOptions) -> AsyncIterator[StreamDelta]:
        async with self._client.stream(
            "POST",
            f"{self.base_url}/v1beta/models/{options.model}:streamGenerateContent",
            params={**self._params(), "alt": "sse"},
            json=self.build_payload(options),
        ) as response:
            if response.status_code >= 400:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise classify_http_error(self.name, response.status_code, body)

            async for line in response.aiter_lines():
                if not line.startswith("data: "):
                    continue
                try:
                    chunk = json.loads(line[len("data: "):])
                    delta = StreamDelta(
                        text=extract_text(chunk),
                        usage=parse_usage_metadata(chunk),
                        finish_reason=extract_finish_reason(chunk),
                    )
                except (json.JSONDecodeError, *RESPONSE_SHAPE_ERRORS):
                    logger.warning(f"Gemini skipped malformed stream chunk: {line[:100]}")
                    continue
                yield delta

    async def is_available(self) -> bool:
        return bool(self.api_key)

    async def get_models(self) -> list[str]:
        return list(GEMINI_MODELS)
