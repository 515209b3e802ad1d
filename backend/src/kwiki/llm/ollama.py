"""Local Ollama adapter (single prompt field, NDJSON streaming)."""

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
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
from kwiki.llm.errors import LLMBadResponseError, classify_http_error

logger = logging.getLogger(__name__)

OLLAMA_BASE_URL = "http://localhost:11434"
OLLAMA_TIMEOUT_SECONDS = 300.0
AVAILABILITY_TIMEOUT_SECONDS = 5.0

# Returned when /api/tags cannot be reached; discovery is advisory only.
FALLBACK_MODELS = [
    "huihui_ai/deepseek-r1-abliterated:32b",
    "huihui_ai/deepseek-r1-abliterated:14b",
    "llama3.2:latest",
    "llama3.1:latest",
    "llama3:latest",
    "codellama:latest",
    "mistral:latest",
    "gemma2:latest",
    "qwen2.5:latest",
    "qwen3-coder:30b",
    "deepseek-r1:1.5b",
    "deepseek-coder:6.7b",
]

# Ollama runtime options accepted from GenerationOptions.extra
SUPPORTED_OPTION_EXTRAS = ("repeat_penalty", "seed", "num_ctx", "mirostat", "min_p")


@dataclass(frozen=True)
class PullProgress:
    """One status update while pulling a model."""

    status: str
    digest: str = ""
    total: int = 0
    completed: int = 0
    percentage: float = 0.0


def parse_usage(data: dict[str, Any]) -> TokenUsage | None:
    if "eval_count" not in data and "prompt_eval_count" not in data:
        return None
    return TokenUsage(
        prompt_tokens=int(data.get("prompt_eval_count") or 0),
        completion_tokens=int(data.get("eval_count") or 0),
    )


class OllamaProvider(Provider):
    """Adapter for a local Ollama server's ``/api/generate`` endpoint."""

    name = "ollama"
    default_model = "huihui_ai/deepseek-r1-abliterated:32b"

    def __init__(self, base_url: str | None = None, **kwargs):
        kwargs.setdefault("timeout", OLLAMA_TIMEOUT_SECONDS)
        super().__init__(base_url=base_url or OLLAMA_BASE_URL, **kwargs)

    def build_payload(self, options: GenerationOptions) -> dict[str, Any]:
        """Serialize options into an ``/api/generate`` request body."""
        runtime_options: dict[str, Any] = {
            "temperature": options.temperature,
            "num_predict": options.max_tokens,
        }
        if options.top_p is not None:
            runtime_options["top_p"] = options.top_p
        if options.top_k is not None:
            runtime_options["top_k"] = options.top_k
        if options.stop:
            runtime_options["stop"] = list(options.stop)
        for key in SUPPORTED_OPTION_EXTRAS:
            if key in options.extra:
                runtime_options[key] = options.extra[key]

        payload: dict[str, Any] = {
            "model": options.model,
            "prompt": options.prompt,
            "stream": options.stream,
            "options": runtime_options,
        }
        if options.system_prompt:
            payload["system"] = options.system_prompt
        if "keep_alive" in options.extra:
            payload["keep_alive"] = options.extra["keep_alive"]
        return payload

    async def _generate(self, options: GenerationOptions) -> GenerationResult:
        response = await self._client.post(f"{self.base_url}/api/generate", json=self.build_payload(options))
        if response.status_code >= 400:
            raise classify_http_error(self.name, response.status_code, response.text)

        data = decode_json_object("Ollama", response)
        text = data.get("response") or ""
        if not isinstance(text, str):
            raise LLMBadResponseError(
                f"Ollama returned a {type(text).__name__} response field", provider=self.name
            )
        try:
            usage = parse_usage(data)
        except (TypeError, ValueError) as e:
            raise LLMBadResponseError(f"Ollama returned malformed token counts: {e}", provider=self.name) from e

        return GenerationResult(
            text=text,
            usage=usage,
            model=data.get("model", ""),
            finish_reason=data.get("done_reason") or ("stop" if data.get("done") else ""),
            raw=data,
        )

    async def _stream_deltas(self, options: GenerationOptions) -> AsyncIterator[StreamDelta]:
        async with self._client.stream(
            "POST", f"{self.base_url}/api/generate", json=self.build_payload(options)
        ) as response:
            if response.status_code >= 400:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise classify_http_error(self.name, response.status_code, body)

            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                try:
                    chunk = json.loads(line)
                    text = chunk.get("response") or ""
                    if not isinstance(text, str):
                        raise TypeError(f"response field is a {type(text).__name__}")
                    done = bool(chunk.get("done"))
                    usage = parse_usage(chunk) if done else None
                except (json.JSONDecodeError, *RESPONSE_SHAPE_ERRORS):
                    logger.warning(f"Ollama skipped malformed stream chunk: {line[:100]}")
                    continue

                if done:
                    yield StreamDelta(
                        text=text,
                        usage=usage,
                        finish_reason=chunk.get("done_reason") or "stop",
                    )
                    break
                yield StreamDelta(text=text)

    async def is_available(self) -> bool:
        try:
            response = await self._client.get(f"{self.base_url}/api/tags", timeout=AVAILABILITY_TIMEOUT_SECONDS)
        except httpx.HTTPError as e:
            logger.debug(f"Ollama availability probe failed: {e}")
            return False
        return response.status_code == 200

    async def get_models(self) -> list[str]:
        try:
            response = await self._client.get(f"{self.base_url}/api/tags", timeout=AVAILABILITY_TIMEOUT_SECONDS)
            response.raise_for_status()
            data = response.json()
            models = [model["name"] for model in data.get("models") or [] if model.get("name")]
        except (httpx.HTTPError, *RESPONSE_SHAPE_ERRORS) as e:
            logger.info(f"Ollama model discovery failed, using fallback list: {e}")
            return list(FALLBACK_MODELS)

        return models or list(FALLBACK_MODELS)

    async def pull_model(self, model_name: str) -> AsyncIterator[PullProgress]:
        """Pull a model, yielding progress until Ollama reports success."""
        async with self._client.stream(
            "POST",
            f"{self.base_url}/api/pull",
            json={"name": model_name, "stream": True},
            timeout=None,
        ) as response:
            if response.status_code >= 400:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise classify_http_error(self.name, response.status_code, body)

            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                try:
                    chunk = json.loads(line)
                    total = int(chunk.get("total") or 0)
                    completed = int(chunk.get("completed") or 0)
                    status = str(chunk.get("status", ""))
                    digest = str(chunk.get("digest", ""))
                except (json.JSONDecodeError, *RESPONSE_SHAPE_ERRORS):
                    logger.warning(f"Ollama skipped malformed pull chunk: {line[:100]}")
                    continue

                yield PullProgress(
                    status=status,
                    digest=digest,
                    total=total,
                    completed=completed,
                    percentage=completed / total * 100 if total > 0 else 0.0,
                )
                if status == "success" or "already exists" in status:
                    break

    async def delete_model(self, model_name: str) -> None:
        """Delete a locally installed model."""
        response = await self._client.request(
            "DELETE", f"{self.base_url}/api/delete", json={"name": model_name}
        )
        if response.status_code >= 400:
            raise classify_http_error(self.name, response.status_code, response.text)
        logger.info(f"Deleted Ollama model {model_name}")
