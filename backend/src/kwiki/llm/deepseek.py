"""DeepSeek adapter (OpenAI wire shape, reasoning-model aware)."""

import logging
from dataclasses import dataclass, field
from typing import Any

from kwiki.llm.base import GenerationOptions
from kwiki.llm.errors import LLMError
from kwiki.llm.openai import OpenAICompatibleProvider

logger = logging.getLogger(__name__)

DEEPSEEK_BASE_URL = "https://api.deepseek.com/v1"
DEEPSEEK_TIMEOUT_SECONDS = 120.0


@dataclass(frozen=True)
class ModelInfo:
    """Descriptive metadata about a hosted model."""

    name: str
    description: str
    size: str
    tags: list[str] = field(default_factory=list)


DEEPSEEK_MODELS = [
    ModelInfo("deepseek-chat", "Flagship conversational model", "67B parameters", ["chat", "general"]),
    ModelInfo("deepseek-coder", "Code generation and programming tasks", "33B parameters", ["code"]),
    ModelInfo("deepseek-reasoner", "Reasoning model for complex problems", "67B parameters", ["reasoning"]),
    ModelInfo("deepseek-r1", "Latest reasoning model", "671B parameters", ["reasoning", "latest"]),
    ModelInfo("deepseek-r1-distill-llama-70b", "R1 distilled onto Llama", "70B parameters", ["distilled", "llama"]),
    ModelInfo("deepseek-r1-distill-qwen-32b", "R1 distilled onto Qwen", "32B parameters", ["distilled", "qwen"]),
    ModelInfo("deepseek-r1-distill-qwen-14b", "R1 distilled onto Qwen", "14B parameters", ["distilled", "qwen"]),
    ModelInfo("deepseek-r1-distill-qwen-7b", "R1 distilled onto Qwen", "7B parameters", ["distilled", "qwen"]),
    ModelInfo("deepseek-r1-distill-qwen-1.5b", "R1 distilled onto Qwen", "1.5B parameters", ["distilled", "qwen"]),
]


class DeepSeekProvider(OpenAICompatibleProvider):
    """Adapter for the DeepSeek chat API.

    Reasoning models may answer with an empty ``content`` and put their output
    in ``reasoning_content``; that is a valid response, not an error.
    """

    name = "deepseek"
    default_model = "deepseek-chat"
    chat_path = "/chat/completions"
    models_path = "/models"
    allow_empty_content = True

    def __init__(self, api_key: str | None = None, base_url: str | None = None, **kwargs):
        kwargs.setdefault("timeout", DEEPSEEK_TIMEOUT_SECONDS)
        super().__init__(base_url=base_url or DEEPSEEK_BASE_URL, api_key=api_key, **kwargs)

    def _extract_message_text(self, message: dict[str, Any]) -> str:
        return message.get("content") or message.get("reasoning_content") or ""

    async def is_available(self) -> bool:
        return bool(self.api_key)

    async def get_models(self) -> list[str]:
        return [info.name for info in DEEPSEEK_MODELS]

    def get_model_info(self) -> list[ModelInfo]:
        return list(DEEPSEEK_MODELS)

    def masked_api_key(self) -> str:
        """Return the API key with all but the first and last four characters hidden."""
        if not self.api_key or len(self.api_key) < 8:
            return "****"
        return f"{self.api_key[:4]}****{self.api_key[-4:]}"

    def set_api_key(self, api_key: str) -> None:
        self.api_key = api_key

    async def validate_api_key(self) -> bool:
        """Check the key with a tiny real request."""
        if not self.api_key:
            return False
        try:
            await self.generate(
                GenerationOptions(prompt="Hello", model=self.default_model, temperature=0.1, max_tokens=10)
            )
        except LLMError as e:
            logger.info(f"DeepSeek API key validation failed: {e}")
            return False
        return True
