"""Provider adapters behind one text-generation contract."""

from kwiki.llm.base import (
    GenerationOptions,
    GenerationResult,
    Provider,
    StreamDelta,
    TokenUsage,
    UsageSnapshot,
    estimate_tokens,
)
from kwiki.llm.deepseek import DeepSeekProvider
from kwiki.llm.errors import (
    LLMAuthenticationError,
    LLMBadResponseError,
    LLMConnectionError,
    LLMError,
    LLMRateLimitError,
    LLMTimeoutError,
    NoAvailableProviderError,
    ProviderNotFoundError,
)
from kwiki.llm.gemini import GeminiProvider
from kwiki.llm.ollama import OllamaProvider
from kwiki.llm.openai import OpenAIProvider
from kwiki.llm.registry import ProviderRegistry, build_registry

__all__ = [
    "DeepSeekProvider",
    "GeminiProvider",
    "GenerationOptions",
    "GenerationResult",
    "LLMAuthenticationError",
    "LLMBadResponseError",
    "LLMConnectionError",
    "LLMError",
    "LLMRateLimitError",
    "LLMTimeoutError",
    "NoAvailableProviderError",
    "OllamaProvider",
    "OpenAIProvider",
    "Provider",
    "ProviderNotFoundError",
    "ProviderRegistry",
    "StreamDelta",
    "TokenUsage",
    "UsageSnapshot",
    "build_registry",
    "estimate_tokens",
]
