"""Provider registry: named adapters, default selection, aggregate queries."""

import logging
import threading

from kwiki.config import Config
from kwiki.llm.base import DeltaCallback, GenerationOptions, GenerationResult, Provider, UsageSnapshot
from kwiki.llm.deepseek import DeepSeekProvider
from kwiki.llm.errors import NoAvailableProviderError, ProviderNotFoundError
from kwiki.llm.gemini import GeminiProvider
from kwiki.llm.ollama import OllamaProvider
from kwiki.llm.openai import OpenAIProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Holds provider adapters by name, in registration order.

    The provider map is shared between HTTP handlers and generation tasks, so
    every access goes through a lock. Availability probes run outside it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._providers: dict[str, Provider] = {}
        self._default_name: str | None = None

    def register(self, provider: Provider) -> None:
        """Register an adapter, replacing any adapter with the same name."""
        with self._lock:
            replaced = provider.name in self._providers
            self._providers[provider.name] = provider
        if replaced:
            logger.info(f"Replaced provider: {provider.name}")
        else:
            logger.info(f"Registered provider: {provider.name}")

    def unregister(self, name: str) -> Provider | None:
        with self._lock:
            if self._default_name == name:
                self._default_name = None
            return self._providers.pop(name, None)

    def get(self, name: str) -> Provider:
        """Look up a provider by name.

        Raises:
            ProviderNotFoundError: If no provider is registered under ``name``.
        """
        with self._lock:
            provider = self._providers.get(name)
        if provider is None:
            raise ProviderNotFoundError(f"Provider not found: {name}", provider=name)
        return provider

    def names(self) -> list[str]:
        with self._lock:
            return list(self._providers)

    def all(self) -> list[Provider]:
        with self._lock:
            return list(self._providers.values())

    async def get_available(self) -> list[Provider]:
        """Providers whose availability probe currently succeeds."""
        available = []
        for provider in self.all():
            if await provider.is_available():
                available.append(provider)
        return available

    async def get_all_models(self) -> dict[str, list[str]]:
        """Model lists for available providers, computed per call."""
        return {provider.name: await provider.get_models() for provider in await self.get_available()}

    def set_default(self, name: str) -> None:
        """Make ``name`` the default provider.

        Raises:
            ProviderNotFoundError: If no provider is registered under ``name``.
        """
        self.get(name)
        with self._lock:
            self._default_name = name

    async def get_default(self) -> Provider | None:
        """The explicit default, else the first available provider, else None."""
        with self._lock:
            default = self._providers.get(self._default_name) if self._default_name else None
        if default is not None:
            return default
        for provider in self.all():
            if await provider.is_available():
                return provider
        return None

    async def _resolve(self, name: str) -> Provider:
        if name:
            return self.get(name)
        provider = await self.get_default()
        if provider is None:
            raise NoAvailableProviderError("No AI provider is available")
        return provider

    async def generate(self, name: str, options: GenerationOptions) -> GenerationResult:
        """Generate with the named provider, or the default when ``name`` is empty."""
        provider = await self._resolve(name)
        return await provider.generate(options)

    async def stream(
        self, name: str, options: GenerationOptions, on_delta: DeltaCallback | None = None
    ) -> GenerationResult:
        """Stream with the named provider, or the default when ``name`` is empty."""
        provider = await self._resolve(name)
        return await provider.stream(options, on_delta)

    def usage(self) -> dict[str, UsageSnapshot]:
        return {provider.name: provider.get_usage() for provider in self.all()}

    async def aclose(self) -> None:
        for provider in self.all():
            await provider.aclose()


def build_registry(config: Config) -> ProviderRegistry:
    """Create a registry with every built-in adapter configured from ``config``."""
    registry = ProviderRegistry()

    def defaults(name: str) -> dict:
        provider_config = config.providers[name]
        return {
            "default_model": provider_config.model,
            "default_max_tokens": provider_config.max_tokens,
            "timeout": provider_config.timeout_seconds,
        }

    registry.register(OllamaProvider(base_url=config.ollama_host, **defaults("ollama")))
    registry.register(
        OpenAIProvider(api_key=config.openai_api_key, base_url=config.openai_base_url, **defaults("openai"))
    )
    registry.register(GeminiProvider(api_key=config.google_api_key, **defaults("gemini")))
    registry.register(
        DeepSeekProvider(
            api_key=config.deepseek_api_key, base_url=config.deepseek_base_url, **defaults("deepseek")
        )
    )

    if config.default_provider in registry.names():
        registry.set_default(config.default_provider)
    else:
        logger.warning(f"Configured default provider {config.default_provider!r} is not registered")

    return registry
