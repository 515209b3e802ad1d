"""Shared pytest fixtures for all tests.

Provides a scripted stub provider, a registry holding it, a small prompt
template directory and a config pointing at temporary directories.
"""

import asyncio
import gc
from dataclasses import replace

import pytest

from kwiki.config import Config
from kwiki.generation.templates import TemplateManager
from kwiki.llm.base import GenerationOptions, GenerationResult, Provider, StreamDelta, TokenUsage
from kwiki.llm.registry import ProviderRegistry


class StubProvider(Provider):
    """Provider that answers every prompt with fixed text.

    Failures are scripted: ``fail_with`` is an LLMError subclass raised for
    prompts containing ``fail_when`` (or for every prompt when it is None),
    limited to the first ``fail_times`` calls when that is set.
    """

    default_model = "stub-model"

    def __init__(
        self,
        name="stub",
        text="X",
        fail_with=None,
        fail_when=None,
        fail_times=None,
        available=True,
        usage=None,
        delay=0.0,
        chunk_size=None,
    ):
        super().__init__(base_url="http://stub.invalid")
        self.name = name
        self.text = text
        self.fail_with = fail_with
        self.fail_when = fail_when
        self.fail_times = fail_times
        self.available = available
        self.usage = usage
        self.delay = delay
        self.chunk_size = chunk_size
        self.prompts: list[str] = []
        self.failures = 0

    def _check(self, options: GenerationOptions) -> None:
        self.prompts.append(options.prompt)
        if self.fail_with is None:
            return
        if self.fail_when is not None and self.fail_when not in options.prompt:
            return
        if self.fail_times is not None and self.failures >= self.fail_times:
            return
        self.failures += 1
        raise self.fail_with(f"{self.name} scripted failure", provider=self.name)

    async def _generate(self, options: GenerationOptions) -> GenerationResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        self._check(options)
        return GenerationResult(text=self.text, usage=self.usage, finish_reason="stop")

    async def _stream_deltas(self, options: GenerationOptions):
        self._check(options)
        size = self.chunk_size or max(1, len(self.text))
        for start in range(0, len(self.text), size):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield StreamDelta(text=self.text[start : start + size])
        yield StreamDelta(usage=self.usage, finish_reason="stop")

    async def is_available(self) -> bool:
        return self.available

    async def get_models(self) -> list[str]:
        return [self.default_model]


@pytest.fixture(autouse=True)
def cleanup_after_test():
    """Collect garbage after each test so unclosed clients are released."""
    yield
    gc.collect()


@pytest.fixture
def make_stub():
    """Factory for stub providers: ``make_stub(text="X", fail_with=...)``."""
    return StubProvider


@pytest.fixture
def stub_usage():
    return TokenUsage(prompt_tokens=10, completion_tokens=5)


@pytest.fixture
def make_registry():
    """Factory building a registry from providers; the first one is the default."""

    def _make(*providers):
        registry = ProviderRegistry()
        for provider in providers:
            registry.register(provider)
        if providers:
            registry.set_default(providers[0].name)
        return registry

    return _make


def _template(title, page_type, order, body):
    return (
        f"---\ntitle: {title}\ntype: {page_type}\norder: {order}\n"
        f"variables: [project_name, language]\n---\n\n{body}\n"
    )


@pytest.fixture
def template_dir(tmp_path):
    """Template directory with three zh templates and two en templates."""
    root = tmp_path / "templates"
    zh = root / "zh"
    en = root / "en"
    zh.mkdir(parents=True)
    en.mkdir(parents=True)

    body = "Document {{ project_name }}.\nLanguage: {{ language }}"
    (zh / "architecture.md").write_text(_template("架构设计", "architecture", 3, body), encoding="utf-8")
    (zh / "overview.md").write_text(_template("项目概述", "overview", 1, body), encoding="utf-8")
    (zh / "guide.md").write_text(_template("快速开始", "guide", 2, body), encoding="utf-8")
    (en / "overview.md").write_text(_template("Overview", "overview", 1, body), encoding="utf-8")
    (en / "reference.md").write_text(_template("Reference", "reference", 2, body), encoding="utf-8")
    return root


@pytest.fixture
def templates(template_dir):
    return TemplateManager(template_dir)


@pytest.fixture
def make_config(tmp_path, template_dir):
    """Factory for a Config rooted at tmp_path with generator overrides."""

    def _make(default_provider="stub", **generator_overrides):
        base = Config(data_dir=tmp_path)
        generator = replace(base.generator, template_dir=str(template_dir), **generator_overrides)
        return Config(data_dir=tmp_path, default_provider=default_provider, generator=generator)

    return _make


@pytest.fixture
def config(make_config):
    return make_config()
