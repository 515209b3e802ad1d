# backend/tests/test_orchestrator.py
"""Wiki generation orchestrator tests.

Jobs run against scripted stub providers; every test waits for the job task
to finish before checking the resulting wiki.
"""

import asyncio

import pytest

from kwiki.generation import (
    ConflictError,
    GenerationRequest,
    PageType,
    Wiki,
    WikiGenerator,
    WikiSettings,
    WikiStatus,
    get_page_type,
    reading_time,
)
from kwiki.generation.orchestrator import conflict_key
from kwiki.llm import LLMAuthenticationError, LLMConnectionError
from kwiki.storage import MarkdownStorage


@pytest.fixture
def make_generator(make_registry, templates, make_config):
    """Factory for a generator around the given providers."""

    def _make(*providers, storage=None, **generator_overrides):
        config = make_config(**generator_overrides)
        return WikiGenerator(make_registry(*providers), templates, config, storage=storage)

    return _make


def _request(target="template-docs", languages=None, provider="", model=""):
    return GenerationRequest(
        repository_url=target,
        languages=list(languages or []),
        settings=WikiSettings(ai_provider=provider, model=model),
    )


async def _run(generator, request):
    wiki = await generator.generate_wiki(request)
    return await generator.wait_for(wiki.id)


def _drain(generator):
    events = []
    while (event := generator.channel.get_nowait()) is not None:
        events.append(event)
    return events


# =============================================================================
# Template documentation pipeline
# =============================================================================


@pytest.mark.parametrize("use_streaming", [True, False])
async def test_template_docs_single_language(make_stub, make_generator, use_streaming):
    """Every zh template becomes one page holding the provider's text."""
    generator = make_generator(make_stub(text="X"), use_streaming=use_streaming)

    wiki = await _run(generator, _request(languages=["zh"]))

    assert wiki.status == WikiStatus.COMPLETED
    assert wiki.progress == 100
    assert len(wiki.pages) == 3
    assert all(page.content == "X" for page in wiki.pages)
    assert [page.id for page in wiki.pages] == ["overview_zh", "guide_zh", "architecture_zh"]
    assert [page.type for page in wiki.pages] == [PageType.OVERVIEW, PageType.GUIDE, PageType.ARCHITECTURE]
    assert wiki.metadata.statistics == {"zh_pages": 3}
    assert wiki.metadata.pages_generated == 3


async def test_template_docs_all_pages_failing_fails_the_wiki(make_stub, make_generator):
    generator = make_generator(make_stub(fail_with=LLMConnectionError), use_streaming=False)

    wiki = await _run(generator, _request(languages=["zh"]))

    assert wiki.status == WikiStatus.FAILED
    assert wiki.pages == []
    assert wiki.error


async def test_one_failing_language_does_not_fail_the_wiki(make_stub, make_generator):
    """Pages for the healthy language survive a language whose calls all fail."""
    provider = make_stub(fail_with=LLMConnectionError, fail_when="Language: en")
    generator = make_generator(provider)

    wiki = await _run(generator, _request(languages=["zh", "en"]))

    assert wiki.status == WikiStatus.COMPLETED
    assert wiki.pages
    assert {page.language for page in wiki.pages} == {"zh"}
    assert wiki.metadata.statistics == {"zh_pages": 3, "en_pages": 0}


async def test_template_docs_defaults(make_stub, make_generator):
    generator = make_generator(make_stub())

    wiki = await _run(generator, _request())

    assert wiki.id == "template-docs/example"
    assert wiki.languages == ["zh"]
    assert wiki.tags == ["template-docs"]
    assert wiki.settings.ai_provider == "stub"


async def test_language_without_templates_falls_back_to_english(make_stub, make_generator):
    provider = make_stub()
    generator = make_generator(provider)

    wiki = await _run(generator, _request(languages=["fr"]))

    assert wiki.status == WikiStatus.COMPLETED
    assert [page.id for page in wiki.pages] == ["overview_fr", "reference_fr"]
    assert all("Language: fr" in prompt for prompt in provider.prompts)


async def test_progress_events_never_decrease(make_stub, make_generator):
    generator = make_generator(make_stub())

    await _run(generator, _request(languages=["zh", "en"]))
    events = _drain(generator)

    values = [event.progress for event in events]
    assert values == sorted(values)
    assert values[-1] == 100
    assert events[-1].status == WikiStatus.COMPLETED
    assert [event.current_step for event in events[:2]] == ["scan", "generate"]


async def test_stalled_stream_times_out(make_stub, make_generator):
    generator = make_generator(make_stub(delay=1.0), stream_idle_timeout_seconds=0.05)

    wiki = await _run(generator, _request(languages=["zh"]))

    assert wiki.status == WikiStatus.FAILED
    assert wiki.error == "All page generations failed"


async def test_empty_output_is_a_page_failure(make_stub, make_generator):
    generator = make_generator(make_stub(text=""))

    wiki = await _run(generator, _request(languages=["zh"]))

    assert wiki.status == WikiStatus.FAILED
    assert wiki.pages == []


async def test_unexpected_page_error_only_loses_that_page(make_stub, make_generator):
    """A page whose call raises outside the error taxonomy does not sink the job."""

    class CrashingStub(make_stub):
        async def _generate(self, options):
            if "Language: en" in options.prompt:
                raise KeyError("choices")
            return await super()._generate(options)

    generator = make_generator(CrashingStub(), use_streaming=False)

    wiki = await _run(generator, _request(languages=["zh", "en"]))

    assert wiki.status == WikiStatus.COMPLETED
    assert {page.language for page in wiki.pages} == {"zh"}
    assert wiki.metadata.statistics == {"zh_pages": 3, "en_pages": 0}


async def test_reported_tokens_are_totalled(make_stub, make_generator, stub_usage):
    generator = make_generator(make_stub(usage=stub_usage), use_streaming=False)

    wiki = await _run(generator, _request(languages=["zh"]))

    assert wiki.metadata.total_tokens == 45


# =============================================================================
# Repository documentation pipeline
# =============================================================================


async def test_repository_docs_generate_fixed_page_set(make_stub, make_generator):
    generator = make_generator(make_stub(text="Body text here"))

    wiki = await _run(generator, _request("https://github.com/owner/repo"))

    assert wiki.id == "github.com/owner/repo"
    assert wiki.title == "Repo"
    assert wiki.status == WikiStatus.COMPLETED
    assert [page.id for page in wiki.pages] == [
        "project-overview_en",
        "getting-started_en",
        "installation-guide_en",
        "api-reference_en",
        "architecture_en",
    ]
    assert wiki.pages[3].type == PageType.API
    assert wiki.pages[0].word_count == 3
    assert wiki.pages[0].reading_time == 1


async def test_repository_pages_retry_transient_errors(make_stub, make_generator):
    provider = make_stub(fail_with=LLMConnectionError, fail_times=5)
    generator = make_generator(provider, page_retry_attempts=2, use_streaming=False)

    wiki = await _run(generator, _request("https://github.com/owner/repo"))

    assert wiki.status == WikiStatus.COMPLETED
    assert len(wiki.pages) == 5
    assert len(provider.prompts) == 10


async def test_repository_pages_do_not_retry_permanent_errors(make_stub, make_generator):
    provider = make_stub(fail_with=LLMAuthenticationError)
    generator = make_generator(provider, use_streaming=False)

    wiki = await _run(generator, _request("https://github.com/owner/repo"))

    assert wiki.status == WikiStatus.FAILED
    assert wiki.error == "All page generations failed"
    assert len(provider.prompts) == 5


async def test_unsupported_repository_fails(make_stub, make_generator):
    generator = make_generator(make_stub())

    wiki = await _run(generator, _request("https://bitbucket.org/team/repo"))

    assert wiki.status == WikiStatus.FAILED
    assert "Unsupported repository" in wiki.error
    assert wiki.id.startswith("unknown/")


# =============================================================================
# Provider resolution, conflicts and lifecycle
# =============================================================================


async def test_unavailable_provider_fails_job(make_stub, make_generator):
    generator = make_generator(make_stub(available=False))

    wiki = await _run(generator, _request(languages=["zh"]))

    assert wiki.status == WikiStatus.FAILED
    assert "not available" in wiki.error


async def test_unknown_provider_fails_job(make_stub, make_generator):
    generator = make_generator(make_stub())

    wiki = await _run(generator, _request(languages=["zh"], provider="ghost"))

    assert wiki.status == WikiStatus.FAILED
    assert "ghost" in wiki.error


async def test_new_job_starts_pending(make_stub, make_generator):
    generator = make_generator(make_stub())

    wiki = await generator.generate_wiki(_request(languages=["zh"]))

    assert wiki.status == WikiStatus.PENDING
    assert generator.get_wiki(wiki.id) is wiki
    await generator.wait_for(wiki.id)


async def test_duplicate_submission_is_rejected_while_running(make_stub, make_generator):
    generator = make_generator(make_stub(delay=0.2), use_streaming=False)
    first = await generator.generate_wiki(_request("https://github.com/owner/repo"))

    with pytest.raises(ConflictError) as exc_info:
        await generator.generate_wiki(_request("https://GitHub.com/owner/repo/"))

    assert exc_info.value.existing_wiki_id == first.id
    assert exc_info.value.status.is_active
    await generator.wait_for(first.id)

    second = await generator.generate_wiki(_request("https://github.com/owner/repo"))
    assert second is not first
    await generator.wait_for(second.id)


@pytest.mark.parametrize(
    "spelling",
    [
        "https://github.com/owner/repo.git",
        "git@github.com:owner/repo.git",
        "https://github.com/owner/repo/tree/main",
    ],
)
async def test_equivalent_repository_spelling_is_rejected_while_running(make_stub, make_generator, spelling):
    generator = make_generator(make_stub(delay=0.2), use_streaming=False)
    first = await generator.generate_wiki(_request("https://github.com/owner/repo"))

    with pytest.raises(ConflictError) as exc_info:
        await generator.generate_wiki(_request(spelling))

    assert exc_info.value.existing_wiki_id == "github.com/owner/repo"
    assert generator.get_wiki("github.com/owner/repo") is first
    assert generator.active_wikis() == [first]
    await generator.wait_for(first.id)


async def test_template_docs_with_other_provider_is_rejected_while_running(make_stub, make_generator):
    generator = make_generator(make_stub(delay=0.2), make_stub(name="other"), use_streaming=False)
    first = await generator.generate_wiki(_request(languages=["zh"], provider="stub"))

    with pytest.raises(ConflictError) as exc_info:
        await generator.generate_wiki(_request(languages=["zh"], provider="other"))

    assert exc_info.value.existing_wiki_id == "template-docs/example"
    assert generator.get_wiki(first.id) is first
    await generator.wait_for(first.id)


async def test_different_targets_run_concurrently(make_stub, make_generator):
    generator = make_generator(make_stub(delay=0.05), use_streaming=False)

    first = await generator.generate_wiki(_request("https://github.com/owner/one"))
    second = await generator.generate_wiki(_request("https://github.com/owner/two"))

    assert len(generator.active_wikis()) == 2
    await generator.wait_for(first.id)
    await generator.wait_for(second.id)
    assert generator.active_wikis() == []


async def test_cancelled_job_is_marked_failed(make_stub, make_generator):
    generator = make_generator(make_stub(delay=1.0), use_streaming=False)
    wiki = await generator.generate_wiki(_request(languages=["zh"]))
    await asyncio.sleep(0.05)

    await generator.aclose()

    assert wiki.status == WikiStatus.FAILED
    assert wiki.error == "Generation cancelled"


async def test_finished_job_is_persisted(make_stub, make_generator, tmp_path):
    storage = MarkdownStorage(tmp_path / "store")
    generator = make_generator(make_stub(), storage=storage)

    wiki = await _run(generator, _request(languages=["zh"]))

    stored = storage.load_wiki(wiki.id)
    assert stored.status == WikiStatus.COMPLETED
    assert [page.id for page in stored.pages] == [page.id for page in wiki.pages]


async def test_forget_refuses_active_wiki(make_stub, make_generator):
    generator = make_generator(make_stub(delay=0.2), use_streaming=False)
    wiki = await generator.generate_wiki(_request(languages=["zh"]))

    with pytest.raises(ValueError):
        generator.forget(wiki.id)

    await generator.wait_for(wiki.id)
    assert generator.forget(wiki.id) is wiki
    assert generator.get_wiki(wiki.id) is None


async def test_adopt_keeps_running_job(make_stub, make_generator):
    generator = make_generator(make_stub(delay=0.2), use_streaming=False)
    running = await generator.generate_wiki(_request(languages=["zh"]))
    stale = Wiki(
        id=running.id, repository_url="template-docs", package_path=running.id, title="old", description=""
    )
    stale.set_status(WikiStatus.COMPLETED)

    generator.adopt(stale)

    assert generator.get_wiki(running.id) is running
    await generator.wait_for(running.id)


# =============================================================================
# Helpers
# =============================================================================


@pytest.mark.parametrize("page_type", list(PageType))
def test_every_page_type_maps_to_itself(page_type):
    assert get_page_type(page_type.value) == page_type


def test_unknown_template_type_is_a_guide():
    assert get_page_type("  Overview ") == PageType.OVERVIEW
    assert get_page_type("poem") == PageType.GUIDE


def test_reading_time_is_at_least_one_minute():
    assert reading_time("", 200) == 1
    assert reading_time("word " * 450, 200) == 2


def test_conflict_key():
    assert conflict_key("template-docs", "openai", "gpt-4o") == "template-docs-openai-gpt-4o"
    assert conflict_key("https://GitHub.com/a/b/", "openai", "gpt-4o") == "https://github.com/a/b"
    assert conflict_key("https://github.com/a/b.git", "openai", "gpt-4o") == "https://github.com/a/b"
