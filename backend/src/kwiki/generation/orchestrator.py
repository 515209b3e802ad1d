# backend/src/kwiki/generation/orchestrator.py
"""Wiki generation orchestrator.

``WikiGenerator.generate_wiki`` accepts a request, registers a job and returns
immediately; the job runs on its own task through one of two pipelines:

1. Template docs - the reserved ``template-docs`` target renders every prompt
   template per language and documents the template system itself
2. Repository docs - a GitHub/GitLab URL gets a fixed set of five pages per
   language, each retried on transient provider errors

Both pipelines isolate failures per page and per language. A job completes
when at least one page was produced and fails otherwise.
"""

import asyncio
import logging
import time
from collections import Counter
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass, field, replace
from datetime import datetime

from kwiki.config import Config
from kwiki.generation.errors import ConflictError
from kwiki.generation.models import (
    GenerationProgress,
    GenerationRequest,
    PageType,
    Wiki,
    WikiMetadata,
    WikiPage,
    WikiStatus,
)
from kwiki.generation.progress import ProgressChannel
from kwiki.generation.prompts import get_repository_page_prompt, repository_pages
from kwiki.generation.templates import (
    TemplateData,
    TemplateDocumentationData,
    TemplateInfo,
    TemplateManager,
    TemplateNotFoundError,
    TemplateRenderError,
)
from kwiki.llm.base import GenerationOptions, GenerationResult, Provider
from kwiki.llm.errors import LLMBadResponseError, LLMError, LLMTimeoutError, NoAvailableProviderError
from kwiki.llm.registry import ProviderRegistry
from kwiki.repo.url_parser import (
    TEMPLATE_DOCS_TARGET,
    RepositoryInfo,
    UnsupportedRepositoryError,
    analyze_repository,
    derive_package_path,
    normalize_target,
    wiki_description,
    wiki_title,
)

logger = logging.getLogger(__name__)

# Template pipeline progress: 0-20 scanning, 20-80 pages, 80-100 finishing
TEMPLATE_PAGES_START = 20
# Repository pipeline progress: 0-30 analysis, 30-90 pages, 90-100 finishing
REPOSITORY_PAGES_START = 30
PAGES_PROGRESS_SPAN = 60

DEFAULT_TOP_P = 0.9

_PAGE_TYPES_BY_TEMPLATE_TYPE = {page_type.value: page_type for page_type in PageType}


def get_page_type(template_type: str) -> PageType:
    """Map a template's declared type to a page type; unknown types become guides."""
    return _PAGE_TYPES_BY_TEMPLATE_TYPE.get(template_type.strip().lower(), PageType.GUIDE)


def word_count(content: str) -> int:
    return len(content.split())


def reading_time(content: str, reading_speed: int) -> int:
    """Reading time in whole minutes, never less than one."""
    return max(1, word_count(content) // max(1, reading_speed))


def conflict_key(target: str, provider: str, model: str) -> str:
    """Key used to detect duplicate submissions of an equivalent job."""
    if target == TEMPLATE_DOCS_TARGET:
        return f"template-docs-{provider}-{model}"
    return normalize_target(target)


@dataclass
class PageStats:
    """Measurements of one successful page generation."""

    title: str
    prompt_chars: int
    content_chars: int
    tokens: int
    duration_ms: int
    model: str
    finish_reason: str


@dataclass
class _Job:
    wiki: Wiki
    key: str
    task: asyncio.Task | None = None
    stats: dict[str, list[PageStats]] = field(default_factory=dict)


# A page job produces a page and its stats, or None when the page was abandoned
PageJob = Callable[[], Awaitable[tuple[WikiPage, PageStats] | None]]


class WikiGenerator:
    """Runs wiki generation jobs against the provider registry."""

    def __init__(
        self,
        registry: ProviderRegistry,
        templates: TemplateManager,
        config: Config,
        channel: ProgressChannel | None = None,
        storage=None,
    ):
        """Initialize the generator.

        Args:
            registry: Registry the job's provider is resolved from.
            templates: Prompt template source for the template pipeline.
            config: Application configuration (defaults and generator tuning).
            channel: Progress channel; a new one is created when omitted.
            storage: Optional result store with a ``save_wiki(wiki)`` method.
        """
        self.registry = registry
        self.templates = templates
        self.config = config
        self.channel = channel or ProgressChannel(config.progress.channel_size)
        self.storage = storage

        self._lock = asyncio.Lock()
        self._wikis: dict[str, Wiki] = {}
        self._jobs: dict[str, _Job] = {}  # conflict key -> running job
        self._tasks: set[asyncio.Task] = set()

    @property
    def progress_channel(self) -> ProgressChannel:
        return self.channel

    # ------------------------------------------------------------------
    # Job registry
    # ------------------------------------------------------------------

    def get_wiki(self, wiki_id: str) -> Wiki | None:
        return self._wikis.get(wiki_id)

    def list_wikis(self) -> list[Wiki]:
        return sorted(self._wikis.values(), key=lambda wiki: wiki.updated_at, reverse=True)

    def active_wikis(self) -> list[Wiki]:
        return [job.wiki for job in self._jobs.values() if job.wiki.status.is_active]

    def adopt(self, wiki: Wiki) -> None:
        """Track a wiki loaded from storage; running jobs take precedence."""
        current = self._wikis.get(wiki.id)
        if current is None or current.status.is_terminal:
            self._wikis[wiki.id] = wiki

    def forget(self, wiki_id: str) -> Wiki | None:
        """Stop tracking a terminal wiki.

        Raises:
            ValueError: If the wiki is still being generated.
        """
        wiki = self._wikis.get(wiki_id)
        if wiki is not None and wiki.status.is_active:
            raise ValueError(f"Wiki {wiki_id} is still being generated")
        return self._wikis.pop(wiki_id, None)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def generate_wiki(self, request: GenerationRequest) -> Wiki:
        """Accept a generation request and start it in the background.

        Returns:
            The new job in Pending state.

        Raises:
            ConflictError: If an equivalent job is still running.
        """
        target = request.repository_url.strip()
        is_template_docs = target == TEMPLATE_DOCS_TARGET
        package_path = derive_package_path(target)

        provider_name = request.settings.ai_provider or self.config.default_provider
        provider_defaults = self.config.provider_defaults(provider_name)
        model = request.settings.model or (provider_defaults.model if provider_defaults else "")
        max_tokens = request.settings.max_tokens
        if max_tokens <= 0 and provider_defaults is not None:
            max_tokens = provider_defaults.max_tokens

        default_language = (
            self.config.generator.template_language
            if is_template_docs
            else self.config.generator.repository_language
        )
        languages = [language for language in request.languages if language] or [default_language]
        settings = replace(
            request.settings,
            ai_provider=provider_name,
            model=model,
            max_tokens=max_tokens,
            languages=list(languages),
        )

        key = conflict_key(target, provider_name, model)
        async with self._lock:
            running = self._running_job(key, package_path)
            if running is not None:
                logger.info(f"Rejected duplicate generation for {key}: {running.wiki.id} is running")
                raise ConflictError(running.wiki.id, running.wiki.status)

            wiki = Wiki(
                id=package_path,
                repository_url=target,
                package_path=package_path,
                title=request.title or wiki_title(package_path),
                description=request.description or wiki_description(package_path, target),
                language=request.primary_language or languages[0],
                languages=list(languages),
                settings=settings,
                metadata=WikiMetadata(
                    repository_url=target, package_path=package_path, languages=list(languages)
                ),
                tags=["template-docs"] if is_template_docs else [],
            )
            job = _Job(wiki=wiki, key=key)
            self._jobs[key] = job
            self._wikis[wiki.id] = wiki

            job.task = asyncio.create_task(self._run(job, is_template_docs), name=f"wiki:{wiki.id}")
            self._tasks.add(job.task)
            job.task.add_done_callback(self._tasks.discard)

        logger.info(
            f"Accepted wiki generation {wiki.id} ({provider_name}/{model or 'default'}, "
            f"languages={','.join(languages)})"
        )
        return wiki

    def _running_job(self, key: str, wiki_id: str) -> _Job | None:
        """The active job sharing ``key`` or producing ``wiki_id``, if any."""
        for job in self._jobs.values():
            if job.wiki.status.is_active and (job.key == key or job.wiki.id == wiki_id):
                return job
        return None

    async def wait_for(self, wiki_id: str) -> Wiki | None:
        """Wait until every running job for ``wiki_id`` has finished."""
        tasks = [
            job.task
            for job in list(self._jobs.values())
            if job.wiki.id == wiki_id and job.task is not None
        ]
        if tasks:
            await asyncio.wait(tasks)
        return self._wikis.get(wiki_id)

    async def aclose(self) -> None:
        """Cancel running jobs and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    def _publish(
        self, wiki: Wiki, progress: int, step: str, message: str, error: str | None = None
    ) -> None:
        wiki.set_progress(progress)
        self.channel.publish(
            GenerationProgress(
                wiki_id=wiki.id,
                status=wiki.status,
                progress=wiki.progress,
                current_step=step,
                message=message,
                error=error,
            )
        )

    def _fail(self, wiki: Wiki, step: str, message: str, error: str) -> None:
        wiki.set_status(WikiStatus.FAILED, error=error)
        self._publish(wiki, wiki.progress, step, message, error=error)
        logger.warning(f"Wiki {wiki.id} failed: {error}")

    async def _resolve_provider(self, wiki: Wiki) -> Provider:
        """Look up the job's provider and check it is ready.

        Raises:
            ProviderNotFoundError: If the provider is not registered.
            NoAvailableProviderError: If its availability probe fails.
        """
        name = wiki.settings.ai_provider
        provider = self.registry.get(name)
        if not await provider.is_available():
            raise NoAvailableProviderError(f"AI provider '{name}' is not available", provider=name)
        return provider

    async def _run(self, job: _Job, is_template_docs: bool) -> None:
        wiki = job.wiki
        start_time = time.perf_counter()
        try:
            try:
                provider = await self._resolve_provider(wiki)
            except LLMError as e:
                self._fail(wiki, "provider", "AI provider unavailable", str(e))
                return

            if is_template_docs:
                await self._generate_template_docs(job, provider)
            else:
                await self._generate_repository_docs(job, provider)

            if wiki.status.is_terminal:
                return
            if wiki.pages:
                wiki.set_status(WikiStatus.COMPLETED)
                self._publish(
                    wiki, 100, "complete", f"Generation complete, {len(wiki.pages)} pages"
                )
                logger.info(f"Wiki {wiki.id} completed with {len(wiki.pages)} pages")
            else:
                self._fail(wiki, "failed", "No pages were generated", "All page generations failed")
        except asyncio.CancelledError:
            wiki.set_status(WikiStatus.FAILED, error="Generation cancelled")
            raise
        except Exception as e:
            logger.exception(f"Wiki generation {wiki.id} crashed")
            self._fail(wiki, "failed", "Generation failed", f"Unexpected error: {e}")
        finally:
            wiki.metadata.generation_time_seconds = round(time.perf_counter() - start_time, 3)
            wiki.metadata.pages_generated = len(wiki.pages)
            wiki.updated_at = datetime.now()
            await self._persist(wiki)
            async with self._lock:
                if self._jobs.get(job.key) is job:
                    del self._jobs[job.key]

    async def _persist(self, wiki: Wiki) -> None:
        if self.storage is None:
            return
        try:
            await asyncio.to_thread(self.storage.save_wiki, wiki)
        except OSError as e:
            logger.error(f"Failed to persist wiki {wiki.id}: {e}")

    # ------------------------------------------------------------------
    # Template documentation pipeline
    # ------------------------------------------------------------------

    async def _generate_template_docs(self, job: _Job, provider: Provider) -> None:
        wiki = job.wiki
        wiki.set_status(WikiStatus.ANALYZING)
        self._publish(wiki, 10, "scan", "Scanning template directory...")

        data = await asyncio.to_thread(self.templates.scan)
        stats = data.statistics
        logger.info(
            f"Template scan complete: {stats.total_templates} templates, "
            f"{stats.total_languages} languages"
        )
        for code, count in stats.templates_by_language.items():
            logger.info(f"  language {code}: {count} templates")
        for template_type, count in stats.templates_by_type.items():
            logger.info(f"  type {template_type}: {count} templates")

        wiki.set_status(WikiStatus.GENERATING)
        self._publish(wiki, TEMPLATE_PAGES_START, "generate", "Template scan complete, generating pages")

        total = len(wiki.languages)
        for index, language in enumerate(wiki.languages):
            base = TEMPLATE_PAGES_START + PAGES_PROGRESS_SPAN * index // total
            logger.info(f"Processing language {index + 1}/{total}: {language}")
            self._publish(wiki, base, "generate", f"Generating {language} pages")
            try:
                templates = await asyncio.to_thread(self.templates.templates_for, language)
            except TemplateNotFoundError as e:
                logger.warning(f"No templates for {language}: {e}")
                self._publish(wiki, base, "generate", f"Failed to generate {language} pages", str(e))
                continue

            jobs = [
                self._template_page_job(wiki, provider, template, data, language)
                for template in templates
            ]
            produced = await self._run_pages(
                job, language, jobs, TEMPLATE_PAGES_START, index, total
            )
            logger.info(f"Language {language} done: {produced}/{len(templates)} pages")

    def _template_page_job(
        self,
        wiki: Wiki,
        provider: Provider,
        template: TemplateInfo,
        data: TemplateDocumentationData,
        language: str,
    ) -> PageJob:
        async def run() -> tuple[WikiPage, PageStats] | None:
            title = template.metadata.title
            try:
                prompt = self.templates.render(
                    template,
                    TemplateData(
                        project_name=data.project_name,
                        description=data.description,
                        primary_language=data.primary_language,
                        license=data.license,
                        language=language,
                    ),
                )
                result = await self._generate_text(wiki, provider, prompt)
            except (LLMError, TemplateRenderError) as e:
                logger.warning(f"Template page {title} ({language}) failed: {e}")
                return None
            except Exception:
                logger.exception(f"Template page {title} ({language}) crashed")
                return None

            page = self._make_page(
                page_id=f"{template.metadata.type}_{language}",
                title=title,
                content=result.text,
                page_type=get_page_type(template.metadata.type),
                order=template.metadata.order,
            )
            return page, self._page_stats(title, prompt, result)

        return run

    # ------------------------------------------------------------------
    # Repository documentation pipeline
    # ------------------------------------------------------------------

    async def _generate_repository_docs(self, job: _Job, provider: Provider) -> None:
        wiki = job.wiki
        wiki.set_status(WikiStatus.ANALYZING)
        self._publish(wiki, 10, "analyze", "Analyzing repository structure...")

        try:
            repo = analyze_repository(wiki.repository_url)
        except UnsupportedRepositoryError as e:
            self._fail(wiki, "analyze", "Repository analysis failed", str(e))
            return
        logger.info(f"Repository analysis complete: {repo.name} ({repo.language})")

        wiki.set_status(WikiStatus.GENERATING)
        self._publish(wiki, REPOSITORY_PAGES_START, "generate", "Generating documentation pages...")

        total = len(wiki.languages)
        for index, language in enumerate(wiki.languages):
            base = REPOSITORY_PAGES_START + PAGES_PROGRESS_SPAN * index // total
            logger.info(f"Processing language {index + 1}/{total}: {language}")
            self._publish(wiki, base, "generate", f"Generating {language} pages")

            specs = repository_pages(language)
            jobs = [
                self._repository_page_job(wiki, provider, repo, spec.type, spec.title, spec.order, language)
                for spec in specs
            ]
            produced = await self._run_pages(
                job, language, jobs, REPOSITORY_PAGES_START, index, total
            )
            if produced == 0:
                self._publish(
                    wiki,
                    base,
                    "generate",
                    f"Failed to generate {language} pages",
                    f"All pages failed for language {language}",
                )
            logger.info(f"Language {language} done: {produced}/{len(specs)} pages")

    def _repository_page_job(
        self,
        wiki: Wiki,
        provider: Provider,
        repo: RepositoryInfo,
        page_type: PageType,
        title: str,
        order: int,
        language: str,
    ) -> PageJob:
        async def run() -> tuple[WikiPage, PageStats] | None:
            prompt = get_repository_page_prompt(repo, page_type, title, language)
            attempts = self.config.generator.page_retry_attempts
            for attempt in range(attempts):
                if attempt > 0:
                    logger.info(f"Retrying page {title} ({language}), attempt {attempt + 1}/{attempts}")
                    await asyncio.sleep(attempt)
                try:
                    result = await self._generate_text(wiki, provider, prompt)
                    break
                except LLMError as e:
                    logger.warning(f"Page {title} failed (attempt {attempt + 1}/{attempts}): {e}")
                    if not e.retryable:
                        return None
                except Exception:
                    logger.exception(f"Page {title} ({language}) crashed")
                    return None
            else:
                logger.warning(f"Giving up on page {title} ({language}) after {attempts} attempts")
                return None

            page = self._make_page(
                page_id=f"{title.replace(' ', '-').lower()}_{language}",
                title=title,
                content=result.text,
                page_type=page_type,
                order=order,
            )
            return page, self._page_stats(title, prompt, result)

        return run

    # ------------------------------------------------------------------
    # Shared page machinery
    # ------------------------------------------------------------------

    async def _run_pages(
        self,
        job: _Job,
        language: str,
        page_jobs: list[PageJob],
        progress_start: int,
        language_index: int,
        total_languages: int,
    ) -> int:
        """Run one language's page jobs with bounded concurrency.

        Pages are appended to the wiki in declared order as soon as every page
        ahead of them has finished. Returns the number of pages produced.
        """
        wiki = job.wiki
        if not page_jobs:
            return 0

        semaphore = asyncio.Semaphore(self.config.generator.max_concurrency)
        language_share = PAGES_PROGRESS_SPAN / total_languages
        page_share = language_share / len(page_jobs)
        results: list[tuple[WikiPage, PageStats] | None] = [None] * len(page_jobs)
        finished = [False] * len(page_jobs)
        next_to_append = 0
        completed = 0
        produced = 0

        async def bounded(index: int) -> int:
            async with semaphore:
                results[index] = await page_jobs[index]()
            return index

        tasks = [asyncio.create_task(bounded(index)) for index in range(len(page_jobs))]
        try:
            for coro in asyncio.as_completed(tasks):
                index = await coro
                finished[index] = True
                completed += 1

                while next_to_append < len(page_jobs) and finished[next_to_append]:
                    outcome = results[next_to_append]
                    if outcome is not None:
                        page, stats = outcome
                        wiki.add_page(page)
                        job.stats.setdefault(language, []).append(stats)
                        wiki.metadata.total_tokens += stats.tokens
                        produced += 1
                    next_to_append += 1

                progress = int(progress_start + language_index * language_share + completed * page_share)
                self._publish(
                    wiki,
                    progress,
                    "generate",
                    f"Generated {completed}/{len(page_jobs)} {language} pages",
                )
        finally:
            for task in tasks:
                task.cancel()

        wiki.metadata.statistics[f"{language}_pages"] = produced
        self._log_language_stats(language, job.stats.get(language, []))
        return produced

    async def _generate_text(self, wiki: Wiki, provider: Provider, prompt: str) -> GenerationResult:
        """Generate one page body with the job's settings.

        Raises:
            LLMError: If the call fails or produces no text.
        """
        settings = wiki.settings
        options = GenerationOptions(
            prompt=prompt,
            model=settings.model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            top_p=DEFAULT_TOP_P,
        )
        if self.config.generator.use_streaming:
            result = await self._stream_with_idle_timeout(provider, options)
        else:
            result = await provider.generate(options)

        if not result.text:
            raise LLMBadResponseError(
                f"{provider.name} returned no content", provider=provider.name
            )
        return result

    async def _stream_with_idle_timeout(
        self, provider: Provider, options: GenerationOptions
    ) -> GenerationResult:
        """Stream a generation, aborting when no chunk arrives within the idle timeout.

        Raises:
            LLMTimeoutError: If the stream goes idle; carries the partial text.
        """
        idle_timeout = self.config.generator.stream_idle_timeout_seconds
        start_time = time.perf_counter()
        parts: list[str] = []
        terminal = None

        async with aclosing(provider.iter_stream(options)) as deltas:
            while True:
                try:
                    delta = await asyncio.wait_for(deltas.__anext__(), timeout=idle_timeout)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError as e:
                    raise LLMTimeoutError(
                        f"No data from {provider.name} for {idle_timeout}s",
                        provider=provider.name,
                        partial_text="".join(parts),
                    ) from e
                if delta.done:
                    terminal = delta
                    break
                parts.append(delta.text)

        return GenerationResult(
            text="".join(parts),
            usage=terminal.usage if terminal else None,
            model=options.model or provider.default_model,
            provider=provider.name,
            duration_ms=int((time.perf_counter() - start_time) * 1000),
            finish_reason=(terminal.finish_reason or "") if terminal else "",
        )

    def _make_page(
        self, page_id: str, title: str, content: str, page_type: PageType, order: int
    ) -> WikiPage:
        now = datetime.now()
        return WikiPage(
            id=page_id,
            title=title,
            content=content,
            type=page_type,
            order=order,
            word_count=word_count(content),
            reading_time=reading_time(content, self.config.generator.reading_speed),
            created_at=now,
            updated_at=now,
        )

    def _page_stats(self, title: str, prompt: str, result: GenerationResult) -> PageStats:
        return PageStats(
            title=title,
            prompt_chars=len(prompt),
            content_chars=len(result.text),
            tokens=result.usage.total_tokens if result.usage else 0,
            duration_ms=result.duration_ms,
            model=result.model,
            finish_reason=result.finish_reason or "unknown",
        )

    def _log_language_stats(self, language: str, stats: list[PageStats]) -> None:
        if not stats:
            return

        count = len(stats)
        total_tokens = sum(stat.tokens for stat in stats)
        total_ms = sum(stat.duration_ms for stat in stats)
        total_chars = sum(stat.content_chars for stat in stats)
        prompt_chars = sum(stat.prompt_chars for stat in stats)
        speed = total_chars / (total_ms / 1000) if total_ms else 0.0
        models = Counter(stat.model for stat in stats)
        reasons = Counter(stat.finish_reason for stat in stats)

        logger.info(f"=== Generation stats for {language} ===")
        logger.info(f"Pages: {count}")
        logger.info(f"Tokens: {total_tokens} total, {total_tokens / count:.1f} per page")
        logger.info(f"Time: {total_ms}ms total, {total_ms // count}ms per page")
        logger.info(f"Content: {total_chars} chars total, {total_chars / count:.1f} per page")
        logger.info(f"Prompts: {prompt_chars} chars total, {prompt_chars / count:.1f} per page")
        logger.info(f"Speed: {speed:.1f} chars/s")
        logger.info(f"Models: {dict(models)}")
        logger.info(f"Finish reasons: {dict(reasons)}")
