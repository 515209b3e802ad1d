"""Application context shared by the HTTP layer and generation jobs."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from kwiki.config import Config
from kwiki.generation.models import GenerationProgress, GenerationRequest, Wiki, WikiStatus
from kwiki.generation.orchestrator import WikiGenerator
from kwiki.generation.progress import JobLogBuffer, ProgressChannel
from kwiki.generation.templates import TemplateManager
from kwiki.llm.registry import ProviderRegistry, build_registry
from kwiki.storage.markdown_storage import MarkdownStorage

logger = logging.getLogger(__name__)


class AppContext:
    """Owns the long-lived services: registry, generator, progress and storage.

    Constructed once per process (see ``kwiki.api.deps``); tests build their
    own with stub registries.
    """

    def __init__(
        self,
        config: Config,
        registry: Optional[ProviderRegistry] = None,
        templates: Optional[TemplateManager] = None,
        storage: Optional[MarkdownStorage] = None,
    ):
        self.config = config
        self.registry = registry if registry is not None else build_registry(config)
        self.templates = templates or TemplateManager(config.template_path)
        self.storage = storage or MarkdownStorage(config.wikis_path)
        self.channel = ProgressChannel(config.progress.channel_size)
        self.logs = JobLogBuffer(config.progress.log_retention)
        self.generator = WikiGenerator(
            self.registry, self.templates, config, channel=self.channel, storage=self.storage
        )
        self._subscribers: dict[str, set[asyncio.Queue[GenerationProgress]]] = {}
        self._monitor: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Load stored wikis and start draining the progress channel."""
        wikis = await asyncio.to_thread(self.storage.load_all_wikis)
        for wiki in wikis.values():
            if wiki.status.is_active:
                wiki.set_status(WikiStatus.FAILED, error="Interrupted by server restart")
                await asyncio.to_thread(self.storage.save_wiki, wiki)
                logger.info(f"Marked interrupted wiki {wiki.id} as failed")
            self.generator.adopt(wiki)
        logger.info(f"Loaded {len(wikis)} stored wikis")

        if self._monitor is None:
            self._monitor = asyncio.create_task(self._monitor_progress(), name="progress-monitor")

    async def stop(self) -> None:
        if self._monitor is not None:
            self._monitor.cancel()
            try:
                await self._monitor
            except asyncio.CancelledError:
                pass
            self._monitor = None
        await self.generator.aclose()
        await self.registry.aclose()

    async def submit(self, request: GenerationRequest) -> Wiki:
        """Start a generation job and record its first log lines.

        Raises:
            ConflictError: If an equivalent job is still running.
        """
        wiki = await self.generator.generate_wiki(request)
        self.logs.clear(wiki.id)
        self.log(wiki.id, f"Started wiki generation for {wiki.repository_url}")
        self.log(
            wiki.id,
            f"Provider: {wiki.settings.ai_provider}, model: {wiki.settings.model or 'default'}, "
            f"languages: {', '.join(wiki.languages)}",
        )
        return wiki

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def log(self, wiki_id: str, message: str) -> None:
        entry = self.logs.append(wiki_id, message)
        try:
            self.storage.append_log(wiki_id, message, entry.timestamp)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to write log for {wiki_id}: {e}")

    def logs_for(self, wiki_id: str) -> list[str]:
        """Recent log lines, from memory when available, else from the log file."""
        buffered = self.logs.formatted(wiki_id)
        if buffered:
            return buffered
        try:
            return self.storage.load_logs(wiki_id)[-self.config.progress.log_retention :]
        except (OSError, ValueError):
            return []

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def subscribe(self, wiki_id: str) -> asyncio.Queue[GenerationProgress]:
        queue: asyncio.Queue[GenerationProgress] = asyncio.Queue(
            maxsize=self.config.progress.channel_size
        )
        self._subscribers.setdefault(wiki_id, set()).add(queue)
        return queue

    def unsubscribe(self, wiki_id: str, queue: asyncio.Queue[GenerationProgress]) -> None:
        subscribers = self._subscribers.get(wiki_id)
        if subscribers is None:
            return
        subscribers.discard(queue)
        if not subscribers:
            del self._subscribers[wiki_id]

    def subscriber_count(self, wiki_id: str) -> int:
        return len(self._subscribers.get(wiki_id, ()))

    def _broadcast(self, event: GenerationProgress) -> None:
        for queue in list(self._subscribers.get(event.wiki_id, ())):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.debug(f"Subscriber queue full for {event.wiki_id}, dropping update")

    async def _monitor_progress(self) -> None:
        async for event in self.channel:
            message = f"[{event.progress}%] {event.message}"
            if event.error:
                message = f"{message} - error: {event.error}"
            self.log(event.wiki_id, message)
            self._broadcast(event)
