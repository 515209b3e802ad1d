"""Progress channel and per-job log buffer.

Progress reporting is best-effort: publishing never blocks the generation
pipeline, and a full channel drops the event instead.
"""

import asyncio
import logging
import threading
from collections import deque
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime

from kwiki.generation.models import GenerationProgress

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_SIZE = 100
DEFAULT_LOG_RETENTION = 100


class ProgressChannel:
    """Bounded, non-blocking queue of progress events."""

    def __init__(self, maxsize: int = DEFAULT_CHANNEL_SIZE):
        self._queue: asyncio.Queue[GenerationProgress] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def publish(self, event: GenerationProgress) -> bool:
        """Enqueue ``event`` without waiting; returns False if it was dropped."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Progress channel is full, dropping update for {event.wiki_id}")
            return False
        return True

    async def get(self) -> GenerationProgress:
        return await self._queue.get()

    def get_nowait(self) -> GenerationProgress | None:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def qsize(self) -> int:
        return self._queue.qsize()

    async def __aiter__(self) -> AsyncIterator[GenerationProgress]:
        while True:
            yield await self._queue.get()


@dataclass(frozen=True)
class LogEntry:
    """One job log line."""

    message: str
    timestamp: datetime = field(default_factory=datetime.now)

    def format(self) -> str:
        return f"[{self.timestamp.strftime('%H:%M:%S')}] {self.message}"


class JobLogBuffer:
    """Append-only log per job, capped at ``retention`` entries (oldest dropped)."""

    def __init__(self, retention: int = DEFAULT_LOG_RETENTION):
        self.retention = retention
        self._lock = threading.Lock()
        self._logs: dict[str, deque[LogEntry]] = {}

    def append(self, job_id: str, message: str) -> LogEntry:
        entry = LogEntry(message=message)
        with self._lock:
            if job_id not in self._logs:
                self._logs[job_id] = deque(maxlen=self.retention)
            self._logs[job_id].append(entry)
        return entry

    def extend(self, job_id: str, entries: list[LogEntry]) -> None:
        with self._lock:
            buffer = self._logs.setdefault(job_id, deque(maxlen=self.retention))
            buffer.extend(entries)

    def entries(self, job_id: str) -> list[LogEntry]:
        with self._lock:
            return list(self._logs.get(job_id, ()))

    def formatted(self, job_id: str) -> list[str]:
        return [entry.format() for entry in self.entries(job_id)]

    def clear(self, job_id: str) -> None:
        with self._lock:
            self._logs.pop(job_id, None)
