# backend/src/kwiki/generation/models.py
"""Wiki job and page data model.

A ``Wiki`` is the aggregate of one generation request. Its status follows
``pending -> analyzing -> generating -> completed | failed``; both terminal
states are absorbing and progress never decreases while the job is active.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class WikiStatus(str, Enum):
    """Lifecycle states of a wiki generation job."""

    PENDING = "pending"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WikiStatus.COMPLETED, WikiStatus.FAILED)

    @property
    def is_active(self) -> bool:
        return not self.is_terminal


class PageType(str, Enum):
    """Category tag of a generated page."""

    OVERVIEW = "overview"
    ARCHITECTURE = "architecture"
    API = "api"
    MODULE = "module"
    FUNCTION = "function"
    CLASS = "class"
    TUTORIAL = "tutorial"
    REFERENCE = "reference"
    CHANGELOG = "changelog"
    GUIDE = "guide"


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


@dataclass
class WikiPage:
    """One generated markdown document."""

    id: str
    title: str
    content: str
    type: PageType
    order: int
    word_count: int = 0
    reading_time: int = 1
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def language(self) -> str:
        """Language suffix of the page id (``overview_zh`` -> ``zh``)."""
        _, sep, language = self.id.rpartition("_")
        return language if sep else ""

    def to_dict(self, include_content: bool = True) -> dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "type": self.type.value,
            "order": self.order,
            "word_count": self.word_count,
            "reading_time": self.reading_time,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if include_content:
            data["content"] = self.content
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WikiPage":
        try:
            page_type = PageType(data.get("type", "guide"))
        except ValueError:
            page_type = PageType.GUIDE
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            content=data.get("content", ""),
            type=page_type,
            order=int(data.get("order", 0)),
            word_count=int(data.get("word_count", 0)),
            reading_time=int(data.get("reading_time", 1)),
            created_at=_parse_datetime(data.get("created_at")) or datetime.now(),
            updated_at=_parse_datetime(data.get("updated_at")) or datetime.now(),
        )


@dataclass
class WikiSettings:
    """AI settings snapshot of a job."""

    ai_provider: str = ""
    model: str = ""
    temperature: float = 0.7
    max_tokens: int = 4000
    languages: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WikiSettings":
        return cls(
            ai_provider=data.get("ai_provider", ""),
            model=data.get("model", ""),
            temperature=float(data.get("temperature", 0.7)),
            max_tokens=int(data.get("max_tokens", 4000)),
            languages=list(data.get("languages") or []),
        )


@dataclass
class WikiMetadata:
    """Statistics collected while generating a job."""

    repository_url: str = ""
    package_path: str = ""
    languages: list[str] = field(default_factory=list)
    generation_time_seconds: float = 0.0
    total_tokens: int = 0
    pages_generated: int = 0
    diagrams_generated: int = 0
    statistics: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WikiMetadata":
        return cls(
            repository_url=data.get("repository_url", ""),
            package_path=data.get("package_path", ""),
            languages=list(data.get("languages") or []),
            generation_time_seconds=float(data.get("generation_time_seconds", 0.0)),
            total_tokens=int(data.get("total_tokens", 0)),
            pages_generated=int(data.get("pages_generated", 0)),
            diagrams_generated=int(data.get("diagrams_generated", 0)),
            statistics=dict(data.get("statistics") or {}),
        )


@dataclass
class Wiki:
    """Aggregate state of one generation job.

    Mutate status, progress and pages only through the methods below; they
    enforce the absorbing terminal states and non-decreasing progress.
    """

    id: str
    repository_url: str
    package_path: str
    title: str
    description: str
    status: WikiStatus = WikiStatus.PENDING
    progress: int = 0
    language: str = ""
    languages: list[str] = field(default_factory=list)
    pages: list[WikiPage] = field(default_factory=list)
    settings: WikiSettings = field(default_factory=WikiSettings)
    metadata: WikiMetadata = field(default_factory=WikiMetadata)
    error: str | None = None
    tags: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def set_status(self, status: WikiStatus, error: str | None = None) -> bool:
        """Transition to ``status``; returns False if the job is already terminal."""
        if self.status.is_terminal:
            return False
        self.status = status
        if error:
            self.error = error
        if status == WikiStatus.COMPLETED:
            self.progress = 100
        self.updated_at = datetime.now()
        return True

    def set_progress(self, progress: int) -> int:
        """Raise progress to ``progress`` (clamped to 0-100); never lowers it."""
        if self.status.is_active:
            self.progress = max(self.progress, min(100, max(0, int(progress))))
            self.updated_at = datetime.now()
        return self.progress

    def add_page(self, page: WikiPage) -> None:
        self.pages.append(page)
        self.updated_at = datetime.now()

    def pages_for_language(self, language: str) -> list[WikiPage]:
        return [page for page in self.pages if page.language == language]

    def get_page(self, page_id: str) -> WikiPage | None:
        for page in self.pages:
            if page.id == page_id:
                return page
        return None

    def to_dict(self, include_pages: bool = True, include_content: bool = True) -> dict[str, Any]:
        data = {
            "id": self.id,
            "repository_url": self.repository_url,
            "package_path": self.package_path,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "progress": self.progress,
            "language": self.language,
            "languages": list(self.languages),
            "settings": asdict(self.settings),
            "metadata": asdict(self.metadata),
            "error": self.error,
            "tags": list(self.tags),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if include_pages:
            data["pages"] = [page.to_dict(include_content) for page in self.pages]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Wiki":
        try:
            status = WikiStatus(data.get("status", "pending"))
        except ValueError:
            status = WikiStatus.FAILED
        return cls(
            id=data["id"],
            repository_url=data.get("repository_url", ""),
            package_path=data.get("package_path", ""),
            title=data.get("title", ""),
            description=data.get("description", ""),
            status=status,
            progress=int(data.get("progress", 0)),
            language=data.get("language", ""),
            languages=list(data.get("languages") or []),
            pages=[WikiPage.from_dict(page) for page in data.get("pages") or []],
            settings=WikiSettings.from_dict(data.get("settings") or {}),
            metadata=WikiMetadata.from_dict(data.get("metadata") or {}),
            error=data.get("error"),
            tags=list(data.get("tags") or []),
            created_at=_parse_datetime(data.get("created_at")) or datetime.now(),
            updated_at=_parse_datetime(data.get("updated_at")) or datetime.now(),
        )


@dataclass
class GenerationRequest:
    """Input of one ``generate_wiki`` call."""

    repository_url: str
    languages: list[str] = field(default_factory=list)
    primary_language: str = ""
    title: str = ""
    description: str = ""
    settings: WikiSettings = field(default_factory=WikiSettings)


@dataclass
class GenerationProgress:
    """Progress event published for a job.

    Attributes:
        wiki_id: Job identifier.
        status: Job status at publish time.
        progress: Overall progress 0-100.
        current_step: Short step label.
        message: Human-readable progress message.
        error: Error text, if the step failed.
        updated_at: Time of the update.
    """

    wiki_id: str
    status: WikiStatus
    progress: int
    current_step: str = ""
    message: str = ""
    error: str | None = None
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "wiki_id": self.wiki_id,
            "status": self.status.value,
            "progress": self.progress,
            "current_step": self.current_step,
            "message": self.message,
            "error": self.error,
            "updated_at": self.updated_at.isoformat(),
        }
