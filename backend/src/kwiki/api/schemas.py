"""Pydantic schemas for API requests and responses."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from kwiki.generation.models import Wiki, WikiPage


class GenerationSettingsIn(BaseModel):
    """AI settings of a generation request; blanks fall back to configuration."""

    ai_provider: str = ""
    model: str = ""
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    max_tokens: int = 4000


class GenerateWikiRequest(BaseModel):
    """Request to generate a wiki."""

    repository_url: str = Field(..., min_length=1, description="Repository URL or 'template-docs'")
    title: str = ""
    description: str = ""
    languages: list[str] = Field(default_factory=list)
    primary_language: str = ""
    settings: GenerationSettingsIn = Field(default_factory=GenerationSettingsIn)


class GenerateWikiResponse(BaseModel):
    """Generation accepted response."""

    wiki_id: str
    status: str
    message: str = "Wiki generation started"


class WikiProgressResponse(BaseModel):
    """Current progress of a wiki job."""

    wiki_id: str
    status: str
    progress: int
    updated_at: datetime
    error: str | None = None


class PageSummary(BaseModel):
    """A page without its content."""

    id: str
    title: str
    type: str
    order: int
    language: str
    word_count: int
    reading_time: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_page(cls, page: WikiPage) -> "PageSummary":
        return cls(
            id=page.id,
            title=page.title,
            type=page.type.value,
            order=page.order,
            language=page.language,
            word_count=page.word_count,
            reading_time=page.reading_time,
            created_at=page.created_at,
            updated_at=page.updated_at,
        )


class PageResponse(PageSummary):
    """A page with its markdown content."""

    content: str

    @classmethod
    def from_page(cls, page: WikiPage) -> "PageResponse":
        return cls(**PageSummary.from_page(page).model_dump(), content=page.content)


class WikiSummary(BaseModel):
    """Wiki list entry."""

    id: str
    repository_url: str
    package_path: str
    title: str
    description: str
    status: str
    progress: int
    language: str
    languages: list[str]
    page_count: int
    error: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_wiki(cls, wiki: Wiki) -> "WikiSummary":
        return cls(
            id=wiki.id,
            repository_url=wiki.repository_url,
            package_path=wiki.package_path,
            title=wiki.title,
            description=wiki.description,
            status=wiki.status.value,
            progress=wiki.progress,
            language=wiki.language,
            languages=list(wiki.languages),
            page_count=len(wiki.pages),
            error=wiki.error,
            created_at=wiki.created_at,
            updated_at=wiki.updated_at,
        )


class WikiDetail(WikiSummary):
    """Wiki with settings, metadata and page summaries."""

    settings: dict[str, Any]
    metadata: dict[str, Any]
    tags: list[str]
    pages: list[PageSummary]

    @classmethod
    def from_wiki(cls, wiki: Wiki) -> "WikiDetail":
        data = wiki.to_dict(include_pages=False)
        return cls(
            **WikiSummary.from_wiki(wiki).model_dump(),
            settings=data["settings"],
            metadata=data["metadata"],
            tags=list(wiki.tags),
            pages=[PageSummary.from_page(page) for page in wiki.pages],
        )


class WikiLogs(BaseModel):
    """Recent log lines of a wiki job."""

    wiki_id: str
    logs: list[str]


class WikiDeleted(BaseModel):
    """Wiki deletion response."""

    wiki_id: str
    message: str = "Wiki deleted"


class ProviderInfo(BaseModel):
    """Provider status and usage."""

    name: str
    available: bool
    default_model: str
    models: list[str]
    usage: dict[str, Any]


class ServiceInfo(BaseModel):
    """Service version, providers and configuration summary."""

    name: str = "kwiki"
    version: str
    default_provider: str
    providers: list[ProviderInfo]
    config: dict[str, Any]
