"""Wiki generation pipeline module."""

from kwiki.generation.errors import ConflictError
from kwiki.generation.models import (
    GenerationProgress,
    GenerationRequest,
    PageType,
    Wiki,
    WikiMetadata,
    WikiPage,
    WikiSettings,
    WikiStatus,
)
from kwiki.generation.orchestrator import WikiGenerator, get_page_type, reading_time
from kwiki.generation.progress import JobLogBuffer, LogEntry, ProgressChannel
from kwiki.generation.templates import (
    TemplateData,
    TemplateInfo,
    TemplateManager,
    TemplateNotFoundError,
    TemplateRenderError,
)

__all__ = [
    "ConflictError",
    "GenerationProgress",
    "GenerationRequest",
    "JobLogBuffer",
    "LogEntry",
    "PageType",
    "ProgressChannel",
    "TemplateData",
    "TemplateInfo",
    "TemplateManager",
    "TemplateNotFoundError",
    "TemplateRenderError",
    "Wiki",
    "WikiGenerator",
    "WikiMetadata",
    "WikiPage",
    "WikiSettings",
    "WikiStatus",
    "get_page_type",
    "reading_time",
]
