"""Wiki generation and retrieval endpoints.

Wiki ids are package paths such as ``github.com/owner/repo``, so every route
takes the id as a ``path`` parameter. Suffix routes are declared before the
bare ``/wiki/{wiki_id}`` routes so they match first.
"""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from kwiki.api.deps import get_app_context
from kwiki.api.schemas import (
    GenerateWikiRequest,
    GenerateWikiResponse,
    PageResponse,
    PageSummary,
    WikiDeleted,
    WikiDetail,
    WikiLogs,
    WikiProgressResponse,
    WikiSummary,
)
from kwiki.generation.errors import ConflictError
from kwiki.generation.models import GenerationRequest, Wiki, WikiSettings, WikiStatus
from kwiki.llm.errors import ProviderNotFoundError
from kwiki.repo.url_parser import TEMPLATE_DOCS_TARGET
from kwiki.state import AppContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["wiki"])

STREAM_POLL_INTERVAL = 0.5


def _require_wiki(ctx: AppContext, wiki_id: str) -> Wiki:
    wiki = ctx.generator.get_wiki(wiki_id)
    if wiki is None:
        raise HTTPException(status_code=404, detail=f"Wiki not found: {wiki_id}")
    return wiki


@router.post("/wiki/generate", response_model=GenerateWikiResponse, status_code=202)
async def generate_wiki(
    body: GenerateWikiRequest,
    ctx: AppContext = Depends(get_app_context),
) -> GenerateWikiResponse:
    """Start generating a wiki for a repository or for the template system."""
    target = body.repository_url.strip()

    if target == TEMPLATE_DOCS_TARGET:
        provider_name = body.settings.ai_provider or ctx.config.default_provider
        try:
            provider = ctx.registry.get(provider_name)
        except ProviderNotFoundError:
            raise HTTPException(status_code=400, detail=f"Unknown AI provider: {provider_name}")
        if not await provider.is_available():
            raise HTTPException(
                status_code=400, detail=f"AI provider '{provider_name}' is not available"
            )

    request = GenerationRequest(
        repository_url=target,
        languages=list(body.languages),
        primary_language=body.primary_language,
        title=body.title,
        description=body.description,
        settings=WikiSettings(
            ai_provider=body.settings.ai_provider,
            model=body.settings.model,
            temperature=body.settings.temperature,
            max_tokens=body.settings.max_tokens,
        ),
    )
    try:
        wiki = await ctx.submit(request)
    except ConflictError as e:
        raise HTTPException(
            status_code=409,
            detail={
                "message": str(e),
                "existing_wiki_id": e.existing_wiki_id,
                "status": e.status.value,
            },
        )

    return GenerateWikiResponse(
        wiki_id=wiki.id,
        status=wiki.status.value,
        message="Wiki generation started",
    )


@router.get("/wikis", response_model=list[WikiSummary])
async def list_wikis(ctx: AppContext = Depends(get_app_context)) -> list[WikiSummary]:
    """All known wikis, most recently updated first."""
    return [WikiSummary.from_wiki(wiki) for wiki in ctx.generator.list_wikis()]


@router.get("/wiki/{wiki_id:path}/progress", response_model=WikiProgressResponse)
async def get_progress(
    wiki_id: str,
    ctx: AppContext = Depends(get_app_context),
) -> WikiProgressResponse:
    """Current status and progress of a wiki job."""
    wiki = _require_wiki(ctx, wiki_id)
    return WikiProgressResponse(
        wiki_id=wiki.id,
        status=wiki.status.value,
        progress=wiki.progress,
        updated_at=wiki.updated_at,
        error=wiki.error,
    )


@router.get("/wiki/{wiki_id:path}/stream")
async def stream_progress(
    wiki_id: str,
    ctx: AppContext = Depends(get_app_context),
):
    """Stream wiki progress via SSE."""
    _require_wiki(ctx, wiki_id)

    async def event_generator():
        """Generate SSE events for wiki progress."""
        while True:
            wiki = ctx.generator.get_wiki(wiki_id)
            if wiki is None:
                break

            event_data = {
                "wiki_id": wiki.id,
                "status": wiki.status.value,
                "progress": wiki.progress,
                "pages": len(wiki.pages),
                "updated_at": wiki.updated_at.isoformat(),
            }

            if wiki.status == WikiStatus.COMPLETED:
                yield f"event: complete\ndata: {json.dumps(event_data)}\n\n"
                break
            elif wiki.status == WikiStatus.FAILED:
                event_data["error"] = wiki.error
                yield f"event: error\ndata: {json.dumps(event_data)}\n\n"
                break
            else:
                yield f"event: progress\ndata: {json.dumps(event_data)}\n\n"

            await asyncio.sleep(STREAM_POLL_INTERVAL)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


@router.get("/wiki/{wiki_id:path}/logs", response_model=WikiLogs)
async def get_logs(
    wiki_id: str,
    ctx: AppContext = Depends(get_app_context),
) -> WikiLogs:
    """Recent generation log lines."""
    _require_wiki(ctx, wiki_id)
    return WikiLogs(wiki_id=wiki_id, logs=ctx.logs_for(wiki_id))


@router.get("/wiki/{wiki_id:path}/pages", response_model=list[PageSummary])
async def list_pages(
    wiki_id: str,
    language: str | None = None,
    ctx: AppContext = Depends(get_app_context),
) -> list[PageSummary]:
    """Pages of a wiki, optionally filtered by language."""
    wiki = _require_wiki(ctx, wiki_id)
    pages = wiki.pages_for_language(language) if language else wiki.pages
    return [PageSummary.from_page(page) for page in pages]


@router.get("/wiki/{wiki_id:path}/page/{page_id}", response_model=PageResponse)
async def get_page(
    wiki_id: str,
    page_id: str,
    ctx: AppContext = Depends(get_app_context),
) -> PageResponse:
    """One page with its markdown content."""
    wiki = _require_wiki(ctx, wiki_id)
    page = wiki.get_page(page_id)
    if page is None:
        raise HTTPException(status_code=404, detail=f"Page not found: {page_id}")
    return PageResponse.from_page(page)


@router.get("/wiki/{wiki_id:path}", response_model=WikiDetail)
async def get_wiki(
    wiki_id: str,
    ctx: AppContext = Depends(get_app_context),
) -> WikiDetail:
    """Wiki details with page summaries."""
    return WikiDetail.from_wiki(_require_wiki(ctx, wiki_id))


@router.delete("/wiki/{wiki_id:path}", response_model=WikiDeleted)
async def delete_wiki(
    wiki_id: str,
    ctx: AppContext = Depends(get_app_context),
) -> WikiDeleted:
    """Delete a finished wiki and its stored files."""
    wiki = ctx.generator.get_wiki(wiki_id)
    if wiki is not None and wiki.status.is_active:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot delete wiki while it is being generated (status: {wiki.status.value})",
        )

    if wiki is not None:
        ctx.generator.forget(wiki_id)
    try:
        removed = await asyncio.to_thread(ctx.storage.delete_wiki, wiki_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if wiki is None and not removed:
        raise HTTPException(status_code=404, detail=f"Wiki not found: {wiki_id}")

    ctx.logs.clear(wiki_id)
    logger.info(f"Deleted wiki {wiki_id}")
    return WikiDeleted(wiki_id=wiki_id)
