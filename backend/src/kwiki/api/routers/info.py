"""Service info, provider and model endpoints."""

from fastapi import APIRouter, Depends

from kwiki import __version__
from kwiki.api.deps import get_app_context
from kwiki.api.schemas import ProviderInfo, ServiceInfo
from kwiki.llm.base import Provider
from kwiki.state import AppContext

router = APIRouter(prefix="/api", tags=["info"])


async def _provider_info(provider: Provider) -> ProviderInfo:
    available = await provider.is_available()
    return ProviderInfo(
        name=provider.name,
        available=available,
        default_model=provider.default_model,
        models=await provider.get_models(),
        usage=provider.get_usage().to_dict(),
    )


@router.get("/info", response_model=ServiceInfo)
async def get_info(ctx: AppContext = Depends(get_app_context)) -> ServiceInfo:
    """Version, provider status and configuration summary."""
    config = ctx.config
    return ServiceInfo(
        version=__version__,
        default_provider=config.default_provider,
        providers=[await _provider_info(provider) for provider in ctx.registry.all()],
        config={
            "max_concurrency": config.generator.max_concurrency,
            "template_language": config.generator.template_language,
            "repository_language": config.generator.repository_language,
            "use_streaming": config.generator.use_streaming,
            "page_retry_attempts": config.generator.page_retry_attempts,
            "supported_languages": ctx.templates.supported_languages(),
        },
    )


@router.get("/providers", response_model=list[ProviderInfo])
async def list_providers(ctx: AppContext = Depends(get_app_context)) -> list[ProviderInfo]:
    """All registered providers with availability and usage."""
    return [await _provider_info(provider) for provider in ctx.registry.all()]


@router.get("/models")
async def list_models(ctx: AppContext = Depends(get_app_context)) -> dict[str, list[str]]:
    """Model lists of the currently available providers."""
    return await ctx.registry.get_all_models()
