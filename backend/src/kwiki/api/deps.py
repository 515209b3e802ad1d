"""FastAPI dependency injection functions."""

from functools import lru_cache

from kwiki.config import Config, load_settings
from kwiki.state import AppContext


@lru_cache
def get_settings() -> Config:
    """Get cached application settings."""
    return load_settings()


@lru_cache(maxsize=1)
def get_app_context() -> AppContext:
    """Get the process-wide application context."""
    return AppContext(get_settings())


def _reset_app_context() -> None:
    """Reset the application context and settings (for testing only)."""
    get_app_context.cache_clear()
    get_settings.cache_clear()
    load_settings.cache_clear()
