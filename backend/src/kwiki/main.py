"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# logging.basicConfig() runs before the kwiki imports below so module loggers
# created at import time share this format.
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logging.basicConfig(
    format=LOG_FORMAT,
    datefmt=DATE_FORMAT,
    level=logging.INFO,
)

# Unify uvicorn loggers with app format
for uvicorn_logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
    uvicorn_logger = logging.getLogger(uvicorn_logger_name)
    uvicorn_logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    uvicorn_logger.addHandler(handler)

from kwiki import __version__  # noqa: E402
from kwiki.api.deps import get_app_context  # noqa: E402
from kwiki.api.routers import info, wiki, ws  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan handler for startup and shutdown events.

    On startup:
    - Ensures the wikis directory exists
    - Loads stored wikis and starts the progress monitor

    On shutdown:
    - Cancels running jobs and closes provider clients
    """
    ctx = get_app_context()
    ctx.config.wikis_path.mkdir(parents=True, exist_ok=True)
    logger.info(f"Data directory: {ctx.config.data_dir}")

    await ctx.start()
    logger.info(f"kwiki started (default provider: {ctx.config.default_provider})")

    yield

    await ctx.stop()
    logger.info("kwiki stopped")


app = FastAPI(
    title="kwiki",
    description="Multi-provider AI wiki generator for code repositories",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


# Include routers
app.include_router(info.router)
app.include_router(wiki.router)
app.include_router(ws.router)


def run() -> None:
    """Run the server with the configured host and port."""
    import uvicorn

    server = get_app_context().config.server
    uvicorn.run(app, host=server.host, port=server.port)
