"""FastAPI application entry point for annopack."""

import logging
import os
from contextlib import asynccontextmanager
from typing import cast

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.types import ExceptionHandler

from annopack import __version__
from annopack.api.routes import limiter, router
from annopack.errors import ConfigurationError, ProviderError
from annopack.services.filesystem_provider import FileSystemPackageProvider
from annopack.services.session import AnnotationSession
from annopack.settings import (
    get_auto_download,
    get_cache_dir,
    get_remote_dir,
    get_sync_workers,
)

logger = logging.getLogger(__name__)


def _missing_config() -> None:
    """The server cannot ask for a config interactively."""
    return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the annotation session for the lifetime of the server."""
    provider = FileSystemPackageProvider(get_remote_dir(), get_cache_dir())
    try:
        session = AnnotationSession.open(
            provider,
            _missing_config,
            sync_workers=get_sync_workers(),
            auto_download=get_auto_download(),
        )
    except ConfigurationError:
        logger.error("No annotation config found; run `annopack init` first")
        raise
    app.state.session = session

    try:
        try:
            session.select_category(session.category)
        except ProviderError as err:
            logger.warning("Starting without packages: %s", err)
        yield
    finally:
        dirty = session.dirty_packages()
        if dirty:
            logger.warning(
                "Shutting down with %d unsynced package(s): %s",
                len(dirty),
                ", ".join(package.id for package in dirty),
            )
        session.close()


# Create FastAPI app
app = FastAPI(
    title="Annotation Package Manager",
    description="Browse, download, edit and sync annotation packages",
    version=__version__,
    lifespan=lifespan,
)

# Add rate limiter state and exception handler
app.state.limiter = limiter
app.add_exception_handler(
    RateLimitExceeded, cast(ExceptionHandler, _rate_limit_exceeded_handler)
)

# Configure CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",  # Vite dev server
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api")


@app.get("/health")
def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


def main() -> None:
    """Run the development server."""
    import uvicorn

    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))

    uvicorn.run(
        "annopack.main:app",
        host=host,
        port=port,
        reload=True,
    )


if __name__ == "__main__":
    main()
