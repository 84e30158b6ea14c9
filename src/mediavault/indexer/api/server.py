"""FastAPI server setup for the admin API."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import MediaVaultConfig
from ..errors import (
    ConflictError, ExpiredError, ForbiddenError, IndexerError, InvalidArgumentError,
    NotFoundError, UnauthorizedError, UnsupportedMediaError,
)
from ..library import MediaLibrary

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (NotFoundError, 404),
    (UnauthorizedError, 401),
    (ForbiddenError, 403),
    (ExpiredError, 410),
    (InvalidArgumentError, 400),
    (ConflictError, 409),
    (UnsupportedMediaError, 415),
)


def status_for_error(error: IndexerError) -> int:
    for error_class, status in ERROR_STATUS:
        if isinstance(error, error_class):
            return status
    return 500


def create_app(config: MediaVaultConfig, library: MediaLibrary) -> FastAPI:
    """Create and configure the FastAPI application around a running library."""
    from mediavault.indexer import __version__

    app = FastAPI(
        title="mediavault",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )
    app.state.library = library

    if config.api.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.api.cors_origins or ["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(IndexerError)
    async def indexer_error_handler(request: Request, error: IndexerError):
        status = status_for_error(error)
        if status >= 500:
            logger.error(f"Request failed: {{'path': {request.url.path!r}, 'error': {error.message!r}}}")
        return JSONResponse(
            status_code=status,
            content={"error": type(error).__name__, "message": error.message},
        )

    from .routes import health, scanner

    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(scanner.router, prefix="/api", tags=["scanner"])

    logger.info(f"FastAPI application created: {{'version': {__version__!r}}}")
    return app
