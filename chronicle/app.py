"""
FastAPI application entry point for the content API.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from chronicle.cache import CacheStore
from chronicle.config import Settings, get_settings
from chronicle.dependencies import get_cache_store
from chronicle.middleware import RequestIdMiddleware, ResponseCacheMiddleware
from chronicle.repository import RepositoryError
from chronicle.routes import router
from chronicle.schemas import ListingParams

logger = logging.getLogger(__name__)


def _cache_enabled(settings: Settings, store: CacheStore) -> bool:
    if not settings.cache_response:
        return False
    if not store.ping():
        logger.error("Failed to connect to cache server, caching response is disabled")
        return False
    return True


def create_app(
    settings: Optional[Settings] = None,
    cache_store: Optional[CacheStore] = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)
    store = cache_store if cache_store is not None else get_cache_store()

    app = FastAPI(title="Chronicle API", version="0.1.0")
    app.include_router(router, prefix=settings.api_prefix)

    # Added first so it sits inside the request id middleware.
    app.add_middleware(
        ResponseCacheMiddleware,
        store=store,
        enabled=_cache_enabled(settings, store),
        ttl_seconds=settings.cache_ttl_seconds,
        paths=(f"{settings.api_prefix}/stories", f"{settings.api_prefix}/topics"),
        accepts=ListingParams.accepts,
    )
    app.add_middleware(RequestIdMiddleware)

    @app.exception_handler(RepositoryError)
    async def repository_error_handler(request: Request, exc: RepositoryError):
        logger.error(
            "Datastore failure on %s %s (request %s): %s",
            request.method,
            request.url.path,
            getattr(request.state, "request_id", None),
            exc,
        )
        return JSONResponse(status_code=500, content={"detail": "Something is wrong"})

    return app


app = create_app()
