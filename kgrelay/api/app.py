"""FastAPI application factory.

:func:`create_app` assembles one self-contained service:

* a :class:`~kgrelay.api.services.Services` container (store, cache, client,
  workflow executor, job registry),
* the GET response-cache middleware,
* the ``/api`` management router,
* one route per discovered handler module.

The lifespan starts the job scheduler inside the running event loop and, on
shutdown, cancels every live job and closes the downstream client.

Typical usage::

    import uvicorn
    from kgrelay.api.app import create_app

    uvicorn.run(create_app(), port=3000)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import Response

from kgrelay.api.management import router as management_router
from kgrelay.api.services import Services, build_services
from kgrelay.core.models import RouteEntry
from kgrelay.core.settings import Settings
from kgrelay.routing.discovery import discover_modules
from kgrelay.routing.dispatcher import mount_routes
from kgrelay.storage.cache import CachedResponse, ResponseCache

__all__ = ["create_app"]

logger = logging.getLogger(__name__)


def _cache_key(request: Request) -> str:
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def _is_cacheable(request: Request) -> bool:
    """Only anonymous GETs are shared; a credentialed response belongs to one user."""
    if request.method != "GET":
        return False
    if "cookie" in request.headers or "authorization" in request.headers:
        return False
    return "cookie" not in request.query_params


def _install_cache_middleware(app: FastAPI, cache: ResponseCache) -> None:
    """Serve repeated anonymous GETs from *cache*; only HTTP 200 responses are stored."""

    @app.middleware("http")
    async def response_cache(request: Request, call_next):
        if not cache.enabled or not _is_cacheable(request):
            return await call_next(request)

        key = _cache_key(request)
        cached = cache.get(key)
        if cached is not None:
            response = Response(content=cached.body, status_code=cached.status)
            for name, value in cached.headers:
                response.headers.append(name, value)
            response.headers["X-Cache"] = "HIT"
            return response

        response = await call_next(request)
        if response.status_code != 200:
            return response

        body = b"".join([chunk async for chunk in response.body_iterator])
        headers = [
            (name, value)
            for name, value in response.headers.items()
            if name.lower() not in {"content-length", "set-cookie"}
        ]
        cache.set(key, CachedResponse(status=response.status_code, body=body, headers=headers))

        replay = Response(content=body, status_code=response.status_code)
        replay.raw_headers = list(response.raw_headers)
        return replay


def create_app(
    settings: Settings | None = None,
    *,
    services: Services | None = None,
    entries: Sequence[RouteEntry] | None = None,
) -> FastAPI:
    """Build the ASGI application.

    Args:
        settings: Application settings.  Loaded from environment if ``None``.
        services: Pre-built service container (tests inject one with a mock
            downstream transport).  Built from *settings* if ``None``.
        entries: Explicit route table.  Discovered from
            ``settings.modules_path`` if ``None``.
    """
    if services is None:
        settings = settings or Settings()
        services = build_services(settings)
    else:
        settings = services.settings

    if entries is None:
        entries = discover_modules(settings.modules_path_resolved, settings.route_overrides)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        services.jobs.start_scheduler()
        logger.info("kgrelay ready with %d dynamic route(s).", len(entries))
        try:
            yield
        finally:
            await services.aclose()
            logger.info("kgrelay shut down.")

    app = FastAPI(title="kgrelay", lifespan=lifespan)
    app.state.services = services

    _install_cache_middleware(app, services.cache)
    app.include_router(management_router)
    mount_routes(app, entries, services.client, trust_proxy=settings.trust_proxy)
    return app
