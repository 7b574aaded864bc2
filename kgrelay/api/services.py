"""Service container owned by one app instance.

All mutable state lives in a :class:`Services` object created by
:func:`build_services` and stored on ``app.state.services``; endpoints reach
it through the :func:`get_services` dependency.  Nothing is module-global, so
tests can build as many independent apps as they like.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from kgrelay.core.settings import Settings
from kgrelay.orchestrator.jobs import JobRegistry
from kgrelay.orchestrator.workflow import BackoffPolicy, WorkflowExecutor
from kgrelay.storage.cache import CacheCoordinator, ResponseCache
from kgrelay.storage.credentials import CredentialStore
from kgrelay.upstream.http_client import UpstreamClient

__all__ = ["Services", "build_services", "get_services"]


@dataclass
class Services:
    settings: Settings
    cache: ResponseCache
    coordinator: CacheCoordinator
    store: CredentialStore
    client: UpstreamClient
    executor: WorkflowExecutor
    jobs: JobRegistry

    async def aclose(self) -> None:
        """Cancel every job and release the HTTP connection pool."""
        self.jobs.shutdown()
        await self.client.close()


def build_services(
    settings: Settings,
    *,
    client: UpstreamClient | None = None,
    backoff: BackoffPolicy | None = None,
) -> Services:
    """Wire the store, cache, client, executor and registry together."""
    cache = ResponseCache(ttl=settings.cache_ttl_seconds)
    coordinator = CacheCoordinator(cache)
    store = CredentialStore(coordinator)
    client = client or UpstreamClient(
        base_url=settings.upstream_base_url,
        read_timeout=settings.http_timeout,
        max_attempts=settings.http_max_attempts,
    )
    executor = WorkflowExecutor(store, client, settings, backoff=backoff)
    jobs = JobRegistry(store, executor.run_tick, coordinator=coordinator)
    return Services(
        settings=settings,
        cache=cache,
        coordinator=coordinator,
        store=store,
        client=client,
        executor=executor,
        jobs=jobs,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
