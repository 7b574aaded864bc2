"""Shared pytest fixtures and configuration for the kgrelay test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across unit and integration tests.

Downstream HTTP is never real: every :class:`UpstreamClient` built here sits
on an :class:`httpx.MockTransport` driven by a :class:`FakeUpstream` whose
per-path replies the individual test configures.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

import httpx
import pytest
import tenacity
from pydantic_settings import SettingsConfigDict

from kgrelay.core import configure_logging
from kgrelay.core.settings import Settings
from kgrelay.upstream.http_client import UpstreamClient

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """DEBUG logging in text format for every test; replaces any earlier handler."""
    configure_logging(level="DEBUG", fmt="text")


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove every env var the settings read, and disable ``.env`` loading.

    Without the ``model_config`` patch a developer's local ``.env`` file would
    leak into ``Settings()`` even after the env vars are removed, because
    pydantic-settings reads the file directly.
    """
    for name in Settings.model_fields:
        monkeypatch.delenv(name.upper(), raising=False)
    for key in ("LOG_LEVEL", "LOG_FORMAT"):
        monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


@pytest.fixture()
def settings(clean_env: None) -> Settings:
    """Settings with fast, deterministic values for the scheduled workflow."""
    return Settings(
        workflow_base_url="http://relay.test",
        upstream_base_url="http://upstream.test",
        bonus_delay_min=0.0,
        bonus_delay_max=0.0,
        cache_ttl_seconds=60.0,
    )


# ---------------------------------------------------------------------------
# Fake downstream
# ---------------------------------------------------------------------------


class FakeUpstream:
    """Scripted downstream API for :class:`httpx.MockTransport`.

    ``replies[path]`` is a list of ``(status, json_body)`` tuples consumed in
    order; the last one repeats once the list is exhausted.  Every request is
    recorded in :attr:`requests`.
    """

    def __init__(self) -> None:
        self.replies: dict[str, list[tuple[int, Any]]] = {}
        self.requests: list[httpx.Request] = []
        self.cookies: dict[str, list[str]] = defaultdict(list)

    def reply(self, path: str, *responses: tuple[int, Any]) -> None:
        self.replies[path] = list(responses)

    def set_cookie(self, path: str, *cookies: str) -> None:
        self.cookies[path] = list(cookies)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.replies.get(request.url.path)
        if not queue:
            return httpx.Response(404, json={"status": 0, "error_code": 404})
        status, body = queue.pop(0) if len(queue) > 1 else queue[0]
        headers = [("set-cookie", c) for c in self.cookies.get(request.url.path, [])]
        return httpx.Response(status, json=body, headers=headers)


@pytest.fixture()
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture()
def client(upstream: FakeUpstream, settings: Settings) -> UpstreamClient:
    """UpstreamClient on a mock transport with zero retry back-off."""
    return UpstreamClient(
        base_url=settings.upstream_base_url,
        max_attempts=3,
        transport=httpx.MockTransport(upstream.handler),
        wait=tenacity.wait_none(),
    )


# ---------------------------------------------------------------------------
# Misc helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def logger() -> logging.Logger:
    """Return a ``logging.Logger`` scoped to the test suite."""
    return logging.getLogger("tests")
