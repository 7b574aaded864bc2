"""Smoke tests: verify the test harness itself is wired up correctly.

These tests assert nothing about business logic.  Their sole purpose is to
confirm:

1. pytest discovers and runs tests in this suite.
2. pytest-asyncio's ``asyncio_mode = "auto"`` setting works.
3. Every kgrelay module imports without errors.
4. ``configure_logging()`` executes without raising.

If any of these fail it means the project foundation is broken and no
subsequent tests can be trusted.
"""

from __future__ import annotations

import asyncio
import importlib
import logging

import pytest

import kgrelay
from kgrelay.core import KgRelayError, configure_logging

logger = logging.getLogger(__name__)

_MODULES = [
    "kgrelay.__main__",
    "kgrelay.api.app",
    "kgrelay.api.management",
    "kgrelay.api.services",
    "kgrelay.core.cookies",
    "kgrelay.core.events",
    "kgrelay.orchestrator.jobs",
    "kgrelay.orchestrator.workflow",
    "kgrelay.routing.discovery",
    "kgrelay.routing.dispatcher",
    "kgrelay.storage.cache",
    "kgrelay.storage.credentials",
    "kgrelay.upstream.http_client",
]


@pytest.mark.parametrize("name", _MODULES)
def test_module_imports(name: str) -> None:
    assert importlib.import_module(name) is not None


def test_version() -> None:
    assert kgrelay.__version__ == "0.1.0"


def test_configure_logging_json() -> None:
    configure_logging(level="INFO", fmt="json")
    logger.info("json logging works")


async def test_async_runs_without_marker() -> None:
    await asyncio.sleep(0)


def test_root_exception_is_exception() -> None:
    assert issubclass(KgRelayError, Exception)
