"""Claim the daily listening reward."""

from __future__ import annotations

from typing import Any

from kgrelay.core.models import ModuleResponse, RequestFn
from kgrelay.handlers._proxy import forward


async def handle(context: dict[str, Any], request_fn: RequestFn) -> ModuleResponse:
    return await forward("/youth/listen/song", context, request_fn)
