"""Claim one VIP bonus; the remote caps claims per day."""

from __future__ import annotations

from typing import Any

from kgrelay.core.models import ModuleResponse, RequestFn
from kgrelay.handlers._proxy import forward


async def handle(context: dict[str, Any], request_fn: RequestFn) -> ModuleResponse:
    return await forward("/youth/vip", context, request_fn)
